"""
AT command execution - a FIFO queue with one command in flight and the executor
that classifies the modem's response stream
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence, Tuple

from modemsms.utils.config import COMMAND_TIMEOUT
from modemsms.utils.logger import setup_logger
from .errors import CommandRejected, CommandTimeout, TransportError

logger = setup_logger('commands')

CTRL_Z = '\x1a'
PROMPT = '>'


class CommandQueue:
    """Runs submitted work one entry at a time, in submission order.

    Each entry gets its own Future; an exception raised by one entry is
    stored in that Future only and the next entry starts normally.
    """

    def __init__(self, name='commands'):
        self.name = name
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def submit(self, work, *args, **kwargs):
        return self._pool.submit(work, *args, **kwargs)

    def run(self, work, *args, **kwargs):
        return self.submit(work, *args, **kwargs).result()

    def shutdown(self, wait=True, cancel_pending=False):
        self._pool.shutdown(wait=wait, cancel_futures=cancel_pending)


@dataclass
class PendingCommand:
    steps: Tuple[str, ...]
    terminators: Tuple[str, ...] = ('\r',)
    timeout: float = COMMAND_TIMEOUT
    submitted_at: datetime = field(default_factory=datetime.now)

    @property
    def command(self) -> str:
        return self.steps[0]

    def terminator(self, step: int) -> str:
        if step < len(self.terminators):
            return self.terminators[step]
        return self.terminators[-1] if self.terminators else '\r'


@dataclass
class SendCommandResponse:
    command: str
    started_at: datetime
    finished_at: datetime
    elapsed_ms: float
    response: str


class CommandState(Enum):
    AWAITING_RESPONSE = "awaiting_response"
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class _CommandCall:
    """Response accumulator and state machine of a single execute() call"""

    def __init__(self, pending: PendingCommand, transport):
        self.pending = pending
        self.transport = transport
        self.buffer = ''
        self.step = 0
        self.prompt_from = 0
        self.state = CommandState.AWAITING_RESPONSE
        self.error: Optional[Exception] = None
        self.done = threading.Event()
        self._lock = threading.RLock()

    def start(self):
        with self._lock:
            self._write_step(0)

    def on_data(self, chunk):
        with self._lock:
            if self.state is not CommandState.AWAITING_RESPONSE:
                return
            self.buffer += chunk

            if 'ERROR' in self.buffer:
                self._finish(CommandState.FAILED)
            elif 'OK' in self.buffer:
                self._finish(CommandState.COMPLETE)
            elif PROMPT in self.buffer[self.prompt_from:] and self.step + 1 < len(self.pending.steps):
                try:
                    self._write_step(self.step + 1)
                except TransportError as e:
                    self.error = e
                    self._finish(CommandState.FAILED)

    def expire(self):
        with self._lock:
            if self.state is CommandState.AWAITING_RESPONSE:
                self.state = CommandState.TIMED_OUT
                self.done.set()

    def _write_step(self, step):
        self.step = step
        # Only a prompt arriving after this write may release the next step
        self.prompt_from = len(self.buffer)
        self.transport.write(self.pending.steps[step] + self.pending.terminator(step))

    def _finish(self, state):
        self.state = state
        self.done.set()


class CommandExecutor:
    """Sends one logical command and waits for OK, ERROR or the timeout.

    Multi-step commands (``AT+CMGS=<n>`` followed by the PDU) write the
    next step each time the modem answers with the '>' prompt. The
    response listener is attached for the duration of one call only.
    """

    def __init__(self, transport, timeout=COMMAND_TIMEOUT):
        self.transport = transport
        self.timeout = timeout

    def execute(self, steps: Sequence[str], terminators: Sequence[str] = ('\r',),
                timeout: Optional[float] = None) -> SendCommandResponse:
        if isinstance(steps, str):
            steps = (steps,)
        if isinstance(terminators, str):
            terminators = (terminators,)
        pending = PendingCommand(tuple(steps), tuple(terminators),
                                 self.timeout if timeout is None else timeout)
        return self.run(pending)

    def run(self, pending: PendingCommand) -> SendCommandResponse:
        call = _CommandCall(pending, self.transport)
        started_at = datetime.now()

        self.transport.add_listener(call.on_data)
        try:
            call.start()
            if not call.done.wait(pending.timeout):
                call.expire()
        finally:
            self.transport.remove_listener(call.on_data)

        if call.error is not None:
            raise call.error
        if call.state is CommandState.FAILED:
            raise CommandRejected(pending.command, call.buffer)
        if call.state is CommandState.TIMED_OUT:
            logger.warning(f"Timeout after {pending.timeout}s waiting for {pending.command}")
            raise CommandTimeout(pending.command, call.buffer)

        finished_at = datetime.now()
        return SendCommandResponse(
            command=pending.command,
            started_at=started_at,
            finished_at=finished_at,
            elapsed_ms=(finished_at - started_at).total_seconds() * 1000,
            response=call.buffer,
        )
