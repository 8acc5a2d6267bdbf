"""
SMS modem facade - PDU mode send/list/delete over a serialized AT command link
and the +CMTI new message channel
"""
import queue
import re
import threading
from collections import OrderedDict

from modemsms.utils.config import (
    SERIAL_PORT, SERIAL_BAUDRATE, COMMAND_TIMEOUT, REJECT_CALLS,
    NOTIFICATION_RETRY_LIMIT, NOTIFICATION_RETRY_DELAY, EMITTED_CACHE_SIZE
)
from modemsms.utils.logger import setup_logger, print_status
from .commands import CommandExecutor, CommandQueue, CTRL_Z
from .errors import ModemError
from .pdu import decode_record, encode_message, parse_cmgl_listing
from .reassembly import process
from .transport import SerialTransport

logger = setup_logger('modem')

CMTI_PATTERN = re.compile(r'\+CMTI:\s*"?([^",]*)"?\s*,\s*(\d+)')


class Modem:
    """Cellular modem driven in PDU mode.

    Every public operation runs on a single operation queue and every AT
    command it needs goes through a second queue with one command in
    flight, so writes to the link are totally ordered. New messages
    announced with +CMTI are looked up through the same queues and pushed
    onto ``messages`` once fully assembled.

    Usage::

        with Modem('/dev/ttyUSB2') as modem:
            modem.send_message('+15551234567', 'Hello')
            for message in modem.get_messages():
                print(message.sender, message.text)
            message = modem.next_message(timeout=60)
    """

    def __init__(self, port=SERIAL_PORT, baudrate=SERIAL_BAUDRATE, transport=None,
                 command_timeout=COMMAND_TIMEOUT, reject_calls=REJECT_CALLS, sender_format=None,
                 notification_retry_limit=NOTIFICATION_RETRY_LIMIT,
                 notification_retry_delay=NOTIFICATION_RETRY_DELAY):
        self.transport = transport or SerialTransport(port, baudrate)
        self.executor = CommandExecutor(self.transport, command_timeout)
        self.reject_calls_on_reset = reject_calls
        self.sender_format = sender_format
        self.notification_retry_limit = notification_retry_limit
        self.notification_retry_delay = notification_retry_delay
        self.messages = queue.Queue()

        self._commands = CommandQueue('at-commands')
        self._operations = CommandQueue('modem-ops')
        self._emitted = OrderedDict()
        self._emitted_lock = threading.Lock()
        self._timers = set()
        self._closed = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        self.transport.open()
        self.transport.add_line_listener(self._on_line)
        print_status("Modem link open", "SUCCESS")

    def close(self):
        self._closed = True
        self.transport.remove_line_listener(self._on_line)
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()
        self._operations.shutdown(cancel_pending=True)
        self._commands.shutdown(cancel_pending=True)
        self.transport.close()

    # --- commands ---

    def send_command(self, *steps, terminators=('\r',), timeout=None):
        response = self._commands.run(self.executor.execute, steps, terminators, timeout)
        logger.debug(f"{response.command} -> {response.response.strip()!r} ({response.elapsed_ms:.0f} ms)")
        return response

    def reset(self):
        return self._operations.run(self._reset)

    def reject_calls(self):
        return self._operations.run(self._reject_calls)

    def _reset(self):
        self.send_command('ATZ')
        if self.reject_calls_on_reset:
            self._reject_calls()

    def _reject_calls(self):
        return self.send_command('AT+GSMBUSY=1')

    def _set_pdu_mode(self):
        return self.send_command('AT+CMGF=0')

    # --- sending ---

    def send_message(self, number, text):
        """Send text to number, one interactive AT+CMGS per encoded part"""
        return self._operations.run(self._send_message, number, text)

    def _send_message(self, number, text):
        parts = encode_message(number, text)
        self._reset()
        self._set_pdu_mode()

        responses = []
        for length, pdu in parts:
            responses.append(self.send_command(f'AT+CMGS={length}', pdu, terminators=('\r', CTRL_Z)))
        print_status(f"Message sent to {number} ({len(parts)} part(s))", "SUCCESS")
        return responses

    # --- reading ---

    def list_raw_messages(self):
        return self._operations.run(self._list_raw_messages)

    def get_messages(self):
        return self._operations.run(self._get_messages)

    def get_message(self, index):
        """Message stored at index, or the multi-part message index belongs to"""
        return self._operations.run(self._get_message, index)

    def _list_raw_messages(self):
        self._reset()
        self._set_pdu_mode()
        logger.debug("Listing messages")
        response = self.send_command('AT+CMGL=4')
        return parse_cmgl_listing(response.response)

    def _get_messages(self):
        decoded = [decode_record(record) for record in self._list_raw_messages()]
        return process(decoded, self.sender_format)

    def _get_message(self, index):
        messages = self._get_messages()
        message = next((m for m in messages if m.index == index), None)
        if message is None:
            message = next((m for m in messages if index in m.part_indexes), None)
        return message

    # --- deleting ---

    def delete_message(self, message):
        """Delete every storage slot of message"""
        return self._operations.run(self._delete_message, message)

    def delete_all_messages(self):
        return self._operations.run(self._delete_all_messages)

    def _delete_message(self, message):
        if message is None:
            return
        for index in message.part_indexes:
            self.send_command(f'AT+CMGD={index}')
        with self._emitted_lock:
            self._emitted.pop(message.identity, None)

    def _delete_all_messages(self):
        self.send_command('AT+CMGD=1,4')
        with self._emitted_lock:
            self._emitted.clear()

    # --- new message notifications ---

    def next_message(self, timeout=None):
        """Next fully assembled new message, or None after timeout"""
        try:
            return self.messages.get(timeout=timeout)
        except queue.Empty:
            return None

    def _on_line(self, line):
        match = CMTI_PATTERN.search(line)
        if not match:
            return
        index = int(match.group(2))
        logger.info(f"New message notification for slot {index} ({match.group(1) or 'default'} storage)")
        self._schedule_lookup(index, 0)

    def _schedule_lookup(self, index, attempt):
        if self._closed:
            return
        try:
            future = self._operations.submit(self._handle_new_message, index, attempt)
        except RuntimeError:
            logger.debug(f"Modem closed, dropping notification for slot {index}")
            return
        future.add_done_callback(lambda done: self._log_lookup_failure(index, done))

    @staticmethod
    def _log_lookup_failure(index, future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Lookup of new message {index} failed", exc_info=error)

    def _retry_lookup(self, index, attempt):
        # Runs on the timer thread itself
        self._timers.discard(threading.current_thread())
        self._schedule_lookup(index, attempt)

    def _handle_new_message(self, index, attempt):
        try:
            message = self._get_message(index)
        except ModemError as e:
            print_status(f"Failed to read new message {index}: {e}", "ERROR")
            return

        if message is None:
            if attempt < self.notification_retry_limit:
                logger.debug(f"Slot {index} not complete yet, checking again in {self.notification_retry_delay}s")
                timer = threading.Timer(self.notification_retry_delay, self._retry_lookup,
                                        args=(index, attempt + 1))
                timer.daemon = True
                self._timers.add(timer)
                timer.start()
            else:
                logger.debug(f"Slot {index} still incomplete, waiting for the next notification")
            return

        self._emit(message)

    def _emit(self, message):
        with self._emitted_lock:
            if message.identity in self._emitted:
                return
            self._emitted[message.identity] = True
            while len(self._emitted) > EMITTED_CACHE_SIZE:
                self._emitted.popitem(last=False)
        print_status(f"New message from {message.sender} ({message.parts} part(s))", "SUCCESS")
        self.messages.put(message)
