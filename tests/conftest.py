"""Shared fixtures: a scripted stand-in for the serial transport."""

import queue
import threading
import time

import pytest

from modemsms.sms.transport import Transport


class FakeTransport(Transport):
    """Records writes and replays scripted replies from a reader thread.

    ``reply(match, *chunks)`` registers a rule: every write whose text
    starts with ``match`` (or for which ``match(text)`` is true) is
    answered with ``chunks``, delivered one by one in order.
    """

    def __init__(self, chunk_delay=0.0):
        super().__init__()
        self.writes = []
        self.rules = []
        self.chunk_delay = chunk_delay
        self._open = False
        self._pending = queue.Queue()
        self._reader = None

    @property
    def is_open(self):
        return self._open

    def open(self):
        self._open = True
        self._reader = threading.Thread(target=self._replay, daemon=True)
        self._reader.start()

    def close(self):
        self._open = False
        self._pending.put(None)

    def reply(self, match, *chunks):
        self.rules.append((match, chunks))

    def respond(self, match, responder):
        """Answer matching writes with whatever ``responder(text)`` returns"""
        self.rules.append((match, responder))

    def feed(self, text):
        """Deliver inbound data as if the modem had sent it."""
        self._pending.put([text])

    def _write(self, data):
        text = data.decode()
        self.writes.append(text)
        for match, chunks in self.rules:
            matched = match(text) if callable(match) else text.startswith(match)
            if matched:
                if callable(chunks):
                    chunks = chunks(text)
                self._pending.put(list(chunks))
                break

    def _replay(self):
        while True:
            chunks = self._pending.get()
            if chunks is None:
                return
            for chunk in chunks:
                if self.chunk_delay:
                    time.sleep(self.chunk_delay)
                self._dispatch(chunk)


def ok(command):
    """Echo plus OK, the usual answer to a simple command."""
    return (f"{command}\r\r\n", "OK\r\n")


@pytest.fixture
def transport():
    fake = FakeTransport()
    fake.open()
    yield fake
    fake.close()
