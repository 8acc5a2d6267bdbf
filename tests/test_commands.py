"""Tests for the AT command queue and executor."""

import time

import pytest

from conftest import ok
from modemsms.sms.commands import CTRL_Z, CommandExecutor, CommandQueue
from modemsms.sms.errors import CommandRejected, CommandTimeout


def test_ok_resolves_with_full_response(transport):
    transport.reply("AT+CSQ", "AT+CSQ\r\r\n", "+CSQ: 20,0\r\n\r\n", "OK\r\n")
    response = CommandExecutor(transport).execute("AT+CSQ", timeout=2)
    assert response.command == "AT+CSQ"
    assert "+CSQ: 20,0" in response.response
    assert response.response.endswith("OK\r\n")
    assert response.elapsed_ms >= 0
    assert response.finished_at >= response.started_at


def test_command_written_with_terminator(transport):
    transport.reply("ATZ", *ok("ATZ"))
    CommandExecutor(transport).execute("ATZ", timeout=2)
    assert transport.writes == ["ATZ\r"]


def test_error_rejects(transport):
    transport.reply("AT+CMGD", "ERROR\r\n")
    with pytest.raises(CommandRejected) as excinfo:
        CommandExecutor(transport).execute("AT+CMGD=9", timeout=2)
    assert excinfo.value.command == "AT+CMGD=9"
    assert "ERROR" in excinfo.value.response


def test_error_before_ok_rejects(transport):
    """An ERROR seen first wins even if OK follows in the same chunk."""
    transport.reply("AT+X", "+CME ERROR: 3\r\nOK\r\n")
    with pytest.raises(CommandRejected):
        CommandExecutor(transport).execute("AT+X", timeout=2)


def test_ok_split_across_chunks(transport):
    transport.reply("AT", "AT\r\r\n", "O", "K\r\n")
    response = CommandExecutor(transport).execute("AT", timeout=2)
    assert "OK" in response.response


def test_two_step_command_writes_payload_once_after_prompt(transport):
    transport.reply("AT+CMGS=", "AT+CMGS=5\r\r\n", "> ")
    transport.reply(lambda text: text.endswith(CTRL_Z), "\r\n+CMGS: 12\r\n", "\r\nOK\r\n")

    response = CommandExecutor(transport).execute(("AT+CMGS=5", "0011AABB"), ("\r", CTRL_Z), timeout=2)

    assert transport.writes == ["AT+CMGS=5\r", "0011AABB" + CTRL_Z]
    assert "+CMGS: 12" in response.response


def test_each_prompt_releases_one_step(transport):
    transport.reply("STEP1", "> ")
    transport.reply("STEP2", "> ")
    transport.reply("STEP3", "OK\r\n")

    CommandExecutor(transport).execute(("STEP1", "STEP2", "STEP3"), ("\r",), timeout=2)

    assert transport.writes == ["STEP1\r", "STEP2\r", "STEP3\r"]


def test_prompt_without_remaining_steps_keeps_waiting(transport):
    transport.reply("AT+CMGS", "> ")
    with pytest.raises(CommandTimeout):
        CommandExecutor(transport).execute("AT+CMGS=5", timeout=0.3)
    assert transport.writes == ["AT+CMGS=5\r"]


def test_timeout_detaches_listener(transport):
    executor = CommandExecutor(transport)
    with pytest.raises(CommandTimeout) as excinfo:
        executor.execute("AT+SILENT", timeout=0.2)
    assert excinfo.value.command == "AT+SILENT"
    assert transport.listener_count == 0


def test_late_data_does_not_resolve_next_command(transport):
    """OK arriving after a timeout is not credited to the next command."""
    executor = CommandExecutor(transport)
    with pytest.raises(CommandTimeout):
        executor.execute("AT+SLOW", timeout=0.2)

    transport.feed("OK\r\n")
    time.sleep(0.1)

    transport.reply("AT+NEXT", "ERROR\r\n")
    with pytest.raises(CommandRejected):
        executor.execute("AT+NEXT", timeout=2)


def test_listener_detached_on_success_and_error(transport):
    executor = CommandExecutor(transport)
    transport.reply("AT+GOOD", "OK\r\n")
    transport.reply("AT+BAD", "ERROR\r\n")

    executor.execute("AT+GOOD", timeout=2)
    assert transport.listener_count == 0

    with pytest.raises(CommandRejected):
        executor.execute("AT+BAD", timeout=2)
    assert transport.listener_count == 0


def test_missing_terminator_falls_back_to_last(transport):
    transport.reply("A", "> ")
    transport.reply("B", "OK\r\n")
    CommandExecutor(transport).execute(("A", "B"), ("\n",), timeout=2)
    assert transport.writes == ["A\n", "B\n"]


def test_queue_runs_in_submission_order():
    queue = CommandQueue("test")
    seen = []

    def work(n):
        time.sleep(0.02 if n % 2 else 0)
        seen.append(n)
        return n

    futures = [queue.submit(work, n) for n in range(6)]
    assert [f.result(timeout=2) for f in futures] == list(range(6))
    assert seen == list(range(6))
    queue.shutdown()


def test_queue_failure_is_isolated():
    queue = CommandQueue("test")

    def fail():
        raise CommandTimeout("AT+FAIL")

    first = queue.submit(fail)
    second = queue.submit(lambda: "done")

    with pytest.raises(CommandTimeout):
        first.result(timeout=2)
    assert second.result(timeout=2) == "done"
    queue.shutdown()


def test_queued_commands_never_interleave(transport):
    """The second command is written only after the first one completed."""
    transport.chunk_delay = 0.05
    transport.reply("AT+FIRST", "AT+FIRST\r\r\n", "+FIRST: 1\r\n", "OK\r\n")
    transport.reply("AT+SECOND", "OK\r\n")

    executor = CommandExecutor(transport)
    queue = CommandQueue("test")
    completed = []

    def run(command):
        response = executor.execute(command, timeout=2)
        completed.append((command, len(transport.writes)))
        return response

    futures = [queue.submit(run, "AT+FIRST"), queue.submit(run, "AT+SECOND")]

    for future in futures:
        future.result(timeout=5)

    assert transport.writes == ["AT+FIRST\r", "AT+SECOND\r"]
    # When the first command completed only its own write had happened
    assert completed == [("AT+FIRST", 1), ("AT+SECOND", 2)]
    queue.shutdown()
