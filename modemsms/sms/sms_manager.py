"""
SMS Management Module - Handles forwarding and deletion of received messages
"""
import time

from modemsms.bot.notifier import notify_admins_new_sms
from modemsms.utils.config import DELETE_AFTER_FORWARD
from modemsms.utils.logger import print_status
from .errors import ModemError
from .reassembly import UndecodableMessage


def delete_sms(modem, message, max_retries=3, retry_delay=1):
    """Delete a message from the SIM with retries"""
    for attempt in range(max_retries):
        try:
            modem.delete_message(message)
            print_status(f"✅ Deleted message {message.index} (slots {list(message.part_indexes)})", "SUCCESS")
            return True
        except ModemError as e:
            if attempt < max_retries - 1:
                print_status(f"⚠️ Retry {attempt + 1}/{max_retries} to delete message {message.index}: {e}", "WARN")
                time.sleep(retry_delay)
            else:
                print_status(f"❌ Failed to delete message {message.index} after {max_retries} attempts: {e}", "ERROR")
    return False


def print_message(message):
    if isinstance(message, UndecodableMessage):
        print_status(f"Message {message.index} could not be decoded: {message.error}", "WARN")
        return
    timestamp = message.timestamp.strftime('%Y-%m-%d %H:%M:%S') if message.timestamp else '-'
    print(f"\n=== SMS (index {message.index}, slots {list(message.part_indexes)}) ===\n"
          f"From: {message.sender}\nDate: {timestamp} UTC\nMessage: {message.text}\n"
          f"========================\n")


def process_message(modem, message, delete_after=DELETE_AFTER_FORWARD):
    """Show, forward and optionally delete one message"""
    print_message(message)

    if isinstance(message, UndecodableMessage):
        # Nothing to forward, free the slot if asked to
        return delete_sms(modem, message) if delete_after else False

    forwarded = notify_admins_new_sms(message)
    if forwarded:
        print_status(f"📨 Forwarded message from {message.sender}", "SUCCESS")

    if delete_after and forwarded:
        delete_sms(modem, message)
    return forwarded


def process_stored_messages(modem, delete_after=DELETE_AFTER_FORWARD):
    """Handle every message already in storage, returns how many were processed"""
    try:
        messages = modem.get_messages()
    except ModemError as e:
        print_status(f"❌ Failed to list stored messages: {e}", "ERROR")
        return 0

    if not messages:
        print_status("No stored messages", "INFO")
    for message in messages:
        process_message(modem, message, delete_after=delete_after)
    return len(messages)


def forward_new_messages(modem, stop_event, poll_timeout=1, delete_after=DELETE_AFTER_FORWARD):
    """Drain the modem's new message channel until stop_event is set or the link drops"""
    while not stop_event.is_set() and modem.transport.is_open:
        message = modem.next_message(timeout=poll_timeout)
        if message is not None:
            process_message(modem, message, delete_after=delete_after)
