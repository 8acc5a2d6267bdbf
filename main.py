import sys
import time
import threading

from modemsms.sms.errors import ModemError
from modemsms.sms.modem import Modem
from modemsms.sms.reassembly import SinglePartMessage
from modemsms.sms.sms_manager import (
    forward_new_messages, print_message, process_stored_messages
)
from modemsms.sms.transport import find_modem_port
from modemsms.utils.config import SERIAL_PORT, RECONNECT_INTERVAL
from modemsms.utils.logger import setup_logger, print_status

logger = setup_logger('main')


def resolve_port():
    port = SERIAL_PORT or find_modem_port()
    if not port:
        print_status("No modem found. Set SERIAL_PORT or connect a modem.", "ERROR")
        sys.exit(1)
    return port


def run_listen_service(port):
    """Forward stored and incoming messages forever, reconnecting on link failures."""
    stop_event = threading.Event()
    while True:
        try:
            with Modem(port) as modem:
                modem.reset()
                print_status(f"📱 SMS system ready on {port}", "SUCCESS")
                process_stored_messages(modem)
                forward_new_messages(modem, stop_event)
            print_status("Modem link lost", "ERROR")
        except KeyboardInterrupt:
            print("\n[SMS] Stopped by user (Ctrl+C)")
            stop_event.set()
            return
        except ModemError as e:
            print_status(f"❌ Connection error: {e}", "ERROR")
        print_status(f"🔄 Attempting to reconnect in {RECONNECT_INTERVAL} seconds...", "WARN")
        time.sleep(RECONNECT_INTERVAL)


def run_command(port, command, args):
    with Modem(port) as modem:
        if command == "list":
            messages = modem.get_messages()
            for message in messages:
                print_message(message)
            print_status(f"{len(messages)} message(s)", "INFO")
        elif command == "send":
            number, text = args[0], " ".join(args[1:])
            modem.send_message(number, text)
        elif command == "delete":
            index = int(args[0])
            message = modem.get_message(index)
            if message is None:
                # Incomplete multi-part slots are not listed as messages
                message = SinglePartMessage(index=index, part_indexes=(index,), text='', sender='', timestamp=None)
            modem.delete_message(message)
            print_status(f"Deleted slots {list(message.part_indexes)}", "SUCCESS")
        elif command == "delete-all":
            modem.delete_all_messages()
            print_status("All messages deleted", "SUCCESS")


def print_usage():
    print("Usage: python main.py [listen|list|send <number> <text>|delete <index>|delete-all|ports]")
    print("  listen            - Forward stored and new SMS to Telegram admins (default)")
    print("  list              - Print all stored messages")
    print("  send <nr> <text>  - Send an SMS")
    print("  delete <index>    - Delete the message stored at index (all its parts)")
    print("  delete-all        - Delete every stored message")
    print("  ports             - Search the serial ports for a modem")


def cli(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else "listen"
    args = argv[1:]

    valid = (
        (command in ("listen", "list", "delete-all", "ports") and not args)
        or (command == "send" and len(args) >= 2)
        or (command == "delete" and len(args) == 1 and args[0].isdigit())
    )
    if not valid:
        print_usage()
        sys.exit(1)

    if command == "ports":
        sys.exit(0 if find_modem_port() else 1)

    port = resolve_port()
    if command == "listen":
        print("[SYSTEM] Starting SMS modem service...")
        run_listen_service(port)
        return

    try:
        run_command(port, command, args)
    except ModemError as e:
        print_status(f"❌ {command} failed: {e}", "ERROR")
        sys.exit(1)


if __name__ == '__main__':
    cli()
