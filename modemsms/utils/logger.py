import logging
import re
from datetime import datetime
import os

HEX_PAYLOAD = re.compile(r'^[0-9A-Fa-f]{16,}$')
CENSORED = '[CENSORED OUTGOING MESSAGE]'


class LogFilter(logging.Filter):
    def __init__(self):
        super().__init__()
        self.last_poll_log = 0  # Timestamp of last poll log
        self.poll_log_interval = 300  # Only show poll logs every 5 minutes

    def filter(self, record):
        # Always show errors and critical messages
        if record.levelno >= logging.ERROR:
            return True

        # Filter repetitive listing/notification chatter
        msg = str(record.msg).lower()
        is_poll_msg = any(x in msg for x in ['polling', 'listing messages', 'no new messages'])
        if is_poll_msg:
            current_time = datetime.now().timestamp()
            if current_time - self.last_poll_log > self.poll_log_interval:
                self.last_poll_log = current_time
                return True
            return False

        return True


def setup_logger(name):
    """Set up and return a logger with console output and filtered verbose messages"""
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if os.getenv('SMS_DEBUG') == 'true' else logging.INFO)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(formatter)

        # Add filter to suppress frequent polling messages
        console_handler.addFilter(LogFilter())

        logger.addHandler(console_handler)

    return logger


traffic_logger = setup_logger('at_traffic')


def log_traffic(direction, data):
    """Mirror link traffic at debug level ('<<' outgoing, '>>' incoming)"""
    if os.getenv('SMS_DEBUG') != 'true':
        return
    if isinstance(data, bytes):
        data = data.decode(errors='ignore')
    text = data.replace('\r\n', '\n').replace('\r', '').replace('\x1a', '')
    # PDU payloads carry the message body and recipient
    if direction == '<<' and HEX_PAYLOAD.match(text.strip()):
        text = CENSORED
    traffic_logger.debug(f"{direction} {text.rstrip()}")


def print_status(msg, msg_type="INFO"):
    """Print filtered status messages to terminal"""
    if msg_type == "DEBUG" and os.getenv('SMS_DEBUG') != 'true':
        return

    timestamp = datetime.now().strftime('%H:%M:%S')

    type_config = {
        "SUCCESS": {"icon": "[✓]", "prefix": "\033[92m"},  # Green
        "ERROR": {"icon": "[✗]", "prefix": "\033[91m"},    # Red
        "WARN": {"icon": "[!]", "prefix": "\033[93m"},     # Yellow
        "INFO": {"icon": "[i]", "prefix": ""},
        "DEBUG": {"icon": "[D]", "prefix": "\033[90m"}     # Gray
    }.get(msg_type, {"icon": "[·]", "prefix": ""})

    formatted_msg = f"[{timestamp}] {type_config['icon']} {type_config['prefix']}{msg}\033[0m"

    # Handle Unicode encoding issues on Windows
    try:
        print(formatted_msg)
    except UnicodeEncodeError:
        safe_msg = f"[{timestamp}] {type_config['icon']} {msg}"
        print(safe_msg.encode('ascii', 'replace').decode('ascii'))
