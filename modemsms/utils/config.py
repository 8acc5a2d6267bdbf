import os

# Serial settings
# export SERIAL_PORT='/dev/ttyUSB2'  (empty = scan the available ports)
SERIAL_PORT = os.getenv('SERIAL_PORT', '')
SERIAL_BAUDRATE = int(os.getenv('SERIAL_BAUDRATE', '115200'))
SERIAL_TIMEOUT = 1  # seconds, read timeout of the reader thread
LINE_DELIMITER = '\r\n'
RECONNECT_INTERVAL = 10  # seconds

# AT command settings
COMMAND_TIMEOUT = float(os.getenv('COMMAND_TIMEOUT', '30'))  # seconds
REJECT_CALLS = os.getenv('REJECT_CALLS', 'true').lower() == 'true'  # AT+GSMBUSY=1 after every reset

# SMS settings
# Numeric senders with at least this many digits get a leading '+'
SENDER_PREFIX_MIN_LENGTH = int(os.getenv('SENDER_PREFIX_MIN_LENGTH', '10'))
NOTIFICATION_RETRY_LIMIT = 2
NOTIFICATION_RETRY_DELAY = 5  # seconds
EMITTED_CACHE_SIZE = 500
DELETE_AFTER_FORWARD = os.getenv('DELETE_AFTER_FORWARD', 'false').lower() == 'true'

# Telegram settings
# export TELEGRAM_BOT_TOKEN='your_token_here'
# export ADMIN_CHAT_IDS='12345,67890'
TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
admin_ids_str = os.getenv('ADMIN_CHAT_IDS', '')
ADMIN_CHAT_IDS = [int(admin_id.strip()) for admin_id in admin_ids_str.split(',') if admin_id.strip()]
TELEGRAM_TIMEOUT = 10  # seconds
