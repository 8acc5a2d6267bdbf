"""
Telegram notifications for received SMS (Bot HTTP API)
"""
import html

import requests

from modemsms.utils.config import ADMIN_CHAT_IDS, TELEGRAM_BOT_TOKEN, TELEGRAM_TIMEOUT
from modemsms.utils.logger import print_status


def format_notification(message):
    timestamp = message.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC') if message.timestamp else 'unknown'
    return (
        f"📨 <b>New SMS</b>\n\n"
        f"📞 <b>From:</b> <code>{html.escape(message.sender)}</code>\n"
        f"📅 <b>Date:</b> {timestamp}\n"
        f"🗂 <b>Slots:</b> {', '.join(str(i) for i in message.part_indexes)}\n\n"
        f"📄 <b>Content:</b>\n"
        f"<code>{html.escape(message.text)}</code>"
    )


def notify_admins_new_sms(message, token=None, chat_ids=None):
    """Send message to every admin chat; True if at least one post succeeded"""
    token = token if token is not None else TELEGRAM_BOT_TOKEN
    chat_ids = chat_ids if chat_ids is not None else ADMIN_CHAT_IDS
    if not token or not chat_ids:
        return False

    base_url = f"https://api.telegram.org/bot{token}"
    notification_text = format_notification(message)
    delivered = 0

    for admin_id in chat_ids:
        try:
            response = requests.post(f"{base_url}/sendMessage", data={
                'chat_id': admin_id,
                'text': notification_text,
                'parse_mode': 'HTML'
            }, timeout=TELEGRAM_TIMEOUT)
            response.raise_for_status()
            delivered += 1
        except requests.RequestException as e:
            print_status(f"Telegram notification to {admin_id} failed: {e}", "ERROR")

    return delivered > 0
