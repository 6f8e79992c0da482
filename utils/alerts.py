# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Operator alerts via the Telegram Bot API
"""
import logging
from typing import Optional

import requests

import config

logger = logging.getLogger(__name__)

MAX_DETAIL_LENGTH = 3000


class AdminAlerter:
    """Sends operator alerts to a Telegram chat. Never raises."""

    def __init__(self, bot_token: Optional[str] = None, chat_id: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.bot_token = config.TELEGRAM_BOT_TOKEN if bot_token is None else bot_token
        self.chat_id = config.TELEGRAM_CHAT_ID if chat_id is None else chat_id
        self.session = session or requests.Session()

    def send(self, title: str, message: str) -> bool:
        """
        Send one alert

        Args:
            title: Short headline
            message: Details (truncated to fit a Telegram message)

        Returns:
            True if Telegram accepted the message
        """
        if not self.bot_token or not self.chat_id:
            logger.error(f"Alert not sent (no bot token or chat id): {title}")
            return False

        text = f"🚨 *SCHEDULE SYNC ALERT* 🚨\n\n*{title}*\n\n```\n{message[:MAX_DETAIL_LENGTH]}\n```"
        url = f"{config.TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage"

        try:
            response = self.session.post(url, json={
                'chat_id': self.chat_id,
                'text': text,
                'parse_mode': 'Markdown',
            }, timeout=config.REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ Failed to send alert '{title}': {e}")
            return False

        if response.status_code != 200:
            logger.error(f"❌ Telegram rejected alert '{title}': {response.status_code} - {response.text}")
            return False

        logger.info(f"✅ Alert sent: {title}")
        return True
