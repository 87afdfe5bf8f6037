"""
Telegram Bot API broadcast dispatcher.
"""

import logging
import time
from datetime import datetime
from typing import Any, Optional

import requests

from .base import NotificationDispatcher, NotificationPayload, NotificationResult

logger = logging.getLogger(__name__)


def _fmt_price(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.2f}"


class TelegramDispatcher(NotificationDispatcher):
    """Sends broadcasts to Telegram chats through a bot."""

    channel = "telegram"
    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    STATUS_EMOJI = {
        "Target Reached": "🎯",
        "Stop Loss Triggered": "🛑",
        "Closed": "🔒",
    }

    def __init__(
        self,
        bot_token: str,
        recipients: dict[str, list[str]],
        parse_mode: str = "Markdown",
        sender_name: str = "",
    ):
        """
        Initialize Telegram dispatcher.

        Args:
            bot_token: Bot API token
            recipients: Recipient scope -> chat ids
            parse_mode: Telegram parse mode for the message text
            sender_name: Shown in the message footer when set
        """
        self.bot_token = bot_token
        self.recipients = recipients
        self.parse_mode = parse_mode
        self.sender_name = sender_name

    def _send(self, payload: NotificationPayload) -> NotificationResult:
        """Send the broadcast to every chat in the payload's scope."""
        chat_ids = self.recipients.get(payload.recipient_scope, [])
        if not chat_ids:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"No recipients for scope '{payload.recipient_scope}'",
            )

        text = self.format_message(payload)
        delivered = 0
        errors = []
        for chat_id in chat_ids:
            try:
                response = self._send_message(chat_id, text)
                if response.ok:
                    delivered += 1
                else:
                    errors.append(f"{chat_id}: HTTP {response.status_code}: {response.text}")
            except requests.exceptions.RequestException as e:
                errors.append(f"{chat_id}: {e}")

        for error in errors:
            logger.warning(f"Telegram delivery failed for {error}")

        return NotificationResult(
            success=not errors,
            channel=self.channel,
            error="; ".join(errors) or None,
            delivered=delivered,
        )

    def _send_message(self, chat_id: str, text: str) -> requests.Response:
        """Send one message with rate limit handling."""
        url = self.API_URL.format(token=self.bot_token)
        body: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": self.parse_mode,
            "disable_web_page_preview": True,
        }
        response = requests.post(url, json=body, timeout=10)

        # Handle rate limiting
        if response.status_code == 429:
            retry_after = self._retry_after(response)
            time.sleep(retry_after)
            response = requests.post(url, json=body, timeout=10)

        return response

    @staticmethod
    def _retry_after(response: requests.Response) -> float:
        try:
            return float(response.json().get("parameters", {}).get("retry_after", 1))
        except (ValueError, TypeError, AttributeError):
            return float(response.headers.get("Retry-After", "1"))

    def format_message(self, payload: NotificationPayload) -> str:
        """Render the broadcast text."""
        message = f"📢 *{payload.title}*\n\n"

        if payload.comment:
            message += f"{payload.comment}\n\n"

        if payload.posts:
            message += "📊 *Selected posts:*\n\n"
            for index, post in enumerate(payload.posts, start=1):
                emoji = self.STATUS_EMOJI.get(post.status_label, "📈")
                message += f"{index}. *{post.symbol}* - {post.company_name}\n"
                message += f"{emoji} {post.status_label}\n"
                message += f"💰 Current price: {_fmt_price(post.current_price)}\n"
                message += f"🎯 Target: {_fmt_price(post.target_price)}\n"
                message += f"🛑 Stop loss: {_fmt_price(post.stop_loss_price)}\n\n"

        if self.sender_name:
            message += f"\n👤 From: *{self.sender_name}*"
        message += f"\n🕒 {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"

        return message
