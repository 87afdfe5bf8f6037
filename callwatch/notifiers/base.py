"""
Base notifier classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from callwatch.exceptions import EmptySelection

RECIPIENT_SCOPES = ("followers", "all_subscribers", "manual")


@dataclass(frozen=True)
class PostLine:
    """One post as shown in a broadcast."""

    post_id: int
    symbol: str
    company_name: str
    status_label: str
    current_price: Optional[float]
    target_price: Optional[float]
    stop_loss_price: Optional[float]


@dataclass
class NotificationPayload:
    """Broadcast ready for dispatch."""

    title: str
    selected_post_ids: list[int]
    posts: list[PostLine] = field(default_factory=list)
    comment: str = ""
    recipient_scope: str = "followers"


@dataclass
class NotificationResult:
    """Result of a notification attempt."""

    success: bool
    channel: str
    error: Optional[str] = None
    delivered: int = 0


class NotificationDispatcher(ABC):
    """Abstract base class for broadcast transports."""

    channel = "base"

    def send(self, payload: NotificationPayload) -> NotificationResult:
        """
        Send a broadcast.

        Args:
            payload: Broadcast with at least one selected post

        Returns:
            NotificationResult indicating success or failure

        Raises:
            EmptySelection: If no post is selected; nothing is sent
        """
        if not payload.selected_post_ids:
            raise EmptySelection("Select at least one post to broadcast")
        return self._send(payload)

    @abstractmethod
    def _send(self, payload: NotificationPayload) -> NotificationResult:
        pass


class DispatcherFactory:
    """Factory for creating dispatcher instances."""

    @staticmethod
    def create(config: dict[str, Any]) -> NotificationDispatcher:
        """
        Create a dispatcher from configuration.

        Args:
            config: Dispatcher configuration dict

        Returns:
            Appropriate NotificationDispatcher instance

        Raises:
            ValueError: If dispatcher type is unknown
        """
        dispatcher_type = config.get("type")

        if dispatcher_type == "telegram":
            from .telegram import TelegramDispatcher

            return TelegramDispatcher(
                bot_token=config.get("bot_token", ""),
                recipients=config.get("recipients", {}),
                parse_mode=config.get("parse_mode", "Markdown"),
                sender_name=config.get("sender_name", ""),
            )

        else:
            raise ValueError(f"Unknown dispatcher type: {dispatcher_type}")
