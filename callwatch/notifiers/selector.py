"""
Turns a batch result into an editable broadcast selection.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from callwatch.exceptions import EmptySelection
from callwatch.monitoring.results import BatchResult
from callwatch.rules.engine import PostResult
from .base import RECIPIENT_SCOPES, NotificationPayload, PostLine

DEFAULT_TITLE = "Price Check Update"


@dataclass
class NotificationSelection:
    """Caller-held selection over the posts of one batch."""

    title: str
    lines: list[PostLine]
    changed_ids: list[int]
    selected_ids: list[int] = field(default_factory=list)

    @property
    def available_ids(self) -> list[int]:
        return [line.post_id for line in self.lines]

    def include(self, post_id: int) -> None:
        if post_id not in self.available_ids:
            raise KeyError(f"Post {post_id} is not part of this batch")
        if post_id not in self.selected_ids:
            self.selected_ids.append(post_id)

    def exclude(self, post_id: int) -> None:
        if post_id in self.selected_ids:
            self.selected_ids.remove(post_id)

    def toggle(self, post_id: int) -> None:
        if post_id in self.selected_ids:
            self.exclude(post_id)
        else:
            self.include(post_id)

    def select_changed(self) -> None:
        self.selected_ids = list(self.changed_ids)

    def clear(self) -> None:
        self.selected_ids = []

    def to_payload(
        self,
        comment: str = "",
        recipient_scope: str = "followers",
        title: Optional[str] = None,
    ) -> NotificationPayload:
        """
        Build the dispatch payload for the selected posts.

        Raises:
            EmptySelection: If nothing is selected
            ValueError: If the recipient scope is unknown
        """
        if not self.selected_ids:
            raise EmptySelection("Select at least one post to broadcast")
        if recipient_scope not in RECIPIENT_SCOPES:
            raise ValueError(f"Unknown recipient scope: {recipient_scope}")

        selected = [line for line in self.lines if line.post_id in self.selected_ids]
        return NotificationPayload(
            title=title or self.title,
            comment=comment,
            selected_post_ids=[line.post_id for line in selected],
            posts=selected,
            recipient_scope=recipient_scope,
        )


class NotificationSelector:
    """Projects batch results into broadcast selections."""

    def select(self, result: BatchResult) -> NotificationSelection:
        """
        Build a selection where posts whose lifecycle flags changed are
        selected by default. Price-only updates are listed but unselected.
        """
        lines = [self._to_line(r) for r in result.results if r.post_id is not None]
        changed_ids = [r.post_id for r in result.changed]
        return NotificationSelection(
            title=self.title_for(len(changed_ids), len(lines)),
            lines=lines,
            changed_ids=changed_ids,
            selected_ids=list(changed_ids),
        )

    def apply_overrides(
        self,
        selection: NotificationSelection,
        include: Iterable[int] = (),
        exclude: Iterable[int] = (),
    ) -> NotificationSelection:
        for post_id in include:
            selection.include(post_id)
        for post_id in exclude:
            selection.exclude(post_id)
        return selection

    @staticmethod
    def title_for(changed: int, total: int) -> str:
        return f"{DEFAULT_TITLE}: {changed}/{total} posts changed"

    @staticmethod
    def _to_line(result: PostResult) -> PostLine:
        return PostLine(
            post_id=result.post_id,
            symbol=result.symbol,
            company_name=result.company_name,
            status_label=result.status_label,
            current_price=result.current_price,
            target_price=result.target_price,
            stop_loss_price=result.stop_loss_price,
        )
