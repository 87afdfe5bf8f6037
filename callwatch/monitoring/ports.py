"""Protocols for the collaborators a batch depends on."""
from datetime import date
from typing import Any, Optional, Protocol

from callwatch.data.fetcher import Quote
from callwatch.database.models import Post


class PriceSource(Protocol):
    """Resolves a (symbol, exchange) pair to its latest daily bar.

    Raises PriceUnavailable when the symbol cannot be priced.
    """

    async def get_quote(
        self,
        symbol: str,
        exchange: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> Quote: ...


class PostStore(Protocol):
    """Post storage with optimistic concurrency on a version field."""

    async def list_open_posts(self, owner_id: str) -> list[Post]: ...

    async def count_closed(self, owner_id: str) -> int: ...

    async def get_post(self, post_id: int) -> Optional[Post]: ...

    async def conditional_update(
        self, post_id: int, expected_version: int, patch: dict[str, Any]
    ) -> int:
        """Apply the patch or raise PersistConflict. Returns the new version."""
        ...


class UsageLedger(Protocol):
    """Current-period price check quota per owner."""

    async def remaining(self, owner_id: str) -> int: ...

    async def consume(self, owner_id: str) -> None:
        """Use one unit, raising QuotaExceeded if none is left."""
        ...
