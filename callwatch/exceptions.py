"""
Exceptions raised across CallWatch.
"""


class CallWatchError(Exception):
    """Base exception for CallWatch errors."""

    pass


class QuotaExceeded(CallWatchError):
    """Raised when an owner has no price checks left in the current period."""

    def __init__(self, owner_id: str, limit: int = 0):
        super().__init__(f"Price check quota exceeded for owner {owner_id}")
        self.owner_id = owner_id
        self.limit = limit


class AlreadyRunning(CallWatchError):
    """Raised when a batch is already in flight for the same owner."""

    def __init__(self, owner_id: str):
        super().__init__(f"A price check is already running for owner {owner_id}")
        self.owner_id = owner_id


class PriceUnavailable(CallWatchError):
    """Raised when a symbol cannot be priced."""

    def __init__(self, symbol: str, reason: str = "price unavailable"):
        super().__init__(f"{symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


class PersistConflict(CallWatchError):
    """Raised when a conditional update finds the stored post has moved on."""

    def __init__(self, post_id: int, expected_version: int):
        super().__init__(
            f"Post {post_id} changed since version {expected_version}"
        )
        self.post_id = post_id
        self.expected_version = expected_version


class EmptySelection(CallWatchError, ValueError):
    """Raised when a notification is requested with no posts selected."""

    pass
