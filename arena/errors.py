"""Exception hierarchy for Photo Arena."""

from __future__ import annotations


class ArenaError(Exception):
    """Base class for every error raised by the arena core."""


class InsufficientItemsError(ArenaError):
    """Fewer than two active items are available for pairing."""

    def __init__(self, available: int) -> None:
        super().__init__(f"Need at least 2 active items to form a pair, got {available}")
        self.available = available


class UnknownItemError(ArenaError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"Unknown item: {item_id!r}")
        self.item_id = item_id


class ConcurrentUpdateConflict(ArenaError):
    """A rating record changed between read and write.

    The caller should re-fetch both records and replay the whole vote.
    """

    def __init__(self, item_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Item {item_id!r} is at version {actual_version}, expected {expected_version}"
        )
        self.item_id = item_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class PersistenceError(ArenaError):
    """Reading or writing the backing store failed."""


class ComputationCancelled(ArenaError):
    """A deferred ranking computation was superseded by a newer request."""
