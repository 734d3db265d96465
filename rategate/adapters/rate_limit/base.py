"""Rate limiter and blocker interfaces.

The API should depend on these abstractions (not the concrete implementations)
so the backing store can be swapped (Redis in production, in-memory for tests
and local development) without touching callers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

LIMITER_KEY_PREFIX = "limiter"
# Extra retention on top of the window so idle keys still expire on their own.
LIMITER_EXPIRY_PADDING_SECONDS = 60


def limiter_key(group: str, key: str) -> str:
    """Return the store key holding the consumption record of (group, key)."""
    return f"{LIMITER_KEY_PREFIX}:{group}:{key}"


def blocker_key(key: str) -> str:
    """Return the store key holding the block record of ``key``."""
    return f"{LIMITER_KEY_PREFIX}:blocker:{key}"


def parse_block_member(member: str) -> str:
    """Extract the cause from a ``"<id>:<cause>"`` block member.

    Malformed members (no separator) yield an empty cause.
    """
    _, sep, cause = member.partition(":")
    return cause if sep else ""


@dataclass(frozen=True)
class BlockState:
    """Current block status of a key.

    Attributes:
        expires_at: UTC time the block lifts, or None when not blocked.
        cause: Reason recorded with the block ("" when not blocked).
        blocked: Whether the key is blocked right now.
    """

    expires_at: datetime | None
    cause: str
    blocked: bool

    @classmethod
    def unblocked(cls) -> "BlockState":
        return cls(expires_at=None, cause="", blocked=False)


class AbstractRateLimiter(ABC):
    """Interface for weighted rolling-window rate limiters."""

    @abstractmethod
    def admit(self, key: str, group: str, weight: int = 1) -> int:
        """Consume ``weight`` units of ``group`` capacity for ``key``.

        Args:
            key: Entity being limited (e.g., client address, account id).
            group: Traffic class whose policy applies.
            weight: Units to consume; 0 only reads the current usage.

        Returns:
            Remaining capacity in the window after this attempt. A negative
            value means the caller is over budget and should reject.

        Raises:
            ValueError: If weight is negative.
            redis.RedisError: If the backing store fails (Redis backend).
        """
        raise NotImplementedError

    @abstractmethod
    def clear(self, key: str, group: str) -> None:
        """Drop all recorded consumption of ``key`` in ``group``."""
        raise NotImplementedError


class AbstractBlocker(ABC):
    """Interface for explicit, time-bounded key suspension."""

    @abstractmethod
    def block_until(self, key: str, cause: str, expiry: datetime) -> None:
        """Block ``key`` until ``expiry``; no-op when expiry is not in the future."""
        raise NotImplementedError

    @abstractmethod
    def state(self, key: str) -> BlockState:
        """Return the authoritative block state of ``key``."""
        raise NotImplementedError

    @abstractmethod
    def clean(self, key: str) -> None:
        """Remove any block record for ``key``."""
        raise NotImplementedError
