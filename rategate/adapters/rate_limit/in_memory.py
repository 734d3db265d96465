"""In-memory rate limiter and blocker (tests and local development).

Notes:
- Per-process only: running multiple workers multiplies the effective limit
  and gives each worker its own block list. Use the Redis backend anywhere
  state must be shared.
- Thread-safe: a lock around shared state gives each operation the same
  all-or-nothing behavior the Redis transaction provides.
- Semantics mirror the Redis backend exactly (same prune bound, same
  weight-as-slots counting, same block pruning), so tests written against
  this backend describe production behavior.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from rategate.adapters.rate_limit.base import (
    LIMITER_EXPIRY_PADDING_SECONDS,
    AbstractBlocker,
    AbstractRateLimiter,
    BlockState,
    blocker_key,
    limiter_key,
    parse_block_member,
)
from rategate.adapters.rate_limit.registry import GroupRegistry


@dataclass
class _ScoredSet:
    """Minimal sorted-set record: member -> score, plus an absolute expiry."""

    members: dict[str, float]
    expires_at: float | None = None

    def remove_up_to(self, score: float) -> None:
        self.members = {m: s for m, s in self.members.items() if s > score}

    def top(self) -> tuple[str, float] | None:
        if not self.members:
            return None
        # Ties resolve like a Redis sorted set: lexicographically last member.
        return max(self.members.items(), key=lambda item: (item[1], item[0]))


class _ExpiringSets:
    """Keyed scored sets with lazy key expiry."""

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._sets: dict[str, _ScoredSet] = {}

    def get(self, key: str) -> _ScoredSet | None:
        record = self._sets.get(key)
        if record is not None and record.expires_at is not None and record.expires_at <= self._clock():
            del self._sets[key]
            return None
        return record

    def get_or_create(self, key: str) -> _ScoredSet:
        record = self.get(key)
        if record is None:
            record = _ScoredSet(members={})
            self._sets[key] = record
        return record

    def delete(self, key: str) -> None:
        self._sets.pop(key, None)


class InMemoryRateLimiter(AbstractRateLimiter):
    """Weighted rolling-window limiter keeping its state in process memory."""

    def __init__(
        self,
        registry: GroupRegistry,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._clock = clock
        self._lock = threading.RLock()
        self._sets = _ExpiringSets(clock)

    def admit(self, key: str, group: str, weight: int = 1) -> int:
        """Record ``weight`` units and return ``max - count``, as ``RedisRateLimiter.admit``.

        Raises:
            ValueError: If weight is negative.
        """
        if weight < 0:
            raise ValueError("weight must be >= 0")

        policy = self._registry.lookup(group)
        if policy.max < weight:
            return policy.max - weight

        now = self._clock()
        now_ms = int(now * 1000)
        store_key = limiter_key(group, key)

        with self._lock:
            record = self._sets.get_or_create(store_key)
            record.remove_up_to(now_ms - policy.window_ms)
            for _ in range(weight):
                record.members[uuid.uuid4().hex] = now_ms
            record.expires_at = now + int(policy.window_seconds) + LIMITER_EXPIRY_PADDING_SECONDS
            count = len(record.members)

        return policy.max - count

    def clear(self, key: str, group: str) -> None:
        with self._lock:
            self._sets.delete(limiter_key(group, key))


class InMemoryBlocker(AbstractBlocker):
    """Absolute-deadline blocker keeping its state in process memory."""

    def __init__(
        self,
        *,
        max_age_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_age_seconds < 1:
            raise ValueError("max_age_seconds must be >= 1")
        self._max_age_seconds = max_age_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._sets = _ExpiringSets(clock)

    def block_until(self, key: str, cause: str, expiry: datetime) -> None:
        """Block ``key`` until ``expiry``. Past deadlines are ignored and never shorten a longer block."""
        score = int(expiry.timestamp())
        now = self._clock()
        if score <= int(now):
            return

        with self._lock:
            record = self._sets.get_or_create(blocker_key(key))
            record.remove_up_to(score)
            record.members[f"{uuid.uuid4().hex}:{cause}"] = score
            record.expires_at = now + self._max_age_seconds

    def state(self, key: str) -> BlockState:
        """Report the record with the latest expiry, unblocked once it has passed."""
        with self._lock:
            record = self._sets.get(blocker_key(key))
            top = record.top() if record is not None else None

        if top is None:
            return BlockState.unblocked()
        member, score = top
        if score <= self._clock():
            return BlockState.unblocked()
        return BlockState(
            expires_at=datetime.fromtimestamp(int(score), tz=timezone.utc),
            cause=parse_block_member(member),
            blocked=True,
        )

    def clean(self, key: str) -> None:
        with self._lock:
            self._sets.delete(blocker_key(key))
