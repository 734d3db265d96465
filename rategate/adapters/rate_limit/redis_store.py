"""Redis-backed rate limiter and blocker.

Both keep their state in Redis sorted sets so any number of processes share
one view of every key. Each multi-step update runs as a single MULTI/EXEC
transaction: concurrent writers never observe a half-applied batch, and an
aborted round trip applies nothing.

Scores use different units on purpose:
- limiter members are scored in epoch milliseconds (arrival time);
- blocker members are scored in epoch seconds (block expiry).
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from redis import Redis

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
from rategate.utils.hashing import hash_identifier

logger = logging.getLogger(__name__)


class RedisRateLimiter(AbstractRateLimiter):
    """Weighted rolling-window limiter over one sorted set per (group, key).

    Each admitted unit of weight is stored as its own member, so the
    remaining capacity is ``max - ZCOUNT``. A weight of W therefore costs W
    members; requests that can never fit (``weight > max``) are answered
    without touching Redis.
    """

    def __init__(
        self,
        client: Redis,
        registry: GroupRegistry,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the Redis rate limiter.

        Args:
            client: Connected redis-py client shared with the blocker.
            registry: Source of the per-group policies, read on every call.
            clock: Time source function returning UNIX time in seconds.
        """
        self._client = client
        self._registry = registry
        self._clock = clock

    def admit(self, key: str, group: str, weight: int = 1) -> int:
        """Record ``weight`` units for ``key`` and return the capacity left.

        Prunes entries older than the group window, inserts one member per
        unit, refreshes the key expiry and counts the survivors, all in one
        MULTI/EXEC round trip. A weight of 0 only reads current usage.

        Args:
            key: Limited entity (client address, account id, ...).
            group: Traffic group whose policy applies.
            weight: Capacity units to consume.

        Returns:
            ``max - count`` after the insert. Negative means over budget; the
            units were still recorded.

        Raises:
            ValueError: If weight is negative.
            redis.RedisError: If the transaction fails.
        """
        if weight < 0:
            raise ValueError("weight must be >= 0")

        policy = self._registry.lookup(group)
        if policy.max < weight:
            return policy.max - weight

        now_ms = int(self._clock() * 1000)
        store_key = limiter_key(group, key)

        with self._client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(store_key, "-inf", now_ms - policy.window_ms)
            if weight > 0:
                pipe.zadd(store_key, {uuid.uuid4().hex: now_ms for _ in range(weight)})
            pipe.expire(store_key, int(policy.window_seconds) + LIMITER_EXPIRY_PADDING_SECONDS)
            pipe.zcount(store_key, "-inf", "+inf")
            results = pipe.execute()

        count = int(results[-1])
        remaining = policy.max - count
        logger.debug(
            "limiter.admit",
            extra={
                "group": group,
                "key_hash": hash_identifier(key),
                "weight": weight,
                "limit": policy.max,
                "remaining": remaining,
            },
        )
        return remaining

    def clear(self, key: str, group: str) -> None:
        """Drop the whole consumption record of ``key`` in ``group``."""
        self._client.delete(limiter_key(group, key))
        logger.info(
            "limiter.cleared",
            extra={"group": group, "key_hash": hash_identifier(key)},
        )


class RedisBlocker(AbstractBlocker):
    """Absolute-deadline blocker over one sorted set per key.

    A key holds at most one authoritative record: every write prunes members
    scored at or before the new expiry, then inserts the new one. A later
    block therefore replaces earlier ones, while an earlier block never
    shortens a longer one already in place.
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_age_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the Redis blocker.

        Args:
            client: Connected redis-py client.
            max_age_seconds: TTL applied to every block key on write.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If max_age_seconds is below 1.
        """
        if max_age_seconds < 1:
            raise ValueError("max_age_seconds must be >= 1")
        self._client = client
        self._max_age_seconds = max_age_seconds
        self._clock = clock

    def block_until(self, key: str, cause: str, expiry: datetime) -> None:
        """Block ``key`` until ``expiry``, recording ``cause``.

        A deadline that is not in the future changes nothing. Otherwise
        records expiring at or before ``expiry`` are replaced by the new one;
        a record expiring later stays on top.

        Args:
            key: Blocked entity.
            cause: Free-form reason, returned by ``state``.
            expiry: Timezone-aware deadline, truncated to whole seconds.

        Raises:
            redis.RedisError: If the transaction fails.
        """
        score = int(expiry.timestamp())
        if score <= int(self._clock()):
            return

        store_key = blocker_key(key)
        member = f"{uuid.uuid4().hex}:{cause}"
        with self._client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(store_key, "-inf", score)
            pipe.zadd(store_key, {member: score})
            pipe.expire(store_key, self._max_age_seconds)
            pipe.execute()

        logger.info(
            "blocker.blocked",
            extra={
                "key_hash": hash_identifier(key),
                "cause": cause,
                "expires_at": score,
            },
        )

    def state(self, key: str) -> BlockState:
        """Report the active block of ``key``, if any.

        Returns:
            BlockState of the record with the latest expiry, or an unblocked
            state when there is none or it has already passed.

        Raises:
            redis.RedisError: If the read fails.
        """
        entries = self._client.zrange(blocker_key(key), -1, -1, withscores=True)
        if not entries:
            return BlockState.unblocked()

        member, score = entries[0]
        if score <= self._clock():
            return BlockState.unblocked()

        if isinstance(member, bytes):
            member = member.decode("utf-8", errors="replace")
        return BlockState(
            expires_at=datetime.fromtimestamp(int(score), tz=timezone.utc),
            cause=parse_block_member(member),
            blocked=True,
        )

    def clean(self, key: str) -> None:
        """Lift every block on ``key`` immediately."""
        self._client.delete(blocker_key(key))
        logger.info("blocker.cleaned", extra={"key_hash": hash_identifier(key)})
