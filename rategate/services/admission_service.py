"""Admission service composing group policies, the limiter and the blocker.

The HTTP layer talks only to this service. It carries no algorithm of its
own: policies come from the registry, counting from the limiter and
suspensions from the blocker.
"""

from __future__ import annotations

import logging
from datetime import datetime

from redis import Redis

from rategate.adapters.rate_limit.base import AbstractBlocker, AbstractRateLimiter, BlockState
from rategate.adapters.rate_limit.registry import GroupPolicy, GroupRegistry
from rategate.utils.hashing import hash_identifier

logger = logging.getLogger(__name__)


class AdmissionService:
    """Façade over the limiter and blocker for one process.

    Attributes:
        registry: Group policies consulted on every admission.
        limiter: Rolling-window rate limiter.
        blocker: Cooldown blocker.
    """

    def __init__(
        self,
        *,
        registry: GroupRegistry,
        limiter: AbstractRateLimiter,
        blocker: AbstractBlocker,
        redis_client: Redis | None = None,
    ) -> None:
        self.registry = registry
        self.limiter = limiter
        self.blocker = blocker
        self._redis = redis_client

    def register_group(self, name: str, max: int, window_seconds: float) -> GroupPolicy:
        policy = self.registry.register_group(name, max, window_seconds)
        logger.info(
            "groups.registered",
            extra={"group": name, "limit": max, "window_s": window_seconds},
        )
        return policy

    def remaining(self, key: str, group: str, weight: int = 1) -> int:
        """Consume ``weight`` and return what is left; negative means reject."""
        return self.limiter.admit(key, group, weight)

    def clear(self, key: str, group: str) -> None:
        self.limiter.clear(key, group)

    def block_until(self, key: str, cause: str, expiry: datetime) -> None:
        self.blocker.block_until(key, cause, expiry)

    def block_state(self, key: str) -> BlockState:
        return self.blocker.state(key)

    def unblock(self, key: str) -> None:
        self.blocker.clean(key)
        logger.info("blocker.unblocked", extra={"key_hash": hash_identifier(key)})

    def ping(self) -> bool:
        """Check the shared store; always true for the in-memory backend.

        Raises:
            redis.RedisError: If the store does not answer.
        """
        if self._redis is None:
            return True
        return bool(self._redis.ping())

    def close(self) -> None:
        if self._redis is not None:
            self._redis.close()
