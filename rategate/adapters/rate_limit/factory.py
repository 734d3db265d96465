"""Factory for the limiter/blocker pair selected by configuration."""

from __future__ import annotations

import logging

from redis import Redis

from rategate.adapters.rate_limit.base import AbstractBlocker, AbstractRateLimiter
from rategate.adapters.rate_limit.in_memory import InMemoryBlocker, InMemoryRateLimiter
from rategate.adapters.rate_limit.redis_store import RedisBlocker, RedisRateLimiter
from rategate.adapters.rate_limit.registry import GroupPolicy, GroupRegistry
from rategate.core.config import ADMIN_GROUP, DEFAULT_ADMIN_POLICY, AppSettings, settings
from rategate.core.errors import ConfigurationAppError
from rategate.core.redis_client import create_redis_client

logger = logging.getLogger(__name__)


def build_group_registry(app_settings: AppSettings | None = None) -> GroupRegistry:
    """Create a registry pre-loaded with the configured group policies.

    The admin API is itself limited under ``ADMIN_GROUP``. A configured
    group list that omits it gets the built-in admin policy, otherwise the
    zero policy would reject every admin request.
    """

    cfg = app_settings or settings.app
    groups = dict(cfg.rate_limit_groups)
    if ADMIN_GROUP not in groups:
        groups[ADMIN_GROUP] = DEFAULT_ADMIN_POLICY
        logger.warning(
            "rate_limit.admin_group_defaulted",
            extra={
                "group": ADMIN_GROUP,
                "limit": groups[ADMIN_GROUP].max,
                "window_s": groups[ADMIN_GROUP].window_seconds,
            },
        )

    return GroupRegistry(
        [
            GroupPolicy(name=name, max=policy.max, window_seconds=policy.window_seconds)
            for name, policy in groups.items()
        ]
    )


def create_rate_limit_backend(
    registry: GroupRegistry,
    *,
    redis_client: Redis | None = None,
    app_settings: AppSettings | None = None,
) -> tuple[AbstractRateLimiter, AbstractBlocker, Redis | None]:
    """Factory function to instantiate the limiter and blocker.

    Reads ``rate_limit_backend`` from settings and routes to the matching
    implementation. For the Redis backend a client is created (and probed)
    unless one is supplied.

    Returns:
        Tuple of (limiter, blocker, redis client or None for in-memory).

    Raises:
        ConfigurationAppError: Unknown backend, or Redis unreachable.
    """

    cfg = app_settings or settings.app
    backend = cfg.rate_limit_backend.lower()

    if backend == "redis":
        client = redis_client or create_redis_client()
        return (
            RedisRateLimiter(client, registry),
            RedisBlocker(client, max_age_seconds=cfg.block_max_age_seconds),
            client,
        )

    if backend == "memory":
        return (
            InMemoryRateLimiter(registry),
            InMemoryBlocker(max_age_seconds=cfg.block_max_age_seconds),
            None,
        )

    raise ConfigurationAppError(
        code="unknown_rate_limit_backend",
        message=(
            f"Unknown rate limit backend: '{backend}'. Supported backends: redis, memory"
        ),
        details={"backend": backend},
    )
