"""Redis connection factory with a startup liveness probe."""

from __future__ import annotations

import logging

from redis import Redis
from redis.exceptions import RedisError

from rategate.core.config import RedisSettings, settings
from rategate.core.errors import ConfigurationAppError

logger = logging.getLogger(__name__)


def create_redis_client(redis_settings: RedisSettings | None = None) -> Redis:
    """Connect to Redis and verify it answers a PING.

    Args:
        redis_settings: Optional connection settings; defaults to global settings.

    Returns:
        Connected client backed by a bounded connection pool.

    Raises:
        ConfigurationAppError: If Redis cannot be reached. This is fatal to
            startup; the service never runs without its shared store.
    """

    cfg = redis_settings or settings.redis

    overrides: dict[str, object] = {}
    if cfg.password is not None:
        overrides["password"] = cfg.password
    if cfg.db is not None:
        overrides["db"] = cfg.db

    client = Redis.from_url(
        cfg.url,
        decode_responses=True,
        socket_timeout=cfg.socket_timeout_seconds,
        socket_connect_timeout=cfg.socket_connect_timeout_seconds,
        max_connections=cfg.max_connections,
        health_check_interval=cfg.health_check_interval_seconds,
        **overrides,
    )

    try:
        client.ping()
    except RedisError as exc:
        logger.error(
            "redis.connect_failed",
            extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
        )
        client.close()
        raise ConfigurationAppError(
            code="store_unreachable",
            message="Could not connect to Redis at startup",
            details={"hint": "Check REDIS_URL and that the Redis server is running"},
        ) from exc

    logger.info("redis.connected", extra={"max_connections": cfg.max_connections})
    return client
