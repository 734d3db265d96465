"""Admission dependencies for FastAPI routes.

This module wires the admission service into the HTTP layer.

Design goals:
- Minimal coupling: routes declare ``Depends(limit("login"))`` or
  ``Depends(reject_if_blocked)`` and nothing else.
- No module-level limiter: the service lives on ``app.state.admission`` and
  is resolved per request, so tests can build apps with their own backends.
- Explicit failure policy: a store outage either lets requests through
  (fail open, the default) or rejects them with 503, per settings.

Keying strategy:
- Requests carrying an API key are limited per (hashed) key.
- Otherwise, fall back to the client IP.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Annotated, Callable

from fastapi import Header, HTTPException, Request, Response, status
from redis.exceptions import RedisError

from rategate.core.config import settings
from rategate.core.errors import StoreAppError
from rategate.services.admission_service import AdmissionService
from rategate.utils.hashing import hash_identifier

logger = logging.getLogger(__name__)

WeightFunc = Callable[[Request], int]


def constant_weight(weight: int) -> WeightFunc:
    """Return a weight function charging ``weight`` units for every request."""

    if weight < 0:
        raise ValueError("weight must be >= 0")

    def _weight(request: Request) -> int:
        return weight

    return _weight


def get_admission_service(request: Request) -> AdmissionService:
    """Resolve the admission service attached by the app factory."""

    return request.app.state.admission


def _build_client_key(request: Request, x_api_key: str | None) -> str:
    """Build the limiter/blocker key for the current request.

    Args:
        request: FastAPI request.
        x_api_key: API key value from the X-API-Key header.

    Returns:
        str: Namespaced key. API keys are hashed so raw secrets never end up
            in store key names.
    """

    if x_api_key:
        return f"api_key:{hash_identifier(x_api_key)}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def _store_failure(event: str, exc: RedisError, *, group: str | None = None) -> None:
    """Log a store failure and apply the configured fail-open/closed policy.

    Raises:
        StoreAppError: When fail-closed is configured.
    """

    logger.error(
        event,
        extra={
            "group": group,
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "fail_open": settings.app.rate_limit_fail_open,
        },
    )
    if settings.app.rate_limit_fail_open:
        return
    raise StoreAppError(
        code="store_unavailable",
        message="Admission check failed. Try again later.",
        details={"retry_after": 1.0},
    ) from exc


def limit(group: str, weight: int | WeightFunc = 1) -> Callable[..., None]:
    """Build a dependency that charges ``weight`` units of ``group`` capacity.

    Usage:
        @router.post("/login", dependencies=[Depends(limit("login"))])
        @router.post("/batch", dependencies=[Depends(limit("batch", lambda r: 5))])

    Args:
        group: Registered traffic group. Unregistered groups reject everything.
        weight: Fixed cost, or a function computing the cost from the request.

    Returns:
        A FastAPI dependency raising HTTP 429 when the caller is over budget.
    """

    weight_func = weight if callable(weight) else constant_weight(weight)

    def enforce_rate_limit(
        request: Request,
        response: Response,
        x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    ) -> None:
        if not settings.app.rate_limit_enabled:
            return

        admission = get_admission_service(request)
        key = _build_client_key(request, x_api_key)
        cost = weight_func(request)

        try:
            remaining = admission.remaining(key, group, cost)
        except RedisError as exc:
            _store_failure("rate_limit.check_failed", exc, group=group)
            if settings.app.rate_limit_include_headers:
                response.headers["X-RateLimit-Remaining"] = "0"
            return

        key_hash = hash_identifier(key)
        if remaining >= 0:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "group": group,
                    "key_hash": key_hash,
                    "weight": cost,
                    "remaining": remaining,
                },
            )
            if settings.app.rate_limit_include_headers:
                response.headers["X-RateLimit-Remaining"] = str(remaining)
            return

        policy = admission.registry.lookup(group)
        retry_after = max(1, int(math.ceil(policy.window_seconds)))
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "group": group,
                "key_hash": key_hash,
                "weight": cost,
                "limit": policy.max,
                "remaining": remaining,
                "window_s": policy.window_seconds,
            },
        )

        headers: dict[str, str] = {}
        if settings.app.rate_limit_include_headers:
            headers["Retry-After"] = str(retry_after)
            headers["X-RateLimit-Limit"] = str(policy.max)
            headers["X-RateLimit-Remaining"] = str(remaining)

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again later.",
            headers=headers or None,
        )

    return enforce_rate_limit


def reject_if_blocked(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency rejecting callers under an active block.

    Raises:
        HTTPException: 403 Forbidden while the caller key is blocked.
    """

    if not settings.app.rate_limit_enabled:
        return

    admission = get_admission_service(request)
    key = _build_client_key(request, x_api_key)

    try:
        state = admission.block_state(key)
    except RedisError as exc:
        _store_failure("blocker.check_failed", exc)
        return

    if not state.blocked or state.expires_at is None:
        return

    retry_after = max(1, int(math.ceil(state.expires_at.timestamp() - time.time())))
    logger.warning(
        "blocker.rejected",
        extra={
            "key_hash": hash_identifier(key),
            "cause": state.cause,
            "retry_after_s": retry_after,
        },
    )

    headers: dict[str, str] = {}
    if settings.app.rate_limit_include_headers:
        headers["Retry-After"] = str(retry_after)

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "message": "Access temporarily blocked.",
            "cause": state.cause,
            "blocked_until": state.expires_at.isoformat(),
        },
        headers=headers or None,
    )
