"""Administrative routes for group policies, limiter counters and blocks.

Every route requires an API key, rejects blocked callers and is itself
rate limited under the ``admin`` group. Handlers are plain functions so
the blocking Redis calls run in the threadpool, not on the event loop.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request, status
from redis.exceptions import RedisError

from rategate.core.auth import verify_api_key
from rategate.core.config import ADMIN_GROUP
from rategate.core.errors import StoreAppError
from rategate.core.rate_limit import get_admission_service, limit, reject_if_blocked
from rategate.schemas.admission import (
    AdmitRequest,
    BlockRequest,
    BlockStateResponse,
    GroupPolicyRequest,
    GroupPolicyResponse,
    RemainingResponse,
)
from rategate.services.admission_service import AdmissionService

router = APIRouter(
    tags=["Admission"],
    dependencies=[Depends(verify_api_key), Depends(reject_if_blocked), Depends(limit(ADMIN_GROUP))],
)


def _store_error(exc: RedisError) -> StoreAppError:
    return StoreAppError(
        code="store_unavailable",
        message="The shared store could not complete the operation",
        details={"context": {"error_type": type(exc).__name__}},
    )


def _admission(request: Request) -> AdmissionService:
    return get_admission_service(request)


@router.get("/groups", response_model=list[GroupPolicyResponse])
def list_groups(admission: AdmissionService = Depends(_admission)) -> list[GroupPolicyResponse]:
    """List registered group policies."""
    return [
        GroupPolicyResponse(name=p.name, max=p.max, window_seconds=p.window_seconds)
        for p in admission.registry.groups()
    ]


@router.put("/groups/{name}", response_model=GroupPolicyResponse)
def register_group(
    name: str,
    body: GroupPolicyRequest,
    admission: AdmissionService = Depends(_admission),
) -> GroupPolicyResponse:
    """Register or replace the policy of a group.

    Applies to this process only; other processes keep the policy they were
    configured with.
    """
    policy = admission.register_group(name, body.max, body.window_seconds)
    return GroupPolicyResponse(name=policy.name, max=policy.max, window_seconds=policy.window_seconds)


@router.get("/limits/{group}/{key}", response_model=RemainingResponse)
def peek_remaining(
    group: str,
    key: str,
    admission: AdmissionService = Depends(_admission),
) -> RemainingResponse:
    """Report remaining capacity without consuming any (weight 0)."""
    try:
        remaining = admission.remaining(key, group, 0)
    except RedisError as exc:
        raise _store_error(exc) from exc
    return RemainingResponse(group=group, key=key, remaining=remaining, allowed=remaining >= 0)


@router.post("/limits/{group}/{key}", response_model=RemainingResponse)
def admit(
    group: str,
    key: str,
    body: AdmitRequest,
    admission: AdmissionService = Depends(_admission),
) -> RemainingResponse:
    """Consume capacity on behalf of ``key`` and report what is left."""
    try:
        remaining = admission.remaining(key, group, body.weight)
    except RedisError as exc:
        raise _store_error(exc) from exc
    return RemainingResponse(group=group, key=key, remaining=remaining, allowed=remaining >= 0)


@router.delete("/limits/{group}/{key}", status_code=status.HTTP_204_NO_CONTENT)
def clear_limit(
    group: str,
    key: str,
    admission: AdmissionService = Depends(_admission),
) -> None:
    """Reset the consumption record of ``key`` in ``group``."""
    try:
        admission.clear(key, group)
    except RedisError as exc:
        raise _store_error(exc) from exc


@router.get("/blocks/{key}", response_model=BlockStateResponse)
def get_block(key: str, admission: AdmissionService = Depends(_admission)) -> BlockStateResponse:
    try:
        state = admission.block_state(key)
    except RedisError as exc:
        raise _store_error(exc) from exc
    return BlockStateResponse(key=key, blocked=state.blocked, cause=state.cause, expires_at=state.expires_at)


@router.put("/blocks/{key}", response_model=BlockStateResponse)
def block_key(
    key: str,
    body: BlockRequest,
    admission: AdmissionService = Depends(_admission),
) -> BlockStateResponse:
    """Block ``key`` until the given time and return the resulting state.

    A deadline in the past changes nothing. A deadline earlier than an
    existing block leaves the longer block in force.
    """
    if body.expires_at is not None:
        expiry = body.expires_at
    else:
        expiry = datetime.now(timezone.utc) + timedelta(seconds=body.duration_seconds or 0)

    try:
        admission.block_until(key, body.cause, expiry)
        state = admission.block_state(key)
    except RedisError as exc:
        raise _store_error(exc) from exc
    return BlockStateResponse(key=key, blocked=state.blocked, cause=state.cause, expires_at=state.expires_at)


@router.delete("/blocks/{key}", status_code=status.HTTP_204_NO_CONTENT)
def unblock_key(key: str, admission: AdmissionService = Depends(_admission)) -> None:
    try:
        admission.unblock(key)
    except RedisError as exc:
        raise _store_error(exc) from exc
