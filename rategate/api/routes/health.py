from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from rategate.core.rate_limit import get_admission_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> JSONResponse:
    """Health check endpoint.

    Reports process liveness and whether the shared store answers a PING.
    Used by load balancers and monitoring systems to determine service health.

    Returns:
        JSONResponse: 200 with ``{"status": "ok", "store": "ok"}``, or 503
            with ``"store": "unavailable"`` when Redis does not answer.
    """

    try:
        get_admission_service(request).ping()
    except RedisError as exc:
        logger.warning(
            "health.store_unavailable",
            extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
        )
        return JSONResponse(status_code=503, content={"status": "degraded", "store": "unavailable"})

    return JSONResponse(status_code=200, content={"status": "ok", "store": "ok"})
