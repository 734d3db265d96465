"""Tests for the ``limit`` and ``reject_if_blocked`` route dependencies."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from rategate.core.config import settings
from rategate.core.exception_handlers import setup_exception_handlers
from rategate.core.rate_limit import constant_weight, limit, reject_if_blocked
from rategate.services.admission_service import AdmissionService

# TestClient reports this as the client address.
CLIENT_KEY = "ip:testclient"


def _cost_from_query(request: Request) -> int:
    return int(request.query_params.get("cost", "1"))


def _build_app(admission: AdmissionService) -> FastAPI:
    app = FastAPI()
    setup_exception_handlers(app)
    app.state.admission = admission

    @app.get("/login", dependencies=[Depends(reject_if_blocked), Depends(limit("login"))])
    def login() -> dict:
        return {"ok": True}

    @app.get("/weighted", dependencies=[Depends(limit("login", _cost_from_query))])
    def weighted() -> dict:
        return {"ok": True}

    @app.get("/unregistered", dependencies=[Depends(limit("nobody"))])
    def unregistered() -> dict:
        return {"ok": True}

    return app


@pytest.fixture
def client(admission: AdmissionService) -> TestClient:
    return TestClient(_build_app(admission))


class TestLimit:
    def test_counts_down_then_returns_429(self, client: TestClient) -> None:
        remaining = [client.get("/login").headers["X-RateLimit-Remaining"] for _ in range(3)]
        assert remaining == ["2", "1", "0"]

        response = client.get("/login")
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "1"
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert response.headers["X-RateLimit-Remaining"] == "-1"

    def test_recovers_after_window(self, client: TestClient, fake_time) -> None:
        for _ in range(4):
            client.get("/login")

        fake_time.advance(1.1)
        response = client.get("/login")
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "2"

    def test_weight_function_sets_cost(self, client: TestClient) -> None:
        assert client.get("/weighted", params={"cost": 2}).headers["X-RateLimit-Remaining"] == "1"
        assert client.get("/weighted", params={"cost": 2}).status_code == 429

    def test_oversized_weight_rejected_without_recording(self, client: TestClient) -> None:
        assert client.get("/weighted", params={"cost": 10}).status_code == 429
        assert client.get("/login").headers["X-RateLimit-Remaining"] == "2"

    def test_unregistered_group_fails_closed(self, client: TestClient) -> None:
        assert client.get("/unregistered").status_code == 429

    def test_api_key_callers_are_limited_separately(self, client: TestClient) -> None:
        for _ in range(3):
            client.get("/login")

        response = client.get("/login", headers={"X-API-Key": "some-key"})
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "2"

    def test_disabled_limiting_skips_checks(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_enabled", False)

        responses = [client.get("/unregistered") for _ in range(3)]
        assert all(r.status_code == 200 for r in responses)

    def test_headers_can_be_disabled(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_include_headers", False)

        assert "X-RateLimit-Remaining" not in client.get("/login").headers

    def test_negative_constant_weight_rejected(self) -> None:
        with pytest.raises(ValueError):
            constant_weight(-1)


class TestStoreFailures:
    @pytest.fixture
    def broken_admission(self, registry) -> AdmissionService:
        limiter = MagicMock()
        limiter.admit.side_effect = RedisConnectionError("down")
        blocker = MagicMock()
        blocker.state.side_effect = RedisConnectionError("down")
        return AdmissionService(registry=registry, limiter=limiter, blocker=blocker)

    def test_fail_open_lets_request_through(self, broken_admission: AdmissionService) -> None:
        client = TestClient(_build_app(broken_admission))

        response = client.get("/login")
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_fail_open_omits_header_when_headers_disabled(
        self,
        broken_admission: AdmissionService,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_include_headers", False)
        client = TestClient(_build_app(broken_admission))

        response = client.get("/login")
        assert response.status_code == 200
        assert "X-RateLimit-Remaining" not in response.headers

    def test_fail_closed_returns_503(
        self,
        broken_admission: AdmissionService,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_fail_open", False)
        client = TestClient(_build_app(broken_admission))

        response = client.get("/login")
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "store_unavailable"
        assert response.headers["Retry-After"] == "1"


class TestRejectIfBlocked:
    def test_blocked_caller_gets_403(self, client: TestClient, admission: AdmissionService, fake_time) -> None:
        expiry = datetime.fromtimestamp(fake_time.time() + 30, tz=timezone.utc)
        admission.block_until(CLIENT_KEY, "abuse", expiry)

        response = client.get("/login")
        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["cause"] == "abuse"
        assert detail["blocked_until"] == expiry.isoformat()
        assert "Retry-After" in response.headers

    def test_block_does_not_consume_capacity(self, client: TestClient, admission: AdmissionService, fake_time) -> None:
        admission.block_until(CLIENT_KEY, "abuse", datetime.fromtimestamp(fake_time.time() + 30, tz=timezone.utc))
        client.get("/login")
        admission.unblock(CLIENT_KEY)

        assert client.get("/login").headers["X-RateLimit-Remaining"] == "2"

    def test_unblocked_after_expiry(self, client: TestClient, admission: AdmissionService, fake_time) -> None:
        admission.block_until(CLIENT_KEY, "abuse", datetime.fromtimestamp(fake_time.time() + 10, tz=timezone.utc))
        assert client.get("/login").status_code == 403

        fake_time.advance(11)
        assert client.get("/login").status_code == 200
