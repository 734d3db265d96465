"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before any rategate import so the global
settings object is built for tests: in-memory backend, known API keys.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("APP_RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")

import pytest

from rategate.adapters.rate_limit.in_memory import InMemoryBlocker, InMemoryRateLimiter
from rategate.adapters.rate_limit.registry import GroupRegistry
from rategate.services.admission_service import AdmissionService


class FakeTime:
    """Deterministic clock used to test window and expiry logic."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def registry() -> GroupRegistry:
    registry = GroupRegistry()
    registry.register_group("login", 3, 1)
    registry.register_group("admin", 100, 60)
    return registry


@pytest.fixture
def limiter(registry: GroupRegistry, fake_time: FakeTime) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(registry, clock=fake_time.time)


@pytest.fixture
def blocker(fake_time: FakeTime) -> InMemoryBlocker:
    return InMemoryBlocker(max_age_seconds=3600, clock=fake_time.time)


@pytest.fixture
def admission(
    registry: GroupRegistry,
    limiter: InMemoryRateLimiter,
    blocker: InMemoryBlocker,
) -> AdmissionService:
    return AdmissionService(registry=registry, limiter=limiter, blocker=blocker)


@pytest.fixture
def valid_api_key_headers() -> dict[str, str]:
    """Create valid API key headers for authenticated requests."""
    return {"X-API-Key": "test-api-key-123"}
