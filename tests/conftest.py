"""Shared fixtures for gateway tests."""

from unittest.mock import MagicMock

import pytest

from africom_gateway.config import RateLimitConfig
from africom_gateway.providers import ProviderRegistry
from africom_gateway.rate_limiter import RateLimiter
from africom_gateway.router import Router


@pytest.fixture()
def registry() -> ProviderRegistry:
    """Registry that accepts placeholder (mock) adapters."""
    return ProviderRegistry(allow_placeholders=True)


@pytest.fixture()
def router(registry: ProviderRegistry) -> Router:
    return Router(registry)


@pytest.fixture()
def mock_rate_limiter() -> MagicMock:
    """Rate limiter that always allows."""
    limiter = MagicMock(spec=RateLimiter)
    limiter.acquire.return_value = True
    return limiter


@pytest.fixture()
def rate_limit_config() -> RateLimitConfig:
    return RateLimitConfig(sms_per_minute=5, email_per_minute=10, window_seconds=60)
