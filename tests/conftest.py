"""
Pytest configuration and fixtures for the HR-SM license guard tests.
Provides a controllable clock, a scripted license authority behind
httpx.MockTransport, in-memory repositories and an app factory.
"""
import os
import pytest
import httpx
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry
from typing import Any, Callable, Dict, List, Optional

# Set testing environment before importing settings
os.environ["ENVIRONMENT"] = "test"
os.environ["BACKGROUND_VALIDATION_ENABLED"] = "false"
os.environ["LICENSE_RETRY_BASE_DELAY"] = "0"
os.environ.pop("REDIS_URL", None)

from caching.validation_cache import ValidationCache
from config import Settings
from monitoring.metrics import MetricsCollector
from repositories.license_repository import InMemoryLicenseRepository, InMemoryUsageRepository
from services.container import ServiceContainer
from services.license_authority_client import LicenseAuthorityClient, is_transient
from services.license_gateway import LicenseGateway
from utils.retry import RetryPolicy


VALID_AUTHORITY_BODY = {
    "valid": True,
    "features": ["reports", "payroll"],
    "expiresAt": "2030-01-01T00:00:00Z",
    "licenseType": "business",
    "limits": {"maxUsers": 50, "maxStorage": 10240, "maxAPI": 10000},
}


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class AuthorityStub:
    """Scripted license authority; every request is counted."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responder: Callable[[httpx.Request], Any] = lambda request: httpx.Response(
            200, json=VALID_AUTHORITY_BODY
        )

    @property
    def calls(self) -> int:
        return len(self.requests)

    def respond(self, status_code: int = 200, json: Any = None, text: Optional[str] = None):
        if text is not None:
            self.responder = lambda request: httpx.Response(status_code, text=text)
        else:
            self.responder = lambda request: httpx.Response(status_code, json=json)

    def fail_with(self, error_type=httpx.ConnectError):
        def responder(request):
            raise error_type("authority unreachable", request=request)
        self.responder = responder

    def handler(self, request: httpx.Request):
        self.requests.append(request)
        return self.responder(request)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def authority():
    return AuthorityStub()


@pytest.fixture
def metrics():
    """Metrics on a private registry so tests never share counters."""
    return MetricsCollector(CollectorRegistry())


@pytest.fixture
def sleeps():
    """Records retry backoff delays instead of sleeping."""
    return []


@pytest.fixture
def make_gateway(clock, authority, metrics, sleeps):
    def factory(max_attempts: int = 3, redis_client: Any = None, **kwargs) -> LicenseGateway:
        async def fake_sleep(delay: float):
            sleeps.append(delay)

        client = LicenseAuthorityClient(
            base_url="http://license-authority.test",
            api_key="test-api-key",
            machine_id="test-machine",
            http_client=authority.http_client(),
            metrics=metrics.license_metrics,
        )
        cache = ValidationCache(fresh_ttl=900, offline_grace=3600, redis_client=redis_client, clock=clock)
        policy = RetryPolicy(max_attempts=max_attempts, base_delay=1.0, retryable=is_transient,
                             sleep=fake_sleep, name="license authority validation")
        return LicenseGateway(client, cache, policy, metrics=metrics.license_metrics, clock=clock, **kwargs)

    return factory


@pytest.fixture
def license_documents() -> Dict[str, Any]:
    return {
        "tenant-1": {
            "tenantId": "tenant-1",
            "status": "active",
            "modules": {
                "attendance": {"enabled": True, "tier": "business",
                               "limits": {"employees": 100, "storage": 1000}},
                "payroll": {"enabled": False, "tier": "starter"},
                "reports": {"enabled": True, "tier": "enterprise",
                            "expiresAt": "2000-01-01T00:00:00Z"},
                "leave": {"enabled": True, "tier": "starter", "limits": {"employees": 0}},
            },
        },
    }


@pytest.fixture
def license_repository(license_documents):
    return InMemoryLicenseRepository(license_documents)


@pytest.fixture
def usage_repository():
    return InMemoryUsageRepository()


@pytest.fixture
def test_settings():
    return Settings()


@pytest.fixture
def container(test_settings, authority, license_repository, usage_repository, metrics, clock):
    return ServiceContainer.build(
        test_settings,
        license_repository=license_repository,
        usage_repository=usage_repository,
        http_client=authority.http_client(),
        metrics=metrics,
        clock=clock,
    )


@pytest.fixture
def app(test_settings, container):
    from main import create_app
    return create_app(test_settings, container)


@pytest.fixture
def client(app):
    """Test client for FastAPI app with lifespan."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def mock_redis_client():
    """Mock Redis client for caching tests."""
    mock_redis = AsyncMock()
    mock_redis.get.return_value = None
    mock_redis.set.return_value = True
    mock_redis.delete.return_value = 1
    return mock_redis
