"""
Global test fixtures.

Provides a configured certificate list, a fake ACME client with
async methods, and deterministic clock/sleep/RNG doubles so the
control loop can be driven pass by pass.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from botls.config import validate
from botls.models.order import (
    AuthorizationInfo,
    AuthorizationStatus,
    CertificateMeta,
    OrderInfo,
    OrderStatus,
)


def make_config(certificates=None, **overrides):
    """Validated BotlsConfig with sensible test defaults."""
    raw = {
        "account": "ops@example.com",
        "certificates": certificates
        if certificates is not None
        else [{"names": ["example.com"], "provider": "dns.vultr"}],
        "providers": {"dns.vultr": {"token": "x"}, "http.webroot": {"webroot": "/tmp/www"}},
        "data_dir": "/tmp",
    }
    raw.update(overrides)
    cfg, err = validate(raw)
    assert err is None, err
    return cfg


@pytest.fixture
def cfg():
    return make_config()


@pytest.fixture
def fake_client():
    """ACME client double whose calls all succeed."""
    client = MagicMock()
    client.new_order = AsyncMock(
        return_value=OrderInfo(status=OrderStatus.PENDING, identifiers=["example.com"])
    )
    client.order_info = AsyncMock(return_value=OrderInfo(status=OrderStatus.PENDING))
    client.get_authorization = AsyncMock(
        return_value=AuthorizationInfo(status=AuthorizationStatus.PENDING, identifier="example.com")
    )
    client.get_auth_by_url = AsyncMock(return_value={"status": "invalid"})
    client.solve_challenge = AsyncMock(return_value=None)
    client.mark_challenge_as_ready = AsyncMock(return_value=None)
    client.cleanup_provision = AsyncMock(return_value=None)
    client.finalize = AsyncMock(return_value=None)
    client.fetch_certificate = AsyncMock(return_value="-----BEGIN CERTIFICATE-----\n")
    client.cleanup = AsyncMock(return_value=None)
    client.get_certificate_meta = AsyncMock(return_value=CertificateMeta(exists=False, cert_path="/x/example.crt"))
    return client


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, now: int = 1000):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    """Records requested sleeps instead of sleeping."""
    return AsyncMock(return_value=None)


@pytest.fixture
def min_rng():
    """RNG that always returns the lower bound."""
    return lambda low, high: low


@pytest.fixture
def config_factory():
    return make_config
