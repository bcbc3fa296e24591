"""
Unit tests for challenge solvers.
"""

import json

import httpx
import pytest

from botls.core.challenges import (
    VultrDnsSolver,
    WebrootSolver,
    get_domain_parts,
    load_challenge_provider,
)
from botls.core.errors import ChallengeProviderError


class TestGetDomainParts:
    """Test zone / record suffix splitting."""

    @pytest.mark.parametrize(
        "domain,expected",
        [
            ("example.com", ("example.com", "")),
            ("www.example.com", ("example.com", ".www")),
            ("a.b.example.com", ("example.com", ".a.b")),
            ("*.example.com", ("example.com", "")),
            ("*.www.example.com", ("example.com", ".www")),
        ],
    )
    def test_split(self, domain, expected):
        assert get_domain_parts(domain) == expected


class TestWebrootSolver:
    """Test HTTP-01 webroot provisioning."""

    @pytest.mark.asyncio
    async def test_provision_and_cleanup(self, tmp_path):
        solver = WebrootSolver({"webroot": str(tmp_path)})

        state = await solver.provision("example.com", "tok123", "tok123.thumb")

        challenge_file = tmp_path / ".well-known" / "acme-challenge" / "tok123"
        assert challenge_file.read_text() == "tok123.thumb"
        assert state == {"provider": "http.webroot", "domain": "example.com", "token": "tok123"}

        await solver.cleanup(state)
        assert not challenge_file.exists()

    @pytest.mark.asyncio
    async def test_wildcard_rejected(self, tmp_path):
        solver = WebrootSolver({"webroot": str(tmp_path)})
        with pytest.raises(ChallengeProviderError):
            await solver.provision("*.example.com", "tok", "tok.thumb")

    @pytest.mark.asyncio
    async def test_cleanup_failure_raises_provider_error(self, tmp_path):
        solver = WebrootSolver({"webroot": str(tmp_path)})
        (tmp_path / ".well-known" / "acme-challenge" / "tok123").mkdir(parents=True)

        with pytest.raises(ChallengeProviderError) as exc_info:
            await solver.cleanup({"provider": "http.webroot", "domain": "example.com", "token": "tok123"})
        assert "Failed to remove challenge file" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_cleanup_missing_file(self, tmp_path):
        solver = WebrootSolver({"webroot": str(tmp_path)})
        await solver.cleanup({"provider": "http.webroot", "domain": "example.com", "token": "gone"})

    def test_webroot_required(self):
        with pytest.raises(ChallengeProviderError):
            WebrootSolver({})


class TestVultrDnsSolver:
    """Test DNS-01 provisioning through the Vultr API."""

    @pytest.mark.asyncio
    async def test_provision(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201, json={"record": {"id": "rec-1"}})

        solver = VultrDnsSolver({"token": "secret", "ttl": 120}, transport=httpx.MockTransport(handler))
        state = await solver.provision("www.example.com", "tok", "txt-value")

        assert state == {"provider": "dns.vultr", "domain": "example.com", "record_id": "rec-1"}
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.vultr.com/v2/domains/example.com/records"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "type": "TXT",
            "ttl": 120,
            "name": "_acme-challenge.www",
            "data": "txt-value",
        }

    @pytest.mark.asyncio
    async def test_provision_error_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "unauthorized"}))
        solver = VultrDnsSolver({"token": "bad"}, transport=transport)

        with pytest.raises(ChallengeProviderError) as exc_info:
            await solver.provision("example.com", "tok", "txt-value")
        assert "HTTP 401" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_cleanup(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        solver = VultrDnsSolver({"token": "secret"}, transport=httpx.MockTransport(handler))
        await solver.cleanup({"provider": "dns.vultr", "domain": "example.com", "record_id": "rec-1"})

        assert requests[0].method == "DELETE"
        assert str(requests[0].url) == "https://api.vultr.com/v2/domains/example.com/records/rec-1"

    @pytest.mark.asyncio
    async def test_cleanup_error_status(self):
        solver = VultrDnsSolver({"token": "secret"}, transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        with pytest.raises(ChallengeProviderError):
            await solver.cleanup({"domain": "example.com", "record_id": "rec-1"})

    @pytest.mark.asyncio
    async def test_cleanup_invalid_state(self):
        solver = VultrDnsSolver({"token": "secret"})
        with pytest.raises(ChallengeProviderError):
            await solver.cleanup({"domain": "example.com"})


class TestLoadChallengeProvider:
    """Test the solver registry."""

    def test_known_providers(self, tmp_path):
        assert isinstance(load_challenge_provider("http.webroot", {"webroot": str(tmp_path)}), WebrootSolver)
        assert isinstance(load_challenge_provider("dns.vultr", {"token": "x"}), VultrDnsSolver)

    @pytest.mark.parametrize(
        "provider,cfg,message",
        [
            (None, {"token": "x"}, "Provider config missing"),
            ("dns.vultr", None, "Provider config missing"),
            ("vultr", {"token": "x"}, "Invalid provider name"),
            ("dns.route53", {"token": "x"}, "No provider plugin"),
            ("dns.vultr", {"token": "x", "ttl": "sixty"}, "Invalid dns.vultr option"),
            ("dns.vultr", {"token": "x", "timeout": None}, "Invalid dns.vultr option"),
            ("http.webroot", {"webroot": 42}, "Invalid config for http.webroot"),
        ],
    )
    def test_errors(self, provider, cfg, message):
        with pytest.raises(ChallengeProviderError) as exc_info:
            load_challenge_provider(provider, cfg)
        assert message in exc_info.value.message
