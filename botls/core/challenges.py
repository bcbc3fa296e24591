"""
Challenge provisioning back ends.

Provider ids have the form ``<mode>.<implementation>``: the mode
selects the ACME challenge type (http-01 or dns-01), the
implementation selects how the validation value is published.
"""

import logging
from pathlib import Path
from typing import Any

import httpx

from botls.core.errors import ChallengeProviderError
from botls.core.providers import DNS_MODE, HTTP_MODE, provider_mode

logger = logging.getLogger(__name__)

VULTR_API_URL = "https://api.vultr.com/v2"


class ChallengeSolver:
    """Publishes and removes challenge validation values."""

    mode: str = ""

    async def provision(self, domain: str, token: str, validation: str) -> dict[str, Any]:
        """
        Publish the validation value for a domain.

        Returns:
            Provision record needed later by cleanup()
        """
        raise NotImplementedError

    async def cleanup(self, provision_state: dict[str, Any]) -> None:
        raise NotImplementedError


class WebrootSolver(ChallengeSolver):
    """
    HTTP-01 solver writing key authorizations into a web root.

    The web server must serve ``<webroot>/.well-known/acme-challenge/``
    at ``http://<domain>/.well-known/acme-challenge/``.
    """

    mode = HTTP_MODE

    def __init__(self, cfg: dict[str, Any]):
        webroot = cfg.get("webroot")
        if not webroot:
            raise ChallengeProviderError(
                "webroot is required", suggestion="Set providers['http.webroot'].webroot in the config"
            )
        self.challenge_dir = Path(webroot) / ".well-known" / "acme-challenge"

    async def provision(self, domain: str, token: str, validation: str) -> dict[str, Any]:
        if "*" in domain:
            raise ChallengeProviderError("Wildcards can't be verified by http challenge", domain=domain)

        challenge_path = self.challenge_dir / token
        try:
            self.challenge_dir.mkdir(parents=True, exist_ok=True)
            challenge_path.write_text(validation)
        except OSError as e:
            raise ChallengeProviderError(f"Failed to write challenge file {challenge_path}: {e}", domain=domain)

        logger.info(f"Created challenge file at {challenge_path}")
        return {"provider": "http.webroot", "domain": domain, "token": token}

    async def cleanup(self, provision_state: dict[str, Any]) -> None:
        token = provision_state.get("token")
        if not token:
            raise ChallengeProviderError("Invalid provision state")

        challenge_path = self.challenge_dir / token
        try:
            challenge_path.unlink(missing_ok=True)
        except OSError as e:
            raise ChallengeProviderError(f"Failed to remove challenge file {challenge_path}: {e}")
        logger.info(f"Removed challenge file {challenge_path}")


def get_domain_parts(domain: str) -> tuple[str, str]:
    """
    Split a name into the registered zone and the record suffix.

    ``www.example.com`` -> (``example.com``, ``.www``);
    ``*.example.com`` -> (``example.com``, ``''``).
    """
    domain = domain.removeprefix("*.")
    labels = domain.split(".")
    if len(labels) <= 2:
        return domain, ""
    return ".".join(labels[-2:]), "." + ".".join(labels[:-2])


class VultrDnsSolver(ChallengeSolver):
    """DNS-01 solver publishing TXT records through the Vultr v2 API."""

    mode = DNS_MODE

    def __init__(self, cfg: dict[str, Any], transport: httpx.AsyncBaseTransport | None = None):
        token = cfg.get("token")
        if not token:
            raise ChallengeProviderError(
                "token is required", suggestion="Set providers['dns.vultr'].token in the config"
            )
        self.api_url = cfg.get("api_url", VULTR_API_URL)
        try:
            self.ttl = int(cfg.get("ttl", 60))
            self.timeout = float(cfg.get("timeout", 30.0))
        except (TypeError, ValueError) as e:
            raise ChallengeProviderError(f"Invalid dns.vultr option: {e}")
        self._headers = {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=self._headers, timeout=self.timeout, transport=self._transport)

    async def provision(self, domain: str, token: str, validation: str) -> dict[str, Any]:
        base_domain, sub_domain = get_domain_parts(domain)
        payload = {
            "type": "TXT",
            "ttl": self.ttl,
            "name": f"_acme-challenge{sub_domain}",
            "data": validation,
        }

        try:
            async with self._client() as client:
                response = await client.post(f"{self.api_url}/domains/{base_domain}/records", json=payload)
        except httpx.RequestError as e:
            raise ChallengeProviderError(f"Vultr request failed: {e}", domain=domain)

        if response.status_code not in (200, 201):
            raise ChallengeProviderError(f"Vultr returned HTTP {response.status_code}", domain=domain)

        try:
            record_id = response.json()["record"]["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise ChallengeProviderError(f"Unexpected Vultr response: {e}", domain=domain)

        logger.info(f"Published TXT record {payload['name']} in {base_domain}")
        return {"provider": "dns.vultr", "domain": base_domain, "record_id": record_id}

    async def cleanup(self, provision_state: dict[str, Any]) -> None:
        base_domain = provision_state.get("domain")
        record_id = provision_state.get("record_id")
        if not base_domain or not record_id:
            raise ChallengeProviderError("Invalid provision state")

        try:
            async with self._client() as client:
                response = await client.delete(f"{self.api_url}/domains/{base_domain}/records/{record_id}")
        except httpx.RequestError as e:
            raise ChallengeProviderError(f"Vultr request failed: {e}", domain=base_domain)

        if response.status_code != 204:
            raise ChallengeProviderError(f"Vultr returned HTTP {response.status_code}", domain=base_domain)

        logger.info(f"Removed TXT record {record_id} from {base_domain}")


SOLVERS: dict[str, type[ChallengeSolver]] = {
    "http.webroot": WebrootSolver,
    "dns.vultr": VultrDnsSolver,
}


def load_challenge_provider(provider: str | None, cfg: dict[str, Any] | None) -> ChallengeSolver:
    """
    Instantiate the solver for a provider id.

    Raises:
        ChallengeProviderError if the id is unknown or its config is missing
    """
    if not provider or not isinstance(cfg, dict):
        raise ChallengeProviderError(
            f"Provider config missing for {provider}", suggestion="Add the provider to the 'providers' table"
        )

    mode = provider_mode(provider)
    if mode not in (DNS_MODE, HTTP_MODE):
        raise ChallengeProviderError(f"Invalid provider name: {provider}")

    solver_cls = SOLVERS.get(provider)
    if solver_cls is None:
        raise ChallengeProviderError(f"No provider plugin for {provider} found")

    try:
        return solver_cls(cfg)
    except (TypeError, ValueError) as e:
        raise ChallengeProviderError(f"Invalid config for {provider}: {e}")
