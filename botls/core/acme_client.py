"""
ACME protocol client for the certificate lifecycle manager.

Wraps the acme library's ClientV2 behind a small per-primary-domain
contract (new order, authorization polling, challenge provisioning,
finalization, certificate download). Blocking network calls run in
a worker thread.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import josepy as jose
from acme import challenges, client, messages
from acme import errors as acme_errors
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID

from botls import __version__
from botls.core.challenges import load_challenge_provider
from botls.core.errors import ACMEChallengeError, ACMEError, ACMEOrderError, StoreError
from botls.core.providers import DNS_MODE
from botls.core.store import FileStore, generate_private_key
from botls.models.config import BotlsConfig
from botls.models.order import AuthorizationInfo, AuthorizationStatus, CertificateMeta, OrderInfo, OrderStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


def make_csr(private_key, domains: list[str]) -> bytes:
    """
    Create a PEM-encoded CSR for the given domains.

    The first domain is the subject common name; all domains are SANs.
    """
    builder = x509.CertificateSigningRequestBuilder()
    builder = builder.subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]))

    san_list = [x509.DNSName(domain) for domain in domains]
    builder = builder.add_extension(x509.SubjectAlternativeName(san_list), critical=False)

    csr = builder.sign(private_key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.PEM)


def authorization_domain(authzr: messages.AuthorizationResource) -> str:
    """Domain name an authorization covers, with the wildcard prefix restored."""
    value = authzr.body.identifier.value
    if authzr.body.wildcard:
        return f"*.{value}"
    return value


@dataclass
class _OrderContext:
    """Client-side view of one open order."""

    orderr: messages.OrderResource
    authorizations: dict[str, messages.AuthorizationResource] = field(default_factory=dict)
    challenges: dict[str, messages.ChallengeBody] = field(default_factory=dict)


class AcmeClient:
    """
    ACME client keyed by the primary domain of each order.

    Every failure is raised as an ACMEError subclass.
    """

    def __init__(self, cfg: BotlsConfig, store: FileStore):
        self.cfg = cfg
        self.store = store
        self._client: client.ClientV2 | None = None
        self._account_key: jose.JWKRSA | None = None
        self._orders: dict[str, _OrderContext] = {}

    @property
    def directory_url(self) -> str:
        return self.cfg.directory_url

    @property
    def acme(self) -> client.ClientV2:
        if self._client is None:
            raise ACMEError("ACME client is not initialized", suggestion="Call init() first")
        return self._client

    async def _run(self, func: Callable[[], T], error_cls: type[ACMEError], message: str, domain: str = None) -> T:
        """Run a blocking acme call in a thread, mapping failures to error_cls."""
        try:
            return await asyncio.to_thread(func)
        except ACMEError:
            raise
        except Exception as e:
            raise error_cls(f"{message}: {e}", domain=domain) from e

    def _context(self, primary_domain: str) -> _OrderContext:
        ctx = self._orders.get(primary_domain)
        if ctx is None:
            raise ACMEOrderError(f"Order not found for {primary_domain}", domain=primary_domain)
        return ctx

    def _save_order_info(self, primary_domain: str, body: messages.Order) -> None:
        try:
            self.store.save_order_info(primary_domain, json.loads(body.json_dumps()))
        except StoreError as e:
            logger.warning(f"Failed to persist order info for {primary_domain}: {e.message}")

    @staticmethod
    def _order_info(body: messages.Order) -> OrderInfo:
        try:
            status = OrderStatus(body.status.name)
        except ValueError:
            raise ACMEOrderError(f"Unknown order status: {body.status.name}")
        return OrderInfo(
            status=status,
            identifiers=[identifier.value for identifier in body.identifiers],
            authorizations=list(body.authorizations or ()),
            finalize=body.finalize,
            certificate=body.certificate,
        )

    # Account

    async def init(self) -> None:
        """Load or create the account key, then register or retrieve the account."""
        try:
            self.store.ensure_dirs()
            private_key = self.store.load_account_key()
        except StoreError as e:
            raise ACMEError(f"Failed to load account key: {e.message}")
        self._account_key = jose.JWKRSA(key=private_key)

        def create_client():
            net = client.ClientNetwork(self._account_key, user_agent=f"botls/{__version__}")
            directory = messages.Directory.from_json(net.get(self.directory_url).json())
            return client.ClientV2(directory, net=net)

        self._client = await self._run(create_client, ACMEError, f"Failed to load directory {self.directory_url}")

        acme_client = self._client
        email = self.cfg.account

        def do_registration():
            regr = messages.NewRegistration.from_data(email=email, terms_of_service_agreed=True)
            try:
                account_resource = acme_client.new_account(regr)
                logger.info(f"Created new ACME account for {email}")
                return account_resource
            except acme_errors.ConflictError as conflict:
                # Account already exists, use the location URL to query it
                logger.info(f"ACME account already exists at {conflict.location}, retrieving")
                existing_regr = messages.RegistrationResource(uri=conflict.location, body=messages.Registration())
                return acme_client.query_registration(existing_regr)

        await self._run(do_registration, ACMEError, "Failed to register ACME account")

    # Orders

    async def new_order(self, domains: list[str]) -> OrderInfo:
        """Create an order for the domains, keyed by the first one."""
        primary_domain = domains[0]
        try:
            cert_key = self.store.load_cert_key(primary_domain)
            if cert_key is None:
                cert_key = generate_private_key()
                self.store.save_cert_key(primary_domain, cert_key)
        except StoreError as e:
            raise ACMEOrderError(f"Failed to prepare certificate key: {e.message}", domain=primary_domain)

        csr_pem = make_csr(cert_key, domains)
        acme_client = self.acme
        orderr = await self._run(
            lambda: acme_client.new_order(csr_pem), ACMEOrderError, "Failed to create order", primary_domain
        )

        self._orders[primary_domain] = _OrderContext(
            orderr=orderr,
            authorizations={authorization_domain(authzr): authzr for authzr in orderr.authorizations},
        )
        self._save_order_info(primary_domain, orderr.body)
        logger.info(f"Created ACME order for domains: {domains}")
        return self._order_info(orderr.body)

    async def order_info(self, primary_domain: str) -> OrderInfo:
        """Fetch the current server-side state of the order."""
        ctx = self._context(primary_domain)
        acme_client = self.acme

        def fetch_order():
            response = acme_client._post_as_get(ctx.orderr.uri)
            return messages.Order.from_json(response.json())

        body = await self._run(fetch_order, ACMEOrderError, "Failed to fetch order", primary_domain)
        ctx.orderr = ctx.orderr.update(body=body)
        self._save_order_info(primary_domain, body)
        return self._order_info(body)

    async def get_authorization(self, primary_domain: str, domain: str) -> AuthorizationInfo:
        """Poll the authorization of one domain of the order."""
        ctx = self._context(primary_domain)
        authzr = ctx.authorizations.get(domain)
        if authzr is None:
            raise ACMEOrderError(f"No authorization for {domain} in order {primary_domain}", domain=domain)

        acme_client = self.acme
        authzr, _ = await self._run(
            lambda: acme_client.poll(authzr), ACMEOrderError, "Failed to poll authorization", domain
        )
        ctx.authorizations[domain] = authzr

        try:
            status = AuthorizationStatus(authzr.body.status.name)
        except ValueError:
            raise ACMEOrderError(f"Unknown authorization status: {authzr.body.status.name}", domain=domain)
        return AuthorizationInfo(status=status, identifier=domain)

    async def get_auth_by_url(self, url: str) -> dict[str, Any]:
        """Fetch a raw authorization object, used for diagnostics."""
        acme_client = self.acme
        response = await self._run(
            lambda: acme_client._post_as_get(url), ACMEOrderError, f"Failed to fetch authorization {url}"
        )
        return response.json()

    # Challenges

    async def _solver_call(self, call: Awaitable[T], message: str, domain: str) -> T:
        """Await a solver call, mapping back-end failures to ACMEChallengeError."""
        try:
            return await call
        except ACMEError:
            raise
        except Exception as e:
            raise ACMEChallengeError(f"{message}: {e}", domain=domain) from e

    async def solve_challenge(
        self, primary_domain: str, domain: str, provider: str | None, provider_cfg: dict[str, Any] | None
    ) -> None:
        """Provision the challenge matching the provider mode for a domain."""
        solver = load_challenge_provider(provider, provider_cfg)
        ctx = self._context(primary_domain)
        authzr = ctx.authorizations.get(domain)
        if authzr is None:
            raise ACMEChallengeError(f"No authorization for {domain} in order {primary_domain}", domain=domain)

        chall_type = challenges.DNS01 if solver.mode == DNS_MODE else challenges.HTTP01
        challb = next((c for c in authzr.body.challenges if isinstance(c.chall, chall_type)), None)
        if challb is None:
            raise ACMEChallengeError(
                f"No {chall_type.typ} challenge offered for {domain}",
                domain=domain,
                suggestion="Use a provider with a challenge type the server supports",
            )

        _, validation = challb.response_and_validation(self._account_key)
        token = challb.chall.encode("token")

        provision = await self._solver_call(
            solver.provision(domain, token, validation), "Challenge provisioning failed", domain
        )
        ctx.challenges[domain] = challb
        try:
            self.store.save_order_provision(primary_domain, domain, provision)
        except StoreError as e:
            raise ACMEChallengeError(f"Failed to save provision record: {e.message}", domain=domain)

    async def mark_challenge_as_ready(self, primary_domain: str, domain: str) -> None:
        """Notify the server that the challenge is ready for validation."""
        ctx = self._context(primary_domain)
        challb = ctx.challenges.get(domain)
        if challb is None:
            raise ACMEChallengeError(f"Challenge not provisioned for {domain}", domain=domain)

        acme_client = self.acme
        account_key = self._account_key
        await self._run(
            lambda: acme_client.answer_challenge(challb, challb.chall.response(account_key)),
            ACMEChallengeError,
            "Failed to respond to challenge",
            domain,
        )
        logger.info(f"Responded to challenge for {domain}")

    async def cleanup_provision(
        self, primary_domain: str, domain: str, provider: str | None, provider_cfg: dict[str, Any] | None
    ) -> None:
        """Remove the provisioned challenge artifact of a domain."""
        try:
            provision = self.store.load_order_provision(primary_domain, domain)
        except StoreError as e:
            raise ACMEChallengeError(f"Failed to load provision record: {e.message}", domain=domain)

        solver = load_challenge_provider(provider, provider_cfg)
        await self._solver_call(solver.cleanup(provision), "Challenge cleanup failed", domain)
        try:
            self.store.delete_order_provision(primary_domain, domain)
        except StoreError as e:
            raise ACMEChallengeError(f"Failed to delete provision record: {e.message}", domain=domain)

        ctx = self._orders.get(primary_domain)
        if ctx is not None:
            ctx.challenges.pop(domain, None)

    # Finalization

    async def finalize(self, primary_domain: str) -> OrderInfo:
        """Submit the CSR of the order."""
        ctx = self._context(primary_domain)
        acme_client = self.acme
        orderr = await self._run(
            lambda: acme_client.begin_finalization(ctx.orderr),
            ACMEOrderError,
            "Failed to finalize order",
            primary_domain,
        )
        ctx.orderr = orderr
        return self._order_info(orderr.body)

    async def fetch_certificate(self, primary_domain: str) -> str:
        """Download the issued certificate chain and store it."""
        ctx = self._context(primary_domain)
        cert_url = ctx.orderr.body.certificate
        if not cert_url:
            raise ACMEOrderError(f"Certificate is not ready for {primary_domain}", domain=primary_domain)

        acme_client = self.acme
        response = await self._run(
            lambda: acme_client._post_as_get(cert_url), ACMEOrderError, "Failed to download certificate", primary_domain
        )
        fullchain_pem = response.text

        try:
            self.store.save_certificate(primary_domain, fullchain_pem)
        except StoreError as e:
            raise ACMEOrderError(f"Failed to save certificate: {e.message}", domain=primary_domain)
        return fullchain_pem

    async def cleanup(self, primary_domain: str, purge: bool = False) -> None:
        """Forget a finished order."""
        self._orders.pop(primary_domain, None)
        if purge:
            try:
                self.store.delete_order_info(primary_domain)
            except StoreError as e:
                logger.warning(f"Failed to purge order info for {primary_domain}: {e.message}")

    # Storage

    async def get_certificate_meta(self, primary_domain: str) -> CertificateMeta:
        """Stored certificate metadata; raises StoreError on lookup failure."""
        return self.store.get_certificate_meta(primary_domain)
