"""
Certificate lifecycle manager.

Runs the control loop: refresh certificate expiry, place orders for
missing or expiring certificates, advance every in-flight order one
step according to the server-side order status, then sleep.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable

from botls.core.errors import ACMEError, OrderInvalid
from botls.core.orders import Orders
from botls.core.providers import is_dns_provider
from botls.core.scheduler import Scheduler
from botls.models.config import BotlsConfig
from botls.models.order import AuthorizationStatus, ChallengeStatus, OrderInfo, OrderState, OrderStatus, RunState

logger = logging.getLogger(__name__)

# Seconds to wait after publishing a DNS-01 TXT record
DNS_PROPAGATION_DELAY = 120


class Manager:
    """
    Orchestrates Scheduler and Orders over the in-flight order map.

    All dependencies are injected so passes are deterministic in tests:
    ``client`` implements the ACME client contract, ``clock`` returns
    epoch seconds, ``sleep`` is awaitable and ``rng(min, max)`` returns
    an integer in the closed range.
    """

    def __init__(
        self,
        cfg: BotlsConfig,
        client,
        log: logging.Logger | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[int, int], int] = random.randint,
        dns_propagation_delay: int = DNS_PROPAGATION_DELAY,
    ):
        self.cfg = cfg
        self.client = client
        self.logger = log or logger
        self.clock = clock
        self.sleep = sleep
        self.dns_propagation_delay = dns_propagation_delay
        self.run_state = RunState()
        self.scheduler = Scheduler(cfg, client, clock=clock, rng=rng, log=self.logger)
        self.orders = Orders(cfg, client, self.run_state, log=self.logger)

    async def manage(self) -> None:
        """
        Run passes forever.

        Only returns by raising: OrderInvalid is fatal, and cancellation
        is honoured at every sleep.
        """
        while True:
            duration = await self.run_pass()
            self.logger.info(f"Sleeping for {duration} seconds")
            await self.sleep(duration)

    async def run_pass(self) -> int:
        """
        Run a single pass of the control loop.

        Returns:
            Seconds to sleep before the next pass
        """
        min_expire_in = await self.scheduler.refresh_expiries()
        await self.place_due_orders()

        # Orders may be removed while iterating
        for primary_domain in list(self.run_state.orders):
            try:
                await self.process_order(primary_domain)
            except OrderInvalid:
                raise
            except Exception as e:
                self.logger.exception(f"Unexpected error processing order for {primary_domain}: {e}")

        return self.scheduler.next_sleep(min_expire_in)

    async def place_due_orders(self) -> None:
        """Place orders for absent certificates and those inside the renewal window."""
        now = int(self.clock())
        for cert in self.cfg.certificates:
            if cert.expires_at < 0:
                await self.orders.place_order(cert.names)
                continue

            expires_in = cert.expires_at - now
            if expires_in <= self.cfg.renew_time:
                self.logger.info(f"Certificate renewal for {cert.primary_domain}: expires_in={expires_in}")
                await self.orders.place_order(cert.names)

    async def process_order(self, primary_domain: str) -> None:
        """Advance one in-flight order by one step."""
        state = self.run_state.orders[primary_domain]

        try:
            order = await self.client.order_info(primary_domain)
        except ACMEError as e:
            self.logger.warning(f"Failed to fetch order for {primary_domain}: {e.message}")
            return

        if order.status in (OrderStatus.PENDING, OrderStatus.READY):
            await self._advance_challenge(primary_domain, state)
            if order.status == OrderStatus.READY and self.orders.all_challenges_solved(primary_domain):
                await self.orders.send_csr(primary_domain)

        elif order.status == OrderStatus.PROCESSING:
            self.logger.debug(f"Order for {primary_domain} is being processed by the server")

        elif order.status == OrderStatus.VALID:
            await self.orders.get_certificate(primary_domain)

        elif order.status == OrderStatus.INVALID:
            await self._fail_order(primary_domain, order)

    async def _advance_challenge(self, primary_domain: str, state: OrderState) -> None:
        domain = state.current_domain
        status = state.current_status

        if status == ChallengeStatus.NEW:
            provider = self.orders.provider_for(domain)
            if await self.orders.solve_challenge(primary_domain) and is_dns_provider(provider):
                self.logger.info(
                    f"Waiting {self.dns_propagation_delay}s for DNS to propagate for {domain} ({primary_domain})"
                )
                await self.sleep(self.dns_propagation_delay)

        elif status == ChallengeStatus.SOLVED:
            await self.orders.mark_challenge_as_ready(primary_domain)

        elif status == ChallengeStatus.MARKED:
            try:
                auth = await self.client.get_authorization(primary_domain, domain)
            except ACMEError as e:
                self.logger.warning(f"Failed to poll authorization for {domain} ({primary_domain}): {e.message}")
                return

            if auth.status == AuthorizationStatus.VALID:
                await self.orders.cleanup_challenge(primary_domain)
            elif auth.status == AuthorizationStatus.INVALID:
                self.logger.error(f"Authorization for {domain} ({primary_domain}) is invalid")

        elif status == ChallengeStatus.VALIDATED:
            # Last domain done; waiting for the order to become ready
            pass

    async def _fail_order(self, primary_domain: str, order: OrderInfo) -> None:
        self.logger.error(f"Order for {primary_domain} is invalid")

        authorizations = []
        for url in order.authorizations:
            try:
                auth = await self.client.get_auth_by_url(url)
            except ACMEError as e:
                auth = {"url": url, "error": e.message}
            authorizations.append(auth)
            self.logger.error(f"Order authorization for {primary_domain}: {auth}")

        raise OrderInvalid(
            f"Order for {primary_domain} is invalid",
            domain=primary_domain,
            authorizations=authorizations,
        )
