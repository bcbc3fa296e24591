"""
Per-order state machine operations.

Each operation targets the OrderState of one primary domain and is
safe to repeat: failures from the ACME client are logged, leave the
state untouched, and are retried on the next pass.
"""

import logging

from botls.core.errors import ACMEError
from botls.core.providers import provider_for_domain
from botls.models.config import BotlsConfig
from botls.models.order import AuthorizationStatus, ChallengeStatus, OrderState, RunState

logger = logging.getLogger(__name__)


class Orders:
    """
    Drives in-flight orders through challenge, CSR and download steps.

    Orders and Manager are the only writers of ``run_state``.
    """

    def __init__(self, cfg: BotlsConfig, client, run_state: RunState, log: logging.Logger | None = None):
        self.cfg = cfg
        self.client = client
        self.run_state = run_state
        self.logger = log or logger

    def get(self, primary_domain: str) -> OrderState | None:
        return self.run_state.orders.get(primary_domain)

    def provider_for(self, domain: str) -> str | None:
        return provider_for_domain(self.cfg.certificates, domain)

    async def place_order(self, domains: list[str]) -> bool:
        """
        Request a new order unless one is already open for the primary domain.

        Returns:
            True if an order is open after the call
        """
        primary_domain = domains[0]
        if primary_domain in self.run_state.orders:
            self.logger.debug(f"Order for {primary_domain} has been placed already")
            return True

        try:
            await self.client.new_order(domains)
        except ACMEError as e:
            self.logger.error(f"Order placing failed for {primary_domain}: {e.message}")
            return False

        self.run_state.orders[primary_domain] = OrderState.new(domains)
        self.logger.info(f"Order successfully placed for {primary_domain}")
        return True

    def _mark_validated(self, state: OrderState, domain: str) -> None:
        state.challenges[domain] = ChallengeStatus.VALIDATED
        if state.idx < len(state.domains):
            state.idx += 1

    async def solve_challenge(self, primary_domain: str) -> bool:
        """
        Provision the challenge for the domain currently being authorized.

        An authorization the server already holds as valid is skipped and
        the order moves on to its next domain.

        Returns:
            True if a challenge was provisioned
        """
        state = self.run_state.orders[primary_domain]
        domain = state.current_domain

        try:
            auth = await self.client.get_authorization(primary_domain, domain)
        except ACMEError as e:
            self.logger.error(f"Failed to get authorization object for {domain} ({primary_domain}): {e.message}")
            return False

        self.logger.debug(f"Processing authorization for {domain} ({primary_domain}): status={auth.status.value}")
        if auth.status == AuthorizationStatus.VALID:
            self._mark_validated(state, domain)
            self.logger.info(f"Authorization for {domain} ({primary_domain}) is already valid, skipping challenge")
            return False

        if auth.status != AuthorizationStatus.PENDING:
            self.logger.warning(
                f"Authorization for {domain} ({primary_domain}) is in wrong state: {auth.status.value}"
            )
            return False

        provider = self.provider_for(domain)
        provider_cfg = self.cfg.provider_config(provider)
        try:
            await self.client.solve_challenge(primary_domain, domain, provider, provider_cfg)
        except ACMEError as e:
            self.logger.error(f"Challenge provisioning failed for {domain} ({primary_domain}): {e.message}")
            return False

        state.challenges[domain] = ChallengeStatus.SOLVED
        self.logger.info(f"Challenge provisioned for {domain} ({primary_domain})")
        return True

    async def mark_challenge_as_ready(self, primary_domain: str) -> bool:
        """Tell the server the current challenge can be validated."""
        state = self.run_state.orders[primary_domain]
        domain = state.current_domain

        try:
            await self.client.mark_challenge_as_ready(primary_domain, domain)
        except ACMEError as e:
            self.logger.error(f"Failed to mark challenge as ready for {domain} ({primary_domain}): {e.message}")
            return False

        state.challenges[domain] = ChallengeStatus.MARKED
        self.logger.info(f"Challenge marked as ready for {domain} ({primary_domain})")
        return True

    async def cleanup_challenge(self, primary_domain: str) -> bool:
        """
        Remove provisioned challenge artifacts once the authorization is valid.

        Moves on to the next domain of the order if one remains.
        """
        state = self.run_state.orders[primary_domain]
        domain = state.current_domain
        provider = self.provider_for(domain)
        provider_cfg = self.cfg.provider_config(provider)

        try:
            await self.client.cleanup_provision(primary_domain, domain, provider, provider_cfg)
        except ACMEError as e:
            self.logger.error(f"Challenge cleanup failed for {domain} ({primary_domain}): {e.message}")
            return False

        self._mark_validated(state, domain)
        self.logger.info(f"Challenge cleaned up for {domain} ({primary_domain})")
        return True

    def all_challenges_solved(self, primary_domain: str) -> bool:
        state = self.run_state.orders[primary_domain]
        return all(status == ChallengeStatus.VALIDATED for status in state.challenges.values())

    async def send_csr(self, primary_domain: str) -> bool:
        """Finalize the order with a CSR; sent at most once per order."""
        state = self.get(primary_domain)
        if state is None:
            self.logger.error(f"No order info found for CSR of {primary_domain}")
            return False

        if state.csr_sent:
            return True

        try:
            await self.client.finalize(primary_domain)
        except ACMEError as e:
            self.logger.error(f"CSR request failed for {primary_domain}: {e.message}")
            return False

        state.csr_sent = True
        self.logger.info(f"CSR request sent for {primary_domain}")
        return True

    async def get_certificate(self, primary_domain: str) -> bool:
        """Download and store the issued certificate, then close the order."""
        try:
            await self.client.fetch_certificate(primary_domain)
        except ACMEError as e:
            self.logger.warning(f"Certificate fetch failed for {primary_domain}: {e.message}")
            return False

        self.run_state.orders.pop(primary_domain, None)
        await self.client.cleanup(primary_domain)
        self.logger.info(f"Certificate fetched for {primary_domain}")
        return True
