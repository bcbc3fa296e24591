"""
Certificate expiry scheduling.

Refreshes per-certificate expiry from stored certificate metadata
and computes jittered sleep intervals for the control loop: poll
often only when issuance or renewal is imminent, back off otherwise.
"""

import logging
import math
import random
import time
from collections.abc import Callable

from botls.core.errors import StoreError
from botls.models.config import BotlsConfig

logger = logging.getLogger(__name__)

# Bounds of the short poll interval, seconds
FAST_POLL_MIN = 10
FAST_POLL_MAX = 30

# Renewal windows further away than this get the long, jittered sleep
LONG_SLEEP_THRESHOLD = 3600


class Scheduler:
    """
    Expiry tracking and sleep calculation for the control loop.

    The client only needs ``get_certificate_meta(primary_domain)``.
    """

    def __init__(
        self,
        cfg: BotlsConfig,
        client,
        clock: Callable[[], float] = time.time,
        rng: Callable[[int, int], int] = random.randint,
        log: logging.Logger | None = None,
    ):
        self.cfg = cfg
        self.client = client
        self.clock = clock
        self.rng = rng
        self.logger = log or logger

    async def refresh_expiries(self) -> int:
        """
        Refresh ``expires_at`` of every certificate spec.

        A metadata lookup failure for one certificate is logged and
        leaves it at -1; the remaining certificates are still refreshed.

        Returns:
            Smallest seconds-until-expiry among certificates with a known
            expiry, or 0 if none is known yet
        """
        min_expire_in = 0

        for cert in self.cfg.certificates:
            primary_domain = cert.primary_domain
            expires_at = -1

            try:
                meta = await self.client.get_certificate_meta(primary_domain)
            except StoreError as e:
                self.logger.error(f"Failed to load certificate metadata for {primary_domain}: {e.message}")
                cert.expires_at = expires_at
                continue

            if meta.exists and meta.not_after_ts is not None:
                expires_at = meta.not_after_ts
                expires_in = expires_at - int(self.clock())
                if min_expire_in == 0 or expires_in < min_expire_in:
                    min_expire_in = expires_in
                self.logger.debug(
                    f"Certificate found for {primary_domain}: certfile={meta.cert_path} expires_at={expires_at}"
                )
            else:
                self.logger.debug(f"No certificate found for {primary_domain}: certfile={meta.cert_path}")

            cert.expires_at = expires_at

        return min_expire_in

    def all_present(self) -> bool:
        """Check whether every configured certificate has a known expiry."""
        return all(cert.expires_at >= 0 for cert in self.cfg.certificates)

    def next_sleep(self, min_expire_in: int) -> int:
        """
        Compute the jittered sleep before the next pass.

        Sleeps 10-30 seconds while nothing is known or the renewal window
        opens within the hour. Otherwise sleeps a random 80-100% of the
        time left until the renewal window, so independently started
        processes don't synchronize.
        """
        if min_expire_in <= 0:
            return self.rng(FAST_POLL_MIN, FAST_POLL_MAX)

        slack = min_expire_in - self.cfg.renew_time
        if slack > LONG_SLEEP_THRESHOLD:
            return self.rng(max(1, math.ceil(slack * 0.8)), slack)

        # Renewal is active or imminent
        return self.rng(FAST_POLL_MIN, FAST_POLL_MAX)
