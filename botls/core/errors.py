"""
Exception hierarchy for botls.

Configuration errors and invalid orders are fatal; everything else
is per-certificate and retried on the next scheduling pass.
"""


class BotlsError(Exception):
    """Base exception for botls operations."""

    def __init__(self, message: str, domain: str = None, suggestion: str = None):
        self.message = message
        self.domain = domain
        self.suggestion = suggestion
        super().__init__(message)


class InvalidConfig(BotlsError):
    """Configuration is malformed."""

    pass


class StoreError(BotlsError):
    """Certificate storage operation failed."""

    pass


class MetadataLookupError(StoreError):
    """Stored certificate metadata could not be read."""

    pass


class ACMEError(BotlsError):
    """Base exception for ACME protocol operations."""

    pass


class ACMEOrderError(ACMEError):
    """ACME order could not be created, fetched or finalized."""

    pass


class ACMEChallengeError(ACMEError):
    """ACME challenge could not be provisioned, answered or cleaned up."""

    pass


class ChallengeProviderError(ACMEChallengeError):
    """Challenge provider is misconfigured or its back end failed."""

    pass


class OrderInvalid(BotlsError):
    """The ACME server marked an order invalid."""

    def __init__(self, message: str, domain: str = None, authorizations: list = None):
        self.authorizations = authorizations or []
        super().__init__(
            message,
            domain=domain,
            suggestion="Check the authorization details in the log and the challenge provider setup",
        )
