"""
Challenge provider lookup.

Maps a domain name to the provider configured for the certificate
that contains it, mirroring the domain -> certificate matching used
when enriching certificate summaries.
"""

from collections.abc import Iterable

from botls.models.config import CertificateSpec

DNS_MODE = "dns"
HTTP_MODE = "http"


def provider_mode(provider: str | None) -> str:
    """Mode prefix of a provider id ('dns' for 'dns.vultr'), '' if none."""
    if not provider:
        return ""
    mode, sep, _ = provider.partition(".")
    return mode if sep else ""


def is_dns_provider(provider: str | None) -> bool:
    """DNS providers need a propagation delay after provisioning."""
    return provider_mode(provider) == DNS_MODE


def provider_for_domain(certificates: Iterable[CertificateSpec], domain: str) -> str | None:
    """
    Find the provider id for a domain.

    Args:
        certificates: Configured certificate specs
        domain: Any name (primary or SAN) of a configured certificate

    Returns:
        Provider id of the first certificate listing the domain, None otherwise
    """
    for cert in certificates:
        if domain in cert.names:
            return cert.provider
    return None
