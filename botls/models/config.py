"""
Configuration models for the certificate list.

Provides Pydantic models for the desired certificates and the
renewal policy loaded from the botls JSON configuration file.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

LETSENCRYPT_DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"

# One month
DEFAULT_RENEW_TIME = 2592000
DEFAULT_DATA_DIR = ".acme"


class CertificateSpec(BaseModel):
    """
    One desired certificate.

    The first name is the primary domain (certificate subject), the
    rest are Subject Alternative Names. ``expires_at`` is refreshed on
    every scheduling pass; -1 means no certificate is known yet.
    """

    names: list[str] = Field(..., description="Domain names, primary domain first")
    provider: str | None = Field(None, description="Challenge provider id, e.g. dns.vultr or http.webroot")
    expires_at: int = Field(default=-1, description="Certificate expiry as epoch seconds, -1 if absent")

    @field_validator("names")
    @classmethod
    def validate_names(cls, v: list[str]) -> list[str]:
        names = [name.strip().lower() for name in v if name and name.strip()]
        if not names:
            raise ValueError("At least one domain name required")
        if len(set(names)) != len(names):
            raise ValueError("Duplicate domain names in certificate")
        return names

    @property
    def primary_domain(self) -> str:
        return self.names[0]


class BotlsConfig(BaseModel):
    """Validated botls configuration."""

    account: str = Field(..., description="E-mail address of the ACME account")
    directory_url: str = Field(default=LETSENCRYPT_DIRECTORY_URL, description="ACME directory URL")
    certificates: list[CertificateSpec] = Field(default_factory=list, description="Certificates to keep issued")
    providers: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Challenge provider id -> provider credentials/options"
    )
    renew_time: int = Field(
        default=DEFAULT_RENEW_TIME, description="Seconds before expiry at which renewal starts"
    )
    data_dir: str = Field(default=DEFAULT_DATA_DIR, description="Storage directory for keys, orders and certificates")

    @field_validator("account")
    @classmethod
    def validate_account(cls, v: str) -> str:
        v = v.strip()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("account must be a valid e-mail address")
        return v

    @field_validator("renew_time")
    @classmethod
    def validate_renew_time(cls, v: int) -> int:
        if v < 0:
            raise ValueError("renew_time must not be negative")
        return v

    def provider_config(self, provider: str | None) -> dict[str, Any] | None:
        """Credentials table for a provider id, if configured."""
        if provider is None:
            return None
        return self.providers.get(provider)
