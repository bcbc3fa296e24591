"""
Order models for the certificate issuance state machine.

Closed status enums for ACME orders, authorizations and local
challenge progress, plus the per-order run-time state.
"""

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    """ACME order status as reported by the server (RFC 8555 7.1.6)."""

    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AuthorizationStatus(str, Enum):
    """ACME authorization status as reported by the server."""

    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ChallengeStatus(str, Enum):
    """Local challenge progress for one domain of an order."""

    NEW = "new"              # Nothing provisioned yet
    SOLVED = "solved"        # Challenge artifact provisioned
    MARKED = "marked"        # Server told the challenge is ready
    VALIDATED = "validated"  # Authorization valid, artifact cleaned up


class OrderInfo(BaseModel):
    """Server-side view of an order."""

    status: OrderStatus = Field(..., description="Order status")
    identifiers: list[str] = Field(default_factory=list, description="Domain names covered by the order")
    authorizations: list[str] = Field(default_factory=list, description="Authorization URLs")
    finalize: str | None = Field(None, description="Finalize URL")
    certificate: str | None = Field(None, description="Certificate URL once the order is valid")


class AuthorizationInfo(BaseModel):
    """Server-side view of one authorization."""

    status: AuthorizationStatus = Field(..., description="Authorization status")
    identifier: str | None = Field(None, description="Domain name being authorized")


class CertificateMeta(BaseModel):
    """Stored certificate metadata used for expiry scheduling."""

    exists: bool = Field(..., description="Whether a certificate file is present")
    cert_path: str | None = Field(None, description="Path of the certificate file")
    not_after_ts: int | None = Field(None, description="Certificate expiry as epoch seconds")


@dataclass
class OrderState:
    """
    Tracks one in-flight certificate order.

    Domains are authorized strictly one at a time; ``idx`` is the
    1-based position of the domain currently being authorized.
    """

    domains: list[str]
    idx: int = 1
    challenges: dict[str, ChallengeStatus] = field(default_factory=dict)
    csr_sent: bool = False

    @classmethod
    def new(cls, domains: list[str]) -> "OrderState":
        return cls(
            domains=list(domains),
            challenges={domain: ChallengeStatus.NEW for domain in domains},
        )

    @property
    def current_domain(self) -> str:
        return self.domains[self.idx - 1]

    @property
    def current_status(self) -> ChallengeStatus:
        return self.challenges[self.current_domain]


@dataclass
class RunState:
    """Process-wide mutable state: primary domain -> in-flight order."""

    orders: dict[str, OrderState] = field(default_factory=dict)
