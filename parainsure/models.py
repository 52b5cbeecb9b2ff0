"""Domain records: applications, the local policy mirror, and claims."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from parainsure.errors import InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class ProductType(str, Enum):
    FLIGHT = "flight"
    RAINFALL = "rainfall"


class ApplicationStatus(str, Enum):
    PENDING_APPROVAL = "PendingApproval"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    PAID = "Paid"
    EXPIRED = "Expired"


# Forward-only.  Expired is reached only by the stale-application sweep.
APPLICATION_TRANSITIONS: dict[ApplicationStatus, set[ApplicationStatus]] = {
    ApplicationStatus.PENDING_APPROVAL: {
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
        ApplicationStatus.EXPIRED,
    },
    ApplicationStatus.APPROVED: {ApplicationStatus.PAID, ApplicationStatus.EXPIRED},
    ApplicationStatus.REJECTED: set(),
    ApplicationStatus.PAID: set(),
    ApplicationStatus.EXPIRED: set(),
}


class PolicyStatus(IntEnum):
    """Mirrors the contract's status enum ordinal."""

    ACTIVE = 0
    CLAIMED = 1
    EXPIRED = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()


class ClaimStatus(str, Enum):
    APPROVED = "APPROVED"


@dataclass
class Application:
    """A quote awaiting approval and payment.  ``premium`` never changes after creation."""

    product: ProductType
    holder: str
    inputs: dict[str, Any]
    probability: float
    premium: float
    quote: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    status: ApplicationStatus = ApplicationStatus.PENDING_APPROVAL
    created_at: datetime = field(default_factory=utcnow)
    policy_id_on_chain: int | None = None
    transaction_hash: str | None = None
    policy_created_at: datetime | None = None

    def transition(self, target: ApplicationStatus) -> None:
        if target not in APPLICATION_TRANSITIONS[self.status]:
            raise InvalidTransition(f"application {self.id}", self.status.value, target.value)
        self.status = target


@dataclass
class PolicyRecord:
    """Local mirror of an on-chain policy, keyed by the on-chain id."""

    id: int
    product: ProductType
    holder: str
    coverage: dict[str, Any]
    premium: float
    status: PolicyStatus = PolicyStatus.ACTIVE
    application_id: str | None = None
    transaction_hash: str | None = None
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status is not PolicyStatus.ACTIVE

    def transition(self, target: PolicyStatus) -> None:
        if self.is_terminal or target is PolicyStatus.ACTIVE:
            raise InvalidTransition(f"policy {self.id}", self.status.label, target.label)
        self.status = target
        self.updated_at = utcnow()


@dataclass(frozen=True)
class Claim:
    """Immutable record of a payout triggered on the ledger."""

    policy_id: int
    holder: str
    amount: int
    transaction_hash: str | None
    contract_address: str
    type: ProductType
    incident_date: datetime
    subject: str
    description: str
    status: ClaimStatus = ClaimStatus.APPROVED
    approved_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)
