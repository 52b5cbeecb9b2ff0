"""
Record store for applications, the local policy mirror, and claims.

Two implementations share the ``RecordStore`` protocol:

- ``InMemoryRecordStore``   : process-local, for tests and demos
- ``SqlAlchemyRecordStore`` : any SQLAlchemy URL (sqlite by default)

The only multi-entity write is ``record_claim``: the policy moves to
Claimed and the claim row is inserted together, or neither happens.  At
most one claim exists per policy; a second ``record_claim`` for the same
policy is a no-op returning False.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    select,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from parainsure.errors import ApplicationNotFound, PolicyNotFound
from parainsure.models import (
    Application,
    ApplicationStatus,
    Claim,
    ClaimStatus,
    PolicyRecord,
    PolicyStatus,
    ProductType,
)


class RecordStore(Protocol):
    def add_application(self, application: Application) -> Application: ...
    def get_application(self, application_id: str) -> Application: ...
    def update_application(self, application: Application) -> Application: ...
    def list_applications(self, status: ApplicationStatus | None = None) -> list[Application]: ...

    def add_policy(self, policy: PolicyRecord) -> PolicyRecord: ...
    def get_policy(self, policy_id: int) -> PolicyRecord: ...
    def find_policy(self, policy_id: int) -> PolicyRecord | None: ...
    def update_policy(self, policy: PolicyRecord) -> PolicyRecord: ...

    def record_claim(self, claim: Claim, fallback: PolicyRecord | None = None) -> bool: ...
    def list_claims(self, policy_id: int | None = None) -> list[Claim]: ...


def _claimed(policy: PolicyRecord) -> PolicyRecord:
    if policy.status is PolicyStatus.CLAIMED:
        return policy
    policy = replace(policy)
    policy.transition(PolicyStatus.CLAIMED)
    return policy


# ============================================================================
# In-memory
# ============================================================================

class InMemoryRecordStore:
    """Dict-backed store.  Records are copied on the way in and out."""

    def __init__(self):
        self._lock = threading.RLock()
        self._applications: dict[str, Application] = {}
        self._policies: dict[int, PolicyRecord] = {}
        self._claims: dict[int, Claim] = {}

    # -- applications ---------------------------------------------------

    def add_application(self, application: Application) -> Application:
        with self._lock:
            self._applications[application.id] = copy.deepcopy(application)
        return application

    def get_application(self, application_id: str) -> Application:
        with self._lock:
            if application_id not in self._applications:
                raise ApplicationNotFound(f"Application not found: {application_id}")
            return copy.deepcopy(self._applications[application_id])

    def update_application(self, application: Application) -> Application:
        with self._lock:
            if application.id not in self._applications:
                raise ApplicationNotFound(f"Application not found: {application.id}")
            self._applications[application.id] = copy.deepcopy(application)
        return application

    def list_applications(self, status: ApplicationStatus | None = None) -> list[Application]:
        with self._lock:
            apps = [copy.deepcopy(a) for a in self._applications.values()
                    if status is None or a.status is status]
        return sorted(apps, key=lambda a: a.created_at)

    # -- policies -------------------------------------------------------

    def add_policy(self, policy: PolicyRecord) -> PolicyRecord:
        with self._lock:
            self._policies[policy.id] = copy.deepcopy(policy)
        return policy

    def get_policy(self, policy_id: int) -> PolicyRecord:
        policy = self.find_policy(policy_id)
        if policy is None:
            raise PolicyNotFound(f"Policy not found: {policy_id}")
        return policy

    def find_policy(self, policy_id: int) -> PolicyRecord | None:
        with self._lock:
            policy = self._policies.get(policy_id)
            return copy.deepcopy(policy) if policy is not None else None

    def update_policy(self, policy: PolicyRecord) -> PolicyRecord:
        with self._lock:
            if policy.id not in self._policies:
                raise PolicyNotFound(f"Policy not found: {policy.id}")
            self._policies[policy.id] = copy.deepcopy(policy)
        return policy

    # -- claims ---------------------------------------------------------

    def record_claim(self, claim: Claim, fallback: PolicyRecord | None = None) -> bool:
        with self._lock:
            if claim.policy_id in self._claims:
                return False
            policy = self._policies.get(claim.policy_id, fallback)
            if policy is None:
                raise PolicyNotFound(f"Policy not found: {claim.policy_id}")
            # transition first: an illegal move leaves both maps untouched
            self._policies[claim.policy_id] = copy.deepcopy(_claimed(policy))
            self._claims[claim.policy_id] = claim
            return True

    def list_claims(self, policy_id: int | None = None) -> list[Claim]:
        with self._lock:
            claims = [c for c in self._claims.values()
                      if policy_id is None or c.policy_id == policy_id]
        return sorted(claims, key=lambda c: c.policy_id)


# ============================================================================
# SQLAlchemy
# ============================================================================

Base = declarative_base()


class ApplicationRow(Base):
    __tablename__ = "applications"

    id = Column(String(32), primary_key=True)
    product = Column(String(16), nullable=False)
    holder = Column(String(42), nullable=False, index=True)
    inputs = Column(JSON, nullable=False, default=dict)
    quote = Column(JSON, nullable=False, default=dict)
    probability = Column(Float, nullable=False)
    premium = Column(Float, nullable=False)
    status = Column(String(32), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    policy_id_on_chain = Column(Integer, nullable=True)
    transaction_hash = Column(String(66), nullable=True)
    policy_created_at = Column(DateTime(timezone=True), nullable=True)


class PolicyRow(Base):
    __tablename__ = "policies"

    id = Column(Integer, primary_key=True, autoincrement=False)
    product = Column(String(16), nullable=False)
    holder = Column(String(42), nullable=False, index=True)
    coverage = Column(JSON, nullable=False, default=dict)
    premium = Column(Float, nullable=False)
    status = Column(Integer, nullable=False)
    application_id = Column(String(32), nullable=True)
    transaction_hash = Column(String(66), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ClaimRow(Base):
    __tablename__ = "claims"

    id = Column(String(32), primary_key=True)
    # unique: one claim per policy
    policy_id = Column(Integer, nullable=False, unique=True)
    holder = Column(String(42), nullable=False)
    # wei amounts overflow 64-bit integers
    amount = Column(Text, nullable=False)
    transaction_hash = Column(String(66), nullable=True)
    contract_address = Column(String(42), nullable=False)
    type = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False)
    incident_date = Column(DateTime(timezone=True), nullable=False)
    subject = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=False)


def _aware(dt: datetime | None) -> datetime | None:
    # sqlite drops tzinfo; everything is stored as UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _application_from_row(row: ApplicationRow) -> Application:
    return Application(
        id=row.id,
        product=ProductType(row.product),
        holder=row.holder,
        inputs=dict(row.inputs or {}),
        quote=dict(row.quote or {}),
        probability=row.probability,
        premium=row.premium,
        status=ApplicationStatus(row.status),
        created_at=_aware(row.created_at),
        policy_id_on_chain=row.policy_id_on_chain,
        transaction_hash=row.transaction_hash,
        policy_created_at=_aware(row.policy_created_at),
    )


def _fill_application_row(row: ApplicationRow, a: Application) -> None:
    row.product = a.product.value
    row.holder = a.holder
    row.inputs = a.inputs
    row.quote = a.quote
    row.probability = a.probability
    row.premium = a.premium
    row.status = a.status.value
    row.created_at = a.created_at
    row.policy_id_on_chain = a.policy_id_on_chain
    row.transaction_hash = a.transaction_hash
    row.policy_created_at = a.policy_created_at


def _policy_from_row(row: PolicyRow) -> PolicyRecord:
    return PolicyRecord(
        id=row.id,
        product=ProductType(row.product),
        holder=row.holder,
        coverage=dict(row.coverage or {}),
        premium=row.premium,
        status=PolicyStatus(row.status),
        application_id=row.application_id,
        transaction_hash=row.transaction_hash,
        updated_at=_aware(row.updated_at),
    )


def _fill_policy_row(row: PolicyRow, p: PolicyRecord) -> None:
    row.product = p.product.value
    row.holder = p.holder
    row.coverage = p.coverage
    row.premium = p.premium
    row.status = int(p.status)
    row.application_id = p.application_id
    row.transaction_hash = p.transaction_hash
    row.updated_at = p.updated_at


def _claim_from_row(row: ClaimRow) -> Claim:
    return Claim(
        id=row.id,
        policy_id=row.policy_id,
        holder=row.holder,
        amount=int(row.amount),
        transaction_hash=row.transaction_hash,
        contract_address=row.contract_address,
        type=ProductType(row.type),
        status=ClaimStatus(row.status),
        incident_date=_aware(row.incident_date),
        subject=row.subject,
        description=row.description,
        approved_at=_aware(row.approved_at),
    )


class SqlAlchemyRecordStore:
    """Relational store.  Tables are created on construction if missing."""

    def __init__(self, url: str = "sqlite:///parainsure.db", echo: bool = False):
        self.engine = create_engine(url, echo=echo)
        Base.metadata.create_all(self.engine)
        self._session = sessionmaker(bind=self.engine, expire_on_commit=False)

    # -- applications ---------------------------------------------------

    def add_application(self, application: Application) -> Application:
        with self._session.begin() as s:
            row = ApplicationRow(id=application.id)
            _fill_application_row(row, application)
            s.add(row)
        return application

    def get_application(self, application_id: str) -> Application:
        with self._session() as s:
            row = s.get(ApplicationRow, application_id)
            if row is None:
                raise ApplicationNotFound(f"Application not found: {application_id}")
            return _application_from_row(row)

    def update_application(self, application: Application) -> Application:
        with self._session.begin() as s:
            row = s.get(ApplicationRow, application.id)
            if row is None:
                raise ApplicationNotFound(f"Application not found: {application.id}")
            _fill_application_row(row, application)
        return application

    def list_applications(self, status: ApplicationStatus | None = None) -> list[Application]:
        stmt = select(ApplicationRow).order_by(ApplicationRow.created_at)
        if status is not None:
            stmt = stmt.where(ApplicationRow.status == status.value)
        with self._session() as s:
            return [_application_from_row(r) for r in s.scalars(stmt)]

    # -- policies -------------------------------------------------------

    def add_policy(self, policy: PolicyRecord) -> PolicyRecord:
        with self._session.begin() as s:
            row = PolicyRow(id=policy.id)
            _fill_policy_row(row, policy)
            s.merge(row)
        return policy

    def get_policy(self, policy_id: int) -> PolicyRecord:
        policy = self.find_policy(policy_id)
        if policy is None:
            raise PolicyNotFound(f"Policy not found: {policy_id}")
        return policy

    def find_policy(self, policy_id: int) -> PolicyRecord | None:
        with self._session() as s:
            row = s.get(PolicyRow, policy_id)
            return _policy_from_row(row) if row is not None else None

    def update_policy(self, policy: PolicyRecord) -> PolicyRecord:
        with self._session.begin() as s:
            row = s.get(PolicyRow, policy.id)
            if row is None:
                raise PolicyNotFound(f"Policy not found: {policy.id}")
            _fill_policy_row(row, policy)
        return policy

    # -- claims ---------------------------------------------------------

    def record_claim(self, claim: Claim, fallback: PolicyRecord | None = None) -> bool:
        with self._session.begin() as s:
            existing = s.scalar(select(ClaimRow).where(ClaimRow.policy_id == claim.policy_id))
            if existing is not None:
                return False

            row = s.get(PolicyRow, claim.policy_id)
            if row is None:
                if fallback is None:
                    raise PolicyNotFound(f"Policy not found: {claim.policy_id}")
                row = PolicyRow(id=claim.policy_id)
                s.add(row)
                policy = fallback
            else:
                policy = _policy_from_row(row)
            _fill_policy_row(row, _claimed(policy))

            s.add(ClaimRow(
                id=claim.id,
                policy_id=claim.policy_id,
                holder=claim.holder,
                amount=str(claim.amount),
                transaction_hash=claim.transaction_hash,
                contract_address=claim.contract_address,
                type=claim.type.value,
                status=claim.status.value,
                incident_date=claim.incident_date,
                subject=claim.subject,
                description=claim.description,
                approved_at=claim.approved_at,
            ))
        return True

    def list_claims(self, policy_id: int | None = None) -> list[Claim]:
        stmt = select(ClaimRow).order_by(ClaimRow.policy_id)
        if policy_id is not None:
            stmt = stmt.where(ClaimRow.policy_id == policy_id)
        with self._session() as s:
            return [_claim_from_row(r) for r in s.scalars(stmt)]


def build_store(url: str | None) -> RecordStore:
    """``"memory"`` / None → in-memory store; anything else is a SQLAlchemy URL."""
    if not url or url == "memory":
        return InMemoryRecordStore()
    return SqlAlchemyRecordStore(url)
