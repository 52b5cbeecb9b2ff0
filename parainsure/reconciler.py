"""
Reconciliation: drive every Active policy on the ledger to its terminal
state once its event has happened.

For each policy id ``0 .. policy_count-1`` in ascending order, one at a
time:

    status != Active                     → skip (mirror synced if behind)
    event_time > now                     → skip, event not yet happened
    now >= event_time + grace_period     → expire on the ledger
    otherwise                            → report the observed outcome;
                                           re-read; if eligible for payout,
                                           record Claimed + one Claim

The ledger is authoritative.  The local store only mirrors it, and a claim
is recorded at most once per policy no matter how often the read-back
repeats.  A policy the ledger already reports as Claimed gets its claim
backfilled if the store has none, so a failed store write is repaired on
a later tick.  A failure on one policy is logged and the loop moves on.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from eth_utils import from_wei
from loguru import logger

from parainsure.config import DAY_SECONDS
from parainsure.ledger import LedgerPolicy
from parainsure.models import Claim, PolicyRecord, PolicyStatus, ProductType

DEFAULT_GRACE_PERIOD = 2 * DAY_SECONDS

# ledger struct fields that are state rather than coverage terms
_STATE_FIELDS = ("holder", "status", "eligibleForPayout", "payoutAmount", "premium")

_CLAIM_TEXT = {
    ProductType.FLIGHT: (
        "Flight delay claim for policy {id}",
        "Automatic payout for flight delay of {value} minutes",
    ),
    ProductType.RAINFALL: (
        "Rainfall claim for policy {id}",
        "Automatic payout for observed rainfall of {value} mm",
    ),
}

_BACKFILL_TEXT = "Payout recorded on the ledger for policy {id}; outcome not available locally"


@dataclass
class TickReport:
    """What one reconciliation pass did."""

    started_at: float
    finished_at: float | None = None
    total: int = 0
    overlapped: bool = False
    skipped: list[int] = field(default_factory=list)
    pending: list[int] = field(default_factory=list)
    expired: list[int] = field(default_factory=list)
    processed: list[int] = field(default_factory=list)
    claimed: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "total": self.total,
            "overlapped": self.overlapped,
            "skipped": self.skipped,
            "pending": self.pending,
            "expired": self.expired,
            "processed": self.processed,
            "claimed": self.claimed,
            "failed": {str(k): v for k, v in self.failed.items()},
        }


class Reconciler:
    """One reconciliation pass per ``tick()``; overlapping ticks are skipped.

    Parameters
    ----------
    ledger : Ledger
    outcome_source : OutcomeSource
    store : RecordStore
    product : ProductType | str
        Product of the policies on this ledger (claim type and wording).
    grace_period_seconds : int
        Time after the event during which the outcome may still be reported.
    clock : callable
        Returns the current unix time in seconds.
    """

    def __init__(self, ledger, outcome_source, store, product=ProductType.FLIGHT,
                 grace_period_seconds: int = DEFAULT_GRACE_PERIOD,
                 clock: Callable[[], float] = time.time):
        self.ledger = ledger
        self.outcome_source = outcome_source
        self.store = store
        self.product = ProductType(product)
        self.grace_period_seconds = grace_period_seconds
        self.clock = clock
        self._running = threading.Lock()
        # policy id -> (tx hash, outcome) of a processed claim not yet stored
        self._unrecorded: dict[int, tuple[str, int]] = {}

    def tick(self) -> TickReport:
        report = TickReport(started_at=self.clock())
        if not self._running.acquire(blocking=False):
            logger.warning("Reconciliation already running, skipping this tick")
            report.overlapped = True
            report.finished_at = self.clock()
            return report

        try:
            report.total = self.ledger.policy_count()
            logger.info("Reconciling {} {} policies", report.total, self.product.value)

            for policy_id in range(report.total):
                try:
                    outcome = self.reconcile_policy(policy_id, int(self.clock()))
                except Exception as exc:
                    logger.exception("Policy {}: reconciliation failed", policy_id)
                    report.failed[policy_id] = str(exc)
                    continue
                getattr(report, outcome).append(policy_id)
        finally:
            self._running.release()

        report.finished_at = self.clock()
        logger.info(
            "Tick done: {} expired, {} processed, {} claimed, {} failed",
            len(report.expired), len(report.processed), len(report.claimed), len(report.failed),
        )
        return report

    def reconcile_policy(self, policy_id: int, now: int) -> str:
        """Advance one policy.  Returns the ``TickReport`` bucket it belongs to."""
        policy = self.ledger.get_policy(policy_id)
        logger.debug(
            "Policy {} status={} event_time={} now={}",
            policy_id, policy.status.label, policy.event_time, now,
        )

        if policy.status is not PolicyStatus.ACTIVE:
            if policy.status is PolicyStatus.CLAIMED:
                self._backfill_claim(policy)
            else:
                self._sync_mirror(policy)
            return "skipped"

        if policy.event_time > now:
            logger.debug("Policy {}: event has not happened yet", policy_id)
            return "pending"

        if now >= policy.event_time + self.grace_period_seconds:
            logger.info("Policy {}: grace period passed, expiring", policy_id)
            tx_hash = self.ledger.expire_policy(policy_id)
            self._mark(policy, PolicyStatus.EXPIRED)
            logger.info("Policy {} expired (tx={})", policy_id, tx_hash)
            return "expired"

        value = self.outcome_source.fetch_outcome(policy)
        logger.info("Policy {}: reporting outcome {}", policy_id, value)
        tx_hash = self.ledger.process_outcome(policy_id, value)

        updated = self.ledger.get_policy(policy_id)
        if not updated.eligible_for_payout and updated.status is not PolicyStatus.CLAIMED:
            if updated.status is not PolicyStatus.ACTIVE:
                self._sync_mirror(updated)
            logger.info("Policy {} processed, not eligible for payout (tx={})", policy_id, tx_hash)
            return "processed"

        # kept until the claim is stored so a later tick can still cite the tx
        self._unrecorded[policy_id] = (tx_hash, value)
        if self._record_claim(updated):
            logger.info("Policy {} claimed: payout {} wei (tx={})", policy_id, updated.payout_amount, tx_hash)
            return "claimed"
        logger.warning("Policy {}: claim already recorded, not duplicating", policy_id)
        return "processed"

    # ------------------------------------------------------------------------

    def _record_claim(self, policy: LedgerPolicy) -> bool:
        tx_hash, value = self._unrecorded.get(policy.id, (None, None))
        subject, description = _CLAIM_TEXT[self.product]
        claim = Claim(
            policy_id=policy.id,
            holder=policy.holder,
            amount=policy.payout_amount,
            transaction_hash=tx_hash,
            contract_address=self.ledger.contract_address,
            type=self.product,
            incident_date=datetime.fromtimestamp(policy.event_time, tz=timezone.utc),
            subject=subject.format(id=policy.id),
            description=(
                description.format(value=value) if value is not None
                else _BACKFILL_TEXT.format(id=policy.id)
            ),
        )
        created = self.store.record_claim(claim, fallback=self._mirror_from(policy))
        self._unrecorded.pop(policy.id, None)
        return created

    def _backfill_claim(self, policy: LedgerPolicy) -> None:
        # Claimed on the ledger: the mirror only reaches Claimed together with its claim
        if self._record_claim(policy):
            logger.warning("Policy {}: claimed on ledger without a local claim, recorded it now", policy.id)

    def _mirror_from(self, policy: LedgerPolicy) -> PolicyRecord:
        raw = policy.raw
        return PolicyRecord(
            id=policy.id,
            product=self.product,
            holder=policy.holder,
            coverage={k: v for k, v in raw.items() if k not in _STATE_FIELDS},
            premium=float(from_wei(int(raw.get("premium", 0)), "ether")),
        )

    def _mark(self, policy: LedgerPolicy, status: PolicyStatus) -> None:
        mirror = self.store.find_policy(policy.id)
        if mirror is None:
            mirror = self._mirror_from(policy)
            mirror.status = status
            self.store.add_policy(mirror)
            return
        if mirror.is_terminal:
            return
        mirror.transition(status)
        self.store.update_policy(mirror)

    def _sync_mirror(self, policy: LedgerPolicy) -> None:
        # Only an existing Active mirror is moved; nothing is written to the ledger
        mirror = self.store.find_policy(policy.id)
        if mirror is not None and not mirror.is_terminal and policy.status is not PolicyStatus.ACTIVE:
            logger.info("Policy {}: local record behind ledger, syncing to {}", policy.id, policy.status.label)
            mirror.transition(policy.status)
            self.store.update_policy(mirror)
