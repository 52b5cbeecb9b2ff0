"""Shared fakes: an in-process ledger, fixed clock and well-known keys."""

from dataclasses import replace

import pytest

from parainsure.errors import LedgerError
from parainsure.ledger import LedgerPolicy
from parainsure.models import PolicyStatus

# Hardhat / Anvil development accounts #0 and #1
SIGNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
SIGNER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
HOLDER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

NOW = 1_750_000_000
DAY = 86_400


def make_policy(policy_id, event_time, status=PolicyStatus.ACTIVE, **raw):
    raw = {"holder": HOLDER, "premium": 10**16, "coverage": 10**18, **raw}
    return LedgerPolicy(
        id=policy_id,
        holder=HOLDER,
        status=status,
        event_time=event_time,
        raw=raw,
    )


class FakeLedger:
    """Ledger double.  A reported outcome of at least ``payout_threshold``
    makes the policy Claimed and eligible for payout."""

    contract_address = CONTRACT

    def __init__(self, policies=(), transactions=None, payout_threshold=120):
        self.policies = {p.id: p for p in policies}
        self.transactions = dict(transactions or {})
        self.payout_threshold = payout_threshold
        self.writes = []
        self.reads = []
        self.fail_reads = set()
        self.sticky_eligible = set()

    def _tx(self):
        return "0x" + f"{len(self.writes):064x}"

    def policy_count(self):
        return len(self.policies)

    def get_policy(self, policy_id):
        self.reads.append(policy_id)
        if policy_id in self.fail_reads:
            raise LedgerError(f"read of policy {policy_id} failed: node unavailable")
        return self.policies[policy_id]

    def expire_policy(self, policy_id):
        self.writes.append(("expire", policy_id, None))
        self.policies[policy_id] = replace(self.policies[policy_id], status=PolicyStatus.EXPIRED)
        return self._tx()

    def process_outcome(self, policy_id, value):
        self.writes.append(("process", policy_id, value))
        policy = self.policies[policy_id]
        if value >= self.payout_threshold:
            # policies in sticky_eligible stay Active, as if the status write lagged
            status = PolicyStatus.ACTIVE if policy_id in self.sticky_eligible else PolicyStatus.CLAIMED
            self.policies[policy_id] = replace(
                policy, status=status, eligible_for_payout=True,
                payout_amount=policy.raw["coverage"],
            )
        return self._tx()

    def get_transaction(self, tx_hash):
        return self.transactions.get(tx_hash)


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FixedClock()
