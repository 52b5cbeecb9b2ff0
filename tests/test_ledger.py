"""Tests for the web3 ledger client that do not need a node."""

from types import SimpleNamespace

import pytest
import requests
from web3.exceptions import TransactionNotFound as Web3TransactionNotFound

from conftest import CONTRACT, HOLDER, SIGNER_KEY
from parainsure.config import Settings
from parainsure.errors import ConfigurationError, LedgerError, TransactionNotFound
from parainsure.ledger import PRODUCT_BINDINGS, Web3Ledger, default_abi, policy_from_struct
from parainsure.models import Application, ApplicationStatus, PolicyStatus, ProductType
from parainsure.payment import verify_payment


def _ledger(product="flight", **kw):
    return Web3Ledger("http://127.0.0.1:8545", CONTRACT.lower(), SIGNER_KEY, product=product, **kw)


class StubCall:
    def __init__(self, result):
        self.result = result

    def call(self):
        return self.result


# ---------------------------------------------------------------------------
# Struct mapping
# ---------------------------------------------------------------------------

def test_policy_from_struct():
    raw = {"holder": HOLDER, "flightTime": 1_750_000_000, "status": 1,
           "payoutAmount": 10**18, "eligibleForPayout": True}
    policy = policy_from_struct(3, raw, "flightTime")
    assert policy.id == 3
    assert policy.status is PolicyStatus.CLAIMED
    assert policy.event_time == 1_750_000_000
    assert policy.payout_amount == 10**18
    assert policy.eligible_for_payout


def test_policy_from_struct_missing_field():
    with pytest.raises(LedgerError, match="flightTime"):
        policy_from_struct(0, {"holder": HOLDER, "status": 0}, "flightTime")


def test_policy_from_struct_unknown_status():
    with pytest.raises(LedgerError):
        policy_from_struct(0, {"holder": HOLDER, "status": 7, "flightTime": 1}, "flightTime")


# ---------------------------------------------------------------------------
# Bindings
# ---------------------------------------------------------------------------

def test_default_abi_uses_binding_names():
    names = {e["name"] for e in default_abi("flight", PRODUCT_BINDINGS["flight"])}
    assert names == {"policyCounter", "policies", "processFlightStatus", "expirePolicy"}


def test_function_names_are_configurable():
    ledger = _ledger("rainfall", functions={"process": "submitRainfall"})
    assert ledger.binding["process"] == "submitRainfall"
    assert ledger.binding["event_time_field"] == "endTime"
    assert {e["name"] for e in ledger.abi} >= {"submitRainfall", "policies"}


def test_contract_address_is_checksummed():
    assert _ledger().contract_address == CONTRACT


def test_missing_settings_fail_at_construction():
    with pytest.raises(ConfigurationError):
        Web3Ledger("", CONTRACT, SIGNER_KEY)
    with pytest.raises(ConfigurationError, match="RPC_URL"):
        Web3Ledger.from_settings(Settings(contract_address=CONTRACT, oracle_wallet_private_key=SIGNER_KEY))


def test_unknown_product_rejected():
    with pytest.raises(ConfigurationError, match="Unknown product"):
        _ledger("crop")


# ---------------------------------------------------------------------------
# Reads through a stubbed contract
# ---------------------------------------------------------------------------

def test_get_policy_zips_struct_outputs(monkeypatch):
    ledger = _ledger()
    result = [HOLDER, "TG635", 1_750_000_000, 100, 2, 193, 0, 0, False]
    monkeypatch.setattr(ledger, "_fn", lambda key: (lambda *args: StubCall(result)))
    policy = ledger.get_policy(0)
    assert policy.holder == HOLDER
    assert policy.event_time == 1_750_000_000
    assert policy.status is PolicyStatus.ACTIVE
    assert policy.raw["flightNumber"] == "TG635"


def test_policy_count(monkeypatch):
    ledger = _ledger()
    monkeypatch.setattr(ledger, "_fn", lambda key: (lambda *args: StubCall(5)))
    assert ledger.policy_count() == 5


# ---------------------------------------------------------------------------
# Transactions through a stubbed node
# ---------------------------------------------------------------------------

TX_HASH = bytes.fromhex("cd" * 32)


class StubWrite:
    def __init__(self, name, args):
        self.name = name
        self.args = args

    def build_transaction(self, params):
        return {
            "to": CONTRACT,
            "value": 0,
            "gas": 200_000,
            "gasPrice": 10**9,
            "data": "0x",
            **params,
        }


class StubEth:
    chain_id = 31337

    def __init__(self, receipt_status=1, transactions=None, fail_with=None):
        self.receipt_status = receipt_status
        self.transactions = transactions or {}
        self.fail_with = fail_with
        self.sent = []

    def get_transaction_count(self, address, block):
        if self.fail_with is not None:
            raise self.fail_with
        return len(self.sent)

    def send_raw_transaction(self, raw):
        self.sent.append(raw)
        return TX_HASH

    def wait_for_transaction_receipt(self, tx_hash, timeout):
        return {"status": self.receipt_status, "transactionHash": tx_hash}

    def get_transaction(self, tx_hash):
        if tx_hash not in self.transactions:
            raise Web3TransactionNotFound(f"Transaction with hash: '{tx_hash}' not found.")
        return self.transactions[tx_hash]


def _stubbed(monkeypatch, eth):
    ledger = _ledger()
    monkeypatch.setattr(ledger, "w3", SimpleNamespace(eth=eth))
    monkeypatch.setattr(ledger, "_fn", lambda key: (lambda *args: StubWrite(key, args)))
    return ledger


def test_process_outcome_returns_hex_hash(monkeypatch):
    eth = StubEth()
    ledger = _stubbed(monkeypatch, eth)
    assert ledger.process_outcome(0, 180) == "0x" + "cd" * 32
    assert ledger.expire_policy(1) == "0x" + "cd" * 32
    assert len(eth.sent) == 2


def test_reverted_receipt_raises(monkeypatch):
    ledger = _stubbed(monkeypatch, StubEth(receipt_status=0))
    with pytest.raises(LedgerError, match="reverted"):
        ledger.expire_policy(0)


def test_rpc_error_is_wrapped(monkeypatch):
    ledger = _stubbed(monkeypatch, StubEth(fail_with=requests.ConnectionError("connection refused")))
    with pytest.raises(LedgerError, match="expire policy 0 failed"):
        ledger.expire_policy(0)


def test_get_transaction_maps_fields(monkeypatch):
    tx = {"hash": TX_HASH, "from": HOLDER, "to": CONTRACT, "value": 10**16, "blockNumber": 12}
    ledger = _stubbed(monkeypatch, StubEth(transactions={"0xabc": tx}))
    assert ledger.get_transaction("0xabc") == {
        "hash": "0x" + "cd" * 32, "from": HOLDER, "to": CONTRACT,
        "value": 10**16, "block_number": 12,
    }


def test_unknown_transaction_is_none_and_payment_not_found(monkeypatch):
    ledger = _stubbed(monkeypatch, StubEth())
    assert ledger.get_transaction("0xabc") is None

    application = Application(
        product=ProductType.FLIGHT, holder=HOLDER, inputs={}, probability=0.1,
        premium=0.01, quote={}, status=ApplicationStatus.APPROVED,
    )
    with pytest.raises(TransactionNotFound):
        verify_payment(application, "0xabc", ledger, CONTRACT)
