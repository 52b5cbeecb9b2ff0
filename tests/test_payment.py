"""Tests for payment verification."""

import pytest

from conftest import CONTRACT, HOLDER, FakeLedger
from parainsure.errors import TransactionNotFound
from parainsure.models import Application, ApplicationStatus, ProductType
from parainsure.payment import MISMATCH_MESSAGE, expected_premium_wei, verify_payment

PREMIUM_WEI = 126_000_000_000_000_000
TX = "0x" + "ab" * 32
OTHER = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"


def _application(**quote):
    return Application(
        product=ProductType.RAINFALL,
        holder=HOLDER,
        inputs={},
        probability=0.1,
        premium=0.126,
        quote=quote,
        status=ApplicationStatus.APPROVED,
    )


def _ledger(**overrides):
    tx = {"hash": TX, "from": HOLDER, "to": CONTRACT, "value": PREMIUM_WEI}
    tx.update(overrides)
    return FakeLedger(transactions={TX: tx})


# ---------------------------------------------------------------------------
# Expected amount
# ---------------------------------------------------------------------------

def test_expected_amount_from_quote():
    assert expected_premium_wei(_application(premium_wei=12345)) == 12345


def test_expected_amount_falls_back_to_ether_premium():
    assert expected_premium_wei(_application()) == PREMIUM_WEI


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

def test_matching_transaction_is_verified():
    out = verify_payment(_application(), TX, _ledger(), CONTRACT)
    assert out["status"] == "verified"
    assert out["amount_wei"] == PREMIUM_WEI


def test_addresses_compare_case_insensitively():
    ledger = _ledger(**{"from": HOLDER.lower(), "to": CONTRACT.upper().replace("0X", "0x")})
    assert verify_payment(_application(), TX, ledger, CONTRACT)["status"] == "verified"


@pytest.mark.parametrize("delta", [-1, 1])
def test_amount_off_by_one_wei_is_rejected(delta):
    out = verify_payment(_application(), TX, _ledger(value=PREMIUM_WEI + delta), CONTRACT)
    assert out["status"] == "rejected"
    assert out["message"] == MISMATCH_MESSAGE
    assert [m["field"] for m in out["mismatches"]] == ["amount"]


def test_wrong_sender_is_rejected():
    out = verify_payment(_application(), TX, _ledger(**{"from": OTHER}), CONTRACT)
    assert [m["field"] for m in out["mismatches"]] == ["sender"]


def test_wrong_recipient_is_rejected():
    out = verify_payment(_application(), TX, _ledger(to=OTHER), CONTRACT)
    assert [m["field"] for m in out["mismatches"]] == ["recipient"]


def test_contract_creation_has_no_recipient():
    out = verify_payment(_application(), TX, _ledger(to=None), CONTRACT)
    assert out["status"] == "rejected"


def test_unknown_transaction_raises():
    with pytest.raises(TransactionNotFound) as exc:
        verify_payment(_application(), "0x" + "00" * 32, _ledger(), CONTRACT)
    assert exc.value.tx_hash == "0x" + "00" * 32
