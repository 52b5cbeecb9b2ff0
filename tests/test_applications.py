"""Tests for the application flow: submit, review, sign, confirm, expire."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import CONTRACT, HOLDER, SIGNER_ADDRESS, SIGNER_KEY, FakeLedger
from parainsure.applications import ApplicationService
from parainsure.encoding import ether_to_wei
from parainsure.errors import InvalidTransition, TransactionNotFound
from parainsure.models import ApplicationStatus, PolicyStatus
from parainsure.rates import RateService
from parainsure.signer import OracleSigner, recover_signer
from parainsure.store import InMemoryRecordStore

NOW = datetime(2025, 5, 1, 9, 0, tzinfo=timezone.utc)
TX = "0x" + "ef" * 32


class YearFetcher:
    def __init__(self, totals):
        self.totals = totals

    def fetch_rainfall_total(self, lat, lon, start, end):
        return self.totals.get(start.year)


def _service(ledger=None, fetcher=None, rates=None, store=None):
    return ApplicationService(
        store=store or InMemoryRecordStore(),
        signer=OracleSigner(SIGNER_KEY),
        ledger=ledger,
        fetcher=fetcher,
        rates=rates,
        clock=lambda: NOW,
    )


def _flight(service, **kw):
    params = dict(
        holder=HOLDER, airline="TG", flight_number="TG635",
        dep_airport="BKK", arr_airport="NRT", dep_time="23:15",
        flight_date="2025-06-14", dep_country="TH", arr_country="JP",
        coverage_amount=1000, num_persons=2,
    )
    params.update(kw)
    return service.submit_flight(**params)


def _rainfall(service, **kw):
    params = dict(
        holder=HOLDER, lat=13.7563, lon=100.5018,
        start_date="2025-06-01", end_date="2025-08-31",
        threshold=100, coverage_amount=1, condition="below",
    )
    params.update(kw)
    return service.submit_rainfall(**params)


# 3 of 10 seasons below 100 mm
HISTORY = {2015 + i: v for i, v in enumerate([50, 60, 70, 500, 500, 500, 500, 500, 500, 500])}


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

def test_flight_submission_is_pending_with_frozen_premium():
    service = _service()
    out = _flight(service)
    assert out["status"] == "PendingApproval"
    app = service.store.get_application(out["application_id"])
    assert app.premium == out["quote"]["total_premium"]
    assert app.quote["premium_wei"] == ether_to_wei(app.premium)


def test_flight_premium_converted_from_thb_at_quote_time():
    rates = RateService(sources=[("fixed", lambda: 100_000.0)])
    out = _flight(_service(rates=rates), coverage_amount=1000, num_persons=1)
    total = out["quote"]["total_premium"]
    assert out["quote"]["premium_eth"] == pytest.approx(total / 100_000, abs=1e-8)
    assert out["premium_wei"] == ether_to_wei(f"{out['quote']['premium_eth']:.8f}")


def test_rainfall_submission_stores_quote():
    service = _service(fetcher=YearFetcher(HISTORY))
    out = _rainfall(service)
    assert out["status"] == "PendingApproval"
    assert out["quote"]["trigger_probability"] == 0.3
    assert out["quote"]["scaled_location"] == {"latitude": 137563, "longitude": 1005018}
    assert out["premium_wei"] == ether_to_wei(out["quote"]["final_premium"])


def test_declined_rainfall_quote_is_not_stored():
    service = _service(fetcher=YearFetcher({2024: 10.0}))
    out = _rainfall(service)
    assert out["error"] == "insufficient_data"
    assert service.store.list_applications() == []


# ---------------------------------------------------------------------------
# Review and signing
# ---------------------------------------------------------------------------

def test_sign_requires_approval():
    service = _service()
    app_id = _flight(service)["application_id"]
    assert service.sign(app_id)["error"] == "not_approved"


def test_flight_signature_after_approval():
    service = _service()
    app_id = _flight(service, coverage_amount=100)["application_id"]
    service.approve(app_id)
    assert service.is_approved(app_id)

    auth = service.sign(app_id)
    assert auth["signer"] == SIGNER_ADDRESS
    assert auth["fields"]["flight_number"] == "TG635"
    assert auth["fields"]["coverage_per_person"] == 100
    message_hash = bytes.fromhex(auth["message_hash"][2:])
    assert recover_signer(message_hash, auth["signature"]) == SIGNER_ADDRESS


def test_rainfall_signature_uses_given_policy_id():
    service = _service(fetcher=YearFetcher(HISTORY))
    app_id = _rainfall(service)["application_id"]
    service.approve(app_id)
    auth = service.sign(app_id, policy_id=42)
    assert auth["fields"]["policy_id"] == 42
    assert auth["fields"]["holder"] == HOLDER
    assert auth["fields"]["condition"] == 0


def test_rejected_application_cannot_be_approved():
    service = _service()
    app_id = _flight(service)["application_id"]
    service.reject(app_id)
    with pytest.raises(InvalidTransition):
        service.approve(app_id)


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------

def _paying_ledger(service, app_id, **overrides):
    app = service.store.get_application(app_id)
    tx = {"hash": TX, "from": HOLDER, "to": CONTRACT, "value": app.quote["premium_wei"]}
    tx.update(overrides)
    service.ledger = FakeLedger(transactions={TX: tx})
    return service.ledger


def test_confirm_payment_marks_paid_and_mirrors_policy():
    service = _service(fetcher=YearFetcher(HISTORY))
    app_id = _rainfall(service)["application_id"]
    service.approve(app_id)
    _paying_ledger(service, app_id)

    out = service.confirm_payment(app_id, 5, TX)

    assert out["status"] == "Paid"
    app = service.store.get_application(app_id)
    assert app.status is ApplicationStatus.PAID
    assert app.policy_id_on_chain == 5
    assert app.transaction_hash == TX
    assert app.policy_created_at == NOW
    policy = service.store.get_policy(5)
    assert policy.status is PolicyStatus.ACTIVE
    assert policy.coverage["lat_scaled"] == 137563


def test_mismatched_payment_keeps_application_approved():
    service = _service()
    app_id = _flight(service)["application_id"]
    service.approve(app_id)
    ledger = _paying_ledger(service, app_id)
    ledger.transactions[TX]["value"] += 1

    out = service.confirm_payment(app_id, 5, TX)

    assert out["status"] == "rejected"
    assert service.store.get_application(app_id).status is ApplicationStatus.APPROVED
    assert service.store.find_policy(5) is None


def test_unknown_payment_transaction_raises():
    service = _service()
    app_id = _flight(service)["application_id"]
    service.approve(app_id)
    service.ledger = FakeLedger()
    with pytest.raises(TransactionNotFound):
        service.confirm_payment(app_id, 5, TX)


def test_payment_for_unapproved_application_raises():
    service = _service()
    app_id = _flight(service)["application_id"]
    _paying_ledger(service, app_id)
    with pytest.raises(InvalidTransition):
        service.confirm_payment(app_id, 5, TX)


# ---------------------------------------------------------------------------
# Stale applications
# ---------------------------------------------------------------------------

def test_expire_stale_applications():
    store = InMemoryRecordStore()
    old = _service(store=store)
    old.clock = lambda: NOW - timedelta(days=6)
    stale_id = _flight(old, flight_date="2025-07-01")["application_id"]

    service = _service(store=store)
    departed_id = _flight(service, flight_date="2025-04-30")["application_id"]
    fresh_id = _flight(service, flight_date="2025-07-01")["application_id"]
    service.approve(fresh_id)

    expired = service.expire_stale(ttl_days=5)

    assert set(expired) == {stale_id, departed_id}
    assert store.get_application(stale_id).status is ApplicationStatus.EXPIRED
    assert store.get_application(fresh_id).status is ApplicationStatus.APPROVED


def test_expire_stale_leaves_paid_applications():
    service = _service()
    app_id = _flight(service, flight_date="2025-05-02")["application_id"]
    service.approve(app_id)
    _paying_ledger(service, app_id)
    service.confirm_payment(app_id, 1, TX)

    assert service.expire_stale(now=NOW + timedelta(days=30)) == []
    assert service.store.get_application(app_id).status is ApplicationStatus.PAID
