"""
Parametric insurance oracle: API entry points.

Endpoint functions:
    1. quote_flight_premium()     compute a flight-delay premium (no storage)
    2. quote_rainfall_premium()   compute a rainfall premium from climate history
    3. submit_application()       quote + store a PendingApproval application
    4. review_application()       approve or reject
    5. sign_application()         oracle authorization for an approved application
    6. confirm_payment()          verify the on-chain payment, mark Paid
    7. expire_stale_applications() daily sweep of unpaid applications
    8. eth_thb_rate()             current ETH/THB conversion rate

The quote endpoints are stateless and take an optional ``Settings``.  The
application endpoints share one process-wide ``ApplicationService`` built by
``init()``: a server calls it once at startup, so a missing signing key or
ledger setting fails there instead of on the first request.
"""

from typing import Optional

from parainsure import risk_model
from parainsure.applications import ApplicationService
from parainsure.config import Settings, load_settings
from parainsure.fetchers import build_fetcher
from parainsure.ledger import Web3Ledger
from parainsure.rates import RateService
from parainsure.signer import OracleSigner
from parainsure.store import build_store

_rates = RateService()
_service: Optional[ApplicationService] = None


def build_application_service(settings: Settings) -> ApplicationService:
    """Wire an ``ApplicationService`` with its signer, ledger, store and fetcher.

    Raises ``ConfigurationError`` if the signing key or any ledger setting
    is missing.
    """
    settings.require_signer()
    settings.require_ledger()
    return ApplicationService(
        store=build_store(settings.database_url),
        signer=OracleSigner.from_settings(settings),
        ledger=Web3Ledger.from_settings(settings),
        fetcher=build_fetcher(settings.climate_fetcher),
        rates=_rates,
        settings=settings,
    )


def init(settings: Optional[Settings] = None) -> ApplicationService:
    """Build the shared service.  Call once at process startup."""
    global _service
    _service = build_application_service(settings or load_settings())
    return _service


def get_service() -> ApplicationService:
    if _service is None:
        return init()
    return _service


# ── Endpoint 1: Flight premium ───────────────────────────────────────

def quote_flight_premium(
    airline: str,
    dep_airport: str,
    arr_airport: str,
    dep_time: str,
    flight_date: str,
    dep_country: str,
    arr_country: str,
    coverage_amount: float,
    num_persons: int = 1,
    settings: Optional[Settings] = None,
) -> dict:
    """
    Estimate the flight-delay premium.

    Returns
    -------
    dict with ``probability``, ``premium_per_person``, ``total_premium``
    and the per-signal ``breakdown``.
    """
    settings = settings or Settings()
    return risk_model.estimate_flight_premium(
        airline, dep_airport, arr_airport, dep_time, flight_date,
        dep_country, arr_country, coverage_amount, num_persons,
        risk_loading=settings.risk_loading,
    )


# ── Endpoint 2: Rainfall premium ─────────────────────────────────────

def quote_rainfall_premium(
    lat: float,
    lon: float,
    start_date: str,
    end_date: str,
    threshold: float,
    coverage_amount: float,
    condition: str = "below",
    settings: Optional[Settings] = None,
) -> dict:
    """
    Price a rainfall policy from the location's last ten seasons.

    Returns
    -------
    dict with ``trigger_probability``, ``expected_payout`` and
    ``final_premium``, or ``{"error": ..., "message": ...}`` when the
    history is too thin or shows no risk.
    """
    settings = settings or load_settings()
    return risk_model.assess_rainfall_risk(
        lat, lon, start_date, end_date, threshold, coverage_amount, condition,
        fetcher=build_fetcher(settings.climate_fetcher),
        years_to_analyze=settings.years_to_analyze,
        min_valid_years=settings.min_valid_years,
        margin=settings.margin,
        platform_fee=settings.platform_fee,
        min_premium=settings.min_premium,
    )


# ── Endpoint 3-4: Applications ───────────────────────────────────────

def submit_application(product: str, holder: str, **inputs) -> dict:
    """Quote and store an application (``product`` is ``"flight"`` or ``"rainfall"``)."""
    if product == "flight":
        return get_service().submit_flight(holder=holder, **inputs)
    if product == "rainfall":
        return get_service().submit_rainfall(holder=holder, **inputs)
    raise ValueError(f"Unknown product: '{product}'. Choose from: ['flight', 'rainfall']")


def review_application(application_id: str, approve: bool) -> dict:
    service = get_service()
    return service.approve(application_id) if approve else service.reject(application_id)


# ── Endpoint 5: Oracle signature ─────────────────────────────────────

def sign_application(application_id: str, policy_id: Optional[int] = None) -> dict:
    """Signature the contract checks before it accepts the premium."""
    return get_service().sign(application_id, policy_id=policy_id)


# ── Endpoint 6: Payment confirmation ─────────────────────────────────

def confirm_payment(application_id: str, policy_id_on_chain: int, transaction_hash: str) -> dict:
    """
    Verify the user's payment transaction and record the policy.

    Raises ``TransactionNotFound`` if the node does not know the hash yet.
    """
    return get_service().confirm_payment(application_id, policy_id_on_chain, transaction_hash)


# ── Endpoint 7-8: Maintenance ────────────────────────────────────────

def expire_stale_applications() -> list:
    return get_service().expire_stale()


def eth_thb_rate() -> dict:
    return _rates.rate_info()
