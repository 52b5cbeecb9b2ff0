"""
Application flow: quote → review → authorize → confirm payment.

    submit_*          compute the premium once, store PendingApproval
    approve / reject  reviewer decision
    sign              oracle authorization for an Approved application
    confirm_payment   verify the user's payment, mark Paid, create the policy mirror
    expire_stale      sweep unpaid applications that are too old or whose
                      coverage has already started

Business rejections (insufficient climate data, wrong payment, not yet
approved) come back as ``{"error": ...}`` / ``{"status": "rejected"}``
dicts.  Missing records and illegal status moves raise.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from loguru import logger

from parainsure import risk_model
from parainsure.encoding import ether_to_wei, scale_coordinate
from parainsure.errors import ConfigurationError
from parainsure.models import (
    Application,
    ApplicationStatus,
    PolicyRecord,
    ProductType,
    utcnow,
)
from parainsure.payment import expected_premium_wei, verify_payment
from parainsure.signer import OracleSigner, sign_flight_premium, sign_rainfall_policy

OPEN_STATUSES = (ApplicationStatus.PENDING_APPROVAL, ApplicationStatus.APPROVED)


def _whole(value: float, name: str) -> int:
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{name} must be a whole number, got {value}")
        return int(value)
    return value


def _application_view(app: Application) -> dict:
    return {
        "application_id": app.id,
        "product": app.product.value,
        "holder": app.holder,
        "status": app.status.value,
        "probability": app.probability,
        "premium": app.premium,
        "premium_wei": app.quote.get("premium_wei"),
        "created_at": app.created_at.isoformat(),
        "policy_id_on_chain": app.policy_id_on_chain,
        "transaction_hash": app.transaction_hash,
    }


class ApplicationService:
    """Owns the Application lifecycle up to the creation of the policy mirror.

    Parameters
    ----------
    store : RecordStore
    signer : OracleSigner, optional
        Required by ``sign``.
    ledger : Ledger, optional
        Required by ``confirm_payment``.
    fetcher : RainfallFetcher, optional
        Climate history for rainfall quotes.
    rates : RateService, optional
        When given, flight premiums are quoted in THB and converted to wei
        at submission; otherwise they are taken as ether.
    settings : Settings, optional
        Underwriting parameters (margin, fee, years, TTL).
    clock : callable
        Returns the current aware UTC datetime.
    """

    def __init__(self, store, signer: OracleSigner | None = None, ledger=None,
                 fetcher=None, rates=None, settings=None,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.signer = signer
        self.ledger = ledger
        self.fetcher = fetcher
        self.rates = rates
        self.settings = settings
        self.clock = clock

    def _setting(self, name: str, default):
        return getattr(self.settings, name, default) if self.settings is not None else default

    # ========================================================================
    # Submission
    # ========================================================================

    def submit_flight(
        self,
        holder: str,
        airline: str,
        flight_number: str,
        dep_airport: str,
        arr_airport: str,
        dep_time: str,
        flight_date: str,
        dep_country: str,
        arr_country: str,
        coverage_amount: float,
        num_persons: int,
    ) -> dict:
        quote = risk_model.estimate_flight_premium(
            airline, dep_airport, arr_airport, dep_time, flight_date,
            dep_country, arr_country, coverage_amount, num_persons,
            risk_loading=self._setting("risk_loading", risk_model.RISK_LOADING),
        )
        total = quote["total_premium"]
        if self.rates is not None:
            quote["premium_eth"] = self.rates.thb_to_eth(total)
            quote["premium_wei"] = self.rates.thb_to_wei(total)
        else:
            quote["premium_wei"] = ether_to_wei(total)

        app = Application(
            product=ProductType.FLIGHT,
            holder=holder,
            inputs={
                "airline": airline,
                "flight_number": flight_number,
                "dep_airport": dep_airport,
                "arr_airport": arr_airport,
                "dep_time": dep_time,
                "flight_date": flight_date,
                "dep_country": dep_country,
                "arr_country": arr_country,
                "coverage_amount": coverage_amount,
                "num_persons": num_persons,
            },
            probability=quote["probability"],
            premium=total,
            quote=quote,
            created_at=self.clock(),
        )
        self.store.add_application(app)
        logger.info("Flight application {} for {}: premium {}", app.id, flight_number, total)
        return {**_application_view(app), "quote": quote}

    def submit_rainfall(
        self,
        holder: str,
        lat: float,
        lon: float,
        start_date: str,
        end_date: str,
        threshold: float,
        coverage_amount: float,
        condition: str,
    ) -> dict:
        if self.fetcher is None:
            raise ConfigurationError("Rainfall quotes need a climate fetcher")

        quote = risk_model.assess_rainfall_risk(
            lat, lon, start_date, end_date, threshold, coverage_amount, condition,
            fetcher=self.fetcher,
            years_to_analyze=self._setting("years_to_analyze", risk_model.YEARS_TO_ANALYZE),
            min_valid_years=self._setting("min_valid_years", risk_model.MIN_VALID_YEARS),
            margin=self._setting("margin", risk_model.MARGIN),
            platform_fee=self._setting("platform_fee", risk_model.PLATFORM_FEE),
            min_premium=self._setting("min_premium", risk_model.MIN_PREMIUM),
            current_year=self.clock().year,
        )
        if "error" in quote:
            logger.info("Rainfall quote declined for ({}, {}): {}", lat, lon, quote["error"])
            return quote

        quote["premium_wei"] = ether_to_wei(quote["final_premium"])
        quote["scaled_location"] = {"latitude": scale_coordinate(lat), "longitude": scale_coordinate(lon)}

        app = Application(
            product=ProductType.RAINFALL,
            holder=holder,
            inputs={
                "lat": lat,
                "lon": lon,
                "start_date": start_date,
                "end_date": end_date,
                "threshold": threshold,
                "coverage_amount": coverage_amount,
                "condition": condition,
            },
            probability=quote["trigger_probability"],
            premium=quote["final_premium"],
            quote=quote,
            created_at=self.clock(),
        )
        self.store.add_application(app)
        logger.info("Rainfall application {}: premium {} ETH", app.id, app.premium)
        return {**_application_view(app), "quote": quote}

    # ========================================================================
    # Review
    # ========================================================================

    def get(self, application_id: str) -> dict:
        return _application_view(self.store.get_application(application_id))

    def approve(self, application_id: str) -> dict:
        return self._move(application_id, ApplicationStatus.APPROVED)

    def reject(self, application_id: str) -> dict:
        return self._move(application_id, ApplicationStatus.REJECTED)

    def is_approved(self, application_id: str) -> bool:
        return self.store.get_application(application_id).status is ApplicationStatus.APPROVED

    def _move(self, application_id: str, target: ApplicationStatus) -> dict:
        app = self.store.get_application(application_id)
        app.transition(target)
        self.store.update_application(app)
        logger.info("Application {} → {}", app.id, target.value)
        return _application_view(app)

    # ========================================================================
    # Authorization
    # ========================================================================

    def sign(self, application_id: str, policy_id: int | None = None) -> dict:
        """Oracle authorization for an Approved application.

        For rainfall, ``policy_id`` is the id the contract will assign; when
        omitted the application id is used as a 128-bit integer.
        """
        if self.signer is None:
            raise ConfigurationError("Signing requires an oracle signer")
        app = self.store.get_application(application_id)
        if app.status is not ApplicationStatus.APPROVED:
            return {
                "error": "not_approved",
                "message": f"Application {app.id} is {app.status.value}, not Approved.",
            }

        inputs = app.inputs
        if app.product is ProductType.FLIGHT:
            auth = sign_flight_premium(
                self.signer,
                flight_number=inputs["flight_number"],
                coverage_per_person=_whole(inputs["coverage_amount"], "coverage_amount"),
                num_persons=inputs["num_persons"],
                total_premium=app.premium,
            )
        else:
            auth = sign_rainfall_policy(
                self.signer,
                policy_id=int(app.id, 16) if policy_id is None else policy_id,
                holder=app.holder,
                coverage_amount=inputs["coverage_amount"],
                premium=app.premium,
                threshold=_whole(inputs["threshold"], "threshold"),
                start_date=inputs["start_date"],
                end_date=inputs["end_date"],
                condition=inputs["condition"],
                lat=inputs["lat"],
                lon=inputs["lon"],
            )
        return {"application_id": app.id, **auth}

    # ========================================================================
    # Payment
    # ========================================================================

    def confirm_payment(self, application_id: str, policy_id_on_chain: int, tx_hash: str) -> dict:
        """Verify the payment transaction; on success mark Paid and mirror the policy.

        Raises ``TransactionNotFound`` when the node does not know ``tx_hash``
        and ``InvalidTransition`` when the application is not Approved.
        """
        if self.ledger is None:
            raise ConfigurationError("Payment confirmation requires a ledger client")
        app = self.store.get_application(application_id)
        if app.status is not ApplicationStatus.APPROVED:
            # raises InvalidTransition with the current status
            app.transition(ApplicationStatus.PAID)

        result = verify_payment(app, tx_hash, self.ledger, self.ledger.contract_address)
        if result["status"] != "verified":
            return {"application_id": app.id, **result}

        now = self.clock()
        app.transition(ApplicationStatus.PAID)
        app.policy_id_on_chain = policy_id_on_chain
        app.transaction_hash = tx_hash
        app.policy_created_at = now
        self.store.update_application(app)

        self.store.add_policy(PolicyRecord(
            id=policy_id_on_chain,
            product=app.product,
            holder=app.holder,
            coverage=self._coverage(app),
            premium=app.premium,
            application_id=app.id,
            transaction_hash=tx_hash,
            updated_at=now,
        ))
        logger.info("Application {} paid; policy {} recorded (tx={})", app.id, policy_id_on_chain, tx_hash)
        return {
            "application_id": app.id,
            "status": app.status.value,
            "policy_id_on_chain": policy_id_on_chain,
            "transaction_hash": tx_hash,
            "amount_wei": expected_premium_wei(app),
        }

    @staticmethod
    def _coverage(app: Application) -> dict:
        i = app.inputs
        if app.product is ProductType.FLIGHT:
            return {
                "flight_number": i["flight_number"],
                "flight_date": i["flight_date"],
                "dep_time": i["dep_time"],
                "coverage_per_person": i["coverage_amount"],
                "num_persons": i["num_persons"],
            }
        return {
            "lat_scaled": scale_coordinate(i["lat"]),
            "lon_scaled": scale_coordinate(i["lon"]),
            "start_date": i["start_date"],
            "end_date": i["end_date"],
            "threshold": i["threshold"],
            "condition": i["condition"],
            "coverage_amount": i["coverage_amount"],
        }

    # ========================================================================
    # Cleanup
    # ========================================================================

    def expire_stale(self, now: datetime | None = None, ttl_days: int | None = None) -> list[str]:
        """Expire unpaid applications older than the TTL or whose coverage date has passed."""
        now = now or self.clock()
        ttl = ttl_days if ttl_days is not None else self._setting("application_ttl_days", 5)
        cutoff = now - timedelta(days=ttl)
        today = now.date().isoformat()

        expired = []
        for status in OPEN_STATUSES:
            for app in self.store.list_applications(status):
                if app.policy_created_at is not None:
                    continue
                starts = app.inputs.get("flight_date") or app.inputs.get("start_date") or ""
                if app.created_at < cutoff or (starts and starts[:10] < today):
                    app.transition(ApplicationStatus.EXPIRED)
                    self.store.update_application(app)
                    expired.append(app.id)

        logger.info("Expired {} stale application(s)", len(expired))
        return expired
