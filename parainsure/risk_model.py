"""
Risk scoring and premium calculation for the two parametric products.

Flight delay
------------
A fixed, explainable weighted sum of six independent scores:

    p = 0.25 * airline + 0.25 * departure_airport + 0.10 * arrival_airport
      + 0.15 * time_of_day + 0.10 * calendar + 0.15 * seasonal_weather

    premium_per_person = coverage * p * risk_loading
    total_premium      = premium_per_person * num_persons

Rainfall
--------
Empirical: the share of the last N years in which the seasonal rainfall
total at the location met the trigger condition.

    expected_payout = p * coverage
    premium         = max(expected_payout * (1 + margin + platform_fee), min_premium)

All functions are deterministic given their inputs (the rainfall variant
takes its climate fetcher as an argument).  Rounding is applied once, on
the returned payload only.
"""

from __future__ import annotations

import calendar
import math
from datetime import date, datetime, timezone
from typing import Any, Protocol

from loguru import logger

from parainsure.risk_tables import (
    AIRLINE_RISK,
    AIRPORT_RISK,
    HOLIDAY_WINDOWS,
    SEASONAL_WEATHER_RISK,
)


# ============================================================================
# Flight-delay model constants
# ============================================================================

FLIGHT_WEIGHTS: dict[str, float] = {
    "airline": 0.25,
    "dep_airport": 0.25,
    "arr_airport": 0.10,
    "time": 0.15,
    "calendar": 0.10,
    "weather": 0.15,
}

DEFAULT_AIRLINE_RISK = 0.20
DEFAULT_DEP_AIRPORT_RISK = 0.20
DEFAULT_ARR_AIRPORT_RISK = 0.15
DEFAULT_WEATHER_RISK = 0.10

HOLIDAY_RISK = 0.40
NON_HOLIDAY_RISK = 0.10

NIGHT_RISK = 0.25
AFTERNOON_RISK = 0.15
MORNING_RISK = 0.10

RISK_LOADING = 1.2


# ============================================================================
# Rainfall model constants
# ============================================================================

YEARS_TO_ANALYZE = 10
MIN_VALID_YEARS = 3
MARGIN = 0.10
PLATFORM_FEE = 0.05
MIN_PREMIUM = 0.01

RAINFALL_CONDITIONS = ("below", "above")


def _assert_finite_number(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {type(value).__name__}")
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"{name} must be finite, got {value}")


def _parse_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


# ============================================================================
# Individual flight scores
# ============================================================================

def airline_score(airline: str) -> float:
    return AIRLINE_RISK.get(airline.upper(), DEFAULT_AIRLINE_RISK)


def airport_score(airport: str, default: float) -> float:
    return AIRPORT_RISK.get(airport.upper(), default)


def time_score(dep_time: str) -> float:
    """Score the departure slot from its UTC hour.

    ``dep_time`` is ``HH:MM[:SS]`` with an optional UTC offset
    (``"23:15+07:00"``).  A time without an offset is taken as UTC.
    """
    try:
        t = datetime.fromisoformat(f"1970-01-01T{dep_time}")
    except ValueError:
        raise ValueError(f"Invalid departure time: '{dep_time}'") from None
    if t.tzinfo is not None:
        t = t.astimezone(timezone.utc)
    hour = t.hour
    if hour >= 18 or hour < 6:
        return NIGHT_RISK
    if 12 <= hour <= 17:
        return AFTERNOON_RISK
    return MORNING_RISK


def calendar_score(country: str, flight_date: str | date) -> float:
    """HOLIDAY_RISK if the date falls inside a holiday window (inclusive)."""
    d = _parse_date(flight_date)
    for start, end in HOLIDAY_WINDOWS.get(country.upper(), []):
        if date.fromisoformat(start) <= d <= date.fromisoformat(end):
            return HOLIDAY_RISK
    return NON_HOLIDAY_RISK


def weather_score(country: str, flight_date: str | date) -> float:
    """Seasonal weather risk for the flight month; ranges may wrap the year end."""
    month = _parse_date(flight_date).month
    for start, end, risk in SEASONAL_WEATHER_RISK.get(country.upper(), []):
        if start <= end:
            if start <= month <= end:
                return risk
        elif month >= start or month <= end:
            return risk
    return DEFAULT_WEATHER_RISK


# ============================================================================
# Flight premium
# ============================================================================

def estimate_flight_premium(
    airline: str,
    dep_airport: str,
    arr_airport: str,
    dep_time: str,
    flight_date: str,
    dep_country: str,
    arr_country: str,
    coverage_amount: float,
    num_persons: int,
    risk_loading: float = RISK_LOADING,
) -> dict:
    """Estimate the flight-delay premium.

    Parameters
    ----------
    airline : str
        IATA airline code (``"TG"``).
    dep_airport, arr_airport : str
        IATA airport codes.
    dep_time : str
        Scheduled departure ``HH:MM`` (optionally with UTC offset).
    flight_date : str
        ISO date of the flight.
    dep_country, arr_country : str
        ISO country codes used for the calendar and weather lookups.
    coverage_amount : float
        Payout per person.
    num_persons : int
        Number of insured travellers (>= 1).
    risk_loading : float
        Multiplier applied on top of the expected loss (default 1.2).

    Returns
    -------
    dict with ``probability`` (3 dp), ``premium_per_person`` and
    ``total_premium`` (2 dp) and the unrounded per-signal ``breakdown``.

    ``total_premium`` is the rounded per-person premium times
    ``num_persons``, so ``total == per_person * num_persons`` holds exactly;
    it can differ by a cent from rounding the unrounded product once.
    """
    _assert_finite_number(coverage_amount, "coverage_amount")
    if coverage_amount < 0:
        raise ValueError("coverage_amount must be >= 0")
    if isinstance(num_persons, bool) or not isinstance(num_persons, int) or num_persons < 1:
        raise ValueError("num_persons must be an integer >= 1")
    _assert_finite_number(risk_loading, "risk_loading")

    breakdown = {
        "airline": airline_score(airline),
        "dep_airport": airport_score(dep_airport, DEFAULT_DEP_AIRPORT_RISK),
        "arr_airport": airport_score(arr_airport, DEFAULT_ARR_AIRPORT_RISK),
        "time": time_score(dep_time),
        "calendar": max(calendar_score(dep_country, flight_date),
                        calendar_score(arr_country, flight_date)),
        "weather": max(weather_score(dep_country, flight_date),
                       weather_score(arr_country, flight_date)),
    }

    probability = sum(FLIGHT_WEIGHTS[k] * breakdown[k] for k in FLIGHT_WEIGHTS)

    premium_per_person = round(coverage_amount * probability * risk_loading, 2)
    # per-person is already at money precision; this round only drops float noise
    total_premium = round(premium_per_person * num_persons, 2)

    return {
        "probability": round(probability, 3),
        "premium_per_person": premium_per_person,
        "total_premium": total_premium,
        "num_persons": num_persons,
        "coverage_amount": coverage_amount,
        "breakdown": breakdown,
    }


# ============================================================================
# Rainfall premium
# ============================================================================

class RainfallFetcher(Protocol):
    """Anything that can return a seasonal rainfall total (mm) or None."""

    def fetch_rainfall_total(self, lat: float, lon: float,
                             start: date, end: date) -> float | None: ...


def condition_met(value: float, threshold: float, condition: str) -> bool:
    """Strict comparison: ``below`` means value < threshold, ``above`` value > threshold."""
    if condition == "below":
        return value < threshold
    if condition == "above":
        return value > threshold
    raise ValueError(f"Unknown condition '{condition}'. Choose from: {list(RAINFALL_CONDITIONS)}")


def _safe_day(year: int, month: int, day: int) -> date:
    # 29 Feb in a non-leap year collapses to 28 Feb
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def season_window(start_date: str, end_date: str, year: int) -> tuple[date, date]:
    """Project the coverage month-day window onto ``year``.

    A window whose end month-day precedes its start (e.g. Dec → Feb) ends
    in the following year.
    """
    s = _parse_date(start_date)
    e = _parse_date(end_date)
    start = _safe_day(year, s.month, s.day)
    end_year = year if (e.month, e.day) >= (s.month, s.day) else year + 1
    end = _safe_day(end_year, e.month, e.day)
    return start, end


def assess_rainfall_risk(
    lat: float,
    lon: float,
    start_date: str,
    end_date: str,
    threshold: float,
    coverage_amount: float,
    condition: str,
    fetcher: RainfallFetcher,
    years_to_analyze: int = YEARS_TO_ANALYZE,
    min_valid_years: int = MIN_VALID_YEARS,
    margin: float = MARGIN,
    platform_fee: float = PLATFORM_FEE,
    min_premium: float = MIN_PREMIUM,
    current_year: int | None = None,
) -> dict:
    """Underwrite a rainfall policy from the location's rainfall history.

    Each of the ``years_to_analyze`` years preceding ``current_year`` is
    fetched once.  A year whose fetch fails or returns no data is counted as
    invalid (never as zero rainfall) and is not retried.

    Returns
    -------
    dict
        On success: ``trigger_probability`` (4 dp), ``expected_payout`` and
        ``final_premium`` (6 dp) plus the per-year totals.
        On failure: ``{"error": "insufficient_data" | "no_historical_risk",
        "message": ...}`` with the same diagnostic fields.
    """
    _assert_finite_number(lat, "lat")
    _assert_finite_number(lon, "lon")
    _assert_finite_number(threshold, "threshold")
    _assert_finite_number(coverage_amount, "coverage_amount")
    if not -90 <= lat <= 90 or not -180 <= lon <= 180:
        raise ValueError(f"Coordinates out of range: ({lat}, {lon})")
    if coverage_amount < 0:
        raise ValueError("coverage_amount must be >= 0")
    if condition not in RAINFALL_CONDITIONS:
        raise ValueError(f"Unknown condition '{condition}'. Choose from: {list(RAINFALL_CONDITIONS)}")

    if current_year is None:
        current_year = date.today().year

    yearly_totals: dict[str, float | None] = {}
    valid_years = 0
    matched_years = 0

    for i in range(1, years_to_analyze + 1):
        year = current_year - i
        start, end = season_window(start_date, end_date, year)
        try:
            total = fetcher.fetch_rainfall_total(lat, lon, start, end)
        except Exception as exc:
            logger.warning("Rainfall fetch failed for {} at ({}, {}): {}", year, lat, lon, exc)
            total = None

        yearly_totals[str(year)] = total
        if total is None:
            logger.debug("No valid rainfall data for {}", year)
            continue

        valid_years += 1
        if condition_met(total, threshold, condition):
            matched_years += 1
            logger.debug("Year {}: {:.2f} mm, trigger condition met", year, total)
        else:
            logger.debug("Year {}: {:.2f} mm, trigger condition not met", year, total)

    base = {
        "location": {"latitude": lat, "longitude": lon},
        "coverage_period": {"start_date": start_date, "end_date": end_date},
        "threshold": threshold,
        "condition": condition,
        "coverage_amount": coverage_amount,
        "years_analyzed": years_to_analyze,
        "valid_years": valid_years,
        "matched_years": matched_years,
        "yearly_totals": yearly_totals,
    }

    if valid_years < min_valid_years:
        return {
            **base,
            "error": "insufficient_data",
            "message": (
                f"Insufficient rainfall data: {valid_years} valid year(s), "
                f"{min_valid_years} required. Try a longer period or different location."
            ),
        }

    probability = matched_years / valid_years

    if probability == 0:
        return {
            **base,
            "error": "no_historical_risk",
            "message": "No risk detected. Please adjust your threshold, dates, or location.",
        }

    expected_payout = probability * coverage_amount
    premium = max(expected_payout * (1 + margin + platform_fee), min_premium)

    return {
        **base,
        "trigger_probability": round(probability, 4),
        "expected_payout": round(expected_payout, 6),
        "final_premium": round(premium, 6),
    }
