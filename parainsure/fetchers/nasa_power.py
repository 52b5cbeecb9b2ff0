"""
NASA POWER daily point fetcher (corrected precipitation, ``PRECTOTCORR``).

Fetches one window per call, sums the daily series and caches the raw
daily values as local JSON so repeated quotes for the same location do not
hit the API again.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from pathlib import Path

import numpy as np
import pandas as pd
from loguru import logger

from parainsure.http import get_json

NASA_POWER_URL = "https://power.larc.nasa.gov/api/temporal/daily/point"
PRECIP_PARAMETERS = ("PRECTOTCORR", "PRECTOT")
FILL_VALUE = -999.0


def daily_total(daily: dict) -> float | None:
    """Sum a ``{YYYYMMDD: mm}`` series, ignoring fill values.

    Returns None if the series is empty or every day is missing.
    """
    if not daily:
        return None
    series = pd.Series(daily, dtype="float64").replace(FILL_VALUE, np.nan)
    if series.notna().sum() == 0:
        return None
    return float(series.sum(skipna=True))


class NasaPowerFetcher:
    """Fetch seasonal rainfall totals from NASA POWER.

    Parameters
    ----------
    timeout : float
        Per-request timeout in seconds (default 30).
    cache_dir : str | Path | None
        Local directory for cached responses (default ``"nasa_power_cache"``).
        ``None`` disables caching.
    url : str
        API endpoint, overridable for testing.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        cache_dir: str | Path | None = "nasa_power_cache",
        url: str = NASA_POWER_URL,
    ):
        self.timeout = timeout
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.url = url

    # ------------------------------------------------------------------

    def fetch_rainfall_total(self, lat: float, lon: float,
                             start: date, end: date) -> float | None:
        daily = self.fetch_daily(lat, lon, start, end)
        total = daily_total(daily)
        if total is None:
            logger.warning("No rainfall data for {} to {} at ({}, {})", start, end, lat, lon)
        else:
            logger.debug("Rainfall {} to {}: {:.2f} mm", start, end, total)
        return total

    def fetch_daily(self, lat: float, lon: float, start: date, end: date) -> dict:
        """Return the raw ``{YYYYMMDD: mm}`` series (possibly empty)."""
        params = {
            "start": start.strftime("%Y%m%d"),
            "end": end.strftime("%Y%m%d"),
            "latitude": lat,
            "longitude": lon,
            "parameters": "PRECTOTCORR",
            "community": "RE",
            "format": "JSON",
        }

        cache_file = None
        if self.cache_dir is not None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            cache_file = self.cache_dir / self._cache_key(params)
            if cache_file.exists():
                with open(cache_file) as f:
                    return json.load(f)

        data = get_json(self.url, params=params, timeout=self.timeout)
        daily = self._extract(data)

        # empty answers are not cached so a later backfill is picked up
        if cache_file is not None and daily:
            with open(cache_file, "w") as f:
                json.dump(daily, f)
        return daily

    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(params: dict) -> str:
        raw = json.dumps(params, sort_keys=True)
        h = hashlib.sha256(raw.encode()).hexdigest()[:16]
        return f"power_{params['start']}_{params['end']}_{h}.json"

    @staticmethod
    def _extract(data: dict) -> dict:
        parameter = (data.get("properties") or {}).get("parameter") or {}
        for name in PRECIP_PARAMETERS:
            if parameter.get(name):
                return dict(parameter[name])
        return {}
