"""
Synthetic rainfall history for demos and tests.

Deterministic per (seed, location, window): uses a seeded LCG (linear
congruential generator) so output is identical on every run, with no
dependency on ``random`` module state.
"""

from __future__ import annotations

import math
from datetime import date


class SyntheticRainfallFetcher:
    """Generate reproducible seasonal rainfall totals.

    Parameters
    ----------
    mean_daily_mm : float
        Mean of the exponential daily rainfall draw (default 6.0).
    missing_years : list[int] | None
        Window start years for which no data is returned.
    seed : int
        Deterministic seed for the LCG (default 42).
    """

    def __init__(
        self,
        mean_daily_mm: float = 6.0,
        missing_years: list[int] | None = None,
        seed: int = 42,
    ):
        self.mean_daily_mm = mean_daily_mm
        self.missing_years = set(missing_years or [])
        self.seed = seed

    # simple deterministic PRNG (LCG), no external state
    @staticmethod
    def _lcg(state: int) -> tuple[int, float]:
        """Return (next_state, uniform_0_1)."""
        # Numerical Recipes LCG constants
        state = (state * 1664525 + 1013904223) & 0xFFFFFFFF
        return state, state / 0xFFFFFFFF

    def _initial_state(self, lat: float, lon: float, start: date) -> int:
        return (
            self.seed
            ^ (int(round(lat * 1e4)) & 0xFFFF) << 16
            ^ (int(round(lon * 1e4)) & 0xFFFF)
            ^ start.toordinal()
        ) & 0xFFFFFFFF

    def fetch_rainfall_total(self, lat: float, lon: float,
                             start: date, end: date) -> float | None:
        if start.year in self.missing_years:
            return None
        n_days = (end - start).days + 1
        if n_days <= 0:
            return None

        state = self._initial_state(lat, lon, start)
        total = 0.0
        for _ in range(n_days):
            state, u = self._lcg(state)
            u = max(u, 1e-9)
            # exponential-ish daily amount via -ln(U)
            total += -self.mean_daily_mm * math.log(u)
        return round(total, 1)
