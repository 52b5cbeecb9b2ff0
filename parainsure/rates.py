"""
ETH/THB conversion for flight premiums quoted in baht.

Spot rate sources are tried in order (Coinbase, Bitkub, Binance ETH/USDT
× USD/THB FX).  A fetched rate is cached for ten minutes.  When every
source fails the last cached rate is used even if stale, and failing that
a fixed fallback rate.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Callable

import requests
from loguru import logger

from parainsure.encoding import ether_to_wei
from parainsure.http import get_json

CACHE_SECONDS = 10 * 60
FALLBACK_ETH_THB = 120_000.0
SOURCE_TIMEOUT = 5

COINBASE_URL = "https://api.coinbase.com/v2/prices/ETH-THB/spot"
BITKUB_URL = "https://api.bitkub.com/api/market/ticker"
BINANCE_URL = "https://api.binance.com/api/v3/ticker/price"
FX_URL = "https://open.er-api.com/v6/latest/USD"

_ETH_PLACES = Decimal("0.00000001")


def coinbase_rate() -> float:
    return float(get_json(COINBASE_URL, timeout=SOURCE_TIMEOUT)["data"]["amount"])


def bitkub_rate() -> float:
    return float(get_json(BITKUB_URL, timeout=SOURCE_TIMEOUT)["ETH_THB"]["last"])


def binance_fx_rate() -> float:
    eth_usd = float(get_json(BINANCE_URL, params={"symbol": "ETHUSDT"}, timeout=SOURCE_TIMEOUT)["price"])
    usd_thb = float(get_json(FX_URL, timeout=SOURCE_TIMEOUT)["rates"]["THB"])
    return eth_usd * usd_thb


DEFAULT_SOURCES: list[tuple[str, Callable[[], float]]] = [
    ("coinbase", coinbase_rate),
    ("bitkub", bitkub_rate),
    ("binance_fx", binance_fx_rate),
]


class RateService:
    """Cached ETH→THB spot rate with fallbacks.

    ``sources`` and ``clock`` are injectable for tests.
    """

    def __init__(self, sources=None, cache_seconds: float = CACHE_SECONDS,
                 fallback_rate: float = FALLBACK_ETH_THB, clock: Callable[[], float] = time.time):
        self.sources = list(DEFAULT_SOURCES if sources is None else sources)
        self.cache_seconds = cache_seconds
        self.fallback_rate = fallback_rate
        self.clock = clock
        self._rate = 0.0
        self._updated = 0.0

    def _fresh(self, now: float) -> bool:
        return self._rate > 0 and now - self._updated < self.cache_seconds

    def eth_to_thb_rate(self) -> float:
        now = self.clock()
        if self._fresh(now):
            return self._rate

        for name, source in self.sources:
            try:
                rate = source()
            except (requests.RequestException, KeyError, TypeError, ValueError) as exc:
                logger.warning("ETH/THB source {} failed: {}", name, exc)
                continue
            if rate <= 0:
                logger.warning("ETH/THB source {} returned non-positive rate {}", name, rate)
                continue
            self._rate, self._updated = rate, now
            logger.info("[{}] 1 ETH = {:.2f} THB", name, rate)
            return rate

        if self._rate > 0:
            logger.warning("All ETH/THB sources failed, using stale rate {:.2f}", self._rate)
            return self._rate
        logger.error("All ETH/THB sources failed, using fixed rate {:.2f}", self.fallback_rate)
        return self.fallback_rate

    def thb_to_eth(self, thb_amount: float) -> float:
        """THB → ETH floored to 8 decimals."""
        rate = self.eth_to_thb_rate()
        eth = (Decimal(str(thb_amount)) / Decimal(str(rate))).quantize(_ETH_PLACES, rounding=ROUND_DOWN)
        return float(eth)

    def eth_to_thb(self, eth_amount: float) -> float:
        return round(eth_amount * self.eth_to_thb_rate(), 2)

    def thb_to_wei(self, thb_amount: float) -> int:
        return ether_to_wei(f"{self.thb_to_eth(thb_amount):.8f}")

    def rate_info(self) -> dict:
        rate = self.eth_to_thb_rate()
        now = self.clock()
        fresh = self._fresh(now)
        return {
            "current_rate": rate,
            "expires_in": int(self.cache_seconds - (now - self._updated)) if fresh else 0,
            "last_updated": (datetime.fromtimestamp(self._updated, tz=timezone.utc).isoformat()
                             if self._updated else None),
            "cache_duration_minutes": self.cache_seconds / 60,
            "is_stale": not fresh,
        }
