"""
Outcome sources: the observed value reported to the ledger for a policy
whose event has passed.

- flight   → departure delay in whole minutes
- rainfall → observed rainfall total over the coverage period, whole mm

The reconciler asks for an outcome at most once per tick per policy.  A
source that cannot produce one yet raises ``LookupError``; the policy is
left Active and retried on the next tick.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Protocol

from loguru import logger

from parainsure.encoding import unscale_coordinate
from parainsure.fetchers import build_fetcher
from parainsure.ledger import LedgerPolicy


class OutcomeSource(Protocol):
    def fetch_outcome(self, policy: LedgerPolicy) -> int: ...


class FixtureOutcomeSource:
    """Outcomes from a ``{policy_id: value}`` table.

    Parameters
    ----------
    outcomes : dict
        Policy id (int or numeric str, as loaded from JSON) → value.
    default : int, optional
        Value for policies absent from the table.  When None, an absent
        policy raises ``LookupError``.
    """

    def __init__(self, outcomes: dict | None = None, default: int | None = None):
        self.outcomes = {int(k): int(v) for k, v in (outcomes or {}).items()}
        self.default = default

    @classmethod
    def from_file(cls, path: str, default: int | None = None) -> "FixtureOutcomeSource":
        with open(path) as f:
            return cls(json.load(f), default=default)

    def fetch_outcome(self, policy: LedgerPolicy) -> int:
        if policy.id in self.outcomes:
            return self.outcomes[policy.id]
        if self.default is None:
            raise LookupError(f"No outcome recorded for policy {policy.id}")
        return self.default


def _utc_date(ts: int):
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).date()


class RainfallOutcomeSource:
    """Observed seasonal rainfall for a rainfall policy, read through a climate fetcher.

    Location and period come from the ledger's policy struct (scaled
    coordinates, unix start / end times).
    """

    def __init__(self, fetcher):
        self.fetcher = fetcher

    def fetch_outcome(self, policy: LedgerPolicy) -> int:
        raw = policy.raw
        lat = unscale_coordinate(int(raw["latitude"]))
        lon = unscale_coordinate(int(raw["longitude"]))
        start = _utc_date(raw["startTime"])
        end = _utc_date(raw["endTime"])

        total = self.fetcher.fetch_rainfall_total(lat, lon, start, end)
        if total is None:
            raise LookupError(f"No rainfall data for policy {policy.id} ({start} → {end})")
        logger.debug("Policy {}: observed {:.2f} mm at ({}, {})", policy.id, total, lat, lon)
        return int(round(total))


def build_outcome_source(config: dict) -> OutcomeSource:
    """Build an outcome source from its config block.

    ``{"type": "fixture", "outcomes": {...}, "default": 0}``,
    ``{"type": "fixture", "path": "outcomes.json"}`` or
    ``{"type": "rainfall", "fetcher": {"name": "nasa_power", ...}}``.
    """
    kind = config.get("type", "fixture")
    if kind == "fixture":
        if "path" in config:
            return FixtureOutcomeSource.from_file(config["path"], default=config.get("default"))
        return FixtureOutcomeSource(config.get("outcomes"), default=config.get("default"))
    if kind == "rainfall":
        return RainfallOutcomeSource(build_fetcher(config.get("fetcher")))
    raise ValueError(f"Unknown outcome source type '{kind}'. Choose from: fixture, rainfall")
