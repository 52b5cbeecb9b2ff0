"""
Runtime configuration.

Settings come from three layers, later layers winning:
  1. dataclass defaults (the reference constants)
  2. a JSON config file (``configs/*.json``, selected with ``--config``)
  3. environment variables (optionally loaded from a ``.env`` file)

Secrets (private keys) and endpoints are expected from the environment;
tunables (grace period, tick interval, margins) from the JSON file.
Missing secrets are reported as ``ConfigurationError`` by the ``require_*``
helpers, which entry points call once at startup.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

from dotenv import load_dotenv

from parainsure.errors import ConfigurationError

DAY_SECONDS = 86_400

# env var -> Settings attribute
ENV_MAP = {
    "RPC_URL": "rpc_url",
    "CONTRACT_ADDRESS": "contract_address",
    "SIGNER_PRIVATE_KEY": "signer_private_key",
    "ORACLE_WALLET_PRIVATE_KEY": "oracle_wallet_private_key",
    "DATABASE_URL": "database_url",
    "LOG_LEVEL": "log_level",
    "LOG_FORMAT": "log_format",
}


@dataclass
class Settings:
    # product handled by this process: "flight" | "rainfall"
    product: str = "flight"

    # ledger
    rpc_url: str = ""
    contract_address: str = ""
    oracle_wallet_private_key: str = ""
    contract_functions: dict = field(default_factory=dict)
    request_timeout: float = 30.0
    tx_timeout: float = 120.0

    # premium authorization
    signer_private_key: str = ""

    # reconciliation
    grace_period_seconds: int = 2 * DAY_SECONDS
    tick_interval_seconds: int = 3600
    outcome_source: dict = field(default_factory=lambda: {"type": "fixture", "outcomes": {}})

    # rainfall underwriting
    years_to_analyze: int = 10
    min_valid_years: int = 3
    margin: float = 0.10
    platform_fee: float = 0.05
    min_premium: float = 0.01
    climate_fetcher: dict = field(default_factory=lambda: {"name": "nasa_power"})

    # flight underwriting
    risk_loading: float = 1.2

    # applications
    application_ttl_days: int = 5
    database_url: str = "sqlite:///parainsure.db"

    # logging
    log_level: str = "INFO"
    log_format: str = "pretty"

    # ------------------------------------------------------------------

    def require_ledger(self) -> None:
        """Fail fast if the ledger endpoint, contract or custody key is missing."""
        missing = [
            name for name, value in (
                ("RPC_URL", self.rpc_url),
                ("CONTRACT_ADDRESS", self.contract_address),
                ("ORACLE_WALLET_PRIVATE_KEY", self.oracle_wallet_private_key),
            ) if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    def require_signer(self) -> None:
        if not self.signer_private_key:
            raise ConfigurationError("Missing required setting: SIGNER_PRIVATE_KEY")

    def validate(self) -> None:
        if self.product not in ("flight", "rainfall"):
            raise ConfigurationError(f"Unknown product '{self.product}'. Choose from: flight, rainfall")
        if self.grace_period_seconds < 0:
            raise ConfigurationError("grace_period_seconds must be >= 0")
        if self.tick_interval_seconds <= 0:
            raise ConfigurationError("tick_interval_seconds must be > 0")
        if self.min_valid_years < 1 or self.min_valid_years > self.years_to_analyze:
            raise ConfigurationError("min_valid_years must be in [1, years_to_analyze]")


def load_settings(path: str | Path | None = None, env: dict | None = None,
                  dotenv: bool = True) -> Settings:
    """Build ``Settings`` from an optional JSON file plus the environment.

    Unknown keys in the JSON file are rejected so that typos surface at
    startup rather than silently falling back to defaults.
    """
    if dotenv and env is None:
        load_dotenv()
    env = os.environ if env is None else env

    values: dict = {}
    if path is not None:
        with open(path) as f:
            values.update(json.load(f))

    known = {f.name for f in fields(Settings)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(f"Unknown config keys: {sorted(unknown)}")

    for env_name, attr in ENV_MAP.items():
        if env.get(env_name):
            values[attr] = env[env_name]

    settings = Settings(**values)
    settings.validate()
    return settings
