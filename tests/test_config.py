"""Tests for settings loading and the rate service."""

import json
from pathlib import Path

import pytest

from conftest import SIGNER_KEY
from parainsure.config import Settings, load_settings
from parainsure.errors import ConfigurationError
from parainsure.rates import RateService
from parainsure.signer import OracleSigner


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def test_defaults():
    s = load_settings(env={}, dotenv=False)
    assert s.grace_period_seconds == 2 * 86_400
    assert s.years_to_analyze == 10
    assert s.min_valid_years == 3
    assert s.margin == 0.10
    assert s.platform_fee == 0.05


def test_json_file_and_env_overlay(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"product": "rainfall", "grace_period_seconds": 3600}))
    s = load_settings(path, env={"RPC_URL": "http://localhost:8545", "LOG_LEVEL": "DEBUG"}, dotenv=False)
    assert s.product == "rainfall"
    assert s.grace_period_seconds == 3600
    assert s.rpc_url == "http://localhost:8545"
    assert s.log_level == "DEBUG"


def test_unknown_keys_rejected(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"grace_period": 3600}))
    with pytest.raises(ConfigurationError, match="grace_period"):
        load_settings(path, env={}, dotenv=False)


def test_invalid_product_rejected(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"product": "crop"}))
    with pytest.raises(ConfigurationError, match="Unknown product"):
        load_settings(path, env={}, dotenv=False)


def test_shipped_configs_load():
    configs = Path(__file__).resolve().parent.parent / "configs"
    for name in ("flight_reconciler.json", "rainfall_reconciler.json"):
        assert load_settings(configs / name, env={}, dotenv=False).product in ("flight", "rainfall")


def test_require_ledger_lists_missing_settings():
    with pytest.raises(ConfigurationError, match="RPC_URL.*ORACLE_WALLET_PRIVATE_KEY"):
        Settings(contract_address="0x5FbDB2315678afecb367f032d93F642f64180aa3").require_ledger()


def test_signer_from_settings():
    with pytest.raises(ConfigurationError, match="SIGNER_PRIVATE_KEY"):
        OracleSigner.from_settings(Settings())
    assert OracleSigner.from_settings(Settings(signer_private_key=SIGNER_KEY)).address


# ---------------------------------------------------------------------------
# Rates
# ---------------------------------------------------------------------------

class Clock:
    def __init__(self):
        self.now = 1_000_000.0

    def __call__(self):
        return self.now


def _failing():
    raise ValueError("bad payload")


def test_rate_falls_through_sources():
    calls = []

    def second():
        calls.append("second")
        return 110_000.0

    rates = RateService(sources=[("first", _failing), ("second", second)], clock=Clock())
    assert rates.eth_to_thb_rate() == 110_000.0
    assert calls == ["second"]


def test_rate_is_cached_for_ten_minutes():
    clock = Clock()
    values = iter([100_000.0, 120_000.0])
    rates = RateService(sources=[("src", lambda: next(values))], clock=clock)
    assert rates.eth_to_thb_rate() == 100_000.0
    clock.now += 599
    assert rates.eth_to_thb_rate() == 100_000.0
    clock.now += 2
    assert rates.eth_to_thb_rate() == 120_000.0


def test_stale_then_fixed_fallback():
    clock = Clock()
    state = {"ok": True}

    def flaky():
        if not state["ok"]:
            raise ValueError("down")
        return 105_000.0

    rates = RateService(sources=[("src", flaky)], clock=clock)
    assert rates.eth_to_thb_rate() == 105_000.0
    state["ok"] = False
    clock.now += 3600
    assert rates.eth_to_thb_rate() == 105_000.0
    assert rates.rate_info()["is_stale"]

    assert RateService(sources=[("src", _failing)], clock=clock).eth_to_thb_rate() == 120_000.0


def test_thb_to_eth_floors_to_eight_decimals():
    rates = RateService(sources=[("src", lambda: 3.0)], clock=Clock())
    assert rates.thb_to_eth(1) == 0.33333333
    assert rates.thb_to_wei(1) == 333_333_330_000_000_000
