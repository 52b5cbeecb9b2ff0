#!/usr/bin/env python3
"""
Policy reconciliation runner.

Usage:
    python run_reconciler.py --config configs/flight_reconciler.json
    python run_reconciler.py --config configs/rainfall_reconciler.json --once

The config JSON controls:
  - product (flight | rainfall) and contract function names
  - grace period and tick interval
  - outcome source (fixture table or climate fetcher)
  - record store URL and logging

RPC_URL, CONTRACT_ADDRESS and ORACLE_WALLET_PRIVATE_KEY come from the
environment (or a .env file).
"""

from __future__ import annotations

import argparse
import json
import sys

from loguru import logger

from parainsure.config import load_settings
from parainsure.errors import ConfigurationError
from parainsure.ledger import Web3Ledger
from parainsure.logs import setup_logging
from parainsure.outcomes import build_outcome_source
from parainsure.reconciler import Reconciler
from parainsure.scheduler import IntervalScheduler, run_once
from parainsure.store import build_store


# ============================================================================
# Wiring
# ============================================================================

def build_reconciler(settings) -> Reconciler:
    ledger = Web3Ledger.from_settings(settings)
    logger.info("Ledger contract {} (oracle {})", ledger.contract_address, ledger.account.address)
    return Reconciler(
        ledger=ledger,
        outcome_source=build_outcome_source(settings.outcome_source),
        store=build_store(settings.database_url),
        product=settings.product,
        grace_period_seconds=settings.grace_period_seconds,
    )


# ============================================================================
# Main pipeline
# ============================================================================

def run(config_path: str | None, once: bool = False) -> int:
    settings = load_settings(config_path)
    setup_logging(settings.log_level, settings.log_format)

    logger.info("=== {} reconciler ===", settings.product)
    logger.info("Grace period: {}s  Tick interval: {}s",
                settings.grace_period_seconds, settings.tick_interval_seconds)

    try:
        reconciler = build_reconciler(settings)
    except ConfigurationError as exc:
        logger.error("Configuration error: {}", exc)
        return 2

    if once:
        report = run_once(reconciler)
        print(json.dumps(report, indent=2))
        return 1 if report["failed"] else 0

    IntervalScheduler(reconciler, settings.tick_interval_seconds).run_forever()
    return 0


# ============================================================================
# CLI entry point
# ============================================================================

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Reconcile on-chain policies: expire, report outcomes, record claims."
    )
    parser.add_argument(
        "--config",
        help="Path to reconciler configuration JSON file.",
    )
    parser.add_argument(
        "--once", action="store_true",
        help="Run a single pass and exit instead of scheduling.",
    )
    args = parser.parse_args()
    sys.exit(run(args.config, once=args.once))


if __name__ == "__main__":
    main()
