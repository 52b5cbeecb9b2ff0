"""
Payment verification: does a user-submitted transaction pay the quoted
premium for this application?

A point-in-time check against the node.  A transaction the node does not
know (yet) raises ``TransactionNotFound``; the caller may retry later.
"""

from __future__ import annotations

from loguru import logger

from parainsure.encoding import ether_to_wei
from parainsure.errors import TransactionNotFound
from parainsure.models import Application

MISMATCH_MESSAGE = "Transaction does not match expected payment details."


def expected_premium_wei(application: Application) -> int:
    """Premium in wei as fixed at quote time.

    Applications carry ``premium_wei`` in their quote; older records without
    it are treated as ether-denominated.
    """
    if "premium_wei" in application.quote:
        return int(application.quote["premium_wei"])
    return ether_to_wei(application.premium)


def _lower(address: str | None) -> str:
    return (address or "").lower()


def verify_payment(application: Application, tx_hash: str, ledger, expected_recipient: str) -> dict:
    """Compare a ledger transaction against the application's expected payment.

    Parameters
    ----------
    application : Application
        The approved application being paid for.
    tx_hash : str
        Transaction hash submitted by the user.
    ledger : Ledger
        Anything with ``get_transaction(tx_hash) -> dict | None``.
    expected_recipient : str
        The insurance contract address.

    Returns
    -------
    dict
        ``{"status": "verified", ...}`` or
        ``{"status": "rejected", "message": ..., "mismatches": [...]}``.

    Raises
    ------
    TransactionNotFound
        The node has no transaction with this hash.
    """
    tx = ledger.get_transaction(tx_hash)
    if tx is None:
        raise TransactionNotFound(tx_hash)

    expected_value = expected_premium_wei(application)
    mismatches = []

    if _lower(tx.get("to")) != _lower(expected_recipient):
        mismatches.append({"field": "recipient", "expected": expected_recipient, "actual": tx.get("to")})
    if _lower(tx.get("from")) != _lower(application.holder):
        mismatches.append({"field": "sender", "expected": application.holder, "actual": tx.get("from")})
    if int(tx.get("value", 0)) != expected_value:
        mismatches.append({"field": "amount", "expected": expected_value, "actual": int(tx.get("value", 0))})

    if mismatches:
        logger.warning(
            "Payment {} for application {} rejected: {}",
            tx_hash, application.id, ", ".join(m["field"] for m in mismatches),
        )
        return {
            "status": "rejected",
            "message": MISMATCH_MESSAGE,
            "transaction_hash": tx_hash,
            "mismatches": mismatches,
        }

    logger.info("Payment {} verified for application {}", tx_hash, application.id)
    return {
        "status": "verified",
        "transaction_hash": tx_hash,
        "amount_wei": expected_value,
    }
