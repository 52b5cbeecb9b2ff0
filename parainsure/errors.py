"""
Error taxonomy for the oracle / reconciliation layer.

Configuration problems are fatal and raised at startup.  Integrity problems
(acting on something that does not exist, or moving a record backwards) are
raised to the immediate caller.  Business-rule rejections (insufficient
climate data, payment mismatch) are NOT exceptions: they are returned as
plain ``{"error": ...}`` / ``{"status": "rejected"}`` dicts.
"""

from __future__ import annotations


class ParainsureError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ParainsureError):
    """A required setting (key, address, endpoint) is missing or malformed."""


class NotFoundError(ParainsureError):
    """An application, policy or claim does not exist in the record store."""


class ApplicationNotFound(NotFoundError):
    pass


class PolicyNotFound(NotFoundError):
    pass


class InvalidTransition(ParainsureError):
    """A status change that would move a record backwards or out of a terminal state."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"{entity}: cannot move from {current} to {target}")
        self.entity = entity
        self.current = current
        self.target = target


class TransactionNotFound(ParainsureError):
    """The ledger node has no transaction for the given hash (point-in-time check)."""

    def __init__(self, tx_hash: str):
        super().__init__(f"Transaction not found on chain: {tx_hash}")
        self.tx_hash = tx_hash


class LedgerError(ParainsureError):
    """A ledger read or write failed (RPC error, reverted or timed-out transaction)."""
