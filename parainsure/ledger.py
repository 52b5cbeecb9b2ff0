"""
Ledger collaborator: reads policy state from the insurance contract and
submits the oracle's write transactions.

The contract is treated as opaque.  What this layer relies on:

- ``<count>()``                  → number of policies (ids are 0 .. n-1)
- ``<get>(id)``                  → policy struct incl. holder, status, event
                                   time, payout amount, payout eligibility
- ``<expire>(id)``               → administrative expiry after the grace period
- ``<process>(id, value)``       → report the observed outcome; the contract
                                   decides the payout tier
- ``eth_getTransactionByHash``   → payment verification

Function and struct field names differ per product and are configurable.
All amounts crossing this boundary are integers in the ledger's base unit.

Writes are signed by a single custody account.  ``_send`` holds a lock,
takes the pending nonce, and waits for the receipt before returning, so
two writes from this process can never race for the same nonce.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests
from eth_account import Account
from loguru import logger
from web3 import Web3
from web3.exceptions import TransactionNotFound as Web3TransactionNotFound
from web3.exceptions import Web3Exception

from parainsure.errors import ConfigurationError, LedgerError
from parainsure.models import PolicyStatus


@dataclass(frozen=True)
class LedgerPolicy:
    """Policy fields as read from the ledger (authoritative)."""

    id: int
    holder: str
    status: PolicyStatus
    event_time: int
    payout_amount: int = 0
    eligible_for_payout: bool = False
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


class Ledger(Protocol):
    contract_address: str

    def policy_count(self) -> int: ...
    def get_policy(self, policy_id: int) -> LedgerPolicy: ...
    def expire_policy(self, policy_id: int) -> str: ...
    def process_outcome(self, policy_id: int, value: int) -> str: ...
    def get_transaction(self, tx_hash: str) -> dict | None: ...


# ============================================================================
# Contract bindings
# ============================================================================

PRODUCT_BINDINGS: dict[str, dict[str, str]] = {
    "flight": {
        "count": "policyCounter",
        "get": "policies",
        "process": "processFlightStatus",
        "expire": "expirePolicy",
        "event_time_field": "flightTime",
    },
    "rainfall": {
        "count": "policyCounter",
        "get": "policies",
        "process": "processRainfallOutcome",
        "expire": "expirePolicy",
        "event_time_field": "endTime",
    },
}

# Struct layout of the public ``policies`` getter.  Deployments whose
# struct differs pass their own ABI file (``abi_path``).
_POLICY_OUTPUTS = {
    "flight": [
        ("holder", "address"),
        ("flightNumber", "string"),
        ("flightTime", "uint256"),
        ("coveragePerPerson", "uint256"),
        ("numPersons", "uint256"),
        ("premium", "uint256"),
        ("payoutAmount", "uint256"),
        ("status", "uint8"),
        ("eligibleForPayout", "bool"),
    ],
    "rainfall": [
        ("holder", "address"),
        ("coverageAmount", "uint256"),
        ("premium", "uint256"),
        ("threshold", "uint256"),
        ("startTime", "uint256"),
        ("endTime", "uint256"),
        ("condition", "uint8"),
        ("latitude", "int256"),
        ("longitude", "int256"),
        ("payoutAmount", "uint256"),
        ("status", "uint8"),
        ("eligibleForPayout", "bool"),
    ],
}


def default_abi(product: str, binding: dict[str, str]) -> list[dict]:
    """Minimal ABI covering the functions this layer calls."""
    def _io(pairs):
        return [{"name": n, "type": t, "internalType": t} for n, t in pairs]

    return [
        {"type": "function", "name": binding["count"], "stateMutability": "view",
         "inputs": [], "outputs": _io([("", "uint256")])},
        {"type": "function", "name": binding["get"], "stateMutability": "view",
         "inputs": _io([("policyId", "uint256")]), "outputs": _io(_POLICY_OUTPUTS[product])},
        {"type": "function", "name": binding["expire"], "stateMutability": "nonpayable",
         "inputs": _io([("policyId", "uint256")]), "outputs": []},
        {"type": "function", "name": binding["process"], "stateMutability": "nonpayable",
         "inputs": _io([("policyId", "uint256"), ("value", "uint256")]), "outputs": []},
    ]


def _output_names(abi: list[dict], fn_name: str) -> list[str]:
    for entry in abi:
        if entry.get("type") == "function" and entry.get("name") == fn_name:
            return [o.get("name", "") for o in entry.get("outputs", [])]
    raise ConfigurationError(f"ABI has no function '{fn_name}'")


def policy_from_struct(policy_id: int, raw: dict[str, Any], event_time_field: str) -> LedgerPolicy:
    """Map a decoded policy struct to ``LedgerPolicy``."""
    try:
        return LedgerPolicy(
            id=policy_id,
            holder=str(raw["holder"]),
            status=PolicyStatus(int(raw["status"])),
            event_time=int(raw[event_time_field]),
            payout_amount=int(raw.get("payoutAmount", 0)),
            eligible_for_payout=bool(raw.get("eligibleForPayout", False)),
            raw=raw,
        )
    except KeyError as exc:
        raise LedgerError(f"Policy {policy_id}: struct has no field {exc}") from None
    except ValueError as exc:
        raise LedgerError(f"Policy {policy_id}: {exc}") from None


def _hex(b) -> str:
    return "0x" + bytes(b).hex()


# ============================================================================
# web3 implementation
# ============================================================================

class Web3Ledger:
    """Ledger client over JSON-RPC.

    Parameters
    ----------
    rpc_url : str
        Node endpoint.
    contract_address : str
        Insurance contract (also the premium recipient).
    private_key : str
        Custody key that signs expire / process-outcome transactions.
    product : str
        ``"flight"`` or ``"rainfall"``; selects the default bindings.
    functions : dict, optional
        Overrides for ``PRODUCT_BINDINGS[product]``.
    abi_path : str, optional
        Full contract ABI JSON (a bare list or a Hardhat artifact with ``abi``).
    request_timeout, tx_timeout : float
        RPC request timeout and receipt wait timeout in seconds.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        product: str = "flight",
        functions: dict | None = None,
        abi_path: str | None = None,
        request_timeout: float = 30.0,
        tx_timeout: float = 120.0,
    ):
        if product not in PRODUCT_BINDINGS:
            raise ConfigurationError(f"Unknown product '{product}'")
        if not (rpc_url and contract_address and private_key):
            raise ConfigurationError("Ledger requires rpc_url, contract_address and private_key")

        self.binding = {**PRODUCT_BINDINGS[product], **(functions or {})}
        if abi_path:
            with open(abi_path) as f:
                loaded = json.load(f)
            self.abi = loaded["abi"] if isinstance(loaded, dict) else loaded
        else:
            self.abi = default_abi(product, self.binding)

        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=self.abi)
        self.account = Account.from_key(private_key)
        self.tx_timeout = tx_timeout
        self._policy_fields = _output_names(self.abi, self.binding["get"])
        self._send_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "Web3Ledger":
        settings.require_ledger()
        functions = dict(settings.contract_functions)
        abi_path = functions.pop("abi_path", None)
        return cls(
            rpc_url=settings.rpc_url,
            contract_address=settings.contract_address,
            private_key=settings.oracle_wallet_private_key,
            product=settings.product,
            functions=functions,
            abi_path=abi_path,
            request_timeout=settings.request_timeout,
            tx_timeout=settings.tx_timeout,
        )

    def _fn(self, key: str):
        return getattr(self.contract.functions, self.binding[key])

    # -- reads ------------------------------------------------------------

    def policy_count(self) -> int:
        try:
            return int(self._fn("count")().call())
        except (Web3Exception, requests.RequestException, ValueError) as exc:
            raise LedgerError(f"policy count failed: {exc}") from exc

    def get_policy(self, policy_id: int) -> LedgerPolicy:
        try:
            result = self._fn("get")(policy_id).call()
        except (Web3Exception, requests.RequestException, ValueError) as exc:
            raise LedgerError(f"read of policy {policy_id} failed: {exc}") from exc
        if not isinstance(result, (list, tuple)):
            result = [result]
        raw = dict(zip(self._policy_fields, result))
        return policy_from_struct(policy_id, raw, self.binding["event_time_field"])

    def get_transaction(self, tx_hash: str) -> dict | None:
        try:
            tx = self.w3.eth.get_transaction(tx_hash)
        except Web3TransactionNotFound:
            return None
        except (Web3Exception, requests.RequestException, ValueError) as exc:
            raise LedgerError(f"transaction lookup {tx_hash} failed: {exc}") from exc
        return {
            "hash": _hex(tx["hash"]),
            "from": tx["from"],
            "to": tx.get("to"),
            "value": int(tx["value"]),
            "block_number": tx.get("blockNumber"),
        }

    # -- writes -----------------------------------------------------------

    def expire_policy(self, policy_id: int) -> str:
        return self._send(self._fn("expire")(policy_id), f"expire policy {policy_id}")

    def process_outcome(self, policy_id: int, value: int) -> str:
        return self._send(self._fn("process")(policy_id, value),
                          f"process outcome {value} for policy {policy_id}")

    def _send(self, call, label: str) -> str:
        with self._send_lock:
            try:
                nonce = self.w3.eth.get_transaction_count(self.account.address, "pending")
                tx = call.build_transaction({
                    "from": self.account.address,
                    "nonce": nonce,
                    "chainId": self.w3.eth.chain_id,
                })
                signed = self.account.sign_transaction(tx)
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
                logger.debug("Sent {} (nonce={}, tx={})", label, nonce, _hex(tx_hash))
                receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
            except (Web3Exception, requests.RequestException, ValueError) as exc:
                raise LedgerError(f"{label} failed: {exc}") from exc

            if receipt["status"] != 1:
                raise LedgerError(f"{label} reverted (tx={_hex(tx_hash)})")
            return _hex(tx_hash)
