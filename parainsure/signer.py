"""
Oracle signer: authorizes off-chain premiums for on-chain policy creation.

Signing pipeline (must match the verifying contract exactly):
    1. Pack the schema fields  : abi.encodePacked(...)            (encoding.py)
    2. Hash                    : keccak256(packed)
    3. Personal-message prefix : keccak256("\\x19Ethereum Signed Message:\\n32" + hash)
    4. Sign the prefixed hash  : ECDSA secp256k1, 65-byte r || s || v

The contract recovers the signer with ``ECDSA.recover(toEthSignedMessageHash(h), sig)``,
so step 3 is not optional: a signature over the raw hash recovers to an
unrelated address.
"""

from __future__ import annotations

from typing import Any, Mapping

from eth_account import Account
from eth_account.messages import encode_defunct
from loguru import logger

from parainsure.encoding import (
    FLIGHT_PREMIUM_V1,
    RAINFALL_POLICY_V1,
    MessageSchema,
    condition_code,
    ether_to_wei,
    scale_coordinate,
    scale_premium,
)
from parainsure.errors import ConfigurationError


def _hex(b: bytes) -> str:
    return "0x" + bytes(b).hex()


def recover_signer(message_hash: bytes, signature: str) -> str:
    """Address that produced ``signature`` over the prefixed ``message_hash``."""
    return Account.recover_message(encode_defunct(primitive=bytes(message_hash)), signature=signature)


class OracleSigner:
    """Holds the custody key used to authorize premiums.

    The key is validated once, at construction; a missing key is a
    configuration error and should stop the process at startup.
    """

    def __init__(self, private_key: str | None):
        if not private_key:
            raise ConfigurationError("Oracle signing key is not configured")
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"Invalid oracle signing key: {exc}") from None
        self.address: str = self._account.address
        logger.info("Oracle signer address: {}", self.address)

    @classmethod
    def from_settings(cls, settings) -> "OracleSigner":
        settings.require_signer()
        return cls(settings.signer_private_key)

    def sign_hash(self, message_hash: bytes) -> str:
        """Sign a 32-byte hash using the personal-message convention."""
        if len(message_hash) != 32:
            raise ValueError("message_hash must be 32 bytes")
        signed = self._account.sign_message(encode_defunct(primitive=bytes(message_hash)))
        return _hex(signed.signature)

    def build_authorization(self, schema: MessageSchema, fields: Mapping[str, Any]) -> dict:
        """Hash ``fields`` under ``schema`` and sign the result.

        Returns
        -------
        dict with ``schema``, ``version``, ``message_hash``, ``signature``,
        ``signer`` and the ordered ``fields`` that were signed.
        """
        message_hash = schema.message_hash(fields)
        signature = self.sign_hash(message_hash)
        logger.debug("Signed {} v{} hash={}", schema.name, schema.version, _hex(message_hash))
        return {
            "schema": schema.name,
            "version": schema.version,
            "fields": dict(zip(schema.names, schema.ordered_values(fields))),
            "message_hash": _hex(message_hash),
            "signature": signature,
            "signer": self.address,
        }


# ============================================================================
# Product helpers
# ============================================================================

def sign_flight_premium(
    signer: OracleSigner,
    flight_number: str,
    coverage_per_person: int,
    num_persons: int,
    total_premium: float,
) -> dict:
    """Authorize a flight quote.  The total premium is carried as a rounded integer."""
    scaled = scale_premium(total_premium)
    auth = signer.build_authorization(FLIGHT_PREMIUM_V1, {
        "flight_number": flight_number,
        "coverage_per_person": coverage_per_person,
        "num_persons": num_persons,
        "scaled_premium": scaled,
    })
    auth["scaled_premium"] = scaled
    return auth


def sign_rainfall_policy(
    signer: OracleSigner,
    policy_id: int,
    holder: str,
    coverage_amount: float,
    premium: float,
    threshold: int,
    start_date: str,
    end_date: str,
    condition: str,
    lat: float,
    lon: float,
) -> dict:
    """Authorize a rainfall policy.

    ``coverage_amount`` and ``premium`` are in ether and converted to wei;
    coordinates are scaled ×10,000.  ``threshold`` (mm) must be integral.
    """
    if isinstance(threshold, float):
        if not threshold.is_integer():
            raise ValueError(f"threshold must be a whole number of mm, got {threshold}")
        threshold = int(threshold)
    return signer.build_authorization(RAINFALL_POLICY_V1, {
        "policy_id": policy_id,
        "holder": holder,
        "coverage_wei": ether_to_wei(coverage_amount),
        "premium_wei": ether_to_wei(premium),
        "threshold": threshold,
        "start_date": start_date,
        "end_date": end_date,
        "condition": condition_code(condition),
        "lat_scaled": scale_coordinate(lat),
        "lon_scaled": scale_coordinate(lon),
    })
