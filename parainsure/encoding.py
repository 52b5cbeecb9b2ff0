"""
Canonical message encoding shared with the on-chain verifiers.

A ``MessageSchema`` is the ordered list of (name, solidity type) pairs the
contract feeds into ``keccak256(abi.encodePacked(...))``.  Field order and
types are part of the wire contract: reordering a field, or changing
``uint256`` to ``uint8``, yields a different hash and a signature the
contract will reject.  Any change therefore gets a new schema version and
new golden vectors in ``tests/test_signer.py``.

The ledger has no decimal type, so money and coordinates cross the boundary
as scaled integers.  The scaling helpers here are the only place those
factors live; the reconciliation side reads values back through the same
helpers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from eth_abi.packed import encode_packed
from eth_utils import is_address, keccak, to_checksum_address, to_wei

COORDINATE_SCALE = 10_000

CONDITION_CODES = {"below": 0, "above": 1}

_INT_TYPE = re.compile(r"(u?)int(\d*)")


# ============================================================================
# Scaled integers
# ============================================================================

def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _round_half_ceiling(value: Decimal) -> int:
    return int((value + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def scale_coordinate(degrees: float) -> int:
    """Degrees → fixed-point int (×10,000).

    Halves round toward +infinity, so -13.75635 scales to -137563 and
    13.75635 to 137564; coordinates already on the contract were scaled
    the same way.  Goes through ``str`` so that 13.7563 scales to 137563
    rather than the float product 137562.99999999997.
    """
    return _round_half_ceiling(Decimal(str(degrees)) * COORDINATE_SCALE)


def unscale_coordinate(scaled: int) -> float:
    return scaled / COORDINATE_SCALE


def scale_premium(total_premium: float) -> int:
    """Round a quoted total premium to the integer carried in the flight message."""
    return _round_half_up(Decimal(str(total_premium)))


def ether_to_wei(amount: float | str | Decimal) -> int:
    """Convert an ether-denominated amount to wei using its decimal string form."""
    return int(to_wei(Decimal(str(amount)), "ether"))


def condition_code(condition: str) -> int:
    if condition not in CONDITION_CODES:
        raise ValueError(f"Unknown condition '{condition}'. Choose from: {list(CONDITION_CODES)}")
    return CONDITION_CODES[condition]


# ============================================================================
# Schemas
# ============================================================================

def _check_value(name: str, abi_type: str, value: Any) -> Any:
    if abi_type == "string":
        if not isinstance(value, str):
            raise TypeError(f"{name} must be str for {abi_type}, got {type(value).__name__}")
        return value
    if abi_type == "address":
        if not isinstance(value, str) or not is_address(value):
            raise TypeError(f"{name} must be a hex address, got {value!r}")
        return to_checksum_address(value)
    m = _INT_TYPE.fullmatch(abi_type)
    if m:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"{name} must be int for {abi_type}, got {type(value).__name__}")
        bits = int(m.group(2) or 256)
        if m.group(1):
            if not 0 <= value < 2 ** bits:
                raise ValueError(f"{name}={value} out of range for {abi_type}")
        elif not -(2 ** (bits - 1)) <= value < 2 ** (bits - 1):
            raise ValueError(f"{name}={value} out of range for {abi_type}")
        return value
    raise ValueError(f"Unsupported type {abi_type} for field {name}")


@dataclass(frozen=True)
class MessageSchema:
    """Versioned, ordered field list for a packed-keccak signing message."""

    name: str
    version: int
    fields: tuple[tuple[str, str], ...]

    @property
    def names(self) -> list[str]:
        return [n for n, _ in self.fields]

    @property
    def types(self) -> list[str]:
        return [t for _, t in self.fields]

    def ordered_values(self, data: Mapping[str, Any]) -> list[Any]:
        missing = [n for n in self.names if n not in data]
        if missing:
            raise KeyError(f"{self.name} v{self.version}: missing fields {missing}")
        extra = sorted(set(data) - set(self.names))
        if extra:
            raise KeyError(f"{self.name} v{self.version}: unexpected fields {extra}")
        return [_check_value(n, t, data[n]) for n, t in self.fields]

    def encode(self, data: Mapping[str, Any]) -> bytes:
        """``abi.encodePacked`` of the fields in schema order."""
        return encode_packed(self.types, self.ordered_values(data))

    def message_hash(self, data: Mapping[str, Any]) -> bytes:
        """32-byte Keccak-256 of the packed encoding."""
        return keccak(self.encode(data))


FLIGHT_PREMIUM_V1 = MessageSchema(
    name="flight_premium",
    version=1,
    fields=(
        ("flight_number", "string"),
        ("coverage_per_person", "uint256"),
        ("num_persons", "uint256"),
        ("scaled_premium", "uint256"),
    ),
)

RAINFALL_POLICY_V1 = MessageSchema(
    name="rainfall_policy",
    version=1,
    fields=(
        ("policy_id", "uint256"),
        ("holder", "address"),
        ("coverage_wei", "uint256"),
        ("premium_wei", "uint256"),
        ("threshold", "uint256"),
        ("start_date", "string"),
        ("end_date", "string"),
        ("condition", "uint8"),
        ("lat_scaled", "int256"),
        ("lon_scaled", "int256"),
    ),
)

SCHEMAS: dict[tuple[str, int], MessageSchema] = {
    (s.name, s.version): s for s in (FLIGHT_PREMIUM_V1, RAINFALL_POLICY_V1)
}


def get_schema(name: str, version: int = 1) -> MessageSchema:
    """Look up a schema by name and version.  Raises KeyError if unknown."""
    if (name, version) not in SCHEMAS:
        raise KeyError(f"Unknown message schema '{name}' v{version}. Available: {sorted(SCHEMAS)}")
    return SCHEMAS[(name, version)]
