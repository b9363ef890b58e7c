"""
Shared data models for ethscanner.

These dataclasses are the canonical data shapes used across all modules:
the RPC layer produces them, the stores hold them, output renders them.

Node JSON is kept verbatim on each model (`raw`) so API output passes the
node's hex-encoded fields through untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ethscanner.exceptions import MalformedResponseError


def normalize_address(address: str) -> str:
    """Canonical map key for an address: stripped and lowercased."""
    return address.strip().lower()


def hex_to_int(value: Any) -> int:
    """
    Parse a JSON-RPC quantity ("0x1b4") to int.

    Raises:
        MalformedResponseError: value is not a hex string.
    """
    if not isinstance(value, str):
        raise MalformedResponseError(
            f"Expected hex string, got {type(value).__name__}: {value!r}"
        )
    digits = value[2:] if value[:2].lower() == "0x" else value
    try:
        return int(digits, 16)
    except ValueError as e:
        raise MalformedResponseError(f"Invalid hex quantity: {value!r}") from e


def int_to_hex(value: int) -> str:
    """Encode an int as a JSON-RPC quantity: 16 -> "0x10"."""
    return hex(value)


@dataclass(frozen=True)
class Transaction:
    """
    A transaction as returned by eth_getBlockByNumber(..., true).

    Only hash/from/to are interpreted; everything else stays in `raw`.
    `to_addr` is None for contract creation.
    """

    hash: str
    from_addr: str
    to_addr: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, raw: Any) -> Transaction:
        if not isinstance(raw, dict):
            raise MalformedResponseError(
                f"Expected transaction object, got {type(raw).__name__}"
            )
        tx_hash = raw.get("hash")
        from_addr = raw.get("from")
        to_addr = raw.get("to")
        if not isinstance(tx_hash, str) or not isinstance(from_addr, str):
            raise MalformedResponseError(
                "Transaction object missing 'hash' or 'from'",
                details={"hash": tx_hash},
            )
        if to_addr is not None and not isinstance(to_addr, str):
            raise MalformedResponseError(
                f"Transaction {tx_hash} has non-string 'to': {to_addr!r}"
            )
        return cls(hash=tx_hash, from_addr=from_addr, to_addr=to_addr, raw=dict(raw))

    def is_inbound_for(self, address: str) -> bool:
        """True if `address` (any case) is the recipient."""
        if self.to_addr is None:
            return False
        return normalize_address(self.to_addr) == normalize_address(address)

    def is_outbound_for(self, address: str) -> bool:
        """True if `address` (any case) is the sender."""
        return normalize_address(self.from_addr) == normalize_address(address)

    def involves(self, address: str) -> bool:
        return self.is_inbound_for(address) or self.is_outbound_for(address)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output — the node's own object when we have it."""
        if self.raw:
            return dict(self.raw)
        return {"hash": self.hash, "from": self.from_addr, "to": self.to_addr}


@dataclass(frozen=True)
class Block:
    """A block with full transaction objects."""

    number: int
    hash: str | None
    transactions: list[Transaction] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, raw: Any) -> Block:
        if not isinstance(raw, dict):
            raise MalformedResponseError(
                f"Expected block object, got {type(raw).__name__}"
            )
        txs = raw.get("transactions")
        if not isinstance(txs, list):
            raise MalformedResponseError(
                "Block object has no 'transactions' list",
                details={"number": raw.get("number")},
            )
        return cls(
            number=hex_to_int(raw.get("number")),
            hash=raw.get("hash"),
            transactions=[Transaction.from_dict(t) for t in txs],
            raw=raw,
        )
