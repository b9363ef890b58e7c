"""
Per-address transaction history, filled by the range scanner.

Each address gets an inbound log, an outbound log and a watermark: the
highest block number already folded into its ledger. All three are created
lazily on first write and kept for the life of the process.
"""

from __future__ import annotations

import threading

from ethscanner.models import Transaction, normalize_address
from ethscanner.storage.multimap import MultiMap

# Watermark for an address that was never scanned
UNSCANNED = -1


class TransactionHistoryStore:
    """In-memory ledgers keyed by lowercase address."""

    def __init__(self) -> None:
        self._inbound: MultiMap[str, Transaction] = MultiMap()
        self._outbound: MultiMap[str, Transaction] = MultiMap()
        self._watermarks: dict[str, int] = {}
        self._watermark_lock = threading.Lock()

    def record_transaction(
        self,
        address: str,
        block_number: int,
        tx: Transaction,
        is_inbound: bool,
    ) -> None:
        """
        Append `tx` to the address's inbound or outbound log.

        The watermark is overwritten unconditionally (last writer wins).
        Callers must pass non-decreasing block numbers per address; no
        deduplication is done, re-adding a transaction stores it twice.
        """
        address = normalize_address(address)
        self.record_scanned_block(address, block_number)
        if is_inbound:
            self._inbound.put(address, tx)
        else:
            self._outbound.put(address, tx)

    def record_scanned_block(self, address: str, block_number: int) -> None:
        """Move the watermark without adding a transaction."""
        address = normalize_address(address)
        with self._watermark_lock:
            self._watermarks[address] = block_number

    def last_scanned_block(self, address: str) -> int:
        """Watermark for `address`, or -1 if it was never recorded."""
        address = normalize_address(address)
        with self._watermark_lock:
            return self._watermarks.get(address, UNSCANNED)

    def inbound_transactions(self, address: str) -> list[Transaction]:
        txs, _ = self._inbound.get(normalize_address(address))
        return txs

    def outbound_transactions(self, address: str) -> list[Transaction]:
        txs, _ = self._outbound.get(normalize_address(address))
        return txs

    def all_transactions(self, address: str) -> list[Transaction]:
        """Inbound entries followed by outbound entries (not chronological)."""
        return self.inbound_transactions(address) + self.outbound_transactions(address)
