"""Subscribed addresses and the transactions the observer saw for them."""

from __future__ import annotations

import threading

from ethscanner.models import Transaction, normalize_address
from ethscanner.storage.multimap import MultiMap

# Stored against every subscriber. Marks membership; it is not a block number.
SUBSCRIBED = -1


class SubscriptionStore:
    """In-memory subscriber set plus an append-only observed log per address."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, int] = {}
        self._observed: MultiMap[str, Transaction] = MultiMap()

    def subscribe(self, address: str) -> bool:
        """
        Register `address` for observation.

        Idempotent: a second call neither duplicates the entry nor clears
        what was already observed. Always returns True.
        """
        address = normalize_address(address)
        with self._lock:
            self._subscribers.setdefault(address, SUBSCRIBED)
        return True

    def is_subscribed(self, address: str) -> bool:
        with self._lock:
            return normalize_address(address) in self._subscribers

    def last_checked_block(self, address: str) -> int:
        """Value held for a subscriber; -1 for unknown addresses too."""
        with self._lock:
            return self._subscribers.get(normalize_address(address), SUBSCRIBED)

    def all_subscribed_addresses(self) -> list[str]:
        """Snapshot of subscribers. Order is unspecified."""
        with self._lock:
            return list(self._subscribers)

    def record_observed_transaction(self, address: str, tx: Transaction) -> None:
        # Not checked against the subscriber set; the observer only calls
        # this for subscribed addresses.
        self._observed.put(normalize_address(address), tx)

    def observed_transactions(self, address: str) -> list[Transaction]:
        txs, _ = self._observed.get(normalize_address(address))
        return txs
