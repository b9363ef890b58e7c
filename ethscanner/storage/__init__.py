"""
In-memory storage layer for ethscanner.

Two stores, both built on the concurrent MultiMap:
  - TransactionHistoryStore: per-address inbound/outbound ledgers + watermark
  - SubscriptionStore: subscriber set + per-address observed log

The protocols below are what the parser and observer depend on, so tests
(or a future persistent backend) can swap the implementation.

Usage:
    from ethscanner.storage import SubscriptionStore, TransactionHistoryStore
    history = TransactionHistoryStore()
    subs = SubscriptionStore()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ethscanner.storage.history import TransactionHistoryStore
from ethscanner.storage.multimap import MultiMap
from ethscanner.storage.subscriptions import SubscriptionStore

if TYPE_CHECKING:
    from ethscanner.models import Transaction

__all__ = [
    "MultiMap",
    "SubscriptionStore",
    "Subscriptions",
    "TransactionHistory",
    "TransactionHistoryStore",
]


@runtime_checkable
class TransactionHistory(Protocol):
    """Storage operations on the transaction history of an address."""

    def record_transaction(
        self, address: str, block_number: int, tx: Transaction, is_inbound: bool
    ) -> None:
        ...

    def record_scanned_block(self, address: str, block_number: int) -> None:
        ...

    def last_scanned_block(self, address: str) -> int:
        ...

    def all_transactions(self, address: str) -> list[Transaction]:
        ...


@runtime_checkable
class Subscriptions(Protocol):
    """Storage operations on address subscriptions."""

    def subscribe(self, address: str) -> bool:
        ...

    def all_subscribed_addresses(self) -> list[str]:
        ...

    def record_observed_transaction(self, address: str, tx: Transaction) -> None:
        ...

    def observed_transactions(self, address: str) -> list[Transaction]:
        ...
