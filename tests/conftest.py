"""Pytest fixtures shared across all ethscanner tests."""

from __future__ import annotations

from typing import Any

import pytest

from ethscanner.config import ScannerSettings
from ethscanner.exceptions import ConnectionFailedError, UpstreamError
from ethscanner.models import Transaction, hex_to_int
from ethscanner.parser import BlockParser
from ethscanner.storage import SubscriptionStore, TransactionHistoryStore

# ── Addresses ─────────────────────────────────────────────────────────────────

ADDR_A = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
ADDR_A_MIXED = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
ADDR_B = "0x28c6c06298d514db089934071355e5743bf21d60"
ADDR_OTHER = "0x0000000000000000000000000000000000000001"


def make_raw_tx(
    tx_hash: str,
    from_addr: str = ADDR_OTHER,
    to_addr: str | None = ADDR_OTHER,
    block_number: int = 1,
    value: str = "0xde0b6b3a7640000",
) -> dict[str, Any]:
    """Transaction object shaped like eth_getBlockByNumber(..., true) output."""
    return {
        "blockHash": "0x" + "ab" * 32,
        "blockNumber": hex(block_number),
        "from": from_addr,
        "gas": "0x5208",
        "gasPrice": "0x4a817c800",
        "hash": tx_hash,
        "input": "0x",
        "nonce": "0x1",
        "to": to_addr,
        "transactionIndex": "0x0",
        "type": "0x2",
        "value": value,
    }


def make_tx(
    tx_hash: str,
    from_addr: str = ADDR_OTHER,
    to_addr: str | None = ADDR_OTHER,
) -> Transaction:
    return Transaction.from_dict(make_raw_tx(tx_hash, from_addr, to_addr))


def make_raw_block(number: int, txs: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    return {
        "number": hex(number),
        "hash": "0x" + f"{number:064x}",
        "parentHash": "0x" + f"{max(number - 1, 0):064x}",
        "timestamp": "0x65f0a1b0",
        "transactions": txs or [],
    }


class FakeNode:
    """
    In-memory NodeClient: a chain of blocks plus call counters.

    Set `fail_latest` / `fail_blocks` to an exception to simulate node outages.
    """

    def __init__(self, head: int = 1000) -> None:
        self.head = head
        self.blocks: dict[int, list[dict[str, Any]]] = {}
        self.latest_calls = 0
        self.block_calls: list[int] = []
        self.fail_latest: UpstreamError | None = None
        self.fail_blocks: UpstreamError | None = None

    def add_tx(self, block_number: int, raw_tx: dict[str, Any]) -> None:
        self.blocks.setdefault(block_number, []).append(raw_tx)

    async def get_latest_block_number(self, timeout: float | None = None) -> str:
        self.latest_calls += 1
        if self.fail_latest is not None:
            raise self.fail_latest
        return hex(self.head)

    async def get_block_by_number(
        self,
        hex_block_number: str,
        full_transactions: bool = True,
        timeout: float | None = None,
    ) -> dict[str, Any] | None:
        number = hex_to_int(hex_block_number)
        self.block_calls.append(number)
        if self.fail_blocks is not None:
            raise self.fail_blocks
        if number > self.head:
            return None
        return make_raw_block(number, list(self.blocks.get(number, [])))


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def history() -> TransactionHistoryStore:
    return TransactionHistoryStore()


@pytest.fixture
def subscriptions() -> SubscriptionStore:
    return SubscriptionStore()


@pytest.fixture
def node() -> FakeNode:
    return FakeNode(head=1000)


@pytest.fixture
def parser(
    node: FakeNode,
    history: TransactionHistoryStore,
    subscriptions: SubscriptionStore,
) -> BlockParser:
    return BlockParser(node, history, subscriptions, max_concurrent_requests=4)


@pytest.fixture
def sample_config() -> ScannerSettings:
    """Minimal valid ScannerSettings for tests."""
    config = ScannerSettings()
    config.node.url = "http://node.test:8545"
    config.node.timeout_seconds = 5.0
    config.poller.interval_seconds = 0.01
    return config


@pytest.fixture
def connection_error() -> ConnectionFailedError:
    return ConnectionFailedError("rpc call eth_blockNumber() on http://node.test: refused")
