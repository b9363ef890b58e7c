"""
Block parser — on-demand queries against the node and the stores.

scan_address() is incremental: the first query for an address walks back
`block_range` blocks from the chain head, later queries only cover the blocks
added since the address's watermark. The returned list is always the full
accumulated ledger, not just the new part.

Every block in the scan window is fetched individually by a fixed worker pool
and all fetching finishes before the first store write, so a failed scan
leaves the ledger and watermark untouched.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

from ethscanner.exceptions import InvalidInputError, MalformedResponseError, NetworkTimeoutError
from ethscanner.models import Block, Transaction, hex_to_int, int_to_hex, normalize_address
from ethscanner.storage import Subscriptions, TransactionHistory

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_REQUESTS = 8


@runtime_checkable
class NodeClient(Protocol):
    """The two node calls the parser depends on (see ethscanner.rpc.RPCClient)."""

    async def get_latest_block_number(self, timeout: float | None = None) -> str:
        ...

    async def get_block_by_number(
        self,
        hex_block_number: str,
        full_transactions: bool = True,
        timeout: float | None = None,
    ) -> dict[str, Any] | None:
        ...


@runtime_checkable
class Parser(Protocol):
    """
    Operations on the Ethereum chain exposed to the CLI and the observer.

    Implementations are responsible for:
    - Turning node responses into Transaction objects
    - Keeping the per-address ledgers and subscriptions up to date

    They are NOT responsible for:
    - Background polling (that's observer.py)
    - Output formatting (that's output.py)
    """

    async def current_block_number(self, timeout: float | None = None) -> int:
        """Latest block number known to the node."""
        ...

    async def block_transactions(
        self, block_number: int, timeout: float | None = None
    ) -> list[Transaction]:
        """All transactions contained in a block."""
        ...

    async def scan_address(
        self, address: str, block_range: int, timeout: float | None = None
    ) -> list[Transaction]:
        """Inbound then outbound transactions of `address` from the last `block_range` blocks on."""
        ...

    def subscribe(self, address: str) -> bool:
        """Add an address to the observer's watch list."""
        ...

    def observed_transactions_for(self, address: str) -> list[Transaction]:
        """Transactions the observer recorded for a subscribed address."""
        ...


class BlockParser:
    """
    Production Parser backed by a JSON-RPC node and the in-memory stores.

    Args:
        client: Node client (RPCClient or anything matching NodeClient).
        history: Ledger store filled by scan_address().
        subscriptions: Subscriber store shared with the observer.
        max_concurrent_requests: Block fetches in flight during one scan.
    """

    def __init__(
        self,
        client: NodeClient,
        history: TransactionHistory,
        subscriptions: Subscriptions,
        max_concurrent_requests: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
    ) -> None:
        self._client = client
        self._history = history
        self._subscriptions = subscriptions
        self._max_concurrent = max(1, max_concurrent_requests)

    async def current_block_number(self, timeout: float | None = None) -> int:
        """
        eth_blockNumber as an int.

        Raises:
            UpstreamError: node call failed
            MalformedResponseError: result is not a hex quantity
        """
        hex_str = await self._client.get_latest_block_number(timeout=timeout)
        return hex_to_int(hex_str)

    async def block_transactions(
        self, block_number: int, timeout: float | None = None
    ) -> list[Transaction]:
        """
        Full transaction objects of block `block_number`.

        Raises:
            UpstreamError: node call failed
            MalformedResponseError: block missing or not a block object
        """
        raw = await self._client.get_block_by_number(
            int_to_hex(block_number), True, timeout=timeout
        )
        if raw is None:
            raise MalformedResponseError(
                f"Block {block_number} not found on node",
                details={"block_number": block_number},
            )
        return Block.from_dict(raw).transactions

    async def scan_address(
        self, address: str, block_range: int, timeout: float | None = None
    ) -> list[Transaction]:
        """
        Fold the blocks since the last scan into `address`'s ledger and return it.

        First scan covers [latest - block_range, latest], clamped at genesis.
        Once the address has a watermark, the scan covers (watermark, latest]
        instead; the watermark block itself is already in the ledger.

        Args:
            address: Account address, any case.
            block_range: Look-back window in blocks for a first scan.
            timeout: Deadline in seconds for the whole scan.

        Raises:
            InvalidInputError: empty address or negative block_range
            UpstreamError: any node call failed (store is left untouched)
            NetworkTimeoutError: `timeout` elapsed
        """
        _validate_scan_args(address, block_range)
        address = normalize_address(address)

        try:
            return await asyncio.wait_for(self._scan(address, block_range), timeout)
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutError(
                f"Scan of {address} exceeded {timeout}s deadline",
                details={"address": address, "block_range": block_range},
            ) from e

    def subscribe(self, address: str) -> bool:
        if not address or not address.strip():
            raise InvalidInputError("Address is required")
        return self._subscriptions.subscribe(normalize_address(address))

    def observed_transactions_for(self, address: str) -> list[Transaction]:
        return self._subscriptions.observed_transactions(normalize_address(address))

    # ──────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────

    async def _scan(self, address: str, block_range: int) -> list[Transaction]:
        latest = await self.current_block_number()
        watermark = self._history.last_scanned_block(address)

        start = max(latest - block_range, 0)
        if watermark > 0:
            start = watermark + 1

        if start > latest:
            logger.debug("scan %s: up to date at block %d", address, watermark)
            return self._history.all_transactions(address)

        logger.debug("scan %s: blocks %d..%d", address, start, latest)
        matches = await self._collect_matches(address, start, latest)

        # No awaits from here on: the ledger update can't be interrupted.
        for tx, inbound in matches:
            self._history.record_transaction(address, latest, tx, inbound)
        self._history.record_scanned_block(address, latest)

        logger.debug(
            "scan %s: %d new transactions, watermark %d", address, len(matches), latest
        )
        return self._history.all_transactions(address)

    async def _collect_matches(
        self, address: str, start: int, end: int
    ) -> list[tuple[Transaction, bool]]:
        """
        (tx, is_inbound) for every transaction of `address` in blocks start..end.

        A fixed pool of workers pulls block numbers from one shared iterator,
        so the task count is bounded by max_concurrent_requests whatever the
        range. Only matching transactions are kept; results are in block order.
        """
        numbers = iter(range(start, end + 1))
        found: dict[int, list[tuple[Transaction, bool]]] = {}

        async def _worker() -> None:
            for block_number in numbers:
                hits = []
                for tx in await self.block_transactions(block_number):
                    if tx.is_inbound_for(address):
                        hits.append((tx, True))
                    elif tx.is_outbound_for(address):
                        hits.append((tx, False))
                if hits:
                    found[block_number] = hits

        pool_size = min(self._max_concurrent, end - start + 1)
        workers = [asyncio.create_task(_worker()) for _ in range(pool_size)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            # First failure wins; don't leave the rest running.
            for worker in workers:
                worker.cancel()
            raise

        return [hit for n in sorted(found) for hit in found[n]]


def _validate_scan_args(address: Any, block_range: Any) -> None:
    if not isinstance(address, str) or not address.strip():
        raise InvalidInputError("Address is required")
    if isinstance(block_range, bool) or not isinstance(block_range, int):
        raise InvalidInputError(
            f"Block range must be an integer, got {block_range!r}",
            details={"block_range": block_range},
        )
    if block_range < 0:
        raise InvalidInputError(
            f"Block range must be non-negative, got {block_range}",
            details={"block_range": block_range},
        )
