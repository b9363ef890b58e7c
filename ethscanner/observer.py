"""Block observer — background polling loop for subscribed addresses.

Every `interval_seconds` the observer:
  1. snapshots the subscriber set (none → stay idle, no node calls)
  2. fetches the latest block number, then that block's transactions
  3. appends every transaction to/from a subscriber to its observed log
  4. sleeps

Node failures are reported (log + on_error callback) and the loop moves on
to the next tick; nothing short of stop()/cancellation ends it.

run_watch() wraps the observer for `ethscanner watch`, emitting one JSON
object per line to stdout:
  watch_start          — watch begins
  observed_transaction — a subscriber appeared in the latest block
  heartbeat            — end of every tick
  poll_error           — recoverable node error in a tick
  watch_end            — stop, max ticks reached, or interrupt
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from ethscanner.exceptions import ScannerError
from ethscanner.models import Transaction, normalize_address
from ethscanner.parser import Parser
from ethscanner.storage import Subscriptions

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5.0

IDLE = "idle"
POLLING = "polling"

ErrorCallback = Callable[[ScannerError], None]
TransactionCallback = Callable[[str, Transaction, int], None]
TickCallback = Callable[[int, str, int], None]


class BlockObserver:
    """
    Polls the chain head on behalf of the subscribers in `subscriptions`.

    Args:
        parser: Source of block numbers and block transactions.
        subscriptions: Subscriber set and observed logs (shared with parser).
        interval_seconds: Sleep between ticks.
        on_error: Called with each node error; the loop keeps going.
        on_transaction: Called as (address, tx, block_number) per recorded hit.
        on_tick: Called as (tick, state, hits) after every tick.
    """

    def __init__(
        self,
        parser: Parser,
        subscriptions: Subscriptions,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        on_error: ErrorCallback | None = None,
        on_transaction: TransactionCallback | None = None,
        on_tick: TickCallback | None = None,
    ) -> None:
        self._parser = parser
        self._subscriptions = subscriptions
        self._interval = interval_seconds
        self._on_error = on_error
        self._on_transaction = on_transaction
        self._on_tick = on_tick
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

        self.state = IDLE
        self.ticks = 0
        self.last_block: int | None = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def start(self) -> asyncio.Task:
        """Run the loop as a background task on the current event loop."""
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run(), name="block-observer")
        return self._task

    def stop(self) -> None:
        """Ask the loop to exit; it wakes from its sleep immediately."""
        self._stop.set()

    async def aclose(self) -> None:
        """stop() and wait for the background task to finish."""
        self.stop()
        if self._task is not None:
            await self._task

    async def run(self, max_ticks: int | None = None) -> None:
        """
        Poll until stop(), cancellation, or `max_ticks` ticks.

        Node errors and failing callbacks never end the loop. Cancellation is
        logged and re-raised so the owner sees it.
        """
        logger.info("block observer started (interval %.1fs)", self._interval)
        try:
            while not self._stop.is_set():
                hits = await self.tick()
                self._notify("on_tick", self._on_tick, self.ticks, self.state, hits)
                if max_ticks is not None and self.ticks >= max_ticks:
                    break
                await self._sleep()
        except asyncio.CancelledError:
            logger.info("block observer cancelled after %d ticks", self.ticks)
            raise
        logger.info("block observer stopped after %d ticks", self.ticks)

    async def tick(self) -> int:
        """
        One poll iteration. Returns the number of transactions recorded.

        A block that was already processed by a previous tick is skipped, so
        a slow chain doesn't fill the logs with duplicates.
        """
        self.ticks += 1

        addresses = self._subscriptions.all_subscribed_addresses()
        if not addresses:
            self.state = IDLE
            return 0
        self.state = POLLING

        try:
            latest = await self._parser.current_block_number()
            if self._stop.is_set():
                return 0
            if latest == self.last_block:
                logger.debug("tick %d: block %d already processed", self.ticks, latest)
                return 0
            txs = await self._parser.block_transactions(latest)
        except ScannerError as e:
            self._report(e)
            return 0

        if self._stop.is_set():
            return 0

        hits = 0
        for address in addresses:
            for tx in txs:
                if tx.involves(address):
                    self._subscriptions.record_observed_transaction(address, tx)
                    hits += 1
                    self._notify("on_transaction", self._on_transaction, address, tx, latest)

        self.last_block = latest
        logger.debug(
            "tick %d: block %d, %d txs, %d hits for %d subscribers",
            self.ticks, latest, len(txs), hits, len(addresses),
        )
        return hits

    # ──────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
        except asyncio.TimeoutError:
            pass

    def _report(self, err: ScannerError) -> None:
        logger.warning("tick %d failed: %s", self.ticks, err)
        self._notify("on_error", self._on_error, err)

    def _notify(self, name: str, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("observer %s callback raised", name)


# ── JSONL watch stream ────────────────────────────────────────────────────────


def emit_event(event: dict[str, Any]) -> None:
    """
    Write a single JSONL event to stdout and flush.

    Never use print() — buffered output breaks pipe consumers.
    """
    sys.stdout.write(json.dumps(event) + "\n")
    sys.stdout.flush()


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


async def run_watch(
    parser: Parser,
    subscriptions: Subscriptions,
    addresses: list[str],
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    max_ticks: int | None = None,
) -> BlockObserver:
    """
    Subscribe `addresses` and stream observer events until stopped.

    Returns the observer so the caller can inspect the final state.
    """
    subscribed = [a for a in addresses if parser.subscribe(a)]
    total = {"observed": 0, "errors": 0}

    def _on_transaction(address: str, tx: Transaction, block_number: int) -> None:
        total["observed"] += 1
        emit_event({
            "type": "observed_transaction",
            "timestamp": _now_iso(),
            "address": address,
            "block_number": block_number,
            "transaction": tx.to_dict(),
        })

    def _on_error(err: ScannerError) -> None:
        total["errors"] += 1
        emit_event({
            "type": "poll_error",
            "timestamp": _now_iso(),
            "error_code": err.error_code,
            "message": str(err),
            "recoverable": True,
        })

    def _on_tick(tick: int, state: str, hits: int) -> None:
        emit_event({
            "type": "heartbeat",
            "timestamp": _now_iso(),
            "tick": tick,
            "state": state,
            "hits": hits,
        })

    observer = BlockObserver(
        parser,
        subscriptions,
        interval_seconds=interval_seconds,
        on_error=_on_error,
        on_transaction=_on_transaction,
        on_tick=_on_tick,
    )

    emit_event({
        "type": "watch_start",
        "timestamp": _now_iso(),
        "addresses": sorted({normalize_address(a) for a in subscribed}),
        "interval_secs": interval_seconds,
    })

    try:
        await observer.run(max_ticks=max_ticks)
    finally:
        emit_event({
            "type": "watch_end",
            "timestamp": _now_iso(),
            "ticks_completed": observer.ticks,
            "transactions_observed": total["observed"],
            "errors": total["errors"],
        })
    return observer
