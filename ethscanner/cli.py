"""Click CLI entry point for ethscanner.

All commands are thin orchestration wrappers — business logic lives in
parser, observer, storage, rpc, config and output modules.

Exit codes:
  0 — success
  2 — node error, rate limit, malformed node response
  3 — network error
  4 — invalid input (empty address, negative block range)
  5 — config error
  130 — watch interrupted
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from ethscanner import __version__
from ethscanner.config import (
    ScannerSettings,
    configure_logging,
    get_default_config_path,
    load_config,
    save_config,
)
from ethscanner.exceptions import ScannerError
from ethscanner.output import format_output, scan_result
from ethscanner.parser import BlockParser
from ethscanner.rpc import RPCClient, redact_url
from ethscanner.storage import SubscriptionStore, TransactionHistoryStore

logger = logging.getLogger(__name__)


# ── Error handler ─────────────────────────────────────────────────────────────


def _output_error(err: ScannerError | Exception) -> None:
    """Write error JSON to stderr."""
    if isinstance(err, ScannerError):
        payload = err.to_dict()
        exit_code = err.exit_code
    else:
        payload = {"error": "unknown_error", "message": str(err), "details": {}}
        exit_code = 1
    sys.stderr.write(json.dumps(payload) + "\n")
    sys.stderr.flush()
    sys.exit(exit_code)


@dataclass
class _Services:
    """Everything one command needs, wired once per invocation."""

    client: RPCClient
    history: TransactionHistoryStore
    subscriptions: SubscriptionStore
    parser: BlockParser


def _services_from_config(config: ScannerSettings) -> _Services:
    client = RPCClient(
        config.node.url,
        timeout=config.node.timeout_seconds,
        requests_per_second=config.node.requests_per_second,
    )
    history = TransactionHistoryStore()
    subscriptions = SubscriptionStore()
    parser = BlockParser(
        client,
        history,
        subscriptions,
        max_concurrent_requests=config.scanner.max_concurrent_requests,
    )
    return _Services(client, history, subscriptions, parser)


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    envvar="ETHSCANNER_CONFIG",
    default=None,
    help="Config file path (default: ~/.ethscanner/config.toml)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "jsonl", "table"]),
    default=None,
    help="Output format (overrides config default)",
)
@click.option("--node-url", default=None, help="JSON-RPC endpoint (overrides config)")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="stderr log level (overrides config)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    output_format: str | None,
    node_url: str | None,
    log_level: str | None,
) -> None:
    """Ethereum block scanner — index and watch address transactions."""
    ctx.ensure_object(dict)
    config_error: ScannerError | None = None
    try:
        config = load_config(config_path)
    except ScannerError as e:
        # On config errors, use defaults (so config init still works)
        config = ScannerSettings()
        config_error = e

    if node_url:
        config.node.url = node_url
    if log_level:
        config.logging.level = log_level.upper()
    configure_logging(config.logging.level)
    if config_error is not None:
        logger.warning("ignoring config: %s", config_error)

    ctx.obj["config"] = config
    ctx.obj["format"] = output_format or config.output.default_format
    ctx.obj["config_path"] = config_path


# ── Block commands ────────────────────────────────────────────────────────────


@cli.group()
def block() -> None:
    """Query chain blocks."""


@block.command("current")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None)
@click.pass_context
def block_current(ctx: click.Context, timeout: float | None) -> None:
    """Print the latest block number known to the node."""
    config: ScannerSettings = ctx.obj["config"]

    async def _run() -> dict[str, Any]:
        services = _services_from_config(config)
        async with services.client:
            number = await services.parser.current_block_number(timeout=timeout)
        return {"current_block": number}

    try:
        result = asyncio.run(_run())
    except ScannerError as e:
        _output_error(e)
        return
    click.echo(format_output(result, ctx.obj["format"]))


@block.command("transactions")
@click.argument("number", type=click.IntRange(min=0))
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None)
@click.pass_context
def block_transactions(ctx: click.Context, number: int, timeout: float | None) -> None:
    """Print all transactions contained in block NUMBER."""
    config: ScannerSettings = ctx.obj["config"]

    async def _run() -> list[dict[str, Any]]:
        services = _services_from_config(config)
        async with services.client:
            txs = await services.parser.block_transactions(number, timeout=timeout)
        return [tx.to_dict() for tx in txs]

    try:
        result = asyncio.run(_run())
    except ScannerError as e:
        _output_error(e)
        return
    click.echo(format_output(result, ctx.obj["format"]))


# ── Scan command ──────────────────────────────────────────────────────────────


@cli.command("scan")
@click.argument("address")
@click.option(
    "--range",
    "block_range",
    type=int,
    default=None,
    help="Blocks to look back from the chain head (default: scanner.block_range)",
)
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None)
@click.pass_context
def scan_command(
    ctx: click.Context,
    address: str,
    block_range: int | None,
    timeout: float | None,
) -> None:
    """List inbound and outbound transactions of ADDRESS in recent blocks."""
    config: ScannerSettings = ctx.obj["config"]
    if block_range is None:
        block_range = config.scanner.block_range

    async def _run() -> dict[str, Any]:
        services = _services_from_config(config)
        async with services.client:
            txs = await services.parser.scan_address(address, block_range, timeout=timeout)
        return scan_result(address, services.history.last_scanned_block(address), txs)

    try:
        result = asyncio.run(_run())
    except ScannerError as e:
        _output_error(e)
        return
    click.echo(format_output(result, ctx.obj["format"]))


# ── Watch command ─────────────────────────────────────────────────────────────


@cli.command("watch")
@click.argument("addresses", nargs=-1, required=True)
@click.option(
    "--interval",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds between polls (default: poller.interval_seconds)",
)
@click.option("--max-ticks", type=click.IntRange(min=1), default=None, help="Stop after N polls")
@click.pass_context
def watch_command(
    ctx: click.Context,
    addresses: tuple[str, ...],
    interval: float | None,
    max_ticks: int | None,
) -> None:
    """Stream transactions touching ADDRESSES as JSONL until interrupted."""
    from ethscanner.observer import run_watch

    config: ScannerSettings = ctx.obj["config"]
    interval = interval or config.poller.interval_seconds

    async def _run() -> None:
        services = _services_from_config(config)
        async with services.client:
            await run_watch(
                services.parser,
                services.subscriptions,
                list(addresses),
                interval_seconds=interval,
                max_ticks=max_ticks,
            )

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        sys.exit(130)
    except ScannerError as e:
        _output_error(e)


# ── Config commands ───────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Manage ethscanner configuration."""


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing config")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Initialize default config at ~/.ethscanner/config.toml."""
    provided = ctx.obj.get("config_path")
    config_path = Path(provided) if provided else get_default_config_path()

    if config_path.exists() and not force:
        click.echo(
            json.dumps(
                {
                    "status": "already_exists",
                    "config_path": str(config_path),
                    "hint": "Use --force to reinitialize",
                }
            )
        )
        return

    status = "initialized"
    backup = None

    if config_path.exists() and force:
        backup = str(config_path) + ".bak"
        shutil.copy2(config_path, backup)
        status = "reinitialized"

    save_config(ScannerSettings(), str(config_path))

    result: dict[str, Any] = {
        "status": status,
        "config_path": str(config_path),
    }
    if backup:
        result["backup"] = backup
    click.echo(json.dumps(result))


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the resolved configuration (node URL redacted)."""
    config: ScannerSettings = ctx.obj["config"]
    result = {
        "node": {
            "url": redact_url(config.node.url),
            "timeout_seconds": config.node.timeout_seconds,
            "requests_per_second": config.node.requests_per_second,
        },
        "scanner": {
            "block_range": config.scanner.block_range,
            "max_concurrent_requests": config.scanner.max_concurrent_requests,
        },
        "poller": {
            "interval_seconds": config.poller.interval_seconds,
        },
        "output": {
            "default_format": config.output.default_format,
        },
        "logging": {
            "level": config.logging.level,
        },
    }
    click.echo(format_output(result, "json"))


if __name__ == "__main__":
    cli()
