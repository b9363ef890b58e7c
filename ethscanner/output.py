"""Output format routing for ethscanner.

Converts result dicts to the requested format: json, jsonl, table.

Design rules:
- JSON: 2-space indent, node fields passed through untouched (hex stays hex)
- JSONL: one JSON object per line, no trailing whitespace
- Table: Rich-formatted, green=inbound, red=outbound

All functions return strings. The caller writes to stdout.
"""

from __future__ import annotations

import io
import json
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ethscanner.models import Transaction, normalize_address

VALID_FORMATS = {"json", "jsonl", "table"}


def format_output(data: Any, fmt: str) -> str:
    """
    Format data for stdout output.

    Args:
        data: Result dict, list, or any JSON-serialisable value.
        fmt: "json" | "jsonl" | "table"

    Returns:
        Formatted string ready to write to stdout.

    Raises:
        ValueError: If fmt is not a recognised format.
    """
    fmt = fmt.lower()
    if fmt not in VALID_FORMATS:
        raise ValueError(f"Unknown format {fmt!r}. Valid: {sorted(VALID_FORMATS)}")

    if fmt == "jsonl":
        return format_jsonl(data)
    if fmt == "table":
        return format_table(data)
    return format_json(data)


def scan_result(address: str, latest_block: int, txs: list[Transaction]) -> dict[str, Any]:
    """Result dict for `ethscanner scan`."""
    address = normalize_address(address)
    return {
        "address": address,
        "last_scanned_block": latest_block,
        "count": len(txs),
        "transactions": [
            {"direction": _direction(tx, address), **tx.to_dict()} for tx in txs
        ],
    }


# ── JSON ─────────────────────────────────────────────────────────────────────


def format_json(data: Any) -> str:
    """Pretty-print data as JSON (2-space indent)."""
    return json.dumps(data, indent=2, ensure_ascii=False)


# ── JSONL ────────────────────────────────────────────────────────────────────


def format_jsonl(data: Any) -> str:
    """
    Format as JSONL (one object per line).

    A scan result (dict with 'transactions') becomes one line per
    transaction; a list becomes one line per item; anything else is a
    single line.
    """
    if isinstance(data, dict) and "transactions" in data:
        items = data["transactions"]
    elif isinstance(data, list):
        items = data
    else:
        items = [data]
    return "\n".join(json.dumps(item, ensure_ascii=False) for item in items)


# ── Table ────────────────────────────────────────────────────────────────────


def format_table(data: Any) -> str:
    """
    Format as a Rich terminal table.

    Handles scan results (dict with 'transactions'); anything else is
    pretty-printed as JSON.
    """
    buf = io.StringIO()
    console = Console(file=buf, highlight=False, markup=True, width=120)

    if isinstance(data, dict) and "transactions" in data:
        _render_transactions_table(console, data)
    else:
        console.print_json(json.dumps(data))

    return buf.getvalue()


def _direction(tx: Transaction, address: str) -> str:
    # Same precedence as the scanner: a self-transfer counts as inbound.
    return "in" if tx.is_inbound_for(address) else "out"


def _short(value: str | None) -> str:
    if not value:
        return "—"
    return f"{value[:8]}…{value[-6:]}" if len(value) > 16 else value


def _render_transactions_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(
        title=(
            f"Transactions — {data.get('address', '')}"
            f" | watermark {data.get('last_scanned_block', '?')}"
        ),
        show_header=True,
        header_style="bold blue",
    )
    table.add_column("Dir", justify="center")
    table.add_column("Hash", style="cyan", no_wrap=True)
    table.add_column("Block", justify="right")
    table.add_column("From", no_wrap=True)
    table.add_column("To", no_wrap=True)
    table.add_column("Value (wei, hex)", justify="right")

    for tx in data.get("transactions", []):
        direction = tx.get("direction", "")
        dir_text = Text(direction, style="green" if direction == "in" else "red")
        table.add_row(
            dir_text,
            _short(tx.get("hash")),
            str(tx.get("blockNumber", "")),
            _short(tx.get("from")),
            _short(tx.get("to")),
            str(tx.get("value", "")),
        )

    console.print(table)
    console.print(f"Transactions: [bold]{data.get('count', 0)}[/bold]")
