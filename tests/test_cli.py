"""Tests for ethscanner/cli.py — Click CLI entry point.

The node is mocked with respx; commands run their own event loop.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx
from click.testing import CliRunner

from ethscanner.cli import cli
from tests.conftest import ADDR_A, ADDR_A_MIXED, ADDR_OTHER, make_raw_block, make_raw_tx

NODE_URL = "http://node.test:8545"


class MockNode:
    """respx side effect answering eth_blockNumber / eth_getBlockByNumber."""

    def __init__(self, head: int) -> None:
        self.head = head
        self.blocks: dict[int, list[dict[str, Any]]] = {}
        self.methods: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.methods.append(body["method"])
        if body["method"] == "eth_blockNumber":
            result: Any = hex(self.head)
        else:
            number = int(body["params"][0], 16)
            result = make_raw_block(number, self.blocks.get(number, []))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("ETHSCANNER_CONFIG", "ETHSCANNER_CONFIG_PATH", "ETHSCANNER_NODE_URL",
                "ETHSCANNER_OUTPUT_FORMAT", "ETHSCANNER_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def base_args(tmp_path: Path) -> list[str]:
    """Point at a missing config file (defaults) and the mocked node."""
    return ["--config", str(tmp_path / "config.toml"), "--node-url", NODE_URL]


def last_json_line(output: str) -> dict[str, Any]:
    return json.loads(output.strip().splitlines()[-1])


# ── version ───────────────────────────────────────────────────────────────────


def test_cli_version(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


# ── block commands ────────────────────────────────────────────────────────────


def test_block_current(runner: CliRunner, base_args: list[str]) -> None:
    node = MockNode(head=0x12A05F2)
    with respx.mock:
        respx.post(NODE_URL).mock(side_effect=node)
        result = runner.invoke(cli, [*base_args, "block", "current"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"current_block": 19531250}
    assert node.methods == ["eth_blockNumber"]


def test_block_transactions(runner: CliRunner, base_args: list[str]) -> None:
    node = MockNode(head=10)
    node.blocks[7] = [make_raw_tx("0x01", block_number=7), make_raw_tx("0x02", block_number=7)]
    with respx.mock:
        respx.post(NODE_URL).mock(side_effect=node)
        result = runner.invoke(cli, [*base_args, "--format", "jsonl", "block", "transactions", "7"])
    assert result.exit_code == 0, result.output
    assert [json.loads(line)["hash"] for line in result.output.splitlines()] == ["0x01", "0x02"]


def test_block_current_connection_error(runner: CliRunner, base_args: list[str]) -> None:
    with respx.mock:
        respx.post(NODE_URL).mock(side_effect=httpx.ConnectError("refused"))
        result = runner.invoke(cli, [*base_args, "block", "current"])
    assert result.exit_code == 3
    assert last_json_line(result.output)["error"] == "connection_failed"


def test_block_current_rpc_error(runner: CliRunner, base_args: list[str]) -> None:
    error = {"code": -32000, "message": "internal"}
    with respx.mock:
        respx.post(NODE_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": error})
        )
        result = runner.invoke(cli, [*base_args, "block", "current"])
    assert result.exit_code == 2
    payload = last_json_line(result.output)
    assert payload["error"] == "rpc_error"
    assert payload["details"]["rpc_code"] == -32000


# ── scan ──────────────────────────────────────────────────────────────────────


def test_scan(runner: CliRunner, base_args: list[str]) -> None:
    node = MockNode(head=3)
    node.blocks[2] = [make_raw_tx("0xin", from_addr=ADDR_OTHER, to_addr=ADDR_A, block_number=2)]
    node.blocks[3] = [make_raw_tx("0xout", from_addr=ADDR_A, to_addr=ADDR_OTHER, block_number=3)]
    with respx.mock:
        respx.post(NODE_URL).mock(side_effect=node)
        result = runner.invoke(cli, [*base_args, "scan", ADDR_A_MIXED, "--range", "2"])

    assert result.exit_code == 0, result.output
    output = json.loads(result.output)
    assert output["address"] == ADDR_A
    assert output["last_scanned_block"] == 3
    assert output["count"] == 2
    assert [(t["direction"], t["hash"]) for t in output["transactions"]] == [
        ("in", "0xin"),
        ("out", "0xout"),
    ]
    assert node.methods.count("eth_getBlockByNumber") == 3


def test_scan_table_format(runner: CliRunner, base_args: list[str]) -> None:
    node = MockNode(head=1)
    node.blocks[1] = [make_raw_tx("0xin", to_addr=ADDR_A)]
    with respx.mock:
        respx.post(NODE_URL).mock(side_effect=node)
        result = runner.invoke(cli, [*base_args, "--format", "table", "scan", ADDR_A, "--range", "0"])
    assert result.exit_code == 0, result.output
    assert "0xin" in result.output


def test_scan_negative_range_is_invalid_input(runner: CliRunner, base_args: list[str]) -> None:
    with respx.mock(assert_all_called=False):
        route = respx.post(NODE_URL).mock(side_effect=MockNode(head=10))
        result = runner.invoke(cli, [*base_args, "scan", ADDR_A, "--range=-1"])
    assert result.exit_code == 4
    assert last_json_line(result.output)["error"] == "invalid_input"
    assert not route.called


def test_scan_uses_configured_range(runner: CliRunner, tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(f'[node]\nurl = "{NODE_URL}"\n\n[scanner]\nblock_range = 4\n')
    node = MockNode(head=100)
    with respx.mock:
        respx.post(NODE_URL).mock(side_effect=node)
        result = runner.invoke(cli, ["--config", str(config_path), "scan", ADDR_A])
    assert result.exit_code == 0, result.output
    assert node.methods.count("eth_getBlockByNumber") == 5


# ── watch ─────────────────────────────────────────────────────────────────────


def test_watch_max_ticks(runner: CliRunner, base_args: list[str]) -> None:
    node = MockNode(head=5)
    node.blocks[5] = [make_raw_tx("0xin", to_addr=ADDR_A, block_number=5)]
    with respx.mock:
        respx.post(NODE_URL).mock(side_effect=node)
        result = runner.invoke(
            cli, [*base_args, "watch", ADDR_A_MIXED, "--interval", "0.01", "--max-ticks", "1"]
        )

    assert result.exit_code == 0, result.output
    events = [json.loads(line) for line in result.output.splitlines()]
    assert [e["type"] for e in events] == [
        "watch_start",
        "observed_transaction",
        "heartbeat",
        "watch_end",
    ]
    assert events[1]["address"] == ADDR_A
    assert events[1]["transaction"]["hash"] == "0xin"


def test_watch_requires_address(runner: CliRunner, base_args: list[str]) -> None:
    result = runner.invoke(cli, [*base_args, "watch"])
    assert result.exit_code == 2


def test_watch_interrupted_exits_130(
    runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    async def _interrupted(*args: Any, **kwargs: Any) -> None:
        raise KeyboardInterrupt

    monkeypatch.setattr("ethscanner.observer.run_watch", _interrupted)
    result = runner.invoke(cli, [*base_args, "watch", ADDR_A])
    assert result.exit_code == 130


# ── config commands ───────────────────────────────────────────────────────────


def test_config_init(runner: CliRunner, tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    result = runner.invoke(cli, ["--config", str(config_path), "config", "init"])
    assert result.exit_code == 0
    output = json.loads(result.output)
    assert output["status"] == "initialized"
    assert config_path.exists()


def test_config_init_already_exists(runner: CliRunner, tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("[scanner]\nblock_range = 1\n")
    result = runner.invoke(cli, ["--config", str(config_path), "config", "init"])
    assert result.exit_code == 0
    assert json.loads(result.output)["status"] == "already_exists"
    assert config_path.read_text() == "[scanner]\nblock_range = 1\n"


def test_config_init_force_backs_up(runner: CliRunner, tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("[scanner]\nblock_range = 1\n")
    result = runner.invoke(cli, ["--config", str(config_path), "config", "init", "--force"])
    assert result.exit_code == 0
    output = json.loads(result.output)
    assert output["status"] == "reinitialized"
    assert Path(output["backup"]).read_text() == "[scanner]\nblock_range = 1\n"


def test_config_init_over_broken_config(runner: CliRunner, tmp_path: Path) -> None:
    """A broken config file must not block `config init --force`."""
    config_path = tmp_path / "config.toml"
    config_path.write_text("not = [valid")
    result = runner.invoke(cli, ["--config", str(config_path), "config", "init", "--force"])
    assert result.exit_code == 0
    assert last_json_line(result.output)["status"] == "reinitialized"


def test_config_show_redacts_url(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(
        cli,
        [
            "--config",
            str(tmp_path / "config.toml"),
            "--node-url",
            "https://user:pw@mainnet.node.test/v3?key=secret",
            "config",
            "show",
        ],
    )
    assert result.exit_code == 0
    output = json.loads(result.output)
    assert output["node"]["url"] == "https://mainnet.node.test/v3"
    assert output["scanner"]["block_range"] == 100
