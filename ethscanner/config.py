"""
Config loading for ethscanner.

Sources (in precedence order, highest first):
  1. Environment variables (ETHSCANNER_*)
  2. ~/.ethscanner/config.toml
  3. Built-in defaults

Usage:
    from ethscanner.config import load_config
    config = load_config()
    print(config.node.url)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import toml

from ethscanner.exceptions import ConfigInvalidError

# Default config directory and file
DEFAULT_CONFIG_DIR = Path.home() / ".ethscanner"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

# Environment variable → config key mapping
# Format: (env_var_name, dotted_config_path, type_converter)
_ENV_OVERRIDES: list[tuple[str, str, type]] = [
    ("ETHSCANNER_NODE_URL", "node.url", str),
    ("ETHSCANNER_RPC_TIMEOUT", "node.timeout_seconds", float),
    ("ETHSCANNER_RATE_LIMIT", "node.requests_per_second", int),
    ("ETHSCANNER_BLOCK_RANGE", "scanner.block_range", int),
    ("ETHSCANNER_MAX_CONCURRENCY", "scanner.max_concurrent_requests", int),
    ("ETHSCANNER_POLL_INTERVAL", "poller.interval_seconds", float),
    ("ETHSCANNER_OUTPUT_FORMAT", "output.default_format", str),
    ("ETHSCANNER_LOG_LEVEL", "logging.level", str),
]

VALID_FORMATS = {"json", "jsonl", "table"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class NodeConfig:
    """Ethereum JSON-RPC endpoint."""

    url: str = "http://localhost:8545"
    timeout_seconds: float = 30.0
    requests_per_second: int = 0        # 0 = no client-side throttle


@dataclass
class ScannerConfig:
    """On-demand address scans."""

    block_range: int = 100              # look-back window of a first scan
    max_concurrent_requests: int = 8


@dataclass
class PollerConfig:
    """Background block observer."""

    interval_seconds: float = 5.0


@dataclass
class OutputConfig:
    """Output formatting defaults."""

    default_format: str = "json"        # json | jsonl | table


@dataclass
class LoggingConfig:
    """stderr logging."""

    level: str = "WARNING"


@dataclass
class ScannerSettings:
    """Full configuration object. Passed via Click context to all commands."""

    node: NodeConfig = field(default_factory=NodeConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    poller: PollerConfig = field(default_factory=PollerConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: str | None = None) -> ScannerSettings:
    """
    Load configuration from TOML file + environment variable overrides.

    A missing config file is not an error: defaults apply.

    Args:
        path: Override config file path. If None, uses ETHSCANNER_CONFIG_PATH
              env var or default (~/.ethscanner/config.toml).

    Returns:
        ScannerSettings with all values resolved.

    Raises:
        ConfigInvalidError: Config file exists but is invalid TOML or values.
    """
    config_path = _resolve_config_path(path)

    raw: dict = {}
    if config_path.exists():
        try:
            raw = toml.load(str(config_path))
        except toml.TomlDecodeError as e:
            raise ConfigInvalidError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        config = _dict_to_config(raw)
    except (ValueError, TypeError) as e:
        raise ConfigInvalidError(f"Invalid value in {config_path}: {e}") from e
    _apply_env_overrides(config)
    _validate_config(config)

    return config


def save_config(config: ScannerSettings, path: str | None = None) -> Path:
    """
    Serialize ScannerSettings to TOML and write to disk.

    Returns the path where config was written.
    """
    config_path = _resolve_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "node": {
            "url": config.node.url,
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

    with open(config_path, "w") as f:
        toml.dump(data, f)

    return config_path


def get_default_config_path() -> Path:
    """Return the default config file path."""
    return DEFAULT_CONFIG_PATH


def configure_logging(level: str) -> None:
    """Route ethscanner logs to stderr at `level`. stdout stays machine-readable."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


# ──────────────────────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────────────────────


def _resolve_config_path(path: str | None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get("ETHSCANNER_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def _dict_to_config(raw: dict) -> ScannerSettings:
    """Build ScannerSettings from raw TOML dict, applying defaults for missing keys."""
    config = ScannerSettings()

    node = raw.get("node", {})
    config.node.url = node.get("url", config.node.url)
    config.node.timeout_seconds = float(node.get("timeout_seconds", 30.0))
    config.node.requests_per_second = int(node.get("requests_per_second", 0))

    scanner = raw.get("scanner", {})
    config.scanner.block_range = int(scanner.get("block_range", 100))
    config.scanner.max_concurrent_requests = int(scanner.get("max_concurrent_requests", 8))

    poller = raw.get("poller", {})
    config.poller.interval_seconds = float(poller.get("interval_seconds", 5.0))

    output = raw.get("output", {})
    config.output.default_format = output.get("default_format", "json")

    log = raw.get("logging", {})
    config.logging.level = str(log.get("level", "WARNING")).upper()

    return config


def _apply_env_overrides(config: ScannerSettings) -> None:
    """Apply environment variable overrides to a loaded config."""
    for env_var, dotted_key, converter in _ENV_OVERRIDES:
        val = os.environ.get(env_var)
        if val is None:
            continue
        section, key = dotted_key.split(".", 1)
        section_obj = getattr(config, section)
        try:
            setattr(section_obj, key, converter(val))
        except (ValueError, TypeError) as e:
            raise ConfigInvalidError(
                f"Invalid value for {env_var}={val!r}: {e}"
            ) from e
    config.logging.level = config.logging.level.upper()


def _validate_config(config: ScannerSettings) -> None:
    """Validate config values. Raises ConfigInvalidError on invalid values."""
    if not config.node.url.startswith(("http://", "https://")):
        raise ConfigInvalidError(
            f"node.url must be an http(s) URL, got {config.node.url!r}"
        )
    if config.node.timeout_seconds <= 0:
        raise ConfigInvalidError(
            f"node.timeout_seconds must be positive, got {config.node.timeout_seconds}"
        )
    if config.node.requests_per_second < 0:
        raise ConfigInvalidError(
            f"node.requests_per_second must be non-negative, "
            f"got {config.node.requests_per_second}"
        )
    if config.scanner.block_range < 0:
        raise ConfigInvalidError(
            f"scanner.block_range must be non-negative, got {config.scanner.block_range}"
        )
    if config.scanner.max_concurrent_requests < 1:
        raise ConfigInvalidError(
            f"scanner.max_concurrent_requests must be >= 1, "
            f"got {config.scanner.max_concurrent_requests}"
        )
    if config.poller.interval_seconds <= 0:
        raise ConfigInvalidError(
            f"poller.interval_seconds must be positive, got {config.poller.interval_seconds}"
        )
    if config.output.default_format not in VALID_FORMATS:
        raise ConfigInvalidError(
            f"output.default_format must be one of {VALID_FORMATS}, "
            f"got {config.output.default_format!r}"
        )
    if config.logging.level not in VALID_LOG_LEVELS:
        raise ConfigInvalidError(
            f"logging.level must be one of {sorted(VALID_LOG_LEVELS)}, "
            f"got {config.logging.level!r}"
        )
