"""
Custom exception hierarchy for ethscanner.

Each exception maps to a specific CLI exit code and JSON error_code field.
cli.py catches all ScannerError subclasses and formats them as JSON output.

Exit code mapping:
  1 — ScannerError (generic CLI error)
  2 — UpstreamError (node returned an error, rate limit, malformed response)
  3 — NetworkError (timeout, connection refused)
  4 — InvalidInputError (empty address, negative block range)
  5 — ConfigError (missing/malformed config)
"""


class ScannerError(Exception):
    """Base exception for all ethscanner errors."""

    exit_code: int = 1
    error_code: str = "unknown_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class UpstreamError(ScannerError):
    """The Ethereum node could not serve a JSON-RPC call."""

    exit_code = 2
    error_code = "upstream_error"


class RPCError(UpstreamError):
    """Node answered with a JSON-RPC error object."""

    error_code = "rpc_error"

    def __init__(
        self,
        message: str,
        code: int | None = None,
        data: object = None,
        details: dict | None = None,
    ) -> None:
        merged = {"rpc_code": code}
        if data is not None:
            merged["rpc_data"] = data
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.code = code
        self.data = data


class RateLimitError(UpstreamError):
    """Node endpoint is throttling us (HTTP 429)."""

    error_code = "rate_limited"

    def __init__(self, message: str, retry_after: int = 60) -> None:
        super().__init__(message, details={"retry_after_seconds": retry_after})
        self.retry_after = retry_after


class MalformedResponseError(UpstreamError):
    """Node response is not valid JSON-RPC, or a field failed to parse."""

    error_code = "malformed_response"


class NetworkError(UpstreamError):
    """Network connectivity issue — timeout or connection failure."""

    exit_code = 3
    error_code = "network_error"


class NetworkTimeoutError(NetworkError):
    """Request timed out."""

    error_code = "network_timeout"


class ConnectionFailedError(NetworkError):
    """Could not connect to the node endpoint."""

    error_code = "connection_failed"


class InvalidInputError(ScannerError):
    """Query rejected before touching the node or the stores."""

    exit_code = 4
    error_code = "invalid_input"


class ConfigError(ScannerError):
    """Config file is missing or malformed."""

    exit_code = 5
    error_code = "config_error"


class ConfigInvalidError(ConfigError):
    """Config file exists but contains invalid TOML or invalid values."""

    error_code = "config_invalid"
