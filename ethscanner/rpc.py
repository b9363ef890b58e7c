"""
Ethereum JSON-RPC client.

Talks to any node endpoint (geth, erigon, Infura, Alchemy...) over HTTP.
Only two methods matter to the scanner: eth_blockNumber and
eth_getBlockByNumber; `call()` is generic.

Design decisions:
- Uses async httpx for all HTTP calls.
- Optional token bucket rate limiting for throttled public endpoints.
- Every call accepts a per-request timeout (the caller's deadline).
- Transport and protocol failures both surface as UpstreamError subclasses.
- The endpoint URL is redacted in error messages (keys often live in it).
"""

from __future__ import annotations

import asyncio
import itertools
import time
from typing import Any

import httpx

from ethscanner.exceptions import (
    ConnectionFailedError,
    MalformedResponseError,
    NetworkError,
    NetworkTimeoutError,
    RateLimitError,
    RPCError,
    UpstreamError,
)

JSONRPC_VERSION = "2.0"

DEFAULT_TIMEOUT = 30.0  # seconds


class _TokenBucket:
    """Simple token bucket rate limiter."""

    def __init__(self, calls: int, period: float) -> None:
        self._calls = calls
        self._period = period
        self._tokens: float = float(calls)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_refill
            # Refill tokens proportional to elapsed time
            refill = (elapsed / self._period) * self._calls
            self._tokens = min(self._calls, self._tokens + refill)
            self._last_refill = now

            if self._tokens < 1:
                wait = (1 - self._tokens) * (self._period / self._calls)
                await asyncio.sleep(wait)
                self._tokens = 0
            else:
                self._tokens -= 1


def redact_url(url: str) -> str:
    """Drop credentials and query string: https://u:p@host/x?k=1 -> https://host/x"""
    u = httpx.URL(url)
    port = f":{u.port}" if u.port else ""
    path = "" if u.path == "/" else u.path
    return f"{u.scheme}://{u.host}{port}{path}"


class RPCClient:
    """
    Async JSON-RPC 2.0 client over HTTP POST.

    Args:
        endpoint: Node URL.
        timeout: Default per-request timeout in seconds.
        requests_per_second: Client-side throttle; 0 disables it.
        client: Pre-built httpx.AsyncClient (owned by the caller).
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = DEFAULT_TIMEOUT,
        requests_per_second: int = 0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._redacted = redact_url(endpoint)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._rate_limiter = (
            _TokenBucket(requests_per_second, 1.0) if requests_per_second > 0 else None
        )
        self._ids = itertools.count(1)

    @property
    def endpoint(self) -> str:
        return self._redacted

    async def call(self, method: str, *params: Any, timeout: float | None = None) -> Any:
        """
        Invoke `method` and return the JSON-RPC `result` member.

        Raises:
            NetworkTimeoutError: request exceeded `timeout`
            ConnectionFailedError: endpoint unreachable
            RateLimitError: HTTP 429
            RPCError: node answered with an error object
            MalformedResponseError: body is not a JSON-RPC response
            UpstreamError: HTTP error status without an error object
        """
        payload = {
            "jsonrpc": JSONRPC_VERSION,
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout

        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        where = f"rpc call {method}() on {self._redacted}"
        try:
            resp = await self._client.post(self._endpoint, json=payload, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkTimeoutError(f"{where}: timeout: {e}") from e
        except httpx.ConnectError as e:
            raise ConnectionFailedError(f"{where}: cannot connect: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"{where}: {e}") from e

        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After", "60")
            raise RateLimitError(
                f"{where}: rate limit exceeded",
                retry_after=int(retry_after) if retry_after.isdigit() else 60,
            )

        return self._parse_response(resp, where)

    async def get_latest_block_number(self, timeout: float | None = None) -> str:
        """eth_blockNumber — hex string, e.g. "0x12a05f2"."""
        result = await self.call("eth_blockNumber", timeout=timeout)
        if not isinstance(result, str):
            raise MalformedResponseError(
                f"eth_blockNumber returned {type(result).__name__}, expected hex string"
            )
        return result

    async def get_block_by_number(
        self,
        hex_block_number: str,
        full_transactions: bool = True,
        timeout: float | None = None,
    ) -> dict[str, Any] | None:
        """eth_getBlockByNumber — block object, or None for an unknown block."""
        result = await self.call(
            "eth_getBlockByNumber", hex_block_number, full_transactions, timeout=timeout
        )
        if result is not None and not isinstance(result, dict):
            raise MalformedResponseError(
                f"eth_getBlockByNumber returned {type(result).__name__}, expected object"
            )
        return result

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> RPCClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ──────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────

    def _parse_response(self, resp: httpx.Response, where: str) -> Any:
        status = resp.status_code
        try:
            body = resp.json()
        except ValueError as e:
            if status >= 400:
                raise UpstreamError(
                    f"{where} status code: {status}. could not decode body to rpc response",
                    details={"status_code": status},
                ) from e
            raise MalformedResponseError(
                f"{where} status code: {status}. could not decode body to rpc response: {e}"
            ) from e

        if not isinstance(body, dict):
            raise MalformedResponseError(f"{where}: rpc response is not an object")

        error = body.get("error")
        if error is not None:
            if not isinstance(error, dict):
                raise MalformedResponseError(f"{where}: rpc error is not an object: {error!r}")
            code = error.get("code")
            message = error.get("message", "")
            raise RPCError(
                f"{where} status code: {status}. rpc response error: {code}: {message}",
                code=code,
                data=error.get("data"),
                details={"status_code": status},
            )

        if status >= 400:
            raise UpstreamError(
                f"{where} status code: {status}. no rpc error available",
                details={"status_code": status},
            )

        if "result" not in body:
            raise MalformedResponseError(f"{where}: rpc response missing 'result'")

        return body["result"]
