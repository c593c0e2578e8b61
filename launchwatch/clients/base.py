"""Base HTTP client for the LaunchWatch provider layer.

Provides:
- Rate limiting (per-client token bucket, shared by concurrent callers)
- Retry with exponential backoff via a shared BackoffPolicy
- Timeout handling
- Response caching (TTL-based)
- RPC fallback chain rotation
- Structured error handling

All provider clients wrap one of these.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx

from launchwatch.utils.retry import BackoffPolicy


class APIError(Exception):
    """Structured API error."""

    def __init__(self, message: str, status_code: int = 0, provider: str = "", retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider
        self.retryable = retryable


class TokenBucket:
    """Token bucket refilled at ``rate`` tokens per second, capacity ``rate``."""

    def __init__(self, rate: float):
        self.rate = max(rate, 0.001)
        self._tokens = self.rate
        self._stamp = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(self.rate, self._tokens + (now - self._stamp) * self.rate)
        self._stamp = now

    async def take(self) -> None:
        """Wait until one token is available and consume it."""
        async with self._lock:
            self._refill()
            if self._tokens < 1.0:
                await asyncio.sleep((1.0 - self._tokens) / self.rate)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1.0)


class TTLCache:
    """In-memory response cache keyed by request shape."""

    def __init__(self) -> None:
        self._items: dict[str, tuple[float, Any]] = {}

    @staticmethod
    def key(method: str, path: str, params: dict[str, Any] | None) -> str:
        return f"{method}:{path}:{sorted((params or {}).items())}"

    def lookup(self, key: str) -> Any | None:
        item = self._items.get(key)
        if item is None:
            return None
        expires_at, data = item
        if time.monotonic() > expires_at:
            self._items.pop(key, None)
            return None
        return data

    def store(self, key: str, data: Any, ttl_seconds: float) -> None:
        self._items[key] = (time.monotonic() + ttl_seconds, data)


def error_for_status(response: httpx.Response, provider: str) -> APIError | None:
    """Map an HTTP status to an APIError, or None for success.

    429 and 5xx are retryable; other 4xx are not.
    """
    code = response.status_code
    if code < 400:
        return None
    if code == 429:
        return APIError(f"Rate limited by {provider}", status_code=code, provider=provider, retryable=True)
    if code >= 500:
        return APIError(f"Server error from {provider}: {code}", status_code=code, provider=provider, retryable=True)
    return APIError(
        f"Client error from {provider}: {code} - {response.text[:200]}",
        status_code=code,
        provider=provider,
    )


class BaseClient:
    """HTTP client with retry, rate limiting, and caching.

    Usage:
        client = BaseClient(
            base_url="https://data.solanatracker.io",
            headers={"x-api-key": key},
            rate_limit=5.0,  # 5 req/sec
            timeout=8.0,
        )
        data = await client.get("/tokens/latest", params={"limit": 50}, cache_ttl=30)
    """

    def __init__(
        self,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        rate_limit: float = 10.0,
        timeout: float = 8.0,
        backoff: BackoffPolicy | None = None,
        provider_name: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.provider_name = provider_name
        self.timeout = timeout
        self.backoff = backoff or BackoffPolicy()
        self._bucket = TokenBucket(rate_limit)
        self._cache = TTLCache()
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers or {},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        cache_ttl: float = 0,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET with retry; cached for ``cache_ttl`` seconds when positive."""
        key = TTLCache.key("GET", path, params) if cache_ttl > 0 else None
        if key:
            cached = self._cache.lookup(key)
            if cached is not None:
                return cached

        data = await self.backoff.call(self._send, "GET", path, params=params, headers=headers)
        if key:
            self._cache.store(key, data, cache_ttl)
        return data

    async def post(
        self,
        path: str,
        json_data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await self.backoff.call(
            self._send, "POST", path, params=params, json_data=json_data, headers=headers
        )

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """One attempt. Raises APIError with ``retryable`` set for the policy."""
        await self._bucket.take()
        try:
            response = await self._client.request(method, path, params=params, json=json_data, headers=headers)
        except httpx.TransportError as e:
            raise APIError(
                f"Connection error to {self.provider_name}: {e}",
                provider=self.provider_name,
                retryable=True,
            ) from e

        error = error_for_status(response, self.provider_name)
        if error is not None:
            raise error
        try:
            return response.json()
        except ValueError as e:
            raise APIError(
                f"Malformed JSON from {self.provider_name}",
                status_code=response.status_code,
                provider=self.provider_name,
            ) from e


class RPCFallbackClient:
    """JSON-RPC client rotating through an ordered endpoint chain.

    Each endpoint gets a short retry budget of its own; moving down the
    chain is the main retry.
    """

    def __init__(self, endpoints: list[dict[str, Any]], transport: httpx.AsyncBaseTransport | None = None):
        self._chain: list[tuple[BaseClient, dict[str, Any] | None]] = []
        for ep in endpoints:
            client = BaseClient(
                base_url=ep["url"],
                rate_limit=ep.get("rate_limit", 10.0),
                timeout=ep.get("timeout_seconds", 8.0),
                provider_name=ep.get("provider", "unknown"),
                backoff=BackoffPolicy(max_attempts=2, base_delay=0.5, max_delay=2.0, jitter=0.2),
                transport=transport,
            )
            # Query params (e.g. api-key) must not live in base_url.
            self._chain.append((client, ep.get("params")))

    async def request(self, method: str, params: list[Any]) -> Any:
        """Return the first endpoint's ``result``; raise when every endpoint fails."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        errors: list[str] = []
        for client, query in self._chain:
            try:
                data = await client.post("", json_data=payload, params=query)
            except APIError as e:
                errors.append(f"{client.provider_name}: {e}")
                continue
            if isinstance(data, dict) and data.get("error"):
                errors.append(f"{client.provider_name}: {data['error']}")
                continue
            return data.get("result") if isinstance(data, dict) else None

        raise APIError(
            f"All RPC endpoints failed: {'; '.join(errors)}",
            provider="rpc_fallback",
            retryable=False,
        )

    async def close(self) -> None:
        for client, _ in self._chain:
            await client.close()
