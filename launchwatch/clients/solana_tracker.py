"""Solana Tracker API client: launch feed and per-token market data.

Primary market-data provider. Used by:
- Discovery (latest pump.fun launches)
- Metrics adapter (holders, 24h volume, price, liquidity, curve %)
"""

from __future__ import annotations

import os
from typing import Any

import httpx

from launchwatch.clients.base import BaseClient
from launchwatch.utils.retry import BackoffPolicy


class SolanaTrackerClient:
    """Solana Tracker data API (x-api-key auth)."""

    def __init__(
        self,
        api_key: str | None = None,
        backoff: BackoffPolicy | None = None,
        timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or os.environ.get("SOLANA_TRACKER_API_KEY", "")
        self._client = BaseClient(
            base_url="https://data.solanatracker.io",
            headers={"x-api-key": self.api_key},
            rate_limit=5.0,
            timeout=timeout,
            backoff=backoff,
            provider_name="solana_tracker",
            transport=transport,
        )

    async def get_latest_tokens(self, market: str = "pumpfun", limit: int = 200) -> list[dict[str, Any]]:
        """Most recently launched tokens on ``market``, newest first."""
        data = await self._client.get(
            "/tokens/latest",
            params={"market": market, "limit": limit},
        )
        if isinstance(data, dict):
            data = data.get("tokens") or data.get("data") or []
        return data if isinstance(data, list) else []

    async def get_token(self, mint: str) -> dict[str, Any]:
        """Full token record: token info, pools, holders, risk, events."""
        data = await self._client.get(f"/tokens/{mint}", cache_ttl=10)
        return data if isinstance(data, dict) else {}

    async def close(self) -> None:
        await self._client.close()
