"""Birdeye API client: price, liquidity, volume, holder data.

Used by:
- Metrics adapter (fallback provider when Solana Tracker fails)
- SOL/USD price for converting USD volume into SOL
"""

from __future__ import annotations

import os
from typing import Any

import httpx

from launchwatch.clients.base import BaseClient
from launchwatch.utils.retry import BackoffPolicy

SOL_MINT = "So11111111111111111111111111111111111111112"


class BirdeyeClient:
    """Birdeye public API: token overview and spot price."""

    def __init__(
        self,
        api_key: str | None = None,
        backoff: BackoffPolicy | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or os.environ.get("BIRDEYE_API_KEY", "")
        self._client = BaseClient(
            base_url="https://public-api.birdeye.so",
            headers={
                "X-API-KEY": self.api_key,
                "x-chain": "solana",
            },
            rate_limit=5.0,
            timeout=timeout,
            backoff=backoff,
            provider_name="birdeye",
            transport=transport,
        )

    async def get_token_overview(self, mint: str) -> dict[str, Any]:
        """Get token overview: price, liquidity, volume, mc, holders."""
        return await self._client.get(
            "/defi/token_overview",
            params={"address": mint},
            cache_ttl=30,
        )

    async def get_price(self, mint: str) -> dict[str, Any]:
        """Get current price."""
        return await self._client.get(
            "/defi/price",
            params={"address": mint},
            cache_ttl=15,
        )

    async def get_sol_price_usd(self) -> float | None:
        """SOL/USD spot, or None if Birdeye returned nothing usable."""
        data = await self.get_price(SOL_MINT)
        value = (data.get("data") or {}).get("value") if isinstance(data, dict) else None
        try:
            price = float(value)
        except (TypeError, ValueError):
            return None
        return price if price > 0 else None

    async def close(self) -> None:
        await self._client.close()
