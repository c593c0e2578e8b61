"""RugCheck API client: token safety reports."""

from __future__ import annotations

from typing import Any

import httpx

from launchwatch.clients.base import BaseClient
from launchwatch.utils.retry import BackoffPolicy


class RugCheckClient:
    """RugCheck v1 (no auth for the report endpoint)."""

    def __init__(
        self,
        backoff: BackoffPolicy | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = BaseClient(
            base_url="https://api.rugcheck.xyz/v1",
            rate_limit=3.0,
            timeout=timeout,
            backoff=backoff,
            provider_name="rugcheck",
            transport=transport,
        )

    async def get_report(self, mint: str) -> dict[str, Any]:
        """Full report: risks, topHolders, markets, authorities, insider graph."""
        data = await self._client.get(f"/tokens/{mint}/report", cache_ttl=60)
        return data if isinstance(data, dict) else {}

    async def close(self) -> None:
        await self._client.close()
