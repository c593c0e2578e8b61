"""pump.fun frontend API client: creator launch history."""

from __future__ import annotations

from typing import Any

import httpx

from launchwatch.clients.base import BaseClient
from launchwatch.utils.retry import BackoffPolicy


class PumpFunClient:
    def __init__(
        self,
        backoff: BackoffPolicy | None = None,
        timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = BaseClient(
            base_url="https://frontend-api.pump.fun",
            headers={"Accept": "application/json"},
            rate_limit=2.0,
            timeout=timeout,
            backoff=backoff,
            provider_name="pumpfun",
            transport=transport,
        )

    async def get_user_created_coins(self, wallet: str, limit: int = 10) -> list[dict[str, Any]]:
        """Coins created by ``wallet``, newest first."""
        data = await self._client.get(
            f"/coins/user-created-coins/{wallet}",
            params={"offset": 0, "limit": limit, "includeNsfw": "true"},
        )
        if isinstance(data, dict):
            data = data.get("coins") or []
        return data if isinstance(data, list) else []

    async def close(self) -> None:
        await self._client.close()
