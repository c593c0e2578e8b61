"""Helius API client: Solana RPC + Enhanced transaction history.

Provides:
- Token balances for a wallet (RPC with fallback chain)
- Parsed swap history for a wallet (Enhanced API)
"""

from __future__ import annotations

import os
from typing import Any

import httpx

from launchwatch.clients.base import BaseClient, RPCFallbackClient
from launchwatch.utils.retry import BackoffPolicy


class HeliusClient:
    """Helius Developer tier: RPC + Enhanced APIs."""

    def __init__(
        self,
        api_key: str | None = None,
        backoff: BackoffPolicy | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or os.environ.get("HELIUS_API_KEY", "")
        self._api = BaseClient(
            base_url="https://api.helius.xyz/v0",
            rate_limit=10.0,
            timeout=timeout,
            backoff=backoff,
            provider_name="helius",
            transport=transport,
        )
        self._rpc = RPCFallbackClient(
            [
                {
                    "provider": "helius",
                    "url": "https://mainnet.helius-rpc.com",
                    "params": {"api-key": self.api_key},
                    "rate_limit": 10.0,
                    "timeout_seconds": timeout,
                },
                {
                    "provider": "public",
                    "url": "https://api.mainnet-beta.solana.com",
                    "rate_limit": 5.0,
                    "timeout_seconds": 20,
                },
            ],
            transport=transport,
        )

    async def get_swap_transactions(self, address: str, limit: int = 50) -> list[dict[str, Any]]:
        """Parsed SWAP transactions for an address, newest first."""
        result = await self._api.get(
            f"/addresses/{address}/transactions",
            params={"api-key": self.api_key, "type": "SWAP", "limit": limit},
        )
        return result if isinstance(result, list) else []

    async def get_token_balance(self, owner: str, mint: str) -> float:
        """UI amount of ``mint`` held by ``owner`` across all token accounts."""
        result = await self._rpc.request(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed"}],
        )
        total = 0.0
        for account in (result or {}).get("value", []):
            info = (
                account.get("account", {})
                .get("data", {})
                .get("parsed", {})
                .get("info", {})
            )
            amount = info.get("tokenAmount", {}).get("uiAmount")
            if amount:
                total += float(amount)
        return total

    async def close(self) -> None:
        await self._api.close()
        await self._rpc.close()
