"""Tests for the HTTP provider layer: retry policy, errors, caching, RPC fallback.

Uses httpx.MockTransport; no network.
"""

from __future__ import annotations

import json

import httpx
import pytest

from launchwatch.clients.base import APIError, BaseClient, RPCFallbackClient
from launchwatch.clients.birdeye import BirdeyeClient
from launchwatch.clients.helius import HeliusClient
from launchwatch.clients.solana_tracker import SolanaTrackerClient
from launchwatch.utils.retry import BackoffPolicy, is_retryable
from tests.mocks.mock_birdeye import EMPTY, SOL_PRICE
from tests.mocks.mock_helius import token_accounts
from tests.mocks.mock_solana_tracker import DEV_WALLET, LATEST_TOKENS, MINT_GOOD

FAST = BackoffPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


class Recorder:
    """MockTransport handler replaying a list of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def _client(recorder: Recorder, backoff: BackoffPolicy = FAST) -> BaseClient:
    return BaseClient(
        base_url="https://api.test",
        rate_limit=1000.0,
        backoff=backoff,
        provider_name="test",
        transport=httpx.MockTransport(recorder),
    )


# ── Retry policy ─────────────────────────────────────────────────────


class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_rate_limit(self):
        rec = Recorder(httpx.Response(429), httpx.Response(200, json={"ok": True}))
        client = _client(rec)
        assert await client.get("/x") == {"ok": True}
        assert len(rec.requests) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self):
        rec = Recorder(httpx.ConnectError("refused"), httpx.Response(200, json=[1]))
        client = _client(rec)
        assert await client.get("/x") == [1]
        await client.close()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        rec = Recorder(httpx.Response(503))
        client = _client(rec)
        with pytest.raises(APIError) as exc:
            await client.get("/x")
        assert exc.value.status_code == 503
        assert exc.value.retryable is True
        assert len(rec.requests) == 3
        await client.close()

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        rec = Recorder(httpx.Response(400, text="bad mint"))
        client = _client(rec)
        with pytest.raises(APIError) as exc:
            await client.get("/x")
        assert exc.value.status_code == 400
        assert exc.value.retryable is False
        assert "bad mint" in str(exc.value)
        assert len(rec.requests) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        rec = Recorder(httpx.Response(200, text="<html>"))
        client = _client(rec)
        with pytest.raises(APIError, match="Malformed JSON"):
            await client.get("/x")
        assert len(rec.requests) == 1
        await client.close()

    def test_is_retryable(self):
        assert is_retryable(APIError("x", retryable=True))
        assert not is_retryable(APIError("x", retryable=False))
        assert is_retryable(httpx.ReadTimeout("slow"))
        assert not is_retryable(ValueError("x"))


# ── Caching ──────────────────────────────────────────────────────────


class TestCache:
    @pytest.mark.asyncio
    async def test_cached_get(self):
        rec = Recorder(httpx.Response(200, json={"n": 1}))
        client = _client(rec)
        await client.get("/x", params={"a": 1}, cache_ttl=60)
        await client.get("/x", params={"a": 1}, cache_ttl=60)
        assert len(rec.requests) == 1

        await client.get("/x", params={"a": 2}, cache_ttl=60)
        assert len(rec.requests) == 2
        await client.close()


# ── RPC fallback ─────────────────────────────────────────────────────


def _rpc_handler(by_host: dict[str, dict]):
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.host)
        return httpx.Response(200, json=by_host[request.url.host])

    return handler, seen


class TestRPCFallback:
    @pytest.mark.asyncio
    async def test_falls_through_rpc_error(self):
        handler, seen = _rpc_handler({
            "primary.test": {"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "busy"}},
            "backup.test": {"jsonrpc": "2.0", "id": 1, "result": {"value": 42}},
        })
        rpc = RPCFallbackClient(
            [{"provider": "primary", "url": "https://primary.test"}, {"provider": "backup", "url": "https://backup.test"}],
            transport=httpx.MockTransport(handler),
        )
        assert await rpc.request("getSlot", []) == {"value": 42}
        assert seen == ["primary.test", "backup.test"]
        await rpc.close()

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self):
        handler, _ = _rpc_handler({
            "primary.test": {"jsonrpc": "2.0", "id": 1, "error": {"message": "busy"}},
        })
        rpc = RPCFallbackClient(
            [{"provider": "primary", "url": "https://primary.test"}],
            transport=httpx.MockTransport(handler),
        )
        with pytest.raises(APIError) as exc:
            await rpc.request("getSlot", [])
        assert exc.value.provider == "rpc_fallback"
        await rpc.close()


# ── Provider clients ─────────────────────────────────────────────────


class TestProviderClients:
    @pytest.mark.asyncio
    async def test_tracker_latest_tokens(self):
        rec = Recorder(httpx.Response(200, json={"tokens": LATEST_TOKENS}))
        client = SolanaTrackerClient(api_key="st-key", backoff=FAST, transport=httpx.MockTransport(rec))
        tokens = await client.get_latest_tokens(limit=3)

        assert len(tokens) == 3
        request = rec.requests[0]
        assert request.headers["x-api-key"] == "st-key"
        assert request.url.path == "/tokens/latest"
        assert request.url.params["market"] == "pumpfun"
        await client.close()

    @pytest.mark.asyncio
    async def test_tracker_key_from_env(self, monkeypatch):
        monkeypatch.setenv("SOLANA_TRACKER_API_KEY", "env-key")
        client = SolanaTrackerClient(backoff=FAST)
        assert client.api_key == "env-key"
        await client.close()

    @pytest.mark.asyncio
    async def test_birdeye_sol_price(self):
        client = BirdeyeClient(api_key="b", backoff=FAST, transport=httpx.MockTransport(Recorder(httpx.Response(200, json=SOL_PRICE))))
        assert await client.get_sol_price_usd() == 150.0
        await client.close()

    @pytest.mark.asyncio
    async def test_birdeye_sol_price_missing(self):
        client = BirdeyeClient(api_key="b", backoff=FAST, transport=httpx.MockTransport(Recorder(httpx.Response(200, json=EMPTY))))
        assert await client.get_sol_price_usd() is None
        await client.close()

    @pytest.mark.asyncio
    async def test_helius_token_balance(self):
        rec = Recorder(httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": token_accounts(1234.5)}))
        client = HeliusClient(api_key="h", backoff=FAST, transport=httpx.MockTransport(rec))
        assert await client.get_token_balance(DEV_WALLET, MINT_GOOD) == 1234.5

        assert rec.requests[0].url.host == "mainnet.helius-rpc.com"
        assert rec.requests[0].url.params["api-key"] == "h"
        body = json.loads(rec.requests[0].content)
        assert body["method"] == "getTokenAccountsByOwner"
        assert body["params"][1] == {"mint": MINT_GOOD}
        await client.close()
