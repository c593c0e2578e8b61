"""Metrics source adapter: launch discovery + per-token market snapshots.

Provider precedence: Solana Tracker, then Birdeye. USD volume is converted
to SOL with the Birdeye SOL price, cached per cycle, falling back to a
configured constant.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any

from launchwatch.clients.base import APIError
from launchwatch.clients.birdeye import BirdeyeClient
from launchwatch.clients.solana_tracker import SolanaTrackerClient
from launchwatch.models import DiscoveredToken, InvalidMintError, TokenMetrics, validate_mint
from launchwatch.utils.async_batch import with_timeout

log = logging.getLogger("launchwatch.metrics")


def _safe_float(val: Any, default: float = 0.0) -> float:
    """Null-safe float conversion; providers return None or nested dicts for missing fields."""
    if isinstance(val, dict):
        val = val.get("usd", val.get("quote"))
    if val is None:
        return default
    try:
        return float(val)
    except (TypeError, ValueError):
        return default


def _optional_float(val: Any) -> float | None:
    if val is None:
        return None
    result = _safe_float(val, default=float("nan"))
    return None if math.isnan(result) else result


def _parse_timestamp(val: Any) -> datetime | None:
    """Unix seconds or milliseconds to aware UTC datetime."""
    ts = _safe_float(val)
    if ts <= 0:
        return None
    if ts > 1e12:
        ts /= 1000.0
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def parse_tracker_metrics(data: dict[str, Any], sol_price_usd: float) -> TokenMetrics:
    """Normalize a Solana Tracker token record (feed item or /tokens/{mint})."""
    pools = data.get("pools") or []
    pool = pools[0] if pools and isinstance(pools[0], dict) else {}
    txns = pool.get("txns") or {}

    volume = pool.get("volume")
    if isinstance(volume, dict):
        volume_usd = _safe_float(volume.get("h24"))
    else:
        volume_usd = _safe_float(txns.get("volume", volume))

    return TokenMetrics(
        holders=int(_safe_float(data.get("holders"))),
        volume_usd=volume_usd,
        volume_sol=volume_usd / sol_price_usd if sol_price_usd > 0 else 0.0,
        price_usd=_optional_float(pool.get("price")),
        liquidity_usd=_optional_float(pool.get("liquidity")),
        market_cap_usd=_optional_float(pool.get("marketCap")),
        bonding_curve_pct=_optional_float(pool.get("curvePercentage")),
        buys=int(_safe_float(data.get("buys", txns.get("buys")))),
        sells=int(_safe_float(data.get("sells", txns.get("sells")))),
        provider="solana_tracker",
        extras={
            "market": pool.get("market"),
            "bundle_id": pool.get("bundleId"),
            "risk": data.get("risk") or {},
        },
    )


def parse_birdeye_metrics(data: dict[str, Any], sol_price_usd: float) -> TokenMetrics:
    """Normalize a Birdeye /defi/token_overview payload."""
    d = data.get("data", data) or {}
    volume_usd = _safe_float(d.get("v24hUSD"))
    return TokenMetrics(
        holders=int(_safe_float(d.get("holder"))),
        volume_usd=volume_usd,
        volume_sol=volume_usd / sol_price_usd if sol_price_usd > 0 else 0.0,
        price_usd=_optional_float(d.get("price")),
        liquidity_usd=_optional_float(d.get("liquidity")),
        market_cap_usd=_optional_float(d.get("mc", d.get("marketCap"))),
        buys=int(_safe_float(d.get("buy24h"))),
        sells=int(_safe_float(d.get("sell24h"))),
        provider="birdeye",
    )


def parse_discovered(item: dict[str, Any], sol_price_usd: float) -> DiscoveredToken:
    """Feed item to DiscoveredToken.

    Raises:
        InvalidMintError: mint is malformed.
        ValueError: symbol or name missing.
    """
    token = item.get("token") or {}
    creation = token.get("creation") or {}
    pools = item.get("pools") or [{}]
    mint = validate_mint(token.get("mint") or item.get("mint") or "")
    symbol = (token.get("symbol") or "").strip()
    name = (token.get("name") or "").strip()
    if not symbol or not name:
        raise ValueError(f"Token {mint} missing symbol/name")
    return DiscoveredToken(
        mint=mint,
        symbol=symbol,
        name=name,
        creator_wallet=creation.get("creator") or (pools[0] or {}).get("deployer") or None,
        created_at=_parse_timestamp(creation.get("created_time")),
        metrics=parse_tracker_metrics(item, sol_price_usd),
    )


class MetricsAdapter:
    """Discovery feed and metrics lookups across market-data providers."""

    def __init__(
        self,
        tracker: SolanaTrackerClient,
        birdeye: BirdeyeClient | None = None,
        fallback_sol_price_usd: float = 150.0,
        provider_timeout: float | None = None,
    ):
        self.tracker = tracker
        # Deadline per provider (retries included), so a hung primary still
        # leaves time for the fallback.
        self.provider_timeout = provider_timeout
        self.birdeye = birdeye
        self.fallback_sol_price_usd = fallback_sol_price_usd
        self.sol_price_usd = fallback_sol_price_usd

    async def refresh_sol_price(self) -> float:
        """Refresh the cached SOL/USD price. Never raises."""
        price = None
        if self.birdeye is not None:
            try:
                price = await self.birdeye.get_sol_price_usd()
            except APIError as e:
                log.warning("SOL price lookup failed, using %.2f: %s", self.sol_price_usd, e)
        self.sol_price_usd = price or self.sol_price_usd or self.fallback_sol_price_usd
        return self.sol_price_usd

    async def discover(self, limit: int = 200) -> tuple[list[DiscoveredToken], int]:
        """Latest launches. Returns (valid tokens, count of invalid feed items)."""
        items = await self.tracker.get_latest_tokens(limit=limit)
        tokens: list[DiscoveredToken] = []
        invalid = 0
        seen: set[str] = set()
        for item in items:
            if not isinstance(item, dict):
                invalid += 1
                continue
            try:
                token = parse_discovered(item, self.sol_price_usd)
            except (InvalidMintError, ValueError) as e:
                log.debug("Skipping feed item: %s", e)
                invalid += 1
                continue
            if token.mint in seen:
                continue
            seen.add(token.mint)
            tokens.append(token)
        return tokens, invalid

    async def fetch_metrics(self, mint: str) -> TokenMetrics:
        """Current snapshot for ``mint`` from the first provider that answers.

        Raises:
            APIError: every configured provider failed.
        """
        errors: list[str] = []
        try:
            data = await with_timeout(self.tracker.get_token(mint), self.provider_timeout)
            if data:
                return parse_tracker_metrics(data, self.sol_price_usd)
            errors.append("solana_tracker: empty response")
        except APIError as e:
            errors.append(f"solana_tracker: {e}")
        except asyncio.TimeoutError:
            errors.append(f"solana_tracker: no answer within {self.provider_timeout}s")

        if self.birdeye is not None:
            try:
                data = await with_timeout(self.birdeye.get_token_overview(mint), self.provider_timeout)
                if data and (data.get("data") or {}):
                    return parse_birdeye_metrics(data, self.sol_price_usd)
                errors.append("birdeye: empty response")
            except APIError as e:
                errors.append(f"birdeye: {e}")
            except asyncio.TimeoutError:
                errors.append(f"birdeye: no answer within {self.provider_timeout}s")

        raise APIError(
            f"No metrics for {mint}: {'; '.join(errors)}",
            provider="metrics",
            retryable=False,
        )
