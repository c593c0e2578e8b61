"""Downstream sinks for qualified tokens.

A sink is any async callable taking a TradeCandidate. The engine ships a
JSONL file sink (state/candidates.jsonl) that a simulated executor can
tail; notification delivery and execution live elsewhere.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable

from pydantic import BaseModel

from launchwatch.config import WORKSPACE
from launchwatch.models import WatchlistEntry

log = logging.getLogger("launchwatch.sinks")

CANDIDATES_FILE = WORKSPACE / "state" / "candidates.jsonl"


class TradeCandidate(BaseModel):
    """A qualified token handed to the (simulated) executor."""

    mint: str
    symbol: str
    name: str = ""
    score_total: float
    price_usd: float | None = None
    market_cap_usd: float | None = None
    holders: int = 0
    volume_sol: float = 0.0
    creator_wallet: str | None = None
    qualified_at: datetime
    can_execute: bool
    reason: str = ""

    @classmethod
    def from_entry(cls, entry: WatchlistEntry, can_execute: bool) -> "TradeCandidate":
        return cls(
            mint=entry.mint,
            symbol=entry.symbol,
            name=entry.name,
            score_total=entry.score.total,
            price_usd=entry.metrics.price_usd,
            market_cap_usd=entry.metrics.market_cap_usd,
            holders=entry.metrics.holders,
            volume_sol=round(entry.metrics.volume_sol, 4),
            creator_wallet=entry.creator_wallet,
            qualified_at=entry.qualified_at,
            can_execute=can_execute,
            reason=entry.qualification_reason,
        )


CandidateSink = Callable[[TradeCandidate], Awaitable[None]]


class JsonlCandidateSink:
    """Append each candidate as one JSON line."""

    def __init__(self, path: Path | None = None):
        self.path = path or CANDIDATES_FILE
        self._lock = asyncio.Lock()

    async def __call__(self, candidate: TradeCandidate) -> None:
        line = json.dumps(candidate.model_dump(mode="json"), sort_keys=True)
        async with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(line + "\n")
        log.info(
            "Candidate %s (%s) score=%.1f execute=%s",
            candidate.symbol, candidate.mint[:8], candidate.score_total, candidate.can_execute,
        )
