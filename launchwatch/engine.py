"""LaunchWatch engine facade.

Wires config, clients, adapters, store, state machine and safeguards
together and exposes the operator operations used by the CLI.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from launchwatch.clients.birdeye import BirdeyeClient
from launchwatch.clients.helius import HeliusClient
from launchwatch.clients.pumpfun import PumpFunClient
from launchwatch.clients.rugcheck import RugCheckClient
from launchwatch.clients.solana_tracker import SolanaTrackerClient
from launchwatch.config import EngineConfig, load_engine_config
from launchwatch.cycle_runner import CycleRunner
from launchwatch.devwallet import DevWalletMonitor
from launchwatch.guards.safeguards import SafeguardController
from launchwatch.models import CycleSummary, RejectionKind, WatchlistStatus
from launchwatch.scoring import QualificationScorer
from launchwatch.sinks import CandidateSink, JsonlCandidateSink
from launchwatch.sources.metrics import MetricsAdapter
from launchwatch.sources.safety import SafetyAdapter
from launchwatch.store import WatchlistStore
from launchwatch.utils.retry import BackoffPolicy
from launchwatch.watchlist import WatchlistStateMachine

log = logging.getLogger("launchwatch.engine")


class EntryNotFoundError(LookupError):
    """No watchlist entry for the mint."""


def backoff_from_config(config: EngineConfig) -> BackoffPolicy:
    p = config.polling
    return BackoffPolicy(
        max_attempts=p.max_retries,
        base_delay=p.backoff_base_seconds,
        max_delay=p.backoff_max_seconds,
        jitter=p.backoff_jitter_seconds,
    )


class LaunchWatchEngine:
    """Token candidate lifecycle engine."""

    def __init__(
        self,
        config: EngineConfig,
        store: WatchlistStore,
        safeguards: SafeguardController,
        metrics: MetricsAdapter,
        safety: SafetyAdapter,
        devwallet: DevWalletMonitor | None = None,
        sink: CandidateSink | None = None,
        clients: list[Any] | None = None,
    ):
        self.config = config
        self.store = store
        self.safeguards = safeguards
        self.scorer = QualificationScorer(config.scoring)
        self.machine = WatchlistStateMachine(self.scorer, config.lifecycle, config.dev_wallet)
        self.metrics = metrics
        self.safety = safety
        self.devwallet = devwallet
        self.runner = CycleRunner(
            config,
            store,
            self.machine,
            safeguards,
            metrics,
            safety,
            devwallet=devwallet,
            sink=sink,
        )
        self._clients = clients or []

    @classmethod
    def from_config(cls, config_path: Path | None = None) -> "LaunchWatchEngine":
        config = load_engine_config(config_path)
        paths = config.paths
        backoff = backoff_from_config(config)
        timeout = config.polling.call_timeout_seconds

        tracker = SolanaTrackerClient(backoff=backoff, timeout=timeout)
        birdeye = BirdeyeClient(backoff=backoff, timeout=timeout)
        rugcheck = RugCheckClient(backoff=backoff, timeout=timeout)
        helius = HeliusClient(backoff=backoff, timeout=timeout)
        pumpfun = PumpFunClient(backoff=backoff, timeout=timeout)

        return cls(
            config=config,
            store=WatchlistStore(paths.resolve(paths.watchlist_db)),
            safeguards=SafeguardController(
                config.safeguards,
                paths.resolve(paths.safeguard_state),
                paths.resolve(paths.killswitch_file),
            ),
            metrics=MetricsAdapter(
                tracker,
                birdeye,
                config.polling.fallback_sol_price_usd,
                provider_timeout=config.polling.lookup_budget_seconds(),
            ),
            safety=SafetyAdapter(rugcheck, config.scoring.min_lp_locked_pct),
            devwallet=DevWalletMonitor(helius, pumpfun, config.dev_wallet),
            sink=JsonlCandidateSink(),
            clients=[tracker, birdeye, rugcheck, helius, pumpfun],
        )

    async def close(self) -> None:
        for client in self._clients:
            await client.close()

    # ── Cycle ────────────────────────────────────────────────────────

    async def run_cycle(self, abort: asyncio.Event | None = None) -> CycleSummary:
        return await self.runner.run_cycle(abort)

    # ── Queries ──────────────────────────────────────────────────────

    def get_status(self, mint: str) -> dict[str, Any]:
        entry = self.store.get(mint)
        if entry is None:
            raise EntryNotFoundError(mint)
        return {
            "entry": entry.model_dump(mode="json"),
            "lifecycle": entry.lifecycle_label,
            "qualifies": self.scorer.is_qualified(entry.score),
            "transitions": [t.model_dump(mode="json") for t in self.store.transitions(mint)],
        }

    def list_entries(self, status: WatchlistStatus | str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        if isinstance(status, str):
            status = WatchlistStatus(status)
        return [
            {
                "mint": e.mint,
                "symbol": e.symbol,
                "lifecycle": e.lifecycle_label,
                "score": e.score.total,
                "priority": e.priority_score,
                "holders": e.metrics.holders,
                "first_seen_at": e.first_seen_at.isoformat(),
                "last_checked_at": e.last_checked_at.isoformat() if e.last_checked_at else None,
            }
            for e in self.store.list_entries(status, limit)
        ]

    def get_safeguard_status(self) -> dict[str, Any]:
        status = self.safeguards.status()
        status["watchlist"] = self.store.count_by_status()
        return status

    # ── Safeguard operations ─────────────────────────────────────────

    def reset_kill_switch(self) -> dict[str, Any]:
        state = self.safeguards.reset_kill_switch()
        return {"kill_switch_active": state.kill_switch_active}

    def activate_kill_switch(self, reason: str) -> dict[str, Any]:
        state = self.safeguards.activate_kill_switch(reason)
        return {
            "kill_switch_active": state.kill_switch_active,
            "kill_switch_reason": state.kill_switch_reason,
        }

    def update_priorities(self) -> dict[str, Any]:
        return {"updated": self.safeguards.update_priorities(self.store)}

    def prune_watchdogs(self) -> dict[str, Any]:
        pruned = self.safeguards.prune_watchdogs(self.store, self.machine)
        return {"pruned": len(pruned), "mints": pruned}

    def record_trade_outcome(
        self,
        mint: str,
        pnl_sol: float,
        resolved_at: datetime | None = None,
    ) -> dict[str, Any]:
        rate = self.safeguards.record_trade_outcome(mint, pnl_sol, resolved_at)
        return {"rolling_win_rate": rate}

    # ── Manual lifecycle / dev wallet ────────────────────────────────

    def manual_transition(
        self,
        mint: str,
        target_status: WatchlistStatus | str,
        reason: str,
        rejection_kind: RejectionKind | str | None = None,
    ) -> dict[str, Any]:
        """Operator transition, validated against the same table as the cycle.

        Raises:
            EntryNotFoundError: unknown mint.
            InvalidTransitionError: transition not allowed, or promotion
                guards (score, hard-reject flags, safeguards) not met.
        """
        entry = self.store.get(mint)
        if entry is None:
            raise EntryNotFoundError(mint)
        status = WatchlistStatus(target_status)
        kind = RejectionKind(rejection_kind) if rejection_kind else None
        record = self.machine.apply_transition(
            entry, status, reason, datetime.now(timezone.utc), kind,
            source="manual", can_promote=self.safeguards.can_promote,
        )
        self.store.save(entry, [record] if record else [])
        self.safeguards.refresh_watchdog_count(self.store)
        return {
            "mint": mint,
            "lifecycle": entry.lifecycle_label,
            "changed": record is not None,
        }

    async def check_dev_wallet(
        self,
        wallet: str,
        mint: str,
        created_at: datetime | None = None,
    ) -> dict[str, Any]:
        if self.devwallet is None:
            raise RuntimeError("Dev-wallet monitor not configured")
        status, launched_new = await asyncio.gather(
            self.devwallet.check_dev_wallet(wallet, mint),
            self.devwallet.check_new_launch(wallet, mint, created_at),
        )
        return {
            "wallet": wallet,
            "mint": mint,
            **status.model_dump(),
            "launched_new": launched_new,
        }
