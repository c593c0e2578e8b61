"""
Cycle Runner: one discovery + polling pass over the watchlist.

Steps per cycle:
  0. credential check (ConfigError before any work)
  1. single-cycle guard (in-process + file lock)
  2. SOL price + win-rate refresh
  3. select due entries (before discovery, so new mints wait a cycle)
  4. discover new mints from the launch feed
  5. batched lookups (metrics, safety, dev wallet) with per-lookup deadlines
  6. sequential transitions + persistence per batch
  7. candidate emission for newly qualified tokens
  8. active watchdog count refresh (pruning is the separate prune command)
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Sequence

from launchwatch.clients.base import APIError
from launchwatch.config import ConfigError, EngineConfig
from launchwatch.devwallet import DevWalletMonitor
from launchwatch.guards.safeguards import SafeguardController, compute_priority
from launchwatch.models import (
    CycleSummary,
    DevWalletStatus,
    RejectionKind,
    SafetyReport,
    TokenMetrics,
    TransitionRecord,
    WatchlistEntry,
    WatchlistStatus,
)
from launchwatch.sinks import CandidateSink, TradeCandidate
from launchwatch.sources.metrics import MetricsAdapter
from launchwatch.sources.safety import SafetyAdapter
from launchwatch.state import SafeguardStateError
from launchwatch.store import WatchlistStore
from launchwatch.utils.async_batch import run_in_batches, with_timeout
from launchwatch.utils.file_lock import LockHeldError, nonblocking_file_lock
from launchwatch.watchlist import WatchlistStateMachine

log = logging.getLogger("launchwatch.cycle")

_CYCLE_GUARD = threading.Lock()


class CycleInProgressError(RuntimeError):
    """Another cycle is already running."""


@dataclass
class TokenLookup:
    metrics: TokenMetrics
    safety: SafetyReport
    dev: tuple[DevWalletStatus, bool] | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CycleRunner:
    def __init__(
        self,
        config: EngineConfig,
        store: WatchlistStore,
        machine: WatchlistStateMachine,
        safeguards: SafeguardController,
        metrics: MetricsAdapter,
        safety: SafetyAdapter,
        devwallet: DevWalletMonitor | None = None,
        sink: CandidateSink | None = None,
        lock_path: Path | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config
        self.store = store
        self.machine = machine
        self.safeguards = safeguards
        self.metrics = metrics
        self.safety = safety
        self.devwallet = devwallet
        self.sink = sink
        self.lock_path = lock_path or config.paths.resolve(config.paths.cycle_lock)
        self.clock = clock

    def _check_credentials(self) -> None:
        if not (self.metrics.tracker.api_key or "").strip():
            raise ConfigError("Missing required credential: SOLANA_TRACKER_API_KEY")

    async def run_cycle(self, abort: asyncio.Event | None = None) -> CycleSummary:
        """Run one cycle.

        Raises:
            ConfigError: primary provider credential missing.
            CycleInProgressError: another cycle holds the guard or the file lock.
        """
        self._check_credentials()
        if not _CYCLE_GUARD.acquire(blocking=False):
            raise CycleInProgressError("A cycle is already running in this process")
        try:
            try:
                with nonblocking_file_lock(self.lock_path):
                    return await self._run(abort)
            except LockHeldError as e:
                raise CycleInProgressError(str(e)) from e
        finally:
            _CYCLE_GUARD.release()

    # ── Cycle body ───────────────────────────────────────────────────

    async def _run(self, abort: asyncio.Event | None) -> CycleSummary:
        started = time.monotonic()
        now = self.clock()
        polling = self.config.polling
        summary = CycleSummary()

        await self.metrics.refresh_sol_price()
        self.safeguards.refresh_win_rate(now)

        recheck_cutoff, cooldown_cutoff = self.machine.due_cutoffs(now)
        due = self.store.due_entries(recheck_cutoff, cooldown_cutoff, polling.max_tokens_per_cycle)
        summary.scanned = len(due)

        await self._discover(now, summary)

        async def lookup(entry: WatchlistEntry) -> TokenLookup:
            return await self._lookup(entry)

        async def apply(batch: Sequence[WatchlistEntry], results: list) -> None:
            for entry, result in zip(batch, results):
                if isinstance(result, BaseException):
                    summary.errors += 1
                    log.warning("Lookup failed for %s: %s", entry.mint[:8], result)
                    continue
                try:
                    await self._apply(entry, result, now, summary)
                except Exception as e:
                    summary.errors += 1
                    log.warning("Processing failed for %s: %s", entry.mint[:8], e)

        summary.aborted = await run_in_batches(
            due,
            lookup,
            apply,
            batch_size=polling.batch_size,
            delay_seconds=polling.batch_delay_seconds,
            abort=abort,
        )

        # Over-cap pruning is an operator command, never part of a cycle.
        try:
            summary.active_watchdogs = self.safeguards.refresh_watchdog_count(self.store)
        except SafeguardStateError as e:
            log.warning("Watchdog count not refreshed: %s", e)

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        log.info(
            "Cycle done: scanned=%d added=%d qualified=%d removed=%d errors=%d invalid=%d aborted=%s (%dms)",
            summary.scanned, summary.added, summary.qualified, summary.removed,
            summary.errors, summary.invalid, summary.aborted, summary.duration_ms,
        )
        return summary

    async def _discover(self, now: datetime, summary: CycleSummary) -> None:
        try:
            tokens, invalid = await with_timeout(
                self.metrics.discover(limit=self.config.polling.discovery_limit),
                self.config.polling.lookup_budget_seconds(),
            )
        except (APIError, asyncio.TimeoutError) as e:
            summary.errors += 1
            log.warning("Discovery failed: %s", e)
            return

        summary.invalid += invalid
        known = self.store.known_mints(t.mint for t in tokens)
        for token in tokens:
            if token.mint in known:
                continue
            entry = WatchlistEntry(
                mint=token.mint,
                symbol=token.symbol,
                name=token.name,
                creator_wallet=token.creator_wallet,
                token_created_at=token.created_at,
                status=WatchlistStatus.WATCHING,
                first_seen_at=now,
                metrics=token.metrics,
                holder_peak=token.metrics.holders,
                price_ath_usd=token.metrics.price_usd,
            )
            if self.store.insert_if_absent(entry):
                summary.added += 1
        if summary.added:
            log.info("Discovered %d new tokens (%d invalid feed items)", summary.added, invalid)

    async def _lookup(self, entry: WatchlistEntry) -> TokenLookup:
        # Requests carry the httpx timeout; these deadlines cover a whole
        # lookup with its retries. Metrics bounds each provider itself.
        budget = self.config.polling.lookup_budget_seconds()
        metrics, safety = await asyncio.gather(
            self.metrics.fetch_metrics(entry.mint),
            with_timeout(self.safety.check(entry.mint), budget),
        )
        dev = None
        if self.devwallet is not None and self.devwallet.needs_check(entry):
            try:
                # Balance lookups may walk two RPC endpoints.
                dev = await with_timeout(self.devwallet.assess(entry), 2 * budget)
            except (APIError, asyncio.TimeoutError) as e:
                log.warning("Dev-wallet check failed for %s: %s", entry.mint[:8], e)
        return TokenLookup(metrics=metrics, safety=safety, dev=dev)

    async def _apply(
        self,
        entry: WatchlistEntry,
        lookup: TokenLookup,
        now: datetime,
        summary: CycleSummary,
    ) -> None:
        record = self.machine.process_check(
            entry,
            lookup.metrics,
            lookup.safety,
            now,
            dev=lookup.dev,
            can_promote=self.safeguards.can_promote,
        )
        entry.priority_score = compute_priority(entry, now, self.config.safeguards.priority_half_life_minutes)
        self.store.save(entry, [record] if record else [])
        summary.updated += 1
        if record is not None:
            self._count(record, entry, summary)
            if entry.status == WatchlistStatus.QUALIFIED:
                await self._emit(entry, now, summary)

    @staticmethod
    def _count(record: TransitionRecord, entry: WatchlistEntry, summary: CycleSummary) -> None:
        status = entry.status
        if status == WatchlistStatus.QUALIFIED:
            summary.qualified += 1
            summary.qualified_tokens.append(entry.mint)
        elif status == WatchlistStatus.REJECTED:
            summary.rejected += 1
        elif status == WatchlistStatus.DEAD:
            summary.dead += 1
        elif status == WatchlistStatus.BOMBED:
            summary.bombed += 1
        if entry.is_terminal:
            summary.removed += 1
            summary.removed_tokens.append(entry.mint)
        if status == WatchlistStatus.REJECTED and entry.rejection_kind == RejectionKind.PERMANENT:
            log.info("%s permanently rejected: %s", entry.mint[:8], record.reason)

    async def _emit(self, entry: WatchlistEntry, now: datetime, summary: CycleSummary) -> None:
        can_execute = self.safeguards.try_reserve_buy(entry.mint, now)
        if self.sink is None:
            return
        try:
            await self.sink(TradeCandidate.from_entry(entry, can_execute))
            summary.candidates_emitted += 1
        except Exception as e:
            log.warning("Candidate sink failed for %s: %s", entry.mint[:8], e)
