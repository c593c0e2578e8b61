"""Safeguard controller: global circuit breakers for promotion and execution.

Owns SafeguardState. Every mutation is a file-locked read-modify-write under
an in-process RLock, so concurrent callers (threads or processes) never lose
updates and the daily counter can never overshoot its cap.

Failure semantics:
  - kill switch: fail closed. If state can't be read, the last known value
    is used; with no prior knowledge the switch is treated as active.
  - win rate: fail open. The last known value is kept.
  - buy reservation: fail closed (no reservation).
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable, TypeVar

from launchwatch.config import SafeguardConfig
from launchwatch.guards.killswitch import check_killswitch
from launchwatch.guards.risk import check_risk
from launchwatch.models import WatchlistEntry, WatchlistStatus
from launchwatch.state import (
    SafeguardState,
    SafeguardStateError,
    TradeOutcome,
    check_daily_reset,
    load_safeguard_state,
    prune_outcomes,
)
from launchwatch.utils.file_lock import exclusive_file_lock, write_json

if TYPE_CHECKING:
    from launchwatch.store import WatchlistStore
    from launchwatch.watchlist import WatchlistStateMachine

log = logging.getLogger("launchwatch.safeguards")

T = TypeVar("T")

PRUNE_REASON = "Pruned: watchdog capacity exceeded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_priority(entry: WatchlistEntry, now: datetime, half_life_minutes: float = 30.0) -> float:
    """Pruning priority, 0-100. Low priority entries are pruned first.

    Recency-weighted score, plus a bonding-curve bonus and a low-Gini bonus,
    minus a flat insider-activity penalty.
    """
    reference = entry.last_checked_at or entry.first_seen_at
    age_minutes = max(0.0, (now - reference).total_seconds() / 60)
    decay = 0.5 ** (age_minutes / half_life_minutes) if half_life_minutes > 0 else 1.0
    priority = entry.score.total * decay
    if entry.metrics.bonding_curve_pct is not None:
        priority += max(0.0, entry.metrics.bonding_curve_pct) / 10
    if entry.risk.gini_coefficient is not None:
        priority += (1 - entry.risk.gini_coefficient) * 5
    if entry.risk.insider_activity_detected:
        priority -= 20
    return round(max(0.0, min(100.0, priority)), 2)


class SafeguardController:
    """Kill switch, daily buy cap, watchdog cap with pruning, rolling win rate."""

    def __init__(
        self,
        config: SafeguardConfig,
        state_path: Path,
        killswitch_file: Path | None = None,
    ):
        self.config = config
        self.state_path = state_path
        self.killswitch_file = killswitch_file
        self._lock = threading.RLock()
        self._last_kill_switch: bool | None = None
        self._last_win_rate: float | None = None

    # ── State plumbing ───────────────────────────────────────────────

    def _remember(self, state: SafeguardState) -> None:
        self._last_kill_switch = state.kill_switch_active
        self._last_win_rate = state.rolling_win_rate

    def _mutate(self, fn: Callable[[SafeguardState], T]) -> T:
        """Locked read-modify-write. ``fn`` mutates state in place and returns a result.

        Raises:
            SafeguardStateError: state unreadable or unwritable.
        """
        with self._lock, exclusive_file_lock(self.state_path):
            state = load_safeguard_state(self.state_path)
            result = fn(state)
            try:
                write_json(self.state_path, state.model_dump(mode="json"))
            except OSError as e:
                raise SafeguardStateError(f"Cannot write {self.state_path}: {e}") from e
            self._remember(state)
            return result

    def load(self) -> SafeguardState:
        """Locked read.

        Raises:
            SafeguardStateError: state unreadable.
        """
        with self._lock, exclusive_file_lock(self.state_path):
            state = load_safeguard_state(self.state_path)
            self._remember(state)
            return state

    # ── Kill switch ──────────────────────────────────────────────────

    def activate_kill_switch(self, reason: str, now: datetime | None = None) -> SafeguardState:
        now = now or _utcnow()

        def apply(state: SafeguardState) -> SafeguardState:
            if not state.kill_switch_active:
                state.kill_switch_active = True
                state.kill_switch_reason = reason
                state.kill_switch_activated_at = now
                log.warning("Kill switch ACTIVATED: %s", reason)
            return state

        return self._mutate(apply)

    def reset_kill_switch(self) -> SafeguardState:
        def apply(state: SafeguardState) -> SafeguardState:
            state.kill_switch_active = False
            state.kill_switch_reason = ""
            state.kill_switch_activated_at = None
            return state

        state = self._mutate(apply)
        log.info("Kill switch reset")
        if self.killswitch_file is not None and self.killswitch_file.exists():
            log.warning("Killswitch file %s still present; switch will re-arm", self.killswitch_file)
        return state

    def kill_switch_active(self) -> bool:
        """Current kill-switch value, latching the operator file if present."""
        if self.killswitch_file is not None:
            file_check = check_killswitch(self.killswitch_file)
            if file_check["status"] == "ACTIVE":
                try:
                    self.activate_kill_switch(file_check["reason"])
                except SafeguardStateError as e:
                    log.error("Cannot persist killswitch file trigger: %s", e)
                    self._last_kill_switch = True
                return True
        try:
            return self.load().kill_switch_active
        except SafeguardStateError as e:
            fallback = True if self._last_kill_switch is None else self._last_kill_switch
            log.error("Safeguard state unreadable (%s); kill switch assumed %s", e, fallback)
            return fallback

    def can_promote(self) -> bool:
        return not self.kill_switch_active()

    # ── Daily buy cap ────────────────────────────────────────────────

    def try_reserve_buy(self, mint: str, now: datetime | None = None) -> bool:
        """Reserve one of today's buy slots for ``mint``.

        A mint is counted once per window; re-reserving it returns True
        without consuming another slot.
        """
        now = now or _utcnow()

        def apply(state: SafeguardState) -> bool:
            check_daily_reset(state, now)
            if mint in state.daily_buy_mints:
                return True
            if state.daily_buys >= self.config.daily_buy_cap:
                return False
            state.daily_buys += 1
            state.daily_buy_mints.append(mint)
            return True

        try:
            reserved = self._mutate(apply)
        except SafeguardStateError as e:
            log.error("Buy reservation for %s refused, state unavailable: %s", mint[:8], e)
            return False
        if not reserved:
            log.warning("Daily buy cap (%d) reached; %s not executable", self.config.daily_buy_cap, mint[:8])
        return reserved

    # ── Win rate ─────────────────────────────────────────────────────

    def _apply_win_rate_policy(self, state: SafeguardState, now: datetime) -> None:
        c = self.config
        if state.win_rate_sample_count < c.win_rate_min_samples:
            return
        if state.rolling_win_rate >= c.min_rolling_win_rate:
            return
        log.warning(
            "Rolling win rate %.0f%% below %.0f%% over %d trades",
            state.rolling_win_rate * 100, c.min_rolling_win_rate * 100, state.win_rate_sample_count,
        )
        if c.kill_switch_on_low_win_rate and not state.kill_switch_active:
            state.kill_switch_active = True
            state.kill_switch_reason = f"Rolling win rate {state.rolling_win_rate:.0%} below minimum"
            state.kill_switch_activated_at = now
            log.warning("Kill switch ACTIVATED: %s", state.kill_switch_reason)

    def record_trade_outcome(self, mint: str, pnl_sol: float, resolved_at: datetime | None = None) -> float:
        """Add a resolved trade and return the updated rolling win rate."""
        resolved_at = resolved_at or _utcnow()

        def apply(state: SafeguardState) -> float:
            state.trade_outcomes.append(
                TradeOutcome(mint=mint, pnl_sol=pnl_sol, won=pnl_sol > 0, resolved_at=resolved_at)
            )
            prune_outcomes(state, resolved_at, self.config.win_rate_window_hours)
            self._apply_win_rate_policy(state, resolved_at)
            return state.rolling_win_rate

        return self._mutate(apply)

    def refresh_win_rate(self, now: datetime | None = None) -> float:
        """Recompute over the current window. Keeps the last value on failure."""
        now = now or _utcnow()

        def apply(state: SafeguardState) -> float:
            prune_outcomes(state, now, self.config.win_rate_window_hours)
            self._apply_win_rate_policy(state, now)
            return state.rolling_win_rate

        try:
            return self._mutate(apply)
        except SafeguardStateError as e:
            fallback = 0.5 if self._last_win_rate is None else self._last_win_rate
            log.warning("Win rate refresh failed (%s); keeping %.2f", e, fallback)
            return fallback

    # ── Watchdog cap ─────────────────────────────────────────────────

    def refresh_watchdog_count(self, store: "WatchlistStore") -> int:
        count = store.count_active()

        def apply(state: SafeguardState) -> int:
            state.active_watchdog_count = count
            return count

        return self._mutate(apply)

    def update_priorities(self, store: "WatchlistStore", now: datetime | None = None) -> int:
        """Recompute priority_score for every active entry. Returns entries updated."""
        now = now or _utcnow()
        updated = 0
        for entry in store.active_entries():
            priority = compute_priority(entry, now, self.config.priority_half_life_minutes)
            if priority != entry.priority_score:
                entry.priority_score = priority
                store.save(entry)
                updated += 1
        log.info("Priorities updated for %d entries", updated)
        return updated

    def prune_watchdogs(
        self,
        store: "WatchlistStore",
        machine: "WatchlistStateMachine",
        now: datetime | None = None,
    ) -> list[str]:
        """Remove the lowest-priority active entries until under the cap.

        Watching entries go before qualified ones. Returns the pruned mints.
        """
        now = now or _utcnow()
        active = store.active_entries()
        excess = len(active) - self.config.max_watchdog_count
        pruned: list[str] = []
        if excess > 0:
            with self._lock:
                for entry in active[:excess]:
                    record = machine.apply_transition(entry, WatchlistStatus.REMOVED, PRUNE_REASON, now, source="safeguard")
                    store.save(entry, [record] if record else [])
                    pruned.append(entry.mint)
            log.warning("Pruned %d watchdogs (cap %d)", len(pruned), self.config.max_watchdog_count)

        remaining = len(active) - len(pruned)

        def apply(state: SafeguardState) -> None:
            state.active_watchdog_count = remaining
            if pruned:
                state.pruned_total += len(pruned)
                state.last_prune_at = now

        self._mutate(apply)
        return pruned

    # ── Status ───────────────────────────────────────────────────────

    def status(self) -> dict:
        return check_risk(self)
