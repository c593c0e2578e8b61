"""Watchlist state machine.

Owns every mutation of a WatchlistEntry: snapshot bookkeeping on each check
and lifecycle transitions. Transitions outside TRANSITIONS raise
InvalidTransitionError; re-applying the current state is a no-op.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from launchwatch.config import DevWalletConfig, LifecycleConfig
from launchwatch.models import (
    DevWalletStatus,
    RejectionKind,
    SafetyReport,
    TokenMetrics,
    TransitionRecord,
    WatchlistEntry,
    WatchlistStatus,
)
from launchwatch.scoring import QualificationScorer

log = logging.getLogger("launchwatch.watchlist")

SOFT = "rejected(soft)"
PERMANENT = "rejected(permanent)"

TRANSITIONS: dict[str, frozenset[str]] = {
    "pending_triage": frozenset({"watching", SOFT, PERMANENT, "removed"}),
    "watching": frozenset({"qualified", SOFT, PERMANENT, "dead", "bombed", "removed"}),
    SOFT: frozenset({"watching", PERMANENT, "dead", "removed"}),
    "qualified": frozenset({PERMANENT, "dead", "bombed", "removed"}),
    PERMANENT: frozenset({"removed"}),
    "dead": frozenset({"removed"}),
    "bombed": frozenset({"removed"}),
    "removed": frozenset(),
}


class InvalidTransitionError(ValueError):
    """Requested lifecycle change is not in the transition table."""


def lifecycle_label(status: WatchlistStatus, rejection_kind: RejectionKind | None = None) -> str:
    if status == WatchlistStatus.REJECTED:
        if rejection_kind is None:
            raise InvalidTransitionError("rejected requires a rejection kind")
        return f"rejected({rejection_kind.value})"
    return status.value


def _minutes_between(later: datetime, earlier: datetime | None) -> float:
    if earlier is None:
        return 0.0
    return (later - earlier).total_seconds() / 60


def _drop_pct(current: float | None, reference: float | None) -> float:
    if current is None or not reference or reference <= 0:
        return 0.0
    return (reference - current) / reference * 100


class WatchlistStateMachine:
    def __init__(
        self,
        scorer: QualificationScorer,
        config: LifecycleConfig | None = None,
        dev_config: DevWalletConfig | None = None,
    ):
        self.scorer = scorer
        self.config = config or LifecycleConfig()
        self.dev_config = dev_config or DevWalletConfig()

    # ── Transitions ──────────────────────────────────────────────────

    def apply_transition(
        self,
        entry: WatchlistEntry,
        status: WatchlistStatus,
        reason: str,
        at: datetime,
        rejection_kind: RejectionKind | None = None,
        source: str = "cycle",
        can_promote: Callable[[], bool] | None = None,
    ) -> TransitionRecord | None:
        """Move ``entry`` to ``status``. Returns None when already there.

        Promotion to qualified also requires a qualifying score, no hard-reject
        flag and, when ``can_promote`` is given, safeguard permission.

        Raises:
            InvalidTransitionError: target not reachable from the current state,
                or promotion guards not met.
        """
        if status != WatchlistStatus.REJECTED and rejection_kind is not None:
            raise InvalidTransitionError(f"rejection_kind given for {status.value}")
        current = entry.lifecycle_label
        target = lifecycle_label(status, rejection_kind)
        if target == current:
            return None
        if target not in TRANSITIONS[current]:
            raise InvalidTransitionError(f"{entry.mint}: {current} -> {target} not allowed")
        if status == WatchlistStatus.QUALIFIED:
            blocked = self.promotion_block(entry, at, can_promote)
            if blocked:
                raise InvalidTransitionError(f"{entry.mint}: cannot qualify: {blocked}")

        update: dict[str, Any] = {"status": status, "rejection_kind": rejection_kind}
        if status == WatchlistStatus.QUALIFIED:
            update["qualified_at"] = at
            update["qualification_reason"] = reason
        elif status == WatchlistStatus.REJECTED:
            update["rejected_at"] = at
            update["rejection_reason"] = reason
            if rejection_kind == RejectionKind.PERMANENT:
                update["removed_at"] = at
        elif status in (WatchlistStatus.DEAD, WatchlistStatus.BOMBED, WatchlistStatus.REMOVED):
            update["removed_at"] = entry.removed_at or at
            update["removal_reason"] = reason

        # Validate the whole record before touching the live entry.
        WatchlistEntry.model_validate({**entry.model_dump(), **update})
        for key, value in update.items():
            setattr(entry, key, value)

        log.info("%s %s: %s -> %s (%s)", entry.symbol or entry.mint[:8], source, current, target, reason)
        return TransitionRecord(
            mint=entry.mint,
            from_label=current,
            to_label=target,
            reason=reason,
            at=at,
            source=source,
        )

    # ── Per-check evaluation ─────────────────────────────────────────

    def record_check(
        self,
        entry: WatchlistEntry,
        metrics: TokenMetrics,
        safety: SafetyReport,
        now: datetime,
        dev: tuple[DevWalletStatus, bool] | None = None,
    ) -> TokenMetrics:
        """Fold one snapshot into ``entry``. Returns the prior snapshot."""
        prior = entry.metrics
        entry.score = self.scorer.score(metrics, safety, prior)
        entry.previous_metrics = prior
        entry.metrics = metrics
        entry.holder_peak = max(entry.holder_peak, metrics.holders)
        if metrics.price_usd is not None and metrics.price_usd > (entry.price_ath_usd or 0):
            entry.price_ath_usd = metrics.price_usd

        entry.risk.merge_safety(safety)
        entry.risk.critical_flags = list(entry.score.critical_flags)
        if dev is not None:
            status, launched_new = dev
            entry.risk.merge_dev_status(status, launched_new, now)

        below_alive = (
            metrics.holders < self.config.dead_holder_threshold
            and metrics.volume_sol < self.config.dead_volume_threshold_sol
        )
        if below_alive:
            entry.below_alive_since = entry.below_alive_since or now
        else:
            entry.below_alive_since = None

        entry.check_count += 1
        entry.last_checked_at = now
        return prior

    def _dev_rejection(self, entry: WatchlistEntry, now: datetime) -> str | None:
        risk = entry.risk
        if risk.dev_launched_new:
            return "Dev launched a new token"
        age = _minutes_between(now, entry.token_created_at or entry.first_seen_at)
        full_exit = (
            risk.dev_sold
            and risk.dev_holding_pct is not None
            and risk.dev_holding_pct < self.dev_config.full_exit_epsilon_pct
            and not risk.dev_bought_back
        )
        if full_exit and age <= self.dev_config.young_token_minutes:
            return f"Dev fully exited within {age:.0f}m of launch"
        return None

    def promotion_block(
        self,
        entry: WatchlistEntry,
        now: datetime,
        can_promote: Callable[[], bool] | None = None,
    ) -> str | None:
        """Why ``entry`` may not be qualified right now, or None."""
        score = entry.score
        if score.critical_failure:
            return f"critical safety failure ({', '.join(score.critical_flags)})"
        dev_reason = self._dev_rejection(entry, now)
        if dev_reason:
            return dev_reason
        if not self.scorer.is_qualified(score):
            return f"score {score.total:.1f} below threshold {self.scorer.config.qualification_threshold:.0f}"
        if can_promote is not None and not can_promote():
            return "promotion blocked by safeguards"
        return None

    def _bomb_reason(self, entry: WatchlistEntry, prior: TokenMetrics) -> str | None:
        c = self.config
        m = entry.metrics
        price_drop = _drop_pct(m.price_usd, prior.price_usd)
        if price_drop >= c.bomb_price_drop_pct:
            return f"Price dropped {price_drop:.0f}% since last check"
        liq_drop = _drop_pct(m.liquidity_usd, prior.liquidity_usd)
        if liq_drop >= c.bomb_liquidity_drop_pct:
            return f"Liquidity dropped {liq_drop:.0f}% since last check"
        if entry.status == WatchlistStatus.QUALIFIED:
            ath_drop = _drop_pct(m.price_usd, entry.price_ath_usd)
            if ath_drop >= c.bomb_ath_drop_pct:
                return f"Price {ath_drop:.0f}% below ATH"
        return None

    def _dead_reason(self, entry: WatchlistEntry, now: datetime) -> str | None:
        c = self.config
        if entry.below_alive_since is not None:
            below_for = _minutes_between(now, entry.below_alive_since)
            if below_for > c.dead_grace_minutes:
                return (
                    f"Below {c.dead_holder_threshold} holders / {c.dead_volume_threshold_sol} SOL "
                    f"for {below_for:.0f}m"
                )
        if entry.status in (WatchlistStatus.WATCHING, WatchlistStatus.REJECTED):
            watched = _minutes_between(now, entry.first_seen_at)
            if watched > c.max_watch_minutes:
                return f"Expired without qualifying after {watched:.0f}m"
        return None

    def evaluate(
        self,
        entry: WatchlistEntry,
        prior: TokenMetrics,
        now: datetime,
        can_promote: Callable[[], bool] | None = None,
    ) -> TransitionRecord | None:
        """Pick and apply at most one transition for a freshly checked entry."""
        if entry.is_terminal:
            return None
        status = entry.status
        score = entry.score

        if score.critical_failure:
            return self.apply_transition(
                entry, WatchlistStatus.REJECTED,
                f"Critical safety failure: {', '.join(score.critical_flags)}",
                now, RejectionKind.PERMANENT,
            )

        dev_reason = self._dev_rejection(entry, now)
        if dev_reason:
            return self.apply_transition(entry, WatchlistStatus.REJECTED, dev_reason, now, RejectionKind.PERMANENT)

        if status == WatchlistStatus.PENDING_TRIAGE:
            return self.apply_transition(entry, WatchlistStatus.WATCHING, "Triage passed", now)

        if status in (WatchlistStatus.WATCHING, WatchlistStatus.QUALIFIED):
            bomb_reason = self._bomb_reason(entry, prior)
            if bomb_reason:
                return self.apply_transition(entry, WatchlistStatus.BOMBED, bomb_reason, now)

        dead_reason = self._dead_reason(entry, now)
        if dead_reason:
            return self.apply_transition(entry, WatchlistStatus.DEAD, dead_reason, now)

        qualifies = self.scorer.is_qualified(score)
        if status == WatchlistStatus.WATCHING:
            if qualifies:
                if can_promote is not None and not can_promote():
                    log.warning("%s qualifies (%.1f) but promotion is blocked", entry.mint[:8], score.total)
                    return None
                return self.apply_transition(
                    entry, WatchlistStatus.QUALIFIED, f"Qualified: {score.summary()}", now
                )
            watched = _minutes_between(now, entry.first_seen_at)
            if watched >= self.config.soft_reject_after_minutes:
                return self.apply_transition(
                    entry, WatchlistStatus.REJECTED,
                    f"Below threshold after {watched:.0f}m: {score.summary()}",
                    now, RejectionKind.SOFT,
                )
            return None

        if status == WatchlistStatus.REJECTED and qualifies:
            return self.apply_transition(
                entry, WatchlistStatus.WATCHING, f"Score recovered: {score.summary()}", now
            )
        return None

    def process_check(
        self,
        entry: WatchlistEntry,
        metrics: TokenMetrics,
        safety: SafetyReport,
        now: datetime,
        dev: tuple[DevWalletStatus, bool] | None = None,
        can_promote: Callable[[], bool] | None = None,
    ) -> TransitionRecord | None:
        """record_check + evaluate. Terminal entries are left untouched."""
        if entry.is_terminal:
            return None
        prior = self.record_check(entry, metrics, safety, now, dev)
        return self.evaluate(entry, prior, now, can_promote)

    def due_cutoffs(self, now: datetime) -> tuple[datetime, datetime]:
        """(recheck cutoff, soft-reject cooldown cutoff)."""
        return (
            now - timedelta(minutes=self.config.recheck_interval_minutes),
            now - timedelta(minutes=self.config.soft_reject_cooldown_minutes),
        )
