"""Tests for the safeguard controller and guards.

Covers:
- Killswitch file guard
- Sticky kill switch, reset, fail-closed on unreadable state
- Daily buy cap (never exceeded, once per mint, window reset)
- Rolling win rate (warning vs kill-switch coupling)
- Watchdog priority and pruning
- check_risk status report
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from launchwatch.config import LifecycleConfig, SafeguardConfig, ScoringConfig
from launchwatch.guards.killswitch import check_killswitch
from launchwatch.guards.risk import check_risk
from launchwatch.guards.safeguards import PRUNE_REASON, SafeguardController, compute_priority
from launchwatch.models import RiskFlags, ScoreBreakdown, TokenMetrics, WatchlistEntry, WatchlistStatus
from launchwatch.scoring import QualificationScorer
from launchwatch.state import SafeguardState, check_daily_reset, prune_outcomes
from launchwatch.store import WatchlistStore
from launchwatch.watchlist import WatchlistStateMachine
from tests.mocks.mock_pumpfun import NEWER_MINT, OLDER_MINT
from tests.mocks.mock_solana_tracker import MINT_GOOD, MINT_SECOND

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state" / "safeguards.json"


@pytest.fixture
def killswitch_file(tmp_path):
    return tmp_path / "killswitch.txt"


def make_controller(state_path, killswitch_file=None, **overrides) -> SafeguardController:
    return SafeguardController(SafeguardConfig(**overrides), state_path, killswitch_file)


@pytest.fixture
def controller(state_path, killswitch_file):
    return make_controller(state_path, killswitch_file)


# ── Killswitch file ──────────────────────────────────────────────────


class TestKillswitchFile:
    def test_clear_when_absent(self, killswitch_file):
        assert check_killswitch(killswitch_file)["status"] == "CLEAR"

    def test_active_with_reason(self, killswitch_file):
        killswitch_file.write_text("market halted\n")
        result = check_killswitch(killswitch_file)
        assert result["status"] == "ACTIVE"
        assert result["reason"] == "market halted"

    def test_empty_file_still_active(self, killswitch_file):
        killswitch_file.write_text("")
        assert check_killswitch(killswitch_file)["status"] == "ACTIVE"


# ── Kill switch ──────────────────────────────────────────────────────


class TestKillSwitch:
    def test_default_inactive(self, controller):
        assert controller.kill_switch_active() is False
        assert controller.can_promote() is True

    def test_activation_is_sticky(self, controller, state_path):
        controller.activate_kill_switch("manual stop", T0)
        # A fresh controller reads the persisted value
        other = make_controller(state_path)
        assert other.kill_switch_active() is True
        assert other.can_promote() is False

        state = other.load()
        assert state.kill_switch_reason == "manual stop"
        assert state.kill_switch_activated_at == T0

    def test_second_activation_keeps_first_reason(self, controller):
        controller.activate_kill_switch("first", T0)
        controller.activate_kill_switch("second", T0 + timedelta(hours=1))
        assert controller.load().kill_switch_reason == "first"

    def test_reset(self, controller):
        controller.activate_kill_switch("manual stop", T0)
        controller.reset_kill_switch()
        assert controller.kill_switch_active() is False
        assert controller.load().kill_switch_activated_at is None

    def test_file_trigger_latches(self, controller, killswitch_file):
        killswitch_file.write_text("operator panic")
        assert controller.kill_switch_active() is True

        killswitch_file.unlink()
        assert controller.kill_switch_active() is True
        assert controller.load().kill_switch_reason == "operator panic"

        controller.reset_kill_switch()
        assert controller.kill_switch_active() is False

    def test_reset_with_file_present_rearms(self, controller, killswitch_file, caplog):
        killswitch_file.write_text("still here")
        with caplog.at_level(logging.WARNING, logger="launchwatch.safeguards"):
            controller.reset_kill_switch()
        assert "still present" in caplog.text
        assert controller.kill_switch_active() is True

    def test_corrupt_state_fails_closed(self, controller, state_path):
        state_path.parent.mkdir(parents=True, exist_ok=True)
        state_path.write_text("{not json")
        assert controller.kill_switch_active() is True
        assert controller.can_promote() is False

    def test_invalid_state_uses_last_known_value(self, controller, state_path):
        assert controller.kill_switch_active() is False
        state_path.write_text(json.dumps({"daily_buys": "many"}))
        assert controller.kill_switch_active() is False

    def test_corrupt_state_restored_from_backup(self, controller, state_path):
        controller.activate_kill_switch("persisted", T0)
        controller.try_reserve_buy(MINT_GOOD, T0)  # second write leaves a .bak
        state_path.write_text("{truncated")

        assert controller.kill_switch_active() is True
        assert controller.load().kill_switch_reason == "persisted"


# ── Daily buy cap ────────────────────────────────────────────────────


class TestDailyBuyCap:
    def test_cap_is_never_exceeded(self, state_path):
        controller = make_controller(state_path, daily_buy_cap=2)
        results = [controller.try_reserve_buy(m, T0) for m in (MINT_GOOD, MINT_SECOND, NEWER_MINT)]

        assert results == [True, True, False]
        assert controller.load().daily_buys == 2

    def test_same_mint_counted_once(self, state_path):
        controller = make_controller(state_path, daily_buy_cap=2)
        assert controller.try_reserve_buy(MINT_GOOD, T0)
        assert controller.try_reserve_buy(MINT_GOOD, T0 + timedelta(minutes=5))
        state = controller.load()
        assert state.daily_buys == 1
        assert state.daily_buy_mints == [MINT_GOOD]

    def test_window_resets_after_24h(self, state_path):
        controller = make_controller(state_path, daily_buy_cap=1)
        assert controller.try_reserve_buy(MINT_GOOD, T0)
        assert not controller.try_reserve_buy(MINT_SECOND, T0 + timedelta(hours=23))
        assert controller.try_reserve_buy(MINT_SECOND, T0 + timedelta(hours=24))

        state = controller.load()
        assert state.daily_buys == 1
        assert state.daily_window_started_at == T0 + timedelta(hours=24)

    def test_concurrent_reservations(self, state_path):
        controller = make_controller(state_path, daily_buy_cap=5)
        results: list[bool] = []
        results_lock = threading.Lock()

        def reserve(i: int) -> None:
            ok = controller.try_reserve_buy(f"mint{i}", T0)
            with results_lock:
                results.append(ok)

        threads = [threading.Thread(target=reserve, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 5
        assert controller.load().daily_buys == 5

    def test_unreadable_state_refuses(self, controller, state_path):
        state_path.parent.mkdir(parents=True, exist_ok=True)
        state_path.write_text("garbage")
        assert controller.try_reserve_buy(MINT_GOOD, T0) is False

    def test_check_daily_reset_starts_window(self):
        state = SafeguardState(daily_buys=3, daily_buy_mints=["a", "b", "c"])
        check_daily_reset(state, T0)
        assert state.daily_buys == 0
        assert state.daily_window_started_at == T0


# ── Win rate ─────────────────────────────────────────────────────────


def record_losing_streak(controller: SafeguardController) -> float:
    rate = 0.0
    for i, pnl in enumerate([0.5, -0.2, -0.3, -0.1, -0.4]):
        rate = controller.record_trade_outcome(f"mint{i}", pnl, T0 + timedelta(minutes=i))
    return rate


class TestWinRate:
    def test_default_is_neutral(self, controller):
        assert controller.refresh_win_rate(T0) == 0.5

    def test_rolling_rate(self, controller):
        assert record_losing_streak(controller) == pytest.approx(0.2)
        assert controller.load().win_rate_sample_count == 5

    def test_low_rate_warns_without_kill_switch(self, controller, caplog):
        with caplog.at_level(logging.WARNING, logger="launchwatch.safeguards"):
            record_losing_streak(controller)
        assert "below" in caplog.text
        assert controller.kill_switch_active() is False

    def test_coupled_low_rate_trips_kill_switch(self, state_path):
        controller = make_controller(state_path, kill_switch_on_low_win_rate=True)
        record_losing_streak(controller)
        assert controller.kill_switch_active() is True
        assert "win rate" in controller.load().kill_switch_reason

    def test_too_few_samples_no_action(self, state_path):
        controller = make_controller(state_path, kill_switch_on_low_win_rate=True)
        controller.record_trade_outcome(MINT_GOOD, -1.0, T0)
        assert controller.kill_switch_active() is False

    def test_old_outcomes_leave_the_window(self, controller):
        record_losing_streak(controller)
        rate = controller.refresh_win_rate(T0 + timedelta(hours=30))
        # Empty window keeps the last rate
        assert rate == pytest.approx(0.2)
        assert controller.load().win_rate_sample_count == 0

    def test_unreadable_state_keeps_last_rate(self, controller, state_path):
        record_losing_streak(controller)
        state_path.write_text(json.dumps({"trade_outcomes": "oops"}))
        assert controller.refresh_win_rate(T0) == pytest.approx(0.2)

    def test_prune_outcomes_recomputes(self):
        state = SafeguardState()
        prune_outcomes(state, T0, 24)
        assert state.rolling_win_rate == 0.5
        assert state.win_rate_updated_at == T0


# ── Watchdog cap ─────────────────────────────────────────────────────


def make_entry(mint: str, status=WatchlistStatus.WATCHING, priority: float = 0.0, **kw) -> WatchlistEntry:
    data = {"mint": mint, "symbol": mint[:4], "first_seen_at": T0, "status": status, "priority_score": priority}
    if status == WatchlistStatus.QUALIFIED:
        data["qualified_at"] = T0
    data.update(kw)
    return WatchlistEntry(**data)


@pytest.fixture
def store(tmp_path) -> WatchlistStore:
    return WatchlistStore(tmp_path / "watchlist.db")


@pytest.fixture
def machine() -> WatchlistStateMachine:
    return WatchlistStateMachine(QualificationScorer(ScoringConfig()), LifecycleConfig())


class TestComputePriority:
    def test_fresh_entry_keeps_score(self):
        entry = make_entry(MINT_GOOD, score=ScoreBreakdown(total=60.0))
        assert compute_priority(entry, T0) == 60.0

    def test_halves_each_half_life(self):
        entry = make_entry(MINT_GOOD, score=ScoreBreakdown(total=60.0))
        assert compute_priority(entry, T0 + timedelta(minutes=30), 30) == pytest.approx(30.0)

    def test_bonuses_and_insider_penalty(self):
        entry = make_entry(
            MINT_GOOD,
            score=ScoreBreakdown(total=40.0),
            metrics=TokenMetrics(bonding_curve_pct=80.0),
            risk=RiskFlags(gini_coefficient=0.2),
        )
        # 40 + 8 + 4
        assert compute_priority(entry, T0) == pytest.approx(52.0)

        entry.risk.insider_activity_detected = True
        assert compute_priority(entry, T0) == pytest.approx(32.0)

    def test_clamped(self):
        entry = make_entry(MINT_GOOD, risk=RiskFlags(insider_activity_detected=True))
        assert compute_priority(entry, T0) == 0.0


class TestPruning:
    def test_prunes_lowest_watching_first(self, state_path, store, machine):
        controller = make_controller(state_path, max_watchdog_count=2)
        store.save(make_entry(MINT_GOOD, WatchlistStatus.QUALIFIED, priority=0.0))
        store.save(make_entry(MINT_SECOND, priority=50.0))
        store.save(make_entry(NEWER_MINT, priority=10.0))
        store.save(make_entry(OLDER_MINT, priority=20.0))

        pruned = controller.prune_watchdogs(store, machine, T0)

        assert pruned == [NEWER_MINT, OLDER_MINT]
        removed = store.get(NEWER_MINT)
        assert removed.status == WatchlistStatus.REMOVED
        assert removed.removal_reason == PRUNE_REASON
        assert store.transitions(NEWER_MINT)[0].source == "safeguard"
        assert store.get(MINT_GOOD).status == WatchlistStatus.QUALIFIED

        state = controller.load()
        assert state.active_watchdog_count == 2
        assert state.pruned_total == 2
        assert state.last_prune_at == T0

    def test_under_cap_is_noop(self, controller, store, machine):
        store.save(make_entry(MINT_GOOD))
        assert controller.prune_watchdogs(store, machine, T0) == []
        assert controller.load().active_watchdog_count == 1

    def test_update_priorities(self, controller, store):
        store.save(make_entry(MINT_GOOD, score=ScoreBreakdown(total=50.0)))
        store.save(make_entry(MINT_SECOND))

        assert controller.update_priorities(store, T0) == 1
        assert store.get(MINT_GOOD).priority_score == 50.0

    def test_refresh_watchdog_count(self, controller, store):
        store.save(make_entry(MINT_GOOD))
        store.save(make_entry(MINT_SECOND, WatchlistStatus.DEAD, removed_at=T0))
        assert controller.refresh_watchdog_count(store) == 1


# ── Status report ────────────────────────────────────────────────────


class TestCheckRisk:
    def test_clear(self, controller):
        result = check_risk(controller)
        assert result["status"] == "CLEAR"
        assert result["issues"] == []

    def test_kill_switch_blocks(self, controller):
        controller.activate_kill_switch("halt", T0)
        result = check_risk(controller)
        assert result["status"] == "BLOCKED"
        assert "halt" in result["issues"][0]

    def test_daily_cap_blocks(self, state_path):
        controller = make_controller(state_path, daily_buy_cap=1)
        controller.try_reserve_buy(MINT_GOOD)
        result = check_risk(controller)
        assert result["status"] == "BLOCKED"
        assert "Daily buy cap" in result["message"]

    def test_low_win_rate_warns(self, controller):
        now = datetime.now(timezone.utc)
        for i, pnl in enumerate([0.5, -0.2, -0.3, -0.1, -0.4]):
            controller.record_trade_outcome(f"mint{i}", pnl, now - timedelta(minutes=i))
        result = check_risk(controller)
        assert result["status"] == "WARNING"
        assert result["rolling_win_rate"] == pytest.approx(0.2)

    def test_status_delegates(self, controller):
        assert controller.status()["status"] == "CLEAR"
