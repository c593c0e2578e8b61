"""Safeguard state for LaunchWatch.

Reads and writes state/safeguards.json, the single source of truth for the
kill switch, the daily buy counter, the watchdog counter and the rolling
win-rate inputs. Only SafeguardController mutates it.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from launchwatch.utils.file_lock import read_json

DAILY_WINDOW = timedelta(hours=24)


class SafeguardStateError(RuntimeError):
    """Safeguard state could not be read or written."""


class TradeOutcome(BaseModel):
    """A resolved (simulated) trade."""

    mint: str
    pnl_sol: float
    won: bool
    resolved_at: datetime


class SafeguardState(BaseModel):
    """Process-wide safeguard state, serialized to state/safeguards.json."""

    # Kill switch
    kill_switch_active: bool = False
    kill_switch_reason: str = ""
    kill_switch_activated_at: datetime | None = None

    # Daily buy counter (rolling 24h window)
    daily_buys: int = 0
    daily_buy_mints: list[str] = Field(default_factory=list)
    daily_window_started_at: datetime | None = None

    # Watchdog counter
    active_watchdog_count: int = 0
    last_prune_at: datetime | None = None
    pruned_total: int = 0

    # Rolling win rate
    trade_outcomes: list[TradeOutcome] = Field(default_factory=list)
    rolling_win_rate: float = 0.5
    win_rate_sample_count: int = 0
    win_rate_updated_at: datetime | None = None


def parse_state(data: dict[str, Any]) -> SafeguardState:
    try:
        return SafeguardState(**data)
    except ValidationError as e:
        raise SafeguardStateError(f"Invalid safeguard state: {e}") from e


def load_safeguard_state(path: Path) -> SafeguardState:
    """Load state (caller holds the lock). Missing file means defaults.

    Raises:
        SafeguardStateError: file unreadable or invalid.
    """
    try:
        data = read_json(path)
    except (OSError, json.JSONDecodeError) as e:
        raise SafeguardStateError(f"Cannot read {path}: {e}") from e
    return parse_state(data)


def check_daily_reset(state: SafeguardState, now: datetime) -> SafeguardState:
    """Reset the daily buy counter once its 24h window has elapsed."""
    start = state.daily_window_started_at
    if start is None or now - start >= DAILY_WINDOW:
        state.daily_window_started_at = now
        state.daily_buys = 0
        state.daily_buy_mints = []
    return state


def prune_outcomes(state: SafeguardState, now: datetime, window_hours: float) -> SafeguardState:
    """Drop outcomes older than the window and recompute the rolling win rate.

    With no outcomes in the window the last rate is kept.
    """
    cutoff = now - timedelta(hours=window_hours)
    state.trade_outcomes = [o for o in state.trade_outcomes if o.resolved_at >= cutoff]
    state.win_rate_sample_count = len(state.trade_outcomes)
    if state.trade_outcomes:
        wins = sum(1 for o in state.trade_outcomes if o.won)
        state.rolling_win_rate = round(wins / len(state.trade_outcomes), 4)
    state.win_rate_updated_at = now
    return state
