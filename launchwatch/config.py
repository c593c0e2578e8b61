"""Configuration loader for LaunchWatch.

Tunables live in config/launchwatch.yaml; credentials come from the
environment (see .env). A missing YAML file means defaults, a missing
primary credential is a hard ConfigError.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

WORKSPACE = Path(__file__).resolve().parent.parent
CONFIG_DIR = WORKSPACE / "config"
CONFIG_PATH = CONFIG_DIR / "launchwatch.yaml"


class ConfigError(RuntimeError):
    """Required configuration is missing or invalid. Fatal for a cycle."""


class ScoringConfig(BaseModel):
    qualification_threshold: float = 70.0
    holder_low: int = 100
    holder_high: int = 500
    holder_saturation: int = 1000
    volume_target_sol: float = 300.0
    volume_accel_full_pct: float = 50.0
    momentum_holder_full_pct: float = 20.0
    momentum_volume_full_pct: float = 50.0
    momentum_price_full_pct: float = 30.0
    critical_risks: list[str] = Field(
        default_factory=lambda: [
            "mint_authority_enabled",
            "freeze_authority_enabled",
            "non_standard_supply",
        ]
    )
    risk_penalties: dict[str, float] = Field(
        default_factory=lambda: {
            "mint_authority_enabled": 10.0,
            "freeze_authority_enabled": 10.0,
            "high_holder_concentration": 6.0,
            "single_holder_ownership": 6.0,
            "low_lp_locked": 5.0,
            "low_liquidity": 4.0,
            "insider_network": 5.0,
            "mutable_metadata": 2.0,
            "other": 1.0,
        }
    )
    min_lp_locked_pct: float = 50.0


class LifecycleConfig(BaseModel):
    recheck_interval_minutes: float = 2.0
    soft_reject_after_minutes: float = 10.0
    soft_reject_cooldown_minutes: float = 15.0
    max_watch_minutes: float = 60.0
    dead_holder_threshold: int = 3
    dead_volume_threshold_sol: float = 0.01
    dead_grace_minutes: float = 15.0
    bomb_price_drop_pct: float = 70.0
    bomb_liquidity_drop_pct: float = 80.0
    bomb_ath_drop_pct: float = 90.0


class DevWalletConfig(BaseModel):
    young_token_minutes: float = 60.0
    full_exit_epsilon_pct: float = 0.01
    total_supply: float = 1_000_000_000.0
    swap_history_limit: int = 50
    creation_history_limit: int = 10


class SafeguardConfig(BaseModel):
    daily_buy_cap: int = 20
    max_watchdog_count: int = 500
    win_rate_window_hours: float = 24.0
    min_rolling_win_rate: float = 0.3
    win_rate_min_samples: int = 5
    kill_switch_on_low_win_rate: bool = False
    priority_half_life_minutes: float = 30.0


class PollingConfig(BaseModel):
    max_tokens_per_cycle: int = 100
    discovery_limit: int = 200
    batch_size: int = 10
    batch_delay_seconds: float = 1.5
    call_timeout_seconds: float = 8.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 10.0
    backoff_jitter_seconds: float = 0.5
    fallback_sol_price_usd: float = 150.0

    def lookup_budget_seconds(self) -> float:
        """Deadline for one provider lookup with every retry and backoff wait."""
        return self.max_retries * (
            self.call_timeout_seconds + self.backoff_max_seconds + self.backoff_jitter_seconds
        )


class PathsConfig(BaseModel):
    watchlist_db: str = "state/watchlist.db"
    safeguard_state: str = "state/safeguards.json"
    cycle_lock: str = "state/cycle.lock"
    killswitch_file: str = "killswitch.txt"

    def resolve(self, value: str) -> Path:
        path = Path(value)
        return path if path.is_absolute() else WORKSPACE / path


class EngineConfig(BaseModel):
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    dev_wallet: DevWalletConfig = Field(default_factory=DevWalletConfig)
    safeguards: SafeguardConfig = Field(default_factory=SafeguardConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)


def load_raw_config(path: Path | None = None) -> dict[str, Any]:
    """Load config/launchwatch.yaml as a plain dict."""
    path = path or CONFIG_PATH
    if not path.exists():
        return {}
    return yaml.safe_load(path.read_text()) or {}


def load_engine_config(path: Path | None = None) -> EngineConfig:
    try:
        return EngineConfig(**load_raw_config(path))
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"Invalid config {path or CONFIG_PATH}: {e}") from e
