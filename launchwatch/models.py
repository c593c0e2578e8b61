"""Typed records for the token candidate lifecycle.

Provider payloads are normalized into these models at the adapter boundary;
nothing downstream branches on raw JSON. The only loosely-typed fields are
the ``extras`` bags, which are carried for display and never inspected.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

MINT_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


class InvalidMintError(ValueError):
    """Mint address is not a valid base58 public key."""


def validate_mint(mint: str) -> str:
    """Return the mint unchanged, or raise InvalidMintError."""
    if not isinstance(mint, str) or not MINT_PATTERN.match(mint):
        raise InvalidMintError(f"Malformed mint address: {mint!r}")
    return mint


# ── Enums ────────────────────────────────────────────────────────────


class WatchlistStatus(str, Enum):
    PENDING_TRIAGE = "pending_triage"
    WATCHING = "watching"
    QUALIFIED = "qualified"
    REJECTED = "rejected"
    DEAD = "dead"
    BOMBED = "bombed"
    REMOVED = "removed"


class RejectionKind(str, Enum):
    SOFT = "soft"
    PERMANENT = "permanent"


ACTIVE_STATUSES = (WatchlistStatus.WATCHING, WatchlistStatus.QUALIFIED)


class SafetyRiskKind(str, Enum):
    MINT_AUTHORITY_ENABLED = "mint_authority_enabled"
    FREEZE_AUTHORITY_ENABLED = "freeze_authority_enabled"
    NON_STANDARD_SUPPLY = "non_standard_supply"
    HIGH_HOLDER_CONCENTRATION = "high_holder_concentration"
    SINGLE_HOLDER_OWNERSHIP = "single_holder_ownership"
    LOW_LP_LOCKED = "low_lp_locked"
    LOW_LIQUIDITY = "low_liquidity"
    INSIDER_NETWORK = "insider_network"
    MUTABLE_METADATA = "mutable_metadata"
    OTHER = "other"


# ── Upstream records ─────────────────────────────────────────────────


class TokenMetrics(BaseModel):
    """One normalized market snapshot for a mint."""

    holders: int = 0
    volume_sol: float = 0.0
    volume_usd: float = 0.0
    price_usd: float | None = None
    liquidity_usd: float | None = None
    market_cap_usd: float | None = None
    bonding_curve_pct: float | None = None
    buys: int = 0
    sells: int = 0
    provider: str = ""
    extras: dict[str, Any] = Field(default_factory=dict)


class SafetyRisk(BaseModel):
    kind: SafetyRiskKind
    name: str = ""
    level: str = ""
    value: str = ""


class ConcentrationIndicators(BaseModel):
    gini_coefficient: float | None = None
    top10_holder_pct: float | None = None
    linked_wallet_count: int | None = None
    bundled_buy_count: int | None = None
    fresh_wallet_pct: float | None = None
    suspicious_wallet_pct: float | None = None


class SafetyReport(BaseModel):
    """Normalized token-safety report. ``normalized_score`` is 0 (clean) to 100 (worst)."""

    normalized_score: float = 0.0
    risks: list[SafetyRisk] = Field(default_factory=list)
    liquidity_locked_pct: float | None = None
    concentration: ConcentrationIndicators = Field(default_factory=ConcentrationIndicators)
    provider: str = ""
    extras: dict[str, Any] = Field(default_factory=dict)

    def has_risk(self, kind: SafetyRiskKind) -> bool:
        return any(r.kind == kind for r in self.risks)


class DevWalletStatus(BaseModel):
    has_sold: bool = False
    sell_count: int = 0
    holding_pct: float = 0.0
    is_full_exit: bool = False
    has_bought_back: bool = False


class DiscoveredToken(BaseModel):
    """A token seen on the upstream launch feed."""

    mint: str
    symbol: str = ""
    name: str = ""
    creator_wallet: str | None = None
    created_at: datetime | None = None
    metrics: TokenMetrics = Field(default_factory=TokenMetrics)


# ── Derived records ──────────────────────────────────────────────────


class ScoreBreakdown(BaseModel):
    holder_score: float = Field(default=0.0, ge=0, le=25)
    volume_score: float = Field(default=0.0, ge=0, le=25)
    safety_score: float = Field(default=0.0, ge=0, le=25)
    momentum_score: float = Field(default=0.0, ge=0, le=25)
    total: float = Field(default=0.0, ge=0, le=100)
    critical_failure: bool = False
    critical_flags: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)

    def summary(self) -> str:
        return (
            f"score {self.total:.1f} (holders {self.holder_score:.1f}, "
            f"volume {self.volume_score:.1f}, safety {self.safety_score:.1f}, "
            f"momentum {self.momentum_score:.1f})"
        )


class RiskFlags(BaseModel):
    dev_sold: bool = False
    dev_launched_new: bool = False
    dev_holding_pct: float | None = None
    dev_sell_count: int = 0
    dev_bought_back: bool = False
    dev_checked_at: datetime | None = None
    insider_activity_detected: bool = False
    gini_coefficient: float | None = None
    linked_wallet_count: int | None = None
    bundled_buy_count: int | None = None
    fresh_wallet_pct: float | None = None
    suspicious_wallet_pct: float | None = None
    critical_flags: list[str] = Field(default_factory=list)

    def merge_dev_status(self, status: DevWalletStatus, launched_new: bool, at: datetime) -> None:
        """Fold a dev-wallet check in. Sticky flags only ever go False -> True."""
        self.dev_sold = self.dev_sold or status.has_sold
        self.dev_launched_new = self.dev_launched_new or launched_new
        self.dev_holding_pct = status.holding_pct
        self.dev_sell_count = max(self.dev_sell_count, status.sell_count)
        self.dev_bought_back = status.has_bought_back
        self.dev_checked_at = at

    def merge_safety(self, report: SafetyReport) -> None:
        c = report.concentration
        self.gini_coefficient = c.gini_coefficient
        self.linked_wallet_count = c.linked_wallet_count
        self.bundled_buy_count = c.bundled_buy_count
        self.fresh_wallet_pct = c.fresh_wallet_pct
        self.suspicious_wallet_pct = c.suspicious_wallet_pct
        self.insider_activity_detected = (
            self.insider_activity_detected
            or report.has_risk(SafetyRiskKind.INSIDER_NETWORK)
            or bool(c.linked_wallet_count)
        )


class WatchlistEntry(BaseModel):
    """The single mutable record for a tracked mint."""

    mint: str
    symbol: str = ""
    name: str = ""
    creator_wallet: str | None = None
    token_created_at: datetime | None = None

    status: WatchlistStatus = WatchlistStatus.WATCHING
    rejection_kind: RejectionKind | None = None
    first_seen_at: datetime
    last_checked_at: datetime | None = None
    qualified_at: datetime | None = None
    rejected_at: datetime | None = None
    removed_at: datetime | None = None
    below_alive_since: datetime | None = None
    check_count: int = 0

    metrics: TokenMetrics = Field(default_factory=TokenMetrics)
    previous_metrics: TokenMetrics | None = None
    holder_peak: int = 0
    price_ath_usd: float | None = None

    score: ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    priority_score: float = 0.0
    risk: RiskFlags = Field(default_factory=RiskFlags)

    qualification_reason: str = ""
    rejection_reason: str = ""
    removal_reason: str = ""

    @field_validator("mint")
    @classmethod
    def _mint_is_base58(cls, v: str) -> str:
        return validate_mint(v)

    @model_validator(mode="after")
    def _lifecycle_is_consistent(self) -> "WatchlistEntry":
        if (self.status == WatchlistStatus.REJECTED) != (self.rejection_kind is not None):
            raise ValueError("rejection_kind must be set exactly when status is rejected")
        if self.status == WatchlistStatus.QUALIFIED and self.qualified_at is None:
            raise ValueError("qualified entry requires qualified_at")
        if self.is_terminal and self.removed_at is None:
            raise ValueError(f"{self.lifecycle_label} entry requires removed_at")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            WatchlistStatus.DEAD,
            WatchlistStatus.BOMBED,
            WatchlistStatus.REMOVED,
        ) or (
            self.status == WatchlistStatus.REJECTED
            and self.rejection_kind == RejectionKind.PERMANENT
        )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def lifecycle_label(self) -> str:
        if self.status == WatchlistStatus.REJECTED and self.rejection_kind:
            return f"rejected({self.rejection_kind.value})"
        return self.status.value


class TransitionRecord(BaseModel):
    mint: str
    from_label: str
    to_label: str
    reason: str
    at: datetime
    source: str = "cycle"


class CycleSummary(BaseModel):
    scanned: int = 0
    added: int = 0
    qualified: int = 0
    removed: int = 0
    updated: int = 0
    rejected: int = 0
    dead: int = 0
    bombed: int = 0
    errors: int = 0
    invalid: int = 0
    candidates_emitted: int = 0
    aborted: bool = False
    duration_ms: int = 0
    active_watchdogs: int | None = None
    qualified_tokens: list[str] = Field(default_factory=list)
    removed_tokens: list[str] = Field(default_factory=list)
