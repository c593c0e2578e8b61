"""
Qualification Scoring
Weighted 4 x 25 heuristic over holders, volume, safety and momentum.

Pure: no I/O, no clock. Same inputs always give the same breakdown.
"""

from __future__ import annotations

import math

from launchwatch.config import ScoringConfig
from launchwatch.models import SafetyReport, ScoreBreakdown, TokenMetrics

COMPONENT_MAX = 25.0


def _growth_pct(current: float | None, previous: float | None) -> float | None:
    """Percent change, or None when there is no usable baseline."""
    if current is None or previous is None or previous <= 0:
        return None
    return (current - previous) / previous * 100


def _clamp(value: float, low: float = 0.0, high: float = COMPONENT_MAX) -> float:
    return max(low, min(high, value))


class QualificationScorer:
    """Score a token snapshot against the qualification rubric."""

    def __init__(self, config: ScoringConfig | None = None):
        self.config = config or ScoringConfig()

    def score_holders(self, holders: int) -> tuple[float, str]:
        """Piecewise concave holder curve.

        0 -> low: 0..2, low -> high: 2..20 (steepest), high -> saturation: 20..24,
        beyond saturation creeps to 25.
        """
        c = self.config
        h = max(0, holders)
        if h < c.holder_low:
            score = 2.0 * h / c.holder_low
        elif h < c.holder_high:
            score = 2.0 + 18.0 * (h - c.holder_low) / (c.holder_high - c.holder_low)
        elif h < c.holder_saturation:
            score = 20.0 + 4.0 * (h - c.holder_high) / (c.holder_saturation - c.holder_high)
        else:
            score = 24.0 + min(1.0, (h - c.holder_saturation) / (4 * c.holder_saturation))
        return _clamp(score), f"{h} holders"

    def score_volume(self, volume_sol: float, previous_volume_sol: float | None) -> tuple[float, str]:
        """Diminishing-returns volume curve plus an acceleration bonus (max 5)."""
        c = self.config
        v = max(0.0, volume_sol)
        base = 20.0 * math.sqrt(min(1.0, v / c.volume_target_sol)) if c.volume_target_sol > 0 else 0.0

        bonus = 0.0
        growth = _growth_pct(v, previous_volume_sol)
        if growth is not None and growth > 0:
            bonus = 5.0 * min(1.0, growth / c.volume_accel_full_pct)

        reason = f"{v:.1f} SOL volume"
        if bonus > 0:
            reason += f", +{growth:.0f}% vs last check"
        return _clamp(base + bonus), reason

    def critical_flags(self, report: SafetyReport) -> list[str]:
        critical = set(self.config.critical_risks)
        return sorted({r.kind.value for r in report.risks if r.kind.value in critical})

    def score_safety(self, report: SafetyReport) -> tuple[float, str]:
        """25 scaled by provider risk, minus one penalty per distinct risk kind."""
        base = COMPONENT_MAX * (1 - min(100.0, max(0.0, report.normalized_score)) / 100)
        kinds = {r.kind.value for r in report.risks}
        penalty = sum(self.config.risk_penalties.get(k, 0.0) for k in kinds)
        score = _clamp(base - penalty)
        if kinds:
            return score, f"risk {report.normalized_score:.0f}/100, flags: {', '.join(sorted(kinds))}"
        return score, f"risk {report.normalized_score:.0f}/100, no flags"

    def score_momentum(self, metrics: TokenMetrics, previous: TokenMetrics | None) -> tuple[float, str]:
        """Holder delta (max 10) + volume delta (max 10) + price delta (max 5)."""
        if previous is None:
            return 0.0, "No previous snapshot"
        c = self.config

        holder_growth = _growth_pct(metrics.holders, previous.holders)
        volume_growth = _growth_pct(metrics.volume_sol, previous.volume_sol)
        price_growth = _growth_pct(metrics.price_usd, previous.price_usd)

        holders_falling = metrics.holders < previous.holders
        volume_falling = metrics.volume_sol < previous.volume_sol
        if holders_falling and volume_falling:
            return 0.0, "Losing holders and volume"

        def part(growth: float | None, full_pct: float, weight: float) -> float:
            if growth is None or growth <= 0:
                return 0.0
            return weight * min(1.0, growth / full_pct)

        score = (
            part(holder_growth, c.momentum_holder_full_pct, 10.0)
            + part(volume_growth, c.momentum_volume_full_pct, 10.0)
            + part(price_growth, c.momentum_price_full_pct, 5.0)
        )
        parts = []
        for label, growth in (("holders", holder_growth), ("volume", volume_growth), ("price", price_growth)):
            if growth is not None:
                parts.append(f"{label} {growth:+.0f}%")
        return _clamp(score), ", ".join(parts) if parts else "Flat"

    def score(
        self,
        metrics: TokenMetrics,
        safety_report: SafetyReport,
        previous_metrics: TokenMetrics | None = None,
    ) -> ScoreBreakdown:
        """Full breakdown. A critical safety flag zeroes every component."""
        flags = self.critical_flags(safety_report)
        if flags:
            return ScoreBreakdown(
                critical_failure=True,
                critical_flags=flags,
                reasons=[f"CRITICAL: {', '.join(flags)}"],
            )

        holder, holder_reason = self.score_holders(metrics.holders)
        volume, volume_reason = self.score_volume(
            metrics.volume_sol,
            previous_metrics.volume_sol if previous_metrics else None,
        )
        safety, safety_reason = self.score_safety(safety_report)
        momentum, momentum_reason = self.score_momentum(metrics, previous_metrics)

        holder, volume, safety, momentum = (round(x, 2) for x in (holder, volume, safety, momentum))
        return ScoreBreakdown(
            holder_score=holder,
            volume_score=volume,
            safety_score=safety,
            momentum_score=momentum,
            # Exact sum of the stored parts; no second rounding.
            total=holder + volume + safety + momentum,
            reasons=[
                f"Holders: {holder_reason}",
                f"Volume: {volume_reason}",
                f"Safety: {safety_reason}",
                f"Momentum: {momentum_reason}",
            ],
        )

    def is_qualified(self, breakdown: ScoreBreakdown) -> bool:
        return not breakdown.critical_failure and breakdown.total >= self.config.qualification_threshold
