"""Safety check adapter: RugCheck report -> SafetyReport.

Risk names are free text upstream; they are mapped onto SafetyRiskKind by
keyword here so the scorer only ever sees the enum. Anything unrecognised
is kept as OTHER.
"""

from __future__ import annotations

import logging
from typing import Any

from launchwatch.clients.base import APIError
from launchwatch.clients.rugcheck import RugCheckClient
from launchwatch.models import ConcentrationIndicators, SafetyReport, SafetyRisk, SafetyRiskKind

log = logging.getLogger("launchwatch.safety")

STANDARD_SUPPLY = 1_000_000_000

# Order matters: first match wins.
_RISK_KEYWORDS: list[tuple[str, SafetyRiskKind]] = [
    ("mint authority", SafetyRiskKind.MINT_AUTHORITY_ENABLED),
    ("freeze authority", SafetyRiskKind.FREEZE_AUTHORITY_ENABLED),
    ("supply", SafetyRiskKind.NON_STANDARD_SUPPLY),
    ("single holder", SafetyRiskKind.SINGLE_HOLDER_OWNERSHIP),
    ("top 10 holders", SafetyRiskKind.HIGH_HOLDER_CONCENTRATION),
    ("high ownership", SafetyRiskKind.HIGH_HOLDER_CONCENTRATION),
    ("lp unlocked", SafetyRiskKind.LOW_LP_LOCKED),
    ("low liquidity", SafetyRiskKind.LOW_LIQUIDITY),
    ("insider", SafetyRiskKind.INSIDER_NETWORK),
    ("mutable metadata", SafetyRiskKind.MUTABLE_METADATA),
]


def classify_risk(name: str) -> SafetyRiskKind:
    lowered = name.lower()
    for keyword, kind in _RISK_KEYWORDS:
        if keyword in lowered:
            return kind
    return SafetyRiskKind.OTHER


def gini_coefficient(shares: list[float]) -> float | None:
    """Gini of holder shares. 0 = perfectly even, 1 = one wallet holds it all."""
    values = sorted(s for s in shares if s > 0)
    n = len(values)
    total = sum(values)
    if n < 2 or total <= 0:
        return None
    weighted = sum((i + 1) * v for i, v in enumerate(values))
    return round((2 * weighted) / (n * total) - (n + 1) / n, 4)


def _safe_float(val: Any, default: float = 0.0) -> float:
    if val is None:
        return default
    try:
        return float(val)
    except (TypeError, ValueError):
        return default


def parse_rugcheck_report(report: dict[str, Any], min_lp_locked_pct: float = 50.0) -> SafetyReport:
    """Normalize a RugCheck /report payload."""
    risks: list[SafetyRisk] = []
    for raw in report.get("risks") or []:
        name = str(raw.get("name", ""))
        risks.append(
            SafetyRisk(
                kind=classify_risk(name),
                name=name,
                level=str(raw.get("level", "")),
                value=str(raw.get("value", raw.get("description", ""))),
            )
        )

    def add(kind: SafetyRiskKind, name: str, value: str = "") -> None:
        if not any(r.kind == kind for r in risks):
            risks.append(SafetyRisk(kind=kind, name=name, level="danger", value=value))

    token = report.get("token") or {}
    if report.get("mintAuthority") or token.get("mintAuthority"):
        add(SafetyRiskKind.MINT_AUTHORITY_ENABLED, "Mint Authority still enabled")
    if report.get("freezeAuthority") or token.get("freezeAuthority"):
        add(SafetyRiskKind.FREEZE_AUTHORITY_ENABLED, "Freeze Authority still enabled")

    supply = _safe_float(token.get("supply"))
    decimals = int(_safe_float(token.get("decimals")))
    if supply > 0:
        ui_supply = supply / (10 ** decimals)
        if abs(ui_supply - STANDARD_SUPPLY) > 1:
            add(SafetyRiskKind.NON_STANDARD_SUPPLY, "Non-standard supply", f"{ui_supply:,.0f}")

    lp_locked: float | None = None
    for market in report.get("markets") or []:
        lp = market.get("lp") or {}
        pct = max(
            _safe_float(market.get("lpLockedPct", lp.get("lpLockedPct"))),
            _safe_float(market.get("lpBurnedPct", lp.get("lpBurnedPct"))),
        )
        lp_locked = pct if lp_locked is None else max(lp_locked, pct)
    if lp_locked is not None and lp_locked < min_lp_locked_pct:
        add(SafetyRiskKind.LOW_LP_LOCKED, "LP locked below minimum", f"{lp_locked:.1f}%")

    holders = report.get("topHolders") or []
    shares = [_safe_float(h.get("pct")) for h in holders]
    insider_holders = sum(1 for h in holders if h.get("insider"))
    graph_insiders = int(_safe_float(report.get("graphInsidersDetected")))
    linked = graph_insiders or insider_holders
    if linked:
        add(SafetyRiskKind.INSIDER_NETWORK, "Insider network detected", str(linked))

    score = report.get("score_normalised")
    if score is None:
        score = report.get("score")
    normalized = min(100.0, max(0.0, _safe_float(score)))

    return SafetyReport(
        normalized_score=normalized,
        risks=risks,
        liquidity_locked_pct=lp_locked,
        concentration=ConcentrationIndicators(
            gini_coefficient=gini_coefficient(shares),
            top10_holder_pct=round(sum(shares[:10]), 2) if shares else None,
            linked_wallet_count=linked if holders or graph_insiders else None,
        ),
        provider="rugcheck",
        extras={"total_holders": report.get("totalHolders"), "rugged": report.get("rugged", False)},
    )


class SafetyAdapter:
    def __init__(self, rugcheck: RugCheckClient, min_lp_locked_pct: float = 50.0):
        self.rugcheck = rugcheck
        self.min_lp_locked_pct = min_lp_locked_pct

    async def check(self, mint: str) -> SafetyReport:
        """Safety report for ``mint``.

        Raises:
            APIError: provider failed or returned nothing.
        """
        report = await self.rugcheck.get_report(mint)
        if not report:
            raise APIError(f"Empty safety report for {mint}", provider="rugcheck")
        parsed = parse_rugcheck_report(report, self.min_lp_locked_pct)
        log.debug("Safety %s: score=%.1f risks=%s", mint, parsed.normalized_score, [r.kind.value for r in parsed.risks])
        return parsed
