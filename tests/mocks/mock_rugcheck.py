"""Mock RugCheck /report responses for testing."""

from __future__ import annotations

STANDARD_TOKEN = {"supply": 1_000_000_000_000_000, "decimals": 6, "mintAuthority": None, "freezeAuthority": None}

CLEAN_REPORT = {
    "mint": "GoodMint" + "1" * 36,
    "token": STANDARD_TOKEN,
    "mintAuthority": None,
    "freezeAuthority": None,
    "risks": [],
    "score": 1,
    "score_normalised": 0,
    "topHolders": [
        {"address": "h1", "pct": 4.0, "insider": False},
        {"address": "h2", "pct": 4.0, "insider": False},
        {"address": "h3", "pct": 4.0, "insider": False},
        {"address": "h4", "pct": 4.0, "insider": False},
    ],
    "markets": [],
    "graphInsidersDetected": 0,
    "totalHolders": 600,
}

MINT_AUTHORITY_REPORT = {
    "token": {**STANDARD_TOKEN, "mintAuthority": "Auth1111111111111111111111111111111111111111"},
    "mintAuthority": "Auth1111111111111111111111111111111111111111",
    "freezeAuthority": None,
    "risks": [
        {"name": "Mint Authority still enabled", "level": "danger", "description": "More tokens can be minted", "score": 2000},
    ],
    "score_normalised": 60,
    "topHolders": [],
    "markets": [],
}

RISKY_REPORT = {
    "token": STANDARD_TOKEN,
    "risks": [
        {"name": "Top 10 holders high ownership", "level": "danger", "description": "", "score": 500, "value": "72%"},
        {"name": "Mutable metadata", "level": "warn", "description": "", "score": 100},
        {"name": "Creator history of rugged tokens", "level": "danger", "description": "", "score": 1000},
    ],
    "score_normalised": 40,
    "topHolders": [
        {"address": "whale", "pct": 60.0, "insider": True},
        {"address": "h2", "pct": 8.0, "insider": True},
        {"address": "h3", "pct": 4.0, "insider": False},
    ],
    "markets": [{"lp": {"lpLockedPct": 10.0, "lpBurnedPct": 0.0}}],
    "graphInsidersDetected": 3,
}
