"""Mock pump.fun user-created-coins responses for testing."""

from __future__ import annotations

from tests.mocks.mock_solana_tracker import MINT_GOOD

NEWER_MINT = "NewerMint" + "5" * 35
OLDER_MINT = "PriorMint" + "6" * 35

# created_timestamp is unix milliseconds
CREATED_COINS_NEWER = [
    {"mint": NEWER_MINT, "symbol": "NEW", "created_timestamp": 1_790_003_600_000},
    {"mint": MINT_GOOD, "symbol": "GOOD", "created_timestamp": 1_790_000_000_000},
]

CREATED_COINS_OLDER = [
    {"mint": MINT_GOOD, "symbol": "GOOD", "created_timestamp": 1_790_000_000_000},
    {"mint": OLDER_MINT, "symbol": "OLD", "created_timestamp": 1_789_990_000_000},
]
