"""Tests for the developer-wallet risk monitor."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from launchwatch.config import DevWalletConfig
from launchwatch.devwallet import DevWalletMonitor, summarize_transfers
from launchwatch.models import RiskFlags, WatchlistEntry
from tests.mocks.mock_helius import SWAPS_BUY_ONLY, SWAPS_SOLD, SWAPS_SOLD_THEN_BOUGHT
from tests.mocks.mock_pumpfun import CREATED_COINS_NEWER, CREATED_COINS_OLDER
from tests.mocks.mock_solana_tracker import DEV_WALLET, MINT_GOOD

CREATED_AT = datetime.fromtimestamp(1_790_000_000, tz=timezone.utc)


def _monitor(swaps=None, balance=0.0, coins=None) -> DevWalletMonitor:
    helius = AsyncMock()
    helius.get_swap_transactions = AsyncMock(return_value=swaps or [])
    helius.get_token_balance = AsyncMock(return_value=balance)
    pumpfun = AsyncMock()
    pumpfun.get_user_created_coins = AsyncMock(return_value=coins or [])
    return DevWalletMonitor(helius, pumpfun, DevWalletConfig())


def _entry(**overrides) -> WatchlistEntry:
    data = {
        "mint": MINT_GOOD,
        "symbol": "GOOD",
        "creator_wallet": DEV_WALLET,
        "token_created_at": CREATED_AT,
        "first_seen_at": CREATED_AT,
    }
    data.update(overrides)
    return WatchlistEntry(**data)


class TestSummarizeTransfers:
    def test_counts_sells(self):
        assert summarize_transfers(SWAPS_SOLD, DEV_WALLET, MINT_GOOD) == (2, False)

    def test_buy_after_sell_is_buyback(self):
        assert summarize_transfers(SWAPS_SOLD_THEN_BOUGHT, DEV_WALLET, MINT_GOOD) == (2, True)

    def test_buy_without_sell_is_not_buyback(self):
        assert summarize_transfers(SWAPS_BUY_ONLY, DEV_WALLET, MINT_GOOD) == (0, False)

    def test_ignores_other_mints(self):
        assert summarize_transfers(SWAPS_SOLD, DEV_WALLET, "So11111111111111111111111111111111111111112") == (0, False)


class TestCheckDevWallet:
    @pytest.mark.asyncio
    async def test_full_exit(self):
        status = await _monitor(SWAPS_SOLD, balance=0.0).check_dev_wallet(DEV_WALLET, MINT_GOOD)
        assert status.has_sold is True
        assert status.sell_count == 2
        assert status.holding_pct == 0.0
        assert status.is_full_exit is True

    @pytest.mark.asyncio
    async def test_partial_sell(self):
        status = await _monitor(SWAPS_SOLD, balance=50_000_000).check_dev_wallet(DEV_WALLET, MINT_GOOD)
        assert status.has_sold is True
        assert status.holding_pct == pytest.approx(5.0)
        assert status.is_full_exit is False

    @pytest.mark.asyncio
    async def test_never_sold_with_empty_wallet(self):
        status = await _monitor([], balance=0.0).check_dev_wallet(DEV_WALLET, MINT_GOOD)
        assert status.has_sold is False
        assert status.is_full_exit is False

    @pytest.mark.asyncio
    async def test_buyback_reported(self):
        status = await _monitor(SWAPS_SOLD_THEN_BOUGHT, balance=5_000_000).check_dev_wallet(DEV_WALLET, MINT_GOOD)
        assert status.has_bought_back is True


class TestCheckNewLaunch:
    @pytest.mark.asyncio
    async def test_newer_launch_detected(self):
        assert await _monitor(coins=CREATED_COINS_NEWER).check_new_launch(DEV_WALLET, MINT_GOOD, CREATED_AT)

    @pytest.mark.asyncio
    async def test_older_launch_ignored(self):
        assert not await _monitor(coins=CREATED_COINS_OLDER).check_new_launch(DEV_WALLET, MINT_GOOD, CREATED_AT)

    @pytest.mark.asyncio
    async def test_unknown_creation_time(self):
        monitor = _monitor(coins=CREATED_COINS_NEWER)
        assert await monitor.check_new_launch(DEV_WALLET, MINT_GOOD, None) is False
        monitor.pumpfun.get_user_created_coins.assert_not_called()


class TestNeedsCheck:
    def test_no_creator(self):
        assert not _monitor().needs_check(_entry(creator_wallet=None))

    def test_fresh_entry(self):
        assert _monitor().needs_check(_entry())

    def test_launched_new_is_settled(self):
        assert not _monitor().needs_check(_entry(risk=RiskFlags(dev_launched_new=True)))

    def test_full_exit_is_settled(self):
        risk = RiskFlags(dev_sold=True, dev_holding_pct=0.0)
        assert not _monitor().needs_check(_entry(risk=risk))

    def test_partial_sell_keeps_checking(self):
        risk = RiskFlags(dev_sold=True, dev_holding_pct=3.0)
        assert _monitor().needs_check(_entry(risk=risk))

    @pytest.mark.asyncio
    async def test_assess(self):
        monitor = _monitor(SWAPS_SOLD, balance=0.0, coins=CREATED_COINS_OLDER)
        status, launched_new = await monitor.assess(_entry())
        assert status.is_full_exit
        assert launched_new is False

    @pytest.mark.asyncio
    async def test_assess_skipped(self):
        monitor = _monitor()
        assert await monitor.assess(_entry(creator_wallet=None)) is None
        monitor.helius.get_swap_transactions.assert_not_called()
