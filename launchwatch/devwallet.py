"""Developer-wallet risk monitor.

Two questions about a token's creator:
- did they sell (and fully exit) their allocation of this mint?
- did they launch another token after this one?

Either answer can permanently reject a watchlist entry; the decision itself
lives in the state machine, this module only gathers evidence.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from launchwatch.clients.helius import HeliusClient
from launchwatch.clients.pumpfun import PumpFunClient
from launchwatch.config import DevWalletConfig
from launchwatch.models import DevWalletStatus, WatchlistEntry

log = logging.getLogger("launchwatch.devwallet")


def summarize_transfers(
    transactions: list[dict],
    wallet: str,
    mint: str,
) -> tuple[int, bool]:
    """Count sells of ``mint`` by ``wallet`` and detect a buy after the first sell.

    Transactions are Helius enhanced SWAP records in any order.
    """
    sell_count = 0
    bought_back = False
    for tx in sorted(transactions, key=lambda t: t.get("timestamp") or 0):
        for transfer in tx.get("tokenTransfers") or []:
            if transfer.get("mint") != mint:
                continue
            try:
                amount = float(transfer.get("tokenAmount") or 0)
            except (TypeError, ValueError):
                continue
            if amount <= 0:
                continue
            if transfer.get("fromUserAccount") == wallet:
                sell_count += 1
            elif transfer.get("toUserAccount") == wallet and sell_count > 0:
                bought_back = True
    return sell_count, bought_back


class DevWalletMonitor:
    def __init__(self, helius: HeliusClient, pumpfun: PumpFunClient, config: DevWalletConfig | None = None):
        self.helius = helius
        self.pumpfun = pumpfun
        self.config = config or DevWalletConfig()

    async def check_dev_wallet(self, creator_wallet: str, mint: str) -> DevWalletStatus:
        """Sell/hold status of ``creator_wallet`` for ``mint``.

        Raises:
            APIError: balance or history lookup failed.
        """
        swaps, balance = await asyncio.gather(
            self.helius.get_swap_transactions(creator_wallet, limit=self.config.swap_history_limit),
            self.helius.get_token_balance(creator_wallet, mint),
        )
        sell_count, bought_back = summarize_transfers(swaps, creator_wallet, mint)
        holding_pct = balance / self.config.total_supply * 100 if self.config.total_supply else 0.0
        has_sold = sell_count > 0
        status = DevWalletStatus(
            has_sold=has_sold,
            sell_count=sell_count,
            holding_pct=round(holding_pct, 6),
            is_full_exit=has_sold and holding_pct < self.config.full_exit_epsilon_pct,
            has_bought_back=bought_back,
        )
        if has_sold:
            log.info(
                "Dev %s sold %s (%d sells, holding %.4f%%, full_exit=%s)",
                creator_wallet[:8], mint[:8], sell_count, holding_pct, status.is_full_exit,
            )
        return status

    async def check_new_launch(
        self,
        creator_wallet: str,
        mint: str,
        token_created_at: datetime | None,
    ) -> bool:
        """True if the creator launched any other token after ``token_created_at``."""
        if token_created_at is None:
            return False
        coins = await self.pumpfun.get_user_created_coins(
            creator_wallet, limit=self.config.creation_history_limit
        )
        cutoff_ms = token_created_at.timestamp() * 1000
        for coin in coins:
            if coin.get("mint") == mint:
                continue
            try:
                created_ms = float(coin.get("created_timestamp") or 0)
            except (TypeError, ValueError):
                continue
            if created_ms > cutoff_ms:
                log.info("Dev %s launched %s after %s", creator_wallet[:8], str(coin.get("mint"))[:8], mint[:8])
                return True
        return False

    def needs_check(self, entry: WatchlistEntry) -> bool:
        """False when there is no creator or the outcome is already settled."""
        if not entry.creator_wallet:
            return False
        risk = entry.risk
        if risk.dev_launched_new:
            return False
        full_exit_recorded = (
            risk.dev_sold
            and risk.dev_holding_pct is not None
            and risk.dev_holding_pct < self.config.full_exit_epsilon_pct
            and not risk.dev_bought_back
        )
        return not full_exit_recorded

    async def assess(self, entry: WatchlistEntry) -> tuple[DevWalletStatus, bool] | None:
        """Run both checks for ``entry``; None when skipped."""
        if not self.needs_check(entry):
            return None
        wallet = entry.creator_wallet
        status, launched_new = await asyncio.gather(
            self.check_dev_wallet(wallet, entry.mint),
            self.check_new_launch(wallet, entry.mint, entry.token_created_at or entry.first_seen_at),
        )
        return status, launched_new
