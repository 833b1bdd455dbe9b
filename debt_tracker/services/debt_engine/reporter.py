"""
Ranker / Reporter

Pure function from (ledger, liquidity) to a ResultSet: dust and excluded
wallets are dropped, the rest ranked by balance (stable on ties), cut to
the top N and given a pool percentage.
"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, getcontext
from typing import Iterable, Optional, Union

from ...config.lending_config import (
    DUST_THRESHOLD, PERCENT_DECIMALS, SETTLEMENT_ASSET_DECIMALS,
    SMALL_PERCENT_DISPLAY, TOP_N,
)
from .models import (
    LenderRecord, LiquidityReading, LiquiditySource, ResultSet, WalletLedger,
    normalize_address,
)

logger = logging.getLogger(__name__)

# Set decimal precision
getcontext().prec = 50


class Reporter:

    def __init__(
        self,
        dust_threshold: int = DUST_THRESHOLD,
        top_n: int = TOP_N,
        percent_decimals: int = PERCENT_DECIMALS,
        pool_includes_outstanding: bool = False,
    ):
        self.dust_threshold = dust_threshold
        self.top_n = top_n
        self.quantum = Decimal(1).scaleb(-percent_decimals)
        self.pool_includes_outstanding = pool_includes_outstanding

    def pool_percentage(self, balance: int, denominator: int) -> Decimal:
        if denominator <= 0:
            return Decimal(0).quantize(self.quantum)
        raw = Decimal(balance) * 100 / Decimal(denominator)
        return raw.quantize(self.quantum, rounding=ROUND_HALF_UP)

    def report(
        self,
        ledger: WalletLedger,
        liquidity: Union[LiquidityReading, int],
        token: str,
        excluded: Iterable[str] = (),
        timestamp: Optional[datetime] = None,
    ) -> ResultSet:
        """
        Rank the ledger into a ResultSet.

        `liquidity` is the raw reading: the launch pool balance (or token
        supply) on the live path, or the fallback constant. The percentage
        denominator is that value alone by default. With
        `pool_includes_outstanding` it is liquidity plus the total still lent
        out, because the pool balance excludes those funds. The production
        wiring turns this on, so a zero liquidity reading there still yields
        non-zero percentages. Percentages are 0 only when the denominator is 0.
        `total_pool_liquidity` on the result is the denominator actually used.
        """
        if isinstance(liquidity, LiquidityReading):
            liquidity_value, liquidity_source = liquidity.value, liquidity.source
        else:
            liquidity_value, liquidity_source = int(liquidity), LiquiditySource.LIVE

        excluded_set = {normalize_address(address) for address in excluded}
        kept = [
            (wallet, balance)
            for wallet, balance in ledger.items()
            if balance > 0
            and balance >= self.dust_threshold
            and normalize_address(wallet) not in excluded_set
        ]
        total_lent = sum(balance for _, balance in kept)

        denominator = liquidity_value
        if self.pool_includes_outstanding:
            denominator += total_lent

        # sorted() is stable, so ties keep ledger (discovery) order
        ranked = sorted(kept, key=lambda item: item[1], reverse=True)[:self.top_n]
        lenders = tuple(
            LenderRecord(
                address=wallet,
                balance=balance,
                pool_percentage=self.pool_percentage(balance, denominator),
            )
            for wallet, balance in ranked
        )

        logger.info(
            f"Reported {len(lenders)} of {len(kept)} lenders "
            f"({len(ledger) - len(kept)} below dust or excluded), total lent {total_lent}"
        )
        return ResultSet(
            lenders=lenders,
            total_lent=total_lent,
            total_pool_liquidity=denominator,
            queried_token=token,
            timestamp=timestamp or datetime.now(timezone.utc),
            liquidity_source=liquidity_source,
        )


# ============================================================================
# DISPLAY HELPERS
# ============================================================================

def format_address(address: str) -> str:
    """Shorten an address to 0x1234...abcd"""
    if not address or len(address) <= 10:
        return address or ""
    return f"{address[:6]}...{address[-4:]}"


def format_units(amount: int, decimals: int = SETTLEMENT_ASSET_DECIMALS, places: int = 2) -> str:
    """Base units to a whole-unit string with thousands separators"""
    value = Decimal(amount).scaleb(-decimals)
    quantized = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return f"{quantized:,.{places}f}"


def format_percentage(percentage: Decimal) -> str:
    if percentage < SMALL_PERCENT_DISPLAY:
        return f"<{SMALL_PERCENT_DISPLAY}%"
    return f"{percentage:.2f}%"
