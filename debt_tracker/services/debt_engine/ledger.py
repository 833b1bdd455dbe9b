"""Folds signed deltas into per-wallet balances, flooring at zero on every step."""

import logging
from typing import Iterable, Optional

from .models import SignedDelta, WalletLedger

logger = logging.getLogger(__name__)


class LedgerAggregator:

    def aggregate(self, deltas: Iterable[Optional[SignedDelta]]) -> WalletLedger:
        """
        Build a fresh ledger from deltas in the given (chronological) order.
        None entries are unresolved transactions and are ignored.
        """
        ledger = WalletLedger()
        applied = 0
        for delta in deltas:
            if delta is None:
                continue
            ledger.apply(delta)
            applied += 1

        floored = [wallet for wallet in ledger if ledger.floored_excess(wallet) > 0]
        if floored:
            logger.debug(f"{len(floored)} wallets repaid more than tracked debt; excess discarded")
        logger.info(f"Aggregated {applied} deltas into {len(ledger)} wallets")
        return ledger
