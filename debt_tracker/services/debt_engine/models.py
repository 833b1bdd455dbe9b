"""
Data structures shared by the outstanding-debt reconstruction engine.

Base-unit amounts are plain Python ints (arbitrary precision). Percentages
and display units are Decimals. Nothing here is persisted between runs.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import pandas as pd


# ============================================================================
# ENUMS
# ============================================================================

class DeltaSign(Enum):
    """Direction a tracked method moves the caller's debt"""
    INCREASE = "increase"
    DECREASE = "decrease"


class DeltaSource(Enum):
    """Which resolution path produced a SignedDelta"""
    TRANSFER_RECONCILIATION = "transfer_reconciliation"
    INPUT_DECODE = "input_decode"


class LiquiditySource(Enum):
    """Where the liquidity denominator came from"""
    LIVE = "live"
    FALLBACK = "fallback"


class IndexStatus(Enum):
    """Outcome of a single index API page request"""
    OK = "ok"
    EXHAUSTED = "exhausted"


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class MethodSpec:
    """Decode rule for one tracked contract method"""
    selector: str
    name: str
    amount_field: int  # zero-based 32-byte word index after the selector
    sign: DeltaSign
    scale: int = 1  # multiplier from decoded word to settlement base units


@dataclass(frozen=True)
class CandidateTransaction:
    """A call to the target contract that matched a catalog selector"""
    tx_hash: str
    sender: str
    selector: str
    block_number: int
    timestamp: Optional[datetime] = None
    input_data: str = "0x"
    position: int = 0

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.block_number, self.position)


@dataclass(frozen=True)
class TransferEvent:
    """ERC20 Transfer decoded from a receipt log"""
    token: str
    from_address: str
    to_address: str
    amount: int


@dataclass(frozen=True)
class SignedDelta:
    """Signed change to one wallet's outstanding balance"""
    wallet: str
    amount: int
    tx_hash: str = ""
    source: DeltaSource = DeltaSource.TRANSFER_RECONCILIATION


@dataclass(frozen=True)
class LiquidityReading:
    """Liquidity denominator tagged with its origin"""
    value: int
    source: LiquiditySource

    @property
    def is_fallback(self) -> bool:
        return self.source == LiquiditySource.FALLBACK


@dataclass(frozen=True)
class IndexPage:
    """One page of index API results"""
    status: IndexStatus
    transactions: Tuple[Dict[str, str], ...] = ()

    @property
    def is_exhausted(self) -> bool:
        return self.status == IndexStatus.EXHAUSTED


class WalletLedger:
    """
    Per-wallet outstanding balance, floored at zero on every update.

    Insertion order is preserved so that equal balances can be ranked by
    first appearance. Entries are never removed, only driven to zero.
    """

    def __init__(self):
        self._balances: "OrderedDict[str, int]" = OrderedDict()
        self._floored_excess: Dict[str, int] = {}

    def apply(self, delta: SignedDelta) -> int:
        """Fold one delta into the ledger and return the new balance."""
        current = self._balances.get(delta.wallet, 0)
        new_balance = current + delta.amount
        if new_balance < 0:
            self._floored_excess[delta.wallet] = self._floored_excess.get(delta.wallet, 0) - new_balance
            new_balance = 0
        self._balances[delta.wallet] = new_balance
        return new_balance

    def balance(self, wallet: str) -> int:
        return self._balances.get(wallet, 0)

    def floored_excess(self, wallet: str) -> int:
        """Total repayment discarded for this wallet by the zero floor."""
        return self._floored_excess.get(wallet, 0)

    def items(self) -> List[Tuple[str, int]]:
        return list(self._balances.items())

    def wallets(self) -> List[str]:
        return list(self._balances.keys())

    def total(self) -> int:
        return sum(self._balances.values())

    def __contains__(self, wallet: str) -> bool:
        return wallet in self._balances

    def __iter__(self) -> Iterator[str]:
        return iter(self._balances)

    def __len__(self) -> int:
        return len(self._balances)


@dataclass(frozen=True)
class LenderRecord:
    """One ranked wallet in the report"""
    address: str
    balance: int
    pool_percentage: Decimal

    def to_dict(self) -> dict:
        return {
            'address': self.address,
            'balance': str(self.balance),
            'pool_percentage': str(self.pool_percentage),
        }


@dataclass(frozen=True)
class ResultSet:
    """
    The only artifact handed to the presentation layer.

    Integer amounts stay in base units; to_dict() renders them as decimal
    strings so they survive JSON without turning into floats.
    """
    lenders: Tuple[LenderRecord, ...]
    total_lent: int
    total_pool_liquidity: int
    queried_token: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    liquidity_source: LiquiditySource = LiquiditySource.LIVE

    @property
    def is_empty(self) -> bool:
        return len(self.lenders) == 0

    def to_dict(self) -> dict:
        """Serialize to JSON-safe dictionary."""
        return {
            'lenders': [
                dict(lender.to_dict(), rank=rank)
                for rank, lender in enumerate(self.lenders, start=1)
            ],
            'total_lent': str(self.total_lent),
            'total_pool_liquidity': str(self.total_pool_liquidity),
            'queried_token': self.queried_token,
            'timestamp': self.timestamp.isoformat(),
            'liquidity_source': self.liquidity_source.value,
        }

    def to_dataframe(self, unit_scale: int = 10 ** 18) -> pd.DataFrame:
        """Ranked lenders as a table, balances converted to whole units."""
        rows = [
            {
                'rank': rank,
                'address': lender.address,
                'balance_raw': str(lender.balance),
                'balance': Decimal(lender.balance) / Decimal(unit_scale),
                'pool_percentage': lender.pool_percentage,
            }
            for rank, lender in enumerate(self.lenders, start=1)
        ]
        columns = ['rank', 'address', 'balance_raw', 'balance', 'pool_percentage']
        return pd.DataFrame(rows, columns=columns)


def normalize_address(address) -> str:
    """Lowercase 0x-prefixed form used as the ledger key and for comparisons."""
    if address is None:
        return ""
    address = str(address).strip().lower()
    if address and not address.startswith("0x"):
        address = "0x" + address
    return address
