"""
Debt Engine Services Module

Outstanding-debt reconstruction: transaction discovery, amount resolution,
floor-at-zero ledger aggregation, liquidity read and lender ranking.
"""

from .amount_resolver import AmountResolver
from .deadline import Deadline
from .discovery import TransactionDiscovery
from .errors import (
    DebtTrackerError, DiscoveryError, IndexApiError, IndexUnavailableError,
    MalformedPayloadError, RateLimitedError, ReconstructionTimeout, TransientIndexError,
)
from .ledger import LedgerAggregator
from .liquidity import LiquidityResolver
from .method_catalog import MethodCatalog
from .models import (
    CandidateTransaction, LenderRecord, LiquidityReading, LiquiditySource,
    ResultSet, SignedDelta, WalletLedger,
)
from .progress_tracker import ProgressTracker
from .reconstructor import DebtReconstructor
from .reporter import Reporter

__all__ = [
    'AmountResolver',
    'CandidateTransaction',
    'Deadline',
    'DebtReconstructor',
    'DebtTrackerError',
    'DiscoveryError',
    'IndexApiError',
    'IndexUnavailableError',
    'LedgerAggregator',
    'LenderRecord',
    'LiquidityReading',
    'LiquiditySource',
    'LiquidityResolver',
    'MalformedPayloadError',
    'MethodCatalog',
    'ProgressTracker',
    'RateLimitedError',
    'ReconstructionTimeout',
    'Reporter',
    'ResultSet',
    'SignedDelta',
    'TransactionDiscovery',
    'TransientIndexError',
    'WalletLedger',
]
