"""
Debt Reconstructor

Runs one full reconstruction: discovery, parallel amount resolution,
ordered aggregation, exclusion policies, liquidity read and reporting.
Every run builds its own ledger; nothing is shared between runs.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Callable, Iterable, List, Optional, Set

from ...config.lending_config import (
    DEFAULT_LOOKBACK_DAYS, INDEX_API_KEY, LAUNCH_POOL_ADDRESS, MAX_WORKERS,
    PROTOCOL_ADDRESSES, REQUEST_TIMEOUT_SECONDS, RPC_URL, SETTLEMENT_ASSET_ADDRESS,
    SKIP_CONTRACT_WALLETS, TARGET_CONTRACT_ADDRESS, USE_INDEX_API,
)
from .amount_resolver import AmountResolver
from .deadline import Deadline
from .discovery import TransactionDiscovery
from .errors import ReconstructionTimeout
from .ledger import LedgerAggregator
from .liquidity import LiquidityResolver
from .method_catalog import MethodCatalog
from .models import CandidateTransaction, ResultSet, SignedDelta, WalletLedger, normalize_address
from .progress_tracker import ProgressContext, ProgressUpdate
from .reporter import Reporter

logger = logging.getLogger(__name__)


class DebtReconstructor:
    """
    Wires the engine stages together.

    Resolution runs on a bounded thread pool; results are put back in
    candidate order before folding so the ledger is deterministic.
    """

    def __init__(
        self,
        discovery: TransactionDiscovery,
        resolver: AmountResolver,
        liquidity_resolver: LiquidityResolver,
        reporter: Optional[Reporter] = None,
        aggregator: Optional[LedgerAggregator] = None,
        node_client=None,
        target_contract: str = TARGET_CONTRACT_ADDRESS,
        excluded_addresses: Iterable[str] = PROTOCOL_ADDRESSES,
        skip_contract_wallets: bool = SKIP_CONTRACT_WALLETS,
        max_workers: int = MAX_WORKERS,
    ):
        self.discovery = discovery
        self.resolver = resolver
        self.liquidity_resolver = liquidity_resolver
        self.reporter = reporter or Reporter()
        self.aggregator = aggregator or LedgerAggregator()
        self.node_client = node_client
        self.target_contract = normalize_address(target_contract)
        self.excluded_addresses = {normalize_address(a) for a in excluded_addresses}
        self.excluded_addresses.add(self.target_contract)
        self.skip_contract_wallets = skip_contract_wallets
        self.max_workers = max_workers

    @classmethod
    def build_default(
        cls,
        rpc_url: str = RPC_URL,
        api_key: Optional[str] = INDEX_API_KEY,
        use_index: bool = USE_INDEX_API,
        **kwargs,
    ) -> "DebtReconstructor":
        """Production wiring: Basescan index, Base RPC node, MAV settlement asset."""
        from ..index_client import BasescanClient
        from ..node_client import NodeClient

        catalog = MethodCatalog.from_config()
        node_client = NodeClient(rpc_url)
        index_client = BasescanClient(api_key=api_key)

        return cls(
            discovery=TransactionDiscovery(catalog, index_client, node_client, use_index=use_index),
            resolver=AmountResolver(catalog, node_client, settlement_asset=SETTLEMENT_ASSET_ADDRESS),
            liquidity_resolver=LiquidityResolver(node_client, SETTLEMENT_ASSET_ADDRESS, holder=LAUNCH_POOL_ADDRESS),
            # Launch pool balance only holds what is not lent out
            reporter=Reporter(pool_includes_outstanding=True),
            node_client=node_client,
            **kwargs,
        )

    def reconstruct(
        self,
        token_address: str,
        lookback_days: float = DEFAULT_LOOKBACK_DAYS,
        deadline_seconds: Optional[float] = REQUEST_TIMEOUT_SECONDS,
        progress_callback: Optional[Callable[[ProgressUpdate], None]] = None,
    ) -> ResultSet:
        """
        Reconstruct outstanding balances and rank the top lenders.

        An empty ResultSet means no lending activity was found.

        Raises:
            DiscoveryError: no candidate list could be produced
            ReconstructionTimeout: deadline_seconds elapsed first
        """
        deadline = Deadline(deadline_seconds)
        logger.info(
            f"Reconstructing debt for {self.target_contract} "
            f"(token {token_address}, lookback {lookback_days} days)"
        )

        with ProgressContext("debt_reconstruction", callback=progress_callback) as progress:
            candidates = self.discovery.discover(
                self.target_contract,
                lookback_days,
                progress_callback=progress.stage_reporter("discovery"),
                deadline=deadline,
            )

            deltas = self.resolve_all(candidates, deadline, progress.stage_reporter("resolution"))
            ledger = self.aggregator.aggregate(deltas)
            deadline.check("aggregation")

            report = progress.stage_reporter("reporting")
            excluded = self.excluded_wallets(ledger, deadline)
            report(0.5, "Reading pool liquidity")
            liquidity = self.liquidity_resolver.total_liquidity()
            deadline.check("liquidity read")

            result = self.reporter.report(ledger, liquidity, token_address, excluded=excluded)

        if result.is_empty:
            logger.info("No lending activity found")
        return result

    def resolve_all(
        self,
        candidates: List[CandidateTransaction],
        deadline: Deadline,
        report: Callable[[float, str], None],
    ) -> List[Optional[SignedDelta]]:
        """Resolve every candidate; the returned list is in chronological order."""
        ordered = sorted(candidates, key=lambda c: c.sort_key)
        if not ordered:
            report(1.0, "No transactions to resolve")
            return []

        results: List[Optional[SignedDelta]] = [None] * len(ordered)
        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            futures = {
                executor.submit(self._resolve_one, tx, deadline): index
                for index, tx in enumerate(ordered)
            }
            completed = 0
            for future in as_completed(futures, timeout=deadline.remaining()):
                results[futures[future]] = future.result()
                completed += 1
                report(completed / len(ordered), f"Resolved {completed}/{len(ordered)} transactions")
        except FuturesTimeoutError as e:
            raise deadline.timeout_error("transaction resolution") from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        resolved = sum(1 for delta in results if delta is not None)
        logger.info(f"Resolved {resolved}/{len(ordered)} transactions")
        return results

    def _resolve_one(self, tx: CandidateTransaction, deadline: Deadline) -> Optional[SignedDelta]:
        deadline.check("transaction resolution")
        try:
            return self.resolver.resolve(tx)
        except ReconstructionTimeout:
            raise
        except Exception as e:
            logger.warning(f"{tx.tx_hash}: resolution failed, dropped: {e}")
            return None

    def excluded_wallets(self, ledger: WalletLedger, deadline: Deadline) -> Set[str]:
        """Protocol addresses, plus contract wallets when that policy is on."""
        excluded = set(self.excluded_addresses)
        if not self.skip_contract_wallets or self.node_client is None:
            return excluded

        for wallet, balance in ledger.items():
            if balance <= 0 or balance < self.reporter.dust_threshold or wallet in excluded:
                continue
            deadline.check("contract wallet check")
            try:
                if self.node_client.is_contract(wallet):
                    logger.info(f"Excluding contract wallet {wallet}")
                    excluded.add(wallet)
            except Exception as e:
                logger.debug(f"Could not check code at {wallet}, keeping it: {e}")
        return excluded
