"""
Transaction Discovery

Finds historical calls to the target contract whose selector is in the
method catalog.

Primary strategy pages through the index API (oldest first). When the
index is disabled, unavailable after retries, or returns a malformed
payload, a windowed eth_getLogs scan against the node takes over.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from ...config.lending_config import (
    BLOCK_TIME_SECONDS, INDEX_PAGE_SIZE, LOG_CHUNK_SIZE, MAX_RESULT_WINDOW,
    MAX_RETRIES, MAX_TXS_PER_WINDOW, RETRY_DELAY, SECONDS_PER_DAY,
    USE_INDEX_API, WINDOW_DELAY,
)
from .deadline import Deadline
from .errors import DiscoveryError, IndexApiError, IndexUnavailableError, ReconstructionTimeout
from .method_catalog import MethodCatalog, selector_of
from .models import CandidateTransaction, normalize_address

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]


def lookback_to_blocks(lookback_days: float, block_time: float = BLOCK_TIME_SECONDS) -> int:
    """Approximate number of blocks produced in `lookback_days`."""
    return int(lookback_days * SECONDS_PER_DAY / block_time)


class TransactionDiscovery:
    """
    Produces chronologically ordered CandidateTransactions for one contract.
    """

    def __init__(
        self,
        catalog: MethodCatalog,
        index_client=None,
        node_client=None,
        page_size: int = INDEX_PAGE_SIZE,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        window_size: int = LOG_CHUNK_SIZE,
        max_txs_per_window: int = MAX_TXS_PER_WINDOW,
        window_delay: float = WINDOW_DELAY,
        use_index: bool = USE_INDEX_API,
        max_result_window: int = MAX_RESULT_WINDOW,
        block_time: float = BLOCK_TIME_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.catalog = catalog
        self.index_client = index_client
        self.node_client = node_client
        self.page_size = page_size
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.window_size = window_size
        self.max_txs_per_window = max_txs_per_window
        self.window_delay = window_delay
        self.use_index = use_index
        self.max_result_window = max_result_window
        self.block_time = block_time
        self.clock = clock

    def discover(
        self,
        contract_address: str,
        lookback_days: float,
        progress_callback: Optional[ProgressCallback] = None,
        deadline: Optional[Deadline] = None,
    ) -> List[CandidateTransaction]:
        """
        Discover candidate transactions within the lookback window.

        Raises:
            DiscoveryError: neither strategy could produce a candidate list
            ReconstructionTimeout: deadline expired
        """
        deadline = deadline or Deadline.unlimited()
        contract = normalize_address(contract_address)
        report = progress_callback or (lambda fraction, message: None)
        head = self._chain_head()

        if self._index_enabled():
            try:
                candidates = self.discover_via_index(contract, lookback_days, head, report, deadline)
                report(1.0, f"Found {len(candidates)} transactions via index API")
                return candidates
            except IndexUnavailableError as e:
                logger.warning(f"Index discovery unavailable, falling back to log scan: {e}")
        else:
            logger.info("Index discovery disabled, scanning node logs")

        if head is None:
            raise DiscoveryError("Cannot scan node logs: chain head unavailable")

        candidates = self.discover_via_logs(contract, lookback_days, head, report, deadline)
        report(1.0, f"Found {len(candidates)} transactions via log scan")
        return candidates

    def _index_enabled(self) -> bool:
        if not self.use_index or self.index_client is None:
            return False
        if not getattr(self.index_client, 'is_configured', True):
            logger.warning("Index API key missing, index discovery skipped")
            return False
        return True

    def _chain_head(self) -> Optional[int]:
        if self.node_client is None:
            return None
        try:
            return self.node_client.get_block_number()
        except Exception as e:
            logger.warning(f"Could not read chain head: {e}")
            return None

    # ------------------------------------------------------------------
    # Primary: index API
    # ------------------------------------------------------------------

    def discover_via_index(
        self,
        contract: str,
        lookback_days: float,
        head: Optional[int],
        report: ProgressCallback,
        deadline: Deadline,
    ) -> List[CandidateTransaction]:
        if head is not None:
            start_block = max(0, head - lookback_to_blocks(lookback_days, self.block_time))
            cutoff = None
        else:
            # No head to convert from, so bound by timestamp instead
            start_block = 0
            cutoff = self.clock() - lookback_days * SECONDS_PER_DAY

        candidates: List[CandidateTransaction] = []
        seen: Set[str] = set()
        page = 1
        page_start_block = start_block
        last_block_seen: Optional[int] = None

        while True:
            deadline.check("index discovery")

            if page * self.page_size > self.max_result_window:
                if last_block_seen is None or last_block_seen <= page_start_block:
                    logger.warning(
                        f"Result window exhausted at block {page_start_block} and cannot advance; "
                        f"stopping with {len(candidates)} candidates"
                    )
                    break
                logger.debug(f"Result window reached, restarting paging from block {last_block_seen}")
                page_start_block = last_block_seen
                page = 1

            result = self._fetch_page(contract, page_start_block, page, deadline)
            if result.is_exhausted:
                break

            rows = result.transactions
            for row in rows:
                block_number, candidate = self._candidate_from_index_row(row, contract, cutoff)
                if last_block_seen is None or block_number > last_block_seen:
                    last_block_seen = block_number
                if candidate is not None and candidate.tx_hash not in seen:
                    seen.add(candidate.tx_hash)
                    candidates.append(candidate)

            if head is not None and last_block_seen is not None and head > start_block:
                fraction = (last_block_seen - start_block) / (head - start_block)
                report(min(1.0, max(0.0, fraction)), f"Index page {page}: {len(candidates)} candidates")

            if len(rows) < self.page_size:
                break
            page += 1

        candidates.sort(key=lambda c: c.sort_key)
        logger.info(f"Index discovery found {len(candidates)} candidate transactions")
        return candidates

    def _fetch_page(self, contract: str, start_block: int, page: int, deadline: Deadline):
        last_error: Optional[IndexApiError] = None
        for attempt in range(self.max_retries):
            try:
                return self.index_client.get_transactions_page(
                    contract, start_block=start_block, page=page, offset=self.page_size,
                )
            except IndexApiError as e:
                if not e.retryable:
                    raise IndexUnavailableError(f"Index API error: {e}") from e
                last_error = e
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Index page {page} failed ({e}); retry {attempt + 1} in {delay:.2f}s")
                    deadline.sleep(delay, "index discovery")
        raise IndexUnavailableError(
            f"Index API failed after {self.max_retries} attempts: {last_error}"
        ) from last_error

    def _candidate_from_index_row(
        self, row: Dict, contract: str, cutoff: Optional[float],
    ) -> Tuple[int, Optional[CandidateTransaction]]:
        """Returns (block_number, candidate or None if filtered out)."""
        try:
            block_number = int(row['blockNumber'])
            timestamp = int(row['timeStamp']) if row.get('timeStamp') else None
            position = int(row.get('transactionIndex') or 0)
            tx_hash = str(row['hash']).lower()
        except (KeyError, TypeError, ValueError) as e:
            raise IndexUnavailableError(f"Malformed index row: {e}") from e

        if normalize_address(row.get('to')) != contract:
            return block_number, None
        if str(row.get('isError', '0')) != '0' or str(row.get('txreceipt_status', '')) == '0':
            return block_number, None
        if cutoff is not None and timestamp is not None and timestamp < cutoff:
            return block_number, None

        input_data = row.get('input') or '0x'
        selector = selector_of(input_data)
        if self.catalog.lookup(selector) is None:
            return block_number, None

        return block_number, CandidateTransaction(
            tx_hash=tx_hash,
            sender=normalize_address(row.get('from')),
            selector=selector,
            block_number=block_number,
            timestamp=datetime.fromtimestamp(timestamp, tz=timezone.utc) if timestamp is not None else None,
            input_data=input_data,
            position=position,
        )

    # ------------------------------------------------------------------
    # Fallback: windowed node log scan
    # ------------------------------------------------------------------

    def discover_via_logs(
        self,
        contract: str,
        lookback_days: float,
        head: int,
        report: ProgressCallback,
        deadline: Deadline,
    ) -> List[CandidateTransaction]:
        if self.node_client is None:
            raise DiscoveryError("No node client configured for log scan")

        start_block = max(0, head - lookback_to_blocks(lookback_days, self.block_time))
        total_blocks = head - start_block + 1
        logger.info(f"Scanning blocks {start_block} to {head} in windows of {self.window_size}")

        candidates: List[CandidateTransaction] = []
        seen: Set[str] = set()
        windows = 0
        failed_windows = 0

        for window_start in range(start_block, head + 1, self.window_size):
            deadline.check("log scan")
            window_end = min(window_start + self.window_size - 1, head)
            windows += 1

            try:
                candidates.extend(self._scan_window(contract, window_start, window_end, seen, deadline))
            except ReconstructionTimeout:
                raise
            except Exception as e:
                failed_windows += 1
                logger.warning(f"Skipping blocks {window_start}-{window_end}: {e}")

            covered = window_end - start_block + 1
            report(covered / total_blocks, f"Scanned to block {window_end}: {len(candidates)} candidates")

            if window_end < head:
                deadline.sleep(self.window_delay, "log scan")

        if windows and failed_windows == windows:
            raise DiscoveryError(f"All {windows} log scan windows failed")

        candidates.sort(key=lambda c: c.sort_key)
        logger.info(
            f"Log scan found {len(candidates)} candidate transactions "
            f"({failed_windows}/{windows} windows skipped)"
        )
        return candidates

    def _scan_window(
        self, contract: str, from_block: int, to_block: int, seen: Set[str], deadline: Deadline,
    ) -> List[CandidateTransaction]:
        logs = self.node_client.get_logs(contract, from_block, to_block)

        tx_hashes: List[str] = []
        for log in sorted(logs, key=lambda l: (l.get('blockNumber', 0), l.get('logIndex', 0))):
            tx_hash = str(log.get('transactionHash', '')).lower()
            if tx_hash and tx_hash not in seen and tx_hash not in tx_hashes:
                tx_hashes.append(tx_hash)

        if len(tx_hashes) > self.max_txs_per_window:
            logger.warning(
                f"Blocks {from_block}-{to_block}: {len(tx_hashes)} transactions, "
                f"only fetching first {self.max_txs_per_window}"
            )
            tx_hashes = tx_hashes[:self.max_txs_per_window]

        found = []
        for tx_hash in tx_hashes:
            deadline.check("log scan")
            seen.add(tx_hash)
            try:
                tx = self.node_client.get_transaction(tx_hash)
            except Exception as e:
                logger.debug(f"Could not fetch transaction {tx_hash}: {e}")
                continue
            candidate = self._candidate_from_node_tx(tx, tx_hash, contract)
            if candidate is not None:
                found.append(candidate)
        return found

    def _candidate_from_node_tx(self, tx: Optional[Dict], tx_hash: str, contract: str) -> Optional[CandidateTransaction]:
        if not tx or normalize_address(tx.get('to')) != contract:
            return None
        input_data = tx.get('input') or '0x'
        selector = selector_of(input_data)
        if self.catalog.lookup(selector) is None:
            return None

        block_number = int(tx.get('blockNumber') or 0)
        return CandidateTransaction(
            tx_hash=tx_hash,
            sender=normalize_address(tx.get('from')),
            selector=selector,
            block_number=block_number,
            timestamp=self._block_time(block_number),
            input_data=input_data,
            position=int(tx.get('transactionIndex') or 0),
        )

    def _block_time(self, block_number: int) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(self.node_client.get_block_timestamp(block_number), tz=timezone.utc)
        except Exception as e:
            logger.debug(f"No timestamp for block {block_number}: {e}")
            return None
