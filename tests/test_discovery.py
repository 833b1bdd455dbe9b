"""
Unit tests for transaction discovery: index paging, retries, fallback log scan.
"""
import pytest

from debt_tracker.services.debt_engine.deadline import Deadline
from debt_tracker.services.debt_engine.discovery import TransactionDiscovery, lookback_to_blocks
from debt_tracker.services.debt_engine.errors import (
    DiscoveryError, MalformedPayloadError, RateLimitedError, ReconstructionTimeout,
    TransientIndexError,
)

from conftest import (
    BORROW, CONTRACT, EXHAUSTED, REPAY, UNKNOWN, W1, W2, W3,
    FakeIndexClient, FakeNodeClient, index_row, node_log, node_tx, ok_page, tx_hash,
)


def make_discovery(catalog, index=None, node=None, **kwargs):
    options = dict(page_size=2, retry_delay=0, window_delay=0, window_size=3000)
    options.update(kwargs)
    return TransactionDiscovery(catalog, index_client=index, node_client=node, **options)


def fallback_node(**kwargs):
    """Node whose log scan finds tx 101 (W1 borrow) and tx 102 (W2 repay)."""
    defaults = dict(
        head=9999,
        logs=[node_log(101, 500), node_log(102, 7000)],
        transactions={
            tx_hash(101): node_tx(101, W1, BORROW, block=500),
            tx_hash(102): node_tx(102, W2, REPAY, block=7000),
        },
    )
    defaults.update(kwargs)
    return FakeNodeClient(**defaults)


class TestLookback:

    def test_lookback_to_blocks(self):
        assert lookback_to_blocks(1) == 43200
        assert lookback_to_blocks(3) == 129600
        assert lookback_to_blocks(0.5, block_time=12) == 3600


class TestIndexDiscovery:

    def test_pages_until_short_page(self, catalog):
        index = FakeIndexClient([
            ok_page(index_row(1, W1, block=10), index_row(2, W2, block=11)),
            ok_page(index_row(3, W1, REPAY, block=12)),
        ])
        candidates = make_discovery(catalog, index, FakeNodeClient(head=1000)).discover(CONTRACT, 1)

        assert [c.tx_hash for c in candidates] == [tx_hash(1), tx_hash(2), tx_hash(3)]
        assert [call['page'] for call in index.calls] == [1, 2]

    def test_exhausted_signal_is_normal_termination(self, catalog):
        index = FakeIndexClient([EXHAUSTED])
        node = FakeNodeClient(head=1000)
        candidates = make_discovery(catalog, index, node).discover(CONTRACT, 1)

        assert candidates == []
        assert node.log_queries == []

    def test_candidate_fields(self, catalog):
        index = FakeIndexClient([ok_page(index_row(7, W1.upper().replace("0X", "0x"), block=42, position=3))])
        candidate = make_discovery(catalog, index, FakeNodeClient(head=1000)).discover(CONTRACT, 1)[0]

        assert candidate.sender == W1
        assert candidate.selector == BORROW
        assert candidate.block_number == 42
        assert candidate.position == 3
        assert candidate.timestamp.timestamp() == 1_700_000_000

    def test_filters_reverted_foreign_and_unknown(self, catalog):
        index = FakeIndexClient([ok_page(
            index_row(1, W1),
            index_row(2, W1, is_error="1"),
            index_row(3, W1, receipt_status="0"),
            index_row(4, W1, to=W3),
            index_row(5, W1, selector=UNKNOWN),
        )])
        candidates = make_discovery(catalog, index, FakeNodeClient(head=1000), page_size=200).discover(CONTRACT, 1)
        assert [c.tx_hash for c in candidates] == [tx_hash(1)]

    def test_sorted_by_block_then_position(self, catalog):
        index = FakeIndexClient([ok_page(
            index_row(1, W1, block=20, position=0),
            index_row(2, W1, block=10, position=5),
            index_row(3, W1, block=10, position=1),
        )])
        candidates = make_discovery(catalog, index, FakeNodeClient(head=1000), page_size=200).discover(CONTRACT, 1)
        assert [c.tx_hash for c in candidates] == [tx_hash(3), tx_hash(2), tx_hash(1)]

    def test_start_block_from_lookback(self, catalog):
        index = FakeIndexClient([EXHAUSTED])
        make_discovery(catalog, index, FakeNodeClient(head=100_000)).discover(CONTRACT, 1)
        assert index.calls[0]['start_block'] == 100_000 - 43200

    def test_unknown_head_uses_timestamp_cutoff(self, catalog):
        now = 1_700_000_000 + 3600
        index = FakeIndexClient([ok_page(
            index_row(1, W1, timestamp=1_700_000_000 - 2 * 86400),
            index_row(2, W2, timestamp=1_700_000_000),
        )])
        node = FakeNodeClient(head=ConnectionError("rpc down"))
        discovery = make_discovery(catalog, index, node, page_size=200, clock=lambda: now)
        candidates = discovery.discover(CONTRACT, 1)

        assert index.calls[0]['start_block'] == 0
        assert [c.tx_hash for c in candidates] == [tx_hash(2)]

    def test_retries_transient_errors(self, catalog):
        index = FakeIndexClient([RateLimitedError("slow down"), ok_page(index_row(1, W1))])
        candidates = make_discovery(catalog, index, FakeNodeClient(head=1000)).discover(CONTRACT, 1)

        assert len(candidates) == 1
        assert len(index.calls) == 2

    def test_progress_reported(self, catalog):
        index = FakeIndexClient([
            ok_page(index_row(1, W1, block=250), index_row(2, W1, block=500)),
            ok_page(index_row(3, W1, block=900)),
        ])
        fractions = []
        make_discovery(catalog, index, FakeNodeClient(head=1000)).discover(
            CONTRACT, 1, progress_callback=lambda fraction, message: fractions.append(fraction))

        assert fractions == [0.5, 0.9, 1.0]


class TestResultWindow:

    def test_rebases_on_last_block_and_deduplicates(self, catalog):
        index = FakeIndexClient([
            ok_page(index_row(1, W1, block=10), index_row(2, W1, block=11)),
            ok_page(index_row(3, W1, block=12), index_row(4, W1, block=13)),
            ok_page(index_row(4, W1, block=13), index_row(5, W1, block=14)),
            ok_page(index_row(6, W1, block=15)),
        ])
        discovery = make_discovery(catalog, index, FakeNodeClient(head=1000), max_result_window=4)
        candidates = discovery.discover(CONTRACT, 1)

        assert [c.tx_hash for c in candidates] == [tx_hash(n) for n in range(1, 7)]
        assert [(call['start_block'], call['page']) for call in index.calls] == [(0, 1), (0, 2), (13, 1), (13, 2)]

    def test_stops_when_rebase_cannot_advance(self, catalog):
        same_block = [ok_page(index_row(n, W1, block=10), index_row(n + 1, W1, block=10)) for n in (1, 3)]
        index = FakeIndexClient(same_block + same_block + [ok_page(index_row(9, W1, block=10))])
        discovery = make_discovery(catalog, index, FakeNodeClient(head=1000), max_result_window=4)
        candidates = discovery.discover(CONTRACT, 1)

        assert len(candidates) == 4
        assert len(index.calls) == 4


class TestFallbackSelection:

    def test_exhausted_retries_fall_back_to_log_scan(self, catalog):
        index = FakeIndexClient([TransientIndexError("502")] * 3)
        node = fallback_node()
        candidates = make_discovery(catalog, index, node, max_retries=3).discover(CONTRACT, 1)

        assert len(index.calls) == 3
        assert [c.tx_hash for c in candidates] == [tx_hash(101), tx_hash(102)]
        assert node.log_queries

    def test_malformed_payload_falls_back_without_retry(self, catalog):
        index = FakeIndexClient([MalformedPayloadError("result is str")])
        candidates = make_discovery(catalog, index, fallback_node()).discover(CONTRACT, 1)

        assert len(index.calls) == 1
        assert len(candidates) == 2

    def test_malformed_row_falls_back(self, catalog):
        index = FakeIndexClient([ok_page({'hash': '0x1', 'blockNumber': 'not-a-number'})])
        candidates = make_discovery(catalog, index, fallback_node()).discover(CONTRACT, 1)
        assert len(candidates) == 2

    def test_index_disabled(self, catalog):
        index = FakeIndexClient([ok_page(index_row(1, W1))])
        candidates = make_discovery(catalog, index, fallback_node(), use_index=False).discover(CONTRACT, 1)

        assert index.calls == []
        assert len(candidates) == 2

    def test_index_without_api_key_is_skipped(self, catalog):
        index = FakeIndexClient([ok_page(index_row(1, W1))])
        index.is_configured = False
        candidates = make_discovery(catalog, index, fallback_node()).discover(CONTRACT, 1)

        assert index.calls == []
        assert len(candidates) == 2

    def test_no_strategy_available(self, catalog):
        index = FakeIndexClient([TransientIndexError("down")] * 3)
        node = FakeNodeClient(head=ConnectionError("rpc down"))
        with pytest.raises(DiscoveryError):
            make_discovery(catalog, index, node).discover(CONTRACT, 1)


class TestLogScan:

    def test_window_boundaries(self, catalog):
        node = fallback_node()
        make_discovery(catalog, node=node, use_index=False).discover(CONTRACT, 1)
        assert node.log_queries == [(0, 2999), (3000, 5999), (6000, 8999), (9000, 9999)]

    def test_lookback_bounds_scan(self, catalog):
        node = fallback_node(head=100_000)
        make_discovery(catalog, node=node, use_index=False, window_size=50_000).discover(CONTRACT, 1)
        assert node.log_queries == [(56_800, 100_000)]

    def test_duplicate_logs_fetch_once(self, catalog):
        node = fallback_node(logs=[node_log(101, 500, log_index=0), node_log(101, 500, log_index=1)])
        candidates = make_discovery(catalog, node=node, use_index=False).discover(CONTRACT, 1)

        assert node.transaction_fetches == [tx_hash(101)]
        assert len(candidates) == 1

    def test_per_window_fetch_cap(self, catalog):
        logs = [node_log(n, 100 + n) for n in (1, 2, 3)]
        transactions = {tx_hash(n): node_tx(n, W1, block=100 + n) for n in (1, 2, 3)}
        node = fallback_node(logs=logs, transactions=transactions)
        candidates = make_discovery(catalog, node=node, use_index=False, max_txs_per_window=2).discover(CONTRACT, 1)

        assert node.transaction_fetches == [tx_hash(1), tx_hash(2)]
        assert len(candidates) == 2

    def test_filters_foreign_and_unknown_bodies(self, catalog):
        transactions = {
            tx_hash(101): node_tx(101, W1, BORROW, block=500, to=W3),
            tx_hash(102): node_tx(102, W2, UNKNOWN, block=7000),
        }
        candidates = make_discovery(
            catalog, node=fallback_node(transactions=transactions), use_index=False,
        ).discover(CONTRACT, 1)
        assert candidates == []

    def test_missing_transaction_body_skipped(self, catalog):
        transactions = {tx_hash(102): node_tx(102, W2, REPAY, block=7000)}
        candidates = make_discovery(
            catalog, node=fallback_node(transactions=transactions), use_index=False,
        ).discover(CONTRACT, 1)
        assert [c.tx_hash for c in candidates] == [tx_hash(102)]

    def test_failed_window_is_skipped(self, catalog):
        node = fallback_node(failing_windows={(0, 2999)})
        candidates = make_discovery(catalog, node=node, use_index=False).discover(CONTRACT, 1)

        assert [c.tx_hash for c in candidates] == [tx_hash(102)]
        assert len(node.log_queries) == 4

    def test_all_windows_failing_is_an_error(self, catalog):
        node = fallback_node(head=5999, failing_windows={(0, 2999), (3000, 5999)})
        with pytest.raises(DiscoveryError):
            make_discovery(catalog, node=node, use_index=False).discover(CONTRACT, 1)

    def test_progress_fraction_of_block_range(self, catalog):
        fractions = []
        make_discovery(catalog, node=fallback_node(), use_index=False).discover(
            CONTRACT, 1, progress_callback=lambda fraction, message: fractions.append(fraction))

        assert fractions == [0.3, 0.6, 0.9, 1.0, 1.0]

    def test_candidates_have_block_timestamps(self, catalog):
        candidates = make_discovery(catalog, node=fallback_node(), use_index=False).discover(CONTRACT, 1)
        assert candidates[0].timestamp.timestamp() == 1_700_000_000 + 500 * 2


class TestDeadline:

    def test_expired_deadline_raises_timeout(self, catalog):
        ticks = iter([0.0] + [100.0] * 50)
        deadline = Deadline(10, clock=lambda: next(ticks))
        with pytest.raises(ReconstructionTimeout):
            make_discovery(catalog, node=fallback_node(), use_index=False).discover(CONTRACT, 1, deadline=deadline)

    def test_timeout_is_not_swallowed_by_fallback(self, catalog):
        index = FakeIndexClient([ok_page(index_row(1, W1), index_row(2, W1))] * 5)
        node = fallback_node()
        ticks = iter([0.0, 1.0] + [100.0] * 50)
        deadline = Deadline(10, clock=lambda: next(ticks))
        with pytest.raises(ReconstructionTimeout):
            make_discovery(catalog, index, node).discover(CONTRACT, 1, deadline=deadline)
        assert node.log_queries == []
