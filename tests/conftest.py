"""
Shared fixtures: in-memory stand-ins for the node and index API clients,
plus builders for call data, index rows and Transfer logs.
"""
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from debt_tracker.config.lending_config import TRANSFER_TOPIC
from debt_tracker.services.debt_engine.method_catalog import MethodCatalog
from debt_tracker.services.debt_engine.models import IndexPage, IndexStatus, normalize_address

CONTRACT = "0x" + "c" * 40
TOKEN = "0x" + "7" * 40
POOL = "0x" + "9" * 40
W1 = "0x" + "1" * 40
W2 = "0x" + "2" * 40
W3 = "0x" + "3" * 40

BORROW_TO_ETH = "0x7407572b"
BORROW = "0xa4b3bdfd"
REPAY = "0x59b34772"
UNKNOWN = "0xdeadbeef"


def make_input(selector: str, *words: int) -> str:
    return selector + "".join(f"{word:064x}" for word in words)


def address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def transfer_log(token: str, from_address: str, to_address: str, amount: int) -> dict:
    return {
        'address': token,
        'topics': [TRANSFER_TOPIC, address_topic(from_address), address_topic(to_address)],
        'data': f"0x{amount:064x}",
    }


def tx_hash(n: int) -> str:
    return f"0x{n:064x}"


def index_row(n, sender, selector=BORROW, block=100, to=CONTRACT, is_error="0",
              receipt_status="1", timestamp=1_700_000_000, amount=10 ** 18, position=0):
    return {
        'hash': tx_hash(n),
        'from': sender,
        'to': to,
        'input': make_input(selector, 0, amount),
        'blockNumber': str(block),
        'timeStamp': str(timestamp),
        'transactionIndex': str(position),
        'isError': is_error,
        'txreceipt_status': receipt_status,
    }


def ok_page(*rows) -> IndexPage:
    return IndexPage(status=IndexStatus.OK, transactions=tuple(rows))


EXHAUSTED = IndexPage(status=IndexStatus.EXHAUSTED)


class FakeIndexClient:
    """Replays a scripted list of pages or exceptions, then reports exhaustion."""

    is_configured = True

    def __init__(self, responses=()):
        self.responses = list(responses)
        self.calls = []

    def get_transactions_page(self, address, start_block=0, page=1, offset=200, **kwargs):
        self.calls.append({'address': address, 'start_block': start_block, 'page': page, 'offset': offset})
        if not self.responses:
            return EXHAUSTED
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeNodeClient:
    """Node backed by dictionaries; any value that is an Exception is raised."""

    def __init__(self, head=10_000, logs=(), transactions=None, receipts=None,
                 erc20=None, contracts=(), failing_windows=()):
        self.head = head
        self.logs = list(logs)
        self.transactions = transactions or {}
        self.receipts = receipts or {}
        self.erc20 = erc20 or {}
        self.contracts = {normalize_address(a) for a in contracts}
        self.failing_windows = set(failing_windows)
        self.log_queries = []
        self.transaction_fetches = []

    def get_block_number(self):
        if isinstance(self.head, Exception):
            raise self.head
        return self.head

    def get_logs(self, address, from_block, to_block):
        self.log_queries.append((from_block, to_block))
        if (from_block, to_block) in self.failing_windows:
            raise ConnectionError(f"window {from_block}-{to_block} failed")
        return [
            log for log in self.logs
            if from_block <= log['blockNumber'] <= to_block
            and normalize_address(log.get('address')) == normalize_address(address)
        ]

    def get_transaction(self, tx_hash):
        self.transaction_fetches.append(tx_hash)
        return self._lookup(self.transactions, tx_hash)

    def get_transaction_receipt(self, tx_hash):
        return self._lookup(self.receipts, tx_hash)

    def get_block_timestamp(self, block_number):
        return 1_700_000_000 + block_number * 2

    def call_erc20(self, token, function_name, *args):
        value = self.erc20.get(function_name)
        if value is None:
            raise ConnectionError("eth_call failed")
        if isinstance(value, Exception):
            raise value
        return value

    def is_contract(self, address):
        return normalize_address(address) in self.contracts

    @staticmethod
    def _lookup(table, key):
        value = table.get(key)
        if isinstance(value, Exception):
            raise value
        return value


def node_log(n: int, block: int, address: str = CONTRACT, log_index: int = 0) -> dict:
    return {'address': address, 'transactionHash': tx_hash(n), 'blockNumber': block, 'logIndex': log_index}


def node_tx(n: int, sender: str, selector: str = BORROW, block: int = 100, to: str = CONTRACT,
            amount: int = 10 ** 18, position: int = 0) -> dict:
    return {
        'hash': tx_hash(n),
        'from': sender,
        'to': to,
        'input': make_input(selector, 0, amount),
        'blockNumber': block,
        'transactionIndex': position,
    }


@pytest.fixture
def catalog():
    return MethodCatalog.from_config()
