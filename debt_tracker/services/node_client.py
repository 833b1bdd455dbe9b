"""
Node Client Module

Thin web3.py wrapper over the JSON-RPC calls the reconstruction engine
needs. Every return value is normalized to plain Python types (hex strings,
ints, lowercase addresses) so the engine never sees HexBytes or AttributeDicts.
"""

from functools import lru_cache
import logging
from typing import Dict, List, Optional

from eth_utils import to_checksum_address
from web3 import Web3

from ..config.lending_config import (
    CACHE_SIZES, ERC20_LIQUIDITY_ABI, REQUEST_TIMEOUT, RPC_URL,
)
from .debt_engine.models import normalize_address

logger = logging.getLogger(__name__)


def to_hex(value) -> str:
    """Convert bytes or hex string to 0x-prefixed hex string."""
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    elif isinstance(value, str):
        return value if value.startswith('0x') else '0x' + value
    elif isinstance(value, int):
        return hex(value)
    elif value is None:
        return '0x'
    return str(value)


class NodeClient:
    """
    JSON-RPC access to a Base node.
    Block timestamps and contract-code checks are cached per client.
    """

    def __init__(self, rpc_url: str = RPC_URL, timeout: float = REQUEST_TIMEOUT, w3: Optional[Web3] = None):
        self.rpc_url = rpc_url
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))
        logger.info(f"NodeClient using RPC endpoint: {rpc_url[:50]}")

    def get_block_number(self) -> int:
        return int(self.w3.eth.block_number)

    def get_logs(self, address: str, from_block: int, to_block: int) -> List[Dict]:
        """All logs emitted by `address` in [from_block, to_block]."""
        raw_logs = self.w3.eth.get_logs({
            'address': to_checksum_address(address),
            'fromBlock': from_block,
            'toBlock': to_block,
        })
        return [self._normalize_log(log) for log in raw_logs]

    def get_transaction(self, tx_hash: str) -> Optional[Dict]:
        tx = self.w3.eth.get_transaction(tx_hash)
        if tx is None:
            return None
        return {
            'hash': to_hex(tx.get('hash', tx_hash)),
            'from': normalize_address(tx.get('from')),
            'to': normalize_address(tx.get('to')),
            'input': to_hex(tx.get('input', b'')),
            'blockNumber': int(tx.get('blockNumber') or 0),
            'transactionIndex': int(tx.get('transactionIndex') or 0),
        }

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict]:
        receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        if receipt is None:
            return None
        status = receipt.get('status')
        return {
            'transactionHash': to_hex(receipt.get('transactionHash', tx_hash)),
            'status': None if status is None else int(status),
            'blockNumber': int(receipt.get('blockNumber') or 0),
            'logs': [self._normalize_log(log) for log in receipt.get('logs', [])],
        }

    @lru_cache(maxsize=CACHE_SIZES["block_timestamp"])
    def get_block_timestamp(self, block_number: int) -> int:
        block = self.w3.eth.get_block(block_number)
        return int(block['timestamp'])

    def call_erc20(self, token: str, function_name: str, *args) -> int:
        """Call a read-only ERC20 function (balanceOf / totalSupply)."""
        contract = self.w3.eth.contract(address=to_checksum_address(token), abi=ERC20_LIQUIDITY_ABI)
        call_args = [to_checksum_address(a) if isinstance(a, str) and a.startswith('0x') else a for a in args]
        return int(getattr(contract.functions, function_name)(*call_args).call())

    @lru_cache(maxsize=CACHE_SIZES["contract_code"])
    def is_contract(self, address: str) -> bool:
        code = self.w3.eth.get_code(to_checksum_address(address))
        return len(bytes(code)) > 0

    @staticmethod
    def _normalize_log(log) -> Dict:
        return {
            'address': normalize_address(log.get('address')),
            'topics': [to_hex(topic).lower() for topic in log.get('topics', [])],
            'data': to_hex(log.get('data', b'')),
            'transactionHash': to_hex(log.get('transactionHash')).lower(),
            'blockNumber': int(log.get('blockNumber') or 0),
            'transactionIndex': int(log.get('transactionIndex') or 0),
            'logIndex': int(log.get('logIndex') or 0),
        }
