"""
Lending Configuration Module

Contains all chain, contract and policy constants used by the
outstanding-debt reconstruction engine on Base mainnet.

Values that differ between deployments can be overridden through the
environment (a local .env file is loaded automatically).
"""

import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Node RPC Configuration
# Ankr is preferred for log scans (better rate limits than the public endpoint)
BASE_PUBLIC_RPC_URL = "https://mainnet.base.org"
RPC_URL = os.getenv("ANKR_API_URL") or os.getenv("BASE_RPC_URL") or BASE_PUBLIC_RPC_URL

# Index API Configuration (Etherscan v2 multichain endpoint, Base = chain 8453)
INDEX_API_URL = os.getenv("INDEX_API_URL", "https://api.etherscan.io/v2/api")
INDEX_API_KEY = os.getenv("BASESCAN_API_KEY") or os.getenv("ETHERSCAN_API_KEY", "")
BASE_CHAIN_ID = 8453
USE_INDEX_API = _env_flag("DISCOVERY_USE_INDEX", True)

# Contract Addresses
ITOKEN_MANAGER_ADDRESS = os.getenv("ITOKEN_MANAGER_ADDRESS", "0x6aeac03a15f0ed64df5f193c9d6b80e8c856c61c")
MAV_TOKEN_ADDRESS = os.getenv("MAV_TOKEN_ADDRESS", "0x64b88c73A5DfA78D1713fE1b4c69a22d7E0faAa7")
LAUNCH_POOL_ADDRESS = os.getenv("LAUNCH_POOL_ADDRESS", "0x61746280aad2d26214905efa69971c7a969ee57d")
MAIN_CONTRACT_ADDRESS = "0xb7F5cC780B9e391e618323023A392935F44AeACE"

# Target contract whose calls are reconstructed, and the asset it settles in
TARGET_CONTRACT_ADDRESS = ITOKEN_MANAGER_ADDRESS
SETTLEMENT_ASSET_ADDRESS = MAV_TOKEN_ADDRESS
SETTLEMENT_ASSET_DECIMALS = 18
SETTLEMENT_ASSET_SYMBOL = "MAV"

# Protocol addresses that are never reported as borrowers
PROTOCOL_ADDRESSES = {
    ITOKEN_MANAGER_ADDRESS,
    MAIN_CONTRACT_ADDRESS,
    LAUNCH_POOL_ADDRESS,
}

# Event Topic0 Hashes
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# Tracked lending methods: (selector, signature, amount word index, sign)
# All three encode amounts in base units of the settlement asset.
DEFAULT_METHOD_SPECS = [
    ("0x7407572b", "borrowQuoteToEth(address,uint128,uint128)", 1, "increase"),
    ("0xa4b3bdfd", "borrowQuote(uint128,uint128)", 1, "increase"),
    ("0x59b34772", "redeemTokenCollateralWithEth(address,uint128,uint128)", 1, "decrease"),
]

# ERC20 ABI fragments used for the liquidity read
ERC20_LIQUIDITY_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "totalSupply",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]

# Block Time / Lookback Configuration
BLOCK_TIME_SECONDS = 2
SECONDS_PER_DAY = 24 * 60 * 60
DEFAULT_LOOKBACK_DAYS = 3
FULL_HISTORY_LOOKBACK_DAYS = 400  # reaches back past contract deployment

# Discovery Configuration
INDEX_PAGE_SIZE = 200
MAX_RESULT_WINDOW = 10000  # index API rejects page * offset beyond this
LOG_CHUNK_SIZE = 3000  # max block range for Ankr freemium eth_getLogs
MAX_TXS_PER_WINDOW = 50
WINDOW_DELAY = 0.1  # seconds between fallback windows
MAX_RETRIES = 3
RETRY_DELAY = 0.5  # seconds, doubled on every attempt
INDEX_RATE_LIMIT_DELAY = 0.2  # 5 requests per second max

# Resolution / Pipeline Configuration
MAX_WORKERS = 5
REQUEST_TIMEOUT = 30  # seconds, per HTTP call
REQUEST_TIMEOUT_SECONDS = 180  # whole reconstruction run
SKIP_CONTRACT_WALLETS = _env_flag("SKIP_CONTRACT_WALLETS", True)

# Reporting Policy
UNIT_SCALE = 10 ** SETTLEMENT_ASSET_DECIMALS
DUST_THRESHOLD = UNIT_SCALE  # one whole unit of the settlement asset
TOP_N = 10
PERCENT_DECIMALS = 2
SMALL_PERCENT_DISPLAY = Decimal("0.01")

# Used as the percentage denominator when the live liquidity read fails
FALLBACK_LIQUIDITY = 1_000_000 * UNIT_SCALE

# Cache Configuration
CACHE_SIZES = {
    "block_timestamp": 1024,
    "contract_code": 512,
}
