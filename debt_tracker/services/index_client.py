"""
Index API client for Basescan (Etherscan v2 multichain endpoint)

Pages through "list transactions for address" results and maps every
response onto one of: data, exhausted, rate-limited, transient error,
or malformed payload.
"""

import json
import logging
import time
from typing import Optional

import requests

from ..config.lending_config import (
    BASE_CHAIN_ID, INDEX_API_KEY, INDEX_API_URL, INDEX_PAGE_SIZE,
    INDEX_RATE_LIMIT_DELAY, REQUEST_TIMEOUT,
)
from .debt_engine.errors import (
    IndexApiError, MalformedPayloadError, RateLimitedError, TransientIndexError,
)
from .debt_engine.models import IndexPage, IndexStatus

logger = logging.getLogger(__name__)

# Messages the index API uses for "nothing (more) to return"
EXHAUSTED_MESSAGES = ("no transactions found", "no records found")
RATE_LIMIT_MARKERS = ("rate limit", "too many requests")


class BasescanClient:
    """Client for the transaction index API (Etherscan v2, chainid=8453)"""

    def __init__(
        self,
        api_key: Optional[str] = INDEX_API_KEY,
        base_url: str = INDEX_API_URL,
        chain_id: int = BASE_CHAIN_ID,
        rate_limit_delay: float = INDEX_RATE_LIMIT_DELAY,
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or ""
        self.base_url = base_url
        self.chain_id = chain_id
        self.rate_limit_delay = rate_limit_delay
        self.timeout = timeout
        self.session = session or requests.Session()
        self.last_request_time = 0.0

        if self.api_key:
            masked_key = f"{self.api_key[:4]}...{self.api_key[-4:]}" if len(self.api_key) > 8 else "***"
            logger.info(f"BasescanClient initialized with API key: {masked_key}")
        else:
            logger.warning("BasescanClient initialized without API key! Set BASESCAN_API_KEY in .env")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _rate_limit(self):
        """Enforce rate limiting"""
        current_time = time.time()
        time_since_last = current_time - self.last_request_time
        if time_since_last < self.rate_limit_delay:
            time.sleep(self.rate_limit_delay - time_since_last)
        self.last_request_time = time.time()

    def get_transactions_page(
        self,
        address: str,
        start_block: int = 0,
        page: int = 1,
        offset: int = INDEX_PAGE_SIZE,
        end_block: int = 99999999,
        sort: str = "asc",
    ) -> IndexPage:
        """
        Fetch one page of transactions involving `address`.

        Returns:
            IndexPage with status OK (rows in .transactions) or EXHAUSTED

        Raises:
            RateLimitedError, TransientIndexError: retryable failures
            MalformedPayloadError: response had an unexpected shape
            IndexApiError: any other explicit API error (e.g. invalid key)
        """
        self._rate_limit()

        params = {
            'chainid': self.chain_id,
            'module': 'account',
            'action': 'txlist',
            'address': address,
            'startblock': start_block,
            'endblock': end_block,
            'page': page,
            'offset': offset,
            'sort': sort,
            'apikey': self.api_key,
        }
        logger.debug(f"Index request: page={page} offset={offset} startblock={start_block}")

        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransientIndexError(f"Network error talking to index API: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError("Index API rate limit (HTTP 429)", status_code=429)
        if response.status_code >= 500:
            raise TransientIndexError(f"Index API HTTP {response.status_code}", status_code=response.status_code)
        if response.status_code != 200:
            raise IndexApiError(f"Index API HTTP {response.status_code}: {response.text[:200]}",
                                status_code=response.status_code)

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise MalformedPayloadError(f"Index API response is not JSON: {response.text[:200]!r}") from e

        return self._parse_payload(data)

    def _parse_payload(self, data) -> IndexPage:
        """Map an index API JSON body onto an IndexPage or a typed error."""
        if not isinstance(data, dict):
            raise MalformedPayloadError(f"Index API returned {type(data).__name__}, expected object")

        status = str(data.get('status', ''))
        message = str(data.get('message', ''))
        result = data.get('result')

        if status == '1':
            if not isinstance(result, list):
                raise MalformedPayloadError(f"Index API result is {type(result).__name__}, expected list")
            if not all(isinstance(row, dict) for row in result):
                raise MalformedPayloadError("Index API result contains non-object rows")
            if not result:
                return IndexPage(status=IndexStatus.EXHAUSTED)
            return IndexPage(status=IndexStatus.OK, transactions=tuple(result))

        detail = f"{message} {result if isinstance(result, str) else ''}".strip().lower()

        if any(marker in detail for marker in EXHAUSTED_MESSAGES):
            return IndexPage(status=IndexStatus.EXHAUSTED)
        if status == '0' and isinstance(result, list) and not result:
            return IndexPage(status=IndexStatus.EXHAUSTED)
        if any(marker in detail for marker in RATE_LIMIT_MARKERS):
            raise RateLimitedError(f"Index API rate limit: {detail}")
        if status == '0':
            if 'invalid api key' in detail:
                logger.error("Invalid API key! Please check your BASESCAN_API_KEY in .env")
            raise IndexApiError(f"Index API error: {detail or 'unknown error'}")

        raise MalformedPayloadError(f"Index API returned unexpected status {status!r}")
