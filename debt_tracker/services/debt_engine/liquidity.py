"""
Liquidity Resolver

One read of the settlement asset: balanceOf(pool) when a pool holder is
configured, totalSupply() otherwise. Any failure returns the documented
fallback constant tagged as such.
"""

import logging
from typing import Optional

from ...config.lending_config import FALLBACK_LIQUIDITY, LAUNCH_POOL_ADDRESS, SETTLEMENT_ASSET_ADDRESS
from .models import LiquidityReading, LiquiditySource

logger = logging.getLogger(__name__)


class LiquidityResolver:

    def __init__(
        self,
        node_client,
        token: str = SETTLEMENT_ASSET_ADDRESS,
        holder: Optional[str] = LAUNCH_POOL_ADDRESS,
        fallback: int = FALLBACK_LIQUIDITY,
    ):
        self.node_client = node_client
        self.token = token
        self.holder = holder
        self.fallback = fallback

    def total_liquidity(self) -> LiquidityReading:
        try:
            if self.holder:
                value = self.node_client.call_erc20(self.token, 'balanceOf', self.holder)
            else:
                value = self.node_client.call_erc20(self.token, 'totalSupply')
            value = int(value)
            if value < 0:
                raise ValueError(f"negative liquidity {value}")
        except Exception as e:
            logger.warning(f"Liquidity read failed, using fallback {self.fallback}: {e}")
            return LiquidityReading(value=self.fallback, source=LiquiditySource.FALLBACK)

        logger.info(f"Live liquidity: {value}")
        return LiquidityReading(value=value, source=LiquiditySource.LIVE)
