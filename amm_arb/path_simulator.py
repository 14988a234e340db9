"""
Multi-hop path simulation for triangular cycles.

A cycle A->B->C is evaluated as a forward leg A->B->C producing
``amount_out`` of C, then a reverse leg C->B->A fed with that raw amount,
producing ``amount_back`` of A.
"""

from typing import Optional, Sequence, Tuple

from .config import EngineConfig
from .oracle import PriceOracle
from .types import CycleResult, Token, TriangularPath, Venue
from .utils import get_logger

logger = get_logger(__name__)


class PathSimulator:
    """
    Simulate closed cycles on a single venue.

    V2 venues are quoted hop by hop through the path's pools. V3 venues use
    one delegated multi-hop quote per leg with a single fixed fee tier for
    every hop (``scan.triangular_fee_tier``); no tier search happens here.
    """

    def __init__(self, oracle: PriceOracle, config: EngineConfig):
        self.oracle = oracle
        self.config = config

    @property
    def fee_tier(self) -> int:
        return self.config.scan.triangular_fee_tier

    async def simulate_cycle(
        self,
        path: TriangularPath,
        venue: Venue,
        amount_in: Optional[int] = None,
    ) -> Optional[CycleResult]:
        """
        Run the forward and reverse legs of ``path`` on ``venue``.

        Args:
            path: The 3-token cycle
            venue: Venue to simulate on; must have every hop pool
            amount_in: Raw input of the first token (defaults to its probe amount)

        Returns:
            CycleResult, or None when any hop yields nothing (incomplete cycle)
        """
        hops = path.hop_pools.get(venue.name)
        if hops is None:
            return None
        if amount_in is None:
            amount_in = self.oracle.probe_raw_amount(path.tokens[0])

        forward = list(path.tokens)
        reverse = forward[::-1]

        if venue.kind == "v2":
            amount_out = await self._v2_leg(venue, forward, hops, amount_in)
            if amount_out is None:
                logger.debug(f"{path.label} on {venue.name}: forward leg incomplete")
                return None
            amount_back = await self._v2_leg(venue, reverse, hops[::-1], amount_out)
            fee_tier = None
        else:
            fees = [self.fee_tier] * (len(forward) - 1)
            amount_out = await self.oracle.delegated.path_amount_out(
                venue, forward, fees, amount_in
            )
            if amount_out is None:
                logger.debug(f"{path.label} on {venue.name}: forward leg incomplete")
                return None
            amount_back = await self.oracle.delegated.path_amount_out(
                venue, reverse, fees, amount_out
            )
            fee_tier = self.fee_tier

        if amount_back is None:
            logger.debug(f"{path.label} on {venue.name}: reverse leg incomplete")
            return None

        return CycleResult(
            venue=venue.name,
            amount_in=amount_in,
            amount_out=amount_out,
            amount_back=amount_back,
            fee_tier=fee_tier,
        )

    async def _v2_leg(
        self,
        venue: Venue,
        tokens: Sequence[Token],
        pools: Tuple[str, ...],
        amount_in: int,
    ) -> Optional[int]:
        amount = amount_in
        quoter = self.oracle.constant_product
        for token_in, token_out, pool in zip(tokens, tokens[1:], pools):
            amount = await quoter.amount_out(venue, pool, token_in, token_out, amount)
            if not amount:
                return None
        return amount
