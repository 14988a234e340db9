"""
Price oracle over heterogeneous AMM venues.

Two quoting strategies share one capability and are selected by venue kind:

- ``ConstantProductQuoter`` (V2): reads reserves and applies the x*y=k
  formula locally in integer arithmetic.
- ``DelegatedQuoter`` (V3): forwards the swap to the venue's on-chain
  quoter and accepts its output verbatim.

Venues are probed only when the catalogue has a pool for them. "No
liquidity" (no pool, empty reserves, zero output, quoter revert) is
returned as ``None`` and logged at DEBUG.
"""

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Sequence

from .adapters.v2 import get_amount_out, normalized_price, orient_reserves
from .adapters.v3 import encode_v3_path, fee_tier_to_rate
from .config import EngineConfig
from .data_source import DataSource
from .exceptions import ConnectionExhaustedError, DataSourceError, QuoteError
from .types import Quote, Token, TradingPair, Venue
from .utils import bps_to_rate, call_with_timeout, get_logger, short_addr, to_raw_amount

logger = get_logger(__name__)


class Quoter(Protocol):
    """Single-hop quoting capability of one venue family."""

    async def amount_out(
        self,
        venue: Venue,
        pool: str,
        token_in: Token,
        token_out: Token,
        amount_in: int,
        fee_tier: Optional[int] = None,
    ) -> Optional[int]: ...

    def fee_rate(self, venue: Venue, fee_tier: Optional[int] = None) -> Decimal: ...


class ConstantProductQuoter:
    """Analytic quotes from V2 pool reserves."""

    def __init__(self, source: DataSource, timeout: float):
        self.source = source
        self.timeout = timeout

    async def amount_out(
        self,
        venue: Venue,
        pool: str,
        token_in: Token,
        token_out: Token,
        amount_in: int,
        fee_tier: Optional[int] = None,
    ) -> Optional[int]:
        reserve0, reserve1 = await call_with_timeout(
            self.source.get_reserves(pool), self.timeout, "getReserves"
        )
        reserve_in, reserve_out = orient_reserves(reserve0, reserve1, token_in, token_out)
        if reserve_in == 0 or reserve_out == 0:
            logger.debug(f"{venue.name} pool {short_addr(pool)} has empty reserves")
            return None

        out = get_amount_out(amount_in, reserve_in, reserve_out, venue.fee_bps)
        return out or None

    def fee_rate(self, venue: Venue, fee_tier: Optional[int] = None) -> Decimal:
        return bps_to_rate(venue.fee_bps)


class DelegatedQuoter:
    """Quotes delegated to a V3 quoter contract."""

    def __init__(self, source: DataSource, timeout: float):
        self.source = source
        self.timeout = timeout

    async def amount_out(
        self,
        venue: Venue,
        pool: str,
        token_in: Token,
        token_out: Token,
        amount_in: int,
        fee_tier: Optional[int] = None,
    ) -> Optional[int]:
        if fee_tier is None:
            raise QuoteError(f"{venue.name} quote requires a fee tier", venue=venue.name)
        try:
            out = await call_with_timeout(
                self.source.quote_single_hop(
                    venue.quoter, token_in.address, token_out.address, fee_tier, amount_in
                ),
                self.timeout,
                "quoteExactInputSingle",
            )
        except DataSourceError as e:
            # a revert here means the pool cannot fill the swap
            logger.debug(
                f"{venue.name}_{fee_tier} {token_in.symbol}->{token_out.symbol} no quote: {e}"
            )
            return None
        return out or None

    async def path_amount_out(
        self, venue: Venue, tokens: Sequence[Token], fees: Sequence[int], amount_in: int
    ) -> Optional[int]:
        """Quote a whole multi-hop route in one quoter call."""
        path = encode_v3_path([t.address for t in tokens], fees)
        try:
            out = await call_with_timeout(
                self.source.quote_multi_hop(venue.quoter, path, amount_in),
                self.timeout,
                "quoteExactInput",
            )
        except DataSourceError as e:
            route = "->".join(t.symbol for t in tokens)
            logger.debug(f"{venue.name} {route} no multi-hop quote: {e}")
            return None
        return out or None

    def fee_rate(self, venue: Venue, fee_tier: Optional[int] = None) -> Decimal:
        if fee_tier is None:
            return Decimal(0)
        return fee_tier_to_rate(fee_tier)


class PriceOracle:
    """
    Quote a trading pair on a venue.

    Args:
        source: Data source (usually a ``ManagedDataSource``)
        config: Engine configuration (venues, probe amounts, timeouts)
    """

    def __init__(self, source: DataSource, config: EngineConfig):
        self.config = config
        timeout = config.scan.call_timeout_sec
        self.constant_product = ConstantProductQuoter(source, timeout)
        self.delegated = DelegatedQuoter(source, timeout)
        self._quoters: Dict[str, Quoter] = {
            "v2": self.constant_product,
            "v3": self.delegated,
        }

    def quoter_for(self, venue: Venue) -> Quoter:
        return self._quoters[venue.kind]

    def probe_raw_amount(self, token: Token) -> int:
        return to_raw_amount(self.config.probe_amount(token), token.decimals)

    @staticmethod
    def pool_for(pair: TradingPair, venue: Venue, fee_tier: Optional[int]) -> Optional[str]:
        if venue.kind == "v2":
            return pair.v2_pools.get(venue.name)
        tiers = pair.v3_pools.get(venue.name) or {}
        return tiers.get(fee_tier) if fee_tier is not None else None

    async def quote(
        self,
        pair: TradingPair,
        venue: Venue,
        amount_in: Optional[int] = None,
        fee_tier: Optional[int] = None,
    ) -> Optional[Quote]:
        """
        Quote selling ``amount_in`` (raw) of ``pair.token_a`` for ``pair.token_b``.

        Returns:
            A valid Quote, or None when the venue has no pool or no liquidity
        """
        pool = self.pool_for(pair, venue, fee_tier)
        if pool is None:
            return None
        if amount_in is None:
            amount_in = self.probe_raw_amount(pair.token_a)

        quoter = self.quoter_for(venue)
        out = await quoter.amount_out(
            venue, pool, pair.token_a, pair.token_b, amount_in, fee_tier
        )
        if not out:
            return None

        price = normalized_price(
            amount_in, out, pair.token_a.decimals, pair.token_b.decimals
        )
        quote = Quote(
            venue=venue.name,
            kind=venue.kind,
            price=price,
            amount_in=amount_in,
            amount_out=out,
            fee_rate=quoter.fee_rate(venue, fee_tier),
            fee_tier=fee_tier,
        )
        if not quote.is_valid:
            return None
        logger.debug(f"{pair.label} {quote.label}: {price:.6f}")
        return quote

    async def quotes_for_pair(self, pair: TradingPair) -> List[Quote]:
        """
        Quote every configured venue (and every V3 fee tier) for a pair.

        A venue that fails is logged and skipped. Results keep catalogue order.
        """
        targets = []
        for venue_name in pair.v2_pools:
            targets.append((self.config.venue(venue_name), None))
        for venue_name, tiers in pair.v3_pools.items():
            venue = self.config.venue(venue_name)
            for tier in tiers:
                targets.append((venue, tier))

        amount_in = self.probe_raw_amount(pair.token_a)
        results = await asyncio.gather(
            *(self.quote(pair, venue, amount_in, tier) for venue, tier in targets),
            return_exceptions=True,
        )

        quotes = []
        for (venue, tier), result in zip(targets, results):
            if isinstance(result, (ConnectionExhaustedError, asyncio.CancelledError)):
                raise result
            if isinstance(result, BaseException):
                label = venue.name if tier is None else f"{venue.name}_{tier}"
                logger.warning(f"{pair.label} quote on {label} failed: {result}")
                continue
            if result is not None:
                quotes.append(result)
        return quotes
