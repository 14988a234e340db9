"""
Opportunity scanner: sweeps the pair and path catalogue once per call.

Per scan the reference price is refreshed and the block marker read once,
so every opportunity of the scan shares the same provenance. Catalogue
entries are evaluated concurrently (bounded by ``scan.max_concurrency``);
an entry that raises is logged and contributes nothing. Only
``ConnectionExhaustedError`` escapes a scan.

Overlap policy: a call to ``scan()`` while another scan is running raises
``ScanInProgressError`` immediately.
"""

import asyncio
import time
from collections import Counter
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .adapters.v3 import fee_tier_to_rate
from .config import EngineConfig
from .data_source import DataSource
from .events import OpportunityBus
from .exceptions import ConnectionExhaustedError, ScanInProgressError
from .opportunity_math import ProfitabilityCalculator, ProfitBreakdown
from .oracle import PriceOracle
from .path_simulator import PathSimulator
from .reference_price import ReferencePriceFeed
from .types import (
    Opportunity,
    OpportunityKind,
    Quote,
    Token,
    TradingPair,
    TriangularPath,
    Venue,
)
from .utils import bps_to_rate, call_with_timeout, format_duration, from_raw_amount, get_logger

logger = get_logger(__name__)


class ScannerState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class OpportunityScanner:
    """
    Drives the oracle, simulator and calculator over the catalogue.

    Args:
        config: Engine configuration holding the catalogue
        source: Data source used for the block marker
        oracle: Price oracle
        simulator: Multi-hop path simulator
        calculator: Profitability calculator
        reference_feed: Optional reference price feed, refreshed once per scan
        bus: Optional event bus; each opportunity is published as it is found
        metrics: Optional ScannerMetrics
    """

    def __init__(
        self,
        config: EngineConfig,
        source: DataSource,
        oracle: PriceOracle,
        simulator: PathSimulator,
        calculator: ProfitabilityCalculator,
        reference_feed: Optional[ReferencePriceFeed] = None,
        bus: Optional[OpportunityBus] = None,
        metrics: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.source = source
        self.oracle = oracle
        self.simulator = simulator
        self.calculator = calculator
        self.reference_feed = reference_feed
        self.bus = bus
        self.metrics = metrics
        self._clock = clock

        self._state = ScannerState.IDLE
        self._cancel_requested = False
        self.scan_count = 0
        self.last_block: Optional[int] = None

    @property
    def state(self) -> ScannerState:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._state is ScannerState.SCANNING

    def cancel(self) -> None:
        """Stop starting new entries; in-flight ones finish."""
        if self.is_scanning:
            self._cancel_requested = True

    async def scan(self) -> List[Opportunity]:
        """
        Evaluate the whole catalogue once.

        Returns:
            Opportunities ranked by net profit (descending, ties in catalogue order)

        Raises:
            ScanInProgressError: If a scan is already running
            ConnectionExhaustedError: If the data source reached FAILED
        """
        if self.is_scanning:
            raise ScanInProgressError("A scan is already in progress")

        self._state = ScannerState.SCANNING
        self._cancel_requested = False
        started = self._clock()
        try:
            return await self._run(started)
        finally:
            self._state = ScannerState.IDLE

    async def _run(self, started: float) -> List[Opportunity]:
        await self._refresh_reference()
        block = await self._read_block_marker()
        self.last_block = block

        semaphore = asyncio.Semaphore(self.config.scan.max_concurrency)
        entries: List[Tuple[str, Any]] = [("pair", p) for p in self.config.pairs]
        entries += [("path", p) for p in self.config.paths]

        results = await asyncio.gather(
            *(
                self._guarded(semaphore, entry_type, entry, block, started)
                for entry_type, entry in entries
            ),
            return_exceptions=True,
        )

        found: List[Opportunity] = []
        for result in results:
            if isinstance(result, BaseException):
                raise result
            found.extend(result)

        # stable sort keeps catalogue order for equal net profit
        ranked = sorted(found, key=lambda o: o.net_profit, reverse=True)

        cancelled = self._cancel_requested
        self.scan_count += 1
        duration = self._clock() - started
        logger.info(
            f"Scan #{self.scan_count} {'cancelled' if cancelled else 'done'} "
            f"in {format_duration(duration)}: {len(ranked)} opportunities "
            f"(block {block})"
        )
        if self.metrics is not None:
            self.metrics.record_scan(duration, ranked, block, cancelled=cancelled)
        return ranked

    async def _refresh_reference(self) -> None:
        if self.reference_feed is None:
            return
        try:
            await self.reference_feed.refresh()
        except ConnectionExhaustedError:
            raise
        except Exception as e:
            logger.warning(f"Reference price refresh failed, scanning without it: {e}")

    async def _read_block_marker(self) -> Optional[int]:
        try:
            return await call_with_timeout(
                self.source.get_block_marker(),
                self.config.scan.call_timeout_sec,
                "blockNumber",
            )
        except ConnectionExhaustedError:
            raise
        except Exception as e:
            logger.warning(f"Block marker unavailable, scanning without it: {e}")
            return None

    async def _guarded(
        self,
        semaphore: asyncio.Semaphore,
        entry_type: str,
        entry: Any,
        block: Optional[int],
        started: float,
    ) -> List[Opportunity]:
        async with semaphore:
            if self._cancel_requested:
                return []
            try:
                if entry_type == "pair":
                    found = await self.evaluate_pair(entry)
                else:
                    found = await self.evaluate_path(entry)
            except ConnectionExhaustedError:
                raise
            except Exception as e:
                logger.error(f"{entry_type} {entry.label} evaluation failed: {e}")
                if self.metrics is not None:
                    self.metrics.record_entry_failure(entry_type)
                return []

        stamped = [opp.with_provenance(block, started) for opp in found]
        for opp in stamped:
            logger.info(
                f"{opp.kind.value} {opp.pair}: net {opp.net_profit:.8f} "
                f"{self.config.settlement_token.symbol}"
            )
            if self.bus is not None:
                self.bus.publish(opp)
        return stamped

    # Pairs

    async def evaluate_pair(self, pair: TradingPair) -> List[Opportunity]:
        """Evaluate every enabled cross-venue comparison for one pair."""
        kinds = self.config.scan.kinds
        quotes = await self.oracle.quotes_for_pair(pair)
        v2 = [q for q in quotes if q.kind == "v2"]
        v3 = [q for q in quotes if q.kind == "v3"]

        found = []
        if OpportunityKind.V2_SIMPLE in kinds and len(v2) >= 2:
            opp = await self._evaluate_simple(OpportunityKind.V2_SIMPLE, pair, v2, v2)
            if opp is not None:
                found.append(opp)
        if OpportunityKind.V3_SIMPLE in kinds and len(v3) >= 2:
            opp = await self._evaluate_simple(OpportunityKind.V3_SIMPLE, pair, v3, v3)
            if opp is not None:
                found.append(opp)
        if OpportunityKind.V2_V3_CROSS in kinds and v2 and v3:
            opp = await self._evaluate_cross(pair, v2, v3)
            if opp is not None:
                found.append(opp)
        return found

    async def _evaluate_simple(
        self,
        kind: OpportunityKind,
        pair: TradingPair,
        buy_side: Sequence[Quote],
        sell_side: Sequence[Quote],
    ) -> Optional[Opportunity]:
        buy = min(buy_side, key=lambda q: q.price)
        sell = max(sell_side, key=lambda q: q.price)
        if not sell.price > buy.price:
            return None

        input_amount = self.config.probe_amount(pair.token_a)
        fee_rate = (buy.fee_rate + sell.fee_rate) / 2
        breakdown = await self.calculator.simple(
            buy.price, sell.price, input_amount, fee_rate, self.config.scan.gas_units_for(kind)
        )
        if breakdown is None:
            return None
        return self._simple_opportunity(kind, pair, buy, sell, breakdown)

    async def _evaluate_cross(
        self, pair: TradingPair, v2: Sequence[Quote], v3: Sequence[Quote]
    ) -> Optional[Opportunity]:
        # cheapest of one family against the dearest of the other, widest spread wins
        candidates = [
            (min(v2, key=lambda q: q.price), max(v3, key=lambda q: q.price)),
            (min(v3, key=lambda q: q.price), max(v2, key=lambda q: q.price)),
        ]
        buy, sell = max(candidates, key=lambda c: c[1].price / c[0].price)
        return await self._evaluate_simple(OpportunityKind.V2_V3_CROSS, pair, [buy], [sell])

    def _simple_opportunity(
        self,
        kind: OpportunityKind,
        pair: TradingPair,
        buy: Quote,
        sell: Quote,
        bd: ProfitBreakdown,
    ) -> Opportunity:
        return Opportunity(
            kind=kind,
            pair=pair.label,
            input_amount=bd.input_amount,
            gross_profit=bd.gross,
            fee_cost=bd.fee_cost,
            gas_cost=bd.gas_cost,
            safety_cost=bd.safety_cost,
            net_profit=bd.net,
            net_profit_quote=bd.net_quote,
            gas_price_wei=bd.gas_price_wei,
            gas_units=bd.gas_units,
            buy_venue=buy.label,
            buy_price=buy.price,
            sell_venue=sell.label,
            sell_price=sell.price,
            fee_tiers=(buy.fee_tier or 0, sell.fee_tier or 0),
        )

    # Paths

    def _triangular_kind(self, venue: Venue) -> OpportunityKind:
        if venue.kind == "v2":
            return OpportunityKind.V2_TRIANGULAR
        return OpportunityKind.V3_TRIANGULAR

    def _cycle_fee_rate(self, venue: Venue) -> Decimal:
        if venue.kind == "v2":
            return bps_to_rate(venue.fee_bps)
        return fee_tier_to_rate(self.simulator.fee_tier)

    async def evaluate_path(self, path: TriangularPath) -> List[Opportunity]:
        """
        Simulate the cycle on every venue with all hop pools and keep the best.

        Returns:
            A list with at most one opportunity (the highest net profit)
        """
        best: Optional[Opportunity] = None
        start = path.tokens[0]
        for venue_name in path.hop_pools:
            venue = self.config.venue(venue_name)
            kind = self._triangular_kind(venue)
            if kind not in self.config.scan.kinds:
                continue
            try:
                opp = await self._evaluate_cycle(path, venue, kind, start)
            except ConnectionExhaustedError:
                raise
            except Exception as e:
                logger.warning(f"{path.label} on {venue.name} failed: {e}")
                continue
            if opp is not None and (best is None or opp.net_profit > best.net_profit):
                best = opp
        return [best] if best is not None else []

    async def _evaluate_cycle(
        self, path: TriangularPath, venue: Venue, kind: OpportunityKind, start: Token
    ) -> Optional[Opportunity]:
        cycle = await self.simulator.simulate_cycle(path, venue)
        if cycle is None:
            return None

        input_amount = from_raw_amount(cycle.amount_in, start.decimals)
        amount_back = from_raw_amount(cycle.amount_back, start.decimals)
        bd = await self.calculator.triangular(
            amount_back,
            input_amount,
            self._cycle_fee_rate(venue),
            self.config.scan.gas_units_for(kind),
        )
        if bd is None:
            return None

        tiers = (cycle.fee_tier, cycle.fee_tier) if cycle.fee_tier is not None else ()
        label = venue.name if cycle.fee_tier is None else f"{venue.name}_{cycle.fee_tier}"
        return Opportunity(
            kind=kind,
            pair=path.label,
            input_amount=bd.input_amount,
            gross_profit=bd.gross,
            fee_cost=bd.fee_cost,
            gas_cost=bd.gas_cost,
            safety_cost=bd.safety_cost,
            net_profit=bd.net,
            net_profit_quote=bd.net_quote,
            gas_price_wei=bd.gas_price_wei,
            gas_units=bd.gas_units,
            cycle_venue=label,
            path=path.symbols,
            fee_tiers=tiers,
            amount_out=cycle.amount_out,
            amount_back=amount_back,
        )


def create_scanner(
    config: EngineConfig,
    source: DataSource,
    bus: Optional[OpportunityBus] = None,
    metrics: Optional[Any] = None,
    reference_feed: Optional[ReferencePriceFeed] = None,
) -> OpportunityScanner:
    """Wire oracle, simulator and calculator over one data source."""
    oracle = PriceOracle(source, config)
    simulator = PathSimulator(oracle, config)
    calculator = ProfitabilityCalculator(
        gas_price_fn=source.get_gas_price,
        safety_rate=config.scan.safety_margin_rate,
        reference_price_fn=(lambda: reference_feed.price) if reference_feed else None,
        timeout=config.scan.call_timeout_sec,
    )
    return OpportunityScanner(
        config,
        source,
        oracle,
        simulator,
        calculator,
        reference_feed=reference_feed,
        bus=bus,
        metrics=metrics,
    )


def summarize(opportunities: Sequence[Opportunity]) -> Dict[str, Any]:
    """Aggregate statistics over a list of opportunities."""
    total = len(opportunities)
    by_kind = Counter(opp.kind.value for opp in opportunities)
    net = sum((opp.net_profit for opp in opportunities), Decimal(0))
    quoted = [opp.net_profit_quote for opp in opportunities if opp.net_profit_quote is not None]
    net_quote = sum(quoted, Decimal(0))

    return {
        "total_opportunities": total,
        "by_kind": dict(by_kind),
        "triangular": sum(1 for opp in opportunities if opp.is_triangular),
        "total_net_profit": net,
        "average_net_profit": net / total if total else Decimal(0),
        "total_net_profit_quote": net_quote,
        "average_net_profit_quote": net_quote / len(quoted) if quoted else Decimal(0),
        "best": (
            max(opportunities, key=lambda o: o.net_profit).to_dict() if opportunities else None
        ),
    }
