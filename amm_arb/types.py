"""
Core data types for AMM opportunity detection.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

VenueKind = Literal["v2", "v3"]


class OpportunityKind(str, Enum):
    """Kinds of opportunity the scanner can emit."""

    V2_SIMPLE = "V2_SIMPLE"
    V3_SIMPLE = "V3_SIMPLE"
    V2_V3_CROSS = "V2_V3_CROSS"
    V2_TRIANGULAR = "V2_TRIANGULAR"
    V3_TRIANGULAR = "V3_TRIANGULAR"

    @property
    def is_triangular(self) -> bool:
        return self in (OpportunityKind.V2_TRIANGULAR, OpportunityKind.V3_TRIANGULAR)


class ConnectionState(str, Enum):
    """Lifecycle states of the data-source connection."""

    CONNECTING = "connecting"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class Token:
    """
    An ERC-20 token from the static catalogue.

    Attributes:
        symbol: Token symbol (e.g., "WETH")
        address: Checksum address
        decimals: Decimal precision of the on-chain amount
        probe_amount: Human amount used as quote input when this token is sold
    """

    symbol: str
    address: str
    decimals: int
    probe_amount: Optional[Decimal] = None

    def sorts_before(self, other: "Token") -> bool:
        """V2/V3 pools order their tokens by address."""
        return self.address.lower() < other.address.lower()


@dataclass(frozen=True)
class Venue:
    """
    An AMM venue.

    Attributes:
        name: Venue name (e.g., "UniswapV2")
        kind: "v2" for constant-product, "v3" for fee-tiered pools
        fee_bps: Swap fee for V2 venues in basis points (30 = 0.3%)
        factory: Factory contract, used for pool discovery
        quoter: Quoter contract, required for V3 venues
    """

    name: str
    kind: VenueKind
    fee_bps: int = 30
    factory: Optional[str] = None
    quoter: Optional[str] = None


@dataclass(frozen=True)
class TradingPair:
    """
    A token pair with its pool ids per venue.

    ``v2_pools`` maps venue name -> pool address. ``v3_pools`` maps venue
    name -> {fee tier -> pool address}. A venue missing from both simply
    has no pool for the pair.
    """

    token_a: Token
    token_b: Token
    v2_pools: Mapping[str, str] = field(default_factory=dict)
    v3_pools: Mapping[str, Mapping[int, str]] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.token_a.symbol}/{self.token_b.symbol}"


@dataclass(frozen=True)
class TriangularPath:
    """
    An ordered 3-token cycle with the pool id of each forward hop per venue.

    ``hop_pools`` maps venue name -> (pool A->B, pool B->C).
    """

    tokens: Tuple[Token, Token, Token]
    hop_pools: Mapping[str, Tuple[str, str]] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return "->".join(t.symbol for t in self.tokens)

    @property
    def symbols(self) -> Tuple[str, ...]:
        return tuple(t.symbol for t in self.tokens)


@dataclass(frozen=True)
class Quote:
    """
    A single venue's quote for selling ``amount_in`` of the pair's first token.

    Attributes:
        venue: Venue name
        kind: Venue kind ("v2" or "v3")
        price: Output per input, normalised by token decimals
        amount_in: Raw input amount
        amount_out: Raw output amount
        fee_rate: Swap fee rate charged by the pool
        fee_tier: V3 fee tier (e.g., 3000) or None
    """

    venue: str
    kind: VenueKind
    price: Decimal
    amount_in: int
    amount_out: int
    fee_rate: Decimal
    fee_tier: Optional[int] = None

    @property
    def label(self) -> str:
        if self.fee_tier is None:
            return self.venue
        return f"{self.venue}_{self.fee_tier}"

    @property
    def is_valid(self) -> bool:
        return self.price > 0 and self.amount_out > 0


@dataclass(frozen=True)
class CycleResult:
    """Outcome of a forward + reverse simulation along a path."""

    venue: str
    amount_in: int
    amount_out: int
    amount_back: int
    fee_tier: Optional[int] = None


@dataclass(frozen=True)
class Opportunity:
    """
    A detected, net-profitable opportunity.

    Profit figures are in native (settlement asset) units. ``net_profit_quote``
    is the quote-currency value, None when no reference price is known.
    """

    kind: OpportunityKind
    pair: str
    input_amount: Decimal
    gross_profit: Decimal
    fee_cost: Decimal
    gas_cost: Decimal
    safety_cost: Decimal
    net_profit: Decimal
    net_profit_quote: Optional[Decimal]
    gas_price_wei: int
    gas_units: int
    buy_venue: str = ""
    buy_price: Decimal = Decimal(0)
    sell_venue: str = ""
    sell_price: Decimal = Decimal(0)
    cycle_venue: str = ""
    path: Tuple[str, ...] = ()
    fee_tiers: Tuple[int, ...] = ()
    amount_out: Optional[int] = None
    amount_back: Optional[Decimal] = None
    block_number: Optional[int] = None
    timestamp: float = 0.0

    @property
    def is_triangular(self) -> bool:
        return self.kind.is_triangular

    def with_provenance(self, block_number: Optional[int], timestamp: float) -> "Opportunity":
        """Return a copy stamped with the scan's block marker and time."""
        return replace(self, block_number=block_number, timestamp=timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Shape handed to the external opportunity store."""
        fee1 = self.fee_tiers[0] if len(self.fee_tiers) > 0 else 0
        fee2 = self.fee_tiers[1] if len(self.fee_tiers) > 1 else 0
        return {
            "type": self.kind.value,
            "pair": self.pair,
            "dex1": self.buy_venue or self.cycle_venue,
            "dex1_price": float(self.buy_price),
            "dex2": self.sell_venue,
            "dex2_price": float(self.sell_price),
            "is_triangular": self.is_triangular,
            "triangular_path": list(self.path),
            "triangular_dex": self.cycle_venue,
            "gross_profit": str(self.gross_profit),
            "fee_cost": str(self.fee_cost),
            "gas_cost": str(self.gas_cost),
            "safety_cost": str(self.safety_cost),
            "profit_native": str(self.net_profit),
            "profit_quote": (
                str(self.net_profit_quote) if self.net_profit_quote is not None else None
            ),
            "gas_estimate": self.gas_units,
            "gas_price": str(self.gas_price_wei),
            "fee1": fee1,
            "fee2": fee2,
            "input_amount": str(self.input_amount),
            "output_amount": str(self.amount_out) if self.amount_out is not None else "0",
            "amount_back": str(self.amount_back) if self.amount_back is not None else "0",
            "block_number": self.block_number,
            "timestamp": self.timestamp,
        }
