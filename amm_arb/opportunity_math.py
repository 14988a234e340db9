"""
Single source of truth for opportunity profitability.

All profit calculations use Decimal with 50 digits of precision. Amounts
are in native (settlement asset) units; gas cost is converted from wei.

    net = gross - input*fee_rate*hops - gas_price*gas_units/1e18 - input*safety_rate

An opportunity exists iff ``net > 0``.
"""

from dataclasses import dataclass
from decimal import Decimal, getcontext
from typing import Awaitable, Callable, Optional

from .utils import call_with_timeout, get_logger

# Set high precision for all decimal operations
getcontext().prec = 50

logger = get_logger(__name__)

WEI_PER_NATIVE = Decimal(10) ** 18
SIMPLE_HOPS = 2
TRIANGULAR_HOPS = 3


@dataclass(frozen=True)
class ProfitBreakdown:
    """Complete cost breakdown of one evaluation, in native units."""

    input_amount: Decimal
    gross: Decimal
    fee_cost: Decimal
    gas_cost: Decimal
    safety_cost: Decimal
    net: Decimal
    net_quote: Optional[Decimal]
    gas_price_wei: int
    gas_units: int
    hop_count: int

    @property
    def is_profitable(self) -> bool:
        return self.net > 0

    @property
    def net_pct(self) -> Decimal:
        if self.input_amount <= 0:
            return Decimal(0)
        return self.net / self.input_amount * Decimal(100)

    def format_log(self) -> str:
        quote = f" (${self.net_quote:.2f})" if self.net_quote is not None else ""
        return (
            f"Net {self.net:.8f}{quote} = Gross {self.gross:.8f} - "
            f"Fees {self.fee_cost:.8f} - Gas {self.gas_cost:.8f} - "
            f"Safety {self.safety_cost:.8f}"
        )


def gas_cost_native(gas_price_wei: int, gas_units: int) -> Decimal:
    """Gas cost in native units (gas price is in wei)."""
    return Decimal(gas_price_wei) * Decimal(gas_units) / WEI_PER_NATIVE


def compute_breakdown(
    gross: Decimal,
    input_amount: Decimal,
    fee_rate: Decimal,
    hop_count: int,
    gas_price_wei: int,
    gas_units: int,
    safety_rate: Decimal,
    reference_price: Optional[Decimal] = None,
) -> ProfitBreakdown:
    """
    Compute the cost breakdown and net profit of an evaluation.

    This is the only function that computes net profit.

    Args:
        gross: Gross profit in native units
        input_amount: Trade input in native units
        fee_rate: Swap fee rate per hop (0.003 = 0.3%)
        hop_count: Swaps in the trade (2 simple, 3 triangular)
        gas_price_wei: Current gas price
        gas_units: Fixed gas estimate for the opportunity shape
        safety_rate: Safety margin as a fraction of the input
        reference_price: Settlement asset price in quote currency, if known

    Example:
        >>> bd = compute_breakdown(Decimal("0.02"), Decimal("1"), Decimal("0.003"),
        ...                        2, 10**9, 200_000, Decimal("0.001"))
        >>> bd.net
        Decimal('0.0128')
    """
    fee_cost = input_amount * fee_rate * hop_count
    gas_cost = gas_cost_native(gas_price_wei, gas_units)
    safety_cost = input_amount * safety_rate
    net = gross - fee_cost - gas_cost - safety_cost
    net_quote = net * reference_price if reference_price is not None else None

    return ProfitBreakdown(
        input_amount=input_amount,
        gross=gross,
        fee_cost=fee_cost,
        gas_cost=gas_cost,
        safety_cost=safety_cost,
        net=net,
        net_quote=net_quote,
        gas_price_wei=gas_price_wei,
        gas_units=gas_units,
        hop_count=hop_count,
    )


class ProfitabilityCalculator:
    """
    Turn price differentials into net profit estimates.

    Gas price is fetched fresh for every evaluation that reaches the cost
    stage; a fetch failure raises and aborts only that evaluation.

    Args:
        gas_price_fn: Async callable returning the gas price in wei
        safety_rate: Safety margin as a fraction of the input
        reference_price_fn: Returns the current (possibly stale) reference price
        timeout: Bound on the gas price call
    """

    def __init__(
        self,
        gas_price_fn: Callable[[], Awaitable[int]],
        safety_rate: Decimal,
        reference_price_fn: Optional[Callable[[], Optional[Decimal]]] = None,
        timeout: Optional[float] = None,
    ):
        self.gas_price_fn = gas_price_fn
        self.safety_rate = safety_rate
        self.reference_price_fn = reference_price_fn or (lambda: None)
        self.timeout = timeout

    async def _evaluate(
        self, gross: Decimal, input_amount: Decimal, fee_rate: Decimal, hops: int, gas_units: int
    ) -> Optional[ProfitBreakdown]:
        gas_price = await call_with_timeout(self.gas_price_fn(), self.timeout, "gasPrice")
        breakdown = compute_breakdown(
            gross=gross,
            input_amount=input_amount,
            fee_rate=fee_rate,
            hop_count=hops,
            gas_price_wei=int(gas_price),
            gas_units=gas_units,
            safety_rate=self.safety_rate,
            reference_price=self.reference_price_fn(),
        )
        if not breakdown.is_profitable:
            logger.debug(f"No net profit after costs: {breakdown.format_log()}")
            return None
        return breakdown

    async def simple(
        self,
        buy_price: Decimal,
        sell_price: Decimal,
        input_amount: Decimal,
        fee_rate: Decimal,
        gas_units: int,
    ) -> Optional[ProfitBreakdown]:
        """
        Evaluate buying at ``buy_price`` and selling at ``sell_price``.

        Equal prices are never an opportunity.
        """
        if not (sell_price > buy_price > 0):
            return None
        gross = input_amount * (sell_price / buy_price - 1)
        return await self._evaluate(gross, input_amount, fee_rate, SIMPLE_HOPS, gas_units)

    async def triangular(
        self,
        amount_back: Decimal,
        input_amount: Decimal,
        fee_rate: Decimal,
        gas_units: int,
    ) -> Optional[ProfitBreakdown]:
        """
        Evaluate a closed cycle returning ``amount_back`` for ``input_amount``.

        A non-positive gross return is discarded before the gas price lookup.
        """
        gross = amount_back - input_amount
        if gross <= 0:
            return None
        return await self._evaluate(gross, input_amount, fee_rate, TRIANGULAR_HOPS, gas_units)
