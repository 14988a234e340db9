"""
Uniswap V2 style adapter for constant-product AMM pools.

Implements swap simulation using the x*y=k formula with the fee embedded
in the input, in exact integer arithmetic.
"""

from decimal import Decimal
from typing import Tuple

from ..types import Token

# Fee denominator: fee_bps are parts per 10_000
FEE_DENOMINATOR = 10_000


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> int:
    """
    Calculate output amount for a V2 swap using constant-product formula.

    Formula (with fee embedded):
        amountInWithFee = amountIn * (10000 - fee_bps)
        amountOut = floor(amountInWithFee * reserveOut / (reserveIn * 10000 + amountInWithFee))

    This equals floor(amountIn*(1-f) * reserveOut / (reserveIn + amountIn*(1-f)))
    and is computed on Python integers, so reserves scaled by 10**18 never
    overflow or lose precision.

    Args:
        amount_in: Raw input amount
        reserve_in: Raw reserve of the input token
        reserve_out: Raw reserve of the output token
        fee_bps: Swap fee in basis points (30 = 0.3%)

    Returns:
        Raw output amount, 0 when either reserve is empty

    Raises:
        ValueError: If amount or fee is out of range
    """
    if amount_in < 0:
        raise ValueError(f"amount_in must not be negative: {amount_in}")
    if fee_bps < 0 or fee_bps >= FEE_DENOMINATOR:
        raise ValueError(f"fee_bps must be in [0, {FEE_DENOMINATOR}): {fee_bps}")
    if amount_in == 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0

    amount_in_with_fee = amount_in * (FEE_DENOMINATOR - fee_bps)
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * FEE_DENOMINATOR + amount_in_with_fee

    return numerator // denominator


def normalized_price(
    amount_in: int, amount_out: int, decimals_in: int, decimals_out: int
) -> Decimal:
    """Output per input in human units (e.g., USDC per WETH)."""
    if amount_in <= 0:
        return Decimal(0)
    human_in = Decimal(amount_in) / (Decimal(10) ** decimals_in)
    human_out = Decimal(amount_out) / (Decimal(10) ** decimals_out)
    return human_out / human_in


def price_quote_in_out(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee_bps: int,
    decimals_in: int,
    decimals_out: int,
) -> Tuple[int, Decimal]:
    """
    Calculate both output amount and effective price for a V2 swap.

    Returns:
        Tuple of (amount_out, effective_price)
    """
    amount_out = get_amount_out(amount_in, reserve_in, reserve_out, fee_bps)
    price = normalized_price(amount_in, amount_out, decimals_in, decimals_out)
    return amount_out, price


def orient_reserves(
    reserve0: int, reserve1: int, token_in: Token, token_out: Token
) -> Tuple[int, int]:
    """
    Order pool reserves as (reserve_in, reserve_out) for a swap.

    V2 pairs store the token with the lower address as token0.
    """
    if token_in.sorts_before(token_out):
        return reserve0, reserve1
    return reserve1, reserve0
