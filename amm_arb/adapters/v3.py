"""
Uniswap V3 style adapter.

V3 uses concentrated liquidity; swap outputs are obtained from the Quoter
contract rather than recomputed locally. This module provides the path
encoding and fee-tier helpers the delegated quoter needs.
"""

from decimal import Decimal
from typing import Sequence

from eth_abi.packed import encode_packed

# Common V3 fee tiers (in hundredths of a bip)
V3_FEE_TIERS = {
    "LOWEST": 100,  # 0.01%
    "LOW": 500,  # 0.05%
    "MEDIUM": 3000,  # 0.30%
    "HIGH": 10000,  # 1.00%
}

FEE_TIER_DENOMINATOR = 1_000_000


def fee_tier_to_rate(fee_tier: int) -> Decimal:
    """Convert a fee tier to a decimal rate (3000 -> 0.003)."""
    return Decimal(fee_tier) / Decimal(FEE_TIER_DENOMINATOR)


def encode_v3_path(tokens: Sequence[str], fees: Sequence[int]) -> bytes:
    """
    Encode a Uniswap V3 swap path.

    V3 paths are encoded as: token0 (20 bytes) | fee0 (3 bytes) | token1 (20 bytes) | ...

    Args:
        tokens: Token addresses in swap order
        fees: Fee tier of each hop, one fewer than tokens

    Returns:
        Encoded path as bytes

    Raises:
        ValueError: If the token and fee counts do not line up
    """
    if len(tokens) < 2:
        raise ValueError("A V3 path needs at least two tokens")
    if len(fees) != len(tokens) - 1:
        raise ValueError(
            f"Expected {len(tokens) - 1} fees for {len(tokens)} tokens, got {len(fees)}"
        )

    types = ["address"]
    values = [tokens[0]]
    for fee, token in zip(fees, tokens[1:]):
        if fee < 0 or fee >= 2**24:
            raise ValueError(f"Fee tier does not fit uint24: {fee}")
        types.extend(["uint24", "address"])
        values.extend([fee, token])

    return encode_packed(types, values)
