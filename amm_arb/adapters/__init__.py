"""
DEX adapter modules for different AMM types.
"""

from .v2 import get_amount_out, normalized_price, orient_reserves, price_quote_in_out
from .v3 import V3_FEE_TIERS, encode_v3_path, fee_tier_to_rate

__all__ = [
    "get_amount_out",
    "normalized_price",
    "orient_reserves",
    "price_quote_in_out",
    "V3_FEE_TIERS",
    "encode_v3_path",
    "fee_tier_to_rate",
]
