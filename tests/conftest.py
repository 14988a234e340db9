"""
Shared fixtures: an in-memory DataSource and a small WETH-settled catalogue.

Token addresses are lowercase so they encode without checksum checks;
USDC sorts before WETH, so WETH/USDC V2 pools hold (USDC, WETH) reserves.
"""

import asyncio
import copy
import itertools
from collections import Counter
from decimal import Decimal

import pytest

from amm_arb.adapters.v3 import encode_v3_path
from amm_arb.config import build_engine_config
from amm_arb.types import Opportunity, OpportunityKind

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
DAI = "0x6b175474e89094c44da98b954eedeac495271d0f"

UNI_V2_FACTORY = "0x" + "a" * 40
SUSHI_FACTORY = "0x" + "d" * 40
V3_FACTORY = "0x" + "c" * 40
V3_QUOTER = "0x" + "b" * 40

POOL_UNI_WETH_USDC = "0x" + "1" * 40
POOL_SUSHI_WETH_USDC = "0x" + "2" * 40
POOL_V3_WETH_USDC_500 = "0x" + "3" * 40
POOL_V3_WETH_USDC_3000 = "0x" + "4" * 40
POOL_UNI_USDC_DAI = "0x" + "5" * 40
POOL_V3_USDC_DAI_3000 = "0x" + "6" * 40

# V3 cycle WETH->USDC->DAI and back, both hops at the 0.3% tier
FORWARD_PATH = encode_v3_path([WETH, USDC, DAI], [3000, 3000])
REVERSE_PATH = encode_v3_path([DAI, USDC, WETH], [3000, 3000])

BASE_CONFIG = {
    "settlement_token": "WETH",
    "tokens": {
        "WETH": {"address": WETH, "decimals": 18, "probe_amount": 0.01},
        "USDC": {"address": USDC, "decimals": 6},
        "DAI": {"address": DAI, "decimals": 18},
    },
    "venues": [
        {"name": "UniswapV2", "kind": "v2", "fee_bps": 30, "factory": UNI_V2_FACTORY},
        {"name": "Sushiswap", "kind": "v2", "fee_bps": 30, "factory": SUSHI_FACTORY},
        {"name": "UniswapV3", "kind": "v3", "factory": V3_FACTORY, "quoter": V3_QUOTER},
    ],
    "pairs": [
        {
            "tokens": ["WETH", "USDC"],
            "pools": {
                "UniswapV2": POOL_UNI_WETH_USDC,
                "Sushiswap": POOL_SUSHI_WETH_USDC,
                "UniswapV3": {500: POOL_V3_WETH_USDC_500, 3000: POOL_V3_WETH_USDC_3000},
            },
        }
    ],
    "paths": [
        {
            "tokens": ["WETH", "USDC", "DAI"],
            "pools": {
                "UniswapV2": [POOL_UNI_WETH_USDC, POOL_UNI_USDC_DAI],
                "UniswapV3": [POOL_V3_WETH_USDC_3000, POOL_V3_USDC_DAI_3000],
            },
        }
    ],
    "scan": {"safety_margin_rate": 0.001, "call_timeout_sec": 2},
    "connection": {
        "ws_url": "ws://localhost:8546",
        "http_url": "http://localhost:8545",
        "health_check_interval_sec": 3600,
    },
    "reference_price": {"source": "static", "static_price": 2000},
}


def make_config_dict(**overrides):
    """Deep copy of the base catalogue with top-level sections replaced."""
    config = copy.deepcopy(BASE_CONFIG)
    config.update(overrides)
    return config


def seed_market(source):
    """
    Seed a market with one profitable route of each V3 and cross kind.

    UniswapV2 ~1993.98 USDC/WETH, Sushiswap ~1998.96, UniswapV3_500 2010,
    UniswapV3_3000 1990; the V3 cycle returns ~0.010526 WETH per 0.01.
    """
    source.reserves[POOL_UNI_WETH_USDC] = (2_000_000 * 10**6, 1000 * 10**18)
    source.reserves[POOL_SUSHI_WETH_USDC] = (2_005_000 * 10**6, 1000 * 10**18)
    source.single_quotes[(WETH, USDC, 500)] = 20_100_000
    source.single_quotes[(WETH, USDC, 3000)] = 19_900_000
    source.multi_quotes[FORWARD_PATH] = 20 * 10**18
    source.multi_quotes[REVERSE_PATH] = lambda amount_in: amount_in // 1900
    return source


def make_opportunity(**overrides):
    """A V3_SIMPLE opportunity with round figures; override any field."""
    values = {
        "kind": OpportunityKind.V3_SIMPLE,
        "pair": "WETH/USDC",
        "input_amount": Decimal("0.01"),
        "gross_profit": Decimal("0.0001"),
        "fee_cost": Decimal("0.00003"),
        "gas_cost": Decimal("0.000002"),
        "safety_cost": Decimal("0.00001"),
        "net_profit": Decimal("0.000058"),
        "net_profit_quote": Decimal("0.116"),
        "gas_price_wei": 10**7,
        "gas_units": 200_000,
        "buy_venue": "UniswapV3_3000",
        "buy_price": Decimal("1990"),
        "sell_venue": "UniswapV3_500",
        "sell_price": Decimal("2010"),
        "fee_tiers": (3000, 500),
    }
    values.update(overrides)
    return Opportunity(**values)


class FakeDataSource:
    """
    Scriptable DataSource.

    ``reserves`` maps pool -> (reserve0, reserve1). ``single_quotes`` maps
    (token_in, token_out, fee_tier) and ``multi_quotes`` maps encoded path
    bytes to an int or a callable of amount_in. Any value may be an
    exception instance, which is raised instead.
    """

    def __init__(self, name="fake"):
        self.name = name
        self.reserves = {}
        self.single_quotes = {}
        self.multi_quotes = {}
        self.pools = {}
        self.gas_price = 10**7
        self.block = 100
        self.callbacks = {}
        self.calls = Counter()
        self.closed = False
        self.block_error = None
        self.gas_error = None
        self._ids = itertools.count(1)

    @staticmethod
    def _resolve(value, amount_in):
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return value(amount_in)
        return value

    async def get_reserves(self, pool):
        self.calls["get_reserves"] += 1
        return self._resolve(self.reserves.get(pool, (0, 0)), None)

    async def get_pool_address(self, factory, token_a, token_b, fee_tier=None):
        self.calls["get_pool_address"] += 1
        key = (factory, frozenset((token_a.lower(), token_b.lower())), fee_tier)
        return self._resolve(self.pools.get(key), None)

    async def quote_single_hop(self, quoter, token_in, token_out, fee_tier, amount_in):
        self.calls["quote_single_hop"] += 1
        value = self.single_quotes.get((token_in.lower(), token_out.lower(), fee_tier), 0)
        return self._resolve(value, amount_in)

    async def quote_multi_hop(self, quoter, path, amount_in):
        self.calls["quote_multi_hop"] += 1
        return self._resolve(self.multi_quotes.get(path, 0), amount_in)

    async def get_gas_price(self):
        self.calls["get_gas_price"] += 1
        if self.gas_error is not None:
            raise self.gas_error
        return self.gas_price

    async def get_block_marker(self):
        self.calls["get_block_marker"] += 1
        if self.block_error is not None:
            raise self.block_error
        return self.block

    async def subscribe_live(self, callback):
        self.calls["subscribe_live"] += 1
        subscription_id = f"{self.name}-sub-{next(self._ids)}"
        self.callbacks[subscription_id] = callback
        return subscription_id

    async def unsubscribe(self, subscription_id):
        self.calls["unsubscribe"] += 1
        self.callbacks.pop(subscription_id, None)

    async def close(self):
        self.closed = True

    async def emit_block(self, number):
        self.block = number
        for callback in list(self.callbacks.values()):
            await callback(number)


async def wait_until(predicate, timeout=2.0, interval=0.005):
    """Poll ``predicate`` until true; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def config_dict():
    return make_config_dict()


@pytest.fixture
def engine_config(config_dict):
    return build_engine_config(config_dict)


@pytest.fixture
def fake_source():
    return FakeDataSource()
