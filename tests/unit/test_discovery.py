"""
Tests for startup pool discovery.
"""

import pytest

from amm_arb.config import build_engine_config
from amm_arb.discovery import PoolDiscovery, discover_pools
from amm_arb.exceptions import ConnectionExhaustedError, DataSourceError

from conftest import (
    DAI,
    POOL_SUSHI_WETH_USDC,
    POOL_UNI_USDC_DAI,
    POOL_UNI_WETH_USDC,
    POOL_V3_USDC_DAI_3000,
    POOL_V3_WETH_USDC_500,
    POOL_V3_WETH_USDC_3000,
    SUSHI_FACTORY,
    UNI_V2_FACTORY,
    USDC,
    V3_FACTORY,
    WETH,
    make_config_dict,
)


def sparse_config(enabled=True):
    return build_engine_config(
        make_config_dict(
            pairs=[
                {
                    "tokens": ["USDC", "WETH"],
                    "pools": {
                        "UniswapV2": POOL_UNI_WETH_USDC,
                        "UniswapV3": {500: POOL_V3_WETH_USDC_500},
                    },
                }
            ],
            paths=[{"tokens": ["WETH", "USDC", "DAI"]}],
            discovery={"enabled": enabled},
        )
    )


def register(source, factory, token_a, token_b, tier, pool):
    source.pools[(factory, frozenset((token_a, token_b)), tier)] = pool


@pytest.fixture
def deployed(fake_source):
    register(fake_source, SUSHI_FACTORY, WETH, USDC, None, POOL_SUSHI_WETH_USDC)
    register(fake_source, V3_FACTORY, WETH, USDC, 3000, POOL_V3_WETH_USDC_3000)
    register(fake_source, UNI_V2_FACTORY, WETH, USDC, None, POOL_UNI_WETH_USDC)
    register(fake_source, UNI_V2_FACTORY, USDC, DAI, None, POOL_UNI_USDC_DAI)
    register(fake_source, V3_FACTORY, USDC, DAI, 3000, POOL_V3_USDC_DAI_3000)
    return fake_source


class TestPoolDiscovery:
    @pytest.mark.asyncio
    async def test_fills_missing_pair_pools(self, deployed):
        config = sparse_config()

        discovered = await discover_pools(config, deployed)
        pair = discovered.pairs[0]

        assert pair.v2_pools["Sushiswap"] == POOL_SUSHI_WETH_USDC
        assert pair.v2_pools["UniswapV2"] == POOL_UNI_WETH_USDC
        assert dict(pair.v3_pools["UniswapV3"]) == {
            500: POOL_V3_WETH_USDC_500,
            3000: POOL_V3_WETH_USDC_3000,
        }
        # configured pools are never looked up again
        assert deployed.calls["get_pool_address"] == 8

    @pytest.mark.asyncio
    async def test_fills_path_hops(self, deployed):
        discovered = await discover_pools(sparse_config(), deployed)
        path = discovered.paths[0]

        assert path.hop_pools["UniswapV2"] == (POOL_UNI_WETH_USDC, POOL_UNI_USDC_DAI)
        assert path.hop_pools["UniswapV3"] == (POOL_V3_WETH_USDC_3000, POOL_V3_USDC_DAI_3000)
        # Sushiswap has no USDC/DAI pool
        assert "Sushiswap" not in path.hop_pools

    @pytest.mark.asyncio
    async def test_input_config_untouched(self, deployed):
        config = sparse_config()
        await discover_pools(config, deployed)
        assert "Sushiswap" not in config.pairs[0].v2_pools
        assert dict(config.paths[0].hop_pools) == {}

    @pytest.mark.asyncio
    async def test_disabled_returns_same_config(self, deployed):
        config = sparse_config(enabled=False)
        assert await discover_pools(config, deployed) is config
        assert deployed.calls["get_pool_address"] == 0

    @pytest.mark.asyncio
    async def test_lookup_error_is_skipped(self, deployed):
        register(deployed, SUSHI_FACTORY, WETH, USDC, None, DataSourceError("execution reverted"))
        discovery = PoolDiscovery(deployed, sparse_config())

        discovered = await discovery.run()

        assert "Sushiswap" not in discovered.pairs[0].v2_pools
        assert discovered.pairs[0].v3_pools["UniswapV3"][3000] == POOL_V3_WETH_USDC_3000

    @pytest.mark.asyncio
    async def test_counts_resolved_and_missing(self, deployed):
        discovery = PoolDiscovery(deployed, sparse_config())
        await discovery.run()
        assert discovery.resolved == 7
        assert discovery.missing == 1

    @pytest.mark.asyncio
    async def test_exhaustion_propagates(self, deployed):
        register(deployed, SUSHI_FACTORY, WETH, USDC, None, ConnectionExhaustedError("down"))
        with pytest.raises(ConnectionExhaustedError):
            await PoolDiscovery(deployed, sparse_config()).run()
