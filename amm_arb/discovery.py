"""
Startup pool discovery through venue factory contracts.

Fills in pool ids the catalogue leaves out, for venues that declare a
factory. Discovered pools are merged into a new ``EngineConfig``; the
input config is never mutated. Lookups that fail are logged and skipped.
"""

from dataclasses import replace
from types import MappingProxyType
from typing import Dict, List, Optional, Tuple

from .config import EngineConfig
from .data_source import DataSource
from .exceptions import ConnectionExhaustedError
from .types import Token, TradingPair, TriangularPath, Venue
from .utils import call_with_timeout, get_logger

logger = get_logger(__name__)


class PoolDiscovery:
    """Resolve missing pool ids via ``get_pool_address``."""

    def __init__(self, source: DataSource, config: EngineConfig):
        self.source = source
        self.config = config
        self.resolved = 0
        self.missing = 0

    async def _lookup(
        self, venue: Venue, token_a: Token, token_b: Token, fee_tier: Optional[int]
    ) -> Optional[str]:
        try:
            pool = await call_with_timeout(
                self.source.get_pool_address(
                    venue.factory, token_a.address, token_b.address, fee_tier
                ),
                self.config.scan.call_timeout_sec,
                "getPoolAddress",
            )
        except ConnectionExhaustedError:
            raise
        except Exception as e:
            logger.warning(
                f"Pool lookup {token_a.symbol}/{token_b.symbol} on {venue.name} failed: {e}"
            )
            return None

        if pool is None:
            self.missing += 1
            logger.debug(f"No {venue.name} pool for {token_a.symbol}/{token_b.symbol}")
        else:
            self.resolved += 1
        return pool

    def _factory_venues(self) -> List[Venue]:
        return [v for v in self.config.venues.values() if v.factory]

    async def discover_pair(self, pair: TradingPair) -> TradingPair:
        v2_pools: Dict[str, str] = dict(pair.v2_pools)
        v3_pools: Dict[str, Dict[int, str]] = {
            name: dict(tiers) for name, tiers in pair.v3_pools.items()
        }

        for venue in self._factory_venues():
            if venue.kind == "v2":
                if venue.name in v2_pools:
                    continue
                pool = await self._lookup(venue, pair.token_a, pair.token_b, None)
                if pool is not None:
                    v2_pools[venue.name] = pool
            else:
                tiers = v3_pools.get(venue.name, {})
                for tier in self.config.discovery.v3_fee_tiers:
                    if tier in tiers:
                        continue
                    pool = await self._lookup(venue, pair.token_a, pair.token_b, tier)
                    if pool is not None:
                        tiers[tier] = pool
                if tiers:
                    v3_pools[venue.name] = tiers

        return replace(
            pair,
            v2_pools=MappingProxyType(v2_pools),
            v3_pools=MappingProxyType(
                {name: MappingProxyType(dict(sorted(t.items()))) for name, t in v3_pools.items()}
            ),
        )

    async def discover_path(self, path: TriangularPath) -> TriangularPath:
        hop_pools: Dict[str, Tuple[str, str]] = dict(path.hop_pools)
        a, b, c = path.tokens
        tier = self.config.scan.triangular_fee_tier

        for venue in self._factory_venues():
            if venue.name in hop_pools:
                continue
            fee_tier = None if venue.kind == "v2" else tier
            first = await self._lookup(venue, a, b, fee_tier)
            if first is None:
                continue
            second = await self._lookup(venue, b, c, fee_tier)
            if second is None:
                continue
            hop_pools[venue.name] = (first, second)

        return replace(path, hop_pools=MappingProxyType(hop_pools))

    async def run(self) -> EngineConfig:
        """Return a config with every discoverable pool filled in."""
        pairs = tuple([await self.discover_pair(p) for p in self.config.pairs])
        paths = tuple([await self.discover_path(p) for p in self.config.paths])
        logger.info(
            f"Pool discovery: {self.resolved} pools resolved, {self.missing} not deployed"
        )
        return replace(self.config, pairs=pairs, paths=paths)


async def discover_pools(config: EngineConfig, source: DataSource) -> EngineConfig:
    """Resolve missing pool ids when discovery is enabled."""
    if not config.discovery.enabled:
        return config
    return await PoolDiscovery(source, config).run()
