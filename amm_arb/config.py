"""
Configuration loading and normalization for the AMM opportunity engine.

Loads the YAML catalogue, validates it against the pydantic schema and
normalizes it into a frozen ``EngineConfig`` that is passed explicitly to
every component. Nothing here is global state.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from .config_schema import EngineSchema, validate_engine_config
from .exceptions import ConfigurationError
from .types import OpportunityKind, Token, TradingPair, TriangularPath, Venue


@dataclass(frozen=True)
class ScanSettings:
    """Normalized scanner and profitability settings."""

    input_amount: Decimal = Decimal("1")
    safety_margin_rate: Decimal = Decimal("0.001")
    max_concurrency: int = 8
    call_timeout_sec: float = 10.0
    triangular_fee_tier: int = 3000
    interval_sec: float = 12.0
    kinds: FrozenSet[OpportunityKind] = frozenset(OpportunityKind)
    gas_units_simple: int = 200_000
    gas_units_triangular: int = 300_000

    def gas_units_for(self, kind: OpportunityKind) -> int:
        if kind.is_triangular:
            return self.gas_units_triangular
        return self.gas_units_simple


@dataclass(frozen=True)
class ConnectionSettings:
    """Normalized reconnect policy and endpoints."""

    ws_url: Optional[str] = None
    http_url: Optional[str] = None
    base_delay_sec: float = 1.0
    max_delay_sec: float = 30.0
    max_reconnect_attempts: int = 5
    health_check_interval_sec: float = 30.0
    connect_timeout_sec: float = 15.0
    poll_interval_sec: float = 12.0

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt ``attempt`` (1-based)."""
        return min(self.base_delay_sec * attempt, self.max_delay_sec)


@dataclass(frozen=True)
class ReferencePriceSettings:
    """Normalized reference price source."""

    source: str = "static"
    static_price: Optional[Decimal] = None
    coingecko_id: str = "ethereum"
    vs_currency: str = "usd"
    ttl_sec: float = 60.0
    timeout_sec: float = 10.0


@dataclass(frozen=True)
class MetricsSettings:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 9108


@dataclass(frozen=True)
class DiscoverySettings:
    enabled: bool = False
    v3_fee_tiers: Tuple[int, ...] = (500, 3000)


@dataclass(frozen=True)
class EngineConfig:
    """Immutable runtime configuration object."""

    settlement_token: Token
    tokens: Mapping[str, Token]
    venues: Mapping[str, Venue]
    pairs: Tuple[TradingPair, ...] = ()
    paths: Tuple[TriangularPath, ...] = ()
    scan: ScanSettings = field(default_factory=ScanSettings)
    connection: ConnectionSettings = field(default_factory=ConnectionSettings)
    reference_price: ReferencePriceSettings = field(default_factory=ReferencePriceSettings)
    metrics: MetricsSettings = field(default_factory=MetricsSettings)
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)

    def venue(self, name: str) -> Venue:
        try:
            return self.venues[name]
        except KeyError:
            raise ConfigurationError(f"Unknown venue: {name}") from None

    def probe_amount(self, token: Token) -> Decimal:
        """Human input amount used when quoting with ``token`` as input."""
        if token.probe_amount is not None:
            return token.probe_amount
        return self.scan.input_amount


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    return config_dict


def _decimal(value: float) -> Decimal:
    # via str so YAML floats like 0.001 stay exact
    return Decimal(str(value))


def _normalize_tokens(schema: EngineSchema) -> Dict[str, Token]:
    return {
        symbol: Token(
            symbol=symbol,
            address=info.address,
            decimals=info.decimals,
            probe_amount=(
                _decimal(info.probe_amount) if info.probe_amount is not None else None
            ),
        )
        for symbol, info in schema.tokens.items()
    }


def _normalize_venues(schema: EngineSchema) -> Dict[str, Venue]:
    return {
        v.name: Venue(
            name=v.name,
            kind=v.kind,
            fee_bps=v.fee_bps,
            factory=v.factory,
            quoter=v.quoter,
        )
        for v in schema.venues
    }


def _normalize_pairs(
    schema: EngineSchema, tokens: Mapping[str, Token], venues: Mapping[str, Venue]
) -> Tuple[TradingPair, ...]:
    pairs = []
    for entry in schema.pairs:
        v2_pools: Dict[str, str] = {}
        v3_pools: Dict[str, Mapping[int, str]] = {}
        for venue_name, pool in entry.pools.items():
            if venues[venue_name].kind == "v2":
                v2_pools[venue_name] = pool
            else:
                v3_pools[venue_name] = MappingProxyType(dict(sorted(pool.items())))
        # settlement token is always the base, so profit is in native units
        base, other = entry.tokens
        if base != schema.settlement_token:
            base, other = other, base
        pairs.append(
            TradingPair(
                token_a=tokens[base],
                token_b=tokens[other],
                v2_pools=MappingProxyType(v2_pools),
                v3_pools=MappingProxyType(v3_pools),
            )
        )
    return tuple(pairs)


def _normalize_paths(
    schema: EngineSchema, tokens: Mapping[str, Token]
) -> Tuple[TriangularPath, ...]:
    return tuple(
        TriangularPath(
            tokens=tuple(tokens[s] for s in entry.tokens),
            hop_pools=MappingProxyType(
                {venue: (hops[0], hops[1]) for venue, hops in entry.pools.items()}
            ),
        )
        for entry in schema.paths
    )


def _resolve_url(explicit: Optional[str], env_name: Optional[str]) -> Optional[str]:
    if explicit:
        return explicit
    if env_name:
        return os.environ.get(env_name) or None
    return None


def build_engine_config(config_dict: Dict[str, Any]) -> EngineConfig:
    """
    Validate a raw configuration mapping and normalize it.

    Raises:
        ConfigurationError: If the configuration fails validation
    """
    try:
        schema = validate_engine_config(config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed: {e}", details={"errors": e.errors()}
        ) from e

    tokens = _normalize_tokens(schema)
    venues = _normalize_venues(schema)
    scan = schema.scan
    conn = schema.connection
    ref = schema.reference_price

    return EngineConfig(
        settlement_token=tokens[schema.settlement_token],
        tokens=MappingProxyType(tokens),
        venues=MappingProxyType(venues),
        pairs=_normalize_pairs(schema, tokens, venues),
        paths=_normalize_paths(schema, tokens),
        scan=ScanSettings(
            input_amount=_decimal(scan.input_amount),
            safety_margin_rate=_decimal(scan.safety_margin_rate),
            max_concurrency=scan.max_concurrency,
            call_timeout_sec=scan.call_timeout_sec,
            triangular_fee_tier=scan.triangular_fee_tier,
            interval_sec=scan.interval_sec,
            kinds=frozenset(OpportunityKind(k) for k in scan.kinds),
            gas_units_simple=scan.gas_units.simple,
            gas_units_triangular=scan.gas_units.triangular,
        ),
        connection=ConnectionSettings(
            ws_url=_resolve_url(conn.ws_url, conn.ws_url_env),
            http_url=_resolve_url(conn.http_url, conn.http_url_env),
            base_delay_sec=conn.base_delay_sec,
            max_delay_sec=conn.max_delay_sec,
            max_reconnect_attempts=conn.max_reconnect_attempts,
            health_check_interval_sec=conn.health_check_interval_sec,
            connect_timeout_sec=conn.connect_timeout_sec,
            poll_interval_sec=conn.poll_interval_sec,
        ),
        reference_price=ReferencePriceSettings(
            source=ref.source,
            static_price=_decimal(ref.static_price) if ref.static_price is not None else None,
            coingecko_id=ref.coingecko_id,
            vs_currency=ref.vs_currency,
            ttl_sec=ref.ttl_sec,
            timeout_sec=ref.timeout_sec,
        ),
        metrics=MetricsSettings(
            enabled=schema.metrics.enabled,
            host=schema.metrics.host,
            port=schema.metrics.port,
        ),
        discovery=DiscoverySettings(
            enabled=schema.discovery.enabled,
            v3_fee_tiers=tuple(schema.discovery.v3_fee_tiers),
        ),
    )


def load_engine_config(config_path: Union[str, Path]) -> EngineConfig:
    """
    Load, validate and normalize an engine configuration file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Frozen engine configuration

    Raises:
        ConfigurationError: If the file cannot be loaded or is invalid
    """
    return build_engine_config(load_yaml_config(config_path))
