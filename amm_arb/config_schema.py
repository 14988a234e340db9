"""
Configuration schema validation using Pydantic
"""

from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from .types import OpportunityKind

ALL_KINDS = [kind.value for kind in OpportunityKind]


class TokenSchema(BaseModel):
    """Static token catalogue entry"""

    address: str = Field(description="Token contract address")
    decimals: int = Field(ge=0, le=36)
    probe_amount: Optional[float] = Field(
        default=None, gt=0, description="Quote input in human units when selling this token"
    )

    @field_validator("address")
    @classmethod
    def validate_address(cls, v):
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError(f"Invalid token address: {v}")
        return v

    model_config = {"extra": "forbid"}


class VenueSchema(BaseModel):
    """AMM venue definition"""

    name: str = Field(min_length=1)
    kind: Literal["v2", "v3"] = "v2"
    fee_bps: int = Field(default=30, ge=0, lt=10000, description="V2 swap fee in bps")
    factory: Optional[str] = None
    quoter: Optional[str] = None

    @model_validator(mode="after")
    def validate_quoter(self):
        if self.kind == "v3" and not self.quoter:
            raise ValueError(f"V3 venue '{self.name}' requires a quoter address")
        return self

    model_config = {"extra": "forbid"}


class PairSchema(BaseModel):
    """
    Trading pair catalogue entry.

    ``pools`` maps venue name to a pool address (V2 venues) or to a
    ``{fee_tier: pool address}`` mapping (V3 venues).
    """

    tokens: List[str] = Field(min_length=2, max_length=2)
    pools: Dict[str, Union[str, Dict[int, str]]] = Field(default_factory=dict)

    @field_validator("tokens")
    @classmethod
    def validate_distinct(cls, v):
        if v[0] == v[1]:
            raise ValueError(f"Pair tokens must be distinct: {v}")
        return v

    model_config = {"extra": "forbid"}


class PathSchema(BaseModel):
    """Triangular path catalogue entry: 3 tokens, two forward hop pools per venue"""

    tokens: List[str]
    pools: Dict[str, List[str]] = Field(default_factory=dict)

    @field_validator("tokens")
    @classmethod
    def validate_tokens(cls, v):
        if len(v) != 3:
            raise ValueError(f"Triangular path must have exactly 3 tokens, got {len(v)}")
        if len(set(v)) != 3:
            raise ValueError(f"Triangular path tokens must be distinct: {v}")
        return v

    @field_validator("pools")
    @classmethod
    def validate_hops(cls, v):
        for venue, hops in v.items():
            if len(hops) != 2:
                raise ValueError(
                    f"Venue '{venue}' must list 2 forward hop pools, got {len(hops)}"
                )
        return v

    model_config = {"extra": "forbid"}


class GasUnitsSchema(BaseModel):
    """Fixed gas-unit estimate per opportunity shape"""

    simple: int = Field(default=200_000, ge=0)
    triangular: int = Field(default=300_000, ge=0)


class ScanSchema(BaseModel):
    """Scanner and profitability settings"""

    input_amount: float = Field(default=1.0, gt=0)
    safety_margin_rate: float = Field(default=0.001, ge=0, lt=1)
    max_concurrency: int = Field(default=8, ge=1, le=256)
    call_timeout_sec: float = Field(default=10.0, gt=0, le=300)
    triangular_fee_tier: int = Field(default=3000, ge=1, lt=1_000_000)
    interval_sec: float = Field(default=12.0, gt=0)
    kinds: List[str] = Field(default_factory=lambda: list(ALL_KINDS))
    gas_units: GasUnitsSchema = Field(default_factory=GasUnitsSchema)

    @field_validator("kinds")
    @classmethod
    def validate_kinds(cls, v):
        unknown = [k for k in v if k not in ALL_KINDS]
        if unknown:
            raise ValueError(f"Unknown opportunity kinds: {unknown}")
        return v

    model_config = {"extra": "forbid"}


class ConnectionSchema(BaseModel):
    """Streaming connection and reconnect policy"""

    ws_url: Optional[str] = None
    ws_url_env: Optional[str] = "WS_RPC_URL"
    http_url: Optional[str] = None
    http_url_env: Optional[str] = "HTTP_RPC_URL"
    base_delay_sec: float = Field(default=1.0, gt=0)
    max_delay_sec: float = Field(default=30.0, gt=0)
    max_reconnect_attempts: int = Field(default=5, ge=0)
    health_check_interval_sec: float = Field(default=30.0, gt=0)
    connect_timeout_sec: float = Field(default=15.0, gt=0)
    poll_interval_sec: float = Field(default=12.0, gt=0)

    @model_validator(mode="after")
    def validate_delays(self):
        if self.base_delay_sec > self.max_delay_sec:
            raise ValueError("base_delay_sec must not exceed max_delay_sec")
        return self

    model_config = {"extra": "forbid"}


class ReferencePriceSchema(BaseModel):
    """Settlement-asset reference price source"""

    source: Literal["static", "coingecko"] = "static"
    static_price: Optional[float] = Field(default=None, gt=0)
    coingecko_id: str = "ethereum"
    vs_currency: str = "usd"
    ttl_sec: float = Field(default=60.0, gt=0)
    timeout_sec: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def validate_source(self):
        if self.source == "static" and self.static_price is None:
            raise ValueError("static_price required when source is 'static'")
        return self

    model_config = {"extra": "forbid"}


class MetricsSchema(BaseModel):
    """Prometheus exporter settings"""

    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = Field(default=9108, ge=1, le=65535)


class DiscoverySchema(BaseModel):
    """Startup pool discovery via factory contracts"""

    enabled: bool = False
    v3_fee_tiers: List[int] = Field(default_factory=lambda: [500, 3000])


class EngineSchema(BaseModel):
    """Top-level engine configuration"""

    settlement_token: str = Field(description="Native gas asset symbol, e.g. WETH")
    tokens: Dict[str, TokenSchema]
    venues: List[VenueSchema] = Field(min_length=1)
    pairs: List[PairSchema] = Field(default_factory=list)
    paths: List[PathSchema] = Field(default_factory=list)
    scan: ScanSchema = Field(default_factory=ScanSchema)
    connection: ConnectionSchema = Field(default_factory=ConnectionSchema)
    reference_price: ReferencePriceSchema = Field(
        default_factory=lambda: ReferencePriceSchema(static_price=1.0)
    )
    metrics: MetricsSchema = Field(default_factory=MetricsSchema)
    discovery: DiscoverySchema = Field(default_factory=DiscoverySchema)

    @field_validator("venues")
    @classmethod
    def validate_unique_venues(cls, v):
        names = [venue.name for venue in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate venue names: {duplicates}")
        return v

    @model_validator(mode="after")
    def validate_references(self):
        if self.settlement_token not in self.tokens:
            raise ValueError(
                f"settlement_token '{self.settlement_token}' not found in tokens"
            )

        venues = {venue.name: venue for venue in self.venues}

        for i, pair in enumerate(self.pairs):
            for symbol in pair.tokens:
                if symbol not in self.tokens:
                    raise ValueError(f"Pair {i} references unknown token '{symbol}'")
            if self.settlement_token not in pair.tokens:
                raise ValueError(
                    f"Pair {i} must include the settlement token '{self.settlement_token}'"
                )
            for venue_name, pool in pair.pools.items():
                venue = venues.get(venue_name)
                if venue is None:
                    raise ValueError(f"Pair {i} references unknown venue '{venue_name}'")
                if venue.kind == "v2" and not isinstance(pool, str):
                    raise ValueError(
                        f"Pair {i}: V2 venue '{venue_name}' takes a single pool address"
                    )
                if venue.kind == "v3" and not isinstance(pool, dict):
                    raise ValueError(
                        f"Pair {i}: V3 venue '{venue_name}' takes a fee tier -> pool mapping"
                    )

        for i, path in enumerate(self.paths):
            for symbol in path.tokens:
                if symbol not in self.tokens:
                    raise ValueError(f"Path {i} references unknown token '{symbol}'")
            if path.tokens[0] != self.settlement_token:
                raise ValueError(
                    f"Path {i} must start with the settlement token '{self.settlement_token}'"
                )
            for venue_name in path.pools:
                if venue_name not in venues:
                    raise ValueError(f"Path {i} references unknown venue '{venue_name}'")

        return self

    model_config = {
        "extra": "forbid",  # Disallow extra fields
    }


def validate_engine_config(config_dict: Dict) -> EngineSchema:
    """
    Validate an engine configuration dictionary

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    return EngineSchema(**config_dict)


def validate_config_file(config_path: Union[str, Path]) -> EngineSchema:
    """
    Validate an engine configuration file

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If the file is empty
        pydantic.ValidationError: If configuration is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    import yaml

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        config_dict = yaml.safe_load(f)

    if config_dict is None:
        raise ValueError("Configuration file is empty or invalid")

    return validate_engine_config(config_dict)
