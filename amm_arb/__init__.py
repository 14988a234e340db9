"""
AMM Opportunity Detection Engine.

Scans a static catalogue of token pairs and 3-token cycles across
constant-product (V2) and fee-tiered (V3) venues for price discrepancies,
and reports opportunities that stay profitable after fees, gas and a
safety margin.
"""

from amm_arb.version import __version__

PROJECT_NAME = "amm-arb-scanner"
VERSION = __version__

from amm_arb.config import EngineConfig, load_engine_config
from amm_arb.connection import ConnectionManager, ManagedDataSource
from amm_arb.events import OpportunityBus
from amm_arb.exceptions import (
    AmmArbError,
    ConfigurationError,
    ConnectionExhaustedError,
    DataSourceError,
    NoLiveHandleError,
    QuoteError,
    ScanInProgressError,
)
from amm_arb.scanner import OpportunityScanner, create_scanner, summarize
from amm_arb.types import ConnectionState, Opportunity, OpportunityKind

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "EngineConfig",
    "load_engine_config",
    "ConnectionManager",
    "ManagedDataSource",
    "OpportunityBus",
    "AmmArbError",
    "ConfigurationError",
    "ConnectionExhaustedError",
    "DataSourceError",
    "NoLiveHandleError",
    "QuoteError",
    "ScanInProgressError",
    "OpportunityScanner",
    "create_scanner",
    "summarize",
    "ConnectionState",
    "Opportunity",
    "OpportunityKind",
]
