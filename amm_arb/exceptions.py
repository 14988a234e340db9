"""
Exception hierarchy for the AMM opportunity engine.

Expected-empty outcomes (no pool, zero reserves, zero quote, price tie) are
not exceptions; they are returned as ``None``. The types below cover the
configuration, transient-external and exhaustion categories.
"""

from typing import Any, Dict, Optional


class AmmArbError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(AmmArbError):
    """Raised when the catalogue or engine settings are invalid."""

    pass


class DataSourceError(AmmArbError):
    """Raised when a call to the on-chain data source fails or times out."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        endpoint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.operation = operation
        self.endpoint = endpoint


class QuoteError(DataSourceError):
    """Raised when a venue cannot produce a quote for a pair."""

    def __init__(
        self,
        message: str,
        venue: Optional[str] = None,
        pair: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, operation="quote", details=details)
        self.venue = venue
        self.pair = pair


class NoLiveHandleError(AmmArbError):
    """Raised when no data-source handle is currently available."""

    pass


class ConnectionExhaustedError(AmmArbError):
    """Raised once the connection manager has reached its terminal state."""

    def __init__(
        self,
        message: str,
        attempts: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.attempts = attempts


class ScanInProgressError(AmmArbError):
    """Raised when a scan is requested while another scan is running."""

    pass
