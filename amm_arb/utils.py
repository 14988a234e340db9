"""
Common helpers: logging, duration formatting, token amount conversion and
timeout-bounded external calls.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Optional, TypeVar, Union

from .exceptions import DataSourceError

T = TypeVar("T")


# Formatting utilities
def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


# Token amount utilities
def to_raw_amount(amount: Decimal, decimals: int) -> int:
    """Convert a human token amount to its integer on-chain representation."""
    return int(amount * (Decimal(10) ** decimals))


def from_raw_amount(raw: int, decimals: int) -> Decimal:
    """Convert an integer on-chain amount to human units."""
    return Decimal(raw) / (Decimal(10) ** decimals)


def bps_to_rate(bps: Union[int, Decimal]) -> Decimal:
    """Convert basis points to a decimal rate (30 bps -> 0.003)."""
    return Decimal(bps) / Decimal(10_000)


def short_addr(address: str) -> str:
    """Shorten an address for log lines (0xC02a...6Cc2)."""
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


async def call_with_timeout(
    awaitable: Awaitable[T], timeout: Optional[float], operation: str
) -> T:
    """
    Await an external call, converting a timeout into DataSourceError.

    Args:
        awaitable: The pending external call
        timeout: Seconds to wait (None disables the bound)
        operation: Name used in the error message

    Raises:
        DataSourceError: If the call does not complete in time
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise DataSourceError(
            f"{operation} timed out after {timeout}s", operation=operation
        ) from e


# Logging utilities
def get_logger(name: str, level: Optional[Union[str, int]] = None) -> logging.Logger:
    """
    Get a module logger.

    Handlers and formatting belong to the application (see
    ``logging_config.setup``); records propagate to the root logger, so
    the level set on ``amm_arb`` or the root applies to every module.

    Args:
        name: Logger name (typically __name__)
        level: Optional explicit level; left unset (NOTSET) by default

    Returns:
        The named logger
    """
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger
