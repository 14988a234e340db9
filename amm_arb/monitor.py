"""
Live monitoring mode: scan on every new block and forward opportunities
to an external sink.

Scans are triggered from block subscriptions; a block arriving while a
scan is still running is skipped (the scanner rejects overlapping scans).
Opportunities reach the sink through the event bus, so storage never
slows the scanner down.
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional, Protocol, Union

from .data_source import DataSource
from .events import OpportunityBus, OpportunitySubscription
from .exceptions import ConnectionExhaustedError, ScanInProgressError
from .scanner import OpportunityScanner
from .types import Opportunity
from .utils import get_logger

logger = get_logger(__name__)


class OpportunitySink(Protocol):
    """External opportunity store."""

    async def store(self, opportunity: Opportunity) -> None: ...


class LoggingSink:
    """Sink that only logs; useful for dry runs."""

    async def store(self, opportunity: Opportunity) -> None:
        logger.info(f"Opportunity {opportunity.kind.value} {opportunity.pair}: "
                    f"{opportunity.net_profit:.8f}")


class JsonlSink:
    """Append each opportunity's store document to a JSON-lines file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.count = 0

    async def store(self, opportunity: Opportunity) -> None:
        line = json.dumps(opportunity.to_dict()) + "\n"
        await asyncio.to_thread(self._append, line)
        self.count += 1

    def _append(self, line: str) -> None:
        with open(self.path, "a") as f:
            f.write(line)


class LiveMonitor:
    """
    Block-driven scanning.

    Args:
        scanner: Scanner to run on each block
        source: Data source providing block subscriptions
        bus: Bus the scanner publishes to
        sink: Optional external store for each opportunity
    """

    def __init__(
        self,
        scanner: OpportunityScanner,
        source: DataSource,
        bus: OpportunityBus,
        sink: Optional[OpportunitySink] = None,
    ):
        self.scanner = scanner
        self.source = source
        self.bus = bus
        self.sink = sink

        self._subscription_id: Optional[str] = None
        self._events: Optional[OpportunitySubscription] = None
        self._forwarder: Optional[asyncio.Task] = None
        self._scan_task: Optional[asyncio.Task] = None
        self.blocks_seen = 0
        self.blocks_skipped = 0
        self.failure: Optional[ConnectionExhaustedError] = None
        self.last_results: List[Opportunity] = []

    async def start(self, subscribe: bool = True) -> None:
        """
        Start forwarding to the sink and, unless ``subscribe`` is False,
        scanning on every new block.
        """
        if self.sink is not None:
            self._events = self.bus.subscribe()
            self._forwarder = asyncio.create_task(self._forward())
        if subscribe:
            self._subscription_id = await self.source.subscribe_live(self.on_block)
            logger.info("Live monitor subscribed to new blocks")

    async def stop(self) -> None:
        if self._subscription_id is not None:
            try:
                await self.source.unsubscribe(self._subscription_id)
            except Exception as e:
                logger.debug(f"Unsubscribe failed during shutdown: {e}")
            self._subscription_id = None

        if self._scan_task is not None and not self._scan_task.done():
            self.scanner.cancel()
            await asyncio.gather(self._scan_task, return_exceptions=True)

        if self._events is not None:
            self._events.close()
            self._events = None
        if self._forwarder is not None:
            self._forwarder.cancel()
            await asyncio.gather(self._forwarder, return_exceptions=True)
            self._forwarder = None

    async def on_block(self, block_number: int) -> None:
        """Block callback; never blocks the subscription reader."""
        self.blocks_seen += 1
        if self.failure is not None:
            return
        if self.scanner.is_scanning:
            self.blocks_skipped += 1
            logger.debug(f"Block {block_number}: scan still running, skipped")
            return
        logger.debug(f"Block {block_number}: starting scan")
        self._scan_task = asyncio.create_task(self._scan())

    async def _scan(self) -> None:
        try:
            self.last_results = await self.scanner.scan()
        except ScanInProgressError:
            self.blocks_skipped += 1
        except ConnectionExhaustedError as e:
            self.failure = e
            logger.critical(f"Live monitoring stopped: {e}")

    async def _forward(self) -> None:
        async for opportunity in self._events:
            try:
                await self.sink.store(opportunity)
            except Exception as e:
                logger.error(f"Failed to store opportunity {opportunity.pair}: {e}")
