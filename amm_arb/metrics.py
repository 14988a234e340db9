"""
Prometheus metrics for the opportunity scanner.

Exposes scan, opportunity and connection health metrics, optionally served
over HTTP by a small aiohttp app (``/metrics`` and ``/health``).
"""

import json
import time
from typing import Any, Callable, Dict, Iterable, Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from .types import ConnectionState, Opportunity
from .utils import get_logger

logger = get_logger(__name__)


class ScannerMetrics:
    """
    Scanner metrics collection and exposure

    Provides Prometheus-compatible metrics for:
    - Scan counts and duration
    - Opportunities found by kind
    - Per-entry failures
    - Connection state and reconnect attempts
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize metrics with custom registry or default"""
        self.registry = registry or REGISTRY
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None
        self._state_fn: Optional[Callable[[], ConnectionState]] = None

    def _initialize_metrics(self):
        """Initialize all Prometheus metrics"""

        # === SCAN METRICS ===
        self.scans_total = Counter(
            "amm_arb_scans_total",
            "Total number of completed catalogue scans",
            ["outcome"],
            registry=self.registry,
        )

        self.scan_duration_seconds = Histogram(
            "amm_arb_scan_duration_seconds",
            "Wall time of a full catalogue scan",
            buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry,
        )

        self.entry_failures_total = Counter(
            "amm_arb_entry_failures_total",
            "Catalogue entries whose evaluation raised",
            ["entry_type"],
            registry=self.registry,
        )

        # === OPPORTUNITY METRICS ===
        self.opportunities_total = Counter(
            "amm_arb_opportunities_total",
            "Net-profitable opportunities detected",
            ["kind"],
            registry=self.registry,
        )

        self.best_net_profit = Gauge(
            "amm_arb_best_net_profit_native",
            "Highest net profit of the last scan in native units",
            registry=self.registry,
        )

        self.last_scan_block = Gauge(
            "amm_arb_last_scan_block",
            "Block marker of the last scan",
            registry=self.registry,
        )

        # === CONNECTION METRICS ===
        self.connection_state = Gauge(
            "amm_arb_connection_state",
            "1 for the current connection state, 0 otherwise",
            ["state"],
            registry=self.registry,
        )

        self.reconnect_attempts_total = Counter(
            "amm_arb_reconnect_attempts_total",
            "Reconnect attempts made by the connection manager",
            registry=self.registry,
        )

    # === RECORDING METHODS ===

    def record_scan(
        self,
        duration_sec: float,
        opportunities: Iterable[Opportunity],
        block_number: Optional[int] = None,
        cancelled: bool = False,
    ):
        opportunities = list(opportunities)
        self.scans_total.labels(outcome="cancelled" if cancelled else "completed").inc()
        self.scan_duration_seconds.observe(duration_sec)
        for opp in opportunities:
            self.opportunities_total.labels(kind=opp.kind.value).inc()
        best = max((opp.net_profit for opp in opportunities), default=0)
        self.best_net_profit.set(float(best))
        if block_number is not None:
            self.last_scan_block.set(block_number)

    def record_entry_failure(self, entry_type: str):
        self.entry_failures_total.labels(entry_type=entry_type).inc()

    def set_connection_state(self, state: ConnectionState):
        for candidate in ConnectionState:
            self.connection_state.labels(state=candidate.value).set(
                1 if candidate is state else 0
            )

    def record_reconnect_attempt(self):
        self.reconnect_attempts_total.inc()

    # === SERVER ===

    async def start_server(
        self,
        port: int = 9108,
        host: str = "0.0.0.0",
        path: str = "/metrics",
        state_fn: Optional[Callable[[], ConnectionState]] = None,
    ) -> bool:
        """Start Prometheus metrics HTTP server"""
        self._state_fn = state_fn
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"Prometheus metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
        logger.info("Metrics server stopped")

    async def _metrics_handler(self, request):
        metrics_output = generate_latest(self.registry)
        # aiohttp rejects a content_type that carries a charset
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)

    async def _health_handler(self, request):
        body = self.health()
        status = 503 if body["connection_state"] == ConnectionState.FAILED.value else 200
        return web.Response(
            text=json.dumps(body), content_type="application/json", status=status
        )

    def health(self) -> Dict[str, Any]:
        state = self._state_fn() if self._state_fn is not None else None
        return {
            "status": "unhealthy" if state is ConnectionState.FAILED else "healthy",
            "service": "amm_arb_scanner",
            "connection_state": state.value if state is not None else None,
            "timestamp": time.time(),
        }
