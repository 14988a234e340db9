#!/usr/bin/env python3
"""
AMM opportunity scanner CLI.

Scans the configured pair and path catalogue and prints ranked
opportunities. By default it keeps running and rescans on every new block.

Usage:
    python3 run_scanner.py --config configs/mainnet.yaml --once
    python3 run_scanner.py --config configs/mainnet.yaml
    python3 run_scanner.py --config configs/mainnet.yaml --interval --output data/opps.jsonl
"""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv

import logging_config
from amm_arb.config import EngineConfig, load_engine_config
from amm_arb.connection import ConnectionManager, ManagedDataSource
from amm_arb.data_source import PollingWeb3Source, StreamingWeb3Source
from amm_arb.discovery import discover_pools
from amm_arb.events import OpportunityBus
from amm_arb.exceptions import ConfigurationError, ConnectionExhaustedError
from amm_arb.metrics import ScannerMetrics
from amm_arb.monitor import JsonlSink, LiveMonitor, LoggingSink
from amm_arb.reference_price import ReferencePriceFeed
from amm_arb.scanner import OpportunityScanner, create_scanner, summarize
from amm_arb.types import Opportunity


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="AMM arbitrage opportunity scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Single scan (for testing/CI)
  python3 run_scanner.py --config configs/mainnet.yaml --once

  # Rescan on every new block
  python3 run_scanner.py --config configs/mainnet.yaml

  # Rescan every scan.interval_sec seconds, append results to a file
  python3 run_scanner.py --interval --output data/opportunities.jsonl
        """,
    )
    parser.add_argument(
        "--config",
        default="configs/mainnet.yaml",
        help="Path to config YAML file (default: configs/mainnet.yaml)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single scan and exit")
    parser.add_argument(
        "--interval",
        action="store_true",
        help="Scan on a fixed interval instead of on every new block",
    )
    parser.add_argument("--output", help="Append opportunities to this JSON-lines file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def build_connection_manager(
    config: EngineConfig, metrics: Optional[ScannerMetrics]
) -> ConnectionManager:
    """Wire streaming and polling transports into a connection manager."""
    conn = config.connection
    timeout = config.scan.call_timeout_sec
    if not conn.ws_url and not conn.http_url:
        raise ConfigurationError(
            "No RPC endpoint configured; set connection.ws_url or connection.http_url"
        )

    connect_streaming = None
    if conn.ws_url:

        async def connect_streaming(on_disconnect):
            return await StreamingWeb3Source.connect(conn.ws_url, on_disconnect, timeout)

    connect_fallback = None
    if conn.http_url:

        async def connect_fallback():
            return await PollingWeb3Source.connect(
                conn.http_url, conn.poll_interval_sec, timeout
            )

    return ConnectionManager(connect_streaming, connect_fallback, conn, metrics=metrics)


def print_opportunities(opportunities: List[Opportunity], settlement: str) -> None:
    if not opportunities:
        print("No profitable opportunities found")
        return

    print(f"\n{'#':>3}  {'KIND':<14} {'PAIR/PATH':<22} {'ROUTE':<34} {'NET':>16}")
    print("-" * 93)
    for i, opp in enumerate(opportunities, 1):
        route = opp.cycle_venue or f"{opp.buy_venue} -> {opp.sell_venue}"
        print(
            f"{i:>3}  {opp.kind.value:<14} {opp.pair:<22} {route:<34} "
            f"{opp.net_profit:>12.8f} {settlement}"
        )

    stats = summarize(opportunities)
    print("-" * 93)
    print(
        f"Total: {stats['total_opportunities']}  "
        f"net {stats['total_net_profit']:.8f} {settlement}  "
        f"(avg {stats['average_net_profit']:.8f})"
    )
    if stats["total_net_profit_quote"] > Decimal(0):
        print(f"Quote value: {stats['total_net_profit_quote']:.2f}")


async def run_interval(scanner: OpportunityScanner, interval: float) -> None:
    while True:
        await scanner.scan()
        await asyncio.sleep(interval)


async def run(args: argparse.Namespace) -> int:
    config = load_engine_config(args.config)

    metrics = ScannerMetrics() if config.metrics.enabled else None
    manager = build_connection_manager(config, metrics)
    source = ManagedDataSource(manager)
    reference_feed = ReferencePriceFeed(config.reference_price)
    bus = OpportunityBus()

    await manager.start()
    try:
        if metrics is not None:
            await metrics.start_server(
                port=config.metrics.port,
                host=config.metrics.host,
                state_fn=manager.get_connection_state,
            )

        config = await discover_pools(config, source)
        scanner = create_scanner(
            config, source, bus=bus, metrics=metrics, reference_feed=reference_feed
        )

        if args.once:
            opportunities = await scanner.scan()
            print_opportunities(opportunities, config.settlement_token.symbol)
            return 0

        sink = JsonlSink(args.output) if args.output else LoggingSink()
        monitor = LiveMonitor(scanner, source, bus, sink)
        await monitor.start(subscribe=not args.interval)

        waiters = [asyncio.ensure_future(manager.wait_for_failure())]
        if args.interval:
            waiters.append(asyncio.ensure_future(run_interval(scanner, config.scan.interval_sec)))
        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        finally:
            for task in waiters:
                task.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
            await monitor.stop()
        return 0
    finally:
        await reference_feed.close()
        if metrics is not None:
            await metrics.stop_server()
        await manager.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)
    load_dotenv()
    logging_config.setup(getattr(logging, args.log_level))

    try:
        return asyncio.run(run(args))
    except ConfigurationError as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        return 1
    except ConnectionExhaustedError as e:
        print(f"❌ Data source unavailable: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n\n⏸ Stopped by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
