#!/usr/bin/env python3
"""
Zone Viewer - live order book pressure-zone analysis for Binance Spot.

Usage:
    python -m zone_viewer.main BTCUSDT --depth 20

    Or without network access:
    python -m zone_viewer.main ETHUSDT --demo

Controls:
    q - Quit
    r - Reset analysis history and alerts
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import BookConfig, ConnectionConfig, FeedConfig


async def main(
    symbol: str,
    book_config: BookConfig,
    connection_config: ConnectionConfig,
    feed_config: FeedConfig,
    demo: bool = False,
    seed: int | None = None,
) -> None:
    """Main entry point - runs data feed and UI concurrently."""

    # Import here to avoid slow startup for --help
    from .datafeed.binance_client import BinanceClient
    from .ui.zone_view import run_ui

    print(f"Starting Zone Viewer for {symbol}...")
    print(f"  Depth: {book_config.depth_cap}")
    print(f"  Source: {'synthetic' if demo else 'binance'}")
    print()

    client = BinanceClient(
        symbol=symbol,
        book_config=book_config,
        connection_config=connection_config,
        feed_config=feed_config,
        seed=seed,
    )

    async def run_feed() -> None:
        try:
            if demo:
                await client.run_demo()
            else:
                await client.run()
        except asyncio.CancelledError:
            pass
        except Exception:
            logging.getLogger(__name__).exception("Feed stopped")
            raise

    feed_task = asyncio.create_task(run_feed())

    try:
        # Run UI (blocks until quit)
        await run_ui(client.frame_queue, on_reset=client.engine.reset)
    finally:
        client.stop()
        feed_task.cancel()
        try:
            await feed_task
        except asyncio.CancelledError:
            pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Zone Viewer - live order book pressure-zone analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m zone_viewer.main BTCUSDT
    python -m zone_viewer.main ETHUSDT --depth 50 --stale-after 5
    python -m zone_viewer.main ADAUSDT --demo --seed 7
        """
    )

    parser.add_argument(
        "symbol",
        nargs="?",
        default="BTCUSDT",
        help="Trading symbol (default: BTCUSDT)"
    )

    parser.add_argument(
        "--depth",
        type=int,
        default=BookConfig().depth_cap,
        help="Price levels kept per side (default: 20)"
    )

    parser.add_argument(
        "--demo",
        action="store_true",
        help="Use the synthetic order book instead of Binance"
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the synthetic order book"
    )

    parser.add_argument(
        "--max-reconnects",
        type=int,
        default=ConnectionConfig().max_attempts,
        help="Reconnect attempts before falling back to synthetic data (default: 5)"
    )

    parser.add_argument(
        "--stale-after",
        type=float,
        default=ConnectionConfig().stale_after_sec,
        help="Seconds without updates before reconnecting (default: 10)"
    )

    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)"
    )

    return parser


def cli(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    book_config = BookConfig(depth_cap=args.depth)
    connection_config = ConnectionConfig(
        max_attempts=args.max_reconnects,
        stale_after_sec=args.stale_after,
    )
    feed_config = FeedConfig(snapshot_limit=max(args.depth, FeedConfig().snapshot_limit))

    try:
        asyncio.run(main(
            args.symbol.upper(), book_config, connection_config, feed_config,
            demo=args.demo, seed=args.seed,
        ))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
