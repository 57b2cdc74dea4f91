#!/usr/bin/env python3
"""
Micro-benchmark for Zone Viewer performance.

Tests:
1. Diff-apply throughput of the reconciler
2. Zone detection latency on a full-depth book
3. Full analysis pass latency (detect + stats + alerts + overlay)

Usage:
    python -m zone_viewer.benchmark
"""

from __future__ import annotations

import time
from statistics import mean, stdev

from .config import BookConfig
from .datafeed.orderbook import BookReconciler
from .datafeed.simulator import SyntheticFeed
from .engine.pipeline import PressureEngine
from .engine.zones import ZoneDetector
from .types import BookState


def _synthetic_book(depth: int, seed: int = 1) -> tuple[BookReconciler, SyntheticFeed]:
    feed = SyntheticFeed("BTCUSDT", seed=seed)
    book = BookReconciler(BookConfig(depth_cap=depth))
    book.bootstrap(feed.generate_snapshot(depth))
    return book, feed


def _report_latency(label: str, times: list[float]) -> None:
    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000
    print(f"  Iterations: {len(times)}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")
    print(f"  {label}: {1000/avg_time:,.0f}/sec")


def benchmark_diff_apply(iterations: int = 20000, depth: int = 100) -> None:
    """Benchmark reconciler diff throughput."""
    print("\n=== Diff Apply Benchmark ===")

    book, feed = _synthetic_book(depth)
    diffs = [feed.generate_diff() for _ in range(iterations)]

    start = time.perf_counter()
    for diff in diffs:
        book.apply(diff)
    elapsed = time.perf_counter() - start

    print(f"  Diffs applied: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {iterations / elapsed:,.0f} diffs/sec")
    print(f"  Per diff: {elapsed/iterations*1_000_000:.1f}µs")


def benchmark_detection(iterations: int = 200, depth: int = 100) -> None:
    """Benchmark the six zone generators plus merge on one book."""
    print("\n=== Zone Detection Benchmark ===")

    book, _ = _synthetic_book(depth)
    state: BookState = book.state
    detector = ZoneDetector()

    for _ in range(5):
        detector.detect(state)

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        detector.detect(state)
        times.append(time.perf_counter() - start)
    _report_latency("Passes", times)


def benchmark_full_pass(iterations: int = 200, depth: int = 100) -> None:
    """Benchmark diff + full analysis, as the live client does per update."""
    print("\n=== Full Analysis Pass Benchmark ===")

    book, feed = _synthetic_book(depth)
    engine = PressureEngine()
    diffs = [feed.generate_diff() for _ in range(iterations)]

    times = []
    for diff in diffs:
        start = time.perf_counter()
        engine.analyze(book.apply(diff))
        times.append(time.perf_counter() - start)
    _report_latency("Max updates", times)


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("Zone Viewer Performance Benchmark")
    print("=" * 60)

    benchmark_diff_apply()
    benchmark_detection()
    benchmark_full_pass()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
