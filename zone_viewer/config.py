"""
Tunable parameters for Zone Viewer.

Every threshold the detectors, alerting and overlay use lives here with its
default, so a caller can override any of them via NamedTuple._replace().
"""

from __future__ import annotations

from typing import NamedTuple

# Binance Spot endpoints
REST_BASE = "https://api.binance.com"
WS_BASE = "wss://stream.binance.com:9443"


class BookConfig(NamedTuple):
    depth_cap: int = 20               # Levels kept per side


class ConnectionConfig(NamedTuple):
    base_delay_sec: float = 1.0
    max_delay_sec: float = 30.0
    jitter: float = 0.2               # Delay multiplied by uniform(1 - jitter, 1 + jitter)
    max_attempts: int = 5             # Reconnects before falling back to the synthetic feed
    stale_after_sec: float = 10.0


class DetectorConfig(NamedTuple):
    volume_floor: float = 100.0
    min_orders_for_zone: int = 5
    max_zones: int = 20

    # 1. Density clustering
    cluster_epsilon_fraction: float = 0.002      # Of the price-range span
    cluster_median_factor: float = 1.5
    cluster_p75_factor: float = 0.8

    # 2. Same-side grouping
    grouping_tolerance: float = 0.001            # Relative price distance
    intensity_volume_scale: float = 1000.0
    strength_order_scale: float = 10.0

    # 3. Imbalance scan
    imbalance_buckets: int = 100
    imbalance_multiple: float = 2.0

    # 4. Liquidity density
    density_buckets: int = 200
    density_floor: float = 100.0
    density_scale: float = 1000.0
    density_width_fraction: float = 0.5

    # 5. Microstructure
    price_tick: float = 0.01
    iceberg_multiple: float = 5.0
    iceberg_band: float = 0.001
    iceberg_strength: float = 0.9
    hidden_median_factor: float = 2.0
    hidden_tolerance: float = 0.002
    hidden_min_orders: int = 3
    hidden_strength: float = 0.7
    spacing_decimals: int = 4
    spacing_min_repeats: int = 3
    spacing_band: float = 0.1                    # Of the spacing
    spacing_strength: float = 0.6

    # 6. Time-weighted volume profile
    profile_min_samples: int = 10
    profile_half_life_sec: float = 3600.0
    profile_band: float = 0.001
    profile_max_nodes: int = 10
    history_length: int = 1000


class AlertConfig(NamedTuple):
    match_tolerance: float = 0.001               # Relative center distance for cross-pass matching
    strengthening_ratio: float = 1.3
    weakening_ratio: float = 0.7
    spike_multiple: float = 3.0
    spike_critical_multiple: float = 5.0
    cluster_min_orders: int = 5
    cluster_high_orders: int = 10
    cooldown_ms: int = 5000


class OverlayConfig(NamedTuple):
    samples: int = 200
    min_opacity: float = 0.2
    max_opacity: float = 0.8
    strong_intensity: float = 0.7
    support_color: str = "#34d399"
    support_strong_color: str = "#10b981"
    resistance_color: str = "#f87171"
    resistance_strong_color: str = "#ef4444"
    accumulation_color: str = "#3b82f6"
    distribution_color: str = "#f59e0b"


class FeedConfig(NamedTuple):
    rest_base: str = REST_BASE
    ws_base: str = WS_BASE
    snapshot_limit: int = 100
    ws_interval_ms: int = 100
    demo_interval_sec: float = 1.0
    queue_size: int = 5
