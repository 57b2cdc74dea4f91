"""
Data types for Zone Viewer.

Design notes:
- NamedTuple for immutable, memory-efficient records
- str-valued Enums for every closed set of tags (sides, zone kinds, severities)
- BookState is produced only by BookReconciler; everything downstream reads it
"""

from __future__ import annotations

from enum import Enum
from typing import Any, NamedTuple, Optional


class Side(str, Enum):
    BID = "bid"
    ASK = "ask"


class ZoneType(str, Enum):
    SUPPORT = "support"
    RESISTANCE = "resistance"


class PressureType(str, Enum):
    SUPPORT = "support"
    RESISTANCE = "resistance"
    ACCUMULATION = "accumulation"
    DISTRIBUTION = "distribution"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    FORMATION = "formation"
    STRENGTHENING = "strengthening"
    WEAKENING = "weakening"
    VOLUME_SPIKE = "volume_spike"
    CLUSTER_FORMATION = "cluster_formation"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Order book
# ---------------------------------------------------------------------------

class PriceLevel(NamedTuple):
    """Single resting price level on one side of the book."""
    price: float
    quantity: float           # Always > 0 once stored
    side: Side
    last_updated_ms: int


class PriceRange(NamedTuple):
    min: float
    max: float

    @property
    def span(self) -> float:
        return self.max - self.min


EMPTY_RANGE = PriceRange(0.0, 0.0)


class BookState(NamedTuple):
    """
    Depth-bounded view of the order book after a bootstrap or diff.

    bids: best (highest) first. asks: best (lowest) first.
    """
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]
    max_quantity: float
    price_range: PriceRange
    sequence_id: int
    timestamp_ms: int

    @property
    def best_bid(self) -> float:
        """Best bid price. Returns 0.0 if no bids."""
        return self.bids[0].price if self.bids else 0.0

    @property
    def best_ask(self) -> float:
        """Best ask price. Returns 0.0 if no asks."""
        return self.asks[0].price if self.asks else 0.0

    @property
    def mid_price(self) -> float:
        """Mid price, falling back to one side, then to the middle of the range."""
        bb, ba = self.best_bid, self.best_ask
        if bb > 0 and ba > 0:
            return (bb + ba) / 2.0
        if bb > 0 or ba > 0:
            return bb or ba
        return (self.price_range.min + self.price_range.max) / 2.0

    @property
    def levels(self) -> tuple[PriceLevel, ...]:
        return self.bids + self.asks

    @property
    def total_volume(self) -> float:
        return sum(level.quantity for level in self.bids) + sum(level.quantity for level in self.asks)

    @property
    def is_empty(self) -> bool:
        return not self.bids and not self.asks


class BookSnapshot(NamedTuple):
    """Decoded full snapshot from a transport: [(price, qty), ...] per side."""
    bids: list[tuple[float, float]]
    asks: list[tuple[float, float]]
    last_update_id: int = 0


class BookDiff(NamedTuple):
    """Decoded incremental update covering sequence ids [sequence_start, sequence_end]."""
    sequence_start: int
    sequence_end: int
    bids: list[tuple[float, float]]
    asks: list[tuple[float, float]]


# ---------------------------------------------------------------------------
# Analysis output
# ---------------------------------------------------------------------------

class Zone(NamedTuple):
    """
    Price region inferred to carry above-average buy/sell pressure.

    Invariant: min_price <= center_price <= max_price, intensity and strength in [0, 1].
    Build through zone_viewer.engine.zones.make_zone() to get the invariant enforced.
    """
    id: str
    side: Side
    type: ZoneType
    pressure_type: PressureType
    center_price: float
    min_price: float
    max_price: float
    intensity: float
    strength: float
    total_volume: float
    order_count: int
    average_quantity: float
    timestamp_ms: int
    is_active: bool = True

    def contains(self, price: float) -> bool:
        return self.min_price <= price <= self.max_price

    @property
    def half_width(self) -> float:
        return (self.max_price - self.min_price) / 2.0


class Alert(NamedTuple):
    id: str
    type: AlertType
    severity: Severity
    message: str
    zone: Zone
    timestamp_ms: int
    confidence: float
    metadata: dict[str, Any]


class VolumeDistribution(NamedTuple):
    total_volume: float = 0.0
    average_volume: float = 0.0
    volume_spikes: int = 0
    concentration: float = 0.0


class ClusterStats(NamedTuple):
    total_clusters: int = 0
    average_cluster_size: float = 0.0
    largest_cluster: int = 0
    cluster_density: float = 0.0


class TemporalStats(NamedTuple):
    forming_zones: int = 0
    strengthening_zones: int = 0
    weakening_zones: int = 0
    average_zone_age_sec: float = 0.0


class RiskMetrics(NamedTuple):
    fragmentation: float = 0.0
    concentration_risk: float = 0.0
    volatility: float = 0.0


class Statistics(NamedTuple):
    total_zones: int = 0
    support_zones: int = 0
    resistance_zones: int = 0
    average_intensity: float = 0.0
    strongest_zone: Optional[Zone] = None
    critical_levels: tuple[float, ...] = ()
    volume: VolumeDistribution = VolumeDistribution()
    clusters: ClusterStats = ClusterStats()
    temporal: TemporalStats = TemporalStats()
    risk: RiskMetrics = RiskMetrics()
    persisting_zones: int = 0


class HeatmapPoint(NamedTuple):
    price: float
    intensity: float
    volume: float
    density: float
    gradient: float
    risk_level: RiskLevel


class GradientSegment(NamedTuple):
    start_price: float
    end_price: float
    intensity: float
    color: str
    opacity: float
    pressure_type: PressureType


class AnalysisResult(NamedTuple):
    """Single output record per processed update."""
    zones: tuple[Zone, ...]
    statistics: Statistics
    alerts: tuple[Alert, ...]
    heatmap: tuple[HeatmapPoint, ...]
    overlays: tuple[GradientSegment, ...]
    sequence_id: int
    timestamp_ms: int


# ---------------------------------------------------------------------------
# Connection status
# ---------------------------------------------------------------------------

class GapInfo(NamedTuple):
    detected: bool = False
    last_update_ms: int = 0
    gap_duration_ms: int = 0
    reconnecting: bool = False


class ConnectionStatus(NamedTuple):
    state: ConnectionState
    reconnect_attempts: int
    total_connections: int
    data_updates: int
    last_update_ms: int
    gap: GapInfo
    fallback_active: bool


class ViewerFrame(NamedTuple):
    """
    Everything a status display needs for one update.

    Pushed to the UI queue after every analysis pass.
    """
    symbol: str
    book: BookState
    result: AnalysisResult
    status: ConnectionStatus
    updates_per_sec: float
