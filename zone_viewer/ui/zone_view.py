"""
Pressure-zone terminal view using Textual.

Displays:
- Top: connection status, best bid/ask, gap/fallback flags, update rate
- Middle: zone table (strongest first) with intensity bars
- Bottom: most recent alerts

Performance notes:
- Frames are drained from a thread-safe queue; only the newest is rendered
- Rendering is pure (build_* helpers) so it can be exercised without a terminal
"""

from __future__ import annotations

import asyncio
import queue
from collections import deque
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from rich.console import RenderableType
from rich.style import Style
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import Footer, Static

from ..types import ConnectionState, Severity, ZoneType

if TYPE_CHECKING:
    from ..types import Alert, ViewerFrame

# Color scheme (dark theme)
SUPPORT_COLOR = "#10b981"
RESISTANCE_COLOR = "#ef4444"
PRICE_COLOR = "#f8fafc"
HEADER_COLOR = "#94a3b8"
BAR_BG = "#1e293b"

STATE_STYLES = {
    ConnectionState.CONNECTED: "bold green",
    ConnectionState.CONNECTING: "yellow",
    ConnectionState.ERROR: "bold red",
    ConnectionState.DISCONNECTED: "dim",
}

SEVERITY_STYLES = {
    Severity.LOW: "dim",
    Severity.MEDIUM: "yellow",
    Severity.HIGH: "bold #f97316",
    Severity.CRITICAL: "bold white on #b91c1c",
}

MAX_ALERTS = 8
POLL_INTERVAL_SEC = 0.1


def format_qty(qty: float) -> str:
    """Format quantity for display."""
    if qty >= 1000:
        return f"{qty/1000:.1f}K"
    elif qty >= 1:
        return f"{qty:.1f}"
    else:
        return f"{qty:.3f}"


def make_bar(value: float, max_value: float, width: int, color: str) -> Text:
    """Create a horizontal bar using block characters."""
    if max_value <= 0:
        return Text(" " * width)

    fill_width = int(min(1.0, value / max_value) * width)
    bar = "█" * fill_width + " " * (width - fill_width)
    return Text(bar, style=Style(color=color, bgcolor=BAR_BG))


def build_status_text(frame: Optional[ViewerFrame]) -> Text:
    if frame is None:
        return Text("Connecting...", style="dim")

    status = frame.status
    book = frame.book
    result = Text()
    result.append(f" {frame.symbol} ", style="bold white on #1e40af")
    result.append("  ")
    result.append(status.state.value.upper(), style=STATE_STYLES[status.state])
    if status.fallback_active:
        result.append("  SYNTHETIC", style="bold magenta")
    if status.gap.detected:
        result.append(f"  GAP {status.gap.gap_duration_ms / 1000:.1f}s", style="bold red")
    if status.gap.reconnecting:
        result.append(f"  reconnect #{status.reconnect_attempts}", style="yellow")
    result.append("  Bid: ", style="dim")
    result.append(f"{book.best_bid:.2f}", style=SUPPORT_COLOR)
    result.append("  Ask: ", style="dim")
    result.append(f"{book.best_ask:.2f}", style=RESISTANCE_COLOR)
    result.append("  │  ", style="dim")
    result.append("Zones: ", style="dim")
    result.append(str(frame.result.statistics.total_zones), style="cyan")
    result.append("  Updates/s: ", style="dim")
    result.append(f"{frame.updates_per_sec:.0f}", style="cyan")
    return result


def build_zone_table(frame: Optional[ViewerFrame]) -> RenderableType:
    """Zones of the latest pass, strongest first."""
    if frame is None:
        return Text("Waiting for data...", style="dim")
    zones = frame.result.zones
    if not zones:
        return Text("No pressure zones", style="dim")

    table = Table(
        show_header=True,
        header_style=HEADER_COLOR,
        box=None,
        padding=(0, 1),
        collapse_padding=True,
    )
    table.add_column("Type", justify="left", width=11)
    table.add_column("Pressure", justify="left", width=12)
    table.add_column("Center", justify="right", width=12)
    table.add_column("Range", justify="center", width=23)
    table.add_column("Intensity", justify="left", width=12, no_wrap=True)
    table.add_column("Strength", justify="right", width=8)
    table.add_column("Volume", justify="right", width=9)
    table.add_column("Orders", justify="right", width=6)

    for zone in zones:
        color = SUPPORT_COLOR if zone.type is ZoneType.SUPPORT else RESISTANCE_COLOR
        table.add_row(
            Text(zone.type.value, style=color),
            Text(zone.pressure_type.value),
            Text(f"{zone.center_price:.2f}", style=PRICE_COLOR),
            Text(f"{zone.min_price:.2f} - {zone.max_price:.2f}", style="dim"),
            make_bar(zone.intensity, 1.0, 12, color),
            Text(f"{zone.strength:.2f}"),
            Text(format_qty(zone.total_volume)),
            Text(str(zone.order_count)),
        )
    return table


def build_alert_text(alerts: Iterable[Alert]) -> Text:
    result = Text()
    for alert in alerts:
        if result:
            result.append("\n")
        result.append(f"[{alert.severity.value.upper():>8}] ", style=SEVERITY_STYLES[alert.severity])
        result.append(alert.message)
    if not result:
        result.append("No alerts", style="dim")
    return result


class StatusBar(Static):
    """Status bar showing symbol, connection state and rate."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 3;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._frame: ViewerFrame | None = None

    def update_frame(self, frame: ViewerFrame) -> None:
        self._frame = frame
        self.refresh()

    def render(self) -> RenderableType:
        return build_status_text(self._frame)


class ZoneTable(Static):
    """Main zone table widget."""

    DEFAULT_CSS = """
    ZoneTable {
        width: 100%;
        height: 1fr;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._frame: ViewerFrame | None = None

    def update_frame(self, frame: ViewerFrame) -> None:
        self._frame = frame
        self.refresh()

    def render(self) -> RenderableType:
        return build_zone_table(self._frame)


class AlertLog(Static):
    """Rolling list of the most recent alerts."""

    DEFAULT_CSS = """
    AlertLog {
        dock: bottom;
        height: 10;
        padding: 0 2;
        border-top: solid #334155;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._alerts: deque[Alert] = deque(maxlen=MAX_ALERTS)

    def add_alerts(self, alerts: Iterable[Alert]) -> None:
        self._alerts.extendleft(alerts)
        self.refresh()

    def clear(self) -> None:
        self._alerts.clear()
        self.refresh()

    def render(self) -> RenderableType:
        return build_alert_text(self._alerts)


class ZoneApp(App):
    """Main Zone Viewer application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #main-container {
        width: 100%;
        height: 100%;
        padding: 1 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "reset", "Reset Analysis"),
    ]

    def __init__(
        self,
        frame_queue: queue.Queue[ViewerFrame],
        on_reset: Optional[Callable[[], None]] = None,
    ) -> None:
        super().__init__()
        self.frame_queue = frame_queue
        self._on_reset = on_reset
        self._status_bar: StatusBar | None = None
        self._zone_table: ZoneTable | None = None
        self._alert_log: AlertLog | None = None

    def compose(self) -> ComposeResult:
        self._status_bar = StatusBar()
        self._zone_table = ZoneTable()
        self._alert_log = AlertLog()

        yield self._status_bar
        yield Container(self._zone_table, id="main-container")
        yield self._alert_log
        yield Footer()

    async def on_mount(self) -> None:
        """Start the frame consumer task."""
        self.run_worker(self._consume_frames(), exclusive=True)

    def drain(self) -> Optional[ViewerFrame]:
        """Pull every queued frame, collect their alerts and return the newest."""
        latest = None
        while True:
            try:
                frame = self.frame_queue.get_nowait()
            except queue.Empty:
                return latest
            if self._alert_log and frame.result.alerts:
                self._alert_log.add_alerts(frame.result.alerts)
            latest = frame

    async def _consume_frames(self) -> None:
        """Poll the thread-safe queue and update the widgets."""
        while True:
            frame = self.drain()
            if frame is not None:
                if self._status_bar:
                    self._status_bar.update_frame(frame)
                if self._zone_table:
                    self._zone_table.update_frame(frame)
            await asyncio.sleep(POLL_INTERVAL_SEC)

    def action_reset(self) -> None:
        """Clear analysis history and alerts (bound to 'r' key)."""
        if self._on_reset is not None:
            self._on_reset()
        if self._alert_log:
            self._alert_log.clear()


async def run_ui(
    frame_queue: queue.Queue[ViewerFrame],
    on_reset: Optional[Callable[[], None]] = None,
) -> None:
    """Run the TUI application."""
    app = ZoneApp(frame_queue, on_reset)
    await app.run_async()
