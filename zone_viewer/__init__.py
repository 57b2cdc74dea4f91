"""
Zone Viewer - live order book reconciliation and pressure-zone analysis.

Architecture:
- datafeed/: Binance/synthetic feeds, local order book, connection state
- engine/: Zone detection, statistics, alerts, heatmap/overlay feed
- ui/: Zone table + alerts (Textual TUI)
"""

__version__ = "0.1.0"
