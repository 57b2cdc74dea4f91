"""
Binance Spot depth client with async orchestration.

Handles:
1. REST snapshot for the initial book state
2. WebSocket diff stream (<symbol>@depth@100ms), buffered until the snapshot lands
3. Sequencing per the Binance depth protocol (delegated to BookReconciler)
4. Re-bootstrap on a sequence gap, reconnect with backoff on transport errors
   or staleness, synthetic fallback once reconnects are exhausted
5. One analysis pass per applied diff, pushed to the UI as a ViewerFrame

Performance notes:
- orjson for JSON decoding
- No logging above DEBUG in the hot path
- All I/O is non-blocking (pure asyncio)
"""

from __future__ import annotations

import asyncio
import logging
import queue
import time
from typing import Optional

import aiohttp
import orjson

from ..config import BookConfig, ConnectionConfig, FeedConfig
from ..engine.pipeline import PressureEngine
from ..errors import InvalidSnapshot, SequenceGap, StalenessTimeout, TransportError
from ..types import AnalysisResult, BookDiff, BookSnapshot, BookState, ConnectionState, ViewerFrame
from .connection import ConnectionMonitor
from .orderbook import BookReconciler
from .simulator import SyntheticFeed

logger = logging.getLogger(__name__)


def decode_snapshot(raw: bytes | str | dict) -> BookSnapshot:
    """REST /api/v3/depth body -> BookSnapshot."""
    try:
        data = orjson.loads(raw) if isinstance(raw, (bytes, str)) else raw
        return BookSnapshot(
            bids=list(data['bids']),
            asks=list(data['asks']),
            last_update_id=int(data['lastUpdateId']),
        )
    except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise TransportError(f"undecodable depth snapshot: {exc}") from exc


def decode_diff(payload: dict) -> BookDiff:
    """depthUpdate event -> BookDiff (U = first update id, u = final update id)."""
    try:
        return BookDiff(
            sequence_start=int(payload['U']),
            sequence_end=int(payload['u']),
            bids=list(payload.get('b', ())),
            asks=list(payload.get('a', ())),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TransportError(f"undecodable depth update: {exc}") from exc


class BinanceClient:
    """
    Async Binance Spot client driving a BookReconciler + PressureEngine.

    Usage:
        client = BinanceClient("BTCUSDT")
        asyncio.run(client.run())       # frames arrive on client.frame_queue
    """

    def __init__(
        self,
        symbol: str,
        book_config: BookConfig = BookConfig(),
        connection_config: ConnectionConfig = ConnectionConfig(),
        feed_config: FeedConfig = FeedConfig(),
        engine: Optional[PressureEngine] = None,
        seed: Optional[int] = None,
    ) -> None:
        self.symbol = symbol.upper()
        self.symbol_lower = symbol.lower()
        self.feed_config = feed_config
        self.depth = book_config.depth_cap
        self.seed = seed

        # Core components
        self.reconciler = BookReconciler(book_config)
        self.monitor = ConnectionMonitor(connection_config)
        self.engine = engine or PressureEngine()

        # State
        self._running = False
        self._buffered: list[BookDiff] = []
        self._resync = False
        self._stale: Optional[StalenessTimeout] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._synthetic: Optional[SyntheticFeed] = None

        # Rolling update rate
        self._update_count = 0
        self._update_count_last = 0
        self._rate_calc_time = time.perf_counter()
        self._updates_per_sec = 0.0

        # Thread-safe output queue for the UI; oldest frame dropped when full
        self.frame_queue: queue.Queue[ViewerFrame] = queue.Queue(maxsize=feed_config.queue_size)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _snapshot_url(self) -> str:
        cfg = self.feed_config
        return f"{cfg.rest_base}/api/v3/depth?symbol={self.symbol}&limit={cfg.snapshot_limit}"

    def _build_ws_url(self) -> str:
        """Combined-stream URL, so every message arrives as {stream, data}."""
        stream = f"{self.symbol_lower}@depth@{self.feed_config.ws_interval_ms}ms"
        return f"{self.feed_config.ws_base}/stream?streams={stream}"

    async def _fetch_snapshot(self, session: aiohttp.ClientSession) -> BookSnapshot:
        async with session.get(self._snapshot_url()) as resp:
            resp.raise_for_status()
            return decode_snapshot(await resp.read())

    # ------------------------------------------------------------------
    # Book maintenance
    # ------------------------------------------------------------------

    def bootstrap(self, snapshot: BookSnapshot) -> Optional[AnalysisResult]:
        """
        Load a snapshot, then replay buffered diffs.

        Diffs already reflected in the snapshot are skipped by the reconciler;
        a gap inside the buffer leaves the client flagged for another resync.
        """
        state = self.reconciler.bootstrap(snapshot)
        self._resync = False
        buffered, self._buffered = self._buffered, []
        if buffered:
            try:
                state = self.reconciler.apply_many(buffered)
            except SequenceGap as exc:
                self._on_gap(exc)
                return None
        return self._publish(state)

    def _on_gap(self, exc: SequenceGap) -> None:
        logger.warning("Resynchronising %s after %s", self.symbol, exc)
        self.monitor.note_gap(self.reconciler.gap)
        self._resync = True

    def process_diff(self, diff: BookDiff) -> Optional[AnalysisResult]:
        """
        Apply one diff and run an analysis pass.

        HOT PATH - called for every depth update.
        Returns None while buffering (before bootstrap or during a resync).
        """
        if self._resync or not self.reconciler.ready:
            self._buffered.append(diff)
            return None
        try:
            state = self.reconciler.apply(diff)
        except SequenceGap as exc:
            self._on_gap(exc)
            self._buffered.append(diff)
            return None
        self._update_count += 1
        self.monitor.touch()
        return self._publish(state)

    def handle_message(self, raw: bytes | str) -> Optional[AnalysisResult]:
        """
        Handle one WebSocket text frame.

        HOT PATH - called for every message.
        """
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            raise TransportError(f"undecodable websocket frame: {exc}") from exc

        # Combined stream format: {stream: "...", data: {...}}
        payload = data.get('data', data) if isinstance(data, dict) else None
        if not isinstance(payload, dict) or payload.get('e', 'depthUpdate') != 'depthUpdate':
            return None
        return self.process_diff(decode_diff(payload))

    @property
    def needs_resync(self) -> bool:
        return self._resync

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _publish(self, state: BookState) -> AnalysisResult:
        result = self.engine.analyze(state)

        now = time.perf_counter()
        rate_elapsed = now - self._rate_calc_time
        if rate_elapsed >= 1.0:
            self._updates_per_sec = (self._update_count - self._update_count_last) / rate_elapsed
            self._update_count_last = self._update_count
            self._rate_calc_time = now

        frame = ViewerFrame(
            symbol=self.symbol,
            book=state,
            result=result,
            status=self.monitor.status(),
            updates_per_sec=self._updates_per_sec,
        )
        try:
            self.frame_queue.put_nowait(frame)
        except queue.Full:
            # Drop oldest, put newest
            try:
                self.frame_queue.get_nowait()
            except queue.Empty:
                pass
            self.frame_queue.put_nowait(frame)
        return result

    # ------------------------------------------------------------------
    # Run loops
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Connect, stream and reconnect until stop() or until reconnects are
        exhausted, in which case the synthetic feed takes over.
        """
        self._running = True
        while self._running:
            self.monitor.mark_connecting()
            try:
                await self._connect_once()
            except (aiohttp.ClientError, asyncio.TimeoutError, InvalidSnapshot) as exc:
                error: Exception = TransportError(str(exc) or type(exc).__name__)
            except (TransportError, StalenessTimeout) as exc:
                error = exc
            else:
                # Clean close: either stop() or the server went away
                if not self._running:
                    break
                error = TransportError("websocket closed by server")

            if not self._running:
                break
            self.reconciler.mark_reconnecting(True)
            delay = self.monitor.on_error(error)
            if delay is None:
                await self.run_synthetic()
                return
            if not await self.monitor.wait_backoff(delay):
                return

    async def _connect_once(self) -> None:
        self._stale = None
        self._buffered.clear()
        self._resync = False
        self.reconciler.reset()

        async with aiohttp.ClientSession() as session:
            # Subscribe first so no diff between snapshot and stream is lost
            async with session.ws_connect(self._build_ws_url(), heartbeat=30) as ws:
                self._ws = ws
                try:
                    self.bootstrap(await self._fetch_snapshot(session))
                    self.monitor.mark_connected()
                    logger.info("Connected to %s depth stream", self.symbol)
                    self.monitor.watch_staleness(self._on_stale)

                    async for msg in ws:
                        if not self._running:
                            break
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            self.handle_message(msg.data)
                            if self._resync:
                                self.bootstrap(await self._fetch_snapshot(session))
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            raise TransportError(f"websocket error: {ws.exception()}")
                finally:
                    self._ws = None
                    self.monitor.unwatch()

        if self._stale is not None:
            raise self._stale

    def _on_stale(self, exc: StalenessTimeout) -> None:
        self._stale = exc
        if self._ws is not None and not self._ws.closed:
            asyncio.ensure_future(self._ws.close())

    async def run_synthetic(self) -> None:
        """Drive the engine from the synthetic feed until stop()."""
        self._running = True
        self.monitor.unwatch()
        feed = self._synthetic = SyntheticFeed(self.symbol, seed=self.seed)
        self._buffered.clear()
        self.engine.reset()
        logger.warning("Using synthetic order book for %s", self.symbol)

        self.bootstrap(feed.generate_snapshot(self.depth))
        async for diff in feed.stream(self.feed_config.demo_interval_sec):
            if not self._running:
                break
            self.process_diff(diff)

    async def run_demo(self) -> None:
        """Synthetic feed only, reported as a healthy connection."""
        self.monitor.mark_connecting()
        self.monitor.mark_connected()
        await self.run_synthetic()

    def stop(self) -> None:
        """Signal the client to stop and cancel pending timers."""
        self._running = False
        if self._synthetic is not None:
            self._synthetic.stop()
        if self._ws is not None and not self._ws.closed:
            asyncio.ensure_future(self._ws.close())
        if self.monitor.state is not ConnectionState.DISCONNECTED:
            self.monitor.disconnect()
