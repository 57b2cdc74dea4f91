"""
Connection / staleness state machine for a live book feed.

    DISCONNECTED -> CONNECTING -> CONNECTED -> (ERROR | DISCONNECTED)
    ERROR -> CONNECTING (reconnect) | DISCONNECTED

Reconnects use exponential backoff (base * 2^attempt, capped, jittered) up to
max_attempts; past that the caller is told to fall back to the synthetic feed.
The staleness timer is an asyncio call_later handle re-armed on every applied
diff; both it and a pending backoff sleep are cancelled by disconnect().
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Callable, Optional

from ..config import ConnectionConfig
from ..errors import StalenessTimeout
from ..types import ConnectionState, ConnectionStatus, GapInfo

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({
        ConnectionState.CONNECTED, ConnectionState.ERROR, ConnectionState.DISCONNECTED,
    }),
    ConnectionState.CONNECTED: frozenset({ConnectionState.ERROR, ConnectionState.DISCONNECTED}),
    ConnectionState.ERROR: frozenset({ConnectionState.CONNECTING, ConnectionState.DISCONNECTED}),
}


class ConnectionMonitor:
    """
    Tracks connection state, reconnect attempts and data staleness.

    Thread-safety: NOT thread-safe. All timers live on the running asyncio loop.
    """

    def __init__(
        self,
        config: ConnectionConfig = ConnectionConfig(),
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config
        self._clock = clock
        self._rng = rng or random.Random()

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.total_connections = 0
        self.data_updates = 0
        self.last_update_ms = 0
        self.fallback_active = False
        self._gap = GapInfo()

        self._stale_handle: asyncio.TimerHandle | None = None
        self._on_stale: Callable[[StalenessTimeout], None] | None = None
        self._backoff_task: asyncio.Task | None = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state is self.state:
            return
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(f"illegal connection transition {self.state.value} -> {new_state.value}")
        logger.debug("Connection %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def mark_connecting(self) -> None:
        self._transition(ConnectionState.CONNECTING)

    def mark_connected(self) -> None:
        self._transition(ConnectionState.CONNECTED)
        self.total_connections += 1
        self.reconnect_attempts = 0
        self._gap = self._gap._replace(reconnecting=False)

    def on_error(self, exc: BaseException) -> float | None:
        """
        Record a transport failure.

        Returns the delay before the next reconnect, or None once max_attempts
        is exhausted (caller should switch to the synthetic feed).
        """
        self._transition(ConnectionState.ERROR)
        self.cancel_staleness()

        if self.reconnect_attempts >= self.config.max_attempts:
            self.fallback_active = True
            self._gap = self._gap._replace(reconnecting=False)
            logger.warning(
                "Giving up after %d reconnect attempts (%s); falling back to synthetic feed",
                self.reconnect_attempts, exc,
            )
            return None

        delay = self.backoff_delay(self.reconnect_attempts)
        self.reconnect_attempts += 1
        self._gap = self._gap._replace(reconnecting=True)
        logger.warning(
            "Connection error (%s); reconnect %d/%d in %.2fs",
            exc, self.reconnect_attempts, self.config.max_attempts, delay,
        )
        return delay

    def backoff_delay(self, attempt: int) -> float:
        cfg = self.config
        delay = min(cfg.base_delay_sec * (2 ** attempt), cfg.max_delay_sec)
        if cfg.jitter > 0:
            delay *= self._rng.uniform(1.0 - cfg.jitter, 1.0 + cfg.jitter)
        return delay

    async def wait_backoff(self, delay: float) -> bool:
        """
        Sleep for `delay` seconds. Returns False if cancelled by disconnect().
        """
        self._backoff_task = asyncio.ensure_future(asyncio.sleep(delay))
        try:
            await self._backoff_task
            return True
        except asyncio.CancelledError:
            if self.state is ConnectionState.DISCONNECTED:
                return False
            raise
        finally:
            self._backoff_task = None

    def disconnect(self) -> None:
        """Explicit disconnect: cancels any pending backoff and the staleness timer."""
        if self._backoff_task is not None and not self._backoff_task.done():
            self._backoff_task.cancel()
        self.unwatch()
        self._transition(ConnectionState.DISCONNECTED)
        self._gap = self._gap._replace(reconnecting=False)

    # ------------------------------------------------------------------
    # Staleness
    # ------------------------------------------------------------------

    def watch_staleness(self, on_stale: Callable[[StalenessTimeout], None]) -> None:
        """Arm the staleness timer on the running loop."""
        self._on_stale = on_stale
        self._arm()

    def unwatch(self) -> None:
        """Stop staleness tracking altogether (timer and callback)."""
        self.cancel_staleness()
        self._on_stale = None

    def _arm(self) -> None:
        self.cancel_staleness()
        if self._on_stale is None:
            return
        loop = asyncio.get_running_loop()
        self._stale_handle = loop.call_later(self.config.stale_after_sec, self._fire_stale)

    def cancel_staleness(self) -> None:
        if self._stale_handle is not None:
            self._stale_handle.cancel()
            self._stale_handle = None

    def _fire_stale(self) -> None:
        self._stale_handle = None
        silent = self._mark_gap(self._now_ms())
        logger.warning("Data gap detected: no updates for %dms", silent)
        if self._on_stale is not None:
            self._on_stale(StalenessTimeout(silent))

    def _mark_gap(self, now_ms: int) -> int:
        silent = now_ms - self.last_update_ms if self.last_update_ms else 0
        self._gap = GapInfo(
            detected=True,
            last_update_ms=self.last_update_ms,
            gap_duration_ms=silent,
            reconnecting=self._gap.reconnecting,
        )
        return silent

    def check_stale(self, now_ms: int | None = None) -> StalenessTimeout | None:
        """Synchronous staleness check; marks the gap and returns the timeout if stale."""
        now = self._now_ms() if now_ms is None else now_ms
        if not self.last_update_ms:
            return None
        silent = now - self.last_update_ms
        if silent < self.config.stale_after_sec * 1000:
            return None
        self._mark_gap(now)
        return StalenessTimeout(silent)

    def touch(self) -> None:
        """Record a successfully applied diff and reset the staleness timer."""
        self.data_updates += 1
        self.last_update_ms = self._now_ms()
        self._gap = GapInfo(last_update_ms=self.last_update_ms, reconnecting=self._gap.reconnecting)
        if self._on_stale is not None:
            self._arm()

    def note_gap(self, gap: GapInfo) -> None:
        """Adopt a sequence gap reported by the reconciler."""
        self._gap = gap

    @property
    def gap(self) -> GapInfo:
        return self._gap

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self.state,
            reconnect_attempts=self.reconnect_attempts,
            total_connections=self.total_connections,
            data_updates=self.data_updates,
            last_update_ms=self.last_update_ms,
            gap=self._gap,
            fallback_active=self.fallback_active,
        )
