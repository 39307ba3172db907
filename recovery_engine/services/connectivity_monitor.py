"""
Connectivity monitoring.

Tracks the network link status from platform signals and link quality
metrics, and publishes status changes to subscribers. Publication is
debounced so that a flapping link does not storm subscribers.
"""

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, List, Optional

from recovery_engine.models.connectivity import ConnectivityState, ConnectivityStatus
from recovery_engine.utils.logging import get_logger, log_connectivity_change

logger = get_logger(__name__)

ConnectivityListener = Callable[[ConnectivityState], None]

SLOW_EFFECTIVE_TYPES = frozenset({"2g", "slow-2g"})


class ConnectivityMonitor:
    """
    Maintains the current ConnectivityState.

    The state itself is updated immediately on every signal; only the
    notification of subscribers is debounced.

    Args:
        debounce_seconds: Minimum spacing between published changes
        slow_rtt_ms: Round trip time at or above which the link is slow
        slow_downlink_mbps: Downlink below which the link is slow
        flap_threshold: Online/offline flips within the window that mark the link unstable
        flap_window_seconds: Window for counting flips
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        debounce_seconds: float = 0.25,
        slow_rtt_ms: float = 1000.0,
        slow_downlink_mbps: float = 0.5,
        flap_threshold: int = 3,
        flap_window_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.debounce_seconds = debounce_seconds
        self.slow_rtt_ms = slow_rtt_ms
        self.slow_downlink_mbps = slow_downlink_mbps
        self.flap_threshold = flap_threshold
        self.flap_window_seconds = flap_window_seconds
        self._clock = clock

        self._reachable = True
        self._rtt_ms: Optional[float] = None
        self._downlink_mbps: Optional[float] = None
        self._effective_type: Optional[str] = None
        self._last_successful_request: Optional[datetime] = None
        self._flips: Deque[float] = deque()

        self._state = ConnectivityState()
        self._published_status = self._state.status
        self._last_published_at: Optional[float] = None
        self._pending: Optional[asyncio.TimerHandle] = None
        self._listeners: List[ConnectivityListener] = []

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.monotonic) -> "ConnectivityMonitor":
        return cls(
            debounce_seconds=settings.connectivity_debounce_seconds,
            slow_rtt_ms=settings.slow_rtt_ms,
            slow_downlink_mbps=settings.slow_downlink_mbps,
            flap_threshold=settings.unstable_flap_threshold,
            flap_window_seconds=settings.unstable_window_seconds,
            clock=clock,
        )

    # ========== Accessors ==========

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def published_status(self) -> ConnectivityStatus:
        return self._published_status

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """
        Register a listener for published status changes.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ========== Inputs ==========

    def set_online(self, online: bool) -> None:
        """Platform online/offline signal."""
        if online != self._reachable:
            self._flips.append(self._clock())
        self._reachable = online
        self._refresh()

    def update_link_quality(
        self,
        rtt_ms: Optional[float] = None,
        downlink_mbps: Optional[float] = None,
        effective_type: Optional[str] = None,
    ) -> None:
        """Link quality metrics, when the platform exposes them."""
        if rtt_ms is not None:
            self._rtt_ms = max(0.0, float(rtt_ms))
        if downlink_mbps is not None:
            self._downlink_mbps = max(0.0, float(downlink_mbps))
        if effective_type is not None:
            self._effective_type = effective_type.lower()
        self._refresh()

    def record_successful_request(self) -> None:
        """A request just succeeded, so the link is reachable."""
        self._last_successful_request = datetime.now(timezone.utc)
        if not self._reachable:
            self.set_online(True)
        else:
            self._refresh()

    async def probe(self, check: Callable[[], Awaitable[object]], timeout: float = 5.0) -> ConnectivityState:
        """
        Run a reachability check and feed the result back.

        Args:
            check: Async callable that raises when the backend is unreachable
            timeout: Seconds before the check counts as failed

        Returns:
            Updated connectivity state
        """
        started = time.perf_counter()
        try:
            await asyncio.wait_for(check(), timeout=timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info(f"Connectivity probe failed: {e}")
            self.set_online(False)
            return self._state

        self.update_link_quality(rtt_ms=(time.perf_counter() - started) * 1000)
        self.record_successful_request()
        return self._state

    # ========== Classification ==========

    def _is_unstable(self) -> bool:
        horizon = self._clock() - self.flap_window_seconds
        while self._flips and self._flips[0] < horizon:
            self._flips.popleft()
        return len(self._flips) >= self.flap_threshold

    def _is_slow(self) -> bool:
        if self._rtt_ms is not None and self._rtt_ms >= self.slow_rtt_ms:
            return True
        if self._downlink_mbps is not None and self._downlink_mbps < self.slow_downlink_mbps:
            return True
        return self._effective_type in SLOW_EFFECTIVE_TYPES

    def classify(self) -> ConnectivityStatus:
        if not self._reachable:
            return ConnectivityStatus.OFFLINE
        if self._is_unstable():
            return ConnectivityStatus.UNSTABLE
        if self._is_slow():
            return ConnectivityStatus.SLOW
        return ConnectivityStatus.ONLINE

    def _refresh(self) -> None:
        status = self.classify()
        changed = status != self._state.status
        self._state = ConnectivityState(
            status=status,
            rtt_ms=self._rtt_ms,
            downlink_mbps=self._downlink_mbps,
            effective_type=self._effective_type,
            quality_known=any(
                v is not None for v in (self._rtt_ms, self._downlink_mbps, self._effective_type)
            ),
            last_successful_request=self._last_successful_request,
            changed_at=datetime.now(timezone.utc) if changed else self._state.changed_at,
        )
        if changed:
            self._schedule_publish()

    # ========== Publication ==========

    def _schedule_publish(self) -> None:
        if self._pending is not None:
            # Coalesced into the publish already waiting
            return

        now = self._clock()
        wait = 0.0
        if self._last_published_at is not None:
            wait = self.debounce_seconds - (now - self._last_published_at)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if wait <= 0 or loop is None:
            self._publish()
        else:
            self._pending = loop.call_later(wait, self._publish)

    def _publish(self) -> None:
        self._pending = None
        status = self._state.status
        if status == self._published_status:
            # Flipped back inside the debounce window
            return

        previous = self._published_status
        self._published_status = status
        self._last_published_at = self._clock()

        log_connectivity_change(
            logger,
            previous.value,
            status.value,
            rtt_ms=self._state.rtt_ms,
            downlink_mbps=self._state.downlink_mbps,
        )

        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}", exc_info=True)

    def flush(self) -> None:
        """Publish a pending change immediately."""
        if self._pending is not None:
            self._pending.cancel()
            self._publish()

    def close(self) -> None:
        """Drop the pending publish and every listener."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._listeners.clear()
