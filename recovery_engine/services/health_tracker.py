"""
Aggregate health tracking.

Keeps a bounded window of recent errors, lifetime error/success counters
and a frustration score derived from the recent window.
"""

import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, List, Optional, Tuple

from recovery_engine.models.error import ErrorRecord
from recovery_engine.models.health import HealthEntry, HealthSnapshot
from recovery_engine.models.taxonomy import ErrorSeverity, ResolutionMethod

logger = logging.getLogger(__name__)


class HealthTracker:
    """
    Health window and frustration score.

    The frustration score only looks at entries recorded within the last
    ``horizon_seconds``:

    - ``unresolved_points`` per unresolved entry, capped at ``unresolved_cap``
    - ``critical_points`` per critical entry
    - ``count_points`` per entry, capped at ``count_cap``
    - minus decay credits granted within the same horizon

    and is clamped to [0, 100].
    """

    def __init__(
        self,
        window_size: int = 20,
        horizon_seconds: float = 300.0,
        unresolved_points: int = 15,
        unresolved_cap: int = 60,
        critical_points: int = 25,
        count_points: int = 5,
        count_cap: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_size = window_size
        self.horizon_seconds = horizon_seconds
        self.unresolved_points = unresolved_points
        self.unresolved_cap = unresolved_cap
        self.critical_points = critical_points
        self.count_points = count_points
        self.count_cap = count_cap
        self._clock = clock

        self._window: Deque[HealthEntry] = deque(maxlen=window_size)
        self._credits: Deque[Tuple[float, float]] = deque()
        self._resolutions: Dict[ResolutionMethod, int] = {}
        self.error_count = 0
        self.success_count = 0

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.monotonic) -> "HealthTracker":
        return cls(
            window_size=settings.health_window_size,
            horizon_seconds=settings.frustration_window_seconds,
            unresolved_points=settings.frustration_unresolved_points,
            unresolved_cap=settings.frustration_unresolved_cap,
            critical_points=settings.frustration_critical_points,
            count_points=settings.frustration_count_points,
            count_cap=settings.frustration_count_cap,
            clock=clock,
        )

    # ========== Updates ==========

    def record(self, record: ErrorRecord) -> HealthEntry:
        entry = HealthEntry(record=record, recorded_at=self._clock())
        self._window.append(entry)
        self.error_count += 1
        return entry

    def resolve(self, error_id: str, method: ResolutionMethod) -> bool:
        """
        Mark the entry for an error as resolved.

        Returns:
            True if an unresolved entry was found
        """
        for entry in reversed(self._window):
            if entry.record.id == error_id and not entry.resolved:
                entry.resolved = True
                entry.resolution_method = method
                entry.resolved_at = datetime.now(timezone.utc)
                self._resolutions[method] = self._resolutions.get(method, 0) + 1
                logger.debug(f"Resolved {error_id} via {method.value}")
                return True
        return False

    def record_success(self) -> None:
        self.success_count += 1

    def decay(self, points: float) -> None:
        """Grant a frustration credit that expires with the horizon."""
        if points > 0:
            self._credits.append((self._clock(), float(points)))

    def reset(self) -> None:
        self._window.clear()
        self._credits.clear()
        self._resolutions.clear()
        self.error_count = 0
        self.success_count = 0

    # ========== Queries ==========

    @property
    def error_rate(self) -> float:
        total = self.error_count + self.success_count
        if total == 0:
            return 0.0
        return self.error_count / total

    def recent_entries(self) -> List[HealthEntry]:
        horizon = self._clock() - self.horizon_seconds
        return [e for e in self._window if e.recorded_at >= horizon]

    def _active_credit(self) -> float:
        horizon = self._clock() - self.horizon_seconds
        while self._credits and self._credits[0][0] < horizon:
            self._credits.popleft()
        return sum(points for _, points in self._credits)

    @property
    def frustration_score(self) -> float:
        recent = self.recent_entries()

        unresolved = sum(1 for e in recent if not e.resolved)
        critical = sum(1 for e in recent if e.record.severity == ErrorSeverity.CRITICAL)

        score = (
            min(unresolved * self.unresolved_points, self.unresolved_cap)
            + critical * self.critical_points
            + min(len(recent) * self.count_points, self.count_cap)
            - self._active_credit()
        )
        return float(min(max(score, 0), 100))

    def unresolved(self) -> List[HealthEntry]:
        return [e for e in self._window if not e.resolved]

    def entry_for(self, error_id: str) -> Optional[HealthEntry]:
        for entry in reversed(self._window):
            if entry.record.id == error_id:
                return entry
        return None

    def resolution_stats(self) -> Dict[ResolutionMethod, int]:
        return dict(self._resolutions)

    def snapshot(self) -> HealthSnapshot:
        return HealthSnapshot(
            error_count=self.error_count,
            success_count=self.success_count,
            error_rate=self.error_rate,
            frustration_score=self.frustration_score,
            window_size=len(self._window),
            unresolved_count=len(self.unresolved()),
            recent_errors=[e.record for e in self._window],
            resolutions=self.resolution_stats(),
        )
