"""
Notification throttle — at most one dispatch per (region, transition) per window.

Process-local and never persisted: a restart resets every window.
"""

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from geofence_kernel.clock import Clock, utcnow
from geofence_kernel.models.transition import TransitionType

ThrottleKey = Tuple[str, TransitionType]


class NotificationThrottle:
    """Last-dispatch timestamps keyed by (region_id, transition_type)."""

    def __init__(self, window_seconds: int = 60, clock: Optional[Clock] = None):
        self.window = timedelta(seconds=window_seconds)
        self._clock = clock or utcnow
        self._last: Dict[ThrottleKey, datetime] = {}
        self._lock = threading.Lock()

    def try_acquire(self, region_id: str, transition_type: TransitionType) -> bool:
        """
        Check-and-set: returns False if the key dispatched within the window,
        otherwise stamps the key with the current time and returns True.
        """
        key = (region_id, transition_type)
        now = self._clock()
        with self._lock:
            last = self._last.get(key)
            if last is not None and now - last < self.window:
                return False
            self._last[key] = now
            return True

    def last_dispatch(
        self, region_id: str, transition_type: TransitionType
    ) -> Optional[datetime]:
        with self._lock:
            return self._last.get((region_id, transition_type))

    def reset(self) -> None:
        with self._lock:
            self._last.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last)
