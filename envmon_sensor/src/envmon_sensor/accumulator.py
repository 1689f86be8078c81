import threading
import time
from typing import Callable, Dict, Optional, Tuple

from envmon_core.domain.models import FieldSet, Number


class DeviceAccumulator:
    """Latest value of each field seen for one device since the last drain.

    Written by the advertisement listener, drained by the flush scheduler.
    Both operations take the same per-device lock, so a drain never observes
    half of a merge and no merge is lost across a drain. Values overwrite,
    they are never summed or averaged.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._fields: Dict[str, Tuple[Number, float]] = {}
        self._last_update: Optional[float] = None

    def merge(self, field_set: FieldSet) -> None:
        if not field_set:
            return
        now = self._clock()
        with self._lock:
            for name, value in field_set.items():
                self._fields[name] = (value, now)
            self._last_update = now

    def drain(self) -> FieldSet:
        with self._lock:
            snapshot = {name: value for name, (value, _) in self._fields.items()}
            self._fields = {}
        return snapshot

    def pending(self) -> int:
        with self._lock:
            return len(self._fields)

    @property
    def last_update(self) -> Optional[float]:
        with self._lock:
            return self._last_update
