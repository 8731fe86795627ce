"""Time derived identifiers for bliss requests and responses.

An id is the number of whole seconds since ``epoch_offset``, so it stays a
small positive integer and can be turned back into the creation time.
"""
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Tuple

from config.settings import BLISS_EPOCH_OFFSET, BLISS_TTL_SECONDS


class BlissClock:
    def __init__(self,
                 epoch_offset: int = BLISS_EPOCH_OFFSET,
                 ttl_seconds: int = BLISS_TTL_SECONDS,
                 now: Callable[[], float] = time.time):
        self.epoch_offset = epoch_offset
        self.ttl_seconds = ttl_seconds
        self._now = now
        self._last_id = 0
        self._lock = threading.Lock()

    def next_id(self) -> Tuple[int, int, int]:
        """Return ``(id, created_at, expire_at)``.

        Two calls in the same second of this process get distinct ids: the
        second one is bumped past the last issued id. Replicas can still
        collide with each other.
        """
        created_at = int(self._now())
        with self._lock:
            candidate = created_at - self.epoch_offset
            if candidate <= self._last_id:
                candidate = self._last_id + 1
            self._last_id = candidate
        return candidate, created_at, created_at + self.ttl_seconds

    def timestamp_ms(self, bliss_id: int) -> int:
        return (int(bliss_id) + self.epoch_offset) * 1000

    def request_date_and_time(self, bliss_id: int) -> Tuple[str, int]:
        """UTC date (ISO) and millisecond timestamp a request id was issued at."""
        millis = self.timestamp_ms(bliss_id)
        date = datetime.fromtimestamp(millis / 1000, tz=timezone.utc).date().isoformat()
        return date, millis
