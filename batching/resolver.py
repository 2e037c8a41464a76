# batching/resolver.py
from __future__ import annotations
import logging
import time
from typing import Any, Callable, Dict, Optional

from batching import fields

log = logging.getLogger(__name__)

Clock = Callable[[], float]

def wall_clock_ms() -> float:
    return time.time() * 1000.0

class BatchKeyResolver:
    """
    Decides which batch an event belongs to.

    Explicit sender ids win. Without one, events are grouped by arrival
    timing: a gap longer than window_ms starts a new fallback lineage.
    One instance per engine; the lineage state is not shared.
    """

    def __init__(self, window_ms: float = 1000, clock: Clock = wall_clock_ms):
        self.window_ms = window_ms
        self._clock = clock
        self._current_fallback_id: Optional[str] = None
        self._last_event_ms: float = 0.0

    @property
    def current_fallback_id(self) -> Optional[str]:
        return self._current_fallback_id

    def explicit_id(self, raw: Dict[str, Any]) -> Optional[str]:
        value = fields.first_present(raw, fields.BATCH_ID)
        return str(value) if value is not None else None

    def resolve(self, raw: Dict[str, Any]) -> str:
        batch_id = self.explicit_id(raw)
        if batch_id is not None:
            return batch_id

        now = self._clock()
        elapsed = now - self._last_event_ms
        if self._current_fallback_id is None or elapsed > self.window_ms:
            self._current_fallback_id = f"batch_{int(now)}"
            log.debug(f"[fallback] new lineage {self._current_fallback_id} (gap={elapsed:.0f}ms)")
        self._last_event_ms = now
        return self._current_fallback_id

    def is_fallback(self, batch_id: str) -> bool:
        return batch_id == self._current_fallback_id

    def release(self, batch_id: str) -> None:
        """Called on finalization: ends the lineage if batch_id is the active one."""
        if self.is_fallback(batch_id):
            log.debug(f"[fallback] lineage {batch_id} closed")
            self._current_fallback_id = None
