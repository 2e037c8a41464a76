# batching/inflight.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

class BatchState(str, Enum):
    OPEN = "open"
    FINALIZING = "finalizing"

@dataclass
class InFlightBatch:
    """Mutable batch owned by the accumulator until its debounce timer fires."""

    batch_id: str
    created_at: int                      # epoch ms
    contributions: Dict[str, Dict[str, Any]] = field(default_factory=dict)  # camera_id -> raw, insertion ordered
    handle: Optional[Any] = None         # asyncio.TimerHandle (or test double)
    state: BatchState = BatchState.OPEN
    arrivals: int = 0                    # every event, duplicates included

    def add(self, camera_id: str, raw: Dict[str, Any]) -> bool:
        """First write wins. Returns False for a duplicate camera."""
        self.arrivals += 1
        if camera_id in self.contributions:
            return False
        self.contributions[camera_id] = raw
        return True

    def cancel_timer(self) -> None:
        # idempotent: cancelling a fired or missing handle is a no-op
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None
