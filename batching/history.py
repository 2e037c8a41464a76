# batching/history.py
from __future__ import annotations
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Set

from common.schemas import FinalizedBatch, ROIResult

log = logging.getLogger(__name__)

MAX_BATCH_QUEUE = 5

class BatchHistory:
    """
    Bounded FIFO of finalized batches plus the viewer state that refers to them.

    - deliver(): append in arrival order; oldest batches fall off past capacity.
    - Selections are keyed "<batch_id>_<box_number>" and are dropped with their batch.
    - While paused the queue is frozen: incoming batches are dropped.
    - The view index follows the newest batch unless the viewer pinned an older one.
    """

    def __init__(self, capacity: int = MAX_BATCH_QUEUE):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._queue: Deque[FinalizedBatch] = deque()
        self._index = 0
        self._selected: Dict[str, ROIResult] = {}
        self.paused = False
        self.dropped_while_paused = 0

    # ---------------- Completion Sink ----------------

    def deliver(self, batch: FinalizedBatch) -> bool:
        if self.paused:
            self.dropped_while_paused += 1
            log.debug(f"[history] paused; dropping batch {batch.id}")
            return False

        was_on_latest = not self._queue or self._index == len(self._queue) - 1
        pinned_id = self.current.id if self.current is not None else None

        self._queue.append(batch)
        self._trim()

        if was_on_latest:
            self._index = len(self._queue) - 1
        else:
            pinned = self._position(pinned_id)
            self._index = pinned if pinned is not None else len(self._queue) - 1
        return True

    __call__ = deliver

    # ---------------- queue view ----------------

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def batches(self) -> List[FinalizedBatch]:
        return list(self._queue)

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> Optional[FinalizedBatch]:
        if not self._queue:
            return None
        return self._queue[self._index]

    def get(self, batch_id: str) -> Optional[FinalizedBatch]:
        pos = self._position(batch_id)
        return self._queue[pos] if pos is not None else None

    def view(self, index: int) -> FinalizedBatch:
        if not 0 <= index < len(self._queue):
            raise IndexError(f"no batch at index {index}")
        self._index = index
        return self._queue[index]

    def set_capacity(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        pinned_id = self.current.id if self.current is not None else None
        self._trim()
        pinned = self._position(pinned_id)
        self._index = pinned if pinned is not None else max(len(self._queue) - 1, 0)

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        """Unfreeze, trim back to capacity and jump to the newest batch."""
        self.paused = False
        self._trim()
        self._index = max(len(self._queue) - 1, 0)

    def clear(self) -> None:
        self._queue.clear()
        self._selected.clear()
        self._index = 0

    # ---------------- selection ----------------

    @property
    def selected(self) -> List[ROIResult]:
        return list(self._selected.values())

    def toggle(self, batch_id: str, box_number: int) -> bool:
        """Returns True if the image is selected after the call."""
        key = f"{batch_id}_{box_number}"
        if key in self._selected:
            del self._selected[key]
            return False
        batch = self.get(batch_id)
        if batch is None:
            raise KeyError(batch_id)
        roi = next((r for r in batch.rois if r.box_number == box_number), None)
        if roi is None:
            raise KeyError(key)
        self._selected[key] = roi
        return True

    def clear_selection(self) -> None:
        self._selected.clear()

    # ---------------- internals ----------------

    def _position(self, batch_id: Optional[str]) -> Optional[int]:
        if batch_id is None:
            return None
        for i, b in enumerate(self._queue):
            if b.id == batch_id:
                return i
        return None

    def _trim(self) -> None:
        evicted: Set[str] = set()
        while len(self._queue) > self._capacity:
            evicted.add(self._queue.popleft().id)
        if evicted:
            log.debug(f"[history] evicted {sorted(evicted)}")
            self._selected = {k: roi for k, roi in self._selected.items() if roi.batch_id not in evicted}
