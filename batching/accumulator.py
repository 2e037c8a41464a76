# batching/accumulator.py
"""Debounced per-batch accumulation of per-camera inspection events."""
from __future__ import annotations
import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from batching.finalizer import BatchFinalizer
from batching.inflight import BatchState, InFlightBatch
from batching.normalizer import camera_id_of
from batching.resolver import BatchKeyResolver, Clock, wall_clock_ms
from common.schemas import FinalizedBatch

log = logging.getLogger(__name__)

BatchConsumer = Callable[[FinalizedBatch], None]

class BatchAccumulator:
    """
    Owns the in-flight batches.

    Every ingested event restarts its batch's debounce timer; when a timer
    fires without further arrivals, the batch is finalized and handed to the
    subscribed consumer exactly once. All mutation happens on one event loop
    (ingest calls and timer callbacks), so no locking is needed.

    `loop` only needs `call_later(delay_s, fn, *args)` returning a handle with
    `cancel()`; it defaults to the running asyncio loop.
    """

    def __init__(
        self,
        *,
        window_ms: float = 1000,
        loop: Optional[Any] = None,
        clock: Clock = wall_clock_ms,
        resolver: Optional[BatchKeyResolver] = None,
        finalizer: Optional[BatchFinalizer] = None,
    ):
        self.window_ms = window_ms
        self._loop = loop
        self._clock = clock
        self._resolver = resolver or BatchKeyResolver(window_ms=window_ms, clock=clock)
        self._finalizer = finalizer or BatchFinalizer()
        self._consumer: Optional[BatchConsumer] = None
        self._live: Dict[str, InFlightBatch] = {}
        self.stats = {"events": 0, "duplicates": 0, "finalized": 0,
                      "finalize_errors": 0, "delivery_errors": 0}

    # ---------------- wiring ----------------

    def subscribe(self, consumer: BatchConsumer) -> None:
        if self._consumer is not None and self._consumer is not consumer:
            log.warning("BatchAccumulator: replacing existing batch consumer")
        self._consumer = consumer

    @property
    def resolver(self) -> BatchKeyResolver:
        return self._resolver

    @property
    def in_flight(self) -> Tuple[str, ...]:
        return tuple(self._live)

    def pending_batches(self) -> Dict[str, int]:
        return {batch_id: len(b.contributions) for batch_id, b in self._live.items()}

    # ---------------- ingestion ----------------

    def ingest(self, raw: Dict[str, Any]) -> Optional[str]:
        """
        Push one raw event. Returns the batch id it was assigned to,
        or None for a pre-aggregated message that was delivered immediately.
        """
        self.stats["events"] += 1

        results = raw.get("results")
        if isinstance(results, dict) and results:
            batch = self._finalizer.finalize_aggregate(raw, int(self._clock()))
            log.info(f"[aggregate] {batch.id} cameras={len(batch.rois)} status={batch.overall_status.value}")
            self._deliver(batch)
            return None

        camera_id = camera_id_of(raw)
        batch_id = self._resolver.resolve(raw)

        batch = self._live.get(batch_id)
        if batch is None:
            batch = InFlightBatch(batch_id=batch_id, created_at=int(self._clock()))
            self._live[batch_id] = batch
            log.info(f"[open] batch={batch_id} open_batches={len(self._live)}")

        if batch.add(camera_id, raw):
            log.debug(f"[add] camera={camera_id} batch={batch_id} cameras={len(batch.contributions)}")
        else:
            self.stats["duplicates"] += 1
            log.debug(f"[duplicate] camera={camera_id} batch={batch_id} dropped")

        # arrival, not acceptance, keeps the batch open
        batch.cancel_timer()
        batch.handle = self._scheduler().call_later(self.window_ms / 1000.0, self._on_timer, batch)
        return batch_id

    def flush(self) -> int:
        """Finalize every open batch now, oldest first. Returns how many were finalized."""
        pending = sorted(self._live.values(), key=lambda b: b.created_at)
        for batch in pending:
            batch.cancel_timer()
            self._finalize(batch)
        return len(pending)

    # ---------------- completion ----------------

    def _scheduler(self):
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _on_timer(self, batch: InFlightBatch) -> None:
        batch.handle = None
        self._finalize(batch)

    def _finalize(self, batch: InFlightBatch) -> None:
        if batch.state is not BatchState.OPEN or self._live.get(batch.batch_id) is not batch:
            return
        batch.state = BatchState.FINALIZING
        try:
            finalized = self._finalizer.finalize(batch)
        except Exception as e:
            self.stats["finalize_errors"] += 1
            log.error(f"[finalize] batch={batch.batch_id} could not be built: {e}", exc_info=True)
        else:
            log.info(
                f"[finalize] batch={batch.batch_id} cameras={finalized.total_inputs} "
                f"arrivals={batch.arrivals} status={finalized.overall_status.value}"
            )
            self.stats["finalized"] += 1
            self._deliver(finalized)
        finally:
            self._resolver.release(batch.batch_id)
            del self._live[batch.batch_id]

    def _deliver(self, batch: FinalizedBatch) -> None:
        if self._consumer is None:
            log.warning(f"[deliver] no consumer subscribed; dropping batch {batch.id}")
            return
        try:
            self._consumer(batch)
        except Exception as e:
            # log-and-drop: the stream keeps flowing
            self.stats["delivery_errors"] += 1
            log.error(f"[deliver] consumer failed for batch {batch.id}: {e}", exc_info=True)
