# services/batch_aggregator/main.py
from __future__ import annotations
import asyncio, os, sys
from typing import Any, Dict, List, Tuple

from batching.accumulator import BatchAccumulator
from common.bus import EventBus, StreamEntry, decode_entry
from common.config import load_config, section, window_ms
from common.logging import get_logger
from common.schemas import FinalizedBatch

log = get_logger("batch_aggregator")

GROUP = "batch-aggregator"
CONSUMER = "agg-01"

# ---------------- per-entry handling ----------------

async def handle_entries(bus: EventBus, accumulator: BatchAccumulator, entries: List[StreamEntry],
                         stream_in: str, dlq: str) -> Tuple[int, int]:
    """
    Feed stream entries to the accumulator in arrival order.
    Every entry is acked; unusable ones go to the DLQ first.
    Returns (ingested, dead_lettered).
    """
    ingested = dead = 0
    for msg_id, kv in entries:
        try:
            payload = decode_entry(kv)
            if not payload:
                await bus.dead_letter(dlq, stream_in, msg_id, {"reason": "schema_mismatch",
                                                               "kv_keys": list(kv.keys())[:20]})
                dead += 1
            else:
                accumulator.ingest(payload)
                ingested += 1
        except Exception as e:
            log.error(f"Process error msg_id={msg_id}: {e}")
            await bus.dead_letter(dlq, stream_in, msg_id, str(e))
            dead += 1
        await bus.ack(stream_in, GROUP, msg_id)
    return ingested, dead

# ---------------- outbound ----------------

async def publish_loop(bus: EventBus, outbox: "asyncio.Queue[FinalizedBatch]", stream_out: str):
    """Drain finalized batches onto the output stream, in finalization order."""
    while True:
        batch = await outbox.get()
        try:
            msg_id = await bus.xadd_json(stream_out, batch.model_dump(mode="json"))
            log.info(f"[published] batch={batch.id} status={batch.overall_status.value} "
                     f"cameras={batch.total_inputs} id={msg_id}")
        except Exception as e:
            log.error(f"[publish] batch={batch.id} failed: {e}")
        finally:
            outbox.task_done()

# ---------------- backlog / live phases ----------------

async def _drain_history(bus: EventBus, accumulator: BatchAccumulator, batch_size: int,
                         stream_in: str, dlq: str):
    log.info("Phase 1: draining never-delivered history...")
    while True:
        entries = await bus.read_group(GROUP, CONSUMER, stream_in, count=batch_size, start_id="0")
        if not entries:
            break
        await handle_entries(bus, accumulator, entries, stream_in, dlq)

async def _live_loop(bus: EventBus, accumulator: BatchAccumulator, batch_size: int, block_ms: int,
                     stream_in: str, dlq: str):
    log.info("Phase 2: live consumption (ID='>')...")
    while True:
        entries = await bus.read_group(GROUP, CONSUMER, stream_in, count=batch_size, block_ms=block_ms)
        if entries:
            await handle_entries(bus, accumulator, entries, stream_in, dlq)

# ---------------- main ----------------

def runtime_settings(cfg: Dict[str, Any]) -> Dict[str, Any]:
    runtime = section(cfg, "runtime")
    agg_rt = section(cfg, "aggregator", "runtime")
    return {
        "redis_url":     runtime.get("redis_url", os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0")),
        "stream_in":     runtime.get("stream_events", "inspections.events"),
        "stream_out":    runtime.get("stream_batches", "inspections.batches"),
        "log_dir":       runtime.get("log_dir", "logs"),
        "log_level":     runtime.get("log_level"),
        "window_ms":     window_ms(cfg),
        "batch_size":    int(agg_rt.get("batch_size", os.getenv("AGG_BATCH_SIZE", 64))),
        "block_ms":      int(agg_rt.get("block_ms", os.getenv("AGG_BLOCK_MS", 5000))),
        "dlq":           agg_rt.get("dlq_stream", os.getenv("AGG_DLQ_STREAM", "inspections.events.dlq")),
        "drain_history": bool(agg_rt.get("drain_history", False)),
    }

async def main(config_path: str | None = None):
    log.info("batch_aggregator starting…")
    cfg = load_config(config_path)
    s = runtime_settings(cfg)
    get_logger("batching", log_dir=s["log_dir"], level=s["log_level"])

    bus = await EventBus(s["redis_url"]).connect()
    await bus.ensure_group(s["stream_in"], GROUP, start_id="0-0" if s["drain_history"] else "$")

    accumulator = BatchAccumulator(window_ms=s["window_ms"])
    outbox: asyncio.Queue[FinalizedBatch] = asyncio.Queue()
    accumulator.subscribe(outbox.put_nowait)
    publisher = asyncio.create_task(publish_loop(bus, outbox, s["stream_out"]))

    log.info(f"Consuming stream_in={s['stream_in']} → stream_out={s['stream_out']} "
             f"window_ms={s['window_ms']} group={GROUP} consumer={CONSUMER}")
    try:
        if s["drain_history"]:
            await _drain_history(bus, accumulator, s["batch_size"], s["stream_in"], s["dlq"])
        await _live_loop(bus, accumulator, s["batch_size"], s["block_ms"], s["stream_in"], s["dlq"])
    finally:
        flushed = accumulator.flush()
        if flushed:
            log.info(f"Shutdown: flushed {flushed} in-flight batch(es)")
        try:
            await asyncio.wait_for(outbox.join(), timeout=5)
        except asyncio.TimeoutError:
            log.warning(f"Shutdown: {outbox.qsize()} batch(es) not published")
        publisher.cancel()
        await bus.close()
        log.info(f"batch_aggregator stopped stats={accumulator.stats}")

if __name__ == "__main__":
    try:
        asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
    except KeyboardInterrupt:
        pass
