# services/batch_history/main.py
from __future__ import annotations
import asyncio, os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field, ValidationError

from batching.history import MAX_BATCH_QUEUE, BatchHistory
from common.bus import EventBus, decode_entry
from common.config import load_config, section
from common.logging import get_logger
from common.schemas import FinalizedBatch

log = get_logger("batch_history")

AGGREGATOR_GROUP = "batch-aggregator"

class CapacityIn(BaseModel):
    capacity: int = Field(ge=1, le=100)

# ----------------------- stream follower -----------------------
def _to_batch(msg_id: str, kv: Dict[str, Any]) -> Optional[FinalizedBatch]:
    payload = decode_entry(kv)
    if not payload:
        log.warning(f"[follow] {msg_id}: empty entry")
        return None
    try:
        return FinalizedBatch.model_validate(payload)
    except ValidationError as e:
        log.warning(f"[follow] {msg_id}: not a finalized batch ({e.error_count()} errors)")
        return None

async def follow_batches(bus: EventBus, history: BatchHistory, stream: str, poll_ms: int):
    """Backfill the newest `capacity` batches, then tail the stream forever."""
    last_id = "0-0"   # empty stream: read from the start
    for msg_id, kv in await bus.latest(stream, history.capacity):
        batch = _to_batch(msg_id, kv)
        if batch is not None:
            history.deliver(batch)
        last_id = msg_id
    log.info(f"[follow] backfilled {len(history.batches)} batch(es) from {stream}; tailing after {last_id}")

    while True:
        entries = await bus.read_after(stream, last_id, count=100, block_ms=poll_ms)
        for msg_id, kv in entries:
            last_id = msg_id
            batch = _to_batch(msg_id, kv)
            if batch is not None and history.deliver(batch):
                log.info(f"[history] batch={batch.id} status={batch.overall_status.value} "
                         f"queued={len(history.batches)}/{history.capacity}")

# ----------------------- app -----------------------
def _dump(batch: FinalizedBatch, images: bool) -> Dict[str, Any]:
    if images:
        return batch.model_dump(mode="json")
    return batch.model_dump(mode="json", exclude={"rois": {"__all__": {"image_data"}}})

def create_app(cfg: Optional[Dict[str, Any]] = None, bus: Optional[EventBus] = None,
               follow: bool = True) -> FastAPI:
    cfg = cfg if cfg is not None else load_config()
    rt = section(cfg, "runtime")
    hist_cfg = section(cfg, "history")

    redis_url = rt.get("redis_url", os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0"))
    stream_events = rt.get("stream_events", "inspections.events")
    stream_batches = rt.get("stream_batches", "inspections.batches")
    poll_ms = int(hist_cfg.get("poll_ms", 500))

    history = BatchHistory(capacity=int(hist_cfg.get("capacity", MAX_BATCH_QUEUE)))
    bus = bus or EventBus(redis_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if follow:
            await bus.connect()
            task = asyncio.create_task(follow_batches(bus, history, stream_batches, poll_ms))
        yield
        if task is not None:
            task.cancel()
            await bus.close()

    app = FastAPI(title="Inspection Batch History", lifespan=lifespan)
    app.state.history = history

    # ----------------------- summary page -----------------------
    @app.get("/", response_class=HTMLResponse)
    async def home():
        return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8"/>
  <title>Inspection Batch History</title>
  <style>
    body {{ background-color: #111; color: #eee; font-family: -apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif; margin: 24px; }}
    h1 {{ color: #00c6ff; margin-bottom: 4px; }}
    .meta {{ color: #aaa; font-size: 0.9rem; margin-bottom: 20px; }}
    table {{ border-collapse: collapse; width: 100%; background-color: #1a1a1a; }}
    th, td {{ padding: 10px 12px; border-bottom: 1px solid #333; text-align: left; }}
    th {{ background-color: #222; color: #66ccff; }}
    .PASS {{ color: #4caf50; font-weight: 600; }}
    .FAIL {{ color: #ef5350; font-weight: 700; }}
    .UNKNOWN {{ color: #ffb300; }}
    .mono {{ font-family: ui-monospace, Menlo, Consolas, monospace; }}
  </style>
</head>
<body>
  <h1>Inspection Batch History</h1>
  <div class="meta">Stream: <span class="mono">{stream_batches}</span> · Auto refresh: {poll_ms} ms</div>
  <table>
    <thead><tr><th>#</th><th>Batch</th><th>Status</th><th>Cameras</th><th>Model</th><th>Version</th></tr></thead>
    <tbody id="rows"></tbody>
  </table>
<script>
const rows = document.getElementById('rows');
async function refresh() {{
  try {{
    const res = await fetch('/batches');
    const data = await res.json();
    rows.innerHTML = data.batches.map((b, i) => `<tr>
      <td>${{i === data.index ? '▶' : ''}}</td>
      <td class="mono">${{b.id}}</td>
      <td class="${{b.overall_status}}">${{b.overall_status}}</td>
      <td>${{b.total_inputs}}</td>
      <td>${{b.model}}</td>
      <td>${{b.version}}</td>
    </tr>`).join('');
  }} catch (e) {{
    rows.innerHTML = `<tr><td colspan="6" class="FAIL">Error loading batches: ${{e}}</td></tr>`;
  }}
}}
setInterval(refresh, {poll_ms});
refresh();
</script>
</body>
</html>"""

    # ----------------------- batches -----------------------
    @app.get("/batches", response_class=JSONResponse)
    async def list_batches(images: bool = Query(False)):
        return {
            "paused": history.paused,
            "capacity": history.capacity,
            "index": history.index,
            "batches": [_dump(b, images) for b in history.batches],
        }

    @app.get("/batches/current", response_class=JSONResponse)
    async def current_batch(images: bool = Query(True)):
        if history.current is None:
            raise HTTPException(status_code=404, detail="no batches yet")
        return _dump(history.current, images)

    @app.get("/batches/{batch_id}", response_class=JSONResponse)
    async def get_batch(batch_id: str, images: bool = Query(True)):
        batch = history.get(batch_id)
        if batch is None:
            raise HTTPException(status_code=404, detail=f"batch {batch_id} not in history")
        return _dump(batch, images)

    @app.post("/view/{index}", response_class=JSONResponse)
    async def view(index: int):
        try:
            batch = history.view(index)
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"index": history.index, "id": batch.id}

    # ----------------------- stream control -----------------------
    @app.post("/pause", response_class=JSONResponse)
    async def pause():
        history.pause()
        return {"paused": True}

    @app.post("/resume", response_class=JSONResponse)
    async def resume():
        history.resume()
        return {"paused": False, "index": history.index}

    @app.put("/capacity", response_class=JSONResponse)
    async def set_capacity(body: CapacityIn):
        history.set_capacity(body.capacity)
        return {"capacity": history.capacity, "queued": len(history.batches)}

    # ----------------------- selection -----------------------
    @app.get("/selection", response_class=JSONResponse)
    async def selection():
        return {"selected": [roi.selection_key for roi in history.selected]}

    @app.post("/selection/{batch_id}/{box_number}", response_class=JSONResponse)
    async def toggle_selection(batch_id: str, box_number: int):
        try:
            selected = history.toggle(batch_id, box_number)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"no image {batch_id}_{box_number} in history")
        return {"key": f"{batch_id}_{box_number}", "selected": selected}

    @app.delete("/selection", response_class=JSONResponse)
    async def clear_selection():
        history.clear_selection()
        return {"selected": []}

    # ----------------------- metrics -----------------------
    @app.get("/metrics", response_class=JSONResponse)
    async def metrics():
        out: Dict[str, Any] = {
            "history": {
                "queued": len(history.batches),
                "capacity": history.capacity,
                "paused": history.paused,
                "dropped_while_paused": history.dropped_while_paused,
                "selected": len(history.selected),
            },
        }
        try:
            out["aggregator"] = await bus.group_stats(stream_events, AGGREGATOR_GROUP)
        except Exception as e:
            log.error("metrics error: %s", e)
            out["aggregator"] = {"stream": stream_events, "group": AGGREGATOR_GROUP, "error": str(e)}
        return JSONResponse(out)

    return app

# ----------------------- main -----------------------
if __name__ == "__main__":
    cfg = load_config()
    hist_cfg = section(cfg, "history")
    host = hist_cfg.get("host", "0.0.0.0")
    port = int(hist_cfg.get("port", 9091))
    level = section(cfg, "runtime").get("log_level", "INFO")
    log.info("Inspection Batch History starting on %s:%d", host, port)
    uvicorn.run(create_app(cfg), host=host, port=port, reload=False, log_level=str(level).lower())
