# scripts/tail_stream.py
import asyncio, json, sys
from common.bus import EventBus, decode_entry
from common.config import load_config, section
from common.logging import get_logger

GROUP = "dev"
CONSUMER = "tail01"

log = get_logger("tail_stream")

def _summary(payload: dict) -> str:
    rois = payload.get("rois") or []
    fails = [r.get("camera_id") for r in rois if r.get("result") == "FAIL"]
    return (f"batch={payload.get('id')} status={payload.get('overall_status')} "
            f"cameras={payload.get('total_inputs')} model={payload.get('model')}/{payload.get('version')} "
            f"fail={fails}")

async def main(stream: str | None = None):
    rt = section(load_config(), "runtime")
    stream = stream or rt.get("stream_batches", "inspections.batches")
    bus = await EventBus(rt.get("redis_url", "redis://127.0.0.1:6379/0")).connect()
    await bus.ensure_group(stream, GROUP, start_id="$")
    log.info(f"Tailing stream={stream} as group={GROUP} consumer={CONSUMER}")
    try:
        while True:
            for msg_id, kv in await bus.read_group(GROUP, CONSUMER, stream, count=10, block_ms=5000):
                payload = decode_entry(kv) or {}
                if "rois" in payload:
                    log.info(f"{msg_id} {_summary(payload)}")
                else:
                    log.info(f"{msg_id} {json.dumps(payload, ensure_ascii=False)[:500]}")
                await bus.ack(stream, GROUP, msg_id)
    finally:
        await bus.close()

if __name__ == "__main__":
    try:
        asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
    except KeyboardInterrupt:
        pass
