# scripts/mock_inspection.py
"""
Publish mock per-camera inspection events for bench testing without cameras.

Each cycle picks `camera_count` cameras, decides at the cycle level whether it
fails (fail_rate), and sends one event per camera in shuffled order with a
little jitter, in the tag-list encoding. With with_batch_id=false the
aggregator has to group them by timing alone.
"""
from __future__ import annotations
import argparse, asyncio, random, time
from typing import Any, Dict, List

from common.bus import EventBus
from common.config import load_config, section
from common.logging import get_logger

log = get_logger("mock_inspection")

CAMERA_IDS = (
    [f"CAM{c}_r0_c{i}" for c in (3, 5, 7, 9) for i in range(4)]
    + [f"CAM{c}_r0_c{i}" for c in (2, 4, 6, 8) for i in range(4)]
    + ["CAM1", "CAM10"]
)
LABELS = ["defect", "crack", "scratch", "dent", "missing_pin"]
COLORS = ["#ef4444", "#f59e0b", "#a74444", "#3b82f6", "#8b5cf6"]

def _mock_tags(rng: random.Random, count: int) -> List[Dict[str, Any]]:
    if count == 0:
        return [{"tag": "no_detections", "box": [], "score": 0.0, "flag": None}]
    tags = []
    for _ in range(count):
        x1, y1 = rng.uniform(0.1, 0.7), rng.uniform(0.1, 0.7)
        x2, y2 = min(x1 + rng.uniform(0.05, 0.2), 1.0), min(y1 + rng.uniform(0.05, 0.2), 1.0)
        i = rng.randrange(len(LABELS))
        tags.append({"tag": LABELS[i], "box": [round(x1, 4), round(y1, 4), round(x2, 4), round(y2, 4)],
                     "score": round(rng.uniform(0.6, 1.0), 3), "flag": COLORS[i]})
    return tags

def mock_cycle(rng: random.Random, *, camera_count: int, fail_rate: float, model: str, version: str,
               batch_id: str | None = None) -> List[Dict[str, Any]]:
    """One inspection cycle as a list of per-camera raw events (send order)."""
    cameras = rng.sample(CAMERA_IDS, min(camera_count, len(CAMERA_IDS)))
    failing = set()
    if rng.random() < fail_rate:
        failing = set(rng.sample(range(len(cameras)), rng.randint(1, len(cameras))))

    events = []
    for idx, cam in enumerate(cameras):
        n = rng.randint(1, 3) if idx in failing else 0
        event: Dict[str, Any] = {
            "camera_details": {"cam_id": cam},
            "prediction": "FAIL" if n else "PASS",
            "detections": n,
            "tags": _mock_tags(rng, n),
            "model": model,
            "model_version": version,
            "project_id": "mock-project-id",
            "base64": "",
        }
        if batch_id:
            event["batch_id"] = batch_id
        events.append(event)
    rng.shuffle(events)
    return events

async def main():
    ap = argparse.ArgumentParser(description="Publish mock per-camera inspection events")
    ap.add_argument("--cycles", type=int, default=0, help="0 = run forever")
    ap.add_argument("--seed", type=int, default=None)
    args = ap.parse_args()

    cfg = load_config()
    rt = section(cfg, "runtime")
    mock = section(cfg, "mock")
    stream = rt.get("stream_events", "inspections.events")
    interval = int(mock.get("interval_ms", 3000)) / 1000.0
    jitter = int(mock.get("jitter_ms", 150)) / 1000.0

    rng = random.Random(args.seed)
    bus = await EventBus(rt.get("redis_url", "redis://127.0.0.1:6379/0")).connect()
    log.info(f"Publishing mock cycles to {stream} every {interval:.1f}s")
    cycle = 0
    try:
        while args.cycles == 0 or cycle < args.cycles:
            cycle += 1
            batch_id = f"mock_{int(time.time() * 1000)}" if mock.get("with_batch_id") else None
            events = mock_cycle(rng,
                                camera_count=int(mock.get("camera_count", 8)),
                                fail_rate=float(mock.get("fail_rate", 0.3)),
                                model=str(mock.get("model", "MockModel")),
                                version=str(mock.get("version", "1.0.0")),
                                batch_id=batch_id)
            for event in events:
                await bus.xadd_json(stream, event)
                await asyncio.sleep(rng.uniform(0, jitter))
            log.info(f"[cycle {cycle}] sent {len(events)} events batch_id={batch_id}")
            await asyncio.sleep(interval)
    finally:
        await bus.close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
