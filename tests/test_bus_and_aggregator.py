import asyncio
import json

from batching.accumulator import BatchAccumulator
from common.bus import EventBus, decode_entry
from common.schemas import FinalizedBatch
from services.batch_aggregator import main as aggregator


class _FakeRedis:
    def __init__(self) -> None:
        self.added: list[tuple[str, dict]] = []
        self.acked: list[tuple[str, str, str]] = []
        self.groups: list[tuple[str, str, str]] = []

    async def xadd(self, stream, data, maxlen=None, approximate=None):
        self.added.append((stream, data))
        return f"{len(self.added)}-0"

    async def xack(self, stream, group, msg_id):
        self.acked.append((stream, group, msg_id))

    async def xgroup_create(self, stream, group, id="$", mkstream=False):
        if (stream, group) in [(s, g) for s, g, _ in self.groups]:
            raise RuntimeError("BUSYGROUP Consumer Group name already exists")
        self.groups.append((stream, group, id))

    async def xinfo_groups(self, stream):
        return [{"name": "batch-aggregator", "pending": 2, "lag": 5,
                 "last-delivered-id": "9-0", "entries-read": 10}]


def test_decode_entry_variants() -> None:
    assert decode_entry({"json": json.dumps({"img": "a"})}) == {"img": "a"}
    assert decode_entry({"json": "not json"}) is None
    assert decode_entry({"json": "[1, 2]"}) is None
    assert decode_entry({"img": "cam.jpg", "batch_id": "b"}) == {"img": "cam.jpg", "batch_id": "b"}
    assert decode_entry({}) is None


def test_ensure_group_ignores_busygroup() -> None:
    redis = _FakeRedis()
    bus = EventBus("redis://unused", redis=redis)

    async def scenario():
        await bus.ensure_group("s", "g")
        await bus.ensure_group("s", "g")

    asyncio.run(scenario())
    assert redis.groups == [("s", "g", "$")]


def test_group_stats() -> None:
    bus = EventBus("redis://unused", redis=_FakeRedis())
    stats = asyncio.run(bus.group_stats("inspections.events", "batch-aggregator"))
    assert stats["pending"] == 2 and stats["lag"] == 5
    missing = asyncio.run(bus.group_stats("inspections.events", "nobody"))
    assert missing["error"] == "group_not_found"


def test_handle_entries_ingests_acks_and_dead_letters(clock, loop) -> None:
    redis = _FakeRedis()
    bus = EventBus("redis://unused", redis=redis)
    acc = BatchAccumulator(window_ms=1000, loop=loop, clock=clock)
    delivered = []
    acc.subscribe(delivered.append)

    entries = [
        ("1-0", {"json": json.dumps({"camera_details": {"cam_id": "CAM1"}, "batch_id": "b", "prediction": "PASS"})}),
        ("2-0", {"json": "{broken"}),
        ("3-0", {"json": json.dumps({"camera_details": {"cam_id": "CAM2"}, "batch_id": "b", "prediction": "FAIL"})}),
    ]
    ingested, dead = asyncio.run(
        aggregator.handle_entries(bus, acc, entries, "inspections.events", "inspections.events.dlq"))

    assert (ingested, dead) == (2, 1)
    assert [m for _, _, m in redis.acked] == ["1-0", "2-0", "3-0"]
    (dlq_stream, dlq_data), = redis.added
    assert dlq_stream == "inspections.events.dlq"
    assert json.loads(dlq_data["json"])["id"] == "2-0"

    loop.advance(1000)
    (batch,) = delivered
    assert batch.total_inputs == 2


def test_publish_loop_writes_batches_in_order() -> None:
    redis = _FakeRedis()
    bus = EventBus("redis://unused", redis=redis)

    async def scenario():
        outbox: asyncio.Queue = asyncio.Queue()
        for name in ("b1", "b2"):
            outbox.put_nowait(FinalizedBatch(id=name, timestamp=1))
        task = asyncio.create_task(aggregator.publish_loop(bus, outbox, "inspections.batches"))
        await outbox.join()
        task.cancel()

    asyncio.run(scenario())
    payloads = [json.loads(data["json"]) for _, data in redis.added]
    assert [p["id"] for p in payloads] == ["b1", "b2"]
    assert payloads[0]["overall_status"] == "UNKNOWN"
    assert FinalizedBatch.model_validate(payloads[0]).id == "b1"


def test_runtime_settings_defaults_and_overrides() -> None:
    defaults = aggregator.runtime_settings({})
    assert defaults["window_ms"] == 1000
    assert defaults["stream_in"] == "inspections.events"
    assert defaults["drain_history"] is False

    custom = aggregator.runtime_settings({"aggregator": {"window_ms": 250, "runtime": {"batch_size": 8}},
                                         "runtime": {"stream_batches": "out"}})
    assert (custom["window_ms"], custom["batch_size"], custom["stream_out"]) == (250, 8, "out")
