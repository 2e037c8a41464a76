# common/bus.py
from __future__ import annotations
import json
from typing import Any, Dict, List, Optional, Tuple
from redis import asyncio as aioredis
from common.logging import get_logger

log = get_logger("bus", to_file=False)

StreamEntry = Tuple[str, Dict[str, Any]]

def decode_entry(kv: Dict[str, Any]) -> Dict[str, Any] | None:
    """
    Stream entries carry the record as JSON under "json".
    Flat field entries are accepted as-is (values stay strings).
    Returns None when nothing usable is there.
    """
    if not kv:
        return None
    raw = kv.get("json")
    if raw:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            return None
        return payload if isinstance(payload, dict) else None
    flat = {k: v for k, v in kv.items() if k != "json"}
    return flat or None

class EventBus:
    def __init__(self, redis_url: str, redis=None):
        self._redis_url = redis_url
        self._redis = redis

    @property
    def redis(self):
        assert self._redis is not None, "Call connect() first"
        return self._redis

    async def connect(self):
        if self._redis is None:
            log.info(f"Connecting to Redis: {self._redis_url}")
            self._redis = aioredis.from_url(self._redis_url, encoding="utf-8", decode_responses=True)
            # quick ping
            try:
                pong = await self._redis.ping()
                log.info(f"Redis ping: {pong}")
            except Exception as e:
                log.error(f"Redis connection failed: {e}")
                raise
        return self

    async def close(self):
        if self._redis is not None:
            log.info("Closing Redis connection")
            await self._redis.close()
            self._redis = None

    async def ensure_group(self, stream: str, group: str, start_id: str = "$"):
        """Create the consumer group (mkstream); ignore BUSYGROUP."""
        try:
            await self.redis.xgroup_create(stream, group, id=start_id, mkstream=True)
            log.info(f"Created consumer group '{group}' at {start_id} on stream '{stream}'")
        except Exception as e:
            if "BUSYGROUP" in str(e):
                log.info(f"Consumer group '{group}' already exists on '{stream}'")
            else:
                raise

    async def xadd_json(self, stream: str, payload: Dict[str, Any]) -> str:
        data = {"json": json.dumps(payload, separators=(",", ":"))}
        msg_id = await self.redis.xadd(stream, data, maxlen=10000, approximate=True)
        log.debug(f"XADD stream={stream} id={msg_id}")
        return msg_id

    async def read_group(self, group: str, consumer: str, stream: str, *,
                         count: int, block_ms: Optional[int] = None, start_id: str = ">") -> List[StreamEntry]:
        resp = await self.redis.xreadgroup(group, consumer, streams={stream: start_id},
                                           count=count, block=block_ms)
        return [entry for _stream, messages in (resp or []) for entry in messages]

    async def read_after(self, stream: str, last_id: str, *, count: int,
                         block_ms: Optional[int] = None) -> List[StreamEntry]:
        """Plain XREAD (no group): every reader sees every entry."""
        resp = await self.redis.xread(streams={stream: last_id}, count=count, block=block_ms)
        return [entry for _stream, messages in (resp or []) for entry in messages]

    async def latest(self, stream: str, count: int) -> List[StreamEntry]:
        """Newest `count` entries, oldest first."""
        entries = await self.redis.xrevrange(stream, count=count)
        return list(reversed(entries or []))

    async def ack(self, stream: str, group: str, msg_id: str):
        await self.redis.xack(stream, group, msg_id)

    async def dead_letter(self, dlq: str, source: str, msg_id: str, error: Any):
        await self.xadd_json(dlq, {"source": source, "id": msg_id, "error": error})
        log.warning(f"DLQ stream={dlq} source={source} id={msg_id} error={error}")

    async def group_stats(self, stream: str, group: str) -> Dict[str, Any]:
        """Lag/pending stats for one consumer group."""
        try:
            groups = await self.redis.xinfo_groups(stream)
        except Exception as e:
            return {"stream": stream, "group": group, "error": str(e)}

        info = next((g for g in groups if g.get("name") == group), None)
        if not info:
            return {"stream": stream, "group": group, "error": "group_not_found"}

        entries_read = info.get("entries-read")
        lag = info.get("lag")
        if lag is None:
            try:
                sinfo = await self.redis.xinfo_stream(stream)
                lag = max(0, int(sinfo.get("length", 0)) - int(entries_read or 0))
            except Exception:
                lag = -1

        return {
            "stream": stream,
            "group": group,
            "pending": int(info.get("pending", 0)),
            "lag": int(lag),
            "last_delivered_id": info.get("last-delivered-id"),
            "entries_read": entries_read,
        }
