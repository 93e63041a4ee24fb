import json
import logging
from redis.asyncio import Redis, from_url as redis_from_url
from carelink.platform.ports.event_bus import EventBusPort
from carelink.core.config import settings

log = logging.getLogger("bus.redis")

class RedisStreamsEventBus(EventBusPort):
    """Appends each event to one Redis stream; consumers read it with XREADGROUP."""

    def __init__(self, client: Redis, stream: str, maxlen: int):
        self.redis = client
        self.stream = stream
        self.maxlen = maxlen

    @classmethod
    def from_settings(cls) -> "RedisStreamsEventBus":
        if not settings.REDIS_URL:
            raise RuntimeError("REDIS_URL not configured")
        client = redis_from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        return cls(client, settings.REDIS_STREAM or "carelink.events", settings.REDIS_STREAM_MAXLEN)

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        fields = {
            "topic": topic,
            "key": key,
            "event_type": (headers or {}).get("event_type", ""),
            "value": json.dumps(value, default=str),
        }
        entry_id = await self.redis.xadd(self.stream, fields, maxlen=self.maxlen, approximate=True)
        log.debug("XADD %s id=%s key=%s", self.stream, entry_id, key)

    async def close(self):
        await self.redis.aclose()
