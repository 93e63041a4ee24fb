import logging
from carelink.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Drops events after logging them; the default outside deployments."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        log.info("[NOOP BUS] %s %s subject=%s", topic, value.get("event_type", "-"), key)
