from typing import Protocol, runtime_checkable

@runtime_checkable
class EventBusPort(Protocol):
    """Publishes an outbox envelope; `key` is the subject id so per-subject order can be kept."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...
