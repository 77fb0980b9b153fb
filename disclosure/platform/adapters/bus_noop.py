import json
import logging
from collections import deque
from disclosure.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Logs events instead of delivering them; keeps the most recent ones for inspection."""

    def __init__(self, keep: int = 100):
        self.published: deque[dict] = deque(maxlen=keep)

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        self.published.append({"topic": topic, "key": key, "value": value, "headers": headers or {}})
        log.info("[NOOP BUS] topic=%s key=%s event=%s", topic, key, json.dumps(value.get("event_type")))
