from disclosure.core.config import settings
from disclosure.platform.ports.event_bus import EventBusPort
from disclosure.platform.adapters.bus_noop import NoopEventBus
from disclosure.platform.adapters.bus_redis import RedisEventBus

class ProviderRegistry:
    _event_bus: EventBusPort | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    async def close(cls) -> None:
        bus = cls._event_bus
        if bus is not None and hasattr(bus, "close"):
            await bus.close()
        cls._event_bus = None

registry = ProviderRegistry()
