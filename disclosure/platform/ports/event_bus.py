from typing import Protocol, runtime_checkable

@runtime_checkable
class EventBusPort(Protocol):
    """Hand-off point to notification delivery.

    `value` is the outbox envelope: event_type, subject, recipient_id, payload
    (ids and field keys only), occurred_at, outbox_id.
    """
    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...
