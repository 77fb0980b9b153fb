from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol, runtime_checkable

@dataclass
class ProfileSnapshot:
    user: dict[str, Any] = field(default_factory=dict)
    profile: dict[str, Any] = field(default_factory=dict)

@runtime_checkable
class ProfileStorePort(Protocol):
    async def fetch(self, target_id: str, fields: Iterable[str]) -> ProfileSnapshot | None: ...
