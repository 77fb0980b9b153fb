from datetime import datetime
from typing import Iterable
from disclosure.core.base import utcnow
from disclosure.modules.information_requests.fields import denormalize_field, is_sensitive
from disclosure.modules.information_requests.schemas import EffectivePermissionSet, PermissionGrantOut


def is_expired(grant: PermissionGrantOut, now: datetime) -> bool:
    # exclusive boundary: a grant expiring exactly now is already gone
    return grant.expires_at is not None and grant.expires_at <= now


def newest_per_field(grants: Iterable[PermissionGrantOut]) -> list[PermissionGrantOut]:
    by_field: dict[str, PermissionGrantOut] = {}
    for grant in grants:
        current = by_field.get(grant.field)
        if current is None or grant.created_at > current.created_at:
            by_field[grant.field] = grant
    return sorted(by_field.values(), key=lambda g: g.created_at, reverse=True)


def earliest_expiry(grants: Iterable[PermissionGrantOut]) -> datetime | None:
    expiries = [g.expires_at for g in grants if g.expires_at is not None]
    return min(expiries) if expiries else None


def compute_effective_permissions(
    target_id: str,
    viewer_id: str,
    grants: Iterable[PermissionGrantOut],
    *,
    include_expired: bool = False,
    now: datetime | None = None,
) -> EffectivePermissionSet:
    t = now or utcnow()
    entries = newest_per_field(grants)
    if not include_expired:
        entries = [g for g in entries if not is_expired(g, t)]

    fields = [g.field for g in entries]
    return EffectivePermissionSet(
        target_id=target_id,
        viewer_id=viewer_id,
        permissions=fields,
        permissions_camel=[denormalize_field(f) for f in fields],
        sensitive_fields=[f for f in fields if is_sensitive(f)],
        entries=entries,
        earliest_expiry=earliest_expiry(entries),
    )
