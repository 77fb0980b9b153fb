from datetime import datetime, timedelta, timezone

from disclosure.modules.information_requests.permissions import (
    compute_effective_permissions, earliest_expiry, newest_per_field,
)
from disclosure.modules.information_requests.schemas import PermissionGrantOut

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def grant(field, created_offset_s, expires_at=None, gid=None, request_id="r1"):
    return PermissionGrantOut(
        id=gid or f"{field}-{created_offset_s}",
        request_id=request_id,
        viewer_id="u1",
        target_id="u2",
        field=field,
        expires_at=expires_at,
        created_at=NOW + timedelta(seconds=created_offset_s),
    )


def test_newest_row_wins_per_field():
    rows = [
        grant("phone", -300, gid="old"),
        grant("phone", -10, gid="new"),
        grant("address", -100),
    ]
    kept = newest_per_field(rows)
    assert [g.field for g in kept] == ["phone", "address"]
    assert kept[0].id == "new"


def test_at_most_one_entry_per_field():
    rows = [grant("phone", -i, gid=f"p{i}") for i in range(5)] + [grant("documents", -1)]
    result = compute_effective_permissions("u2", "u1", rows, now=NOW)
    assert sorted(result.permissions) == ["documents", "phone"]
    assert len(result.entries) == 2
    assert result.sensitive_fields == ["documents"]
    assert "phone" in result.permissions_camel


def test_expiry_boundary_is_exclusive():
    rows = [grant("phone", -60, expires_at=NOW)]
    assert compute_effective_permissions("u2", "u1", rows, now=NOW).permissions == []
    assert compute_effective_permissions("u2", "u1", rows, now=NOW, include_expired=True).permissions == ["phone"]


def test_expired_grant_hidden_unless_requested():
    rows = [
        grant("phone", -60),
        grant("address", -60, expires_at=NOW - timedelta(seconds=1)),
    ]
    active = compute_effective_permissions("u2", "u1", rows, now=NOW)
    assert active.permissions == ["phone"]
    everything = compute_effective_permissions("u2", "u1", rows, now=NOW, include_expired=True)
    assert set(everything.permissions) == {"phone", "address"}


def test_newer_expired_row_shadows_older_open_row():
    rows = [
        grant("phone", -600, gid="open"),
        grant("phone", -60, expires_at=NOW - timedelta(seconds=5), gid="expired"),
    ]
    assert compute_effective_permissions("u2", "u1", rows, now=NOW).permissions == []


def test_earliest_expiry_is_none_when_all_open_ended():
    rows = [grant("phone", -60), grant("address", -30)]
    result = compute_effective_permissions("u2", "u1", rows, now=NOW)
    assert result.earliest_expiry is None


def test_earliest_expiry_picks_soonest_surviving():
    soon = NOW + timedelta(hours=1)
    later = NOW + timedelta(days=2)
    rows = [
        grant("phone", -60, expires_at=later),
        grant("address", -30, expires_at=soon),
        grant("languages", -20),
        grant("portfolio", -10, expires_at=NOW - timedelta(minutes=1)),
    ]
    result = compute_effective_permissions("u2", "u1", rows, now=NOW)
    assert result.earliest_expiry == soon
    assert earliest_expiry([]) is None
