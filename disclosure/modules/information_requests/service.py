import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from disclosure.core.cache import CachePort, get_or_fetch, invalidate
from disclosure.core.errors import ConflictError, NotFoundError, ValidationError
from disclosure.core.resilience import store_operation
from disclosure.modules.events.outbox import OutboxService
from disclosure.modules.information_requests.fields import UnknownField, normalize_fields
from disclosure.modules.information_requests.models import RequestStatus
from disclosure.modules.information_requests.permissions import compute_effective_permissions
from disclosure.modules.information_requests.projector import project_shared_profile
from disclosure.modules.information_requests.repository import InformationRequestRepository, PermissionRepository
from disclosure.modules.information_requests.schemas import (
    EffectivePermissionSet, InformationRequestOut, PermissionGrantOut, SharedProfileOut,
)
from disclosure.modules.users.repository import UserRepository
from disclosure.platform.adapters.profile_sql import SqlProfileStore
from disclosure.platform.ports.profile_store import ProfileStorePort

log = logging.getLogger("information_requests.service")

SUBJECT = "information_request"
EVENT_CREATED = "INFORMATION_REQUEST_CREATED"
EVENT_APPROVED = "INFORMATION_REQUEST_APPROVED"
EVENT_DECLINED = "INFORMATION_REQUEST_DECLINED"
EVENT_REVOKED = "INFORMATION_ACCESS_REVOKED"

MAX_ID_LENGTH = 64

def _now() -> datetime:
    return datetime.now(timezone.utc)

def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

def cache_key(kind: str, *ids: str) -> str:
    return ":".join(("information_requests", kind, *ids))

def ensure_id(value, name: str) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError(f"Invalid {name}")
    candidate = str(value).strip()
    if not candidate or len(candidate) > MAX_ID_LENGTH:
        raise ValidationError(f"Invalid {name}")
    return candidate

def validated_fields(raw: Iterable[str] | None, what: str) -> list[str]:
    if isinstance(raw, (str, bytes)):
        raise ValidationError(f"{what} must be a list of field keys")
    parsed = normalize_fields(raw)
    unknown = sorted(p.key for p in parsed if isinstance(p, UnknownField))
    if unknown:
        raise ValidationError(f"Unknown {what}: {', '.join(unknown)}")
    return [p.value for p in parsed]


class FilterOutcome(str, Enum):
    CONFIRMED = "confirmed"
    LOOKUP_FAILED = "lookup_failed"

@dataclass
class GrantFilterResult:
    fields: list[str]
    skipped: list[str] = field(default_factory=list)
    outcome: FilterOutcome = FilterOutcome.CONFIRMED

    @property
    def failed_open(self) -> bool:
        return self.outcome is FilterOutcome.LOOKUP_FAILED


class InformationRequestService:
    def __init__(self, session: AsyncSession, cache: CachePort, profile_store: ProfileStorePort | None = None):
        self.session = session
        self.cache = cache
        self.requests = InformationRequestRepository(session)
        self.permissions = PermissionRepository(session)
        self.users = UserRepository(session)
        self.outbox = OutboxService(session)
        self.profile_store = profile_store or SqlProfileStore(session)

    # ---- reads ----

    async def _read(self, request_id: str) -> InformationRequestOut:
        obj = await self.requests.get(request_id)
        if obj is None:
            raise NotFoundError("Information request not found", request_id=request_id)
        return InformationRequestOut.model_validate(obj)

    @store_operation("get_request")
    async def get_request(self, request_id: str) -> InformationRequestOut:
        return await self._read(ensure_id(request_id, "request ID"))

    @store_operation("get_pending_requests")
    async def get_pending_requests(self, target_id: str) -> list[InformationRequestOut]:
        target_id = ensure_id(target_id, "target ID")

        async def fetch():
            rows = await self.requests.list_pending_for_target(target_id)
            return [InformationRequestOut.model_validate(r).model_dump(mode="json") for r in rows]

        data = await get_or_fetch(self.cache, cache_key("pending", target_id), fetch)
        return [InformationRequestOut.model_validate(d) for d in data]

    @store_operation("get_sent_requests")
    async def get_sent_requests(self, requester_id: str) -> list[InformationRequestOut]:
        requester_id = ensure_id(requester_id, "requester ID")

        async def fetch():
            rows = await self.requests.list_sent_by_requester(requester_id)
            return [InformationRequestOut.model_validate(r).model_dump(mode="json") for r in rows]

        data = await get_or_fetch(self.cache, cache_key("sent", requester_id), fetch)
        return [InformationRequestOut.model_validate(d) for d in data]

    async def _viewer_permissions(self, target_id: str, viewer_id: str, include_expired: bool) -> EffectivePermissionSet:
        target_id = ensure_id(target_id, "target ID")
        viewer_id = ensure_id(viewer_id, "viewer ID")

        async def fetch():
            rows = await self.permissions.list_for_pair(target_id, viewer_id)
            return [PermissionGrantOut.model_validate(r).model_dump(mode="json") for r in rows]

        # cache holds raw rows; expiry is judged at read time
        data = await get_or_fetch(self.cache, cache_key("permissions", target_id, viewer_id), fetch)
        grants = [PermissionGrantOut.model_validate(d) for d in data]
        return compute_effective_permissions(target_id, viewer_id, grants, include_expired=include_expired)

    @store_operation("get_viewer_permissions")
    async def get_viewer_permissions(self, target_id: str, viewer_id: str, include_expired: bool = False) -> EffectivePermissionSet:
        return await self._viewer_permissions(target_id, viewer_id, include_expired)

    @store_operation("get_shared_profile")
    async def get_shared_profile(self, target_id: str, viewer_id: str, include_expired: bool = False) -> SharedProfileOut:
        perms = await self._viewer_permissions(target_id, viewer_id, include_expired)
        if not perms.permissions:
            return project_shared_profile(perms, None)
        snapshot = await self.profile_store.fetch(perms.target_id, perms.permissions)
        return project_shared_profile(perms, snapshot)

    # ---- grant filter ----

    async def filter_new_permission_fields(self, target_id: str, viewer_id: str, fields: list[str],
                                           expires_at: datetime | None = None) -> GrantFilterResult:
        """Drop fields the viewer already holds an active grant for that lasts at least until `expires_at`.

        A shorter existing grant does not count: the new row supersedes it.

        Fails open: if the lookup breaks, every candidate is returned and the
        (request_id, field) constraint catches real duplicates at insert time.
        Runs before anything is written, so a failed lookup only discards reads.
        """
        if not fields:
            return GrantFilterResult(fields=[])
        try:
            existing = await self.permissions.covered_fields(target_id, viewer_id, list(fields), _as_utc(expires_at))
        except SQLAlchemyError as e:
            await self.session.rollback()
            log.warning("grant lookup failed target_id=%s viewer_id=%s (%s); keeping all candidates",
                        target_id, viewer_id, e.__class__.__name__)
            return GrantFilterResult(fields=list(fields), outcome=FilterOutcome.LOOKUP_FAILED)

        kept = [f for f in fields if f not in existing]
        skipped = [f for f in fields if f in existing]
        if skipped:
            log.info("skipping already granted fields target_id=%s viewer_id=%s skipped=%s", target_id, viewer_id, skipped)
        return GrantFilterResult(fields=kept, skipped=skipped)

    # ---- lifecycle ----

    async def _invalidate_for(self, req: InformationRequestOut) -> None:
        await invalidate(
            self.cache,
            cache_key("pending", req.target_id),
            cache_key("sent", req.requester_id),
            cache_key("permissions", req.target_id, req.requester_id),
        )

    @store_operation("create_request")
    async def create_request(
        self,
        requester_id: str,
        target_id: str,
        requested_fields: Iterable[str],
        reason: str | None = None,
        expires_at: datetime | None = None,
    ) -> InformationRequestOut:
        requester_id = ensure_id(requester_id, "requester ID")
        target_id = ensure_id(target_id, "target ID")
        if requester_id == target_id:
            raise ValidationError("Cannot request information from yourself", requester_id=requester_id)
        fields = validated_fields(requested_fields, "requested fields")
        if not fields:
            raise ValidationError("At least one requested field is required")
        expires_at = _as_utc(expires_at)
        if expires_at is not None and expires_at <= _now():
            raise ValidationError("expires_at must be in the future")

        if not await self.users.exists(target_id):
            raise NotFoundError("Target user not found", target_id=target_id)

        obj = await self.requests.create(
            requester_id=requester_id,
            target_id=target_id,
            requested_fields=fields,
            reason=reason,
            expires_at=expires_at,
        )
        request_id = obj.id
        await self.outbox.enqueue(
            EVENT_CREATED, SUBJECT, request_id,
            {"requester_id": requester_id, "target_id": target_id, "requested_fields": fields},
            recipient_id=target_id,
        )
        await self.session.commit()

        await invalidate(self.cache, cache_key("pending", target_id), cache_key("sent", requester_id))
        log.info("information request created request_id=%s requester_id=%s target_id=%s", request_id, requester_id, target_id)
        return await self._read(request_id)

    @store_operation("respond_to_request")
    async def respond_to_request(
        self,
        request_id: str,
        approved: bool,
        shared_fields: Iterable[str] | None = None,
        expires_at: datetime | None = None,
    ) -> InformationRequestOut:
        request_id = ensure_id(request_id, "request ID")
        if not isinstance(approved, bool):
            raise ValidationError("approved flag is required")
        fields = validated_fields(shared_fields, "shared fields") if approved else []
        expires_at = _as_utc(expires_at)
        if expires_at is not None and expires_at <= _now():
            raise ValidationError("expires_at must be in the future")

        req = await self._read(request_id)
        if req.status != RequestStatus.PENDING.value:
            # retried or racing client; the first answer stands
            log.info("respond_to_request on resolved request request_id=%s status=%s", request_id, req.status)
            return req

        if not approved:
            return await self._decline(req)

        outside = [f for f in fields if f not in req.requested_fields]
        if outside:
            raise ValidationError(f"Shared fields were not requested: {', '.join(outside)}", request_id=request_id)
        return await self._approve(req, fields, expires_at or req.expires_at)

    async def _decline(self, req: InformationRequestOut) -> InformationRequestOut:
        claimed = await self.requests.transition(
            req.id, RequestStatus.PENDING, RequestStatus.DECLINED, shared_fields=[], responded_at=_now(),
        )
        if claimed:
            await self.outbox.enqueue(
                EVENT_DECLINED, SUBJECT, req.id,
                {"requester_id": req.requester_id, "target_id": req.target_id},
                recipient_id=req.requester_id,
            )
            await self.session.commit()
        else:
            await self.session.rollback()
        await self._invalidate_for(req)
        return await self._read(req.id)

    async def _write_approval(self, req: InformationRequestOut, shared: list[str], grant_fields: list[str],
                              expires_at: datetime | None) -> bool:
        """Status change, grant rows and outbox event in one transaction. False if another caller got there first."""
        try:
            claimed = await self.requests.transition(
                req.id, RequestStatus.PENDING, RequestStatus.APPROVED,
                shared_fields=shared, expires_at=expires_at, responded_at=_now(),
            )
            if not claimed:
                await self.session.rollback()
                return False
            if grant_fields:
                await self.permissions.bulk_create(
                    request_id=req.id, viewer_id=req.requester_id, target_id=req.target_id,
                    fields=grant_fields, expires_at=expires_at,
                )
            await self.outbox.enqueue(
                EVENT_APPROVED, SUBJECT, req.id,
                {
                    "requester_id": req.requester_id,
                    "target_id": req.target_id,
                    "shared_fields": shared,
                    "expires_at": expires_at.isoformat() if expires_at else None,
                },
                recipient_id=req.requester_id,
            )
            await self.session.commit()
            return True
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError("Permission already recorded for this request", request_id=req.id) from e

    async def _approve(self, req: InformationRequestOut, fields: list[str], expires_at: datetime | None) -> InformationRequestOut:
        filtered = await self.filter_new_permission_fields(req.target_id, req.requester_id, fields, expires_at)
        if not filtered.fields:
            log.info("approving request_id=%s without new grants", req.id)
        try:
            written = await self._write_approval(req, fields, filtered.fields, expires_at)
        except ConflictError as conflict:
            log.warning("respond_to_request %s request_id=%s; reconciling", conflict.code, req.id)
            return await self._reconcile_approval(req, fields, expires_at)
        if not written:
            log.info("respond_to_request lost the race request_id=%s; returning stored state", req.id)
        await self._invalidate_for(req)
        return await self._read(req.id)

    async def _reconcile_approval(self, req: InformationRequestOut, fields: list[str],
                                  expires_at: datetime | None) -> InformationRequestOut:
        # Read after the failed write: either someone else finished the approval,
        # or it is still pending and only the missing grants need writing.
        current = await self._read(req.id)
        if current.status == RequestStatus.PENDING.value:
            existing = await self.permissions.fields_for_request(req.id)
            remaining = [f for f in fields if f not in existing]
            try:
                await self._write_approval(req, fields, remaining, expires_at)
            except ConflictError:
                log.warning("reconcile hit a second conflict request_id=%s; returning stored state", req.id)
        await self._invalidate_for(req)
        return await self._read(req.id)

    @store_operation("revoke_access")
    async def revoke_access(self, request_id: str) -> InformationRequestOut:
        request_id = ensure_id(request_id, "request ID")
        req = await self._read(request_id)
        if req.status == RequestStatus.REVOKED.value:
            await self._invalidate_for(req)
            return req
        if req.status != RequestStatus.APPROVED.value:
            raise ValidationError(f"Cannot revoke a {req.status} request", request_id=request_id)

        try:
            await self._write_revocation(req)
        except ConflictError:
            # a concurrent revocation restored the same grant first; its rows are committed now
            log.warning("revoke_access conflict request_id=%s; retrying once", req.id)
            req = await self._read(request_id)
            if req.status == RequestStatus.APPROVED.value:
                try:
                    await self._write_revocation(req)
                except ConflictError:
                    log.warning("revoke_access hit a second conflict request_id=%s; returning stored state", req.id)
        await self._invalidate_for(req)
        return await self._read(request_id)

    async def _write_revocation(self, req: InformationRequestOut) -> bool:
        try:
            claimed = await self.requests.transition(
                req.id, RequestStatus.APPROVED, RequestStatus.REVOKED, revoked_at=_now(),
            )
            if not claimed:
                await self.session.rollback()
                return False
            restored = await self._restore_shared_grants(req)
            await self.outbox.enqueue(
                EVENT_REVOKED, SUBJECT, req.id,
                {"requester_id": req.requester_id, "target_id": req.target_id, "fields": req.shared_fields},
                recipient_id=req.requester_id,
            )
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError("Grant restored concurrently", request_id=req.id) from e
        log.info("access revoked request_id=%s restored=%s", req.id, restored)
        return True

    async def _restore_shared_grants(self, revoked: InformationRequestOut) -> dict[str, list[str]]:
        """Re-grant fields that another approved request still shares.

        The grant filter skips fields the viewer already holds, so a later
        approval of the same field may own no row; once the earlier request is
        revoked that approval has to get its own grant. Runs inside the
        revocation transaction, after the status change.
        """
        if not revoked.shared_fields:
            return {}
        now = _now()
        restored: dict[str, list[str]] = {}
        for other in await self.requests.list_approved_for_pair(revoked.target_id, revoked.requester_id):
            expires_at = _as_utc(other.expires_at)
            if expires_at is not None and expires_at <= now:
                continue
            candidates = [f for f in revoked.shared_fields if f in (other.shared_fields or [])]
            if not candidates:
                continue
            owned = await self.permissions.fields_for_request(other.id)
            covered = await self.permissions.covered_fields(
                revoked.target_id, revoked.requester_id, candidates, expires_at, at=now,
            )
            fields = [f for f in candidates if f not in owned and f not in covered]
            if fields:
                await self.permissions.bulk_create(
                    request_id=other.id, viewer_id=revoked.requester_id, target_id=revoked.target_id,
                    fields=fields, expires_at=expires_at,
                )
                restored[other.id] = fields
        return restored
