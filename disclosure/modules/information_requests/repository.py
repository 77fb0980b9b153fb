from datetime import datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, or_
from disclosure.core.base import utcnow
from disclosure.modules.information_requests.models import (
    InformationRequest, InformationRequestPermission, RequestStatus,
)

class InformationRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> InformationRequest:
        obj = InformationRequest(status=RequestStatus.PENDING.value, shared_fields=[], **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, request_id: str) -> InformationRequest | None:
        q = select(InformationRequest).where(InformationRequest.id == request_id).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_pending_for_target(self, target_id: str) -> Sequence[InformationRequest]:
        q = select(InformationRequest).where(
            InformationRequest.target_id == target_id,
            InformationRequest.status == RequestStatus.PENDING.value,
        ).order_by(InformationRequest.created_at.desc()).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_sent_by_requester(self, requester_id: str) -> Sequence[InformationRequest]:
        q = select(InformationRequest).where(
            InformationRequest.requester_id == requester_id,
        ).order_by(InformationRequest.created_at.desc()).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_approved_for_pair(self, target_id: str, viewer_id: str) -> Sequence[InformationRequest]:
        q = select(InformationRequest).where(
            InformationRequest.target_id == target_id,
            InformationRequest.requester_id == viewer_id,
            InformationRequest.status == RequestStatus.APPROVED.value,
        ).order_by(InformationRequest.created_at.desc()).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def transition(self, request_id: str, from_status: RequestStatus, to_status: RequestStatus, **values) -> bool:
        # Compare-and-set on status: only one concurrent caller can move a row out of from_status.
        q = (
            update(InformationRequest)
            .where(
                InformationRequest.id == request_id,
                InformationRequest.status == from_status.value,
            )
            .values(status=to_status.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        return res.rowcount == 1

class PermissionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def bulk_create(self, *, request_id: str, viewer_id: str, target_id: str,
                          fields: list[str], expires_at: datetime | None) -> list[InformationRequestPermission]:
        rows = [
            InformationRequestPermission(
                request_id=request_id, viewer_id=viewer_id, target_id=target_id,
                field=field, expires_at=expires_at,
            )
            for field in fields
        ]
        self.session.add_all(rows)
        await self.session.flush()
        return rows

    async def list_for_pair(self, target_id: str, viewer_id: str) -> Sequence[InformationRequestPermission]:
        # Grants of revoked requests no longer count.
        q = (
            select(InformationRequestPermission)
            .join(InformationRequest, InformationRequest.id == InformationRequestPermission.request_id)
            .where(
                InformationRequestPermission.target_id == target_id,
                InformationRequestPermission.viewer_id == viewer_id,
                InformationRequest.status != RequestStatus.REVOKED.value,
            )
            .order_by(InformationRequestPermission.created_at.desc())
        )
        res = await self.session.execute(q)
        return res.scalars().all()

    async def active_fields(self, target_id: str, viewer_id: str, fields: list[str], at: datetime | None = None) -> set[str]:
        t = at or utcnow()
        q = (
            select(InformationRequestPermission.field)
            .join(InformationRequest, InformationRequest.id == InformationRequestPermission.request_id)
            .where(
                InformationRequestPermission.target_id == target_id,
                InformationRequestPermission.viewer_id == viewer_id,
                InformationRequestPermission.field.in_(fields),
                InformationRequest.status != RequestStatus.REVOKED.value,
                or_(InformationRequestPermission.expires_at.is_(None), InformationRequestPermission.expires_at > t),
            )
        )
        res = await self.session.execute(q)
        return set(res.scalars().all())

    async def covered_fields(self, target_id: str, viewer_id: str, fields: list[str],
                             until: datetime | None, at: datetime | None = None) -> set[str]:
        """Fields whose active grant lasts at least until `until` (None means open-ended)."""
        t = at or utcnow()
        lasting = (
            InformationRequestPermission.expires_at.is_(None)
            if until is None
            else or_(InformationRequestPermission.expires_at.is_(None), InformationRequestPermission.expires_at >= until)
        )
        q = (
            select(InformationRequestPermission.field)
            .join(InformationRequest, InformationRequest.id == InformationRequestPermission.request_id)
            .where(
                InformationRequestPermission.target_id == target_id,
                InformationRequestPermission.viewer_id == viewer_id,
                InformationRequestPermission.field.in_(fields),
                InformationRequest.status != RequestStatus.REVOKED.value,
                or_(InformationRequestPermission.expires_at.is_(None), InformationRequestPermission.expires_at > t),
                lasting,
            )
        )
        res = await self.session.execute(q)
        return set(res.scalars().all())

    async def fields_for_request(self, request_id: str) -> set[str]:
        q = select(InformationRequestPermission.field).where(InformationRequestPermission.request_id == request_id)
        res = await self.session.execute(q)
        return set(res.scalars().all())
