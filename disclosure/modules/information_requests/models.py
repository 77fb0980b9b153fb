from datetime import datetime
from enum import Enum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, JSON, ForeignKey, UniqueConstraint, Index
from disclosure.core.base import Base, TimestampedMixin, UtcDateTime

class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    REVOKED = "revoked"

class InformationRequest(Base, TimestampedMixin):
    __tablename__ = "information_request"
    __table_args__ = (
        Index("ix_information_request_target_status", "target_id", "status"),
    )

    requester_id: Mapped[str] = mapped_column(String(64), index=True)
    target_id: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), default=RequestStatus.PENDING.value)  # pending | approved | declined | revoked
    requested_fields: Mapped[list] = mapped_column(JSON, default=list)
    shared_fields: Mapped[list] = mapped_column(JSON, default=list)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)

class InformationRequestPermission(Base, TimestampedMixin):
    """One field-level grant. Rows are only ever inserted; newer rows supersede older ones."""
    __tablename__ = "information_request_permission"
    __table_args__ = (
        UniqueConstraint("request_id", "field", name="uq_permission_request_field"),
        Index("ix_permission_pair", "target_id", "viewer_id", "field"),
    )

    request_id: Mapped[str] = mapped_column(ForeignKey("information_request.id"))
    viewer_id: Mapped[str] = mapped_column(String(64))
    target_id: Mapped[str] = mapped_column(String(64))
    field: Mapped[str] = mapped_column(String(64))
    expires_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
