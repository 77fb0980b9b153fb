from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, JSON, ForeignKey
from disclosure.core.base import Base, TimestampedMixin

class User(Base, TimestampedMixin):
    __tablename__ = "app_user"
    name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    profile_image: Mapped[str | None] = mapped_column(String(512), nullable=True)
    role: Mapped[str] = mapped_column(String(16), default="parent")  # parent | caregiver

class CaregiverProfile(Base, TimestampedMixin):
    __tablename__ = "caregiver_profile"
    user_id: Mapped[str] = mapped_column(ForeignKey("app_user.id"), unique=True, index=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    documents: Mapped[list | None] = mapped_column(JSON, nullable=True)
    background_check_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    emergency_contacts: Mapped[list | None] = mapped_column(JSON, nullable=True)
    age_care_ranges: Mapped[list | None] = mapped_column(JSON, nullable=True)
    portfolio: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    availability: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    languages: Mapped[list | None] = mapped_column(JSON, nullable=True)
    references: Mapped[list | None] = mapped_column(JSON, nullable=True)
    rate_history: Mapped[list | None] = mapped_column(JSON, nullable=True)
    work_history: Mapped[list | None] = mapped_column(JSON, nullable=True)
    # parent-side details live on the same profile row for parents
    child_medical_info: Mapped[list | None] = mapped_column(JSON, nullable=True)
    child_allergies: Mapped[list | None] = mapped_column(JSON, nullable=True)
    child_behavior_notes: Mapped[list | None] = mapped_column(JSON, nullable=True)
    financial_info: Mapped[dict | None] = mapped_column(JSON, nullable=True)
