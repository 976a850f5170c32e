import uuid
from datetime import date, datetime
from enum import Enum
from sqlalchemy import Enum as SAEnum, ForeignKey, Float, Integer, Boolean, Date, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ptpay.database import Base

class PTSessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    ATTENDED = "attended"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class PTSessionType(str, Enum):
    SOLO_PACKAGE = "solo_package"
    SOLO_SINGLE = "solo_single"
    BUDDY = "buddy"
    HOUSE_CALL = "house_call"

class VerificationState(str, Enum):
    SCHEDULED = "scheduled"
    COACH_VERIFIED = "coach_verified"
    BOTH_VERIFIED = "both_verified"
    PAYMENT_APPROVED = "payment_approved"
    CANCELLED = "cancelled"

class PackageStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"

class PTPackage(Base):
    __tablename__ = "pt_packages"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    preferred_coach_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False)
    sessions_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[PackageStatus] = mapped_column(SAEnum(PackageStatus, native_enum=False), default=PackageStatus.ACTIVE, nullable=False)

    @property
    def sessions_remaining(self) -> int:
        return max(self.total_sessions - self.sessions_used, 0)

class PTSession(Base):
    __tablename__ = "pt_sessions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    coach_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    member_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    status: Mapped[PTSessionStatus] = mapped_column(SAEnum(PTSessionStatus, native_enum=False), default=PTSessionStatus.SCHEDULED, nullable=False)
    session_type: Mapped[PTSessionType] = mapped_column(SAEnum(PTSessionType, native_enum=False), default=PTSessionType.SOLO_SINGLE, nullable=False)
    session_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    commission_amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Verification
    coach_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verification_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    member_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Payment
    payment_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    package_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("pt_packages.id"), nullable=True, index=True)

    # Cancellation
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Edit tracking
    edited_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    edit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    coach = relationship("User", foreign_keys=[coach_id])
    member = relationship("User", foreign_keys=[member_id])
    package = relationship("PTPackage")
