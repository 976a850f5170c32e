import uuid
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import Enum as SAEnum, ForeignKey, Float, Integer, String, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ptpay.database import Base

class EmploymentType(str, Enum):
    FULL_TIME = "full_time"
    PART_TIME = "part_time"

class PayslipStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"

class CoachProfile(Base):
    __tablename__ = "coach_profiles"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, unique=True)
    employment_type: Mapped[EmploymentType] = mapped_column(SAEnum(EmploymentType, native_enum=False), default=EmploymentType.PART_TIME, nullable=False)

    # Full-time pay. Older profiles only carry base_salary.
    monthly_salary: Mapped[float | None] = mapped_column(Float, nullable=True)
    base_salary: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Part-time pay per class hour. Older profiles only carry hourly_rate.
    rate_per_class: Mapped[float | None] = mapped_column(Float, nullable=True)
    hourly_rate: Mapped[float | None] = mapped_column(Float, nullable=True)

    # citizen | pr | foreigner; only read by payslip viewers
    citizenship_status: Mapped[str | None] = mapped_column(String, nullable=True)

    user = relationship("User")

class Payslip(Base):
    __tablename__ = "payslips"
    __table_args__ = (
        UniqueConstraint("user_id", "month", "year", name="uq_payslip_user_month_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    employment_type: Mapped[EmploymentType] = mapped_column(SAEnum(EmploymentType, native_enum=False), nullable=False)

    # Earnings
    base_salary: Mapped[float] = mapped_column(Float, default=0.0)
    class_earnings: Mapped[float] = mapped_column(Float, default=0.0)
    class_hours: Mapped[float] = mapped_column(Float, default=0.0)
    class_rate_per_hour: Mapped[float] = mapped_column(Float, default=0.0)
    pt_commission: Mapped[float] = mapped_column(Float, default=0.0)
    pt_session_count: Mapped[int] = mapped_column(Integer, default=0)
    pt_weekly_breakdown: Mapped[list] = mapped_column(JSON, default=list)
    bonus: Mapped[float] = mapped_column(Float, default=0.0)
    bonus_description: Mapped[str | None] = mapped_column(String, nullable=True)
    gross_pay: Mapped[float] = mapped_column(Float, default=0.0)

    # Deductions
    cpf_contribution: Mapped[float] = mapped_column(Float, default=0.0)
    other_deductions: Mapped[float] = mapped_column(Float, default=0.0)
    deduction_details: Mapped[list] = mapped_column(JSON, default=list)
    total_deductions: Mapped[float] = mapped_column(Float, default=0.0)
    net_pay: Mapped[float] = mapped_column(Float, default=0.0)

    status: Mapped[PayslipStatus] = mapped_column(SAEnum(PayslipStatus, native_enum=False), default=PayslipStatus.PENDING, nullable=False)
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user = relationship("User")
