from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldforce.db import Base


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    ZM = "ZM"
    RM = "RM"
    ASM = "ASM"
    MR = "MR"


class UserStatus(str, enum.Enum):
    TRAINEE = "TRAINEE"
    CONFIRMED = "CONFIRMED"


class ExpenseCategory(str, enum.Enum):
    HQ = "HQ"
    EX_HQ = "EX_HQ"
    OUTSTATION = "OUTSTATION"
    HOLIDAY = "HOLIDAY"
    SUNDAY = "SUNDAY"


class ExpenseStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED_ASM = "APPROVED_ASM"
    APPROVED_ADMIN = "APPROVED_ADMIN"
    REJECTED = "REJECTED"


class PunchType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"


class CustomerType(str, enum.Enum):
    DOCTOR = "DOCTOR"
    CHEMIST = "CHEMIST"
    STOCKIST = "STOCKIST"


class CustomerCategory(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"


class AuditActorType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


class UserProfile(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole, name="user_role"), nullable=False)
    status: Mapped[UserStatus] = mapped_column(Enum(UserStatus, name="user_status"), nullable=False)
    hq_location: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default="")
    state: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reporting_manager_id: Mapped[str | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    territories: Mapped[list[Territory]] = relationship(
        back_populates="user",
        order_by="Territory.position",
        cascade="all, delete-orphan",
    )
    expense_sheets: Mapped[list[ExpenseSheet]] = relationship(back_populates="user")
    attendance_days: Mapped[list[DailyAttendance]] = relationship(back_populates="user")


class Territory(Base):
    __tablename__ = "territories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(
        Enum(ExpenseCategory, name="expense_category"),
        nullable=False,
    )
    fixed_km: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    geo_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    geo_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    geo_radius_m: Mapped[float | None] = mapped_column(Float, nullable=True)

    user: Mapped[UserProfile] = relationship(back_populates="territories")


class RateConfig(Base):
    __tablename__ = "rate_configs"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    hq_allowance: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    ex_hq_allowance: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    outstation_allowance: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    km_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class ExpenseSheet(Base):
    __tablename__ = "expense_sheets"
    __table_args__ = (UniqueConstraint("user_id", "year", "month", name="uq_expense_sheets_user_period"),)

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ExpenseStatus] = mapped_column(
        Enum(ExpenseStatus, name="expense_status"),
        nullable=False,
        default=ExpenseStatus.DRAFT,
        index=True,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_asm_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_admin_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user: Mapped[UserProfile] = relationship(back_populates="expense_sheets")
    entries: Mapped[list[ExpenseEntry]] = relationship(
        back_populates="sheet",
        order_by="ExpenseEntry.entry_date",
        cascade="all, delete-orphan",
    )


class ExpenseEntry(Base):
    __tablename__ = "expense_entries"
    __table_args__ = (UniqueConstraint("sheet_id", "entry_date", name="uq_expense_entries_sheet_day"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    sheet_id: Mapped[str] = mapped_column(
        ForeignKey("expense_sheets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    territory_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    towns: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default="")
    category: Mapped[ExpenseCategory] = mapped_column(
        Enum(ExpenseCategory, name="expense_category"),
        nullable=False,
    )
    km: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    train_fare: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    misc_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    remarks: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    daily_allowance: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    travel_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    total_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))

    sheet: Mapped[ExpenseSheet] = relationship(back_populates="entries")


class DailyAttendance(Base):
    __tablename__ = "daily_attendance"
    __table_args__ = (UniqueConstraint("user_id", "attendance_date", name="uq_daily_attendance_user_day"),)

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_synced_to_sheets: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        index=True,
    )
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[UserProfile] = relationship(back_populates="attendance_days")
    punches: Mapped[list[PunchRecord]] = relationship(
        back_populates="attendance",
        order_by="PunchRecord.sequence",
        cascade="all, delete-orphan",
    )

    @property
    def punch_in(self) -> PunchRecord | None:
        for punch in self.punches:
            if punch.type == PunchType.IN:
                return punch
        return None

    @property
    def punch_outs(self) -> list[PunchRecord]:
        return [punch for punch in self.punches if punch.type == PunchType.OUT]


class PunchRecord(Base):
    __tablename__ = "punch_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    attendance_id: Mapped[str] = mapped_column(
        ForeignKey("daily_attendance.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[PunchType] = mapped_column(Enum(PunchType, name="punch_type"), nullable=False)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy_m: Mapped[float] = mapped_column(Float, nullable=False)
    location_ts_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_territory_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verified_territory_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    flags: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    attendance: Mapped[DailyAttendance] = relationship(back_populates="punches")


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[CustomerType] = mapped_column(Enum(CustomerType, name="customer_type"), nullable=False)
    category: Mapped[CustomerCategory] = mapped_column(
        Enum(CustomerCategory, name="customer_category"),
        nullable=False,
    )
    territory_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    geo_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    geo_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_tagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
