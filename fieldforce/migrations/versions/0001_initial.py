"""Initial field force schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = postgresql.ENUM("ADMIN", "ZM", "RM", "ASM", "MR", name="user_role", create_type=False)
user_status = postgresql.ENUM("TRAINEE", "CONFIRMED", name="user_status", create_type=False)
expense_category = postgresql.ENUM(
    "HQ",
    "EX_HQ",
    "OUTSTATION",
    "HOLIDAY",
    "SUNDAY",
    name="expense_category",
    create_type=False,
)
expense_status = postgresql.ENUM(
    "DRAFT",
    "SUBMITTED",
    "APPROVED_ASM",
    "APPROVED_ADMIN",
    "REJECTED",
    name="expense_status",
    create_type=False,
)
punch_type = postgresql.ENUM("IN", "OUT", name="punch_type", create_type=False)
customer_type = postgresql.ENUM("DOCTOR", "CHEMIST", "STOCKIST", name="customer_type", create_type=False)
customer_category = postgresql.ENUM("A", "B", "C", name="customer_category", create_type=False)
audit_actor_type = postgresql.ENUM("USER", "SYSTEM", name="audit_actor_type", create_type=False)

ALL_ENUMS = (
    user_role,
    user_status,
    expense_category,
    expense_status,
    punch_type,
    customer_type,
    customer_category,
    audit_actor_type,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("status", user_status, nullable=False),
        sa.Column("hq_location", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("state", sa.String(length=255), nullable=True),
        sa.Column("reporting_manager_id", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["reporting_manager_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_reporting_manager_id", "users", ["reporting_manager_id"])

    op.create_table(
        "territories",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category", expense_category, nullable=False),
        sa.Column("fixed_km", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("geo_lat", sa.Float(), nullable=True),
        sa.Column("geo_lng", sa.Float(), nullable=True),
        sa.Column("geo_radius_m", sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_territories_user_id", "territories", ["user_id"])

    op.create_table(
        "rate_configs",
        sa.Column("key", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("hq_allowance", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("ex_hq_allowance", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("outstation_allowance", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("km_rate", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "expense_sheets",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("status", expense_status, nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by_asm_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by_admin_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_expense_sheets_user_period"),
    )
    op.create_index("ix_expense_sheets_user_id", "expense_sheets", ["user_id"])
    op.create_index("ix_expense_sheets_status", "expense_sheets", ["status"])

    op.create_table(
        "expense_entries",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("sheet_id", sa.String(length=128), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("territory_id", sa.String(length=64), nullable=True),
        sa.Column("towns", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("category", expense_category, nullable=False),
        sa.Column("km", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("train_fare", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("misc_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("remarks", sa.Text(), nullable=False, server_default=""),
        sa.Column("daily_allowance", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("travel_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["sheet_id"], ["expense_sheets.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("sheet_id", "entry_date", name="uq_expense_entries_sheet_day"),
    )
    op.create_index("ix_expense_entries_sheet_id", "expense_entries", ["sheet_id"])

    op.create_table(
        "daily_attendance",
        sa.Column("id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("is_synced_to_sheets", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "attendance_date", name="uq_daily_attendance_user_day"),
    )
    op.create_index("ix_daily_attendance_user_id", "daily_attendance", ["user_id"])
    op.create_index("ix_daily_attendance_is_synced_to_sheets", "daily_attendance", ["is_synced_to_sheets"])

    op.create_table(
        "punch_records",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("attendance_id", sa.String(length=128), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("type", punch_type, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        sa.Column("accuracy_m", sa.Float(), nullable=False),
        sa.Column("location_ts_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_territory_id", sa.String(length=64), nullable=True),
        sa.Column("verified_territory_name", sa.String(length=255), nullable=True),
        sa.Column(
            "flags",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["attendance_id"], ["daily_attendance.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_punch_records_attendance_id", "punch_records", ["attendance_id"])

    op.create_table(
        "customers",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", customer_type, nullable=False),
        sa.Column("category", customer_category, nullable=False),
        sa.Column("territory_id", sa.String(length=64), nullable=False),
        sa.Column("geo_lat", sa.Float(), nullable=True),
        sa.Column("geo_lng", sa.Float(), nullable=True),
        sa.Column("is_tagged", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_customers_territory_id", "customers", ["territory_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=100), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_customers_territory_id", table_name="customers")
    op.drop_table("customers")
    op.drop_index("ix_punch_records_attendance_id", table_name="punch_records")
    op.drop_table("punch_records")
    op.drop_index("ix_daily_attendance_is_synced_to_sheets", table_name="daily_attendance")
    op.drop_index("ix_daily_attendance_user_id", table_name="daily_attendance")
    op.drop_table("daily_attendance")
    op.drop_index("ix_expense_entries_sheet_id", table_name="expense_entries")
    op.drop_table("expense_entries")
    op.drop_index("ix_expense_sheets_status", table_name="expense_sheets")
    op.drop_index("ix_expense_sheets_user_id", table_name="expense_sheets")
    op.drop_table("expense_sheets")
    op.drop_table("rate_configs")
    op.drop_index("ix_territories_user_id", table_name="territories")
    op.drop_table("territories")
    op.drop_index("ix_users_reporting_manager_id", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
