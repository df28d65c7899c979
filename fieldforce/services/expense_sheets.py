from __future__ import annotations

import logging
from calendar import monthrange
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from fieldforce.errors import ApiError
from fieldforce.models import (
    ExpenseCategory,
    ExpenseEntry,
    ExpenseSheet,
    ExpenseStatus,
    Territory,
    UserProfile,
    UserRole,
)
from fieldforce.services.expense_rows import (
    EditableField,
    ExpenseRow,
    apply_field_change,
    apply_territory_change,
    recompute,
)
from fieldforce.services.hierarchy import load_downstream_user_ids
from fieldforce.services.rates import Rates

logger = logging.getLogger("fieldforce.expense_sheets")

DEFAULT_HQ_DAYS_MINIMUM = 8

OWNER_EDITABLE_STATUSES = frozenset({ExpenseStatus.DRAFT, ExpenseStatus.REJECTED})
SUBMITTABLE_STATUSES = OWNER_EDITABLE_STATUSES
ASM_REVIEWABLE_STATUSES = frozenset({ExpenseStatus.SUBMITTED})
ADMIN_REVIEWABLE_STATUSES = frozenset({ExpenseStatus.SUBMITTED, ExpenseStatus.APPROVED_ASM})


@dataclass(frozen=True, slots=True)
class SheetTotals:
    km: float
    daily_allowance: float
    travel_amount: float
    misc_amount: float
    total_amount: float
    hq_days: int


@dataclass(frozen=True, slots=True)
class ComplianceResult:
    hq_days: int
    minimum_hq_days: int

    @property
    def compliant(self) -> bool:
        return self.hq_days >= self.minimum_hq_days

    @property
    def warning(self) -> str | None:
        if self.compliant:
            return None
        return f"Only {self.hq_days} HQ days recorded. Minimum {self.minimum_hq_days} required."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sheet_id_for(user_id: str, year: int, month: int) -> str:
    return f"{user_id}_{year}_{month}"


def default_category_for(day: date) -> ExpenseCategory:
    return ExpenseCategory.SUNDAY if day.weekday() == 6 else ExpenseCategory.HQ


def build_month_rows(year: int, month: int, rates: Rates) -> list[ExpenseRow]:
    days_in_month = monthrange(year, month)[1]
    rows: list[ExpenseRow] = []
    for day_number in range(1, days_in_month + 1):
        day = date(year, month, day_number)
        rows.append(recompute(ExpenseRow(id=str(uuid4()), date=day, category=default_category_for(day)), rates))
    return rows


def materialize_sheet(user_id: str, year: int, month: int, rates: Rates) -> ExpenseSheet:
    if not 1 <= month <= 12:
        raise ApiError(status_code=422, code="INVALID_PERIOD", message="Month must be between 1 and 12.")

    sheet = ExpenseSheet(
        id=sheet_id_for(user_id, year, month),
        user_id=user_id,
        year=year,
        month=month,
        status=ExpenseStatus.DRAFT,
    )
    sheet.entries = [row.copy_to(ExpenseEntry(id=row.id, sheet_id=sheet.id)) for row in build_month_rows(year, month, rates)]
    return sheet


def sheet_totals(entries: Iterable[ExpenseEntry]) -> SheetTotals:
    km = allowance = travel = misc = total = 0.0
    hq_days = 0
    for entry in entries:
        km += entry.km or 0.0
        allowance += entry.daily_allowance or 0.0
        travel += entry.travel_amount or 0.0
        misc += entry.misc_amount or 0.0
        total += entry.total_amount or 0.0
        if entry.category == ExpenseCategory.HQ:
            hq_days += 1
    return SheetTotals(
        km=km,
        daily_allowance=allowance,
        travel_amount=travel,
        misc_amount=misc,
        total_amount=total,
        hq_days=hq_days,
    )


def check_hq_compliance(
    entries: Iterable[ExpenseEntry],
    *,
    minimum_hq_days: int = DEFAULT_HQ_DAYS_MINIMUM,
) -> ComplianceResult:
    hq_days = sum(1 for entry in entries if entry.category == ExpenseCategory.HQ)
    return ComplianceResult(hq_days=hq_days, minimum_hq_days=minimum_hq_days)


def is_owner(sheet: ExpenseSheet, actor: UserProfile) -> bool:
    return sheet.user_id == actor.id


def can_edit(sheet: ExpenseSheet, actor: UserProfile) -> bool:
    # Admin override applies at every status, including after approval.
    if actor.role == UserRole.ADMIN:
        return True
    return sheet.status in OWNER_EDITABLE_STATUSES and is_owner(sheet, actor)


def can_submit(sheet: ExpenseSheet, actor: UserProfile) -> bool:
    return is_owner(sheet, actor) and sheet.status in SUBMITTABLE_STATUSES


def can_review(sheet: ExpenseSheet, actor: UserProfile) -> bool:
    if is_owner(sheet, actor):
        return False
    if actor.role == UserRole.ASM:
        return sheet.status in ASM_REVIEWABLE_STATUSES
    if actor.role == UserRole.ADMIN:
        return sheet.status in ADMIN_REVIEWABLE_STATUSES
    return False


def _ensure_can_review(sheet: ExpenseSheet, actor: UserProfile) -> None:
    if can_review(sheet, actor):
        return
    if is_owner(sheet, actor) or actor.role not in (UserRole.ASM, UserRole.ADMIN):
        raise ApiError(
            status_code=403,
            code="REVIEW_NOT_ALLOWED",
            message="Only a reviewer other than the owner can approve or reject this sheet.",
        )
    raise ApiError(
        status_code=409,
        code="REVIEW_NOT_ALLOWED",
        message=f"A {actor.role.value} reviewer cannot act on a sheet in status {sheet.status.value}.",
        details={"status": sheet.status.value},
    )


def submit_sheet(sheet: ExpenseSheet, actor: UserProfile, *, now: datetime | None = None) -> ExpenseSheet:
    if not is_owner(sheet, actor):
        raise ApiError(status_code=403, code="SUBMIT_NOT_ALLOWED", message="Only the sheet owner can submit it.")
    if sheet.status not in SUBMITTABLE_STATUSES:
        raise ApiError(
            status_code=409,
            code="SUBMIT_NOT_ALLOWED",
            message=f"Sheet in status {sheet.status.value} cannot be submitted.",
            details={"status": sheet.status.value},
        )

    sheet.status = ExpenseStatus.SUBMITTED
    sheet.submitted_at = now or _utcnow()
    return sheet


def approve_sheet(sheet: ExpenseSheet, actor: UserProfile, *, now: datetime | None = None) -> ExpenseSheet:
    _ensure_can_review(sheet, actor)
    stamp = now or _utcnow()
    if actor.role == UserRole.ADMIN:
        sheet.status = ExpenseStatus.APPROVED_ADMIN
        sheet.approved_by_admin_at = stamp
    else:
        sheet.status = ExpenseStatus.APPROVED_ASM
        sheet.approved_by_asm_at = stamp
    return sheet


def reject_sheet(sheet: ExpenseSheet, actor: UserProfile, reason: str) -> ExpenseSheet:
    _ensure_can_review(sheet, actor)
    # Entries and earlier stamps stay as they were for reference.
    sheet.status = ExpenseStatus.REJECTED
    sheet.rejection_reason = reason
    return sheet


def _ensure_can_edit(sheet: ExpenseSheet, actor: UserProfile) -> None:
    if can_edit(sheet, actor):
        return
    raise ApiError(
        status_code=403,
        code="SHEET_NOT_EDITABLE",
        message="Sheet entries can only be edited by the owner while in DRAFT or REJECTED.",
        details={"status": sheet.status.value},
    )


def _find_entry(sheet: ExpenseSheet, entry_id: str) -> ExpenseEntry:
    for entry in sheet.entries:
        if entry.id == entry_id:
            return entry
    raise ApiError(status_code=404, code="ENTRY_NOT_FOUND", message="Expense entry not found on this sheet.")


def _find_territory(territories: Iterable[Territory], territory_id: str) -> Territory:
    for territory in territories:
        if territory.id == territory_id:
            return territory
    raise ApiError(status_code=404, code="TERRITORY_NOT_FOUND", message="Territory is not assigned to the sheet owner.")


def edit_entry(
    sheet: ExpenseSheet,
    actor: UserProfile,
    entry_id: str,
    *,
    rates: Rates,
    territories: Iterable[Territory] = (),
    changes: dict[str, Any] | None = None,
    territory_id: str | None = None,
    clear_territory: bool = False,
) -> ExpenseEntry:
    """Apply a territory selection and/or field edits to one day of a sheet.

    Every precondition is checked before the entry is touched, so a rejected
    edit leaves the sheet exactly as it was. The rest of the sheet is then
    re-derived with ``rates`` so no sheet mixes two rate tables.
    """
    _ensure_can_edit(sheet, actor)
    entry = _find_entry(sheet, entry_id)
    territories = list(territories)
    territory = _find_territory(territories, territory_id) if territory_id is not None else None

    row = ExpenseRow.from_entry(entry)
    if territory is not None:
        row = apply_territory_change(row, territory, rates)
    elif clear_territory:
        row = apply_territory_change(row, None, rates)

    current = next((item for item in territories if item.id == row.territory_id), None)
    fixed_km = current.fixed_km if current is not None else None

    for field, value in (changes or {}).items():
        field_name: EditableField = field  # type: ignore[assignment]
        row = apply_field_change(row, field_name, value, rates, fixed_km=fixed_km)

    if territory is None and not clear_territory and not changes:
        row = recompute(row, rates)

    row.copy_to(entry)
    recompute_sheet(sheet, rates)
    return entry


def recompute_sheet(sheet: ExpenseSheet, rates: Rates) -> bool:
    """Re-derive every entry with ``rates``; returns whether anything changed."""
    changed = False
    for entry in sheet.entries:
        before = ExpenseRow.from_entry(entry)
        after = recompute(before, rates)
        if after != before:
            after.copy_to(entry)
            changed = True
    return changed


def _sheet_query():  # type: ignore[no-untyped-def]
    return select(ExpenseSheet).options(selectinload(ExpenseSheet.entries))


def get_sheet(db: Session, sheet_id: str) -> ExpenseSheet:
    sheet = db.scalar(_sheet_query().where(ExpenseSheet.id == sheet_id))
    if sheet is None:
        raise ApiError(status_code=404, code="SHEET_NOT_FOUND", message="Expense sheet not found.")
    return sheet


def get_or_create_sheet(db: Session, owner: UserProfile, year: int, month: int, rates: Rates) -> ExpenseSheet:
    sheet_id = sheet_id_for(owner.id, year, month)
    sheet = db.scalar(_sheet_query().where(ExpenseSheet.id == sheet_id))
    if sheet is not None:
        # Submitted and approved sheets keep the rates they were submitted with.
        if sheet.status in OWNER_EDITABLE_STATUSES and recompute_sheet(sheet, rates):
            db.commit()
            logger.info("expense_sheet_rates_refreshed", extra={"sheet_id": sheet.id, "user_id": owner.id})
        return sheet

    sheet = materialize_sheet(owner.id, year, month, rates)
    db.add(sheet)
    db.commit()
    logger.info(
        "expense_sheet_created",
        extra={"sheet_id": sheet.id, "user_id": owner.id, "year": year, "month": month},
    )
    return sheet


def save_sheet(db: Session, sheet: ExpenseSheet, *, action: str, actor: UserProfile) -> ExpenseSheet:
    db.add(sheet)
    db.commit()
    logger.info(
        action,
        extra={
            "sheet_id": sheet.id,
            "user_id": sheet.user_id,
            "actor_id": actor.id,
            "status": sheet.status.value,
        },
    )
    return sheet


def list_pending_sheets(db: Session, reviewer: UserProfile) -> list[ExpenseSheet]:
    if reviewer.role == UserRole.ADMIN:
        stmt = _sheet_query().where(ExpenseSheet.status.in_(sorted(ADMIN_REVIEWABLE_STATUSES)))
    elif reviewer.role == UserRole.ASM:
        team_ids = load_downstream_user_ids(db, reviewer.id)
        if not team_ids:
            return []
        stmt = _sheet_query().where(
            ExpenseSheet.status.in_(sorted(ASM_REVIEWABLE_STATUSES)),
            ExpenseSheet.user_id.in_(team_ids),
        )
    else:
        return []

    stmt = stmt.where(ExpenseSheet.user_id != reviewer.id).order_by(
        ExpenseSheet.year.asc(),
        ExpenseSheet.month.asc(),
        ExpenseSheet.user_id.asc(),
    )
    return list(db.scalars(stmt).all())
