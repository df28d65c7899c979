from fastapi import APIRouter, Depends, Path, Request, Response
from sqlalchemy.orm import Session

from fieldforce.audit import audit_request
from fieldforce.db import get_db
from fieldforce.errors import ApiError
from fieldforce.models import ExpenseSheet, UserProfile, UserRole
from fieldforce.schemas import (
    ComplianceRead,
    ExpenseEntryRead,
    ExpenseEntryUpdateRequest,
    ExpenseRejectRequest,
    ExpenseSheetRead,
    ExpenseSheetSummaryRead,
    SheetTotalsRead,
)
from fieldforce.security import get_current_user, resolve_user
from fieldforce.services.exports import build_expense_sheet_xlsx_bytes
from fieldforce.services.expense_sheets import (
    approve_sheet,
    can_edit,
    can_review,
    can_submit,
    check_hq_compliance,
    edit_entry,
    get_or_create_sheet,
    get_sheet,
    is_owner,
    list_pending_sheets,
    recompute_sheet,
    reject_sheet,
    save_sheet,
    sheet_totals,
    submit_sheet,
)
from fieldforce.services.hierarchy import is_upstream_manager
from fieldforce.services.rates import Rates, load_rate_table, resolve_rates
from fieldforce.settings import get_settings

router = APIRouter(tags=["expenses"])
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _rates_for(db: Session, owner: UserProfile) -> Rates:
    return resolve_rates(
        load_rate_table(db),
        owner.role,
        owner.status,
        fallback_key=get_settings().default_rate_key,
    )


def _sheet_owner(db: Session, sheet: ExpenseSheet, actor: UserProfile) -> UserProfile:
    if is_owner(sheet, actor):
        return actor
    return resolve_user(db, sheet.user_id)


def _ensure_can_view(db: Session, sheet: ExpenseSheet, actor: UserProfile) -> None:
    if is_owner(sheet, actor) or actor.role == UserRole.ADMIN:
        return
    if is_upstream_manager(db, actor.id, sheet.user_id):
        return
    raise ApiError(status_code=403, code="FORBIDDEN", message="You cannot view this expense sheet.")


def _sheet_read(sheet: ExpenseSheet, actor: UserProfile) -> ExpenseSheetRead:
    totals = sheet_totals(sheet.entries)
    compliance = check_hq_compliance(sheet.entries, minimum_hq_days=get_settings().hq_days_minimum)
    return ExpenseSheetRead(
        id=sheet.id,
        user_id=sheet.user_id,
        year=sheet.year,
        month=sheet.month,
        status=sheet.status,
        submitted_at=sheet.submitted_at,
        approved_by_asm_at=sheet.approved_by_asm_at,
        approved_by_admin_at=sheet.approved_by_admin_at,
        rejection_reason=sheet.rejection_reason,
        entries=[ExpenseEntryRead.model_validate(entry) for entry in sheet.entries],
        totals=SheetTotalsRead(
            km=totals.km,
            daily_allowance=totals.daily_allowance,
            travel_amount=totals.travel_amount,
            misc_amount=totals.misc_amount,
            total_amount=totals.total_amount,
            hq_days=totals.hq_days,
        ),
        compliance=ComplianceRead(
            hq_days=compliance.hq_days,
            minimum_hq_days=compliance.minimum_hq_days,
            compliant=compliance.compliant,
            warning=compliance.warning,
        ),
        can_edit=can_edit(sheet, actor),
        can_submit=can_submit(sheet, actor),
        can_review=can_review(sheet, actor),
    )


@router.get("/api/expenses/pending", response_model=list[ExpenseSheetSummaryRead])
def pending_sheets(
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ExpenseSheetSummaryRead]:
    return [
        ExpenseSheetSummaryRead(
            id=sheet.id,
            user_id=sheet.user_id,
            year=sheet.year,
            month=sheet.month,
            status=sheet.status,
            submitted_at=sheet.submitted_at,
            total_amount=sheet_totals(sheet.entries).total_amount,
        )
        for sheet in list_pending_sheets(db, user)
    ]


@router.get("/api/expenses/sheets/by-id/{sheet_id}", response_model=ExpenseSheetRead)
def sheet_by_id(
    sheet_id: str,
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ExpenseSheetRead:
    sheet = get_sheet(db, sheet_id)
    _ensure_can_view(db, sheet, user)
    return _sheet_read(sheet, user)


@router.get("/api/expenses/sheets/by-id/{sheet_id}/export.xlsx")
def export_sheet_xlsx(
    sheet_id: str,
    request: Request,
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    sheet = get_sheet(db, sheet_id)
    _ensure_can_view(db, sheet, user)
    owner = _sheet_owner(db, sheet, user)
    payload = build_expense_sheet_xlsx_bytes(
        sheet,
        owner,
        minimum_hq_days=get_settings().hq_days_minimum,
    )

    audit_request(
        db,
        request,
        actor_id=user.id,
        action="EXPENSE_SHEET_EXPORT_XLSX",
        entity_type="expense_sheet",
        entity_id=sheet.id,
    )
    return Response(
        content=payload,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="expenses-{owner.id}-{sheet.year}-{sheet.month:02d}.xlsx"',
        },
    )


@router.get("/api/expenses/sheets/{year}/{month}", response_model=ExpenseSheetRead)
def my_sheet(
    year: int = Path(ge=2000, le=2100),
    month: int = Path(ge=1, le=12),
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ExpenseSheetRead:
    sheet = get_or_create_sheet(db, user, year, month, _rates_for(db, user))
    return _sheet_read(sheet, user)


@router.patch(
    "/api/expenses/sheets/{sheet_id}/entries/{entry_id}",
    response_model=ExpenseSheetRead,
)
def update_entry(
    sheet_id: str,
    entry_id: str,
    payload: ExpenseEntryUpdateRequest,
    request: Request,
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ExpenseSheetRead:
    sheet = get_sheet(db, sheet_id)
    owner = _sheet_owner(db, sheet, user)
    changes = payload.field_changes()
    entry = edit_entry(
        sheet,
        user,
        entry_id,
        rates=_rates_for(db, owner),
        territories=owner.territories,
        changes=changes,
        territory_id=payload.territory_id,
        clear_territory=payload.clear_territory,
    )
    save_sheet(db, sheet, action="expense_entry_updated", actor=user)

    audit_request(
        db,
        request,
        actor_id=user.id,
        action="EXPENSE_ENTRY_UPDATED",
        entity_type="expense_entry",
        entity_id=entry.id,
        details={
            "sheet_id": sheet.id,
            "fields": sorted(changes),
            "territory_id": payload.territory_id,
            "clear_territory": payload.clear_territory,
            "total_amount": entry.total_amount,
        },
    )
    return _sheet_read(sheet, user)


@router.post("/api/expenses/sheets/{sheet_id}/submit", response_model=ExpenseSheetRead)
def submit(
    sheet_id: str,
    request: Request,
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ExpenseSheetRead:
    sheet = submit_sheet(get_sheet(db, sheet_id), user)
    recompute_sheet(sheet, _rates_for(db, user))
    save_sheet(db, sheet, action="expense_sheet_submitted", actor=user)
    audit_request(
        db,
        request,
        actor_id=user.id,
        action="EXPENSE_SHEET_SUBMITTED",
        entity_type="expense_sheet",
        entity_id=sheet.id,
    )
    return _sheet_read(sheet, user)


@router.post("/api/expenses/sheets/{sheet_id}/approve", response_model=ExpenseSheetRead)
def approve(
    sheet_id: str,
    request: Request,
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ExpenseSheetRead:
    sheet = get_sheet(db, sheet_id)
    if user.role == UserRole.ASM and not is_upstream_manager(db, user.id, sheet.user_id):
        raise ApiError(status_code=403, code="REVIEW_NOT_ALLOWED", message="Sheet owner is not in your team.")
    approve_sheet(sheet, user)
    save_sheet(db, sheet, action="expense_sheet_approved", actor=user)
    audit_request(
        db,
        request,
        actor_id=user.id,
        action="EXPENSE_SHEET_APPROVED",
        entity_type="expense_sheet",
        entity_id=sheet.id,
        details={"status": sheet.status.value},
    )
    return _sheet_read(sheet, user)


@router.post("/api/expenses/sheets/{sheet_id}/reject", response_model=ExpenseSheetRead)
def reject(
    sheet_id: str,
    payload: ExpenseRejectRequest,
    request: Request,
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ExpenseSheetRead:
    sheet = get_sheet(db, sheet_id)
    if user.role == UserRole.ASM and not is_upstream_manager(db, user.id, sheet.user_id):
        raise ApiError(status_code=403, code="REVIEW_NOT_ALLOWED", message="Sheet owner is not in your team.")
    reject_sheet(sheet, user, payload.reason)
    save_sheet(db, sheet, action="expense_sheet_rejected", actor=user)
    audit_request(
        db,
        request,
        actor_id=user.id,
        action="EXPENSE_SHEET_REJECTED",
        entity_type="expense_sheet",
        entity_id=sheet.id,
        details={"reason": payload.reason},
    )
    return _sheet_read(sheet, user)
