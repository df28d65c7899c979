from __future__ import annotations

from calendar import month_name
from datetime import datetime
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from fieldforce.models import ExpenseCategory, ExpenseSheet, UserProfile
from fieldforce.services.expense_sheets import check_hq_compliance, sheet_totals

CATEGORY_LABELS: dict[ExpenseCategory, str] = {
    ExpenseCategory.HQ: "HQ (Headquarter)",
    ExpenseCategory.EX_HQ: "Ex-HQ",
    ExpenseCategory.OUTSTATION: "Outstation",
    ExpenseCategory.HOLIDAY: "Holiday",
    ExpenseCategory.SUNDAY: "Sunday",
}

SHEET_HEADERS = [
    "Date",
    "Day",
    "Territory / Towns",
    "Category",
    "KM",
    "Fare (Act.)",
    "DA",
    "Travel",
    "Misc",
    "Total",
    "Remarks",
]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="1E3A8A")
META_LABEL_FILL = PatternFill(fill_type="solid", fgColor="E0E7FF")
SUNDAY_FILL = PatternFill(fill_type="solid", fgColor="F1F5F9")
TOTAL_FILL = PatternFill(fill_type="solid", fgColor="E2E8F0")
WARNING_FILL = PatternFill(fill_type="solid", fgColor="FEF3C7")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
TITLE_FONT = Font(bold=True, color="1E3A8A", size=14)

THIN_SIDE = Side(style="thin", color="CBD5E1")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def _format_ts(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M")


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        col_letter = get_column_letter(column_cells[0].column)
        max_len = max(
            (len(str(cell.value)) for cell in column_cells if cell.value is not None and cell.coordinate not in ws.merged_cells),
            default=0,
        )
        ws.column_dimensions[col_letter].width = min(max_len + 2, 40)


def _append_metadata(ws: Worksheet, sheet: ExpenseSheet, owner: UserProfile) -> int:
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(SHEET_HEADERS))
    title = ws.cell(row=1, column=1, value=f"Expense Sheet - {month_name[sheet.month]} {sheet.year}")
    title.font = TITLE_FONT

    metadata = [
        ("Employee", f"{owner.display_name} ({owner.id})"),
        ("Role", f"{owner.role.value} / {owner.status.value}"),
        ("HQ", owner.hq_location or "-"),
        ("Status", sheet.status.value),
        ("Submitted", _format_ts(sheet.submitted_at)),
        ("Approved (ASM)", _format_ts(sheet.approved_by_asm_at)),
        ("Approved (Admin)", _format_ts(sheet.approved_by_admin_at)),
    ]
    if sheet.rejection_reason:
        metadata.append(("Rejection reason", sheet.rejection_reason))

    row_idx = 3
    for label, value in metadata:
        label_cell = ws.cell(row=row_idx, column=1, value=label)
        label_cell.font = BOLD_FONT
        label_cell.fill = META_LABEL_FILL
        label_cell.border = THIN_BORDER
        ws.cell(row=row_idx, column=2, value=value).border = THIN_BORDER
        row_idx += 1
    return row_idx + 1


def build_expense_sheet_xlsx_bytes(
    sheet: ExpenseSheet,
    owner: UserProfile,
    *,
    minimum_hq_days: int = 8,
) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = f"{sheet.year}-{sheet.month:02d}"

    header_row = _append_metadata(ws, sheet, owner)
    for col_idx, header in enumerate(SHEET_HEADERS, start=1):
        ws.cell(row=header_row, column=col_idx, value=header)
    _style_header(ws, header_row)

    row_idx = header_row + 1
    for entry in sheet.entries:
        values = [
            entry.entry_date.isoformat(),
            entry.entry_date.strftime("%a"),
            entry.towns or "-",
            CATEGORY_LABELS[entry.category],
            entry.km,
            entry.train_fare,
            entry.daily_allowance,
            entry.travel_amount,
            entry.misc_amount,
            entry.total_amount,
            entry.remarks or "",
        ]
        for col_idx, value in enumerate(values, start=1):
            cell = ws.cell(row=row_idx, column=col_idx, value=value)
            cell.border = THIN_BORDER
            if entry.category == ExpenseCategory.SUNDAY:
                cell.fill = SUNDAY_FILL
        row_idx += 1

    totals = sheet_totals(sheet.entries)
    total_values = [
        "Grand Totals",
        "",
        "",
        "",
        totals.km,
        "",
        totals.daily_allowance,
        totals.travel_amount,
        totals.misc_amount,
        totals.total_amount,
        "",
    ]
    for col_idx, value in enumerate(total_values, start=1):
        cell = ws.cell(row=row_idx, column=col_idx, value=value)
        cell.font = BOLD_FONT
        cell.fill = TOTAL_FILL
        cell.border = THIN_BORDER

    compliance = check_hq_compliance(sheet.entries, minimum_hq_days=minimum_hq_days)
    row_idx += 2
    compliance_cell = ws.cell(
        row=row_idx,
        column=1,
        value=compliance.warning or f"HQ days: {compliance.hq_days} (minimum {compliance.minimum_hq_days})",
    )
    if not compliance.compliant:
        compliance_cell.fill = WARNING_FILL
        compliance_cell.font = BOLD_FONT

    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)
    _auto_width(ws)

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
