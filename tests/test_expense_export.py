from __future__ import annotations

import unittest
from io import BytesIO

from openpyxl import load_workbook

from fieldforce.models import ExpenseCategory, ExpenseStatus, UserProfile, UserRole, UserStatus
from fieldforce.services.expense_sheets import materialize_sheet
from fieldforce.services.exports import SHEET_HEADERS, build_expense_sheet_xlsx_bytes
from fieldforce.services.rates import Rates

RATES = Rates(hq_allowance=291, ex_hq_allowance=600, outstation_allowance=1200, km_rate=3)


def _owner() -> UserProfile:
    return UserProfile(
        id="mr-1",
        email="mr-1@example.com",
        display_name="Ravi Kumar",
        role=UserRole.MR,
        status=UserStatus.TRAINEE,
        hq_location="Mumbai",
        is_active=True,
    )


def _find_row(ws, first_value):  # type: ignore[no-untyped-def]
    for row in ws.iter_rows(values_only=True):
        if row and row[0] == first_value:
            return row
    return None


class ExpenseExportTests(unittest.TestCase):
    def test_workbook_contains_every_day_and_totals(self) -> None:
        sheet = materialize_sheet("mr-1", 2024, 3, RATES)
        sheet.status = ExpenseStatus.REJECTED
        sheet.rejection_reason = "incomplete"

        payload = build_expense_sheet_xlsx_bytes(sheet, _owner())

        wb = load_workbook(BytesIO(payload))
        ws = wb["2024-03"]
        self.assertEqual(ws["A1"].value, "Expense Sheet - March 2024")
        self.assertEqual(_find_row(ws, "Employee")[1], "Ravi Kumar (mr-1)")
        self.assertEqual(_find_row(ws, "Rejection reason")[1], "incomplete")
        self.assertEqual(list(_find_row(ws, "Date")), SHEET_HEADERS)

        first_day = _find_row(ws, "2024-03-01")
        self.assertEqual(first_day[3], "HQ (Headquarter)")
        self.assertEqual(first_day[9], 291)
        self.assertEqual(_find_row(ws, "2024-03-03")[3], "Sunday")
        self.assertIsNotNone(_find_row(ws, "2024-03-31"))

        totals = _find_row(ws, "Grand Totals")
        self.assertEqual(totals[9], 26 * 291)
        self.assertEqual(_find_row(ws, "HQ days: 26 (minimum 8)")[0], "HQ days: 26 (minimum 8)")

    def test_compliance_warning_is_written(self) -> None:
        sheet = materialize_sheet("mr-1", 2024, 3, RATES)
        for entry in sheet.entries:
            if entry.category == ExpenseCategory.HQ:
                entry.category = ExpenseCategory.EX_HQ

        payload = build_expense_sheet_xlsx_bytes(sheet, _owner())

        ws = load_workbook(BytesIO(payload)).active
        self.assertIsNotNone(_find_row(ws, "Only 0 HQ days recorded. Minimum 8 required."))


if __name__ == "__main__":
    unittest.main()
