from __future__ import annotations

import unittest
from datetime import date, datetime, timezone

from fieldforce.errors import ApiError
from fieldforce.models import DailyAttendance, PunchType
from fieldforce.services.attendance import (
    LocationFix,
    apply_punch,
    attendance_id_for,
    list_unsynced_attendance,
    local_day_for,
    mark_synced,
    new_attendance,
)
from fieldforce.services.geo import GeoVerification

from fake_db import FakeDB

DAY = date(2024, 3, 4)
MATCHED = GeoVerification(
    accuracy_ok=True,
    matched_territory_id="t-andheri",
    matched_territory_name="Andheri",
    nearest_distance_m=120.0,
)
UNMATCHED = GeoVerification(accuracy_ok=True, nearest_distance_m=4200.0)
INACCURATE = GeoVerification(accuracy_ok=False)
FIX = LocationFix(lat=19.1197, lng=72.8468, accuracy_m=25)


def _punch(record, punch_type, verification=MATCHED, *, strict=False, hour=9):  # type: ignore[no-untyped-def]
    return apply_punch(
        record,
        user_id="mr-1",
        day=DAY,
        punch_type=punch_type,
        fix=FIX,
        verification=verification,
        strict=strict,
        now=datetime(2024, 3, 4, hour, 0, tzinfo=timezone.utc),
    )


class AttendanceIdTests(unittest.TestCase):
    def test_attendance_id(self) -> None:
        self.assertEqual(attendance_id_for("mr-1", DAY), "mr-1_2024-03-04")

    def test_local_day_uses_india_time(self) -> None:
        # 20:00 UTC is already the next day in Asia/Kolkata.
        self.assertEqual(local_day_for(datetime(2024, 3, 4, 20, 0, tzinfo=timezone.utc)), date(2024, 3, 5))
        self.assertEqual(local_day_for(datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc)), DAY)


class ApplyPunchTests(unittest.TestCase):
    def test_first_punch_in_creates_record(self) -> None:
        attendance, punch = _punch(None, PunchType.IN)

        self.assertEqual(attendance.id, "mr-1_2024-03-04")
        self.assertEqual(attendance.attendance_date, DAY)
        self.assertIs(attendance.punch_in, punch)
        self.assertEqual(punch.sequence, 1)
        self.assertEqual(punch.verified_territory_id, "t-andheri")
        self.assertEqual(punch.verified_territory_name, "Andheri")
        self.assertEqual(punch.flags["territory_matched"], True)
        self.assertNotIn("warning", punch.flags)

    def test_inaccurate_punch_in_is_rejected_without_record(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            _punch(None, PunchType.IN, INACCURATE)
        self.assertEqual(ctx.exception.code, "GPS_ACCURACY_TOO_LOW")
        self.assertEqual(ctx.exception.status_code, 422)

    def test_inaccurate_punch_out_is_rejected(self) -> None:
        attendance, _ = _punch(None, PunchType.IN)

        with self.assertRaises(ApiError) as ctx:
            _punch(attendance, PunchType.OUT, INACCURATE, hour=17)

        self.assertEqual(ctx.exception.code, "GPS_ACCURACY_TOO_LOW")
        self.assertEqual(attendance.punch_outs, [])

    def test_punch_out_requires_punch_in(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            _punch(None, PunchType.OUT)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, "PUNCH_IN_REQUIRED")

        empty = new_attendance("mr-1", DAY)
        with self.assertRaises(ApiError):
            _punch(empty, PunchType.OUT)
        self.assertEqual(empty.punches, [])

    def test_second_punch_in_replaces_first(self) -> None:
        attendance, first = _punch(None, PunchType.IN, UNMATCHED)
        attendance, second = _punch(attendance, PunchType.IN, MATCHED, hour=10)

        ins = [punch for punch in attendance.punches if punch.type == PunchType.IN]
        self.assertEqual(ins, [second])
        self.assertIsNot(attendance.punch_in, first)
        self.assertEqual(second.sequence, 2)

    def test_multiple_punch_outs_are_kept_in_order(self) -> None:
        attendance, _ = _punch(None, PunchType.IN)
        attendance, out_1 = _punch(attendance, PunchType.OUT, UNMATCHED, hour=13)
        attendance, out_2 = _punch(attendance, PunchType.OUT, UNMATCHED, hour=18)

        self.assertEqual(attendance.punch_outs, [out_1, out_2])
        self.assertEqual([out_1.sequence, out_2.sequence], [2, 3])
        self.assertNotIn("warning", out_1.flags)

    def test_unmatched_punch_in_kept_with_warning(self) -> None:
        attendance, punch = _punch(None, PunchType.IN, UNMATCHED)

        self.assertIs(attendance.punch_in, punch)
        self.assertIsNone(punch.verified_territory_id)
        self.assertEqual(punch.flags["warning"], "TERRITORY_NOT_MATCHED")
        self.assertEqual(punch.flags["nearest_distance_m"], 4200.0)

    def test_strict_mode_refuses_unmatched_punch_in(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            _punch(None, PunchType.IN, UNMATCHED, strict=True)
        self.assertEqual(ctx.exception.code, "GEOFENCE_NOT_MATCHED")

    def test_strict_mode_allows_unmatched_punch_out(self) -> None:
        attendance, _ = _punch(None, PunchType.IN, MATCHED, strict=True)
        attendance, out = _punch(attendance, PunchType.OUT, UNMATCHED, strict=True, hour=18)
        self.assertEqual(attendance.punch_outs, [out])

    def test_any_punch_resets_sync_flag(self) -> None:
        attendance, _ = _punch(None, PunchType.IN)
        attendance.is_synced_to_sheets = True
        attendance.synced_at = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)

        _punch(attendance, PunchType.OUT, hour=17)

        self.assertFalse(attendance.is_synced_to_sheets)
        self.assertIsNone(attendance.synced_at)

    def test_location_timestamp_is_normalized_to_utc(self) -> None:
        naive_fix = LocationFix(lat=19.1, lng=72.8, accuracy_m=10, ts_utc=datetime(2024, 3, 4, 8, 59))
        _, punch = apply_punch(
            None,
            user_id="mr-1",
            day=DAY,
            punch_type=PunchType.IN,
            fix=naive_fix,
            verification=MATCHED,
            now=datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc),
        )
        self.assertEqual(punch.location_ts_utc, datetime(2024, 3, 4, 8, 59, tzinfo=timezone.utc))


class SyncTests(unittest.TestCase):
    def test_mark_synced(self) -> None:
        attendance, _ = _punch(None, PunchType.IN)
        fake_db = FakeDB(attendance=[attendance])
        now = datetime(2024, 3, 4, 22, 0, tzinfo=timezone.utc)

        record = mark_synced(fake_db, attendance.id, now=now)

        self.assertTrue(record.is_synced_to_sheets)
        self.assertEqual(record.synced_at, now)
        self.assertEqual(fake_db.commits, 1)

    def test_mark_synced_unknown_record(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            mark_synced(FakeDB(), "mr-1_2024-03-04")
        self.assertEqual(ctx.exception.code, "ATTENDANCE_NOT_FOUND")

    def test_unsynced_list(self) -> None:
        pending, _ = _punch(None, PunchType.IN)
        synced = DailyAttendance(
            id="mr-2_2024-03-04",
            user_id="mr-2",
            attendance_date=DAY,
            is_synced_to_sheets=True,
        )
        fake_db = FakeDB(attendance=[pending, synced])

        self.assertEqual(list_unsynced_attendance(fake_db), [pending])


if __name__ == "__main__":
    unittest.main()
