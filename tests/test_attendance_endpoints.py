from __future__ import annotations

import unittest
from datetime import date

from fastapi.testclient import TestClient

from fieldforce.db import get_db
from fieldforce.main import app
from fieldforce.models import (
    AuditLog,
    DailyAttendance,
    ExpenseCategory,
    PunchRecord,
    Territory,
    UserProfile,
    UserRole,
    UserStatus,
)

from fake_db import FakeDB, override_get_db

ANDHERI_LAT = 19.1197
ANDHERI_LNG = 72.8468


def _user(user_id: str = "mr-1", role: UserRole = UserRole.MR) -> UserProfile:
    return UserProfile(
        id=user_id,
        email=f"{user_id}@example.com",
        display_name=user_id.upper(),
        role=role,
        status=UserStatus.CONFIRMED,
        hq_location="Mumbai",
        is_active=True,
        territories=[
            Territory(
                id="t-andheri",
                user_id=user_id,
                position=0,
                name="Andheri",
                category=ExpenseCategory.HQ,
                fixed_km=0,
                geo_lat=ANDHERI_LAT,
                geo_lng=ANDHERI_LNG,
                geo_radius_m=2000,
            )
        ],
    )


class AttendanceEndpointTests(unittest.TestCase):
    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _client(self, fake_db: FakeDB) -> TestClient:
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        return TestClient(app)

    def test_punch_in_inside_territory(self) -> None:
        fake_db = FakeDB(users=[_user()])
        client = self._client(fake_db)

        response = client.post(
            "/api/attendance/punch",
            headers={"X-User-Id": "mr-1"},
            json={"type": "IN", "lat": ANDHERI_LAT + 0.0072, "lng": ANDHERI_LNG, "accuracy_m": 50},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["ok"])
        self.assertFalse(body["warning"])
        self.assertEqual(body["message"], "Verified: Inside Andheri")
        self.assertEqual(body["punch"]["verified_territory_id"], "t-andheri")
        self.assertEqual(body["attendance"]["punch_in"]["id"], body["punch"]["id"])
        self.assertFalse(body["attendance"]["is_synced_to_sheets"])
        self.assertEqual(len(fake_db.added_of(DailyAttendance)), 1)
        self.assertEqual(len(fake_db.added_of(AuditLog)), 1)
        self.assertIn("X-Request-Id", response.headers)

    def test_punch_in_outside_territory_is_recorded_with_warning(self) -> None:
        fake_db = FakeDB(users=[_user()])
        client = self._client(fake_db)

        response = client.post(
            "/api/attendance/punch",
            headers={"X-User-Id": "mr-1"},
            json={"type": "IN", "lat": ANDHERI_LAT + 0.045, "lng": ANDHERI_LNG, "accuracy_m": 30},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["warning"])
        self.assertTrue(body["message"].startswith("Warning: You are "))
        self.assertEqual(body["punch"]["flags"]["warning"], "TERRITORY_NOT_MATCHED")
        self.assertIsNone(body["punch"]["verified_territory_id"])

    def test_low_accuracy_punch_is_rejected_and_nothing_written(self) -> None:
        fake_db = FakeDB(users=[_user()])
        client = self._client(fake_db)

        response = client.post(
            "/api/attendance/punch",
            headers={"X-User-Id": "mr-1"},
            json={"type": "IN", "lat": ANDHERI_LAT, "lng": ANDHERI_LNG, "accuracy_m": 1200},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "GPS_ACCURACY_TOO_LOW")
        self.assertEqual(fake_db.added, [])
        self.assertEqual(fake_db.commits, 0)

    def test_punch_notes_saved_with_the_punch(self) -> None:
        fake_db = FakeDB(users=[_user()])
        client = self._client(fake_db)

        response = client.post(
            "/api/attendance/punch",
            headers={"X-User-Id": "mr-1"},
            json={"type": "IN", "lat": ANDHERI_LAT, "lng": ANDHERI_LNG, "accuracy_m": 20, "notes": "Clinic opens late"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["punch"]["notes"], "Clinic opens late")
        attendance = fake_db.added_of(DailyAttendance)[0]
        self.assertEqual(attendance.punch_in.notes, "Clinic opens late")
        # One commit for the punch, one for its audit row.
        self.assertEqual(fake_db.commits, 2)

    def test_punch_out_without_punch_in(self) -> None:
        fake_db = FakeDB(users=[_user()])
        client = self._client(fake_db)

        response = client.post(
            "/api/attendance/punch",
            headers={"X-User-Id": "mr-1"},
            json={"type": "OUT", "lat": ANDHERI_LAT, "lng": ANDHERI_LNG, "accuracy_m": 20},
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "PUNCH_IN_REQUIRED")
        self.assertEqual(fake_db.added_of(PunchRecord), [])

    def test_missing_user_header(self) -> None:
        client = self._client(FakeDB())

        response = client.get("/api/attendance/today")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "UNKNOWN_USER")

    def test_inactive_user_rejected(self) -> None:
        user = _user()
        user.is_active = False
        client = self._client(FakeDB(users=[user]))

        response = client.get("/api/attendance/today", headers={"X-User-Id": "mr-1"})

        self.assertEqual(response.status_code, 401)

    def test_today_without_punches(self) -> None:
        client = self._client(FakeDB(users=[_user()]))

        response = client.get("/api/attendance/today", headers={"X-User-Id": "mr-1"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertIsNone(body["punch_in"])
        self.assertEqual(body["punch_outs"], [])
        self.assertTrue(body["id"].startswith("mr-1_"))

    def test_other_users_day_requires_admin(self) -> None:
        client = self._client(FakeDB(users=[_user()]))

        response = client.get("/api/attendance/2024-03-04?user_id=mr-2", headers={"X-User-Id": "mr-1"})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")

    def test_invalid_punch_payload(self) -> None:
        client = self._client(FakeDB(users=[_user()]))

        response = client.post(
            "/api/attendance/punch",
            headers={"X-User-Id": "mr-1"},
            json={"type": "IN", "lat": 123.0, "lng": ANDHERI_LNG, "accuracy_m": 20},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_sync_endpoints_are_admin_only(self) -> None:
        client = self._client(FakeDB(users=[_user()]))

        response = client.get("/api/attendance/unsynced", headers={"X-User-Id": "mr-1"})

        self.assertEqual(response.status_code, 403)

    def test_admin_marks_attendance_synced(self) -> None:
        admin = _user("admin-1", UserRole.ADMIN)
        record = DailyAttendance(
            id="mr-1_2024-03-04",
            user_id="mr-1",
            attendance_date=date(2024, 3, 4),
            is_synced_to_sheets=False,
        )
        fake_db = FakeDB(users=[admin], attendance=[record])
        client = self._client(fake_db)

        listed = client.get("/api/attendance/unsynced", headers={"X-User-Id": "admin-1"})
        self.assertEqual([item["id"] for item in listed.json()], ["mr-1_2024-03-04"])

        response = client.post("/api/attendance/mr-1_2024-03-04/synced", headers={"X-User-Id": "admin-1"})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["is_synced_to_sheets"])
        self.assertTrue(record.is_synced_to_sheets)
        self.assertIsNotNone(record.synced_at)


if __name__ == "__main__":
    unittest.main()
