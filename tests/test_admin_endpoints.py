from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from fieldforce.db import get_db
from fieldforce.main import app
from fieldforce.models import AuditLog, ExpenseCategory, RateConfig, Territory, UserProfile, UserRole, UserStatus

from fake_db import FakeDB, override_get_db


def _user(user_id: str, role: UserRole) -> UserProfile:
    return UserProfile(
        id=user_id,
        email=f"{user_id}@example.com",
        display_name=user_id.upper(),
        role=role,
        status=UserStatus.CONFIRMED,
        hq_location="Pune",
        is_active=True,
    )


class AdminEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.admin = _user("admin-1", UserRole.ADMIN)
        self.mr = _user("mr-1", UserRole.MR)
        self.territory = Territory(
            id="t-kothrud",
            user_id="mr-1",
            position=0,
            name="Kothrud",
            category=ExpenseCategory.EX_HQ,
            fixed_km=30,
        )
        self.fake_db = FakeDB(users=[self.admin, self.mr], territories=[self.territory])
        app.dependency_overrides[get_db] = override_get_db(self.fake_db)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_rates_default_table(self) -> None:
        response = self.client.get("/api/admin/rates", headers={"X-User-Id": "admin-1"})

        self.assertEqual(response.status_code, 200)
        rates = response.json()["rates"]
        self.assertEqual(len(rates), 10)
        self.assertEqual(
            rates["MR_CONFIRMED"],
            {"hq_allowance": 349, "ex_hq_allowance": 720, "outstation_allowance": 1440, "km_rate": 3.0},
        )

    def test_rates_require_admin(self) -> None:
        response = self.client.get("/api/admin/rates", headers={"X-User-Id": "mr-1"})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")

    def test_put_rates_updates_one_key(self) -> None:
        response = self.client.put(
            "/api/admin/rates",
            headers={"X-User-Id": "admin-1"},
            json={
                "rates": {
                    "MR_TRAINEE": {
                        "hq_allowance": 300,
                        "ex_hq_allowance": 610,
                        "outstation_allowance": 1200,
                        "km_rate": 3.5,
                    }
                }
            },
        )

        self.assertEqual(response.status_code, 200)
        rates = response.json()["rates"]
        self.assertEqual(len(rates), 10)
        self.assertEqual(rates["MR_TRAINEE"]["hq_allowance"], 300)
        self.assertEqual(rates["MR_TRAINEE"]["km_rate"], 3.5)
        self.assertEqual(rates["MR_CONFIRMED"]["hq_allowance"], 349)
        self.assertEqual(len(self.fake_db.added_of(RateConfig)), 10)
        self.assertEqual(self.fake_db.added_of(AuditLog)[0].action, "RATE_TABLE_UPDATED")

    def test_put_rates_rejects_unknown_key_and_negative_values(self) -> None:
        unknown = self.client.put(
            "/api/admin/rates",
            headers={"X-User-Id": "admin-1"},
            json={"rates": {"VP_CONFIRMED": {"hq_allowance": 1, "ex_hq_allowance": 1, "outstation_allowance": 1, "km_rate": 1}}},
        )
        negative = self.client.put(
            "/api/admin/rates",
            headers={"X-User-Id": "admin-1"},
            json={"rates": {"MR_TRAINEE": {"hq_allowance": -1, "ex_hq_allowance": 1, "outstation_allowance": 1, "km_rate": 1}}},
        )

        self.assertEqual(unknown.status_code, 422)
        self.assertEqual(negative.status_code, 422)
        self.assertEqual(self.fake_db.added_of(RateConfig), [])

    def test_set_then_clear_geofence(self) -> None:
        set_response = self.client.patch(
            "/api/admin/territories/t-kothrud",
            headers={"X-User-Id": "admin-1"},
            json={"geo_lat": 18.5074, "geo_lng": 73.8077, "geo_radius_m": 1500, "fixed_km": 32},
        )

        self.assertEqual(set_response.status_code, 200)
        self.assertEqual(set_response.json()["geo_radius_m"], 1500)
        self.assertEqual(self.territory.fixed_km, 32)
        self.assertEqual(self.territory.geo_lat, 18.5074)

        clear_response = self.client.patch(
            "/api/admin/territories/t-kothrud",
            headers={"X-User-Id": "admin-1"},
            json={"clear_geofence": True},
        )

        self.assertEqual(clear_response.status_code, 200)
        self.assertIsNone(self.territory.geo_lat)
        self.assertIsNone(self.territory.geo_lng)
        self.assertIsNone(self.territory.geo_radius_m)
        self.assertEqual(self.territory.fixed_km, 32)

    def test_partial_geofence_rejected(self) -> None:
        response = self.client.patch(
            "/api/admin/territories/t-kothrud",
            headers={"X-User-Id": "admin-1"},
            json={"geo_lat": 18.5},
        )

        self.assertEqual(response.status_code, 422)
        self.assertIsNone(self.territory.geo_lat)

    def test_unknown_territory(self) -> None:
        response = self.client.patch(
            "/api/admin/territories/t-missing",
            headers={"X-User-Id": "admin-1"},
            json={"fixed_km": 10},
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "TERRITORY_NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
