from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from fieldforce.db import get_db
from fieldforce.main import app
from fieldforce.models import (
    Customer,
    CustomerCategory,
    CustomerType,
    ExpenseCategory,
    Territory,
    UserProfile,
    UserRole,
    UserStatus,
)

from fake_db import FakeDB, override_get_db

START_LAT = 19.0
START_LNG = 72.8


def _customer(
    customer_id: str,
    category: CustomerCategory,
    lat: float | None,
    lng: float | None,
    territory_id: str = "t-south",
) -> Customer:
    return Customer(
        id=customer_id,
        name=customer_id.title(),
        type=CustomerType.DOCTOR,
        category=category,
        territory_id=territory_id,
        geo_lat=lat,
        geo_lng=lng,
        is_tagged=lat is not None,
    )


class RouteEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        user = UserProfile(
            id="mr-1",
            email="mr-1@example.com",
            display_name="MR-1",
            role=UserRole.MR,
            status=UserStatus.CONFIRMED,
            is_active=True,
            territories=[
                Territory(id="t-south", user_id="mr-1", position=0, name="South", category=ExpenseCategory.HQ, fixed_km=0),
            ],
        )
        self.customers = [
            _customer("near-c", CustomerCategory.C, 19.0, 72.81),
            _customer("far-a", CustomerCategory.A, 19.1, 72.8),
            _customer("untagged", CustomerCategory.A, None, None),
            _customer("elsewhere", CustomerCategory.A, 19.0, 72.8001, territory_id="t-north"),
        ]
        app.dependency_overrides[get_db] = override_get_db(FakeDB(users=[user], customers=self.customers))
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_optimize_by_territory(self) -> None:
        response = self.client.post(
            "/api/routes/optimize",
            headers={"X-User-Id": "mr-1"},
            json={"start_lat": START_LAT, "start_lng": START_LNG, "territory_id": "t-south"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([item["id"] for item in body["customers"]], ["far-a", "near-c", "untagged"])
        self.assertEqual(body["unlocated_count"], 1)

    def test_optimize_by_ids_keeps_unlocated_last(self) -> None:
        response = self.client.post(
            "/api/routes/optimize",
            headers={"X-User-Id": "mr-1"},
            json={"start_lat": START_LAT, "start_lng": START_LNG, "customer_ids": ["untagged", "near-c"]},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["id"] for item in response.json()["customers"]], ["near-c", "untagged"])

    def test_optimize_reports_unknown_customers(self) -> None:
        response = self.client.post(
            "/api/routes/optimize",
            headers={"X-User-Id": "mr-1"},
            json={"start_lat": START_LAT, "start_lng": START_LNG, "customer_ids": ["near-c", "closed-clinic"]},
        )

        self.assertEqual(response.status_code, 404)
        error = response.json()["error"]
        self.assertEqual(error["code"], "CUSTOMER_NOT_FOUND")
        self.assertEqual(error["details"], {"missing_ids": ["closed-clinic"]})

    def test_optimize_rejects_repeated_customers(self) -> None:
        response = self.client.post(
            "/api/routes/optimize",
            headers={"X-User-Id": "mr-1"},
            json={"start_lat": START_LAT, "start_lng": START_LNG, "customer_ids": ["near-c", "near-c"]},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_optimize_requires_scope(self) -> None:
        response = self.client.post(
            "/api/routes/optimize",
            headers={"X-User-Id": "mr-1"},
            json={"start_lat": START_LAT, "start_lng": START_LNG},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_next_customer_uses_own_territories(self) -> None:
        response = self.client.get(
            "/api/routes/next-customer",
            headers={"X-User-Id": "mr-1"},
            params={"lat": START_LAT, "lng": START_LNG},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["customer"]["id"], "near-c")

    def test_next_customer_none_when_nothing_located(self) -> None:
        response = self.client.get(
            "/api/routes/next-customer",
            headers={"X-User-Id": "mr-1"},
            params={"lat": START_LAT, "lng": START_LNG, "territory_id": "t-empty"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()["customer"])


if __name__ == "__main__":
    unittest.main()
