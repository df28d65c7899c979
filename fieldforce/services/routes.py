from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldforce.errors import ApiError
from fieldforce.models import Customer, CustomerCategory
from fieldforce.services.geo import GeoPoint, distance_km

PRIORITY_WEIGHTS: dict[CustomerCategory, int] = {
    CustomerCategory.A: 3,
    CustomerCategory.B: 2,
    CustomerCategory.C: 1,
}
PRIORITY_SCALE_KM = 10


class RoutableCustomer(Protocol):
    category: CustomerCategory
    geo_lat: float | None
    geo_lng: float | None


C = TypeVar("C", bound=RoutableCustomer)


def priority_weight(category: CustomerCategory | str) -> int:
    try:
        return PRIORITY_WEIGHTS[CustomerCategory(category)]
    except ValueError:
        return 1


def _has_location(customer: RoutableCustomer) -> bool:
    return customer.geo_lat is not None and customer.geo_lng is not None


def visit_score(customer: RoutableCustomer, current: GeoPoint) -> float:
    # A category step is worth about 10 km of detour.
    dist = distance_km(current.lat, current.lng, customer.geo_lat, customer.geo_lng)  # type: ignore[arg-type]
    return priority_weight(customer.category) * PRIORITY_SCALE_KM - dist


def optimize_route(customers: Sequence[C], start: GeoPoint) -> list[C]:
    """Order a day's call list greedily by priority-weighted proximity.

    Each step visits the remaining customer with the highest score
    (``weight * 10 - km from the current point``); ties keep input order.
    Customers without coordinates follow in their original order.
    """
    remaining = [customer for customer in customers if _has_location(customer)]
    unlocated = [customer for customer in customers if not _has_location(customer)]

    ordered: list[C] = []
    current = start
    while remaining:
        best_index = 0
        best_score = visit_score(remaining[0], current)
        for index in range(1, len(remaining)):
            score = visit_score(remaining[index], current)
            if score > best_score:
                best_score = score
                best_index = index

        chosen = remaining.pop(best_index)
        ordered.append(chosen)
        current = GeoPoint(lat=chosen.geo_lat, lng=chosen.geo_lng)  # type: ignore[arg-type]

    return ordered + unlocated


def suggest_next_customer(customers: Sequence[C], point: GeoPoint) -> C | None:
    nearest: C | None = None
    nearest_km: float | None = None
    for customer in customers:
        if not _has_location(customer):
            continue
        dist = distance_km(point.lat, point.lng, customer.geo_lat, customer.geo_lng)  # type: ignore[arg-type]
        if nearest_km is None or dist < nearest_km:
            nearest = customer
            nearest_km = dist
    return nearest


def load_customers(
    db: Session,
    *,
    customer_ids: Sequence[str] | None = None,
    territory_id: str | None = None,
) -> list[Customer]:
    stmt = select(Customer)
    if territory_id is not None:
        stmt = stmt.where(Customer.territory_id == territory_id)
    if customer_ids is not None:
        stmt = stmt.where(Customer.id.in_(list(customer_ids)))
    customers = list(db.scalars(stmt.order_by(Customer.id.asc())).all())

    if customer_ids is None:
        return customers
    found = {customer.id for customer in customers}
    missing = [customer_id for customer_id in dict.fromkeys(customer_ids) if customer_id not in found]
    if missing:
        raise ApiError(
            status_code=404,
            code="CUSTOMER_NOT_FOUND",
            message="Some customers do not exist or are outside the requested territory.",
            details={"missing_ids": missing},
        )
    # Keep the caller's call-list order; it decides ties and the unlocated tail.
    position = {customer_id: index for index, customer_id in enumerate(customer_ids)}
    return sorted(customers, key=lambda customer: position.get(customer.id, len(position)))
