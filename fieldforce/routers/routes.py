from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from fieldforce.db import get_db
from fieldforce.models import Customer, UserProfile
from fieldforce.schemas import CustomerRead, NextCustomerResponse, RouteOptimizeRequest, RouteOptimizeResponse
from fieldforce.security import get_current_user
from fieldforce.services.geo import GeoPoint
from fieldforce.services.routes import load_customers, optimize_route, suggest_next_customer

router = APIRouter(tags=["routes"])


def _customers_for_user(db: Session, user: UserProfile, territory_id: str | None) -> list[Customer]:
    if territory_id is not None:
        return load_customers(db, territory_id=territory_id)
    customers: list[Customer] = []
    for territory in user.territories:
        customers.extend(load_customers(db, territory_id=territory.id))
    return customers


@router.post("/api/routes/optimize", response_model=RouteOptimizeResponse)
def optimize(
    payload: RouteOptimizeRequest,
    _user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RouteOptimizeResponse:
    customers = load_customers(db, customer_ids=payload.customer_ids, territory_id=payload.territory_id)
    ordered = optimize_route(customers, GeoPoint(lat=payload.start_lat, lng=payload.start_lng))
    return RouteOptimizeResponse(
        customers=[CustomerRead.model_validate(customer) for customer in ordered],
        unlocated_count=sum(1 for customer in ordered if customer.geo_lat is None or customer.geo_lng is None),
    )


@router.get("/api/routes/next-customer", response_model=NextCustomerResponse)
def next_customer(
    lat: float = Query(ge=-90, le=90),
    lng: float = Query(ge=-180, le=180),
    territory_id: str | None = Query(default=None, min_length=1),
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> NextCustomerResponse:
    customers = _customers_for_user(db, user, territory_id)
    nearest = suggest_next_customer(customers, GeoPoint(lat=lat, lng=lng))
    return NextCustomerResponse(customer=CustomerRead.model_validate(nearest) if nearest is not None else None)
