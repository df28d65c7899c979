from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldforce.audit import audit_request
from fieldforce.db import get_db
from fieldforce.errors import ApiError
from fieldforce.models import Territory, UserProfile, UserRole
from fieldforce.schemas import (
    RateConfigPayload,
    RateTableRead,
    RateTableUpdateRequest,
    TerritoryRead,
    TerritoryUpdateRequest,
)
from fieldforce.security import require_role
from fieldforce.services.rates import Rates, load_rate_table, upsert_rate_table

router = APIRouter(tags=["admin"])
require_admin = require_role(UserRole.ADMIN)


def _rate_table_read(table: dict[str, Rates]) -> RateTableRead:
    return RateTableRead(
        rates={key: RateConfigPayload(**table[key].to_dict()) for key in sorted(table)},
    )


@router.get("/api/admin/rates", response_model=RateTableRead)
def get_rates(
    _admin: UserProfile = Depends(require_admin),
    db: Session = Depends(get_db),
) -> RateTableRead:
    return _rate_table_read(load_rate_table(db))


@router.put("/api/admin/rates", response_model=RateTableRead)
def put_rates(
    payload: RateTableUpdateRequest,
    request: Request,
    admin: UserProfile = Depends(require_admin),
    db: Session = Depends(get_db),
) -> RateTableRead:
    updates = {key: Rates(**item.model_dump()) for key, item in payload.rates.items()}
    table = upsert_rate_table(db, updates)
    audit_request(
        db,
        request,
        actor_id=admin.id,
        action="RATE_TABLE_UPDATED",
        entity_type="rate_config",
        entity_id=",".join(sorted(updates)),
        details={key: rates.to_dict() for key, rates in updates.items()},
    )
    return _rate_table_read(table)


@router.patch("/api/admin/territories/{territory_id}", response_model=TerritoryRead)
def update_territory(
    territory_id: str,
    payload: TerritoryUpdateRequest,
    request: Request,
    admin: UserProfile = Depends(require_admin),
    db: Session = Depends(get_db),
) -> TerritoryRead:
    territory = db.scalar(select(Territory).where(Territory.id == territory_id))
    if territory is None:
        raise ApiError(status_code=404, code="TERRITORY_NOT_FOUND", message="Territory not found.")

    if payload.fixed_km is not None:
        territory.fixed_km = payload.fixed_km
    if payload.clear_geofence:
        territory.geo_lat = None
        territory.geo_lng = None
        territory.geo_radius_m = None
    elif payload.geo_lat is not None:
        territory.geo_lat = payload.geo_lat
        territory.geo_lng = payload.geo_lng
        territory.geo_radius_m = payload.geo_radius_m
    db.commit()

    audit_request(
        db,
        request,
        actor_id=admin.id,
        action="TERRITORY_UPDATED",
        entity_type="territory",
        entity_id=territory.id,
        details=payload.model_dump(exclude_unset=True),
    )
    return TerritoryRead.model_validate(territory)
