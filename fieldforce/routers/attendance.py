from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from fieldforce.audit import audit_request
from fieldforce.db import get_db
from fieldforce.errors import ApiError
from fieldforce.models import UserProfile, UserRole
from fieldforce.schemas import DailyAttendanceRead, PunchRecordRead, PunchRequest, PunchResponse
from fieldforce.security import get_current_user, require_role
from fieldforce.services.attendance import (
    LocationFix,
    get_or_empty_attendance,
    list_unsynced_attendance,
    local_day_for,
    mark_synced,
    record_punch,
)
from fieldforce.settings import get_settings

router = APIRouter(tags=["attendance"])


@router.post("/api/attendance/punch", response_model=PunchResponse)
def punch(
    payload: PunchRequest,
    request: Request,
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PunchResponse:
    settings = get_settings()
    outcome = record_punch(
        db,
        user,
        punch_type=payload.type,
        fix=LocationFix(
            lat=payload.lat,
            lng=payload.lng,
            accuracy_m=payload.accuracy_m,
            ts_utc=payload.location_ts_utc,
        ),
        max_accuracy_m=settings.gps_max_accuracy_m,
        strict=settings.geofence_strict_mode,
        notes=payload.notes or None,
    )

    request.state.attendance_id = outcome.attendance.id
    request.state.flags = outcome.punch.flags or {}
    audit_request(
        db,
        request,
        actor_id=user.id,
        action="ATTENDANCE_PUNCH_RECORDED",
        entity_type="daily_attendance",
        entity_id=outcome.attendance.id,
        details={
            "punch_type": outcome.punch.type.value,
            "verified_territory_id": outcome.punch.verified_territory_id,
            "flags": outcome.punch.flags or {},
        },
    )
    return PunchResponse(
        ok=True,
        attendance=DailyAttendanceRead.model_validate(outcome.attendance),
        punch=PunchRecordRead.model_validate(outcome.punch),
        message=outcome.message,
        warning=outcome.warning,
        nearest_distance_m=outcome.verification.nearest_distance_m,
    )


@router.get("/api/attendance/today", response_model=DailyAttendanceRead)
def today_attendance(
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DailyAttendanceRead:
    day = local_day_for(datetime.now(timezone.utc))
    return DailyAttendanceRead.model_validate(get_or_empty_attendance(db, user.id, day))


@router.get(
    "/api/attendance/unsynced",
    response_model=list[DailyAttendanceRead],
)
def unsynced_attendance(
    limit: int = Query(default=200, ge=1, le=1000),
    _admin: UserProfile = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db),
) -> list[DailyAttendanceRead]:
    return [DailyAttendanceRead.model_validate(item) for item in list_unsynced_attendance(db, limit=limit)]


@router.post(
    "/api/attendance/{attendance_id}/synced",
    response_model=DailyAttendanceRead,
)
def attendance_synced(
    attendance_id: str,
    request: Request,
    admin: UserProfile = Depends(require_role(UserRole.ADMIN)),
    db: Session = Depends(get_db),
) -> DailyAttendanceRead:
    record = mark_synced(db, attendance_id)
    audit_request(
        db,
        request,
        actor_id=admin.id,
        action="ATTENDANCE_MARKED_SYNCED",
        entity_type="daily_attendance",
        entity_id=record.id,
    )
    return DailyAttendanceRead.model_validate(record)


@router.get("/api/attendance/{day}", response_model=DailyAttendanceRead)
def attendance_for_day(
    day: date,
    user_id: str | None = Query(default=None, min_length=1),
    user: UserProfile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DailyAttendanceRead:
    target_user_id = user_id or user.id
    if target_user_id != user.id and user.role != UserRole.ADMIN:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Only admins can read another user's attendance.")
    return DailyAttendanceRead.model_validate(get_or_empty_attendance(db, target_user_id, day))
