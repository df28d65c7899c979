from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from functools import lru_cache
from uuid import uuid4
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from fieldforce.errors import ApiError
from fieldforce.models import DailyAttendance, PunchRecord, PunchType, UserProfile
from fieldforce.services.geo import GeoPoint, GeoVerification, describe_verification, verify_location
from fieldforce.settings import get_settings

logger = logging.getLogger("fieldforce.attendance")

FALLBACK_TIMEZONE = "Asia/Kolkata"


@dataclass(frozen=True, slots=True)
class LocationFix:
    lat: float
    lng: float
    accuracy_m: float
    ts_utc: datetime | None = None


@dataclass(frozen=True, slots=True)
class PunchOutcome:
    attendance: DailyAttendance
    punch: PunchRecord
    verification: GeoVerification
    message: str

    @property
    def warning(self) -> bool:
        return self.punch.type == PunchType.IN and not self.verification.matched


def _normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


@lru_cache
def _attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or FALLBACK_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except Exception:
        return ZoneInfo(FALLBACK_TIMEZONE)


def local_day_for(ts_utc: datetime) -> date:
    return _normalize_ts(ts_utc).astimezone(_attendance_timezone()).date()


def attendance_id_for(user_id: str, day: date) -> str:
    return f"{user_id}_{day.isoformat()}"


def new_attendance(user_id: str, day: date) -> DailyAttendance:
    return DailyAttendance(
        id=attendance_id_for(user_id, day),
        user_id=user_id,
        attendance_date=day,
        is_synced_to_sheets=False,
    )


def apply_punch(
    record: DailyAttendance | None,
    *,
    user_id: str,
    day: date,
    punch_type: PunchType,
    fix: LocationFix,
    verification: GeoVerification,
    strict: bool = False,
    now: datetime | None = None,
    notes: str | None = None,
) -> tuple[DailyAttendance, PunchRecord]:
    """Record one punch on the day's attendance and return the updated record.

    A refused punch raises before the record is touched, so nothing is
    created or changed. An unmatched punch-in is kept with a warning flag
    unless ``strict`` is set.
    """
    if not verification.accuracy_ok:
        raise ApiError(
            status_code=422,
            code="GPS_ACCURACY_TOO_LOW",
            message=describe_verification(verification, fix.accuracy_m),
            details={"accuracy_m": fix.accuracy_m},
        )

    if punch_type == PunchType.IN:
        if strict and not verification.matched:
            raise ApiError(
                status_code=422,
                code="GEOFENCE_NOT_MATCHED",
                message=describe_verification(verification, fix.accuracy_m),
                details=verification.to_flags(),
            )
    elif record is None or record.punch_in is None:
        raise ApiError(
            status_code=409,
            code="PUNCH_IN_REQUIRED",
            message="You must punch in before punching out.",
        )

    attendance = record if record is not None else new_attendance(user_id, day)
    flags = verification.to_flags()
    if punch_type == PunchType.IN and not verification.matched:
        flags["warning"] = "TERRITORY_NOT_MATCHED"

    next_sequence = max((punch.sequence for punch in attendance.punches), default=0) + 1
    punch = PunchRecord(
        id=str(uuid4()),
        sequence=next_sequence,
        type=punch_type,
        ts_utc=_normalize_ts(now),
        lat=fix.lat,
        lng=fix.lng,
        accuracy_m=fix.accuracy_m,
        location_ts_utc=_normalize_ts(fix.ts_utc) if fix.ts_utc is not None else None,
        verified_territory_id=verification.matched_territory_id,
        verified_territory_name=verification.matched_territory_name,
        flags=flags,
        notes=notes,
    )

    if punch_type == PunchType.IN:
        # One punch-in per day: a repeat replaces the earlier one.
        attendance.punches = [existing for existing in attendance.punches if existing.type != PunchType.IN]
    attendance.punches.append(punch)
    attendance.is_synced_to_sheets = False
    attendance.synced_at = None
    return attendance, punch


def _attendance_query():  # type: ignore[no-untyped-def]
    return select(DailyAttendance).options(selectinload(DailyAttendance.punches))


def get_attendance(db: Session, user_id: str, day: date) -> DailyAttendance | None:
    return db.scalar(_attendance_query().where(DailyAttendance.id == attendance_id_for(user_id, day)))


def get_or_empty_attendance(db: Session, user_id: str, day: date) -> DailyAttendance:
    record = get_attendance(db, user_id, day)
    if record is not None:
        return record
    return new_attendance(user_id, day)


def record_punch(
    db: Session,
    user: UserProfile,
    *,
    punch_type: PunchType,
    fix: LocationFix,
    max_accuracy_m: float,
    strict: bool = False,
    now: datetime | None = None,
    notes: str | None = None,
) -> PunchOutcome:
    punch_ts = _normalize_ts(now)
    day = local_day_for(punch_ts)
    verification = verify_location(
        GeoPoint(lat=fix.lat, lng=fix.lng),
        fix.accuracy_m,
        user.territories,
        max_accuracy_m=max_accuracy_m,
    )
    record = get_attendance(db, user.id, day)

    try:
        attendance, punch = apply_punch(
            record,
            user_id=user.id,
            day=day,
            punch_type=punch_type,
            fix=fix,
            verification=verification,
            strict=strict,
            now=punch_ts,
            notes=notes,
        )
    except ApiError as exc:
        logger.warning(
            "punch_rejected",
            extra={
                "user_id": user.id,
                "punch_type": punch_type.value,
                "code": exc.code,
                "accuracy_m": fix.accuracy_m,
            },
        )
        raise

    db.add(attendance)
    db.commit()

    message = describe_verification(verification, fix.accuracy_m)
    if punch_type == PunchType.OUT:
        message = f"Punched OUT at {punch.ts_utc.astimezone(_attendance_timezone()).strftime('%H:%M')}"
    logger.info(
        "punch_recorded",
        extra={
            "user_id": user.id,
            "attendance_id": attendance.id,
            "punch_type": punch_type.value,
            "verified_territory_id": punch.verified_territory_id,
            "flags": punch.flags,
        },
    )
    return PunchOutcome(attendance=attendance, punch=punch, verification=verification, message=message)


def mark_synced(db: Session, attendance_id: str, *, now: datetime | None = None) -> DailyAttendance:
    record = db.scalar(_attendance_query().where(DailyAttendance.id == attendance_id))
    if record is None:
        raise ApiError(status_code=404, code="ATTENDANCE_NOT_FOUND", message="Attendance record not found.")

    record.is_synced_to_sheets = True
    record.synced_at = _normalize_ts(now)
    db.commit()
    logger.info("attendance_synced", extra={"attendance_id": record.id, "user_id": record.user_id})
    return record


def list_unsynced_attendance(db: Session, *, limit: int = 200) -> list[DailyAttendance]:
    stmt = (
        _attendance_query()
        .where(DailyAttendance.is_synced_to_sheets.is_(False))
        .order_by(DailyAttendance.attendance_date.asc(), DailyAttendance.user_id.asc())
        .limit(limit)
    )
    return list(db.scalars(stmt).all())
