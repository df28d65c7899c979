from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fieldforce.models import (
    CustomerCategory,
    CustomerType,
    ExpenseCategory,
    ExpenseStatus,
    PunchType,
    UserRole,
    UserStatus,
)


class RateConfigPayload(BaseModel):
    hq_allowance: float = Field(ge=0)
    ex_hq_allowance: float = Field(ge=0)
    outstation_allowance: float = Field(ge=0)
    km_rate: float = Field(ge=0)


class RateTableRead(BaseModel):
    rates: dict[str, RateConfigPayload]


class RateTableUpdateRequest(BaseModel):
    rates: dict[str, RateConfigPayload] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_keys(self) -> "RateTableUpdateRequest":
        roles = {role.value for role in UserRole}
        statuses = {status.value for status in UserStatus}
        for key in self.rates:
            role, _, status = key.partition("_")
            if role not in roles or status not in statuses:
                raise ValueError(f"Rate key must look like ROLE_STATUS, got {key!r}")
        return self


class TerritoryRead(BaseModel):
    id: str
    name: str
    category: ExpenseCategory
    fixed_km: float
    geo_lat: float | None = None
    geo_lng: float | None = None
    geo_radius_m: float | None = None

    model_config = ConfigDict(from_attributes=True)


class TerritoryUpdateRequest(BaseModel):
    fixed_km: float | None = Field(default=None, ge=0)
    geo_lat: float | None = Field(default=None, ge=-90, le=90)
    geo_lng: float | None = Field(default=None, ge=-180, le=180)
    geo_radius_m: float | None = Field(default=None, gt=0)
    clear_geofence: bool = False

    @model_validator(mode="after")
    def validate_geofence(self) -> "TerritoryUpdateRequest":
        geo_values = (self.geo_lat, self.geo_lng, self.geo_radius_m)
        provided = [value is not None for value in geo_values]
        if any(provided) and not all(provided):
            raise ValueError("geo_lat, geo_lng and geo_radius_m must be provided together")
        if self.clear_geofence and any(provided):
            raise ValueError("clear_geofence cannot be combined with new geofence values")
        return self


class ExpenseEntryRead(BaseModel):
    id: str
    entry_date: date
    territory_id: str | None = None
    towns: str
    category: ExpenseCategory
    km: float
    train_fare: float
    misc_amount: float
    remarks: str
    daily_allowance: float
    travel_amount: float
    total_amount: float

    model_config = ConfigDict(from_attributes=True)


class SheetTotalsRead(BaseModel):
    km: float
    daily_allowance: float
    travel_amount: float
    misc_amount: float
    total_amount: float
    hq_days: int


class ComplianceRead(BaseModel):
    hq_days: int
    minimum_hq_days: int
    compliant: bool
    warning: str | None = None


class ExpenseSheetRead(BaseModel):
    id: str
    user_id: str
    year: int
    month: int
    status: ExpenseStatus
    submitted_at: datetime | None = None
    approved_by_asm_at: datetime | None = None
    approved_by_admin_at: datetime | None = None
    rejection_reason: str | None = None
    entries: list[ExpenseEntryRead] = Field(default_factory=list)
    totals: SheetTotalsRead
    compliance: ComplianceRead
    can_edit: bool
    can_submit: bool
    can_review: bool


class ExpenseSheetSummaryRead(BaseModel):
    id: str
    user_id: str
    year: int
    month: int
    status: ExpenseStatus
    submitted_at: datetime | None = None
    total_amount: float


class ExpenseEntryUpdateRequest(BaseModel):
    territory_id: str | None = None
    clear_territory: bool = False
    category: ExpenseCategory | None = None
    km: float | None = Field(default=None, ge=0)
    train_fare: float | None = Field(default=None, ge=0)
    misc_amount: float | None = Field(default=None, ge=0)
    remarks: str | None = Field(default=None, max_length=2000)
    towns: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def validate_territory(self) -> "ExpenseEntryUpdateRequest":
        if self.clear_territory and self.territory_id is not None:
            raise ValueError("territory_id and clear_territory are mutually exclusive")
        return self

    def field_changes(self) -> dict[str, Any]:
        # Category first so its side effects never wipe a value sent alongside it.
        ordered = ("category", "km", "train_fare", "misc_amount", "towns", "remarks")
        provided = self.model_dump(exclude_unset=True)
        return {field: provided[field] for field in ordered if field in provided and provided[field] is not None}


class ExpenseRejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)

    @model_validator(mode="after")
    def validate_reason(self) -> "ExpenseRejectRequest":
        self.reason = self.reason.strip()
        if not self.reason:
            raise ValueError("reason cannot be blank")
        return self


class PunchRequest(BaseModel):
    type: PunchType
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy_m: float = Field(ge=0)
    location_ts_utc: datetime | None = None
    notes: str | None = Field(default=None, max_length=500)


class PunchRecordRead(BaseModel):
    id: str
    type: PunchType
    ts_utc: datetime
    lat: float
    lng: float
    accuracy_m: float
    location_ts_utc: datetime | None = None
    verified_territory_id: str | None = None
    verified_territory_name: str | None = None
    flags: dict[str, Any] = Field(default_factory=dict)
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class DailyAttendanceRead(BaseModel):
    id: str
    user_id: str
    attendance_date: date
    punch_in: PunchRecordRead | None = None
    punch_outs: list[PunchRecordRead] = Field(default_factory=list)
    is_synced_to_sheets: bool

    model_config = ConfigDict(from_attributes=True)


class PunchResponse(BaseModel):
    ok: bool
    attendance: DailyAttendanceRead
    punch: PunchRecordRead
    message: str
    warning: bool
    nearest_distance_m: float | None = None


class CustomerRead(BaseModel):
    id: str
    name: str
    type: CustomerType
    category: CustomerCategory
    territory_id: str
    geo_lat: float | None = None
    geo_lng: float | None = None
    is_tagged: bool

    model_config = ConfigDict(from_attributes=True)


class RouteOptimizeRequest(BaseModel):
    start_lat: float = Field(ge=-90, le=90)
    start_lng: float = Field(ge=-180, le=180)
    customer_ids: list[str] | None = Field(default=None, max_length=500)
    territory_id: str | None = None

    @model_validator(mode="after")
    def validate_scope(self) -> "RouteOptimizeRequest":
        if self.customer_ids is None and self.territory_id is None:
            raise ValueError("customer_ids or territory_id is required")
        if self.customer_ids is not None and len(set(self.customer_ids)) != len(self.customer_ids):
            raise ValueError("customer_ids must not repeat a customer")
        return self


class RouteOptimizeResponse(BaseModel):
    customers: list[CustomerRead]
    unlocated_count: int


class NextCustomerResponse(BaseModel):
    customer: CustomerRead | None = None
