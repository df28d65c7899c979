from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from math import isfinite
from typing import Any, Literal, Protocol, assert_never, get_args

from fieldforce.models import ExpenseCategory, ExpenseEntry
from fieldforce.services.rates import Rates

EditableField = Literal["category", "km", "train_fare", "misc_amount", "remarks", "towns"]
EDITABLE_FIELDS: tuple[str, ...] = get_args(EditableField)

NON_TRAVEL_CATEGORIES = frozenset({ExpenseCategory.HQ, ExpenseCategory.HOLIDAY, ExpenseCategory.SUNDAY})


class TerritoryChoice(Protocol):
    id: str
    name: str
    category: ExpenseCategory
    fixed_km: float


@dataclass(frozen=True, slots=True)
class ExpenseRow:
    id: str
    date: date
    category: ExpenseCategory
    territory_id: str | None = None
    towns: str = ""
    km: float = 0.0
    train_fare: float = 0.0
    misc_amount: float = 0.0
    remarks: str = ""
    daily_allowance: float = 0.0
    travel_amount: float = 0.0
    total_amount: float = 0.0

    @classmethod
    def from_entry(cls, entry: ExpenseEntry) -> ExpenseRow:
        return cls(
            id=entry.id,
            date=entry.entry_date,
            category=ExpenseCategory(entry.category),
            territory_id=entry.territory_id,
            towns=entry.towns or "",
            km=coerce_amount(entry.km),
            train_fare=coerce_amount(entry.train_fare),
            misc_amount=coerce_amount(entry.misc_amount),
            remarks=entry.remarks or "",
            daily_allowance=coerce_amount(entry.daily_allowance),
            travel_amount=coerce_amount(entry.travel_amount),
            total_amount=coerce_amount(entry.total_amount),
        )

    def copy_to(self, entry: ExpenseEntry) -> ExpenseEntry:
        entry.entry_date = self.date
        entry.category = self.category
        entry.territory_id = self.territory_id
        entry.towns = self.towns
        entry.km = self.km
        entry.train_fare = self.train_fare
        entry.misc_amount = self.misc_amount
        entry.remarks = self.remarks
        entry.daily_allowance = self.daily_allowance
        entry.travel_amount = self.travel_amount
        entry.total_amount = self.total_amount
        return entry


def coerce_amount(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not isfinite(number):
        return 0.0
    return number


def daily_allowance_for(category: ExpenseCategory, rates: Rates) -> float:
    match category:
        case ExpenseCategory.HQ:
            return coerce_amount(rates.hq_allowance)
        case ExpenseCategory.EX_HQ:
            return coerce_amount(rates.ex_hq_allowance)
        case ExpenseCategory.OUTSTATION:
            return coerce_amount(rates.outstation_allowance)
        case ExpenseCategory.HOLIDAY | ExpenseCategory.SUNDAY:
            return 0.0
        case _:
            assert_never(category)


def travel_amount_for(category: ExpenseCategory, km: float, train_fare: float, rates: Rates) -> float:
    # Outstation travel is the fare actually paid; km is ignored.
    if category == ExpenseCategory.OUTSTATION:
        return train_fare
    return km * coerce_amount(rates.km_rate)


def recompute(row: ExpenseRow, rates: Rates) -> ExpenseRow:
    km = coerce_amount(row.km)
    train_fare = coerce_amount(row.train_fare)
    misc_amount = coerce_amount(row.misc_amount)

    allowance = daily_allowance_for(row.category, rates)
    travel = travel_amount_for(row.category, km, train_fare, rates)
    return replace(
        row,
        km=km,
        train_fare=train_fare,
        misc_amount=misc_amount,
        daily_allowance=allowance,
        travel_amount=travel,
        total_amount=allowance + travel + misc_amount,
    )


def _with_category(row: ExpenseRow, category: ExpenseCategory) -> ExpenseRow:
    if category == ExpenseCategory.OUTSTATION:
        return replace(row, category=category, km=0.0)
    updated = replace(row, category=category, train_fare=0.0)
    if category in NON_TRAVEL_CATEGORIES:
        updated = replace(updated, km=0.0)
    return updated


def km_is_editable(category: ExpenseCategory) -> bool:
    return category not in NON_TRAVEL_CATEGORIES and category != ExpenseCategory.OUTSTATION


def fare_is_editable(category: ExpenseCategory) -> bool:
    return category == ExpenseCategory.OUTSTATION


def _edited_km(row: ExpenseRow, value: Any, fixed_km: float | None) -> float:
    if not km_is_editable(row.category):
        return row.km
    if fixed_km is not None and fixed_km > 0:
        return coerce_amount(fixed_km)
    return coerce_amount(value)


def apply_field_change(
    row: ExpenseRow,
    field: EditableField,
    value: Any,
    rates: Rates,
    *,
    fixed_km: float | None = None,
) -> ExpenseRow:
    """Set one user-editable field and return the recomputed row.

    Category changes carry their side effects: OUTSTATION clears km, leaving
    OUTSTATION clears the fare, and HQ/HOLIDAY/SUNDAY also clear km.
    Numeric fields are coerced, so junk input becomes 0 instead of an error.

    km is only taken on EX_HQ rows, and ``fixed_km`` (the admin distance of
    the territory on the row) overrides whatever was typed. The fare is only
    taken on OUTSTATION rows. A locked field keeps its current value.
    """
    if field == "category":
        updated = _with_category(row, ExpenseCategory(value))
    elif field == "km":
        updated = replace(row, km=_edited_km(row, value, fixed_km))
    elif field == "train_fare":
        fare = coerce_amount(value) if fare_is_editable(row.category) else row.train_fare
        updated = replace(row, train_fare=fare)
    elif field == "misc_amount":
        updated = replace(row, misc_amount=coerce_amount(value))
    elif field in ("remarks", "towns"):
        updated = replace(row, **{field: "" if value is None else str(value)})
    else:
        raise ValueError(f"Field is not editable: {field}")
    return recompute(updated, rates)


def apply_territory_change(row: ExpenseRow, territory: TerritoryChoice | None, rates: Rates) -> ExpenseRow:
    if territory is None:
        # Clearing keeps the last category and km.
        return recompute(replace(row, territory_id=None, towns=""), rates)

    category = ExpenseCategory(territory.category)
    updated = replace(row, territory_id=territory.id, towns=territory.name, category=category)
    if category == ExpenseCategory.OUTSTATION:
        updated = replace(updated, km=0.0)
    else:
        updated = replace(updated, km=coerce_amount(territory.fixed_km), train_fare=0.0)
    return recompute(updated, rates)
