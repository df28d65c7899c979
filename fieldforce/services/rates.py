from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from math import floor

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldforce.models import RateConfig, UserRole, UserStatus

DEFAULT_FALLBACK_KEY = "MR_CONFIRMED"

_BASE_HQ_ALLOWANCE = 291
_BASE_EX_HQ_ALLOWANCE = 600
_BASE_OUTSTATION_ALLOWANCE = 1200
_BASE_KM_RATE = 3.0

_ROLE_MULTIPLIERS: dict[UserRole, float] = {
    UserRole.ASM: 1.5,
    UserRole.RM: 2.0,
    UserRole.ZM: 2.5,
}
_CONFIRMED_MULTIPLIER = 1.2


@dataclass(frozen=True, slots=True)
class Rates:
    hq_allowance: float = 0.0
    ex_hq_allowance: float = 0.0
    outstation_allowance: float = 0.0
    km_rate: float = 0.0

    @classmethod
    def from_config(cls, config: RateConfig) -> Rates:
        return cls(
            hq_allowance=config.hq_allowance,
            ex_hq_allowance=config.ex_hq_allowance,
            outstation_allowance=config.outstation_allowance,
            km_rate=config.km_rate,
        )

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


ZERO_RATES = Rates()
RateTable = Mapping[str, Rates]


def _enum_value(value: object) -> str:
    return str(getattr(value, "value", value))


def rate_key(role: UserRole | str, status: UserStatus | str) -> str:
    return f"{_enum_value(role)}_{_enum_value(status)}"


def resolve_rates(
    table: RateTable,
    role: UserRole | str,
    status: UserStatus | str,
    *,
    fallback_key: str = DEFAULT_FALLBACK_KEY,
) -> Rates:
    # Missing combinations fall back rather than fail so a sheet always computes.
    rates = table.get(rate_key(role, status))
    if rates is not None:
        return rates
    rates = table.get(fallback_key)
    if rates is not None:
        return rates
    return ZERO_RATES


def _round_half_up(value: float) -> int:
    return int(floor(value + 0.5))


def build_default_rate_table() -> dict[str, Rates]:
    table: dict[str, Rates] = {}
    for role in UserRole:
        role_multiplier = _ROLE_MULTIPLIERS.get(role, 1.0)
        for status in UserStatus:
            status_multiplier = _CONFIRMED_MULTIPLIER if status == UserStatus.CONFIRMED else 1.0
            factor = status_multiplier * role_multiplier
            table[rate_key(role, status)] = Rates(
                hq_allowance=_round_half_up(_BASE_HQ_ALLOWANCE * factor),
                ex_hq_allowance=_round_half_up(_BASE_EX_HQ_ALLOWANCE * factor),
                outstation_allowance=_round_half_up(_BASE_OUTSTATION_ALLOWANCE * factor),
                km_rate=_BASE_KM_RATE + (0 if role == UserRole.MR else 1),
            )
    return table


def rate_table_from_configs(configs: Iterable[RateConfig]) -> dict[str, Rates]:
    return {config.key: Rates.from_config(config) for config in configs}


def load_rate_table(db: Session) -> dict[str, Rates]:
    configs = list(db.scalars(select(RateConfig).order_by(RateConfig.key.asc())).all())
    if not configs:
        return build_default_rate_table()
    return rate_table_from_configs(configs)


def upsert_rate_table(db: Session, updates: Mapping[str, Rates]) -> dict[str, Rates]:
    existing = {config.key: config for config in db.scalars(select(RateConfig)).all()}
    if not existing:
        # First write materializes the defaults so untouched keys keep resolving.
        for key, rates in build_default_rate_table().items():
            if key in updates:
                continue
            config = RateConfig(key=key, **rates.to_dict())
            db.add(config)
            existing[key] = config

    for key, rates in updates.items():
        config = existing.get(key)
        if config is None:
            config = RateConfig(key=key)
            db.add(config)
            existing[key] = config
        config.hq_allowance = rates.hq_allowance
        config.ex_hq_allowance = rates.ex_hq_allowance
        config.outstation_allowance = rates.outstation_allowance
        config.km_rate = rates.km_rate

    db.commit()
    return rate_table_from_configs(existing.values())
