"""Persistence for the active pricing configuration and its change history.

Writes are serialized with a compare-and-swap on ``version`` and the
single-active-row invariant is backed by a partial unique index, so several
service instances can share one database without extra locking.
"""
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.config import settings
from app.core.enums import ConfigAction, DeliveryType
from app.core.exceptions import (
    ActiveConfigMissingError,
    ConcurrentUpdateError,
    NotFoundError,
    ValidationError,
)
from app.core.metrics import pricing_config_writes, track_db_operation
from app.models.base import utcnow
from app.models.pricing_config import PricingConfig
from app.models.pricing_config_history import PricingConfigHistory
from app.schemas.pricing_config import DEFAULT_PRICING_VALUES

logger = logging.getLogger(__name__)

DECIMAL_FIELDS = {
    "current_fuel_price",
    "base_fuel_price",
    "fuel_adjustment_per_dollar",
    "min_quote",
    "surge_multiplier",
    "base_rate_per_mile",
    "accident_recovery_surcharge",
}
MULTIPLIER_MAP_FIELDS = {"vehicle_type_multipliers", "delivery_type_multipliers"}
BOOL_FIELDS = {
    "surge_enabled",
    "expedited_service_enabled",
    "bulk_discount_enabled",
}
TEXT_FIELDS = {"surge_reason", "notes"}
INT_FIELDS = {"expedited_threshold_days"}
EDITABLE_FIELDS = DECIMAL_FIELDS | MULTIPLIER_MAP_FIELDS | BOOL_FIELDS | TEXT_FIELDS | INT_FIELDS

SURGE_MULTIPLIER_MAX = Decimal("10")
VEHICLE_MULTIPLIER_MAX = Decimal("10")
DELIVERY_MULTIPLIER_MAX = Decimal("5")
FUEL_ADJUSTMENT_MAX = Decimal("25")
FUEL_FIELDS = ("current_fuel_price", "base_fuel_price", "fuel_adjustment_per_dollar")


def _as_decimal(field: str, value: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def _fit_column(field: str, value: Decimal) -> Decimal:
    """Reject values the Numeric column would round or overflow."""
    column_type = PricingConfig.__table__.c[field].type
    limit = Decimal(10) ** (column_type.precision - column_type.scale)
    if abs(value) >= limit:
        raise ValidationError(f"{field} must be less than {limit}", field=field)
    stored = value.quantize(Decimal(1).scaleb(-column_type.scale))
    if stored != value:
        raise ValidationError(
            f"{field} allows at most {column_type.scale} decimal places", field=field
        )
    return stored


def check_fuel_adjustment(current_fuel_price, base_fuel_price, fuel_adjustment_per_dollar) -> None:
    """The fuel multiplier must stay positive for the given fuel settings."""
    deviation = Decimal(str(current_fuel_price)) - Decimal(str(base_fuel_price))
    multiplier = 1 + deviation * Decimal(str(fuel_adjustment_per_dollar)) / 100
    if multiplier <= 0:
        raise ValidationError(
            f"fuel_adjustment_per_dollar of {fuel_adjustment_per_dollar} would price quotes at or below zero "
            f"for fuel at {current_fuel_price} against a base of {base_fuel_price}",
            field="fuel_adjustment_per_dollar",
        )


def _check_multiplier_map(field: str, value: Any, max_value: Decimal, allowed_keys=None) -> Dict[str, Decimal]:
    if not isinstance(value, dict) or not value:
        raise ValidationError(f"{field} must be a non-empty mapping", field=field)
    result = {}
    for key, raw in value.items():
        name = str(key).strip().lower()
        if allowed_keys is not None and name not in allowed_keys:
            raise ValidationError(
                f"{field} has unknown key '{key}', expected one of {sorted(allowed_keys)}",
                field=field,
            )
        multiplier = _as_decimal(f"{field}.{name}", raw)
        if multiplier <= 0:
            raise ValidationError(f"{field}.{name} must be greater than 0", field=field)
        if multiplier > max_value:
            raise ValidationError(f"{field}.{name} must be at most {max_value}", field=field)
        result[name] = multiplier
    return result


def validate_config_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Check every provided field against its domain and return normalized values.

    Raises ValidationError on the first violation; nothing is written by callers
    in that case.
    """
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be changed: {sorted(unknown)}", field=sorted(unknown)[0])

    clean: Dict[str, Any] = {}
    for field, value in fields.items():
        if field in DECIMAL_FIELDS:
            clean[field] = _fit_column(field, _as_decimal(field, value))
        elif field in BOOL_FIELDS:
            if not isinstance(value, bool):
                raise ValidationError(f"{field} must be a boolean", field=field)
            clean[field] = value
        elif field in INT_FIELDS:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{field} must be an integer", field=field)
            clean[field] = value
        elif field == "vehicle_type_multipliers":
            clean[field] = _check_multiplier_map(field, value, VEHICLE_MULTIPLIER_MAX)
        elif field == "delivery_type_multipliers":
            clean[field] = _check_multiplier_map(
                field, value, DELIVERY_MULTIPLIER_MAX, {t.value for t in DeliveryType}
            )
        else:
            clean[field] = value

    def _positive(name):
        if name in clean and clean[name] <= 0:
            raise ValidationError(f"{name} must be greater than 0", field=name)

    def _non_negative(name):
        if name in clean and clean[name] < 0:
            raise ValidationError(f"{name} cannot be negative", field=name)

    _positive("current_fuel_price")
    _positive("base_fuel_price")
    _positive("base_rate_per_mile")
    _non_negative("min_quote")
    _non_negative("fuel_adjustment_per_dollar")
    _non_negative("accident_recovery_surcharge")
    _non_negative("expedited_threshold_days")

    if "surge_multiplier" in clean:
        surge = clean["surge_multiplier"]
        if surge < 1 or surge > SURGE_MULTIPLIER_MAX:
            raise ValidationError(
                f"surge_multiplier must be between 1 and {SURGE_MULTIPLIER_MAX}",
                field="surge_multiplier",
            )

    if clean.get("fuel_adjustment_per_dollar", 0) > FUEL_ADJUSTMENT_MAX:
        raise ValidationError(
            f"fuel_adjustment_per_dollar must be at most {FUEL_ADJUSTMENT_MAX}",
            field="fuel_adjustment_per_dollar",
        )
    return clean


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _normalize_for_compare(field: str, value: Any) -> Any:
    if value is None:
        return None
    if field in DECIMAL_FIELDS:
        return Decimal(str(value))
    if field in MULTIPLIER_MAP_FIELDS:
        return {str(k): Decimal(str(v)) for k, v in value.items()}
    return value


def _to_column_value(field: str, value: Any) -> Any:
    if field in MULTIPLIER_MAP_FIELDS:
        return _jsonable(value)
    return value


def diff_config(config: PricingConfig, changes: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Return (previous, new) for the fields whose value actually changes."""
    previous: Dict[str, Any] = {}
    new: Dict[str, Any] = {}
    for field, value in changes.items():
        current = getattr(config, field)
        if _normalize_for_compare(field, current) != _normalize_for_compare(field, value):
            previous[field] = current
            new[field] = value
    return previous, new


async def _load_config(db: AsyncSession, config_id: int) -> PricingConfig:
    res = await db.execute(
        select(PricingConfig)
        .where(PricingConfig.id == config_id)
        .execution_options(populate_existing=True)
    )
    config = res.scalars().first()
    if not config:
        raise NotFoundError(f"Pricing configuration with id {config_id} not found")
    return config


async def _compare_and_swap(
    db: AsyncSession,
    config_id: int,
    expected_version: int,
    values: Dict[str, Any],
) -> bool:
    """Apply ``values`` only if the row is still at ``expected_version``."""
    stmt = (
        update(PricingConfig)
        .where(PricingConfig.id == config_id, PricingConfig.version == expected_version)
        .values(**values, version=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


@track_db_operation("select", "pricing_configs")
async def get_active_config(db: AsyncSession) -> PricingConfig:
    res = await db.execute(
        select(PricingConfig)
        .where(PricingConfig.is_active.is_(True))
        .execution_options(populate_existing=True)
    )
    config = res.scalars().first()
    if not config:
        raise ActiveConfigMissingError()
    return config


@track_db_operation("select", "pricing_configs")
async def get_config(db: AsyncSession, config_id: int) -> PricingConfig:
    return await _load_config(db, config_id)


@track_db_operation("select", "pricing_configs")
async def list_configs(db: AsyncSession) -> List[PricingConfig]:
    res = await db.execute(
        select(PricingConfig).order_by(PricingConfig.updated_at.desc(), PricingConfig.id.desc())
    )
    return list(res.scalars().all())


@track_db_operation("update", "pricing_configs")
async def update_config(
    db: AsyncSession,
    config_id: int,
    changes: Dict[str, Any],
    reason: str,
    changed_by: Optional[str] = None,
) -> PricingConfig:
    clean = validate_config_fields(changes)

    for attempt in range(1, settings.PRICING_UPDATE_MAX_RETRIES + 1):
        config = await _load_config(db, config_id)
        if any(field in clean for field in FUEL_FIELDS):
            check_fuel_adjustment(*(clean.get(field, getattr(config, field)) for field in FUEL_FIELDS))
        previous, new = diff_config(config, clean)
        if not new:
            logger.info(f"Pricing config {config_id} update with no effective changes ignored")
            return config

        expected_version = config.version
        db.add(PricingConfigHistory(
            config_id=config_id,
            changed_fields=sorted(new),
            change_reason=reason,
            previous_values=_jsonable(previous),
            new_values=_jsonable(new),
            changed_at=utcnow(),
            changed_by=changed_by,
        ))
        values = {field: _to_column_value(field, value) for field, value in new.items()}
        values.update(updated_at=utcnow(), updated_by=changed_by)

        if await _compare_and_swap(db, config_id, expected_version, values):
            await db.commit()
            await db.refresh(config)
            pricing_config_writes.labels(action=str(ConfigAction.UPDATE), status="success").inc()
            logger.info(
                f"Pricing config {config_id} updated to v{config.version} by {changed_by}: "
                f"{sorted(new)} ({reason})"
            )
            return config

        await db.rollback()
        pricing_config_writes.labels(action=str(ConfigAction.UPDATE), status="conflict").inc()
        logger.warning(
            f"Version conflict updating pricing config {config_id} at v{expected_version} "
            f"(attempt {attempt}/{settings.PRICING_UPDATE_MAX_RETRIES})"
        )

    raise ConcurrentUpdateError(
        f"Pricing configuration {config_id} was modified concurrently, retry the update"
    )


@track_db_operation("insert", "pricing_configs")
async def create_config(
    db: AsyncSession,
    fields: Dict[str, Any],
    created_by: Optional[str] = None,
    set_as_active: bool = False,
) -> PricingConfig:
    # Unspecified fields start from the built-in defaults.
    clean = validate_config_fields({**DEFAULT_PRICING_VALUES, **fields})
    check_fuel_adjustment(*(clean[field] for field in FUEL_FIELDS))
    values = {field: _to_column_value(field, value) for field, value in clean.items()}

    try:
        if set_as_active:
            await _deactivate_current(db, updated_by=created_by)
        config = PricingConfig(
            **values,
            is_active=set_as_active,
            version=1,
            created_by=created_by,
            updated_by=created_by,
        )
        db.add(config)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        pricing_config_writes.labels(action=str(ConfigAction.CREATE), status="conflict").inc()
        raise ConcurrentUpdateError("Another pricing configuration was activated concurrently")

    await db.refresh(config)
    pricing_config_writes.labels(action=str(ConfigAction.CREATE), status="success").inc()
    logger.info(f"Pricing config {config.id} created by {created_by} (active={set_as_active})")
    return config


async def _deactivate_current(db: AsyncSession, updated_by: Optional[str]) -> None:
    await db.execute(
        update(PricingConfig)
        .where(PricingConfig.is_active.is_(True))
        .values(
            is_active=False,
            version=PricingConfig.version + 1,
            updated_at=utcnow(),
            updated_by=updated_by,
        )
        .execution_options(synchronize_session=False)
    )


@track_db_operation("update", "pricing_configs")
async def activate_config(
    db: AsyncSession,
    config_id: int,
    changed_by: Optional[str] = None,
    reason: str = "Configuration activated",
) -> PricingConfig:
    config = await _load_config(db, config_id)
    if config.is_active:
        return config

    expected_version = config.version
    try:
        await _deactivate_current(db, updated_by=changed_by)
        db.add(PricingConfigHistory(
            config_id=config_id,
            changed_fields=["is_active"],
            change_reason=reason,
            previous_values={"is_active": False},
            new_values={"is_active": True},
            changed_at=utcnow(),
            changed_by=changed_by,
        ))
        swapped = await _compare_and_swap(
            db,
            config_id,
            expected_version,
            {"is_active": True, "updated_at": utcnow(), "updated_by": changed_by},
        )
        if not swapped:
            await db.rollback()
            pricing_config_writes.labels(action=str(ConfigAction.ACTIVATE), status="conflict").inc()
            raise ConcurrentUpdateError(
                f"Pricing configuration {config_id} was modified concurrently, retry the activation"
            )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        pricing_config_writes.labels(action=str(ConfigAction.ACTIVATE), status="conflict").inc()
        raise ConcurrentUpdateError("Another pricing configuration was activated concurrently")

    config = await _load_config(db, config_id)
    pricing_config_writes.labels(action=str(ConfigAction.ACTIVATE), status="success").inc()
    logger.info(f"Pricing config {config_id} activated by {changed_by}")
    return config


@track_db_operation("select", "pricing_config_history")
async def get_config_history(
    db: AsyncSession,
    config_id: int,
    limit: Optional[int] = None,
) -> List[PricingConfigHistory]:
    await _load_config(db, config_id)
    if limit is None:
        limit = settings.PRICING_HISTORY_DEFAULT_LIMIT
    res = await db.execute(
        select(PricingConfigHistory)
        .where(PricingConfigHistory.config_id == config_id)
        .order_by(PricingConfigHistory.changed_at.desc(), PricingConfigHistory.id.desc())
        .limit(limit)
    )
    return list(res.scalars().all())
