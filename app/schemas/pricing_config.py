from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import DeliveryType, VehicleType
from app.schemas.common import JsonDecimal

DEFAULT_PRICING_VALUES = {
    "current_fuel_price": Decimal("3.70"),
    "base_fuel_price": Decimal("3.70"),
    "fuel_adjustment_per_dollar": Decimal("5.00"),
    "min_quote": Decimal("150.00"),
    "surge_enabled": False,
    "surge_multiplier": Decimal("1.00"),
    "surge_reason": None,
    "base_rate_per_mile": Decimal("0.95"),
    "accident_recovery_surcharge": Decimal("80.00"),
    "expedited_threshold_days": 7,
    "expedited_service_enabled": True,
    "bulk_discount_enabled": False,
    "vehicle_type_multipliers": {
        VehicleType.SEDAN.value: Decimal("1.00"),
        VehicleType.SUV.value: Decimal("1.10"),
        VehicleType.PICKUP.value: Decimal("1.20"),
        VehicleType.TRUCK.value: Decimal("1.20"),
        VehicleType.LUXURY.value: Decimal("1.90"),
        VehicleType.MOTORCYCLE.value: Decimal("0.90"),
        VehicleType.HEAVY.value: Decimal("2.35"),
    },
    "delivery_type_multipliers": {
        DeliveryType.EXPEDITED.value: Decimal("1.25"),
        DeliveryType.STANDARD.value: Decimal("1.00"),
    },
}


class PricingConfigOut(BaseModel):
    """Immutable snapshot of a pricing configuration row."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: Optional[int] = None
    current_fuel_price: JsonDecimal
    base_fuel_price: JsonDecimal
    fuel_adjustment_per_dollar: JsonDecimal
    min_quote: JsonDecimal
    surge_enabled: bool
    surge_multiplier: JsonDecimal
    surge_reason: Optional[str] = None
    base_rate_per_mile: JsonDecimal
    accident_recovery_surcharge: JsonDecimal
    expedited_threshold_days: int
    expedited_service_enabled: bool = True
    bulk_discount_enabled: bool = False
    vehicle_type_multipliers: Dict[str, JsonDecimal]
    delivery_type_multipliers: Dict[str, JsonDecimal]
    notes: Optional[str] = None
    is_active: bool
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None


DEFAULT_PRICING_CONFIG = PricingConfigOut(
    **DEFAULT_PRICING_VALUES,
    notes="Default built-in configuration",
    is_active=True,
    version=0,
)


class PricingConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_fuel_price: Optional[Decimal] = None
    base_fuel_price: Optional[Decimal] = None
    fuel_adjustment_per_dollar: Optional[Decimal] = None
    min_quote: Optional[Decimal] = None
    surge_enabled: Optional[bool] = None
    surge_multiplier: Optional[Decimal] = None
    surge_reason: Optional[str] = None
    base_rate_per_mile: Optional[Decimal] = None
    accident_recovery_surcharge: Optional[Decimal] = None
    expedited_threshold_days: Optional[int] = None
    expedited_service_enabled: Optional[bool] = None
    bulk_discount_enabled: Optional[bool] = None
    vehicle_type_multipliers: Optional[Dict[str, Decimal]] = None
    delivery_type_multipliers: Optional[Dict[str, Decimal]] = None
    notes: Optional[str] = None

    change_reason: Optional[str] = Field(None, max_length=500)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={"change_reason"})


class PricingConfigCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_fuel_price: Decimal = DEFAULT_PRICING_VALUES["current_fuel_price"]
    base_fuel_price: Decimal = DEFAULT_PRICING_VALUES["base_fuel_price"]
    fuel_adjustment_per_dollar: Decimal = DEFAULT_PRICING_VALUES["fuel_adjustment_per_dollar"]
    min_quote: Decimal = DEFAULT_PRICING_VALUES["min_quote"]
    surge_enabled: bool = False
    surge_multiplier: Decimal = DEFAULT_PRICING_VALUES["surge_multiplier"]
    surge_reason: Optional[str] = None
    base_rate_per_mile: Decimal = DEFAULT_PRICING_VALUES["base_rate_per_mile"]
    accident_recovery_surcharge: Decimal = DEFAULT_PRICING_VALUES["accident_recovery_surcharge"]
    expedited_threshold_days: int = DEFAULT_PRICING_VALUES["expedited_threshold_days"]
    expedited_service_enabled: bool = True
    bulk_discount_enabled: bool = False
    vehicle_type_multipliers: Dict[str, Decimal] = Field(
        default_factory=lambda: dict(DEFAULT_PRICING_VALUES["vehicle_type_multipliers"])
    )
    delivery_type_multipliers: Dict[str, Decimal] = Field(
        default_factory=lambda: dict(DEFAULT_PRICING_VALUES["delivery_type_multipliers"])
    )
    notes: Optional[str] = None

    set_as_active: bool = False

    def fields(self) -> dict:
        return self.model_dump(exclude={"set_as_active"})


class PricingConfigHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    config_id: int
    changed_fields: List[str]
    change_reason: str
    previous_values: dict
    new_values: dict
    changed_at: datetime
    changed_by: Optional[str] = None


class CacheClearOut(BaseModel):
    cleared: bool
    timestamp: datetime
