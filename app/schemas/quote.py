from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.core.enums import DeliveryType
from app.schemas.common import JsonDecimal
from app.utils.units import km_to_miles, miles_to_km

# Bounded so quote totals stay within the 28-digit Decimal context.
MAX_DISTANCE_MILES = Decimal("20000")
MAX_DISTANCE_KM = miles_to_km(MAX_DISTANCE_MILES)


class QuoteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vehicle_type: str = Field(..., min_length=1, max_length=40)
    distance_miles: Optional[Decimal] = Field(None, gt=0, le=MAX_DISTANCE_MILES)
    distance_km: Optional[Decimal] = Field(None, gt=0, le=MAX_DISTANCE_KM)
    pickup_date: Optional[date] = None
    delivery_date: Optional[date] = None
    is_accident_recovery: bool = False
    vehicle_count: int = Field(1, ge=1, le=1000)
    use_dynamic_config: bool = True

    @field_validator("vehicle_type")
    @classmethod
    def _normalize_vehicle_type(cls, value: str) -> str:
        return value.strip().lower()

    @model_validator(mode="after")
    def _normalize_distance_and_dates(self) -> "QuoteRequest":
        if (self.distance_miles is None) == (self.distance_km is None):
            raise ValueError("Provide exactly one of distance_miles or distance_km")
        if self.distance_km is not None:
            self.distance_miles = km_to_miles(self.distance_km)
        if self.pickup_date and self.delivery_date and self.delivery_date < self.pickup_date:
            raise ValueError("delivery_date cannot be before pickup_date")
        return self


class QuoteBreakdown(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: JsonDecimal
    total_cents: int
    subtotal: JsonDecimal
    minimum_applied: bool
    min_quote: JsonDecimal

    base_rate_per_mile: JsonDecimal
    distance_miles: JsonDecimal
    base_component: JsonDecimal

    vehicle_type: str
    vehicle_multiplier: JsonDecimal
    vehicle_count: int
    vehicle_component: JsonDecimal
    bulk_discount_percent: JsonDecimal
    bulk_discount_amount: JsonDecimal

    delivery_type: DeliveryType
    delivery_type_multiplier: JsonDecimal
    surge_multiplier: JsonDecimal
    fuel_price_per_gallon: JsonDecimal
    fuel_adjustment_percent: JsonDecimal

    distance_component: JsonDecimal
    accident_recovery_surcharge: JsonDecimal

    config_id: Optional[int] = None
    config_version: int
