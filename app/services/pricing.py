from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple
import logging

from app.core.enums import DeliveryType
from app.core.exceptions import UnknownVehicleTypeError
from app.schemas.pricing_config import PricingConfigOut
from app.schemas.quote import QuoteRequest, QuoteBreakdown
from app.utils.units import CENT, round_money, dollars_to_cents, to_decimal

logger = logging.getLogger(__name__)

ONE = Decimal("1")
HUNDRED = Decimal("100")

# (max vehicle count, discount percent); anything larger gets the last tier.
BULK_DISCOUNT_TIERS = (
    (2, Decimal("0")),
    (5, Decimal("10")),
    (9, Decimal("15")),
)
BULK_DISCOUNT_MAX_PERCENT = Decimal("20")


def determine_delivery_type(
    pickup_date: Optional[date],
    delivery_date: Optional[date],
    config: PricingConfigOut,
) -> Tuple[DeliveryType, Decimal]:
    if pickup_date is None:
        delivery_type = DeliveryType.STANDARD
    elif delivery_date is None:
        # pickup without a delivery date means "as soon as possible"
        delivery_type = DeliveryType.EXPEDITED
    elif (delivery_date - pickup_date).days < config.expedited_threshold_days:
        delivery_type = DeliveryType.EXPEDITED
    else:
        delivery_type = DeliveryType.STANDARD

    if delivery_type == DeliveryType.EXPEDITED and not config.expedited_service_enabled:
        delivery_type = DeliveryType.STANDARD

    multiplier = config.delivery_type_multipliers.get(delivery_type.value, ONE)
    return delivery_type, to_decimal(multiplier)


def bulk_discount_percent(vehicle_count: int, enabled: bool) -> Decimal:
    if not enabled:
        return Decimal("0")
    for max_count, percent in BULK_DISCOUNT_TIERS:
        if vehicle_count <= max_count:
            return percent
    return BULK_DISCOUNT_MAX_PERCENT


def fuel_adjustment_percent(config: PricingConfigOut) -> Decimal:
    """Percent change of the quote for the current fuel price, e.g. +$0.55/gal at 5%/$ is +2.75%."""
    deviation = to_decimal(config.current_fuel_price) - to_decimal(config.base_fuel_price)
    return deviation * to_decimal(config.fuel_adjustment_per_dollar)


def calculate_quote(req: QuoteRequest, config: PricingConfigOut) -> QuoteBreakdown:
    """Price a shipment against a config snapshot.

    Pure: no I/O, Decimal arithmetic throughout, only the final total is
    rounded (half-up, to cents). Raises UnknownVehicleTypeError rather than
    guessing a multiplier for a vehicle type the config does not price.
    """
    vehicle_multiplier = config.vehicle_type_multipliers.get(req.vehicle_type)
    if vehicle_multiplier is None:
        raise UnknownVehicleTypeError(req.vehicle_type)
    vehicle_multiplier = to_decimal(vehicle_multiplier)

    distance_miles = to_decimal(req.distance_miles)
    vehicle_count = Decimal(req.vehicle_count)
    base_rate = to_decimal(config.base_rate_per_mile)

    delivery_type, delivery_multiplier = determine_delivery_type(
        req.pickup_date, req.delivery_date, config
    )
    surge_multiplier = to_decimal(config.surge_multiplier) if config.surge_enabled else ONE
    fuel_percent = fuel_adjustment_percent(config)
    fuel_multiplier = ONE + fuel_percent / HUNDRED

    base = base_rate * distance_miles
    vehicle_component = base * vehicle_multiplier * vehicle_count

    discount_percent = bulk_discount_percent(req.vehicle_count, config.bulk_discount_enabled)
    discount_amount = vehicle_component * discount_percent / HUNDRED

    distance_component = (
        (vehicle_component - discount_amount)
        * delivery_multiplier
        * surge_multiplier
        * fuel_multiplier
    )

    # Additive so it never compounds with surge.
    surcharge = to_decimal(config.accident_recovery_surcharge) if req.is_accident_recovery else Decimal("0")

    subtotal = distance_component + surcharge
    min_quote = to_decimal(config.min_quote)
    minimum_applied = subtotal < min_quote
    total = round_money(max(subtotal, min_quote))

    breakdown = QuoteBreakdown(
        total=total,
        total_cents=dollars_to_cents(total),
        subtotal=round_money(subtotal),
        minimum_applied=minimum_applied,
        min_quote=min_quote,
        base_rate_per_mile=base_rate,
        distance_miles=round_money(distance_miles),
        base_component=round_money(base),
        vehicle_type=req.vehicle_type,
        vehicle_multiplier=vehicle_multiplier,
        vehicle_count=req.vehicle_count,
        vehicle_component=round_money(vehicle_component),
        bulk_discount_percent=discount_percent,
        bulk_discount_amount=round_money(discount_amount),
        delivery_type=delivery_type,
        delivery_type_multiplier=delivery_multiplier,
        surge_multiplier=surge_multiplier,
        fuel_price_per_gallon=to_decimal(config.current_fuel_price),
        fuel_adjustment_percent=fuel_percent.quantize(CENT, rounding=ROUND_HALF_UP),
        distance_component=round_money(distance_component),
        accident_recovery_surcharge=surcharge,
        config_id=config.id,
        config_version=config.version,
    )
    logger.debug(
        f"Quote {req.vehicle_type} {distance_miles} mi x{req.vehicle_count} "
        f"({delivery_type.value}) -> {total} with config v{config.version}"
    )
    return breakdown
