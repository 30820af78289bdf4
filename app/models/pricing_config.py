from sqlalchemy import Column, String, Boolean, Integer, Numeric, JSON, Index, text
from app.models.base import BaseModel


class PricingConfig(BaseModel):
    __tablename__ = "pricing_configs"
    __table_args__ = (
        # At most one active row; the seed guarantees at least one.
        Index(
            "uq_pricing_configs_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    current_fuel_price = Column(Numeric(10, 4), nullable=False)
    base_fuel_price = Column(Numeric(10, 4), nullable=False)
    fuel_adjustment_per_dollar = Column(Numeric(10, 4), nullable=False)

    min_quote = Column(Numeric(12, 2), nullable=False)

    surge_enabled = Column(Boolean, nullable=False, default=False)
    surge_multiplier = Column(Numeric(10, 4), nullable=False)
    surge_reason = Column(String(255), nullable=True)

    base_rate_per_mile = Column(Numeric(10, 4), nullable=False)
    accident_recovery_surcharge = Column(Numeric(12, 2), nullable=False)
    expedited_threshold_days = Column(Integer, nullable=False)
    expedited_service_enabled = Column(Boolean, nullable=False, default=True)
    bulk_discount_enabled = Column(Boolean, nullable=False, default=False)

    # Decimal values are stored as strings to keep them exact.
    vehicle_type_multipliers = Column(JSON, nullable=False)
    delivery_type_multipliers = Column(JSON, nullable=False)

    notes = Column(String, nullable=True)

    is_active = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)

    created_by = Column(String(64), nullable=True)
    updated_by = Column(String(64), nullable=True)
