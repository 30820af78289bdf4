from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON
from app.models.base import Base, utcnow


class PricingConfigHistory(Base):
    __tablename__ = "pricing_config_history"

    id = Column(Integer, primary_key=True, index=True)
    config_id = Column(ForeignKey("pricing_configs.id"), nullable=False, index=True)

    changed_fields = Column(JSON, nullable=False)
    change_reason = Column(String(500), nullable=False)
    previous_values = Column(JSON, nullable=False)
    new_values = Column(JSON, nullable=False)
    changed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    changed_by = Column(String(64), nullable=True)
