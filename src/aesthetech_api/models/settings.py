"""Single-row salon configuration read through the settings provider."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, func

from aesthetech_api.db.base import Base

SALON_SETTINGS_ID = 1


class SalonSettings(Base):
    __tablename__ = "salon_settings"

    id = Column(Integer, primary_key=True, default=SALON_SETTINGS_ID)
    salon_name = Column(String, nullable=False, default="Salon")
    timezone = Column(String, nullable=False, default="UTC")
    business_hours_start = Column(String(5), nullable=False, default="09:00")
    business_hours_end = Column(String(5), nullable=False, default="19:00")
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)

    points_per_currency_unit = Column(Numeric(8, 2), nullable=False, default=1)
    redemption_rate = Column(Integer, nullable=False, default=100)
    gold_threshold = Column(Integer, nullable=False, default=500)
    platinum_threshold = Column(Integer, nullable=False, default=1000)
    silver_multiplier = Column(Numeric(4, 2), nullable=False, default=1.0)
    gold_multiplier = Column(Numeric(4, 2), nullable=False, default=1.5)
    platinum_multiplier = Column(Numeric(4, 2), nullable=False, default=2.0)
    points_expiry_enabled = Column(Boolean, nullable=False, default=False)
    points_expiry_months = Column(Integer, nullable=False, default=12)
    birthday_bonus_enabled = Column(Boolean, nullable=False, default=True)
    birthday_bonus_points = Column(Integer, nullable=False, default=50)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
