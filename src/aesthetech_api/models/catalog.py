"""Bookable services and retail products with their loyalty point values."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text, func, true
from sqlalchemy.dialects.postgresql import UUID

from aesthetech_api.db.base import Base


class SalonService(Base):
    __tablename__ = "salon_services"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    loyalty_points = Column(Integer, nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Product(Base):
    __tablename__ = "products"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=True, unique=True)
    price = Column(Numeric(12, 2), nullable=False)
    loyalty_points = Column(Integer, nullable=False, default=0, server_default="0")
    stock_quantity = Column(Integer, nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
