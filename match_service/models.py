from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .db import Base

# The matching engine only reads these tables; they are owned and migrated by
# the handyman, planning, request and quote services.


class ProviderRow(Base):
    __tablename__ = "providers"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False)
    address = Column(String, nullable=True)
    latitude = Column(Float, nullable=True, index=True)
    longitude = Column(Float, nullable=True, index=True)
    service_radius_km = Column(Float, nullable=True)
    hourly_rate = Column(Float, nullable=True)
    average_rating = Column(Float, nullable=True)
    completed_bookings = Column(Integer, nullable=False, default=0)
    response_rate = Column(Float, nullable=True)
    is_approved = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    categories = relationship("ProviderCategoryRow", lazy="selectin")
    availabilities = relationship("AvailabilityRow", lazy="selectin")


class ProviderCategoryRow(Base):
    __tablename__ = "provider_categories"

    provider_id = Column(String, ForeignKey("providers.id"), primary_key=True)
    category_id = Column(String, primary_key=True, index=True)


class AvailabilityRow(Base):
    __tablename__ = "availabilities"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, ForeignKey("providers.id"), nullable=False, index=True)
    # 0 = Sunday .. 6 = Saturday
    day_of_week = Column(Integer, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    specific_date = Column(Date, nullable=True)


class ServiceRequestRow(Base):
    __tablename__ = "service_requests"

    id = Column(String, primary_key=True)
    category_id = Column(String, nullable=False, index=True)
    address = Column(String, nullable=False)
    latitude = Column(Float, nullable=True, index=True)
    longitude = Column(Float, nullable=True, index=True)
    preferred_date = Column(DateTime(timezone=True), nullable=True)
    # ISO-8601 strings
    alternative_dates = Column(JSON, nullable=True)
    budget = Column(Float, nullable=True)
    estimated_duration_hours = Column(Float, nullable=True)
    status = Column(String, nullable=False, default="open")
    created_at = Column(DateTime(timezone=True), nullable=False)


class QuoteRow(Base):
    __tablename__ = "quotes"

    id = Column(Integer, primary_key=True)
    service_request_id = Column(String, ForeignKey("service_requests.id"), nullable=False, index=True)
    provider_id = Column(String, ForeignKey("providers.id"), nullable=False, index=True)
