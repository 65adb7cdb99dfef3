from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Valuation(Base):
    """One row per completed valuation. Rows are never updated or deleted."""

    __tablename__ = "valuations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Submitted property
    property_description: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    acreage: Mapped[str] = mapped_column(String(32), nullable=False)  # decimal text
    irrigated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tillable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    crop_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Valuation figures (per acre, except total_value)
    p10: Mapped[float] = mapped_column(Float, nullable=False)
    p50: Mapped[float] = mapped_column(Float, nullable=False)
    p90: Mapped[float] = mapped_column(Float, nullable=False)
    total_value: Mapped[float] = mapped_column(Float, nullable=False)
    price_per_acre: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)

    narrative: Mapped[str] = mapped_column(Text, nullable=False, default="")
    key_factors: Mapped[Any] = mapped_column(JSON, nullable=False, default=list)
    comparable_sales: Mapped[Any] = mapped_column(JSON, nullable=False, default=list)
    sources: Mapped[Any] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
