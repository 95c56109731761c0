"""Procedures — global medical reference data."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, IntIdMixin, TimestampMixin


class Procedure(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "procedures"

    system_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name_en: Mapped[str] = mapped_column(String(300), nullable=False)
    name_ar: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    unit_of_measure: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    reference_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    requires_authorization: Mapped[bool] = mapped_column(Boolean, default=False)
    is_surgical: Mapped[bool] = mapped_column(Boolean, default=False)
    min_interval_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
