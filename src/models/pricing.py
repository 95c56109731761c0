"""Pricing reference data — factors, rules, point rates, period discounts."""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Date, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, IntIdMixin, TimestampMixin


class PricingFactor(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "pricing_factors"

    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name_en: Mapped[str] = mapped_column(String(200), nullable=False)
    name_ar: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    data_type: Mapped[str] = mapped_column(String(20), nullable=False)  # TEXT|NUMBER|SELECT|DATE|BOOLEAN|...
    # JSON array or comma separated list; SELECT/STRING only
    allowed_values: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class PriceList(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "price_lists"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name_en: Mapped[str] = mapped_column(String(200), nullable=False)
    provider_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    region_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


class PricingRule(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "pricing_rules"

    procedure_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("procedures.id", ondelete="CASCADE"), nullable=False, index=True
    )
    price_list_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("price_lists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    priority: Mapped[int] = mapped_column(Integer, default=0)  # lower wins

    # conditions / pricing / discount / adjustments
    rule_json: Mapped[Dict[str, Any]] = mapped_column(JSONB, nullable=False)

    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)  # exclusive

    procedure = relationship("Procedure", lazy="joined")
    price_list = relationship("PriceList", lazy="joined")


class InsuranceDegree(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "insurance_degrees"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name_en: Mapped[str] = mapped_column(String(200), nullable=False)
    name_ar: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    effective_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


class PointRate(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "point_rates"

    context: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    context_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    insurance_degree_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("insurance_degrees.id"), nullable=True, index=True
    )

    point_price: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    min_point_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)
    max_point_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)
    result_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    result_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    insurance_degree = relationship("InsuranceDegree", lazy="joined")


class PeriodDiscount(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "period_discounts"

    procedure_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("procedures.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # NULL = applies under every price list
    price_list_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("price_lists.id"), nullable=True
    )
    context: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    period: Mapped[int] = mapped_column(Integer, nullable=False)
    period_unit: Mapped[str] = mapped_column(String(20), nullable=False)  # DAY|WEEK|MONTH|YEAR
    discount_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    procedure = relationship("Procedure", lazy="joined")
