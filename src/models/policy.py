"""Policy-level coverage inputs — exclusions, preapproval, provider terms."""

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, IntIdMixin, TimestampMixin


class PolicyExclusion(Base, IntIdMixin):
    __tablename__ = "policy_exclusions"

    policy_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    exclusion_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    icd_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    procedure_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_global: Mapped[bool] = mapped_column(Boolean, default=False)


class PreapprovalRule(Base, IntIdMixin):
    __tablename__ = "preapproval_rules"

    policy_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Filters (NULL = any)
    service_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    procedure_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    icd_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    provider_type_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    claim_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    requires_preapproval: Mapped[bool] = mapped_column(Boolean, default=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class ProviderException(Base, IntIdMixin):
    __tablename__ = "provider_exceptions"

    policy_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    provider_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Filters (NULL = any)
    service_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    procedure_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    icd_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    override_copay_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    override_deductible_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    override_limit_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    override_reimbursement_model: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_allowed: Mapped[bool] = mapped_column(Boolean, default=True)
    exception_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class ProviderContractPrice(Base, IntIdMixin, TimestampMixin):
    __tablename__ = "provider_contract_prices"

    provider_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    procedure_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    price_list_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    deductible: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    effective_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
