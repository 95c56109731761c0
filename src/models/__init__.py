"""SQLAlchemy ORM models."""

from src.models.base import Base
from src.models.procedure import Procedure
from src.models.pricing import (
    InsuranceDegree,
    PeriodDiscount,
    PointRate,
    PriceList,
    PricingFactor,
    PricingRule,
)
from src.models.policy import (
    PolicyExclusion,
    PreapprovalRule,
    ProviderContractPrice,
    ProviderException,
)

__all__ = [
    "Base",
    "Procedure",
    "PriceList",
    "PricingFactor",
    "PricingRule",
    "InsuranceDegree",
    "PointRate",
    "PeriodDiscount",
    "PolicyExclusion",
    "PreapprovalRule",
    "ProviderException",
    "ProviderContractPrice",
]
