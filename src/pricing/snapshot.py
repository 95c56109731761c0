"""Reference data snapshot consumed by a single calculation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from src.schemas.pricing import (
    ExclusionRecord,
    PeriodDiscountRecord,
    PointRateRecord,
    PreapprovalRuleRecord,
    PricingFactorRecord,
    PricingRuleRecord,
    ProcedureSummary,
    ProviderContractPriceRecord,
    ProviderExceptionRecord,
)


@dataclass
class PricingSnapshot:
    """Point-in-time reference data for one calculation. Never mutated."""

    rules: Sequence[PricingRuleRecord] = ()
    point_rates: Sequence[PointRateRecord] = ()
    period_discounts: Sequence[PeriodDiscountRecord] = ()
    factors: Mapping[str, PricingFactorRecord] = field(default_factory=dict)
    procedure: Optional[ProcedureSummary] = None
    exclusions: Sequence[ExclusionRecord] = ()
    preapproval_rules: Sequence[PreapprovalRuleRecord] = ()
    provider_exceptions: Sequence[ProviderExceptionRecord] = ()
    contract_prices: Sequence[ProviderContractPriceRecord] = ()
