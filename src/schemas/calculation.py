"""Price calculation request/response — the audit-facing wire contract."""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import StrictBool

from src.schemas.common import CamelModel, LocalDate
from src.schemas.pricing import PointRateRecord

FactorValue = Union[StrictBool, int, float, str]


class PricingCalculationRequest(CamelModel):
    procedure_id: int
    price_list_id: int
    insurance_degree_id: Optional[int] = None
    factors: dict[str, FactorValue] = {}
    date: LocalDate

    # Optional policy context for the coverage decision
    policy_id: Optional[int] = None
    provider_id: Optional[int] = None
    provider_type_id: Optional[int] = None
    icd_id: Optional[int] = None
    service_type: Optional[str] = None
    claim_type: Optional[str] = None


class FailedCondition(CamelModel):
    factor: str
    operator: str
    expected: Any = None
    actual: Any = None


class RuleEvaluation(CamelModel):
    rule_id: int
    priority: int
    matched: bool
    failed_conditions: list[FailedCondition] = []


class DiscountApplied(CamelModel):
    discount_id: int
    pct: float
    period: Optional[int] = None
    unit: Optional[str] = None


class AdjustmentApplied(CamelModel):
    type: str
    factor_key: str
    case_matched: str
    amount: float


class PricingCalculationResponse(CamelModel):
    procedure_id: int
    price_list_id: int
    insurance_degree_id: Optional[int] = None
    date: LocalDate
    final_price: Optional[float] = None
    covered: bool
    coverage_reason: Optional[str] = None
    requires_preapproval: bool = False
    preapproval_reason: Optional[str] = None
    deductible_applied: Optional[float] = None
    override_price_list_id: Optional[int] = None
    selected_rule_id: Optional[int] = None
    selected_rule: Optional[dict[str, Any]] = None
    evaluated_rules: list[RuleEvaluation] = []
    point_rate_used: Optional[PointRateRecord] = None
    discount_applied: Optional[DiscountApplied] = None
    adjustments_applied: list[AdjustmentApplied] = []
    selection_reason: Optional[str] = None

    def to_wire(self) -> dict[str, Any]:
        """JSON body: nullable fields stay as null, finalPrice only when covered."""
        body = self.model_dump(by_alias=True, mode="json")
        if self.final_price is None:
            body.pop("finalPrice", None)
        return body
