"""Pricing rule language and reference-data records.

The rule language is what `PricingRule.rule_json` holds: a list of
conditions, one pricing strategy, an optional discount block and an
ordered list of adjustments. Field names follow the admin UI's camelCase
wire format; the snake_case spellings the UI also emits (``fixed_price``,
``min_price``, ``factor_key`` ...) are accepted as field names.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Optional, Union

from pydantic import AliasChoices, Field, model_validator

from src.schemas.common import CamelModel, LocalDate

# --- Rule language ---------------------------------------------------------


class Condition(CamelModel):
    """Single predicate over a named factor."""

    factor: str
    operator: str
    value: Any = None


class PricingTier(CamelModel):
    points: Optional[float] = None
    condition: Optional[Condition] = None


class ConditionalFixedPrice(CamelModel):
    price: float
    conditions: list[Condition] = []


class RulePricing(CamelModel):
    """Base price strategy — exactly one `mode` drives the computation."""

    mode: str
    fixed_price: Optional[float] = None
    base_points: Optional[float] = None
    min_points: Optional[float] = None
    max_points: Optional[float] = None
    point_strategy: Optional[str] = None
    points: Optional[float] = None
    tiers: list[PricingTier] = []
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    conditional_fixed: list[ConditionalFixedPrice] = []

    def summary(self) -> dict[str, Any]:
        """Wire form with the snake_case mirrors the audit screen reads."""
        data = self.model_dump(by_alias=True, mode="json")
        data["fixed_price"] = self.fixed_price
        data["points"] = self.points
        data["min_price"] = self.min_price
        data["max_price"] = self.max_price
        return data


class DiscountLogicBlock(CamelModel):
    percent: Optional[float] = None
    when_conditions: list[Condition] = []


class RuleDiscount(CamelModel):
    apply: bool = False
    period_unit: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("period_unit", "periodUnit"),
        serialization_alias="period_unit",
    )
    period_value: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("period_value", "periodValue"),
        serialization_alias="period_value",
    )
    logic_blocks: list[DiscountLogicBlock] = []


class AdjustmentTier(CamelModel):
    value: Optional[Union[float, str]] = None
    add: Optional[float] = None
    percent: Optional[float] = None


class AdjustmentLogicBlock(CamelModel):
    when_conditions: list[Condition] = []
    add: Optional[float] = None
    add_percent: Optional[float] = None


class RuleAdjustment(CamelModel):
    type: str
    factor_key: str
    cases: dict[str, Any] = {}
    percent: Optional[float] = None
    tiers: list[AdjustmentTier] = []
    logic_blocks: list[AdjustmentLogicBlock] = []


def _legacy_conditions(conditions: dict[str, Any]) -> list[dict[str, Any]]:
    """Expand the older ``{factor: value}`` condition map into a list."""
    expanded = []
    for factor, value in conditions.items():
        if isinstance(value, dict):
            if "between" in value:
                expanded.append({"factor": factor, "operator": "BETWEEN", "value": value["between"]})
                continue
            if "min" in value or "max" in value:
                bounds = {"min": value.get("min"), "max": value.get("max")}
                expanded.append({"factor": factor, "operator": "BETWEEN", "value": bounds})
                continue
            if "in" in value:
                expanded.append({"factor": factor, "operator": "IN", "value": value["in"]})
                continue
        expanded.append({"factor": factor, "operator": "EQUALS", "value": value})
    return expanded


class RuleDefinition(CamelModel):
    """Parsed `ruleJson` — the `PricingRuleSummary` of the wire contract."""

    conditions: list[Condition] = []
    pricing: RulePricing
    discount: Optional[RuleDiscount] = None
    adjustments: list[RuleAdjustment] = []

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_shapes(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if isinstance(data.get("conditions"), dict):
            data["conditions"] = _legacy_conditions(data["conditions"])
        base_price = data.get("base_price")
        if "pricing" not in data and isinstance(base_price, dict):
            data["pricing"] = {
                "mode": base_price.get("mode", ""),
                "fixed_price": base_price.get("value"),
                "points": base_price.get("points"),
                "min_price": base_price.get("min"),
                "max_price": base_price.get("max"),
            }
        return data

    def summary(self) -> dict[str, Any]:
        return {
            "conditions": [c.model_dump(mode="json") for c in self.conditions],
            "pricing": self.pricing.summary(),
            "discount": self.discount.model_dump(by_alias=True, mode="json") if self.discount else None,
            "adjustments": [a.model_dump(by_alias=True, mode="json") for a in self.adjustments],
        }


# --- Reference records -----------------------------------------------------


class PricingFactorRecord(CamelModel):
    id: int
    key: str
    name_en: str
    name_ar: Optional[str] = None
    data_type: str
    allowed_values: Optional[str] = None


class ProcedureSummary(CamelModel):
    id: int
    system_code: Optional[str] = None
    code: Optional[str] = None
    name_en: Optional[str] = None
    name_ar: Optional[str] = None
    reference_price: Optional[float] = None
    requires_authorization: bool = False
    is_active: bool = True


class PriceListSummary(CamelModel):
    id: int
    code: str
    name_en: str
    provider_type: Optional[str] = None
    is_default: bool = False
    valid_from: LocalDate
    valid_to: Optional[LocalDate] = None
    region_name: Optional[str] = None


class PricingRuleRecord(CamelModel):
    """Rule row as the evaluator sees it; `rule_json` is compiled lazily."""

    id: int
    procedure_id: int
    price_list_id: int
    priority: int = 0
    rule_json: dict[str, Any]
    valid_from: LocalDate
    valid_to: Optional[LocalDate] = None


class PricingRuleResponse(CamelModel):
    id: int
    procedure_id: int
    procedure_name: Optional[str] = None
    price_list_name: Optional[str] = None
    price_list_id: int
    priority: int
    rule_json: str
    valid_from: LocalDate
    valid_to: Optional[LocalDate] = None

    @classmethod
    def from_rule(cls, rule: Any) -> "PricingRuleResponse":
        return cls(
            id=rule.id,
            procedure_id=rule.procedure_id,
            procedure_name=rule.procedure.name_en if rule.procedure else None,
            price_list_name=rule.price_list.name_en if rule.price_list else None,
            price_list_id=rule.price_list_id,
            priority=rule.priority,
            rule_json=json.dumps(rule.rule_json),
            valid_from=rule.valid_from,
            valid_to=rule.valid_to,
        )


class InsuranceDegreeSummary(CamelModel):
    id: int
    code: str
    name_en: str
    name_ar: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    effective_from: Optional[LocalDate] = None
    effective_to: Optional[LocalDate] = None


class PointRateRecord(CamelModel):
    id: int
    context: Optional[int] = None
    insurance_degree: Optional[InsuranceDegreeSummary] = None
    point_price: float
    min_point_price: Optional[float] = None
    max_point_price: Optional[float] = None
    result_min: Optional[float] = None
    result_max: Optional[float] = None
    valid_from: LocalDate
    valid_to: Optional[LocalDate] = None
    context_json: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _serialize_context_json(cls, data: Any) -> Any:
        # ORM rows carry context_json as a JSONB dict
        context_json = getattr(data, "context_json", None)
        if isinstance(context_json, dict):
            return {
                **{name: getattr(data, name, None) for name in cls.model_fields},
                "context_json": json.dumps(context_json),
            }
        if isinstance(data, dict) and isinstance(data.get("contextJson"), dict):
            return {**data, "contextJson": json.dumps(data["contextJson"])}
        return data


class PeriodDiscountRecord(CamelModel):
    id: int
    procedure: ProcedureSummary
    price_list_id: Optional[int] = None
    context: Optional[int] = None
    period: int
    period_unit: str
    discount_pct: float
    valid_from: LocalDate
    valid_to: Optional[LocalDate] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None


# Policy-level coverage inputs


class ExclusionRecord(CamelModel):
    id: int
    policy_id: int
    code: Optional[str] = None
    description: Optional[str] = None
    exclusion_type: Optional[str] = None
    icd_id: Optional[int] = None
    procedure_id: Optional[int] = None
    is_global: bool = False


class PreapprovalRuleRecord(CamelModel):
    id: int
    policy_id: int
    service_type: Optional[str] = None
    procedure_id: Optional[int] = None
    icd_id: Optional[int] = None
    provider_type_id: Optional[int] = None
    claim_type: Optional[str] = None
    requires_preapproval: bool = True
    notes: Optional[str] = None


class ProviderExceptionRecord(CamelModel):
    id: int
    policy_id: int
    provider_id: int
    service_type: Optional[str] = None
    procedure_id: Optional[int] = None
    icd_id: Optional[int] = None
    override_copay_percent: Optional[float] = None
    override_deductible_amount: Optional[float] = None
    override_limit_amount: Optional[float] = None
    override_reimbursement_model: Optional[str] = None
    is_allowed: bool = True
    exception_type: Optional[str] = None
    notes: Optional[str] = None


class ProviderContractPriceRecord(CamelModel):
    id: int
    provider_id: int
    procedure_id: int
    price_list_id: Optional[int] = None
    deductible: float = 0
    effective_from: Optional[LocalDate] = None
    effective_to: Optional[LocalDate] = None


# --- Admin payloads --------------------------------------------------------


class CreatePricingFactorPayload(CamelModel):
    key: str = Field(min_length=1, max_length=100)
    name_en: str = Field(min_length=1)
    name_ar: Optional[str] = None
    data_type: str
    allowed_values: Any = None


class CreatePricingRulePayload(CamelModel):
    procedure_id: int
    price_list_id: int
    priority: int = 0
    valid_from: LocalDate
    valid_to: Optional[LocalDate] = None
    conditions: list[Condition] = []
    pricing: RulePricing
    discount: Optional[RuleDiscount] = None
    adjustments: list[RuleAdjustment] = []

    def rule_json(self) -> dict[str, Any]:
        return self.definition().model_dump(by_alias=True, mode="json", exclude_none=True)

    def definition(self) -> RuleDefinition:
        return RuleDefinition(
            conditions=self.conditions,
            pricing=self.pricing,
            discount=self.discount,
            adjustments=self.adjustments,
        )


class CreatePointRatePayload(CamelModel):
    insurance_degree_id: int
    point_price: float = Field(gt=0)
    min_point_price: Optional[float] = None
    max_point_price: Optional[float] = None
    result_min: Optional[float] = None
    result_max: Optional[float] = None
    valid_from: LocalDate
    valid_to: Optional[LocalDate] = None
    context: Optional[dict[str, Any]] = None
    created_by: Optional[str] = None


class UpdatePointRatePayload(CamelModel):
    insurance_degree_id: Optional[int] = None
    point_price: Optional[float] = Field(None, gt=0)
    min_point_price: Optional[float] = None
    max_point_price: Optional[float] = None
    result_min: Optional[float] = None
    result_max: Optional[float] = None
    valid_from: Optional[LocalDate] = None
    valid_to: Optional[LocalDate] = None
    context: Optional[dict[str, Any]] = None
    created_by: Optional[str] = None


class CreatePeriodDiscountPayload(CamelModel):
    procedure_id: int
    price_list_id: Optional[int] = None
    period: int = Field(gt=0)
    period_unit: str
    discount_pct: float = Field(ge=0, le=100)
    valid_from: LocalDate
    valid_to: Optional[LocalDate] = None
    created_by: Optional[str] = None


def is_active_on(valid_from: Optional[date], valid_to: Optional[date], on: date) -> bool:
    """Half-open validity window: valid_from <= on < valid_to (NULL = open)."""
    if valid_from is not None and on < valid_from:
        return False
    if valid_to is not None and on >= valid_to:
        return False
    return True
