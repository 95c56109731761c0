"""Pricing Engine — selects the pricing rule for a request and prices it.

Selection:
1. Candidates = rules for the (procedure, price list) pair whose half-open
   window [valid_from, valid_to) contains the request date.
2. Each candidate is compiled against the factor registry. A rule with an
   unknown operator, mode or adjustment type is excluded and logged.
3. A candidate matches when all of its conditions hold (logical AND).
4. Lowest `priority` wins; equal priorities fall back to the lowest id.

Evaluation is a pure function of the request and a `PricingSnapshot`, so
identical inputs always produce an identical response.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Optional, Sequence

import structlog

from src.pricing.calculator import PriceCalculator
from src.pricing.conditions import failed_conditions
from src.pricing.coverage import decide_coverage
from src.pricing.errors import RuleConfigError, UnpriceableRuleError
from src.pricing.rules import CompiledRule, compile_rule
from src.pricing.snapshot import PricingSnapshot
from src.schemas.calculation import (
    FailedCondition,
    PricingCalculationRequest,
    PricingCalculationResponse,
    RuleEvaluation,
)
from src.schemas.pricing import PricingFactorRecord, PricingRuleRecord, is_active_on

logger = structlog.get_logger()


@dataclass
class RuleSelection:
    rule: Optional[CompiledRule]
    evaluated: list[RuleEvaluation]
    reason: str
    candidates: int = 0


def _config_failure(exc: RuleConfigError, factors: Mapping[str, Any]) -> list[FailedCondition]:
    if not exc.condition:
        return []
    condition = exc.condition
    actual = condition["actual"] if "actual" in condition else factors.get(condition.get("factor"))
    return [
        FailedCondition(
            factor=str(condition.get("factor")),
            operator=str(condition.get("operator")),
            expected=condition.get("value"),
            actual=actual,
        )
    ]


class PricingEngine:
    """Selects and prices rules over an immutable snapshot."""

    def __init__(self, calculator: Optional[PriceCalculator] = None):
        self.calculator = calculator or PriceCalculator()

    def select_rule(
        self,
        rules: Sequence[PricingRuleRecord],
        procedure_id: int,
        price_list_id: int,
        on: date,
        factors: Mapping[str, Any],
        registry: Mapping[str, PricingFactorRecord] | None = None,
    ) -> RuleSelection:
        """Return the single matching rule (or none) plus the evaluation trace."""
        candidates = sorted(
            (
                rule
                for rule in rules
                if rule.procedure_id == procedure_id
                and rule.price_list_id == price_list_id
                and is_active_on(rule.valid_from, rule.valid_to, on)
            ),
            key=lambda r: (r.priority, r.id),
        )

        if not candidates:
            return RuleSelection(
                rule=None,
                evaluated=[],
                reason=(
                    f"No active rule for procedure {procedure_id} and price list "
                    f"{price_list_id} on {on.isoformat()}"
                ),
            )

        evaluated: list[RuleEvaluation] = []
        matched: list[CompiledRule] = []
        for record in candidates:
            try:
                compiled = compile_rule(record, registry)
            except RuleConfigError as exc:
                logger.error(
                    "rule_config_invalid",
                    rule_id=record.id,
                    procedure_id=procedure_id,
                    price_list_id=price_list_id,
                    error=exc.message,
                )
                evaluated.append(
                    RuleEvaluation(
                        rule_id=record.id,
                        priority=record.priority,
                        matched=False,
                        failed_conditions=_config_failure(exc, factors),
                    )
                )
                continue

            failures = failed_conditions(compiled.conditions, factors)
            evaluated.append(
                RuleEvaluation(
                    rule_id=record.id,
                    priority=record.priority,
                    matched=not failures,
                    failed_conditions=[FailedCondition(**f) for f in failures],
                )
            )
            if not failures:
                matched.append(compiled)

        if not matched:
            return RuleSelection(
                rule=None,
                evaluated=evaluated,
                reason=f"No rule matched: {len(candidates)} candidate rule(s) evaluated",
                candidates=len(candidates),
            )

        selected = matched[0]
        reason = (
            f"Rule #{selected.id} selected with priority {selected.priority}; "
            f"{len(selected.conditions)} condition(s) matched"
        )
        tied = [rule.id for rule in matched[1:] if rule.priority == selected.priority]
        if tied:
            logger.warning(
                "rule_priority_tie",
                procedure_id=procedure_id,
                price_list_id=price_list_id,
                priority=selected.priority,
                selected=selected.id,
                tied_with=tied,
            )
            reason += f"; tie with rule(s) {tied} resolved by lowest id"

        return RuleSelection(
            rule=selected,
            evaluated=evaluated,
            reason=reason,
            candidates=len(candidates),
        )

    def calculate(
        self,
        request: PricingCalculationRequest,
        snapshot: PricingSnapshot,
    ) -> PricingCalculationResponse:
        """Resolve coverage, select a rule and compute the final price."""
        coverage = decide_coverage(request, snapshot)
        price_list_id = coverage.override_price_list_id or request.price_list_id

        selection = self.select_rule(
            snapshot.rules,
            request.procedure_id,
            price_list_id,
            request.date,
            request.factors,
            snapshot.factors,
        )

        covered = coverage.covered
        coverage_reason = coverage.coverage_reason
        if selection.rule is None and covered:
            covered = False
            coverage_reason = selection.reason

        breakdown = None
        if covered and selection.rule is not None:
            try:
                breakdown = self.calculator.calculate(
                    selection.rule,
                    request.factors,
                    request.date,
                    procedure_id=request.procedure_id,
                    price_list_id=price_list_id,
                    insurance_degree_id=request.insurance_degree_id,
                    point_rates=snapshot.point_rates,
                    period_discounts=snapshot.period_discounts,
                )
            except UnpriceableRuleError as exc:
                logger.warning(
                    "rule_unpriceable",
                    rule_id=selection.rule.id,
                    reason=exc.message,
                )
                covered = False
                coverage_reason = exc.message

        response = PricingCalculationResponse(
            procedure_id=request.procedure_id,
            price_list_id=request.price_list_id,
            insurance_degree_id=request.insurance_degree_id,
            date=request.date,
            final_price=float(breakdown.final_price) if breakdown else None,
            covered=covered,
            coverage_reason=coverage_reason,
            requires_preapproval=coverage.requires_preapproval,
            preapproval_reason=coverage.preapproval_reason,
            deductible_applied=(
                float(coverage.deductible_applied)
                if coverage.deductible_applied is not None
                else None
            ),
            override_price_list_id=coverage.override_price_list_id,
            selected_rule_id=selection.rule.id if selection.rule else None,
            selected_rule=selection.rule.definition.summary() if selection.rule else None,
            evaluated_rules=selection.evaluated,
            point_rate_used=breakdown.point_rate if breakdown else None,
            discount_applied=breakdown.discount if breakdown else None,
            adjustments_applied=breakdown.adjustments if breakdown else [],
            selection_reason=selection.reason,
        )

        logger.info(
            "price_calculated",
            procedure_id=request.procedure_id,
            price_list_id=price_list_id,
            date=request.date.isoformat(),
            covered=covered,
            rule_id=response.selected_rule_id,
            candidates=selection.candidates,
            final_price=response.final_price,
        )
        return response
