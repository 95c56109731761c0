"""Compiled pricing rules — rule JSON validated into an evaluable form.

Compilation happens per calculation, never at write time only: a rule that
references an operator, pricing mode or adjustment type the evaluator does
not implement raises RuleConfigError here and is excluded from selection.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from src.pricing.conditions import (
    CompiledCondition,
    compile_condition,
    compile_conditions,
    to_decimal,
)
from src.pricing.errors import RuleConfigError
from src.schemas.pricing import (
    PricingFactorRecord,
    PricingRuleRecord,
    RuleAdjustment,
    RuleDefinition,
)


class PricingMode(str, Enum):
    FIXED = "FIXED"
    POINTS = "POINTS"
    RANGE = "RANGE"
    CONDITIONAL_FIXED = "CONDITIONAL_FIXED"


class AdjustmentType(str, Enum):
    ADD = "ADD"
    PERCENT = "PERCENT"
    MULTIPLY = "MULTIPLY"


@dataclass(frozen=True)
class CompiledAdjustment:
    source: RuleAdjustment
    kind: AdjustmentType
    block_conditions: tuple[tuple[CompiledCondition, ...], ...] = ()


@dataclass(frozen=True)
class CompiledRule:
    """A rule whose every operator, mode and adjustment type is known."""

    record: PricingRuleRecord
    definition: RuleDefinition
    mode: PricingMode
    conditions: tuple[CompiledCondition, ...]
    tier_conditions: tuple[Optional[CompiledCondition], ...] = ()
    conditional_fixed: tuple[tuple[Decimal, tuple[CompiledCondition, ...]], ...] = ()
    discount_blocks: tuple[tuple[Optional[Decimal], tuple[CompiledCondition, ...]], ...] = ()
    adjustments: tuple[CompiledAdjustment, ...] = ()

    @property
    def id(self) -> int:
        return self.record.id

    @property
    def priority(self) -> int:
        return self.record.priority


def _case_effect_is_valid(effect: Any) -> bool:
    if isinstance(effect, Mapping):
        numbers = [effect.get(k) for k in ("add", "amount", "percent", "addPercent") if k in effect]
        return bool(numbers) and all(to_decimal(n) is not None for n in numbers)
    return to_decimal(effect) is not None


def _compile_adjustment(
    index: int,
    adjustment: RuleAdjustment,
    registry: Mapping[str, PricingFactorRecord],
) -> CompiledAdjustment:
    try:
        kind = AdjustmentType(adjustment.type.strip().upper())
    except ValueError:
        raise RuleConfigError(
            f"Unknown adjustment type '{adjustment.type}'",
            condition={
                "factor": f"adjustments[{index}].type",
                "operator": "IN",
                "value": [t.value for t in AdjustmentType],
                "actual": adjustment.type,
            },
        )
    for case_value, effect in adjustment.cases.items():
        if not _case_effect_is_valid(effect):
            raise RuleConfigError(
                f"Adjustment case '{case_value}' has no numeric effect",
                condition={
                    "factor": f"adjustments[{index}].cases",
                    "operator": "NUMERIC",
                    "value": case_value,
                    "actual": effect,
                },
            )
    blocks = tuple(
        compile_conditions(block.when_conditions, registry) for block in adjustment.logic_blocks
    )
    return CompiledAdjustment(source=adjustment, kind=kind, block_conditions=blocks)


def compile_rule(
    record: PricingRuleRecord,
    registry: Mapping[str, PricingFactorRecord] | None = None,
) -> CompiledRule:
    """Parse and validate a rule's JSON; raises RuleConfigError."""
    registry = registry or {}
    try:
        definition = RuleDefinition.model_validate(record.rule_json)
    except ValidationError as exc:
        raise RuleConfigError(
            f"Malformed rule JSON: {exc.error_count()} error(s)",
            condition={
                "factor": "ruleJson",
                "operator": "VALID",
                "value": "PricingRuleSummary",
                "actual": None,
            },
        ) from exc

    mode_name = definition.pricing.mode.strip().upper()
    try:
        mode = PricingMode(mode_name)
    except ValueError:
        raise RuleConfigError(
            f"Unknown pricing mode '{definition.pricing.mode}'",
            condition={
                "factor": "pricing.mode",
                "operator": "IN",
                "value": [m.value for m in PricingMode],
                "actual": definition.pricing.mode,
            },
        )

    pricing = definition.pricing
    discount_blocks: tuple = ()
    if definition.discount is not None:
        discount_blocks = tuple(
            (to_decimal(block.percent), compile_conditions(block.when_conditions, registry))
            for block in definition.discount.logic_blocks
        )

    return CompiledRule(
        record=record,
        definition=definition,
        mode=mode,
        conditions=compile_conditions(definition.conditions, registry),
        tier_conditions=tuple(
            compile_condition(tier.condition, registry) if tier.condition else None
            for tier in pricing.tiers
        ),
        conditional_fixed=tuple(
            (Decimal(str(entry.price)), compile_conditions(entry.conditions, registry))
            for entry in pricing.conditional_fixed
        ),
        discount_blocks=discount_blocks,
        adjustments=tuple(
            _compile_adjustment(i, adj, registry) for i, adj in enumerate(definition.adjustments)
        ),
    )


