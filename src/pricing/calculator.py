"""Price calculator — turns a selected rule into a final price.

Order of operations (fixed):
1. Base price from the pricing mode; a matching `conditionalFixed` entry
   overrides it.
2. Adjustments in declared order. Currency adds are summed first, then
   percentages: (base + Σadd) × (1 + Σpercent / 100).
3. One discount: the larger of the rule discount and the best active period
   discount. Sources never stack; on a tie the rule discount wins.
4. Clamp to [minPrice, maxPrice] when either bound is set, floor at zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional, Sequence

import structlog

from src.config import settings
from src.pricing.conditions import all_match, to_decimal, to_text
from src.pricing.errors import UnpriceableRuleError
from src.pricing.point_rates import clamp, convert_points, resolve_point_rate
from src.pricing.rules import AdjustmentType, CompiledAdjustment, CompiledRule, PricingMode
from src.schemas.calculation import AdjustmentApplied, DiscountApplied
from src.schemas.pricing import PeriodDiscountRecord, PointRateRecord, is_active_on

logger = structlog.get_logger()

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _dec(value: Optional[float]) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


@dataclass
class PriceBreakdown:
    final_price: Decimal
    base_price: Decimal
    point_rate: Optional[PointRateRecord] = None
    discount: Optional[DiscountApplied] = None
    adjustments: list[AdjustmentApplied] = field(default_factory=list)


@dataclass
class _AdjustmentHit:
    adjustment: CompiledAdjustment
    case_matched: str
    add: Decimal
    percent: Decimal


class PriceCalculator:
    """Computes prices for compiled rules."""

    def __init__(self, precision: Optional[int] = None):
        places = settings.money_precision if precision is None else precision
        self.quantum = Decimal(1).scaleb(-places)

    def calculate(
        self,
        rule: CompiledRule,
        factors: Mapping[str, Any],
        on: date,
        *,
        procedure_id: int,
        price_list_id: int,
        insurance_degree_id: Optional[int],
        point_rates: Sequence[PointRateRecord] = (),
        period_discounts: Sequence[PeriodDiscountRecord] = (),
    ) -> PriceBreakdown:
        """Run base → adjustments → discount → clamp for one rule.

        Raises:
            UnpriceableRuleError: the rule needs a point rate and none is active,
                or no base price can be derived.
        """
        base, point_rate = self._base_price(rule, factors, on, insurance_degree_id, point_rates)

        price, applied = self._apply_adjustments(rule, factors, base)

        discount_pct, discount = self._resolve_discount(
            rule, factors, on, procedure_id, price_list_id, period_discounts
        )
        if discount_pct:
            price = price * (HUNDRED - discount_pct) / HUNDRED

        pricing = rule.definition.pricing
        price = clamp(price, _dec(pricing.min_price), _dec(pricing.max_price))
        price = max(price, ZERO).quantize(self.quantum, rounding=ROUND_HALF_UP)

        logger.debug(
            "price_breakdown",
            rule_id=rule.id,
            mode=rule.mode.value,
            base=str(base),
            adjustments=len(applied),
            discount_pct=str(discount_pct),
            final=str(price),
        )

        return PriceBreakdown(
            final_price=price,
            base_price=base,
            point_rate=point_rate,
            discount=discount,
            adjustments=applied,
        )

    # --- Step 1: base price -----------------------------------------------

    def _base_price(
        self,
        rule: CompiledRule,
        factors: Mapping[str, Any],
        on: date,
        insurance_degree_id: Optional[int],
        point_rates: Sequence[PointRateRecord],
    ) -> tuple[Decimal, Optional[PointRateRecord]]:
        for price, conditions in rule.conditional_fixed:
            if all_match(conditions, factors):
                return price, None

        pricing = rule.definition.pricing
        if rule.mode == PricingMode.FIXED:
            return _dec(pricing.fixed_price) or ZERO, None

        if rule.mode == PricingMode.CONDITIONAL_FIXED:
            if pricing.fixed_price is None:
                raise UnpriceableRuleError(
                    f"Rule #{rule.id}: no conditional price matched and no fixed fallback"
                )
            return _dec(pricing.fixed_price), None

        if rule.mode == PricingMode.POINTS:
            return self._points_price(rule, factors, on, insurance_degree_id, point_rates)

        # RANGE: nominal price before the final clamp
        if pricing.fixed_price is not None:
            return _dec(pricing.fixed_price), None
        if self._points(rule, factors) is not None:
            return self._points_price(rule, factors, on, insurance_degree_id, point_rates)
        return _dec(pricing.min_price) or ZERO, None

    def _points(self, rule: CompiledRule, factors: Mapping[str, Any]) -> Optional[Decimal]:
        pricing = rule.definition.pricing
        for tier, condition in zip(pricing.tiers, rule.tier_conditions):
            if tier.points is not None and condition is not None and condition.evaluate(factors):
                return _dec(tier.points)
        if pricing.points is not None:
            return _dec(pricing.points)
        return _dec(pricing.base_points)

    def _points_price(
        self,
        rule: CompiledRule,
        factors: Mapping[str, Any],
        on: date,
        insurance_degree_id: Optional[int],
        point_rates: Sequence[PointRateRecord],
    ) -> tuple[Decimal, PointRateRecord]:
        pricing = rule.definition.pricing
        points = self._points(rule, factors)
        if points is None:
            raise UnpriceableRuleError(f"Rule #{rule.id}: POINTS pricing without points")
        points = clamp(points, _dec(pricing.min_points), _dec(pricing.max_points))

        rate = resolve_point_rate(point_rates, insurance_degree_id, on)
        if rate is None:
            raise UnpriceableRuleError(
                f"No active point rate for insurance degree {insurance_degree_id} on {on.isoformat()}"
            )
        return convert_points(points, rate), rate

    # --- Step 2: adjustments ----------------------------------------------

    def _apply_adjustments(
        self,
        rule: CompiledRule,
        factors: Mapping[str, Any],
        base: Decimal,
    ) -> tuple[Decimal, list[AdjustmentApplied]]:
        hits = [hit for adj in rule.adjustments if (hit := self._resolve_adjustment(adj, factors))]
        if not hits:
            return base, []

        subtotal = base + sum((hit.add for hit in hits), ZERO)
        total_percent = sum((hit.percent for hit in hits), ZERO)
        price = subtotal * (HUNDRED + total_percent) / HUNDRED

        applied = [
            AdjustmentApplied(
                type=hit.adjustment.source.type,
                factor_key=hit.adjustment.source.factor_key,
                case_matched=hit.case_matched,
                amount=float(
                    (hit.add + subtotal * hit.percent / HUNDRED).quantize(
                        self.quantum, rounding=ROUND_HALF_UP
                    )
                ),
            )
            for hit in hits
        ]
        return price, applied

    def _resolve_adjustment(
        self,
        adjustment: CompiledAdjustment,
        factors: Mapping[str, Any],
    ) -> Optional[_AdjustmentHit]:
        """First matching source wins: cases → tiers → logic blocks → flat percent."""
        source = adjustment.source
        value = factors.get(source.factor_key)

        if value is not None and source.cases:
            for case_value, effect in source.cases.items():
                if _case_matches(case_value, value):
                    add, percent = _case_effect(adjustment.kind, effect)
                    return _AdjustmentHit(adjustment, str(case_value), add, percent)

        if value is not None:
            for tier in source.tiers:
                if _tier_matches(tier.value, value):
                    label = "default" if tier.value is None else str(tier.value)
                    return _AdjustmentHit(
                        adjustment,
                        f"tier:{label}",
                        _dec(tier.add) or ZERO,
                        _dec(tier.percent) or ZERO,
                    )

        for index, (block, conditions) in enumerate(
            zip(source.logic_blocks, adjustment.block_conditions)
        ):
            if all_match(conditions, factors):
                return _AdjustmentHit(
                    adjustment,
                    f"block:{index}",
                    _dec(block.add) or ZERO,
                    _dec(block.add_percent) or ZERO,
                )

        if not (source.cases or source.tiers or source.logic_blocks) and source.percent is not None:
            return _AdjustmentHit(adjustment, "flat", ZERO, _dec(source.percent))

        return None

    # --- Step 3: discount ---------------------------------------------------

    def _resolve_discount(
        self,
        rule: CompiledRule,
        factors: Mapping[str, Any],
        on: date,
        procedure_id: int,
        price_list_id: int,
        period_discounts: Sequence[PeriodDiscountRecord],
    ) -> tuple[Decimal, Optional[DiscountApplied]]:
        best_pct = ZERO
        best: Optional[DiscountApplied] = None

        discount = rule.definition.discount
        if discount is not None and discount.apply:
            for percent, conditions in rule.discount_blocks:
                if percent is not None and all_match(conditions, factors):
                    best_pct = percent
                    best = DiscountApplied(
                        discount_id=rule.id,
                        pct=float(percent),
                        period=discount.period_value,
                        unit=discount.period_unit,
                    )
                    break

        active = sorted(
            (
                pd
                for pd in period_discounts
                if pd.procedure.id == procedure_id
                and pd.price_list_id in (None, price_list_id)
                and is_active_on(pd.valid_from, pd.valid_to, on)
            ),
            key=lambda pd: (-Decimal(str(pd.discount_pct)), pd.id),
        )
        if active:
            period = active[0]
            period_pct = Decimal(str(period.discount_pct))
            if period_pct > best_pct:
                best_pct = period_pct
                best = DiscountApplied(
                    discount_id=period.id,
                    pct=period.discount_pct,
                    period=period.period,
                    unit=period.period_unit,
                )

        return min(best_pct, HUNDRED), best


def _case_effect(kind: AdjustmentType, effect: Any) -> tuple[Decimal, Decimal]:
    """(add, percent) contributed by one adjustment case."""
    if isinstance(effect, Mapping):
        add = to_decimal(effect.get("add", effect.get("amount"))) or ZERO
        percent = to_decimal(effect.get("percent", effect.get("addPercent"))) or ZERO
        return add, percent
    amount = to_decimal(effect) or ZERO
    if kind == AdjustmentType.PERCENT:
        return ZERO, amount
    if kind == AdjustmentType.MULTIPLY:
        return ZERO, (amount - 1) * HUNDRED
    return amount, ZERO


def _case_matches(case_value: Any, actual: Any) -> bool:
    key, number = to_decimal(case_value), to_decimal(actual)
    if key is not None and number is not None:
        return key == number
    return to_text(case_value) == to_text(actual)


def _tier_matches(tier_value: Any, actual: Any) -> bool:
    # numeric tiers are thresholds; list them highest first
    if tier_value is None:
        return True
    threshold, number = to_decimal(tier_value), to_decimal(actual)
    if threshold is not None and number is not None:
        return number >= threshold
    return to_text(tier_value) == to_text(actual)
