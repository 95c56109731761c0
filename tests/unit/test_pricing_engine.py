"""Tests for pricing rule selection and price calculation (no DB)."""
from __future__ import annotations

import json
from datetime import date, timedelta

import pytest
from structlog.testing import capture_logs

from src.pricing.engine import PricingEngine
from src.schemas.pricing import ProviderContractPriceRecord, ExclusionRecord
from tests.factories import (
    make_period_discount,
    make_point_rate,
    make_request,
    make_rule,
    make_snapshot,
)

TIER_A = [{"factor": "providerTier", "operator": "eq", "value": "A"}]


class TestEndToEnd:
    def test_single_fixed_rule(self, engine, registry):
        """One eligible FIXED rule prices the request at its fixed price."""
        rule = make_rule(7, priority=1, conditions=TIER_A)
        snapshot = make_snapshot(rules=[rule], factors=registry)

        response = engine.calculate(make_request(), snapshot)

        assert response.covered is True
        assert response.selected_rule_id == 7
        assert response.final_price == 100.0
        body = response.to_wire()
        assert body["finalPrice"] == 100.0
        assert body["evaluatedRules"] == [
            {"ruleId": 7, "priority": 1, "matched": True, "failedConditions": []}
        ]
        assert body["date"] == "2025-06-01"
        assert body["selectedRule"]["pricing"]["fixedPrice"] == 100

    def test_nullable_fields_are_present(self, engine, registry):
        snapshot = make_snapshot(rules=[make_rule(7, conditions=TIER_A)], factors=registry)
        body = engine.calculate(make_request(), snapshot).to_wire()

        for key in (
            "coverageReason",
            "preapprovalReason",
            "deductibleApplied",
            "overridePriceListId",
            "pointRateUsed",
            "discountApplied",
        ):
            assert key in body
            assert body[key] is None
        assert body["adjustmentsApplied"] == []


class TestDeterminism:
    def test_identical_requests_identical_bodies(self, engine, registry):
        rules = [
            make_rule(1, priority=2, conditions=TIER_A),
            make_rule(2, priority=1, conditions=[{"factor": "age", "operator": "gte", "value": 65}]),
        ]
        snapshot = make_snapshot(rules=rules, factors=registry)
        request = make_request(factors={"providerTier": "A", "age": 40})

        first = json.dumps(engine.calculate(request, snapshot).to_wire(), sort_keys=True)
        second = json.dumps(engine.calculate(request, snapshot).to_wire(), sort_keys=True)

        assert first == second


class TestConditionSemantics:
    def test_missing_factor_fails_closed(self, engine, registry):
        rule = make_rule(1, conditions=[{"factor": "age", "operator": "gt", "value": 18}])
        snapshot = make_snapshot(rules=[rule], factors=registry)

        response = engine.calculate(make_request(factors={"providerTier": "A"}), snapshot)

        assert response.covered is False
        failed = response.evaluated_rules[0].failed_conditions
        assert failed[0].factor == "age"
        assert failed[0].actual is None

    def test_one_false_condition_fails_the_rule(self, engine, registry):
        rule = make_rule(
            1,
            conditions=[
                {"factor": "providerTier", "operator": "eq", "value": "A"},
                {"factor": "age", "operator": "gte", "value": 18},
                {"factor": "isEmergency", "operator": "IS_TRUE", "value": None},
            ],
        )
        snapshot = make_snapshot(rules=[rule], factors=registry)
        request = make_request(factors={"providerTier": "A", "age": 30, "isEmergency": False})

        response = engine.calculate(request, snapshot)

        assert response.selected_rule_id is None
        assert [f.factor for f in response.evaluated_rules[0].failed_conditions] == ["isEmergency"]


class TestValidityWindow:
    START = date(2025, 3, 1)

    def _select(self, engine, on):
        rule = make_rule(1, valid_from=self.START, valid_to=self.START + timedelta(days=10))
        return engine.select_rule([rule], 61, 3, on, {})

    @pytest.mark.parametrize("offset", [0, 9])
    def test_inside_window(self, engine, offset):
        selection = self._select(engine, self.START + timedelta(days=offset))
        assert selection.rule is not None

    @pytest.mark.parametrize("offset", [10, -1])
    def test_outside_window(self, engine, offset):
        selection = self._select(engine, self.START + timedelta(days=offset))
        assert selection.rule is None
        assert selection.evaluated == []
        assert "No active rule" in selection.reason

    def test_open_ended_rule(self, engine):
        rule = make_rule(1, valid_from=self.START, valid_to=None)
        assert engine.select_rule([rule], 61, 3, date(2099, 1, 1), {}).rule is not None

    def test_other_pair_is_not_a_candidate(self, engine):
        rule = make_rule(1, price_list_id=4)
        selection = engine.select_rule([rule], 61, 3, date(2025, 6, 1), {})
        assert selection.rule is None
        assert selection.candidates == 0


class TestPriority:
    def test_lower_priority_number_wins(self, engine):
        rules = [make_rule(10, priority=2), make_rule(20, priority=1)]
        selection = engine.select_rule(rules, 61, 3, date(2025, 6, 1), {})
        assert selection.rule.id == 20

    def test_tie_resolved_by_lowest_id_and_logged(self, engine):
        rules = [make_rule(5, priority=1), make_rule(3, priority=1)]

        with capture_logs() as logs:
            selection = engine.select_rule(rules, 61, 3, date(2025, 6, 1), {})

        assert selection.rule.id == 3
        assert "tie" in selection.reason
        tie = [entry for entry in logs if entry["event"] == "rule_priority_tie"]
        assert tie and tie[0]["tied_with"] == [5]

    def test_evaluation_trace_is_in_priority_order(self, engine):
        rules = [make_rule(1, priority=5), make_rule(2, priority=0), make_rule(3, priority=5)]
        selection = engine.select_rule(rules, 61, 3, date(2025, 6, 1), {})
        assert [e.rule_id for e in selection.evaluated] == [2, 1, 3]


class TestNoMatch:
    def test_not_covered_and_trace_populated(self, engine, registry):
        rules = [
            make_rule(1, priority=1, conditions=TIER_A),
            make_rule(2, priority=2, conditions=[{"factor": "providerTier", "operator": "in", "value": ["A", "C"]}]),
        ]
        snapshot = make_snapshot(rules=rules, factors=registry)

        response = engine.calculate(make_request(factors={"providerTier": "B"}), snapshot)
        body = response.to_wire()

        assert body["covered"] is False
        assert body["selectedRuleId"] is None
        assert "finalPrice" not in body
        assert body["coverageReason"]
        assert len(body["evaluatedRules"]) == 2
        for evaluation in body["evaluatedRules"]:
            assert evaluation["matched"] is False
            assert evaluation["failedConditions"]
        assert body["evaluatedRules"][0]["failedConditions"][0] == {
            "factor": "providerTier",
            "operator": "eq",
            "expected": "A",
            "actual": "B",
        }

    def test_no_rules_at_all(self, engine):
        response = engine.calculate(make_request(), make_snapshot())
        assert response.covered is False
        assert response.evaluated_rules == []
        assert response.coverage_reason.startswith("No active rule")


class TestRuleConfigErrors:
    def test_unknown_operator_excludes_rule(self, engine, registry):
        bad = make_rule(1, priority=1, conditions=[{"factor": "providerTier", "operator": "LIKE", "value": "A"}])
        good = make_rule(2, priority=2, pricing={"mode": "FIXED", "fixedPrice": 80})
        snapshot = make_snapshot(rules=[bad, good], factors=registry)

        with capture_logs() as logs:
            response = engine.calculate(make_request(), snapshot)

        assert response.selected_rule_id == 2
        assert response.final_price == 80.0
        assert response.evaluated_rules[0].matched is False
        assert response.evaluated_rules[0].failed_conditions[0].operator == "LIKE"
        assert any(entry["event"] == "rule_config_invalid" for entry in logs)

    def test_unknown_pricing_mode_excludes_rule(self, engine):
        rule = make_rule(1, pricing={"mode": "AUCTION", "fixedPrice": 10})
        selection = engine.select_rule([rule], 61, 3, date(2025, 6, 1), {})

        assert selection.rule is None
        failed = selection.evaluated[0].failed_conditions[0]
        assert failed.factor == "pricing.mode"
        assert failed.actual == "AUCTION"

    def test_operator_incompatible_with_factor_type(self, engine, registry):
        rule = make_rule(1, conditions=[{"factor": "isEmergency", "operator": "gt", "value": 1}])
        selection = engine.select_rule([rule], 61, 3, date(2025, 6, 1), {"isEmergency": True}, registry)
        assert selection.rule is None

    def test_invalid_date_literal_excludes_rule(self, engine, registry):
        bad = make_rule(1, priority=1, conditions=[
            {"factor": "admissionDate", "operator": "eq", "value": [2025, 13, 1]},
        ])
        good = make_rule(2, priority=2, pricing={"mode": "FIXED", "fixedPrice": 80})
        snapshot = make_snapshot(rules=[bad, good], factors=registry)

        with capture_logs() as logs:
            response = engine.calculate(make_request(factors={"admissionDate": "2025-06-01"}), snapshot)

        assert response.selected_rule_id == 2
        assert response.final_price == 80.0
        assert response.evaluated_rules[0].matched is False
        assert any(entry["event"] == "rule_config_invalid" for entry in logs)

    def test_invalid_date_between_bound_excludes_rule(self, engine, registry):
        rule = make_rule(1, conditions=[
            {"factor": "admissionDate", "operator": "BETWEEN", "value": [[2025, 1, 1], [2025, 2, 30]]},
        ])
        selection = engine.select_rule(
            [rule], 61, 3, date(2025, 6, 1), {"admissionDate": "2025-01-15"}, registry
        )
        assert selection.rule is None

    def test_unknown_adjustment_type_excludes_rule(self, engine):
        rule = make_rule(1, adjustments=[{"type": "SQUARE", "factorKey": "age", "cases": {"1": 1}}])
        selection = engine.select_rule([rule], 61, 3, date(2025, 6, 1), {})
        assert selection.rule is None
        assert selection.evaluated[0].failed_conditions[0].factor == "adjustments[0].type"


class TestPointsPricing:
    def _price(self, engine, rate, **pricing):
        rule = make_rule(1, pricing={"mode": "POINTS", **pricing})
        snapshot = make_snapshot(rules=[rule], point_rates=[rate])
        return engine.calculate(make_request(factors={}), snapshot)

    def test_points_times_rate(self, engine):
        response = self._price(engine, make_point_rate(point_price=5), points=10)
        assert response.final_price == 50.0
        assert response.point_rate_used.id == 1

    def test_max_point_price_clamp(self, engine):
        response = self._price(engine, make_point_rate(point_price=5, max_point_price=4), points=10)
        assert response.final_price == 40.0

    def test_points_clamped_before_conversion(self, engine):
        response = self._price(engine, make_point_rate(point_price=5), basePoints=30, maxPoints=20)
        assert response.final_price == 100.0

    def test_result_bounds(self, engine):
        rate = make_point_rate(point_price=5, result_max=45)
        assert self._price(engine, rate, points=10).final_price == 45.0

    def test_tier_overrides_points(self, engine, registry):
        rule = make_rule(
            1,
            pricing={
                "mode": "POINTS",
                "basePoints": 10,
                "tiers": [{"points": 20, "condition": {"factor": "age", "operator": "gte", "value": 65}}],
            },
        )
        snapshot = make_snapshot(rules=[rule], point_rates=[make_point_rate(point_price=5)], factors=registry)
        response = engine.calculate(make_request(factors={"age": 70}), snapshot)
        assert response.final_price == 100.0

    def test_missing_point_rate_is_not_covered(self, engine):
        rule = make_rule(1, pricing={"mode": "POINTS", "points": 10})
        response = engine.calculate(make_request(factors={}), make_snapshot(rules=[rule]))

        assert response.covered is False
        assert response.selected_rule_id == 1
        assert "No active point rate" in response.coverage_reason
        assert "finalPrice" not in response.to_wire()


class TestAdjustmentsAndDiscounts:
    ADJUSTMENTS = [
        {"type": "ADD", "factorKey": "roomType", "cases": {"private": 10}},
        {"type": "PERCENT", "factorKey": "roomType", "percent": 10},
    ]

    def test_add_then_percent(self, engine, registry):
        rule = make_rule(1, adjustments=self.ADJUSTMENTS)
        snapshot = make_snapshot(rules=[rule], factors=registry)

        response = engine.calculate(make_request(factors={"roomType": "private"}), snapshot)

        assert response.final_price == 121.0
        assert [(a.type, a.case_matched, a.amount) for a in response.adjustments_applied] == [
            ("ADD", "private", 10.0),
            ("PERCENT", "flat", 11.0),
        ]

    def test_numeric_case_keys_compare_by_value(self, engine, registry):
        rule = make_rule(1, adjustments=[{"type": "ADD", "factorKey": "weight", "cases": {"2.50": 15}}])
        snapshot = make_snapshot(rules=[rule], factors=registry)

        response = engine.calculate(make_request(factors={"weight": 2.5}), snapshot)

        assert response.final_price == 115.0
        assert response.adjustments_applied[0].case_matched == "2.50"

    def test_discount_after_adjustments(self, engine, registry):
        rule = make_rule(
            1,
            adjustments=self.ADJUSTMENTS,
            discount={
                "apply": True,
                "period_unit": "MONTH",
                "period_value": 3,
                "logicBlocks": [{"percent": 20, "whenConditions": []}],
            },
        )
        snapshot = make_snapshot(rules=[rule], factors=registry)

        response = engine.calculate(make_request(factors={"roomType": "private"}), snapshot)

        assert response.final_price == 96.8
        assert response.discount_applied.pct == 20
        assert response.discount_applied.unit == "MONTH"
        assert response.discount_applied.period == 3

    def test_discount_gate_off(self, engine):
        rule = make_rule(1, discount={"apply": False, "logicBlocks": [{"percent": 20}]})
        response = engine.calculate(make_request(factors={}), make_snapshot(rules=[rule]))
        assert response.final_price == 100.0
        assert response.discount_applied is None

    def test_larger_period_discount_wins(self, engine):
        rule = make_rule(1, discount={"apply": True, "logicBlocks": [{"percent": 10}]})
        snapshot = make_snapshot(rules=[rule], period_discounts=[make_period_discount(9, pct=25)])

        response = engine.calculate(make_request(factors={}), snapshot)

        assert response.final_price == 75.0
        assert response.discount_applied.discount_id == 9

    def test_rule_discount_wins_tie(self, engine):
        rule = make_rule(1, discount={"apply": True, "logicBlocks": [{"percent": 10}]})
        snapshot = make_snapshot(rules=[rule], period_discounts=[make_period_discount(9, pct=10)])

        response = engine.calculate(make_request(factors={}), snapshot)

        assert response.final_price == 90.0
        assert response.discount_applied.discount_id == 1

    def test_period_discount_for_other_price_list_ignored(self, engine):
        snapshot = make_snapshot(
            rules=[make_rule(1)],
            period_discounts=[make_period_discount(9, pct=50, price_list_id=4)],
        )
        assert engine.calculate(make_request(factors={}), snapshot).final_price == 100.0

    def test_multiply_adjustment(self, engine, registry):
        rule = make_rule(1, adjustments=[{"type": "MULTIPLY", "factorKey": "roomType", "cases": {"icu": 1.5}}])
        snapshot = make_snapshot(rules=[rule], factors=registry)
        assert engine.calculate(make_request(factors={"roomType": "ICU"}), snapshot).final_price == 150.0

    def test_numeric_tiers_pick_first_reached_threshold(self, engine, registry):
        rule = make_rule(
            1,
            adjustments=[
                {
                    "type": "ADD",
                    "factorKey": "age",
                    "tiers": [{"value": 65, "add": 30}, {"value": 18, "add": 10}],
                }
            ],
        )
        snapshot = make_snapshot(rules=[rule], factors=registry)
        assert engine.calculate(make_request(factors={"age": 70}), snapshot).final_price == 130.0
        assert engine.calculate(make_request(factors={"age": 30}), snapshot).final_price == 110.0
        assert engine.calculate(make_request(factors={"age": 5}), snapshot).final_price == 100.0


class TestRangeAndConditionalFixed:
    @pytest.mark.parametrize("nominal, expected", [(30, 50.0), (300, 200.0), (120, 120.0)])
    def test_range_clamp(self, engine, nominal, expected):
        rule = make_rule(1, pricing={"mode": "RANGE", "fixedPrice": nominal, "minPrice": 50, "maxPrice": 200})
        response = engine.calculate(make_request(factors={}), make_snapshot(rules=[rule]))
        assert response.final_price == expected

    def test_range_without_nominal_uses_min_price(self, engine):
        rule = make_rule(1, pricing={"mode": "RANGE", "minPrice": 50, "maxPrice": 200})
        assert engine.calculate(make_request(factors={}), make_snapshot(rules=[rule])).final_price == 50.0

    def test_conditional_fixed_overrides_base(self, engine, registry):
        rule = make_rule(
            1,
            pricing={
                "mode": "FIXED",
                "fixedPrice": 100,
                "conditionalFixed": [
                    {"price": 60, "conditions": [{"factor": "age", "operator": "lt", "value": 12}]},
                ],
            },
        )
        snapshot = make_snapshot(rules=[rule], factors=registry)
        assert engine.calculate(make_request(factors={"age": 8}), snapshot).final_price == 60.0
        assert engine.calculate(make_request(factors={"age": 30}), snapshot).final_price == 100.0

    def test_final_price_never_negative(self, engine, registry):
        rule = make_rule(1, adjustments=[{"type": "ADD", "factorKey": "roomType", "cases": {"ward": -500}}])
        snapshot = make_snapshot(rules=[rule], factors=registry)
        assert engine.calculate(make_request(factors={"roomType": "ward"}), snapshot).final_price == 0.0


class TestCoverageComposition:
    def test_exclusion_keeps_selection_trace(self, engine):
        exclusion = ExclusionRecord(id=4, policy_id=11, code="EX-1", procedure_id=61)
        snapshot = make_snapshot(rules=[make_rule(1)], exclusions=[exclusion])

        body = engine.calculate(make_request(factors={}, policyId=11), snapshot).to_wire()

        assert body["covered"] is False
        assert "EX-1" in body["coverageReason"]
        assert body["selectedRuleId"] == 1
        assert "finalPrice" not in body

    def test_contract_price_list_override(self, engine):
        contract = ProviderContractPriceRecord(id=1, provider_id=8, procedure_id=61, price_list_id=5)
        rules = [
            make_rule(1, pricing={"mode": "FIXED", "fixedPrice": 100}),
            make_rule(2, price_list_id=5, pricing={"mode": "FIXED", "fixedPrice": 70}),
        ]
        snapshot = make_snapshot(rules=rules, contract_prices=[contract])

        response = engine.calculate(make_request(factors={}, providerId=8), snapshot)

        assert response.override_price_list_id == 5
        assert response.price_list_id == 3
        assert response.selected_rule_id == 2
        assert response.final_price == 70.0


def test_custom_precision():
    from src.pricing.calculator import PriceCalculator

    engine = PricingEngine(PriceCalculator(precision=0))
    rule = make_rule(1, pricing={"mode": "FIXED", "fixedPrice": 99.5})
    assert engine.calculate(make_request(factors={}), make_snapshot(rules=[rule])).final_price == 100.0
