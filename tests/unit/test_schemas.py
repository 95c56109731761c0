"""Tests for wire schemas: dates, legacy rule shapes, response body."""

from datetime import date

from src.schemas.calculation import PricingCalculationRequest, PricingCalculationResponse
from src.schemas.common import Page
from src.schemas.pricing import (
    CreatePricingRulePayload,
    PointRateRecord,
    PricingRuleResponse,
    RuleDefinition,
    RuleDiscount,
)


class TestLocalDate:
    def test_java_array_and_iso_string(self):
        from_array = PricingCalculationRequest.model_validate(
            {"procedureId": 1, "priceListId": 2, "date": [2025, 6, 1]}
        )
        from_string = PricingCalculationRequest.model_validate(
            {"procedureId": 1, "priceListId": 2, "date": "2025-06-01"}
        )
        assert from_array.date == from_string.date == date(2025, 6, 1)

    def test_point_rate_dates_from_arrays(self):
        rate = PointRateRecord.model_validate(
            {"id": 1, "pointPrice": 5, "validFrom": [2025, 1, 1], "validTo": [2025, 12, 31, 0, 0]}
        )
        assert rate.valid_from == date(2025, 1, 1)
        assert rate.valid_to == date(2025, 12, 31)


class TestRuleDefinition:
    def test_camel_and_snake_keys(self):
        camel = RuleDefinition.model_validate({"pricing": {"mode": "FIXED", "fixedPrice": 10}})
        snake = RuleDefinition.model_validate({"pricing": {"mode": "FIXED", "fixed_price": 10}})
        assert camel.pricing.fixed_price == snake.pricing.fixed_price == 10

    def test_legacy_condition_map(self):
        definition = RuleDefinition.model_validate(
            {
                "conditions": {"age": {"min": 18, "max": 65}, "tier": "A", "network": {"in": ["x", "y"]}},
                "pricing": {"mode": "FIXED", "fixedPrice": 10},
            }
        )
        assert [(c.factor, c.operator) for c in definition.conditions] == [
            ("age", "BETWEEN"),
            ("tier", "EQUALS"),
            ("network", "IN"),
        ]
        assert definition.conditions[0].value == {"min": 18, "max": 65}

    def test_legacy_base_price(self):
        definition = RuleDefinition.model_validate(
            {"conditions": [], "base_price": {"mode": "RANGE", "min": 50, "max": 200}}
        )
        assert definition.pricing.mode == "RANGE"
        assert definition.pricing.min_price == 50
        assert definition.pricing.max_price == 200

    def test_summary_mirrors_snake_fields(self):
        definition = RuleDefinition.model_validate(
            {"pricing": {"mode": "RANGE", "minPrice": 5, "maxPrice": 9}}
        )
        pricing = definition.summary()["pricing"]
        assert pricing["minPrice"] == pricing["min_price"] == 5
        assert pricing["maxPrice"] == pricing["max_price"] == 9


class TestRulePayload:
    def test_rule_json_is_compact_camel_case(self):
        payload = CreatePricingRulePayload.model_validate(
            {
                "procedureId": 61,
                "priceListId": 3,
                "priority": 1,
                "validFrom": "2025-01-01",
                "conditions": [{"factor": "tier", "operator": "eq", "value": "A"}],
                "pricing": {"mode": "FIXED", "fixedPrice": 100},
                "discount": {"apply": True, "period_unit": "MONTH", "period_value": 3, "logicBlocks": []},
            }
        )
        rule_json = payload.rule_json()

        assert rule_json["pricing"] == {"mode": "FIXED", "fixedPrice": 100.0, "tiers": [], "conditionalFixed": []}
        assert rule_json["discount"]["period_unit"] == "MONTH"
        assert "adjustments" in rule_json

    def test_discount_period_accepts_camel_case(self):
        discount = RuleDiscount.model_validate({"apply": True, "periodUnit": "DAY", "periodValue": 7})

        assert discount.period_unit == "DAY"
        assert discount.period_value == 7
        dumped = discount.model_dump(by_alias=True)
        assert dumped["period_unit"] == "DAY"
        assert dumped["period_value"] == 7

    def test_rule_response_serializes_rule_json(self):
        class Row:
            id = 4
            procedure_id = 61
            price_list_id = 3
            priority = 2
            rule_json = {"pricing": {"mode": "FIXED", "fixedPrice": 1}}
            valid_from = date(2025, 1, 1)
            valid_to = None
            procedure = None
            price_list = None

        body = PricingRuleResponse.from_rule(Row()).model_dump(by_alias=True, mode="json")
        assert body["ruleJson"] == '{"pricing": {"mode": "FIXED", "fixedPrice": 1}}'
        assert body["validFrom"] == "2025-01-01"


class TestResponseBody:
    def _response(self, **overrides):
        data = {"procedure_id": 1, "price_list_id": 2, "date": date(2025, 6, 1), "covered": True}
        data.update(overrides)
        return PricingCalculationResponse(**data)

    def test_final_price_omitted_when_not_covered(self):
        body = self._response(covered=False, coverage_reason="No rule").to_wire()
        assert "finalPrice" not in body
        assert body["selectedRuleId"] is None
        assert body["selectionReason"] is None

    def test_final_price_present_when_covered(self):
        body = self._response(final_price=12.5).to_wire()
        assert body["finalPrice"] == 12.5
        assert body["date"] == "2025-06-01"


def test_page_envelope():
    page = Page[int].build([1, 2], total=5, page=1, size=2)
    body = page.model_dump(by_alias=True)
    assert body == {
        "content": [1, 2],
        "totalPages": 3,
        "totalElements": 5,
        "first": False,
        "last": False,
        "size": 2,
        "number": 1,
        "numberOfElements": 2,
        "empty": False,
    }
