"""Boundary validation of calculation requests against the factor registry."""

from __future__ import annotations

from typing import Any, Mapping

from src.pricing.conditions import (
    NUMERIC_TYPES,
    FactorType,
    parse_allowed_values,
    parse_factor_type,
    to_bool,
    to_date,
    to_decimal,
)
from src.pricing.errors import PricingValidationError
from src.schemas.calculation import PricingCalculationRequest
from src.schemas.pricing import PricingFactorRecord


def _factor_error(factor: PricingFactorRecord, value: Any) -> str | None:
    data_type = parse_factor_type(factor.data_type)
    if data_type is None:
        return None

    if data_type in NUMERIC_TYPES:
        number = to_decimal(value)
        if number is None:
            return f"expected a number for {data_type.value} factor, got {value!r}"
        if data_type == FactorType.INTEGER and number != number.to_integral_value():
            return f"expected an integer, got {value!r}"
        return None

    if data_type == FactorType.BOOLEAN:
        if to_bool(value) is None:
            return f"expected a boolean, got {value!r}"
        return None

    if data_type == FactorType.DATE:
        if isinstance(value, bool) or to_date(value) is None:
            return f"expected an ISO date, got {value!r}"
        return None

    if data_type == FactorType.SELECT:
        allowed = parse_allowed_values(factor.allowed_values)
        if allowed and str(value).strip().casefold() not in {a.casefold() for a in allowed}:
            return f"must be one of {allowed}, got {value!r}"
    return None


def validate_request(
    request: PricingCalculationRequest,
    registry: Mapping[str, PricingFactorRecord],
) -> None:
    """Raise PricingValidationError listing every factor that fails its type.

    Factor keys missing from the registry pass through; conditions on them
    simply fail closed.
    """
    errors = []
    for key, value in sorted(request.factors.items()):
        factor = registry.get(key)
        if factor is None:
            continue
        message = _factor_error(factor, value)
        if message:
            errors.append({"field": f"factors.{key}", "message": message})

    if errors:
        raise PricingValidationError("Invalid pricing factors", errors)
