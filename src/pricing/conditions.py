"""Condition evaluator — typed predicates over named pricing factors.

A condition compares the value supplied for a factor against the rule's
expected value. Comparison semantics come from the factor's data type:
numbers compare numerically, dates chronologically, booleans by truth and
everything else as case-insensitive text. A factor missing from the request
never matches (fail closed).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from src.pricing.errors import RuleConfigError
from src.schemas.common import parse_local_date
from src.schemas.pricing import Condition, PricingFactorRecord


class FactorType(str, Enum):
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    SELECT = "SELECT"
    DATE = "DATE"
    BOOLEAN = "BOOLEAN"
    STRING = "STRING"
    DECIMAL = "DECIMAL"
    INTEGER = "INTEGER"


class Operator(str, Enum):
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_OR_EQUALS = "GREATER_THAN_OR_EQUALS"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_OR_EQUALS = "LESS_THAN_OR_EQUALS"
    BETWEEN = "BETWEEN"
    IN = "IN"
    NOT_IN = "NOT_IN"
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    IS_TRUE = "IS_TRUE"
    IS_FALSE = "IS_FALSE"


OPERATOR_ALIASES: dict[str, Operator] = {
    "EQ": Operator.EQUALS,
    "=": Operator.EQUALS,
    "==": Operator.EQUALS,
    "ON": Operator.EQUALS,
    "NEQ": Operator.NOT_EQUALS,
    "NE": Operator.NOT_EQUALS,
    "!=": Operator.NOT_EQUALS,
    "GT": Operator.GREATER_THAN,
    ">": Operator.GREATER_THAN,
    "AFTER": Operator.GREATER_THAN,
    "GTE": Operator.GREATER_THAN_OR_EQUALS,
    ">=": Operator.GREATER_THAN_OR_EQUALS,
    "LT": Operator.LESS_THAN,
    "<": Operator.LESS_THAN,
    "BEFORE": Operator.LESS_THAN,
    "LTE": Operator.LESS_THAN_OR_EQUALS,
    "<=": Operator.LESS_THAN_OR_EQUALS,
}

NUMERIC_TYPES = frozenset({FactorType.NUMBER, FactorType.DECIMAL, FactorType.INTEGER})
TEXT_TYPES = frozenset({FactorType.TEXT, FactorType.STRING, FactorType.SELECT})
# types that may carry an allowed-values enumeration
LISTED_TYPES = frozenset({FactorType.SELECT, FactorType.STRING})

_ORDERING = frozenset({
    Operator.EQUALS,
    Operator.NOT_EQUALS,
    Operator.GREATER_THAN,
    Operator.GREATER_THAN_OR_EQUALS,
    Operator.LESS_THAN,
    Operator.LESS_THAN_OR_EQUALS,
    Operator.BETWEEN,
})

SUPPORTED_OPERATORS: dict[FactorType, frozenset[Operator]] = {
    FactorType.NUMBER: _ORDERING | {Operator.IN, Operator.NOT_IN},
    FactorType.DECIMAL: _ORDERING | {Operator.IN, Operator.NOT_IN},
    FactorType.INTEGER: _ORDERING | {Operator.IN, Operator.NOT_IN},
    FactorType.DATE: _ORDERING,
    FactorType.BOOLEAN: frozenset({
        Operator.IS_TRUE, Operator.IS_FALSE, Operator.EQUALS, Operator.NOT_EQUALS,
    }),
    FactorType.SELECT: frozenset({
        Operator.EQUALS, Operator.NOT_EQUALS, Operator.IN, Operator.NOT_IN,
    }),
    FactorType.TEXT: frozenset({
        Operator.EQUALS, Operator.NOT_EQUALS, Operator.IN, Operator.NOT_IN,
        Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH,
    }),
    FactorType.STRING: frozenset({
        Operator.EQUALS, Operator.NOT_EQUALS, Operator.IN, Operator.NOT_IN,
        Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH,
    }),
}

_TRUE_STRINGS = {"true", "1", "yes", "y"}
_FALSE_STRINGS = {"false", "0", "no", "n"}

MISSING = object()


def parse_operator(raw: str) -> Operator:
    """Resolve an operator name or alias; unknown names are a config error."""
    name = str(raw or "").strip().upper()
    if name in Operator.__members__:
        return Operator[name]
    if name in OPERATOR_ALIASES:
        return OPERATOR_ALIASES[name]
    raise RuleConfigError(f"Unknown operator '{raw}'")


def parse_factor_type(raw: Optional[str]) -> Optional[FactorType]:
    if raw is None:
        return None
    try:
        return FactorType(str(raw).strip().upper())
    except ValueError:
        return None


def parse_allowed_values(raw: Optional[str]) -> list[str]:
    """Allowed values are stored as a JSON array or a comma separated list."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        parsed = None
    if isinstance(parsed, list):
        return [str(v) for v in parsed]
    return [part.strip() for part in str(raw).split(",") if part.strip()]


# --- Coercion --------------------------------------------------------------


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def to_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        value = parse_local_date(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, Decimal)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().casefold()


def _coerce(value: Any, data_type: Optional[FactorType]) -> Any:
    if data_type in NUMERIC_TYPES:
        return to_decimal(value)
    if data_type == FactorType.DATE:
        return to_date(value)
    if data_type == FactorType.BOOLEAN:
        return to_bool(value)
    if data_type in TEXT_TYPES:
        return to_text(value)
    # Unregistered factor: compare numerically when both sides allow it
    number = to_decimal(value)
    return number if number is not None else to_text(value)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if value is None:
        return []
    return [value]


def _bounds(value: Any) -> tuple[Any, Any]:
    if isinstance(value, Mapping):
        return value.get("min"), value.get("max")
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return value[0], value[1]
    raise RuleConfigError("BETWEEN expects {min, max} or a two element list")


def _date_literals(operator: Operator, value: Any) -> list[Any]:
    if operator == Operator.BETWEEN:
        return [b for b in _bounds(value) if b not in (None, "")]
    return [value]


def _compatible(left: Any, right: Any) -> bool:
    if isinstance(left, Decimal) or isinstance(right, Decimal):
        return isinstance(left, Decimal) and isinstance(right, Decimal)
    return type(left) is type(right)


# --- Compiled conditions ---------------------------------------------------


@dataclass(frozen=True)
class CompiledCondition:
    """A condition validated against the factor registry, ready to evaluate."""

    factor: str
    operator: Operator
    raw_operator: str
    value: Any
    data_type: Optional[FactorType] = None

    def evaluate(self, factors: Mapping[str, Any]) -> bool:
        actual = factors.get(self.factor, MISSING)
        if actual is MISSING or actual is None:
            return False
        return self._test(actual)

    def failure(self, factors: Mapping[str, Any]) -> dict[str, Any]:
        """Audit entry for a failed evaluation."""
        return {
            "factor": self.factor,
            "operator": self.raw_operator,
            "expected": self.value,
            "actual": factors.get(self.factor),
        }

    def _test(self, actual: Any) -> bool:
        op = self.operator

        if op in (Operator.IS_TRUE, Operator.IS_FALSE):
            truth = to_bool(actual)
            if truth is None:
                return False
            return truth if op == Operator.IS_TRUE else not truth

        left = _coerce(actual, self.data_type)
        if left is None:
            return False

        if op in (Operator.IN, Operator.NOT_IN):
            options = [_coerce(v, self.data_type) for v in _as_list(self.value)]
            found = any(o is not None and _compatible(left, o) and left == o for o in options)
            return found if op == Operator.IN else not found

        if op == Operator.BETWEEN:
            low, high = (_coerce(b, self.data_type) if b not in (None, "") else None
                         for b in _bounds(self.value))
            for bound in (low, high):
                if bound is not None and not _compatible(left, bound):
                    return False
            if low is not None and left < low:
                return False
            if high is not None and left > high:
                return False
            return True

        if op in (Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH):
            text, needle = to_text(actual), to_text(self.value)
            if text is None or needle is None:
                return False
            if op == Operator.CONTAINS:
                return needle in text
            if op == Operator.STARTS_WITH:
                return text.startswith(needle)
            return text.endswith(needle)

        right = _coerce(self.value, self.data_type)
        if right is None or not _compatible(left, right):
            return False
        if op == Operator.EQUALS:
            return left == right
        if op == Operator.NOT_EQUALS:
            return left != right
        if isinstance(left, (bool, str)):
            return False
        if op == Operator.GREATER_THAN:
            return left > right
        if op == Operator.GREATER_THAN_OR_EQUALS:
            return left >= right
        if op == Operator.LESS_THAN:
            return left < right
        return left <= right


def compile_condition(
    condition: Condition,
    registry: Mapping[str, PricingFactorRecord] | None = None,
) -> CompiledCondition:
    """Validate operator and data type; raises RuleConfigError when unusable."""
    raw = condition.model_dump(mode="json")
    try:
        operator = parse_operator(condition.operator)
    except RuleConfigError as exc:
        raise RuleConfigError(exc.message, condition=raw) from exc

    data_type = None
    factor = (registry or {}).get(condition.factor)
    if factor is not None:
        data_type = parse_factor_type(factor.data_type)
        if data_type is None:
            raise RuleConfigError(
                f"Factor '{factor.key}' has unsupported data type '{factor.data_type}'",
                condition=raw,
            )
        if operator not in SUPPORTED_OPERATORS[data_type]:
            raise RuleConfigError(
                f"Operator {operator.value} is not supported for {data_type.value} factor '{factor.key}'",
                condition=raw,
            )

    if operator == Operator.BETWEEN:
        try:
            _bounds(condition.value)
        except RuleConfigError as exc:
            raise RuleConfigError(exc.message, condition=raw) from exc

    if data_type == FactorType.DATE:
        for literal in _date_literals(operator, condition.value):
            if to_date(literal) is None:
                raise RuleConfigError(
                    f"Invalid date {literal!r} for factor '{condition.factor}'",
                    condition=raw,
                )

    return CompiledCondition(
        factor=condition.factor,
        operator=operator,
        raw_operator=condition.operator,
        value=condition.value,
        data_type=data_type,
    )


def compile_conditions(
    conditions: Sequence[Condition],
    registry: Mapping[str, PricingFactorRecord] | None = None,
) -> tuple[CompiledCondition, ...]:
    return tuple(compile_condition(c, registry) for c in conditions)


def failed_conditions(
    conditions: Sequence[CompiledCondition],
    factors: Mapping[str, Any],
) -> list[dict[str, Any]]:
    """Every condition that does not hold; empty means the AND holds."""
    return [c.failure(factors) for c in conditions if not c.evaluate(factors)]


def all_match(conditions: Sequence[CompiledCondition], factors: Mapping[str, Any]) -> bool:
    return all(c.evaluate(factors) for c in conditions)


def evaluate_condition(
    condition: Condition,
    factors: Mapping[str, Any],
    registry: Mapping[str, PricingFactorRecord] | None = None,
) -> bool:
    """Evaluate one condition; unknown operators raise RuleConfigError."""
    return compile_condition(condition, registry).evaluate(factors)
