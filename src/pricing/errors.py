"""Pricing error taxonomy."""

from __future__ import annotations


class PricingError(Exception):
    """Base class for pricing failures."""


class PricingValidationError(PricingError):
    """Malformed calculation request; reported to the client field by field."""

    def __init__(self, message: str, errors: list[dict[str, str]] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class RuleConfigError(PricingError):
    """A rule references an operator, mode or adjustment type we cannot evaluate.

    Raised while compiling a rule; the engine excludes the rule instead of
    failing the calculation.
    """

    def __init__(self, message: str, condition: dict | None = None):
        # condition: {factor, operator, value[, actual]} of the offending entry
        super().__init__(message)
        self.message = message
        self.condition = condition


class PricingDataError(PricingError):
    """Reference data for a calculation could not be loaded."""


class UnpriceableRuleError(PricingError):
    """The selected rule cannot produce a price (e.g. no active point rate)."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
