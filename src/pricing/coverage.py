"""Coverage & preapproval decision from policy-level inputs.

Coverage answers "is this payable at all", preapproval answers "must it be
authorized first". They are independent: a covered procedure may still
require preapproval.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Optional

import structlog

from src.pricing.snapshot import PricingSnapshot
from src.schemas.calculation import PricingCalculationRequest
from src.schemas.pricing import (
    ExclusionRecord,
    PreapprovalRuleRecord,
    ProviderContractPriceRecord,
    ProviderExceptionRecord,
    is_active_on,
)

logger = structlog.get_logger()


@dataclass
class CoverageDecision:
    covered: bool = True
    coverage_reason: Optional[str] = None
    requires_preapproval: bool = False
    preapproval_reason: Optional[str] = None
    deductible_applied: Optional[Decimal] = None
    override_price_list_id: Optional[int] = None


def _filter_matches(rule_value: Any, request_value: Any) -> bool:
    """NULL on the rule side means "any"."""
    return rule_value is None or rule_value == request_value


def _matching_exclusion(
    request: PricingCalculationRequest,
    exclusions: list[ExclusionRecord],
) -> Optional[ExclusionRecord]:
    for exclusion in sorted(exclusions, key=lambda e: e.id):
        if not (exclusion.is_global or (request.policy_id is not None and exclusion.policy_id == request.policy_id)):
            continue
        if exclusion.procedure_id is not None and exclusion.procedure_id == request.procedure_id:
            return exclusion
        if exclusion.icd_id is not None and exclusion.icd_id == request.icd_id:
            return exclusion
    return None


def _matching_provider_exception(
    request: PricingCalculationRequest,
    exceptions: list[ProviderExceptionRecord],
) -> Optional[ProviderExceptionRecord]:
    if request.policy_id is None or request.provider_id is None:
        return None
    matches = [
        exc
        for exc in exceptions
        if exc.policy_id == request.policy_id
        and exc.provider_id == request.provider_id
        and _filter_matches(exc.procedure_id, request.procedure_id)
        and _filter_matches(exc.icd_id, request.icd_id)
        and _filter_matches(exc.service_type, request.service_type)
    ]
    if not matches:
        return None
    # most specific first: procedure, then ICD, then service type
    matches.sort(
        key=lambda e: (
            e.procedure_id is None,
            e.icd_id is None,
            e.service_type is None,
            e.id,
        )
    )
    return matches[0]


def _contract_price(
    request: PricingCalculationRequest,
    contract_prices: list[ProviderContractPriceRecord],
) -> Optional[ProviderContractPriceRecord]:
    if request.provider_id is None:
        return None
    active = [
        cp
        for cp in contract_prices
        if cp.provider_id == request.provider_id
        and cp.procedure_id == request.procedure_id
        and is_active_on(cp.effective_from, cp.effective_to, request.date)
    ]
    if not active:
        return None
    active.sort(key=lambda cp: (cp.effective_from or date.min, cp.id), reverse=True)
    return active[0]


def _matching_preapproval(
    request: PricingCalculationRequest,
    rules: list[PreapprovalRuleRecord],
) -> Optional[PreapprovalRuleRecord]:
    if request.policy_id is None:
        return None
    for rule in sorted(rules, key=lambda r: r.id):
        if (
            rule.requires_preapproval
            and rule.policy_id == request.policy_id
            and _filter_matches(rule.procedure_id, request.procedure_id)
            and _filter_matches(rule.icd_id, request.icd_id)
            and _filter_matches(rule.service_type, request.service_type)
            and _filter_matches(rule.claim_type, request.claim_type)
            and _filter_matches(rule.provider_type_id, request.provider_type_id)
        ):
            return rule
    return None


def decide_coverage(
    request: PricingCalculationRequest,
    snapshot: PricingSnapshot,
) -> CoverageDecision:
    """Derive coverage, deductible, price-list override and preapproval."""
    decision = CoverageDecision()

    contract = _contract_price(request, list(snapshot.contract_prices))
    if contract is not None:
        if contract.price_list_id is not None and contract.price_list_id != request.price_list_id:
            decision.override_price_list_id = contract.price_list_id
        if contract.deductible:
            decision.deductible_applied = Decimal(str(contract.deductible))

    procedure = snapshot.procedure
    if procedure is not None and not procedure.is_active:
        decision.covered = False
        decision.coverage_reason = f"Procedure {procedure.id} is inactive"

    exclusion = _matching_exclusion(request, list(snapshot.exclusions))
    if decision.covered and exclusion is not None:
        decision.covered = False
        label = exclusion.code or f"#{exclusion.id}"
        decision.coverage_reason = f"Excluded by policy exclusion {label}" + (
            f": {exclusion.description}" if exclusion.description else ""
        )

    provider_exception = _matching_provider_exception(request, list(snapshot.provider_exceptions))
    if provider_exception is not None:
        if decision.covered and not provider_exception.is_allowed:
            decision.covered = False
            decision.coverage_reason = (
                f"Provider {provider_exception.provider_id} is not allowed under policy "
                f"{provider_exception.policy_id} (exception #{provider_exception.id})"
            )
        if provider_exception.override_deductible_amount is not None:
            decision.deductible_applied = Decimal(str(provider_exception.override_deductible_amount))

    if procedure is not None and procedure.requires_authorization:
        decision.requires_preapproval = True
        decision.preapproval_reason = f"Procedure {procedure.code or procedure.id} requires authorization"

    preapproval = _matching_preapproval(request, list(snapshot.preapproval_rules))
    if preapproval is not None:
        decision.requires_preapproval = True
        decision.preapproval_reason = f"Preapproval rule #{preapproval.id}" + (
            f": {preapproval.notes}" if preapproval.notes else ""
        )

    if not decision.covered:
        logger.info(
            "procedure_not_covered",
            procedure_id=request.procedure_id,
            policy_id=request.policy_id,
            reason=decision.coverage_reason,
        )
    return decision
