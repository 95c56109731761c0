"""Pricing service — loads reference data and runs the engine.

All I/O happens here. The engine and calculator only ever see a
`PricingSnapshot`, so a failed lookup can never yield a partial price.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.pricing.cache import RuleSnapshotCache, cache_factors, get_cached_factors
from src.pricing.engine import PricingEngine
from src.pricing.errors import PricingDataError
from src.pricing.snapshot import PricingSnapshot
from src.pricing.validation import validate_request
from src.repositories.policy import PolicyRepository
from src.repositories.pricing import PricingRepository
from src.schemas.calculation import PricingCalculationRequest, PricingCalculationResponse
from src.schemas.pricing import PricingFactorRecord, PricingRuleRecord, is_active_on

logger = structlog.get_logger()


class PricingService:
    """Request-scoped facade over repositories, caches and the engine."""

    def __init__(
        self,
        db: AsyncSession,
        cache: RuleSnapshotCache,
        engine: Optional[PricingEngine] = None,
    ):
        self.pricing = PricingRepository(db)
        self.policy = PolicyRepository(db)
        self.cache = cache
        self.engine = engine or PricingEngine()

    async def factor_registry(self) -> dict[str, PricingFactorRecord]:
        factors = get_cached_factors()
        if factors is None:
            factors = await self.pricing.list_factors()
            cache_factors(factors)
        return factors

    async def rules_for(self, procedure_id: int, price_list_id: int) -> list[PricingRuleRecord]:
        rules = await self.cache.get(procedure_id, price_list_id)
        if rules is not None:
            return rules
        rules = await self.pricing.list_rules(procedure_id, price_list_id)
        await self.cache.set(procedure_id, price_list_id, rules)
        return rules

    async def load_snapshot(self, request: PricingCalculationRequest) -> PricingSnapshot:
        """Fetch everything one calculation needs."""
        contract_prices = await self.policy.list_contract_prices(
            request.provider_id, request.procedure_id
        )

        # Rules for the requested list plus any active contract override list
        price_list_ids = [request.price_list_id]
        for contract in contract_prices:
            if (
                contract.price_list_id is not None
                and contract.price_list_id not in price_list_ids
                and is_active_on(contract.effective_from, contract.effective_to, request.date)
            ):
                price_list_ids.append(contract.price_list_id)

        rules: list[PricingRuleRecord] = []
        for price_list_id in price_list_ids:
            rules.extend(await self.rules_for(request.procedure_id, price_list_id))

        point_rates = (
            await self.pricing.list_point_rates(request.insurance_degree_id)
            if request.insurance_degree_id is not None
            else []
        )

        return PricingSnapshot(
            rules=rules,
            point_rates=point_rates,
            period_discounts=await self.pricing.list_period_discounts(request.procedure_id),
            factors=await self.factor_registry(),
            procedure=await self.pricing.get_procedure(request.procedure_id),
            exclusions=await self.policy.list_exclusions(request.policy_id),
            preapproval_rules=await self.policy.list_preapproval_rules(request.policy_id),
            provider_exceptions=await self.policy.list_provider_exceptions(
                request.policy_id, request.provider_id
            ),
            contract_prices=contract_prices,
        )

    async def calculate(self, request: PricingCalculationRequest) -> PricingCalculationResponse:
        """Price one request.

        Raises:
            PricingDataError: reference data could not be loaded in time.
            PricingValidationError: a factor value does not fit its declared type.
        """
        try:
            snapshot = await asyncio.wait_for(
                self.load_snapshot(request),
                timeout=settings.lookup_timeout_seconds,
            )
        except Exception as exc:
            logger.error(
                "pricing_lookup_failed",
                procedure_id=request.procedure_id,
                price_list_id=request.price_list_id,
                error=repr(exc),
            )
            raise PricingDataError("Pricing data unavailable") from exc

        validate_request(request, snapshot.factors)
        return self.engine.calculate(request, snapshot)
