"""Policy repository — coverage inputs for a calculation."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.policy import (
    PolicyExclusion,
    PreapprovalRule,
    ProviderContractPrice,
    ProviderException,
)
from src.schemas.pricing import (
    ExclusionRecord,
    PreapprovalRuleRecord,
    ProviderContractPriceRecord,
    ProviderExceptionRecord,
)


class PolicyRepository:
    """Loads exclusions, preapproval rules and provider terms."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_exclusions(self, policy_id: Optional[int]) -> list[ExclusionRecord]:
        """Global exclusions plus those of the given policy."""
        stmt = select(PolicyExclusion)
        if policy_id is None:
            stmt = stmt.where(PolicyExclusion.is_global.is_(True))
        else:
            stmt = stmt.where(
                or_(PolicyExclusion.is_global.is_(True), PolicyExclusion.policy_id == policy_id)
            )
        result = await self.db.execute(stmt.order_by(PolicyExclusion.id))
        return [ExclusionRecord.model_validate(e) for e in result.scalars().all()]

    async def list_preapproval_rules(self, policy_id: Optional[int]) -> list[PreapprovalRuleRecord]:
        if policy_id is None:
            return []
        result = await self.db.execute(
            select(PreapprovalRule)
            .where(PreapprovalRule.policy_id == policy_id)
            .order_by(PreapprovalRule.id)
        )
        return [PreapprovalRuleRecord.model_validate(r) for r in result.scalars().all()]

    async def list_provider_exceptions(
        self,
        policy_id: Optional[int],
        provider_id: Optional[int],
    ) -> list[ProviderExceptionRecord]:
        if policy_id is None or provider_id is None:
            return []
        result = await self.db.execute(
            select(ProviderException)
            .where(
                ProviderException.policy_id == policy_id,
                ProviderException.provider_id == provider_id,
            )
            .order_by(ProviderException.id)
        )
        return [ProviderExceptionRecord.model_validate(e) for e in result.scalars().all()]

    async def list_contract_prices(
        self,
        provider_id: Optional[int],
        procedure_id: int,
    ) -> list[ProviderContractPriceRecord]:
        if provider_id is None:
            return []
        result = await self.db.execute(
            select(ProviderContractPrice)
            .where(
                ProviderContractPrice.provider_id == provider_id,
                ProviderContractPrice.procedure_id == procedure_id,
            )
            .order_by(ProviderContractPrice.id)
        )
        return [ProviderContractPriceRecord.model_validate(c) for c in result.scalars().all()]
