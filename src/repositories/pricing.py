"""Pricing repository — reads and writes pricing reference data."""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Optional, Sequence

import structlog
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.pricing import (
    PeriodDiscount,
    PointRate,
    PriceList,
    PricingFactor,
    PricingRule,
)
from src.models.procedure import Procedure
from src.schemas.pricing import (
    CreatePeriodDiscountPayload,
    CreatePointRatePayload,
    CreatePricingFactorPayload,
    CreatePricingRulePayload,
    PeriodDiscountRecord,
    PointRateRecord,
    PricingFactorRecord,
    PricingRuleRecord,
    ProcedureSummary,
    UpdatePointRatePayload,
)

logger = structlog.get_logger()


def _allowed_values_text(value: Any) -> Optional[str]:
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value)


class PricingRepository:
    """Async data access for rules, factors, point rates and discounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _page(self, stmt: Select, page: int, size: int) -> tuple[Sequence[Any], int]:
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        total = (await self.db.execute(count_stmt)).scalar_one()
        result = await self.db.execute(stmt.offset(page * size).limit(size))
        return result.unique().scalars().all(), total

    # --- Snapshot reads ----------------------------------------------------

    async def list_rules(self, procedure_id: int, price_list_id: int) -> list[PricingRuleRecord]:
        """All rules of a pair, regardless of validity window."""
        result = await self.db.execute(
            select(PricingRule)
            .where(
                PricingRule.procedure_id == procedure_id,
                PricingRule.price_list_id == price_list_id,
            )
            .order_by(PricingRule.priority, PricingRule.id)
        )
        return [PricingRuleRecord.model_validate(r) for r in result.unique().scalars().all()]

    async def list_point_rates(self, insurance_degree_id: int) -> list[PointRateRecord]:
        result = await self.db.execute(
            select(PointRate)
            .where(PointRate.insurance_degree_id == insurance_degree_id)
            .order_by(PointRate.id)
        )
        return [PointRateRecord.model_validate(r) for r in result.unique().scalars().all()]

    async def list_period_discounts(self, procedure_id: int) -> list[PeriodDiscountRecord]:
        result = await self.db.execute(
            select(PeriodDiscount)
            .where(PeriodDiscount.procedure_id == procedure_id)
            .order_by(PeriodDiscount.id)
        )
        return [PeriodDiscountRecord.model_validate(r) for r in result.unique().scalars().all()]

    async def list_factors(self) -> dict[str, PricingFactorRecord]:
        result = await self.db.execute(select(PricingFactor).order_by(PricingFactor.key))
        return {f.key: PricingFactorRecord.model_validate(f) for f in result.scalars().all()}

    async def get_procedure(self, procedure_id: int) -> Optional[ProcedureSummary]:
        procedure = await self.db.get(Procedure, procedure_id)
        return ProcedureSummary.model_validate(procedure) if procedure else None

    # --- Factors -----------------------------------------------------------

    async def page_factors(self, page: int, size: int) -> tuple[Sequence[PricingFactor], int]:
        return await self._page(select(PricingFactor).order_by(PricingFactor.id), page, size)

    async def create_factor(self, data: CreatePricingFactorPayload) -> PricingFactor:
        factor = PricingFactor(
            key=data.key.strip(),
            name_en=data.name_en.strip(),
            name_ar=(data.name_ar or "").strip() or None,
            data_type=data.data_type.strip().upper(),
            allowed_values=_allowed_values_text(data.allowed_values),
        )
        self.db.add(factor)
        await self.db.flush()
        logger.info("pricing_factor_created", factor_id=factor.id, key=factor.key)
        return factor

    async def factor_key_exists(self, key: str) -> bool:
        result = await self.db.execute(select(PricingFactor.id).where(PricingFactor.key == key))
        return result.scalar_one_or_none() is not None

    # --- Price lists -------------------------------------------------------

    async def page_price_lists(
        self,
        page: int,
        size: int,
        code: Optional[str] = None,
        provider_type: Optional[str] = None,
        name_en: Optional[str] = None,
    ) -> tuple[Sequence[PriceList], int]:
        stmt = select(PriceList)
        if code:
            stmt = stmt.where(PriceList.code.ilike(f"%{code}%"))
        if provider_type:
            stmt = stmt.where(PriceList.provider_type == provider_type)
        if name_en:
            stmt = stmt.where(PriceList.name_en.ilike(f"%{name_en}%"))
        return await self._page(stmt.order_by(PriceList.id), page, size)

    # --- Rules -------------------------------------------------------------

    async def page_rules(
        self,
        page: int,
        size: int,
        procedure_id: Optional[int] = None,
        price_list_id: Optional[int] = None,
    ) -> tuple[Sequence[PricingRule], int]:
        stmt = select(PricingRule)
        if procedure_id is not None:
            stmt = stmt.where(PricingRule.procedure_id == procedure_id)
        if price_list_id is not None:
            stmt = stmt.where(PricingRule.price_list_id == price_list_id)
        stmt = stmt.order_by(PricingRule.procedure_id, PricingRule.priority, PricingRule.id)
        return await self._page(stmt, page, size)

    async def get_rule(self, rule_id: int) -> Optional[PricingRule]:
        return await self.db.get(PricingRule, rule_id)

    async def create_rule(self, data: CreatePricingRulePayload) -> PricingRule:
        rule = PricingRule(
            procedure_id=data.procedure_id,
            price_list_id=data.price_list_id,
            priority=data.priority,
            rule_json=data.rule_json(),
            valid_from=data.valid_from,
            valid_to=data.valid_to,
        )
        self.db.add(rule)
        await self.db.flush()
        await self.db.refresh(rule, ["procedure", "price_list"])
        logger.info(
            "pricing_rule_created",
            rule_id=rule.id,
            procedure_id=rule.procedure_id,
            price_list_id=rule.price_list_id,
            priority=rule.priority,
        )
        return rule

    async def update_rule(self, rule: PricingRule, data: CreatePricingRulePayload) -> PricingRule:
        rule.procedure_id = data.procedure_id
        rule.price_list_id = data.price_list_id
        rule.priority = data.priority
        rule.rule_json = data.rule_json()
        rule.valid_from = data.valid_from
        rule.valid_to = data.valid_to
        await self.db.flush()
        await self.db.refresh(rule, ["procedure", "price_list"])
        logger.info("pricing_rule_updated", rule_id=rule.id)
        return rule

    async def delete_rule(self, rule: PricingRule) -> None:
        await self.db.delete(rule)
        await self.db.flush()
        logger.info("pricing_rule_deleted", rule_id=rule.id)

    # --- Point rates -------------------------------------------------------

    async def page_point_rates(
        self,
        page: int,
        size: int,
        insurance_degree_id: Optional[int] = None,
        valid_on: Optional[date] = None,
    ) -> tuple[Sequence[PointRate], int]:
        stmt = select(PointRate)
        if insurance_degree_id is not None:
            stmt = stmt.where(PointRate.insurance_degree_id == insurance_degree_id)
        if valid_on is not None:
            stmt = stmt.where(
                PointRate.valid_from <= valid_on,
                (PointRate.valid_to.is_(None)) | (PointRate.valid_to > valid_on),
            )
        return await self._page(stmt.order_by(PointRate.valid_from.desc(), PointRate.id), page, size)

    async def get_point_rate(self, rate_id: int) -> Optional[PointRate]:
        return await self.db.get(PointRate, rate_id)

    async def create_point_rate(self, data: CreatePointRatePayload) -> PointRate:
        rate = PointRate(
            insurance_degree_id=data.insurance_degree_id,
            point_price=data.point_price,
            min_point_price=data.min_point_price,
            max_point_price=data.max_point_price,
            result_min=data.result_min,
            result_max=data.result_max,
            valid_from=data.valid_from,
            valid_to=data.valid_to,
            context_json=data.context,
            created_by=data.created_by,
        )
        self.db.add(rate)
        await self.db.flush()
        await self.db.refresh(rate)
        logger.info(
            "point_rate_created",
            rate_id=rate.id,
            insurance_degree_id=rate.insurance_degree_id,
            point_price=str(rate.point_price),
        )
        return rate

    async def update_point_rate(self, rate: PointRate, data: UpdatePointRatePayload) -> PointRate:
        changes = data.model_dump(exclude_unset=True)
        if "context" in changes:
            rate.context_json = changes.pop("context")
        if "created_by" in changes:
            rate.updated_by = changes.pop("created_by")
        for name, value in changes.items():
            setattr(rate, name, value)
        await self.db.flush()
        await self.db.refresh(rate)
        logger.info("point_rate_updated", rate_id=rate.id, fields=sorted(changes))
        return rate

    # --- Period discounts --------------------------------------------------

    async def page_period_discounts(
        self,
        page: int,
        size: int,
        procedure_id: Optional[int] = None,
        price_list_id: Optional[int] = None,
    ) -> tuple[Sequence[PeriodDiscount], int]:
        stmt = select(PeriodDiscount)
        if procedure_id is not None:
            stmt = stmt.where(PeriodDiscount.procedure_id == procedure_id)
        if price_list_id is not None:
            stmt = stmt.where(
                (PeriodDiscount.price_list_id == price_list_id)
                | (PeriodDiscount.price_list_id.is_(None))
            )
        return await self._page(stmt.order_by(PeriodDiscount.id), page, size)

    async def create_period_discount(self, data: CreatePeriodDiscountPayload) -> PeriodDiscount:
        discount = PeriodDiscount(
            procedure_id=data.procedure_id,
            price_list_id=data.price_list_id,
            period=data.period,
            period_unit=data.period_unit.strip().upper(),
            discount_pct=data.discount_pct,
            valid_from=data.valid_from,
            valid_to=data.valid_to,
            created_by=data.created_by,
        )
        self.db.add(discount)
        await self.db.flush()
        await self.db.refresh(discount, ["procedure"])
        logger.info(
            "period_discount_created",
            discount_id=discount.id,
            procedure_id=discount.procedure_id,
            pct=str(discount.discount_pct),
        )
        return discount
