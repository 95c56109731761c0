"""Pricing API — calculation plus the pricing administration endpoints."""

from typing import Optional

import redis.asyncio as redis
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.pricing.cache import RuleSnapshotCache, clear_factor_cache, get_cached_factors
from src.pricing.conditions import LISTED_TYPES, parse_factor_type
from src.pricing.errors import PricingValidationError, RuleConfigError
from src.pricing.rules import compile_rule
from src.pricing.service import PricingService
from src.redis_client import get_redis
from src.repositories.pricing import PricingRepository
from src.schemas.calculation import PricingCalculationRequest
from src.schemas.common import Page
from src.schemas.pricing import (
    CreatePeriodDiscountPayload,
    CreatePricingFactorPayload,
    CreatePricingRulePayload,
    PeriodDiscountRecord,
    PriceListSummary,
    PricingFactorRecord,
    PricingRuleRecord,
    PricingRuleResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/pricing", tags=["pricing"])


def get_rule_cache(redis_client: redis.Redis = Depends(get_redis)) -> RuleSnapshotCache:
    return RuleSnapshotCache(redis_client)


def get_pricing_service(
    db: AsyncSession = Depends(get_db),
    cache: RuleSnapshotCache = Depends(get_rule_cache),
) -> PricingService:
    return PricingService(db, cache)


def _page_dump(page: Page) -> dict:
    return page.model_dump(by_alias=True, mode="json")


async def _check_rule(repo: PricingRepository, data: CreatePricingRulePayload) -> None:
    """Compile the rule against the live registry; reject what the engine would skip."""
    registry = get_cached_factors()
    if registry is None:
        registry = await repo.list_factors()
    if data.valid_to is not None and data.valid_to <= data.valid_from:
        raise PricingValidationError(
            "Invalid pricing rule",
            [{"field": "validTo", "message": "must be after validFrom"}],
        )
    record = PricingRuleRecord(
        id=0,
        procedure_id=data.procedure_id,
        price_list_id=data.price_list_id,
        priority=data.priority,
        rule_json=data.rule_json(),
        valid_from=data.valid_from,
        valid_to=data.valid_to,
    )
    try:
        compile_rule(record, registry)
    except RuleConfigError as exc:
        field = (exc.condition or {}).get("factor") or "ruleJson"
        logger.info("rule_write_rejected", procedure_id=data.procedure_id, reason=exc.message)
        raise PricingValidationError(
            "Invalid pricing rule",
            [{"field": str(field), "message": exc.message}],
        ) from exc


# --- Calculation -------------------------------------------------------------


@router.post("/calculate")
async def calculate_price(
    request: PricingCalculationRequest,
    service: PricingService = Depends(get_pricing_service),
) -> JSONResponse:
    """Resolve the price of one procedure under one price list.

    `finalPrice` is omitted from the body when the procedure is not covered.
    """
    response = await service.calculate(request)
    return JSONResponse(response.to_wire())


# --- Pricing factors ---------------------------------------------------------


@router.get("/pricing-factors")
async def list_pricing_factors(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await PricingRepository(db).page_factors(page, size)
    records = [PricingFactorRecord.model_validate(f) for f in items]
    return _page_dump(Page[PricingFactorRecord].build(records, total, page, size))


@router.post("/pricing-factors", status_code=201)
async def create_pricing_factor(
    data: CreatePricingFactorPayload,
    db: AsyncSession = Depends(get_db),
) -> dict:
    data_type = parse_factor_type(data.data_type)
    if data_type is None:
        raise PricingValidationError(
            "Invalid pricing factor",
            [{"field": "dataType", "message": f"unsupported data type {data.data_type!r}"}],
        )
    if data.allowed_values not in (None, "", []) and data_type not in LISTED_TYPES:
        raise PricingValidationError(
            "Invalid pricing factor",
            [{"field": "allowedValues", "message": f"not allowed for {data_type.value} factors"}],
        )
    repo = PricingRepository(db)
    if await repo.factor_key_exists(data.key.strip()):
        raise HTTPException(status_code=409, detail=f"Pricing factor {data.key!r} already exists")

    factor = await repo.create_factor(data)
    clear_factor_cache()
    return PricingFactorRecord.model_validate(factor).model_dump(by_alias=True, mode="json")


# --- Price lists -------------------------------------------------------------


@router.get("/price-lists")
async def list_price_lists(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=500),
    code: Optional[str] = Query(None),
    provider_type: Optional[str] = Query(None, alias="providerType"),
    name_en: Optional[str] = Query(None, alias="nameEn"),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await PricingRepository(db).page_price_lists(
        page, size, code=code, provider_type=provider_type, name_en=name_en
    )
    records = [PriceListSummary.model_validate(p) for p in items]
    return _page_dump(Page[PriceListSummary].build(records, total, page, size))


# --- Pricing rules -----------------------------------------------------------


@router.get("/rules")
async def list_pricing_rules(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=500),
    procedure_id: Optional[int] = Query(None, alias="procedureId"),
    price_list_id: Optional[int] = Query(None, alias="priceListId"),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await PricingRepository(db).page_rules(
        page, size, procedure_id=procedure_id, price_list_id=price_list_id
    )
    records = [PricingRuleResponse.from_rule(r) for r in items]
    return _page_dump(Page[PricingRuleResponse].build(records, total, page, size))


@router.post("/rules", status_code=201)
async def create_pricing_rule(
    data: CreatePricingRulePayload,
    db: AsyncSession = Depends(get_db),
    cache: RuleSnapshotCache = Depends(get_rule_cache),
) -> dict:
    repo = PricingRepository(db)
    await _check_rule(repo, data)

    rule = await repo.create_rule(data)
    await db.commit()
    await cache.invalidate(rule.procedure_id, rule.price_list_id)
    return PricingRuleResponse.from_rule(rule).model_dump(by_alias=True, mode="json")


@router.put("/rules/{rule_id}")
async def update_pricing_rule(
    rule_id: int,
    data: CreatePricingRulePayload,
    db: AsyncSession = Depends(get_db),
    cache: RuleSnapshotCache = Depends(get_rule_cache),
) -> dict:
    repo = PricingRepository(db)
    rule = await repo.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Pricing rule {rule_id} not found")
    await _check_rule(repo, data)

    old_pair = (rule.procedure_id, rule.price_list_id)
    rule = await repo.update_rule(rule, data)
    await db.commit()
    await cache.invalidate(*old_pair)
    if (rule.procedure_id, rule.price_list_id) != old_pair:
        await cache.invalidate(rule.procedure_id, rule.price_list_id)
    return PricingRuleResponse.from_rule(rule).model_dump(by_alias=True, mode="json")


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_pricing_rule(
    rule_id: int,
    db: AsyncSession = Depends(get_db),
    cache: RuleSnapshotCache = Depends(get_rule_cache),
) -> Response:
    repo = PricingRepository(db)
    rule = await repo.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Pricing rule {rule_id} not found")

    procedure_id, price_list_id = rule.procedure_id, rule.price_list_id
    await repo.delete_rule(rule)
    await db.commit()
    await cache.invalidate(procedure_id, price_list_id)
    return Response(status_code=204)


# --- Period discounts --------------------------------------------------------


@router.get("/period-discounts")
async def list_period_discounts(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=500),
    procedure_id: Optional[int] = Query(None, alias="procedureId"),
    price_list_id: Optional[int] = Query(None, alias="priceListId"),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await PricingRepository(db).page_period_discounts(
        page, size, procedure_id=procedure_id, price_list_id=price_list_id
    )
    records = [PeriodDiscountRecord.model_validate(d) for d in items]
    return _page_dump(Page[PeriodDiscountRecord].build(records, total, page, size))


@router.post("/period-discounts", status_code=201)
async def create_period_discount(
    data: CreatePeriodDiscountPayload,
    db: AsyncSession = Depends(get_db),
) -> dict:
    if data.valid_to is not None and data.valid_to <= data.valid_from:
        raise PricingValidationError(
            "Invalid period discount",
            [{"field": "validTo", "message": "must be after validFrom"}],
        )
    discount = await PricingRepository(db).create_period_discount(data)
    return PeriodDiscountRecord.model_validate(discount).model_dump(by_alias=True, mode="json")
