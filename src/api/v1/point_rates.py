"""Point rates API — currency value of one point per insurance degree."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.pricing.errors import PricingValidationError
from src.repositories.pricing import PricingRepository
from src.schemas.common import Page
from src.schemas.pricing import CreatePointRatePayload, PointRateRecord, UpdatePointRatePayload

router = APIRouter(prefix="/api/point-rates", tags=["point-rates"])


def _check_window(valid_from: Optional[date], valid_to: Optional[date]) -> None:
    if valid_from is not None and valid_to is not None and valid_to <= valid_from:
        raise PricingValidationError(
            "Invalid point rate",
            [{"field": "validTo", "message": "must be after validFrom"}],
        )


def _dump(rate) -> dict:
    return PointRateRecord.model_validate(rate).model_dump(by_alias=True, mode="json")


@router.get("")
async def list_point_rates(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=500),
    insurance_degree_id: Optional[int] = Query(None, alias="insuranceDegreeId"),
    valid_on: Optional[date] = Query(None, alias="validOn"),
    # point rates are not scoped to a price list; the admin client still sends one
    price_list_id: Optional[int] = Query(None, alias="priceListId"),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await PricingRepository(db).page_point_rates(
        page, size, insurance_degree_id=insurance_degree_id, valid_on=valid_on
    )
    records = [PointRateRecord.model_validate(r) for r in items]
    return Page[PointRateRecord].build(records, total, page, size).model_dump(
        by_alias=True, mode="json"
    )


@router.get("/{rate_id}")
async def get_point_rate(rate_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    rate = await PricingRepository(db).get_point_rate(rate_id)
    if rate is None:
        raise HTTPException(status_code=404, detail=f"Point rate {rate_id} not found")
    return _dump(rate)


@router.post("", status_code=201)
async def create_point_rate(
    data: CreatePointRatePayload,
    db: AsyncSession = Depends(get_db),
) -> dict:
    _check_window(data.valid_from, data.valid_to)
    rate = await PricingRepository(db).create_point_rate(data)
    return _dump(rate)


@router.api_route("/{rate_id}", methods=["PUT", "PATCH"])
async def update_point_rate(
    rate_id: int,
    data: UpdatePointRatePayload,
    db: AsyncSession = Depends(get_db),
) -> dict:
    repo = PricingRepository(db)
    rate = await repo.get_point_rate(rate_id)
    if rate is None:
        raise HTTPException(status_code=404, detail=f"Point rate {rate_id} not found")

    _check_window(data.valid_from or rate.valid_from, data.valid_to or rate.valid_to)
    rate = await repo.update_point_rate(rate, data)
    return _dump(rate)
