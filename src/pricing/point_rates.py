"""Point rate resolver — converts abstract points into currency."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

import structlog

from src.schemas.pricing import PointRateRecord, is_active_on

logger = structlog.get_logger()

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _dec(value: Optional[float]) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def clamp(value: Decimal, low: Optional[Decimal], high: Optional[Decimal]) -> Decimal:
    if low is not None and value < low:
        value = low
    if high is not None and value > high:
        value = high
    return value


def _recency(rate: PointRateRecord) -> tuple[datetime, int]:
    stamp = rate.updated_at or rate.created_at or _EPOCH
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp, rate.id


def resolve_point_rate(
    rates: Sequence[PointRateRecord],
    insurance_degree_id: Optional[int],
    on: date,
) -> Optional[PointRateRecord]:
    """Return the point rate active for a degree on a date.

    Overlapping windows are a data error: the most recently updated record
    wins (then created, then highest id) and the overlap is logged.
    """
    if insurance_degree_id is None:
        return None

    active = [
        rate
        for rate in rates
        if rate.insurance_degree is not None
        and rate.insurance_degree.id == insurance_degree_id
        and is_active_on(rate.valid_from, rate.valid_to, on)
    ]
    if not active:
        return None

    active.sort(key=_recency, reverse=True)
    if len(active) > 1:
        logger.warning(
            "point_rate_overlap",
            insurance_degree_id=insurance_degree_id,
            date=on.isoformat(),
            rate_ids=[rate.id for rate in active],
            selected=active[0].id,
        )
    return active[0]


def effective_point_price(rate: PointRateRecord) -> Decimal:
    """Per-point price after the min/max point price clamp."""
    return clamp(
        Decimal(str(rate.point_price)),
        _dec(rate.min_point_price),
        _dec(rate.max_point_price),
    )


def convert_points(points: Decimal, rate: PointRateRecord) -> Decimal:
    """points × effective point price, clamped to the rate's result bounds."""
    amount = points * effective_point_price(rate)
    return clamp(amount, _dec(rate.result_min), _dec(rate.result_max))
