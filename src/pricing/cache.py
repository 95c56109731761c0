"""Rule snapshot cache (Redis) and factor registry cache (in-process).

Cached rule lists are never pre-filtered by date: validity windows are
re-applied on every calculation against the request date, so a cached
entry can only be stale through a missed invalidation, never through the
passage of time.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis
import structlog
from cachetools import TTLCache
from pydantic import TypeAdapter
from redis.exceptions import RedisError

from src.config import settings
from src.schemas.pricing import PricingFactorRecord, PricingRuleRecord

logger = structlog.get_logger()

_rules_adapter = TypeAdapter(list[PricingRuleRecord])

# Single-entry cache for the whole factor registry
_factor_cache: TTLCache[str, dict[str, PricingFactorRecord]] = TTLCache(
    maxsize=1, ttl=settings.factor_cache_ttl_seconds
)
_FACTORS_KEY = "factors"


class RuleSnapshotCache:
    """Caches all rules of a (procedure, price list) pair in Redis with TTL."""

    def __init__(self, redis_client: redis.Redis, ttl: Optional[int] = None):
        self.redis = redis_client
        self.ttl = ttl or settings.rule_cache_ttl_seconds

    def _key(self, procedure_id: int, price_list_id: int) -> str:
        return f"pricing:rules:{procedure_id}:{price_list_id}"

    async def get(self, procedure_id: int, price_list_id: int) -> Optional[list[PricingRuleRecord]]:
        """Cached rules, or None on a miss. Redis errors count as a miss."""
        try:
            data = await self.redis.get(self._key(procedure_id, price_list_id))
        except RedisError as exc:
            logger.warning(
                "rule_cache_read_failed",
                procedure_id=procedure_id,
                price_list_id=price_list_id,
                error=str(exc),
            )
            return None
        if data:
            return _rules_adapter.validate_json(data)
        return None

    async def set(
        self,
        procedure_id: int,
        price_list_id: int,
        rules: list[PricingRuleRecord],
    ) -> None:
        try:
            await self.redis.setex(
                self._key(procedure_id, price_list_id),
                self.ttl,
                _rules_adapter.dump_json(rules, by_alias=True),
            )
        except RedisError as exc:
            logger.warning(
                "rule_cache_write_failed",
                procedure_id=procedure_id,
                price_list_id=price_list_id,
                error=str(exc),
            )
            return
        logger.debug(
            "rule_cache_stored",
            procedure_id=procedure_id,
            price_list_id=price_list_id,
            rules=len(rules),
        )

    async def invalidate(self, procedure_id: int, price_list_id: int) -> None:
        """Drop the cached pair. Errors propagate so the rule write rolls back."""
        await self.redis.delete(self._key(procedure_id, price_list_id))
        logger.info(
            "rule_cache_invalidated",
            procedure_id=procedure_id,
            price_list_id=price_list_id,
        )


def get_cached_factors() -> Optional[dict[str, PricingFactorRecord]]:
    return _factor_cache.get(_FACTORS_KEY)


def cache_factors(factors: dict[str, PricingFactorRecord]) -> None:
    _factor_cache[_FACTORS_KEY] = factors


def clear_factor_cache() -> None:
    """Clear the factor registry; called whenever a factor is written."""
    _factor_cache.clear()
