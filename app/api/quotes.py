"""Pricing quote endpoints with Redis caching"""
import json
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.common import ApiResponse
from app.schemas.pricing_config import PricingConfigOut, DEFAULT_PRICING_CONFIG
from app.schemas.quote import QuoteRequest, QuoteBreakdown
from app.services.pricing import calculate_quote
from app.services.pricing_cache import pricing_cache
from app.services.pricing_config import get_active_config
from app.core.config import settings
from app.core.metrics import quotes_computed
from app.core.redis import get_redis
from app.core.security import CurrentUser, get_current_user
from app.utils.serialization import dumps, payload_hash

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/pricing", tags=["pricing"])


def _generate_cache_key(req: QuoteRequest, config: PricingConfigOut) -> str:
    params = req.model_dump(mode="python", exclude={"use_dynamic_config"})
    params["config"] = f"{config.id or 'default'}:{config.version}"
    return f"price:{payload_hash(params)}"


async def load_pricing_config(req: QuoteRequest, db: AsyncSession) -> PricingConfigOut:
    if not req.use_dynamic_config:
        return DEFAULT_PRICING_CONFIG

    async def _load_from_store() -> PricingConfigOut:
        config = await get_active_config(db)
        return PricingConfigOut.model_validate(config)

    return await pricing_cache.get_or_load(_load_from_store)


async def compute_quote(req: QuoteRequest, db: AsyncSession) -> QuoteBreakdown:
    config = await load_pricing_config(req, db)
    cache_key = _generate_cache_key(req, config)

    try:
        redis = get_redis()
        cached = await redis.get(cache_key)
        if cached:
            return QuoteBreakdown.model_validate(json.loads(cached))
    except Exception as e:
        logger.warning(f"Cache retrieval failed: {e}")

    result = calculate_quote(req, config)
    quotes_computed.labels(
        vehicle_type=result.vehicle_type,
        delivery_type=result.delivery_type.value,
    ).inc()

    try:
        redis = get_redis()
        await redis.set(
            cache_key,
            dumps(result.model_dump(mode="python")),
            ex=settings.PRICE_CACHE_TTL
        )
    except Exception as e:
        logger.warning(f"Cache write failed: {e}")

    return result


@router.post("/quote", response_model=ApiResponse[QuoteBreakdown])
async def quote(
    req: QuoteRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    result = await compute_quote(req, db)
    return ApiResponse[QuoteBreakdown](data=result)


@router.post("/calculate", response_model=ApiResponse[QuoteBreakdown])
async def calculate(req: QuoteRequest, db: AsyncSession = Depends(get_db)):
    """Public website calculator; always priced with the active configuration."""
    req = req.model_copy(update={"use_dynamic_config": True})
    result = await compute_quote(req, db)
    return ApiResponse[QuoteBreakdown](data=result)
