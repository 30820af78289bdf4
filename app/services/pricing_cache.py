"""Single-entry cache for the active pricing configuration.

The snapshot lives in Redis so every service instance sees the same entry and
an admin invalidation takes effect everywhere. Redis is an optimization only:
any failure falls through to the loader.
"""
import json
import logging
import time
from typing import Awaitable, Callable, Optional

from app.core.config import settings
from app.core.metrics import cache_hits, cache_misses, cache_errors
from app.core.redis import get_redis
from app.schemas.pricing_config import PricingConfigOut
from app.utils.serialization import dumps

logger = logging.getLogger(__name__)

ACTIVE_CONFIG_KEY = "pricing:config:active"

Loader = Callable[[], Awaitable[PricingConfigOut]]


def dump_snapshot(config: PricingConfigOut) -> str:
    return dumps(config.model_dump(mode="python"))


def load_snapshot(raw) -> PricingConfigOut:
    return PricingConfigOut.model_validate(json.loads(raw))


class PricingCache:
    def __init__(
        self,
        key: str = ACTIVE_CONFIG_KEY,
        ttl: Optional[int] = None,
        redis_getter=get_redis,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.key = key
        self._ttl = ttl
        self._redis_getter = redis_getter
        self._clock = clock
        self._bypass_until = 0.0

    @property
    def ttl(self) -> int:
        return self._ttl if self._ttl is not None else settings.PRICING_CONFIG_CACHE_TTL

    def _bypassed(self) -> bool:
        return self._clock() < self._bypass_until

    async def get_or_load(self, loader: Loader) -> PricingConfigOut:
        if self._bypassed():
            return await loader()

        try:
            redis = self._redis_getter()
            cached = await redis.get(self.key)
        except Exception as e:
            cache_errors.labels(operation="get").inc()
            logger.warning(f"Pricing config cache read failed, loading from store: {e}")
            return await loader()

        if cached:
            try:
                config = load_snapshot(cached)
                cache_hits.labels(cache_key=self.key).inc()
                return config
            except Exception as e:
                cache_errors.labels(operation="decode").inc()
                logger.warning(f"Discarding unreadable pricing config cache entry: {e}")

        cache_misses.labels(cache_key=self.key).inc()
        config = await loader()

        try:
            await redis.set(self.key, dump_snapshot(config), ex=self.ttl)
        except Exception as e:
            cache_errors.labels(operation="set").inc()
            logger.warning(f"Pricing config cache write failed: {e}")
        return config

    async def invalidate(self) -> None:
        try:
            redis = self._redis_getter()
            await redis.delete(self.key)
            self._bypass_until = 0.0
            logger.info("Pricing config cache invalidated")
        except Exception as e:
            # A stale entry may survive in Redis until its TTL runs out; skip it until then.
            self._bypass_until = self._clock() + self.ttl
            cache_errors.labels(operation="delete").inc()
            logger.error(f"Pricing config cache invalidation failed, bypassing cache for {self.ttl}s: {e}")


pricing_cache = PricingCache()
