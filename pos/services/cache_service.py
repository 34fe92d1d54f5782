"""
Redis cache for the POS read views (inventory, low stock, sales).

Views are memoized under {prefix}:{view}:{key}. Every write drops all of
them, since a sale moves stock and revenue at once. When redis is disabled
or unreachable the cache turns itself off and loaders run every time.
"""

import logging
import json
from typing import Any, Optional, Callable, Dict
from datetime import datetime, date
from decimal import Decimal

import redis
from redis.exceptions import RedisError
from flask import Flask

logger = logging.getLogger(__name__)

VIEW_MODULES = ('inventory', 'low_stock', 'sales')

_DECIMAL_TAG = '__decimal__'


def dumps(value: Any) -> str:
    """JSON with Decimals tagged so they come back as Decimals, not floats."""
    def default(obj):
        if isinstance(obj, Decimal):
            return {_DECIMAL_TAG: str(obj)}
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        raise TypeError(f"Cannot cache a {type(obj).__name__}")
    return json.dumps(value, default=default)


def loads(raw: str) -> Any:
    def object_hook(obj: Dict[str, Any]):
        if _DECIMAL_TAG in obj:
            return Decimal(obj[_DECIMAL_TAG])
        return obj
    return json.loads(raw, object_hook=object_hook)


class CacheService:
    """Cache-aside store for read views, with one TTL per view."""

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self.prefix = 'pos'
        self.ttls: Dict[str, int] = {}
        self.default_ttl = 60
        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.prefix = app.config.get('CACHE_KEY_PREFIX', 'pos')
        self.default_ttl = app.config.get('CACHE_DEFAULT_TTL', 60)
        inventory_ttl = app.config.get('CACHE_INVENTORY_TTL', self.default_ttl)
        self.ttls = {
            'inventory': inventory_ttl,
            'low_stock': inventory_ttl,
            'sales': app.config.get('CACHE_SALES_TTL', self.default_ttl),
        }

        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] View cache disabled by config")
            return

        redis_url = app.config.get('REDIS_URL', 'redis://localhost:6379/0')
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=3,
            socket_timeout=3,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        try:
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unreachable at {redis_url} ({e}); view cache disabled")
            return
        self.client = client
        logger.info(f"[CACHE] Redis connected: {redis_url}")

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def key(self, module: str, key: str) -> str:
        return f"{self.prefix}:{module}:{key}"

    def get(self, module: str, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = self.client.get(self.key(module, key))
            return None if raw is None else loads(raw)
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Read of {module}:{key} failed: {e}")
            return None

    def set(self, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        ttl = ttl or self.ttls.get(module, self.default_ttl)
        try:
            self.client.setex(self.key(module, key), ttl, dumps(value))
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Write of {module}:{key} failed: {e}")
            return False
        return True

    def memoize(self, module: str, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        cached = self.get(module, key)
        if cached is not None:
            return cached
        value = loader()
        self.set(module, key, value, ttl)
        return value

    def invalidate(self, module: str) -> int:
        """Drop every cached key of one view."""
        if not self.enabled:
            return 0
        removed = 0
        try:
            batch = []
            for cache_key in self.client.scan_iter(match=self.key(module, '*'), count=100):
                batch.append(cache_key)
                if len(batch) == 100:
                    removed += self.client.delete(*batch)
                    batch = []
            if batch:
                removed += self.client.delete(*batch)
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidation of {module} failed: {e}")
        return removed

    def invalidate_views(self) -> int:
        removed = sum(self.invalidate(module) for module in VIEW_MODULES)
        if removed:
            logger.info(f"[CACHE] Dropped {removed} cached views")
        return removed


def init_cache(app: Flask) -> CacheService:
    cache = CacheService(app)
    app.extensions['cache'] = cache
    return cache
