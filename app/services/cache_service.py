"""
Cache for the public checkout configuration (GET /checkout/validate).

Every key carries the tenant id: campaign display ids repeat across tenants.
Backends are Redis when REDIS_URL is set, else a process-local dict.

Usage:
    cache = get_cache()
    payload = await cache.get_checkout_config(tenant_id, campaign_display_id, offer_display_id)
    await cache.set_checkout_config(tenant_id, campaign_display_id, offer_display_id, payload)
    await cache.invalidate_campaign(tenant_id, campaign_display_id)
"""
import json
from typing import Any, Optional, Dict
from datetime import datetime, timedelta, timezone
from abc import ABC, abstractmethod
import asyncio
import logging

import redis.asyncio as redis

from app.config import settings

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Key/value store holding JSON-serializable values with a TTL."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Value for key, or None when missing or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Store value for ttl seconds."""
        pass

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        """Remove keys matching a trailing-* glob; returns the number removed."""
        pass


class InMemoryCache(CacheBackend):
    """
    Process-local TTL cache used when no REDIS_URL is configured.

    Not shared across server instances; use Redis when running more than one.
    """

    def __init__(self):
        self._cache: Dict[str, tuple[Any, datetime]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            if key in self._cache:
                value, expires_at = self._cache[key]
                if expires_at > datetime.now(timezone.utc):
                    return value
                del self._cache[key]
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        async with self._lock:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
            self._cache[key] = (value, expires_at)
            return True

    async def clear_pattern(self, pattern: str) -> int:
        async with self._lock:
            prefix = pattern.rstrip('*')
            matched = [k for k in self._cache if k.startswith(prefix)]
            for key in matched:
                del self._cache[key]
            return len(matched)


class RedisCache(CacheBackend):
    """
    Redis backend; values are stored as JSON strings.

    Redis failures degrade to cache misses; checkout keeps working off the
    database.
    """

    def __init__(self, redis_url: str):
        self._client = redis.from_url(redis_url, decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self._client.get(key)
            return json.loads(value) if value else None
        except redis.RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        try:
            await self._client.set(key, json.dumps(value), ex=ttl)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis set failed for {key}: {e}")
            return False

    async def clear_pattern(self, pattern: str) -> int:
        try:
            deleted = 0
            async for key in self._client.scan_iter(match=pattern, count=100):
                deleted += await self._client.delete(key)
            return deleted
        except redis.RedisError as e:
            logger.warning(f"Redis clear_pattern failed for {pattern}: {e}")
            return 0


class CacheService:
    """
    Tenant-scoped checkout cache.

    Cache keys follow the format:

        {namespace}:{tenant_id}:{resource_type}:{identifier}

    Example:
        checkout:3f2c...:validate:12:3
    """

    def __init__(self, backend: CacheBackend, namespace: str = "checkout"):
        self._backend = backend
        self._namespace = namespace

    def _make_key(self, tenant_id: str, key: str) -> str:
        """<namespace>:<tenant>:<key>"""
        if not tenant_id:
            logger.warning(f"Cache key created without tenant_id: {key}")
        return f"{self._namespace}:{tenant_id}:{key}"

    async def get(self, tenant_id: str, key: str) -> Optional[Any]:
        return await self._backend.get(self._make_key(tenant_id, key))

    async def set(self, tenant_id: str, key: str, value: Any, ttl: int = 3600) -> bool:
        return await self._backend.set(self._make_key(tenant_id, key), value, ttl)

    async def clear_tenant_cache(self, tenant_id: str) -> int:
        """Drop every cached entry of one tenant."""
        return await self._backend.clear_pattern(f"{self._namespace}:{tenant_id}:*")

    # ==================== Checkout Config Cache ====================

    @staticmethod
    def _checkout_config_key(campaign_display_id: int, offer_display_id: int) -> str:
        return f"validate:{campaign_display_id}:{offer_display_id}"

    async def get_checkout_config(
        self,
        tenant_id: str,
        campaign_display_id: int,
        offer_display_id: int,
    ) -> Optional[dict]:
        """Get cached validate payload for a campaign offer."""
        return await self.get(tenant_id, self._checkout_config_key(campaign_display_id, offer_display_id))

    async def set_checkout_config(
        self,
        tenant_id: str,
        campaign_display_id: int,
        offer_display_id: int,
        data: dict,
        ttl: Optional[int] = None,
    ) -> bool:
        """Cache a JSON-mode validate payload."""
        ttl = ttl or settings.CHECKOUT_CONFIG_CACHE_TTL
        return await self.set(
            tenant_id, self._checkout_config_key(campaign_display_id, offer_display_id), data, ttl
        )

    async def invalidate_campaign(self, tenant_id: str, campaign_display_id: int) -> int:
        """Drop cached validate payloads for every offer of a campaign."""
        return await self._backend.clear_pattern(
            self._make_key(tenant_id, f"validate:{campaign_display_id}:*")
        )


# Singleton instance
_cache_instance: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Process-wide CacheService (redis when REDIS_URL is set)."""
    global _cache_instance

    if _cache_instance is None:
        if settings.REDIS_URL and settings.CACHE_ENABLED:
            backend = RedisCache(settings.REDIS_URL)
            logger.info("Cache initialized with Redis backend")
        else:
            backend = InMemoryCache()
            logger.info("Cache initialized with in-memory backend")

        _cache_instance = CacheService(backend)

    return _cache_instance
