"""
Redis caching of restaurant-admin scopes.

A restaurant admin's restaurants are read on every privileged request; the
mapping changes rarely, so it is cached with a TTL. The cache is an explicit
object injected into the resolver (one per application), and entries are
invalidated when a mapping changes.
"""
import json
import logging
from typing import Callable, FrozenSet, Optional

import redis
from sqlalchemy.orm import Session

from . import crud

logger = logging.getLogger(__name__)

KEY_PREFIX = "restaurant_admin"


class RestaurantScopeCache:
    """
    TTL cache of user ID -> restaurant IDs, backed by Redis.

    Cache errors never fail a request: reads degrade to a miss and writes are
    skipped, both logged.
    """

    def __init__(self, client: "redis.Redis", ttl: int = 300):
        self.client = client
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int = 300) -> "RestaurantScopeCache":
        return cls(redis.from_url(url, decode_responses=True), ttl=ttl)

    @staticmethod
    def key(user_id: str) -> str:
        return f"{KEY_PREFIX}:{user_id}"

    def get(self, user_id: str) -> Optional[FrozenSet[str]]:
        """
        Get cached restaurant IDs for a user.

        Returns:
            The cached set, or None on a miss or cache error
        """
        try:
            value = self.client.get(self.key(user_id))
        except redis.RedisError as e:
            logger.warning(f"Scope cache get error for {user_id}: {e}")
            return None
        if value is None:
            return None
        return frozenset(json.loads(value))

    def set(self, user_id: str, restaurant_ids: FrozenSet[str]) -> bool:
        try:
            self.client.setex(self.key(user_id), self.ttl, json.dumps(sorted(restaurant_ids)))
            return True
        except redis.RedisError as e:
            logger.warning(f"Scope cache set error for {user_id}: {e}")
            return False

    def invalidate(self, user_id: str) -> bool:
        """Drop one user's cached scopes (call after their mapping changes)."""
        try:
            self.client.delete(self.key(user_id))
            return True
        except redis.RedisError as e:
            logger.warning(f"Scope cache delete error for {user_id}: {e}")
            return False

    def clear(self) -> bool:
        try:
            keys = self.client.keys(f"{KEY_PREFIX}:*")
            if keys:
                self.client.delete(*keys)
            return True
        except redis.RedisError as e:
            logger.warning(f"Scope cache clear error: {e}")
            return False


class RestaurantScopeResolver:
    """
    Resolves which restaurants a principal administers.

    Reads through the cache when one is configured, otherwise straight from the
    store. Read-only.
    """

    def __init__(
        self,
        cache: Optional[RestaurantScopeCache] = None,
        loader: Callable[[Session, str], FrozenSet[str]] = crud.get_restaurant_ids_for_admin,
    ):
        self.cache = cache
        self.loader = loader

    def resolve(self, db: Session, user_id: str) -> FrozenSet[str]:
        if self.cache is not None:
            cached = self.cache.get(user_id)
            if cached is not None:
                return cached

        restaurant_ids = self.loader(db, user_id)
        if self.cache is not None:
            self.cache.set(user_id, restaurant_ids)
        return restaurant_ids

    def invalidate(self, user_id: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(user_id)
