"""Tests for the restaurant scope cache and resolver."""

import redis

from campus_orders.cache import RestaurantScopeCache, RestaurantScopeResolver


class FakeRedis:
    """Dict-backed stand-in for the handful of Redis calls the cache makes."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    def keys(self, pattern):
        prefix = pattern.rstrip("*")
        return [key for key in self.store if key.startswith(prefix)]


class DownRedis:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("Connection refused")
        return fail


class CountingLoader:
    def __init__(self, mapping):
        self.mapping = mapping
        self.calls = 0

    def __call__(self, db, user_id):
        self.calls += 1
        return frozenset(self.mapping.get(user_id, ()))


class TestRestaurantScopeCache:
    def test_set_get_invalidate(self):
        client = FakeRedis()
        cache = RestaurantScopeCache(client, ttl=120)

        assert cache.get("manager-1") is None
        assert cache.set("manager-1", frozenset({"rest-2", "rest-1"}))
        assert client.ttls["restaurant_admin:manager-1"] == 120
        assert cache.get("manager-1") == {"rest-1", "rest-2"}

        cache.invalidate("manager-1")
        assert cache.get("manager-1") is None

    def test_empty_scope_set_is_cached(self):
        cache = RestaurantScopeCache(FakeRedis())
        cache.set("manager-2", frozenset())
        assert cache.get("manager-2") == frozenset()

    def test_clear(self):
        client = FakeRedis()
        client.store["other:key"] = "x"
        cache = RestaurantScopeCache(client)
        cache.set("a", frozenset({"rest-1"}))
        cache.set("b", frozenset({"rest-2"}))

        assert cache.clear()
        assert list(client.store) == ["other:key"]

    def test_errors_degrade_to_miss(self):
        cache = RestaurantScopeCache(DownRedis())
        assert cache.get("manager-1") is None
        assert cache.set("manager-1", frozenset({"rest-1"})) is False
        assert cache.invalidate("manager-1") is False
        assert cache.clear() is False


class TestRestaurantScopeResolver:
    def test_reads_through_cache(self):
        loader = CountingLoader({"manager-1": ["rest-1"]})
        resolver = RestaurantScopeResolver(RestaurantScopeCache(FakeRedis()), loader=loader)

        assert resolver.resolve(None, "manager-1") == {"rest-1"}
        assert resolver.resolve(None, "manager-1") == {"rest-1"}
        assert loader.calls == 1

    def test_invalidate_forces_reload(self):
        loader = CountingLoader({"manager-1": ["rest-1"]})
        resolver = RestaurantScopeResolver(RestaurantScopeCache(FakeRedis()), loader=loader)
        resolver.resolve(None, "manager-1")

        loader.mapping["manager-1"] = ["rest-1", "rest-3"]
        resolver.invalidate("manager-1")

        assert resolver.resolve(None, "manager-1") == {"rest-1", "rest-3"}
        assert loader.calls == 2

    def test_without_cache_always_loads(self):
        loader = CountingLoader({"manager-1": ["rest-1"]})
        resolver = RestaurantScopeResolver(loader=loader)
        resolver.resolve(None, "manager-1")
        resolver.resolve(None, "manager-1")
        resolver.invalidate("manager-1")
        assert loader.calls == 2

    def test_cache_outage_falls_back_to_store(self):
        loader = CountingLoader({"manager-1": ["rest-1"]})
        resolver = RestaurantScopeResolver(RestaurantScopeCache(DownRedis()), loader=loader)
        assert resolver.resolve(None, "manager-1") == {"rest-1"}

    def test_store_loader(self, db, make_user):
        make_user("manager-1", "restaurant_admin", restaurant_ids=["rest-1", "rest-4"])
        resolver = RestaurantScopeResolver()
        assert resolver.resolve(db, "manager-1") == {"rest-1", "rest-4"}
        assert resolver.resolve(db, "customer-9") == frozenset()


def test_from_url_builds_lazy_client():
    cache = RestaurantScopeCache.from_url("redis://localhost:6379/0", ttl=60)
    assert cache.ttl == 60
    assert isinstance(cache.client, redis.Redis)
