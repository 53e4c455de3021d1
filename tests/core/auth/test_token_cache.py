"""Tests for the TTL token cache."""

import threading
from datetime import datetime, timedelta, timezone

from core.auth import DEFAULT_AUTH_TTL_SECONDS, CachedToken, TokenCache

URL = "https://demo.firebaseio.com"


class TestCachedToken:

    def test_fresh_token_valid(self):
        token = CachedToken(value="s", acquired_at=datetime.now(timezone.utc))
        assert token.is_valid(60) is True

    def test_old_token_invalid(self):
        token = CachedToken(
            value="s", acquired_at=datetime.now(timezone.utc) - timedelta(seconds=61)
        )
        assert token.is_valid(60) is False


class TestTokenCache:

    def test_default_ttl_is_23_hours(self):
        assert TokenCache().ttl_seconds == DEFAULT_AUTH_TTL_SECONDS == 23 * 3600

    def test_get_missing(self):
        assert TokenCache().get(URL) is None

    def test_set_and_get(self):
        cache = TokenCache()
        cache.set(URL, "secret")
        assert cache.get(URL) == "secret"

    def test_expired_token_not_returned(self):
        cache = TokenCache(ttl_seconds=10)
        cache.set(URL, "secret")
        cache._tokens[URL].acquired_at -= timedelta(seconds=11)
        assert cache.get(URL) is None

    def test_clear_single_resource(self):
        cache = TokenCache()
        cache.set(URL, "a")
        cache.set("https://other.firebaseio.com", "b")

        cache.clear(URL)

        assert cache.get(URL) is None
        assert cache.get("https://other.firebaseio.com") == "b"

    def test_clear_all(self):
        cache = TokenCache()
        cache.set(URL, "a")
        cache.set("https://other.firebaseio.com", "b")

        cache.clear()

        assert cache.get(URL) is None
        assert cache.get("https://other.firebaseio.com") is None

    def test_get_age(self):
        cache = TokenCache()
        assert cache.get_age(URL) is None
        cache.set(URL, "a")
        age = cache.get_age(URL)
        assert age is not None
        assert age < timedelta(seconds=5)

    def test_concurrent_access(self):
        cache = TokenCache()
        errors = []

        def worker(i):
            try:
                for _ in range(100):
                    cache.set(URL, f"token-{i}")
                    cache.get(URL)
                    cache.clear()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
