"""Tests for catalog clients, pacing and caching (no network)."""

import asyncio

import pytest

from songbridge.catalog import AppleMusicCatalog, CachedCatalog, RateLimiter, SpotifyCatalog
from songbridge.errors import CatalogError, RateLimitedError

from conftest import FakeCatalog, apple_song


class FakeResponse:
    def __init__(self, status, payload=None, headers=None):
        self.status = status
        self._payload = payload or {}
        self.headers = headers or {}

    async def json(self):
        return self._payload

    async def text(self):
        return str(self._payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, headers=None, params=None):
        self.requests.append((url, headers, params))
        return self.responses.pop(0)


def apple(session):
    catalog = AppleMusicCatalog(session, "dev-token", user_token="user-token", storefront="gb", limiter=RateLimiter(0))
    catalog.rate_limit_wait = 0
    catalog.retry_delay = 0
    catalog.max_retries = 0
    return catalog


def test_apple_search_parses_songs():
    song = apple_song("1", "Yesterday", "The Beatles")
    session = FakeSession([FakeResponse(200, {"results": {"songs": {"data": [song]}}})])
    out = asyncio.run(apple(session).search("yesterday beatles", limit=50))
    assert out == [song]
    url, headers, params = session.requests[0]
    assert url.endswith("/catalog/gb/search")
    assert params["limit"] == 25
    assert headers["Authorization"] == "Bearer dev-token"
    assert headers["Music-User-Token"] == "user-token"


def test_apple_isrc_lookup():
    song = apple_song("1", "Yesterday", "The Beatles", isrc="GBAYE0601498")
    session = FakeSession([FakeResponse(200, {"data": [song]})])
    out = asyncio.run(apple(session).search_isrc("GBAYE0601498"))
    assert out[0]["id"] == "1"
    assert session.requests[0][2] == {"filter[isrc]": "GBAYE0601498"}


def test_rate_limited_call_is_retried_once():
    session = FakeSession([FakeResponse(429), FakeResponse(200, {"data": []})])
    assert asyncio.run(apple(session).search_isrc("X")) == []
    assert len(session.requests) == 2


def test_second_rate_limit_raises():
    session = FakeSession([FakeResponse(429), FakeResponse(429)])
    with pytest.raises(RateLimitedError):
        asyncio.run(apple(session).search_isrc("X"))


def test_server_error_raises_catalog_error():
    session = FakeSession([FakeResponse(500, {"errors": ["oops"]})])
    with pytest.raises(CatalogError) as exc:
        asyncio.run(apple(session).search("x"))
    assert exc.value.status == 500


def test_spotify_search_and_adapter():
    item = {"id": "sp1", "name": "Yesterday", "artists": [{"name": "The Beatles"}], "album": {"name": "Help!"}}
    session = FakeSession([FakeResponse(200, {"tracks": {"items": [item]}})])
    catalog = SpotifyCatalog(session, "tok", market="gb", limiter=RateLimiter(0))
    out = asyncio.run(catalog.search_isrc("GBAYE0601498"))
    assert session.requests[0][2]["q"] == "isrc:GBAYE0601498"
    assert session.requests[0][2]["market"] == "GB"
    assert catalog.to_track(out[0]).primary_artist == "The Beatles"


def test_rate_limiter_spaces_calls():
    async def run():
        limiter = RateLimiter(0.02)
        loop = asyncio.get_running_loop()
        stamps = []

        async def call():
            await limiter.wait()
            stamps.append(loop.time())

        await asyncio.gather(*(call() for _ in range(3)))
        return stamps

    stamps = asyncio.run(run())
    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert all(g >= 0.015 for g in gaps)


def test_cached_catalog_hits_and_expires():
    now = [0.0]
    inner = FakeCatalog(terms={"q": [apple_song("1", "A", "B")]})
    cached = CachedCatalog(inner, ttl=60, clock=lambda: now[0])

    async def twice():
        await cached.search("q")
        await cached.search("Q")

    asyncio.run(twice())
    assert inner.calls == [("search", "q")]
    assert (cached.hits, cached.misses) == (1, 1)

    now[0] = 61
    asyncio.run(cached.search("q"))
    assert len(inner.calls) == 2
    assert cached.name == "apple_music"


def test_server_errors_are_retried():
    session = FakeSession([FakeResponse(503), FakeResponse(200, {"data": []})])
    catalog = apple(session)
    catalog.max_retries = 2
    assert asyncio.run(catalog.search_isrc("X")) == []
    assert len(session.requests) == 2


def test_client_errors_are_not_retried():
    session = FakeSession([FakeResponse(401), FakeResponse(200, {"data": []})])
    catalog = apple(session)
    catalog.max_retries = 2
    with pytest.raises(CatalogError) as exc:
        asyncio.run(catalog.search_isrc("X"))
    assert exc.value.status == 401
    assert len(session.requests) == 1
