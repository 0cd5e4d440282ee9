"""
Catalog lookup clients.

Each client turns a free-text or ISRC query into a list of raw catalog
objects and knows how to adapt one of them into a TrackDescriptor. Calls are
paced by a RateLimiter shared by every concurrent caller of that catalog.
"""
from __future__ import annotations

import asyncio
import logging
import ssl
import time
from typing import Any, Dict, List, Optional, Protocol, Tuple

import aiohttp
import certifi

from .adapters import from_apple, from_spotify
from .config import config
from .errors import CatalogError, RateLimitedError
from .executor import retry_with_backoff
from .models import TrackDescriptor

logger = logging.getLogger(__name__)

APPLE_API_ROOT = "https://api.music.apple.com/v1"
SPOTIFY_API_ROOT = "https://api.spotify.com/v1"


class CatalogClient(Protocol):
    name: str

    async def search_isrc(self, isrc: str, limit: int = 25) -> List[Dict[str, Any]]:
        ...

    async def search(self, term: str, limit: int = 25) -> List[Dict[str, Any]]:
        ...

    def to_track(self, raw: Dict[str, Any]) -> TrackDescriptor:
        ...


class RateLimiter:
    """Enforces a minimum spacing between calls, across all tasks that share it."""

    def __init__(self, min_interval: float):
        self.min_interval = max(0.0, min_interval)
        self._lock = asyncio.Lock()
        self._last: Optional[float] = None

    async def wait(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            if self._last is not None:
                delay = self._last + self.min_interval - now
                if delay > 0:
                    await asyncio.sleep(delay)
                    now = loop.time()
            self._last = now


def open_session(timeout: Optional[float] = None) -> aiohttp.ClientSession:
    """HTTP session pinned to the certifi CA bundle, with a per-call timeout."""
    ssl_ctx = ssl.create_default_context(cafile=certifi.where())
    return aiohttp.ClientSession(
        connector=aiohttp.TCPConnector(ssl=ssl_ctx),
        timeout=aiohttp.ClientTimeout(total=timeout or config["REQUEST_TIMEOUT_S"]),
    )


def _retry_after(headers: Any) -> Optional[float]:
    try:
        return float(headers.get("Retry-After"))
    except (TypeError, ValueError):
        return None


def _is_transient(e: BaseException) -> bool:
    if isinstance(e, RateLimitedError):
        return False
    return isinstance(e, CatalogError) and (e.status is None or e.status >= 500)


class HttpCatalog:
    """Shared GET-and-decode logic for the REST catalogs."""

    name = "http"
    rate_limit_wait = 2.0
    retry_delay = 0.5

    def __init__(self, session: aiohttp.ClientSession, limiter: Optional[RateLimiter] = None):
        self.session = session
        self.limiter = limiter or RateLimiter(config["API_RATE_LIMIT_MS"] / 1000)
        self.max_retries = config["MAX_RETRIES"]

    def headers(self) -> Dict[str, str]:
        return {}

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET with retries on network errors and 5xx; 4xx and rate limits are final."""
        return await retry_with_backoff(
            lambda: self._get_json_once(url, params),
            max_retries=self.max_retries,
            initial_delay=self.retry_delay,
            retry_if=_is_transient,
        )

    async def _get_json_once(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        # One retry on 429; anything else fails the call
        for attempt in (1, 2):
            await self.limiter.wait()
            try:
                async with self.session.get(url, headers=self.headers(), params=params) as resp:
                    if resp.status == 429:
                        wait = _retry_after(resp.headers) or self.rate_limit_wait
                        if attempt == 1:
                            logger.info("%s rate limited, retrying in %.1fs", self.name, wait)
                            await asyncio.sleep(wait)
                            continue
                        raise RateLimitedError(f"{self.name} rate limit exceeded", retry_after=wait)
                    if resp.status == 404:
                        return {}
                    if resp.status >= 400:
                        body = await resp.text()
                        raise CatalogError(f"{self.name} HTTP {resp.status}: {body[:200]}", status=resp.status)
                    return await resp.json()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise CatalogError(f"{self.name} request failed: {e!r}") from e
        raise RateLimitedError(f"{self.name} rate limit exceeded")


class AppleMusicCatalog(HttpCatalog):
    name = "apple_music"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        developer_token: str,
        user_token: Optional[str] = None,
        storefront: Optional[str] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        super().__init__(session, limiter)
        self.developer_token = developer_token
        self.user_token = user_token
        self.storefront = storefront or config["STOREFRONT"]

    def headers(self) -> Dict[str, str]:
        h = {"Authorization": f"Bearer {self.developer_token}"}
        if self.user_token:
            h["Music-User-Token"] = self.user_token
        return h

    @property
    def root(self) -> str:
        return f"{APPLE_API_ROOT}/catalog/{self.storefront}"

    async def search_isrc(self, isrc: str, limit: int = 25) -> List[Dict[str, Any]]:
        data = await self._get_json(f"{self.root}/songs", {"filter[isrc]": isrc})
        return (data.get("data") or [])[:limit]

    async def search(self, term: str, limit: int = 25) -> List[Dict[str, Any]]:
        # The search endpoint caps songs at 25 per page
        params = {"term": term, "types": "songs", "limit": min(limit, 25)}
        data = await self._get_json(f"{self.root}/search", params)
        return ((data.get("results") or {}).get("songs") or {}).get("data") or []

    def to_track(self, raw: Dict[str, Any]) -> TrackDescriptor:
        return from_apple(raw)


class SpotifyCatalog(HttpCatalog):
    name = "spotify"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        access_token: str,
        market: Optional[str] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        super().__init__(session, limiter)
        self.access_token = access_token
        self.market = (market or config["STOREFRONT"]).upper()

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def _tracks(self, q: str, limit: int) -> List[Dict[str, Any]]:
        params = {"q": q, "type": "track", "limit": min(limit, 50), "market": self.market}
        data = await self._get_json(f"{SPOTIFY_API_ROOT}/search", params)
        return (data.get("tracks") or {}).get("items") or []

    async def search_isrc(self, isrc: str, limit: int = 25) -> List[Dict[str, Any]]:
        return await self._tracks(f"isrc:{isrc}", limit)

    async def search(self, term: str, limit: int = 25) -> List[Dict[str, Any]]:
        return await self._tracks(term, limit)

    def to_track(self, raw: Dict[str, Any]) -> TrackDescriptor:
        return from_spotify(raw)


class CachedCatalog:
    """Wraps a catalog client with an in-memory TTL cache of search responses."""

    def __init__(self, inner: CatalogClient, ttl: Optional[float] = None, clock=time.monotonic):
        self.inner = inner
        self.name = inner.name
        self.ttl = config["CACHE_TTL_S"] if ttl is None else ttl
        self._clock = clock
        self._entries: Dict[Tuple[str, str, int], Tuple[float, List[Dict[str, Any]]]] = {}
        self.hits = 0
        self.misses = 0

    def _get(self, key):
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires, value = entry
        if self._clock() >= expires:
            del self._entries[key]
            return None
        return value

    async def _cached(self, key, fetch):
        value = self._get(key)
        if value is not None:
            self.hits += 1
            return value
        self.misses += 1
        value = await fetch()
        self._entries[key] = (self._clock() + self.ttl, value)
        return value

    async def search_isrc(self, isrc: str, limit: int = 25) -> List[Dict[str, Any]]:
        return await self._cached(("isrc", isrc.upper(), limit), lambda: self.inner.search_isrc(isrc, limit))

    async def search(self, term: str, limit: int = 25) -> List[Dict[str, Any]]:
        return await self._cached(("term", term.lower(), limit), lambda: self.inner.search(term, limit))

    def to_track(self, raw: Dict[str, Any]) -> TrackDescriptor:
        return self.inner.to_track(raw)

    def clear(self) -> None:
        self._entries.clear()
