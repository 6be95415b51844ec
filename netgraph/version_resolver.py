"""Resolution of indexer-service and graph-node versions, with a fallback cache.

Each resolution is bounded by a timeout. When fetching fails, the last
successfully resolved version for the URL is returned if it is still cached.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any, Generic, Optional, TypeVar

from semver import Version

logger = logging.getLogger(__name__)

DEFAULT_INDEXER_VERSION_RESOLUTION_TIMEOUT = 5.0
"""Default resolution timeout, in seconds."""

DEFAULT_INDEXER_VERSION_CACHE_TTL = 60.0 * 30
"""Default cache entry lifetime, in seconds."""

VersionFetcher = Callable[[str], Awaitable[Version]]

K = TypeVar("K")
V = TypeVar("V")


class ResolutionError(Exception):
    """A version could not be resolved."""

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.args == other.args  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class ResolutionFetchError(ResolutionError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"fetch error: {self.message}"


class ResolutionTimeout(ResolutionError):
    def __str__(self) -> str:
        return "timeout"


class _TtlCache(Generic[K, V]):
    """A mapping whose entries expire a fixed time after insertion."""

    def __init__(self, ttl: float) -> None:
        self._ttl = ttl
        self._entries: dict[K, tuple[V, float]] = {}

    def insert(self, key: K, value: V) -> None:
        self._entries[key] = (value, time.monotonic())

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, inserted = entry
        if time.monotonic() - inserted < self._ttl:
            return value
        del self._entries[key]
        return None


class VersionResolver:
    """Resolves indexer versions through the given fetchers.

    The fetchers receive the indexer's base URL and return its version.
    A ``cache_ttl`` of ``None`` keeps entries forever.
    """

    def __init__(
        self,
        fetch_indexer_service_version: VersionFetcher,
        fetch_graph_node_version: VersionFetcher,
        timeout: float = DEFAULT_INDEXER_VERSION_RESOLUTION_TIMEOUT,
        cache_ttl: Optional[float] = DEFAULT_INDEXER_VERSION_CACHE_TTL,
    ) -> None:
        ttl = math.inf if cache_ttl is None else cache_ttl
        self._fetch_indexer_service_version = fetch_indexer_service_version
        self._fetch_graph_node_version = fetch_graph_node_version
        self.timeout = timeout
        self._indexer_service_version_cache: _TtlCache[str, Version] = _TtlCache(ttl)
        self._graph_node_version_cache: _TtlCache[str, Version] = _TtlCache(ttl)

    async def resolve_indexer_service_version(self, url: Any) -> Version:
        """Resolve the indexer service version, bounded by the timeout."""
        return await self._resolve(
            self._fetch_indexer_service_version,
            self._indexer_service_version_cache,
            str(url),
            "indexer service",
        )

    async def resolve_graph_node_version(self, url: Any) -> Version:
        """Resolve the indexer graph-node version, bounded by the timeout."""
        return await self._resolve(
            self._fetch_graph_node_version,
            self._graph_node_version_cache,
            str(url),
            "indexer graph-node",
        )

    async def _resolve(
        self,
        fetcher: VersionFetcher,
        cache: _TtlCache[str, Version],
        url: str,
        what: str,
    ) -> Version:
        try:
            version = await self._fetch(fetcher, url)
        except ResolutionError as err:
            logger.debug("%s version resolution failed for %s: %s", what, url, err)
            cached = cache.get(url)
            if cached is None:
                raise
            return cached
        cache.insert(url, version)
        return version

    async def _fetch(self, fetcher: VersionFetcher, url: str) -> Version:
        try:
            return await asyncio.wait_for(fetcher(url), self.timeout)
        except asyncio.TimeoutError as err:
            raise ResolutionTimeout() from err
        except Exception as err:
            raise ResolutionFetchError(str(err)) from err