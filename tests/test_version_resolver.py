import asyncio

import pytest
from semver import Version

from netgraph.version_resolver import (
    DEFAULT_INDEXER_VERSION_CACHE_TTL,
    DEFAULT_INDEXER_VERSION_RESOLUTION_TIMEOUT,
    ResolutionError,
    ResolutionFetchError,
    ResolutionTimeout,
    VersionResolver,
)

URL = "https://indexer.example.com/"


class _Fetcher:
    """A fetcher that returns queued outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def __call__(self, url):
        self.calls.append(url)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def _slow(url):
    await asyncio.sleep(1.0)
    return Version(1, 0, 0)


def test_defaults():
    assert DEFAULT_INDEXER_VERSION_RESOLUTION_TIMEOUT == 5.0
    assert DEFAULT_INDEXER_VERSION_CACHE_TTL == 1800.0
    resolver = VersionResolver(_Fetcher(), _Fetcher())
    assert resolver.timeout == DEFAULT_INDEXER_VERSION_RESOLUTION_TIMEOUT


@pytest.mark.asyncio
async def test_resolves_indexer_service_version():
    version = Version.parse("1.2.3")
    service = _Fetcher(version)
    resolver = VersionResolver(service, _Fetcher())

    assert await resolver.resolve_indexer_service_version(URL) == version
    assert service.calls == [URL]


@pytest.mark.asyncio
async def test_fetch_error_without_cache_raises():
    resolver = VersionResolver(_Fetcher(RuntimeError("boom")), _Fetcher())

    with pytest.raises(ResolutionFetchError) as info:
        await resolver.resolve_indexer_service_version(URL)

    assert info.value.message == "boom"
    assert str(info.value).startswith("fetch error: ")
    assert isinstance(info.value, ResolutionError)


@pytest.mark.asyncio
async def test_fetch_error_falls_back_to_cache():
    version = Version.parse("0.9.0")
    resolver = VersionResolver(_Fetcher(version, RuntimeError("down")), _Fetcher())

    first = await resolver.resolve_indexer_service_version(URL)
    second = await resolver.resolve_indexer_service_version(URL)

    assert first == version
    assert second == version


@pytest.mark.asyncio
async def test_newer_version_replaces_cached_one():
    old, new = Version.parse("1.0.0"), Version.parse("2.0.0")
    resolver = VersionResolver(_Fetcher(), _Fetcher(old, new, RuntimeError("down")))

    await resolver.resolve_graph_node_version(URL)
    await resolver.resolve_graph_node_version(URL)

    assert await resolver.resolve_graph_node_version(URL) == new


@pytest.mark.asyncio
async def test_timeout_raises_resolution_timeout():
    resolver = VersionResolver(_slow, _slow, timeout=0.01)

    with pytest.raises(ResolutionTimeout) as info:
        await resolver.resolve_graph_node_version(URL)

    assert str(info.value) == "timeout"


@pytest.mark.asyncio
async def test_timeout_falls_back_to_cache():
    version = Version.parse("1.1.0")
    fetcher = _Fetcher(version)

    async def flaky(url):
        if fetcher.outcomes:
            return await fetcher(url)
        return await _slow(url)

    resolver = VersionResolver(flaky, _Fetcher(), timeout=0.05)

    await resolver.resolve_indexer_service_version(URL)
    assert await resolver.resolve_indexer_service_version(URL) == version


@pytest.mark.asyncio
async def test_expired_cache_entries_are_not_used():
    version = Version.parse("1.0.0")
    resolver = VersionResolver(_Fetcher(version, RuntimeError("down")), _Fetcher(), cache_ttl=0)

    assert await resolver.resolve_indexer_service_version(URL) == version
    with pytest.raises(ResolutionFetchError):
        await resolver.resolve_indexer_service_version(URL)


@pytest.mark.asyncio
async def test_caches_are_separate_per_kind_and_url():
    version = Version.parse("1.0.0")
    resolver = VersionResolver(
        _Fetcher(version, RuntimeError("down")),
        _Fetcher(RuntimeError("down")),
    )

    await resolver.resolve_indexer_service_version(URL)

    with pytest.raises(ResolutionFetchError):
        await resolver.resolve_graph_node_version(URL)
    with pytest.raises(ResolutionFetchError):
        await resolver.resolve_indexer_service_version("https://other.example.com/")


def test_errors_compare_by_value():
    assert ResolutionFetchError("a") == ResolutionFetchError("a")
    assert ResolutionFetchError("a") != ResolutionFetchError("b")
    assert ResolutionTimeout() == ResolutionTimeout()
    assert ResolutionTimeout() != ResolutionFetchError("a")