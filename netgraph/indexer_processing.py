"""Resolution of indexer health, versions and per-deployment indexing details.

Result tables map an indexer address, or a deployment id, to either the
resolved record or the error instance explaining why resolution failed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, Protocol, TypeVar, Union

from semver import Version

logger = logging.getLogger(__name__)

P = TypeVar("P")
C = TypeVar("C")


class _ValueError(Exception):
    """An error compared by type and arguments."""

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.args == other.args  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), tuple(map(str, self.args))))


class IndexerInfoResolutionError(_ValueError):
    """Why an indexer was marked unhealthy."""


class BlockedByAddrBlocklist(IndexerInfoResolutionError):
    def __str__(self) -> str:
        return "indexer address blocked by blocklist"


class BlockedByHostBlocklist(IndexerInfoResolutionError):
    def __str__(self) -> str:
        return "indexer host blocked by blocklist"


class HostResolutionFailed(IndexerInfoResolutionError):
    def __init__(self, reason: Any) -> None:
        super().__init__(reason)
        self.reason = reason

    def __str__(self) -> str:
        return f"indexer host resolution failed: {self.reason}"


class IndexerServiceVersionResolutionFailed(IndexerInfoResolutionError):
    def __init__(self, reason: Any) -> None:
        super().__init__(reason)
        self.reason = reason

    def __str__(self) -> str:
        return f"indexer service version resolution failed: {self.reason}"


class IndexerServiceVersionBelowMin(IndexerInfoResolutionError):
    def __init__(self, version: Version, minimum: Version) -> None:
        super().__init__(version, minimum)
        self.version = version
        self.minimum = minimum

    def __str__(self) -> str:
        return f"indexer service version below the minimum: {self.version} < {self.minimum}"


class GraphNodeVersionBelowMin(IndexerInfoResolutionError):
    def __init__(self, version: Version, minimum: Version) -> None:
        super().__init__(version, minimum)
        self.version = version
        self.minimum = minimum

    def __str__(self) -> str:
        return f"graph node version below the minimum: {self.version} < {self.minimum}"


class IndexingInfoResolutionError(_ValueError):
    """Why an indexer's indexing was marked unhealthy."""


class BlockedByPoiBlocklist(IndexingInfoResolutionError):
    def __str__(self) -> str:
        return "indexing blocked by POI blocklist"


class IndexingProgressNotFound(IndexingInfoResolutionError):
    def __str__(self) -> str:
        return "indexing progress information not found"


@dataclass(frozen=True)
class VersionRequirements:
    """Minimum versions an indexer must report to be considered healthy."""

    min_indexer_service_version: Version = field(default_factory=lambda: Version(0, 0, 0))
    min_graph_node_version: Version = field(default_factory=lambda: Version(0, 0, 0))


@dataclass(frozen=True)
class IndexingRawInfo:
    largest_allocation: str
    total_allocated_tokens: int


@dataclass
class IndexerRawInfo:
    """Pre-processed indexer information; the URL is HTTP(S) with a host."""

    id: str
    url: str
    staked_tokens: int = 0
    indexings: dict[str, IndexingRawInfo] = field(default_factory=dict)


@dataclass(frozen=True)
class IndexingProgress:
    latest_block: int
    min_block: Optional[int] = None


@dataclass(frozen=True)
class IndexingInfo(Generic[P, C]):
    """Indexing information, filled in step by step as it is resolved."""

    largest_allocation: str
    total_allocated_tokens: int
    progress: P = None  # type: ignore[assignment]
    cost_model: C = None  # type: ignore[assignment]

    @classmethod
    def from_raw(cls, raw: IndexingRawInfo) -> "IndexingInfo[None, None]":
        """Start an unresolved record from raw indexing information."""
        return cls(
            largest_allocation=raw.largest_allocation,
            total_allocated_tokens=raw.total_allocated_tokens,
        )

    def with_indexing_progress(self, progress: IndexingProgress) -> "IndexingInfo[IndexingProgress, C]":
        """Return a copy carrying the indexing progress."""
        return dataclasses.replace(self, progress=progress)

    def with_cost_model(self, cost_model: Any) -> "IndexingInfo[P, Any]":
        """Return a copy carrying the (possibly absent) cost model."""
        return dataclasses.replace(self, cost_model=cost_model)


IndexingResult = Union[IndexingInfo, IndexingInfoResolutionError]


@dataclass
class IndexerInfo:
    id: str
    url: str
    staked_tokens: int
    indexer_service_version: Version
    graph_node_version: Version
    indexings: dict[str, IndexingResult] = field(default_factory=dict)


IndexerResult = Union[IndexerInfo, IndexerInfoResolutionError]


class AddrBlocklist(Protocol):
    def is_blocked(self, address: str) -> bool: ...


class HostResolver(Protocol):
    async def resolve_url(self, url: str) -> Any: ...


class HostBlocklist(Protocol):
    def is_blocked(self, resolution: Any) -> bool: ...


class IndexerVersionResolver(Protocol):
    async def resolve_indexer_service_version(self, url: str) -> Version: ...

    async def resolve_graph_node_version(self, url: str) -> Version: ...


class PoiResolver(Protocol):
    async def resolve(self, url: str, metadata: Collection[Any]) -> Any: ...


class PoiBlocklist(Protocol):
    def affected_pois_metadata(self, deployments: Iterable[str]) -> Collection[Any]: ...

    def check(self, pois: Any) -> Mapping[str, bool]: ...


class ProgressResolver(Protocol):
    async def resolve(self, url: str, deployments: list[str]) -> Mapping[str, Any]: ...


class CostModelResolver(Protocol):
    async def resolve(self, url: str, deployments: list[str]) -> Mapping[str, Any]: ...


class CostModelCompiler(Protocol):
    def compile(self, source: Any) -> Any: ...


class IndexerProcessingState(Protocol):
    indexer_addr_blocklist: Optional[AddrBlocklist]
    indexer_host_resolver: HostResolver
    indexer_host_blocklist: Optional[HostBlocklist]
    indexer_version_requirements: VersionRequirements
    indexer_version_resolver: IndexerVersionResolver
    indexer_indexing_pois_blocklist: Optional[tuple[PoiResolver, PoiBlocklist]]
    indexer_indexing_progress_resolver: ProgressResolver
    indexer_indexing_cost_model_resolver: tuple[CostModelResolver, CostModelCompiler]


async def process_info(
    state: IndexerProcessingState,
    indexers: Mapping[str, IndexerRawInfo],
) -> dict[str, IndexerResult]:
    """Resolve every indexer concurrently."""
    ids = list(indexers)
    results = await asyncio.gather(
        *(_process_indexer(state, indexers[indexer_id]) for indexer_id in ids)
    )
    return dict(zip(ids, results))


async def _process_indexer(state: IndexerProcessingState, indexer: IndexerRawInfo) -> IndexerResult:
    logger.debug("processing indexer %s (%s)", indexer.id, indexer.url)
    try:
        _check_addr_blocklist(state.indexer_addr_blocklist, indexer)
        await _check_host_blocklist(
            state.indexer_host_resolver, state.indexer_host_blocklist, indexer.url
        )
        service_version, graph_node_version = await _resolve_and_check_versions(
            state.indexer_version_resolver, state.indexer_version_requirements, indexer.url
        )
    except IndexerInfoResolutionError as err:
        logger.debug("indexer %s: %s", indexer.id, err)
        return err

    indexings = await process_indexer_indexings(state, indexer.url, dict(indexer.indexings))
    return IndexerInfo(
        id=indexer.id,
        url=indexer.url,
        staked_tokens=indexer.staked_tokens,
        indexer_service_version=service_version,
        graph_node_version=graph_node_version,
        indexings=indexings,
    )


def _check_addr_blocklist(blocklist: Optional[AddrBlocklist], indexer: IndexerRawInfo) -> None:
    if blocklist is not None and blocklist.is_blocked(indexer.id):
        raise BlockedByAddrBlocklist()


async def _check_host_blocklist(
    resolver: HostResolver, blocklist: Optional[HostBlocklist], url: str
) -> None:
    # An unresolvable host is always blocked, even without a blocklist.
    try:
        resolution = await resolver.resolve_url(url)
    except Exception as err:
        raise HostResolutionFailed(err) from err
    if blocklist is not None and blocklist.is_blocked(resolution):
        raise BlockedByHostBlocklist()


async def _resolve_and_check_versions(
    resolver: IndexerVersionResolver, requirements: VersionRequirements, url: str
) -> tuple[Version, Version]:
    try:
        service_version = await resolver.resolve_indexer_service_version(url)
    except Exception as err:
        raise IndexerServiceVersionResolutionFailed(err) from err

    if service_version < requirements.min_indexer_service_version:
        raise IndexerServiceVersionBelowMin(
            service_version, requirements.min_indexer_service_version
        )

    try:
        graph_node_version = await resolver.resolve_graph_node_version(url)
    except Exception as err:
        # Indexers whose graph node does not report a version are assumed to
        # run the minimum one.
        logger.debug("graph-node version resolution failed: %s", err)
        graph_node_version = requirements.min_graph_node_version

    if graph_node_version < requirements.min_graph_node_version:
        raise GraphNodeVersionBelowMin(graph_node_version, requirements.min_graph_node_version)

    return service_version, graph_node_version


async def process_indexer_indexings(
    state: IndexerProcessingState,
    url: str,
    indexings: Mapping[str, IndexingRawInfo],
) -> dict[str, IndexingResult]:
    """Resolve POI blocking, progress and cost models for an indexer's indexings."""
    results: dict[str, IndexingResult] = {
        deployment: IndexingInfo.from_raw(raw) for deployment, raw in indexings.items()
    }
    healthy = list(results)

    blocked = await _poi_blocked_indexings(state.indexer_indexing_pois_blocklist, url, healthy)
    healthy = [d for d in healthy if d not in blocked]
    for deployment in blocked:
        if deployment in results:
            results[deployment] = BlockedByPoiBlocklist()

    progress = await _resolve_progress(state.indexer_indexing_progress_resolver, url, healthy)
    healthy = [d for d in healthy if d in progress]
    for deployment, info in results.items():
        if isinstance(info, IndexingInfoResolutionError):
            continue
        found = progress.get(deployment)
        if isinstance(found, IndexingProgress):
            results[deployment] = info.with_indexing_progress(found)
        else:
            results[deployment] = IndexingProgressNotFound()

    cost_models = await _resolve_cost_models(
        state.indexer_indexing_cost_model_resolver, url, healthy
    )
    for deployment, info in results.items():
        if isinstance(info, IndexingInfo):
            results[deployment] = info.with_cost_model(cost_models.get(deployment))

    return results


async def _poi_blocked_indexings(
    pois: Optional[tuple[PoiResolver, PoiBlocklist]], url: str, deployments: list[str]
) -> set[str]:
    if pois is None:
        return set()
    resolver, blocklist = pois

    affected = blocklist.affected_pois_metadata(deployments)
    if not affected:
        return set()

    reported = await resolver.resolve(url, affected)
    checked = blocklist.check(reported)
    return {d for d in deployments if checked.get(d, False)}


async def _resolve_progress(
    resolver: ProgressResolver, url: str, deployments: list[str]
) -> dict[str, Union[IndexingProgress, IndexingInfoResolutionError]]:
    reported = dict(await resolver.resolve(url, deployments))
    result: dict[str, Union[IndexingProgress, IndexingInfoResolutionError]] = {}
    for deployment in deployments:
        info = reported.pop(deployment, None)
        if info is None:
            result[deployment] = IndexingProgressNotFound()
        else:
            result[deployment] = IndexingProgress(
                latest_block=info.latest_block, min_block=info.min_block
            )
    return {d: p for d, p in result.items() if isinstance(p, IndexingProgress)} | {
        d: p for d, p in result.items() if not isinstance(p, IndexingProgress)
    }


async def _resolve_cost_models(
    resolver_and_compiler: tuple[CostModelResolver, CostModelCompiler],
    url: str,
    deployments: list[str],
) -> dict[str, Any]:
    resolver, compiler = resolver_and_compiler
    try:
        sources = await resolver.resolve(url, deployments)
    except Exception as err:
        logger.debug("cost model resolution failed: %s", err)
        return {}
    if not sources:
        return {}

    models: dict[str, Any] = {}
    for deployment, source in sources.items():
        try:
            models[deployment] = compiler.compile(source)
        except Exception as err:
            logger.debug("cost model compilation failed: %s", err)
    return models