"""Network topology entities and the construction of a topology snapshot.

Result tables map an id to either the entity or the error instance
explaining why it is not available.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from semver import Version

from netgraph.indexer_processing import (
    IndexerInfo,
    IndexerInfoResolutionError,
    IndexingInfoResolutionError,
)
from netgraph.subgraph_processing import (
    DeploymentError,
    DeploymentInfo,
    DeploymentNoAllocations,
    SubgraphError,
    SubgraphInfo,
    SubgraphNoValidVersions,
)

logger = logging.getLogger(__name__)

_MIN_TAP_INDEXER_SERVICE_VERSION = Version.parse("1.0.0-alpha")
"""The minimum indexer service version supporting TAP payments."""


class _ValueError(Exception):
    """An error compared by type and arguments."""

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.args == other.args  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), tuple(map(str, self.args))))


class IndexingError(_ValueError):
    """Why an indexing is unavailable; wraps the indexer or indexing error."""

    def __init__(
        self, cause: Union[IndexerInfoResolutionError, IndexingInfoResolutionError, str]
    ) -> None:
        super().__init__(cause)
        self.cause = cause

    def __str__(self) -> str:
        return str(self.cause)


class IndexingInternalError(IndexingError):
    """An inconsistency in the topology tables; should not happen."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"internal error: {self.message}"


@dataclass(frozen=True, order=True)
class IndexingId:
    """Identifies an indexer's indexing of a deployment."""

    indexer: str
    deployment: str


@dataclass(frozen=True)
class IndexingProgress:
    latest_block: int
    min_block: Optional[int] = None

    def as_range(self) -> tuple[Optional[int], int]:
        """The reported indexed range as ``(min_block, latest_block)``."""
        return (self.min_block, self.latest_block)


@dataclass(frozen=True)
class Indexer:
    """An indexer; its URL is HTTP(S) with a host."""

    id: str
    url: str
    indexer_service_version: Version
    graph_node_version: Version
    tap_support: bool
    staked_tokens: int


@dataclass
class Indexing:
    id: IndexingId
    chain: str
    largest_allocation: str
    total_allocated_tokens: int
    indexer: Indexer
    progress: IndexingProgress
    cost_model: Any = None


IndexingResult = Union[Indexing, IndexingError]


@dataclass
class Subgraph:
    id: str
    chain: str
    start_block: int
    versions: list[str]
    indexings: dict[IndexingId, IndexingResult]


@dataclass
class Deployment:
    id: str
    chain: str
    start_block: int
    subgraphs: set[str]
    indexings: dict[IndexingId, IndexingResult]


@dataclass
class NetworkTopologySnapshot:
    subgraphs: dict[str, Union[Subgraph, SubgraphError]] = field(default_factory=dict)
    deployments: dict[str, Union[Deployment, DeploymentError]] = field(default_factory=dict)


_IndexerRow = Union[tuple[IndexerInfo, Indexer], IndexerInfoResolutionError]
_IndexersTable = Mapping[str, _IndexerRow]


def new_from(
    indexers_info: Mapping[str, Union[IndexerInfo, IndexerInfoResolutionError]],
    subgraphs_info: Mapping[str, Union[SubgraphInfo, SubgraphError]],
    deployments_info: Mapping[str, Union[DeploymentInfo, DeploymentError]],
) -> NetworkTopologySnapshot:
    """Build a topology snapshot from processed indexers, subgraphs and deployments."""
    indexers = {address: _indexer_row(info) for address, info in indexers_info.items()}

    subgraphs = {
        sid: info if isinstance(info, SubgraphError) else _subgraph_row(info, indexers)
        for sid, info in subgraphs_info.items()
    }
    deployments = {
        did: info if isinstance(info, DeploymentError) else _deployment_row(info, indexers)
        for did, info in deployments_info.items()
    }
    return NetworkTopologySnapshot(subgraphs=subgraphs, deployments=deployments)


def _indexer_row(info: Union[IndexerInfo, IndexerInfoResolutionError]) -> _IndexerRow:
    if isinstance(info, IndexerInfoResolutionError):
        return info
    indexer = Indexer(
        id=info.id,
        url=info.url,
        indexer_service_version=info.indexer_service_version,
        graph_node_version=info.graph_node_version,
        tap_support=info.indexer_service_version >= _MIN_TAP_INDEXER_SERVICE_VERSION,
        staked_tokens=info.staked_tokens,
    )
    return (info, indexer)


def _subgraph_row(info: SubgraphInfo, indexers: _IndexersTable) -> Union[Subgraph, SubgraphError]:
    versions = info.versions
    version_ids = [v.deployment_id for v in versions]

    # Versions are ordered newest first: the first valid one is the highest.
    highest = next(
        (v.deployment for v in versions if isinstance(v.deployment, DeploymentInfo)), None
    )
    if highest is None:
        raise ValueError("no valid versions found")
    chain = highest.manifest_network
    start_block = highest.manifest_start_block

    # Only deployments on the highest version's chain, to keep block constraints simple.
    indexings: dict[IndexingId, IndexingResult] = {}
    for version in versions:
        deployment = version.deployment
        if not isinstance(deployment, DeploymentInfo) or deployment.manifest_network != chain:
            continue
        for allocation in deployment.allocations:
            indexing_id = IndexingId(indexer=allocation.indexer, deployment=deployment.id)
            indexings[indexing_id] = _indexing_row(
                indexing_id, deployment.manifest_network, indexers
            )

    if not indexings:
        return SubgraphNoValidVersions()

    return Subgraph(
        id=info.id,
        chain=chain,
        start_block=start_block,
        versions=version_ids,
        indexings=indexings,
    )


def _deployment_row(
    info: DeploymentInfo, indexers: _IndexersTable
) -> Union[Deployment, DeploymentError]:
    indexings: dict[IndexingId, IndexingResult] = {}
    for allocation in info.allocations:
        indexing_id = IndexingId(indexer=allocation.indexer, deployment=info.id)
        indexings[indexing_id] = _indexing_row(indexing_id, info.manifest_network, indexers)
    if not indexings:
        return DeploymentNoAllocations()

    return Deployment(
        id=info.id,
        chain=info.manifest_network,
        start_block=info.manifest_start_block,
        subgraphs=set(info.subgraphs),
        indexings=indexings,
    )


def _indexing_row(indexing_id: IndexingId, chain: str, indexers: _IndexersTable) -> IndexingResult:
    row = indexers.get(indexing_id.indexer)
    if row is None:
        logger.error(
            "indexing indexer info not found (indexer=%s deployment=%s)",
            indexing_id.indexer,
            indexing_id.deployment,
        )
        return IndexingInternalError("indexer not found")
    if isinstance(row, IndexerInfoResolutionError):
        return IndexingError(row)
    indexer_info, indexer = row

    info = indexer_info.indexings.get(indexing_id.deployment)
    if info is None:
        logger.error(
            "indexing info not found (indexer=%s deployment=%s)",
            indexing_id.indexer,
            indexing_id.deployment,
        )
        return IndexingInternalError("indexing info not found")
    if isinstance(info, IndexingInfoResolutionError):
        return IndexingError(info)

    return Indexing(
        id=indexing_id,
        chain=chain,
        largest_allocation=info.largest_allocation,
        total_allocated_tokens=info.total_allocated_tokens,
        indexer=indexer,
        progress=IndexingProgress(
            latest_block=info.progress.latest_block,
            min_block=info.progress.min_block,
        ),
        cost_model=info.cost_model,
    )