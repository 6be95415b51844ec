"""Conversion of fetched network-subgraph records into the internal raw tables."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from urllib.parse import urlsplit, urlunsplit

from netgraph.indexer_processing import IndexerRawInfo, IndexingRawInfo
from netgraph.subgraph_client import Indexer, Subgraph, SubgraphVersion
from netgraph.subgraph_processing import (
    AllocationInfo,
    DeploymentRawInfo,
    SubgraphRawInfo,
    SubgraphVersionRawInfo,
)

logger = logging.getLogger(__name__)

_U128_MAX = 2**128 - 1


def into_internal_indexers_raw_info(data: Iterable[Subgraph]) -> dict[str, IndexerRawInfo]:
    """Aggregate the indexers found in the allocations of every subgraph version.

    Indexers with invalid information, e.g. no URL, are skipped. For each
    indexer and deployment the largest allocation and the (saturating) sum of
    allocated tokens are kept.
    """
    indexers: dict[str, IndexerRawInfo] = {}
    largest: dict[tuple[str, str], tuple[str, int]] = {}

    for subgraph in data:
        for version in subgraph.versions:
            deployment_id = version.subgraph_deployment.id
            for allocation in version.subgraph_deployment.allocations:
                indexer_id = allocation.indexer.id

                indexer = indexers.get(indexer_id)
                if indexer is None:
                    try:
                        indexer = _try_into_indexer_raw_info(allocation.indexer)
                    except ValueError as err:
                        logger.info(
                            "invalid indexer info: %s (subgraph_id=%s version=%s "
                            "deployment_id=%s allocation_id=%s indexer_id=%s)",
                            err,
                            subgraph.id,
                            version.version,
                            deployment_id,
                            allocation.id,
                            indexer_id,
                        )
                        continue
                    indexers[indexer_id] = indexer

                key = (indexer_id, deployment_id)
                current = largest.get(key)
                if current is None or allocation.allocated_tokens > current[1]:
                    current = (allocation.id, allocation.allocated_tokens)
                    largest[key] = current

                previous = indexer.indexings.get(deployment_id)
                total = 0 if previous is None else previous.total_allocated_tokens
                indexer.indexings[deployment_id] = IndexingRawInfo(
                    largest_allocation=current[0],
                    total_allocated_tokens=min(total + allocation.allocated_tokens, _U128_MAX),
                )

    return indexers


def into_internal_subgraphs_raw_info(data: Iterable[Subgraph]) -> dict[str, SubgraphRawInfo]:
    """Convert fetched subgraphs; the first occurrence of a subgraph id prevails."""
    subgraphs: dict[str, SubgraphRawInfo] = {}
    for subgraph in data:
        if subgraph.id not in subgraphs:
            subgraphs[subgraph.id] = _into_subgraph_raw_info(subgraph)
    return subgraphs


def into_internal_deployments_raw_info(
    data: Iterable[SubgraphRawInfo],
) -> dict[str, DeploymentRawInfo]:
    """Collect the deployments of every subgraph version.

    Deployments seen more than once have their subgraphs and allocations merged.
    """
    deployments: dict[str, DeploymentRawInfo] = {}
    for subgraph in data:
        for version in subgraph.versions:
            raw = version.deployment
            existing = deployments.get(raw.id)
            if existing is None:
                deployments[raw.id] = DeploymentRawInfo(
                    id=raw.id,
                    manifest_network=raw.manifest_network,
                    manifest_start_block=raw.manifest_start_block,
                    subgraphs=set(raw.subgraphs),
                    transferred_to_l2=raw.transferred_to_l2,
                    allocations=list(raw.allocations),
                )
                continue
            existing.subgraphs.update(raw.subgraphs)
            existing.allocations.extend(raw.allocations)
    return deployments


def _into_subgraph_raw_info(subgraph: Subgraph) -> SubgraphRawInfo:
    versions: list[SubgraphVersionRawInfo] = []
    for version in subgraph.versions:
        try:
            raw = _into_subgraph_version_raw_info(version)
        except ValueError as err:
            logger.debug("subgraph %s: %s", subgraph.id, err)
            continue
        raw.deployment.subgraphs.add(subgraph.id)
        versions.append(raw)
    return SubgraphRawInfo(id=subgraph.id, id_on_l2=subgraph.id_on_l2, versions=versions)


def _into_subgraph_version_raw_info(version: SubgraphVersion) -> SubgraphVersionRawInfo:
    deployment = version.subgraph_deployment
    allocations = [
        AllocationInfo(id=allocation.id, indexer=allocation.indexer.id)
        for allocation in deployment.allocations
    ]
    if deployment.manifest is None:
        raise ValueError("missing manifest")
    if deployment.manifest.network is None:
        raise ValueError("manifest missing network")
    return SubgraphVersionRawInfo(
        version=version.version,
        deployment=DeploymentRawInfo(
            id=deployment.id,
            manifest_network=deployment.manifest.network,
            manifest_start_block=deployment.manifest.start_block,
            subgraphs=set(),
            transferred_to_l2=deployment.transferred_to_l2,
            allocations=allocations,
        ),
    )


def _try_into_indexer_raw_info(indexer: Indexer) -> IndexerRawInfo:
    if indexer.url is None:
        raise ValueError("missing URL")

    try:
        parts = urlsplit(indexer.url.strip())
        parts.port  # validates the port
    except ValueError as err:
        raise ValueError(f"invalid URL: parsing failed: {err}") from err
    if not parts.scheme:
        raise ValueError("invalid URL: parsing failed: relative URL without a base")

    scheme = parts.scheme.lower()
    if not scheme.startswith("http"):
        raise ValueError("invalid URL: invalid scheme")
    if not parts.hostname:
        raise ValueError("invalid URL: missing host")

    url = urlunsplit((scheme, parts.netloc, parts.path or "/", parts.query, parts.fragment))
    return IndexerRawInfo(id=indexer.id, url=url, staked_tokens=indexer.staked_tokens)