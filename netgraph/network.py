"""Fetching the network subgraph and turning it into a topology snapshot."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Protocol, Union

from netgraph.indexer_processing import IndexerRawInfo, process_info
from netgraph.pre_processing import (
    into_internal_deployments_raw_info,
    into_internal_indexers_raw_info,
    into_internal_subgraphs_raw_info,
)
from netgraph.snapshot import NetworkTopologySnapshot, new_from
from netgraph.state import InternalState
from netgraph.subgraph_client import Subgraph
from netgraph.subgraph_processing import (
    DeploymentError,
    DeploymentInfo,
    SubgraphError,
    SubgraphInfo,
    process_deployments_info,
    process_subgraph_info,
)


class SubgraphFetcher(Protocol):
    """Anything that can fetch the subgraph registry."""

    async def fetch(self) -> list[Subgraph]: ...


@dataclass
class PreprocessedNetworkInfo:
    """Validated subgraphs, deployments and raw indexer information."""

    subgraphs: dict[str, Union[SubgraphInfo, SubgraphError]] = field(default_factory=dict)
    deployments: dict[str, Union[DeploymentInfo, DeploymentError]] = field(
        default_factory=dict
    )
    indexers: dict[str, IndexerRawInfo] = field(default_factory=dict)


async def fetch_update(
    network: PreprocessedNetworkInfo, state: InternalState
) -> NetworkTopologySnapshot:
    """Resolve the indexers and build a topology snapshot."""
    indexers_info = await process_info(state, network.indexers)
    return new_from(indexers_info, dict(network.subgraphs), dict(network.deployments))


async def fetch_and_preprocess_subgraph_info(
    client: SubgraphFetcher, timeout: float
) -> PreprocessedNetworkInfo:
    """Fetch the subgraph registry and validate it into the internal tables.

    Raises :class:`TimeoutError` when the fetch takes longer than ``timeout``
    seconds and :class:`ValueError` when the response is empty. Invalid
    records are filtered out.
    """
    try:
        data = await asyncio.wait_for(client.fetch(), timeout)
    except asyncio.TimeoutError as err:
        raise TimeoutError("network subgraph fetch timed out") from err
    if not data:
        raise ValueError("empty subgraph response")

    indexers = into_internal_indexers_raw_info(data)
    subgraphs_raw = into_internal_subgraphs_raw_info(data)
    deployments_raw = into_internal_deployments_raw_info(subgraphs_raw.values())

    return PreprocessedNetworkInfo(
        subgraphs=process_subgraph_info(subgraphs_raw),
        deployments=process_deployments_info(deployments_raw),
        indexers=indexers,
    )