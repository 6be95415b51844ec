"""A service keeping an up-to-date network topology and answering lookups on it."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Union

from netgraph.network import (
    PreprocessedNetworkInfo,
    SubgraphFetcher,
    fetch_and_preprocess_subgraph_info,
    fetch_update,
)
from netgraph.snapshot import Indexing, IndexingError, IndexingId, NetworkTopologySnapshot
from netgraph.state import InternalState
from netgraph.subgraph_processing import DeploymentError, SubgraphError

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL = 60.0
"""Default topology update interval, in seconds."""

NETWORK_TOPOLOGY_FETCH_TIMEOUT = 15.0
"""Timeout of one network subgraph fetch, in seconds."""


@dataclass
class ResolvedSubgraphInfo:
    """What a subgraph or deployment lookup resolves to."""

    chain: str
    start_block: int
    subgraphs: list[str]
    versions: list[str]
    indexings: dict[IndexingId, Union[Indexing, IndexingError]] = field(default_factory=dict)

    def latest_reported_block(self) -> Optional[int]:
        """The highest latest block reported by any healthy indexing."""
        return max(
            (
                indexing.progress.latest_block
                for indexing in self.indexings.values()
                if isinstance(indexing, Indexing)
            ),
            default=None,
        )


class NetworkService:
    """Holds the latest topology snapshot and answers lookups against it."""

    def __init__(self, snapshot: Optional[NetworkTopologySnapshot] = None) -> None:
        self._snapshot = snapshot if snapshot is not None else NetworkTopologySnapshot()
        self._generation = 0
        self._seen = 0
        self._updated = asyncio.Event()

    @property
    def snapshot(self) -> NetworkTopologySnapshot:
        """The current topology snapshot."""
        return self._snapshot

    def publish(self, snapshot: NetworkTopologySnapshot) -> None:
        """Replace the current snapshot and wake up waiters."""
        self._snapshot = snapshot
        self._generation += 1
        event, self._updated = self._updated, asyncio.Event()
        event.set()

    async def changed(self) -> None:
        """Wait until a snapshot not yet seen has been published."""
        while self._seen == self._generation:
            await self._updated.wait()
        self._seen = self._generation

    async def wait_until_ready(self) -> None:
        """Wait until the topology holds at least one subgraph."""
        while not self._snapshot.subgraphs:
            await self.changed()
        self._seen = self._generation

    def resolve_with_subgraph_id(self, id: str) -> Optional[ResolvedSubgraphInfo]:
        """Resolve a subgraph; ``None`` if unknown, its error raised if invalid."""
        subgraph = self._snapshot.subgraphs.get(id)
        if subgraph is None:
            return None
        if isinstance(subgraph, SubgraphError):
            raise subgraph
        return ResolvedSubgraphInfo(
            chain=subgraph.chain,
            start_block=subgraph.start_block,
            subgraphs=[subgraph.id],
            versions=list(subgraph.versions),
            indexings=dict(subgraph.indexings),
        )

    def resolve_with_deployment_id(self, id: str) -> Optional[ResolvedSubgraphInfo]:
        """Resolve a deployment; ``None`` if unknown, its error raised if invalid."""
        deployment = self._snapshot.deployments.get(id)
        if deployment is None:
            return None
        if isinstance(deployment, DeploymentError):
            raise deployment
        return ResolvedSubgraphInfo(
            chain=deployment.chain,
            start_block=deployment.start_block,
            subgraphs=list(deployment.subgraphs),
            versions=[id],
            indexings=dict(deployment.indexings),
        )

    def indexing_progress(self) -> dict[IndexingId, int]:
        """The latest block reported by every healthy indexing of every deployment."""
        return {
            indexing_id: indexing.progress.latest_block
            for deployment in self._snapshot.deployments.values()
            if not isinstance(deployment, DeploymentError)
            for indexing_id, indexing in deployment.indexings.items()
            if isinstance(indexing, Indexing)
        }


class NetworkServicePending:
    """A configured service whose updater has not been started yet."""

    def __init__(
        self,
        subgraph_client: SubgraphFetcher,
        internal_state: InternalState,
        update_interval: float = DEFAULT_UPDATE_INTERVAL,
    ) -> None:
        self.subgraph_client = subgraph_client
        self.internal_state = internal_state
        self.update_interval = update_interval
        self.task: Optional[asyncio.Task[None]] = None

    def spawn(self) -> NetworkService:
        """Start the background updater and return the service it feeds.

        Must be called with a running event loop; the updater task is kept
        in :attr:`task`.
        """
        service = NetworkService()
        self.task = asyncio.get_running_loop().create_task(
            run_updater(service, self.subgraph_client, self.internal_state, self.update_interval)
        )
        return service


async def run_updater(
    service: NetworkService,
    subgraph_client: SubgraphFetcher,
    state: InternalState,
    update_interval: float,
) -> None:
    """Refresh the service's topology every ``update_interval`` seconds, forever.

    A failed fetch is logged and the last successfully fetched information is
    used instead; until one fetch succeeds, nothing is published. Missed ticks
    are skipped.
    """
    loop = asyncio.get_running_loop()
    network_info: Optional[PreprocessedNetworkInfo] = None
    scheduled = loop.time()

    while True:
        now = loop.time()
        if scheduled > now:
            await asyncio.sleep(scheduled - now)
            now = loop.time()
        if update_interval > 0:
            scheduled += update_interval * (math.floor((now - scheduled) / update_interval) + 1)
        else:
            scheduled = now

        try:
            network_info = await fetch_and_preprocess_subgraph_info(
                subgraph_client, NETWORK_TOPOLOGY_FETCH_TIMEOUT
            )
        except Exception as err:
            logger.error("network subgraph update failed: %s", err)
        if network_info is None:
            continue

        snapshot = await fetch_update(network_info, state)
        logger.info(
            "network topology updated (subgraphs=%d deployments=%d indexings=%d)",
            len(snapshot.subgraphs),
            len(snapshot.deployments),
            sum(
                len(d.indexings)
                for d in snapshot.deployments.values()
                if not isinstance(d, DeploymentError)
            ),
        )
        service.publish(snapshot)