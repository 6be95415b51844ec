import asyncio

import pytest
from semver import Version

from netgraph.indexer_processing import IndexingProgress as RawProgress
from netgraph.service import (
    NetworkService,
    NetworkServicePending,
    ResolvedSubgraphInfo,
    run_updater,
)
from netgraph.snapshot import (
    Deployment,
    Indexer,
    Indexing,
    IndexingError,
    IndexingId,
    IndexingProgress,
    NetworkTopologySnapshot,
    Subgraph,
)
from netgraph.state import InternalState
from netgraph.subgraph_client import parse_subgraphs
from netgraph.subgraph_processing import DeploymentNoAllocations, SubgraphNoAllocations
from netgraph.indexer_processing import BlockedByAddrBlocklist

SUBGRAPH_ID = "DZz4kDTdmzWLWsV373w2bSmoar3umKKH9y82SUKr5qmp"
BAD_SUBGRAPH_ID = "2ko2nM7rMkL4BmFbnMoAatb69EcA8MBApAPTorDVNTgj"
DEPLOYMENT_V110 = "QmZtNN8NbxjJ1KD5uKBYa7Gj29CT8xypSXnAmXbrLNTQgX"
DEPLOYMENT_V100 = "QmZ5EcVesbdDidvgdMtd4h5xugVkEQWBgJ84CEouZrHGEq"
BAD_DEPLOYMENT = "QmU318BETTzmjUhBMDndQEaGqyP4rCSbiSZBZapaqNQQfF"
INDEXER_1 = "0x4e5c87772c29381bcabc58c3f182b6633b5a274a"
INDEXER_2 = "0xbdfb5ee5a2abf4fc7bb1bd1221067aef7f9de491"


def _indexing(indexer, deployment, latest_block):
    return Indexing(
        id=IndexingId(indexer=indexer, deployment=deployment),
        chain="arbitrum-one",
        largest_allocation="0x177b557b12f22bb17a9d73dcc994d978dd6f5f89",
        total_allocated_tokens=0,
        indexer=Indexer(
            id=indexer,
            url="https://indexer.example.com/",
            indexer_service_version=Version(1, 0, 0),
            graph_node_version=Version(0, 35, 0),
            tap_support=True,
            staked_tokens=0,
        ),
        progress=IndexingProgress(latest_block=latest_block),
    )


def make_snapshot():
    ok_1 = _indexing(INDEXER_1, DEPLOYMENT_V110, 42440100)
    ok_2 = _indexing(INDEXER_2, DEPLOYMENT_V110, 42440200)
    blocked_id = IndexingId(indexer=INDEXER_2, deployment=DEPLOYMENT_V100)
    blocked = IndexingError(BlockedByAddrBlocklist())
    subgraph = Subgraph(
        id=SUBGRAPH_ID,
        chain="arbitrum-one",
        start_block=42440000,
        versions=[DEPLOYMENT_V110, DEPLOYMENT_V100],
        indexings={ok_1.id: ok_1, ok_2.id: ok_2, blocked_id: blocked},
    )
    deployment = Deployment(
        id=DEPLOYMENT_V110,
        chain="arbitrum-one",
        start_block=42440000,
        subgraphs={SUBGRAPH_ID},
        indexings={ok_1.id: ok_1, ok_2.id: ok_2},
    )
    return NetworkTopologySnapshot(
        subgraphs={SUBGRAPH_ID: subgraph, BAD_SUBGRAPH_ID: SubgraphNoAllocations()},
        deployments={DEPLOYMENT_V110: deployment, BAD_DEPLOYMENT: DeploymentNoAllocations()},
    )


def test_resolve_unknown_subgraph_is_none():
    service = NetworkService(make_snapshot())
    assert service.resolve_with_subgraph_id("unknown") is None
    assert service.resolve_with_deployment_id("unknown") is None


def test_resolve_invalid_subgraph_raises():
    service = NetworkService(make_snapshot())
    with pytest.raises(SubgraphNoAllocations):
        service.resolve_with_subgraph_id(BAD_SUBGRAPH_ID)
    with pytest.raises(DeploymentNoAllocations):
        service.resolve_with_deployment_id(BAD_DEPLOYMENT)


def test_resolve_with_subgraph_id():
    service = NetworkService(make_snapshot())
    info = service.resolve_with_subgraph_id(SUBGRAPH_ID)
    assert info.chain == "arbitrum-one"
    assert info.start_block == 42440000
    assert info.subgraphs == [SUBGRAPH_ID]
    assert info.versions == [DEPLOYMENT_V110, DEPLOYMENT_V100]
    assert len(info.indexings) == 3
    assert info.latest_reported_block() == 42440200


def test_resolve_with_deployment_id():
    service = NetworkService(make_snapshot())
    info = service.resolve_with_deployment_id(DEPLOYMENT_V110)
    assert info.subgraphs == [SUBGRAPH_ID]
    assert info.versions == [DEPLOYMENT_V110]
    assert set(info.indexings) == {
        IndexingId(INDEXER_1, DEPLOYMENT_V110),
        IndexingId(INDEXER_2, DEPLOYMENT_V110),
    }


def test_latest_reported_block_without_healthy_indexings():
    info = ResolvedSubgraphInfo(
        chain="mainnet",
        start_block=0,
        subgraphs=[],
        versions=[],
        indexings={IndexingId(INDEXER_1, BAD_DEPLOYMENT): IndexingError(BlockedByAddrBlocklist())},
    )
    assert info.latest_reported_block() is None


def test_indexing_progress():
    service = NetworkService(make_snapshot())
    assert service.indexing_progress() == {
        IndexingId(INDEXER_1, DEPLOYMENT_V110): 42440100,
        IndexingId(INDEXER_2, DEPLOYMENT_V110): 42440200,
    }


@pytest.mark.asyncio
async def test_wait_until_ready_and_changed():
    service = NetworkService()
    waiter = asyncio.ensure_future(service.wait_until_ready())
    await asyncio.sleep(0)
    assert not waiter.done()

    service.publish(make_snapshot())
    await asyncio.wait_for(waiter, 1.0)
    assert service.resolve_with_subgraph_id(SUBGRAPH_ID).chain == "arbitrum-one"

    changed = asyncio.ensure_future(service.changed())
    await asyncio.sleep(0)
    assert not changed.done()
    service.publish(NetworkTopologySnapshot())
    await asyncio.wait_for(changed, 1.0)
    assert service.resolve_with_subgraph_id(SUBGRAPH_ID) is None


DATA = [
    {
        "id": SUBGRAPH_ID,
        "idOnL2": None,
        "versions": [
            {
                "version": 1,
                "subgraphDeployment": {
                    "ipfsHash": DEPLOYMENT_V110,
                    "manifest": {"network": "arbitrum-one", "startBlock": "42440000"},
                    "indexerAllocations": [
                        {
                            "id": "0x177b557b12f22bb17a9d73dcc994d978dd6f5f89",
                            "allocatedTokens": "0",
                            "indexer": {
                                "id": INDEXER_1,
                                "stakedTokens": "0",
                                "url": "https://indexer.example.com/",
                            },
                        }
                    ],
                },
            }
        ],
    }
]


class FlakyClient:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("unavailable")
        return parse_subgraphs(DATA)


class HostResolver:
    async def resolve_url(self, url):
        return ["127.0.0.1"]


class Versions:
    async def resolve_indexer_service_version(self, url):
        return Version(1, 0, 0)

    async def resolve_graph_node_version(self, url):
        return Version(1, 0, 0)


class Progress:
    async def resolve(self, url, deployments):
        return {d: RawProgress(latest_block=42440500, min_block=None) for d in deployments}


class CostModels:
    async def resolve(self, url, deployments):
        return {}


class Compiler:
    def compile(self, source):
        return source


def make_state():
    return InternalState(
        indexer_host_resolver=HostResolver(),
        indexer_version_resolver=Versions(),
        indexer_indexing_progress_resolver=Progress(),
        indexer_indexing_cost_model_resolver=(CostModels(), Compiler()),
    )


@pytest.mark.asyncio
async def test_spawn_publishes_topology():
    pending = NetworkServicePending(FlakyClient(0), make_state(), 0.01)
    service = pending.spawn()
    try:
        await asyncio.wait_for(service.wait_until_ready(), 2.0)
        info = service.resolve_with_subgraph_id(SUBGRAPH_ID)
        assert info.versions == [DEPLOYMENT_V110]
        assert info.latest_reported_block() == 42440500
    finally:
        pending.task.cancel()


@pytest.mark.asyncio
async def test_updater_retries_after_failed_fetch():
    client = FlakyClient(2)
    service = NetworkService()
    task = asyncio.ensure_future(run_updater(service, client, make_state(), 0.01))
    try:
        await asyncio.wait_for(service.wait_until_ready(), 2.0)
        assert client.calls >= 3
        assert service.indexing_progress() == {IndexingId(INDEXER_1, DEPLOYMENT_V110): 42440500}
    finally:
        task.cancel()