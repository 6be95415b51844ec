# netgraph

`netgraph` builds a snapshot of an indexing network's topology. The snapshot
records which subgraphs exist, which deployments belong to them, which
indexers allocate to each deployment, and whether each of those indexings can
be used.

The package fetches the subgraph registry, validates it and converts it into
internal tables. It then checks every indexer against an optional address
blocklist and an optional host blocklist. It also checks the indexer against
minimum versions for its indexer service and graph node. Each indexing of the
indexer is then checked against an optional proof-of-indexing (POI)
blocklist, and its indexing progress and cost model are resolved. The result
is a `NetworkTopologySnapshot`, which you can look up by subgraph ID or by
deployment ID.

All durations are in seconds.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

### `netgraph.subgraph_client`

This module holds the registry data model: `Subgraph`, `SubgraphVersion`,
`SubgraphDeployment`, `Allocation`, `Indexer` and `Manifest`.

- `parse_subgraph(data)` and `parse_subgraphs(data)` build these records from
  decoded JSON objects. The JSON uses the camel-case field names (`idOnL2`,
  `subgraphDeployment`, `ipfsHash`, `indexerAllocations`, `allocatedTokens`,
  `stakedTokens`, `startBlock`, `transferredToL2`).
  - Token amounts and start blocks are decimal strings.
  - Addresses are normalised to lower-case `0x…` strings.
  - Malformed input raises `ValueError`.
- `build_query(l2_transfer_support)` returns the paginated query body. The
  query orders subgraphs by id, versions newest first and allocations largest
  first.
- `NetworkSubgraphClient(client, l2_transfer_support)` wraps any object that
  has an `async paginated_query(query, batch_size)` method.
  - `query()` returns the query the client sends.
  - `await fetch()` runs the query in pages of 1000 and returns the decoded
    subgraphs.

### `netgraph.pre_processing`

- `into_internal_indexers_raw_info(subgraphs)` aggregates indexers from all
  allocations. Indexers with no URL, or with a URL that is not HTTP(S) or has
  no host, are skipped. For each deployment it keeps the largest allocation
  and the total of allocated tokens. The total saturates at 2¹²⁸−1.
- `into_internal_subgraphs_raw_info(subgraphs)` converts subgraphs. When a
  subgraph id appears more than once, the first occurrence wins. Versions
  whose manifest or manifest network is missing are dropped.
- `into_internal_deployments_raw_info(raw_subgraphs)` collects deployments.
  When the same deployment appears more than once, its subgraphs and
  allocations are merged.

### `netgraph.subgraph_processing`

- `process_subgraph_info(subgraphs)` maps each subgraph id to a `SubgraphInfo`
  or to an error instance:
  - `SubgraphNoValidVersions`
  - `SubgraphTransferredToL2`, which carries `id_on_l2`
  - `SubgraphNoAllocations`
- `process_deployments_info(deployments)` maps each deployment id to a
  `DeploymentInfo` or to an error instance:
  - `DeploymentTransferredToL2`
  - `DeploymentNoAllocations`
- `try_into_deployment_info(deployment)` validates a single deployment and
  raises these errors.

Both error families can be compared with `==`.

### `netgraph.indexer_processing`

`await process_info(state, indexers)` resolves all indexers concurrently. It
maps each indexer address to an `IndexerInfo` or to one of the following
errors:

- `BlockedByAddrBlocklist`
- `HostResolutionFailed`
- `BlockedByHostBlocklist`
- `IndexerServiceVersionResolutionFailed`
- `IndexerServiceVersionBelowMin`
- `GraphNodeVersionBelowMin`

If the graph-node version cannot be resolved, the indexer is assumed to run
the minimum version.

Each `IndexerInfo.indexings` maps a deployment id to an `IndexingInfo` or to
one of these errors:

- `BlockedByPoiBlocklist`
- `IndexingProgressNotFound`

An `IndexingInfo` carries an `IndexingProgress` and an optional cost model. A
failed cost-model resolution or compilation leaves the cost model as `None`.
`process_indexer_indexings(state, url, indexings)` performs this step for a
single indexer.

`VersionRequirements(min_indexer_service_version, min_graph_node_version)`
holds the minimum versions. Both default to `0.0.0`.

### `netgraph.version_resolver`

`VersionResolver(fetch_indexer_service_version, fetch_graph_node_version,
timeout=5.0, cache_ttl=1800.0)` takes two async callables. Each callable
receives an indexer URL and returns a `semver.Version`.

`resolve_indexer_service_version(url)` and `resolve_graph_node_version(url)`
bound each fetch by `timeout`. When a fetch fails, they return the last
version cached for that URL. If nothing is cached, they raise
`ResolutionTimeout` or `ResolutionFetchError`. A `cache_ttl` of `None` keeps
cache entries forever.

### `netgraph.state`

`InternalState` gathers everything `process_info` needs. All fields are
keyword-only:

- `indexer_host_resolver`
- `indexer_version_resolver`
- `indexer_indexing_progress_resolver`
- `indexer_indexing_cost_model_resolver`, a `(resolver, compiler)` pair
- optional `indexer_addr_blocklist`
- optional `indexer_host_blocklist`
- optional `indexer_indexing_pois_blocklist`, a `(resolver, blocklist)` pair
- `indexer_version_requirements`

### `netgraph.snapshot`

`new_from(indexers_info, subgraphs_info, deployments_info)` builds a
`NetworkTopologySnapshot`. The snapshot has two tables:

- `subgraphs`: `Subgraph` or `SubgraphError`
- `deployments`: `Deployment` or `DeploymentError`

Each entity holds its indexings keyed by `IndexingId(indexer, deployment)`.
Each indexing is an `Indexing` or an `IndexingError`.

A subgraph takes its chain and start block from its highest valid version.
It only includes indexings of deployments on that chain. An `Indexer` has
`tap_support` set when its indexer service version is at least
`1.0.0-alpha`. `IndexingProgress.as_range()` returns
`(min_block, latest_block)`.

### `netgraph.network`

- `await fetch_and_preprocess_subgraph_info(client, timeout)` fetches the
  registry through any object with an `async fetch()` method and returns a
  `PreprocessedNetworkInfo`. It raises `TimeoutError` if the fetch is too
  slow and `ValueError` if the response is empty.
- `await fetch_update(network, state)` resolves the indexers and returns the
  snapshot.

### `netgraph.service`

`NetworkService` holds the current snapshot and provides these members:

- `publish(snapshot)`
- `await changed()`
- `await wait_until_ready()`, which waits until at least one subgraph is known
- `resolve_with_subgraph_id(id)`
- `resolve_with_deployment_id(id)`
- `indexing_progress()`

Both resolve methods return a `ResolvedSubgraphInfo`, or `None` for an
unknown id. For a known but unusable subgraph or deployment, they raise the
error that was recorded for it.

`ResolvedSubgraphInfo.latest_reported_block()` returns the highest latest
block among the healthy indexings.

`NetworkServicePending(subgraph_client, internal_state,
update_interval=60.0).spawn()` must be called inside a running event loop. It
starts `run_updater` as a task, stores that task in `.task`, and returns the
service.

The updater refreshes the snapshot every interval and skips missed ticks. A
failed fetch is logged, and the last successful fetch is reused in its place.

## Example

```python
from netgraph.service import NetworkServicePending

async def serve(subgraph_client, state, subgraph_id):
    service = NetworkServicePending(subgraph_client, state, update_interval=60).spawn()
    await service.wait_until_ready()
    info = service.resolve_with_subgraph_id(subgraph_id)
    if info is not None:
        print(info.chain, info.latest_reported_block())
```

## What the package does not do

The package contains no network I/O of its own, and it has no command-line
program or server. The caller supplies the following pieces as plain objects
that match the protocols in `netgraph.indexer_processing`:

- the client that runs the paginated registry query
- the host resolver and host blocklist
- the address blocklist
- the version fetchers
- the POI resolver and POI blocklist
- the indexing-progress resolver
- the cost-model resolver and compiler