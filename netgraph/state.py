"""The state shared by the network topology processing steps."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from netgraph.indexer_processing import (
    AddrBlocklist,
    CostModelCompiler,
    CostModelResolver,
    HostBlocklist,
    HostResolver,
    IndexerVersionResolver,
    PoiBlocklist,
    PoiResolver,
    ProgressResolver,
    VersionRequirements,
)


@dataclass(kw_only=True)
class InternalState:
    """Resolvers, blocklists and requirements used to process indexers.

    Blocklists left as ``None`` are not configured and block nothing.
    """

    indexer_addr_blocklist: Optional[AddrBlocklist] = None
    indexer_host_resolver: HostResolver
    indexer_host_blocklist: Optional[HostBlocklist] = None
    indexer_version_requirements: VersionRequirements = field(
        default_factory=VersionRequirements
    )
    indexer_version_resolver: IndexerVersionResolver
    indexer_indexing_pois_blocklist: Optional[tuple[PoiResolver, PoiBlocklist]] = None
    indexer_indexing_progress_resolver: ProgressResolver
    indexer_indexing_cost_model_resolver: tuple[CostModelResolver, CostModelCompiler]