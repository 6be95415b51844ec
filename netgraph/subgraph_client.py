"""Registry types and the client that pages through the network subgraph."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

PAGE_SIZE = 1000

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1
_U128_MAX = 2**128 - 1

_ADDRESS_RE = re.compile(r"(?:0x)?([0-9a-fA-F]{40})")
_UINT_RE = re.compile(r"\+?[0-9]+")

_QUERY_TEMPLATE = """
            subgraphs(
                block: $block
                orderBy: id, orderDirection: asc
                first: $first
                where: {{
                    id_gt: $last
                    entityVersion: 2
                    versionCount_gte: 1
                    {active_filter}
                }}
            ) {{
                id
                {id_on_l2}
                versions(orderBy: version, orderDirection: desc) {{
                    version
                    subgraphDeployment {{
                        ipfsHash
                        manifest {{
                            network
                            startBlock
                        }}
                        indexerAllocations(
                            first: 100
                            orderBy: allocatedTokens, orderDirection: desc
                            where: {{ status: Active }}
                        ) {{
                            id
                            allocatedTokens
                            indexer {{
                                id
                                url
                                stakedTokens
                            }}
                        }}
                        {transferred_to_l2}
                    }}
                }}
            }}
        """


class PaginatedQueryClient(Protocol):
    """A client able to run a paginated query against a subgraph."""

    async def paginated_query(
        self, query: str, batch_size: int
    ) -> Sequence[Mapping[str, Any]]: ...


@dataclass(frozen=True)
class Manifest:
    network: Optional[str]
    start_block: int


@dataclass(frozen=True)
class Indexer:
    id: str
    url: Optional[str]
    staked_tokens: int


@dataclass(frozen=True)
class Allocation:
    id: str
    allocated_tokens: int
    indexer: Indexer


@dataclass(frozen=True)
class SubgraphDeployment:
    id: str
    manifest: Optional[Manifest]
    allocations: list[Allocation] = field(default_factory=list)
    transferred_to_l2: bool = False


@dataclass(frozen=True)
class SubgraphVersion:
    version: int
    subgraph_deployment: SubgraphDeployment


@dataclass(frozen=True)
class Subgraph:
    id: str
    id_on_l2: Optional[str]
    versions: list[SubgraphVersion] = field(default_factory=list)


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"invalid {what}: expected an object")
    return value


def _required(data: Mapping[str, Any], key: str) -> Any:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    return data[key]


def _identifier(value: Any, key: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid `{key}`: expected a non-empty string")
    return value


def _optional_identifier(value: Any, key: str) -> Optional[str]:
    return None if value is None else _identifier(value, key)


def _optional_str(value: Any, key: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"invalid `{key}`: expected a string")
    return value


def _address(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"invalid `{key}`: expected an address string")
    match = _ADDRESS_RE.fullmatch(value)
    if match is None:
        raise ValueError(f"invalid `{key}`: malformed address {value!r}")
    return "0x" + match.group(1).lower()


def _uint_from_str(value: Any, key: str, maximum: int) -> int:
    if not isinstance(value, str) or _UINT_RE.fullmatch(value) is None:
        raise ValueError(f"invalid `{key}`: expected a decimal string")
    number = int(value)
    if number > maximum:
        raise ValueError(f"invalid `{key}`: number too large")
    return number


def _parse_indexer(data: Any) -> Indexer:
    data = _mapping(data, "indexer")
    return Indexer(
        id=_address(_required(data, "id"), "id"),
        url=_optional_str(data.get("url"), "url"),
        staked_tokens=_uint_from_str(
            _required(data, "stakedTokens"), "stakedTokens", _U128_MAX
        ),
    )


def _parse_allocation(data: Any) -> Allocation:
    data = _mapping(data, "allocation")
    return Allocation(
        id=_address(_required(data, "id"), "id"),
        allocated_tokens=_uint_from_str(
            _required(data, "allocatedTokens"), "allocatedTokens", _U128_MAX
        ),
        indexer=_parse_indexer(_required(data, "indexer")),
    )


def _parse_manifest(data: Any) -> Optional[Manifest]:
    if data is None:
        return None
    data = _mapping(data, "manifest")
    return Manifest(
        network=_optional_str(data.get("network"), "network"),
        start_block=_uint_from_str(
            _required(data, "startBlock"), "startBlock", _U64_MAX
        ),
    )


def _parse_deployment(data: Any) -> SubgraphDeployment:
    data = _mapping(data, "subgraph deployment")
    allocations = _required(data, "indexerAllocations")
    if not isinstance(allocations, list):
        raise ValueError("invalid `indexerAllocations`: expected a list")
    transferred = data.get("transferredToL2", False)
    if not isinstance(transferred, bool):
        raise ValueError("invalid `transferredToL2`: expected a boolean")
    return SubgraphDeployment(
        id=_identifier(_required(data, "ipfsHash"), "ipfsHash"),
        manifest=_parse_manifest(data.get("manifest")),
        allocations=[_parse_allocation(item) for item in allocations],
        transferred_to_l2=transferred,
    )


def _parse_version(data: Any) -> SubgraphVersion:
    data = _mapping(data, "subgraph version")
    version = _required(data, "version")
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValueError("invalid `version`: expected an integer")
    if not 0 <= version <= _U32_MAX:
        raise ValueError("invalid `version`: out of range")
    return SubgraphVersion(
        version=version,
        subgraph_deployment=_parse_deployment(_required(data, "subgraphDeployment")),
    )


def parse_subgraph(data: Any) -> Subgraph:
    """Build a :class:`Subgraph` from one decoded network-subgraph JSON object."""
    data = _mapping(data, "subgraph")
    versions = _required(data, "versions")
    if not isinstance(versions, list):
        raise ValueError("invalid `versions`: expected a list")
    return Subgraph(
        id=_identifier(_required(data, "id"), "id"),
        id_on_l2=_optional_identifier(data.get("idOnL2"), "idOnL2"),
        versions=[_parse_version(item) for item in versions],
    )


def parse_subgraphs(data: Iterable[Any]) -> list[Subgraph]:
    """Build a list of subgraphs from decoded network-subgraph JSON objects."""
    if isinstance(data, (str, bytes, Mapping)):
        raise ValueError("invalid subgraphs: expected a list")
    return [parse_subgraph(item) for item in data]


def build_query(l2_transfer_support: bool) -> str:
    """Return the paginated subgraphs query body.

    Subgraphs are ordered by id, versions newest first, and allocations
    largest first.
    """
    return _QUERY_TEMPLATE.format(
        active_filter="" if l2_transfer_support else "active: true",
        id_on_l2="idOnL2" if l2_transfer_support else "",
        transferred_to_l2="transferredToL2" if l2_transfer_support else "",
    )


class NetworkSubgraphClient:
    """Fetches the current subgraph registry from the network subgraph."""

    def __init__(self, client: PaginatedQueryClient, l2_transfer_support: bool) -> None:
        self.client = client
        self.l2_transfer_support = l2_transfer_support

    def query(self) -> str:
        """The query this client sends."""
        return build_query(self.l2_transfer_support)

    async def fetch(self) -> list[Subgraph]:
        """Fetch and decode every subgraph with at least one version."""
        raw = await self.client.paginated_query(self.query(), PAGE_SIZE)
        return parse_subgraphs(raw)