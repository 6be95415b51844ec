"""Validation of fetched subgraphs and deployments into processed records.

Result tables map an id to either the processed record or the error
instance explaining why it was rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union


class _ValueError(Exception):
    """An error compared by type and arguments."""

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.args == other.args  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class SubgraphError(_ValueError):
    """Why a subgraph cannot be served."""


class SubgraphNoValidVersions(SubgraphError):
    def __str__(self) -> str:
        return "no valid versions"


class SubgraphNoAllocations(SubgraphError):
    def __str__(self) -> str:
        return "no allocations"


class SubgraphTransferredToL2(SubgraphError):
    def __init__(self, id_on_l2: Optional[str] = None) -> None:
        super().__init__(id_on_l2)
        self.id_on_l2 = id_on_l2

    def __str__(self) -> str:
        if self.id_on_l2 is None:
            return "transferred to L2"
        return f"transferred to L2: {self.id_on_l2}"


class DeploymentError(_ValueError):
    """Why a deployment cannot be served."""


class DeploymentNoAllocations(DeploymentError):
    def __str__(self) -> str:
        return "no allocations"


class DeploymentTransferredToL2(DeploymentError):
    def __str__(self) -> str:
        return "transferred to L2"


@dataclass(frozen=True)
class AllocationInfo:
    id: str
    indexer: str


@dataclass
class DeploymentRawInfo:
    id: str
    manifest_network: str
    manifest_start_block: int
    subgraphs: set[str] = field(default_factory=set)
    transferred_to_l2: bool = False
    allocations: list[AllocationInfo] = field(default_factory=list)


@dataclass
class SubgraphVersionRawInfo:
    version: int
    deployment: DeploymentRawInfo


@dataclass
class SubgraphRawInfo:
    id: str
    id_on_l2: Optional[str]
    versions: list[SubgraphVersionRawInfo] = field(default_factory=list)


@dataclass
class DeploymentInfo:
    id: str
    allocations: list[AllocationInfo]
    manifest_network: str
    manifest_start_block: int
    subgraphs: set[str]


@dataclass
class SubgraphVersionInfo:
    version: int
    deployment_id: str
    deployment: Union[DeploymentInfo, DeploymentError]


@dataclass
class SubgraphInfo:
    id: str
    versions: list[SubgraphVersionInfo]


SubgraphResult = Union[SubgraphInfo, SubgraphError]
DeploymentResult = Union[DeploymentInfo, DeploymentError]


def try_into_deployment_info(deployment: DeploymentRawInfo) -> DeploymentInfo:
    """Validate a raw deployment.

    Raises :class:`DeploymentTransferredToL2` when it was transferred and has
    no allocations, and :class:`DeploymentNoAllocations` when it has none.
    """
    if not deployment.allocations:
        if deployment.transferred_to_l2:
            raise DeploymentTransferredToL2()
        raise DeploymentNoAllocations()
    return DeploymentInfo(
        id=deployment.id,
        allocations=list(deployment.allocations),
        manifest_network=deployment.manifest_network,
        manifest_start_block=deployment.manifest_start_block,
        subgraphs=set(deployment.subgraphs),
    )


def _deployment_result(deployment: DeploymentRawInfo) -> DeploymentResult:
    try:
        return try_into_deployment_info(deployment)
    except DeploymentError as err:
        return err


def _process_subgraph(subgraph: SubgraphRawInfo) -> SubgraphResult:
    if not subgraph.versions:
        return SubgraphNoValidVersions()

    if all(
        v.deployment.transferred_to_l2 and not v.deployment.allocations
        for v in subgraph.versions
    ):
        return SubgraphTransferredToL2(subgraph.id_on_l2)

    if not any(v.deployment.allocations for v in subgraph.versions):
        return SubgraphNoAllocations()

    versions = [
        SubgraphVersionInfo(
            version=v.version,
            deployment_id=v.deployment.id,
            deployment=_deployment_result(v.deployment),
        )
        for v in subgraph.versions
    ]
    if all(isinstance(v.deployment, DeploymentError) for v in versions):
        return SubgraphNoValidVersions()

    return SubgraphInfo(id=subgraph.id, versions=versions)


def process_subgraph_info(
    subgraphs: dict[str, SubgraphRawInfo],
) -> dict[str, SubgraphResult]:
    """Process fetched subgraphs, keeping version order."""
    return {sid: _process_subgraph(subgraph) for sid, subgraph in subgraphs.items()}


def process_deployments_info(
    deployments: dict[str, DeploymentRawInfo],
) -> dict[str, DeploymentResult]:
    """Process fetched deployments."""
    return {did: _deployment_result(dep) for did, dep in deployments.items()}