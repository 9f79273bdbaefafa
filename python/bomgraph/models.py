"""Core data models for bomgraph."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from cyclonedx.model.component import ComponentScope, ComponentType

from .identity import IdentityResolver

# Required beats Optional beats Excluded whenever paths disagree.
SCOPE_RANK: Dict[ComponentScope, int] = {
    ComponentScope.EXCLUDED: 0,
    ComponentScope.OPTIONAL: 1,
    ComponentScope.REQUIRED: 2,
}


def wider_scope(first: ComponentScope, second: ComponentScope) -> ComponentScope:
    """Return the more permissive of two scopes."""
    return first if SCOPE_RANK[first] >= SCOPE_RANK[second] else second


def narrower_scope(first: ComponentScope, second: ComponentScope) -> ComponentScope:
    """Return the more restrictive of two scopes."""
    return first if SCOPE_RANK[first] <= SCOPE_RANK[second] else second


@dataclass(frozen=True, order=True)
class Hash:
    """A digest of a package artifact (CycloneDX algorithm name + hex content)."""

    alg: str
    content: str


@dataclass(frozen=True, order=True)
class License:
    """A license entry: an SPDX id or a free-text name, optionally with a URL."""

    id: str = ""
    name: str = ""
    url: str = ""


@dataclass(frozen=True, order=True)
class ExternalReference:
    """A typed URL attached to a component (website, vcs, distribution, ...)."""

    type: str
    url: str


def union_sorted(existing: Iterable, incoming: Iterable) -> List:
    """Union two value lists by content equality, in canonical order."""
    return sorted(set(existing) | set(incoming))


@dataclass
class Component:
    """A node of the BOM graph, keyed by its canonical identity."""

    identity: str  # purl for packages, name@version for project roots
    name: str
    version: str = ""
    type: ComponentType = ComponentType.LIBRARY
    scope: ComponentScope = ComponentScope.REQUIRED
    hashes: List[Hash] = field(default_factory=list)
    licenses: List[License] = field(default_factory=list)
    external_references: List[ExternalReference] = field(default_factory=list)
    publisher: str = ""
    description: str = ""
    copyright: str = ""

    def __post_init__(self):
        """Keep list-valued fields deduplicated and canonically ordered."""
        self.hashes = union_sorted(self.hashes, ())
        self.licenses = union_sorted(self.licenses, ())
        self.external_references = union_sorted(self.external_references, ())

    @property
    def is_package(self) -> bool:
        """True when the identity is a package URL."""
        return self.identity.startswith("pkg:")

    def __str__(self) -> str:
        return self.identity


class SourceKind(str, Enum):
    """Where a piece of dependency evidence came from."""

    MANIFEST = "manifest"            # declared reference in a project file
    ASSETS = "assets"                # resolved entry in a lock/assets file
    PACKAGES_CONFIG = "packages-config"
    METADATA = "metadata"            # resolved package metadata (nuspec, registry)


ROOT_MARKER = "$root"


@dataclass
class EvidenceRecord:
    """One normalized observation of a dependency from a single source."""

    source_kind: SourceKind
    name: str
    ecosystem: str = "nuget"
    declared_version: str = ""  # version or range as written by the source
    resolved_version: str = ""
    is_development_only: Optional[bool] = None  # tri-state, None = unknown
    is_optional: bool = False
    parent: Optional[str] = ROOT_MARKER  # parent identity, ROOT_MARKER, or None for no edge
    dependencies: Dict[str, str] = field(default_factory=dict)  # name -> version or range
    hashes: List[Hash] = field(default_factory=list)
    licenses: List[License] = field(default_factory=list)
    external_references: List[ExternalReference] = field(default_factory=list)
    publisher: str = ""
    description: str = ""
    copyright: str = ""

    @property
    def version(self) -> str:
        """The version used for identity: resolved, else an exact declared version."""
        if self.resolved_version:
            return self.resolved_version
        if IdentityResolver.is_exact(self.declared_version):
            return self.declared_version
        return ""

    @property
    def edge_kind(self) -> ComponentScope:
        """Kind of the edge from the parent to this record's package."""
        if self.is_development_only:
            return ComponentScope.EXCLUDED
        if self.is_optional:
            return ComponentScope.OPTIONAL
        return ComponentScope.REQUIRED


class AnomalyKind(str, Enum):
    """Non-fatal inconsistencies recorded while building a graph."""

    MALFORMED_EVIDENCE = "malformed-evidence"
    DANGLING_EDGE = "dangling-edge"
    AMBIGUOUS_REFERENCE = "ambiguous-reference"
    IDENTITY_COLLISION = "identity-collision"  # a project left out of a merge


@dataclass(frozen=True)
class Anomaly:
    """A recorded anomaly; the build continues."""

    kind: AnomalyKind
    message: str
    subject: str = ""

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(eq=False)
class BomGraph:
    """
    A finalized dependency graph: a flat node table plus an adjacency table.

    Nodes never point at each other; edges are identity pairs, so dependency
    cycles are representable and traversals carry a visited set.
    """

    root: str
    components: Dict[str, Component] = field(default_factory=dict)
    edges: Dict[str, Set[str]] = field(default_factory=dict)
    edge_kinds: Dict[Tuple[str, str], ComponentScope] = field(default_factory=dict)
    serial_number: Optional[UUID] = None
    timestamp: Optional[datetime] = None
    anomalies: List[Anomaly] = field(default_factory=list)

    @property
    def root_component(self) -> Component:
        return self.components[self.root]

    def ordered_components(self, include_root: bool = False) -> List[Component]:
        """Components in identity order (the root is left out by default)."""
        return [
            self.components[identity]
            for identity in sorted(self.components)
            if include_root or identity != self.root
        ]

    def dependencies_of(self, identity: str) -> List[str]:
        """Direct dependencies of a node, in identity order."""
        return sorted(self.edges.get(identity, ()))

    def ordered_edges(self) -> List[Tuple[str, List[str]]]:
        """One (ref, dependsOn) entry per node, in identity order."""
        return [(identity, self.dependencies_of(identity)) for identity in sorted(self.components)]

    def edge_kind(self, source: str, target: str) -> ComponentScope:
        return self.edge_kinds.get((source, target), ComponentScope.REQUIRED)

    def copy(self) -> 'BomGraph':
        """Independent copy; components are copied so scopes can be rewritten."""
        return BomGraph(
            root=self.root,
            components={identity: replace(c) for identity, c in self.components.items()},
            edges={identity: set(targets) for identity, targets in self.edges.items()},
            edge_kinds=dict(self.edge_kinds),
            serial_number=self.serial_number,
            timestamp=self.timestamp,
            anomalies=list(self.anomalies),
        )

    def _structure(self):
        edges = {
            (source, target)
            for source, targets in self.edges.items()
            for target in targets
        }
        return self.root, self.components, edges, self.serial_number, self.timestamp

    def __eq__(self, other) -> bool:
        """Structural equality: root, component fields (incl. scope), edges, serial and timestamp."""
        if not isinstance(other, BomGraph):
            return NotImplemented
        return self._structure() == other._structure()

    def __repr__(self) -> str:
        edge_count = sum(len(targets) for targets in self.edges.values())
        return f"BomGraph(root={self.root!r}, components={len(self.components)}, edges={edge_count})"
