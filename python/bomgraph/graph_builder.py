"""Builds a BomGraph from normalized evidence as a sequential fold."""

import logging
import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from cyclonedx.model.component import ComponentScope, ComponentType

from .config import utc_timestamp
from .errors import IdentityCollisionError, MalformedEvidenceError
from .evidence import EvidenceCollector
from .identity import IdentityResolver
from .models import (
    ROOT_MARKER,
    Anomaly,
    AnomalyKind,
    BomGraph,
    Component,
    EvidenceRecord,
    union_sorted,
    wider_scope,
)

logger = logging.getLogger(__name__)

SERIAL_NAMESPACE = uuid.NAMESPACE_URL


def merge_component(existing: Component, incoming: Component) -> Component:
    """
    Merge two observations of the same component into a new Component.

    Scalars: the first non-empty value wins, later values only fill gaps.
    The display name is the exception: sources that spell the same package
    with different casing agree on the lowest spelling, whatever their order.
    Lists are unioned by content. Scope takes the more permissive value.

    Raises:
        IdentityCollisionError: If the identities differ, or the same hash
            algorithm carries different digests
    """
    if existing.identity != incoming.identity:
        raise IdentityCollisionError(
            existing.identity, f"cannot merge with different identity {incoming.identity}"
        )

    digests = {h.alg: h.content for h in existing.hashes}
    for h in incoming.hashes:
        if h.alg in digests and digests[h.alg] != h.content:
            raise IdentityCollisionError(
                existing.identity,
                f"conflicting {h.alg} hashes {digests[h.alg]} and {h.content}",
            )

    return replace(
        existing,
        name=min(existing.name, incoming.name) if existing.name and incoming.name else existing.name or incoming.name,
        version=existing.version or incoming.version,
        scope=wider_scope(existing.scope, incoming.scope),
        hashes=union_sorted(existing.hashes, incoming.hashes),
        licenses=union_sorted(existing.licenses, incoming.licenses),
        external_references=union_sorted(existing.external_references, incoming.external_references),
        publisher=existing.publisher or incoming.publisher,
        description=existing.description or incoming.description,
        copyright=existing.copyright or incoming.copyright,
    )


def serial_number_for(graph: BomGraph) -> uuid.UUID:
    """Deterministic serial number derived from the graph's content."""
    lines = [graph.root]
    lines.extend(sorted(graph.components))
    for source, targets in graph.ordered_edges():
        lines.extend(f"{source} -> {target}" for target in targets)
    return uuid.uuid5(SERIAL_NAMESPACE, "\n".join(lines))


class DependencyGraphBuilder:
    """
    Folds evidence records into one component graph.

    State is only mutated through add_evidence/add_or_merge_component/add_edge
    and is frozen by finalize(), which also resolves name/range references
    declared by lock-file entries:

    1. exact match on the floor version of the range
    2. otherwise the only node with that package name
    3. otherwise an ambiguous-reference or dangling-edge anomaly
    """

    def __init__(
        self,
        root_name: str,
        root_version: str = "0.0.0",
        root_type: ComponentType = ComponentType.APPLICATION,
        ecosystem: str = IdentityResolver.DEFAULT_ECOSYSTEM,
        timestamp: Optional[datetime] = None,
    ):
        if not root_name or not root_name.strip():
            raise ValueError("root component needs a name")

        self.ecosystem = ecosystem
        self.timestamp = utc_timestamp(timestamp or datetime.now(timezone.utc))
        self.collector = EvidenceCollector(ecosystem)

        root_version = root_version or "0.0.0"
        self.root = IdentityResolver.root_identity(root_name, root_version)
        # Evidence may name the scanned project itself as a package
        self._root_alias = IdentityResolver.resolve(root_name, root_version, ecosystem)

        self.components: Dict[str, Component] = {
            self.root: Component(identity=self.root, name=root_name, version=root_version, type=root_type)
        }
        self.edges: Dict[str, Set[str]] = defaultdict(set)
        self.edge_kinds: Dict[Tuple[str, str], ComponentScope] = {}
        self.anomalies: List[Anomaly] = []

        self._by_name: Dict[Tuple[str, str], Set[str]] = defaultdict(set)
        # (source identity, ecosystem, name, version or range, edge kind)
        self._pending: List[Tuple[str, str, str, str, ComponentScope]] = []
        self._finalized = False

    def _check_open(self) -> None:
        if self._finalized:
            raise RuntimeError("graph builder is already finalized")

    def _canonical(self, identity: str) -> str:
        return self.root if identity in (self._root_alias, ROOT_MARKER) else identity

    def add_evidence(self, raw: Any) -> Optional[Component]:
        """
        Fold one record (raw mapping or EvidenceRecord) into the graph.

        Malformed records are skipped and recorded as anomalies; the returned
        value is then None.
        """
        self._check_open()
        try:
            record = self.collector.normalize(raw)
            component = self.add_or_merge_component(record)
        except MalformedEvidenceError as e:
            logger.warning(f"Skipping malformed evidence: {e}")
            self.anomalies.append(Anomaly(AnomalyKind.MALFORMED_EVIDENCE, str(e), _describe(raw)))
            return None

        if record.parent is not None:
            self.add_edge(self._canonical(record.parent), component.identity, record.edge_kind)

        for name, version_range in record.dependencies.items():
            self._pending.append(
                (component.identity, record.ecosystem, name, version_range, ComponentScope.REQUIRED)
            )
        return component

    def add_or_merge_component(self, record: EvidenceRecord) -> Component:
        """
        Insert the record's component or merge it into the existing node.

        Returns the canonical node. A record naming the root project only
        contributes edges; the root's own metadata is never overwritten.
        """
        self._check_open()
        try:
            identity = IdentityResolver.resolve(record.name, record.version, record.ecosystem)
        except ValueError as e:
            raise MalformedEvidenceError(str(e), record)

        if identity == self._root_alias:
            logger.debug(f"Evidence for {record.name} refers to the root project")
            return self.components[self.root]

        incoming = Component(
            identity=identity,
            name=record.name,
            version=IdentityResolver.normalize_version(record.version),
            hashes=record.hashes,
            licenses=record.licenses,
            external_references=record.external_references,
            publisher=record.publisher,
            description=record.description,
            copyright=record.copyright,
        )

        existing = self.components.get(identity)
        if existing is None:
            self.components[identity] = incoming
            self._by_name[IdentityResolver.name_key(record.name, record.ecosystem)].add(identity)
            logger.debug(f"Added component {identity}")
            return incoming

        merged = merge_component(existing, incoming)
        self.components[identity] = merged
        return merged

    def add_edge(self, source: str, target: str, kind: ComponentScope = ComponentScope.REQUIRED) -> None:
        """Add (or widen) a dependency edge; repeated declarations are idempotent."""
        self._check_open()
        source = self._canonical(source)
        target = self._canonical(target)
        if source == target:
            logger.debug(f"Ignoring self-reference of {source}")
            return

        self.edges[source].add(target)
        previous = self.edge_kinds.get((source, target))
        self.edge_kinds[(source, target)] = kind if previous is None else wider_scope(previous, kind)

    def _resolve_reference(self, source: str, ecosystem: str, name: str, version_range: str) -> Optional[str]:
        floor = IdentityResolver.range_floor(version_range)
        if floor:
            try:
                exact = self._canonical(IdentityResolver.resolve(name, floor, ecosystem))
            except ValueError:
                exact = None
            if exact in self.components:
                return exact

        candidates = sorted(self._by_name.get(IdentityResolver.name_key(name, ecosystem), ()))
        if len(candidates) == 1:
            return candidates[0]

        reference = f"{name} {version_range}".strip()
        if candidates:
            message = f"{source} -> {reference} matches {len(candidates)} components: {', '.join(candidates)}"
            logger.warning(f"Ambiguous dependency reference: {message}")
            self.anomalies.append(Anomaly(AnomalyKind.AMBIGUOUS_REFERENCE, message, source))
        else:
            message = f"{source} -> {reference} does not match any component"
            logger.warning(f"Dropping dangling edge: {message}")
            self.anomalies.append(Anomaly(AnomalyKind.DANGLING_EDGE, message, source))
        return None

    def finalize(self) -> BomGraph:
        """
        Resolve pending references, drop dangling edges and freeze the graph.

        Scopes are left as built; run ScopePropagator on the result.
        """
        self._check_open()

        for source, ecosystem, name, version_range, kind in self._pending:
            target = self._resolve_reference(source, ecosystem, name, version_range)
            if target is not None:
                self.add_edge(source, target, kind)
        self._pending = []

        edges: Dict[str, Set[str]] = {}
        edge_kinds: Dict[Tuple[str, str], ComponentScope] = {}
        for source in sorted(self.edges):
            for target in sorted(self.edges[source]):
                missing = [end for end in (source, target) if end not in self.components]
                if missing:
                    message = f"{source} -> {target}: unknown component {missing[0]}"
                    logger.warning(f"Dropping dangling edge {message}")
                    self.anomalies.append(Anomaly(AnomalyKind.DANGLING_EDGE, message, source))
                    continue
                edges.setdefault(source, set()).add(target)
                edge_kinds[(source, target)] = self.edge_kinds[(source, target)]

        self._finalized = True

        graph = BomGraph(
            root=self.root,
            components=dict(self.components),
            edges=edges,
            edge_kinds=edge_kinds,
            timestamp=self.timestamp,
            anomalies=list(self.anomalies),
        )
        graph.serial_number = serial_number_for(graph)

        logger.info(f"Built graph for {self.root}: {len(graph.components)} components, "
                    f"{sum(len(t) for t in edges.values())} edges, {len(graph.anomalies)} anomalies")
        return graph

    def build(self, evidence: Iterable[Any]) -> BomGraph:
        """Fold all evidence in order and finalize."""
        for raw in evidence:
            self.add_evidence(raw)
        return self.finalize()


def _describe(raw: Any) -> str:
    if isinstance(raw, EvidenceRecord):
        return raw.name
    if isinstance(raw, dict):
        return str(raw.get('declaredName') or raw.get('name') or '')
    return ''
