"""Merges independently built project graphs under one meta-root."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from cyclonedx.model.component import ComponentScope, ComponentType

from .config import utc_timestamp
from .errors import IdentityCollisionError
from .evidence import ProjectEvidence
from .graph_builder import merge_component, serial_number_for
from .identity import IdentityResolver
from .models import Anomaly, AnomalyKind, BomGraph, Component, wider_scope
from .scope import ScopePropagator

logger = logging.getLogger(__name__)


@dataclass
class ProjectResult:
    """Outcome of building one project: a graph, or the error that stopped it."""

    name: str
    graph: Optional[BomGraph] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.graph is not None


class MultiProjectMerger:
    """
    Builds project graphs in parallel workers and reduces them into one graph.

    Each worker owns its builder and graph; nothing is shared until the
    single-threaded merge.
    """

    def __init__(self, max_workers: int = 4):
        self.max_workers = max(1, max_workers)

    def build_projects(
        self,
        projects: Sequence[ProjectEvidence],
        build: Callable[[ProjectEvidence], BomGraph],
    ) -> List[ProjectResult]:
        """
        Build every project; a failing project does not stop its siblings.

        Results come back in project-name order regardless of completion order.
        """
        results: List[ProjectResult] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as ex:
            fut_map = {ex.submit(build, project): project.name for project in projects}
            for fut in as_completed(fut_map):
                name = fut_map[fut]
                try:
                    results.append(ProjectResult(name=name, graph=fut.result()))
                except Exception as e:
                    logger.error(f"Failed to build project {name}: {e}")
                    results.append(ProjectResult(name=name, error=e))

        results.sort(key=lambda result: result.name)
        failed = sum(1 for result in results if not result.ok)
        logger.info(f"Built {len(results) - failed} of {len(results)} projects")
        return results

    def merge(
        self,
        graphs: Iterable[BomGraph],
        name: str,
        version: str = "0.0.0",
        root_type: ComponentType = ComponentType.APPLICATION,
        timestamp: Optional[datetime] = None,
    ) -> BomGraph:
        """
        Union nodes (via merge_component) and edges of all graphs, attach each
        project root as a required dependency of a new meta-root and recompute
        scopes from the meta-root.

        The same package at two versions has two identities, so both nodes
        survive, each linked from the project that resolved it. A project
        whose components collide with an already merged project is left out
        with an identity-collision anomaly.
        """
        merged, _ = self.merge_with_rejections(graphs, name, version, root_type, timestamp)
        return merged

    def merge_with_rejections(
        self,
        graphs: Iterable[BomGraph],
        name: str,
        version: str = "0.0.0",
        root_type: ComponentType = ComponentType.APPLICATION,
        timestamp: Optional[datetime] = None,
    ) -> Tuple[BomGraph, Dict[str, IdentityCollisionError]]:
        """Like merge(), also returning the rejected project roots and their collisions."""
        version = version or "0.0.0"
        root = IdentityResolver.root_identity(name, version)
        components: Dict[str, Component] = {
            root: Component(identity=root, name=name, version=version, type=root_type)
        }
        edges: Dict[str, Set[str]] = {}
        edge_kinds: Dict[Tuple[str, str], ComponentScope] = {}
        anomalies: List[Anomaly] = []
        rejected: Dict[str, IdentityCollisionError] = {}

        ordered = sorted(graphs, key=lambda graph: graph.root)
        for graph in ordered:
            try:
                staged = self._merge_components(components, graph)
            except IdentityCollisionError as e:
                logger.error(f"Leaving project {graph.root} out of the merged graph: {e}")
                anomalies.append(Anomaly(AnomalyKind.IDENTITY_COLLISION, str(e), graph.root))
                rejected[graph.root] = e
                continue
            components.update(staged)

            for source, targets in graph.edges.items():
                for target in targets:
                    kind = graph.edge_kind(source, target)
                    edges.setdefault(source, set()).add(target)
                    previous = edge_kinds.get((source, target))
                    edge_kinds[(source, target)] = kind if previous is None else wider_scope(previous, kind)

            if graph.root != root:
                edges.setdefault(root, set()).add(graph.root)
                edge_kinds[(root, graph.root)] = ComponentScope.REQUIRED
            anomalies.extend(graph.anomalies)

        if timestamp is None and ordered:
            timestamp = ordered[0].timestamp
        if timestamp is not None:
            timestamp = utc_timestamp(timestamp)

        merged = BomGraph(
            root=root,
            components=components,
            edges=edges,
            edge_kinds=edge_kinds,
            timestamp=timestamp,
            anomalies=anomalies,
        )
        ScopePropagator.propagate(merged)
        merged.serial_number = serial_number_for(merged)

        logger.info(f"Merged {len(ordered) - len(rejected)} of {len(ordered)} projects into {root}: "
                    f"{len(components)} components")
        return merged, rejected

    @staticmethod
    def _merge_components(components: Dict[str, Component], graph: BomGraph) -> Dict[str, Component]:
        """
        Merged versions of a graph's components, without touching the table.

        Raises:
            IdentityCollisionError: If any component conflicts with the table
        """
        staged: Dict[str, Component] = {}
        for identity, component in graph.components.items():
            existing = components.get(identity)
            staged[identity] = replace(component) if existing is None else merge_component(existing, component)
        return staged

    def merge_results(
        self,
        results: Sequence[ProjectResult],
        name: str,
        version: str = "0.0.0",
        root_type: ComponentType = ComponentType.APPLICATION,
        timestamp: Optional[datetime] = None,
    ) -> BomGraph:
        """
        Merge the successful results; failed projects are left out.

        A project rejected by the merge is marked failed with its collision.
        """
        for result in results:
            if not result.ok:
                logger.warning(f"Project {result.name} is missing from the merged graph: {result.error}")
        merged, rejected = self.merge_with_rejections(
            [result.graph for result in results if result.ok],
            name, version, root_type=root_type, timestamp=timestamp,
        )
        for result in results:
            if result.ok and result.graph.root in rejected:
                result.error = rejected[result.graph.root]
        return merged
