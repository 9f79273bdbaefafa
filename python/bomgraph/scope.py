"""Scope propagation over the dependency graph."""

import logging
from collections import deque
from typing import Dict, Iterable, Set

from cyclonedx.model.component import ComponentScope

from .models import SCOPE_RANK, BomGraph

logger = logging.getLogger(__name__)


class ScopePropagator:
    """
    Computes every component's scope from reachability.

    Three traversals start at the root, each over a wider set of edges:

    - required edges only: reached nodes are Required
    - required and optional edges: reached nodes are at least Optional
    - all edges, development-only included: reached nodes are at least Excluded

    A node keeps the highest level of any traversal that reached it, so a
    single production path wins over any number of development-only paths.
    Nodes that no traversal reaches are orphans and end up Excluded.
    """

    PASSES = (
        (ComponentScope.REQUIRED, {ComponentScope.REQUIRED}),
        (ComponentScope.OPTIONAL, {ComponentScope.REQUIRED, ComponentScope.OPTIONAL}),
        (ComponentScope.EXCLUDED, {ComponentScope.REQUIRED, ComponentScope.OPTIONAL, ComponentScope.EXCLUDED}),
    )

    @staticmethod
    def reachable(graph: BomGraph, edge_kinds: Iterable[ComponentScope]) -> Set[str]:
        """Identities reachable from the root over edges of the given kinds."""
        allowed = set(edge_kinds)
        visited = {graph.root}
        queue = deque([graph.root])

        while queue:
            identity = queue.popleft()
            for target in graph.dependencies_of(identity):
                if target in visited or target not in graph.components:
                    continue
                if graph.edge_kind(identity, target) not in allowed:
                    continue
                visited.add(target)
                queue.append(target)

        return visited

    @classmethod
    def compute(cls, graph: BomGraph) -> Dict[str, ComponentScope]:
        """Return the propagated scope of every component without modifying the graph."""
        scopes: Dict[str, ComponentScope] = {}
        for level, edge_kinds in cls.PASSES:
            for identity in cls.reachable(graph, edge_kinds):
                if identity not in scopes or SCOPE_RANK[level] > SCOPE_RANK[scopes[identity]]:
                    scopes[identity] = level

        orphans = [identity for identity in graph.components if identity not in scopes]
        for identity in sorted(orphans):
            logger.debug(f"Component {identity} is not reachable from {graph.root}")
            scopes[identity] = ComponentScope.EXCLUDED
        if orphans:
            logger.info(f"{len(orphans)} components are not reachable from the root, marked as excluded")

        scopes[graph.root] = ComponentScope.REQUIRED
        return scopes

    @classmethod
    def propagate(cls, graph: BomGraph) -> BomGraph:
        """
        Rewrite each component's scope in place and return the graph.

        Idempotent: running it again on its own output changes nothing.
        """
        scopes = cls.compute(graph)

        changed = 0
        for identity, component in graph.components.items():
            scope = scopes[identity]
            if component.scope != scope:
                component.scope = scope
                changed += 1

        counts = {scope: 0 for scope in SCOPE_RANK}
        for scope in scopes.values():
            counts[scope] += 1
        logger.info(f"Scope propagation complete: {counts[ComponentScope.REQUIRED]} required, "
                    f"{counts[ComponentScope.OPTIONAL]} optional, {counts[ComponentScope.EXCLUDED]} excluded "
                    f"({changed} changed)")
        return graph
