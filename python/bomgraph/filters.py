"""Graph filters applied after scope propagation."""

import logging
from typing import Iterable, Optional, Set

from cyclonedx.model.component import ComponentScope

from .identity import IdentityResolver
from .models import BomGraph
from .scope import ScopePropagator

logger = logging.getLogger(__name__)


def parse_exclude_filter(value: Optional[str]) -> Set[str]:
    """Split a comma separated ``name`` / ``name@version`` list into lookup keys."""
    keys = set()
    for entry in (value or "").split(','):
        entry = entry.strip()
        if not entry:
            continue
        name, _, version = entry.partition('@')
        if version:
            keys.add(f"{name.strip().lower()}@{IdentityResolver.normalize_version(version)}")
        else:
            keys.add(name.strip().lower())
    return keys


def remove_components(graph: BomGraph, identities: Iterable[str]) -> BomGraph:
    """Remove components and every edge touching them. The root is never removed."""
    doomed = {identity for identity in identities if identity != graph.root}
    if not doomed:
        return graph

    for identity in doomed:
        graph.components.pop(identity, None)
        graph.edges.pop(identity, None)

    for source in list(graph.edges):
        graph.edges[source] -= doomed
        if not graph.edges[source]:
            del graph.edges[source]

    graph.edge_kinds = {
        (source, target): kind
        for (source, target), kind in graph.edge_kinds.items()
        if source not in doomed and target not in doomed
    }
    return graph


def exclude_packages(graph: BomGraph, exclude_filter: Optional[str]) -> BomGraph:
    """Remove packages named in the filter (case-insensitive, optionally pinned to a version)."""
    keys = parse_exclude_filter(exclude_filter)
    if not keys:
        return graph

    matched = [
        component.identity
        for component in graph.ordered_components()
        if component.name.lower() in keys
        or f"{component.name.lower()}@{component.version}" in keys
    ]
    for identity in matched:
        logger.info(f"Excluding {identity} (matches exclude filter)")
    return remove_components(graph, matched)


def remove_orphans(graph: BomGraph) -> BomGraph:
    """Remove components that cannot be reached from the root over any edge."""
    reachable = ScopePropagator.reachable(graph, list(ComponentScope))
    orphans = [identity for identity in graph.components if identity not in reachable]
    if orphans:
        logger.info(f"Removing {len(orphans)} orphaned components")
    return remove_components(graph, orphans)


def prune_excluded(graph: BomGraph) -> BomGraph:
    """Drop Excluded components (development-only dependencies and orphans)."""
    excluded = [
        identity
        for identity, component in graph.components.items()
        if component.scope == ComponentScope.EXCLUDED
    ]
    if excluded:
        logger.info(f"Pruning {len(excluded)} excluded components")
    return remove_components(graph, excluded)
