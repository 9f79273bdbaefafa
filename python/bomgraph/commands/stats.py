"""Stats command for showing BOM statistics."""

import logging
from typing import Dict, Optional, Set

from ..models import BomGraph
from ..parsers import BomParser

logger = logging.getLogger(__name__)


def compute_stats(graph: BomGraph, scope_filter: Optional[str] = None) -> Dict[str, int]:
    """Count components, direct and transitive packages, optionally for one scope."""
    components = [
        c for c in graph.ordered_components()
        if not scope_filter or c.scope.value == scope_filter
    ]
    refs: Set[str] = {c.identity for c in components}

    direct = refs & set(graph.dependencies_of(graph.root))
    edge_count = sum(
        1 for source, targets in graph.ordered_edges()
        for target in targets
        if target in refs and (source in refs or source == graph.root)
    )

    by_scope: Dict[str, int] = {}
    for component in components:
        by_scope[component.scope.value] = by_scope.get(component.scope.value, 0) + 1

    return {
        'total': len(components),
        'direct': len(direct),
        'transitive': len(components) - len(direct),
        'edges': edge_count,
        'required': by_scope.get('required', 0),
        'optional': by_scope.get('optional', 0),
        'excluded': by_scope.get('excluded', 0),
    }


def show_stats(bom_path: str, scope_filter: Optional[str] = None) -> Dict[str, int]:
    """Show statistics about a BOM file.

    Args:
        bom_path: Path to a CycloneDX JSON or XML file
        scope_filter: Optional scope to filter by ('required', 'optional' or 'excluded')
    """
    graph = BomParser.parse_file(bom_path)
    stats = compute_stats(graph, scope_filter)

    print("BOM Statistics:")
    print(f"  Root: {graph.root}")
    if scope_filter:
        print(f"  Scope filter: {scope_filter}")
    print(f"  Total Components: {stats['total']}")
    print(f"  Direct Dependencies: {stats['direct']}")
    print(f"  Transitive Dependencies: {stats['transitive']}")
    print(f"  Dependency Edges: {stats['edges']}")
    if not scope_filter:
        print(f"  Scopes: {stats['required']} required, {stats['optional']} optional, "
              f"{stats['excluded']} excluded")
    return stats
