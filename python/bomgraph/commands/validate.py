"""Validate command for checking BOM structure and graph consistency."""

import logging
from typing import List

from cyclonedx.model.component import ComponentScope

from ..errors import SerializationFormatError
from ..parsers import BomParser
from ..scope import ScopePropagator

logger = logging.getLogger(__name__)


def validate_bom(bom_path: str) -> bool:
    """Validate a BOM file; returns True when it has no errors (warnings allowed)."""
    errors: List[str] = []
    warnings: List[str] = []
    checks: List[str] = []

    try:
        graph = BomParser.parse_file(bom_path)
    except SerializationFormatError as e:
        graph = None
        errors.append(f"Cannot read BOM: {e}")

    if graph is not None:
        checks.append(f"root component: {graph.root}")
        if graph.serial_number:
            checks.append(f"serialNumber: urn:uuid:{graph.serial_number}")
        else:
            warnings.append("Missing serialNumber")
        if graph.timestamp:
            checks.append(f"metadata.timestamp: {graph.timestamp.isoformat()}")

        components = graph.ordered_components()
        with_purl = sum(1 for c in components if c.is_package)
        with_version = sum(1 for c in components if c.version)
        checks.append(f"components: {len(components)} total")
        checks.append(f"components with PURL: {with_purl}")
        checks.append(f"components with version: {with_version}")
        if len(components) - with_version:
            warnings.append(f"{len(components) - with_version} component(s) missing version")

        edge_count = sum(len(targets) for _, targets in graph.ordered_edges())
        checks.append(f"dependencies: {edge_count} edges")

        for anomaly in graph.anomalies:
            errors.append(str(anomaly))

        # Scopes in the document must be a fixed point of propagation
        expected = ScopePropagator.compute(graph)
        for component in components:
            if component.scope != expected[component.identity]:
                errors.append(f"{component.identity} has scope {component.scope.value}, "
                              f"graph implies {expected[component.identity].value}")

        reachable = ScopePropagator.reachable(graph, list(ComponentScope))
        unreachable = [c.identity for c in components if c.identity not in reachable]
        if unreachable:
            warnings.append(f"{len(unreachable)} component(s) not reachable from the root")

    print("BOM Validation Results:")
    print(f"  File: {bom_path}")
    print()
    print("Validation Checks:")
    for check in checks:
        print(f"  ✓ {check}")
    if errors:
        print()
        print("Errors:")
        for err in errors:
            print(f"  ✗ {err}")
    if warnings:
        print()
        print("Warnings:")
        for warn in warnings:
            print(f"  ⚠ {warn}")

    print()
    if errors:
        print(f"Result: ✗ Invalid BOM - {len(errors)} error(s)")
    elif warnings:
        print(f"Result: ✓ Valid CycloneDX BOM with {len(warnings)} warning(s)")
    else:
        print("Result: ✓ Valid CycloneDX BOM with no issues")
    return not errors
