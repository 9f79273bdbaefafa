"""Compare command for comparing two BOMs."""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..models import BomGraph
from ..parsers import BomParser

logger = logging.getLogger(__name__)

MAX_ROWS = 10


def package_key(identity: str) -> str:
    """Identity without version and qualifiers: pkg:nuget/foo@1.0.0?x=y -> pkg:nuget/foo."""
    base = identity.split('?', 1)[0]
    return base.rsplit('@', 1)[0] if '@' in base else base


@dataclass
class Comparison:
    same: List[str] = field(default_factory=list)
    version_diffs: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    scope_diffs: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    only_in_first: List[str] = field(default_factory=list)
    only_in_second: List[str] = field(default_factory=list)

    @property
    def identical(self) -> bool:
        return not (self.version_diffs or self.scope_diffs or self.only_in_first or self.only_in_second)


def compare_graphs(first: BomGraph, second: BomGraph, scope_filter: Optional[str] = None) -> Comparison:
    """Compare the components of two graphs, matching versions of the same package."""
    def selected(graph: BomGraph):
        return {
            c.identity: c for c in graph.ordered_components()
            if not scope_filter or c.scope.value == scope_filter
        }

    components1 = selected(first)
    components2 = selected(second)
    result = Comparison()

    for identity in sorted(set(components1) & set(components2)):
        result.same.append(identity)
        scope1, scope2 = components1[identity].scope.value, components2[identity].scope.value
        if scope1 != scope2:
            result.scope_diffs[identity] = (scope1, scope2)

    only1 = sorted(set(components1) - set(components2))
    only2 = sorted(set(components2) - set(components1))

    # Same package at a single different version on each side
    keys2: Dict[str, List[str]] = {}
    for identity in only2:
        keys2.setdefault(package_key(identity), []).append(identity)
    matched = set()
    for identity in only1:
        candidates = keys2.get(package_key(identity), [])
        if len(candidates) == 1:
            other = candidates[0]
            result.version_diffs[package_key(identity)] = (
                components1[identity].version or 'unknown', components2[other].version or 'unknown'
            )
            matched.update((identity, other))

    result.only_in_first = [i for i in only1 if i not in matched]
    result.only_in_second = [i for i in only2 if i not in matched]
    return result


def _print_list(title: str, items: List[str]) -> None:
    if not items:
        return
    print()
    print(title)
    for i, item in enumerate(items):
        if i >= MAX_ROWS:
            print(f"  ... and {len(items) - MAX_ROWS} more")
            break
        print(f"  - {item}")


def compare_boms(bom1_path: str, bom2_path: str, scope_filter: Optional[str] = None) -> Comparison:
    """Compare two BOM files and show differences."""
    first = BomParser.parse_file(bom1_path)
    second = BomParser.parse_file(bom2_path)
    result = compare_graphs(first, second, scope_filter)

    print("BOM Comparison:")
    if scope_filter:
        print(f"  Scope filter: {scope_filter}")
    print(f"  {bom1_path}: {len(first.components) - 1} components")
    print(f"  {bom2_path}: {len(second.components) - 1} components")
    print()
    print(f"  Same version: {len(result.same)}")
    print(f"  Version differences: {len(result.version_diffs)}")
    print(f"  Scope differences: {len(result.scope_diffs)}")
    print(f"  Only in {bom1_path}: {len(result.only_in_first)}")
    print(f"  Only in {bom2_path}: {len(result.only_in_second)}")

    if result.version_diffs:
        print()
        print("Version differences:")
        name1 = os.path.basename(bom1_path)
        name2 = os.path.basename(bom2_path)
        rows = sorted(result.version_diffs.items())[:MAX_ROWS]

        name_len = max([len("Library")] + [len(name) for name, _ in rows])
        v1_len = max([len(name1)] + [len(v1) for _, (v1, _) in rows])
        v2_len = max([len(name2)] + [len(v2) for _, (_, v2) in rows])

        print(f"  {'Library':<{name_len}}  {name1:<{v1_len}}  {name2:<{v2_len}}")
        print(f"  {'-' * name_len}  {'-' * v1_len}  {'-' * v2_len}")
        for name, (v1, v2) in rows:
            print(f"  {name:<{name_len}}  {v1:<{v1_len}}  {v2:<{v2_len}}")
        if len(result.version_diffs) > MAX_ROWS:
            print(f"  ... and {len(result.version_diffs) - MAX_ROWS} more")

    _print_list("Scope differences:", [
        f"{identity}: {s1} -> {s2}" for identity, (s1, s2) in sorted(result.scope_diffs.items())
    ])
    _print_list(f"Components only in {bom1_path}:", result.only_in_first)
    _print_list(f"Components only in {bom2_path}:", result.only_in_second)
    return result
