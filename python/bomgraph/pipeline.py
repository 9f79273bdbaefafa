"""End-to-end build: evidence -> graph -> scopes -> merge -> filters."""

import logging
from dataclasses import replace
from typing import Optional

from cyclonedx.model.component import ComponentScope

from .config import BuildOptions
from .evidence import EvidenceFile, ProjectEvidence
from .filters import exclude_packages, prune_excluded, remove_orphans
from .graph_builder import DependencyGraphBuilder, serial_number_for
from .merge import MultiProjectMerger
from .models import BomGraph, Component
from .parsers import BomParser
from .scope import ScopePropagator

logger = logging.getLogger(__name__)


def build_project_graph(project: ProjectEvidence, options: Optional[BuildOptions] = None) -> BomGraph:
    """Build and scope the graph of a single project (no filtering)."""
    options = options or BuildOptions()
    builder = DependencyGraphBuilder(
        root_name=project.name,
        root_version=project.version,
        root_type=options.root_type,
        ecosystem=options.ecosystem,
        timestamp=options.resolved_timestamp(),
    )
    graph = builder.build(project.load_records())
    return ScopePropagator.propagate(graph)


def apply_filters(graph: BomGraph, options: BuildOptions) -> BomGraph:
    """Apply the configured filters and refresh the serial number."""
    exclude_packages(graph, options.exclude_filter)
    if options.remove_orphans:
        remove_orphans(graph)
    if options.exclude_dev:
        prune_excluded(graph)
    graph.serial_number = None if options.no_serial_number else serial_number_for(graph)
    return graph


def apply_metadata_template(graph: BomGraph, template: Component) -> BomGraph:
    """Copy the template's descriptive metadata onto the root component."""
    root = graph.root_component
    graph.components[graph.root] = replace(
        root,
        scope=ComponentScope.REQUIRED,
        hashes=template.hashes,
        licenses=template.licenses,
        external_references=template.external_references,
        publisher=template.publisher,
        description=template.description,
        copyright=template.copyright,
    )
    return graph


def build_solution_graph(evidence: EvidenceFile, options: Optional[BuildOptions] = None) -> BomGraph:
    """
    Build the final graph for an evidence file.

    A single project becomes the root itself. Several projects are built in
    parallel and merged under a meta-root; a failing project is logged and
    left out. Filters run only after the merge, so a package that is
    development-only in one project but required in another is kept.

    The root's name, version and type come from the options, then from the
    metadata template, then from the evidence file.

    Raises:
        BomGraphError: If a single project fails, or every project of a
            multi-project run fails
        OSError: If the metadata template cannot be read
    """
    options = options or BuildOptions()
    template = BomParser.read_metadata_template(options.metadata_template) if options.metadata_template else None

    name = options.project_name or (template.name if template else "") or evidence.name
    version = options.project_version or (template.version if template else "") or evidence.version
    # Pin the timestamp so that every project graph and the merge agree on it
    options = replace(
        options,
        project_type=options.project_type or (template.type if template else None),
        timestamp=options.resolved_timestamp(),
    )

    if not evidence.is_multi_project:
        project = evidence.projects[0] if evidence.projects else ProjectEvidence(name=name, version=version)
        project = ProjectEvidence(name=name, version=version, records=project.records)
        graph = build_project_graph(project, options)
    else:
        merger = MultiProjectMerger(max_workers=options.max_workers)
        results = merger.build_projects(evidence.projects, lambda project: build_project_graph(project, options))
        failures = [result for result in results if not result.ok]
        if results and len(failures) == len(results):
            raise failures[0].error

        graph = merger.merge_results(results, name, version, root_type=options.root_type,
                                     timestamp=options.timestamp)

    if template is not None:
        apply_metadata_template(graph, template)
    return apply_filters(graph, options)
