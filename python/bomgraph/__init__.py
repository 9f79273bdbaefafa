"""bomgraph: dependency graph construction and CycloneDX BOM assembly."""

__version__ = "1.0.0"

from .config import BuildOptions, OutputFormat
from .errors import (
    BomGraphError,
    IdentityCollisionError,
    MalformedEvidenceError,
    SerializationFormatError,
    SourceUnavailableError,
)
from .evidence import EvidenceCollector, ProjectEvidence, load_evidence_file
from .formatters import OutputFormatter
from .graph_builder import DependencyGraphBuilder, merge_component
from .identity import IdentityResolver
from .merge import MultiProjectMerger, ProjectResult
from .models import BomGraph, Component, EvidenceRecord, SourceKind
from .parsers import BomParser
from .pipeline import build_project_graph, build_solution_graph
from .scope import ScopePropagator

__all__ = [
    "__version__",
    "BomGraph",
    "BomGraphError",
    "BomParser",
    "BuildOptions",
    "Component",
    "DependencyGraphBuilder",
    "EvidenceCollector",
    "EvidenceRecord",
    "IdentityCollisionError",
    "IdentityResolver",
    "MalformedEvidenceError",
    "MultiProjectMerger",
    "OutputFormat",
    "OutputFormatter",
    "ProjectEvidence",
    "ProjectResult",
    "ScopePropagator",
    "SerializationFormatError",
    "SourceKind",
    "SourceUnavailableError",
    "build_project_graph",
    "build_solution_graph",
    "load_evidence_file",
    "merge_component",
]
