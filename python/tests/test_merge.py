"""Tests for multi-project builds and merging."""

import pytest
from cyclonedx.model.component import ComponentScope

from bomgraph.config import BuildOptions
from bomgraph.errors import IdentityCollisionError, SourceUnavailableError
from bomgraph.evidence import EvidenceFile, ProjectEvidence
from bomgraph.merge import MultiProjectMerger, ProjectResult
from bomgraph.models import AnomalyKind, Hash
from bomgraph.pipeline import build_project_graph, build_solution_graph

from conftest import FIXED_TIMESTAMP

P1 = "pkg:nuget/p@1.0.0"
P2 = "pkg:nuget/p@2.0.0"
SHARED = "pkg:nuget/shared@1.0.0"
FOO = "pkg:nuget/foo@1.0.0"
BAR = "pkg:nuget/bar@1.0.0"


def unavailable():
    raise SourceUnavailableError("nuget.org", "connection refused")


@pytest.fixture
def two_frameworks():
    return EvidenceFile(name="Solution", version="1.0.0", projects=[
        ProjectEvidence(name="App-net8.0", version="1.0.0", records=[
            {"name": "P", "version": "2.0"},
            {"name": "Shared", "version": "1.0"},
        ]),
        ProjectEvidence(name="App-net48", version="1.0.0", records=[
            {"name": "P", "version": "1.0"},
            {"name": "Shared", "version": "1.0", "isDevelopmentOnly": True},
        ]),
    ])


class TestMultiProjectMerger:
    """Tests for MultiProjectMerger."""

    def test_versions_stay_distinct(self, two_frameworks, options):
        graph = build_solution_graph(two_frameworks, options)

        assert graph.root == "Solution@1.0.0"
        assert graph.dependencies_of(graph.root) == ["App-net48@1.0.0", "App-net8.0@1.0.0"]
        assert P1 in graph.dependencies_of("App-net48@1.0.0")
        assert P2 in graph.dependencies_of("App-net8.0@1.0.0")
        assert P2 not in graph.dependencies_of("App-net48@1.0.0")
        assert P1 not in graph.dependencies_of("App-net8.0@1.0.0")

    def test_required_in_one_project_wins(self, two_frameworks, options):
        graph = build_solution_graph(two_frameworks, options)

        assert graph.components[SHARED].scope == ComponentScope.REQUIRED
        assert graph.components["App-net48@1.0.0"].scope == ComponentScope.REQUIRED

    def test_filters_run_after_merge(self, two_frameworks):
        options = BuildOptions(exclude_dev=True, timestamp=FIXED_TIMESTAMP)

        graph = build_solution_graph(two_frameworks, options)

        assert SHARED in graph.components

    def test_failing_project_is_left_out(self, two_frameworks, options):
        two_frameworks.projects.append(ProjectEvidence(name="Broken", records=unavailable))

        graph = build_solution_graph(two_frameworks, options)

        assert "Broken@0.0.0" not in graph.components
        assert len(graph.dependencies_of(graph.root)) == 2

    def test_all_projects_failing_raises(self, options):
        evidence = EvidenceFile(name="Solution", version="1.0.0", projects=[
            ProjectEvidence(name="A", records=unavailable),
            ProjectEvidence(name="B", records=unavailable),
        ])

        with pytest.raises(SourceUnavailableError):
            build_solution_graph(evidence, options)

    def test_results_are_in_name_order(self, options):
        projects = [ProjectEvidence(name=name, records=[{"name": "Foo", "version": "1.0"}])
                    for name in ("Zeta", "Alpha", "Mid")]

        results = MultiProjectMerger(max_workers=3).build_projects(
            projects, lambda project: build_project_graph(project, options)
        )

        assert [r.name for r in results] == ["Alpha", "Mid", "Zeta"]
        assert all(r.ok for r in results)

    def test_error_is_captured_per_project(self, options):
        results = MultiProjectMerger().build_projects(
            [ProjectEvidence(name="Broken", records=unavailable)],
            lambda project: build_project_graph(project, options),
        )

        assert not results[0].ok
        assert isinstance(results[0].error, SourceUnavailableError)

    def test_merge_is_order_independent(self, two_frameworks, options):
        graphs = [build_project_graph(p, options) for p in two_frameworks.projects]
        merger = MultiProjectMerger()

        forward = merger.merge(graphs, "Solution", "1.0.0", timestamp=FIXED_TIMESTAMP)
        backward = merger.merge(list(reversed(graphs)), "Solution", "1.0.0", timestamp=FIXED_TIMESTAMP)

        assert forward == backward

    def test_merge_does_not_modify_inputs(self, two_frameworks, options):
        graphs = [build_project_graph(p, options) for p in two_frameworks.projects]
        net48 = next(g for g in graphs if g.root == "App-net48@1.0.0")

        MultiProjectMerger().merge(graphs, "Solution", "1.0.0")

        assert net48.components[SHARED].scope == ComponentScope.EXCLUDED
        assert net48.root_component.scope == ComponentScope.REQUIRED

    def test_single_project_uses_option_names(self, options):
        evidence = EvidenceFile(name="project", version="0.0.0", projects=[
            ProjectEvidence(name="project", records=[{"name": "Foo", "version": "1.0"}]),
        ])
        options.project_name = "Renamed"
        options.project_version = "3.1.0"

        graph = build_solution_graph(evidence, options)

        assert graph.root == "Renamed@3.1.0"
        assert graph.timestamp == FIXED_TIMESTAMP


def hashed_project(name, digest, options, *extra):
    records = [{"name": "Foo", "version": "1.0", "hashes": [{"alg": "SHA-256", "content": digest}]}]
    records.extend({"name": package, "version": "1.0"} for package in extra)
    return build_project_graph(ProjectEvidence(name=name, version="1.0.0", records=records), options)


class TestMergeCollisions:
    """Tests for projects whose components cannot be merged."""

    def test_colliding_project_is_left_out(self, options):
        api = hashed_project("Api", "ab" * 32, options)
        worker = hashed_project("Worker", "cd" * 32, options, "Bar")

        graph, rejected = MultiProjectMerger().merge_with_rejections([worker, api], "Solution", "1.0.0")

        assert list(rejected) == ["Worker@1.0.0"]
        assert graph.dependencies_of(graph.root) == ["Api@1.0.0"]
        assert "Worker@1.0.0" not in graph.components
        assert BAR not in graph.components
        assert graph.components[FOO].hashes == [Hash("SHA-256", "ab" * 32)]
        assert [a.kind for a in graph.anomalies] == [AnomalyKind.IDENTITY_COLLISION]
        assert graph.anomalies[0].subject == "Worker@1.0.0"

    def test_collision_outcome_is_order_independent(self, options):
        api = hashed_project("Api", "ab" * 32, options)
        worker = hashed_project("Worker", "cd" * 32, options)
        merger = MultiProjectMerger()

        forward = merger.merge([api, worker], "Solution", "1.0.0", timestamp=FIXED_TIMESTAMP)
        backward = merger.merge([worker, api], "Solution", "1.0.0", timestamp=FIXED_TIMESTAMP)

        assert forward == backward

    def test_merge_results_marks_rejected_project(self, options):
        results = [
            ProjectResult(name="Api", graph=hashed_project("Api", "ab" * 32, options)),
            ProjectResult(name="Worker", graph=hashed_project("Worker", "cd" * 32, options)),
        ]

        MultiProjectMerger().merge_results(results, "Solution", "1.0.0")

        assert results[0].ok
        assert not results[1].ok
        assert isinstance(results[1].error, IdentityCollisionError)

    def test_solution_build_survives_collision(self, options):
        evidence = EvidenceFile(name="Solution", version="1.0.0", projects=[
            ProjectEvidence(name="Api", version="1.0.0", records=[
                {"name": "Foo", "version": "1.0", "hashes": [{"alg": "SHA-256", "content": "ab" * 32}]},
            ]),
            ProjectEvidence(name="Worker", version="1.0.0", records=[
                {"name": "Foo", "version": "1.0", "hashes": [{"alg": "SHA-256", "content": "cd" * 32}]},
            ]),
        ])

        graph = build_solution_graph(evidence, options)

        assert graph.dependencies_of(graph.root) == ["Api@1.0.0"]
        assert graph.anomalies[0].kind == AnomalyKind.IDENTITY_COLLISION
