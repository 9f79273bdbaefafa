"""Tests for CycloneDX output and parsing."""

import json
import random

import pytest
from cyclonedx.model.component import ComponentScope, ComponentType

from bomgraph.config import OutputFormat
from bomgraph.errors import SerializationFormatError
from bomgraph.formatters import OutputFormatter, format_timestamp
from bomgraph.graph_builder import DependencyGraphBuilder
from bomgraph.models import AnomalyKind, License
from bomgraph.parsers import BomParser
from bomgraph.scope import ScopePropagator

from conftest import FIXED_TIMESTAMP


def build(records):
    graph = DependencyGraphBuilder("WebApp", "1.0.0", timestamp=FIXED_TIMESTAMP).build(records)
    return ScopePropagator.propagate(graph)


MINIMAL_JSON = json.dumps({
    "bomFormat": "CycloneDX",
    "specVersion": "1.6",
    "metadata": {"component": {"bom-ref": "App@1.0.0", "name": "App", "version": "1.0.0"}},
    "components": [{"bom-ref": "pkg:nuget/foo@1.0.0", "name": "Foo", "version": "1.0.0"}],
})


class TestJsonOutput:
    """Tests for the JSON document layout."""

    def test_document_structure(self, sample_records):
        sbom = json.loads(OutputFormatter.format_as_json(build(sample_records)))

        assert list(sbom)[-2:] == ["components", "dependencies"]
        assert sbom["bomFormat"] == "CycloneDX"
        assert sbom["specVersion"] == "1.6"
        assert sbom["serialNumber"].startswith("urn:uuid:")
        assert sbom["metadata"]["timestamp"] == "2024-05-01T12:30:00Z"
        assert sbom["metadata"]["component"]["bom-ref"] == "WebApp@1.0.0"
        assert "scope" not in sbom["metadata"]["component"]
        assert sbom["metadata"]["tools"]["components"][0]["name"] == "bomgraph"

    def test_components_sorted_with_scopes(self, sample_records):
        sbom = json.loads(OutputFormatter.format_as_json(build(sample_records)))
        refs = [c["bom-ref"] for c in sbom["components"]]

        assert refs == sorted(refs)
        assert len(refs) == 5
        scopes = {c["name"]: c["scope"] for c in sbom["components"]}
        assert scopes["xunit"] == "excluded"
        assert scopes["Serilog"] == "required"

    def test_hashes_and_licenses(self, sample_records):
        sbom = json.loads(OutputFormatter.format_as_json(build(sample_records)))
        newtonsoft = next(c for c in sbom["components"] if c["name"] == "Newtonsoft.Json")

        assert newtonsoft["purl"] == "pkg:nuget/newtonsoft.json@13.0.1"
        assert newtonsoft["hashes"][0]["alg"] == "SHA-512"
        assert newtonsoft["licenses"] == [{"license": {"id": "MIT"}}]
        assert newtonsoft["externalReferences"] == [{"type": "website", "url": "https://www.newtonsoft.com/json"}]

    def test_every_component_has_dependency_entry(self, sample_records):
        sbom = json.loads(OutputFormatter.format_as_json(build(sample_records)))

        refs = [entry["ref"] for entry in sbom["dependencies"]]
        assert len(refs) == 6
        assert all("dependsOn" in entry for entry in sbom["dependencies"])

    def test_format_timestamp(self):
        assert format_timestamp(FIXED_TIMESTAMP) == "2024-05-01T12:30:00Z"


class TestRoundTrip:
    """Tests for serialize/deserialize fidelity."""

    @pytest.mark.parametrize("fmt", [OutputFormat.JSON, OutputFormat.XML])
    def test_round_trip_preserves_graph(self, sample_records, fmt):
        graph = build(sample_records)

        parsed = BomParser.parse(OutputFormatter.format(graph, fmt))

        assert parsed == graph
        assert parsed.edge_kind(graph.root, "pkg:nuget/xunit@2.6.2") == ComponentScope.EXCLUDED

    @pytest.mark.parametrize("fmt", [OutputFormat.JSON, OutputFormat.XML])
    def test_output_is_idempotent(self, sample_records, fmt):
        document = OutputFormatter.format(build(sample_records), fmt)

        assert OutputFormatter.format(BomParser.parse(document), fmt) == document

    def test_json_xml_json_is_stable(self, sample_records):
        document = OutputFormatter.format_as_json(build(sample_records))

        xml = OutputFormatter.format_as_xml(BomParser.parse_json(document))

        assert OutputFormatter.format_as_json(BomParser.parse_xml(xml)) == document

    def test_record_order_does_not_matter(self, sample_records):
        expected = OutputFormatter.format_as_json(build(sample_records))

        for seed in range(5):
            shuffled = list(sample_records)
            random.Random(seed).shuffle(shuffled)
            assert OutputFormatter.format_as_json(build(shuffled)) == expected

    def test_name_casing_does_not_depend_on_record_order(self):
        declared = {"sourceKind": "manifest", "declaredName": "Newtonsoft.Json", "declaredVersionOrRange": "13.0.1"}
        locked = {"sourceKind": "assets", "name": "newtonsoft.json", "version": "13.0.1"}

        forward = OutputFormatter.format_as_json(build([declared, locked]))
        backward = OutputFormatter.format_as_json(build([locked, declared]))

        assert forward == backward
        assert json.loads(forward)["components"][0]["name"] == "Newtonsoft.Json"

    @pytest.mark.parametrize("fmt", [OutputFormat.JSON, OutputFormat.XML])
    def test_document_without_serial_number(self, sample_records, fmt):
        graph = build(sample_records)
        graph.serial_number = None

        document = OutputFormatter.format(graph, fmt)
        parsed = BomParser.parse(document)

        assert "serialNumber" not in document
        assert parsed.serial_number is None
        assert OutputFormatter.format(parsed, fmt) == document

    def test_reparsed_scopes_survive_propagation(self, sample_records):
        parsed = BomParser.parse(OutputFormatter.format_as_json(build(sample_records)))
        before = {identity: c.scope for identity, c in parsed.components.items()}

        ScopePropagator.propagate(parsed)

        assert {identity: c.scope for identity, c in parsed.components.items()} == before


class TestBomParser:
    """Tests for parsing defaults and errors."""

    def test_defaults_for_absent_fields(self):
        graph = BomParser.parse_json(MINIMAL_JSON)
        foo = graph.components["pkg:nuget/foo@1.0.0"]

        assert graph.root == "App@1.0.0"
        assert foo.scope == ComponentScope.REQUIRED
        assert foo.type == ComponentType.LIBRARY
        assert foo.hashes == []
        assert foo.licenses == []
        assert graph.edges == {}
        assert graph.serial_number is None

    def test_detects_format(self):
        assert BomParser.detect_format("  <bom/>") == OutputFormat.XML
        assert BomParser.detect_format('{"bomFormat": "CycloneDX"}') == OutputFormat.JSON

    @pytest.mark.parametrize("document", [
        "",
        "not a bom",
        "{",
        "[1, 2]",
        '{"bomFormat": "SPDX"}',
        '{"bomFormat": "CycloneDX", "metadata": {}}',
        "<bom><components>",
        "<bom><metadata/></bom>",
        "<sbom/>",
    ])
    def test_malformed_documents(self, document):
        with pytest.raises(SerializationFormatError):
            BomParser.parse(document)

    def test_unknown_scope_value(self):
        document = json.loads(MINIMAL_JSON)
        document["components"][0]["scope"] = "sometimes"

        with pytest.raises(SerializationFormatError):
            BomParser.parse_json(json.dumps(document))

    def test_duplicate_bom_ref(self):
        document = json.loads(MINIMAL_JSON)
        document["components"].append(dict(document["components"][0]))

        with pytest.raises(SerializationFormatError):
            BomParser.parse_json(json.dumps(document))

    def test_component_without_name(self):
        document = json.loads(MINIMAL_JSON)
        del document["components"][0]["name"]

        with pytest.raises(SerializationFormatError):
            BomParser.parse_json(json.dumps(document))

    def test_dangling_dependency_is_dropped(self):
        document = json.loads(MINIMAL_JSON)
        document["dependencies"] = [
            {"ref": "App@1.0.0", "dependsOn": ["pkg:nuget/foo@1.0.0", "pkg:nuget/missing@1.0.0"]},
        ]

        graph = BomParser.parse_json(json.dumps(document))

        assert graph.dependencies_of("App@1.0.0") == ["pkg:nuget/foo@1.0.0"]
        assert [a.kind for a in graph.anomalies] == [AnomalyKind.DANGLING_EDGE]

    def test_invalid_serial_number(self):
        document = json.loads(MINIMAL_JSON)
        document["serialNumber"] = "urn:uuid:not-a-uuid"

        with pytest.raises(SerializationFormatError):
            BomParser.parse_json(json.dumps(document))


class TestMetadataTemplate:
    """Tests for BomParser.parse_metadata_template."""

    def test_json_template_needs_no_bom_ref(self):
        template = BomParser.parse_metadata_template(json.dumps({
            "bomFormat": "CycloneDX",
            "metadata": {"component": {"name": "Contoso.Orders", "version": "4.2.0",
                                       "licenses": [{"expression": "MIT OR Apache-2.0"}]}},
        }))

        assert template.name == "Contoso.Orders"
        assert template.version == "4.2.0"
        assert template.type == ComponentType.APPLICATION
        assert template.licenses == [License(name="MIT OR Apache-2.0")]

    def test_xml_template(self):
        template = BomParser.parse_metadata_template(
            '<bom xmlns="http://cyclonedx.org/schema/bom/1.6"><metadata>'
            '<component type="framework"><name>Contoso.Core</name><version>2.0.0</version>'
            '<description>Shared types</description></component>'
            '</metadata></bom>'
        )

        assert template.name == "Contoso.Core"
        assert template.type == ComponentType.FRAMEWORK
        assert template.description == "Shared types"

    @pytest.mark.parametrize("document", ['{"bomFormat": "CycloneDX"}', '{"metadata": {}}', "<bom/>",
                                          "<bom><metadata/></bom>"])
    def test_template_without_component(self, document):
        assert BomParser.parse_metadata_template(document) is None

    @pytest.mark.parametrize("document", ["{", "[]", '{"metadata": {"component": "App"}}', "<bom>",
                                          '{"metadata": {"component": {"type": "gadget"}}}',
                                          '{"metadata": {"component": {"externalReferences": '
                                          '[{"type": "homepage", "url": "https://example.com"}]}}}'])
    def test_malformed_template(self, document):
        with pytest.raises(SerializationFormatError):
            BomParser.parse_metadata_template(document)
