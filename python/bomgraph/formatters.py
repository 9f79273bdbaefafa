"""CycloneDX output for BOM graphs."""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from packageurl import PackageURL
from cyclonedx.model import ExternalReference as CdxExternalReference
from cyclonedx.model import ExternalReferenceType, HashAlgorithm, HashType, XsUri
from cyclonedx.model.bom import Bom
from cyclonedx.model.component import Component as CdxComponent
from cyclonedx.model.component import ComponentType
from cyclonedx.model.license import DisjunctiveLicense
from cyclonedx.output.json import JsonV1Dot6
from cyclonedx.output.xml import XmlV1Dot6

from .config import OutputFormat
from .models import BomGraph, Component

logger = logging.getLogger(__name__)

TOOL_NAME = "bomgraph"

# Key order of emitted JSON records; keys not listed here are dropped
DOCUMENT_KEYS = ('$schema', 'bomFormat', 'specVersion', 'serialNumber', 'version',
                 'metadata', 'components', 'dependencies')
METADATA_KEYS = ('timestamp', 'tools', 'component')
COMPONENT_KEYS = ('type', 'bom-ref', 'publisher', 'name', 'version', 'description', 'scope',
                  'hashes', 'licenses', 'copyright', 'purl', 'externalReferences')
SERIAL_ATTRIBUTE = re.compile(r'\s+serialNumber="[^"]*"')


def _ordered(data: Dict, keys) -> Dict:
    """Copy of data with the given key order, dropping missing and unknown keys."""
    return {key: data[key] for key in keys if data.get(key) is not None}


def format_timestamp(timestamp: datetime) -> str:
    """UTC timestamp with a Z suffix and no fractional seconds."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


class OutputFormatter:
    """Renders BomGraphs as CycloneDX 1.6 documents."""

    @staticmethod
    def format(graph: BomGraph, output_format: OutputFormat = OutputFormat.JSON) -> str:
        if OutputFormat(output_format) == OutputFormat.XML:
            return OutputFormatter.format_as_xml(graph)
        return OutputFormatter.format_as_json(graph)

    @staticmethod
    def format_as_json(graph: BomGraph) -> str:
        """
        Generate a CycloneDX JSON document.

        The library renders the document; it is then re-emitted with a fixed
        key order, components sorted by bom-ref and the dependencies section
        rebuilt from the graph, so unchanged input gives byte-identical output.
        """
        bom = OutputFormatter.build_bom(graph)
        sbom = json.loads(JsonV1Dot6(bom).output_as_string())

        metadata = sbom.get('metadata', {})
        metadata['timestamp'] = format_timestamp(bom.metadata.timestamp)
        if 'component' in metadata:
            metadata['component'] = OutputFormatter._reorder_component(metadata['component'])
        tools = metadata.get('tools')
        if isinstance(tools, dict) and 'components' in tools:
            tools['components'] = sorted(
                (OutputFormatter._reorder_component(c) for c in tools['components']),
                key=lambda c: c.get('bom-ref', ''),
            )

        components = [OutputFormatter._reorder_component(c) for c in sbom.get('components', [])]
        components.sort(key=lambda c: c.get('bom-ref', ''))

        # Always include dependsOn (even if empty), sorted
        dependencies = [
            {'ref': identity, 'dependsOn': depends_on}
            for identity, depends_on in graph.ordered_edges()
        ]

        if graph.serial_number is None:
            sbom.pop('serialNumber', None)
        sbom['metadata'] = _ordered(metadata, METADATA_KEYS)
        sbom['components'] = components
        sbom['dependencies'] = dependencies
        return json.dumps(_ordered(sbom, DOCUMENT_KEYS), indent=2) + '\n'

    @staticmethod
    def format_as_xml(graph: BomGraph) -> str:
        """Generate a CycloneDX XML document."""
        bom = OutputFormatter.build_bom(graph)
        xml = XmlV1Dot6(bom).output_as_string(indent=2)
        if graph.serial_number is None:
            xml = SERIAL_ATTRIBUTE.sub("", xml, count=1)
        return xml

    @staticmethod
    def build_bom(graph: BomGraph) -> Bom:
        """Build the cyclonedx-python-lib model of a graph."""
        from . import __version__

        # The library always assigns a serial; documents of graphs without one drop it
        bom = Bom(serial_number=graph.serial_number) if graph.serial_number else Bom()

        tool_ref = f"pkg:pypi/{TOOL_NAME}@{__version__}"
        bom.metadata.tools.components.add(CdxComponent(
            name=TOOL_NAME,
            version=__version__,
            type=ComponentType.APPLICATION,
            purl=PackageURL.from_string(tool_ref),
            bom_ref=tool_ref,
        ))
        bom.metadata.timestamp = graph.timestamp or datetime.now(timezone.utc).replace(microsecond=0)

        cdx_components: Dict[str, CdxComponent] = {}
        root = OutputFormatter._to_cdx_component(graph.root_component, with_scope=False)
        bom.metadata.component = root
        cdx_components[graph.root] = root

        for component in graph.ordered_components():
            cdx_component = OutputFormatter._to_cdx_component(component)
            bom.components.add(cdx_component)
            cdx_components[component.identity] = cdx_component

        for identity, depends_on in graph.ordered_edges():
            bom.register_dependency(cdx_components[identity], [cdx_components[t] for t in depends_on])

        logger.debug(f"Built BOM model with {len(cdx_components)} components")
        return bom

    @staticmethod
    def _to_cdx_component(component: Component, with_scope: bool = True) -> CdxComponent:
        """Convert a graph Component to a CycloneDX Component."""
        purl = PackageURL.from_string(component.identity) if component.is_package else None

        licenses: List[DisjunctiveLicense] = []
        for lic in component.licenses:
            url = XsUri(lic.url) if lic.url else None
            if lic.id:
                licenses.append(DisjunctiveLicense(id=lic.id, url=url))
            else:
                licenses.append(DisjunctiveLicense(name=lic.name, url=url))

        return CdxComponent(
            name=component.name,
            version=component.version or None,
            type=component.type,
            bom_ref=component.identity,
            purl=purl,
            scope=component.scope if with_scope else None,
            hashes=[HashType(alg=HashAlgorithm(h.alg), content=h.content) for h in component.hashes],
            licenses=licenses,
            external_references=[
                CdxExternalReference(type=ExternalReferenceType(ref.type), url=XsUri(ref.url))
                for ref in component.external_references
            ],
            publisher=component.publisher or None,
            description=component.description or None,
            copyright=component.copyright or None,
        )

    @staticmethod
    def _reorder_component(comp: Dict) -> Dict:
        """Fixed field order for a component record, nested entries included."""
        ordered = _ordered(comp, COMPONENT_KEYS)
        if 'hashes' in ordered:
            ordered['hashes'] = sorted(
                ({'alg': h.get('alg'), 'content': h.get('content')} for h in ordered['hashes']),
                key=lambda h: (h['alg'] or '', h['content'] or ''),
            )
        if 'externalReferences' in ordered:
            ordered['externalReferences'] = sorted(
                ({'type': r.get('type'), 'url': r.get('url')} for r in ordered['externalReferences']),
                key=lambda r: (r['type'] or '', r['url'] or ''),
            )
        if 'licenses' in ordered:
            ordered['licenses'] = sorted(
                (OutputFormatter._reorder_license(entry) for entry in ordered['licenses']),
                key=lambda entry: json.dumps(entry, sort_keys=True),
            )
        return ordered

    @staticmethod
    def _reorder_license(entry: Dict) -> Dict:
        body: Optional[Dict] = entry.get('license')
        if body is None:
            return entry
        return {'license': _ordered(body, ('id', 'name', 'url'))}
