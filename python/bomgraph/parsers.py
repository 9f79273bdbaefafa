"""Parsers that rebuild BomGraphs from CycloneDX documents."""

import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from cyclonedx.model import ExternalReferenceType, HashAlgorithm
from cyclonedx.model.component import ComponentScope, ComponentType

from .config import OutputFormat, parse_timestamp
from .errors import SerializationFormatError
from .models import Anomaly, AnomalyKind, BomGraph, Component, ExternalReference, Hash, License

logger = logging.getLogger(__name__)


def _local(tag: str) -> str:
    """Strip the namespace from an element tag: '{ns}component' -> 'component'."""
    return tag.rsplit('}', 1)[-1]


def _child(parent: ET.Element, name: str) -> Optional[ET.Element]:
    for elem in parent:
        if _local(elem.tag) == name:
            return elem
    return None


def _children(parent: Optional[ET.Element], name: str) -> List[ET.Element]:
    if parent is None:
        return []
    return [elem for elem in parent if _local(elem.tag) == name]


def _child_text(parent: ET.Element, name: str) -> str:
    elem = _child(parent, name)
    return (elem.text or "").strip() if elem is not None else ""


class BomParser:
    """
    Deserializes CycloneDX JSON and XML documents produced by OutputFormatter.

    Absent optional fields take defaults: scope -> required, type -> library,
    list fields -> empty. The edge kind of every dependency is taken from the
    scope of its target, so re-running scope propagation on a parsed graph
    reproduces the parsed scopes.
    """

    @staticmethod
    def detect_format(text: str) -> OutputFormat:
        stripped = text.lstrip()
        if stripped.startswith('<'):
            return OutputFormat.XML
        if stripped.startswith('{'):
            return OutputFormat.JSON
        raise SerializationFormatError("document is neither CycloneDX JSON nor XML")

    @staticmethod
    def parse(text: str) -> BomGraph:
        """Parse a document, detecting its format from the content."""
        if BomParser.detect_format(text) == OutputFormat.XML:
            return BomParser.parse_xml(text)
        return BomParser.parse_json(text)

    @staticmethod
    def parse_file(path: str) -> BomGraph:
        logger.info(f"Reading BOM from file: {path}")
        return BomParser.parse(Path(path).read_text())

    @staticmethod
    def parse_metadata_template(text: str) -> Optional[Component]:
        """
        Read the metadata component of a template document (JSON or XML).

        Unlike a full BOM the component may lack a bom-ref, name or version;
        a missing type means application. Returns None when the template
        has no metadata component.

        Raises:
            SerializationFormatError: If the document is malformed
        """
        if BomParser.detect_format(text) == OutputFormat.XML:
            try:
                root_elem = ET.fromstring(text)
            except ET.ParseError as e:
                raise SerializationFormatError(f"invalid XML: {e}")
            metadata = _child(root_elem, 'metadata')
            elem = _child(metadata, 'component') if metadata is not None else None
            if elem is None:
                return None
            component = BomParser._xml_component(elem, strict=False)
            has_type = bool(elem.get('type'))
        else:
            try:
                sbom = json.loads(text)
            except json.JSONDecodeError as e:
                raise SerializationFormatError(f"invalid JSON: {e}")
            if not isinstance(sbom, dict):
                raise SerializationFormatError("BOM document must be a JSON object")
            try:
                data = (sbom.get('metadata') or {}).get('component')
                if data is None:
                    return None
                component = BomParser._json_component(data, strict=False)
            except (KeyError, TypeError, AttributeError) as e:
                raise SerializationFormatError(f"malformed metadata component: {e}")
            has_type = bool(data.get('type'))

        if not has_type:
            component.type = ComponentType.APPLICATION
        return component

    @staticmethod
    def read_metadata_template(path: str) -> Optional[Component]:
        logger.info(f"Reading metadata template from file: {path}")
        return BomParser.parse_metadata_template(Path(path).read_text())

    @staticmethod
    def parse_json(text: str) -> BomGraph:
        """
        Parse a CycloneDX JSON document.

        Raises:
            SerializationFormatError: If the document is malformed
        """
        try:
            sbom = json.loads(text)
        except json.JSONDecodeError as e:
            raise SerializationFormatError(f"invalid JSON: {e}")
        if not isinstance(sbom, dict):
            raise SerializationFormatError("BOM document must be a JSON object")
        if sbom.get('bomFormat', 'CycloneDX') != 'CycloneDX':
            raise SerializationFormatError(f"not a CycloneDX document: bomFormat={sbom.get('bomFormat')!r}")

        metadata = sbom.get('metadata') or {}
        root = metadata.get('component')
        if not isinstance(root, dict):
            raise SerializationFormatError("BOM has no metadata.component to use as the root")

        try:
            root_component = BomParser._json_component(root)
            components = [BomParser._json_component(c) for c in sbom.get('components') or []]
            dependencies = [
                (entry['ref'], list(entry.get('dependsOn') or []))
                for entry in sbom.get('dependencies') or []
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise SerializationFormatError(f"malformed BOM content: {e}")

        return BomParser._assemble(
            root=root_component,
            components=components,
            dependencies=dependencies,
            serial_number=sbom.get('serialNumber'),
            timestamp=metadata.get('timestamp'),
        )

    @staticmethod
    def _json_component(data: Any, strict: bool = True) -> Component:
        if not isinstance(data, dict):
            raise SerializationFormatError(f"component must be an object: {data!r}")

        licenses = []
        for entry in data.get('licenses') or []:
            body = entry.get('license')
            if body is not None:
                licenses.append(License(id=body.get('id', ''), name=body.get('name', ''), url=body.get('url', '')))
            elif entry.get('expression'):
                licenses.append(License(name=entry['expression']))

        return BomParser._component(
            ref=data.get('bom-ref') or data.get('purl'),
            name=data.get('name'),
            version=data.get('version'),
            type_=data.get('type'),
            scope=data.get('scope'),
            hashes=[Hash(alg=h['alg'], content=h['content']) for h in data.get('hashes') or []],
            licenses=licenses,
            external_references=[
                ExternalReference(type=r.get('type', 'other'), url=r['url'])
                for r in data.get('externalReferences') or []
            ],
            publisher=data.get('publisher'),
            description=data.get('description'),
            copyright=data.get('copyright'),
            strict=strict,
        )

    @staticmethod
    def parse_xml(text: str) -> BomGraph:
        """
        Parse a CycloneDX XML document (any 1.x schema namespace).

        Raises:
            SerializationFormatError: If the document is malformed
        """
        try:
            root_elem = ET.fromstring(text)
        except ET.ParseError as e:
            raise SerializationFormatError(f"invalid XML: {e}")
        if _local(root_elem.tag) != 'bom':
            raise SerializationFormatError(f"expected a <bom> document, got <{_local(root_elem.tag)}>")

        metadata = _child(root_elem, 'metadata')
        root = _child(metadata, 'component') if metadata is not None else None
        if root is None:
            raise SerializationFormatError("BOM has no metadata/component to use as the root")

        components = [
            BomParser._xml_component(elem)
            for elem in _children(_child(root_elem, 'components'), 'component')
        ]

        dependencies: List[Tuple[str, List[str]]] = []
        for dep in _children(_child(root_elem, 'dependencies'), 'dependency'):
            ref = dep.get('ref')
            if not ref:
                raise SerializationFormatError("dependency without a ref attribute")
            dependencies.append((ref, [child.get('ref') for child in _children(dep, 'dependency')]))

        return BomParser._assemble(
            root=BomParser._xml_component(root),
            components=components,
            dependencies=dependencies,
            serial_number=root_elem.get('serialNumber'),
            timestamp=_child_text(metadata, 'timestamp') or None,
        )

    @staticmethod
    def _xml_component(elem: ET.Element, strict: bool = True) -> Component:
        hashes = [
            Hash(alg=h.get('alg', ''), content=(h.text or '').strip())
            for h in _children(_child(elem, 'hashes'), 'hash')
        ]

        licenses = []
        licenses_elem = _child(elem, 'licenses')
        for lic in _children(licenses_elem, 'license'):
            licenses.append(License(
                id=_child_text(lic, 'id'), name=_child_text(lic, 'name'), url=_child_text(lic, 'url'),
            ))
        for expression in _children(licenses_elem, 'expression'):
            licenses.append(License(name=(expression.text or '').strip()))

        references = [
            ExternalReference(type=ref.get('type', 'other'), url=_child_text(ref, 'url'))
            for ref in _children(_child(elem, 'externalReferences'), 'reference')
        ]

        return BomParser._component(
            ref=elem.get('bom-ref') or _child_text(elem, 'purl'),
            name=_child_text(elem, 'name'),
            version=_child_text(elem, 'version'),
            type_=elem.get('type'),
            scope=_child_text(elem, 'scope'),
            hashes=hashes,
            licenses=licenses,
            external_references=references,
            publisher=_child_text(elem, 'publisher'),
            description=_child_text(elem, 'description'),
            copyright=_child_text(elem, 'copyright'),
            strict=strict,
        )

    @staticmethod
    def _component(ref, name, version, type_, scope, hashes, licenses, external_references,
                   publisher, description, copyright, strict: bool = True) -> Component:
        if strict and not ref:
            raise SerializationFormatError(f"component {name!r} has neither bom-ref nor purl")
        if strict and not name:
            raise SerializationFormatError(f"component {ref} has no name")
        try:
            component_type = ComponentType(type_) if type_ else ComponentType.LIBRARY
            component_scope = ComponentScope(scope) if scope else ComponentScope.REQUIRED
            for h in hashes:
                HashAlgorithm(h.alg)
            for reference in external_references:
                ExternalReferenceType(reference.type)
        except ValueError as e:
            raise SerializationFormatError(f"component {ref}: {e}")

        return Component(
            identity=ref or "",
            name=name or "",
            version=version or "",
            type=component_type,
            scope=component_scope,
            hashes=hashes,
            licenses=licenses,
            external_references=external_references,
            publisher=publisher or "",
            description=description or "",
            copyright=copyright or "",
        )

    @staticmethod
    def _assemble(
        root: Component,
        components: List[Component],
        dependencies: List[Tuple[str, List[str]]],
        serial_number: Optional[str],
        timestamp: Optional[str],
    ) -> BomGraph:
        # The root's scope is fixed, whatever the document says
        root.scope = ComponentScope.REQUIRED
        table: Dict[str, Component] = {root.identity: root}
        for component in components:
            if component.identity in table:
                raise SerializationFormatError(f"duplicate bom-ref {component.identity}")
            table[component.identity] = component

        graph = BomGraph(root=root.identity, components=table)

        if serial_number:
            try:
                graph.serial_number = UUID(serial_number.replace('urn:uuid:', '', 1))
            except ValueError:
                raise SerializationFormatError(f"invalid serialNumber {serial_number!r}")
        if timestamp:
            try:
                graph.timestamp = parse_timestamp(timestamp)
            except ValueError:
                raise SerializationFormatError(f"invalid timestamp {timestamp!r}")

        for ref, depends_on in dependencies:
            for target in depends_on:
                if ref not in table or target not in table:
                    message = f"{ref} -> {target}: unknown component"
                    logger.warning(f"Dropping dangling dependency {message}")
                    graph.anomalies.append(Anomaly(AnomalyKind.DANGLING_EDGE, message, ref))
                    continue
                if target == ref:
                    continue
                graph.edges.setdefault(ref, set()).add(target)
                graph.edge_kinds[(ref, target)] = table[target].scope

        logger.info(f"Parsed BOM for {graph.root}: {len(table)} components")
        return graph
