"""Normalization of heterogeneous dependency evidence into EvidenceRecords."""

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from cyclonedx.exception.model import InvalidUriException
from cyclonedx.model import ExternalReferenceType, HashAlgorithm, XsUri
from packageurl import PackageURL

from .errors import MalformedEvidenceError
from .identity import IdentityResolver
from .models import (
    ROOT_MARKER,
    Anomaly,
    AnomalyKind,
    EvidenceRecord,
    ExternalReference,
    Hash,
    License,
    SourceKind,
)

logger = logging.getLogger(__name__)

HEX_PATTERN = re.compile(r'^[0-9a-fA-F]+$')
SPDX_ID_PATTERN = re.compile(r'^[A-Za-z0-9.\-+]+$')
LICENSE_OPERATORS = re.compile(r'\s+(?:AND|OR|WITH)\s+|[()]')

# "SHA512", "sha-512" and "SHA-512" all map to the CycloneDX name "SHA-512"
_HASH_ALGORITHMS: Dict[str, str] = {
    re.sub(r'[-_]', '', alg.value.upper()): alg.value for alg in HashAlgorithm
}
# Digest sizes in bytes, used to tell hex from base64 content
_DIGEST_SIZES: Dict[str, int] = {
    'MD5': 16, 'SHA-1': 20, 'SHA-256': 32, 'SHA-384': 48, 'SHA-512': 64,
    'SHA3-256': 32, 'SHA3-384': 48, 'SHA3-512': 64,
    'BLAKE2b-256': 32, 'BLAKE2b-384': 48, 'BLAKE2b-512': 64, 'BLAKE3': 32,
}
_REFERENCE_TYPES = {ref_type.value for ref_type in ExternalReferenceType}

_TRUE_STRINGS = {'true', 'yes', '1'}
_FALSE_STRINGS = {'false', 'no', '0'}


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    """Return the first present, non-None value among several key aliases."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def _uri(url: str) -> str:
    """Canonical URI text, escaped the same way the BOM writer escapes it."""
    if not url:
        return ""
    try:
        return str(XsUri(url))
    except InvalidUriException as e:
        raise MalformedEvidenceError(f"invalid URI {url!r}: {e}")


def _entries(value: Any, field_name: str) -> Sequence[Any]:
    """A list-valued field: missing means empty, anything but a list is malformed."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise MalformedEvidenceError(f"{field_name} must be a list, got {type(value).__name__}")
    return value


def _tri_state(value: Any, field_name: str) -> Optional[bool]:
    """Parse a development-only flag: True, False or None (unknown)."""
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return None
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise MalformedEvidenceError(f"invalid boolean for {field_name}: {value!r}")


def normalize_hash(raw: Any) -> Hash:
    """
    Normalize a hash entry to (CycloneDX algorithm, lower-case hex).

    Lock files carry base64 digests (NuGet's sha512), package metadata carries
    hex; both end up as hex so the same artifact compares equal.
    """
    if not isinstance(raw, Mapping):
        raise MalformedEvidenceError(f"hash entry must be an object: {raw!r}")

    alg_name = _text(_first(raw, 'alg', 'algorithm'))
    content = _text(_first(raw, 'content', 'value'))
    alg = _HASH_ALGORITHMS.get(re.sub(r'[-_]', '', alg_name.upper()))
    if not alg:
        raise MalformedEvidenceError(f"unknown hash algorithm: {alg_name!r}")
    if not content:
        raise MalformedEvidenceError(f"empty {alg} hash")

    size = _DIGEST_SIZES.get(alg)
    if HEX_PATTERN.match(content) and (size is None or len(content) == 2 * size):
        return Hash(alg=alg, content=content.lower())
    try:
        digest = base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedEvidenceError(f"{alg} hash is neither hex nor base64: {e}")
    if size is not None and len(digest) != size:
        raise MalformedEvidenceError(f"{alg} hash has {len(digest)} bytes, expected {size}")
    return Hash(alg=alg, content=digest.hex())


def normalize_licenses(raw: Any, expression: Any = None) -> List[License]:
    """Normalize license entries and split an SPDX expression into its ids."""
    licenses: List[License] = []

    for entry in _entries(raw, 'licenses'):
        if isinstance(entry, str):
            text = entry.strip()
            if not text:
                continue
            if SPDX_ID_PATTERN.match(text):
                licenses.append(License(id=text))
            else:
                licenses.append(License(name=text))
        elif isinstance(entry, Mapping):
            # CycloneDX-shaped entries wrap the fields in a "license" object
            body = entry.get('license', entry)
            if not isinstance(body, Mapping):
                raise MalformedEvidenceError(f"invalid license entry: {entry!r}")
            license_id = _text(body.get('id'))
            name = _text(body.get('name'))
            url = _uri(_text(body.get('url')))
            if not license_id and not name:
                raise MalformedEvidenceError(f"license entry needs an id or a name: {entry!r}")
            # An SPDX id makes the name redundant
            licenses.append(License(id=license_id, name="" if license_id else name, url=url))
        else:
            raise MalformedEvidenceError(f"invalid license entry: {entry!r}")

    if expression:
        for leaf in LICENSE_OPERATORS.split(str(expression)):
            leaf = leaf.strip()
            if leaf:
                licenses.append(License(id=leaf))

    return licenses


def normalize_external_references(raw: Any, project_url: Any = None) -> List[ExternalReference]:
    references: List[ExternalReference] = []
    for entry in _entries(raw, 'externalReferences'):
        if not isinstance(entry, Mapping):
            raise MalformedEvidenceError(f"external reference must be an object: {entry!r}")
        url = _text(entry.get('url'))
        if not url:
            raise MalformedEvidenceError(f"external reference without url: {entry!r}")
        ref_type = _text(entry.get('type')).lower() or 'other'
        if ref_type not in _REFERENCE_TYPES:
            logger.debug(f"Unknown external reference type {ref_type!r}, using 'other'")
            ref_type = 'other'
        references.append(ExternalReference(type=ref_type, url=_uri(url)))

    if project_url:
        references.append(ExternalReference(type='website', url=_uri(_text(project_url))))
    return references


def normalize_dependencies(raw: Any) -> Dict[str, str]:
    """Normalize declared child references to a name -> version-or-range map."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return {str(name).strip(): _text(version) for name, version in raw.items() if str(name).strip()}

    dependencies: Dict[str, str] = {}
    for entry in _entries(raw, 'dependencies'):
        if isinstance(entry, str):
            name, _, version = entry.partition('@')
        elif isinstance(entry, Mapping):
            name = _text(_first(entry, 'name', 'id'))
            version = _text(_first(entry, 'version', 'versionRange', 'range'))
        else:
            raise MalformedEvidenceError(f"invalid dependency reference: {entry!r}")
        if not name.strip():
            raise MalformedEvidenceError(f"dependency reference without a name: {entry!r}")
        dependencies[name.strip()] = version.strip()
    return dependencies


def resolve_parent(raw: Any, ecosystem: str) -> str:
    """
    Resolve a parent reference to an identity.

    Accepts the root marker (or null), a package URL, ``Name@version``, or a
    ``{"name", "version"}`` mapping.
    """
    if raw is None or raw == "" or raw == ROOT_MARKER:
        return ROOT_MARKER
    try:
        if isinstance(raw, Mapping):
            return IdentityResolver.resolve(
                _text(raw.get('name')), _text(raw.get('version')),
                _text(raw.get('ecosystem')) or ecosystem,
            )
        text = str(raw).strip()
        if text.startswith('pkg:'):
            purl = PackageURL.from_string(text)
            name = f"{purl.namespace}/{purl.name}" if purl.namespace else purl.name
            return IdentityResolver.resolve(name, purl.version, purl.type)
        name, _, version = text.rpartition('@') if '@' in text[1:] else (text, '', '')
        return IdentityResolver.resolve(name, version, ecosystem)
    except ValueError as e:
        raise MalformedEvidenceError(f"invalid parent reference {raw!r}: {e}")


class EvidenceCollector:
    """Turns per-source raw records into uniform EvidenceRecords."""

    def __init__(self, ecosystem: str = IdentityResolver.DEFAULT_ECOSYSTEM):
        self.ecosystem = ecosystem

    def normalize(self, raw: Union[EvidenceRecord, Mapping[str, Any]]) -> EvidenceRecord:
        """
        Normalize one raw record.

        Raises:
            MalformedEvidenceError: If the record cannot be normalized
        """
        if isinstance(raw, EvidenceRecord):
            # Typed records may name their parent as Name@version or a purl too
            if raw.parent is None or raw.parent == ROOT_MARKER:
                return raw
            return replace(raw, parent=resolve_parent(raw.parent, raw.ecosystem))
        if not isinstance(raw, Mapping):
            raise MalformedEvidenceError(f"evidence record must be an object, got {type(raw).__name__}", raw)

        try:
            return self._normalize_mapping(raw)
        except MalformedEvidenceError as e:
            if e.record is None:
                e.record = raw
            raise

    def _normalize_mapping(self, raw: Mapping[str, Any]) -> EvidenceRecord:
        kind_text = _text(_first(raw, 'sourceKind', 'source_kind', 'source')) or SourceKind.MANIFEST.value
        try:
            source_kind = SourceKind(kind_text.lower())
        except ValueError:
            raise MalformedEvidenceError(f"unknown source kind: {kind_text!r}")

        name = _first(raw, 'declaredName', 'name', 'id')
        if not isinstance(name, str) or not name.strip():
            raise MalformedEvidenceError("evidence record has no package name")

        ecosystem = (_text(_first(raw, 'ecosystem', 'system')) or self.ecosystem).lower()

        development_only = _tri_state(
            _first(raw, 'isDevelopmentOnly', 'developmentDependency', 'development_only'),
            'isDevelopmentOnly',
        )
        private_assets = _text(raw.get('privateAssets')).lower()
        if source_kind == SourceKind.MANIFEST and private_assets == 'all' and development_only is None:
            development_only = True

        if 'parent' in raw:
            parent_raw = raw['parent']
            parent = None if parent_raw is False else resolve_parent(parent_raw, ecosystem)
        elif source_kind in (SourceKind.MANIFEST, SourceKind.PACKAGES_CONFIG):
            parent = ROOT_MARKER
        else:
            # Lock-file entries and package metadata describe nodes; their edges
            # come from "dependencies" lists and from the manifest
            parent = None

        return EvidenceRecord(
            source_kind=source_kind,
            name=name.strip(),
            ecosystem=ecosystem,
            declared_version=_text(_first(raw, 'declaredVersionOrRange', 'versionRange', 'declaredVersion')),
            resolved_version=_text(_first(raw, 'resolvedVersion', 'version')),
            is_development_only=development_only,
            is_optional=bool(_tri_state(raw.get('optional'), 'optional')),
            parent=parent,
            dependencies=normalize_dependencies(raw.get('dependencies')),
            hashes=[normalize_hash(h) for h in _entries(raw.get('hashes'), 'hashes')],
            licenses=normalize_licenses(raw.get('licenses'), raw.get('licenseExpression')),
            external_references=normalize_external_references(
                raw.get('externalReferences'), raw.get('projectUrl')
            ),
            publisher=_text(_first(raw, 'publisher', 'authors')),
            description=_text(raw.get('description')),
            copyright=_text(raw.get('copyright')),
        )

    def collect(self, raw_records: Iterable[Any]) -> Tuple[List[EvidenceRecord], List[Anomaly]]:
        """Normalize a stream of records, skipping malformed ones with an anomaly each."""
        records: List[EvidenceRecord] = []
        anomalies: List[Anomaly] = []
        for index, raw in enumerate(raw_records):
            try:
                records.append(self.normalize(raw))
            except MalformedEvidenceError as e:
                logger.warning(f"Skipping malformed evidence record #{index}: {e}")
                anomalies.append(Anomaly(AnomalyKind.MALFORMED_EVIDENCE, f"record #{index}: {e}", str(index)))
        return records, anomalies


@dataclass
class ProjectEvidence:
    """Evidence for one scanned project (or one target framework of it)."""

    name: str
    version: str = "0.0.0"
    records: Union[Iterable[Any], Callable[[], Iterable[Any]]] = field(default_factory=list)

    def load_records(self) -> List[Any]:
        """Materialize the records; a callable source may raise SourceUnavailableError."""
        source = self.records() if callable(self.records) else self.records
        return list(source)


@dataclass
class EvidenceFile:
    """Parsed evidence file: an overall name/version and one or more projects."""

    name: str
    version: str
    projects: List[ProjectEvidence]

    @property
    def is_multi_project(self) -> bool:
        return len(self.projects) > 1


def load_evidence_file(path: str) -> EvidenceFile:
    """
    Load an evidence file.

    Two shapes are accepted:
      {"project": {"name": ..., "version": ...}, "records": [...]}
      {"name": ..., "version": ..., "projects": [{"name", "version", "records"}, ...]}

    Raises:
        MalformedEvidenceError: If the file is not valid evidence JSON
    """
    logger.info(f"Reading evidence from file: {path}")
    with open(path, 'r') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise MalformedEvidenceError(f"{path} is not valid JSON: {e}")

    if not isinstance(data, Mapping):
        raise MalformedEvidenceError(f"{path}: top-level value must be an object")

    if 'projects' in data:
        projects = []
        for entry in data.get('projects') or []:
            if not isinstance(entry, Mapping) or not _text(entry.get('name')):
                raise MalformedEvidenceError(f"{path}: every project needs a name")
            projects.append(ProjectEvidence(
                name=_text(entry['name']),
                version=_text(entry.get('version')) or "0.0.0",
                records=list(entry.get('records') or []),
            ))
        name = _text(data.get('name')) or "solution"
        version = _text(data.get('version')) or "0.0.0"
        return EvidenceFile(name=name, version=version, projects=projects)

    project = data.get('project') or {}
    name = _text(project.get('name')) or "project"
    version = _text(project.get('version')) or "0.0.0"
    records = data.get('records') or []
    return EvidenceFile(
        name=name,
        version=version,
        projects=[ProjectEvidence(name=name, version=version, records=list(records))],
    )
