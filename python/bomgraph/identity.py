"""Canonical identities for package references."""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from packageurl import PackageURL


@dataclass
class VersionInfo:
    """
    Parsed version information.

    Attributes:
        normalized: Version used in identities (build metadata dropped, NuGet normal form)
        original_string: The original version string as-is
        release: Dotted release part after normalization
        prerelease: Lower-cased prerelease label, if any
        build_metadata: Build metadata that was dropped from the identity
    """
    normalized: str
    original_string: str
    release: str = ""
    prerelease: str = ""
    build_metadata: str = ""


class IdentityResolver:
    """Derives canonical identity strings used as the component dedup key."""

    DEFAULT_ECOSYSTEM = "nuget"

    NUMERIC_RELEASE = re.compile(r'^[0-9]+(?:\.[0-9]+)*$')

    # NuGet interval notation: [1.0, ), (1.0,2.0], [1.0]
    RANGE_PATTERN = re.compile(
        r'^([\[(])\s*'       # Opening bracket
        r'([^,\])]*?)\s*'    # Lower bound (may be empty)
        r'(?:,\s*([^\])]*?)\s*)?'  # Optional upper bound
        r'([\])])$'          # Closing bracket
    )

    @classmethod
    def parse_version(cls, version: Optional[str]) -> VersionInfo:
        """
        Parse and normalize a resolved version string.

        Sources disagree on formatting of the same version: one reports
        ``1.2.0.0+sha.abc`` where another reports ``1.2.0``. Both normalize
        to ``1.2.0`` so they collide to one identity.
        """
        original = version or ""
        text = original.strip()
        if len(text) > 1 and text[0] in "vV" and text[1].isdigit():
            text = text[1:]

        text, _, build_metadata = text.partition('+')
        release, _, prerelease = text.partition('-')

        if cls.NUMERIC_RELEASE.match(release):
            parts = [str(int(part)) for part in release.split('.')]
            while len(parts) < 3:
                parts.append('0')
            if len(parts) == 4 and parts[3] == '0':
                parts = parts[:3]
            release = '.'.join(parts)

        prerelease = prerelease.lower()
        normalized = f"{release}-{prerelease}" if prerelease else release

        return VersionInfo(
            normalized=normalized,
            original_string=original,
            release=release,
            prerelease=prerelease,
            build_metadata=build_metadata,
        )

    @classmethod
    def normalize_version(cls, version: Optional[str]) -> str:
        """Return the normalized form of a version, or '' when it is missing."""
        return cls.parse_version(version).normalized

    @classmethod
    def is_exact(cls, version: Optional[str]) -> bool:
        """True for a pinned version, False for empty, floating or interval ranges."""
        text = (version or "").strip()
        if not text:
            return False
        if text[0] in "[(" or '*' in text or ',' in text:
            return False
        return True

    @classmethod
    def range_floor(cls, version_range: Optional[str]) -> str:
        """
        Extract the minimum version of a NuGet-style range.

        ``[1.0, )`` and ``1.0`` yield ``1.0.0``; ``1.4.*`` yields ``1.4.0``;
        ``(, 2.0]`` has no floor and yields ''.
        """
        text = (version_range or "").strip()
        if not text:
            return ""

        match = cls.RANGE_PATTERN.match(text)
        if match:
            lower = match.group(2).strip()
            if match.group(3) is None and match.group(1) == '[' and match.group(4) == ']':
                # [1.0] pins an exact version
                return cls.normalize_version(lower)
            return cls.normalize_version(lower) if lower else ""

        if '*' in text:
            floating = text.replace('*', '0').strip('.')
            if not floating or floating == '0':
                return ""
            return cls.normalize_version(floating)

        return cls.normalize_version(text)

    @classmethod
    def split_coordinate(cls, name: str, ecosystem: str) -> Tuple[Optional[str], str]:
        """Split ``namespace/name`` (or Maven ``group:artifact``) into its parts."""
        coordinate = name.strip()
        if ecosystem == 'maven' and ':' in coordinate:
            namespace, _, short_name = coordinate.partition(':')
        else:
            namespace, _, short_name = coordinate.rpartition('/')
        return (namespace or None), short_name

    @classmethod
    def name_key(cls, name: str, ecosystem: Optional[str] = None) -> Tuple[str, str]:
        """Version-less lookup key, case-insensitive on the name."""
        system = (ecosystem or cls.DEFAULT_ECOSYSTEM).strip().lower()
        return system, name.strip().lower()

    @classmethod
    def resolve(cls, name: str, version: Optional[str], ecosystem: Optional[str] = None) -> str:
        """
        Build the canonical identity for a package coordinate and version.

        The identity is a package URL with a lower-cased coordinate and a
        normalized version. A missing version produces a version-less purl:
        stable, and distinct for every name.

        Raises:
            ValueError: If the name is empty
        """
        if not name or not name.strip():
            raise ValueError("package name is required to build an identity")

        system = (ecosystem or cls.DEFAULT_ECOSYSTEM).strip().lower()
        namespace, short_name = cls.split_coordinate(name, system)
        if not short_name:
            raise ValueError(f"invalid package coordinate: {name!r}")

        purl = PackageURL(
            type=system,
            namespace=namespace.lower() if namespace else None,
            name=short_name.lower(),
            version=cls.normalize_version(version) or None,
        )
        return purl.to_string()

    @staticmethod
    def root_identity(name: str, version: str) -> str:
        """Identity of a project root component (``name@version``)."""
        return f"{name}@{version}"
