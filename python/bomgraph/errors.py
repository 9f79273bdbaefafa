"""Exception types raised while building and serializing BOM graphs."""

from typing import Optional


class BomGraphError(Exception):
    """Base class for all bomgraph errors."""


class MalformedEvidenceError(BomGraphError):
    """A single evidence record could not be normalized.

    The builder skips the record and records an anomaly instead of
    aborting the whole build.
    """

    def __init__(self, message: str, record: Optional[object] = None):
        super().__init__(message)
        self.record = record


class IdentityCollisionError(BomGraphError):
    """Two records resolve to the same identity with irreconcilable data."""

    def __init__(self, identity: str, message: str):
        super().__init__(f"{identity}: {message}")
        self.identity = identity


class SerializationFormatError(BomGraphError):
    """A BOM document could not be deserialized."""


class SourceUnavailableError(BomGraphError):
    """An evidence source (e.g. a package metadata lookup) failed."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
