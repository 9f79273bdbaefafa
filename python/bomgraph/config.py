"""Build configuration."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from cyclonedx.model.component import ComponentType

from .identity import IdentityResolver

logger = logging.getLogger(__name__)


class OutputFormat(str, Enum):
    JSON = "json"
    XML = "xml"


@dataclass
class BuildOptions:
    """
    Options for building a BOM.

    Attributes:
        project_name: Name of the root component (overrides the template and the evidence file)
        project_version: Version of the root component
        project_type: CycloneDX component type of the root (default: template type, else application)
        ecosystem: Package URL type used when records don't name one
        exclude_dev: Drop components whose final scope is Excluded
        remove_orphans: Drop components unreachable from the root
        exclude_filter: Comma separated ``name`` or ``name@version`` entries to drop
        output_format: Serialization format
        timestamp: Fixed document timestamp; see resolved_timestamp()
        max_workers: Thread pool size for multi-project builds
        metadata_template: CycloneDX document whose metadata component describes the root
        no_serial_number: Leave the serial number out of the document
    """
    project_name: Optional[str] = None
    project_version: Optional[str] = None
    project_type: Optional[ComponentType] = None
    ecosystem: str = IdentityResolver.DEFAULT_ECOSYSTEM
    exclude_dev: bool = False
    remove_orphans: bool = False
    exclude_filter: Optional[str] = None
    output_format: OutputFormat = OutputFormat.JSON
    timestamp: Optional[datetime] = None
    max_workers: int = 4
    metadata_template: Optional[str] = None
    no_serial_number: bool = False

    @property
    def root_type(self) -> ComponentType:
        return self.project_type or ComponentType.APPLICATION

    def resolved_timestamp(self) -> datetime:
        """
        The document timestamp: the configured one, else SOURCE_DATE_EPOCH,
        else the current UTC time truncated to seconds.

        Only the first two give byte-identical documents across runs.
        """
        if self.timestamp is not None:
            return utc_timestamp(self.timestamp)

        epoch = os.environ.get('SOURCE_DATE_EPOCH')
        if epoch:
            try:
                return datetime.fromtimestamp(int(epoch), tz=timezone.utc)
            except ValueError:
                logger.warning(f"Ignoring invalid SOURCE_DATE_EPOCH: {epoch!r}")

        logger.info("No --timestamp or SOURCE_DATE_EPOCH given, stamping the current time; "
                    "output will differ between runs")
        return datetime.now(timezone.utc).replace(microsecond=0)

    @classmethod
    def from_namespace(cls, args) -> 'BuildOptions':
        """Build options from parsed argparse arguments."""
        timestamp = None
        if getattr(args, 'timestamp', None):
            timestamp = parse_timestamp(args.timestamp)

        project_type = getattr(args, 'project_type', None)

        return cls(
            project_name=getattr(args, 'project_name', None),
            project_version=getattr(args, 'project_version', None),
            project_type=ComponentType(project_type) if project_type else None,
            ecosystem=getattr(args, 'ecosystem', None) or IdentityResolver.DEFAULT_ECOSYSTEM,
            exclude_dev=getattr(args, 'exclude_dev', False),
            remove_orphans=getattr(args, 'remove_orphans', False),
            exclude_filter=getattr(args, 'exclude_filter', None),
            output_format=OutputFormat(getattr(args, 'format', None) or OutputFormat.JSON.value),
            timestamp=timestamp,
            max_workers=getattr(args, 'max_workers', None) or 4,
            metadata_template=getattr(args, 'import_metadata', None),
            no_serial_number=getattr(args, 'no_serial_number', False),
        )


def utc_timestamp(value: datetime) -> datetime:
    """Timezone-aware UTC timestamp with whole seconds (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; a trailing Z and naive values mean UTC."""
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return utc_timestamp(datetime.fromisoformat(text))
