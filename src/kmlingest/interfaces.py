"""
Collaborator interfaces of the ingest pipeline.

The pipeline hands its products to these; the defaults are kmz.unpack,
FileStyleSink and pipeline.export.Exporter.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Protocol, Union

from .domain.models import TypedRecord, UnifiedSchema
from .utils import clean_filename, ensure_directory

logger = logging.getLogger(__name__)

SLD_SUFFIX = ".sld"


class Unpacker(Protocol):
    def __call__(self, container: Path) -> Path:
        """Replace a container file with a directory holding its content."""
        ...


class StyleSink(Protocol):
    def write_style(self, identifier: str, data: bytes) -> Any:
        """Persist a serialized style document."""
        ...


class CatalogSink(Protocol):
    def attach(self, schema: UnifiedSchema, records: Iterable[TypedRecord]) -> Any:
        """Materialize a schema and consume its record stream."""
        ...


class FileStyleSink:
    """Writes each style document as ``{identifier}.sld`` into a directory."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def write_style(self, identifier: str, data: bytes) -> Path:
        path = ensure_directory(self.directory) / f"{clean_filename(identifier)}{SLD_SUFFIX}"
        path.write_bytes(data)
        logger.info(f"Wrote style {identifier} to {path}")
        return path
