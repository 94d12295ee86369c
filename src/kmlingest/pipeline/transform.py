"""
Transformer - Raw Record to Typed Record Mapping

Maps each raw Placemark of the second pass onto a unified schema: copies
matching attributes, flattens the folder lineage, carries the style reference
and rewrites relative resource paths inside descriptions.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from ..domain.enums import GeometryType
from ..domain.models import (
    FOLDER_FIELD,
    GEOMETRY_FIELD,
    STYLE_FIELD,
    TypedRecord,
    UnifiedSchema,
    coerce_value,
)
from ..domain.styles import StyleMap
from ..types import GeometryParseWarning, RawRecord, RewriteConfigError
from .reader import KMLRawReader, Source

logger = logging.getLogger(__name__)

# Separator between folder names in the flattened lineage
FOLDER_SEPARATOR = " -> "

# Free-text field scanned for resource paths
DESCRIPTION_FIELD = "description"

# Fields produced by the transform itself, never copied from Data
SYNTHETIC_FIELDS = {GEOMETRY_FIELD, STYLE_FIELD, FOLDER_FIELD}


@dataclass(frozen=True)
class RewriteRule:
    """
    Prefix prepended to every occurrence of each path in a description.

    Paths are applied in the given order; when one path contains another the
    outcome depends on that order.
    """
    prefix: str
    paths: tuple[str, ...]

    def __post_init__(self):
        if not isinstance(self.prefix, str):
            raise RewriteConfigError(f"Rewrite prefix must be a string, got {type(self.prefix).__name__}")
        if isinstance(self.paths, (str, bytes)) or not isinstance(self.paths, Sequence):
            raise RewriteConfigError("Rewrite paths must be a sequence of strings")
        for path in self.paths:
            if not isinstance(path, str) or not path:
                raise RewriteConfigError(f"Invalid rewrite path: {path!r}")
        object.__setattr__(self, "paths", tuple(self.paths))

    def apply(self, text: str) -> str:
        for path in self.paths:
            text = text.replace(path, self.prefix + path)
        return text


def flatten_folders(folder_path: Sequence[Optional[str]]) -> Optional[str]:
    """Join non-empty folder names, None when there are none."""
    names = [name for name in folder_path if name]
    return FOLDER_SEPARATOR.join(names) if names else None


class PlacemarkTransform:
    """Converts raw records into typed records of one schema."""

    def __init__(self, schema: UnifiedSchema, rewrite: Optional[RewriteRule] = None):
        self.schema = schema
        self.rewrite = rewrite

    def convert(self, raw: RawRecord) -> TypedRecord:
        """
        Map a raw record onto the schema.

        Values missing from the record, or that cannot be coerced to the
        schema's field type, are left out of the result.
        """
        attrs: dict[str, Any] = {}
        for name, value in raw.attrs.items():
            self._copy(attrs, raw.id, name, value)

        if raw.geometry is not None and GEOMETRY_FIELD in self.schema:
            attrs[GEOMETRY_FIELD] = raw.geometry

        folder = flatten_folders(raw.folder_path)
        if folder is not None and FOLDER_FIELD in self.schema:
            attrs[FOLDER_FIELD] = folder

        if raw.style_ref and STYLE_FIELD in self.schema:
            attrs[STYLE_FIELD] = str(raw.style_ref)

        description = attrs.get(DESCRIPTION_FIELD)
        if self.rewrite is not None and isinstance(description, str):
            attrs[DESCRIPTION_FIELD] = self.rewrite.apply(description)

        for name, value in raw.extended_untyped.items():
            self._copy(attrs, raw.id, name, value)

        ordered = {name: attrs[name] for name in self.schema.field_names if name in attrs}
        return TypedRecord(id=raw.id, attrs=ordered)

    def _copy(self, attrs: dict[str, Any], record_id: str, name: str, value: Any) -> None:
        spec = self.schema.get(name)
        if spec is None or name in SYNTHETIC_FIELDS or spec.type.is_geometry:
            return
        try:
            attrs[name] = coerce_value(value, spec.type)
        except ValueError:
            logger.debug(f"Dropping {name}={value!r} of {record_id}: not a valid {spec.type.value}")


class TransformingRecordReader:
    """
    Forward-only stream of typed records for one schema.

    Opens its own FEATURES_ONLY reader over the source. When the schema's
    geometry is narrowed to a subtype only records of exactly that subtype
    are returned, plus records without geometry if the schema is their home.
    """

    def __init__(
        self,
        source: Source,
        schema: UnifiedSchema,
        lenient: bool = False,
        rewrite: Optional[RewriteRule] = None,
        style_capture: Optional[StyleMap] = None
    ):
        self.schema = schema
        self.transform = PlacemarkTransform(schema, rewrite)
        self._reader = KMLRawReader.features(source, schema, lenient=lenient, style_capture=style_capture)
        self._pending: Optional[TypedRecord] = None
        self.count = 0

    @property
    def warnings(self) -> list[GeometryParseWarning]:
        """Per-record warnings collected by the underlying reader."""
        return self._reader.warnings

    def accepts(self, raw: RawRecord) -> bool:
        if raw.geometry is None:
            return self.schema.accepts_null_geometry
        target = self.schema.geometry_type
        if target is GeometryType.GEOMETRY:
            return True
        return GeometryType.of(raw.geometry) is target

    def has_next(self) -> bool:
        """
        Whether another record is available.

        Raises:
            ParseError: Propagated unchanged from the reader
        """
        while self._pending is None:
            raw = self._reader.read()
            if raw is None:
                return False
            if isinstance(raw, RawRecord) and self.accepts(raw):
                self._pending = self.transform.convert(raw)
        return True

    def next(self) -> TypedRecord:
        if not self.has_next():
            raise StopIteration
        record, self._pending = self._pending, None
        self.count += 1
        return record

    def __iter__(self) -> Iterator[TypedRecord]:
        return self

    def __next__(self) -> TypedRecord:
        return self.next()

    def close(self) -> None:
        if self.count:
            logger.debug(f"Transformed {self.count} records into {self.schema.name}")
        self._reader.close()

    def __enter__(self) -> "TransformingRecordReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
