"""
SchemaUnifier - Flat Schema Inference

Drains a FULL reader and unions every record shape, declared schema and
free-form Data key into one flat schema. With collation enabled the result is
split into one schema per observed geometry subtype.

Type conflicts keep the first definition seen; later definitions of a name
are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..domain.enums import FieldType, GeometryType
from ..domain.models import FOLDER_FIELD, GEOMETRY_FIELD, STYLE_FIELD, FieldSpec, UnifiedSchema
from ..types import (
    EmptyResultWarning,
    IngestWarning,
    LinkReference,
    RawRecord,
    SchemaDeclaration,
)
from .reader import KMLRawReader

logger = logging.getLogger(__name__)

# Raw Placemark fields with no place in the flat schema
DROPPED_FIELDS = {GEOMETRY_FIELD, "lookAt", "region", STYLE_FIELD, FOLDER_FIELD}

# Partition receiving records without geometry
NULL_GEOMETRY_HOME = GeometryType.POINT


@dataclass
class InferenceResult:
    """Outcome of one inference pass."""
    schemas: list[UnifiedSchema] = field(default_factory=list)
    warnings: list[IngestWarning] = field(default_factory=list)
    schema_names: list[str] = field(default_factory=list)
    network_links: list[LinkReference] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.schemas


def merge_fields(aggregate: list[FieldSpec], incoming: Iterable[FieldSpec]) -> None:
    """Append fields whose name is not yet in the aggregate; existing types are kept."""
    known = {f.name for f in aggregate}
    for spec in incoming:
        if spec.name not in known:
            aggregate.append(spec)
            known.add(spec.name)


class SchemaUnifier:
    """
    Infers the unified schema of a KML document.

    Example:
        unifier = SchemaUnifier("tracks", collate=True)
        with KMLRawReader.full(path, style_capture=styles) as reader:
            result = unifier.infer(reader)
    """

    def __init__(self, name: str, collate: bool = False):
        self.name = name
        self.collate = collate

    def infer(self, reader: KMLRawReader) -> InferenceResult:
        """
        Drain a FULL reader and build the schema(s) it describes.

        Args:
            reader: Reader opened in FULL mode; it is not closed here

        Returns:
            InferenceResult holding zero, one or one-per-subtype schemas

        Raises:
            ParseError: Propagated unchanged from the reader
        """
        aggregate: list[FieldSpec] = []
        untyped: dict[str, None] = {}
        subtypes: dict[GeometryType, None] = {}
        declarations: list[SchemaDeclaration] = []
        links: list[LinkReference] = []
        record_count = 0

        for event in reader:
            if isinstance(event, RawRecord):
                record_count += 1
                merge_fields(aggregate, event.fields)
                for key in event.extended_untyped:
                    untyped.setdefault(key, None)
                if event.geometry is not None:
                    subtypes.setdefault(GeometryType.of(event.geometry), None)
            elif isinstance(event, SchemaDeclaration):
                declarations.append(event)
            elif isinstance(event, LinkReference):
                links.append(event)

        result = InferenceResult(
            warnings=list(reader.warnings),
            schema_names=[d.name for d in declarations],
            network_links=links,
        )
        logger.info(
            f"Inference pass over {self.name}: {record_count} records, "
            f"{len(declarations)} declared schemas, {len(subtypes)} geometry types"
        )

        if record_count == 0 and not declarations:
            warning = EmptyResultWarning(f"No records or schemas found in {self.name}")
            logger.warning(str(warning))
            result.warnings.append(warning)
            return result

        for declaration in declarations:
            merge_fields(aggregate, declaration.fields)

        schema = UnifiedSchema(
            name=self.name,
            fields=tuple(self._normalise(aggregate, untyped)),
            schema_names=tuple(result.schema_names),
        )

        if self.collate and subtypes:
            result.schemas = collate(schema, list(subtypes))
            logger.info(f"Collated into {len(result.schemas)} schemas: "
                        f"{', '.join(s.name for s in result.schemas)}")
        else:
            result.schemas = [schema]
        return result

    @staticmethod
    def _normalise(aggregate: list[FieldSpec], untyped: Iterable[str]) -> list[FieldSpec]:
        fields = [FieldSpec(name=GEOMETRY_FIELD, type=FieldType.GEOMETRY)]
        fields.extend(f for f in aggregate if f.name not in DROPPED_FIELDS)
        fields.append(FieldSpec(name=STYLE_FIELD, type=FieldType.STRING))
        fields.append(FieldSpec(name=FOLDER_FIELD, type=FieldType.STRING))
        known = {f.name for f in aggregate} | {f.name for f in fields}
        for key in untyped:
            if key not in known:
                fields.append(FieldSpec(name=key, type=FieldType.STRING))
                known.add(key)
        return fields


def collate(schema: UnifiedSchema, subtypes: list[GeometryType]) -> list[UnifiedSchema]:
    """
    Split a schema into one clone per geometry subtype, in the given order.

    Exactly one clone accepts records without geometry: the Point clone when
    points were observed, otherwise the first clone.
    """
    home: Optional[GeometryType] = NULL_GEOMETRY_HOME if NULL_GEOMETRY_HOME in subtypes else None
    if home is None and subtypes:
        home = subtypes[0]
    return [schema.narrowed(subtype, accepts_null_geometry=subtype is home) for subtype in subtypes]
