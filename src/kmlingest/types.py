"""
Type definitions for the KML ingest pipeline.

This module provides the raw parse events surfaced by the KML reader and the
error/warning hierarchy shared by every pipeline stage.

Events:
- RawRecord: one Placemark (or legacy typed placemark) as parsed
- SchemaDeclaration: a <Schema> element with its declared fields
- LinkReference: a <NetworkLink> pointing at another document
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from shapely.geometry.base import BaseGeometry

from .domain.models import FieldSpec


@dataclass(frozen=True)
class RawRecord:
    """A Placemark as read from the document, before schema mapping.

    ``fields`` is the record's own shape: the fixed Placemark fields followed
    by any typed fields contributed by SchemaData blocks.
    """
    id: str
    fields: tuple[FieldSpec, ...]
    attrs: dict[str, Any] = field(default_factory=dict)
    geometry: Optional[BaseGeometry] = None
    style_ref: Optional[str] = None
    folder_path: tuple[Optional[str], ...] = ()
    extended_untyped: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SchemaDeclaration:
    """A declared <Schema> with its SimpleFields in document order."""
    name: str
    fields: tuple[FieldSpec, ...] = ()


@dataclass(frozen=True)
class LinkReference:
    """A <NetworkLink> to another document."""
    target: str
    name: Optional[str] = None


RawEvent = Union[RawRecord, SchemaDeclaration, LinkReference]


# Error hierarchy
class KMLIngestError(Exception):
    """Base exception for KML ingest operations."""
    pass


class ParseError(KMLIngestError):
    """The source is not well-formed, holds a fatal geometry, or could not be read."""
    pass


class RewriteConfigError(KMLIngestError):
    """Caller-supplied resource rewrite prefix or path table is malformed."""
    pass


# Warnings are collected on the produced artifact, never raised
class IngestWarning(UserWarning):
    """Base class for recoverable problems collected during ingest."""
    pass


class GeometryParseWarning(IngestWarning):
    """A malformed geometry was dropped because lenient parsing is enabled."""
    def __init__(self, record_id: str, message: str):
        self.record_id = record_id
        super().__init__(f"Error parsing geometry of {record_id}: {message}")


class EmptyResultWarning(IngestWarning):
    """The source holds no records and no declared schemas."""
    pass


class AssetResolutionWarning(IngestWarning):
    """An icon could not be fetched, decoded or written."""
    def __init__(self, source_uri: str, message: str):
        self.source_uri = source_uri
        super().__init__(f"Could not resolve asset {source_uri}: {message}")
