"""
Domain Models and Types

This module contains the core domain models and enumerations used throughout the pipeline.
These typed models ensure data integrity and provide clear interfaces for the pipeline components.

Models:
- FieldSpec: A named, typed attribute
- UnifiedSchema: Flat record schema produced by inference
- TypedRecord: A record conforming to a unified schema
- RunOptions: Runtime configuration and feature flags
- StyleFragment / StyleMap: Styles captured while parsing

Enums:
- GeometryType: Closed set of geometry variants
- FieldType: Attribute types
- ReaderMode: What the raw reader surfaces (full, features)
- ExportFormat: Export format options (geojson, gpkg)
"""

from .enums import ExportFormat, FieldType, GeometryType, ReaderMode
from .models import FieldSpec, RunOptions, TypedRecord, UnifiedSchema
from .styles import (
    Color,
    LineSymbolizer,
    PointSymbolizer,
    PolygonSymbolizer,
    StyleFragment,
    StyleMap,
    TextSymbolizer,
)

__all__ = [
    "FieldSpec", "UnifiedSchema", "TypedRecord", "RunOptions",
    "StyleFragment", "StyleMap", "Color",
    "PointSymbolizer", "LineSymbolizer", "PolygonSymbolizer", "TextSymbolizer",
    "GeometryType", "FieldType", "ReaderMode", "ExportFormat",
]
