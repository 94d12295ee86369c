"""
KML Ingest Pipeline Components

This module provides the two-pass Read → Infer → Transform pipeline plus style assembly.

Components:
- reader: KMLRawReader, incremental KML event reader with style capture
- schema: SchemaUnifier for flat schema inference and geometry collation
- transform: PlacemarkTransform / TransformingRecordReader for typed records
- styles: StyleAssembler for SLD generation
- assets: ImageAssetCache for tinted and scaled icons
- export: Exporter for GeoJSON and GeoPackage output
- ingest: KMLIngest orchestrating a whole import
"""

from .assets import ImageAssetCache
from .export import Exporter
from .ingest import IngestResult, KMLIngest
from .reader import KMLRawReader
from .schema import InferenceResult, SchemaUnifier
from .styles import StyleAssembler
from .transform import PlacemarkTransform, RewriteRule, TransformingRecordReader

__all__ = [
    "KMLRawReader", "SchemaUnifier", "InferenceResult",
    "PlacemarkTransform", "RewriteRule", "TransformingRecordReader",
    "StyleAssembler", "ImageAssetCache", "Exporter",
    "KMLIngest", "IngestResult",
]
