"""
Pipeline Enumerations

Core enums for type safety and clear interface definitions across the pipeline.
"""

from enum import Enum


class GeometryType(str, Enum):
    """Closed set of geometry variants a record can carry."""
    GEOMETRY = "Geometry"                      # Any geometry (uncollated schemas)
    POINT = "Point"
    LINESTRING = "LineString"
    LINEARRING = "LinearRing"
    POLYGON = "Polygon"
    MULTIPOINT = "MultiPoint"
    MULTILINESTRING = "MultiLineString"
    MULTIPOLYGON = "MultiPolygon"
    GEOMETRYCOLLECTION = "GeometryCollection"

    @classmethod
    def of(cls, geom) -> "GeometryType":
        """Concrete subtype of a shapely geometry."""
        return cls(geom.geom_type)


class FieldType(str, Enum):
    """Attribute types of a unified schema field."""
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    DOUBLE = "double"
    BOOLEAN = "boolean"
    URI = "uri"             # Raw style references, rewritten to string
    GEOMETRY = "Geometry"
    POINT = "Point"
    LINESTRING = "LineString"
    LINEARRING = "LinearRing"
    POLYGON = "Polygon"
    MULTIPOINT = "MultiPoint"
    MULTILINESTRING = "MultiLineString"
    MULTIPOLYGON = "MultiPolygon"
    GEOMETRYCOLLECTION = "GeometryCollection"

    @property
    def is_geometry(self) -> bool:
        return self.value in GeometryType._value2member_map_

    @classmethod
    def from_kml(cls, kml_type: str) -> "FieldType":
        """Map a <SimpleField type=...> value to a field type."""
        return KML_SIMPLE_TYPES.get((kml_type or "").strip().lower(), cls.STRING)


KML_SIMPLE_TYPES = {
    "string": FieldType.STRING,
    "int": FieldType.INTEGER,
    "uint": FieldType.INTEGER,
    "short": FieldType.INTEGER,
    "ushort": FieldType.INTEGER,
    "float": FieldType.FLOAT,
    "double": FieldType.DOUBLE,
    "bool": FieldType.BOOLEAN,
}


class ReaderMode(str, Enum):
    """What the raw reader surfaces."""
    FULL = "full"                   # Records, schema declarations and network links
    FEATURES_ONLY = "features"      # Records only, including schema-typed elements


class ExportFormat(str, Enum):
    """Export format options for data output."""
    GEOJSON = "geojson"     # Standards-compliant JSON format
    GPKG = "gpkg"           # SQLite-based format with multi-layer support
