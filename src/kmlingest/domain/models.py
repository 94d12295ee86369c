"""
Pipeline Domain Models

Pydantic models for type safety and validation across the pipeline.
These models ensure data integrity and provide clear interfaces.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import FieldType, GeometryType

# Reference system every KML record is tagged with
KML_SRS = "EPSG:4326"

GEOMETRY_FIELD = "geometry"
STYLE_FIELD = "style"
FOLDER_FIELD = "folder"


class FieldSpec(BaseModel):
    """A named, typed attribute of a record shape or unified schema."""
    name: str = Field(..., description="Attribute name")
    type: FieldType = Field(..., description="Attribute type")

    class Config:
        """Pydantic configuration."""
        frozen = True


class UnifiedSchema(BaseModel):
    """Flat record schema produced by inference and shared by the transform pass."""
    name: str = Field(..., description="Schema (layer) name")
    fields: tuple[FieldSpec, ...] = Field(default_factory=tuple, description="Ordered fields, unique names")
    schema_names: tuple[str, ...] = Field(default_factory=tuple, description="Declared KML schema names")
    accepts_null_geometry: bool = Field(default=True, description="Whether records without geometry belong here")
    srs: str = Field(default=KML_SRS, description="Declared spatial reference system")

    class Config:
        """Pydantic configuration."""
        frozen = True

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def get(self, name: str) -> Optional[FieldSpec]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    @property
    def geometry_type(self) -> GeometryType:
        """Declared type of the geometry field (GEOMETRY when unconstrained)."""
        spec = self.get(GEOMETRY_FIELD)
        if spec is None or not spec.type.is_geometry:
            return GeometryType.GEOMETRY
        return GeometryType(spec.type.value)

    def narrowed(self, geometry_type: GeometryType, accepts_null_geometry: bool) -> "UnifiedSchema":
        """Clone with the geometry field narrowed to one subtype and the name suffixed."""
        fields = tuple(
            FieldSpec(name=f.name, type=FieldType(geometry_type.value)) if f.name == GEOMETRY_FIELD else f
            for f in self.fields
        )
        return self.model_copy(update={
            "name": f"{self.name}{geometry_type.value}",
            "fields": fields,
            "accepts_null_geometry": accepts_null_geometry,
        })


class TypedRecord(BaseModel):
    """A record mapped onto a unified schema."""
    id: str = Field(..., description="Record identifier")
    attrs: dict[str, Any] = Field(default_factory=dict, description="Values keyed by schema field name")

    class Config:
        """Pydantic configuration."""
        frozen = True

    def get(self, name: str, default: Any = None) -> Any:
        return self.attrs.get(name, default)


def coerce_value(value: Any, field_type: FieldType) -> Any:
    """
    Convert a raw value to the Python type of a field.

    Geometry and URI values pass through untouched.

    Raises:
        ValueError: If the value cannot be represented as the field type
    """
    if value is None or field_type.is_geometry or field_type is FieldType.URI:
        return value
    if field_type is FieldType.STRING:
        return value if isinstance(value, str) else str(value)
    if field_type is FieldType.BOOLEAN:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("1", "true"):
            return True
        if text in ("0", "false"):
            return False
        raise ValueError(f"Not a boolean: {value!r}")
    if field_type is FieldType.INTEGER:
        if isinstance(value, int):
            return int(value)
        text = str(value).strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return int(float(text))
        except OverflowError as e:
            raise ValueError(f"Not an integer: {value!r}") from e
    # FLOAT and DOUBLE
    if isinstance(value, (int, float)):
        return float(value)
    return float(str(value).strip())


class RunOptions(BaseModel):
    """Runtime configuration and feature flags."""
    lenient: bool = Field(default=False, description="Tolerate malformed geometries")
    collate: bool = Field(default=False, description="Produce one schema per geometry type")
    verbose: bool = Field(default=False, description="Enable debug logging")
    log_to_file: bool = Field(default=False, description="Write timestamped log files")

    class Config:
        """Pydantic configuration."""
        frozen = True
