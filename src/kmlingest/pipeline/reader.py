"""
KMLRawReader - Incremental KML Event Reader

Wraps an lxml iterparse over a KML document and surfaces a pull-based sequence
of raw events: RawRecord, SchemaDeclaration and LinkReference. Both the
inference pass and the transform pass read through this class.

Styles met along the way are captured into an attached StyleMap whatever the
reader mode is, so style elements placed at the end of a document are still
available once the pass is over.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Iterator, Optional, Union

from lxml import etree
from shapely.errors import ShapelyError
from shapely.geometry import (
    GeometryCollection,
    LinearRing,
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
)
from shapely.geometry.base import BaseGeometry

from ..domain.enums import FieldType, ReaderMode
from ..domain.models import FieldSpec, UnifiedSchema, coerce_value
from ..domain.styles import (
    Color,
    LineSymbolizer,
    PointSymbolizer,
    PolygonSymbolizer,
    StyleFragment,
    StyleMap,
    TextSymbolizer,
)
from ..types import (
    GeometryParseWarning,
    LinkReference,
    ParseError,
    RawEvent,
    RawRecord,
    SchemaDeclaration,
)

logger = logging.getLogger(__name__)

Source = Union[str, Path, bytes, IO[bytes]]

# Shape of every Placemark before schema normalisation
PLACEMARK_FIELDS = (
    FieldSpec(name="name", type=FieldType.STRING),
    FieldSpec(name="visibility", type=FieldType.BOOLEAN),
    FieldSpec(name="open", type=FieldType.BOOLEAN),
    FieldSpec(name="address", type=FieldType.STRING),
    FieldSpec(name="phoneNumber", type=FieldType.STRING),
    FieldSpec(name="description", type=FieldType.STRING),
    FieldSpec(name="lookAt", type=FieldType.POINT),
    FieldSpec(name="style", type=FieldType.URI),
    FieldSpec(name="region", type=FieldType.LINEARRING),
    FieldSpec(name="geometry", type=FieldType.GEOMETRY),
)

TEXT_FIELDS = {"name", "address", "phoneNumber", "description"}
BOOLEAN_FIELDS = {"visibility", "open"}
GEOMETRY_TAGS = {"Point", "LineString", "LinearRing", "Polygon", "MultiGeometry", "Track", "MultiTrack"}

WHITE = Color(255, 255, 255, 255)


@dataclass
class _Folder:
    element: Any
    name: Optional[str] = None


class KMLRawReader:
    """
    Pull reader over one KML document.

    Modes:
        FULL: every Placemark, Schema declaration and NetworkLink
        FEATURES_ONLY: records only; elements named after the target schema's
            declared schemas are read as typed records too

    Example:
        with KMLRawReader.full(path, style_capture=styles) as reader:
            for event in reader:
                ...
    """

    def __init__(
        self,
        source: Source,
        mode: ReaderMode = ReaderMode.FULL,
        target_schema: Optional[UnifiedSchema] = None,
        lenient: bool = False,
        style_capture: Optional[StyleMap] = None
    ):
        """
        Open a reader over a KML source.

        Args:
            source: Path to a KML file, the document bytes, or a binary stream
            mode: What to surface (see class docstring)
            target_schema: Schema whose declared schema names mark typed records
            lenient: Turn malformed geometries into warnings instead of errors
            style_capture: StyleMap receiving every style met while parsing
        """
        self.mode = ReaderMode(mode)
        self.target_schema = target_schema
        self.lenient = lenient
        self.style_capture = style_capture
        self.warnings: list[GeometryParseWarning] = []

        self._record_tags = {"Placemark"}
        if self.mode is ReaderMode.FEATURES_ONLY and target_schema is not None:
            self._record_tags.update(target_schema.schema_names)

        self._stream = _open_source(source)
        self._events = etree.iterparse(
            self._stream, events=("start", "end"), huge_tree=True, remove_comments=True
        )
        self._folders: list[_Folder] = []
        self._schemas: dict[str, SchemaDeclaration] = {}
        self._record_count = 0
        self._closed = False

    @classmethod
    def full(cls, source: Source, lenient: bool = False,
             style_capture: Optional[StyleMap] = None) -> "KMLRawReader":
        """Reader returning all objects of interest."""
        return cls(source, ReaderMode.FULL, None, lenient, style_capture)

    @classmethod
    def features(cls, source: Source, schema: Optional[UnifiedSchema] = None, lenient: bool = False,
                 style_capture: Optional[StyleMap] = None) -> "KMLRawReader":
        """Reader returning only records, including those typed by the schema's declared schemas."""
        return cls(source, ReaderMode.FEATURES_ONLY, schema, lenient, style_capture)

    def read(self) -> Optional[RawEvent]:
        """
        Return the next event, or None once the document is exhausted.

        Raises:
            ParseError: If the document is malformed or cannot be read
        """
        if self._closed:
            return None
        try:
            for action, elem in self._events:
                event = self._handle(action, elem)
                if event is not None:
                    return event
        except etree.XMLSyntaxError as e:
            raise ParseError(f"Malformed KML document: {e}") from e
        except OSError as e:
            raise ParseError(f"Error reading KML document: {e}") from e
        return None

    def __iter__(self) -> Iterator[RawEvent]:
        return self

    def __next__(self) -> RawEvent:
        event = self.read()
        if event is None:
            raise StopIteration
        return event

    def close(self) -> None:
        """Release the underlying stream. Safe to call at any point."""
        if self._closed:
            return
        self._closed = True
        try:
            self._stream.close()
        except OSError as e:
            logger.debug(f"Error closing KML stream: {e}")

    def __enter__(self) -> "KMLRawReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------

    def _handle(self, action: str, elem) -> Optional[RawEvent]:
        if not isinstance(elem.tag, str):
            return None
        tag = _local(elem)
        if action == "start":
            if tag == "Folder":
                self._folders.append(_Folder(elem))
            return None

        if tag == "name":
            parent = elem.getparent()
            if self._folders and parent is self._folders[-1].element:
                self._folders[-1].name = elem.text
            return None

        if tag == "Folder":
            self._folders.pop()
            _release(elem)
            return None

        if tag in self._record_tags:
            record = self._build_record(elem, tag)
            _release(elem)
            return record

        if tag == "Schema":
            declaration = self._parse_schema(elem)
            _release(elem)
            if declaration is not None and self.mode is ReaderMode.FULL:
                return declaration
            return None

        if tag == "NetworkLink":
            link = _parse_network_link(elem)
            _release(elem)
            if link is not None and self.mode is ReaderMode.FULL:
                return link
            return None

        if tag == "Style":
            parent = elem.getparent()
            # placemark and StyleMap pair styles are captured by their owners
            if parent is not None and (_local(parent) in self._record_tags or _local(parent) == "Pair"):
                return None
            self._capture_shared_style(elem)
            _release(elem)
            return None

        if tag == "StyleMap":
            self._capture_style_map(elem)
            _release(elem)
        return None

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _build_record(self, elem, tag: str) -> RawRecord:
        self._record_count += 1
        record_id = elem.get("id") or f"{tag}.{self._record_count}"
        fields = list(PLACEMARK_FIELDS)
        attrs: dict[str, Any] = {}
        untyped: dict[str, str] = {}
        geometry: Optional[BaseGeometry] = None
        style_ref: Optional[str] = None
        inline_style: Optional[str] = None
        typed_children = self._typed_children(tag)

        for child in elem:
            if not isinstance(child.tag, str):
                continue
            name = _local(child)
            if name in TEXT_FIELDS:
                attrs[name] = child.text or ""
            elif name in BOOLEAN_FIELDS:
                self._set_typed(attrs, name, child.text, FieldType.BOOLEAN, record_id)
            elif name == "styleUrl":
                style_ref = (child.text or "").strip() or None
            elif name == "Style":
                inline_style = self._capture_inline_style(child, record_id)
            elif name == "LookAt":
                look_at = _parse_look_at(child)
                if look_at is not None:
                    attrs["lookAt"] = look_at
            elif name == "ExtendedData":
                self._read_extended_data(child, record_id, fields, attrs, untyped)
            elif name in GEOMETRY_TAGS:
                if geometry is None:
                    geometry = self._parse_geometry(child, record_id)
            elif name in typed_children:
                field_type = typed_children[name]
                _add_field(fields, FieldSpec(name=name, type=field_type))
                self._set_typed(attrs, name, child.text, field_type, record_id)

        folder_path = tuple(f.name for f in self._folders)
        logger.debug(f"Read record {record_id} ({len(attrs)} attributes, geometry={geometry is not None})")
        return RawRecord(
            id=record_id,
            fields=tuple(fields),
            attrs=attrs,
            geometry=geometry,
            style_ref=inline_style or style_ref,
            folder_path=folder_path,
            extended_untyped=untyped,
        )

    def _typed_children(self, tag: str) -> dict[str, FieldType]:
        """Field types for the direct children of a schema-typed record element."""
        if tag == "Placemark":
            return {}
        declaration = self._schemas.get(tag)
        if declaration is not None:
            return {f.name: f.type for f in declaration.fields}
        if self.target_schema is not None:
            return {
                f.name: f.type for f in self.target_schema.fields
                if not f.type.is_geometry and f.type is not FieldType.URI
            }
        return {}

    def _read_extended_data(self, elem, record_id: str, fields: list[FieldSpec],
                            attrs: dict[str, Any], untyped: dict[str, str]) -> None:
        for child in elem:
            if not isinstance(child.tag, str):
                continue
            name = _local(child)
            if name == "Data":
                key = child.get("name")
                if key:
                    untyped[key] = _child_text(child, "value") or ""
            elif name == "SchemaData":
                declaration = self._lookup_schema(child.get("schemaUrl"))
                declared = {f.name: f.type for f in declaration.fields} if declaration else {}
                for simple in child:
                    if not isinstance(simple.tag, str) or _local(simple) != "SimpleData":
                        continue
                    key = simple.get("name")
                    if not key:
                        continue
                    if key in declared:
                        _add_field(fields, FieldSpec(name=key, type=declared[key]))
                        self._set_typed(attrs, key, simple.text, declared[key], record_id)
                    else:
                        untyped[key] = simple.text or ""

    def _set_typed(self, attrs: dict[str, Any], name: str, text: Optional[str],
                   field_type: FieldType, record_id: str) -> None:
        if text is None:
            return
        try:
            attrs[name] = coerce_value(text, field_type)
        except ValueError:
            logger.warning(f"Ignoring {name}={text!r} of {record_id}: not a valid {field_type.value}")

    def _parse_geometry(self, elem, record_id: str) -> Optional[BaseGeometry]:
        try:
            return parse_geometry(elem)
        except (ValueError, TypeError, ShapelyError) as e:
            if not self.lenient:
                raise ParseError(f"Malformed geometry in {record_id}: {e}") from e
            warning = GeometryParseWarning(record_id, str(e))
            self.warnings.append(warning)
            logger.warning(str(warning))
            return None

    # ------------------------------------------------------------------
    # Schemas
    # ------------------------------------------------------------------

    def _parse_schema(self, elem) -> Optional[SchemaDeclaration]:
        name = elem.get("name") or elem.get("id")
        if not name:
            logger.warning("Skipping <Schema> without name or id")
            return None
        fields: list[FieldSpec] = []
        for child in elem:
            if isinstance(child.tag, str) and _local(child) == "SimpleField" and child.get("name"):
                _add_field(fields, FieldSpec(name=child.get("name"), type=FieldType.from_kml(child.get("type"))))
        declaration = SchemaDeclaration(name=name, fields=tuple(fields))
        self._schemas[name] = declaration
        if elem.get("id"):
            self._schemas[elem.get("id")] = declaration
        logger.debug(f"Declared schema {name} with {len(fields)} fields")
        return declaration

    def _lookup_schema(self, url: Optional[str]) -> Optional[SchemaDeclaration]:
        if not url:
            return None
        return self._schemas.get(url.rpartition("#")[2])

    # ------------------------------------------------------------------
    # Styles
    # ------------------------------------------------------------------

    def _capture_shared_style(self, elem) -> None:
        style_id = elem.get("id")
        if self.style_capture is None or not style_id:
            return
        self.style_capture.put(parse_style(elem, f"#{style_id}"))

    def _capture_inline_style(self, elem, record_id: str) -> str:
        identifier = f"#{elem.get('id') or record_id + '.style'}"
        if self.style_capture is not None:
            self.style_capture.put(parse_style(elem, identifier))
        return identifier

    def _capture_style_map(self, elem) -> None:
        style_id = elem.get("id")
        if self.style_capture is None or not style_id:
            return
        identifier = f"#{style_id}"
        for pair in elem:
            if not isinstance(pair.tag, str) or _local(pair) != "Pair":
                continue
            if (_child_text(pair, "key") or "").strip() != "normal":
                continue
            inline = _child(pair, "Style")
            if inline is not None:
                self.style_capture.put(parse_style(inline, identifier))
                return
            target = (_child_text(pair, "styleUrl") or "").strip()
            if target:
                self.style_capture.put_alias(identifier, target)
                return
        self.style_capture.put(StyleFragment(identifier))


# ============================================================================
# Parsing helpers
# ============================================================================

def _open_source(source: Source):
    if isinstance(source, bytes):
        return io.BytesIO(source)
    if isinstance(source, (str, Path)):
        try:
            return open(source, "rb")
        except OSError as e:
            raise ParseError(f"Unable to open KML source {source}: {e}") from e
    return source


def _local(elem) -> str:
    return etree.QName(elem).localname


def _child(elem, name: str):
    if elem is None:
        return None
    for child in elem:
        if isinstance(child.tag, str) and _local(child) == name:
            return child
    return None


def _child_text(elem, name: str) -> Optional[str]:
    child = _child(elem, name)
    return child.text if child is not None else None


def _add_field(fields: list[FieldSpec], spec: FieldSpec) -> None:
    if all(f.name != spec.name for f in fields):
        fields.append(spec)


def _release(elem) -> None:
    """Drop a processed subtree and the already-handled siblings before it."""
    elem.clear()
    parent = elem.getparent()
    if parent is not None:
        while elem.getprevious() is not None:
            del parent[0]


def _parse_network_link(elem) -> Optional[LinkReference]:
    link = _child(elem, "Link")
    if link is None:
        link = _child(elem, "Url")
    href = (_child_text(link, "href") or "").strip()
    if not href:
        return None
    return LinkReference(target=href, name=_child_text(elem, "name"))


def _parse_look_at(elem) -> Optional[Point]:
    try:
        return Point(float(_child_text(elem, "longitude")), float(_child_text(elem, "latitude")))
    except (TypeError, ValueError):
        return None


def parse_coordinates(text: Optional[str]) -> list[tuple[float, ...]]:
    """Parse a KML coordinates string ("lon,lat[,alt] lon,lat[,alt] ...")."""
    coords = []
    normalized = re.sub(r"\s*,\s*", ",", (text or "").strip())
    for token in normalized.split():
        values = [float(v) for v in token.split(",") if v != ""]
        if len(values) < 2:
            raise ValueError(f"Invalid coordinate tuple: {token!r}")
        coords.append(tuple(values[:3]))
    return coords


def _ring(elem) -> list[tuple[float, ...]]:
    ring = _child(elem, "LinearRing")
    if ring is None:
        raise ValueError("Boundary without LinearRing")
    return parse_coordinates(_child_text(ring, "coordinates"))


def parse_geometry(elem) -> Optional[BaseGeometry]:
    """
    Build a shapely geometry from a KML geometry element.

    Returns None for an empty MultiGeometry.

    Raises:
        ValueError: If the element holds invalid or insufficient coordinates
    """
    tag = _local(elem)
    if tag == "Point":
        coords = parse_coordinates(_child_text(elem, "coordinates"))
        if not coords:
            raise ValueError("Point without coordinates")
        return Point(coords[0])
    if tag == "LineString":
        return LineString(parse_coordinates(_child_text(elem, "coordinates")))
    if tag == "LinearRing":
        return LinearRing(parse_coordinates(_child_text(elem, "coordinates")))
    if tag == "Polygon":
        outer = _child(elem, "outerBoundaryIs")
        if outer is None:
            raise ValueError("Polygon without outerBoundaryIs")
        holes = [
            _ring(child) for child in elem
            if isinstance(child.tag, str) and _local(child) == "innerBoundaryIs"
        ]
        return Polygon(_ring(outer), holes)
    if tag == "Track":
        coords = [
            tuple(float(v) for v in (child.text or "").split()[:3]) for child in elem
            if isinstance(child.tag, str) and _local(child) == "coord"
        ]
        return LineString(coords)
    if tag == "MultiTrack":
        tracks = [parse_geometry(child) for child in elem
                  if isinstance(child.tag, str) and _local(child) == "Track"]
        return MultiLineString(tracks)
    if tag == "MultiGeometry":
        parts = [
            parse_geometry(child) for child in elem
            if isinstance(child.tag, str) and _local(child) in GEOMETRY_TAGS
        ]
        parts = [p for p in parts if p is not None]
        if not parts:
            return None
        kinds = {p.geom_type for p in parts}
        if kinds == {"Point"}:
            return MultiPoint(parts)
        if kinds == {"LineString"}:
            return MultiLineString(parts)
        if kinds == {"Polygon"}:
            return MultiPolygon(parts)
        return GeometryCollection(parts)
    raise ValueError(f"Unsupported geometry element: {tag}")


def _color(elem, default: Color) -> Color:
    text = _child_text(elem, "color")
    if not text:
        return default
    try:
        return Color.from_kml(text)
    except ValueError as e:
        logger.warning(f"{e}, using {default.argb_hex}")
        return default


def _float(text: Optional[str], default: Optional[float]) -> Optional[float]:
    if text is None or not text.strip():
        return default
    try:
        return float(text)
    except ValueError:
        logger.warning(f"Invalid number {text!r} in style, using {default}")
        return default


def _flag(text: Optional[str], default: bool) -> bool:
    if text is None:
        return default
    try:
        return coerce_value(text, FieldType.BOOLEAN)
    except ValueError:
        return default


def parse_style(elem, identifier: str) -> StyleFragment:
    """Turn a <Style> element into a fragment of symbolizers.

    Order is fill, line, icon, label so later symbolizers draw on top.
    """
    symbolizers = []
    line_style = _child(elem, "LineStyle")
    poly_style = _child(elem, "PolyStyle")
    icon_style = _child(elem, "IconStyle")
    label_style = _child(elem, "LabelStyle")

    line = None
    if line_style is not None:
        line = LineSymbolizer(color=_color(line_style, WHITE), width=_float(_child_text(line_style, "width"), 1.0))
    if poly_style is not None:
        outlined = _flag(_child_text(poly_style, "outline"), True)
        symbolizers.append(PolygonSymbolizer(
            fill=_color(poly_style, WHITE),
            stroke=line if outlined else None,
            filled=_flag(_child_text(poly_style, "fill"), True),
            outlined=outlined,
        ))
    if line is not None:
        symbolizers.append(line)
    if icon_style is not None:
        href = (_child_text(_child(icon_style, "Icon"), "href") or "").strip()
        if href:
            tint = _color(icon_style, WHITE) if _child_text(icon_style, "color") else None
            symbolizers.append(PointSymbolizer(
                href=href,
                tint=tint,
                scale=_float(_child_text(icon_style, "scale"), None),
            ))
    if label_style is not None:
        symbolizers.append(TextSymbolizer(
            color=_color(label_style, WHITE),
            scale=_float(_child_text(label_style, "scale"), 1.0),
        ))
    return StyleFragment(identifier, symbolizers)
