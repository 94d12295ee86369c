"""Unit tests for kmlingest.pipeline.reader."""

import pytest

from conftest import kml, line, placemark, point, polygon
from kmlingest.domain.enums import FieldType, ReaderMode
from kmlingest.domain.models import UnifiedSchema
from kmlingest.domain.styles import (
    Color,
    LineSymbolizer,
    PointSymbolizer,
    PolygonSymbolizer,
    StyleMap,
    TextSymbolizer,
)
from kmlingest.pipeline.reader import PLACEMARK_FIELDS, KMLRawReader, parse_coordinates
from kmlingest.types import GeometryParseWarning, LinkReference, ParseError, RawRecord, SchemaDeclaration


def read_all(source, **kwargs):
    with KMLRawReader(source, **kwargs) as reader:
        return list(reader)


def test_placemark_attributes_and_geometry():
    doc = kml(placemark(
        "foo", point(10, 20),
        extra="<description>bar</description><visibility>0</visibility><address>Main St</address>",
    ))
    [record] = read_all(doc)

    assert isinstance(record, RawRecord)
    assert record.id == "Placemark.1"
    assert record.attrs["name"] == "foo"
    assert record.attrs["description"] == "bar"
    assert record.attrs["visibility"] is False
    assert record.attrs["address"] == "Main St"
    assert record.geometry.geom_type == "Point"
    assert (record.geometry.x, record.geometry.y) == (10, 20)
    assert record.fields == PLACEMARK_FIELDS


def test_record_id_comes_from_id_attribute():
    [record] = read_all(kml(placemark("a", id="pm-7")))
    assert record.id == "pm-7"


def test_folder_lineage_keeps_unnamed_folders():
    doc = kml(
        "<Folder><name>Outer</name>"
        "<Folder>" + placemark("a") + "</Folder>"
        "<Folder><name>Inner</name>" + placemark("b") + "</Folder>"
        "</Folder>" + placemark("c")
    )
    records = read_all(doc)

    assert [r.folder_path for r in records] == [("Outer", None), ("Outer", "Inner"), ()]


def test_schema_declarations_type_schema_data():
    doc = kml(
        '<Schema name="trail" id="trailId">'
        '<SimpleField name="length" type="int"/><SimpleField name="grade" type="double"/>'
        "</Schema>"
        + placemark("a", extra=(
            '<ExtendedData><SchemaData schemaUrl="#trailId">'
            '<SimpleData name="length">42</SimpleData>'
            '<SimpleData name="grade">1.5</SimpleData>'
            '<SimpleData name="surface">gravel</SimpleData>'
            "</SchemaData><Data name=\"note\"><value>steep</value></Data></ExtendedData>"
        ))
    )
    declaration, record = read_all(doc)

    assert isinstance(declaration, SchemaDeclaration)
    assert declaration.name == "trail"
    assert [(f.name, f.type) for f in declaration.fields] == [
        ("length", FieldType.INTEGER), ("grade", FieldType.DOUBLE)]
    assert record.attrs["length"] == 42
    assert record.attrs["grade"] == 1.5
    assert [f.name for f in record.fields[len(PLACEMARK_FIELDS):]] == ["length", "grade"]
    assert record.extended_untyped == {"surface": "gravel", "note": "steep"}


def test_features_only_mode_surfaces_records_only():
    doc = kml(
        '<Schema name="s"><SimpleField name="x" type="string"/></Schema>'
        "<NetworkLink><name>more</name><Link><href>http://example.com/more.kml</href></Link></NetworkLink>"
        + placemark("a")
    )
    full = read_all(doc)
    features = read_all(doc, mode=ReaderMode.FEATURES_ONLY)

    assert [type(e) for e in full] == [SchemaDeclaration, LinkReference, RawRecord]
    assert full[1].target == "http://example.com/more.kml"
    assert full[1].name == "more"
    assert [type(e) for e in features] == [RawRecord]


def test_features_only_reads_records_of_declared_schemas():
    doc = kml(
        '<Schema name="Trail" parent="Placemark"><SimpleField name="speed" type="int"/></Schema>'
        "<Trail><name>t1</name><speed>5</speed>" + point() + "</Trail>"
        + placemark("p")
    )
    schema = UnifiedSchema(name="doc", schema_names=("Trail",))

    full = [e for e in read_all(doc) if isinstance(e, RawRecord)]
    typed = read_all(doc, mode=ReaderMode.FEATURES_ONLY, target_schema=schema)

    assert [r.attrs["name"] for r in full] == ["p"]
    assert [r.attrs["name"] for r in typed] == ["t1", "p"]
    assert typed[0].attrs["speed"] == 5
    assert typed[0].geometry.geom_type == "Point"


def test_geometry_variants():
    multi_points = "<MultiGeometry>" + point(0, 0) + point(1, 1) + "</MultiGeometry>"
    mixed = "<MultiGeometry>" + point(0, 0) + line() + "</MultiGeometry>"
    holed = (
        "<Polygon><outerBoundaryIs><LinearRing><coordinates>0,0 10,0 10,10 0,10 0,0</coordinates>"
        "</LinearRing></outerBoundaryIs><innerBoundaryIs><LinearRing>"
        "<coordinates>2,2 4,2 4,4 2,4 2,2</coordinates></LinearRing></innerBoundaryIs></Polygon>"
    )
    track = "<gx:Track><gx:coord>0 0 0</gx:coord><gx:coord>1 1 0</gx:coord></gx:Track>"
    doc = kml("".join(placemark(str(i), g) for i, g in enumerate(
        [line(), polygon(), holed, multi_points, mixed, "<MultiGeometry/>", track])))

    records = read_all(doc)
    types = [r.geometry.geom_type if r.geometry is not None else None for r in records]

    assert types == ["LineString", "Polygon", "Polygon", "MultiPoint", "GeometryCollection", None, "LineString"]
    assert len(records[2].geometry.interiors) == 1


def test_coordinates_tolerate_spaces_after_commas():
    assert parse_coordinates(" 1, 2,3  4,5 ") == [(1.0, 2.0, 3.0), (4.0, 5.0)]
    with pytest.raises(ValueError):
        parse_coordinates("1")


def test_malformed_geometry_is_fatal_when_strict():
    doc = kml(placemark("bad", line((0, 0))))
    with pytest.raises(ParseError):
        read_all(doc)


def test_malformed_geometry_becomes_warning_when_lenient():
    doc = kml(placemark("bad", "<Point><coordinates>abc</coordinates></Point>") + placemark("ok", point()))
    with KMLRawReader(doc, lenient=True) as reader:
        records = list(reader)
        warnings = reader.warnings

    assert [r.geometry is None for r in records] == [True, False]
    assert len(warnings) == 1
    assert isinstance(warnings[0], GeometryParseWarning)
    assert warnings[0].record_id == "Placemark.1"


def test_malformed_xml_raises_parse_error():
    with pytest.raises(ParseError):
        read_all(b"<kml><Document><Placemark></Document></kml>")


def test_missing_file_raises_parse_error(tmp_path):
    with pytest.raises(ParseError):
        KMLRawReader(tmp_path / "missing.kml")


def test_reads_from_path_and_close_is_idempotent(tmp_path):
    path = tmp_path / "doc.kml"
    path.write_bytes(kml(placemark("a") + placemark("b")))

    reader = KMLRawReader.full(path)
    first = reader.read()
    reader.close()
    reader.close()

    assert first.attrs["name"] == "a"
    assert reader.read() is None


def test_style_capture_shared_inline_and_style_map():
    doc = kml(
        '<Style id="pin"><IconStyle><color>ff00ffff</color><scale>2</scale>'
        "<Icon><href>images/pin.png</href></Icon></IconStyle>"
        "<LabelStyle><color>ff0000ff</color></LabelStyle></Style>"
        '<StyleMap id="pinMap"><Pair><key>normal</key><styleUrl>#pin</styleUrl></Pair>'
        "<Pair><key>highlight</key><styleUrl>#other</styleUrl></Pair></StyleMap>"
        + placemark("a", extra="<styleUrl>#pinMap</styleUrl>")
        + placemark("b", extra=(
            "<Style><LineStyle><color>ff0000ff</color><width>3</width></LineStyle>"
            "<PolyStyle><color>7f00ff00</color></PolyStyle></Style>"
        ))
    )
    styles = StyleMap()
    records = read_all(doc, style_capture=styles)

    assert records[0].style_ref == "#pinMap"
    assert records[1].style_ref == "#Placemark.2.style"
    assert sorted(styles.keys()) == ["#Placemark.2.style", "#pin", "#pinMap"]

    icon, label = styles.get("#pin").symbolizers
    assert icon == PointSymbolizer(href="images/pin.png", format="image/png",
                                   tint=Color(255, 255, 0), scale=2.0)
    assert isinstance(label, TextSymbolizer)
    assert label.color == Color(255, 0, 0)

    assert styles.get("#pinMap").symbolizers == styles.get("#pin").symbolizers

    poly, stroke = styles.get("#Placemark.2.style").symbolizers
    assert isinstance(poly, PolygonSymbolizer)
    assert poly.fill == Color(0, 255, 0, 127)
    assert poly.stroke == stroke
    assert stroke == LineSymbolizer(color=Color(255, 0, 0), width=3.0)


def test_styles_after_placemarks_are_captured_in_features_mode():
    doc = kml(placemark("a", extra="<styleUrl>#late</styleUrl>")
              + '<Style id="late"><LineStyle><color>ffffffff</color></LineStyle></Style>')
    styles = StyleMap()
    read_all(doc, mode=ReaderMode.FEATURES_ONLY, style_capture=styles)

    assert "#late" in styles
