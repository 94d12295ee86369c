"""Unit tests for kmlingest.pipeline.schema."""

import pytest

from conftest import kml, line, placemark, point, polygon
from kmlingest.domain.enums import FieldType, GeometryType
from kmlingest.pipeline.reader import KMLRawReader
from kmlingest.pipeline.schema import SchemaUnifier, collate
from kmlingest.domain.models import UnifiedSchema
from kmlingest.types import EmptyResultWarning, ParseError

BASELINE = ["geometry", "name", "visibility", "open", "address", "phoneNumber", "description", "style", "folder"]


def infer(doc: bytes, collate: bool = False, lenient: bool = False):
    with KMLRawReader.full(doc, lenient=lenient) as reader:
        return SchemaUnifier("doc", collate=collate).infer(reader)


def data(**values) -> str:
    items = "".join(f'<Data name="{k}"><value>{v}</value></Data>' for k, v in values.items())
    return f"<ExtendedData>{items}</ExtendedData>"


def test_single_bare_placemark_has_baseline_fields():
    result = infer(kml(placemark("foo", extra="<description>bar</description>")))

    [schema] = result.schemas
    assert schema.name == "doc"
    assert schema.field_names == BASELINE
    assert schema.get("geometry").type is FieldType.GEOMETRY
    assert schema.get("style").type is FieldType.STRING
    assert schema.srs == "EPSG:4326"
    assert result.warnings == []


def test_disjoint_untyped_attributes_are_unioned_once():
    doc = kml(placemark("a", extra=data(alpha=1, beta=2)) + placemark("b", extra=data(gamma=3, alpha=4)))
    [schema] = infer(doc).schemas

    assert len(schema.fields) == len(BASELINE) + 3
    assert schema.field_names[len(BASELINE):] == ["alpha", "beta", "gamma"]
    assert all(schema.get(n).type is FieldType.STRING for n in ("alpha", "beta", "gamma"))


def test_declared_schemas_merge_in_declaration_order():
    doc = kml(
        '<Schema name="S1" id="S1"><SimpleField name="foo" type="int"/></Schema>'
        '<Schema name="S2" id="S2"><SimpleField name="bar" type="float"/></Schema>'
        + placemark("r", extra=(
            '<ExtendedData><SchemaData schemaUrl="#S1"><SimpleData name="foo">42</SimpleData></SchemaData>'
            '<SchemaData schemaUrl="#S2"><SimpleData name="bar">4.2</SimpleData></SchemaData></ExtendedData>'
        ))
    )
    result = infer(doc)
    [schema] = result.schemas

    names = schema.field_names
    assert names.index("foo") < names.index("bar")
    assert schema.get("foo").type is FieldType.INTEGER
    assert schema.get("bar").type is FieldType.FLOAT
    assert schema.schema_names == ("S1", "S2")
    assert result.schema_names == ["S1", "S2"]


def test_first_definition_wins_on_type_conflict():
    doc = kml(
        '<Schema name="A"><SimpleField name="x" type="int"/></Schema>'
        '<Schema name="B"><SimpleField name="x" type="string"/><SimpleField name="y" type="bool"/></Schema>'
        + placemark("r", extra=data(x="untyped", y="1"))
    )
    [schema] = infer(doc).schemas

    assert schema.get("x").type is FieldType.INTEGER
    assert schema.get("y").type is FieldType.BOOLEAN
    assert schema.field_names.count("x") == 1


def test_declared_schema_without_records_still_yields_schema():
    doc = kml('<Schema name="A"><SimpleField name="x" type="int"/></Schema>')
    [schema] = infer(doc).schemas

    assert schema.field_names == ["geometry", "x", "style", "folder"]


def test_empty_source_returns_no_schemas():
    result = infer(kml(""))

    assert result.schemas == []
    assert result.is_empty
    assert len(result.warnings) == 1
    assert isinstance(result.warnings[0], EmptyResultWarning)


def test_inference_is_idempotent():
    doc = kml(
        '<Schema name="A"><SimpleField name="x" type="int"/></Schema>'
        + placemark("a", point(), extra=data(k="v"))
        + placemark("b", line())
    )
    assert infer(doc, collate=True).schemas == infer(doc, collate=True).schemas
    assert infer(doc).schemas == infer(doc).schemas


def test_collation_partitions_in_observation_order():
    doc = kml(placemark("l", line()) + placemark("p", point()) + placemark("n") + placemark("q", point()))
    schemas = infer(doc, collate=True).schemas

    assert [s.name for s in schemas] == ["docLineString", "docPoint"]
    assert [s.geometry_type for s in schemas] == [GeometryType.LINESTRING, GeometryType.POINT]
    assert [s.accepts_null_geometry for s in schemas] == [False, True]
    assert all(s.field_names == BASELINE for s in schemas)


def test_collation_without_points_homes_nulls_in_first_partition():
    doc = kml(placemark("poly", polygon()) + placemark("l", line()))
    schemas = infer(doc, collate=True).schemas

    assert [s.name for s in schemas] == ["docPolygon", "docLineString"]
    assert [s.accepts_null_geometry for s in schemas] == [True, False]


def test_collation_without_geometries_returns_single_schema():
    schemas = infer(kml(placemark("a")), collate=True).schemas

    assert [s.name for s in schemas] == ["doc"]
    assert schemas[0].geometry_type is GeometryType.GEOMETRY


def test_collate_helper_never_mutates_the_aggregate():
    base = UnifiedSchema(name="t")
    clones = collate(base, [GeometryType.POLYGON])

    assert base.name == "t"
    assert clones[0].name == "tPolygon"


def test_network_links_are_collected():
    doc = kml("<NetworkLink><Link><href>other.kml</href></Link></NetworkLink>" + placemark("a"))
    result = infer(doc)

    assert [link.target for link in result.network_links] == ["other.kml"]


def test_parse_errors_propagate_unchanged():
    with pytest.raises(ParseError):
        infer(kml(placemark("bad", line((0, 0)))))


def test_lenient_inference_records_geometry_warnings():
    result = infer(kml(placemark("bad", line((0, 0))) + placemark("ok", point())), collate=True, lenient=True)

    assert [s.name for s in result.schemas] == ["docPoint"]
    assert len(result.warnings) == 1
