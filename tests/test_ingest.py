"""End-to-end tests for kmlingest.pipeline.ingest and the exporters."""

import sqlite3

import geopandas as gpd
import pytest
from lxml import etree

from conftest import kml, line, make_kmz, placemark, png_bytes, point
from kmlingest.domain.models import RunOptions
from kmlingest.interfaces import FileStyleSink
from kmlingest.pipeline.export import ID_COLUMN, Exporter, records_to_frame
from kmlingest.pipeline.ingest import KMLIngest
from kmlingest.schema_io import load_schemas, save_schemas
from kmlingest.types import GeometryParseWarning, ParseError

XLINK_HREF = "{http://www.w3.org/1999/xlink}href"

DOCUMENT = kml(
    '<Style id="pin"><IconStyle><color>ff00ffff</color>'
    "<Icon><href>images/pin.png</href></Icon></IconStyle></Style>"
    "<Folder><name>Trails</name>"
    + placemark("start", point(10, 20), extra=(
        "<styleUrl>#pin</styleUrl>"
        '<description>&lt;img src="images/pin.png"&gt;</description>'
    ))
    + placemark("route", line())
    + "</Folder>"
)


class ListSink:
    """Catalog sink keeping every record in memory."""

    def __init__(self):
        self.layers = {}

    def attach(self, schema, records):
        self.layers[schema.name] = list(records)


@pytest.fixture
def container(tmp_path):
    return make_kmz(tmp_path / "trails.kmz", DOCUMENT, {"images/pin.png": png_bytes()})


def test_kmz_import_records_styles_and_icons(tmp_path, container):
    style_dir = tmp_path / "styles"
    sink = ListSink()
    ingest = KMLIngest(container)

    result = ingest.run(sink, style_sink=FileStyleSink(style_dir), style_dir=style_dir,
                        context_path="/ctx/styles/")

    assert ingest.name == "trails"
    assert [s.name for s in result.schemas] == ["trails"]
    assert result.record_counts == {"trails": 2}
    assert result.warnings == []

    start, route = sink.layers["trails"]
    assert start.get("folder") == "Trails"
    assert start.get("style") == "#pin"
    assert start.get("description") == '<img src="/ctx/styles/images/pin.png">'
    assert route.get("style") is None

    assert (style_dir / "images" / "pin.png").is_file()
    assert (style_dir / "ffffff00-pin.png").is_file()
    assert result.style == style_dir / "trails.sld"
    root = etree.parse(str(result.style)).getroot()
    hrefs = [e.get(XLINK_HREF) for e in root.iter("{http://www.opengis.net/sld}OnlineResource")]
    assert hrefs[0] == "/ctx/styles/ffffff00-pin.png"


def test_prefix_without_trailing_slash_matches_style_hrefs(tmp_path):
    document = kml(
        '<Style id="pin"><IconStyle><Icon><href>images/a.png</href></Icon></IconStyle></Style>'
        + placemark("a", point(), extra=(
            "<styleUrl>#pin</styleUrl>"
            '<description>&lt;img src="images/a.png"&gt;</description>'
        ))
    )
    container = make_kmz(tmp_path / "site.kmz", document, {"images/a.png": png_bytes()})
    style_dir = tmp_path / "styles"
    sink = ListSink()

    result = KMLIngest(container).run(sink, style_sink=FileStyleSink(style_dir), style_dir=style_dir,
                                      context_path="/ctx/styles")

    [record] = sink.layers["site"]
    assert record.get("description") == '<img src="/ctx/styles/images/a.png">'
    root = etree.parse(str(result.style)).getroot()
    hrefs = [e.get(XLINK_HREF) for e in root.iter("{http://www.opengis.net/sld}OnlineResource")]
    assert hrefs[0] == "/ctx/styles/images/a.png"


def test_rewrite_rule_normalises_prefix(container):
    ingest = KMLIngest(container)

    assert ingest.rewrite_rule("/ctx/styles").prefix == "/ctx/styles/"
    assert ingest.rewrite_rule("/ctx/styles//").prefix == "/ctx/styles/"
    assert ingest.rewrite_rule(None) is None
    assert ingest.rewrite_rule("") is None


def test_collated_import_with_known_schemas(tmp_path, container):
    options = RunOptions(collate=True)
    inferred = KMLIngest(container, options).infer()
    schema_file = save_schemas(inferred.schemas, tmp_path / "schemas.yml")
    known = load_schemas(schema_file)

    assert known == inferred.schemas

    sink = ListSink()
    result = KMLIngest(container, options).run(sink, schemas=known)

    assert result.record_counts == {"trailsPoint": 1, "trailsLineString": 1}
    assert result.style is None
    assert result.total_records == 2


def test_known_schemas_report_geometry_warnings_once(tmp_path):
    source = tmp_path / "bad.kml"
    source.write_bytes(kml(placemark("bad", line((0, 0))) + placemark("p", point()) + placemark("l", line())))
    options = RunOptions(collate=True, lenient=True)
    schemas = KMLIngest(source, options).infer().schemas

    result = KMLIngest(source, options).run(ListSink(), schemas=schemas)

    assert len(result.warnings) == 1
    assert isinstance(result.warnings[0], GeometryParseWarning)
    assert result.record_counts == {"badPoint": 2, "badLineString": 1}


def test_network_links_are_reported_not_followed(tmp_path):
    source = tmp_path / "links.kml"
    source.write_bytes(kml("<NetworkLink><Link><href>http://h/more.kml</href></Link></NetworkLink>"
                           + placemark("a", point())))

    result = KMLIngest(source).run(ListSink())

    assert [link.target for link in result.network_links] == ["http://h/more.kml"]


def test_container_without_document_fails(tmp_path):
    container = tmp_path / "empty.kmz"
    container.mkdir()
    (container / "readme.txt").write_text("no document")

    with pytest.raises(ParseError):
        KMLIngest(container).prepare()


def test_custom_unpacker_is_used(tmp_path, container):
    calls = []

    def unpacker(path):
        calls.append(path)
        target = tmp_path / "elsewhere"
        target.mkdir()
        (target / "doc.kml").write_bytes(kml(placemark("x")))
        return target

    ingest = KMLIngest(container, unpacker=unpacker)
    ingest.prepare()

    assert calls == [container]
    assert ingest.document == tmp_path / "elsewhere" / "doc.kml"


def test_geojson_export(tmp_path, container):
    exporter = Exporter(tmp_path / "out.geojson")
    KMLIngest(container).run(exporter)
    path = exporter.write(source_name="trails")

    gdf = gpd.read_file(path)
    assert len(gdf) == 2
    assert set(gdf[ID_COLUMN]) == {"Placemark.1", "Placemark.2"}
    assert list(gdf["name"]) == ["start", "route"]


def test_gpkg_export_keeps_layers_and_metadata(tmp_path, container):
    exporter = Exporter(tmp_path / "out.gpkg")
    KMLIngest(container, RunOptions(collate=True)).run(exporter)
    path = exporter.write(source_name="trails")

    assert len(gpd.read_file(path, layer="trailsPoint")) == 1
    assert len(gpd.read_file(path, layer="trailsLineString")) == 1
    with sqlite3.connect(path) as conn:
        metadata = dict(conn.execute("SELECT key, value FROM metadata").fetchall())
    assert metadata["source"] == "trails"
    assert metadata["layers"] == "trailsPoint,trailsLineString"


def test_frame_columns_follow_schema_order(container):
    ingest = KMLIngest(container)
    [schema] = ingest.infer().schemas
    with ingest.records(schema) as records:
        frame = records_to_frame(schema, records)

    assert list(frame.columns) == schema.field_names
    assert frame.crs.to_epsg() == 4326
    assert frame.index.name == ID_COLUMN
    assert str(frame["visibility"].dtype) == "boolean"


def test_export_without_records_fails(tmp_path):
    source = tmp_path / "empty.kml"
    source.write_bytes(kml('<Schema name="s"><SimpleField name="x" type="int"/></Schema>'))
    exporter = Exporter(tmp_path / "out.geojson")
    KMLIngest(source).run(exporter)

    with pytest.raises(ValueError):
        exporter.write()
