"""
Exporter - Typed Records to GeoJSON / GeoPackage

Materialises the typed record stream of each schema into a GeoDataFrame
tagged EPSG:4326 and writes the collected layers, with the format inferred
from the output file extension.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import geopandas as gpd
import pandas as pd

from ..domain.enums import ExportFormat, FieldType
from ..domain.models import GEOMETRY_FIELD, TypedRecord, UnifiedSchema

logger = logging.getLogger(__name__)

ID_COLUMN = "kml_id"

# pandas dtypes per scalar field type; nullable where KML values may be absent
PANDAS_DTYPES = {
    FieldType.STRING: "object",
    FieldType.URI: "object",
    FieldType.INTEGER: "Int64",
    FieldType.FLOAT: "float64",
    FieldType.DOUBLE: "float64",
    FieldType.BOOLEAN: "boolean",
}


def records_to_frame(schema: UnifiedSchema, records: Iterable[TypedRecord]) -> gpd.GeoDataFrame:
    """
    Build a GeoDataFrame with one column per schema field, in schema order.

    Absent attributes become nulls; the index holds the record ids.
    """
    rows = []
    ids = []
    for record in records:
        ids.append(record.id)
        rows.append(record.attrs)

    columns = [f.name for f in schema.fields]
    if GEOMETRY_FIELD not in columns:
        columns.insert(0, GEOMETRY_FIELD)
    frame = pd.DataFrame.from_records(rows, columns=columns, index=pd.Index(ids, name=ID_COLUMN))

    for spec in schema.fields:
        if spec.name == GEOMETRY_FIELD or spec.type.is_geometry:
            continue
        frame[spec.name] = frame[spec.name].astype(PANDAS_DTYPES[spec.type])

    return gpd.GeoDataFrame(frame, geometry=GEOMETRY_FIELD, crs=schema.srs)


class Exporter:
    """
    Layer collector and multi-format writer.

    Acts as the catalog sink of an import: every attached schema becomes one
    layer. GeoPackage keeps layers apart; GeoJSON holds a single feature
    collection with a ``layer`` property when more than one layer is written.
    """

    def __init__(self, out_path: Optional[Path] = None, fmt: Optional[ExportFormat] = None):
        """
        Initialize exporter with output path and format.

        Args:
            out_path: Output file path (format inferred from extension if not specified)
            fmt: Explicit format override
        """
        self.out_path = Path(out_path) if out_path else None
        self.fmt = fmt
        self.layers: dict[str, gpd.GeoDataFrame] = {}

        if self.out_path and not fmt:
            suffix = self.out_path.suffix.lower()
            if suffix == '.gpkg':
                self.fmt = ExportFormat.GPKG
            else:
                self.fmt = ExportFormat.GEOJSON  # default
        elif not fmt:
            self.fmt = ExportFormat.GEOJSON

    def attach(self, schema: UnifiedSchema, records: Iterable[TypedRecord]) -> gpd.GeoDataFrame:
        """Consume a record stream into a layer named after its schema."""
        gdf = records_to_frame(schema, records)
        self.layers[schema.name] = gdf
        logger.info(f"Attached layer {schema.name}: {len(gdf):,} records")
        return gdf

    def write(self, out_path: Optional[Path] = None, source_name: Optional[str] = None) -> Path:
        """
        Write the attached layers.

        Args:
            out_path: Output file (defaults to the path given at construction)
            source_name: Name of the imported document, stored as metadata

        Returns:
            Path to the created file
        """
        output_path = Path(out_path) if out_path else self.out_path
        if output_path is None:
            raise ValueError("No output path given")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        layers = {name: gdf for name, gdf in self.layers.items() if len(gdf)}
        for name in self.layers.keys() - layers.keys():
            logger.warning(f"Skipping empty layer {name}")
        if not layers:
            raise ValueError("No records to export")

        if self.fmt == ExportFormat.GPKG:
            self._export_to_gpkg(layers, output_path, source_name)
        else:
            self._export_to_geojson(layers, output_path)

        logger.info(f"Successfully exported to {output_path} ({self.fmt.value})")
        return output_path

    def _export_to_geojson(self, layers: dict[str, gpd.GeoDataFrame], output_path: Path) -> None:
        if len(layers) == 1:
            data = next(iter(layers.values()))
        else:
            frames = [gdf.assign(layer=name) for name, gdf in layers.items()]
            data = gpd.GeoDataFrame(pd.concat(frames), geometry=GEOMETRY_FIELD, crs=frames[0].crs)

        data.reset_index().to_file(output_path, driver='GeoJSON')
        logger.info(f"GeoJSON export completed: {len(data):,} features written to {output_path}")

    def _export_to_gpkg(self, layers: dict[str, gpd.GeoDataFrame], output_path: Path,
                        source_name: Optional[str]) -> None:
        if output_path.exists():
            output_path.unlink()
        for i, (layer_name, gdf) in enumerate(layers.items()):
            mode = 'w' if i == 0 else 'a'
            logger.debug(f"Exporting layer '{layer_name}' with {len(gdf)} features")
            gdf.reset_index().to_file(output_path, driver='GPKG', layer=layer_name, mode=mode)

        self._add_gpkg_metadata(output_path, source_name or output_path.stem, list(layers))

    def _add_gpkg_metadata(self, output_path: Path, source_name: str, layer_names: list[str]) -> None:
        """Add metadata table to GeoPackage"""
        conn = sqlite3.connect(output_path)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            metadata = {
                'created_at': datetime.now().isoformat(),
                'source': source_name,
                'layers': ",".join(layer_names),
                'pipeline': 'kmlingest',
            }
            for key, value in metadata.items():
                cursor.execute("INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)", (key, value))
            conn.commit()
        finally:
            conn.close()
