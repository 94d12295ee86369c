"""
KMLIngest - End-to-End Import Orchestration

Runs the import of one KML or KMZ source: unpack, infer (unless schemas are
given), stream typed records of every schema into a catalog sink, then
assemble the SLD and derived icons from the styles captured along the way.
"""

from __future__ import annotations

import io
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .. import kmz
from ..domain.models import RunOptions, UnifiedSchema
from ..domain.styles import StyleMap
from ..interfaces import CatalogSink, StyleSink, Unpacker
from ..types import IngestWarning, LinkReference, ParseError
from ..utils import ensure_directory, timer
from .reader import KMLRawReader
from .schema import InferenceResult, SchemaUnifier
from .styles import StyleAssembler
from .transform import RewriteRule, TransformingRecordReader

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Summary of one import run."""
    schemas: list[UnifiedSchema] = field(default_factory=list)
    record_counts: dict[str, int] = field(default_factory=dict)
    warnings: list[IngestWarning] = field(default_factory=list)
    network_links: list[LinkReference] = field(default_factory=list)
    style: Optional[object] = None

    @property
    def total_records(self) -> int:
        return sum(self.record_counts.values())


class KMLIngest:
    """
    Import of a single KML document or KMZ container.

    Example:
        ingest = KMLIngest(Path("tracks.kmz"), RunOptions(collate=True))
        result = ingest.run(Exporter(Path("tracks.gpkg")), style_sink=FileStyleSink("styles"),
                            style_dir=Path("styles"))
    """

    def __init__(self, source: Path, options: Optional[RunOptions] = None,
                 unpacker: Unpacker = kmz.unpack):
        self.source = Path(source)
        self.options = options or RunOptions()
        self.unpacker = unpacker
        self.styles = StyleMap()
        self.document: Optional[Path] = None
        self.container: Optional[Path] = None
        self.name: Optional[str] = None

    def prepare(self) -> Path:
        """
        Locate the KML document, unpacking the source when it is a KMZ container.

        Raises:
            ParseError: If an unpacked container holds no KML document
        """
        if self.document is not None:
            return self.document
        if self.source.is_dir():
            self.container = self.source
        elif kmz.is_kmz(self.source):
            self.container = self.unpacker(self.source)

        if self.container is not None:
            document = kmz.find_document(self.container)
            if document is None:
                raise ParseError(f"No KML document found in {self.container}")
        else:
            document = self.source

        self.document = document
        self.name = kmz.type_name_from_file(document)
        logger.info(f"Importing {self.name} from {document}")
        return document

    def infer(self) -> InferenceResult:
        """First pass: infer the schema(s) of the document."""
        document = self.prepare()
        unifier = SchemaUnifier(self.name, collate=self.options.collate)
        with KMLRawReader.full(document, lenient=self.options.lenient, style_capture=self.styles) as reader:
            return unifier.infer(reader)

    def records(self, schema: UnifiedSchema, rewrite: Optional[RewriteRule] = None) -> TransformingRecordReader:
        """Second pass: a fresh typed record stream for one schema."""
        return TransformingRecordReader(
            self.prepare(), schema, lenient=self.options.lenient, rewrite=rewrite, style_capture=self.styles
        )

    def resource_paths(self) -> list[str]:
        self.prepare()
        return kmz.resource_paths(self.container) if self.container is not None else []

    def rewrite_rule(self, prefix: Optional[str]) -> Optional[RewriteRule]:
        """
        Description rewrite for the container's resources, None when there is nothing to rewrite.

        The prefix always ends in a single ``/`` so descriptions and style
        hrefs point at the same location.
        """
        paths = self.resource_paths()
        if not prefix or not paths:
            return None
        return RewriteRule(prefix.rstrip("/") + "/", tuple(paths))

    def copy_resources(self, destination: Path) -> list[Path]:
        """Copy the container's non-KML files under destination, keeping relative paths."""
        copied = []
        for relative in self.resource_paths():
            target = ensure_directory((Path(destination) / relative).parent) / Path(relative).name
            shutil.copy2(self.container / relative, target)
            copied.append(target)
        if copied:
            logger.info(f"Copied {len(copied)} resources to {destination}")
        return copied

    @timer
    def run(
        self,
        sink: CatalogSink,
        schemas: Optional[list[UnifiedSchema]] = None,
        style_sink: Optional[StyleSink] = None,
        style_dir: Optional[Path] = None,
        context_path: Optional[str] = None,
        fetch_timeout_s: int = 30,
        user_agent: Optional[str] = None
    ) -> IngestResult:
        """
        Run the whole import.

        Args:
            sink: Receives each schema with its record stream
            schemas: Known schemas; inference is skipped when given
            style_sink: Receives the SLD document; styles are skipped when None
            style_dir: Directory for derived icons and copied resources
            context_path: Prefix of relative resource references in output

        Returns:
            IngestResult with per-schema record counts and collected warnings

        Raises:
            ParseError: If the document cannot be parsed
        """
        self.prepare()
        result = IngestResult()
        inferred = schemas is None

        if inferred:
            inference = self.infer()
            schemas = inference.schemas
            result.warnings.extend(inference.warnings)
            result.network_links = inference.network_links
        result.schemas = list(schemas)

        rewrite = self.rewrite_rule(context_path)
        for schema in schemas:
            with self.records(schema, rewrite) as records:
                sink.attach(schema, records)
                result.record_counts[schema.name] = records.count
                # records with dropped geometry all land in the null-geometry home
                if schema.accepts_null_geometry and not inferred:
                    result.warnings.extend(records.warnings)

        if style_sink is not None and schemas:
            if style_dir is not None:
                self.copy_resources(style_dir)
            buffer = io.BytesIO()
            asset_warnings = StyleAssembler(self.name).write(
                buffer, self.styles, context_path,
                relative_root=self.document.parent,
                destination=style_dir,
                timeout_s=fetch_timeout_s,
                user_agent=user_agent,
            )
            result.warnings.extend(asset_warnings)
            result.style = style_sink.write_style(self.name, buffer.getvalue())

        logger.info(f"Imported {result.total_records:,} records into {len(schemas)} schemas "
                    f"with {len(result.warnings)} warnings")
        return result
