import logging
from pathlib import Path
from typing import Annotated, Optional

import typer

from .cleanup import register_cleanup_handlers, remove_process_downloads, remove_stale_downloads
from .config.settings import Config, ConfigurationError
from .interfaces import FileStyleSink
from .pipeline.export import Exporter
from .pipeline.ingest import KMLIngest
from .schema_io import load_schemas, save_schemas, schemas_to_yaml
from .types import KMLIngestError
from .utils import setup_logging

app = typer.Typer(help="KML ingest: infer a flat schema, export typed records, generate SLD styles")


def load_settings() -> Config:
    try:
        return Config()
    except ConfigurationError as e:
        typer.echo(f"ERROR: Invalid configuration: {e}", err=True)
        raise typer.Exit(1) from e


@app.command("schema")
def schema_command(
    source: Annotated[Path, typer.Argument(help="KML or KMZ file to inspect")],
    collate: Annotated[Optional[bool], typer.Option("--collate/--no-collate", help="One schema per geometry type")] = None,
    lenient: Annotated[Optional[bool], typer.Option("--lenient/--strict", help="Drop malformed geometries instead of failing")] = None,
    out: Annotated[Optional[Path], typer.Option("--out", "-o", help="Write the schema(s) to this YAML file")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable detailed logging output")] = False,
):
    """
    Infer the unified schema of a KML document.

    Examples:
        kmlingest schema tracks.kml
        kmlingest schema tracks.kmz --collate --out tracks.yml
    """
    if not source.exists():
        typer.echo(f"ERROR: Source not found: {source}", err=True)
        raise typer.Exit(1)

    setup_logging(verbose)
    settings = load_settings()
    options = settings.run_options(lenient=lenient, collate=collate, verbose=verbose)

    try:
        result = KMLIngest(source, options).infer()
    except KMLIngestError as e:
        logging.error(f"Schema inference failed: {e}")
        raise typer.Exit(1) from e
    finally:
        remove_process_downloads()

    for warning in result.warnings:
        typer.echo(f"WARNING: {warning}", err=True)
    for link in result.network_links:
        typer.echo(f"Network link (not followed): {link.target}", err=True)

    if out:
        save_schemas(result.schemas, out)
        typer.echo(f"Wrote {len(result.schemas)} schema(s) to {out}")
    else:
        typer.echo(schemas_to_yaml(result.schemas))


@app.command("import")
def import_command(
    source: Annotated[Path, typer.Argument(help="KML or KMZ file to import")],
    output: Annotated[Path, typer.Argument(help="Output file (.geojson or .gpkg)")],
    schema: Annotated[Optional[Path], typer.Option("--schema", "-s", help="Known schema YAML; skips inference")] = None,
    collate: Annotated[Optional[bool], typer.Option("--collate/--no-collate", help="One layer per geometry type")] = None,
    lenient: Annotated[Optional[bool], typer.Option("--lenient/--strict", help="Drop malformed geometries instead of failing")] = None,
    styles: Annotated[Optional[Path], typer.Option("--styles", help="Directory for the SLD and derived icons")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable detailed logging output")] = False,
    log_to_file: Annotated[bool, typer.Option("--log-to-file", help="Create timestamped log files")] = False,
):
    """
    Import a KML or KMZ document.

    Unpacks KMZ containers, infers (or loads) the schema, exports typed
    records, then writes the SLD style and derived icons.

    Examples:
        kmlingest import tracks.kmz tracks.gpkg --collate
        kmlingest import tracks.kml tracks.geojson --schema tracks.yml --styles styles/
    """
    if not source.exists():
        typer.echo(f"ERROR: Source not found: {source}", err=True)
        raise typer.Exit(1)

    setup_logging(verbose, source.stem, "import", log_to_file)
    register_cleanup_handlers()
    settings = load_settings()
    remove_stale_downloads(settings.temp.retention_hours)
    options = settings.run_options(lenient=lenient, collate=collate, verbose=verbose, log_to_file=log_to_file)

    try:
        known = load_schemas(schema) if schema else None
        style_dir = styles or Path(settings.style.style_dir)

        ingest = KMLIngest(source, options)
        exporter = Exporter(output)
        result = ingest.run(
            exporter,
            schemas=known,
            style_sink=FileStyleSink(style_dir),
            style_dir=style_dir,
            context_path=settings.style.context_path,
            fetch_timeout_s=settings.assets.fetch_timeout_s,
            user_agent=settings.assets.user_agent,
        )
        if not result.schemas:
            logging.warning(f"No records found in {source}")
            return

        final_path = exporter.write(source_name=ingest.name)

        for warning in result.warnings:
            logging.warning(str(warning))
        logging.info(f"Import completed successfully: {final_path}")
        print(f"Exported to: {final_path}")

    except (KMLIngestError, FileNotFoundError, ValueError, OSError) as e:
        logging.error(f"Import failed: {e}")
        if verbose:
            import traceback
            logging.error(f"Full traceback: {traceback.format_exc()}")
        raise typer.Exit(1) from e
    finally:
        remove_process_downloads()


@app.command("version")
def version():
    """Display version information."""
    from . import __version__
    typer.echo(f"kmlingest version: {__version__}")


if __name__ == "__main__":
    app()
