"""KML ingest pipeline: schema inference, typed record streaming and SLD style assembly."""

__version__ = "0.1.0"
