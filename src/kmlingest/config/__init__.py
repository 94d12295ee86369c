"""
Configuration module for the KML ingest pipeline.
"""

from .settings import (
    AssetConfig,
    Config,
    ConfigurationError,
    ReaderConfig,
    StyleConfig,
    TempConfig,
)

__all__ = [
    'Config',
    'ConfigurationError',
    'ReaderConfig',
    'StyleConfig',
    'AssetConfig',
    'TempConfig',
]
