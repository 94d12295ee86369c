"""
KMZ container handling.

A KMZ is a zip holding a KML document (usually doc.kml) and the resources it
references. Unpacking replaces the container with a directory of the same
name so relative references keep resolving next to the document.
"""

from __future__ import annotations

import logging
import shutil
import zipfile
from pathlib import Path
from typing import Optional

from .types import ParseError

logger = logging.getLogger(__name__)

KML_SUFFIX = ".kml"
CONTAINER_SUFFIXES = {".kmz", ".kml"}
DEFAULT_DOCUMENT = "doc.kml"


def is_kmz(path: Path) -> bool:
    """Whether the file is a zip container, whatever its extension."""
    path = Path(path)
    return path.is_file() and zipfile.is_zipfile(path)


def unpack(container: Path) -> Path:
    """
    Extract a KMZ into a directory named like the container, deleting the container.

    Args:
        container: Path to the zip file (.kmz, or a zip misnamed .kml)

    Returns:
        Path of the directory, identical to the container path

    Raises:
        ParseError: If the container is not a readable zip
    """
    container = Path(container)
    staging = container.with_name(container.name + ".unpacking")
    try:
        with zipfile.ZipFile(container) as archive:
            archive.extractall(staging)
        container.unlink()
        staging.rename(container)
    except (zipfile.BadZipFile, OSError) as e:
        shutil.rmtree(staging, ignore_errors=True)
        raise ParseError(f"Unable to unpack {container}: {e}") from e
    logger.info(f"Unpacked {container.name}")
    return container


def find_document(directory: Path) -> Optional[Path]:
    """The KML document of an unpacked container: doc.kml, else the first .kml found."""
    directory = Path(directory)
    preferred = directory / DEFAULT_DOCUMENT
    if preferred.is_file():
        return preferred
    candidates = sorted(p for p in directory.rglob(f"*{KML_SUFFIX}") if p.is_file())
    return candidates[0] if candidates else None


def type_name_from_file(path: Path) -> str:
    """Layer name for a KML file; doc.kml inside an unpacked container takes the container's name."""
    path = Path(path)
    parent = path.parent
    if path.name == DEFAULT_DOCUMENT and parent.suffix.lower() in CONTAINER_SUFFIXES:
        return parent.stem
    return path.stem


def resource_paths(directory: Path) -> list[str]:
    """Every non-KML file of an unpacked container as a sorted relative POSIX path."""
    directory = Path(directory)
    return sorted(
        p.relative_to(directory).as_posix()
        for p in directory.rglob("*")
        if p.is_file() and p.suffix.lower() != KML_SUFFIX
    )
