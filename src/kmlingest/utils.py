"""
Shared helpers for the import commands.

Sections:
- Logging and timing of import runs
- Output file naming for SLD documents and derived icons
- YAML reading for saved schema documents
"""

import functools
import logging
import re
import sys
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

LOG_DIR = Path("logs")

# Characters rejected in file names on at least one platform
UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')

# =============================================================================
# Logging and Timing
# =============================================================================

def setup_logging(
    verbose: bool,
    source_name: Optional[str] = None,
    command: Optional[str] = None,
    enable_file_logging: bool = False
) -> None:
    """
    Configure console logging for a command, plus an optional log file per import.

    Args:
        verbose: Log at DEBUG level (reader and asset details) instead of INFO
        source_name: KML or KMZ file stem, used in the log file name
        command: CLI command name, used in the log file name
        enable_file_logging: Also write ``logs/<source>_<command>_<timestamp>.log``
    """
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]

    if enable_file_logging and source_name and command:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = ensure_directory(LOG_DIR) / f"{clean_filename(source_name)}_{command}_{timestamp}.log"
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
        print(f"Import log: {log_file}")

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True
    )


def timer(func: Callable) -> Callable:
    """Log the wall-clock duration of an import stage."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        started = time.perf_counter()
        result = func(*args, **kwargs)
        logger.info(f"{func.__qualname__} took {time.perf_counter() - started:.2f}s")
        return result
    return wrapper


# =============================================================================
# Output Files
# =============================================================================

def ensure_directory(path: Path) -> Path:
    """Create a style, icon or log directory if it is missing and return it."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def clean_filename(filename: str) -> str:
    """
    File name for an SLD document or a derived icon.

    Style identifiers and icon URL segments may carry characters that are
    not valid in file names; runs of them collapse into a single ``_``.

    Args:
        filename: Style identifier, source stem or icon name

    Returns:
        The name with unsafe characters replaced, empty if nothing is left
    """
    cleaned = UNSAFE_FILENAME_CHARS.sub('_', filename)
    cleaned = re.sub(r'_+', '_', cleaned)
    return cleaned.strip('_')


# =============================================================================
# Schema Documents
# =============================================================================

def load_yaml_file(file_path: Path) -> Any:
    """
    Read a saved schema document.

    Raises:
        FileNotFoundError: If the document does not exist
        ValueError: If the document is not valid YAML
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Schema document not found: {file_path}")

    try:
        with open(file_path, encoding='utf-8') as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in schema document {file_path}: {e}") from e
