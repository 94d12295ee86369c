"""
Icon download housekeeping.

Remote icons referenced by KML styles are downloaded into a per-process
directory under ``<system temp>/kmlingest``. Each import removes its own
directory when it ends; downloads left behind by killed runs are swept
once they pass the retention age.
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import tempfile
import time
from pathlib import Path

logger = logging.getLogger(__name__)

DOWNLOAD_PREFIX = "asset_"


def get_download_root() -> Path:
    """Directory shared by the icon downloads of every import process."""
    return Path(tempfile.gettempdir()) / "kmlingest"


def get_pid_download_dir() -> Path:
    """Icon download directory of the current process, created on demand."""
    pid_dir = get_download_root() / f"pid_{os.getpid()}"
    pid_dir.mkdir(parents=True, exist_ok=True)
    return pid_dir


def remove_stale_downloads(retention_hours: int = 24) -> int:
    """
    Remove icon downloads older than the retention period.

    Only files carrying the download prefix are touched. Process
    directories left empty afterwards are removed as well.

    Args:
        retention_hours: Downloads older than this are removed

    Returns:
        Number of downloads removed
    """
    root = get_download_root()
    if not root.exists():
        return 0

    cutoff_time = time.time() - (retention_hours * 3600)
    removed = 0

    for item in root.glob(f"pid_*/{DOWNLOAD_PREFIX}*"):
        if not item.is_file():
            continue
        try:
            if item.stat().st_mtime < cutoff_time:
                item.unlink()
                removed += 1
                logger.debug(f"Removed stale icon download: {item}")
        except OSError as e:
            logger.warning(f"Could not remove stale icon download {item}: {e}")

    for pid_dir in root.glob("pid_*"):
        if pid_dir.is_dir() and not any(pid_dir.iterdir()):
            try:
                pid_dir.rmdir()
                logger.debug(f"Removed empty download directory: {pid_dir}")
            except OSError as e:
                logger.debug(f"Could not remove download directory {pid_dir}: {e}")

    if removed:
        logger.info(f"Removed {removed} stale icon downloads (>{retention_hours}h)")
    return removed


def remove_process_downloads() -> None:
    """Remove the current process's icon download directory."""
    pid_dir = get_download_root() / f"pid_{os.getpid()}"
    if pid_dir.exists():
        try:
            shutil.rmtree(pid_dir)
            logger.debug(f"Removed icon download directory: {pid_dir}")
        except OSError as e:
            logger.warning(f"Could not remove icon download directory {pid_dir}: {e}")


def register_cleanup_handlers() -> None:
    """Remove this process's icon downloads when an import is interrupted."""
    def signal_handler(signum: int, frame) -> None:
        logger.info(f"Import interrupted by signal {signum}, removing icon downloads")
        remove_process_downloads()
        raise SystemExit(1)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
