"""
ImageAssetCache - Derived Icon Generation

Resolves icon references (relative paths, local files, remote URLs), applies a
KML tint and/or scale, and writes the derived image into a style directory.

Results are memoized per (scale, tint, source) for the lifetime of one cache,
failures included. Icons without a recognisable extension have their format
read from the image itself. Remote sources are downloaded at most once per
URL whatever tint or scale they are requested with.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path, PurePosixPath
from typing import Optional, Union
from urllib.parse import urljoin, urlparse
from urllib.request import url2pathname

import numpy as np
import requests
from PIL import Image

from ..cleanup import DOWNLOAD_PREFIX, get_pid_download_dir
from ..domain.styles import Color, guess_mime_type
from ..types import AssetResolutionWarning
from ..utils import clean_filename, ensure_directory

logger = logging.getLogger(__name__)

AssetKey = tuple[Optional[float], Optional[Color], str]

REMOTE_SCHEMES = {"http", "https"}

# Extension appended to names without one, by decoded Pillow format
FORMAT_EXTENSIONS = {
    "PNG": ".png",
    "JPEG": ".jpg",
    "GIF": ".gif",
}

DOWNLOAD_CHUNK_SIZE = 8192


def tint_image(image: Image.Image, tint: Color) -> Image.Image:
    """Blend each pixel's luminance with the tint and scale alpha by the tint's alpha."""
    pixels = np.asarray(image.convert("RGBA"), dtype=np.int64)
    r, g, b, a = (pixels[..., i] for i in range(4))
    luminance = (0.3 * r + 0.59 * g + 0.11 * b).astype(np.int64)

    out = np.empty_like(pixels)
    out[..., 0] = (tint.r + luminance) // 2
    out[..., 1] = (tint.g + luminance) // 2
    out[..., 2] = (tint.b + luminance) // 2
    out[..., 3] = (a * tint.a / 255).astype(np.int64)
    return Image.fromarray(out.astype(np.uint8))


def scale_image(image: Image.Image, scale: float) -> Image.Image:
    width = max(1, round(image.width * scale))
    height = max(1, round(image.height * scale))
    return image.resize((width, height), Image.Resampling.BILINEAR)


def output_name(name: str, tint: Optional[Color], width: Optional[int]) -> str:
    """Derived file name: tint hex first, then the scaled width."""
    if tint is not None:
        name = f"{tint.argb_hex}-{name}"
    if width is not None:
        name = f"{width}-{name}"
    return name


def source_file_name(uri: str) -> str:
    path = urlparse(uri).path or uri
    return clean_filename(PurePosixPath(path).name) or "icon"


class ImageAssetCache:
    """
    Memoizing generator of tinted/scaled icons.

    Example:
        with ImageAssetCache(style_dir, relative_root=kmz_dir) as cache:
            path = cache.resolve("images/pin.png", tint=Color(255, 255, 0), scale=2.0)
    """

    def __init__(
        self,
        destination: Optional[Union[str, Path]],
        relative_root: Optional[Union[str, Path]] = None,
        timeout_s: int = 30,
        user_agent: Optional[str] = None,
        temp_dir: Optional[Path] = None
    ):
        """
        Args:
            destination: Directory receiving derived images; None when only formats are read
            relative_root: Directory or base URL relative references resolve against
            timeout_s: Per-request timeout for remote fetches
            user_agent: User-Agent header sent with remote fetches
            temp_dir: Directory for downloads (defaults to the per-process temp dir)
        """
        self.destination = Path(destination) if destination is not None else None
        self.relative_root = relative_root
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self.temp_dir = temp_dir
        self.cache: dict[AssetKey, Optional[Path]] = {}
        self.fetched: dict[str, Optional[Path]] = {}
        self.formats: dict[str, Optional[str]] = {}
        self.warnings: list[AssetResolutionWarning] = []
        self._lock = threading.Lock()

    def resolve(self, source_uri: str, tint: Optional[Color] = None,
                scale: Optional[float] = None) -> Optional[Path]:
        """
        Produce (or look up) the derived image for a source and treatment.

        Returns:
            Path of the derived image, or None when the source could not be
            fetched, decoded or written
        """
        key = (scale, tint, source_uri)
        with self._lock:
            if key in self.cache:
                return self.cache[key]
            try:
                result = self._produce(source_uri, tint, scale)
            except (requests.RequestException, OSError, ValueError, Image.DecompressionBombError) as e:
                warning = AssetResolutionWarning(source_uri, str(e))
                logger.warning(str(warning))
                self.warnings.append(warning)
                result = None
            self.cache[key] = result
            return result

    def detect_format(self, source_uri: str) -> Optional[str]:
        """
        MIME type of a source icon read from its content, memoized per source.

        Returns:
            The MIME type, or None when the source could not be fetched or decoded
        """
        with self._lock:
            if source_uri in self.formats:
                return self.formats[source_uri]
            try:
                with Image.open(self._locate(source_uri)) as image:
                    mime_type = Image.MIME.get(image.format)
            except (requests.RequestException, OSError, ValueError, Image.DecompressionBombError) as e:
                warning = AssetResolutionWarning(source_uri, str(e))
                logger.warning(str(warning))
                self.warnings.append(warning)
                mime_type = None
            self.formats[source_uri] = mime_type
            return mime_type

    def _produce(self, source_uri: str, tint: Optional[Color], scale: Optional[float]) -> Path:
        if self.destination is None:
            raise ValueError("No destination directory for derived icons")
        local = self._locate(source_uri)
        with Image.open(local) as image:
            image.load()
            image_format = image.format
            derived = image
            if tint is not None:
                derived = tint_image(derived, tint)
            if scale is not None:
                derived = scale_image(derived, scale)

            name = source_file_name(source_uri)
            if guess_mime_type(name) is None and image_format in FORMAT_EXTENSIONS:
                name += FORMAT_EXTENSIONS[image_format]
            name = output_name(name, tint, derived.width if scale is not None else None)

            if image_format == "JPEG" and derived.mode != "RGB":
                derived = derived.convert("RGB")
            target = ensure_directory(self.destination) / name
            derived.save(target, format=image_format or "PNG")
        logger.debug(f"Generated {target.name} from {source_uri}")
        return target

    def _locate(self, source_uri: str) -> Path:
        parsed = urlparse(source_uri)
        if parsed.scheme in REMOTE_SCHEMES:
            return self._download(source_uri)
        if parsed.scheme == "file":
            return Path(url2pathname(parsed.path))
        path = Path(source_uri)
        if path.is_absolute() or self.relative_root is None:
            return path
        root = str(self.relative_root)
        if urlparse(root).scheme in REMOTE_SCHEMES:
            return self._download(urljoin(root.rstrip("/") + "/", source_uri))
        return Path(root) / source_uri

    def _download(self, url: str) -> Path:
        if url in self.fetched:
            cached = self.fetched[url]
            if cached is None:
                raise OSError(f"Earlier download of {url} failed")
            return cached

        temp_dir = self.temp_dir or get_pid_download_dir()
        target = ensure_directory(temp_dir) / f"{DOWNLOAD_PREFIX}{len(self.fetched)}_{source_file_name(url)}"
        headers = {"User-Agent": self.user_agent} if self.user_agent else None
        try:
            logger.info(f"Downloading icon {url}")
            response = requests.get(url, stream=True, timeout=self.timeout_s, headers=headers)
            response.raise_for_status()
            with open(target, "wb") as f:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
        except (requests.RequestException, OSError):
            self.fetched[url] = None
            target.unlink(missing_ok=True)
            raise
        self.fetched[url] = target
        return target

    def close(self) -> None:
        """Delete every temporary download of this run."""
        for url, path in self.fetched.items():
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove downloaded icon {path}: {e}")
        logger.debug(f"Asset cache closed: {len(self.cache)} entries, {len(self.fetched)} downloads")

    def __enter__(self) -> "ImageAssetCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
