"""
Style Domain Model

Styles captured from a KML document while it is parsed. A StyleMap is handed
to the raw reader as a capture sink; the style assembler later turns its
fragments into SLD rules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Iterator, Optional, Union
from urllib.parse import urlparse

MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
}


@dataclass(frozen=True)
class Color:
    """RGBA color; KML serialises these as aabbggrr hex."""
    r: int
    g: int
    b: int
    a: int = 255

    @classmethod
    def from_kml(cls, text: str) -> "Color":
        value = text.strip().lstrip("#")
        if len(value) != 8:
            raise ValueError(f"Invalid KML color: {text!r}")
        n = int(value, 16)
        return cls(r=n & 0xFF, g=(n >> 8) & 0xFF, b=(n >> 16) & 0xFF, a=(n >> 24) & 0xFF)

    @property
    def hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    @property
    def argb_hex(self) -> str:
        return f"{self.a:02x}{self.r:02x}{self.g:02x}{self.b:02x}"

    @property
    def opacity(self) -> float:
        return round(self.a / 255, 3)


@dataclass
class PointSymbolizer:
    """Icon marker; tint and scale ask for a derived image."""
    href: str
    format: Optional[str] = None
    tint: Optional[Color] = None
    scale: Optional[float] = None

    def __post_init__(self):
        if self.format is None:
            self.format = guess_mime_type(self.href)

    @property
    def needs_processing(self) -> bool:
        return self.tint is not None or self.scale is not None


@dataclass
class LineSymbolizer:
    color: Color
    width: float = 1.0


@dataclass
class PolygonSymbolizer:
    fill: Color
    stroke: Optional[LineSymbolizer] = None
    filled: bool = True
    outlined: bool = True


@dataclass
class TextSymbolizer:
    color: Color
    scale: float = 1.0


Symbolizer = Union[PointSymbolizer, LineSymbolizer, PolygonSymbolizer, TextSymbolizer]


@dataclass
class StyleFragment:
    """Symbolizers captured for one style identifier (e.g. ``#pin``)."""
    identifier: str
    symbolizers: list[Symbolizer] = field(default_factory=list)

    @property
    def point_symbolizers(self) -> list[PointSymbolizer]:
        return [s for s in self.symbolizers if isinstance(s, PointSymbolizer)]


class StyleMap:
    """
    Identifier to StyleFragment mapping populated while parsing.

    A later declaration of an identifier replaces an earlier one. StyleMap
    elements are stored as aliases: their own entry has no symbolizers and
    resolves to the target style once that style is known.
    """

    def __init__(self):
        self._fragments: dict[str, StyleFragment] = {}
        self._aliases: dict[str, str] = {}

    def put(self, fragment: StyleFragment) -> None:
        self._fragments[fragment.identifier] = fragment
        self._aliases.pop(fragment.identifier, None)

    def put_alias(self, identifier: str, target: str) -> None:
        self._fragments[identifier] = StyleFragment(identifier)
        self._aliases[identifier] = target

    def keys(self) -> list[str]:
        return list(self._fragments)

    def get(self, identifier: str) -> Optional[StyleFragment]:
        fragment = self._fragments.get(identifier)
        if fragment is None or fragment.symbolizers or identifier not in self._aliases:
            return fragment
        target = self._resolve(identifier)
        if target is None:
            return fragment
        return StyleFragment(identifier, list(target.symbolizers))

    def _resolve(self, identifier: str) -> Optional[StyleFragment]:
        seen = {identifier}
        current = self._aliases.get(identifier)
        while current is not None and current not in seen:
            seen.add(current)
            fragment = self._fragments.get(current)
            if fragment is not None and fragment.symbolizers:
                return fragment
            current = self._aliases.get(current)
        return None

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._fragments

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._fragments)


def guess_mime_type(href: str) -> Optional[str]:
    """Image MIME type from the href's file extension, None when unknown."""
    path = urlparse(href).path or href
    return MIME_TYPES.get(PurePosixPath(path).suffix.lower())
