"""
StyleAssembler - SLD Generation from Captured KML Styles

Turns the StyleMap captured while parsing into one SLD user style: a
FeatureTypeStyle per style identifier, filtered on the record's ``style``
attribute, plus a fallback pushpin rule for records without a style.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import BinaryIO, Optional, Union
from urllib.parse import urlparse

from ..domain.enums import GeometryType
from ..domain.models import GEOMETRY_FIELD, STYLE_FIELD
from ..domain.styles import PointSymbolizer, PolygonSymbolizer, StyleMap, Symbolizer, guess_mime_type
from ..sld import (
    And,
    FeatureTypeStyle,
    GeometryTypeEquals,
    PropertyEquals,
    PropertyIsNull,
    Rule,
    StyleDocument,
    encode_sld,
)
from ..types import AssetResolutionWarning
from .assets import AssetKey, ImageAssetCache

logger = logging.getLogger(__name__)

DEFAULT_STYLE_NAME = "defaultPushpinStyle"
DEFAULT_ICON = "http://maps.google.com/mapfiles/kml/pushpin/ylw-pushpin.png"
DEFAULT_ICON_FORMAT = "image/png"


def prefixed(href: str, resource_prefix: Optional[str]) -> str:
    """
    Place a relative href under the resource prefix, joined with exactly one ``/``.

    Hrefs with a scheme are kept. So are root-relative hrefs such as
    ``/icons/a.png``: they already name a server path and are never
    resolved against the container.
    """
    if not resource_prefix or urlparse(href).scheme or href.startswith("/"):
        return href
    return f"{resource_prefix.rstrip('/')}/{href}"


def default_style() -> FeatureTypeStyle:
    return FeatureTypeStyle(
        name=DEFAULT_STYLE_NAME,
        rules=[Rule(
            name=DEFAULT_STYLE_NAME,
            filter=PropertyIsNull(STYLE_FIELD),
            symbolizers=[PointSymbolizer(href=DEFAULT_ICON, format=DEFAULT_ICON_FORMAT)],
        )],
    )


class StyleAssembler:
    """
    Builds and writes the SLD document of a KML import.

    The StyleMap is only read; rewritten hrefs live on copies of its symbolizers.
    """

    def __init__(self, name: str = "kml"):
        self.name = name

    def assemble(
        self,
        style_map: StyleMap,
        resource_prefix: Optional[str] = None,
        resolved_icons: Optional[dict[AssetKey, Path]] = None,
        formats: Optional[dict[str, str]] = None
    ) -> StyleDocument:
        """
        Assemble the style document.

        Args:
            style_map: Styles captured while parsing
            resource_prefix: Prefix placed in front of relative icon hrefs
            resolved_icons: Generated icons keyed by (scale, tint, href)
            formats: MIME types read from icon content, keyed by href

        Returns:
            StyleDocument with identifiers in sorted order and the default style last
        """
        resolved_icons = resolved_icons or {}
        formats = formats or {}
        document = StyleDocument(name=self.name)

        for identifier in sorted(style_map.keys()):
            fragment = style_map.get(identifier)
            if fragment is None or not fragment.symbolizers:
                logger.debug(f"Skipping style {identifier}: no symbolizers")
                continue

            symbolizers = [self._rewrite(s, resource_prefix, resolved_icons, formats) for s in fragment.symbolizers]
            polygon = [s for s in symbolizers if isinstance(s, PolygonSymbolizer)]
            others = [s for s in symbolizers if not isinstance(s, PolygonSymbolizer)]
            matches_style = PropertyEquals(STYLE_FIELD, identifier)

            rules = []
            if polygon:
                rules.append(Rule(
                    name=f"{identifier}-{GeometryType.POLYGON.value}",
                    filter=And((matches_style, GeometryTypeEquals(GEOMETRY_FIELD, GeometryType.POLYGON.value))),
                    symbolizers=polygon,
                ))
            if others:
                rules.append(Rule(name=identifier, filter=matches_style, symbolizers=others))
            document.feature_type_styles.append(FeatureTypeStyle(name=identifier, rules=rules))

        document.feature_type_styles.append(default_style())
        logger.info(f"Assembled {len(document.feature_type_styles) - 1} styles plus default")
        return document

    @staticmethod
    def _rewrite(symbolizer: Symbolizer, resource_prefix: Optional[str],
                 resolved_icons: dict[AssetKey, Path], formats: dict[str, str]) -> Symbolizer:
        if not isinstance(symbolizer, PointSymbolizer):
            return symbolizer
        generated = resolved_icons.get((symbolizer.scale, symbolizer.tint, symbolizer.href))
        if generated is not None:
            return PointSymbolizer(
                href=prefixed(generated.name, resource_prefix),
                format=guess_mime_type(generated.name) or symbolizer.format,
            )
        return dataclasses.replace(
            symbolizer,
            href=prefixed(symbolizer.href, resource_prefix),
            format=symbolizer.format or formats.get(symbolizer.href),
        )

    @staticmethod
    def generate_assets(style_map: StyleMap, cache: ImageAssetCache) -> dict[AssetKey, Path]:
        """Generate every tinted or scaled icon referenced by the map."""
        resolved: dict[AssetKey, Path] = {}
        for identifier in sorted(style_map.keys()):
            fragment = style_map.get(identifier)
            if fragment is None:
                continue
            for point in fragment.point_symbolizers:
                if not point.needs_processing:
                    continue
                path = cache.resolve(point.href, tint=point.tint, scale=point.scale)
                if path is not None:
                    resolved[(point.scale, point.tint, point.href)] = path
        return resolved

    @staticmethod
    def detect_formats(style_map: StyleMap, cache: ImageAssetCache,
                       resolved_icons: Optional[dict[AssetKey, Path]] = None) -> dict[str, str]:
        """Read the format of every kept icon whose href carries no known extension."""
        resolved_icons = resolved_icons or {}
        formats: dict[str, str] = {}
        for identifier in sorted(style_map.keys()):
            fragment = style_map.get(identifier)
            if fragment is None:
                continue
            for point in fragment.point_symbolizers:
                if point.format is not None or (point.scale, point.tint, point.href) in resolved_icons:
                    continue
                mime_type = cache.detect_format(point.href)
                if mime_type is not None:
                    formats[point.href] = mime_type
        return formats

    def write(
        self,
        out: BinaryIO,
        style_map: StyleMap,
        resource_prefix: Optional[str] = None,
        relative_root: Optional[Union[str, Path]] = None,
        destination: Optional[Union[str, Path]] = None,
        timeout_s: int = 30,
        user_agent: Optional[str] = None
    ) -> list[AssetResolutionWarning]:
        """
        Generate derived icons into ``destination``, then write the SLD to ``out``.

        Without a destination no icons are generated and every icon keeps
        its original (prefixed) href. With a destination or a relative root,
        icons without a known extension get their format from their content.

        Returns:
            Warnings for icons that could not be generated or read
        """
        resolved: dict[AssetKey, Path] = {}
        formats: dict[str, str] = {}
        warnings: list[AssetResolutionWarning] = []
        if destination is not None or relative_root is not None:
            with ImageAssetCache(destination, relative_root, timeout_s, user_agent) as cache:
                if destination is not None:
                    resolved = self.generate_assets(style_map, cache)
                formats = self.detect_formats(style_map, cache, resolved)
                warnings = list(cache.warnings)
        out.write(encode_sld(self.assemble(style_map, resource_prefix, resolved, formats)))
        return warnings
