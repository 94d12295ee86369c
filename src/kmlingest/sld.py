"""
SLD 1.0 document model and encoder.

The style assembler builds a StyleDocument; encode_sld serialises it with
lxml. Element order follows the document model exactly, so equal documents
encode to equal bytes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from lxml import etree

from .domain.styles import (
    Color,
    LineSymbolizer,
    PointSymbolizer,
    PolygonSymbolizer,
    Symbolizer,
    TextSymbolizer,
)

SLD_NS = "http://www.opengis.net/sld"
OGC_NS = "http://www.opengis.net/ogc"
XLINK_NS = "http://www.w3.org/1999/xlink"
NSMAP = {None: SLD_NS, "ogc": OGC_NS, "xlink": XLINK_NS}

# Base font size scaled by a KML LabelStyle scale
BASE_FONT_SIZE = 12


# ============================================================================
# Filters
# ============================================================================

@dataclass(frozen=True)
class PropertyEquals:
    property: str
    value: str


@dataclass(frozen=True)
class GeometryTypeEquals:
    """geometryType(property) == geometry_type"""
    property: str
    geometry_type: str


@dataclass(frozen=True)
class PropertyIsNull:
    property: str


@dataclass(frozen=True)
class And:
    filters: tuple["Filter", ...]


Filter = Union[PropertyEquals, GeometryTypeEquals, PropertyIsNull, And]


# ============================================================================
# Document
# ============================================================================

@dataclass
class Rule:
    name: str
    filter: Optional[Filter] = None
    symbolizers: list[Symbolizer] = field(default_factory=list)


@dataclass
class FeatureTypeStyle:
    name: str
    rules: list[Rule] = field(default_factory=list)


@dataclass
class StyleDocument:
    """A named user style made of one FeatureTypeStyle per style identifier."""
    name: str
    feature_type_styles: list[FeatureTypeStyle] = field(default_factory=list)

    @property
    def rules(self) -> list[Rule]:
        return [rule for fts in self.feature_type_styles for rule in fts.rules]


# ============================================================================
# Encoding
# ============================================================================

def _sld(tag: str) -> str:
    return f"{{{SLD_NS}}}{tag}"


def _ogc(tag: str) -> str:
    return f"{{{OGC_NS}}}{tag}"


def _number(value: float) -> str:
    return f"{value:g}"


def _sub(parent, tag: str, text: Optional[str] = None, **attrib):
    elem = etree.SubElement(parent, tag, **attrib)
    if text is not None:
        elem.text = text
    return elem


def _css(parent, name: str, value: str) -> None:
    _sub(parent, _sld("CssParameter"), value, name=name)


def _encode_filter(parent, flt: Filter) -> None:
    if isinstance(flt, And):
        node = _sub(parent, _ogc("And"))
        for child in flt.filters:
            _encode_filter(node, child)
    elif isinstance(flt, PropertyEquals):
        node = _sub(parent, _ogc("PropertyIsEqualTo"))
        _sub(node, _ogc("PropertyName"), flt.property)
        _sub(node, _ogc("Literal"), flt.value)
    elif isinstance(flt, GeometryTypeEquals):
        node = _sub(parent, _ogc("PropertyIsEqualTo"))
        function = _sub(node, _ogc("Function"), name="geometryType")
        _sub(function, _ogc("PropertyName"), flt.property)
        _sub(node, _ogc("Literal"), flt.geometry_type)
    elif isinstance(flt, PropertyIsNull):
        node = _sub(parent, _ogc("PropertyIsNull"))
        _sub(node, _ogc("PropertyName"), flt.property)
    else:
        raise TypeError(f"Unsupported filter: {flt!r}")


def _encode_fill(parent, color: Color) -> None:
    fill = _sub(parent, _sld("Fill"))
    _css(fill, "fill", color.hex)
    _css(fill, "fill-opacity", _number(color.opacity))


def _encode_stroke(parent, line: LineSymbolizer) -> None:
    stroke = _sub(parent, _sld("Stroke"))
    _css(stroke, "stroke", line.color.hex)
    _css(stroke, "stroke-opacity", _number(line.color.opacity))
    _css(stroke, "stroke-width", _number(line.width))


def _encode_symbolizer(parent, symbolizer: Symbolizer) -> None:
    if isinstance(symbolizer, PolygonSymbolizer):
        node = _sub(parent, _sld("PolygonSymbolizer"))
        if symbolizer.filled:
            _encode_fill(node, symbolizer.fill)
        if symbolizer.outlined and symbolizer.stroke is not None:
            _encode_stroke(node, symbolizer.stroke)
    elif isinstance(symbolizer, LineSymbolizer):
        node = _sub(parent, _sld("LineSymbolizer"))
        _encode_stroke(node, symbolizer)
    elif isinstance(symbolizer, PointSymbolizer):
        node = _sub(parent, _sld("PointSymbolizer"))
        graphic = _sub(node, _sld("Graphic"))
        external = _sub(graphic, _sld("ExternalGraphic"))
        resource = _sub(external, _sld("OnlineResource"))
        resource.set(f"{{{XLINK_NS}}}type", "simple")
        resource.set(f"{{{XLINK_NS}}}href", symbolizer.href)
        if symbolizer.format:
            _sub(external, _sld("Format"), symbolizer.format)
    elif isinstance(symbolizer, TextSymbolizer):
        node = _sub(parent, _sld("TextSymbolizer"))
        label = _sub(node, _sld("Label"))
        _sub(label, _ogc("PropertyName"), "name")
        font = _sub(node, _sld("Font"))
        _css(font, "font-size", _number(BASE_FONT_SIZE * symbolizer.scale))
        _encode_fill(node, symbolizer.color)
    else:
        raise TypeError(f"Unsupported symbolizer: {symbolizer!r}")


def to_element(document: StyleDocument):
    """Build the lxml tree of a style document."""
    root = etree.Element(_sld("StyledLayerDescriptor"), nsmap=NSMAP, version="1.0.0")
    layer = _sub(root, _sld("NamedLayer"))
    _sub(layer, _sld("Name"), document.name)
    user_style = _sub(layer, _sld("UserStyle"))
    _sub(user_style, _sld("Name"), document.name)
    for fts in document.feature_type_styles:
        fts_node = _sub(user_style, _sld("FeatureTypeStyle"))
        _sub(fts_node, _sld("Name"), fts.name)
        for rule in fts.rules:
            rule_node = _sub(fts_node, _sld("Rule"))
            _sub(rule_node, _sld("Name"), rule.name)
            if rule.filter is not None:
                _encode_filter(_sub(rule_node, _ogc("Filter")), rule.filter)
            for symbolizer in rule.symbolizers:
                _encode_symbolizer(rule_node, symbolizer)
    return root


def encode_sld(document: StyleDocument) -> bytes:
    """Serialise a style document as UTF-8 SLD 1.0 bytes."""
    return etree.tostring(
        to_element(document), xml_declaration=True, encoding="UTF-8", pretty_print=True
    )
