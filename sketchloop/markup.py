"""SVG markup helpers and the allow-listing sanitizer.

Untrusted markup from the model passes through ``sanitize_svg`` before it is
rendered or shown. Well-formed markup is pruned against a fixed set of tags
and attributes. A disallowed element is unwrapped so its allowed children
survive; scripts and embeds are dropped with their content. Markup that
does not parse yet (still streaming, or broken) only has scripts, event
handlers and ``javascript:`` URLs scrubbed, so the parser error location
stays meaningful for the renderer's feedback.
"""

import re
import xml.etree.ElementTree as ET
from typing import Optional

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"

ET.register_namespace("", SVG_NS)
ET.register_namespace("xlink", XLINK_NS)

ALLOWED_TAGS = frozenset({
    "svg", "path", "circle", "rect", "line", "ellipse", "polygon", "polyline",
    "g", "defs", "clipPath", "mask", "pattern", "linearGradient",
    "radialGradient", "stop", "text", "tspan", "use", "symbol", "marker",
    "title", "desc", "filter", "feGaussianBlur", "feOffset", "feMerge",
    "feMergeNode", "feBlend", "feColorMatrix", "feComposite", "feFlood",
    "feImage", "feMorphology", "feDisplacementMap", "feTurbulence", "style",
    "a", "image", "textPath", "switch", "metadata", "foreignObject",
})

# Disallowed elements whose content is dropped with them. Any other
# disallowed element is unwrapped and its allowed children kept in place.
DROP_CONTENT_TAGS = frozenset({"script", "iframe", "object", "embed", "noscript"})

ALLOWED_ATTRIBUTES = frozenset({
    "viewBox", "xmlns", "version", "fill", "fill-rule", "clip-rule", "stroke",
    "stroke-width", "stroke-linecap", "stroke-linejoin", "stroke-dasharray",
    "stroke-opacity", "fill-opacity", "transform", "d", "cx", "cy", "r", "x",
    "y", "width", "height", "rx", "ry", "points", "x1", "y1", "x2", "y2", "fx",
    "fy", "offset", "stop-color", "stop-opacity", "opacity", "font-family",
    "font-size", "font-weight", "font-style", "text-anchor",
    "dominant-baseline", "letter-spacing", "id", "class", "style", "href",
    "clip-path", "mask", "filter", "gradientUnits", "gradientTransform",
    "patternUnits", "patternTransform", "spreadMethod", "markerWidth",
    "markerHeight", "markerUnits", "refX", "refY", "orient",
    "preserveAspectRatio", "space", "dx", "dy", "in", "in2", "result",
    "stdDeviation", "mode", "type", "values", "operator", "k1", "k2", "k3",
    "k4", "flood-color", "flood-opacity", "radius", "scale",
    "xChannelSelector", "yChannelSelector", "baseFrequency", "numOctaves",
    "seed", "stitchTiles", "target", "startOffset", "method", "spacing",
})

SCRIPT_RE = re.compile(r"<script\b.*?(?:</script\s*>|\Z)", re.IGNORECASE | re.DOTALL)
EVENT_ATTR_RE = re.compile(r"""\s+on\w+\s*=\s*(?:"[^"]*"|'[^']*'|[^\s>]+)""", re.IGNORECASE)
JS_URL_RE = re.compile(r"""(href\s*=\s*["'])\s*javascript:[^"']*""", re.IGNORECASE)


def local_name(name: str) -> str:
    """Strip an ``{namespace}`` prefix from an element or attribute name."""
    return name.rsplit("}", 1)[-1]


def _prune(element: ET.Element) -> None:
    for name in list(element.attrib):
        value = element.attrib[name]
        if local_name(name) not in ALLOWED_ATTRIBUTES:
            del element.attrib[name]
        elif local_name(name) == "href" and value.strip().lower().startswith("javascript:"):
            del element.attrib[name]
    children = list(element)
    for child in children:
        element.remove(child)
    kept: list[ET.Element] = []
    for child in children:
        name = local_name(child.tag)
        if name in ALLOWED_TAGS:
            _prune(child)
            kept.append(child)
        elif name not in DROP_CONTENT_TAGS:
            _prune(child)
            _append_text(element, kept, child.text)
            kept.extend(child)
        _append_text(element, kept, child.tail)
    element.extend(kept)


def _append_text(parent: ET.Element, kept: list, text: Optional[str]) -> None:
    if not text:
        return
    if kept:
        kept[-1].tail = (kept[-1].tail or "") + text
    else:
        parent.text = (parent.text or "") + text


def scrub_svg(markup: str) -> str:
    """Textual scrub for markup that cannot be parsed."""
    markup = SCRIPT_RE.sub("", markup)
    markup = EVENT_ATTR_RE.sub("", markup)
    return JS_URL_RE.sub(r"\1#", markup)


def sanitize_svg(markup: str) -> str:
    """Return ``markup`` restricted to the allowed SVG vocabulary."""
    try:
        root = ET.fromstring(markup)
    except ET.ParseError:
        return scrub_svg(markup)
    if local_name(root.tag) != "svg":
        return scrub_svg(markup)
    _prune(root)
    return ET.tostring(root, encoding="unicode")
