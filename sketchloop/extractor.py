"""Artifact extraction from accumulating model output.

Safe to call on every streamed chunk: the whole text is re-scanned and the
full list of artifacts found so far is returned. A fenced block whose closing
fence has arrived is extracted identically no matter how much text follows.
"""

import re

from .schemas import OutputFormat

# Any fenced block, optionally tagged. The body runs to the closing fence or,
# while the stream is still open, to the end of the text.
FENCE_RE = re.compile(r"```([\w+-]*)[^\S\n]*\n(.*?)(?:\n?```|\Z)", re.DOTALL)

VECTOR_TAGS = {"", "svg", "xml"}
VECTOR_ROOT_RE = re.compile(r"<svg\b", re.IGNORECASE)
VECTOR_CLOSE = "</svg>"


def _fenced_blocks(raw: str) -> list[tuple[str, str]]:
    return [(m.group(1).lower(), m.group(2)) for m in FENCE_RE.finditer(raw)]


def _looks_like_vector(content: str) -> bool:
    head = content.lstrip()
    return bool(VECTOR_ROOT_RE.match(head)) or head.startswith("<?xml")


def extract_vector(raw: str) -> list[str]:
    """Return SVG bodies from ```svg / ```xml blocks.

    An unterminated SVG gets a synthesized closing tag so a partial preview
    can render while the stream is still running.
    """
    bodies = []
    for tag, content in _fenced_blocks(raw):
        if tag not in VECTOR_TAGS:
            continue
        body = content.strip()
        if not VECTOR_ROOT_RE.match(body):
            continue
        end = body.lower().rfind(VECTOR_CLOSE)
        if end == -1:
            body += VECTOR_CLOSE
        else:
            body = body[: end + len(VECTOR_CLOSE)]
        bodies.append(body)
    return bodies


def extract_grid(raw: str) -> list[str]:
    """Return ASCII bodies: every non-empty fenced block that is not SVG/XML."""
    bodies = []
    for tag, content in _fenced_blocks(raw):
        if tag in ("svg", "xml") or _looks_like_vector(content):
            continue
        if not content.strip():
            continue
        bodies.append(content.rstrip("\n"))
    return bodies


def extract_artifacts(raw: str, output_format: OutputFormat) -> list[str]:
    """Extract every artifact body found so far in ``raw``."""
    if output_format == OutputFormat.VECTOR:
        return extract_vector(raw)
    return extract_grid(raw)
