"""Artifact rendering: SVG parsing, ASCII grid synthesis and PNG rasterization."""

import logging
import xml.etree.ElementTree as ET
from typing import Callable, Optional

import config

from .errors import RasterizerUnavailableError
from .markup import SVG_NS, local_name
from .schemas import OutputFormat, RenderError, RenderFailure, RenderOutcome, RenderSuccess

logger = logging.getLogger(__name__)

Rasterizer = Callable[[str, int, int], bytes]

XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"


def load_cairo_rasterizer() -> Rasterizer:
    """Return a rasterizer backed by cairosvg.

    Raises:
        RasterizerUnavailableError: If cairosvg or the cairo library is missing.
    """
    try:
        import cairosvg
    except (ImportError, OSError) as exc:
        raise RasterizerUnavailableError(f"SVG rasterizer unavailable: {exc}") from exc

    def rasterize(svg: str, width: int, height: int) -> bytes:
        return cairosvg.svg2png(
            bytestring=svg.encode("utf-8"),
            output_width=width,
            output_height=height,
            background_color="white",
        )

    return rasterize


def error_context(body: str, line: int, column: Optional[int] = None, radius: int = 2) -> str:
    """Numbered lines around ``line`` with the failing one marked.

    Args:
        body: Source text.
        line: 1-based failing line.
        column: 1-based failing column, adds a caret under the line if given.
        radius: Lines of context on each side.

    Returns:
        Snippet text, one source line per row.
    """
    lines = body.split("\n")
    start = max(0, line - 1 - radius)
    end = min(len(lines), line + radius)
    rows = []
    for i in range(start, end):
        number = i + 1
        marker = ">>> " if number == line else "    "
        prefix = f"{number}: "
        rows.append(f"{marker}{prefix}{lines[i]}")
        if number == line and column:
            rows.append("    " + " " * (len(prefix) + column - 1) + "^--- error here")
    return "\n".join(rows)


class Renderer:
    """Turns artifact bodies into PNG previews or structured render errors.

    Content problems come back as ``RenderFailure`` values. Only a missing
    raster backend or memory exhaustion escapes as an exception.
    """

    def __init__(
        self,
        rasterizer: Optional[Rasterizer] = None,
        cell_width: int = config.GRID_CELL_WIDTH,
        cell_aspect: float = config.GRID_CELL_ASPECT,
        context_lines: int = config.ERROR_CONTEXT_LINES,
    ):
        """Initialize the renderer.

        Args:
            rasterizer: Callable ``(svg, width, height) -> png``. Uses cairosvg if None.
            cell_width: Width of one ASCII grid cell in pixels.
            cell_aspect: Cell width divided by cell height.
            context_lines: Lines of source shown around a parse error.
        """
        self._rasterizer = rasterizer
        self.cell_width = cell_width
        self.cell_height = round(cell_width / cell_aspect)
        self.context_lines = context_lines

    @property
    def rasterizer(self) -> Rasterizer:
        """Lazy-load the raster backend on first use."""
        if self._rasterizer is None:
            self._rasterizer = load_cairo_rasterizer()
        return self._rasterizer

    def render(
        self,
        body: str,
        width: int,
        height: int,
        output_format: OutputFormat,
    ) -> RenderOutcome:
        """Render one artifact body.

        Args:
            body: Artifact body (SVG markup or ASCII text).
            width: Target width, pixels for SVG and characters for ASCII.
            height: Target height, pixels for SVG and lines for ASCII.
            output_format: Format of ``body``.

        Returns:
            RenderSuccess with PNG bytes and normalized markup, or RenderFailure.
        """
        if output_format == OutputFormat.GRID:
            svg, px_width, px_height = self.grid_to_svg(body, width, height)
            return self.render_vector(svg, px_width, px_height)
        return self.render_vector(body, width, height)

    def render_vector(self, body: str, width: int, height: int) -> RenderOutcome:
        """Parse, normalize and rasterize SVG markup."""
        try:
            root = ET.fromstring(body)
        except ET.ParseError as exc:
            line, column = exc.position
            column += 1
            return RenderFailure(
                error=RenderError(
                    message=str(exc),
                    line=line,
                    column=column,
                    context=error_context(body, line, column, self.context_lines),
                ),
                body=body,
            )

        if local_name(root.tag) != "svg":
            return RenderFailure(
                error=RenderError(
                    message=f"Root element is <{local_name(root.tag)}>, expected <svg>",
                ),
                body=body,
            )

        if root.tag == "svg":
            root.set("xmlns", SVG_NS)
        normalized = ET.tostring(root, encoding="unicode")

        rasterize = self.rasterizer
        try:
            png = rasterize(normalized, width, height)
        except (MemoryError, RasterizerUnavailableError):
            raise
        except Exception as exc:
            # cairosvg reports invalid attribute values with assorted exception types
            logger.debug("Rasterization failed: %r", exc)
            return RenderFailure(
                error=RenderError(message=f"Rasterization failed: {exc or type(exc).__name__}"),
                body=normalized,
            )
        return RenderSuccess(raster=png, body=normalized)

    def grid_to_svg(self, body: str, cols: int, rows: int) -> tuple[str, int, int]:
        """Lay ASCII text into a framed monospace grid.

        The grid is at least ``cols`` x ``rows`` cells and grows to fit the
        text. One empty cell of padding surrounds it.

        Returns:
            Tuple of (SVG markup, pixel width, pixel height).
        """
        lines = body.split("\n")
        cols = max(cols, max((len(line) for line in lines), default=0), 1)
        rows = max(rows, len(lines), 1)
        cw, ch = self.cell_width, self.cell_height
        px_width = (cols + 2) * cw
        px_height = (rows + 2) * ch

        def q(tag: str) -> str:
            return f"{{{SVG_NS}}}{tag}"

        svg = ET.Element(q("svg"), {
            "width": str(px_width),
            "height": str(px_height),
            "viewBox": f"0 0 {px_width} {px_height}",
        })
        ET.SubElement(svg, q("rect"), {
            "x": "0", "y": "0",
            "width": str(px_width), "height": str(px_height),
            "fill": config.GRID_BACKGROUND,
        })
        ET.SubElement(svg, q("rect"), {
            "x": str(cw // 2), "y": str(ch // 2),
            "width": str(px_width - cw), "height": str(px_height - ch),
            "fill": "none",
            "stroke": config.GRID_FRAME,
            "stroke-width": "2",
        })
        baseline = int(ch * 0.8)
        for i, line in enumerate(lines):
            if not line.strip():
                continue
            text = ET.SubElement(svg, q("text"), {
                "x": str(cw),
                "y": str(ch + i * ch + baseline),
                "font-family": config.GRID_FONT_FAMILY,
                "font-size": str(ch),
                "fill": config.GRID_FOREGROUND,
                XML_SPACE: "preserve",
            })
            text.text = line
        return ET.tostring(svg, encoding="unicode"), px_width, px_height
