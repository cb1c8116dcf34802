"""Feedback shown to the model between refinement steps."""

from io import BytesIO
from pathlib import Path
from typing import Union

from PIL import Image

from .schemas import (
    ImageInput,
    ImagePart,
    OutputFormat,
    RenderError,
    RenderErrorKind,
    StepHistoryEntry,
    TextPart,
)


PREVIEW_INTRO = "Here is how your previous output rendered:"

SVG_ERROR_HINTS = """This usually means there's a syntax error in the SVG. Common issues:
- Duplicate or conflicting attributes (e.g., two 'd' attributes on a path)
- Invalid attribute combinations (e.g., 'y1' on a <path> instead of <line>)
- Unclosed tags or malformed paths
- Invalid XML syntax
- Missing closing tags

Please review and fix the SVG code. The SVG code is in your previous message."""


def load_image(image: Union[Image.Image, Path, str]) -> ImageInput:
    """Load a reference image as PNG bytes.

    Args:
        image: PIL Image, path to an image file, or an http(s) URL.

    Returns:
        ImageInput holding PNG data, or the URL untouched.
    """
    if isinstance(image, str):
        if image.startswith(("http://", "https://")):
            return ImageInput(url=image)
        image = Path(image)

    if isinstance(image, Path):
        image = Image.open(image)

    if image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA")

    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return ImageInput(data=buffer.getvalue(), media_type="image/png")


def describe_render_error(error: RenderError, output_format: OutputFormat) -> str:
    """Explain to the model why its previous artifact produced no preview."""
    if error.kind == RenderErrorKind.NO_ARTIFACT:
        return f"WARNING: {error.message}"

    what = "SVG" if output_format == OutputFormat.VECTOR else "ASCII art"
    text = f'WARNING: The previous {what} failed to render to PNG with error: "{error.message}"'
    if error.line is not None:
        column = error.column if error.column is not None else 0
        text += f"\n\nError location (Line {error.line}, Column {column}):"
        if error.context:
            text += f"\n```\n{error.context}\n```"
    if output_format == OutputFormat.VECTOR:
        text += f"\n\n{SVG_ERROR_HINTS}"
    return text


def feedback_content(
    entry: StepHistoryEntry,
    refinement_prompt: str,
    output_format: OutputFormat,
) -> list[Union[TextPart, ImagePart]]:
    """User turn that follows a previous assistant output."""
    if entry.preview is not None:
        return [
            TextPart(text=PREVIEW_INTRO),
            ImagePart(image=ImageInput(data=entry.preview, media_type="image/png")),
            TextPart(text=refinement_prompt),
        ]
    return [
        TextPart(text=describe_render_error(entry.error, output_format)),
        TextPart(text=refinement_prompt),
    ]
