"""Tests for prompt templates, reference images and render-error feedback."""

import io

import pytest
from PIL import Image

from sketchloop.feedback import SVG_ERROR_HINTS, describe_render_error, load_image
from sketchloop.prompts import fill_template, render_prompts
from sketchloop.schemas import Generation, OutputFormat, RenderError, no_artifact_error


def make_generation(**overrides):
    settings = {"prompt": "a lighthouse", "model": "gpt-4o", "width": 320, "height": 200}
    settings.update(overrides)
    return Generation(**settings)


class TestPrompts:
    """Template filling."""

    def test_vector_defaults(self):
        initial, refinement = render_prompts(make_generation())
        assert "a lighthouse" in initial
        assert 'width="320" height="200" viewBox="0 0 320 200"' in initial
        assert "```svg" in refinement
        assert "{{" not in initial + refinement

    def test_grid_defaults(self):
        initial, refinement = render_prompts(make_generation(format=OutputFormat.GRID, width=60, height=20))
        assert "60 characters wide by 20 lines tall" in initial
        assert "ASCII" in refinement

    def test_custom_templates(self):
        generation = make_generation(initial_template="{{prompt}}!", refinement_template="again {{width}}")
        assert render_prompts(generation) == ("a lighthouse!", "again 320")

    def test_unknown_placeholders_are_left_alone(self):
        assert fill_template("{{prompt}} {{style}}", make_generation()) == "a lighthouse {{style}}"


class TestLoadImage:
    """Reference images as PNG bytes."""

    def test_pil_image(self):
        image = load_image(Image.new("RGB", (4, 3), "blue"))
        assert image.media_type == "image/png"
        with Image.open(io.BytesIO(image.data)) as decoded:
            assert decoded.format == "PNG"
            assert decoded.size == (4, 3)

    def test_palette_image_is_converted(self):
        image = load_image(Image.new("P", (2, 2)))
        with Image.open(io.BytesIO(image.data)) as decoded:
            assert decoded.mode == "RGBA"

    def test_path(self, tmp_path):
        path = tmp_path / "ref.jpg"
        Image.new("RGB", (5, 5), "green").save(path, format="JPEG")
        image = load_image(str(path))
        assert image.data.startswith(b"\x89PNG")

    def test_url_passthrough(self):
        image = load_image("https://example.com/ref.png")
        assert image.url == "https://example.com/ref.png"
        assert image.data is None


class TestDescribeRenderError:
    """Feedback text for artifacts that did not render."""

    def test_vector_error_with_location(self):
        error = RenderError(message="mismatched tag", line=4, column=3, context=">>> 4: </svg>")
        text = describe_render_error(error, OutputFormat.VECTOR)
        assert text.startswith('WARNING: The previous SVG failed to render to PNG with error: "mismatched tag"')
        assert "Error location (Line 4, Column 3):" in text
        assert "```\n>>> 4: </svg>\n```" in text
        assert text.endswith(SVG_ERROR_HINTS)

    def test_rasterization_error_without_location(self):
        text = describe_render_error(RenderError(message="Rasterization failed: bad"), OutputFormat.VECTOR)
        assert "Error location" not in text

    def test_grid_error_has_no_svg_hints(self):
        text = describe_render_error(RenderError(message="boom"), OutputFormat.GRID)
        assert "ASCII art" in text
        assert SVG_ERROR_HINTS not in text

    @pytest.mark.parametrize("output_format,expected", [
        (OutputFormat.VECTOR, "```svg"),
        (OutputFormat.GRID, "ASCII art"),
    ])
    def test_no_artifact(self, output_format, expected):
        text = describe_render_error(no_artifact_error(output_format), output_format)
        assert text.startswith("WARNING: No artifact was found")
        assert expected in text
