"""Shared fixtures: scripted provider, in-memory gateway, stub rasterizer."""

import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import Optional

import pytest

from sketchloop.errors import PersistenceError, ProviderError
from sketchloop.llm import TextDelta, UsageReport
from sketchloop.renderer import Renderer
from sketchloop.schemas import (
    BlobKind,
    Generation,
    OutputFormat,
    RenderError,
    StepUpdate,
    TokenUsage,
)

VALID_SVG = (
    '<svg width="100" height="100" viewBox="0 0 100 100" xmlns="http://www.w3.org/2000/svg">\n'
    '  <circle cx="50" cy="50" r="40" fill="red"/>\n'
    "</svg>"
)

BROKEN_SVG = (
    '<svg width="100" height="100" xmlns="http://www.w3.org/2000/svg">\n'
    '  <g>\n'
    '    <rect x="0" y="0" width="10" height="10"/>\n'
    "</svg>"
)


def svg_reply(svg: str = VALID_SVG, intro: str = "Here is the drawing.") -> str:
    return f"{intro}\n\n```svg\n{svg}\n```\n"


def chunked(text: str, size: int = 7) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


@dataclass
class ScriptedResponse:
    """One provider reply: chunks, then either a usage report or an error."""

    chunks: list[str]
    usage: TokenUsage = field(default_factory=lambda: TokenUsage(input_tokens=100, output_tokens=50))
    error: Optional[Exception] = None
    hang: bool = False


class FakeProvider:
    """Streams scripted replies and records the messages of every call."""

    def __init__(self, replies: list[ScriptedResponse]):
        self.replies = list(replies)
        self.calls: list[list] = []

    async def stream(self, messages):
        self.calls.append(list(messages))
        reply = self.replies.pop(0)
        for chunk in reply.chunks:
            await asyncio.sleep(0)
            yield TextDelta(text=chunk)
        if reply.error is not None:
            raise reply.error
        if reply.hang:
            await asyncio.Event().wait()
        yield UsageReport(usage=reply.usage)


class MemoryGateway:
    """In-memory persistence gateway with failure injection."""

    def __init__(self):
        self.generations: dict[str, Generation] = {}
        self.steps: dict[int, dict] = {}
        self.artifacts: dict[int, dict] = {}
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[int] = []
        self.uploads: list[tuple[BlobKind, Optional[int]]] = []
        self.media_types: dict[str, Optional[str]] = {}
        self.fail_upload_for: set[BlobKind] = set()
        self.fail_upload_for_artifact: set[int] = set()
        self.fail_create_generation = False
        self._next_step = 0
        self._next_artifact = 0

    async def create_generation(self, generation: Generation) -> str:
        if self.fail_create_generation:
            raise PersistenceError("database unavailable")
        generation_id = f"gen-{len(self.generations) + 1}"
        self.generations[generation_id] = generation
        return generation_id

    async def create_step(self, generation_id: str, rendered_prompt: str) -> int:
        self._next_step += 1
        self.steps[self._next_step] = {
            "generation_id": generation_id,
            "rendered_prompt": rendered_prompt,
            "status": "generating",
        }
        return self._next_step

    async def update_step(self, step_id: int, update: StepUpdate) -> None:
        self.steps[step_id].update(update.model_dump())

    async def create_artifact(self, step_id: int, body: str, render_error: Optional[RenderError] = None) -> int:
        self._next_artifact += 1
        self.artifacts[self._next_artifact] = {
            "step_id": step_id,
            "body": body,
            "render_error": render_error,
        }
        return self._next_artifact

    async def delete_artifact(self, artifact_id: int) -> None:
        self.deleted.append(artifact_id)
        del self.artifacts[artifact_id]

    async def upload_blob(self, kind, data, *, generation_id, step_id=None, artifact_id=None, media_type=None) -> str:
        await asyncio.sleep(0)
        if kind in self.fail_upload_for:
            raise PersistenceError(f"bucket rejected {kind.value}")
        if artifact_id in self.fail_upload_for_artifact:
            raise PersistenceError("bucket unavailable")
        key = f"{generation_id}/{step_id}_{artifact_id}.{kind.value}"
        self.blobs[key] = data
        self.uploads.append((kind, artifact_id))
        self.media_types[key] = media_type
        return key

    def step_ids(self) -> list[int]:
        return sorted(self.steps)


def stub_rasterizer(svg: str, width: int, height: int) -> bytes:
    """Deterministic fake PNG; fails on markup tagged with ``data-bad``."""
    if "data-bad" in svg:
        raise ValueError("invalid attribute combination")
    digest = hashlib.sha1(f"{svg}|{width}|{height}".encode()).hexdigest()
    return b"\x89PNG" + digest.encode()


@pytest.fixture
def gateway() -> MemoryGateway:
    return MemoryGateway()


@pytest.fixture
def renderer() -> Renderer:
    return Renderer(rasterizer=stub_rasterizer)


@pytest.fixture
def generation() -> Generation:
    return Generation(
        prompt="a red circle",
        format=OutputFormat.VECTOR,
        width=100,
        height=100,
        provider="openai",
        model="gpt-4o",
        max_steps=1,
        input_price=2.5,
        output_price=10.0,
    )


@pytest.fixture
def cairo_rasterizer():
    """Real cairosvg rasterizer, skipped when cairo is not installed."""
    from sketchloop.errors import RasterizerUnavailableError
    from sketchloop.renderer import load_cairo_rasterizer

    try:
        return load_cairo_rasterizer()
    except RasterizerUnavailableError:
        pytest.skip("cairo backend not available")


def provider_error(message: str = "Rate limit exceeded") -> ProviderError:
    return ProviderError(message, code="rate_limit_exceeded", type="requests")
