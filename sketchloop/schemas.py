"""Pydantic schemas for structured data flow in the refinement loop."""

import uuid
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class OutputFormat(str, Enum):
    """Visual format the model is asked to produce."""

    VECTOR = "svg"
    GRID = "ascii"


class StepStatus(str, Enum):
    """Lifecycle of a single provider round-trip."""

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class HistoryPolicy(str, Enum):
    """How much step history is sent back to the provider."""

    FULL = "full"
    LAST_ONLY = "last"


class ContinuationPolicy(str, Enum):
    """What to do after a non-final step in which nothing rendered."""

    CONTINUE = "continue"
    ABORT = "abort"


class BlobKind(str, Enum):
    """Kinds of binary objects stored next to the durable records."""

    VECTOR_BODY = "vector_body"
    GRID_BODY = "grid_body"
    RASTER_PREVIEW = "raster_preview"
    INPUT_IMAGE = "input_image"


class ErrorKind(str, Enum):
    """Run-level failure classification."""

    PROVIDER = "provider"
    PERSISTENCE = "persistence"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class RenderErrorKind(str, Enum):
    """Content-level problems that become feedback for the next step."""

    CONTENT = "content"
    NO_ARTIFACT = "no_artifact"


class ImageInput(BaseModel):
    """A reference image, either raw bytes or a dereferenceable URL."""

    data: Optional[bytes] = Field(
        default=None,
        description="Raw image bytes"
    )
    url: Optional[str] = Field(
        default=None,
        description="URL the provider can fetch the image from"
    )
    media_type: str = Field(
        default="image/png",
        description="MIME type of the image"
    )

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "ImageInput":
        if (self.data is None) == (self.url is None):
            raise ValueError("ImageInput needs exactly one of data or url")
        return self


class Generation(BaseModel):
    """Settings of one run. Immutable once the run starts."""

    prompt: str = Field(..., description="What the user asked for")
    format: OutputFormat = Field(default=OutputFormat.VECTOR)
    width: int = Field(
        default=800,
        gt=0,
        description="Pixels for vector output, characters for grid output"
    )
    height: int = Field(
        default=600,
        gt=0,
        description="Pixels for vector output, lines for grid output"
    )
    provider: str = Field(default="openai", description="Provider registry key")
    model: str = Field(..., description="Vendor model identifier")
    endpoint: Optional[str] = Field(
        default=None,
        description="Custom API base URL"
    )
    max_steps: int = Field(default=3, ge=1)
    history_policy: HistoryPolicy = Field(default=HistoryPolicy.FULL)
    continuation_policy: ContinuationPolicy = Field(
        default=ContinuationPolicy.CONTINUE
    )
    initial_template: Optional[str] = Field(
        default=None,
        description="Prompt template for the first step (format default if None)"
    )
    refinement_template: Optional[str] = Field(
        default=None,
        description="Prompt template for refinement steps (format default if None)"
    )
    input_price: float = Field(
        default=0.0,
        ge=0.0,
        description="Price per million input tokens"
    )
    output_price: float = Field(
        default=0.0,
        ge=0.0,
        description="Price per million output tokens"
    )

    class Config:
        frozen = True


class TokenUsage(BaseModel):
    """Token counts reported by the provider for one step."""

    input_tokens: int = 0
    output_tokens: int = 0


class StepCost(BaseModel):
    """Derived cost of one step."""

    input_cost: float = 0.0
    output_cost: float = 0.0

    @property
    def total(self) -> float:
        return self.input_cost + self.output_cost

    @classmethod
    def from_usage(cls, usage: TokenUsage, generation: Generation) -> "StepCost":
        return cls(
            input_cost=usage.input_tokens / 1_000_000 * generation.input_price,
            output_cost=usage.output_tokens / 1_000_000 * generation.output_price,
        )


class RenderError(BaseModel):
    """Why an artifact could not be turned into a preview."""

    kind: RenderErrorKind = Field(default=RenderErrorKind.CONTENT)
    message: str = Field(..., description="Human readable reason")
    line: Optional[int] = Field(default=None, description="1-based line")
    column: Optional[int] = Field(default=None, description="1-based column")
    context: Optional[str] = Field(
        default=None,
        description="Numbered source lines around the failing line"
    )


def no_artifact_error(output_format: OutputFormat) -> RenderError:
    """Synthetic error used when a step produced nothing extractable."""
    if output_format == OutputFormat.VECTOR:
        expected = "a ```svg code block starting with <svg"
    else:
        expected = "a ``` code block containing the ASCII art"
    return RenderError(
        kind=RenderErrorKind.NO_ARTIFACT,
        message=f"No artifact was found in your previous response. Expected {expected}.",
    )


class RenderSuccess(BaseModel):
    """Rasterized artifact."""

    ok: Literal[True] = True
    raster: bytes = Field(..., description="PNG bytes")
    body: str = Field(..., description="Normalized vector markup")


class RenderFailure(BaseModel):
    """Artifact that could not be rasterized."""

    ok: Literal[False] = False
    error: RenderError
    body: Optional[str] = Field(
        default=None,
        description="Salvaged markup, kept for inspection"
    )


RenderOutcome = Union[RenderSuccess, RenderFailure]


def _placeholder_id() -> str:
    return f"local-{uuid.uuid4().hex[:12]}"


class Artifact(BaseModel):
    """One structured output extracted from a step."""

    placeholder_id: str = Field(
        default_factory=_placeholder_id,
        description="Local id shown before the record is persisted"
    )
    id: Optional[int] = Field(default=None, description="Persisted id")
    body: str = Field(..., description="Extracted (sanitized) artifact body")
    normalized_body: Optional[str] = Field(default=None)
    render_error: Optional[RenderError] = Field(default=None)
    preview: Optional[bytes] = Field(
        default=None,
        exclude=True,
        description="PNG preview when the artifact rendered"
    )
    blob_keys: dict[BlobKind, str] = Field(default_factory=dict)

    @property
    def rendered(self) -> bool:
        return self.preview is not None


class Step(BaseModel):
    """One provider round-trip belonging to a generation."""

    id: Optional[int] = Field(default=None, description="Globally monotonic ordinal")
    index: int = Field(..., ge=0, description="Zero-indexed position in the run")
    rendered_prompt: str
    status: StepStatus = Field(default=StepStatus.PENDING)
    raw_output: str = ""
    artifacts: list[Artifact] = Field(default_factory=list)
    usage: Optional[TokenUsage] = None
    cost: Optional[StepCost] = None
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class StepUpdate(BaseModel):
    """Fields written back to a step record."""

    status: StepStatus
    raw_output: str = ""
    usage: Optional[TokenUsage] = None
    cost: Optional[StepCost] = None
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class StepHistoryEntry(BaseModel):
    """A finished step as seen by the next step's prompt."""

    raw_output: str
    preview: Optional[bytes] = None
    error: Optional[RenderError] = None

    @model_validator(mode="after")
    def _preview_or_error(self) -> "StepHistoryEntry":
        if (self.preview is None) == (self.error is None):
            raise ValueError("StepHistoryEntry needs exactly one of preview or error")
        return self


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    type: Literal["image"] = "image"
    image: ImageInput


class ChatMessage(BaseModel):
    """Provider-neutral chat message."""

    role: Literal["user", "assistant"]
    content: Union[str, list[Union[TextPart, ImagePart]]]


class RunState(BaseModel):
    """Snapshot of a run, published to observers after every change."""

    generation_id: str
    status: Literal["running", "completed", "failed"] = "running"
    steps: list[Step] = Field(default_factory=list)
    error: Optional[str] = None

    class Config:
        frozen = True

    @property
    def current_step(self) -> Optional[Step]:
        return self.steps[-1] if self.steps else None


class RunResult(BaseModel):
    """Caller-visible outcome of a run."""

    generation_id: str
    success: bool
    error: Optional[str] = None
    stop_reason: Literal["max_steps", "render_failure", "error", "cancelled"] = "max_steps"
    steps: list[Step] = Field(default_factory=list)
