"""Multi-step SVG/ASCII generation and refinement loop."""

from .schemas import (
    Artifact,
    ContinuationPolicy,
    Generation,
    HistoryPolicy,
    ImageInput,
    OutputFormat,
    RenderError,
    RunResult,
    RunState,
    Step,
    StepStatus,
)
from .errors import CancellationError, PersistenceError, ProviderError
from .extractor import extract_artifacts
from .renderer import Renderer
from .executor import StepExecutor
from .pipeline import RefinementOrchestrator, run_generation
from .persistence import LocalGateway, PersistenceGateway
from .progress import ProgressChannel
from .llm import ProviderAdapter, create_provider, get_chat_model, register_provider

__all__ = [
    "Artifact",
    "ContinuationPolicy",
    "Generation",
    "HistoryPolicy",
    "ImageInput",
    "OutputFormat",
    "RenderError",
    "RunResult",
    "RunState",
    "Step",
    "StepStatus",
    "CancellationError",
    "PersistenceError",
    "ProviderError",
    "extract_artifacts",
    "Renderer",
    "StepExecutor",
    "RefinementOrchestrator",
    "run_generation",
    "LocalGateway",
    "PersistenceGateway",
    "ProgressChannel",
    "ProviderAdapter",
    "create_provider",
    "get_chat_model",
    "register_provider",
]
