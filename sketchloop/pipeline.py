"""Main refinement loop orchestrator."""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional, Sequence

import config

from .errors import SketchLoopError, classify_error, error_message
from .executor import StepExecutor
from .llm import ProviderAdapter, create_provider
from .markup import sanitize_svg
from .persistence import LocalGateway, PersistenceGateway
from .progress import ProgressChannel
from .prompts import render_prompts
from .renderer import Renderer
from .schemas import (
    BlobKind,
    ContinuationPolicy,
    ErrorKind,
    Generation,
    ImageInput,
    OutputFormat,
    RunResult,
    RunState,
    Step,
    StepHistoryEntry,
    no_artifact_error,
)

logger = logging.getLogger(__name__)


def next_history_entry(step: Step, output_format: OutputFormat) -> StepHistoryEntry:
    """Feedback a completed step leaves for the next one.

    The last artifact that rendered wins. Otherwise the last render error is
    reported, and a step without any artifact gets the synthetic
    no-artifact error.
    """
    rendered = [a for a in step.artifacts if a.preview is not None]
    if rendered:
        return StepHistoryEntry(raw_output=step.raw_output, preview=rendered[-1].preview)
    failed = [a for a in step.artifacts if a.render_error is not None]
    if failed:
        return StepHistoryEntry(raw_output=step.raw_output, error=failed[-1].render_error)
    return StepHistoryEntry(raw_output=step.raw_output, error=no_artifact_error(output_format))


class RefinementOrchestrator:
    """Drives the step loop of a generation.

    Steps run strictly one after another: each step's prompt carries the
    previous step's rendered preview or render error. Independent
    orchestrators (or runs) share no mutable state.
    """

    def __init__(
        self,
        gateway: Optional[PersistenceGateway] = None,
        provider: Optional[ProviderAdapter] = None,
        renderer: Optional[Renderer] = None,
        sanitizer: Callable[[str], str] = sanitize_svg,
        channel: Optional[ProgressChannel] = None,
    ):
        """Initialize the orchestrator.

        Args:
            gateway: Persistence gateway. Uses a LocalGateway under OUTPUTS_DIR if None.
            provider: Streaming provider. Built from the generation settings if None.
            renderer: Artifact renderer. Creates default if None.
            sanitizer: SVG sanitizer applied between extraction and render.
            channel: Progress channel observers subscribe to. Creates one if None.
        """
        self.gateway = gateway or LocalGateway(config.OUTPUTS_DIR)
        self.provider = provider
        self.renderer = renderer or Renderer()
        self.sanitizer = sanitizer
        self.channel = channel or ProgressChannel()

    def _executor(self, generation: Generation, credential: Optional[str]) -> StepExecutor:
        provider = self.provider or create_provider(
            generation.provider,
            generation.model,
            credential=credential or config.API_KEYS.get(generation.provider),
            endpoint=generation.endpoint,
        )
        return StepExecutor(provider, self.gateway, self.renderer, self.sanitizer)

    def _publish(
        self,
        generation_id: str,
        steps: list[Step],
        status: str = "running",
        error: Optional[str] = None,
    ) -> None:
        self.channel.publish(RunState(
            generation_id=generation_id,
            status=status,
            steps=[step.model_copy(deep=True) for step in steps],
            error=error,
        ))

    async def _upload_images(self, generation_id: str, images: Sequence[ImageInput]) -> None:
        for image in images:
            if image.data is None:
                continue
            key = await self.gateway.upload_blob(
                BlobKind.INPUT_IMAGE,
                image.data,
                generation_id=generation_id,
                media_type=image.media_type,
            )
            logger.debug("Uploaded input image to %s", key)

    async def iterate(
        self,
        generation_id: str,
        generation: Generation,
        reference_images: Sequence[ImageInput] = (),
        cancel_event: Optional[asyncio.Event] = None,
        credential: Optional[str] = None,
        steps: Optional[list[Step]] = None,
    ) -> AsyncIterator[tuple[Step, Optional[str]]]:
        """Run the refinement loop as an async generator, yielding each step.

        Args:
            generation_id: Id of the already persisted generation.
            generation: Generation settings.
            reference_images: Images sent with the initial prompt.
            cancel_event: Set to stop the in-flight step.
            credential: API key. Falls back to config if None.
            steps: List the steps are appended to as they start.

        Yields:
            Tuple of (completed Step, stop_reason or None if continuing).
        """
        steps = steps if steps is not None else []
        executor = self._executor(generation, credential)
        images = list(reference_images)
        await self._upload_images(generation_id, images)

        initial_prompt, refinement_prompt = render_prompts(generation)
        history: list[StepHistoryEntry] = []

        for i in range(generation.max_steps):
            step = Step(
                index=i,
                rendered_prompt=initial_prompt if i == 0 else refinement_prompt,
            )
            steps.append(step)
            self._publish(generation_id, steps)

            await executor.execute(
                generation_id,
                generation,
                step,
                initial_prompt,
                refinement_prompt,
                history=history,
                images=images,
                on_update=lambda _: self._publish(generation_id, steps),
                cancel_event=cancel_event,
            )

            stop_reason = None
            if i == generation.max_steps - 1:
                stop_reason = "max_steps"
            else:
                entry = next_history_entry(step, generation.format)
                if (
                    entry.preview is None
                    and generation.continuation_policy == ContinuationPolicy.ABORT
                ):
                    logger.info("Nothing rendered in step %d, stopping", i + 1)
                    stop_reason = "render_failure"
                else:
                    history.append(entry)

            yield step, stop_reason

            if stop_reason:
                break

    async def run(
        self,
        generation: Generation,
        reference_images: Sequence[ImageInput] = (),
        cancel_event: Optional[asyncio.Event] = None,
        credential: Optional[str] = None,
        on_step: Optional[Callable[[Step], None]] = None,
    ) -> RunResult:
        """Run a generation to completion.

        Args:
            generation: Generation settings.
            reference_images: Images sent with the initial prompt.
            cancel_event: Set to cancel the run.
            credential: API key. Falls back to config if None.
            on_step: Optional callback called after each completed step.

        Returns:
            RunResult with success flag and, on failure, the error message.
        """
        if self.channel.closed:
            self.channel = ProgressChannel()
        try:
            generation_id = await self.gateway.create_generation(generation)
        except Exception as exc:
            if isinstance(exc, SketchLoopError):
                logger.error("Could not create generation: %s", exc)
            else:
                logger.exception("Could not create generation")
            self.channel.close()
            return RunResult(generation_id="", success=False, error=error_message(exc), stop_reason="error")

        logger.info(
            "Starting generation %s (%s:%s, %d steps)",
            generation_id, generation.provider, generation.model, generation.max_steps,
        )
        steps: list[Step] = []
        stop_reason = "max_steps"
        self._publish(generation_id, steps)

        try:
            async for step, reason in self.iterate(
                generation_id,
                generation,
                reference_images,
                cancel_event=cancel_event,
                credential=credential,
                steps=steps,
            ):
                if on_step:
                    on_step(step)
                if reason:
                    stop_reason = reason
        except asyncio.CancelledError:
            self._publish(generation_id, steps, status="failed", error="Generation cancelled")
            self.channel.close()
            raise
        except Exception as exc:
            if not isinstance(exc, SketchLoopError):
                logger.exception("Unexpected failure in generation %s", generation_id)
            message = error_message(exc)
            cancelled = classify_error(exc) == ErrorKind.CANCELLED
            self._publish(generation_id, steps, status="failed", error=message)
            self.channel.close()
            return RunResult(
                generation_id=generation_id,
                success=False,
                error=message,
                stop_reason="cancelled" if cancelled else "error",
                steps=steps,
            )

        logger.info("Generation %s finished: %s", generation_id, stop_reason)
        self._publish(generation_id, steps, status="completed")
        self.channel.close()
        return RunResult(
            generation_id=generation_id,
            success=True,
            stop_reason=stop_reason,
            steps=steps,
        )


async def run_generation(
    generation: Generation,
    reference_images: Sequence[ImageInput] = (),
    gateway: Optional[PersistenceGateway] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> RunResult:
    """Convenience function to run one generation with default collaborators."""
    orchestrator = RefinementOrchestrator(gateway=gateway)
    return await orchestrator.run(
        generation,
        reference_images=reference_images,
        cancel_event=cancel_event,
    )
