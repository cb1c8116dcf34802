"""Execution of a single step: messages, streaming, rendering, persistence."""

import asyncio
import logging
from typing import Callable, Optional, Sequence

from .errors import CancellationError, PersistenceError, classify_error, error_message
from .extractor import extract_artifacts
from .feedback import feedback_content
from .llm import ProviderAdapter, TextDelta, UsageReport
from .markup import sanitize_svg
from .persistence import PersistenceGateway
from .renderer import Renderer
from .schemas import (
    Artifact,
    BlobKind,
    ChatMessage,
    Generation,
    HistoryPolicy,
    ImageInput,
    ImagePart,
    OutputFormat,
    RenderOutcome,
    Step,
    StepCost,
    StepHistoryEntry,
    StepStatus,
    StepUpdate,
    TextPart,
    TokenUsage,
)

logger = logging.getLogger(__name__)

StepListener = Callable[[Step], None]


def build_messages(
    initial_prompt: str,
    refinement_prompt: str,
    history: Sequence[StepHistoryEntry],
    images: Sequence[ImageInput],
    output_format: OutputFormat,
    history_policy: HistoryPolicy,
) -> list[ChatMessage]:
    """Assemble the ordered provider messages for a step.

    The first user turn always carries the reference images and the initial
    prompt. Each history entry then contributes the assistant's raw output
    followed by a user turn with its preview (or render error) and the
    refinement prompt. ``LAST_ONLY`` keeps just the most recent entry.
    """
    messages = [
        ChatMessage(
            role="user",
            content=[*(ImagePart(image=image) for image in images), TextPart(text=initial_prompt)],
        )
    ]
    entries = list(history)
    if history_policy == HistoryPolicy.LAST_ONLY:
        entries = entries[-1:]
    for entry in entries:
        messages.append(ChatMessage(role="assistant", content=entry.raw_output))
        messages.append(ChatMessage(
            role="user",
            content=feedback_content(entry, refinement_prompt, output_format),
        ))
    return messages


class StepExecutor:
    """Runs one step from Pending to Completed or Failed.

    The step object passed in is mutated in place and handed to the
    ``on_update`` listener after every change, including each streamed chunk.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        gateway: PersistenceGateway,
        renderer: Optional[Renderer] = None,
        sanitizer: Callable[[str], str] = sanitize_svg,
    ):
        """Initialize the executor.

        Args:
            provider: Streaming provider adapter.
            gateway: Durable records and blob storage.
            renderer: Artifact renderer. Creates default if None.
            sanitizer: Applied to every SVG body between extraction and render.
        """
        self.provider = provider
        self.gateway = gateway
        self.renderer = renderer or Renderer()
        self.sanitizer = sanitizer

    def extract(
        self,
        raw_output: str,
        output_format: OutputFormat,
        previous: Sequence[Artifact] = (),
    ) -> list[Artifact]:
        """Extract artifacts, keeping placeholder ids stable by position."""
        bodies = extract_artifacts(raw_output, output_format)
        if output_format == OutputFormat.VECTOR:
            bodies = [self.sanitizer(body) for body in bodies]
        artifacts = []
        for i, body in enumerate(bodies):
            if i < len(previous):
                artifacts.append(Artifact(placeholder_id=previous[i].placeholder_id, body=body))
            else:
                artifacts.append(Artifact(body=body))
        return artifacts

    async def execute(
        self,
        generation_id: str,
        generation: Generation,
        step: Step,
        initial_prompt: str,
        refinement_prompt: str,
        history: Sequence[StepHistoryEntry] = (),
        images: Sequence[ImageInput] = (),
        on_update: Optional[StepListener] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Step:
        """Run ``step`` to completion.

        Returns:
            The same step, Completed.

        Raises:
            ProviderError: The provider stream failed.
            PersistenceError: A durable write or upload failed.
            CancellationError: ``cancel_event`` was set mid-step.
        """
        notify = on_update or (lambda s: None)
        try:
            messages = build_messages(
                initial_prompt,
                refinement_prompt,
                history,
                images,
                generation.format,
                generation.history_policy,
            )
            step.id = await self.gateway.create_step(generation_id, step.rendered_prompt)
            step.status = StepStatus.GENERATING
            notify(step)
            logger.info("Step %d (id %d) generating", step.index + 1, step.id)

            usage = await self._stream(step, generation.format, messages, notify, cancel_event)
            await self._complete(generation_id, generation, step, usage, notify)
        except (Exception, asyncio.CancelledError) as exc:
            await self._fail(step, exc)
            notify(step)
            raise
        return step

    async def _stream(
        self,
        step: Step,
        output_format: OutputFormat,
        messages: list[ChatMessage],
        notify: StepListener,
        cancel_event: Optional[asyncio.Event],
    ) -> TokenUsage:
        if cancel_event is None:
            return await self._consume(step, output_format, messages, notify)
        if cancel_event.is_set():
            raise CancellationError()

        consumer = asyncio.ensure_future(self._consume(step, output_format, messages, notify))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({consumer, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            consumer.cancel()
            raise
        finally:
            waiter.cancel()

        if consumer in done:
            return consumer.result()
        consumer.cancel()
        await asyncio.wait({consumer})
        raise CancellationError()

    async def _consume(
        self,
        step: Step,
        output_format: OutputFormat,
        messages: list[ChatMessage],
        notify: StepListener,
    ) -> TokenUsage:
        usage = TokenUsage()
        async for event in self.provider.stream(messages):
            if isinstance(event, TextDelta):
                step.raw_output += event.text
                step.artifacts = self.extract(step.raw_output, output_format, step.artifacts)
                notify(step)
            elif isinstance(event, UsageReport):
                usage = event.usage
        return usage

    def _render_all(self, artifacts: list[Artifact], generation: Generation) -> list[RenderOutcome]:
        return [
            self.renderer.render(artifact.body, generation.width, generation.height, generation.format)
            for artifact in artifacts
        ]

    async def _complete(
        self,
        generation_id: str,
        generation: Generation,
        step: Step,
        usage: TokenUsage,
        notify: StepListener,
    ) -> None:
        artifacts = self.extract(step.raw_output, generation.format, step.artifacts)
        outcomes = await asyncio.to_thread(self._render_all, artifacts, generation)
        for artifact, outcome in zip(artifacts, outcomes):
            artifact.normalized_body = outcome.body
            if outcome.ok:
                artifact.preview = outcome.raster
            else:
                artifact.render_error = outcome.error
                logger.info("Artifact %s did not render: %s", artifact.placeholder_id, outcome.error.message)

        step.artifacts = artifacts
        step.usage = usage
        step.cost = StepCost.from_usage(usage, generation)
        notify(step)

        await self.gateway.update_step(step.id, StepUpdate(
            status=StepStatus.COMPLETED,
            raw_output=step.raw_output,
            usage=step.usage,
            cost=step.cost,
        ))

        results = await asyncio.gather(
            *(self._persist_artifact(generation_id, step.id, a, generation.format) for a in artifacts),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            raise failures[0]

        step.status = StepStatus.COMPLETED
        logger.info(
            "Step %d completed: %d artifacts, %d in / %d out tokens",
            step.index + 1, len(artifacts), usage.input_tokens, usage.output_tokens,
        )
        notify(step)

    def _blobs_for(self, artifact: Artifact, output_format: OutputFormat) -> list[tuple[BlobKind, bytes]]:
        blobs = []
        if output_format == OutputFormat.GRID:
            blobs.append((BlobKind.GRID_BODY, artifact.body.encode("utf-8")))
            if artifact.normalized_body:
                blobs.append((BlobKind.VECTOR_BODY, artifact.normalized_body.encode("utf-8")))
        else:
            body = artifact.normalized_body or artifact.body
            blobs.append((BlobKind.VECTOR_BODY, body.encode("utf-8")))
        if artifact.preview is not None:
            blobs.append((BlobKind.RASTER_PREVIEW, artifact.preview))
        return blobs

    async def _persist_artifact(
        self,
        generation_id: str,
        step_id: int,
        artifact: Artifact,
        output_format: OutputFormat,
    ) -> None:
        """Create the artifact record, then upload its blobs.

        A failed upload deletes the record again, so no persisted artifact
        ever points at a missing blob.
        """
        artifact_id = await self.gateway.create_artifact(step_id, artifact.body, artifact.render_error)
        blobs = self._blobs_for(artifact, output_format)
        results = await asyncio.gather(
            *(
                self.gateway.upload_blob(
                    kind,
                    data,
                    generation_id=generation_id,
                    step_id=step_id,
                    artifact_id=artifact_id,
                )
                for kind, data in blobs
            ),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            exc = failures[0]
            logger.warning("Upload failed for artifact %d, deleting record: %s", artifact_id, exc)
            try:
                await self.gateway.delete_artifact(artifact_id)
            except Exception as delete_exc:
                logger.warning("Could not delete artifact %d after failed upload: %s", artifact_id, delete_exc)
            if isinstance(exc, PersistenceError):
                raise exc
            raise PersistenceError(f"Failed to upload artifact {artifact_id}: {exc}") from exc

        artifact.id = artifact_id
        artifact.blob_keys = {kind: key for (kind, _), key in zip(blobs, results)}
        logger.debug("Persisted artifact %d with %d blobs", artifact_id, len(blobs))

    async def _fail(self, step: Step, exc: BaseException) -> None:
        step.status = StepStatus.FAILED
        step.error_message = error_message(exc)
        step.error_kind = classify_error(exc)
        logger.warning("Step %d failed (%s): %s", step.index + 1, step.error_kind.value, step.error_message)
        if step.id is None:
            return
        try:
            await self.gateway.update_step(step.id, StepUpdate(
                status=StepStatus.FAILED,
                raw_output=step.raw_output,
                usage=step.usage,
                cost=step.cost,
                error_message=step.error_message,
                error_kind=step.error_kind,
            ))
        except Exception as update_exc:
            logger.warning("Could not record failure of step %d: %s", step.id, update_exc)
