"""Durable records and blob storage.

``PersistenceGateway`` is the contract the step executor writes through.
``LocalGateway`` implements it on the filesystem: one directory per
generation holding JSON records and blob files.
"""

import asyncio
import json
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Optional, Protocol

import config

from .errors import PersistenceError
from .schemas import BlobKind, Generation, RenderError, StepStatus, StepUpdate

logger = logging.getLogger(__name__)

BLOB_EXTENSIONS = {
    BlobKind.VECTOR_BODY: "svg",
    BlobKind.GRID_BODY: "txt",
    BlobKind.RASTER_PREVIEW: "png",
    BlobKind.INPUT_IMAGE: "png",
}


def image_extension(media_type: Optional[str]) -> Optional[str]:
    """File extension for an image media type, or None if unknown."""
    if not media_type or not media_type.startswith("image/"):
        return None
    extension = mimetypes.guess_extension(media_type.split(";")[0].strip(), strict=False)
    return extension.lstrip(".") if extension else None


class PersistenceGateway(Protocol):
    """Durable records plus blob storage.

    Implementations raise ``PersistenceError`` when a write fails.
    """

    async def create_generation(self, generation: Generation) -> str:
        ...

    async def create_step(self, generation_id: str, rendered_prompt: str) -> int:
        ...

    async def update_step(self, step_id: int, update: StepUpdate) -> None:
        ...

    async def create_artifact(
        self,
        step_id: int,
        body: str,
        render_error: Optional[RenderError] = None,
    ) -> int:
        ...

    async def delete_artifact(self, artifact_id: int) -> None:
        ...

    async def upload_blob(
        self,
        kind: BlobKind,
        data: bytes,
        *,
        generation_id: str,
        step_id: Optional[int] = None,
        artifact_id: Optional[int] = None,
        media_type: Optional[str] = None,
    ) -> str:
        ...


def blob_key(
    kind: BlobKind,
    generation_id: str,
    step_id: Optional[int] = None,
    artifact_id: Optional[int] = None,
    image_id: Optional[str] = None,
    media_type: Optional[str] = None,
) -> str:
    """Storage key for a blob.

    Input images take their extension from ``media_type`` when it is a
    known image type.
    """
    extension = BLOB_EXTENSIONS[kind]
    if kind == BlobKind.INPUT_IMAGE:
        extension = image_extension(media_type) or extension
        return f"{generation_id}/input/{image_id}.{extension}"
    if step_id is None or artifact_id is None:
        raise ValueError(f"{kind.value} blobs need a step_id and an artifact_id")
    suffix = "_preview" if kind == BlobKind.RASTER_PREVIEW else ""
    return f"{generation_id}/{step_id}_{artifact_id}{suffix}.{extension}"


class LocalGateway:
    """Filesystem-backed persistence gateway.

    Layout under ``root``::

        counters.json
        <generation_id>/generation.json
        <generation_id>/steps/<step_id>.json
        <generation_id>/artifacts/<artifact_id>.json
        <generation_id>/<step_id>_<artifact_id>.svg|txt
        <generation_id>/<step_id>_<artifact_id>_preview.png
        <generation_id>/input/<image_id>.png|jpg|gif|webp

    Step and artifact ids come from counters shared by every generation
    stored under ``root``, so they increase monotonically across runs.
    """

    def __init__(self, root: Path = config.OUTPUTS_DIR):
        self.root = Path(root)
        self._lock = asyncio.Lock()
        self._step_generation: dict[int, str] = {}
        self._artifact_generation: dict[int, str] = {}

    # -- helpers ---------------------------------------------------------

    def _write_json(self, path: Path, data: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2, default=str)
        tmp.replace(path)

    def _read_json(self, path: Path) -> dict:
        with open(path) as f:
            return json.load(f)

    async def _run(self, what: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except OSError as exc:
            raise PersistenceError(f"Failed to {what}: {exc}") from exc

    def _next_id(self, counter: str) -> int:
        path = self.root / "counters.json"
        counters = self._read_json(path) if path.exists() else {}
        value = counters.get(counter, 0) + 1
        counters[counter] = value
        self._write_json(path, counters)
        return value

    async def _allocate(self, counter: str) -> int:
        async with self._lock:
            return await self._run("allocate id", self._next_id, counter)

    def _step_path(self, step_id: int) -> Path:
        generation_id = self._step_generation.get(step_id)
        if generation_id is None:
            raise PersistenceError(f"Unknown step {step_id}")
        return self.root / generation_id / "steps" / f"{step_id}.json"

    def _artifact_path(self, artifact_id: int) -> Path:
        generation_id = self._artifact_generation.get(artifact_id)
        if generation_id is None:
            raise PersistenceError(f"Unknown artifact {artifact_id}")
        return self.root / generation_id / "artifacts" / f"{artifact_id}.json"

    # -- gateway ---------------------------------------------------------

    async def create_generation(self, generation: Generation) -> str:
        generation_id = uuid.uuid4().hex
        record = {"id": generation_id, **generation.model_dump(mode="json")}
        await self._run(
            "create generation",
            self._write_json,
            self.root / generation_id / "generation.json",
            record,
        )
        logger.debug("Created generation %s", generation_id)
        return generation_id

    async def create_step(self, generation_id: str, rendered_prompt: str) -> int:
        step_id = await self._allocate("step")
        record = {
            "id": step_id,
            "generation_id": generation_id,
            "rendered_prompt": rendered_prompt,
            "status": StepStatus.GENERATING.value,
        }
        self._step_generation[step_id] = generation_id
        await self._run("create step", self._write_json, self._step_path(step_id), record)
        logger.debug("Created step %d for generation %s", step_id, generation_id)
        return step_id

    async def update_step(self, step_id: int, update: StepUpdate) -> None:
        path = self._step_path(step_id)

        def _update() -> None:
            record = self._read_json(path)
            record.update(update.model_dump(mode="json"))
            self._write_json(path, record)

        await self._run("update step", _update)

    async def create_artifact(
        self,
        step_id: int,
        body: str,
        render_error: Optional[RenderError] = None,
    ) -> int:
        generation_id = self._step_generation.get(step_id)
        if generation_id is None:
            raise PersistenceError(f"Unknown step {step_id}")
        artifact_id = await self._allocate("artifact")
        self._artifact_generation[artifact_id] = generation_id
        record = {
            "id": artifact_id,
            "step_id": step_id,
            "body": body,
            "render_error": render_error.model_dump(mode="json") if render_error else None,
            "blobs": {},
        }
        await self._run("create artifact", self._write_json, self._artifact_path(artifact_id), record)
        return artifact_id

    async def delete_artifact(self, artifact_id: int) -> None:
        path = self._artifact_path(artifact_id)
        await self._run("delete artifact", lambda: path.unlink(missing_ok=True))
        self._artifact_generation.pop(artifact_id, None)
        logger.debug("Deleted artifact %d", artifact_id)

    async def upload_blob(
        self,
        kind: BlobKind,
        data: bytes,
        *,
        generation_id: str,
        step_id: Optional[int] = None,
        artifact_id: Optional[int] = None,
        media_type: Optional[str] = None,
    ) -> str:
        image_id = uuid.uuid4().hex[:12] if kind == BlobKind.INPUT_IMAGE else None
        key = blob_key(kind, generation_id, step_id, artifact_id, image_id, media_type)
        target = self.root / key

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await self._run(f"upload {kind.value}", _write)

        if artifact_id is not None:
            record_path = self._artifact_path(artifact_id)

            def _link() -> None:
                record = self._read_json(record_path)
                record["blobs"][kind.value] = key
                self._write_json(record_path, record)

            async with self._lock:
                await self._run("link blob", _link)
        logger.debug("Uploaded %s to %s", kind.value, key)
        return key
