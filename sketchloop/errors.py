"""Run-level error taxonomy.

Content problems (an artifact that does not render, or no artifact at all)
are not exceptions; they are ``RenderError`` values fed back to the model.
Everything here aborts the run.
"""

import asyncio
from typing import Any, Optional

from .schemas import ErrorKind


class SketchLoopError(Exception):
    """Base exception for sketchloop failures."""


class ProviderError(SketchLoopError):
    """Transport failure or vendor rejection (auth, rate limit, bad request).

    Attributes:
        code: Vendor error code, if reported.
        type: Vendor error type, if reported.
        param: Offending request parameter, if reported.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        type: Optional[str] = None,
        param: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.type = type
        self.param = param

    def __str__(self) -> str:
        parts = [self.message]
        if self.type:
            parts.append(f"type: {self.type}")
        if self.code:
            parts.append(f"code: {self.code}")
        if self.param:
            parts.append(f"param: {self.param}")
        return " | ".join(parts)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ProviderError":
        """Build a ProviderError from a vendor SDK exception.

        OpenAI errors expose ``code``/``type``/``param`` attributes; Anthropic
        errors carry ``{"error": {"type", "message"}}`` in ``body``.
        """
        if isinstance(exc, ProviderError):
            return exc

        detail: dict[str, Any] = {}
        body = getattr(exc, "body", None)
        if isinstance(body, dict):
            nested = body.get("error")
            detail = nested if isinstance(nested, dict) else body

        message = detail.get("message") or getattr(exc, "message", None) or str(exc)
        if not message:
            message = type(exc).__name__

        def _pick(name: str) -> Optional[str]:
            value = getattr(exc, name, None) or detail.get(name)
            return str(value) if value else None

        return cls(
            str(message),
            code=_pick("code"),
            type=_pick("type"),
            param=_pick("param"),
        )


class PersistenceError(SketchLoopError):
    """A durable write or blob upload failed."""


class CancellationError(SketchLoopError):
    """The run was cancelled by the caller."""

    def __init__(self, message: str = "Generation cancelled"):
        super().__init__(message)


class RasterizerUnavailableError(SketchLoopError):
    """The raster backend (cairo) cannot be loaded."""


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception that aborted a step to its failure classification."""
    if isinstance(exc, (CancellationError, asyncio.CancelledError)):
        return ErrorKind.CANCELLED
    if isinstance(exc, ProviderError):
        return ErrorKind.PROVIDER
    if isinstance(exc, PersistenceError):
        return ErrorKind.PERSISTENCE
    return ErrorKind.INTERNAL


def error_message(exc: BaseException) -> str:
    """Most detailed message available for an exception."""
    if isinstance(exc, asyncio.CancelledError):
        return "Generation cancelled"
    return str(exc) or type(exc).__name__
