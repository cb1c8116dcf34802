"""Live progress channel for observers of a run."""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from .schemas import RunState

logger = logging.getLogger(__name__)

Listener = Callable[[RunState], None]

_CLOSED = object()


class ProgressChannel:
    """Broadcasts immutable ``RunState`` snapshots.

    Synchronous listeners are called inline on every publish; one that
    raises is logged and the others still run. Async subscribers each get
    their own queue and stop iterating once the channel is closed.
    """

    def __init__(self):
        self._listeners: list[Listener] = []
        self._queues: list[asyncio.Queue] = []
        self.latest: Optional[RunState] = None
        self.closed = False

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def publish(self, state: RunState) -> None:
        self.latest = state
        for listener in self._listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Progress listener %r failed", listener)
        for queue in self._queues:
            queue.put_nowait(state)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for queue in self._queues:
            queue.put_nowait(_CLOSED)

    async def subscribe(self) -> AsyncIterator[RunState]:
        """Iterate over snapshots published from now until the channel closes."""
        queue: asyncio.Queue = asyncio.Queue()
        if self.closed:
            return
        self._queues.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    break
                yield item
        finally:
            self._queues.remove(queue)
