"""Progress, route and persistence notifications emitted during a run.

The scheduler calls an observer synchronously, in acceptance order, before
it evaluates the next candidate. Observers must not block: a persistence
write triggered from ``on_persist`` should be handed off, not awaited.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Literal, Protocol

from pydantic import BaseModel

from errors import GenerationCancelled
from models import Route

logger = logging.getLogger(__name__)


class GenerationObserver(Protocol):
    def on_progress(self, message: str) -> None: ...

    def on_route_generated(self, route: Route) -> None: ...

    def on_persist(self, routes: list[Route]) -> None: ...


class NullObserver:
    """Discards every event."""

    def on_progress(self, message: str) -> None:
        pass

    def on_route_generated(self, route: Route) -> None:
        pass

    def on_persist(self, routes: list[Route]) -> None:
        pass


class CallbackObserver:
    """Forwards events to plain callables; any of them may be omitted."""

    def __init__(
        self,
        on_progress: Callable[[str], None] | None = None,
        on_route_generated: Callable[[Route], None] | None = None,
        on_persist: Callable[[list[Route]], None] | None = None,
    ):
        self._on_progress = on_progress
        self._on_route_generated = on_route_generated
        self._on_persist = on_persist

    def on_progress(self, message: str) -> None:
        if self._on_progress:
            self._on_progress(message)

    def on_route_generated(self, route: Route) -> None:
        if self._on_route_generated:
            self._on_route_generated(route)

    def on_persist(self, routes: list[Route]) -> None:
        if self._on_persist:
            self._on_persist(routes)


class GenerationEvent(BaseModel):
    """One notification published by ``QueueObserver``."""

    kind: Literal["progress", "route_generated", "persist"]
    message: str = ""
    route: Route | None = None
    routes: list[Route] = []


class QueueObserver:
    """Publishes events onto an unbounded asyncio queue the caller drains."""

    def __init__(self, queue: asyncio.Queue | None = None):
        self.queue: asyncio.Queue[GenerationEvent] = queue or asyncio.Queue()

    def on_progress(self, message: str) -> None:
        self.queue.put_nowait(GenerationEvent(kind="progress", message=message))

    def on_route_generated(self, route: Route) -> None:
        self.queue.put_nowait(GenerationEvent(kind="route_generated", route=route))

    def on_persist(self, routes: list[Route]) -> None:
        self.queue.put_nowait(GenerationEvent(kind="persist", routes=list(routes)))


class CancellationToken:
    """Cooperative cancellation flag checked between candidate attempts."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            logger.info("Generation cancelled by caller")
            raise GenerationCancelled("generation cancelled")
