"""Callback-driven consumption of a streamed generation.

A ``StreamController`` runs one generation in a background task, forwards
partial objects as they arrive and finishes with exactly one terminal
callback. Cancellation is idempotent and silences every later callback.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from explainer.llm import GenerationStream

T = TypeVar("T")


@dataclass(frozen=True)
class StreamCallbacks(Generic[T]):
    """
    Consumer of a streamed generation.

    Attributes
    ----------
    on_progress : Callable[[dict[str, Any]], None]
        Called with each partial object, in arrival order
    on_complete : Callable[[T], None]
        Called once with the final object
    on_error : Callable[[Exception], None]
        Called once when generation or a dependency fails
    """
    on_progress: Callable[[dict[str, Any]], None]
    on_complete: Callable[[T], None]
    on_error: Callable[[Exception], None]


class StreamState(enum.Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (StreamState.COMPLETED, StreamState.ERRORED, StreamState.CANCELLED)


class StreamController(Generic[T]):
    """
    Single-use bridge from a ``GenerationStream`` to ``StreamCallbacks``.

    Parameters
    ----------
    stream : GenerationStream[T]
        Generation to consume
    callbacks : StreamCallbacks[T]
        Consumer callbacks
    logger : logging.Logger
        Logger instance
    persist : Callable[[T], Awaitable[bool]] | None
        Stores the final object before ``on_complete`` fires. A ``False``
        result is logged and completion is still delivered.
    """

    def __init__(
        self,
        stream: GenerationStream[T],
        callbacks: StreamCallbacks[T],
        logger: logging.Logger,
        persist: Callable[[T], Awaitable[bool]] | None = None
    ):
        self.stream = stream
        self.callbacks = callbacks
        self.logger = logger
        self.persist = persist
        self.state = StreamState.PENDING
        self._task: asyncio.Task | None = None

    @property
    def alive(self) -> bool:
        return not self.state.terminal

    def start(self) -> "StreamController[T]":
        """Spawn the background consumer. Must be called from a running event loop."""
        if self.state is not StreamState.PENDING:
            raise RuntimeError(f"Stream controller already {self.state.value}")
        self.state = StreamState.STREAMING
        self._task = asyncio.create_task(self._run())
        return self

    def cancel(self) -> None:
        """Abort the generation. Later calls, and calls after a terminal state, do nothing."""
        if self.state.terminal:
            return
        self.state = StreamState.CANCELLED
        if self._task is not None:
            self._task.cancel()

    async def wait(self) -> StreamState:
        """Wait until the background consumer has stopped and return the final state."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self.state

    def _finish(self, state: StreamState) -> bool:
        if not self.alive:
            return False
        self.state = state
        return True

    async def _run(self) -> None:
        try:
            async for partial in self.stream.partials():
                if not self.alive:
                    return
                self.callbacks.on_progress(partial)
            result = await self.stream.result()
        except asyncio.CancelledError:
            raise
        except Exception as e:  # generation errors of any kind end the stream through on_error
            self.logger.warning(f"Streamed generation errored: {e}")
            if self._finish(StreamState.ERRORED):
                self.callbacks.on_error(e)
            return
        finally:
            await self.stream.aclose()

        if self.persist is not None and self.alive:
            if not await self.persist(result):
                self.logger.error("Failed to cache generated result, delivering it uncached")

        if self._finish(StreamState.COMPLETED):
            self.callbacks.on_complete(result)
