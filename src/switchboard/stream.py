"""Pull-based stream iterator over a background pump task.

Adapters translate vendor chunks into an async generator of ``StreamEvent``.
``launch_stream`` runs that generator in its own task, pushing events into a
bounded queue; ``StreamIterator`` is the caller's side of the queue.

Sequence contract: 0..n delta events, then exactly one terminal event
(``message_done`` or ``error``). Nothing is delivered after the terminal
event or after ``cancel()``.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from functools import partial
import logging
from typing import TYPE_CHECKING, Any

from switchboard.errors import InternalError
from switchboard.generation import (
    GenerateTextResult,
    StreamEvent,
    StreamEventType,
    Usage,
)
from switchboard.messages import ContentBlock, ContentBlockType

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

logger = logging.getLogger(__name__)

STREAM_BUFFER_SIZE = 64

# Queued after the pump task finishes; wakes a consumer blocked in next().
_CLOSED: Any = object()


class StreamIterator:
    """Caller-facing, cancelable view over a stream's event queue."""

    def __init__(
        self,
        queue: asyncio.Queue[Any],
        cancel: Callable[[], object],
        *,
        task: asyncio.Task[None] | None = None,
    ) -> None:
        """Take ownership of the event queue and its cancellation function."""
        self._queue = queue
        self._cancel_fn: Callable[[], object] | None = cancel
        self._task = task
        self._done = False
        self._error: BaseException | None = None

    @property
    def done(self) -> bool:
        """Whether no further events will be returned."""
        return self._done

    @property
    def error(self) -> BaseException | None:
        """The error carried by a terminal ``error`` event, if one was read."""
        return self._error

    async def next(self) -> tuple[StreamEvent | None, bool]:
        """Wait for the next event.

        Returns ``(event, True)`` for every delivered event, including the
        terminal one, and ``(None, False)`` once the stream is exhausted or
        cancelled.
        """
        if self._done:
            return None, False

        item = await self._queue.get()
        if self._done or item is _CLOSED:
            # Cancelled while waiting, or the pump exited.
            self._done = True
            return None, False

        event: StreamEvent = item
        if event.is_terminal:
            self._done = True
            if event.type is StreamEventType.ERROR:
                self._error = event.error
        return event, True

    def cancel(self) -> None:
        """Stop the stream early. Safe to call any number of times."""
        self._done = True
        cancel_fn, self._cancel_fn = self._cancel_fn, None
        if cancel_fn is not None:
            cancel_fn()

    async def aclose(self) -> None:
        """Cancel the stream and wait for the pump task to exit."""
        self.cancel()
        if self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def collect(self) -> GenerateTextResult:
        """Drain the stream into a single result.

        Raises the stream's error if it terminated with an ``error`` event.
        """
        text_parts: list[str] = []
        tool_calls: list[ContentBlock] = []
        result = GenerateTextResult()

        async for event in self:
            if event.type is StreamEventType.CONTENT_DELTA:
                text_parts.append(event.text_delta)
            elif event.type is StreamEventType.TOOL_CALL_DELTA:
                if event.tool_call is not None:
                    tool_calls.append(
                        ContentBlock(
                            type=ContentBlockType.TOOL_CALL, tool_call=event.tool_call
                        )
                    )
            elif event.type is StreamEventType.MESSAGE_DONE:
                result.stop_reason = event.stop_reason
                result.usage = event.usage or Usage()

        if self._error is not None:
            raise self._error

        text = "".join(text_parts)
        if text:
            result.content.append(ContentBlock.of_text(text))
        result.content.extend(tool_calls)
        return result

    def __aiter__(self) -> StreamIterator:
        return self

    async def __anext__(self) -> StreamEvent:
        event, has_more = await self.next()
        if not has_more or event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> StreamIterator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def _close_channel(queue: asyncio.Queue[Any], _task: asyncio.Task[None]) -> None:
    # A full queue already holds the terminal event, or the consumer has
    # cancelled; either way the sentinel is not needed.
    with suppress(asyncio.QueueFull):
        queue.put_nowait(_CLOSED)


async def _pump(
    events: AsyncIterator[StreamEvent],
    queue: asyncio.Queue[Any],
    on_error: Callable[[Exception], BaseException],
    provider: str,
) -> None:
    try:
        async for event in events:
            await queue.put(event)
            if event.is_terminal:
                return
        await queue.put(
            StreamEvent.failed(
                InternalError(f"{provider} stream ended without a terminal event")
            )
        )
    except asyncio.CancelledError:
        raise
    except Exception as e:
        try:
            error = on_error(e)
        except Exception:
            logger.debug("%s stream error handler failed", provider, exc_info=True)
            error = InternalError(f"{provider} stream failed: {e}")
            error.__cause__ = e
        await queue.put(StreamEvent.failed(error))
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception:
                logger.debug("%s stream cleanup failed", provider, exc_info=True)


def launch_stream(
    events: AsyncIterator[StreamEvent],
    *,
    provider: str,
    on_error: Callable[[Exception], BaseException],
    buffer_size: int = STREAM_BUFFER_SIZE,
) -> StreamIterator:
    """Start a pump task for *events* and return the iterator that drains it.

    Must be called from a running event loop. The pump blocks on a full queue
    rather than dropping events; ``on_error`` converts an exception raised by
    *events* into the payload of the terminal ``error`` event.
    """
    queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=buffer_size)
    task = asyncio.get_running_loop().create_task(
        _pump(events, queue, on_error, provider),
        name=f"switchboard-stream-{provider}",
    )
    task.add_done_callback(partial(_close_channel, queue))
    return StreamIterator(queue, task.cancel, task=task)
