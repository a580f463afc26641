"""Pull-based, cancellable streams of generated text."""

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from wfgen.core.exceptions import GenerationUnavailableError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation shared between a caller and in-flight requests."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(frozen=True)
class StreamChunk:
    """One fragment of a streamed response; the final chunk has ``done=True``."""

    text: str
    done: bool = False
    eval_count: Optional[int] = None


# Opens the underlying frame iterator once a connection slot is held
FrameOpener = Callable[[], Awaitable[AsyncIterator[StreamChunk]]]
# Called exactly once when the stream ends: (ok, cancelled)
CloseCallback = Callable[[bool, bool], None]


class GenerationStream:
    """Async iterator over the chunks of one streamed generation.

    The request starts on the first pull (or on ``async with``) and the
    connection slot is held until the stream completes, fails, or is
    cancelled. A stream is consumed once; to start over, request a new one.

    Example:
        >>> async with client.stream("Describe the plan") as stream:  # doctest: +SKIP
        ...     async for chunk in stream:
        ...         print(chunk.text, end="")
    """

    def __init__(
        self,
        opener: FrameOpener,
        on_close: CloseCallback,
        token: Optional[CancellationToken] = None,
    ):
        self._opener = opener
        self._on_close = on_close
        self.token = token or CancellationToken()
        self._frames: Optional[AsyncIterator[StreamChunk]] = None
        self._pending: Optional[asyncio.Future] = None
        self._started = False
        self._closed = False
        self._completed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    async def __aenter__(self) -> "GenerationStream":
        await self._ensure_started()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __aiter__(self) -> "GenerationStream":
        return self

    async def _ensure_started(self) -> None:
        if self._started:
            return
        self._started = True
        try:
            self._frames = await self._opener()
        except BaseException:
            # The opener releases its own slot on failure
            self._closed = True
            raise

    async def __anext__(self) -> StreamChunk:
        if self._closed or self._completed:
            raise StopAsyncIteration
        if self.token.cancelled:
            await self._close(ok=False)
            raise StopAsyncIteration

        await self._ensure_started()
        assert self._frames is not None

        self._pending = asyncio.ensure_future(self._frames.__anext__())
        cancel_wait = asyncio.ensure_future(self.token.wait())
        try:
            done, _ = await asyncio.wait({self._pending, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()

        if self._pending not in done:
            logger.debug("Stream cancelled while waiting for the next chunk")
            await self._close(ok=False)
            raise StopAsyncIteration

        pending, self._pending = self._pending, None
        try:
            chunk = pending.result()
        except StopAsyncIteration:
            await self._close(ok=False)
            raise GenerationUnavailableError("stream ended without a completion frame") from None
        except GenerationUnavailableError:
            await self._close(ok=False)
            raise
        except Exception as e:
            await self._close(ok=False)
            raise GenerationUnavailableError("stream failed", original_error=e) from e

        if chunk.done:
            self._completed = True
            await self._close(ok=True)
        return chunk

    async def cancel(self) -> None:
        """Stop delivery now and release the connection slot.

        Safe to call from another task while a consumer is waiting on the
        next chunk; that consumer's iteration simply ends.
        """
        self.token.cancel()
        if self._pending is None:
            await self._close(ok=False)

    async def aclose(self) -> None:
        """Release resources; a stream closed before completion counts as cancelled."""
        if not self._closed and not self._completed:
            self.token.cancel()
        await self._close(ok=self._completed)

    async def collect(self) -> str:
        """Consume the rest of the stream and return the concatenated text."""
        parts = [chunk.text async for chunk in self]
        return "".join(parts)

    async def _close(self, ok: bool) -> None:
        if self._closed:
            return
        self._closed = True

        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            with suppress(asyncio.CancelledError, StopAsyncIteration, Exception):
                await self._pending
        self._pending = None

        aclose = getattr(self._frames, "aclose", None)
        if aclose is not None:
            with suppress(RuntimeError):
                await aclose()

        if self._started:
            self._on_close(ok, self.token.cancelled and not ok)
