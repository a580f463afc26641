"""Concurrency-limited client for the generation service.

The client owns three shared resources: the backend's connection pool, a
FIFO concurrency limiter, and (optionally) the prompt cache. All three are
safe to share between concurrent generation requests.

Failures surface as ``GenerationUnavailableError``. The client never retries;
retry and fallback belong to the caller.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

from wfgen.ai.backends import GenerationBackend, create_backend
from wfgen.ai.cache import PromptCache, make_cache_key
from wfgen.ai.streaming import CancellationToken, GenerationStream
from wfgen.core.exceptions import GenerationCancelledError, GenerationUnavailableError
from wfgen.core.metrics import RequestMetrics
from wfgen.core.settings import AISettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GenerationOptions(BaseModel):
    """Sampling options; out-of-range values are rejected at construction."""

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, gt=0.0, le=1.0)
    max_tokens: int = Field(default=2000, ge=1, le=32768)


OptionsLike = Union[GenerationOptions, dict[str, Any], None]


@dataclass
class BatchOutcome:
    """Result of one request of a batch: either ``text`` or ``error`` is set."""

    prompt: str
    text: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AIRequestClient:
    """Client for buffered, streamed and batched generation calls.

    Args:
        settings: Service settings; defaults are used when omitted
        backend: Transport; built from ``settings.provider`` when omitted
        cache: Shared prompt cache consulted by ``send()``
        cache_ttl: TTL for stored responses (the cache default when None)
    """

    def __init__(
        self,
        settings: Optional[AISettings] = None,
        backend: Optional[GenerationBackend] = None,
        cache: Optional[PromptCache] = None,
        cache_ttl: Optional[float] = None,
    ):
        self.settings = settings or AISettings()
        self.model = self.settings.model
        self.backend = backend if backend is not None else create_backend(self.settings)
        self._owns_backend = backend is None
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.metrics = RequestMetrics()
        self.default_options = GenerationOptions(
            temperature=self.settings.temperature,
            top_p=self.settings.top_p,
            max_tokens=self.settings.max_tokens,
        )
        # asyncio.Semaphore wakes waiters in arrival order
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrency)

    async def __aenter__(self) -> "AIRequestClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_backend:
            await self.backend.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(
        self,
        prompt: str,
        options: OptionsLike = None,
        cancel_token: Optional[CancellationToken] = None,
        use_cache: bool = True,
    ) -> str:
        """Send a prompt and return the full response text.

        Raises:
            ValueError: If the prompt is empty or options are out of range
            GenerationUnavailableError: If the service cannot answer
            GenerationCancelledError: If ``cancel_token`` fires first
        """
        return await self._send(prompt, options, cancel_token, use_cache, batched=False)

    def stream(
        self,
        prompt: str,
        options: OptionsLike = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> GenerationStream:
        """Start a streamed generation.

        The returned stream acquires a connection slot on first pull and holds
        it until the stream completes, fails, or is cancelled. Streams bypass
        the cache.
        """
        self._check_prompt(prompt)
        resolved = self.resolve_options(options)
        token = cancel_token or CancellationToken()
        started_at: list[float] = []

        async def opener():
            await self._acquire_slot(token, streaming=True)
            started_at.append(time.perf_counter())
            logger.debug("Stream started", extra={"model": self.model})
            return self.backend.stream(prompt, self.model, resolved)

        def on_close(ok: bool, cancelled: bool) -> None:
            self._semaphore.release()
            latency_ms = (time.perf_counter() - started_at[0]) * 1000 if started_at else 0.0
            self.metrics.record_finished(latency_ms, ok=ok, cancelled=cancelled)

        return GenerationStream(opener, on_close, token)

    async def send_batch(
        self,
        prompts: Sequence[str],
        options: OptionsLike = None,
        use_cache: bool = True,
    ) -> list[BatchOutcome]:
        """Schedule several single-shot requests together.

        Each request is answered independently; a failing request never fails
        its siblings. Outcomes are returned in input order.
        """
        results = await asyncio.gather(
            *(self._send(prompt, options, None, use_cache, batched=True) for prompt in prompts),
            return_exceptions=True,
        )
        outcomes: list[BatchOutcome] = []
        for prompt, result in zip(prompts, results):
            if isinstance(result, Exception):
                outcomes.append(BatchOutcome(prompt=prompt, error=result))
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes.append(BatchOutcome(prompt=prompt, text=result))
        return outcomes

    def cache_key(self, prompt: str, options: OptionsLike = None) -> str:
        resolved = self.resolve_options(options)
        return make_cache_key(prompt, self.model, resolved.temperature, resolved.top_p, resolved.max_tokens)

    def invalidate(self, prompt: str, options: OptionsLike = None) -> None:
        """Forget a cached response, e.g. one the caller could not parse."""
        if self.cache is not None:
            self.cache.invalidate(self.cache_key(prompt, options))

    def get_metrics(self) -> dict[str, Any]:
        summary = self.metrics.get_summary()
        summary["model"] = self.model
        summary["max_concurrency"] = self.settings.max_concurrency
        summary["cache"] = self.cache.stats() if self.cache is not None else None
        return summary

    def resolve_options(self, options: OptionsLike) -> GenerationOptions:
        if options is None:
            return self.default_options
        if isinstance(options, GenerationOptions):
            return options
        return GenerationOptions(**{**self.default_options.model_dump(), **options})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_prompt(prompt: str) -> None:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string")

    async def _send(
        self,
        prompt: str,
        options: OptionsLike,
        cancel_token: Optional[CancellationToken],
        use_cache: bool,
        batched: bool,
    ) -> str:
        self._check_prompt(prompt)
        resolved = self.resolve_options(options)

        key = None
        if use_cache and self.cache is not None:
            key = make_cache_key(prompt, self.model, resolved.temperature, resolved.top_p, resolved.max_tokens)
            cached = self.cache.get(key)
            if cached is not None:
                self.metrics.record_cache_hit()
                logger.debug("Cache hit", extra={"model": self.model, "key": key[:16]})
                return cached

        await self._acquire_slot(cancel_token, batched=batched)
        started = time.perf_counter()
        ok = False
        cancelled = False
        try:
            text = await self._cancellable(self.backend.generate(prompt, self.model, resolved), cancel_token)
            ok = True
        except GenerationCancelledError:
            cancelled = True
            raise
        except GenerationUnavailableError as e:
            logger.debug(f"Generation request failed: {e.reason}", extra={"model": self.model})
            raise
        except Exception as e:
            raise GenerationUnavailableError("backend error", original_error=e) from e
        finally:
            self._semaphore.release()
            self.metrics.record_finished((time.perf_counter() - started) * 1000, ok=ok, cancelled=cancelled)

        if key is not None:
            self.cache.put(key, text, self.cache_ttl)
        return text

    async def _acquire_slot(
        self,
        token: Optional[CancellationToken],
        streaming: bool = False,
        batched: bool = False,
    ) -> None:
        """Wait for a free slot in arrival order, giving up if ``token`` fires."""
        self.metrics.record_queued()
        try:
            await self._cancellable(self._semaphore.acquire(), token, on_abandon=self._semaphore.release)
        except BaseException:
            self.metrics.record_dequeued()
            raise
        self.metrics.record_started(streaming=streaming, batched=batched)

    async def _cancellable(
        self,
        awaitable: Awaitable[T],
        token: Optional[CancellationToken],
        on_abandon=None,
    ) -> T:
        """Await ``awaitable`` unless ``token`` is cancelled first.

        ``on_abandon`` runs if the awaitable had already completed when the
        cancellation won the race (used to hand back a just-acquired slot).
        """
        if token is None:
            return await awaitable
        if token.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise GenerationCancelledError()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Cancelled request finished with error: {e}")
        else:
            if on_abandon is not None:
                on_abandon()
        raise GenerationCancelledError()
