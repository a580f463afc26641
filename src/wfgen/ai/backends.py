"""Transports that talk to a generation service.

``OllamaBackend`` speaks the Ollama ``/api/generate`` wire protocol over
httpx. ``LLMBackend`` drives any model registered with the ``llm`` library.
Both raise ``GenerationUnavailableError`` for every failure and never retry.
"""

import json
import logging
from typing import Any, AsyncIterator, Optional, Protocol

import httpx
import llm

from wfgen.ai.streaming import StreamChunk
from wfgen.core.exceptions import GenerationUnavailableError
from wfgen.core.settings import AISettings

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/generate"


class SamplingOptions(Protocol):
    temperature: float
    top_p: float
    max_tokens: int


class GenerationBackend(Protocol):
    async def generate(self, prompt: str, model: str, options: SamplingOptions) -> str: ...

    def stream(self, prompt: str, model: str, options: SamplingOptions) -> AsyncIterator[StreamChunk]: ...

    async def aclose(self) -> None: ...


def build_generate_payload(prompt: str, model: str, options: SamplingOptions, stream: bool) -> dict[str, Any]:
    """Request body for ``POST /api/generate``."""
    return {
        "model": model,
        "prompt": prompt,
        "stream": stream,
        "options": {
            "temperature": options.temperature,
            "top_p": options.top_p,
            "num_predict": options.max_tokens,
        },
    }


def parse_stream_frame(line: str) -> StreamChunk:
    """Decode one NDJSON frame of a streamed response.

    Raises:
        GenerationUnavailableError: If the frame is not a valid frame object
    """
    try:
        frame = json.loads(line)
    except json.JSONDecodeError as e:
        raise GenerationUnavailableError("malformed stream frame", original_error=e) from e

    if not isinstance(frame, dict):
        raise GenerationUnavailableError("malformed stream frame: expected an object")
    if frame.get("error"):
        raise GenerationUnavailableError(f"service reported an error: {frame['error']}")

    text = frame.get("response", "")
    if not isinstance(text, str):
        raise GenerationUnavailableError("malformed stream frame: 'response' is not text")

    eval_count = frame.get("eval_count")
    return StreamChunk(
        text=text,
        done=bool(frame.get("done", False)),
        eval_count=eval_count if isinstance(eval_count, int) else None,
    )


class OllamaBackend:
    """HTTP transport for an Ollama-compatible generation endpoint."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 60.0,
        max_connections: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
            transport=transport,
        )

    async def generate(self, prompt: str, model: str, options: SamplingOptions) -> str:
        payload = build_generate_payload(prompt, model, options, stream=False)
        try:
            response = await self._client.post(GENERATE_PATH, json=payload)
        except httpx.TimeoutException as e:
            raise GenerationUnavailableError("request timed out", original_error=e) from e
        except httpx.HTTPError as e:
            raise GenerationUnavailableError("request failed", original_error=e) from e

        if not response.is_success:
            raise GenerationUnavailableError("unexpected status", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise GenerationUnavailableError("malformed response body", original_error=e) from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise GenerationUnavailableError("response body has no 'response' text")
        return text

    async def stream(self, prompt: str, model: str, options: SamplingOptions) -> AsyncIterator[StreamChunk]:
        payload = build_generate_payload(prompt, model, options, stream=True)
        request = self._client.build_request("POST", GENERATE_PATH, json=payload)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise GenerationUnavailableError("request timed out", original_error=e) from e
        except httpx.HTTPError as e:
            raise GenerationUnavailableError("request failed", original_error=e) from e

        try:
            if not response.is_success:
                raise GenerationUnavailableError("unexpected status", status_code=response.status_code)
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                chunk = parse_stream_frame(line)
                yield chunk
                if chunk.done:
                    return
        except httpx.HTTPError as e:
            raise GenerationUnavailableError("stream interrupted", original_error=e) from e
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LLMBackend:
    """Transport through the ``llm`` library's async model API.

    Sampling options are forwarded only when the selected model declares
    them, since option names differ between model plugins.
    """

    _OPTION_NAMES = {
        "temperature": ("temperature",),
        "top_p": ("top_p",),
        "max_tokens": ("max_tokens", "max_output_tokens", "num_predict"),
    }

    def _get_model(self, model: str) -> Any:
        try:
            return llm.get_async_model(model)
        except llm.UnknownModelError as e:
            raise GenerationUnavailableError(f"unknown model '{model}'", original_error=e) from e

    def _option_kwargs(self, async_model: Any, options: SamplingOptions) -> dict[str, Any]:
        declared = getattr(getattr(async_model, "Options", None), "model_fields", {}) or {}
        kwargs: dict[str, Any] = {}
        for attr, candidates in self._OPTION_NAMES.items():
            for name in candidates:
                if name in declared:
                    kwargs[name] = getattr(options, attr)
                    break
        return kwargs

    async def generate(self, prompt: str, model: str, options: SamplingOptions) -> str:
        async_model = self._get_model(model)
        try:
            response = async_model.prompt(prompt, **self._option_kwargs(async_model, options))
            return await response.text()
        except Exception as e:
            logger.debug(f"llm model '{model}' failed: {e}", extra={"model": model})
            raise GenerationUnavailableError("llm model call failed", original_error=e) from e

    async def stream(self, prompt: str, model: str, options: SamplingOptions) -> AsyncIterator[StreamChunk]:
        async_model = self._get_model(model)
        try:
            response = async_model.prompt(prompt, **self._option_kwargs(async_model, options))
            async for text in response:
                yield StreamChunk(text=text)
        except Exception as e:
            raise GenerationUnavailableError("llm model stream failed", original_error=e) from e
        yield StreamChunk(text="", done=True)

    async def aclose(self) -> None:
        return None


def create_backend(settings: AISettings) -> GenerationBackend:
    """Build the backend selected by ``settings.provider``."""
    if settings.provider == "llm":
        return LLMBackend()
    return OllamaBackend(
        base_url=settings.base_url,
        timeout=settings.request_timeout,
        max_connections=settings.max_concurrency,
    )
