"""Tests for AIRequestClient over the Ollama HTTP backend and a gated fake backend.

Focus:
1. Wire protocol: request body, non-2xx, transport failures, stream frames
2. Concurrency: the slot limit holds and waiters are served in arrival order
3. Cancellation releases slots, whether queued, in flight or streaming
4. Cache hits skip the service; invalidation forgets an entry
"""

import asyncio
import json
from typing import Callable

import httpx
import pytest

from wfgen.ai.backends import OllamaBackend
from wfgen.ai.cache import PromptCache
from wfgen.ai.client import AIRequestClient
from wfgen.ai.streaming import CancellationToken, StreamChunk
from wfgen.core.exceptions import GenerationCancelledError, GenerationUnavailableError
from wfgen.core.settings import AISettings


def _ok(text: str) -> httpx.Response:
    return httpx.Response(200, json={"model": "test", "response": text, "done": True})


def _frames(*frames: dict) -> bytes:
    return "".join(json.dumps(frame) + "\n" for frame in frames).encode()


@pytest.fixture
async def make_client():
    """Factory for clients whose HTTP traffic goes to ``handler``."""
    backends: list[OllamaBackend] = []

    def factory(handler: Callable[[httpx.Request], httpx.Response], cache=None, **ai) -> AIRequestClient:
        settings = AISettings(model="test-model", **ai)
        backend = OllamaBackend(base_url=settings.base_url, transport=httpx.MockTransport(handler))
        backends.append(backend)
        return AIRequestClient(settings=settings, backend=backend, cache=cache)

    yield factory

    for backend in backends:
        await backend.aclose()


class GatedBackend:
    """Backend whose calls block until the test opens the gate."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.started: list[str] = []
        self.active = 0
        self.peak = 0

    async def generate(self, prompt, model, options):
        self.started.append(prompt)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await self.gate.wait()
            return f"answer to {prompt}"
        finally:
            self.active -= 1

    async def stream(self, prompt, model, options):
        yield StreamChunk(text="first")
        await self.gate.wait()
        yield StreamChunk(text="", done=True)

    async def aclose(self):
        return None


async def _settle() -> None:
    await asyncio.sleep(0.01)


class TestSend:
    async def test_returns_response_text_and_sends_sampling_options(self, make_client):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/generate"
            seen.append(json.loads(request.content))
            return _ok("hello")

        client = make_client(handler, temperature=0.5, max_tokens=100)

        assert await client.send("Say hello") == "hello"
        assert seen[0]["model"] == "test-model"
        assert seen[0]["stream"] is False
        assert seen[0]["options"] == {"temperature": 0.5, "top_p": 0.9, "num_predict": 100}

    async def test_non_success_status_is_unavailable(self, make_client):
        client = make_client(lambda request: httpx.Response(503, text="overloaded"))

        with pytest.raises(GenerationUnavailableError) as exc_info:
            await client.send("prompt")

        assert exc_info.value.status_code == 503
        assert client.get_metrics()["failed_requests"] == 1

    async def test_transport_error_is_unavailable(self, make_client):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(GenerationUnavailableError, match="request failed"):
            await client.send("prompt")

    async def test_body_without_response_text_is_unavailable(self, make_client):
        client = make_client(lambda request: httpx.Response(200, json={"done": True}))

        with pytest.raises(GenerationUnavailableError):
            await client.send("prompt")

    async def test_empty_prompt_is_rejected(self, make_client):
        client = make_client(lambda request: _ok("unused"))

        with pytest.raises(ValueError):
            await client.send("   ")

    async def test_out_of_range_options_are_rejected(self, make_client):
        client = make_client(lambda request: _ok("unused"))

        with pytest.raises(ValueError):
            await client.send("prompt", options={"temperature": 5})


class TestCache:
    async def test_second_identical_request_is_served_from_cache(self, make_client):
        calls: list[int] = []

        def handler(request):
            calls.append(1)
            return _ok("cached answer")

        client = make_client(handler, cache=PromptCache())

        assert await client.send("Plan  this") == "cached answer"
        assert await client.send("Plan this") == "cached answer"

        assert len(calls) == 1
        assert client.get_metrics()["cache_hits"] == 1

    async def test_invalidate_forgets_the_entry(self, make_client):
        calls: list[int] = []

        def handler(request):
            calls.append(1)
            return _ok("answer")

        client = make_client(handler, cache=PromptCache())
        await client.send("prompt")
        client.invalidate("prompt")
        await client.send("prompt")

        assert len(calls) == 2

    async def test_failures_are_not_cached(self, make_client):
        responses = [httpx.Response(500), _ok("recovered")]
        client = make_client(lambda request: responses.pop(0), cache=PromptCache())

        with pytest.raises(GenerationUnavailableError):
            await client.send("prompt")

        assert await client.send("prompt") == "recovered"


class TestStream:
    async def test_frames_are_delivered_until_done(self, make_client):
        body = _frames(
            {"response": "Hel", "done": False},
            {"response": "lo", "done": True, "eval_count": 2},
            {"response": "ignored", "done": False},
        )
        client = make_client(lambda request: httpx.Response(200, content=body))

        chunks = [chunk async for chunk in client.stream("Say hello")]

        assert [c.text for c in chunks] == ["Hel", "lo"]
        assert chunks[-1].done is True
        assert chunks[-1].eval_count == 2
        metrics = client.get_metrics()
        assert metrics["streaming_requests"] == 1
        assert metrics["in_flight"] == 0
        assert metrics["failed_requests"] == 0

    async def test_request_body_asks_for_streaming(self, make_client):
        seen: list[dict] = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, content=_frames({"response": "", "done": True}))

        client = make_client(handler)
        await client.stream("prompt").collect()

        assert seen[0]["stream"] is True

    async def test_malformed_frame_fails_the_stream(self, make_client):
        body = b'{"response": "ok", "done": false}\nnot json\n'
        client = make_client(lambda request: httpx.Response(200, content=body))
        stream = client.stream("prompt")

        assert (await stream.__anext__()).text == "ok"
        with pytest.raises(GenerationUnavailableError, match="malformed stream frame"):
            await stream.__anext__()

        assert stream.closed
        assert client.get_metrics()["in_flight"] == 0

    async def test_stream_without_done_frame_fails(self, make_client):
        body = _frames({"response": "partial", "done": False})
        client = make_client(lambda request: httpx.Response(200, content=body))

        with pytest.raises(GenerationUnavailableError, match="completion frame"):
            await client.stream("prompt").collect()

    async def test_error_frame_fails(self, make_client):
        body = _frames({"error": "model not found"})
        client = make_client(lambda request: httpx.Response(200, content=body))

        with pytest.raises(GenerationUnavailableError, match="model not found"):
            await client.stream("prompt").collect()

    async def test_non_success_status_fails(self, make_client):
        client = make_client(lambda request: httpx.Response(404))

        with pytest.raises(GenerationUnavailableError) as exc_info:
            await client.stream("prompt").collect()

        assert exc_info.value.status_code == 404


class TestConcurrency:
    async def test_in_flight_requests_never_exceed_limit(self):
        backend = GatedBackend()
        client = AIRequestClient(settings=AISettings(max_concurrency=2), backend=backend)

        tasks = [asyncio.create_task(client.send(f"p{i}")) for i in range(5)]
        await _settle()

        assert backend.active == 2
        assert client.get_metrics()["queued"] == 3

        backend.gate.set()
        results = await asyncio.gather(*tasks)

        assert backend.peak == 2
        assert results == [f"answer to p{i}" for i in range(5)]

    async def test_waiters_are_served_in_arrival_order(self):
        backend = GatedBackend()
        client = AIRequestClient(settings=AISettings(max_concurrency=1), backend=backend)

        tasks = []
        for i in range(4):
            tasks.append(asyncio.create_task(client.send(f"p{i}")))
            await _settle()

        backend.gate.set()
        await asyncio.gather(*tasks)

        assert backend.started == ["p0", "p1", "p2", "p3"]

    async def test_batch_failures_are_isolated(self, make_client):
        def handler(request):
            if "bad" in json.loads(request.content)["prompt"]:
                return httpx.Response(500)
            return _ok("fine")

        client = make_client(handler)

        outcomes = await client.send_batch(["good one", "bad one", "good two"])

        assert [o.ok for o in outcomes] == [True, False, True]
        assert outcomes[0].text == "fine"
        assert isinstance(outcomes[1].error, GenerationUnavailableError)
        assert client.get_metrics()["batched_requests"] == 3


class TestCancellation:
    async def test_cancelling_in_flight_request_releases_slot(self):
        backend = GatedBackend()
        client = AIRequestClient(settings=AISettings(max_concurrency=1), backend=backend)
        token = CancellationToken()

        task = asyncio.create_task(client.send("slow", cancel_token=token))
        await _settle()
        token.cancel()

        with pytest.raises(GenerationCancelledError):
            await task

        metrics = client.get_metrics()
        assert metrics["in_flight"] == 0
        assert metrics["cancelled_requests"] == 1

        backend.gate.set()
        assert await client.send("next") == "answer to next"

    async def test_cancelling_queued_request_leaves_queue(self):
        backend = GatedBackend()
        client = AIRequestClient(settings=AISettings(max_concurrency=1), backend=backend)
        token = CancellationToken()

        first = asyncio.create_task(client.send("first"))
        await _settle()
        queued = asyncio.create_task(client.send("queued", cancel_token=token))
        await _settle()
        token.cancel()

        with pytest.raises(GenerationCancelledError):
            await queued

        assert client.get_metrics()["queued"] == 0
        backend.gate.set()
        assert await first == "answer to first"
        assert backend.started == ["first"]

    async def test_already_cancelled_token_never_reaches_backend(self):
        backend = GatedBackend()
        client = AIRequestClient(backend=backend)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(GenerationCancelledError):
            await client.send("prompt", cancel_token=token)

        assert backend.started == []

    async def test_cancelling_stream_releases_slot(self):
        backend = GatedBackend()
        client = AIRequestClient(settings=AISettings(max_concurrency=1), backend=backend)
        stream = client.stream("prompt")

        assert (await stream.__anext__()).text == "first"
        await stream.cancel()

        assert stream.closed
        assert [chunk async for chunk in stream] == []
        metrics = client.get_metrics()
        assert metrics["in_flight"] == 0
        assert metrics["cancelled_requests"] == 1

    async def test_cancel_from_another_task_ends_iteration(self):
        backend = GatedBackend()
        client = AIRequestClient(backend=backend)
        stream = client.stream("prompt")

        async def consume() -> list[str]:
            return [chunk.text async for chunk in stream]

        consumer = asyncio.create_task(consume())
        await _settle()
        await stream.cancel()

        assert await consumer == ["first"]
        assert client.get_metrics()["in_flight"] == 0
