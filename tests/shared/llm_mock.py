"""Mock of the ``llm`` library's async model API.

Replaces ``llm.get_async_model`` so no test ever resolves a real model.
"""

from typing import Any, Optional

import llm
from pydantic import BaseModel


class MockOptions(BaseModel):
    """Options a typical model plugin declares."""

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None


class MockAsyncResponse:
    """Async response: awaitable ``text()`` and async iteration over chunks."""

    def __init__(self, chunks: list[str], error: Optional[Exception] = None):
        self._chunks = chunks
        self._error = error

    async def text(self) -> str:
        if self._error is not None:
            raise self._error
        return "".join(self._chunks)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


class MockAsyncModel:
    Options = MockOptions

    def __init__(self, model_id: str, mock_get_async_model: "MockGetAsyncModel"):
        self.model_id = model_id
        self._mock = mock_get_async_model

    def prompt(self, prompt: str, **kwargs: Any) -> MockAsyncResponse:
        self._mock.call_history.append({"model": self.model_id, "prompt": prompt, "kwargs": kwargs})
        chunks, error = self._mock.get_response(self.model_id)
        return MockAsyncResponse(chunks, error)


class MockGetAsyncModel:
    """Mock for ``llm.get_async_model``.

    Unknown model ids raise ``llm.UnknownModelError`` like the real function.
    """

    def __init__(self):
        self.call_history: list[dict[str, Any]] = []
        self._responses: dict[str, tuple[list[str], Optional[Exception]]] = {}

    def set_response(self, model_id: str, chunks: list[str], error: Optional[Exception] = None) -> None:
        self._responses[model_id] = (list(chunks), error)

    def get_response(self, model_id: str) -> tuple[list[str], Optional[Exception]]:
        return self._responses[model_id]

    def __call__(self, model_id: Optional[str] = None) -> MockAsyncModel:
        if model_id not in self._responses:
            raise llm.UnknownModelError(f"Unknown model: {model_id}")
        return MockAsyncModel(model_id, self)

    def reset(self) -> None:
        self.call_history.clear()
        self._responses.clear()


def create_mock_get_async_model() -> MockGetAsyncModel:
    return MockGetAsyncModel()
