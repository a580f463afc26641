"""Scripted stand-in for AIRequestClient used by planning and pipeline tests.

Responses are chosen by a marker phrase of the prompt, so one client can
answer the analysis, planning and simplification prompts differently.
"""

import json
from typing import Any, Optional, Union

from wfgen.core.exceptions import GenerationUnavailableError

ANALYSIS = "Analyze the following requirements"
PLANNING = "create a detailed workflow plan"
SIMPLIFICATION = "suggest simplifications"

Scripted = Union[str, dict[str, Any], Exception]


class ScriptedClient:
    """Answers prompts from a script; unscripted prompts fail as unavailable.

    Each script entry is a response text, a dict (sent as JSON), an exception
    to raise, or a list of those consumed one per call (the last one repeats).
    """

    def __init__(self, script: Optional[dict[str, Any]] = None):
        self.script = dict(script or {})
        self.calls: list[str] = []
        self.invalidated: list[str] = []
        self.closed = False

    async def send(self, prompt: str, options: Any = None, cancel_token: Any = None, use_cache: bool = True) -> str:
        self.calls.append(prompt)
        for marker, answer in self.script.items():
            if marker in prompt:
                return self._answer(marker, answer)
        raise GenerationUnavailableError("request failed", original_error=ConnectionError("connection refused"))

    def _answer(self, marker: str, answer: Any) -> str:
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, dict):
            return json.dumps(answer)
        return answer

    def invalidate(self, prompt: str, options: Any = None) -> None:
        self.invalidated.append(prompt)

    def calls_with(self, marker: str) -> list[str]:
        return [prompt for prompt in self.calls if marker in prompt]

    def get_metrics(self) -> dict[str, Any]:
        return {"total_requests": len(self.calls)}

    async def aclose(self) -> None:
        self.closed = True
