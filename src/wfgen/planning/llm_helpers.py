"""Helpers shared by the AI-backed planning stages."""

import json
import logging
from typing import Any, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

from wfgen.core.json_utils import extract_last_json_object

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ResponseParseError(ValueError):
    """The model's answer held no usable JSON object of the expected shape."""

    pass


def parse_structured_response(
    text: str,
    expected_type: type[ModelT],
    required_keys: Iterable[str] = (),
) -> ModelT:
    """Parse the last JSON object of a model response into ``expected_type``.

    Args:
        text: Raw response text, possibly with a reasoning preamble
        expected_type: Pydantic model describing the expected shape
        required_keys: Keys that must be present in the raw object (catches
            nested objects picked up from a truncated response)

    Raises:
        ResponseParseError: If no object is found or it has the wrong shape
    """
    if not text or not text.strip():
        raise ResponseParseError("model returned an empty response")

    data = extract_last_json_object(text)
    if data is None:
        raise ResponseParseError(f"no JSON object in response: {text.strip()[:200]}")

    missing = [key for key in required_keys if key not in data]
    if missing:
        raise ResponseParseError(f"response object is missing {missing}")

    try:
        result = expected_type.model_validate(data)
    except ValidationError as e:
        raise ResponseParseError(f"response does not match {expected_type.__name__}: {e}") from e

    logger.debug(f"Parsed structured response for {expected_type.__name__}")
    return result


def format_items(items: Iterable[Any], empty: str = "None specified") -> str:
    """Comma-join items for prompt text."""
    rendered = [str(item) for item in items if str(item)]
    return ", ".join(rendered) if rendered else empty


def format_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)
