"""JSON parsing utilities for wfgen.

Model responses are untrusted text: they may wrap the JSON payload in prose,
prefix it with a reasoning preamble, or get cut off mid-object. These helpers
pull out the payload without ever raising on malformed input.
"""

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Prevent pathological scans of huge responses
DEFAULT_MAX_JSON_SIZE = 2 * 1024 * 1024  # 2MB

# Reasoning models (deepseek-r1 and friends) close their preamble with this marker
REASONING_END_MARKER = "</think>"

_LOG_PREVIEW_LENGTH = 100


def try_parse_json(
    value: str,
    *,
    max_size: int = DEFAULT_MAX_JSON_SIZE,
) -> tuple[bool, Any]:
    """Attempt to parse a string as JSON.

    Returns a tuple of (success, result) where:
    - (True, parsed_value) if parsing succeeded
    - (False, original_value) if parsing failed or was skipped

    Examples:
        >>> try_parse_json('{"a": 1}')
        (True, {'a': 1})
        >>> try_parse_json('not json')
        (False, 'not json')
    """
    if not isinstance(value, str):
        return (False, value)

    text = value.strip()
    if not text:
        return (False, value)

    if len(text) > max_size:
        logger.warning(
            f"Skipping JSON parse: string exceeds size limit ({len(text):,} > {max_size:,} bytes)",
        )
        return (False, value)

    if text[0] not in '{["tfn-0123456789':
        return (False, value)

    try:
        return (True, json.loads(text))
    except (json.JSONDecodeError, ValueError):
        return (False, value)


def strip_reasoning(text: str, marker: str = REASONING_END_MARKER) -> str:
    """Drop everything up to and including the last reasoning marker."""
    index = text.rfind(marker)
    if index == -1:
        return text
    return text[index + len(marker) :]


def extract_last_json_object(
    text: str,
    *,
    max_size: int = DEFAULT_MAX_JSON_SIZE,
) -> Optional[dict[str, Any]]:
    """Return the last well-formed top-level JSON object in ``text``.

    Scans left to right, decoding at each ``{``. A successfully decoded object
    is skipped over as a whole, so nested objects are never reported on their
    own unless the enclosing object is malformed (e.g. truncated). Callers
    must shape-check the result.

    Returns:
        The parsed dict, or None when the text contains no complete object.

    Examples:
        >>> extract_last_json_object('thinking...</think> {"a": 1} and {"b": 2}')
        {'b': 2}
        >>> extract_last_json_object('{"a": {"b": 1}, "c": ')
        {'b': 1}
    """
    if not isinstance(text, str) or not text:
        return None

    body = strip_reasoning(text)
    if len(body) > max_size:
        logger.warning(f"Skipping JSON extraction: response exceeds size limit ({len(body):,} > {max_size:,})")
        return None

    decoder = json.JSONDecoder()
    last: Optional[dict[str, Any]] = None
    position = body.find("{")
    while position != -1:
        try:
            value, end = decoder.raw_decode(body, position)
        except json.JSONDecodeError:
            position = body.find("{", position + 1)
            continue
        if isinstance(value, dict):
            last = value
        position = body.find("{", end)

    if last is None:
        preview = body.strip()[:_LOG_PREVIEW_LENGTH]
        logger.debug("No JSON object found in response", extra={"preview": preview})
    return last
