"""Locate a JSON object inside free-form model output.

Models often wrap the payload in prose or markdown code fences. The scanner
walks the text from each ``{`` in turn, tracking brace depth and whether it is
inside a string literal, so braces within strings do not end the object early.
Balanced spans that are not a JSON object (``{question, options}`` in prose)
are skipped and scanning continues from the next brace.
"""

import json
from typing import Any, Dict, Iterator, Optional

from services.errors import MalformedResponse


def _balanced_end(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


def iter_json_candidates(text: str) -> Iterator[str]:
    """Yield every balanced ``{...}`` span in ``text``, in order of its opening brace."""
    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end is not None:
            yield text[start:end + 1]
        start = text.find("{", start + 1)


def find_json_object(text: str) -> Optional[str]:
    """Return the first balanced top-level ``{...}`` span in ``text``, or None."""
    return next(iter_json_candidates(text), None)


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the first JSON object embedded in ``text``.

    Raises:
        MalformedResponse: no balanced span parses as a JSON object
    """
    if not text:
        raise MalformedResponse("Empty response from generation API")

    last_error = None
    for candidate in iter_json_candidates(text):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as e:
            last_error = e
            continue
        if isinstance(parsed, dict):
            return parsed

    if last_error is not None:
        raise MalformedResponse(f"JSON parsing failed: {last_error}") from last_error
    raise MalformedResponse("No valid JSON found in the response")
