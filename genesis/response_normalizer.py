"""
genesis/response_normalizer.py
-----------------------------------------------------------------------------
Recover a structured JSON document from raw model text.

Why staged fallbacks?
---------------------
The system prompt asks the model for "JSON only", but nothing enforces it.
In practice replies arrive in three recurring shapes, and each stage below
targets exactly one of them:

1. **Strict parse** – the model obeyed; the text is the JSON document.
2. **Fence stripping** – the JSON is wrapped in Markdown code fences
   (```` ```json … ``` ````).  Every fence marker is removed, wherever it
   appears, and the remainder is parsed.
3. **Span extraction** – the JSON is surrounded by conversational prose
   ("Sure! Here is the plan: … Hope that helps!").  The span from the first
   opening brace/bracket to the *last* matching closing brace/bracket is
   parsed.

A stage only runs when the previous one failed.  The module is a pure
function of text → document: it performs no I/O and never retries.

Span extraction strategies
--------------------------
``"greedy"`` (default) reproduces the long-standing behaviour: the regex
``(\\{[\\s\\S]*\\}|\\[[\\s\\S]*\\])`` takes the largest span.  It is simple
but wrong when the text holds two independent JSON fragments, or trailing
prose that itself contains a closing brace.

``"balanced"`` is an opt-in replacement for stage 3 that walks the text with
a string/escape-aware bracket stack and returns the first complete,
parseable top-level value.  It changes which value is recovered for
multi-fragment replies, so callers must ask for it explicitly.

Typed wrappers
--------------
``parse_stack_options`` and ``parse_blueprint`` validate the recovered value
against the two document shapes the workflow issues requests for.  The shape
is implied by which request was made; the payload carries no discriminant.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Literal

from pydantic import ValidationError

from genesis.errors import EmptyResponse, MalformedBlueprint, UnparsableResponse
from genesis.schema import Blueprint, StackOption

logger = logging.getLogger(__name__)

ExtractionStrategy = Literal["greedy", "balanced"]

# Both the language-tagged opening fence and the bare fence are removed
# anywhere in the text, not just at its boundaries.
_FENCE_TAGGED = "```json"
_FENCE_BARE = "```"

# First "{" to last "}" or first "[" to last "]", across newlines.
_GREEDY_SPAN = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")

_CLOSERS = {"{": "}", "[": "]"}

# How much raw text to include in warning logs.
_PREVIEW_CHARS = 200


# -----------------------------------------------------------------------------
# Stage helpers
# -----------------------------------------------------------------------------


def _strict_parse(text: str) -> dict | list | None:
    """Return the parsed object/array, or None if ``text`` is not one."""
    try:
        value = json.loads(text)
    except ValueError:
        return None
    except RecursionError:
        # Nesting deeper than the decoder can follow.
        logger.warning("JSON candidate nested too deeply to decode (%d chars).", len(text))
        return None
    # A bare string or number is valid JSON but not a document.
    if isinstance(value, (dict, list)):
        return value
    return None


def strip_fences(text: str) -> str:
    """Remove every Markdown code-fence marker and trim the result."""
    return text.replace(_FENCE_TAGGED, "").replace(_FENCE_BARE, "").strip()


def find_greedy_span(text: str) -> str | None:
    """
    Return the largest ``{…}`` or ``[…]`` span of ``text``, or None.

    The leftmost opening character that has *some* matching closer after it
    wins; at that position the object alternative is tried before the array
    alternative, and the span always runs to the last closer in the text.
    """
    match = _GREEDY_SPAN.search(text)
    return match.group(0) if match else None


def _balanced_end(text: str, start: int) -> int | None:
    """
    Return the index of the closer that balances ``text[start]``.

    Brackets inside JSON strings are ignored, and backslash escapes inside
    strings are honoured.  Returns None for mismatched or unterminated input.
    """
    stack: list[str] = []
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
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]"):
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return index
    return None


def find_balanced_value(text: str) -> tuple[dict | list | None, str | None]:
    """
    Scan ``text`` for the first balanced, parseable top-level JSON value.

    Returns
    -------
    tuple of:
      - the parsed value, or None if nothing parsed;
      - the last candidate substring that was tried (for diagnostics), or
        None if no balanced candidate existed at all.
    """
    last_candidate: str | None = None
    position = 0

    while True:
        starts = [i for i in (text.find("{", position), text.find("[", position)) if i != -1]
        if not starts:
            return None, last_candidate
        start = min(starts)
        end = _balanced_end(text, start)
        if end is not None:
            candidate = text[start : end + 1]
            last_candidate = candidate
            value = _strict_parse(candidate)
            if value is not None:
                return value, candidate
        position = start + 1


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def normalize(text: str | None, extraction: ExtractionStrategy = "greedy") -> dict | list:
    """
    Recover a JSON object or array from raw model text.

    Parameters
    ----------
    text       : The model's reply, untrusted.
    extraction : Strategy for the final stage – ``"greedy"`` (default) or
                 ``"balanced"``.

    Returns
    -------
    dict | list : The recovered document.

    Raises
    ------
    EmptyResponse      : ``text`` is None, empty or whitespace only.
    UnparsableResponse : No stage recovered a document.  When a candidate
                         substring was found but failed to parse, it is
                         attached as ``fragment``.
    """
    if text is None or not text.strip():
        raise EmptyResponse()

    value = _strict_parse(text)
    if value is not None:
        logger.debug("Model reply parsed verbatim (stage 1).")
        return value

    value = _strict_parse(strip_fences(text))
    if value is not None:
        logger.debug("Model reply parsed after fence stripping (stage 2).")
        return value

    if extraction == "balanced":
        value, fragment = find_balanced_value(text)
        if value is not None:
            logger.debug("Model reply parsed from balanced span (stage 3).")
            return value
    else:
        fragment = find_greedy_span(text)
        if fragment is not None:
            value = _strict_parse(fragment)
            if value is not None:
                logger.debug("Model reply parsed from greedy span (stage 3).")
                return value

    if fragment is not None:
        logger.warning("Extracted span is not valid JSON: %r", fragment[:_PREVIEW_CHARS])
        raise UnparsableResponse("Extracted data was not valid JSON.", fragment=fragment)

    logger.warning("No JSON found in model reply: %r", text[:_PREVIEW_CHARS])
    raise UnparsableResponse("The model returned unstructured data. Please try again.")


def parse_stack_options(
    text: str | None, extraction: ExtractionStrategy = "greedy"
) -> list[StackOption]:
    """
    Normalise a stack-suggestion reply into a list of ``StackOption``.

    Models occasionally wrap the array in an object (``{"stacks": [...]}``);
    an object whose only value is an array is unwrapped.  Any other object
    is rejected.  Entries that are not objects are skipped.
    """
    document = normalize(text, extraction=extraction)

    if isinstance(document, dict):
        values = list(document.values())
        if len(values) == 1 and isinstance(values[0], list):
            document = values[0]
        else:
            raise UnparsableResponse(
                "Stack suggestions must be a JSON array.",
                fragment=json.dumps(document)[:_PREVIEW_CHARS],
            )

    options: list[StackOption] = []
    for entry in document:
        if not isinstance(entry, dict):
            continue
        try:
            options.append(StackOption.model_validate(entry))
        except ValidationError as exc:
            logger.warning("Skipping invalid stack option %r: %s", entry, exc)
    return options


def validate_blueprint(document: Any) -> Blueprint:
    """
    Validate a recovered document as a ``Blueprint``.

    ``fileStructure`` must be present and be an array; every node and step
    must match its schema.

    Raises
    ------
    MalformedBlueprint : On any shape violation.
    """
    if not isinstance(document, dict):
        raise MalformedBlueprint("Blueprint must be a JSON object.")
    if "fileStructure" not in document:
        raise MalformedBlueprint("Blueprint is missing the 'fileStructure' field.")
    if not isinstance(document["fileStructure"], list):
        raise MalformedBlueprint("Blueprint 'fileStructure' must be an array.")

    try:
        return Blueprint.model_validate(document)
    except RecursionError as exc:
        raise MalformedBlueprint("Blueprint file tree is nested too deeply.") from exc
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise MalformedBlueprint(
            f"Blueprint is malformed at '{location}': {first['msg']}"
        ) from exc


def parse_blueprint(text: str | None, extraction: ExtractionStrategy = "greedy") -> Blueprint:
    """Normalise a blueprint reply and validate its shape."""
    return validate_blueprint(normalize(text, extraction=extraction))
