"""
genesis/gemini_client.py
-----------------------------------------------------------------------------
Thin asynchronous wrapper around the Gemini ``generateContent`` REST API.

Why asynchronous?
-----------------
Generation requests are slow (tens of seconds when live search is enabled)
and the orchestrator coordinates them from a single event loop.  Using
``httpx.AsyncClient`` keeps the loop free to answer state and credential
requests while a generation is in flight.

Gemini generateContent reference
--------------------------------
POST {host}/v1beta/models/{model}:generateContent
Header: x-goog-api-key: <key>
{
    "contents":          [{"parts": [{"text": "<user prompt>"}]}],
    "systemInstruction": {"parts": [{"text": "<system prompt>"}]},
    "tools":             [{"google_search": {}}]
}

``tools`` enables live Google Search grounding so the model can look up
current package versions.  It is omitted when ``use_search`` is False.

Response:
{
    "candidates": [
        {"content": {"parts": [{"text": "<generated text>"}, ...]}, ...}
    ],
    "usageMetadata": {...}
}

Environment variables
---------------------
GEMINI_API_HOST – Base URL of the API (default:
                  https://generativelanguage.googleapis.com).
GEMINI_MODEL    – Default model id (default:
                  gemini-2.5-flash-preview-09-2025).
Both are read once at import time so the values are consistent for the
lifetime of the process.

Timeouts
--------
The transport owns the deadline.  The orchestrator imposes none of its own,
so ``_READ_TIMEOUT`` is the upper bound on how long a single generation can
take.
"""

from __future__ import annotations

import logging
import os

import httpx
from dotenv import load_dotenv

# Load .env if present (no-op if the file doesn't exist)
load_dotenv()

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------

# Strip any trailing slash so we can safely append paths.
GEMINI_HOST: str = os.getenv(
    "GEMINI_API_HOST", "https://generativelanguage.googleapis.com"
).rstrip("/")

DEFAULT_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-preview-09-2025")

_API_VERSION = "v1beta"

_CONNECT_TIMEOUT: float = 10.0

# Search-grounded blueprint generations routinely take 30–60 s.
_READ_TIMEOUT: float = 120.0


def _resolve_host(host: str | None) -> str:
    return (host or GEMINI_HOST).rstrip("/")


def _extract_text(data: dict) -> str:
    """
    Pull the generated text out of a ``generateContent`` response.

    All text parts of the first candidate are concatenated: search-grounded
    replies are sometimes split across several parts.

    Raises
    ------
    ValueError : If there is no candidate or it carries no text.
    """
    candidates = data.get("candidates") or []
    if not candidates:
        raise ValueError("Gemini response contains no candidates.")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
    if not text.strip():
        finish = candidates[0].get("finishReason", "unknown")
        raise ValueError(f"Gemini candidate has no text (finishReason: {finish}).")
    return text.strip()


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


async def gemini_generate(
    *,
    system_prompt: str,
    user_prompt: str,
    api_key: str,
    model: str | None = None,
    use_search: bool = True,
    host: str | None = None,
) -> str:
    """
    Call ``generateContent`` and return the generated text.

    Parameters
    ----------
    system_prompt : System instruction constraining the model's output.
    user_prompt   : The user turn (project idea, stack, reply rules).
    api_key       : Opaque Gemini API key, sent as ``x-goog-api-key``.
    model         : Model id; defaults to ``GEMINI_MODEL``.
    use_search    : Attach the Google Search grounding tool.
    host          : Optional API base URL overriding ``GEMINI_API_HOST``.

    Returns
    -------
    str : The raw model text, stripped of surrounding whitespace.

    Raises
    ------
    httpx.HTTPStatusError  : If the API returns a non-2xx response.
    httpx.TimeoutException : If the request times out.
    ValueError             : If the response carries no candidate text.
    """
    model_id = model or DEFAULT_MODEL
    url = f"{_resolve_host(host)}/{_API_VERSION}/models/{model_id}:generateContent"

    body: dict = {
        "contents": [{"parts": [{"text": user_prompt}]}],
        "systemInstruction": {"parts": [{"text": system_prompt}]},
    }
    if use_search:
        body["tools"] = [{"google_search": {}}]

    timeout = httpx.Timeout(connect=_CONNECT_TIMEOUT, read=_READ_TIMEOUT, write=10.0, pool=5.0)

    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(url, json=body, headers={"x-goog-api-key": api_key})
        # Raise for 4xx / 5xx so the caller can branch on the status code.
        response.raise_for_status()

    return _extract_text(response.json())


async def list_models(api_key: str, host: str | None = None) -> list[str]:
    """
    Return a sorted list of model ids that support ``generateContent``.

    Calls GET {host}/v1beta/models.  Any failure (bad key, network error,
    unexpected payload) is logged and an empty list is returned so callers
    can degrade gracefully.
    """
    url = f"{_resolve_host(host)}/{_API_VERSION}/models"
    timeout = httpx.Timeout(connect=3.0, read=10.0, write=3.0, pool=3.0)

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url, headers={"x-goog-api-key": api_key})
            response.raise_for_status()
        data = response.json()
        names = [
            m["name"].removeprefix("models/")
            for m in data.get("models", [])
            if "name" in m and "generateContent" in m.get("supportedGenerationMethods", [])
        ]
        return sorted(names)
    except Exception as exc:
        # An unreachable API must not break the settings surface.
        logger.warning("Failed to list Gemini models: %s: %s", type(exc).__name__, exc)
        return []
