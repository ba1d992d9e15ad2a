"""
genesis/file_loaders.py
-----------------------------------------------------------------------------
Prompt-loading utilities for the Genesis blueprint service.

System prompts live as plain text files in ``genesis/prompts/``.  Keeping
them out of the Python source means they can be tuned (and diffed) without
touching the orchestrator, and the API can expose them as a read-only
prompt library.

All path resolution is relative to this file's parent directory
(``genesis/``), so the loaders work regardless of the working directory from
which uvicorn is launched.

Exports
-------
load_stack_prompt() -> str
    System prompt for the stack-suggestion phase.

load_blueprint_prompt() -> str
    System prompt for the blueprint-generation phase.

load_prompt(name) -> str
    Load any named prompt text file.

list_prompt_names() -> list[str]
    Return sorted stems of all ``.txt`` files in ``genesis/prompts/``.

Dependencies
------------
Uses ``fastapi.HTTPException`` for error signalling so that route handlers
in ``main.py`` get properly formatted HTTP error responses without extra
try/except boilerplate.
"""

from __future__ import annotations

from pathlib import Path

from fastapi import HTTPException

_HERE = Path(__file__).parent
PROMPTS_DIR = _HERE / "prompts"

STACK_PROMPT_NAME = "stack_suggestion"
BLUEPRINT_PROMPT_NAME = "blueprint"


def _load_required(name: str) -> str:
    path = PROMPTS_DIR / f"{name}.txt"
    if not path.exists():
        raise HTTPException(
            status_code=500,
            detail=f"Required system prompt not found at {path}",
        )
    return path.read_text(encoding="utf-8").strip()


def load_stack_prompt() -> str:
    """
    Read the stack-suggestion system prompt.

    Raises
    ------
    HTTPException(500)
        If the file is missing (indicates a broken deployment).
    """
    return _load_required(STACK_PROMPT_NAME)


def load_blueprint_prompt() -> str:
    """
    Read the blueprint-generation system prompt.

    Raises
    ------
    HTTPException(500)
        If the file is missing (indicates a broken deployment).
    """
    return _load_required(BLUEPRINT_PROMPT_NAME)


def load_prompt(name: str) -> str:
    """
    Load a named prompt text file from ``genesis/prompts/``.

    Parameters
    ----------
    name : Bare filename without extension (e.g. ``"blueprint"``).

    Returns
    -------
    str : The prompt text content, stripped of surrounding whitespace.

    Raises
    ------
    HTTPException(404)
        If the file doesn't exist.
    """
    path = PROMPTS_DIR / f"{name}.txt"
    if not path.exists():
        raise HTTPException(status_code=404, detail=f"Prompt '{name}' not found.")
    return path.read_text(encoding="utf-8").strip()


def list_prompt_names() -> list[str]:
    """Return sorted prompt name stems (without ``.txt``)."""
    return sorted(p.stem for p in PROMPTS_DIR.glob("*.txt"))
