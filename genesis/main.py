"""
genesis/main.py
-----------------------------------------------------------------------------
FastAPI application entrypoint for the Genesis blueprint service.

This module is a **thin routing layer**: each route handler delegates to a
domain module and translates domain errors into HTTP responses.  All
business logic lives in dedicated modules:

Domain modules
~~~~~~~~~~~~~~
- ``genesis.response_normalizer`` – staged JSON recovery from model text.
- ``genesis.project_tree``        – ordered tree traversal, lookup, rendering.
- ``genesis.archive_exporter``    – tree → zip bytes, download filename.
- ``genesis.orchestrator``        – stack / blueprint workflow state machine.
- ``genesis.gemini_client``       – async HTTP wrapper around Gemini.
- ``genesis.credential_store``    – persisted API key.
- ``genesis.file_loaders``        – system prompt files.
- ``genesis.schema``              – Pydantic v2 models.
- ``genesis.errors``              – exception taxonomy.

Run with:
    uvicorn genesis.main:app --reload --host 127.0.0.1 --port 8243

Endpoints
---------
GET  /api/health                     → liveness + version
GET  /api/state                      → workflow snapshot
GET  /api/credential                 → whether an API key is configured
PUT  /api/credential                 → store (or clear) the API key
GET  /api/models                     → Gemini models usable for generation
GET  /api/prompts                    → list of system prompt names
GET  /api/prompts/{name}             → a single system prompt as plain text
POST /api/initialize                 → idea (+ optional stack) → next workflow step
POST /api/stacks                     → stack suggestions for an idea
POST /api/blueprint                  → blueprint for an idea + concrete stack
GET  /api/blueprint                  → the current blueprint document
GET  /api/blueprint/tree             → the current file tree as plain text
GET  /api/blueprint/files/{path}     → one file's content
GET  /api/blueprint/export           → the current blueprint as a zip download
POST /api/export                     → any posted tree as a zip download

Error mapping
-------------
CredentialRequired → 401, MissingIdea → 400, GenerationInProgress → 409,
EmptyResponse / UnparsableResponse / MalformedBlueprint → 422,
UpstreamError → 502, ExportFailure → 500.
"""

from __future__ import annotations

import io
import tomllib
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from genesis.archive_exporter import archive_filename, export_archive
from genesis.credential_store import CredentialStore
from genesis.errors import (
    CredentialRequired,
    EmptyResponse,
    ExportFailure,
    GenerationInProgress,
    GenesisError,
    MalformedBlueprint,
    MissingIdea,
    UnparsableResponse,
    UpstreamError,
)
from genesis.file_loaders import list_prompt_names, load_prompt
from genesis.gemini_client import list_models
from genesis.orchestrator import GenerationOrchestrator
from genesis.schema import (
    BlueprintRequest,
    CredentialRequest,
    CredentialStatus,
    ExportRequest,
    InitializeRequest,
    OrchestratorState,
    StackRequest,
    TreeNode,
)

# -----------------------------------------------------------------------------
# Bootstrap
# -----------------------------------------------------------------------------

load_dotenv()

_HERE = Path(__file__).parent

# Read version from pyproject.toml (single source of truth).
_PYPROJECT = _HERE.parent / "pyproject.toml"
with open(_PYPROJECT, "rb") as _f:
    _APP_VERSION: str = tomllib.load(_f)["project"]["version"]

# Process-wide state: one credential, one current document.
credentials = CredentialStore()
orchestrator = GenerationOrchestrator(credentials)

_ERROR_STATUS: dict[type[GenesisError], int] = {
    CredentialRequired: 401,
    MissingIdea: 400,
    GenerationInProgress: 409,
    EmptyResponse: 422,
    UnparsableResponse: 422,
    MalformedBlueprint: 422,
    UpstreamError: 502,
    ExportFailure: 500,
}


def _http_error(exc: GenesisError) -> HTTPException:
    """Translate a domain error into the matching ``HTTPException``."""
    status = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)),
        500,
    )
    return HTTPException(status_code=status, detail=str(exc))


# -----------------------------------------------------------------------------
# FastAPI app
# -----------------------------------------------------------------------------

app = FastAPI(
    title="Genesis Blueprint Service",
    description=(
        "Turns a project idea into a validated starter-project blueprint "
        "(file tree, setup steps, advice) via Gemini, and exports it as a zip."
    ),
    version=_APP_VERSION,
)


@app.get("/api/health", summary="Liveness check")
def health() -> dict:
    return {"status": "ok", "version": _APP_VERSION}


@app.get(
    "/api/state",
    response_model=OrchestratorState,
    response_model_exclude_none=True,
    summary="Current workflow state",
)
def get_state() -> OrchestratorState:
    return orchestrator.snapshot()


# -----------------------------------------------------------------------------
# Credential + model settings
# -----------------------------------------------------------------------------


@app.get("/api/credential", response_model=CredentialStatus, summary="Is an API key set?")
def get_credential() -> CredentialStatus:
    """Report whether a key is configured.  The key itself is never returned."""
    return CredentialStatus(configured=credentials.is_configured)


@app.put("/api/credential", response_model=CredentialStatus, summary="Store the API key")
def put_credential(req: CredentialRequest) -> CredentialStatus:
    """
    Persist the API key.  An empty ``api_key`` clears the stored key.

    Raises
    ------
    HTTPException(500) if the credential file cannot be written.
    """
    try:
        credentials.set(req.api_key)
    except OSError as exc:
        raise HTTPException(
            status_code=500, detail=f"Failed to store credential: {exc}"
        ) from exc
    orchestrator.dismiss_credential_prompt()
    return CredentialStatus(configured=credentials.is_configured)


@app.get("/api/models", summary="List Gemini models usable for generation")
async def get_models(host: str | None = None) -> list[str]:
    """
    Return model ids supporting ``generateContent``.

    Returns an empty list when no key is configured or the API is
    unreachable, so the settings surface can still render.
    """
    api_key = credentials.get()
    if not api_key:
        return []
    return await list_models(api_key, host=host)


@app.get("/api/prompts", summary="List available system prompt names")
def list_prompts() -> list[str]:
    return list_prompt_names()


@app.get(
    "/api/prompts/{name}",
    response_class=PlainTextResponse,
    summary="Get a named system prompt",
)
def get_prompt(name: str) -> str:
    return load_prompt(name)


# -----------------------------------------------------------------------------
# Generation workflow
# -----------------------------------------------------------------------------


@app.post(
    "/api/initialize",
    response_model=OrchestratorState,
    response_model_exclude_none=True,
    summary="Start generation from an idea and optional stack",
)
async def initialize(req: InitializeRequest) -> OrchestratorState:
    """
    Entry point of the workflow.

    Without ``tech_stack`` the response carries ``stack_options`` and state
    ``awaiting_stack_choice`` (unless ``auto_select`` is set, in which case
    the first option is used and the blueprint is generated too).  With a
    stack the response carries the finished ``blueprint``.
    """
    try:
        return await orchestrator.initialize(
            req.idea, req.tech_stack, auto_select=req.auto_select
        )
    except GenesisError as exc:
        raise _http_error(exc) from exc


@app.post(
    "/api/stacks",
    response_model=OrchestratorState,
    response_model_exclude_none=True,
    summary="Suggest technology stacks for an idea",
)
async def suggest_stacks(req: StackRequest) -> OrchestratorState:
    try:
        return await orchestrator.suggest_stacks(req.idea)
    except GenesisError as exc:
        raise _http_error(exc) from exc


@app.post(
    "/api/blueprint",
    response_model=OrchestratorState,
    response_model_exclude_none=True,
    summary="Generate a blueprint for an idea and a concrete stack",
)
async def generate_blueprint(req: BlueprintRequest) -> OrchestratorState:
    """
    Generate the blueprint.  A blank ``idea`` reuses the idea from the
    preceding stack-suggestion call.
    """
    try:
        return await orchestrator.generate_blueprint(req.tech_stack, idea=req.idea or None)
    except GenesisError as exc:
        raise _http_error(exc) from exc


# -----------------------------------------------------------------------------
# Current blueprint views
# -----------------------------------------------------------------------------


def _require_blueprint():
    if orchestrator.blueprint is None or orchestrator.tree is None:
        raise HTTPException(status_code=404, detail="No blueprint has been generated yet.")
    return orchestrator.blueprint, orchestrator.tree


@app.get("/api/blueprint", summary="The current blueprint document")
def get_blueprint() -> JSONResponse:
    """Return the blueprint in its camelCase wire shape."""
    blueprint, _ = _require_blueprint()
    return JSONResponse(blueprint.to_document())


@app.get(
    "/api/blueprint/tree",
    response_class=PlainTextResponse,
    summary="The current file tree as indented text",
)
def get_blueprint_tree() -> str:
    _, tree = _require_blueprint()
    return tree.render()


@app.get(
    "/api/blueprint/files/{file_path:path}",
    response_class=PlainTextResponse,
    summary="Content of one file in the current blueprint",
)
def get_blueprint_file(file_path: str) -> str:
    """
    Return a file's content.  When sibling names repeat, the first match in
    depth-first order is returned.

    Raises
    ------
    HTTPException(404) if no node has that path.
    HTTPException(400) if the path names a folder.
    """
    _, tree = _require_blueprint()
    node = tree.find_by_path(file_path)
    if node is None:
        raise HTTPException(status_code=404, detail=f"No file at '{file_path}'.")
    if node.is_folder:
        raise HTTPException(status_code=400, detail=f"'{file_path}' is a folder.")
    return node.content or ""


# -----------------------------------------------------------------------------
# Archive export
# -----------------------------------------------------------------------------


def _zip_response(nodes: tuple[TreeNode, ...] | list[TreeNode], project_name: str) -> StreamingResponse:
    try:
        zip_bytes = export_archive(nodes)
    except ExportFailure as exc:
        raise _http_error(exc) from exc

    return StreamingResponse(
        io.BytesIO(zip_bytes),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{archive_filename(project_name)}"',
        },
    )


@app.get("/api/blueprint/export", summary="Download the current blueprint as a zip")
def export_blueprint() -> StreamingResponse:
    blueprint, _ = _require_blueprint()
    return _zip_response(blueprint.file_structure, blueprint.project_name)


@app.post("/api/export", summary="Download a posted tree as a zip")
def export_tree(req: ExportRequest) -> StreamingResponse:
    """Zip an arbitrary tree, e.g. a blueprint kept by the client."""
    return _zip_response(req.nodes, req.project_name)
