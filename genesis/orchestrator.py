"""
genesis/orchestrator.py
-----------------------------------------------------------------------------
Two-phase generation workflow: stack suggestion, then blueprint generation.

State machine
-------------
::

    idle ──(no stack)──► suggesting ──► awaiting_stack_choice ──┐
      │                                                         │
      └──(stack given)──────────────► generating ◄──────────────┘
                                         │
                                 ready ◄─┴─► failed

- ``initialize`` decides the path: a blank stack triggers a suggestion
  request first; ``auto_select`` then carries straight on with the first
  suggestion.
- ``generate_blueprint`` discards any previous blueprint *before* the
  request is issued, so a failed generation never leaves a stale result
  looking current.
- ``failed`` keeps a human-readable ``last_error``.  It needs no reset: the
  next call simply starts over.  Any exception, domain or not, ends the
  call in ``failed`` before it propagates.

Concurrency
-----------
Only one model request may be in flight.  A call made while another is
running is rejected with ``GenerationInProgress`` and leaves the state
untouched; the running call settles the document alone.  The check and the
lock acquisition happen without an intervening ``await``, so on a single
event loop the rejection is exact.

The model call itself is injected (``generate_text``) so the workflow can be
exercised without network access.  No request is retried.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum

import httpx

from genesis.credential_store import CredentialStore
from genesis.errors import (
    CredentialRequired,
    EmptyResponse,
    GenerationInProgress,
    GenesisError,
    MissingIdea,
    UpstreamError,
)
from genesis.file_loaders import load_blueprint_prompt, load_stack_prompt
from genesis.gemini_client import gemini_generate
from genesis.project_tree import ProjectTree
from genesis.response_normalizer import (
    ExtractionStrategy,
    parse_blueprint,
    parse_stack_options,
)
from genesis.schema import Blueprint, OrchestratorState, StackOption

logger = logging.getLogger(__name__)

GenerateText = Callable[..., Awaitable[str]]

_AUTH_STATUSES = frozenset({401, 403})


class WorkflowState(str, Enum):
    IDLE = "idle"
    SUGGESTING = "suggesting"
    AWAITING_STACK_CHOICE = "awaiting_stack_choice"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


def build_stack_user_prompt(idea: str) -> str:
    return (
        f"Project Idea: {idea}. Find the absolute latest trending stacks. "
        "Reply with JSON only."
    )


def build_blueprint_user_prompt(idea: str, tech_stack: str) -> str:
    return (
        f"Project Idea: {idea}. Tech Stack: {tech_stack}. "
        "Search for latest versions and generate boilerplate. Reply with JSON only."
    )


class GenerationOrchestrator:
    """
    Owns the single "current document" slot and the workflow around it.

    Parameters
    ----------
    credentials   : Store holding the API key sent with every request.
    generate_text : Async callable with the ``gemini_generate`` keyword
                    signature.  Defaults to the real Gemini client.
    extraction    : Final normaliser stage strategy (``"greedy"`` or
                    ``"balanced"``).
    use_search    : Ask the model to ground answers with live search.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        generate_text: GenerateText = gemini_generate,
        *,
        extraction: ExtractionStrategy = "greedy",
        use_search: bool = True,
    ) -> None:
        self._credentials = credentials
        self._generate_text = generate_text
        self._extraction: ExtractionStrategy = extraction
        self._use_search = use_search
        self._lock = asyncio.Lock()

        self.state = WorkflowState.IDLE
        self.idea = ""
        self.tech_stack: str | None = None
        self.stack_options: list[StackOption] = []
        self.selected_stack: str | None = None
        self.blueprint: Blueprint | None = None
        self.tree: ProjectTree | None = None
        self.last_error: str | None = None
        self.credential_prompt = False

    # -- Public view --------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def snapshot(self) -> OrchestratorState:
        return OrchestratorState(
            state=self.state.value,
            busy=self.busy,
            idea=self.idea,
            tech_stack=self.tech_stack,
            stack_options=list(self.stack_options),
            selected_stack=self.selected_stack,
            blueprint=self.blueprint,
            last_error=self.last_error,
            credential_prompt=self.credential_prompt,
        )

    def dismiss_credential_prompt(self) -> None:
        self.credential_prompt = False

    # -- Workflow entry points ---------------------------------------------

    async def initialize(
        self,
        idea: str,
        tech_stack: str | None = None,
        *,
        auto_select: bool = False,
    ) -> OrchestratorState:
        """
        Start a generation from user intent.

        With a non-blank ``tech_stack`` the blueprint is generated directly.
        Otherwise stack suggestions are requested; with ``auto_select`` the
        first suggestion is used to continue into blueprint generation.

        Raises
        ------
        GenerationInProgress : Another request is in flight.
        CredentialRequired   : No key configured, or the key was rejected.
        MissingIdea          : ``idea`` is blank.
        GenesisError         : Any other upstream or parsing failure.
        """
        async with self._exclusive(), self._recording_failures():
            api_key = self._require_credential()
            idea = self._require_idea(idea)

            if tech_stack and tech_stack.strip():
                await self._generate(api_key, idea, tech_stack.strip())
            else:
                await self._suggest(api_key, idea)
                if auto_select and self.stack_options:
                    await self._generate(api_key, idea, self.stack_options[0].stack)

        return self.snapshot()

    async def suggest_stacks(self, idea: str) -> OrchestratorState:
        """Run only the stack-suggestion phase."""
        async with self._exclusive(), self._recording_failures():
            api_key = self._require_credential()
            await self._suggest(api_key, self._require_idea(idea))
        return self.snapshot()

    async def generate_blueprint(self, tech_stack: str, idea: str | None = None) -> OrchestratorState:
        """
        Run the blueprint phase with a concrete stack.

        ``idea`` defaults to the idea of the previous call, which is how a
        stack chosen from the suggestion list is turned into a blueprint.
        """
        async with self._exclusive(), self._recording_failures():
            api_key = self._require_credential()
            idea = self._require_idea(idea if idea is not None else self.idea)
            await self._generate(api_key, idea, tech_stack.strip())
        return self.snapshot()

    # -- Guards -------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._lock.locked():
            logger.info("Rejected generation request: another one is in flight.")
            raise GenerationInProgress()
        async with self._lock:
            yield

    @contextlib.asynccontextmanager
    async def _recording_failures(self) -> AsyncIterator[None]:
        try:
            yield
        except GenesisError as exc:
            self.state = WorkflowState.FAILED
            self.last_error = str(exc)
            if isinstance(exc, CredentialRequired):
                self.credential_prompt = True
            logger.warning("Generation failed: %s: %s", type(exc).__name__, exc)
            raise
        except Exception as exc:
            # Outside the domain taxonomy; the workflow must still settle.
            self.state = WorkflowState.FAILED
            self.last_error = f"Unexpected error: {exc}" if str(exc) else type(exc).__name__
            logger.exception("Generation failed unexpectedly.")
            raise

    def _require_credential(self) -> str:
        api_key = self._credentials.get()
        if not api_key:
            raise CredentialRequired()
        return api_key

    @staticmethod
    def _require_idea(idea: str) -> str:
        idea = (idea or "").strip()
        if not idea:
            raise MissingIdea()
        return idea

    # -- Phases ---------------------------------------------------------------

    async def _suggest(self, api_key: str, idea: str) -> None:
        self.state = WorkflowState.SUGGESTING
        self.idea = idea
        self.stack_options = []
        self.selected_stack = None
        self.last_error = None

        text = await self._ask(
            system_prompt=load_stack_prompt(),
            user_prompt=build_stack_user_prompt(idea),
            api_key=api_key,
        )
        options = parse_stack_options(text, extraction=self._extraction)

        self.stack_options = options
        self.selected_stack = options[0].stack if options else None
        self.state = WorkflowState.AWAITING_STACK_CHOICE
        logger.info("Received %d stack suggestions.", len(options))

    async def _generate(self, api_key: str, idea: str, tech_stack: str) -> None:
        self.state = WorkflowState.GENERATING
        self.idea = idea
        self.blueprint = None
        self.tree = None
        self.last_error = None

        text = await self._ask(
            system_prompt=load_blueprint_prompt(),
            user_prompt=build_blueprint_user_prompt(idea, tech_stack),
            api_key=api_key,
        )
        blueprint = parse_blueprint(text, extraction=self._extraction)
        tree = ProjectTree(blueprint.file_structure)

        self.blueprint = blueprint
        self.tree = tree
        self.tech_stack = tech_stack
        self.selected_stack = tech_stack
        self.credential_prompt = False
        self.state = WorkflowState.READY
        logger.info(
            "Blueprint '%s' ready: %d files in %d folders.",
            blueprint.project_name,
            tree.file_count,
            tree.folder_count,
        )

    async def _ask(self, *, system_prompt: str, user_prompt: str, api_key: str) -> str:
        """Issue one model request, translating transport errors."""
        try:
            return await self._generate_text(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                api_key=api_key,
                use_search=self._use_search,
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in _AUTH_STATUSES:
                raise CredentialRequired(
                    "Authentication failed. Please verify your API key in settings."
                ) from exc
            raise UpstreamError(status, exc.response.text[:200]) from exc
        except httpx.TimeoutException as exc:
            raise UpstreamError(None, "the request timed out") from exc
        except httpx.RequestError as exc:
            raise UpstreamError(None, f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise EmptyResponse(f"Received empty response from the model: {exc}") from exc
