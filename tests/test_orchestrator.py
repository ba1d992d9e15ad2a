"""
Tests for genesis/orchestrator.py – the stack / blueprint workflow.

The model is replaced by the scripted ``FakeModel`` from conftest, so every
test is deterministic and offline.  Coroutines are driven with
``asyncio.run``.
"""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import httpx
import pytest
from fastapi import HTTPException

from genesis.credential_store import CredentialStore
from genesis.errors import (
    CredentialRequired,
    EmptyResponse,
    GenerationInProgress,
    MalformedBlueprint,
    MissingIdea,
    UnparsableResponse,
    UpstreamError,
)
from genesis.orchestrator import (
    GenerationOrchestrator,
    WorkflowState,
    build_blueprint_user_prompt,
    build_stack_user_prompt,
)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://gemini.test/v1beta/models/m:generateContent")
    response = httpx.Response(status, text="upstream says no", request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


# ── Credential gate ──────────────────────────────────────────────────────────


class TestCredentialGate:
    def test_no_credential_no_request(self, empty_store: CredentialStore, make_model) -> None:
        model = make_model()
        orch = GenerationOrchestrator(empty_store, model)

        with pytest.raises(CredentialRequired):
            asyncio.run(orch.initialize("todo app", "Django"))

        assert model.calls == []
        assert orch.state is WorkflowState.FAILED
        assert orch.credential_prompt is True
        assert orch.last_error

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_rejection(self, credential_store: CredentialStore, make_model, status) -> None:
        orch = GenerationOrchestrator(credential_store, make_model(_status_error(status)))

        with pytest.raises(CredentialRequired, match="Authentication failed"):
            asyncio.run(orch.initialize("todo app", "Django"))

        assert orch.state is WorkflowState.FAILED
        assert orch.credential_prompt is True

    def test_dismiss_credential_prompt(self, empty_store: CredentialStore, make_model) -> None:
        orch = GenerationOrchestrator(empty_store, make_model())
        with pytest.raises(CredentialRequired):
            asyncio.run(orch.suggest_stacks("x"))
        orch.dismiss_credential_prompt()
        assert orch.credential_prompt is False

    def test_key_sent_with_request(
        self, credential_store: CredentialStore, make_model, sample_blueprint_text: str
    ) -> None:
        model = make_model(sample_blueprint_text)
        orch = GenerationOrchestrator(credential_store, model)
        asyncio.run(orch.initialize("todo app", "Django"))
        assert model.calls[0]["api_key"] == "test-key-123"


# ── Flow selection ───────────────────────────────────────────────────────────


class TestInitialize:
    def test_blank_idea(self, credential_store: CredentialStore, make_model) -> None:
        model = make_model()
        orch = GenerationOrchestrator(credential_store, model)
        with pytest.raises(MissingIdea):
            asyncio.run(orch.initialize("   ", "Django"))
        assert model.calls == []
        assert orch.state is WorkflowState.FAILED

    def test_stack_given_goes_straight_to_blueprint(
        self, credential_store: CredentialStore, make_model, sample_blueprint_text: str
    ) -> None:
        model = make_model(sample_blueprint_text)
        orch = GenerationOrchestrator(credential_store, model)

        snapshot = asyncio.run(orch.initialize("todo app", "  Next.js, Tailwind  "))

        assert len(model.calls) == 1
        assert model.calls[0]["user_prompt"] == build_blueprint_user_prompt(
            "todo app", "Next.js, Tailwind"
        )
        assert "fileStructure" in model.calls[0]["system_prompt"]
        assert model.calls[0]["use_search"] is True
        assert snapshot.state == "ready"
        assert snapshot.tech_stack == "Next.js, Tailwind"
        assert snapshot.blueprint.project_name == "Task Pilot"
        assert orch.tree.file_count == 3

    def test_blank_stack_suggests(
        self, credential_store: CredentialStore, make_model, stack_options_text: str
    ) -> None:
        model = make_model(stack_options_text)
        orch = GenerationOrchestrator(credential_store, model)

        snapshot = asyncio.run(orch.initialize("todo app", "  "))

        assert model.calls[0]["user_prompt"] == build_stack_user_prompt("todo app")
        assert snapshot.state == "awaiting_stack_choice"
        assert [o.name for o in snapshot.stack_options] == ["Speedster", "Classic", "Edge"]
        assert snapshot.selected_stack == "Next.js, Supabase"
        assert snapshot.blueprint is None

    def test_auto_select_uses_first_option(
        self,
        credential_store: CredentialStore,
        make_model,
        stack_options_text: str,
        sample_blueprint_text: str,
    ) -> None:
        model = make_model(stack_options_text, sample_blueprint_text)
        orch = GenerationOrchestrator(credential_store, model)

        snapshot = asyncio.run(orch.initialize("todo app", None, auto_select=True))

        assert len(model.calls) == 2
        assert "Tech Stack: Next.js, Supabase." in model.calls[1]["user_prompt"]
        assert snapshot.state == "ready"

    def test_auto_select_with_no_options_stops(
        self, credential_store: CredentialStore, make_model
    ) -> None:
        model = make_model("[]")
        orch = GenerationOrchestrator(credential_store, model)
        snapshot = asyncio.run(orch.initialize("todo app", auto_select=True))
        assert len(model.calls) == 1
        assert snapshot.state == "awaiting_stack_choice"
        assert snapshot.selected_stack is None

    def test_chosen_stack_reuses_idea(
        self,
        credential_store: CredentialStore,
        make_model,
        stack_options_text: str,
        sample_blueprint_text: str,
    ) -> None:
        model = make_model(stack_options_text, sample_blueprint_text)
        orch = GenerationOrchestrator(credential_store, model)

        asyncio.run(orch.suggest_stacks("todo app"))
        snapshot = asyncio.run(orch.generate_blueprint("Django, Postgres"))

        assert model.calls[1]["user_prompt"] == build_blueprint_user_prompt(
            "todo app", "Django, Postgres"
        )
        assert snapshot.state == "ready"
        assert snapshot.selected_stack == "Django, Postgres"


# ── Failures ─────────────────────────────────────────────────────────────────


class TestFailures:
    def test_upstream_status(self, credential_store: CredentialStore, make_model) -> None:
        orch = GenerationOrchestrator(credential_store, make_model(_status_error(500)))
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(orch.initialize("x", "Go"))
        assert exc_info.value.status == 500
        assert orch.last_error.startswith("API Error: 500")
        assert orch.credential_prompt is False

    def test_timeout(self, credential_store: CredentialStore, make_model) -> None:
        request = httpx.Request("POST", "http://gemini.test")
        orch = GenerationOrchestrator(
            credential_store, make_model(httpx.ReadTimeout("slow", request=request))
        )
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(orch.initialize("x", "Go"))
        assert exc_info.value.status is None
        assert "timed out" in orch.last_error

    def test_connect_error(self, credential_store: CredentialStore, make_model) -> None:
        request = httpx.Request("POST", "http://gemini.test")
        orch = GenerationOrchestrator(
            credential_store, make_model(httpx.ConnectError("refused", request=request))
        )
        with pytest.raises(UpstreamError, match="ConnectError"):
            asyncio.run(orch.initialize("x", "Go"))

    def test_model_without_text(self, credential_store: CredentialStore, make_model) -> None:
        orch = GenerationOrchestrator(credential_store, make_model(ValueError("no candidates")))
        with pytest.raises(EmptyResponse):
            asyncio.run(orch.initialize("x", "Go"))

    def test_unparsable_reply(self, credential_store: CredentialStore, make_model) -> None:
        orch = GenerationOrchestrator(credential_store, make_model("I refuse."))
        with pytest.raises(UnparsableResponse):
            asyncio.run(orch.initialize("x", "Go"))
        assert orch.state is WorkflowState.FAILED

    def test_missing_file_structure(self, credential_store: CredentialStore, make_model) -> None:
        orch = GenerationOrchestrator(credential_store, make_model('{"projectName": "X"}'))
        with pytest.raises(MalformedBlueprint):
            asyncio.run(orch.initialize("x", "Go"))
        assert orch.blueprint is None
        assert orch.last_error == "Blueprint is missing the 'fileStructure' field."

    def test_deeply_nested_reply_fails_cleanly(
        self, credential_store: CredentialStore, make_model
    ) -> None:
        text = '{"fileStructure": ' + "[" * 100_000 + "]" * 100_000 + "}"
        orch = GenerationOrchestrator(credential_store, make_model(text))
        with pytest.raises(UnparsableResponse):
            asyncio.run(orch.initialize("x", "Go"))
        assert orch.state is WorkflowState.FAILED
        assert orch.last_error == "Extracted data was not valid JSON."
        assert not orch.busy

    def test_unexpected_error_still_settles(
        self, credential_store: CredentialStore, make_model
    ) -> None:
        orch = GenerationOrchestrator(credential_store, make_model(RuntimeError("boom")))
        with pytest.raises(RuntimeError):
            asyncio.run(orch.initialize("x", "Go"))
        assert orch.state is WorkflowState.FAILED
        assert orch.last_error == "Unexpected error: boom"
        assert orch.credential_prompt is False
        assert not orch.busy

    def test_missing_prompt_file_settles(
        self, credential_store: CredentialStore, make_model, tmp_path
    ) -> None:
        model = make_model()
        orch = GenerationOrchestrator(credential_store, model)
        with patch("genesis.file_loaders.PROMPTS_DIR", tmp_path):
            with pytest.raises(HTTPException):
                asyncio.run(orch.initialize("x", "Go"))
        assert model.calls == []
        assert orch.state is WorkflowState.FAILED
        assert "Required system prompt not found" in orch.last_error

    def test_failed_generation_discards_previous_blueprint(
        self, credential_store: CredentialStore, make_model, sample_blueprint_text: str
    ) -> None:
        orch = GenerationOrchestrator(
            credential_store, make_model(sample_blueprint_text, _status_error(502))
        )
        asyncio.run(orch.initialize("x", "Go"))
        assert orch.blueprint is not None

        with pytest.raises(UpstreamError):
            asyncio.run(orch.initialize("x", "Go"))
        assert orch.blueprint is None
        assert orch.tree is None

    def test_recovery_after_failure(
        self, credential_store: CredentialStore, make_model, sample_blueprint_text: str
    ) -> None:
        orch = GenerationOrchestrator(
            credential_store, make_model("garbage", sample_blueprint_text)
        )
        with pytest.raises(UnparsableResponse):
            asyncio.run(orch.initialize("x", "Go"))

        snapshot = asyncio.run(orch.initialize("x", "Go"))
        assert snapshot.state == "ready"
        assert snapshot.last_error is None

    def test_new_error_replaces_old(self, credential_store: CredentialStore, make_model) -> None:
        orch = GenerationOrchestrator(
            credential_store, make_model("garbage", _status_error(500))
        )
        with pytest.raises(UnparsableResponse):
            asyncio.run(orch.initialize("x", "Go"))
        first = orch.last_error
        with pytest.raises(UpstreamError):
            asyncio.run(orch.initialize("x", "Go"))
        assert orch.last_error != first
        assert "500" in orch.last_error


# ── Concurrency ──────────────────────────────────────────────────────────────


class _GatedModel:
    """A model whose first reply waits until the test releases it."""

    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls = 0
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, **kwargs) -> str:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.reply


class TestConcurrency:
    def test_second_generation_rejected_while_in_flight(
        self, credential_store: CredentialStore, sample_blueprint_text: str
    ) -> None:
        async def scenario():
            model = _GatedModel(sample_blueprint_text)
            orch = GenerationOrchestrator(credential_store, model)

            first = asyncio.create_task(orch.initialize("first idea", "Go"))
            await model.started.wait()
            assert orch.busy
            assert orch.snapshot().busy

            with pytest.raises(GenerationInProgress):
                await orch.initialize("second idea", "Rust")
            # The rejected call leaves the in-flight state alone.
            assert orch.state is WorkflowState.GENERATING
            assert orch.last_error is None

            model.release.set()
            snapshot = await first
            return model, orch, snapshot

        model, orch, snapshot = asyncio.run(scenario())

        assert model.calls == 1
        assert snapshot.state == "ready"
        assert snapshot.idea == "first idea"
        assert snapshot.tech_stack == "Go"
        assert not orch.busy

    def test_sequential_generations_replace_document(
        self, credential_store: CredentialStore, make_model, sample_blueprint_dict: dict
    ) -> None:
        import json

        second = dict(sample_blueprint_dict, projectName="Second")
        orch = GenerationOrchestrator(
            credential_store,
            make_model(json.dumps(sample_blueprint_dict), json.dumps(second)),
        )
        asyncio.run(orch.initialize("x", "Go"))
        asyncio.run(orch.initialize("x", "Go"))
        assert orch.blueprint.project_name == "Second"
