"""Shared fixtures for the Genesis test suite."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from genesis import main
from genesis.credential_store import CredentialStore
from genesis.orchestrator import GenerationOrchestrator


class FakeModel:
    """
    Scripted stand-in for ``gemini_generate``.

    Each call pops the next reply; a reply that is an exception instance is
    raised instead of returned.  Every call's keyword arguments are kept in
    ``calls`` for inspection.
    """

    def __init__(self, *replies: str | BaseException) -> None:
        self.replies = list(replies)
        self.calls: list[dict] = []

    async def __call__(self, **kwargs) -> str:
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture(autouse=True)
def _no_env_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """A developer's real GEMINI_API_KEY must never leak into tests."""
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)


@pytest.fixture()
def make_model() -> type[FakeModel]:
    return FakeModel


@pytest.fixture()
def credential_store(tmp_path: Path) -> CredentialStore:
    """A store holding a test key, persisted under tmp_path."""
    store = CredentialStore(tmp_path / "api_key")
    store.set("test-key-123")
    return store


@pytest.fixture()
def empty_store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "missing_key")


@pytest.fixture()
def sample_blueprint_dict() -> dict:
    """A minimal but complete blueprint document in wire (camelCase) shape."""
    return {
        "projectName": "Task Pilot",
        "tagline": "A tiny task tracker.",
        "difficulty": "Beginner",
        "versions": {"next": "15.0.3", "tailwindcss": "3.4.14"},
        "fileStructure": [
            {
                "name": "src",
                "type": "folder",
                "children": [
                    {"name": "page.tsx", "type": "file", "content": "export default 1;"},
                    {
                        "name": "lib",
                        "type": "folder",
                        "children": [{"name": "db.ts", "type": "file", "content": "// db"}],
                    },
                ],
            },
            {"name": "package.json", "type": "file", "content": '{"name": "task-pilot"}'},
        ],
        "steps": [
            {"title": "Install", "description": "Install deps.", "codeSnippet": "npm install"},
            {"title": "Run", "description": "Start the dev server."},
        ],
        "mentorAdvice": "Ship small, ship often.",
    }


@pytest.fixture()
def sample_blueprint_text(sample_blueprint_dict: dict) -> str:
    return json.dumps(sample_blueprint_dict)


@pytest.fixture()
def stack_options_text() -> str:
    return json.dumps(
        [
            {"name": "Speedster", "description": "Ship fast.", "stack": "Next.js, Supabase"},
            {"name": "Classic", "description": "Boring tech.", "stack": "Django, Postgres"},
            {"name": "Edge", "description": "Global.", "stack": "Remix, Cloudflare D1"},
        ]
    )


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch, credential_store: CredentialStore) -> TestClient:
    """
    FastAPI test client wired to a tmp credential store.

    The orchestrator has no model attached; tests that generate install
    their own via ``install_model``.
    """
    monkeypatch.setattr(main, "credentials", credential_store)
    monkeypatch.setattr(
        main, "orchestrator", GenerationOrchestrator(credential_store, FakeModel())
    )
    return TestClient(main.app)


@pytest.fixture()
def install_model(client: TestClient, monkeypatch: pytest.MonkeyPatch):
    """Replace the app's orchestrator with one driven by the given replies."""

    def _install(*replies: str | BaseException) -> FakeModel:
        model = FakeModel(*replies)
        monkeypatch.setattr(
            main, "orchestrator", GenerationOrchestrator(main.credentials, model)
        )
        return model

    return _install
