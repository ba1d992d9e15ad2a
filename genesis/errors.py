"""
genesis/errors.py
-----------------------------------------------------------------------------
Exception taxonomy for the Genesis blueprint service.

Domain modules (normaliser, orchestrator, exporter) raise these; the route
handlers in ``main.py`` translate them into ``HTTPException`` responses.
None of them are fatal to the process: after any failure the service keeps
serving and a fresh, user-initiated attempt may succeed.

Hierarchy
---------
GenesisError
├── EmptyResponse         – the model replied with nothing usable
├── UnparsableResponse    – no JSON document could be recovered
├── MalformedBlueprint    – JSON recovered but the blueprint shape is wrong
├── CredentialRequired    – no API key, or the upstream rejected it
├── UpstreamError         – any other failed call to the model API
├── ExportFailure         – the zip archive could not be produced
├── MissingIdea           – generation requested with a blank idea
└── GenerationInProgress  – a second generation while one is in flight
"""

from __future__ import annotations


class GenesisError(Exception):
    """Base class for every error the service reports to its callers."""


class EmptyResponse(GenesisError):
    def __init__(self, message: str = "Received empty response from the model.") -> None:
        super().__init__(message)


class UnparsableResponse(GenesisError):
    """
    No structured document could be recovered from the model text.

    ``fragment`` carries the substring the last extraction stage tried to
    parse, when there was one, so the failure can be diagnosed from logs.
    """

    def __init__(self, message: str, fragment: str | None = None) -> None:
        super().__init__(message)
        self.fragment = fragment


class MalformedBlueprint(GenesisError):
    pass


class CredentialRequired(GenesisError):
    def __init__(
        self,
        message: str = "API key required. Configure a credential before generating.",
    ) -> None:
        super().__init__(message)


class UpstreamError(GenesisError):
    """A non-success reply (or transport failure) from the model API."""

    def __init__(self, status: int | None, detail: str = "") -> None:
        if status is None:
            message = f"Model API request failed: {detail}" if detail else "Model API request failed."
        else:
            message = f"API Error: {status}"
            if detail:
                message = f"{message} – {detail}"
        super().__init__(message)
        self.status = status
        self.detail = detail


class ExportFailure(GenesisError):
    pass


class MissingIdea(GenesisError):
    def __init__(self, message: str = "A project idea is required before generating.") -> None:
        super().__init__(message)


class GenerationInProgress(GenesisError):
    def __init__(
        self,
        message: str = "A generation is already in progress. Wait for it to finish.",
    ) -> None:
        super().__init__(message)
