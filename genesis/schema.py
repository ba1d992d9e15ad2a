"""
genesis/schema.py
-----------------------------------------------------------------------------
Pydantic v2 models for the blueprint document and for every request /
response object in the Genesis API.

Design principles
-----------------
• Keep models thin – no business logic here beyond shape normalisation.
• Document models use the camelCase wire names the model prompt asks for
  (``projectName``, ``fileStructure``, ``codeSnippet`` …) as aliases.  Those
  names are load-bearing: the prompts, the normaliser and any stored
  blueprint all depend on them.  Python attributes stay snake_case.
• Document models are frozen.  A blueprint is replaced wholesale by the next
  generation; it is never edited in place.
• The model is an unreliable author, so coercions that cannot lose meaning
  (numbers → strings, object file content → pretty JSON) are applied
  silently instead of failing the whole blueprint.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_DOCUMENT_CONFIG = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

# -----------------------------------------------------------------------------
# Project tree
# -----------------------------------------------------------------------------


class TreeNode(BaseModel):
    """
    One entry of the generated project tree: a folder or a file.

    A ``file`` node never carries children and a ``folder`` node never
    carries content; the offending key is dropped on construction rather
    than rejected.  Sibling names are not required to be unique.
    """

    model_config = _DOCUMENT_CONFIG

    name: str = Field(..., description="File or folder name (may contain '/').")
    type: Literal["folder", "file"] = Field(..., description="Node kind.")
    children: tuple[TreeNode, ...] | None = Field(
        default=None,
        description="Child nodes in display order (folders only).",
    )
    content: str | None = Field(
        default=None,
        description="File body (files only).  Absent means an empty file.",
    )

    @model_validator(mode="before")
    @classmethod
    def drop_foreign_fields(cls, data: Any) -> Any:
        """Strip ``children`` from files and ``content`` from folders."""
        if not isinstance(data, dict):
            return data
        kind = data.get("type")
        if kind == "file" and "children" in data:
            return {k: v for k, v in data.items() if k != "children"}
        if kind == "folder" and "content" in data:
            return {k: v for k, v in data.items() if k != "content"}
        return data

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        # Checked on the stripped form, stored as given.
        if not v.strip():
            raise ValueError("node name must not be empty or whitespace")
        return v

    @field_validator("content", mode="before")
    @classmethod
    def coerce_content(cls, v: Any) -> Any:
        # Models regularly emit package.json bodies as nested objects.
        if isinstance(v, (dict, list)):
            return json.dumps(v, indent=2, ensure_ascii=False)
        if isinstance(v, (int, float, bool)):
            return str(v)
        return v

    @property
    def is_folder(self) -> bool:
        return self.type == "folder"


# -----------------------------------------------------------------------------
# Blueprint sections
# -----------------------------------------------------------------------------


class Step(BaseModel):
    """A numbered setup instruction.  Order within the blueprint matters."""

    model_config = _DOCUMENT_CONFIG

    title: str = ""
    description: str = ""
    code_snippet: str | None = Field(default=None, alias="codeSnippet")

    @field_validator("title", "description", mode="before")
    @classmethod
    def null_text_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class StackOption(BaseModel):
    """One suggested technology stack from the stack-suggestion phase."""

    model_config = _DOCUMENT_CONFIG

    name: str = ""
    description: str = ""
    stack: str = ""


class Blueprint(BaseModel):
    """
    The full result of one blueprint generation.

    Only ``fileStructure`` is mandatory; every other section degrades to an
    empty value so a terse model reply still produces a usable project.
    """

    model_config = _DOCUMENT_CONFIG

    project_name: str = Field(default="", alias="projectName")
    tagline: str = ""
    difficulty: str = ""
    versions: dict[str, str] = Field(
        default_factory=dict,
        description="Tool name → version string, in the order the model listed them.",
    )
    file_structure: tuple[TreeNode, ...] = Field(..., alias="fileStructure")
    steps: tuple[Step, ...] = ()
    mentor_advice: str = Field(default="", alias="mentorAdvice")

    @field_validator("project_name", "tagline", "difficulty", "mentor_advice", mode="before")
    @classmethod
    def null_text_to_empty(cls, v: Any) -> Any:
        # An explicit null means the same as an omitted section.
        return "" if v is None else v

    @field_validator("versions", mode="before")
    @classmethod
    def stringify_versions(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        return v

    @field_validator("steps", mode="before")
    @classmethod
    def steps_default(cls, v: Any) -> Any:
        return () if v is None else v

    def to_document(self) -> dict[str, Any]:
        """Serialise back to the camelCase wire shape, omitting absent fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# -----------------------------------------------------------------------------
# API request / response bodies
# -----------------------------------------------------------------------------


class InitializeRequest(BaseModel):
    """
    Body for ``POST /api/initialize``.

    When ``tech_stack`` is blank the orchestrator first asks the model for
    stack suggestions.  ``auto_select`` then continues straight into
    blueprint generation with the first suggestion.
    """

    idea: str = Field(default="", description="Free-text project idea.")
    tech_stack: str | None = Field(
        default=None,
        description="Comma-separated stack, e.g. 'Next.js, Tailwind, Supabase'.",
    )
    auto_select: bool = Field(
        default=False,
        description="Pick the first suggested stack without waiting for the user.",
    )


class StackRequest(BaseModel):
    """Body for ``POST /api/stacks``."""

    idea: str = Field(default="", description="Free-text project idea.")


class BlueprintRequest(BaseModel):
    """Body for ``POST /api/blueprint``."""

    idea: str = Field(default="", description="Free-text project idea.")
    tech_stack: str = Field(..., min_length=1, description="The concrete stack to build with.")


class CredentialRequest(BaseModel):
    """Body for ``PUT /api/credential``.  An empty key clears the stored one."""

    api_key: str = Field(default="", description="Opaque Gemini API key.")


class CredentialStatus(BaseModel):
    configured: bool


class ExportRequest(BaseModel):
    """Body for ``POST /api/export``: an arbitrary tree to zip."""

    project_name: str = Field(default="", description="Used to derive the download filename.")
    nodes: list[TreeNode] = Field(default_factory=list)


class OrchestratorState(BaseModel):
    """
    Public snapshot of the generation workflow.

    Fields
    ------
    state             – one of idle / suggesting / awaiting_stack_choice /
                        generating / ready / failed.
    busy              – True while a model request is in flight.
    stack_options     – suggestions from the last stack phase.
    selected_stack    – pre-selected (first) suggestion, or the stack used.
    blueprint         – the current blueprint, or None.
    last_error        – the most recent human-readable error, or None.
    credential_prompt – True when the credential settings should be shown.
    """

    state: str
    busy: bool = False
    idea: str = ""
    tech_stack: str | None = None
    stack_options: list[StackOption] = Field(default_factory=list)
    selected_stack: str | None = None
    blueprint: Blueprint | None = None
    last_error: str | None = None
    credential_prompt: bool = False
