"""Closed set of agent decisions and a forgiving parser for model output."""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.type_adapter import TypeAdapter

from .structured import FileChangePlan, PatchInstruction


class DecisionModel(BaseModel):
    """Base model for decision payloads with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class ReadFilesInput(DecisionModel):
    paths: List[str] = Field(min_length=1)


class SearchRepoInput(DecisionModel):
    query: str = Field(min_length=1)


class WritePatchInput(DecisionModel):
    patch: str = Field(min_length=1)


class GeneratePatchInput(DecisionModel):
    instructions: List[PatchInstruction] = Field(min_length=1)
    write: bool = True


class ApplyPlanInput(DecisionModel):
    changes: List[FileChangePlan] = Field(min_length=1)
    write: bool = True


class RunCmdInput(DecisionModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    cmd: str = Field(min_length=1)
    args: List[str] = Field(default_factory=list)
    timeout_ms: Optional[int] = Field(default=None, alias="timeoutMs", gt=0)


class ReadFilesDecision(DecisionModel):
    action: Literal["read_files"]
    tool_input: ReadFilesInput
    rationale: Optional[str] = None


class SearchRepoDecision(DecisionModel):
    action: Literal["search_repo"]
    tool_input: SearchRepoInput
    rationale: Optional[str] = None


class WritePatchDecision(DecisionModel):
    action: Literal["write_patch"]
    tool_input: WritePatchInput
    rationale: Optional[str] = None


class GeneratePatchDecision(DecisionModel):
    action: Literal["generate_patch"]
    tool_input: GeneratePatchInput
    rationale: Optional[str] = None


class ApplyPlanDecision(DecisionModel):
    action: Literal["apply_plan"]
    tool_input: ApplyPlanInput
    rationale: Optional[str] = None


class RunCmdDecision(DecisionModel):
    action: Literal["run_cmd"]
    tool_input: RunCmdInput
    rationale: Optional[str] = None


class FinalAnswerDecision(DecisionModel):
    action: Literal["final_answer"]
    answer: Optional[str] = None
    rationale: Optional[str] = None


class InvalidDecision(DecisionModel):
    """Fallback for payloads that match no known decision shape."""

    action: Literal["invalid"] = "invalid"
    raw: Any = None
    error: str


Decision = Annotated[
    Union[
        ReadFilesDecision,
        SearchRepoDecision,
        WritePatchDecision,
        GeneratePatchDecision,
        ApplyPlanDecision,
        RunCmdDecision,
        FinalAnswerDecision,
    ],
    Field(discriminator="action"),
]

DECISION_ACTIONS = (
    "read_files",
    "search_repo",
    "write_patch",
    "generate_patch",
    "apply_plan",
    "run_cmd",
    "final_answer",
)

_DECISION_ADAPTER: TypeAdapter[Any] = TypeAdapter(Decision)


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    if not payload.startswith("```"):
        return payload
    fence_header_match = re.match(r"```(?:json)?", payload[:10], re.IGNORECASE)
    if not fence_header_match:
        return payload
    fence_end = payload.find("```", len(fence_header_match.group(0)))
    if fence_end == -1:
        return payload
    content_start = payload.find("\n", len(fence_header_match.group(0)))
    if content_start == -1:
        return payload
    return payload[content_start + 1 : fence_end].strip()


def _strip_trailing_commas(payload: str) -> str:
    """Remove trailing commas before closing braces/brackets."""
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _load_json(text: str) -> Any:
    candidate = _strip_code_fence(text.strip())
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return json.loads(_strip_trailing_commas(candidate))


def _summarise(error: ValidationError) -> str:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "decision"
        messages.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(messages)


def parse_decision(payload: Any) -> Decision | InvalidDecision:
    """Validate ``payload`` (mapping or JSON text) into a decision.

    Anything malformed or unknown becomes an :class:`InvalidDecision`; this
    function does not raise.
    """
    raw = payload
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = _load_json(payload)
        except json.JSONDecodeError as error:
            return InvalidDecision(raw=raw, error=f"Decision is not valid JSON: {error}")

    if isinstance(payload, dict) and payload.get("action") not in DECISION_ACTIONS:
        action = payload.get("action")
        expected = ", ".join(DECISION_ACTIONS)
        return InvalidDecision(raw=raw, error=f"Unknown action {action!r}. Expected one of: {expected}")

    try:
        return _DECISION_ADAPTER.validate_python(payload)
    except ValidationError as error:
        return InvalidDecision(raw=raw, error=_summarise(error))


__all__ = [
    "ApplyPlanDecision",
    "ApplyPlanInput",
    "DECISION_ACTIONS",
    "Decision",
    "FinalAnswerDecision",
    "GeneratePatchDecision",
    "GeneratePatchInput",
    "InvalidDecision",
    "ReadFilesDecision",
    "ReadFilesInput",
    "RunCmdDecision",
    "RunCmdInput",
    "SearchRepoDecision",
    "SearchRepoInput",
    "WritePatchDecision",
    "WritePatchInput",
    "parse_decision",
]
