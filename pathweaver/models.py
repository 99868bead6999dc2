"""Core domain models.

Turns, model descriptors, tool calls and capacity snapshots are shared by the
orchestrator and every component it drives. Pydantic is used for validation
and serialisation at every data boundary.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system", "tool"]

SizeClass = Literal["large", "small"]


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Turn(BaseModel):
    """One message in the conversation."""

    id: str = Field(default_factory=_new_id)
    role: Role
    content: str
    created_at: datetime = Field(default_factory=_now)
    # Protocol fields, only set on transient tool round-trip turns
    tool_call_id: str | None = None
    tool_calls: list[dict[str, Any]] | None = None

    def to_provider(self) -> dict[str, Any]:
        """Wire form: role + content, plus tool-call correlation when present.

        Local metadata (id, created_at) never leaves the process.
        """
        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id is not None:
            message["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            message["tool_calls"] = self.tool_calls
        return message


class ModelDescriptor(BaseModel):
    """A provider model that passed the eligibility filter."""

    model_config = ConfigDict(frozen=True)

    id: str
    supports_tools: bool = True
    max_completion_tokens: int = 0
    parameter_billions: float | None = None
    size_class: SizeClass = "small"


class ToolCallRequest(BaseModel):
    """A pending function invocation requested by the provider."""

    id: str
    name: str
    arguments: str = ""

    def to_provider(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class UiUpdate(BaseModel):
    """Replace the interactive UI with this code payload."""

    kind: Literal["ui_update"] = "ui_update"
    code: str


class ToolCallResult(BaseModel):
    """Resolution of one ToolCallRequest: an instruction or a failure reason."""

    call: ToolCallRequest
    instruction: UiUpdate | None = None
    error: str | None = None
    repaired: bool = False

    @property
    def ok(self) -> bool:
        return self.instruction is not None and self.error is None


class AssistantMessage(BaseModel):
    """The `choices[0].message` of a chat completion."""

    content: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)


class RateLimitSnapshot(BaseModel):
    """Normalized quota view derived from one provider response."""

    model: str
    limit_requests: int | None = None
    remaining_requests: int | None = None
    limit_tokens: int | None = None
    remaining_tokens: int | None = None
    reset_requests: str | None = None
    reset_tokens: str | None = None
    requests_percent: float | None = None
    tokens_percent: float | None = None
    warning: bool = False
