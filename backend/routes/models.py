"""Pydantic request models for API and websocket messages."""

from typing import Literal

from pydantic import BaseModel, Field


class CreateStory(BaseModel):
    title: str = ""


class UpdateStory(BaseModel):
    title: str | None = None
    current_step: int | None = None


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str


class SubmitChatTurn(BaseModel):
    messages: list[ChatMessageIn] = Field(min_length=1)
    requestedModel: str | None = None
    toolsEnabled: bool = True


class LoadGame(BaseModel):
    storyId: str
    step: int | None = None
