"""
models.py
---------
Pydantic models for the conversation log, the persisted chat record and the
LangGraph turn state.

A `Message` is a tagged union keyed by `(role, type)`. Construction validates
the pair and the payload shape, so the controller can never append something
the view projector does not understand. Persisted records are loaded
leniently (see `Chat.from_storage`) because older chats may hold shapes that
no longer validate.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal["user", "assistant", "tool"]

SKIP_MARKER = '{"action": "skip"}'

# Allowed (role, type) pairs. `None` for a user message is the skip marker.
MESSAGE_VARIANTS: Dict[Tuple[str, Optional[str]], str] = {
    ("user", "input"): "json",
    ("user", "input_related"): "json",
    ("user", "inquiry"): "json",
    ("user", None): "skip",
    ("assistant", "inquiry"): "text",
    ("assistant", "answer"): "text",
    ("assistant", "related"): "json",
    ("assistant", "tool"): "text",
    ("tool", "tool"): "json",
}


def new_id() -> str:
    return uuid.uuid4().hex[:16]


def is_known_variant(message: "Message") -> bool:
    return (message.role, message.type) in MESSAGE_VARIANTS


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    type: Optional[str] = None
    name: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_variant(self) -> "Message":
        kind = MESSAGE_VARIANTS.get((self.role, self.type))
        if kind is None:
            raise ValueError(f"unsupported message variant: role={self.role!r} type={self.type!r}")
        if kind == "json":
            try:
                json.loads(self.content)
            except ValueError as e:
                raise ValueError(f"{self.role}/{self.type} content must be JSON: {e}") from e
        if kind == "skip" and self.content != SKIP_MARKER:
            raise ValueError("untyped user messages must carry the skip marker")
        if self.type == "input" and "input" not in json.loads(self.content):
            raise ValueError("input messages need an 'input' field")
        if self.type == "input_related" and "related_query" not in json.loads(self.content):
            raise ValueError("input_related messages need a 'related_query' field")
        if self.role == "tool" and not self.name:
            raise ValueError("tool messages must name the tool that produced them")
        if self.role != "tool" and self.name is not None:
            raise ValueError("only tool messages carry a name")
        return self


class ToolOutput(BaseModel):
    """One `(tool_name, result)` pair produced by a research step."""
    tool_name: str
    result: Any


class SearchResultItem(BaseModel):
    title: str = ""
    url: str = ""
    content: str = ""


class SearchResults(BaseModel):
    results: List[SearchResultItem] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    query: str = ""
    number_of_results: int = 0


class AIState(BaseModel):
    """Live session state: the conversation log of one chat."""
    chat_id: str = Field(default_factory=new_id)
    messages: List[Message] = Field(default_factory=list)

    def append(self, message: Message) -> None:
        # whole-snapshot replace, the log is never edited in place
        self.messages = [*self.messages, message]


class Chat(BaseModel):
    id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str = "anonymous"
    path: str = ""
    title: str = "Untitled"
    messages: List[Message] = Field(default_factory=list)

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "Chat":
        """
        Rebuild a chat from its stored JSON without re-validating messages.
        Legacy entries with unknown `type` values survive the load and are
        handled by the view projector.
        """
        raw = [m for m in data.get("messages", []) if isinstance(m, dict)]
        messages = [
            Message.model_construct(
                id=m.get("id") or new_id(),
                role=m.get("role", ""),
                content=m.get("content") if isinstance(m.get("content"), str) else json.dumps(m.get("content")),
                type=m.get("type"),
                name=m.get("name"),
            )
            for m in raw
        ]
        fields = {k: v for k, v in data.items() if k != "messages"}
        chat = cls.model_validate({**fields, "messages": []})
        chat.messages = messages
        return chat

    def to_state(self) -> AIState:
        # stored messages were loaded without validation; keep them that way
        return AIState.model_construct(chat_id=self.id, messages=list(self.messages))


class SubmitRequest(BaseModel):
    form: Optional[Dict[str, str]] = Field(default=None, description="Submitted form fields, e.g. {'input': '...'}")
    skip: bool = Field(default=False, description="Skip the clarification step and go straight to research")


class TurnState(BaseModel):
    """Turn-scoped working state carried through the LangGraph state machine."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    skip: bool = False
    window: List[Message] = Field(default_factory=list)
    scratchpad: List[Any] = Field(default_factory=list)
    next_action: str = "proceed"
    answer: str = ""
    tool_outputs: List[ToolOutput] = Field(default_factory=list)
    error_occurred: bool = False
    research_steps: int = 0
