"""
view.py
-------
Projection of the conversation log into renderable view nodes.

`project` is total over `(role, type)`: anything it does not recognize
(legacy types, unknown tool names, unparsable JSON) becomes an empty node that
keeps the message id, so one bad entry never breaks rendering of a chat.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .models import Chat, Message, new_id

logger = logging.getLogger(__name__)


class ViewNode(BaseModel):
    id: str
    kind: Optional[str] = None
    title: Optional[str] = None
    props: Dict[str, Any] = Field(default_factory=dict)
    is_collapsed: Optional[bool] = None
    separator: bool = False


def empty_node(id: str) -> ViewNode:
    return ViewNode(id=id)


def spinner() -> ViewNode:
    return ViewNode(id=new_id(), kind="spinner")


def followup_panel() -> ViewNode:
    return ViewNode(id=new_id(), kind="followup_panel", title="Follow-up")


def error_node(text: str) -> ViewNode:
    return ViewNode(id=new_id(), kind="error", props={"message": text})


def answer_node(id: str, content: Any) -> ViewNode:
    return ViewNode(id=id, kind="answer", title="Answer", props={"content": content})


def related_node(id: str, related: Any) -> ViewNode:
    return ViewNode(id=id, kind="related", title="Related", separator=True, props={"related_queries": related})


def copilot_node(id: str, inquiry: Any, completed: bool) -> ViewNode:
    return ViewNode(id=id, kind="copilot", props={"inquiry": inquiry, "initial_completed": completed})


def search_node(id: str, result: Any, include_domains: Optional[List[str]] = None) -> ViewNode:
    props: Dict[str, Any] = {"result": result}
    if include_domains:
        props["include_domains"] = include_domains
    return ViewNode(id=id, kind="search_section", title="Sources", props=props, is_collapsed=True)


def _project_user(message: Message) -> ViewNode:
    if message.type in ("input", "input_related"):
        # related-query submissions render as user messages too
        data = json.loads(message.content)
        value = data.get("input") if message.type == "input" else data.get("related_query")
        return ViewNode(id=message.id, kind="user_message", props={"message": value})
    if message.type == "inquiry":
        return copilot_node(message.id, message.content, completed=True)
    return empty_node(message.id)


def _project_assistant(message: Message, group_id: str) -> ViewNode:
    if message.type == "answer":
        return answer_node(group_id, message.content)
    if message.type == "related":
        return related_node(group_id, json.loads(message.content))
    if message.type == "inquiry":
        question = message.content
        if question.startswith("inquiry: "):
            question = question[len("inquiry: "):]
        return copilot_node(message.id, {"question": question}, completed=True)
    return empty_node(message.id)


def _project_tool(message: Message, group_id: str) -> ViewNode:
    if message.name == "search":
        return search_node(group_id, json.loads(message.content))
    return empty_node(message.id)


def project(message: Message, group_id: str) -> ViewNode:
    """Map one message to a view node. Never raises."""
    if not message.type:
        return empty_node(message.id)
    try:
        if message.role == "user":
            return _project_user(message)
        if message.role == "assistant":
            return _project_assistant(message, group_id)
        if message.role == "tool":
            return _project_tool(message, group_id)
    except (ValueError, TypeError, AttributeError):
        logger.warning("Unrenderable %s/%s message %s", message.role, message.type, message.id, exc_info=True)
    return empty_node(message.id)


def get_ui_state_from_ai_state(chat: Chat) -> List[ViewNode]:
    """
    Project a whole chat. Assistant and tool nodes share a group id derived
    from the chat id, so the same log always projects to the same nodes.
    """
    group_id = f"group-{chat.id}"
    return [project(m, group_id) for m in chat.messages]
