"""
memory.py
---------
Chat persistence and the session lifecycle hooks.

`ChatStore` keeps one JSON file per chat under `PERSIST_DIR`. The hooks are
the two points where the turn machinery meets storage: `on_commit_state`
turns the live session into a `Chat` record and saves it at the end of every
turn; `on_read_ui_state` projects a stored chat back into view nodes.
"""
from __future__ import annotations

import json
import logging
import re
import weakref
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..models import AIState, Chat
from ..view import ViewNode, get_ui_state_from_ai_state

logger = logging.getLogger(__name__)

_CHAT_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
TITLE_MAX_CHARS = 100


def is_valid_chat_id(chat_id: str) -> bool:
    return bool(_CHAT_ID.match(chat_id or ""))


class ChatStore:
    """
    JSON-backed chat store. Files are rewritten whole on every save; chats are
    never deleted from here.
    """
    def __init__(self, persist_dir: str) -> None:
        self.root = Path(persist_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, chat_id: str) -> Path:
        if not is_valid_chat_id(chat_id):
            raise ValueError(f"invalid chat id: {chat_id!r}")
        return self.root / f"{chat_id}.json"

    def load(self, chat_id: str) -> Optional[Chat]:
        p = self._path(chat_id)
        if not p.exists():
            return None
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except ValueError:
            logger.error("Corrupt chat file %s", p, exc_info=True)
            return None
        return Chat.from_storage(data)

    def save(self, chat: Chat) -> None:
        p = self._path(chat.id)
        p.write_text(chat.model_dump_json(indent=2), encoding="utf-8")

    def list(self) -> List[Chat]:
        chats = [c for c in (self.load(p.stem) for p in self.root.glob("*.json")) if c is not None]
        return sorted(chats, key=lambda c: c.created_at, reverse=True)


def chat_title(state: AIState) -> str:
    """First message's `input` field, cut to 100 characters, else 'Untitled'."""
    if not state.messages:
        return "Untitled"
    try:
        first = json.loads(state.messages[0].content)
    except ValueError:
        return "Untitled"
    value = first.get("input") if isinstance(first, dict) else None
    if not isinstance(value, str):
        return "Untitled"
    return value[:TITLE_MAX_CHARS] or "Untitled"


def on_commit_state(state: AIState, store: ChatStore, user_id: str = "anonymous") -> Chat:
    existing = store.load(state.chat_id)
    # legacy entries in the log are written back as they were read
    chat = Chat.model_construct(
        id=state.chat_id,
        created_at=existing.created_at if existing else datetime.now(timezone.utc),
        user_id=user_id,
        path=f"/search/{state.chat_id}",
        title=chat_title(state),
        messages=list(state.messages),
    )
    store.save(chat)
    logger.info("Saved chat %s (%d messages)", chat.id, len(chat.messages))
    return chat


def on_read_ui_state(chat: Optional[Chat]) -> List[ViewNode]:
    if chat is None:
        return []
    return get_ui_state_from_ai_state(chat)


class SessionRegistry:
    """
    Live sessions by chat id. A session stays here only while something (a
    running turn, a request) holds it; after that it is reloaded from the
    store, which every turn writes before it lets go.
    """
    def __init__(self, store: ChatStore) -> None:
        self.store = store
        self._sessions: "weakref.WeakValueDictionary[str, AIState]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> AIState:
        state = AIState()
        on_commit_state(state, self.store)
        self._sessions[state.chat_id] = state
        return state

    def get(self, chat_id: str) -> Optional[AIState]:
        state = self._sessions.get(chat_id)
        if state is None:
            chat = self.store.load(chat_id)
            if chat is None:
                return None
            state = chat.to_state()
            self._sessions[chat_id] = state
        return state
