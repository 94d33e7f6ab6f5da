"""
main.py
-------
FastAPI app exposing the turn controller.

- POST /chats                      start a chat
- POST /chats/{chat_id}/submit     run one turn, streamed as server-sent events
- GET  /chats/{chat_id}            stored chat plus its projected view nodes
- GET  /chats                      stored chats, newest first
- GET  /health                     liveness
"""
from __future__ import annotations
from typing import Any, AsyncIterator, Dict, List
from fastapi import FastAPI, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from ..config import settings
from ..log_setup import setup_logging
from ..models import SubmitRequest
from ..streams import merge
from ..view import ViewNode
from ..graph.graph import TurnController, TurnHandle
from ..graph.memory import ChatStore, SessionRegistry, is_valid_chat_id, on_read_ui_state
from .deps import get_controller, get_sessions, get_store
from .sse import format_sse, stream_event

setup_logging(settings.log_level)

app = FastAPI(title="Searchloop", version="1.0.0")


class CreateChatResponse(BaseModel):
    """Response model for POST /chats."""
    chat_id: str


class ChatResponse(BaseModel):
    """Response model for GET /chats/{chat_id}. Stored messages are passed through as-is."""
    chat: Dict[str, Any]
    ui: List[ViewNode]


class ChatSummary(BaseModel):
    id: str
    title: str
    path: str


def _check_chat_id(chat_id: str) -> None:
    if not is_valid_chat_id(chat_id):
        raise HTTPException(status_code=400, detail=f"invalid chat id: {chat_id!r}")


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/chats", response_model=CreateChatResponse)
def create_chat(sessions: SessionRegistry = Depends(get_sessions)):
    return CreateChatResponse(chat_id=sessions.create().chat_id)


@app.get("/chats", response_model=List[ChatSummary])
def list_chats(store: ChatStore = Depends(get_store)):
    return [ChatSummary(id=c.id, title=c.title, path=c.path) for c in store.list()]


@app.get("/chats/{chat_id}", response_model=ChatResponse)
def read_chat(chat_id: str, store: ChatStore = Depends(get_store)):
    _check_chat_id(chat_id)
    chat = store.load(chat_id)
    if chat is None:
        raise HTTPException(status_code=404, detail="chat not found")
    return ChatResponse(chat=chat.model_dump(mode="json"), ui=on_read_ui_state(chat))


async def _turn_events(handle: TurnHandle) -> AsyncIterator[str]:
    yield format_sse({"event_type": "turn", "id": handle.id})
    async for name, event in merge(
        ui=handle.component,
        is_generating=handle.is_generating,
        is_collapsed=handle.is_collapsed,
        text=handle.text,
    ):
        yield format_sse(stream_event(name, event))
    await handle.wait()
    yield format_sse({"event_type": "done", "id": handle.id, "error": str(handle.error) if handle.error else None})


@app.post("/chats/{chat_id}/submit")
async def submit(
    chat_id: str,
    req: SubmitRequest,
    sessions: SessionRegistry = Depends(get_sessions),
    controller: TurnController = Depends(get_controller),
):
    """
    Run one turn. The response is an event stream of UI node updates, flag
    changes and answer text, ending with a `done` event once the chat is saved.
    """
    _check_chat_id(chat_id)
    session = sessions.get(chat_id)
    if session is None:
        raise HTTPException(status_code=404, detail="chat not found")
    if req.form is None and not req.skip:
        raise HTTPException(status_code=422, detail="either form or skip is required")

    handle = controller.submit(session, req.form, skip=req.skip)
    return StreamingResponse(_turn_events(handle), media_type="text/event-stream")
