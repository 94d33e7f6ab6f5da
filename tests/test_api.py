from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import FakeAgents

from searchloop.app import deps, main
from searchloop.graph.graph import TurnController
from searchloop.graph.memory import ChatStore, SessionRegistry


@pytest.fixture
def client(settings):
    store = ChatStore(settings.persist_dir)
    sessions = SessionRegistry(store)
    controller = TurnController(FakeAgents(), store, settings)
    main.app.dependency_overrides[deps.get_store] = lambda: store
    main.app.dependency_overrides[deps.get_sessions] = lambda: sessions
    main.app.dependency_overrides[deps.get_controller] = lambda: controller
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def _events(body: str):
    out = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        out.append((lines["event"], json.loads(lines["data"])))
    return out


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_submit_streams_turn_and_persists(client):
    chat_id = client.post("/chats").json()["chat_id"]

    rsp = client.post(f"/chats/{chat_id}/submit", json={"form": {"input": "capital of France"}})

    assert rsp.status_code == 200
    assert rsp.headers["content-type"].startswith("text/event-stream")
    events = _events(rsp.text)
    names = [name for name, _ in events]
    assert names[0] == "turn" and names[-1] == "done"
    assert events[-1][1]["error"] is None
    assert ("is_collapsed", True) in [(n, d.get("value")) for n, d in events]
    assert "".join(d["value"] for n, d in events if n == "text" and d["op"] == "append") == (
        "Paris is the capital of France."
    )

    chat = client.get(f"/chats/{chat_id}").json()
    assert chat["chat"]["title"] == "capital of France"
    assert [n["kind"] for n in chat["ui"]] == ["user_message", "answer", "related"]

    listed = client.get("/chats").json()
    assert listed == [{"id": chat_id, "title": "capital of France", "path": f"/search/{chat_id}"}]


def test_submit_requires_form_or_skip(client):
    chat_id = client.post("/chats").json()["chat_id"]
    assert client.post(f"/chats/{chat_id}/submit", json={}).status_code == 422


def test_unknown_and_invalid_chats(client):
    assert client.get("/chats/missing").status_code == 404
    assert client.post("/chats/missing/submit", json={"skip": True}).status_code == 404
    assert client.get("/chats/bad.id").status_code == 400


def _write_legacy_chat(settings, chat_id: str) -> None:
    record = {
        "id": chat_id,
        "created_at": "2024-05-01T10:00:00+00:00",
        "user_id": "anonymous",
        "path": f"/search/{chat_id}",
        "title": "old question",
        "messages": [
            {"id": "m1", "role": "user", "type": "input", "content": json.dumps({"input": "old question"})},
            {"id": "m2", "role": "assistant", "type": "legacy_card", "content": "?"},
        ],
    }
    (Path(settings.persist_dir) / f"{chat_id}.json").write_text(json.dumps(record), encoding="utf-8")


def test_chat_with_legacy_entries_can_be_continued(client, settings):
    _write_legacy_chat(settings, "old1")
    assert client.get("/chats/old1").status_code == 200

    rsp = client.post("/chats/old1/submit", json={"form": {"input": "more"}})

    assert rsp.status_code == 200
    assert _events(rsp.text)[-1][1]["error"] is None
    chat = client.get("/chats/old1").json()
    assert [m["type"] for m in chat["chat"]["messages"]] == ["input", "legacy_card", "input", "answer", "related"]
    assert chat["chat"]["created_at"].startswith("2024-05-01")
    assert [n["kind"] for n in chat["ui"]] == ["user_message", None, "user_message", "answer", "related"]
