from __future__ import annotations

import gc
import json

import pytest
from conftest import FakeAgents, run_turns

from searchloop.graph.graph import TurnController
from searchloop.graph.memory import ChatStore, SessionRegistry, chat_title, on_commit_state, on_read_ui_state
from searchloop.graph.nodes import ResearchResult
from searchloop.models import SKIP_MARKER, AIState, Chat, Message, ToolOutput


def _user(form) -> Message:
    kind = "input" if "input" in form else "input_related" if "related_query" in form else "inquiry"
    return Message(role="user", type=kind, content=json.dumps(form))


def test_title_comes_from_first_input_truncated():
    state = AIState(messages=[_user({"input": "x" * 150})])
    assert chat_title(state) == "x" * 100


@pytest.mark.parametrize(
    "messages",
    [
        [],
        [Message(role="user", type=None, content=SKIP_MARKER)],
        [_user({"related_query": "more"})],
        [_user({"input": ""})],
    ],
)
def test_title_defaults_to_untitled(messages):
    assert chat_title(AIState(messages=messages)) == "Untitled"


def test_commit_writes_chat_record(store):
    state = AIState(messages=[_user({"input": "hello world"})])

    chat = on_commit_state(state, store)

    loaded = store.load(state.chat_id)
    assert loaded.id == chat.id == state.chat_id
    assert loaded.user_id == "anonymous"
    assert loaded.path == f"/search/{state.chat_id}"
    assert loaded.title == "hello world"
    assert [m.content for m in loaded.messages] == [m.content for m in state.messages]


def test_commit_keeps_original_creation_time(store):
    state = AIState(messages=[_user({"input": "hello"})])
    first = on_commit_state(state, store)
    state.append(Message(role="assistant", type="answer", content="hi"))

    second = on_commit_state(state, store)

    assert second.created_at == first.created_at
    assert len(store.load(state.chat_id).messages) == 2


def test_invalid_chat_ids_are_rejected(store):
    with pytest.raises(ValueError):
        store.load("../etc/passwd")


def test_missing_chat_loads_as_none(store):
    assert store.load("nope") is None
    assert on_read_ui_state(None) == []


def test_list_returns_newest_first(store):
    a = on_commit_state(AIState(messages=[_user({"input": "a"})]), store)
    b = on_commit_state(AIState(messages=[_user({"input": "b"})]), store)
    ids = [c.id for c in store.list()]
    assert set(ids) == {a.id, b.id}
    assert ids[0] == (b.id if b.created_at >= a.created_at else a.id)


def test_registry_reloads_persisted_sessions(store):
    state = AIState(messages=[_user({"input": "remember me"})])
    on_commit_state(state, store)

    registry = SessionRegistry(store)

    assert registry.get(state.chat_id).messages[0].content == state.messages[0].content
    assert registry.get("unknown") is None
    fresh = registry.create()
    assert registry.get(fresh.chat_id) is fresh


def test_projection_survives_persistence_round_trip(settings, store):
    agents = FakeAgents(
        research=[
            ResearchResult(tool_responses=[ToolOutput(tool_name="search", result={
                "results": [{"title": "P", "url": "https://p", "content": "c"}],
                "images": [], "query": "paris", "number_of_results": 1,
            })]),
            ResearchResult(full_response="Paris."),
        ]
    )
    session = AIState()
    run_turns(TurnController(agents, store, settings), session, {"form": {"input": "capital of France"}})
    before = on_read_ui_state(store.load(session.chat_id))

    reloaded = SessionRegistry(ChatStore(settings.persist_dir)).get(session.chat_id)
    on_commit_state(reloaded, store)
    after = on_read_ui_state(store.load(session.chat_id))

    visible = lambda nodes: [n for n in nodes if n.kind is not None]
    assert visible(before) == visible(after)
    assert [n.kind for n in visible(after)] == ["user_message", "search_section", "answer", "related"]


def test_commit_writes_back_legacy_entries(store):
    chat = Chat.from_storage({
        "id": "legacy1",
        "messages": [
            {"id": "m1", "role": "user", "type": "input", "content": json.dumps({"input": "hi"})},
            {"id": "m2", "role": "assistant", "type": "legacy_card", "content": "?"},
        ],
    })
    state = chat.to_state()
    state.append(Message(role="assistant", type="answer", content="hello"))

    on_commit_state(state, store)

    assert [m.type for m in store.load("legacy1").messages] == ["input", "legacy_card", "answer"]


def test_registry_drops_sessions_nobody_holds(store):
    registry = SessionRegistry(store)
    state = registry.create()
    chat_id = state.chat_id
    assert len(registry) == 1

    del state
    gc.collect()

    assert len(registry) == 0
    assert registry.get(chat_id).chat_id == chat_id
