"""
graph.py
--------
LangGraph wiring for one conversational turn.

`TurnController.submit` hands back live stream handles immediately and runs
the turn as an asyncio task. The task appends the user message, then drives a
compiled state machine:

START -> classify -> (inquire -> END)
                  -> collapse -> research (loop) -> [finalize] -> commit_answer -> [related] -> END
START (skip) -> collapse -> ...

The session log (`AIState`) is owned by the turn for its whole run and is
appended to, never edited. Turns of the same chat are serialized by a per-chat
lock. Whatever happens, the handles are closed and the log is persisted when
the task ends.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph

from ..config import Settings
from ..models import SKIP_MARKER, AIState, Chat, Message, TurnState, is_known_variant, new_id
from ..streams import StreamableUI, StreamableValue
from ..view import error_node, followup_panel, spinner
from .memory import ChatStore, on_commit_state
from .nodes import Inquiry, NextAction, RelatedQueries, ResearchResult

logger = logging.getLogger(__name__)


class Agents(Protocol):
    async def task_manager(self, window: Sequence[Message]) -> Optional[NextAction]: ...

    async def inquire(self, ui: StreamableUI, window: Sequence[Message]) -> Inquiry: ...

    async def researcher(
        self,
        ui: StreamableUI,
        text: StreamableValue,
        window: Sequence[Message],
        single_tool_call: bool,
        scratchpad: Sequence[Any] = (),
    ) -> ResearchResult: ...

    async def writer(self, ui: StreamableUI, text: StreamableValue, messages: Sequence[Message]) -> str: ...

    async def query_suggestor(self, ui: StreamableUI, window: Sequence[Message]) -> RelatedQueries: ...


@dataclass
class TurnHandle:
    """What `submit` returns: live handles the caller can read while the turn runs."""
    id: str
    is_generating: StreamableValue
    component: StreamableUI
    is_collapsed: StreamableValue
    text: StreamableValue
    task: Optional[asyncio.Task] = None
    error: Optional[BaseException] = None

    async def wait(self) -> None:
        if self.task is not None:
            await asyncio.shield(self.task)


@dataclass
class _TurnContext:
    session: AIState
    handle: TurnHandle
    agents: Agents
    settings: Settings


# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------
def build_window(messages: Sequence[Message], max_messages: int) -> List[Message]:
    """
    Drop tool messages and legacy entries of unknown shape, keep the last
    `max_messages` of the rest in order.
    """
    kept = [m for m in messages if m.role != "tool" and is_known_variant(m)]
    return kept[max(len(kept) - max_messages, 0):]


def user_entry(form_data: Optional[Mapping[str, str]], skip: bool) -> Tuple[Optional[str], Optional[str]]:
    """Content and type of the user message a submission produces."""
    if skip:
        return SKIP_MARKER, None
    if form_data is None:
        return None, None
    content = json.dumps(dict(form_data))
    if "input" in form_data:
        return content, "input"
    if "related_query" in form_data:
        return content, "input_related"
    return content, "inquiry"


def reinterpret_tool_messages(messages: Sequence[Message]) -> List[Message]:
    """Tool results as assistant messages, so a plain chat model can read them."""
    out: List[Message] = []
    for m in messages:
        if not is_known_variant(m):
            continue
        if m.role == "tool":
            out.append(Message(id=m.id, role="assistant", type="tool", content=json.dumps(m.content)))
        else:
            out.append(m)
    return out


def research_finished(state: TurnState, single_tool_call: bool) -> bool:
    if single_tool_call:
        return len(state.tool_outputs) > 0 or len(state.answer) > 0
    return len(state.answer) > 0


def _ctx(config: RunnableConfig) -> _TurnContext:
    return config["configurable"]["turn"]


def _result_to_dict(result: Any) -> Dict[str, Any]:
    if result is None:
        return {}
    if hasattr(result, "model_dump"):
        return result.model_dump()
    if isinstance(result, dict):
        return result
    return dict(result)


# --------------------------------------------------------------------------------------
# Nodes
# --------------------------------------------------------------------------------------
async def node_classify(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    """Task manager: proceed with research or ask a clarifying question."""
    ctx = _ctx(config)
    try:
        action = await ctx.agents.task_manager(state.window)
    except Exception:
        logger.warning("Task manager failed, proceeding to research", exc_info=True)
        action = None
    next_action = action.next if action is not None else "proceed"
    logger.info("Task manager decision for chat %s: %s", ctx.session.chat_id, next_action)
    return {"next_action": next_action}


async def node_inquire(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    ctx = _ctx(config)
    handle = ctx.handle
    inquiry = await ctx.agents.inquire(handle.component, state.window)
    handle.component.done()
    handle.is_generating.done(False)
    handle.is_collapsed.done(False)
    ctx.session.append(Message(role="assistant", type="inquiry", content=f"inquiry: {inquiry.question}"))
    return {}


async def node_collapse(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    handle = _ctx(config).handle
    handle.is_collapsed.done(True)
    handle.component.update(spinner())
    return {}


async def node_research(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    """One researcher step; its tool outputs are logged right away."""
    ctx = _ctx(config)
    handle = ctx.handle
    result = await ctx.agents.researcher(
        handle.component,
        handle.text,
        state.window,
        ctx.settings.use_specific_api_for_writer,
        state.scratchpad,
    )
    for output in result.tool_responses:
        ctx.session.append(
            Message(role="tool", type="tool", name=output.tool_name, content=json.dumps(output.result))
        )
    steps = state.research_steps + 1
    logger.info(
        "Research step %d for chat %s: %d tool output(s), error=%s",
        steps, ctx.session.chat_id, len(result.tool_responses), result.has_error,
    )
    return {
        "answer": result.full_response,
        "tool_outputs": list(result.tool_responses),
        "error_occurred": state.error_occurred or result.has_error,
        "scratchpad": [*state.scratchpad, *result.transcript],
        "research_steps": steps,
    }


async def node_finalize(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    """Writer fallback: compose the answer from every tool output in the log."""
    ctx = _ctx(config)
    history = reinterpret_tool_messages(ctx.session.messages)
    answer = await ctx.agents.writer(ctx.handle.component, ctx.handle.text, history)
    return {"answer": answer}


async def node_commit_answer(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    ctx = _ctx(config)
    if not ctx.handle.text.closed:
        ctx.handle.text.done()
    ctx.session.append(Message(role="assistant", type="answer", content=state.answer))
    return {}


async def node_related(state: TurnState, config: RunnableConfig) -> Dict[str, Any]:
    ctx = _ctx(config)
    try:
        related = await ctx.agents.query_suggestor(ctx.handle.component, state.window)
    except Exception:
        logger.warning("Query suggestor failed, skipping related queries", exc_info=True)
        return {}
    ctx.session.append(Message(role="assistant", type="related", content=related.model_dump_json()))
    ctx.handle.component.append(followup_panel())
    return {}


# --------------------------------------------------------------------------------------
# Routers
# --------------------------------------------------------------------------------------
def route_start(state: TurnState) -> str:
    return "collapse" if state.skip else "classify"


def route_classify(state: TurnState) -> str:
    return "inquire" if state.next_action == "inquire" else "collapse"


def make_research_router(settings: Settings):
    single = settings.use_specific_api_for_writer

    def route_research(state: TurnState) -> str:
        """
        Loop until the termination predicate holds (or the step cap is hit),
        then send an empty answer to the writer when one is needed.
        """
        done = research_finished(state, single)
        if not done and state.research_steps < settings.max_research_steps:
            return "research"
        if not done:
            logger.warning("Research stopped after %d steps without an answer", state.research_steps)
        if not state.answer and (single or not done):
            return "finalize"
        return "commit_answer"

    return route_research


def route_commit(state: TurnState) -> str:
    return END if state.error_occurred else "related"


# --------------------------------------------------------------------------------------
# Graph build & run
# --------------------------------------------------------------------------------------
def build_graph(settings: Settings):
    """Build and compile the turn state machine."""
    g = StateGraph(TurnState)

    g.add_node("classify", node_classify)
    g.add_node("inquire", node_inquire)
    g.add_node("collapse", node_collapse)
    g.add_node("research", node_research)
    g.add_node("finalize", node_finalize)
    g.add_node("commit_answer", node_commit_answer)
    g.add_node("related", node_related)

    g.add_conditional_edges(START, route_start, {"classify": "classify", "collapse": "collapse"})
    g.add_conditional_edges("classify", route_classify, {"inquire": "inquire", "collapse": "collapse"})
    g.add_edge("inquire", END)
    g.add_edge("collapse", "research")
    g.add_conditional_edges(
        "research",
        make_research_router(settings),
        {"research": "research", "finalize": "finalize", "commit_answer": "commit_answer"},
    )
    g.add_edge("finalize", "commit_answer")
    g.add_conditional_edges("commit_answer", route_commit, {"related": "related", END: END})
    g.add_edge("related", END)

    return g.compile()


class TurnController:
    """Entry point for turns: `submit` is the only way the session log changes."""

    def __init__(self, agents: Agents, store: ChatStore, settings: Settings) -> None:
        self.agents = agents
        self.store = store
        self.settings = settings
        self.graph = build_graph(settings)
        # per-chat lock plus the number of turns holding or waiting on it
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    def _claim_lock(self, chat_id: str) -> asyncio.Lock:
        lock, users = self._locks.get(chat_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[chat_id] = (lock, users + 1)
        return lock

    def _release_lock(self, chat_id: str) -> None:
        lock, users = self._locks[chat_id]
        if users > 1:
            self._locks[chat_id] = (lock, users - 1)
        else:
            del self._locks[chat_id]

    def submit(
        self,
        session: AIState,
        form_data: Optional[Mapping[str, str]] = None,
        skip: bool = False,
    ) -> TurnHandle:
        """
        Start a turn and return its handles at once. Must be called from a
        running event loop; the turn runs as a background task.
        """
        handle = TurnHandle(
            id=new_id(),
            is_generating=StreamableValue(True),
            component=StreamableUI(),
            is_collapsed=StreamableValue(False),
            text=StreamableValue(),
        )
        lock = self._claim_lock(session.chat_id)
        handle.task = asyncio.create_task(self._run_turn(lock, session, form_data, skip, handle))
        return handle

    async def _run_turn(
        self,
        lock: asyncio.Lock,
        session: AIState,
        form_data: Optional[Mapping[str, str]],
        skip: bool,
        handle: TurnHandle,
    ) -> Chat:
        try:
            async with lock:
                try:
                    await self._process(session, form_data, skip, handle)
                except Exception as e:
                    logger.exception("Turn failed for chat %s", session.chat_id)
                    handle.error = e
                    if not handle.component.closed:
                        handle.component.append(error_node(f"Something went wrong: {e}"))
                finally:
                    for stream in (handle.text, handle.is_collapsed, handle.component):
                        if not stream.closed:
                            stream.done()
                    if not handle.is_generating.closed:
                        handle.is_generating.done(False)
                return on_commit_state(session, self.store)
        finally:
            self._release_lock(session.chat_id)

    async def _process(
        self,
        session: AIState,
        form_data: Optional[Mapping[str, str]],
        skip: bool,
        handle: TurnHandle,
    ) -> None:
        window = build_window(session.messages, self.settings.max_messages)
        content, type_ = user_entry(form_data, skip)
        logger.info("Turn started for chat %s (type=%s, skip=%s)", session.chat_id, type_, skip)

        if content:
            message = Message(role="user", type=type_, content=content)
            session.append(message)
            window.append(message)

        ctx = _TurnContext(session=session, handle=handle, agents=self.agents, settings=self.settings)
        raw = await self.graph.ainvoke(
            {"skip": skip, "window": window},
            config={
                "configurable": {"turn": ctx},
                "recursion_limit": self.settings.max_research_steps + 10,
            },
        )
        final = _result_to_dict(raw)
        logger.info(
            "Turn finished for chat %s: action=%s, research_steps=%s, error=%s",
            session.chat_id, final.get("next_action"), final.get("research_steps"), final.get("error_occurred"),
        )
