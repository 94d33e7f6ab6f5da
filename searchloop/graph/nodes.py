"""
nodes.py
--------
Agent step implementations used by the turn graph.

This module defines:
- Structured outputs for the classifier, inquiry and related-query steps
- `LLMAgents`: the five reasoning collaborators of a turn (task manager,
  inquiry, researcher, writer, query suggestor), each streaming into the
  turn's UI handles
- Offline stubs (`DEV_NO_LLM=true` or no OpenAI key) so the app can be
  smoke-tested end to end without credentials

Agents raise on model failures; the turn graph decides which failures a
turn survives. Search failures never raise here: the search tool boundary
converts them into error-flagged empty results.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.utils.function_calling import convert_to_openai_tool
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field, ValidationError

from ..config import Settings
from ..models import Message, ToolOutput, new_id
from ..streams import StreamableUI, StreamableValue
from ..view import answer_node, copilot_node, related_node, search_node
from .prompts import (
    SYSTEM_INQUIRE,
    SYSTEM_QUERY_SUGGESTOR,
    SYSTEM_RESEARCHER,
    SYSTEM_RESEARCHER_SINGLE_CALL,
    SYSTEM_TASK_MANAGER,
    SYSTEM_WRITER,
    WRITER_FALLBACK,
)
from .tools.search import SearchParams, error_result, pad_query, run_search, search_error_message

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------------------
# Structured outputs
# --------------------------------------------------------------------------------------
class NextAction(BaseModel):
    """Decide whether to research now or ask the user for more detail."""
    next: Literal["proceed", "inquire"]


class InquiryOption(BaseModel):
    value: str
    label: str


class Inquiry(BaseModel):
    """A single clarifying question for the user."""
    question: str = Field(..., description="The inquiry question")
    options: List[InquiryOption] = Field(default_factory=list, description="Predefined answers to pick from")
    allows_input: bool = Field(default=True, description="Whether free-form input is accepted")
    input_label: Optional[str] = Field(default=None, description="Label for the free-form input")
    input_placeholder: Optional[str] = Field(default=None, description="Placeholder for the free-form input")


class RelatedQuery(BaseModel):
    query: str


class RelatedQueries(BaseModel):
    """Three follow-up queries that dig deeper into the topic."""
    items: List[RelatedQuery] = Field(..., description="Follow-up queries")


class ResearchResult(BaseModel):
    model_config = {"arbitrary_types_allowed": True}

    full_response: str = ""
    has_error: bool = False
    tool_responses: List[ToolOutput] = Field(default_factory=list)
    # messages the next research step needs to see (tool calls + results)
    transcript: List[Any] = Field(default_factory=list)


SEARCH_TOOL: Dict[str, Any] = convert_to_openai_tool(SearchParams)
SEARCH_TOOL["function"]["name"] = "search"


# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------
def to_langchain(messages: Sequence[Message]) -> List[BaseMessage]:
    """
    Convert log messages to chat-model messages. Tool messages never reach
    the model directly; the writer sees them reinterpreted as assistant text.
    """
    out: List[BaseMessage] = []
    for m in messages:
        if m.role == "user":
            out.append(HumanMessage(content=m.content))
        elif m.role == "assistant":
            out.append(AIMessage(content=m.content))
    return out


def user_text(message: Message) -> str:
    """Best-effort plain text of a user message (form JSON or raw text)."""
    try:
        data = json.loads(message.content)
    except ValueError:
        return message.content
    if isinstance(data, dict):
        for key in ("input", "related_query"):
            if data.get(key):
                return str(data[key])
        return " ".join(str(v) for k, v in data.items() if k != "action" and v)
    return message.content


def last_user_text(window: Sequence[Message]) -> str:
    for m in reversed(window):
        if m.role == "user":
            text = user_text(m)
            if text:
                return text
    return ""


def _current_date() -> str:
    return datetime.now(timezone.utc).strftime("%A, %B %d, %Y, %H:%M UTC")


def _show_search_error(ui: StreamableUI, text: StreamableValue, result: "ResearchResult") -> None:
    # the search section was cleared; the error sentence takes its place
    ui.append(answer_node(new_id(), None))
    text.update(result.full_response)


def _summarize_results(results: Sequence[Dict[str, Any]]) -> str:
    lines = []
    for r in results[:5]:
        title = r.get("title") or r.get("url") or "Untitled result"
        url = r.get("url", "")
        lines.append(f"- {title} ({url})" if url else f"- {title}")
    return "\n".join(lines)


# --------------------------------------------------------------------------------------
# Agents
# --------------------------------------------------------------------------------------
class LLMAgents:
    """The reasoning collaborators of a turn, backed by OpenAI-compatible chat models."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _chat(self, temperature: float = 0.2) -> ChatOpenAI:
        s = self.settings
        return ChatOpenAI(
            model=s.openai_model,
            temperature=temperature,
            api_key=s.openai_api_key,
            base_url=s.openai_api_base or None,
        )

    def _writer_chat(self) -> ChatOpenAI:
        s = self.settings
        if not s.use_specific_api_for_writer:
            return self._chat()
        return ChatOpenAI(
            model=s.specific_api_model,
            temperature=0.2,
            api_key=s.specific_api_key or s.openai_api_key,
            base_url=s.specific_api_base or None,
        )

    # ---------------------------------------------------------------- task manager
    async def task_manager(self, window: Sequence[Message]) -> Optional[NextAction]:
        if self.settings.offline:
            return NextAction(next="proceed")
        structured = self._chat(temperature=0).with_structured_output(NextAction)
        result = await structured.ainvoke([SystemMessage(content=SYSTEM_TASK_MANAGER), *to_langchain(window)])
        return result if isinstance(result, NextAction) else None

    # ---------------------------------------------------------------- inquiry
    async def inquire(self, ui: StreamableUI, window: Sequence[Message]) -> Inquiry:
        node_id = new_id()
        if self.settings.offline:
            inquiry = Inquiry(question="Could you tell me more about what you are looking for?")
            ui.update(copilot_node(node_id, inquiry.model_dump(), completed=False))
            return inquiry

        structured = self._chat().with_structured_output(Inquiry)
        final: Optional[Inquiry] = None
        async for partial in structured.astream([SystemMessage(content=SYSTEM_INQUIRE), *to_langchain(window)]):
            if isinstance(partial, Inquiry):
                final = partial
                ui.update(copilot_node(node_id, partial.model_dump(), completed=False))
        if final is None:
            raise ValueError("inquiry step produced no question")
        return final

    # ---------------------------------------------------------------- researcher
    async def researcher(
        self,
        ui: StreamableUI,
        text: StreamableValue,
        window: Sequence[Message],
        single_tool_call: bool,
        scratchpad: Sequence[BaseMessage] = (),
    ) -> ResearchResult:
        """
        One reasoning step: the model either answers (streamed into `text`) or
        calls the search tool. Tool results go into the returned transcript so
        the next step can build on them.
        """
        if self.settings.offline:
            return await self._offline_research(ui, text, window, single_tool_call, scratchpad)

        prompt = SYSTEM_RESEARCHER_SINGLE_CALL if single_tool_call else SYSTEM_RESEARCHER
        bind_kwargs: Dict[str, Any] = {"parallel_tool_calls": False} if single_tool_call else {}
        llm = self._chat().bind_tools([SEARCH_TOOL], **bind_kwargs)
        msgs: List[BaseMessage] = [
            SystemMessage(content=prompt.format(current_date=_current_date())),
            *to_langchain(window),
            *scratchpad,
        ]

        result = ResearchResult()
        full = None
        answer_started = False
        async for chunk in llm.astream(msgs):
            full = chunk if full is None else full + chunk
            if isinstance(chunk.content, str) and chunk.content:
                if not answer_started:
                    ui.append(answer_node(new_id(), None))
                    answer_started = True
                text.append(chunk.content)
                result.full_response += chunk.content

        tool_calls = list(getattr(full, "tool_calls", None) or [])
        if tool_calls:
            result.transcript.append(AIMessage(content=full.content or "", tool_calls=tool_calls))
        for call in tool_calls:
            payload = await self._run_tool_call(ui, call, result)
            result.transcript.append(ToolMessage(content=json.dumps(payload), tool_call_id=call.get("id") or new_id()))
        if result.has_error:
            _show_search_error(ui, text, result)
        return result

    async def _run_tool_call(self, ui: StreamableUI, call: Dict[str, Any], result: ResearchResult) -> Any:
        name = call.get("name")
        if name != "search":
            logger.warning("Model requested unknown tool %r", name)
            return {"error": f"Unknown tool: {name}"}

        args = call.get("args") or {}
        try:
            params = SearchParams(**args)
        except ValidationError:
            logger.warning("Invalid search arguments: %s", args, exc_info=True)
            query = str(args.get("query", ""))
            found, has_error = error_result(pad_query(query)), True
            ui.update(None)
            params = SearchParams(query=query)
        else:
            node_id = new_id()
            ui.update(search_node(node_id, None, params.include_domains))
            found, has_error = await run_search(params, settings=self.settings)
            ui.update(None if has_error else search_node(node_id, found.model_dump(), params.include_domains))

        if has_error:
            result.has_error = True
            result.full_response = search_error_message(params.query)
        payload = found.model_dump()
        result.tool_responses.append(ToolOutput(tool_name="search", result=payload))
        return payload

    async def _offline_research(
        self,
        ui: StreamableUI,
        text: StreamableValue,
        window: Sequence[Message],
        single_tool_call: bool,
        scratchpad: Sequence[BaseMessage],
    ) -> ResearchResult:
        result = ResearchResult()
        query = last_user_text(window) or "latest news"
        if not scratchpad:
            call = {"name": "search", "args": {"query": query}, "id": new_id()}
            payload = await self._run_tool_call(ui, call, result)
            result.transcript = [
                AIMessage(content="", tool_calls=[call]),
                ToolMessage(content=json.dumps(payload), tool_call_id=call["id"]),
            ]
            if result.has_error:
                _show_search_error(ui, text, result)
            if single_tool_call or result.has_error:
                return result
        found = [t.result for t in result.tool_responses] or [
            json.loads(m.content) for m in scratchpad if isinstance(m, ToolMessage)
        ]
        rows = [r for f in found for r in (f.get("results") or [])]
        ui.append(answer_node(new_id(), None))
        result.full_response = (
            f"Results for {query}:\n{_summarize_results(rows)}" if rows else f"No results found for {query}."
        )
        text.append(result.full_response)
        return result

    # ---------------------------------------------------------------- writer
    async def writer(self, ui: StreamableUI, text: StreamableValue, messages: Sequence[Message]) -> str:
        """Compose the answer from tool outputs (reinterpreted as assistant messages)."""
        ui.append(answer_node(new_id(), None))
        if self.settings.offline:
            rows: List[Dict[str, Any]] = []
            for m in messages:
                if m.type != "tool":
                    continue
                try:
                    inner = json.loads(json.loads(m.content))
                except (ValueError, TypeError):
                    continue
                if isinstance(inner, dict):
                    rows.extend(inner.get("results") or [])
            answer = f"Here is what the search turned up:\n{_summarize_results(rows)}" if rows else WRITER_FALLBACK
            text.done(answer)
            return answer

        answer = ""
        async for chunk in self._writer_chat().astream([SystemMessage(content=SYSTEM_WRITER), *to_langchain(messages)]):
            if isinstance(chunk.content, str) and chunk.content:
                text.append(chunk.content)
                answer += chunk.content
        if not answer.strip():
            logger.warning("Writer returned no text, using fallback answer")
            answer = WRITER_FALLBACK
            text.done(answer)
        else:
            text.done()
        return answer

    # ---------------------------------------------------------------- related queries
    async def query_suggestor(self, ui: StreamableUI, window: Sequence[Message]) -> RelatedQueries:
        node_id = new_id()
        ui.append(related_node(node_id, None))
        if self.settings.offline:
            query = last_user_text(window) or "this topic"
            related = RelatedQueries(
                items=[RelatedQuery(query=f"{query} {suffix}") for suffix in ("overview", "latest news", "explained")]
            )
            ui.update(related_node(node_id, related.model_dump()))
            return related

        structured = self._chat().with_structured_output(RelatedQueries)
        final: Optional[RelatedQueries] = None
        try:
            async for partial in structured.astream([SystemMessage(content=SYSTEM_QUERY_SUGGESTOR), *to_langchain(window)]):
                if isinstance(partial, RelatedQueries):
                    final = partial
                    ui.update(related_node(node_id, partial.model_dump()))
            if final is None:
                raise ValueError("query suggestor produced no queries")
        except Exception:
            ui.update(None)
            raise
        return final
