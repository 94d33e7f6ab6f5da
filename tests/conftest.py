from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from searchloop.config import Settings
from searchloop.graph.graph import TurnController, TurnHandle
from searchloop.graph.memory import ChatStore
from searchloop.graph.nodes import Inquiry, NextAction, RelatedQueries, RelatedQuery, ResearchResult
from searchloop.models import AIState


class FakeAgents:
    """Scripted collaborators that record every call."""

    def __init__(
        self,
        action: Optional[str] = "proceed",
        research: Optional[List[ResearchResult]] = None,
        question: str = "About what topic?",
        writer_text: str = "Written from sources.",
        classifier_error: Optional[Exception] = None,
        writer_error: Optional[Exception] = None,
        related_error: Optional[Exception] = None,
    ) -> None:
        self.action = action
        self.research = list(research or [ResearchResult(full_response="Paris is the capital of France.")])
        self.question = question
        self.writer_text = writer_text
        self.classifier_error = classifier_error
        self.writer_error = writer_error
        self.related_error = related_error
        self.calls: List[tuple] = []

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]

    async def task_manager(self, window):
        self.calls.append(("task_manager", list(window)))
        if self.classifier_error:
            raise self.classifier_error
        return NextAction(next=self.action) if self.action else None

    async def inquire(self, ui, window):
        self.calls.append(("inquire", list(window)))
        return Inquiry(question=self.question)

    async def researcher(self, ui, text, window, single_tool_call, scratchpad=()):
        self.calls.append(("researcher", list(window), single_tool_call))
        result = self.research.pop(0) if len(self.research) > 1 else self.research[0]
        if result.full_response:
            text.append(result.full_response)
        return result.model_copy(deep=True)

    async def writer(self, ui, text, messages):
        self.calls.append(("writer", list(messages)))
        if self.writer_error:
            raise self.writer_error
        text.done(self.writer_text)
        return self.writer_text

    async def query_suggestor(self, ui, window):
        self.calls.append(("query_suggestor", list(window)))
        if self.related_error:
            raise self.related_error
        return RelatedQueries(items=[RelatedQuery(query=q) for q in ("q1", "q2", "q3")])


def make_settings(tmp_path, **overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "openai_api_key": "",
        "dev_no_llm": True,
        "use_specific_api_for_writer": False,
        "search_api": "tavily",
        "tavily_api_key": "test-key",
        "persist_dir": str(tmp_path / "chats"),
        "max_research_steps": 10,
    }
    values.update(overrides)
    return Settings(**values)


def run_turns(controller: TurnController, session: AIState, *submissions: Dict[str, Any]) -> List[TurnHandle]:
    """Submit turns one after another inside a single event loop."""

    async def _go() -> List[TurnHandle]:
        handles = []
        for sub in submissions:
            handle = controller.submit(session, sub.get("form"), skip=sub.get("skip", False))
            await handle.wait()
            handles.append(handle)
        return handles

    return asyncio.run(_go())


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def store(settings) -> ChatStore:
    return ChatStore(settings.persist_dir)
