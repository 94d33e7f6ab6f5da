from __future__ import annotations
from functools import lru_cache
from ..config import settings
from ..graph.graph import TurnController
from ..graph.memory import ChatStore, SessionRegistry
from ..graph.nodes import LLMAgents

@lru_cache(maxsize=1)
def get_store() -> ChatStore:
    return ChatStore(settings.persist_dir)

@lru_cache(maxsize=1)
def get_sessions() -> SessionRegistry:
    return SessionRegistry(get_store())

@lru_cache(maxsize=1)
def get_controller() -> TurnController:
    return TurnController(LLMAgents(settings), get_store(), settings)
