"""
config.py
-----------
Typed settings for the model endpoints, the search provider and chat storage,
read from the environment (and `.env`). Import `settings` rather than reading
env vars elsewhere.
"""
from __future__ import annotations
import os
from pathlib import Path
from typing import Literal
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes"}


# older deployments spell the SearXNG provider "searchxng"
SEARCH_API_ALIASES = {"searchxng": "searxng"}


class Settings(BaseModel):
    openai_api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    openai_api_base: str = Field(default_factory=lambda: os.getenv("OPENAI_API_BASE", ""))
    openai_model: str = Field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4o-mini"))

    # Single-tool-call mode: the researcher only picks a tool (or answers), a
    # dedicated writer model composes the answer from tool outputs.
    use_specific_api_for_writer: bool = Field(default_factory=lambda: _env_flag("USE_SPECIFIC_API_FOR_WRITER"))
    specific_api_base: str = Field(default_factory=lambda: os.getenv("SPECIFIC_API_BASE", ""))
    specific_api_key: str = Field(default_factory=lambda: os.getenv("SPECIFIC_API_KEY", ""))
    specific_api_model: str = Field(default_factory=lambda: os.getenv("SPECIFIC_API_MODEL", "gpt-4o-mini"))

    search_api: Literal["tavily", "exa", "searxng"] = Field(
        default_factory=lambda: os.getenv("SEARCH_API", "tavily"), validate_default=True
    )
    tavily_api_key: str = Field(default_factory=lambda: os.getenv("TAVILY_API_KEY", ""))
    exa_api_key: str = Field(default_factory=lambda: os.getenv("EXA_API_KEY", ""))
    searxng_api_url: str = Field(
        default_factory=lambda: os.getenv("SEARXNG_API_URL") or os.getenv("SEARCHXNG_API_URL", ""),
        validate_default=True,
    )

    persist_dir: str = Field(default_factory=lambda: os.getenv("PERSIST_DIR", "./data/chats"))
    max_research_steps: int = Field(default_factory=lambda: int(os.getenv("MAX_RESEARCH_STEPS", "10")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    dev_no_llm: bool = Field(default_factory=lambda: _env_flag("DEV_NO_LLM"))

    @field_validator("search_api", mode="before")
    @classmethod
    def _normalize_search_api(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.strip().lower() or "tavily"
            return SEARCH_API_ALIASES.get(v, v)
        return v

    @field_validator("searxng_api_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def max_messages(self) -> int:
        return 5 if self.use_specific_api_for_writer else 10

    @property
    def offline(self) -> bool:
        return self.dev_no_llm or not self.openai_api_key

    def ensure_dirs(self) -> None:
        Path(self.persist_dir).mkdir(parents=True, exist_ok=True)

settings = Settings()
settings.ensure_dirs()
