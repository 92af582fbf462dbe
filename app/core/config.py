"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


# Local persistence (SQLite files for chat history and notes)
CHAT_DB_PATH: str = os.getenv("CHAT_DB_PATH", "data/chat.db").strip() or "data/chat.db"
NOTES_DB_PATH: str = os.getenv("NOTES_DB_PATH", "data/notes.db").strip() or "data/notes.db"

# Milvus: a file path selects Milvus Lite, an http(s) URI selects a server / Zilliz Cloud
MILVUS_URI: str = os.getenv("MILVUS_URI", "data/vectors.db").strip() or "data/vectors.db"
MILVUS_TOKEN: str = os.getenv("MILVUS_TOKEN", "").strip()

# Hugging Face (embeddings)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()
HF_EMBED_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"

# Vector collection: default embedding dim (all-MiniLM-L6-v2 = 384)
VECTOR_DIM: int = 384
EMBED_BATCH_SIZE: int = 32
COLLECTION_NAME_TEMPLATE: str = "user_{user_id}_notes"

# Retrieval sizes: search tool hits, and citation sources shown next to an answer
SEARCH_TOP_K: int = 5
SOURCE_TOP_K: int = 3
SOURCE_SNIPPET_CHARS: int = 200

# API timeouts (seconds)
EMBED_API_TIMEOUT: float = 30.0
LLM_API_TIMEOUT: float = _env_float("LLM_API_TIMEOUT", 60.0)

# OpenAI-compatible chat completions (OpenAI, OpenRouter, ...). Chat is disabled without a key.
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)

# Agent loop
MAX_AGENT_ROUNDS: int = _env_int("MAX_AGENT_ROUNDS", 6)
TOKEN_DELAY_SECONDS: float = _env_float("TOKEN_DELAY_SECONDS", 0.008)
PERSIST_TOOL_RESULTS: bool = os.getenv("PERSIST_TOOL_RESULTS", "").strip().lower() in ("1", "true", "yes")

# Context compaction: ~80% of a 128k-token window at 4 chars per token
COMPACT_THRESHOLD: int = _env_int("COMPACT_THRESHOLD", 400_000)
KEEP_RECENT_MESSAGES: int = _env_int("KEEP_RECENT_MESSAGES", 10)
CHARS_PER_TOKEN: int = 4

# Sessions
DEFAULT_SESSION_TITLE: str = "New Chat"
