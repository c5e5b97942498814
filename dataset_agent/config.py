"""Runtime configuration, read once from the environment."""

import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Ollama-compatible LLM backend used for chart planning, ranking and embeddings
LLM_API_URL = os.getenv("LLM_API_URL", "http://127.0.0.1:11434").rstrip("/")
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama3.1:8b")
EMBED_MODEL = os.getenv("EMBED_MODEL", "nomic-embed-text")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "30"))
FETCH_USER_AGENT = os.getenv("FETCH_USER_AGENT", "dataset-agent/0.1")

# "memory" keeps vectors in-process; "none" disables embeddings entirely.
VECTOR_INDEX_BACKEND = os.getenv("VECTOR_INDEX_BACKEND", "memory").strip().lower()
