"""Runtime configuration constants, the single source of truth for all env vars."""

import os

# LLM providers
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_BASE_URL = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1")
ANTHROPIC_VERSION = os.getenv("ANTHROPIC_VERSION", "2023-06-01")

# Knowledge base search API (the service that owns ingestion and embeddings)
KNOWLEDGE_API_BASE_URL = os.getenv("KNOWLEDGE_API_BASE_URL", "http://localhost:3000")
KNOWLEDGE_API_TOKEN = os.getenv("KNOWLEDGE_API_TOKEN", "")

# Log directory, configurable via LOG_DIR env var for Docker
LOG_DIR = os.getenv("LOG_DIR", "")
