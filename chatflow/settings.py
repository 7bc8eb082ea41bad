"""Runtime settings: tunable parameters for conversation execution.

All values read from environment variables with sensible defaults. Import from
here instead of hardcoding.

Infrastructure config (API keys, base URLs, log directory) stays in
chatflow/config.py.
"""

from __future__ import annotations

import os


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _str(key: str, default: str) -> str:
    return os.getenv(key, default)


# =====================================================================
# Executor
# =====================================================================

# Max node executions per external call (cycle / misconfiguration guard)
MAX_NODE_ITERATIONS = _int("CHATFLOW_MAX_NODE_ITERATIONS", 100)


# =====================================================================
# Input nodes (buttons, capture_input)
# =====================================================================

DEFAULT_INPUT_MAX_RETRIES = _int("CHATFLOW_INPUT_MAX_RETRIES", 3)


# =====================================================================
# HTTP (api_call node, LLM clients, knowledge search)
# =====================================================================

# api_call node timeout is configured per node in milliseconds
API_CALL_DEFAULT_TIMEOUT_MS = _int("CHATFLOW_API_CALL_TIMEOUT_MS", 30000)

LLM_HTTP_TIMEOUT = _float("CHATFLOW_LLM_HTTP_TIMEOUT", 60.0)
KNOWLEDGE_HTTP_TIMEOUT = _float("CHATFLOW_KNOWLEDGE_HTTP_TIMEOUT", 15.0)


# =====================================================================
# AI nodes
# =====================================================================

# Number of recent messages passed to the LLM as history
AI_HISTORY_WINDOW = _int("CHATFLOW_AI_HISTORY_WINDOW", 10)

LLM_DEFAULT_TEMPERATURE = _float("CHATFLOW_LLM_DEFAULT_TEMPERATURE", 0.7)
LLM_DEFAULT_MAX_TOKENS = _int("CHATFLOW_LLM_DEFAULT_MAX_TOKENS", 1000)

KNOWLEDGE_DEFAULT_TOP_K = _int("CHATFLOW_KNOWLEDGE_TOP_K", 5)
KNOWLEDGE_DEFAULT_THRESHOLD = _float("CHATFLOW_KNOWLEDGE_THRESHOLD", 0.7)

INTENT_CONFIDENCE_THRESHOLD = _float("CHATFLOW_INTENT_CONFIDENCE_THRESHOLD", 0.7)
INTENT_TEMPERATURE = _float("CHATFLOW_INTENT_TEMPERATURE", 0.1)
INTENT_MAX_TOKENS = _int("CHATFLOW_INTENT_MAX_TOKENS", 100)

# Models used by the provider clients for classify_intent()
OPENAI_INTENT_MODEL = _str("CHATFLOW_OPENAI_INTENT_MODEL", "gpt-4o-mini")
ANTHROPIC_INTENT_MODEL = _str("CHATFLOW_ANTHROPIC_INTENT_MODEL", "claude-3-haiku-20240307")


# =====================================================================
# Default copy (used when neither the node nor the chatbot configures one)
# =====================================================================

DEFAULT_FALLBACK_MESSAGE = _str(
    "CHATFLOW_DEFAULT_FALLBACK_MESSAGE",
    "I apologize, but I'm having trouble processing your request right now. Please try again.",
)
DEFAULT_HANDOFF_MESSAGE = _str(
    "CHATFLOW_DEFAULT_HANDOFF_MESSAGE",
    "I'm transferring you to a human agent who can better assist you. Please wait a moment.",
)
