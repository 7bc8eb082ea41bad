"""LLM collaborators used by the AI nodes."""

from .llm_client import (
    AnthropicClient,
    ChatCompletion,
    IntentClassification,
    LLMClient,
    MockLLMClient,
    OpenAIClient,
    TokenUsage,
    get_llm_client,
)

__all__ = [
    "AnthropicClient",
    "ChatCompletion",
    "IntentClassification",
    "LLMClient",
    "MockLLMClient",
    "OpenAIClient",
    "TokenUsage",
    "get_llm_client",
]
