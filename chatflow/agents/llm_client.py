"""LLM client contract and provider clients.

The ai_response and intent_classifier nodes depend only on the LLMClient
protocol. Two HTTP clients (OpenAI chat completions, Anthropic messages) and
a deterministic mock are provided.

Environment:
    OPENAI_API_KEY / OPENAI_BASE_URL
    ANTHROPIC_API_KEY / ANTHROPIC_BASE_URL / ANTHROPIC_VERSION

Usage:
    client = get_llm_client("openai")
    completion = await client.chat(
        model="gpt-4o-mini",
        messages=[{"role": "user", "content": "Hello"}],
    )
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import httpx

from .. import config, settings
from ..errors import LLMClientError
from .llm_utils import build_intent_prompt, parse_llm_json

logger = logging.getLogger(__name__)

LLMMessage = Dict[str, str]


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        """camelCase form stored in conversation variables."""
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class ChatCompletion:
    content: str
    model: str
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None


@dataclass
class IntentClassification:
    intent: str
    confidence: float
    all_intents: List[Dict[str, Any]] = field(default_factory=list)


@runtime_checkable
class LLMClient(Protocol):
    """What the runtime needs from a language model provider."""

    async def chat(
        self,
        model: str,
        messages: Sequence[LLMMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatCompletion:
        ...

    async def classify_intent(
        self,
        message: str,
        intents: Sequence[Dict[str, str]],
    ) -> IntentClassification:
        ...


class _HttpLLMClient(ABC):
    """Shared plumbing for the HTTP provider clients.

    Args:
        api_key: Provider API key; chat() fails with LLMClientError when empty.
        base_url: Provider API base URL.
        timeout: HTTP request timeout in seconds.
        transport: Optional httpx transport (tests inject httpx.MockTransport).
    """

    provider = "llm"
    intent_model = ""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout if timeout is not None else settings.LLM_HTTP_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _require_key(self) -> None:
        if not self._api_key:
            raise LLMClientError(f"{self.provider} API key not configured")

    async def _post(self, path: str, headers: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            resp = await client.post(path, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise LLMClientError(f"{self.provider} API timeout: {path}") from e
        except httpx.HTTPError as e:
            raise LLMClientError(f"{self.provider} API connection error: {e}") from e

        if not resp.is_success:
            detail = resp.reason_phrase
            try:
                detail = resp.json().get("error", {}).get("message") or detail
            except (ValueError, AttributeError):
                pass
            raise LLMClientError(
                f"{self.provider} API error: {resp.status_code} - {detail}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise LLMClientError(f"{self.provider} API returned invalid JSON") from e

    @abstractmethod
    async def chat(
        self,
        model: str,
        messages: Sequence[LLMMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatCompletion:
        """Send one chat request. Implemented per provider."""

    async def classify_intent(
        self,
        message: str,
        intents: Sequence[Dict[str, str]],
    ) -> IntentClassification:
        """Classify ``message``; falls back to the first intent at 0.5 on unparseable output."""
        completion = await self.chat(
            model=self.intent_model,
            messages=[
                {"role": "system", "content": build_intent_prompt(list(intents))},
                {"role": "user", "content": message},
            ],
            temperature=settings.INTENT_TEMPERATURE,
            max_tokens=settings.INTENT_MAX_TOKENS,
        )
        parsed = parse_llm_json(completion.content, caller=f"{self.provider}.classify_intent")
        if parsed and "intent" in parsed:
            intent = str(parsed["intent"])
            confidence = _as_confidence(parsed.get("confidence"))
            return IntentClassification(
                intent=intent,
                confidence=confidence,
                all_intents=[{"intent": intent, "confidence": confidence}],
            )
        fallback = intents[0]["name"] if intents else "unknown"
        return IntentClassification(intent=fallback, confidence=0.5)


class OpenAIClient(_HttpLLMClient):
    """OpenAI chat completions client."""

    provider = "OpenAI"
    intent_model = settings.OPENAI_INTENT_MODEL

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            api_key=api_key if api_key is not None else config.OPENAI_API_KEY,
            base_url=base_url or config.OPENAI_BASE_URL,
            timeout=timeout,
            transport=transport,
        )

    async def chat(self, model, messages, temperature=None, max_tokens=None):
        self._require_key()
        data = await self._post(
            "/chat/completions",
            headers={"Authorization": f"Bearer {self._api_key}"},
            payload={
                "model": model,
                "messages": list(messages),
                "temperature": settings.LLM_DEFAULT_TEMPERATURE if temperature is None else temperature,
                "max_tokens": max_tokens or settings.LLM_DEFAULT_MAX_TOKENS,
            },
        )

        choices = data.get("choices") or []
        if not choices:
            raise LLMClientError("OpenAI API returned no choices")
        choice = choices[0]
        usage = data.get("usage")
        return ChatCompletion(
            content=(choice.get("message") or {}).get("content") or "",
            model=data.get("model", model),
            usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ) if usage else None,
            finish_reason=choice.get("finish_reason"),
        )


class AnthropicClient(_HttpLLMClient):
    """Anthropic messages client. System messages go to the top-level ``system`` field."""

    provider = "Anthropic"
    intent_model = settings.ANTHROPIC_INTENT_MODEL

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        version: Optional[str] = None,
    ):
        super().__init__(
            api_key=api_key if api_key is not None else config.ANTHROPIC_API_KEY,
            base_url=base_url or config.ANTHROPIC_BASE_URL,
            timeout=timeout,
            transport=transport,
        )
        self._version = version or config.ANTHROPIC_VERSION

    async def chat(self, model, messages, temperature=None, max_tokens=None):
        self._require_key()
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens or settings.LLM_DEFAULT_MAX_TOKENS,
            "system": system,
            "messages": [
                {
                    "role": "assistant" if m["role"] == "assistant" else "user",
                    "content": m["content"],
                }
                for m in messages
                if m["role"] != "system"
            ],
        }
        if temperature is not None:
            payload["temperature"] = temperature

        data = await self._post(
            "/messages",
            headers={"x-api-key": self._api_key, "anthropic-version": self._version},
            payload=payload,
        )

        blocks = data.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if b.get("type", "text") == "text")
        usage = data.get("usage")
        return ChatCompletion(
            content=text,
            model=data.get("model", model),
            usage=TokenUsage(
                prompt_tokens=usage.get("input_tokens", 0),
                completion_tokens=usage.get("output_tokens", 0),
                total_tokens=usage.get("input_tokens", 0) + usage.get("output_tokens", 0),
            ) if usage else None,
            finish_reason=data.get("stop_reason"),
        )


class MockLLMClient:
    """Deterministic client for tests and offline demos.

    Cycles through ``responses`` on each chat() call and classifies every
    message as the first configured intent.
    """

    def __init__(self, responses: Optional[List[str]] = None):
        self.responses = responses or ["Mock response"]
        self.calls: List[Dict[str, Any]] = []
        self._index = 0

    async def chat(self, model, messages, temperature=None, max_tokens=None):
        self.calls.append({
            "model": model,
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        content = self.responses[self._index % len(self.responses)]
        self._index += 1
        return ChatCompletion(
            content=content,
            model="mock-model",
            usage=TokenUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
        )

    async def classify_intent(self, message, intents):
        intent = intents[0]["name"] if intents else "unknown"
        return IntentClassification(
            intent=intent,
            confidence=0.9,
            all_intents=[{"intent": intent, "confidence": 0.9}],
        )


def _as_confidence(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


# Default client instances, created on first use
_default_clients: Dict[str, LLMClient] = {}


def get_llm_client(provider: Optional[str]) -> LLMClient:
    """Get the shared client for a provider name ("anthropic", else OpenAI)."""
    key = "anthropic" if (provider or "").lower() == "anthropic" else "openai"
    if key not in _default_clients:
        _default_clients[key] = AnthropicClient() if key == "anthropic" else OpenAIClient()
        logger.info(f"Created default {key} LLM client")
    return _default_clients[key]
