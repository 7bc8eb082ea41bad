"""AI nodes: ai_response, knowledge_lookup, intent_classifier.

Key Components:
- AIResponseHandler: persona + system prompt + recent history -> LLM reply
- KnowledgeLookupHandler: knowledge base search, routes found/no_results/error
- IntentClassifierHandler: LLM intent pick with confidence threshold

Design Principles:
- Handlers depend on the collaborator contracts only (LLMClient, KnowledgeSearcher)
- A collaborator failure never fails the turn: fallback copy or an "error" route
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import AliasChoices, Field

from .. import settings
from ..agents.llm_client import LLMClient, TokenUsage, get_llm_client
from ..agents.llm_utils import parse_llm_json
from ..engine.context import ChatflowModel, ExecutionContext, NodeResponse
from ..engine.graph import NodeConfig
from ..engine.template import interpolate
from ..errors import CollaboratorError, KnowledgeSearchError, LLMClientError
from ..integrations.knowledge import KnowledgeResult
from .registry import BaseHandler, NodeConfigModel, register_node_type

logger = logging.getLogger(__name__)

LAST_AI_RESPONSE_VAR = "_lastAIResponse"
LAST_AI_USAGE_VAR = "_lastAIUsage"

KNOWLEDGE_RESULTS_VAR = "_knowledgeResults"
KNOWLEDGE_FOUND_VAR = "_knowledgeFound"
KNOWLEDGE_CONTEXT_VAR = "_knowledgeContext"
KNOWLEDGE_ERROR_VAR = "_knowledgeError"
SELECTED_KB_VAR = "_selectedKnowledgeBaseId"

CLASSIFIED_INTENT_VAR = "_classifiedIntent"
INTENT_CONFIDENCE_VAR = "_intentConfidence"
INTENT_RAW_VAR = "_intentRaw"
UNKNOWN_INTENT = "unknown"


class _LLMHandler(BaseHandler):
    """Resolves the LLM collaborator: injected client, else the chatbot provider's default."""

    @property
    def llm(self) -> LLMClient:
        return self.deps.llm_client or get_llm_client(self.chatbot.ai_provider)


# ---------------------------------------------------------------------------
# ai_response
# ---------------------------------------------------------------------------


class AIResponseConfig(NodeConfigModel):
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    response_variable: Optional[str] = None
    history_window: int = settings.AI_HISTORY_WINDOW


@register_node_type(
    node_type="ai_response",
    display_name="AI Response",
    description="Generates a reply with the chatbot's language model",
    category="ai",
    config_model=AIResponseConfig,
)
class AIResponseHandler(_LLMHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: AIResponseConfig = self.parse_config(node)
        messages = self._build_messages(config, context, user_message)
        model = config.model or self.chatbot.ai_model
        temperature = config.temperature if config.temperature is not None else self.chatbot.ai_temperature
        max_tokens = config.max_tokens if config.max_tokens is not None else self.chatbot.ai_max_tokens

        started = time.perf_counter()
        try:
            completion = await self.llm.chat(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            if not isinstance(completion.content, str):
                raise LLMClientError(f"LLM returned no text content ({type(completion.content).__name__})")
            latency_ms = int((time.perf_counter() - started) * 1000)

            usage = _usage_dict(completion.usage)
            response = NodeResponse(
                type="message",
                content=completion.content,
                metadata={
                    "aiModel": completion.model or model,
                    "provider": self.chatbot.ai_provider,
                    "tokenCount": usage["totalTokens"] if usage else None,
                    "usage": usage,
                    "latencyMs": latency_ms,
                },
            )
        except CollaboratorError as e:
            logger.error(f"Node {node.id}: AI response failed: {e}")
            return self._fallback(node, context)
        except Exception as e:
            logger.exception(f"Node {node.id}: AI response error: {e}")
            return self._fallback(node, context)

        updates: Dict[str, Any] = {
            LAST_AI_RESPONSE_VAR: completion.content,
            LAST_AI_USAGE_VAR: usage,
        }
        if config.response_variable:
            updates[config.response_variable] = completion.content

        return self.result(node, context.with_variables(updates), response=response)

    def _build_messages(
        self,
        config: AIResponseConfig,
        context: ExecutionContext,
        user_message: Optional[str],
    ) -> List[Dict[str, str]]:
        system_prompt = config.system_prompt or ""
        if self.chatbot.persona_instructions:
            system_prompt = f"{self.chatbot.persona_instructions}\n\n{system_prompt}"
        system_prompt = interpolate(system_prompt, context.variables)

        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        recent = context.messages[-config.history_window:] if config.history_window > 0 else []
        for msg in recent:
            if msg.role in ("user", "assistant"):
                messages.append({"role": msg.role, "content": msg.content})

        if user_message and not any(m.role == "user" and m.content == user_message for m in recent):
            messages.append({"role": "user", "content": user_message})
        return messages

    def _fallback(self, node: NodeConfig, context: ExecutionContext):
        content = self.chatbot.fallback_message or settings.DEFAULT_FALLBACK_MESSAGE
        return self.result(node, context, response=NodeResponse(type="message", content=content))


# ---------------------------------------------------------------------------
# knowledge_lookup
# ---------------------------------------------------------------------------


class KnowledgeLookupConfig(NodeConfigModel):
    knowledge_base_id: Optional[str] = None
    query: Optional[str] = None
    top_k: int = settings.KNOWLEDGE_DEFAULT_TOP_K
    threshold: float = settings.KNOWLEDGE_DEFAULT_THRESHOLD
    result_variable: str = KNOWLEDGE_RESULTS_VAR


@register_node_type(
    node_type="knowledge_lookup",
    display_name="Knowledge Lookup",
    description="Searches a knowledge base and routes on whether anything was found",
    category="ai",
    config_model=KnowledgeLookupConfig,
    handles=("found", "no_results", "error"),
)
class KnowledgeLookupHandler(BaseHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: KnowledgeLookupConfig = self.parse_config(node)
        kb_id = config.knowledge_base_id or context.variables.get(SELECTED_KB_VAR)
        query = interpolate(config.query, context.variables) if config.query else (user_message or "")
        searcher = self.deps.knowledge_searcher

        if not kb_id or not query or searcher is None:
            if not kb_id:
                logger.warning(f"Node {node.id}: no knowledge base configured or selected, skipping lookup")
            elif searcher is None:
                logger.warning(f"Node {node.id}: no knowledge searcher configured, skipping lookup")
            return self._route(node, context, config, {KNOWLEDGE_FOUND_VAR: False}, "no_results")

        try:
            raw_results = await searcher.search(str(kb_id), query, top_k=config.top_k, threshold=config.threshold)
            results = _normalize_results(raw_results)
            updates = {
                config.result_variable: [r.to_dict() for r in results],
                KNOWLEDGE_FOUND_VAR: len(results) > 0,
                KNOWLEDGE_CONTEXT_VAR: "\n\n---\n\n".join(r.content for r in results),
            }
        except Exception as e:
            logger.error(f"Node {node.id}: knowledge lookup error: {e}")
            return self._route(
                node,
                context,
                config,
                {KNOWLEDGE_FOUND_VAR: False, KNOWLEDGE_ERROR_VAR: str(e) or "Unknown error"},
                "error",
            )

        return self.result(
            node,
            context.with_variables(updates),
            selected_handle="found" if updates[KNOWLEDGE_FOUND_VAR] else "no_results",
        )

    def _route(self, node, context, config, updates, handle):
        return self.result(
            node,
            context.with_variables({config.result_variable: [], **updates}),
            selected_handle=handle,
        )


# ---------------------------------------------------------------------------
# intent_classifier
# ---------------------------------------------------------------------------


class IntentOption(ChatflowModel):
    id: str
    label: Optional[str] = None
    description: str = ""
    examples: List[str] = []


class IntentClassifierConfig(NodeConfigModel):
    intents: List[IntentOption] = []
    confidence_threshold: Optional[float] = None
    result_variable: str = Field(
        default=CLASSIFIED_INTENT_VAR,
        validation_alias=AliasChoices("resultVariable", "result_variable"),
    )


@register_node_type(
    node_type="intent_classifier",
    display_name="Intent Classifier",
    description="Classifies the user's message into one of the configured intents",
    category="ai",
    config_model=IntentClassifierConfig,
    handles=(UNKNOWN_INTENT,),
)
class IntentClassifierHandler(_LLMHandler):
    async def execute(self, node: NodeConfig, context: ExecutionContext, user_message: Optional[str] = None):
        config: IntentClassifierConfig = self.parse_config(node)
        if not user_message:
            return self.result(node, context, selected_handle=UNKNOWN_INTENT)

        try:
            completion = await self.llm.chat(
                model=self.chatbot.ai_model,
                messages=[
                    {"role": "system", "content": build_classifier_prompt(config.intents)},
                    {"role": "user", "content": user_message},
                ],
                temperature=settings.INTENT_TEMPERATURE,
                max_tokens=settings.INTENT_MAX_TOKENS,
            )
            classification = parse_llm_json(completion.content, caller=f"intent_classifier[{node.id}]")
        except Exception as e:
            logger.error(f"Node {node.id}: intent classification error: {e}")
            return self.result(
                node,
                context.with_variables({
                    config.result_variable: UNKNOWN_INTENT,
                    INTENT_CONFIDENCE_VAR: 0,
                }),
                selected_handle=UNKNOWN_INTENT,
            )

        if not classification or "intent" not in classification:
            classification = {"intent": UNKNOWN_INTENT, "confidence": 0}
        confidence = _confidence(classification.get("confidence"))

        threshold = (
            config.confidence_threshold
            if config.confidence_threshold is not None
            else settings.INTENT_CONFIDENCE_THRESHOLD
        )
        intent = str(classification["intent"]) if confidence >= threshold else UNKNOWN_INTENT
        if intent not in {option.id for option in config.intents}:
            intent = UNKNOWN_INTENT

        logger.info(f"Node {node.id}: intent={intent} confidence={confidence}")
        return self.result(
            node,
            context.with_variables({
                config.result_variable: intent,
                INTENT_CONFIDENCE_VAR: confidence,
                INTENT_RAW_VAR: classification,
            }),
            selected_handle=intent,
        )

    def output_handles(self, node: NodeConfig) -> Tuple[str, ...]:
        return tuple(option.id for option in self.parse_config(node).intents) + self.definition.handles


def build_classifier_prompt(intents: List[IntentOption]) -> str:
    lines = []
    for intent in intents:
        line = f"- {intent.id}: {intent.description}"
        if intent.examples:
            line += f"\n  Examples: {', '.join(intent.examples[:3])}"
        lines.append(line)
    return (
        "You are an intent classifier. Your task is to classify the user's message "
        "into one of the following intents:\n\n"
        + "\n".join(lines)
        + f"\n- {UNKNOWN_INTENT}: None of the above intents match\n\n"
        "Respond with ONLY a JSON object in this exact format:\n"
        '{"intent": "<intent_id>", "confidence": <0.0-1.0>}\n\n'
        "Be concise and accurate. If the message doesn't clearly match any intent, "
        f'use "{UNKNOWN_INTENT}".'
    )


def _confidence(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _usage_dict(usage: Any) -> Optional[Dict[str, int]]:
    """camelCase token usage from a TokenUsage or a provider-style mapping."""
    if usage is None:
        return None
    if isinstance(usage, TokenUsage):
        return usage.to_dict()
    if isinstance(usage, Mapping):
        def count(*keys: str) -> int:
            for key in keys:
                if usage.get(key) is not None:
                    return int(usage[key])
            return 0

        prompt = count("promptTokens", "prompt_tokens", "input_tokens")
        completion = count("completionTokens", "completion_tokens", "output_tokens")
        return {
            "promptTokens": prompt,
            "completionTokens": completion,
            "totalTokens": count("totalTokens", "total_tokens") or prompt + completion,
        }
    raise TypeError(f"Unsupported usage payload: {type(usage).__name__}")


def _normalize_results(raw_results: Any) -> List[KnowledgeResult]:
    if raw_results is None or isinstance(raw_results, (str, bytes, Mapping)):
        raise KnowledgeSearchError(f"Knowledge search returned {type(raw_results).__name__}, expected a list")
    results = []
    for item in raw_results:
        if isinstance(item, KnowledgeResult):
            results.append(item)
        elif isinstance(item, Mapping):
            results.append(KnowledgeResult.from_api(dict(item)))
        else:
            raise KnowledgeSearchError(f"Unexpected knowledge result item: {type(item).__name__}")
    return results
