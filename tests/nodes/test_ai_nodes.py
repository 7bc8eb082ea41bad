"""Unit tests for the ai_response, knowledge_lookup and intent_classifier nodes

All collaborators are AsyncMock objects; no provider is called.

Tests cover:
- ai_response prompt assembly, model settings, stored variables and fallback copy
- knowledge_lookup query resolution, result storage and found/no_results/error routing
- intent_classifier prompt, JSON parsing, confidence threshold and unknown routing
"""

from unittest.mock import AsyncMock

import pytest

from chatflow import settings
from chatflow.agents.llm_client import ChatCompletion
from chatflow.engine.context import ChatMessage
from chatflow.errors import KnowledgeSearchError, LLMClientError
from chatflow.integrations.knowledge import KnowledgeResult
from chatflow.nodes.ai import IntentOption, build_classifier_prompt


def with_history(context, *pairs):
    for role, content in pairs:
        context = context.with_message(ChatMessage(role=role, content=content))
    return context


class TestAIResponse:
    @pytest.mark.asyncio
    async def test_reply_and_variables(self, make_handler, make_node, context, llm):
        node = make_node("ai_response", systemPrompt="Help with {{topic}}.", responseVariable="answer")
        ctx = with_history(context.with_variables({"topic": "billing"}), ("user", "Why was I charged?"))

        result = await make_handler("ai_response", llm_client=llm).execute(node, ctx, "Why was I charged?")

        assert result.response.type == "message"
        assert result.response.content == "Here is the answer."
        assert result.response.metadata["aiModel"] == "gpt-4o-mini"
        assert result.response.metadata["provider"] == "openai"
        assert result.response.metadata["tokenCount"] == 20
        assert result.response.metadata["usage"] == {"promptTokens": 12, "completionTokens": 8, "totalTokens": 20}
        assert isinstance(result.response.metadata["latencyMs"], int)

        variables = result.context.variables
        assert variables["_lastAIResponse"] == "Here is the answer."
        assert variables["_lastAIUsage"]["totalTokens"] == 20
        assert variables["answer"] == "Here is the answer."

        kwargs = llm.chat.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.5
        assert kwargs["max_tokens"] == 256
        assert kwargs["messages"] == [
            {"role": "system", "content": "Help with billing."},
            {"role": "user", "content": "Why was I charged?"},
        ]

    @pytest.mark.asyncio
    async def test_node_overrides_chatbot_settings(self, make_handler, make_node, context, llm):
        node = make_node("ai_response", model="gpt-4o", temperature=0, maxTokens=50)

        await make_handler("ai_response", llm_client=llm).execute(node, context, "hi")

        kwargs = llm.chat.await_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0
        assert kwargs["max_tokens"] == 50
        # No system prompt configured and no persona: only the user message
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_persona_prefixes_system_prompt(self, make_handler, make_node, context, llm, chatbot):
        persona_bot = chatbot.model_copy(update={"persona_instructions": "You are {{botName}}."})
        node = make_node("ai_response", systemPrompt="Answer briefly.")
        ctx = context.with_variables({"botName": "Ava"})

        await make_handler("ai_response", llm_client=llm, chatbot=persona_bot).execute(node, ctx, "hi")

        system = llm.chat.await_args.kwargs["messages"][0]
        assert system == {"role": "system", "content": "You are Ava.\n\nAnswer briefly."}

    @pytest.mark.asyncio
    async def test_history_window(self, make_handler, make_node, context, llm):
        ctx = with_history(
            context,
            ("user", "first"),
            ("assistant", "reply one"),
            ("user", "second"),
            ("assistant", "reply two"),
        )
        node = make_node("ai_response", historyWindow=2)

        await make_handler("ai_response", llm_client=llm).execute(node, ctx, "third")

        assert llm.chat.await_args.kwargs["messages"] == [
            {"role": "user", "content": "second"},
            {"role": "assistant", "content": "reply two"},
            {"role": "user", "content": "third"},
        ]

    @pytest.mark.asyncio
    async def test_llm_error_uses_chatbot_fallback(self, make_handler, make_node, context, llm):
        llm.chat.side_effect = LLMClientError("OpenAI API error: 429 - rate limited", status_code=429)

        result = await make_handler("ai_response", llm_client=llm).execute(
            make_node("ai_response", responseVariable="answer"), context, "hi"
        )

        assert result.response.content == "Sorry, something went wrong."
        assert result.should_continue is True
        assert "answer" not in result.context.variables
        assert "_lastAIResponse" not in result.context.variables

    @pytest.mark.asyncio
    async def test_unexpected_error_uses_default_fallback(self, make_handler, make_node, context, llm, chatbot):
        llm.chat.side_effect = RuntimeError("socket closed")
        plain_bot = chatbot.model_copy(update={"fallback_message": None})

        result = await make_handler("ai_response", llm_client=llm, chatbot=plain_bot).execute(
            make_node("ai_response"), context, "hi"
        )

        assert result.response.content == settings.DEFAULT_FALLBACK_MESSAGE

    @pytest.mark.asyncio
    async def test_mapping_usage_is_accepted(self, make_handler, make_node, context, llm):
        llm.chat.return_value = ChatCompletion(
            content="Sure.", model="gpt-4o-mini", usage={"prompt_tokens": 2, "completion_tokens": 1},
        )

        result = await make_handler("ai_response", llm_client=llm).execute(make_node("ai_response"), context, "hi")

        assert result.response.content == "Sure."
        assert result.context.variables["_lastAIUsage"] == {
            "promptTokens": 2, "completionTokens": 1, "totalTokens": 3,
        }
        assert result.response.metadata["tokenCount"] == 3

    @pytest.mark.asyncio
    async def test_missing_content_uses_fallback(self, make_handler, make_node, context, llm):
        llm.chat.return_value = ChatCompletion(content=None, model="gpt-4o-mini")

        result = await make_handler("ai_response", llm_client=llm).execute(
            make_node("ai_response", responseVariable="answer"), context, "hi"
        )

        assert result.response.content == "Sorry, something went wrong."
        assert "answer" not in result.context.variables

    @pytest.mark.asyncio
    async def test_unreadable_usage_uses_fallback(self, make_handler, make_node, context, llm):
        llm.chat.return_value = ChatCompletion(content="Sure.", model="gpt-4o-mini", usage=42)

        result = await make_handler("ai_response", llm_client=llm).execute(make_node("ai_response"), context, "hi")

        assert result.response.content == "Sorry, something went wrong."
        assert "_lastAIUsage" not in result.context.variables


class TestKnowledgeLookup:
    @pytest.fixture
    def searcher(self):
        searcher = AsyncMock()
        searcher.search = AsyncMock(return_value=[
            KnowledgeResult(content="Refunds take 5 days.", score=0.91, source_id="doc_1", source_name="FAQ"),
            {"content": "Contact billing@example.com.", "similarity": 0.8, "documentId": "doc_2"},
        ])
        return searcher

    @pytest.mark.asyncio
    async def test_found(self, make_handler, make_node, context, searcher):
        node = make_node("knowledge_lookup", knowledgeBaseId="kb_1", query="{{topic}} policy", topK=3, threshold=0.5)
        ctx = context.with_variables({"topic": "refund"})

        result = await make_handler("knowledge_lookup", knowledge_searcher=searcher).execute(node, ctx)

        searcher.search.assert_awaited_once_with("kb_1", "refund policy", top_k=3, threshold=0.5)
        variables = result.context.variables
        assert variables["_knowledgeFound"] is True
        assert variables["_knowledgeResults"][0] == {
            "content": "Refunds take 5 days.",
            "score": 0.91,
            "metadata": {},
            "sourceId": "doc_1",
            "sourceName": "FAQ",
        }
        assert variables["_knowledgeResults"][1]["sourceId"] == "doc_2"
        assert variables["_knowledgeContext"] == "Refunds take 5 days.\n\n---\n\nContact billing@example.com."
        assert result.selected_handle == "found"
        assert result.response is None

    @pytest.mark.asyncio
    async def test_query_defaults_to_user_message(self, make_handler, make_node, context, searcher):
        node = make_node("knowledge_lookup", knowledgeBaseId="kb_1", resultVariable="docs")

        result = await make_handler("knowledge_lookup", knowledge_searcher=searcher).execute(
            node, context, "how do refunds work"
        )

        assert searcher.search.await_args.args == ("kb_1", "how do refunds work")
        assert searcher.search.await_args.kwargs == {
            "top_k": settings.KNOWLEDGE_DEFAULT_TOP_K,
            "threshold": settings.KNOWLEDGE_DEFAULT_THRESHOLD,
        }
        assert len(result.context.variables["docs"]) == 2

    @pytest.mark.asyncio
    async def test_selected_knowledge_base_variable(self, make_handler, make_node, context, searcher):
        ctx = context.with_variables({"_selectedKnowledgeBaseId": "kb_sel"})

        await make_handler("knowledge_lookup", knowledge_searcher=searcher).execute(
            make_node("knowledge_lookup"), ctx, "question"
        )

        assert searcher.search.await_args.args[0] == "kb_sel"

    @pytest.mark.asyncio
    async def test_no_results(self, make_handler, make_node, context):
        searcher = AsyncMock()
        searcher.search = AsyncMock(return_value=[])
        node = make_node("knowledge_lookup", knowledgeBaseId="kb_1")

        result = await make_handler("knowledge_lookup", knowledge_searcher=searcher).execute(node, context, "q")

        assert result.selected_handle == "no_results"
        assert result.context.variables["_knowledgeFound"] is False
        assert result.context.variables["_knowledgeResults"] == []
        assert result.context.variables["_knowledgeContext"] == ""

    @pytest.mark.asyncio
    async def test_missing_knowledge_base_skips_search(self, make_handler, make_node, context, searcher):
        result = await make_handler("knowledge_lookup", knowledge_searcher=searcher).execute(
            make_node("knowledge_lookup"), context, "question"
        )

        searcher.search.assert_not_awaited()
        assert result.selected_handle == "no_results"
        assert result.context.variables["_knowledgeFound"] is False

    @pytest.mark.asyncio
    async def test_missing_searcher(self, make_handler, make_node, context):
        node = make_node("knowledge_lookup", knowledgeBaseId="kb_1")
        result = await make_handler("knowledge_lookup").execute(node, context, "question")
        assert result.selected_handle == "no_results"

    @pytest.mark.asyncio
    async def test_search_error_routes_to_error(self, make_handler, make_node, context):
        searcher = AsyncMock()
        searcher.search = AsyncMock(side_effect=KnowledgeSearchError("Knowledge base search failed (503): down"))
        node = make_node("knowledge_lookup", knowledgeBaseId="kb_1")

        result = await make_handler("knowledge_lookup", knowledge_searcher=searcher).execute(node, context, "q")

        assert result.selected_handle == "error"
        assert result.context.variables["_knowledgeError"] == "Knowledge base search failed (503): down"
        assert result.context.variables["_knowledgeFound"] is False

    @pytest.mark.parametrize(
        "payload, message",
        [
            (None, "returned NoneType, expected a list"),
            ({"results": []}, "returned dict, expected a list"),
            (["just text"], "Unexpected knowledge result item: str"),
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_results_route_to_error(self, make_handler, make_node, context, payload, message):
        searcher = AsyncMock()
        searcher.search = AsyncMock(return_value=payload)
        node = make_node("knowledge_lookup", knowledgeBaseId="kb_1")

        result = await make_handler("knowledge_lookup", knowledge_searcher=searcher).execute(node, context, "q")

        assert result.selected_handle == "error"
        assert message in result.context.variables["_knowledgeError"]
        assert result.context.variables["_knowledgeResults"] == []
        assert result.context.variables["_knowledgeFound"] is False


class TestIntentClassifier:
    INTENTS = [
        {"id": "billing", "label": "Billing", "description": "Payments and invoices",
         "examples": ["refund", "invoice", "charge", "receipt"]},
        {"id": "shipping", "label": "Shipping", "description": "Delivery questions"},
    ]

    def classifier(self, make_handler, llm, content):
        llm.chat.return_value = ChatCompletion(content=content, model="gpt-4o-mini")
        return make_handler("intent_classifier", llm_client=llm)

    @pytest.mark.asyncio
    async def test_classifies_intent(self, make_handler, make_node, context, llm):
        handler = self.classifier(make_handler, llm, '{"intent": "billing", "confidence": 0.92}')

        result = await handler.execute(make_node("intent_classifier", intents=self.INTENTS), context, "I was double charged")

        assert result.selected_handle == "billing"
        variables = result.context.variables
        assert variables["_classifiedIntent"] == "billing"
        assert variables["_intentConfidence"] == 0.92
        assert variables["_intentRaw"] == {"intent": "billing", "confidence": 0.92}

        kwargs = llm.chat.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == settings.INTENT_TEMPERATURE
        assert kwargs["max_tokens"] == settings.INTENT_MAX_TOKENS
        assert kwargs["messages"][1] == {"role": "user", "content": "I was double charged"}

    @pytest.mark.asyncio
    async def test_fenced_json_and_custom_variable(self, make_handler, make_node, context, llm):
        handler = self.classifier(
            make_handler, llm, 'Sure!\n```json\n{"intent": "shipping", "confidence": 0.8}\n```'
        )
        node = make_node("intent_classifier", intents=self.INTENTS, resultVariable="topic")

        result = await handler.execute(node, context, "where is my parcel")

        assert result.selected_handle == "shipping"
        assert result.context.variables["topic"] == "shipping"

    @pytest.mark.asyncio
    async def test_below_threshold_is_unknown(self, make_handler, make_node, context, llm):
        handler = self.classifier(make_handler, llm, '{"intent": "billing", "confidence": 0.5}')

        result = await handler.execute(make_node("intent_classifier", intents=self.INTENTS), context, "hmm")

        assert result.selected_handle == "unknown"
        assert result.context.variables["_classifiedIntent"] == "unknown"
        assert result.context.variables["_intentConfidence"] == 0.5

    @pytest.mark.asyncio
    async def test_zero_threshold_is_honored(self, make_handler, make_node, context, llm):
        handler = self.classifier(make_handler, llm, '{"intent": "billing", "confidence": 0.1}')
        node = make_node("intent_classifier", intents=self.INTENTS, confidenceThreshold=0)

        result = await handler.execute(node, context, "hmm")

        assert result.selected_handle == "billing"

    @pytest.mark.asyncio
    async def test_unlisted_intent_is_unknown(self, make_handler, make_node, context, llm):
        handler = self.classifier(make_handler, llm, '{"intent": "weather", "confidence": 0.99}')

        result = await handler.execute(make_node("intent_classifier", intents=self.INTENTS), context, "rain?")

        assert result.selected_handle == "unknown"

    @pytest.mark.asyncio
    async def test_unparseable_reply(self, make_handler, make_node, context, llm):
        handler = self.classifier(make_handler, llm, "I think it is about billing.")

        result = await handler.execute(make_node("intent_classifier", intents=self.INTENTS), context, "hmm")

        assert result.selected_handle == "unknown"
        assert result.context.variables["_intentConfidence"] == 0.0
        assert result.context.variables["_intentRaw"] == {"intent": "unknown", "confidence": 0}

    @pytest.mark.asyncio
    async def test_llm_error(self, make_handler, make_node, context, llm):
        llm.chat.side_effect = LLMClientError("OpenAI API timeout: /chat/completions")

        result = await make_handler("intent_classifier", llm_client=llm).execute(
            make_node("intent_classifier", intents=self.INTENTS), context, "hello"
        )

        assert result.selected_handle == "unknown"
        assert result.context.variables["_classifiedIntent"] == "unknown"
        assert result.context.variables["_intentConfidence"] == 0

    @pytest.mark.asyncio
    async def test_non_text_reply_is_unknown(self, make_handler, make_node, context, llm):
        llm.chat.return_value = ChatCompletion(content=12, model="gpt-4o-mini")

        result = await make_handler("intent_classifier", llm_client=llm).execute(
            make_node("intent_classifier", intents=self.INTENTS), context, "hello"
        )

        assert result.selected_handle == "unknown"
        assert result.context.variables["_classifiedIntent"] == "unknown"

    @pytest.mark.asyncio
    async def test_no_message(self, make_handler, make_node, context, llm):
        result = await make_handler("intent_classifier", llm_client=llm).execute(
            make_node("intent_classifier", intents=self.INTENTS), context
        )

        llm.chat.assert_not_awaited()
        assert result.selected_handle == "unknown"
        assert "_classifiedIntent" not in result.context.variables


class TestBuildClassifierPrompt:
    def test_lists_intents_examples_and_unknown(self):
        prompt = build_classifier_prompt([
            IntentOption(id="billing", description="Payments", examples=["a", "b", "c", "d"]),
            IntentOption(id="other", description="Anything else"),
        ])

        assert "- billing: Payments\n  Examples: a, b, c\n" in prompt
        assert "- other: Anything else\n" in prompt
        assert "- unknown: None of the above intents match" in prompt
        assert '{"intent": "<intent_id>", "confidence": <0.0-1.0>}' in prompt
        assert ", d" not in prompt
