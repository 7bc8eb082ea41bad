"""Unit tests for the knowledge search client

Tests cover:
- Search route selection (workspace-scoped and unscoped)
- Request payload and bearer token
- Response shapes and KnowledgeResult normalization
- Error mapping to KnowledgeSearchError
"""

import json

import httpx
import pytest

from chatflow.errors import KnowledgeSearchError
from chatflow.integrations.knowledge import HttpKnowledgeSearchClient, KnowledgeResult, KnowledgeSearcher


def client_for(handler, **kwargs):
    kwargs.setdefault("base_url", "https://kb.test")
    kwargs.setdefault("token", "")
    return HttpKnowledgeSearchClient(transport=httpx.MockTransport(handler), **kwargs)


class TestKnowledgeResult:
    def test_from_api_accepts_alternate_keys(self):
        result = KnowledgeResult.from_api({
            "content": "Chunk",
            "similarity": 0.77,
            "documentId": "doc_9",
            "documentName": "Handbook",
            "metadata": {"page": 4},
        })
        assert result == KnowledgeResult(
            content="Chunk", score=0.77, metadata={"page": 4}, source_id="doc_9", source_name="Handbook"
        )

    def test_from_api_defaults(self):
        result = KnowledgeResult.from_api({"content": "x"})
        assert result.score == 0.0
        assert result.metadata == {}
        assert result.source_id == ""
        assert result.source_name is None

    def test_to_dict_is_camel_case(self):
        result = KnowledgeResult(content="c", score=0.5, source_id="s", source_name="n")
        assert result.to_dict() == {
            "content": "c", "score": 0.5, "metadata": {}, "sourceId": "s", "sourceName": "n",
        }


class TestHttpKnowledgeSearchClient:
    @pytest.mark.asyncio
    async def test_workspace_scoped_search(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"results": [
                {"content": "Refunds take 5 days.", "score": 0.9, "sourceId": "doc_1", "sourceName": "FAQ"},
            ]})

        client = client_for(handler, workspace_id="ws_1", token="kb-token")

        results = await client.search("kb_1", "refunds", top_k=3, threshold=0.6)
        await client.close()

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/api/workspaces/ws_1/knowledge-bases/kb_1/search"
        assert request.headers["Authorization"] == "Bearer kb-token"
        assert json.loads(request.content) == {"query": "refunds", "limit": 3, "topK": 3, "threshold": 0.6}
        assert results == [
            KnowledgeResult(content="Refunds take 5 days.", score=0.9, source_id="doc_1", source_name="FAQ")
        ]

    @pytest.mark.asyncio
    async def test_unscoped_route_and_bare_list(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"content": "A", "score": 0.8}, "junk"])

        client = client_for(handler)

        results = await client.search("kb_2", "q", top_k=5, threshold=0.7)

        assert seen[0].url.path == "/api/knowledge-bases/kb_2/search"
        assert "Authorization" not in seen[0].headers
        assert [r.content for r in results] == ["A"]

    @pytest.mark.asyncio
    async def test_error_status(self):
        client = client_for(lambda request: httpx.Response(503, text="maintenance"), workspace_id="ws_1")

        with pytest.raises(KnowledgeSearchError, match=r"failed \(503\): maintenance"):
            await client.search("kb_1", "q", top_k=5, threshold=0.7)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = client_for(handler, workspace_id="ws_1")

        with pytest.raises(KnowledgeSearchError, match="timeout"):
            await client.search("kb_1", "q", top_k=5, threshold=0.7)

    @pytest.mark.asyncio
    async def test_unexpected_payload(self):
        client = client_for(lambda request: httpx.Response(200, json={"results": "none"}), workspace_id="ws_1")

        with pytest.raises(KnowledgeSearchError, match="unexpected payload"):
            await client.search("kb_1", "q", top_k=5, threshold=0.7)

    def test_satisfies_protocol(self):
        assert isinstance(client_for(lambda request: httpx.Response(200, json=[])), KnowledgeSearcher)
