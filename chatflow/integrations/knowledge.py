"""Knowledge base search collaborator.

The knowledge_lookup node depends on the KnowledgeSearcher protocol only.
HttpKnowledgeSearchClient calls the knowledge service's search route; the
service owns ingestion, embeddings and ranking.

Environment:
    KNOWLEDGE_API_BASE_URL: Knowledge service base URL
    KNOWLEDGE_API_TOKEN: Optional bearer token

Usage:
    client = HttpKnowledgeSearchClient(workspace_id="ws_1")
    results = await client.search("kb_1", "refund policy", top_k=5, threshold=0.7)
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from .. import config, settings
from ..errors import KnowledgeSearchError

logger = logging.getLogger(__name__)


@dataclass
class KnowledgeResult:
    """One ranked knowledge chunk."""

    content: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    source_id: str = ""
    source_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """camelCase form stored in conversation variables."""
        data = asdict(self)
        return {
            "content": data["content"],
            "score": data["score"],
            "metadata": data["metadata"],
            "sourceId": data["source_id"],
            "sourceName": data["source_name"],
        }

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "KnowledgeResult":
        return cls(
            content=str(raw.get("content", "")),
            score=float(raw.get("score", raw.get("similarity", 0.0)) or 0.0),
            metadata=raw.get("metadata") or {},
            source_id=str(
                raw.get("sourceId") or raw.get("documentId") or raw.get("id") or ""
            ),
            source_name=raw.get("sourceName") or raw.get("documentName"),
        )


@runtime_checkable
class KnowledgeSearcher(Protocol):
    """What the runtime needs from a knowledge base."""

    async def search(
        self,
        kb_id: str,
        query: str,
        top_k: int,
        threshold: float,
    ) -> List[KnowledgeResult]:
        ...


class HttpKnowledgeSearchClient:
    """Async client for the knowledge service search route.

    Args:
        workspace_id: Scopes the search route; the unscoped route is used when None.
        base_url: Service base URL. Falls back to KNOWLEDGE_API_BASE_URL.
        token: Bearer token. Falls back to KNOWLEDGE_API_TOKEN.
        timeout: HTTP request timeout in seconds.
        transport: Optional httpx transport (tests inject httpx.MockTransport).
    """

    def __init__(
        self,
        workspace_id: Optional[str] = None,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._workspace_id = workspace_id
        self._base_url = (base_url or config.KNOWLEDGE_API_BASE_URL).rstrip("/")
        self._token = token if token is not None else config.KNOWLEDGE_API_TOKEN
        self._timeout = timeout if timeout is not None else settings.KNOWLEDGE_HTTP_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _search_path(self, kb_id: str) -> str:
        if self._workspace_id:
            return f"/api/workspaces/{self._workspace_id}/knowledge-bases/{kb_id}/search"
        logger.warning(f"Knowledge search for {kb_id} has no workspace id; using unscoped route")
        return f"/api/knowledge-bases/{kb_id}/search"

    async def search(
        self,
        kb_id: str,
        query: str,
        top_k: int = settings.KNOWLEDGE_DEFAULT_TOP_K,
        threshold: float = settings.KNOWLEDGE_DEFAULT_THRESHOLD,
    ) -> List[KnowledgeResult]:
        """Search ``kb_id`` and return results ordered by relevance.

        Raises:
            KnowledgeSearchError: On transport failure or a non-2xx response
        """
        path = self._search_path(kb_id)
        client = await self._get_client()
        try:
            resp = await client.post(
                path,
                json={"query": query, "limit": top_k, "topK": top_k, "threshold": threshold},
            )
        except httpx.TimeoutException as e:
            raise KnowledgeSearchError(f"Knowledge search timeout: {path}") from e
        except httpx.HTTPError as e:
            raise KnowledgeSearchError(f"Knowledge search connection error: {e}") from e

        if not resp.is_success:
            raise KnowledgeSearchError(
                f"Knowledge base search failed ({resp.status_code}): {resp.text[:200]}"
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise KnowledgeSearchError("Knowledge search returned invalid JSON") from e

        # The service answers {"results": [...]}; a bare list is accepted too
        raw_results = payload.get("results", []) if isinstance(payload, dict) else payload
        if not isinstance(raw_results, list):
            raise KnowledgeSearchError("Knowledge search returned an unexpected payload")

        results = [KnowledgeResult.from_api(r) for r in raw_results if isinstance(r, dict)]
        logger.info(f"search: kb={kb_id}, query_len={len(query)}, results={len(results)}")
        return results
