"""
Knowledge Service Module

Searches the user's private knowledge index. Keywords are embedded with
Gemini and matched against a ChromaDB collection over its HTTP API.
"""

from typing import Any, Dict, List, Optional

import google.generativeai as genai
import requests

from config import settings
from data.models import KnowledgeChunk
from utils.exceptions import KnowledgeSearchError
from utils.logger import get_logger

logger = get_logger(__name__)


class ChromaKnowledgeClient:
    """KnowledgeSearchClient backed by a ChromaDB server."""

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 collection: Optional[str] = None, max_results: int = settings.KNOWLEDGE_MAX_CHUNKS,
                 timeout: float = settings.KNOWLEDGE_TIMEOUT,
                 session: Optional[requests.Session] = None):
        host = host or settings.CHROMA_HOST
        port = port or settings.CHROMA_PORT
        self.base_url = f"http://{host}:{port}/api/v1"
        self.collection_name = collection or settings.CHROMA_COLLECTION
        self.max_results = max_results
        self.timeout = timeout
        self.session = session or requests.Session()
        self._collection_id: Optional[str] = None

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, f"{self.base_url}{path}",
                                            timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise KnowledgeSearchError(f"ChromaDB request failed: {e}") from e
        return response

    def _get_collection_id(self) -> Optional[str]:
        """Resolve the collection id; None when the collection does not exist yet."""
        if self._collection_id:
            return self._collection_id

        response = self._request('GET', f"/collections/{self.collection_name}")
        if response.status_code == 404 or (response.status_code >= 400 and 'does not exist' in response.text):
            return None
        if response.status_code >= 400:
            raise KnowledgeSearchError(
                f"ChromaDB collection lookup failed ({response.status_code}): {response.text[:200]}")

        self._collection_id = response.json()['id']
        return self._collection_id

    def _embed(self, text: str) -> List[float]:
        try:
            result = genai.embed_content(
                model=settings.EMBEDDING_MODEL,
                content=text,
                task_type="retrieval_query"
            )
        except Exception as e:
            raise KnowledgeSearchError(f"Embedding request failed: {e}") from e
        return result['embedding']

    def search(self, keywords: List[str]) -> List[KnowledgeChunk]:
        """
        Find the snippets closest to the keywords.

        An empty keyword list, a missing collection or an empty collection
        all return an empty list.

        Raises:
            KnowledgeSearchError: The index or the embedding service failed.
        """
        terms = [k for k in keywords if k and k.strip()]
        if not terms or self.max_results <= 0:
            return []

        collection_id = self._get_collection_id()
        if collection_id is None:
            logger.info(f"Knowledge collection '{self.collection_name}' does not exist yet")
            return []

        embedding = self._embed(" ".join(terms))
        response = self._request('POST', f"/collections/{collection_id}/query", json={
            'query_embeddings': [embedding],
            'n_results': self.max_results,
            'include': ['documents', 'metadatas', 'distances'],
        })
        if response.status_code >= 400:
            raise KnowledgeSearchError(
                f"ChromaDB query failed ({response.status_code}): {response.text[:200]}")

        chunks = self._parse_results(response.json())
        logger.debug(f"Knowledge search for {terms} returned {len(chunks)} chunks")
        return chunks

    @staticmethod
    def _parse_results(payload: Dict[str, Any]) -> List[KnowledgeChunk]:
        # Chroma returns one list per query embedding; we always send one
        ids = (payload.get('ids') or [[]])[0] or []
        documents = (payload.get('documents') or [[]])[0] or []
        metadatas = (payload.get('metadatas') or [[]])[0] or []
        distances = (payload.get('distances') or [[]])[0] or []

        chunks = []
        for i, chunk_id in enumerate(ids):
            text = documents[i] if i < len(documents) else None
            if not text:
                continue
            metadata = (metadatas[i] if i < len(metadatas) else None) or {}
            chunks.append(KnowledgeChunk(
                id=chunk_id,
                text=text,
                document_id=str(metadata.get('documentId', '')),
                distance=float(distances[i]) if i < len(distances) else 0.0,
                chunk_index=int(metadata.get('chunkIndex', 0)),
                filename=metadata.get('filename')
            ))
        return chunks
