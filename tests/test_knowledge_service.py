"""
Tests for Knowledge Service - ChromaDB knowledge search
"""

import pytest
import requests
from unittest.mock import MagicMock, patch
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.knowledge_service import ChromaKnowledgeClient
from utils.exceptions import KnowledgeSearchError


def _http_response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = text
    return response


QUERY_PAYLOAD = {
    "ids": [["c1", "c2", "c3"]],
    "documents": [["Ownership rules prevent data races.", None, "Lifetimes matter."]],
    "metadatas": [[{"documentId": 7, "chunkIndex": 2, "filename": "rust.md"}, {}, None]],
    "distances": [[0.12, 0.3, 0.45]],
}


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return ChromaKnowledgeClient(host="chroma", port=8000, collection="kb", max_results=3,
                                 timeout=5, session=session)


@pytest.fixture
def mock_embed():
    with patch('services.knowledge_service.genai.embed_content') as embed:
        embed.return_value = {"embedding": [0.1, 0.2, 0.3]}
        yield embed


class TestSearch:

    def test_returns_chunks(self, client, session, mock_embed):
        session.request.side_effect = [
            _http_response(payload={"id": "col-1", "name": "kb"}),
            _http_response(payload=QUERY_PAYLOAD),
        ]

        chunks = client.search(["rust", "ownership"])

        assert [c.id for c in chunks] == ["c1", "c3"]
        assert chunks[0].document_id == "7"
        assert chunks[0].chunk_index == 2
        assert chunks[0].filename == "rust.md"
        assert chunks[1].distance == 0.45
        assert mock_embed.call_args.kwargs["content"] == "rust ownership"

        method, url = session.request.call_args_list[1][0]
        assert method == "POST"
        assert url == "http://chroma:8000/api/v1/collections/col-1/query"
        body = session.request.call_args_list[1].kwargs["json"]
        assert body["query_embeddings"] == [[0.1, 0.2, 0.3]]
        assert body["n_results"] == 3

    def test_collection_id_is_cached(self, client, session, mock_embed):
        session.request.side_effect = [
            _http_response(payload={"id": "col-1"}),
            _http_response(payload=QUERY_PAYLOAD),
            _http_response(payload=QUERY_PAYLOAD),
        ]

        client.search(["a"])
        client.search(["b"])

        assert session.request.call_count == 3

    def test_empty_keywords(self, client, session, mock_embed):
        assert client.search([]) == []
        assert client.search(["", "  "]) == []
        session.request.assert_not_called()

    def test_missing_collection(self, client, session, mock_embed):
        session.request.return_value = _http_response(404, text="Collection kb does not exist.")

        assert client.search(["rust"]) == []
        mock_embed.assert_not_called()

    def test_empty_collection(self, client, session, mock_embed):
        session.request.side_effect = [
            _http_response(payload={"id": "col-1"}),
            _http_response(payload={"ids": [[]], "documents": [[]], "metadatas": [[]], "distances": [[]]}),
        ]

        assert client.search(["rust"]) == []

    def test_connection_error(self, client, session, mock_embed):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(KnowledgeSearchError):
            client.search(["rust"])

    def test_query_error(self, client, session, mock_embed):
        session.request.side_effect = [
            _http_response(payload={"id": "col-1"}),
            _http_response(500, text="internal error"),
        ]

        with pytest.raises(KnowledgeSearchError):
            client.search(["rust"])

    def test_embedding_error(self, client, session, mock_embed):
        session.request.return_value = _http_response(payload={"id": "col-1"})
        mock_embed.side_effect = RuntimeError("quota")

        with pytest.raises(KnowledgeSearchError):
            client.search(["rust"])
