import logging
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from server.api.api_app import app, wire_services
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.config import RetrievalConfig
from shared.models.segment import SegmentMetadata

HEADERS = {"X-API-Key": "secret"}
QUESTION = "How much did the northern region spend on infrastructure last year"


@pytest.fixture
def client(rag_client, embed_client, llm_client):
    logger = ColorLogger(logging.getLogger("tests"))
    helper_config = HelperConfig(logger=logger, environ={"APP_API_KEY": "secret"})
    app.state.logging = logger
    wire_services(app, helper_config, RetrievalConfig(), rag_client, embed_client, llm_client)
    # no context manager: the lifespan hook would connect to real backends
    return TestClient(app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestQueryEndpoint:
    def test_requires_api_key(self, client):
        assert client.post("/query", json={"query": QUESTION}).status_code == 401
        assert client.post("/query", json={"query": QUESTION}, headers={"X-API-Key": "wrong"}).status_code == 401

    def test_returns_answer_and_sources(self, client, rag_client):
        segments = rag_client.add_document("doc", 2, metadata=SegmentMetadata(original_file_name="report.pdf"))
        rag_client.vector_results = [(segments[0], 0.9)]

        response = client.post("/query", json={"query": QUESTION}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["answer"] == "related, terms"
        assert [source["index"] for source in body["sources"]] == [0, 1]
        assert body["sources"][0]["file_name"] == "report.pdf"

    def test_document_filter_reaches_the_backend(self, client, rag_client):
        seen = []

        async def record(vector, filters, k):
            seen.append(filters)
            return []

        rag_client.do_vector_query = record
        client.post("/query", json={"query": QUESTION, "document_id": "doc"}, headers=HEADERS)
        assert seen == [{"document_id": "doc"}]

    def test_empty_query_is_rejected(self, client):
        assert client.post("/query", json={"query": ""}, headers=HEADERS).status_code == 422

    def test_backend_failure_maps_to_503(self, client, rag_client):
        rag_client.fail_queries = True
        response = client.post("/query", json={"query": QUESTION}, headers=HEADERS)
        assert response.status_code == 503
        assert response.json()["error"] == "SearchBackendUnavailable"

    def test_deadline_maps_to_504(self, client):
        client.app.state.query_service = AsyncMock()
        client.app.state.query_service.do_query.side_effect = TimeoutError("Retrieval exceeded its deadline of 30.0s")
        assert client.post("/query", json={"query": QUESTION}, headers=HEADERS).status_code == 504


class TestDocumentEndpoints:
    def test_ingest_and_list(self, client, rag_client):
        response = client.post(
            "/documents",
            json={"text": "Quarterly report. " * 10, "document_id": "q1", "file_name": "q1.txt"},
            headers=HEADERS,
        )
        assert response.status_code == 201
        assert response.json() == {"document_id": "q1", "segment_count": 1}

        listed = client.get("/documents", headers=HEADERS).json()
        assert listed == [{"document_id": "q1", "metadata": {
            "original_file_name": "q1.txt",
            "content_type": None,
            "size_bytes": 180,
            "blob_path": None,
            "text_content_blob_path": None,
        }}]

    def test_duplicate_document_conflicts(self, client, rag_client):
        rag_client.add_document("q1", 1)
        response = client.post("/documents", json={"text": "again", "document_id": "q1"}, headers=HEADERS)
        assert response.status_code == 409

    @pytest.mark.parametrize("body", [
        {"text": "   "},
        {"text": "some text", "chunk_size": 10, "chunk_overlap": 20},
    ])
    def test_bad_ingest_requests(self, client, body):
        assert client.post("/documents", json=body, headers=HEADERS).status_code == 400

    def test_delete(self, client, rag_client):
        rag_client.add_document("q1", 3)
        response = client.delete("/documents/q1", headers=HEADERS)
        assert response.json() == {"document_id": "q1", "deleted_segments": 3}
        assert client.delete("/documents/q1", headers=HEADERS).status_code == 404

    def test_repair_metadata_of_unknown_document(self, client):
        assert client.post("/documents/missing/repair-metadata", headers=HEADERS).status_code == 404
