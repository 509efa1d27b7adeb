from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI

from server.api.api_app import wire_services
from server.api.services.QueryService import HISTORY_SYSTEM_PROMPT, NO_EVIDENCE_ANSWER, QueryService
from services.retrieval.RetrievalPipeline import RetrievalOutcome
from shared.models.config import HistoryConfig, RetrievalConfig
from shared.models.context import ContextSegment, ContextWindow
from shared.models.conversation import ConversationTurn, Role
from shared.models.search import QueryRequest
from shared.models.segment import SegmentMetadata
from tests.fakes import FakeLLMClient, make_segment

QUESTION = "How much did the northern region spend on infrastructure last year"


def _service(helper_config, rag_client, embed_client, llm_client) -> QueryService:
    app = FastAPI()
    wire_services(app, helper_config, RetrievalConfig(), rag_client, embed_client, llm_client)
    return app.state.query_service


@pytest.fixture
def indexed(rag_client):
    segments = rag_client.add_document("doc", 3, metadata=SegmentMetadata(original_file_name="report.pdf"))
    rag_client.vector_results = [(segments[1], 0.9)]
    return rag_client


class TestAnswers:
    @pytest.mark.asyncio
    async def test_answers_from_document_context(self, helper_config, indexed, embed_client):
        llm = FakeLLMClient(reply="It spent 4 million.")
        response = await _service(helper_config, indexed, embed_client, llm).do_query(QueryRequest(query=QUESTION))

        assert response.answer == "It spent 4 million."
        assert response.history_only is False
        assert [(s.index, s.is_target) for s in response.sources] == [(0, False), (1, True), (2, False)]
        assert response.sources[0].file_name == "report.pdf"
        assert response.hits[0].relevant is True
        prompt = llm.chat_calls[0][-1]["content"]
        assert "### Document 1: report.pdf" in prompt
        assert "[MATCH] doc segment 1" in prompt
        assert prompt.endswith(f"Question: {QUESTION}")

    @pytest.mark.asyncio
    async def test_no_evidence_without_history(self, helper_config, rag_client, embed_client, llm_client):
        response = await _service(helper_config, rag_client, embed_client, llm_client).do_query(QueryRequest(query=QUESTION))

        assert response.answer == NO_EVIDENCE_ANSWER
        assert llm_client.chat_calls == []

    @pytest.mark.asyncio
    async def test_history_only_answer(self, helper_config, rag_client, embed_client):
        llm = FakeLLMClient(reply="As discussed, about 2 million.")
        history = [
            ConversationTurn(role=Role.USER, content="What did we say about northern spending?"),
            ConversationTurn(role=Role.ASSISTANT, content="Northern spending was roughly 2 million."),
        ]
        response = await _service(helper_config, rag_client, embed_client, llm).do_query(
            QueryRequest(query=QUESTION, history=history)
        )

        assert response.history_only is True
        assert response.answer == "As discussed, about 2 million."
        messages = llm.chat_calls[0]
        assert messages[0] == {"role": "system", "content": HISTORY_SYSTEM_PROMPT}
        assert messages[1:3] == [turn.to_message() for turn in history]
        assert messages[-1] == {"role": "user", "content": QUESTION}

    @pytest.mark.asyncio
    async def test_generation_failure_keeps_the_sources(self, helper_config, indexed, embed_client, failing_llm_client):
        response = await _service(helper_config, indexed, embed_client, failing_llm_client).do_query(QueryRequest(query=QUESTION))

        assert response.answer is None
        assert response.answer_error == "model offline"
        assert len(response.sources) == 3

    @pytest.mark.asyncio
    async def test_retrieval_only(self, helper_config, indexed, embed_client, llm_client):
        response = await _service(helper_config, indexed, embed_client, llm_client).do_query(
            QueryRequest(query=QUESTION, include_answer=False)
        )

        assert response.answer is None
        assert llm_client.chat_calls == []
        assert response.total_tokens > 0

    @pytest.mark.asyncio
    async def test_without_generative_provider(self, helper_config, indexed, embed_client):
        response = await _service(helper_config, indexed, embed_client, None).do_query(QueryRequest(query=QUESTION))

        assert response.answer is None
        assert response.answer_error == "No generative provider configured."


class TestContextPrompt:
    def test_groups_segments_by_document(self):
        window = ContextWindow(
            segments=[
                ContextSegment(segment=make_segment("b", 4, "beta four"), is_target=True, token_count=3),
                ContextSegment(segment=make_segment("b", 5, "beta five"), is_target=False, token_count=3),
                ContextSegment(segment=make_segment("a", 0, "alpha zero"), is_target=True, token_count=3),
            ],
            document_metadata={"a": SegmentMetadata(original_file_name="alpha.txt")},
        )
        prompt = QueryService.format_context_prompt("which?", window)

        assert prompt == (
            "Document excerpts:\n\n"
            "### Document 1: b\n[MATCH] beta four\nbeta five\n\n"
            "### Document 2: alpha.txt\n[MATCH] alpha zero\n\n"
            "Question: which?"
        )


class TestPipelineCall:
    @pytest.mark.asyncio
    async def test_request_options_are_forwarded(self, helper_config, llm_client):
        pipeline = AsyncMock()
        pipeline.run.return_value = RetrievalOutcome(query="PDF", search_query="PDF")
        service = QueryService(helper_config, pipeline, llm_client, HistoryConfig())

        await service.do_query(QueryRequest(query="PDF", document_id="doc", max_results=3, force_expansion=True, include_answer=False))

        pipeline.run.assert_awaited_once_with(
            query="PDF",
            history=[],
            filters={"document_id": "doc"},
            max_results=3,
            force_expansion=True,
        )

    @pytest.mark.asyncio
    async def test_timeout_propagates(self, helper_config, llm_client):
        pipeline = AsyncMock()
        pipeline.run.side_effect = TimeoutError("deadline")
        service = QueryService(helper_config, pipeline, llm_client, HistoryConfig())

        with pytest.raises(TimeoutError):
            await service.do_query(QueryRequest(query="PDF"))
        assert llm_client.chat_calls == []
