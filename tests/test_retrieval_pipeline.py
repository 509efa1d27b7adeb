import asyncio

import pytest

from services.retrieval.ContextAssembler import ContextAssembler
from services.retrieval.ConversationContextManager import ConversationContextManager
from services.retrieval.EmbeddingCache import EmbeddingCache
from services.retrieval.QueryExpansionDecider import QueryExpansionDecider
from services.retrieval.RetrievalPipeline import RetrievalPipeline
from services.retrieval.Retriever import Retriever
from shared.models.config import HistoryConfig, RetrievalConfig
from shared.models.conversation import ConversationTurn, Role
from shared.models.errors import SearchBackendUnavailable
from shared.models.segment import SegmentMetadata
from tests.fakes import FakeRAGClient

QUERY = "How much did the northern region spend on infrastructure last year"

HISTORY = [
    ConversationTurn(role=Role.USER, content="Tell me about project Alpha budget"),
    ConversationTurn(role=Role.ASSISTANT, content="The Alpha budget covers research"),
]


def _pipeline(helper_config, rag_client, embed_client, llm_client, config=None):
    config = config or RetrievalConfig()
    cache = EmbeddingCache(helper_config, config.cache)
    return RetrievalPipeline(
        helper_config=helper_config,
        config=config,
        decider=QueryExpansionDecider(helper_config, config.expansion, llm_client),
        retriever=Retriever(helper_config, config.scoring, rag_client, embed_client, cache),
        assembler=ContextAssembler(helper_config, config.assembly, rag_client),
        conversation=ConversationContextManager(helper_config, config.history),
        rag_client=rag_client,
    )


class TestEvidence:
    @pytest.mark.asyncio
    async def test_assembles_context_with_metadata(self, helper_config, rag_client, embed_client, llm_client):
        segments = rag_client.add_document("doc", 5, metadata=SegmentMetadata(original_file_name="report.pdf"))
        rag_client.vector_results = [(segments[2], 0.9)]
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client)

        outcome = await pipeline.run(QUERY, HISTORY)

        assert outcome.search_query == QUERY
        assert outcome.history_only is False
        assert outcome.history_retry is False
        assert [entry.segment.index for entry in outcome.context.segments] == [0, 1, 2, 3, 4]
        assert outcome.context.document_metadata["doc"].original_file_name == "report.pdf"
        assert rag_client.designated_calls == []
        assert [turn.content for turn in outcome.history] == [turn.content for turn in HISTORY]

    @pytest.mark.asyncio
    async def test_metadata_of_distant_designated_segment_is_fetched(self, helper_config, rag_client, embed_client, llm_client):
        segments = rag_client.add_document("doc", 10, metadata=SegmentMetadata(original_file_name="report.pdf"))
        rag_client.vector_results = [(segments[8], 0.9)]
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client)

        outcome = await pipeline.run(QUERY)

        assert rag_client.designated_calls == [["doc"]]
        assert outcome.context.document_metadata["doc"].original_file_name == "report.pdf"

    @pytest.mark.asyncio
    async def test_metadata_failure_keeps_the_window(self, helper_config, embed_client, llm_client):
        class NoMetadataRAGClient(FakeRAGClient):
            async def do_fetch_designated_segments(self, document_ids):
                raise SearchBackendUnavailable("scroll failed")

        rag_client = NoMetadataRAGClient()
        segments = rag_client.add_document("doc", 10)
        rag_client.vector_results = [(segments[8], 0.9)]
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client)

        outcome = await pipeline.run(QUERY)

        assert not outcome.context.is_empty()
        assert outcome.context.document_metadata == {}

    @pytest.mark.asyncio
    async def test_short_query_is_expanded_before_search(self, helper_config, rag_client, embed_client, llm_client):
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client)
        outcome = await pipeline.run("PDF")

        assert outcome.search_query == "PDF related terms"
        assert embed_client.calls == ["PDF related terms"]


class TestNoEvidence:
    @pytest.mark.asyncio
    async def test_without_history_nothing_is_retried(self, helper_config, rag_client, embed_client, llm_client):
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client)
        outcome = await pipeline.run(QUERY)

        assert outcome.context.is_empty()
        assert outcome.history_only is False
        assert outcome.history_retry is False
        assert sorted(rag_client.query_calls) == ["lexical", "vector"]

    @pytest.mark.asyncio
    async def test_falls_back_to_history_after_retry(self, helper_config, rag_client, embed_client, llm_client):
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client)
        outcome = await pipeline.run(QUERY, HISTORY)

        assert outcome.history_only is True
        assert outcome.history_retry is True
        assert outcome.search_query == f"{QUERY} alpha budget covers research project"
        assert len(rag_client.query_calls) == 4

    @pytest.mark.asyncio
    async def test_history_keywords_can_find_evidence(self, helper_config, embed_client, llm_client):
        class KeywordRAGClient(FakeRAGClient):
            async def do_lexical_query(self, text, filters, k):
                self.query_calls.append("lexical")
                return [(self.segments[("alpha", 0)], 1.0)] if "alpha" in text else []

        rag_client = KeywordRAGClient()
        rag_client.add_document("alpha", 1)
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client)

        outcome = await pipeline.run(QUERY, HISTORY)

        assert outcome.history_retry is True
        assert outcome.history_only is False
        assert outcome.context.document_ids() == ["alpha"]

    @pytest.mark.asyncio
    async def test_retry_can_be_disabled(self, helper_config, rag_client, embed_client, llm_client):
        config = RetrievalConfig(history=HistoryConfig(retry_with_history=False))
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client, config)
        outcome = await pipeline.run(QUERY, HISTORY)

        assert outcome.history_only is True
        assert outcome.history_retry is False
        assert len(rag_client.query_calls) == 2

    @pytest.mark.asyncio
    async def test_blank_query_does_not_search(self, helper_config, rag_client, embed_client, llm_client):
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client)
        outcome = await pipeline.run("   ", HISTORY)

        assert outcome.history_only is True
        assert rag_client.query_calls == []
        assert embed_client.calls == []


class TestLimits:
    @pytest.mark.asyncio
    async def test_history_is_trimmed(self, helper_config, rag_client, embed_client, llm_client):
        config = RetrievalConfig(history=HistoryConfig(max_turns=1, retry_with_history=False))
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client, config)
        outcome = await pipeline.run(QUERY, HISTORY)

        assert [turn.content for turn in outcome.history] == ["The Alpha budget covers research"]

    @pytest.mark.asyncio
    async def test_deadline_raises_timeout(self, helper_config, rag_client, embed_client, llm_client):
        segments = rag_client.add_document("doc", 3)
        rag_client.vector_results = [(segments[1], 0.9)]
        rag_client.fetch_gate = asyncio.Event()
        pipeline = _pipeline(helper_config, rag_client, embed_client, llm_client)

        with pytest.raises(TimeoutError):
            await pipeline.run(QUERY, timeout=0.05)
        assert rag_client.active_fetches == 0
