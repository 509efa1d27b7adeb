import asyncio

import pytest

from services.retrieval.ContextAssembler import ContextAssembler, merge_ranges
from shared.models.config import AssemblyConfig
from shared.models.context import ScoredHit


def _assembler(helper_config, rag_client, **overrides):
    return ContextAssembler(helper_config, AssemblyConfig(**overrides), rag_client)


def _hit(rag_client, document_id, index, score=0.8, relevant=True):
    return ScoredHit(segment=rag_client.segments[(document_id, index)], combined_score=score, relevant=relevant)


def _keys(window):
    return [entry.segment.key for entry in window.segments]


class TestMergeRanges:
    def test_overlapping_and_touching_ranges_merge(self):
        assert merge_ranges([(15, 19), (13, 17), (20, 22), (30, 31)]) == [(13, 22), (30, 31)]

    def test_disjoint_ranges_stay_apart(self):
        assert merge_ranges([(5, 6), (0, 2)]) == [(0, 2), (5, 6)]


class TestAssemble:
    @pytest.mark.asyncio
    async def test_includes_adjacent_segments_around_a_hit(self, helper_config, rag_client):
        rag_client.add_document("doc", 30)
        window = await _assembler(helper_config, rag_client).assemble([_hit(rag_client, "doc", 15)], adjacent_count=5)

        assert _keys(window) == [("doc", i) for i in range(10, 21)]
        assert [entry.segment.index for entry in window.segments if entry.is_target] == [15]

    @pytest.mark.asyncio
    async def test_nearby_hits_share_one_fetch(self, helper_config, rag_client):
        rag_client.add_document("doc", 30)
        hits = [_hit(rag_client, "doc", 15, 0.9), _hit(rag_client, "doc", 17, 0.7)]
        window = await _assembler(helper_config, rag_client).assemble(hits, adjacent_count=2)

        assert rag_client.fetch_calls == [("doc", [(13, 19)])]
        assert _keys(window) == [("doc", i) for i in range(13, 20)]
        assert [entry.segment.index for entry in window.segments if entry.is_target] == [15, 17]

    @pytest.mark.asyncio
    async def test_ranges_are_clamped_to_the_document(self, helper_config, rag_client):
        rag_client.add_document("doc", 3)
        hits = [_hit(rag_client, "doc", 0), _hit(rag_client, "doc", 2)]
        window = await _assembler(helper_config, rag_client).assemble(hits, adjacent_count=4)

        assert rag_client.fetch_calls == [("doc", [(0, 6)])]
        assert _keys(window) == [("doc", 0), ("doc", 1), ("doc", 2)]

    @pytest.mark.asyncio
    async def test_documents_are_ordered_by_best_hit(self, helper_config, rag_client):
        rag_client.add_document("a", 5)
        rag_client.add_document("b", 5)
        hits = [_hit(rag_client, "b", 3, 0.9), _hit(rag_client, "a", 1, 0.6), _hit(rag_client, "a", 0, 0.95)]
        window = await _assembler(helper_config, rag_client).assemble(hits, adjacent_count=0)

        assert window.document_ids() == ["a", "b"]
        assert _keys(window) == [("a", 0), ("a", 1), ("b", 3)]

    @pytest.mark.asyncio
    async def test_irrelevant_hits_produce_an_empty_window(self, helper_config, rag_client):
        rag_client.add_document("doc", 3)
        window = await _assembler(helper_config, rag_client).assemble([_hit(rag_client, "doc", 1, 0.1, relevant=False)])

        assert window.is_empty()
        assert window.total_tokens == 0
        assert rag_client.fetch_calls == []

    @pytest.mark.asyncio
    async def test_token_counts_use_the_character_estimate(self, helper_config, rag_client):
        rag_client.add_document("doc", 2, chars=41)
        window = await _assembler(helper_config, rag_client).assemble([_hit(rag_client, "doc", 0)], adjacent_count=1)

        assert [entry.token_count for entry in window.segments] == [11, 11]
        assert window.total_tokens == 22


class TestTokenBudget:
    @pytest.mark.asyncio
    async def test_run_that_does_not_fit_is_dropped_whole(self, helper_config, rag_client):
        rag_client.add_document("a", 3, chars=40)
        rag_client.add_document("b", 3, chars=40)
        hits = [_hit(rag_client, "a", 1, 0.9), _hit(rag_client, "b", 1, 0.5)]
        window = await _assembler(helper_config, rag_client).assemble(hits, adjacent_count=1, token_budget=45)

        assert _keys(window) == [("a", 0), ("a", 1), ("a", 2)]
        assert window.total_tokens == 30
        assert window.dropped_document_ids == ["b"]

    @pytest.mark.asyncio
    async def test_documents_that_cannot_fit_are_dropped(self, helper_config, rag_client):
        rag_client.add_document("a", 3, chars=40)
        rag_client.add_document("b", 3, chars=40)
        hits = [_hit(rag_client, "a", 1, 0.9), _hit(rag_client, "b", 1, 0.5)]
        window = await _assembler(helper_config, rag_client).assemble(hits, adjacent_count=1, token_budget=5)

        assert window.is_empty()
        assert window.total_tokens == 0
        assert window.dropped_document_ids == ["a", "b"]

    @pytest.mark.asyncio
    async def test_smaller_run_is_placed_after_a_larger_one_is_dropped(self, helper_config, rag_client):
        rag_client.add_document("big", 3, chars=80)
        rag_client.add_document("small", 1, chars=40)
        hits = [_hit(rag_client, "big", 1, 0.9), _hit(rag_client, "small", 0, 0.4)]
        window = await _assembler(helper_config, rag_client).assemble(hits, adjacent_count=1, token_budget=30)

        assert _keys(window) == [("small", 0)]
        assert window.total_tokens == 10
        assert window.dropped_document_ids == ["big"]

    @pytest.mark.asyncio
    async def test_single_run_over_budget_leaves_the_window_empty(self, helper_config, rag_client):
        rag_client.add_document("only", 3, chars=40)
        window = await _assembler(helper_config, rag_client).assemble([_hit(rag_client, "only", 1)], adjacent_count=1, token_budget=25)

        assert window.is_empty()
        assert window.total_tokens == 0
        assert window.dropped_document_ids == ["only"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_fetch_degrades_to_hit_segments(self, helper_config, rag_client):
        rag_client.add_document("a", 5)
        rag_client.add_document("b", 5)
        rag_client.fail_fetch_for = {"b"}
        hits = [_hit(rag_client, "a", 2, 0.9), _hit(rag_client, "b", 2, 0.8)]
        window = await _assembler(helper_config, rag_client).assemble(hits, adjacent_count=1)

        assert _keys(window) == [("a", 1), ("a", 2), ("a", 3), ("b", 2)]
        assert window.degraded_document_ids == ["b"]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, helper_config, rag_client):
        rag_client.add_document("doc", 5)
        rag_client.fetch_gate = asyncio.Event()
        task = asyncio.create_task(_assembler(helper_config, rag_client).assemble([_hit(rag_client, "doc", 2)]))
        for _ in range(3):
            await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert rag_client.active_fetches == 0

    @pytest.mark.asyncio
    async def test_fetch_concurrency_is_bounded(self, helper_config, rag_client):
        for name in "abcde":
            rag_client.add_document(name, 3)
        rag_client.fetch_gate = asyncio.Event()
        hits = [_hit(rag_client, name, 1) for name in "abcde"]
        task = asyncio.create_task(_assembler(helper_config, rag_client, fetch_concurrency=2).assemble(hits))
        for _ in range(5):
            await asyncio.sleep(0)

        assert rag_client.max_active_fetches == 2
        rag_client.fetch_gate.set()
        window = await task
        assert rag_client.max_active_fetches == 2
        assert len(window.document_ids()) == 5
