"""Retriever: hybrid vector + lexical search with score blending and per-document diversification."""

import asyncio
from typing import Any

from services.retrieval.EmbeddingCache import EmbeddingCache
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import ScoringConfig
from shared.models.context import ScoredHit
from shared.models.segment import Segment


def _rank_key(hit: ScoredHit) -> tuple:
    # score desc, then earlier segment, then document id
    return (-hit.combined_score, hit.index, hit.document_id)


class Retriever:
    def __init__(
        self,
        helper_config: HelperConfig,
        config: ScoringConfig,
        rag_client: RAGClientInterface,
        embed_client: EmbedClientInterface,
        embedding_cache: EmbeddingCache,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._config = config
        self._rag_client = rag_client
        self._embed_client = embed_client
        self._cache = embedding_cache

    ##########################################
    ################# CORE ###################
    ##########################################

    async def retrieve(self, query_text: str, filters: dict[str, Any] | None = None, max_results: int | None = None) -> list[ScoredHit]:
        """Run the hybrid query and return diversified hits.

        Vector and lexical sub-queries run concurrently. Hits below the answer
        threshold stay in the result with relevant=False.

        Args:
            query_text (str): The (possibly expanded) query.
            filters (dict[str, Any] | None): Payload equality filters, e.g. {"document_id": "abc"}.
            max_results (int | None): Number of hits to return. Defaults to the configured value.

        Returns:
            list[ScoredHit]: At most max_results hits, descending by combined score.

        Raises:
            EmbeddingComputeFailed: If the query cannot be embedded.
            SearchBackendUnavailable: If a sub-query fails.
        """
        max_results = self._config.max_results if max_results is None else max_results
        if max_results <= 0 or not query_text.strip():
            return []
        k = self.candidate_count(query_text, max_results)

        vector = await self._cache.get_or_compute(query_text, self._embed_client.do_embed_one)
        vector_hits, lexical_hits = await asyncio.gather(
            self._rag_client.do_vector_query(vector, filters, k),
            self._rag_client.do_lexical_query(query_text, filters, k),
        )
        self.logging.debug("Hybrid query returned %d vector and %d lexical candidates", len(vector_hits), len(lexical_hits))

        hits = self.score(vector_hits, lexical_hits)
        selected = self.diversify(hits, max_results)
        self.logging.info(
            "Retrieved %d hits (%d relevant) from %d candidates for %r",
            len(selected), sum(1 for h in selected if h.relevant), len(hits), query_text[:80],
        )
        return selected

    def candidate_count(self, query_text: str, max_results: int) -> int:
        """Number of candidates to request per sub-query. Short queries fetch more."""
        multiplier = (
            self._config.short_query_multiplier
            if len(query_text.strip()) < self._config.short_query_length
            else self._config.candidate_multiplier
        )
        return max(max_results, min(max_results * multiplier, self._config.max_candidates))

    def score(self, vector_hits: list[tuple[Segment, float]], lexical_hits: list[tuple[Segment, float]]) -> list[ScoredHit]:
        """Merge both candidate lists by segment and compute the combined scores.

        A segment missing from one list scores 0 there.

        Returns:
            list[ScoredHit]: All candidates, in rank order.
        """
        weight = self._config.vector_weight
        subscores: dict[tuple[str, int], list] = {}
        for segment, score in vector_hits:
            entry = subscores.setdefault(segment.key, [segment, 0.0, 0.0])
            entry[1] = max(entry[1], score)
        for segment, score in lexical_hits:
            entry = subscores.setdefault(segment.key, [segment, 0.0, 0.0])
            entry[2] = max(entry[2], score)

        hits = []
        for segment, vector_score, lexical_score in subscores.values():
            combined = vector_score * weight + lexical_score * (1 - weight)
            hits.append(ScoredHit(
                segment=segment,
                vector_score=vector_score,
                lexical_score=lexical_score,
                combined_score=combined,
                relevant=combined >= self._config.min_score_for_answer,
            ))
        hits.sort(key=_rank_key)
        return hits

    @staticmethod
    def diversify(hits: list[ScoredHit], max_results: int) -> list[ScoredHit]:
        """Pick hits round-robin across documents.

        Each pass takes the best remaining hit of every document, visiting
        documents in order of their best hit, until max_results hits are
        picked. The picks are returned in rank order.
        """
        by_document: dict[str, list[ScoredHit]] = {}
        for hit in sorted(hits, key=_rank_key):
            by_document.setdefault(hit.document_id, []).append(hit)

        queues = list(by_document.values())
        selected: list[ScoredHit] = []
        depth = 0
        while len(selected) < max_results:
            picked_any = False
            for queue in queues:
                if depth < len(queue):
                    selected.append(queue[depth])
                    picked_any = True
                    if len(selected) >= max_results:
                        break
            if not picked_any:
                break
            depth += 1
        return sorted(selected, key=_rank_key)
