"""Retrieval pipeline.

query -> expansion decision -> hybrid retrieval -> context assembly
      -> (history keyword retry) -> history fallback decision -> metadata resolution

The whole run is bounded by a deadline. On timeout or cancellation nothing
partial is returned.
"""

import asyncio
from typing import Any

from pydantic import BaseModel, Field

from services.retrieval.ContextAssembler import ContextAssembler
from services.retrieval.ConversationContextManager import ConversationContextManager
from services.retrieval.QueryExpansionDecider import QueryExpansionDecider
from services.retrieval.Retriever import Retriever
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import RetrievalConfig
from shared.models.context import ContextWindow, ScoredHit
from shared.models.conversation import ConversationTurn
from shared.models.errors import SearchBackendUnavailable


class RetrievalOutcome(BaseModel):
    """Everything answer generation needs for one query.

    Attributes:
        query:            The query as received.
        search_query:     The query actually searched (expanded and/or history enhanced).
        hits:             Scored hits of the final search, including non relevant ones.
        context:          The assembled context window.
        history:          The trimmed conversation history.
        history_only:     True if the answer has to come from history alone.
        history_retry:    True if the search was retried with history keywords.
    """

    query: str
    search_query: str
    hits: list[ScoredHit] = Field(default_factory=list)
    context: ContextWindow = Field(default_factory=ContextWindow)
    history: list[ConversationTurn] = Field(default_factory=list)
    history_only: bool = False
    history_retry: bool = False


class RetrievalPipeline:
    def __init__(
        self,
        helper_config: HelperConfig,
        config: RetrievalConfig,
        decider: QueryExpansionDecider,
        retriever: Retriever,
        assembler: ContextAssembler,
        conversation: ConversationContextManager,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._config = config
        self._decider = decider
        self._retriever = retriever
        self._assembler = assembler
        self._conversation = conversation
        self._rag_client = rag_client

    async def run(
        self,
        query: str,
        history: list[ConversationTurn] | None = None,
        filters: dict[str, Any] | None = None,
        max_results: int | None = None,
        force_expansion: bool = False,
        timeout: float | None = None,
    ) -> RetrievalOutcome:
        """Run the full retrieval for one query within the deadline.

        Raises:
            TimeoutError: If the deadline passes before the window is complete.
            SearchBackendUnavailable: If the search backend fails.
            EmbeddingComputeFailed: If the query cannot be embedded.
        """
        timeout = self._config.deadline_seconds if timeout is None else timeout
        try:
            return await asyncio.wait_for(
                self._run(query, history, filters, max_results, force_expansion),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self.logging.warning("Retrieval for %r exceeded its deadline of %.1fs", query[:80], timeout)
            raise TimeoutError(f"Retrieval exceeded its deadline of {timeout}s") from None

    async def _run(
        self,
        query: str,
        history: list[ConversationTurn] | None,
        filters: dict[str, Any] | None,
        max_results: int | None,
        force_expansion: bool,
    ) -> RetrievalOutcome:
        trimmed = self._conversation.prepare(history)
        outcome = RetrievalOutcome(query=query, search_query=query, history=trimmed)
        outcome.context.token_budget = self._config.assembly.token_budget
        if not query.strip():
            outcome.history_only = self._conversation.should_fallback_to_history_only(outcome.context, trimmed)
            return outcome

        search_query = await self._decider.maybe_expand(query, trimmed, force=force_expansion)
        hits, context = await self._search(search_query, filters, max_results)

        if context.is_empty() and trimmed and self._config.history.retry_with_history:
            enhanced = self._conversation.enhance_query(search_query, trimmed)
            if enhanced:
                self.logging.info("No evidence for %r, retrying with history keywords: %r", search_query[:80], enhanced[:160])
                hits, context = await self._search(enhanced, filters, max_results)
                search_query = enhanced
                outcome.history_retry = True

        outcome.search_query = search_query
        outcome.hits = hits
        outcome.context = context
        outcome.history_only = self._conversation.should_fallback_to_history_only(context, trimmed)
        if outcome.history_only:
            self.logging.info("No document evidence found, answering from %d history turns", len(trimmed))
        elif not context.is_empty():
            await self._resolve_metadata(context)
        return outcome

    async def _search(self, search_query: str, filters: dict[str, Any] | None, max_results: int | None) -> tuple[list[ScoredHit], ContextWindow]:
        hits = await self._retriever.retrieve(search_query, filters, max_results)
        context = await self._assembler.assemble(hits)
        return hits, context

    async def _resolve_metadata(self, context: ContextWindow) -> None:
        """Attach the metadata of each document, read from its designated segment."""
        for entry in context.segments:
            if entry.segment.metadata is not None and entry.segment.index == 0:
                context.document_metadata[entry.segment.document_id] = entry.segment.metadata
        missing = [doc_id for doc_id in context.document_ids() if doc_id not in context.document_metadata]
        if not missing:
            return
        try:
            designated = await self._rag_client.do_fetch_designated_segments(missing)
        except SearchBackendUnavailable as e:
            self.logging.warning("Could not resolve metadata for %d documents: %s", len(missing), e)
            return
        for document_id, segment in designated.items():
            if segment.metadata is not None:
                context.document_metadata[document_id] = segment.metadata
