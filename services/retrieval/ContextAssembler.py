"""ContextAssembler: builds a token-bounded context window around relevant hits.

For every relevant hit the surrounding adjacent segments are loaded, ranges
of the same document are merged, and whole document runs are packed into the
token budget in order of their best hit.
"""

import asyncio
from dataclasses import dataclass, field

from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.TextHelper import TextHelper
from shared.models.config import AssemblyConfig
from shared.models.context import ContextSegment, ContextWindow, ScoredHit
from shared.models.errors import PartialFetchFailure, SearchBackendUnavailable
from shared.models.segment import Segment


@dataclass
class DocumentRun:
    """All context segments of one document, ascending by index."""

    document_id: str
    best_score: float
    target_indices: set[int]
    segments: list[ContextSegment] = field(default_factory=list)
    degraded: bool = False

    @property
    def token_count(self) -> int:
        return sum(entry.token_count for entry in self.segments)


def merge_ranges(ranges: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Merge inclusive index ranges that overlap or touch.

    >>> merge_ranges([(13, 17), (15, 19), (25, 27)])
    [(13, 19), (25, 27)]
    """
    merged: list[tuple[int, int]] = []
    for lo, hi in sorted(ranges):
        if merged and lo <= merged[-1][1] + 1:
            merged[-1] = (merged[-1][0], max(merged[-1][1], hi))
        else:
            merged.append((lo, hi))
    return merged


class ContextAssembler:
    def __init__(self, helper_config: HelperConfig, config: AssemblyConfig, rag_client: RAGClientInterface):
        self.logging = helper_config.get_logger()
        self._config = config
        self._rag_client = rag_client

    ##########################################
    ################# CORE ###################
    ##########################################

    async def assemble(self, scored_hits: list[ScoredHit], adjacent_count: int | None = None, token_budget: int | None = None) -> ContextWindow:
        """Assemble the context window for the relevant hits.

        Args:
            scored_hits (list[ScoredHit]): Retriever output. Hits with relevant=False are ignored.
            adjacent_count (int | None): Segments to include on each side of a hit.
            token_budget (int | None): Upper bound for the estimated tokens of the window.

        Returns:
            ContextWindow: The assembled window. Empty if no hit is relevant.

        Raises:
            asyncio.CancelledError: Propagated unchanged; no partial window is returned.
        """
        adjacent_count = self._config.adjacent_count if adjacent_count is None else adjacent_count
        token_budget = self._config.token_budget if token_budget is None else token_budget

        hits_by_document: dict[str, list[ScoredHit]] = {}
        for hit in scored_hits:
            if hit.relevant:
                hits_by_document.setdefault(hit.document_id, []).append(hit)
        if not hits_by_document:
            return ContextWindow(token_budget=token_budget)

        semaphore = asyncio.Semaphore(self._config.fetch_concurrency)
        runs = await asyncio.gather(*(
            self._build_run(document_id, hits, adjacent_count, semaphore)
            for document_id, hits in hits_by_document.items()
        ))
        runs.sort(key=lambda run: (-run.best_score, run.document_id))
        return self._pack(runs, token_budget)

    ##########################################
    ############### HELPERS ##################
    ##########################################

    async def _build_run(self, document_id: str, hits: list[ScoredHit], adjacent_count: int, semaphore: asyncio.Semaphore) -> DocumentRun:
        target_indices = {hit.index for hit in hits}
        run = DocumentRun(
            document_id=document_id,
            best_score=max(hit.combined_score for hit in hits),
            target_indices=target_indices,
        )
        ranges = merge_ranges([(max(0, hit.index - adjacent_count), hit.index + adjacent_count) for hit in hits])

        try:
            async with semaphore:
                fetched = await self._rag_client.do_fetch_segments(document_id, ranges)
        except SearchBackendUnavailable as e:
            failure = PartialFetchFailure(document_id, e)
            self.logging.warning("%s Using the %d directly relevant segments only.", failure, len(target_indices))
            fetched = []
            run.degraded = True

        # hit segments are always present, even if the fetch missed or failed
        by_index: dict[int, Segment] = {segment.index: segment for segment in fetched if segment.document_id == document_id}
        for hit in hits:
            by_index.setdefault(hit.index, hit.segment)

        chars_per_token = self._config.chars_per_token
        for index in sorted(by_index):
            segment = by_index[index]
            run.segments.append(ContextSegment(
                segment=segment,
                is_target=index in target_indices,
                token_count=TextHelper.estimate_tokens(segment.text, chars_per_token),
            ))
        return run

    def _pack(self, runs: list[DocumentRun], token_budget: int) -> ContextWindow:
        """Fit whole document runs into the budget.

        Runs are placed best document first. A run that does not fit is
        dropped entirely, and smaller runs after it may still be placed.
        """
        remaining = token_budget
        window = ContextWindow(token_budget=token_budget)
        for run in runs:
            if run.token_count > remaining:
                window.dropped_document_ids.append(run.document_id)
                continue
            window.segments.extend(run.segments)
            if run.degraded:
                window.degraded_document_ids.append(run.document_id)
            remaining -= run.token_count
        if window.dropped_document_ids:
            self.logging.info(
                "Dropped %d documents exceeding the token budget of %d: %s",
                len(window.dropped_document_ids), token_budget, window.dropped_document_ids,
            )
        window.total_tokens = token_budget - remaining
        return window
