"""Query scoped retrieval results: scored hits and the assembled context window."""

from pydantic import BaseModel, Field

from shared.models.segment import Segment, SegmentMetadata


class ScoredHit(BaseModel):
    """A segment returned for a query, with its subscores.

    Attributes:
        segment:        The matched segment.
        vector_score:   Similarity score from the vector query, 0..1.
        lexical_score:  Term coverage score from the lexical query, 0..1.
        combined_score: Weighted blend of both subscores.
        relevant:       True if combined_score passed the answer threshold.
    """

    segment: Segment
    vector_score: float = 0.0
    lexical_score: float = 0.0
    combined_score: float = 0.0
    relevant: bool = False

    @property
    def document_id(self) -> str:
        return self.segment.document_id

    @property
    def index(self) -> int:
        return self.segment.index


class ContextSegment(BaseModel):
    segment: Segment
    is_target: bool
    token_count: int

    @property
    def is_adjacent(self) -> bool:
        return not self.is_target


class ContextWindow(BaseModel):
    """Ordered, deduplicated segments handed to answer generation.

    Documents appear in descending order of their best hit. Within a document
    segment indices are strictly increasing.

    Attributes:
        segments:              The assembled segments.
        token_budget:          Budget the window was assembled against.
        total_tokens:          Estimated tokens of all segments, never above token_budget.
        degraded_document_ids: Documents served with their target segments only because the fetch failed.
        dropped_document_ids:  Documents left out because they did not fit the budget.
        document_metadata:     Metadata resolved from each document's designated segment.
    """

    segments: list[ContextSegment] = Field(default_factory=list)
    token_budget: int = 0
    total_tokens: int = 0
    degraded_document_ids: list[str] = Field(default_factory=list)
    dropped_document_ids: list[str] = Field(default_factory=list)
    document_metadata: dict[str, SegmentMetadata] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.segments

    def document_ids(self) -> list[str]:
        """Return the ids of all documents in the window, in window order."""
        seen: list[str] = []
        for entry in self.segments:
            if entry.segment.document_id not in seen:
                seen.append(entry.segment.document_id)
        return seen

    def segments_for(self, document_id: str) -> list[ContextSegment]:
        return [entry for entry in self.segments if entry.segment.document_id == document_id]
