"""SegmentPoint model: the payload stored alongside each vector in a search backend."""

from datetime import datetime, timezone

from pydantic import BaseModel

from shared.models.segment import Segment, SegmentMetadata


class SegmentPoint(BaseModel):
    """Payload of a single indexed segment.

    Attributes:
        document_id: Id grouping all segments of one source document.
        chunk_index: Zero-based position of the segment within the document.
        chunk_text:  Raw text of the segment.
        created_at:  ISO-8601 timestamp of ingestion.
        metadata:    Document metadata. Only set on chunk_index 0; None everywhere else.
    """

    document_id: str
    chunk_index: int
    chunk_text: str
    created_at: str | None = None
    metadata: SegmentMetadata | None = None

    @classmethod
    def from_segment(cls, segment: Segment) -> "SegmentPoint":
        return cls(
            document_id=segment.document_id,
            chunk_index=segment.index,
            chunk_text=segment.text,
            created_at=segment.created_at.isoformat(),
            metadata=segment.metadata,
        )

    def to_segment(self, vector: list[float] | None = None) -> Segment:
        created_at = datetime.fromisoformat(self.created_at) if self.created_at else datetime.now(timezone.utc)
        return Segment(
            document_id=self.document_id,
            index=self.chunk_index,
            text=self.chunk_text,
            embedding_vector=vector or [],
            created_at=created_at,
            metadata=self.metadata,
        )
