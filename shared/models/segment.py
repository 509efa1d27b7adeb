"""Segment models: the indexed unit of a source document."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class SegmentMetadata(BaseModel):
    """Document level metadata. Stored on the designated segment (index 0) only.

    Attributes:
        original_file_name: Name of the uploaded file, if any.
        content_type:       MIME type of the original file.
        size_bytes:         Size of the original file.
        blob_path:          Storage locator of the original file.
        text_content_blob_path: Storage locator of the extracted text.
    """

    original_file_name: str | None = None
    content_type: str | None = None
    size_bytes: int | None = None
    blob_path: str | None = None
    text_content_blob_path: str | None = None

    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())


class Segment(BaseModel):
    """Immutable unit of indexed content.

    Segments of one document share document_id; their indices run 0..N-1.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str
    index: int = Field(ge=0)
    text: str
    embedding_vector: list[float] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: SegmentMetadata | None = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.document_id, self.index)
