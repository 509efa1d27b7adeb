"""Pydantic models for the HTTP request and response bodies."""

from pydantic import BaseModel, Field

from shared.models.conversation import ConversationTurn
from shared.models.segment import SegmentMetadata


class QueryRequest(BaseModel):
    """Incoming question, optionally with the conversation so far."""

    query: str = Field(min_length=1)
    max_results: int | None = Field(default=None, gt=0, le=50)
    document_id: str | None = None
    history: list[ConversationTurn] = Field(default_factory=list)
    include_answer: bool = True
    force_expansion: bool = False


class SourceItem(BaseModel):
    document_id: str
    index: int
    text: str
    is_target: bool
    file_name: str | None = None


class HitItem(BaseModel):
    document_id: str
    index: int
    vector_score: float
    lexical_score: float
    combined_score: float
    relevant: bool


class QueryResponse(BaseModel):
    query: str
    search_query: str
    answer: str | None = None
    answer_error: str | None = None
    history_only: bool = False
    sources: list[SourceItem] = Field(default_factory=list)
    hits: list[HitItem] = Field(default_factory=list)
    total_tokens: int = 0
    degraded_document_ids: list[str] = Field(default_factory=list)


class IngestRequest(BaseModel):
    text: str
    document_id: str | None = Field(default=None, min_length=1)
    file_name: str | None = None
    content_type: str | None = None
    size_bytes: int | None = Field(default=None, ge=0)
    blob_path: str | None = None
    text_content_blob_path: str | None = None
    chunk_size: int | None = None
    chunk_overlap: int | None = None

    def to_metadata(self) -> SegmentMetadata:
        return SegmentMetadata(
            original_file_name=self.file_name,
            content_type=self.content_type,
            size_bytes=self.size_bytes if self.size_bytes is not None else len(self.text.encode("utf-8")),
            blob_path=self.blob_path,
            text_content_blob_path=self.text_content_blob_path,
        )


class DocumentItem(BaseModel):
    document_id: str
    metadata: SegmentMetadata | None = None


class DeleteResponse(BaseModel):
    document_id: str
    deleted_segments: int
