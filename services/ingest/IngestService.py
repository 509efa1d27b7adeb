"""Ingestion service.

Splits document text into segments, embeds them through the embedding cache
and upserts the resulting vectors into the search backend. Document metadata
is stored on the designated segment (index 0) only.
"""

import asyncio
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel

from services.retrieval.Chunker import Chunker
from services.retrieval.EmbeddingCache import EmbeddingCache
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface, make_point_id
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import DocumentAlreadyExists
from shared.models.segment import Segment, SegmentMetadata

EMBED_CONCURRENCY = 5   # max parallel embedding calls per document


class IngestResult(BaseModel):
    document_id: str
    segment_count: int


class MetadataRepairResult(BaseModel):
    document_id: str
    segment_count: int
    moved: bool
    cleared_segments: int


class IngestService:
    """Orchestrates ingestion and maintenance of indexed documents."""

    def __init__(
        self,
        helper_config: HelperConfig,
        chunker: Chunker,
        embedding_cache: EmbeddingCache,
        rag_client: RAGClientInterface,
        embed_client: EmbedClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._chunker = chunker
        self._cache = embedding_cache
        self._rag_client = rag_client
        self._embed_client = embed_client

    ##########################################
    ################ INGEST ##################
    ##########################################

    async def do_ingest(
        self,
        text: str,
        document_id: str | None = None,
        metadata: SegmentMetadata | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> IngestResult:
        """Index a document.

        Args:
            text (str): Extracted document text.
            document_id (str | None): Client supplied id. A uuid4 is generated if None.
            metadata (SegmentMetadata | None): Stored on segment 0.
            chunk_size (int | None): Overrides the configured chunk target size.
            chunk_overlap (int | None): Overrides the configured chunk overlap.

        Returns:
            IngestResult: The document id and the number of indexed segments.

        Raises:
            InvalidConfiguration: If the chunk parameters are invalid. Raised before any I/O.
            DocumentAlreadyExists: If the client supplied id is already indexed.
            EmbeddingComputeFailed: If a segment cannot be embedded. Nothing is upserted then.
            SearchBackendUnavailable: If the search backend fails.
        """
        chunks = self._chunker.split(text, chunk_size, chunk_overlap)

        if document_id is None:
            document_id = str(uuid.uuid4())
        elif await self._rag_client.do_document_exists(document_id):
            raise DocumentAlreadyExists(document_id)

        texts = list(chunks)
        if not texts:
            self.logging.warning("Document '%s' has no text content, nothing indexed.", document_id)
            return IngestResult(document_id=document_id, segment_count=0)

        sem = asyncio.Semaphore(EMBED_CONCURRENCY)

        async def embed(chunk: str) -> list[float]:
            async with sem:
                return await self._cache.get_or_compute(chunk, self._embed_client.do_embed_one)

        vectors = await asyncio.gather(*(embed(chunk) for chunk in texts))

        created_at = datetime.now(timezone.utc)
        segments = [
            Segment(
                document_id=document_id,
                index=index,
                text=chunk,
                embedding_vector=vector,
                created_at=created_at,
                metadata=(metadata if index == 0 else None),
            )
            for index, (chunk, vector) in enumerate(zip(texts, vectors))
        ]
        await self._rag_client.do_upsert_segments(segments)
        self.logging.info("Indexed document '%s' with %d segments.", document_id, len(segments), color="green")
        return IngestResult(document_id=document_id, segment_count=len(segments))

    ##########################################
    ############## MAINTENANCE ###############
    ##########################################

    async def do_delete(self, document_id: str) -> int:
        """Delete a document and all its segments. Returns the number of removed segments."""
        return await self._rag_client.do_delete_document(document_id)

    async def do_exists(self, document_id: str) -> bool:
        return await self._rag_client.do_document_exists(document_id)

    async def do_count_segments(self, document_id: str) -> int:
        return await self._rag_client.do_count_segments(document_id)

    async def do_list_documents(self) -> list[Segment]:
        """List indexed documents by their designated (metadata carrying) segment."""
        return await self._rag_client.do_list_documents()

    async def do_repair_metadata(self, document_id: str) -> MetadataRepairResult:
        """Ensure only segment 0 of a document carries metadata.

        Metadata found on a later segment is moved to segment 0 if segment 0
        has none; every other segment is cleared.
        """
        segments = await self._rag_client.do_fetch_document_segments(document_id)
        result = MetadataRepairResult(document_id=document_id, segment_count=len(segments), moved=False, cleared_segments=0)
        if not segments:
            return result

        designated = next((s for s in segments if s.index == 0), None)
        misplaced = [s for s in segments if s.index != 0 and s.metadata is not None and not s.metadata.is_empty()]
        if designated is not None and (designated.metadata is None or designated.metadata.is_empty()) and misplaced:
            await self._rag_client.do_set_payload(
                [make_point_id(document_id, 0)],
                {"metadata": misplaced[0].metadata.model_dump(mode="json")},
            )
            result.moved = True

        stale_ids = [make_point_id(document_id, s.index) for s in segments if s.index != 0 and s.metadata is not None]
        await self._rag_client.do_set_payload(stale_ids, {"metadata": None})
        result.cleared_segments = len(stale_ids)

        self.logging.info(
            "Repaired metadata of document '%s': moved=%s cleared=%d",
            document_id, result.moved, result.cleared_segments,
        )
        return result
