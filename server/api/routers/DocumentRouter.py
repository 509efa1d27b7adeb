"""Document router: ingestion and maintenance of indexed documents."""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from services.ingest.IngestService import IngestResult, MetadataRepairResult
from shared.dependencies.auth import verify_api_key
from shared.models.search import DeleteResponse, DocumentItem, IngestRequest

document_router = APIRouter(prefix="/documents", tags=["Documents"], dependencies=[Depends(verify_api_key)])


@document_router.post("", status_code=status.HTTP_201_CREATED, response_model=IngestResult)
async def ingest_document(request: Request, body: IngestRequest) -> IngestResult:
    """Chunk, embed and index a document's text.

    Raises:
        HTTPException: 400 if the text is empty.
    """
    if not body.text.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Document text must not be empty.")
    return await request.app.state.ingest_service.do_ingest(
        text=body.text,
        document_id=body.document_id,
        metadata=body.to_metadata(),
        chunk_size=body.chunk_size,
        chunk_overlap=body.chunk_overlap,
    )


@document_router.get("", response_model=list[DocumentItem])
async def list_documents(request: Request) -> list[DocumentItem]:
    segments = await request.app.state.ingest_service.do_list_documents()
    return [DocumentItem(document_id=s.document_id, metadata=s.metadata) for s in segments]


@document_router.delete("/{document_id}", response_model=DeleteResponse)
async def delete_document(request: Request, document_id: str) -> DeleteResponse:
    """Delete a document with all its segments.

    Raises:
        HTTPException: 404 if the document has no segments.
    """
    deleted = await request.app.state.ingest_service.do_delete(document_id)
    if deleted == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Document '{document_id}' not found.")
    return DeleteResponse(document_id=document_id, deleted_segments=deleted)


@document_router.post("/{document_id}/repair-metadata", response_model=MetadataRepairResult)
async def repair_metadata(request: Request, document_id: str) -> MetadataRepairResult:
    """Move misplaced metadata onto the document's first segment.

    Raises:
        HTTPException: 404 if the document has no segments.
    """
    result = await request.app.state.ingest_service.do_repair_metadata(document_id)
    if result.segment_count == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Document '{document_id}' not found.")
    return result
