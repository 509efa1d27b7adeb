"""Query router: retrieval and answer generation over the indexed documents."""

from fastapi import APIRouter, Depends, Request

from shared.dependencies.auth import verify_api_key
from shared.models.search import QueryRequest, QueryResponse

query_router = APIRouter()


@query_router.post(
    "/query",
    dependencies=[Depends(verify_api_key)],
    tags=["Query"],
    response_model=QueryResponse,
)
async def handle_query(request: Request, body: QueryRequest) -> QueryResponse:
    """Retrieve context for a question and optionally answer it.

    Args:
        request (Request): The incoming FastAPI request (carries app state).
        body (QueryRequest): Query text, optional document filter and chat history.

    Returns:
        QueryResponse: Sources, scored hits and the generated answer.
    """
    request.app.state.logging.info(
        "Query received: history=%d query=%r", len(body.history), body.query[:80]
    )
    return await request.app.state.query_service.do_query(body)
