"""Maps retrieval errors to HTTP responses."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from shared.models.errors import (
    DocumentAlreadyExists,
    EmbeddingComputeFailed,
    GenerationFailed,
    InvalidConfiguration,
    RetrievalError,
    SearchBackendUnavailable,
)

_STATUS_BY_ERROR: list[tuple[type[Exception], int]] = [
    (InvalidConfiguration, status.HTTP_400_BAD_REQUEST),
    (DocumentAlreadyExists, status.HTTP_409_CONFLICT),
    (EmbeddingComputeFailed, status.HTTP_502_BAD_GATEWAY),
    (GenerationFailed, status.HTTP_502_BAD_GATEWAY),
    (SearchBackendUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (TimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
]


def status_for(error: Exception) -> int:
    for error_type, http_status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return http_status
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _handle_error(request: Request, exc: Exception) -> JSONResponse:
    http_status = status_for(exc)
    request.app.state.logging.warning("%s %s failed with %d: %s", request.method, request.url.path, http_status, exc)
    return JSONResponse(status_code=http_status, content={"detail": str(exc), "error": type(exc).__name__})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RetrievalError, _handle_error)
    app.add_exception_handler(TimeoutError, _handle_error)
