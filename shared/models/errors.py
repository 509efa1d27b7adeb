"""Error taxonomy shared by the retrieval core, its clients and the API layer."""


class RetrievalError(Exception):
    """Base class for all errors raised by the retrieval stack."""


class InvalidConfiguration(RetrievalError):
    """Raised when chunking, scoring or assembly parameters are invalid.

    Always raised before any processing or I/O starts.
    """


class EmbeddingComputeFailed(RetrievalError):
    """Raised when the embedding provider could not produce a vector."""


class GenerationFailed(RetrievalError):
    """Raised when the generative provider could not produce text."""


class SearchBackendUnavailable(RetrievalError):
    """Raised when the search backend cannot be reached or rejects a request."""


class PartialFetchFailure(RetrievalError):
    """Adjacent-segment fetch for a single document failed.

    Never propagated out of the assembler; kept on the context window so
    callers can see which documents were served in degraded form.
    """

    def __init__(self, document_id: str, cause: BaseException | None = None):
        self.document_id = document_id
        self.cause = cause
        super().__init__(f"Fetching segments for document '{document_id}' failed: {cause}")


class DocumentAlreadyExists(RetrievalError):
    """Raised when ingesting a document whose id is already indexed."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document '{document_id}' already exists.")
