"""Query service: runs the retrieval pipeline and generates the answer.

Document context is the primary evidence; conversation history only
disambiguates. Without document evidence the answer comes from history
alone, and without either a fixed reply is returned.
"""

from services.retrieval.RetrievalPipeline import RetrievalOutcome, RetrievalPipeline
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import HistoryConfig
from shared.models.context import ContextWindow
from shared.models.conversation import ConversationTurn
from shared.models.errors import GenerationFailed
from shared.models.search import HitItem, QueryRequest, QueryResponse, SourceItem

NO_EVIDENCE_ANSWER = "I could not find any relevant information in the indexed documents to answer this question."

CONTEXT_SYSTEM_PROMPT = (
    "You answer questions using the provided document excerpts. "
    "The excerpts are the primary evidence; use the conversation only to understand what the question refers to. "
    "Excerpts marked [MATCH] matched the question directly, the others are surrounding context. "
    "If the excerpts do not contain the answer, say so. Answer in the language of the question."
)

HISTORY_SYSTEM_PROMPT = (
    "No document excerpts matched this question. Answer from the conversation so far only. "
    "If the conversation does not contain the answer, say that no relevant information was found. "
    "Answer in the language of the question."
)


class QueryService:
    """Orchestrates retrieval and answer generation for a query."""

    def __init__(
        self,
        helper_config: HelperConfig,
        pipeline: RetrievalPipeline,
        llm_client: LLMClientInterface | None,
        history_config: HistoryConfig,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._pipeline = pipeline
        self._llm_client = llm_client
        self._history_config = history_config

    ##########################################
    ################ CORE ####################
    ##########################################

    async def do_query(self, request: QueryRequest) -> QueryResponse:
        """Retrieve context for the query and, if requested, answer it.

        Raises:
            TimeoutError: If retrieval exceeds its deadline.
            SearchBackendUnavailable: If the search backend fails.
            EmbeddingComputeFailed: If the query cannot be embedded.
        """
        filters = {"document_id": request.document_id} if request.document_id else None
        outcome = await self._pipeline.run(
            query=request.query,
            history=request.history,
            filters=filters,
            max_results=request.max_results,
            force_expansion=request.force_expansion,
        )
        response = self._build_response(outcome)
        if not request.include_answer:
            return response

        try:
            response.answer = await self._generate_answer(outcome, request.history)
        except GenerationFailed as e:
            self.logging.error("Answer generation failed for %r: %s", request.query[:80], e)
            response.answer_error = str(e)
        return response

    ##########################################
    ############### HELPERS ##################
    ##########################################

    async def _generate_answer(self, outcome: RetrievalOutcome, full_history: list[ConversationTurn]) -> str:
        if outcome.context.is_empty() and not outcome.history_only:
            return NO_EVIDENCE_ANSWER
        if self._llm_client is None:
            raise GenerationFailed("No generative provider configured.")

        if outcome.history_only:
            turns = full_history[-self._history_config.history_only_max_turns:] if self._history_config.history_only_max_turns else []
            messages = [{"role": "system", "content": HISTORY_SYSTEM_PROMPT}]
            messages.extend(turn.to_message() for turn in turns)
            messages.append({"role": "user", "content": outcome.query})
        else:
            messages = [{"role": "system", "content": CONTEXT_SYSTEM_PROMPT}]
            messages.extend(turn.to_message() for turn in outcome.history)
            messages.append({"role": "user", "content": self.format_context_prompt(outcome.query, outcome.context)})
        return await self._llm_client.do_chat(messages)

    @staticmethod
    def format_context_prompt(query: str, context: ContextWindow) -> str:
        """Render the context window grouped by document, followed by the question."""
        blocks: list[str] = []
        for number, document_id in enumerate(context.document_ids(), start=1):
            metadata = context.document_metadata.get(document_id)
            name = metadata.original_file_name if metadata and metadata.original_file_name else document_id
            lines = [f"### Document {number}: {name}"]
            for entry in context.segments_for(document_id):
                marker = "[MATCH] " if entry.is_target else ""
                lines.append(f"{marker}{entry.segment.text}")
            blocks.append("\n".join(lines))
        return "Document excerpts:\n\n" + "\n\n".join(blocks) + f"\n\nQuestion: {query}"

    def _build_response(self, outcome: RetrievalOutcome) -> QueryResponse:
        metadata = outcome.context.document_metadata
        sources = [
            SourceItem(
                document_id=entry.segment.document_id,
                index=entry.segment.index,
                text=entry.segment.text,
                is_target=entry.is_target,
                file_name=metadata[entry.segment.document_id].original_file_name if entry.segment.document_id in metadata else None,
            )
            for entry in outcome.context.segments
        ]
        hits = [
            HitItem(
                document_id=hit.document_id,
                index=hit.index,
                vector_score=hit.vector_score,
                lexical_score=hit.lexical_score,
                combined_score=hit.combined_score,
                relevant=hit.relevant,
            )
            for hit in outcome.hits
        ]
        return QueryResponse(
            query=outcome.query,
            search_query=outcome.search_query,
            history_only=outcome.history_only,
            sources=sources,
            hits=hits,
            total_tokens=outcome.context.total_tokens,
            degraded_document_ids=list(outcome.context.degraded_document_ids),
        )
