"""QueryExpansionDecider: detects under-specified queries and enriches them with related terms."""

import re

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.TextHelper import TextHelper
from shared.models.config import ExpansionConfig
from shared.models.conversation import ConversationTurn
from shared.models.errors import GenerationFailed

_TERM_SPLIT_RE = re.compile(r"[,;\n]+")
_STRIP_CHARS = " \t\"'`*-•.:"

SYSTEM_PROMPT = (
    "You improve search queries for a document search engine. "
    "Given a short or vague query, reply with 1 to {max_terms} additional search terms that are closely "
    "related to the query and keep its original intent. "
    "If a conversation is provided, use its topic to resolve what the query refers to. "
    "Reply in the language of the query with the terms only, separated by commas. "
    "Do not repeat the query, do not explain."
)


class QueryExpansionDecider:
    def __init__(self, helper_config: HelperConfig, config: ExpansionConfig, llm_client: LLMClientInterface | None):
        self.logging = helper_config.get_logger()
        self._config = config
        self._llm_client = llm_client

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @staticmethod
    def should_expand(query: str, config: ExpansionConfig) -> bool:
        """Decide whether a query is too short or too vague to search as is.

        True if the query is shorter than max_length_threshold characters, has
        at most max_word_threshold words, or contains a vague phrase
        (case-insensitive).
        """
        stripped = query.strip()
        if not stripped:
            return False
        if len(stripped) < config.max_length_threshold:
            return True
        if TextHelper.word_count(stripped) <= config.max_word_threshold:
            return True
        lowered = stripped.lower()
        return any(phrase.lower() in lowered for phrase in config.vague_phrases if phrase.strip())

    ##########################################
    ################# CORE ###################
    ##########################################

    async def maybe_expand(self, query: str, history: list[ConversationTurn] | None = None, force: bool = False) -> str:
        """Expand the query if expansion is enabled and the query needs it, or if forced."""
        if not self._config.enabled and not force:
            return query
        if not force and not self.should_expand(query, self._config):
            return query
        return await self.expand(query, history, self._config)

    async def expand(self, query: str, history: list[ConversationTurn] | None, config: ExpansionConfig) -> str:
        """Append generated related terms to the query.

        The original query is always kept in front so exact-term matches still hit.
        Any generation failure falls back to the unchanged query.

        Args:
            query (str): The user query.
            history (list[ConversationTurn] | None): Recent conversation, used to resolve the topic.
            config (ExpansionConfig): Expansion settings.

        Returns:
            str: "<query> <term1> <term2> ..." or the query itself.
        """
        if self._llm_client is None or not query.strip():
            return query

        system_prompt = SYSTEM_PROMPT.format(max_terms=config.max_terms)
        prompt = self.build_prompt(query, history, config)
        try:
            generated = await self._llm_client.do_generate(prompt, max_tokens=config.max_tokens, system_prompt=system_prompt)
        except GenerationFailed as e:
            self.logging.warning("Query expansion failed, using original query %r: %s", query[:80], e)
            return query

        terms = self.parse_terms(generated, query, config.max_terms)
        if not terms:
            self.logging.debug("Query expansion produced no new terms for %r", query[:80])
            return query
        expanded = f"{query.strip()} {' '.join(terms)}"
        self.logging.info("Expanded query %r -> %r", query[:80], expanded[:160])
        return expanded

    ##########################################
    ############### HELPERS ##################
    ##########################################

    @staticmethod
    def build_prompt(query: str, history: list[ConversationTurn] | None, config: ExpansionConfig) -> str:
        lines = [f"Query: {query.strip()}"]
        recent = (history or [])[-config.history_turns:] if config.history_turns else []
        if recent:
            lines.append("")
            lines.append("Recent conversation:")
            for turn in recent:
                content = turn.content.strip()
                if len(content) > config.history_snippet_chars:
                    content = content[:config.history_snippet_chars] + "..."
                lines.append(f"{turn.role.value}: {content}")
        return "\n".join(lines)

    @staticmethod
    def parse_terms(generated: str, query: str, max_terms: int) -> list[str]:
        """Extract up to max_terms new terms from the generated text.

        Terms already contained in the query (case-insensitive) and duplicates are dropped.
        """
        query_lower = query.lower()
        terms: list[str] = []
        for raw in _TERM_SPLIT_RE.split(generated or ""):
            term = raw.strip(_STRIP_CHARS)
            if not term or term.lower() in query_lower:
                continue
            if term.lower() in (t.lower() for t in terms):
                continue
            terms.append(term)
            if len(terms) >= max_terms:
                break
        return terms
