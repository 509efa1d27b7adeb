"""ConversationContextManager: bounds chat history and decides when history alone must answer."""

from shared.helper.HelperConfig import HelperConfig
from shared.helper.TextHelper import TextHelper
from shared.models.config import HistoryConfig
from shared.models.context import ContextWindow
from shared.models.conversation import ConversationTurn

KEYWORD_TURNS = 5        # most recent turns scanned for keywords
KEYWORD_DECAY = 0.7      # weight factor per step back in history
KEYWORDS_PER_TURN = 10


class ConversationContextManager:
    def __init__(self, helper_config: HelperConfig, config: HistoryConfig):
        self.logging = helper_config.get_logger()
        self._config = config

    def prepare(self, history: list[ConversationTurn] | None, max_turns: int | None = None) -> list[ConversationTurn]:
        """Keep the last max_turns turns, oldest dropped first, original order preserved."""
        max_turns = self._config.max_turns if max_turns is None else max_turns
        if not history or max_turns <= 0:
            return []
        return list(history[-max_turns:])

    def should_fallback_to_history_only(self, context_window: ContextWindow, trimmed_history: list[ConversationTurn] | None) -> bool:
        """True when there is no document evidence but there is conversation to answer from."""
        return context_window.is_empty() and bool(trimmed_history)

    def extract_keywords(self, history: list[ConversationTurn] | None, limit: int | None = None) -> list[str]:
        """Return the most salient keywords of the recent conversation.

        Newer turns weigh more: each step back multiplies the weight by KEYWORD_DECAY.
        Ties keep first-seen order.
        """
        limit = self._config.keyword_count if limit is None else limit
        if not history or limit <= 0:
            return []
        recent = history[-KEYWORD_TURNS:]
        weights: dict[str, float] = {}
        for age, turn in enumerate(reversed(recent)):
            weight = KEYWORD_DECAY ** age
            for term in TextHelper.meaningful_terms(turn.content, min_length=4)[:KEYWORDS_PER_TURN]:
                weights[term] = weights.get(term, 0.0) + weight
        ranked = sorted(weights.items(), key=lambda item: -item[1])
        return [term for term, _ in ranked[:limit]]

    def enhance_query(self, query: str, history: list[ConversationTurn] | None) -> str | None:
        """Append history keywords not already in the query. None if there is nothing to add."""
        query_lower = query.lower()
        keywords = [kw for kw in self.extract_keywords(history) if kw not in query_lower]
        if not keywords:
            return None
        return f"{query.strip()} {' '.join(keywords)}"
