import pytest

from services.retrieval.ConversationContextManager import ConversationContextManager
from shared.models.config import HistoryConfig
from shared.models.context import ContextSegment, ContextWindow
from shared.models.conversation import ConversationTurn, Role
from tests.fakes import make_segment


def _turns(*contents):
    roles = [Role.USER, Role.ASSISTANT]
    return [ConversationTurn(role=roles[i % 2], content=content) for i, content in enumerate(contents)]


ALPHA_HISTORY = _turns("Tell me about project Alpha budget", "The Alpha budget covers research")


@pytest.fixture
def manager(helper_config):
    return ConversationContextManager(helper_config, HistoryConfig())


class TestPrepare:
    def test_keeps_the_most_recent_turns_in_order(self, manager):
        history = _turns(*(f"turn {i}" for i in range(12)))
        trimmed = manager.prepare(history)
        assert [turn.content for turn in trimmed] == [f"turn {i}" for i in range(2, 12)]

    def test_explicit_limit(self, manager):
        history = _turns("a", "b", "c")
        assert [turn.content for turn in manager.prepare(history, max_turns=2)] == ["b", "c"]

    @pytest.mark.parametrize("history, max_turns", [(None, 5), ([], 5), (_turns("a"), 0)])
    def test_nothing_to_keep(self, manager, history, max_turns):
        assert manager.prepare(history, max_turns=max_turns) == []

    def test_input_is_not_modified(self, manager):
        history = _turns(*(f"turn {i}" for i in range(12)))
        manager.prepare(history)
        assert len(history) == 12


class TestHistoryOnlyFallback:
    def test_empty_window_with_history(self, manager):
        assert manager.should_fallback_to_history_only(ContextWindow(), ALPHA_HISTORY) is True

    def test_document_evidence_wins(self, manager):
        window = ContextWindow(segments=[ContextSegment(segment=make_segment("doc", 0), is_target=True, token_count=3)])
        assert manager.should_fallback_to_history_only(window, ALPHA_HISTORY) is False

    @pytest.mark.parametrize("history", [None, []])
    def test_no_history_no_fallback(self, manager, history):
        assert manager.should_fallback_to_history_only(ContextWindow(), history) is False


class TestKeywords:
    def test_recent_and_repeated_terms_rank_first(self, manager):
        assert manager.extract_keywords(ALPHA_HISTORY, limit=3) == ["alpha", "budget", "covers"]

    def test_stop_words_and_short_terms_are_ignored(self, manager):
        keywords = manager.extract_keywords(ALPHA_HISTORY)
        assert "tell" not in keywords
        assert "the" not in keywords
        assert keywords == ["alpha", "budget", "covers", "research", "project"]

    def test_empty_history(self, manager):
        assert manager.extract_keywords([]) == []

    def test_enhance_appends_new_keywords(self, manager):
        assert manager.enhance_query("and costs?", ALPHA_HISTORY) == "and costs? alpha budget covers research project"

    def test_enhance_skips_known_keywords(self, manager):
        assert manager.enhance_query("alpha budget", ALPHA_HISTORY) == "alpha budget covers research project"

    def test_enhance_without_new_keywords(self, manager):
        assert manager.enhance_query("alpha budget covers research project", ALPHA_HISTORY) is None
        assert manager.enhance_query("anything", []) is None
