import logging

import pytest

from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.config import DEFAULT_VAGUE_PHRASES, ChunkingConfig, RetrievalConfig, load_retrieval_config
from shared.models.errors import InvalidConfiguration


def _config(**environ):
    return HelperConfig(logger=ColorLogger(logging.getLogger("tests")), environ=environ)


class TestHelperConfig:
    def test_blank_values_count_as_unset(self):
        assert _config(NAME="  ").get_string_val("name", default="fallback") == "fallback"

    def test_required_value_missing(self):
        with pytest.raises(ValueError, match="NAME"):
            _config().get_string_val("NAME")

    def test_numbers(self):
        config = _config(WHOLE="12", FRACTION="0.5", BROKEN="abc")
        assert config.get_number_val("WHOLE") == 12
        assert config.get_number_val("FRACTION") == 0.5
        with pytest.raises(ValueError, match="not a valid number"):
            config.get_number_val("BROKEN")

    @pytest.mark.parametrize("raw, expected", [("true", True), ("1", True), ("YES", True), ("false", False), ("off", False)])
    def test_bools(self, raw, expected):
        assert _config(FLAG=raw).get_bool_val("FLAG") is expected

    def test_lists(self):
        config = _config(ITEMS="[a, b ,c]", BAD="a,b")
        assert config.get_list_val("ITEMS") == ["a", "b", "c"]
        assert config.get_list_val("MISSING", default=["x"]) == ["x"]
        with pytest.raises(ValueError, match="format"):
            config.get_list_val("BAD")


class TestLoadRetrievalConfig:
    def test_defaults(self):
        config = load_retrieval_config(_config())
        assert config == RetrievalConfig()
        assert config.chunking.target_size == 1000
        assert config.scoring.vector_weight == 0.7
        assert config.assembly.token_budget == 3000
        assert config.expansion.vague_phrases == DEFAULT_VAGUE_PHRASES

    def test_environment_overrides(self):
        config = load_retrieval_config(_config(
            CHUNK_TARGET_SIZE="500",
            CHUNK_OVERLAP="50",
            SEARCH_VECTOR_WEIGHT="0.5",
            QUERY_EXPANSION_ENABLED="false",
            QUERY_EXPANSION_VAGUE_PHRASES="[tell me,infos]",
            CONTEXT_ADJACENT_CHUNKS="0",
            RETRIEVAL_DEADLINE_SECONDS="2.5",
        ))
        assert (config.chunking.target_size, config.chunking.overlap) == (500, 50)
        assert config.scoring.vector_weight == 0.5
        assert config.expansion.enabled is False
        assert config.expansion.vague_phrases == ["tell me", "infos"]
        assert config.assembly.adjacent_count == 0
        assert config.deadline_seconds == 2.5

    @pytest.mark.parametrize("environ", [
        {"CHUNK_TARGET_SIZE": "100", "CHUNK_OVERLAP": "100"},
        {"CHUNK_TARGET_SIZE": "0"},
        {"SEARCH_VECTOR_WEIGHT": "1.5"},
        {"CONTEXT_TOKEN_BUDGET": "-1"},
        {"EMBED_CACHE_CAPACITY": "lots"},
    ])
    def test_invalid_values(self, environ):
        with pytest.raises(InvalidConfiguration):
            load_retrieval_config(_config(**environ))

    def test_chunking_model_rejects_overlap_not_below_target(self):
        with pytest.raises(ValueError):
            ChunkingConfig(target_size=10, overlap=10)
