"""Configuration models.

EnvConfig describes a single env setting required by a client. The remaining
models hold the validated retrieval settings, built once at startup by
load_retrieval_config() and passed by reference into each component.
"""

from pydantic import BaseModel, Field, ValidationError, model_validator

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import InvalidConfiguration

DEFAULT_VAGUE_PHRASES = [
    # english
    "tell me", "what about", "more info", "anything about", "something about", "details", "explain",
    # german
    "infos", "was ist", "erzähl", "mehr über", "was gibt es", "details zu", "erkläre",
]


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required for a env setting.

    Attributes:
        env_key (str): The key/name of the environment variable to read.
        val_type (str): The expected type of the value ("string", "number", "bool" or "list").
        default (str | int | bool | list | None): Default value if the variable is not set. None marks the variable as required.
    """

    env_key: str
    val_type: str
    default: str | int | bool | list | None = None


class ChunkingConfig(BaseModel):
    """Segment sizes in characters."""

    target_size: int = Field(default=1000, gt=0)
    overlap: int = Field(default=100, ge=0)
    boundary_tolerance: int = Field(default=200, ge=0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.overlap >= self.target_size:
            raise ValueError(f"overlap ({self.overlap}) must be smaller than target_size ({self.target_size})")
        return self


class CacheConfig(BaseModel):
    capacity: int = Field(default=2048, gt=0)
    # 0 disables age based expiry
    ttl_seconds: float = Field(default=3600, ge=0)


class ExpansionConfig(BaseModel):
    enabled: bool = True
    max_length_threshold: int = Field(default=20, ge=0)
    max_word_threshold: int = Field(default=2, ge=0)
    vague_phrases: list[str] = Field(default_factory=lambda: list(DEFAULT_VAGUE_PHRASES))
    max_terms: int = Field(default=3, ge=1)
    max_tokens: int = Field(default=60, gt=0)
    history_turns: int = Field(default=5, ge=0)
    history_snippet_chars: int = Field(default=150, gt=0)


class ScoringConfig(BaseModel):
    vector_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    min_score_for_answer: float = Field(default=0.25, ge=0.0, le=1.0)
    max_results: int = Field(default=5, gt=0)
    candidate_multiplier: int = Field(default=3, ge=1)
    short_query_multiplier: int = Field(default=4, ge=1)
    short_query_length: int = Field(default=20, ge=0)
    max_candidates: int = Field(default=100, gt=0)


class AssemblyConfig(BaseModel):
    adjacent_count: int = Field(default=2, ge=0)
    token_budget: int = Field(default=3000, gt=0)
    chars_per_token: int = Field(default=4, gt=0)
    fetch_concurrency: int = Field(default=4, gt=0)


class HistoryConfig(BaseModel):
    max_turns: int = Field(default=10, ge=0)
    history_only_max_turns: int = Field(default=15, ge=0)
    retry_with_history: bool = True
    keyword_count: int = Field(default=5, ge=0)


class RetrievalConfig(BaseModel):
    """All retrieval settings, validated as one unit."""

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    expansion: ExpansionConfig = Field(default_factory=ExpansionConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    assembly: AssemblyConfig = Field(default_factory=AssemblyConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    deadline_seconds: float = Field(default=30.0, gt=0)


def load_retrieval_config(helper_config: HelperConfig) -> RetrievalConfig:
    """Read and validate all retrieval settings from the environment.

    Args:
        helper_config (HelperConfig): Source of the env values.

    Returns:
        RetrievalConfig: The validated settings.

    Raises:
        InvalidConfiguration: If any value is missing its constraints (e.g. overlap >= target size).
    """
    get_num = helper_config.get_number_val
    get_bool = helper_config.get_bool_val
    try:
        config = RetrievalConfig(
            chunking=ChunkingConfig(
                target_size=get_num("CHUNK_TARGET_SIZE", default=1000),
                overlap=get_num("CHUNK_OVERLAP", default=100),
                boundary_tolerance=get_num("CHUNK_BOUNDARY_TOLERANCE", default=200),
            ),
            cache=CacheConfig(
                capacity=get_num("EMBED_CACHE_CAPACITY", default=2048),
                ttl_seconds=get_num("EMBED_CACHE_TTL_SECONDS", default=3600),
            ),
            expansion=ExpansionConfig(
                enabled=get_bool("QUERY_EXPANSION_ENABLED", default=True),
                max_length_threshold=get_num("QUERY_EXPANSION_MAX_LENGTH", default=20),
                max_word_threshold=get_num("QUERY_EXPANSION_MAX_WORDS", default=2),
                vague_phrases=helper_config.get_list_val("QUERY_EXPANSION_VAGUE_PHRASES", default=DEFAULT_VAGUE_PHRASES),
                max_terms=get_num("QUERY_EXPANSION_MAX_TERMS", default=3),
                max_tokens=get_num("QUERY_EXPANSION_MAX_TOKENS", default=60),
                history_turns=get_num("QUERY_EXPANSION_HISTORY_TURNS", default=5),
                history_snippet_chars=get_num("QUERY_EXPANSION_HISTORY_SNIPPET_CHARS", default=150),
            ),
            scoring=ScoringConfig(
                vector_weight=get_num("SEARCH_VECTOR_WEIGHT", default=0.7),
                min_score_for_answer=get_num("SEARCH_MIN_SCORE", default=0.25),
                max_results=get_num("SEARCH_MAX_RESULTS", default=5),
                candidate_multiplier=get_num("SEARCH_CANDIDATE_MULTIPLIER", default=3),
                short_query_multiplier=get_num("SEARCH_SHORT_QUERY_MULTIPLIER", default=4),
                short_query_length=get_num("SEARCH_SHORT_QUERY_LENGTH", default=20),
                max_candidates=get_num("SEARCH_MAX_CANDIDATES", default=100),
            ),
            assembly=AssemblyConfig(
                adjacent_count=get_num("CONTEXT_ADJACENT_CHUNKS", default=2),
                token_budget=get_num("CONTEXT_TOKEN_BUDGET", default=3000),
                chars_per_token=get_num("CONTEXT_CHARS_PER_TOKEN", default=4),
                fetch_concurrency=get_num("CONTEXT_FETCH_CONCURRENCY", default=4),
            ),
            history=HistoryConfig(
                max_turns=get_num("HISTORY_MAX_TURNS", default=10),
                history_only_max_turns=get_num("HISTORY_ONLY_MAX_TURNS", default=15),
                retry_with_history=get_bool("HISTORY_RETRY_ENABLED", default=True),
                keyword_count=get_num("HISTORY_KEYWORD_COUNT", default=5),
            ),
            deadline_seconds=get_num("RETRIEVAL_DEADLINE_SECONDS", default=30.0),
        )
    except (ValidationError, ValueError) as e:
        raise InvalidConfiguration(str(e)) from e

    helper_config.get_logger().debug("Loaded retrieval configuration: %s", config.model_dump())
    return config
