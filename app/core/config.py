import os
import logging
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip().lower() for item in os.getenv(name, default).split(",") if item.strip()]


class AISettings(BaseModel):
    openrouter_api_key: Optional[str] = Field(default=os.getenv("OPENROUTER_API_KEY"))
    openrouter_url: str = os.getenv("OPENROUTER_URL", "https://openrouter.ai/api/v1/chat/completions")
    model_name: str = Field(default=os.getenv("AI_MODEL_NAME", "google/gemini-2.0-flash-001"))
    classifier_model_name: str = Field(default=os.getenv("AI_CLASSIFIER_MODEL", "google/gemini-2.0-flash-lite-001"))
    kill_switch: bool = Field(default=os.getenv("AI_KILL_SWITCH", "false").lower() == "true")
    temperature: float = 0.7

    # Embeddings: "hash" is deterministic and offline, "openai" calls an OpenAI-compatible endpoint
    embedding_backend: str = os.getenv("EMBEDDING_BACKEND", "hash")
    embedding_api_key: Optional[str] = Field(default=os.getenv("EMBEDDING_API_KEY"))
    embedding_url: str = os.getenv("EMBEDDING_URL", "https://api.openai.com/v1/embeddings")
    embedding_model: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

    # Vector index: "sql" keeps vectors in the relational store, "pinecone" uses the REST API
    vector_backend: str = os.getenv("VECTOR_BACKEND", "sql")
    pinecone_api_key: Optional[str] = Field(default=os.getenv("PINECONE_API_KEY"))
    pinecone_host: Optional[str] = Field(default=os.getenv("PINECONE_HOST"))
    pinecone_namespace: str = os.getenv("PINECONE_NAMESPACE", "performance")


class PipelineSettings(BaseModel):
    """Tunables for review generation and sentiment monitoring."""
    top_k: int = int(os.getenv("PIPELINE_TOP_K", "10"))
    min_similarity: float = float(os.getenv("PIPELINE_MIN_SIMILARITY", "0.70"))
    restrict_retrieval_to_employee: bool = os.getenv("PIPELINE_RESTRICT_TO_EMPLOYEE", "true").lower() == "true"

    # Timeouts (seconds)
    embedding_timeout: float = float(os.getenv("PIPELINE_EMBEDDING_TIMEOUT", "15"))
    search_timeout: float = float(os.getenv("PIPELINE_SEARCH_TIMEOUT", "15"))
    generation_timeout: float = float(os.getenv("PIPELINE_GENERATION_TIMEOUT", "30"))
    classification_timeout: float = float(os.getenv("PIPELINE_CLASSIFICATION_TIMEOUT", "10"))
    generation_deadline: float = float(os.getenv("PIPELINE_GENERATION_DEADLINE", "45"))
    retry_backoff_seconds: float = float(os.getenv("PIPELINE_RETRY_BACKOFF", "0.5"))
    generation_max_tokens: int = int(os.getenv("PIPELINE_GENERATION_MAX_TOKENS", "2500"))

    # Confidence
    degradation_penalty: float = 0.15
    default_model_certainty: float = float(os.getenv("PIPELINE_DEFAULT_CERTAINTY", "0.5"))

    # Evidence quality baselines
    default_window_days: int = 365
    expected_okrs_per_quarter: float = float(os.getenv("PIPELINE_EXPECTED_OKRS", "3"))
    expected_feedback_per_quarter: float = float(os.getenv("PIPELINE_EXPECTED_FEEDBACK", "5"))
    expected_reviews: float = float(os.getenv("PIPELINE_EXPECTED_REVIEWS", "1"))
    coverage_weight: float = 0.6
    recency_weight: float = 0.4
    category_weights: Dict[str, float] = Field(
        default_factory=lambda: {"feedback": 0.5, "okr": 0.3, "review_history": 0.2}
    )

    # Sentiment monitor
    alert_cooldown_hours: float = float(os.getenv("PIPELINE_ALERT_COOLDOWN_HOURS", "24"))
    quality_floor: float = float(os.getenv("PIPELINE_QUALITY_FLOOR", "40"))
    trend_threshold: float = float(os.getenv("PIPELINE_TREND_THRESHOLD", "5"))
    moving_average_window: int = 3
    batch_failure_threshold: float = float(os.getenv("PIPELINE_BATCH_FAILURE_THRESHOLD", "0.5"))
    bias_keywords: List[str] = Field(
        default_factory=lambda: _env_list(
            "PIPELINE_BIAS_KEYWORDS",
            "too old,too young,for a woman,for a girl,emotional,abrasive,bossy,"
            "not a culture fit,maternity,accent,aggressive for",
        )
    )

    # Edit reconciliation
    allow_editor_overwrite: bool = os.getenv("PIPELINE_ALLOW_EDITOR_OVERWRITE", "false").lower() == "true"


class Config(BaseModel):
    app_name: str = "Performance Review AI Service"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./database.db")

    # AI Components
    ai: AISettings = AISettings()
    pipeline: PipelineSettings = PipelineSettings()

    version: str = "1.0.0"
    build_id: str = os.getenv("BUILD_ID", "local")
    request_id_header: str = "X-Request-ID"
    actor_header: str = "X-User-ID"

    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if o.strip()
        ]
    )

    rate_limit_enabled: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    generation_rate_limit: str = os.getenv("GENERATION_RATE_LIMIT", "10/minute")

settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment not in ("development", "testing"):
    if not settings.ai.openrouter_api_key and not settings.ai.kill_switch:
        raise RuntimeError(
            "FATAL: OPENROUTER_API_KEY must be set for non-development environments "
            "(or set AI_KILL_SWITCH=true to run without AI)."
        )
    if settings.ai.vector_backend == "pinecone" and not settings.ai.pinecone_host:
        raise RuntimeError("FATAL: VECTOR_BACKEND=pinecone requires PINECONE_HOST.")
elif not settings.ai.openrouter_api_key:
    _logger.warning("⚠ OPENROUTER_API_KEY not set, AI generation will be unavailable in development.")
