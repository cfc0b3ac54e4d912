"""Application settings loaded from environment variables via pydantic-settings.

Values are read from two sources, in priority order:

1. **Environment variables** -- e.g. ``OPENAI_API_KEY=sk-abc123``.
2. **.env file** -- ``key=value`` lines in the project root ``.env``.

Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``; defaults apply
when neither source sets a value.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """AgriAI application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Generation / embedding backends ===
    # Empty key = "not configured": the RAG service answers with fallbacks
    # and document jobs fail at the embedding stage.
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_text_model: str = ""
    openai_embedding_model: str = ""

    # === Queue ===
    queue_backend_url: str = "memory://"
    job_max_attempts: int = 3
    job_backoff_seconds: float = 2.0
    non_critical_delay_seconds: float = 1.0
    stall_timeout_seconds: float = 60.0
    stall_check_interval_seconds: float = 15.0
    max_stalled_count: int = 1
    document_workers: int = 5
    notification_workers: int = 10
    cleanup_workers: int = 1
    failed_retention_days: int = 7

    # === Ingestion ===
    embedding_batch_size: int = 10
    embedding_batch_delay_seconds: float = 1.0
    external_request_timeout_seconds: float = 30.0
    chunk_size: int = 1000
    chunk_overlap: int = 200
    min_chunk_size: int = 100
    min_similarity: float = 0.2

    # === RAG ===
    rag_top_k: int = 5
    rag_min_relevance: float = 0.1
    rag_history_turns: int = 3
    fallback_confidence: float = 0.3

    # === Persistence ===
    database_path: str = "data/agriai.db"
    storage_root: str = "data/objects"
    storage_prefix: str = "documents/"

    # === App ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"
