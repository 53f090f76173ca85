# tendermatch/config.py
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator


class Settings(BaseSettings):
    # DB
    database_url: str = Field("postgresql+asyncpg://localhost:5432/tendermatch", env="DATABASE_URL")

    # Celery / Redis
    redis_url: str = Field("redis://localhost:6379/0", env="REDIS_URL")
    celery_queue: str = Field("tendermatch", env="CELERY_QUEUE")
    tender_sync_interval_minutes: int = Field(60, env="TENDER_SYNC_INTERVAL_MINUTES")
    tender_sync_page_size: int = Field(50, env="TENDER_SYNC_PAGE_SIZE")
    recommendation_refresh_interval_minutes: int = Field(360, env="RECOMMENDATION_REFRESH_INTERVAL_MINUTES")

    # Uploads
    upload_dir: str = Field(".data", env="UPLOAD_DIR")
    max_upload_size: int = Field(10 * 1024 * 1024, env="MAX_UPLOAD_SIZE")
    allowed_content_types: List[str] = Field(["application/pdf"], env="ALLOWED_CONTENT_TYPES")
    allowed_extensions: List[str] = Field([".pdf"], env="ALLOWED_EXTENSIONS")
    storage_backend: str = Field("local", env="STORAGE_BACKEND")  # "local" or "minio"

    # MinIO
    minio_endpoint: Optional[str] = Field(None, env="MINIO_ENDPOINT")
    minio_access_key: Optional[str] = Field(None, env="MINIO_ACCESS_KEY")
    minio_secret_key: Optional[str] = Field(None, env="MINIO_SECRET_KEY")
    minio_bucket: str = Field("company-documents", env="MINIO_BUCKET")
    minio_secure: bool = Field(False, env="MINIO_SECURE")

    # OCR (LLMWhisperer)
    ocr_backend: str = Field("whisperer", env="OCR_BACKEND")  # "whisperer" or "local"
    unstract_base: str = Field("https://llmwhisperer-api.us-central.unstract.com/api/v2", env="UNSTRACT_BASE")
    unstract_api_key: str = Field("", env="UNSTRACT_API_KEY")
    ocr_submit_timeout: float = Field(180.0, env="OCR_SUBMIT_TIMEOUT")
    ocr_poll_interval: float = Field(10.0, env="OCR_POLL_INTERVAL")
    ocr_max_attempts: int = Field(20, env="OCR_MAX_ATTEMPTS")

    # DeepInfra
    deepinfra_base: str = Field("https://api.deepinfra.com/v1/openai", env="DEEPINFRA_BASE")
    deepinfra_token: str = Field("", env="DEEPINFRA_TOKEN")
    extraction_model: str = Field("deepseek-ai/DeepSeek-V3.1", env="EXTRACTION_MODEL")
    embedding_model: str = Field("BAAI/bge-large-en-v1.5", env="EMBEDDING_MODEL")
    extraction_max_chars: int = Field(15000, env="EXTRACTION_MAX_CHARS")
    embed_batch: int = Field(64, env="EMBED_BATCH")

    # Tender source
    tender_source_mode: str = Field("live", env="TENDER_SOURCE_MODE")  # live, recorded, synthetic
    etimad_api_url: str = Field("http://localhost:5000", env="ETIMAD_API_URL")
    etimad_api_key: str = Field("", env="ETIMAD_API_KEY")
    tender_fixture_path: Optional[str] = Field(None, env="TENDER_FIXTURE_PATH")

    # Semantic search
    search_backend: str = Field("http", env="SEARCH_BACKEND")  # "http" or "qdrant"
    qdrant_url: str = Field("http://localhost:6333", env="QDRANT_URL")
    collection: str = Field("tenders", env="COLLECTION")
    vector_size: int = Field(1024, env="VECTOR_SIZE")
    upsert_batch: int = Field(128, env="UPSERT_BATCH")

    # API
    cors_origins: List[str] = Field(["*"], env="CORS_ORIGINS")
    admin_api_key: str = Field("change_me", env="ADMIN_API_KEY")
    refresh_rate_limit: int = Field(5, env="REFRESH_RATE_LIMIT")  # forced refreshes per owner per minute
    host: str = Field("0.0.0.0", env="HOST")
    port: int = Field(8000, env="PORT")

    log_level: str = Field("INFO", env="LOG_LEVEL")

    # Prometheus
    prometheus_enabled: bool = Field(True, env="PROMETHEUS_ENABLED")

    # Pydantic v2 config
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # ---- field validators (pydantic v2 style) ----
    @field_validator("allowed_extensions", "allowed_content_types", mode="before")
    def _split_allow_lists(cls, v):
        """
        Allows ALLOWED_EXTENSIONS / ALLOWED_CONTENT_TYPES as comma-separated strings in env.
        Example: '.pdf,.docx'
        """
        if isinstance(v, str):
            return [s.strip().lower() for s in v.split(",") if s.strip()]
        return v

    @field_validator("cors_origins", mode="before")
    def _split_cors_origins(cls, v):
        """
        Allows CORS_ORIGINS as comma-separated string in env, or as a list.
        """
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("vector_size", "ocr_max_attempts", mode="before")
    def _validate_positive_int(cls, v):
        if isinstance(v, str) and v.isdigit():
            v = int(v)
        if not isinstance(v, int) or v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("tender_source_mode", "search_backend", "ocr_backend", "storage_backend", mode="before")
    def _normalize_mode(cls, v):
        return str(v).strip().lower()


settings = Settings()
