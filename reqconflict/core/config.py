"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Requirement Contradiction Engine"
    debug: bool = False
    api_version: str = "v1"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ==========================================================================
    # Inference Backend (Hugging Face)
    # ==========================================================================
    huggingface_api_key: str = ""
    huggingface_api_url: str = "https://api-inference.huggingface.co/models"
    similarity_model: str = "sentence-transformers/all-mpnet-base-v2"
    nli_model: str = "MoritzLaurer/DeBERTa-v3-base-mnli"

    # Dedicated NLI endpoint. When set, NLI calls go here with a
    # premise/hypothesis payload instead of the public inference API.
    nli_endpoint_url: str = ""
    nli_endpoint_api_key: str = ""

    # Transport
    inference_timeout_seconds: float = 30.0     # Per-request HTTP timeout
    inference_connect_timeout_seconds: float = 10.0

    # Backoff (per call site)
    similarity_max_retries: int = 5
    nli_max_retries: int = 3
    inference_base_retry_delay: float = 1.0     # Seconds; doubled per attempt

    # Application-level throttling of backend calls
    inference_max_concurrent_requests: int = 4
    inference_min_request_delay: float = 0.0    # Min seconds between requests

    # ==========================================================================
    # Contradiction Analysis Defaults
    # ==========================================================================
    contradiction_similarity_threshold: float = 0.6
    contradiction_nli_threshold: float = 0.55
    contradiction_max_requirements: int = 100
    contradiction_min_requirement_length: int = 10  # Shorter texts never compared
    contradiction_max_pair_errors: int = 5          # Run stops once errors exceed this
    contradiction_deadline_seconds: float | None = None  # Overall run deadline

    # "inline" runs async analysis in-process, "celery" queues it to a worker
    analysis_dispatch_mode: str = "inline"

    # ==========================================================================
    # Persistence
    # ==========================================================================
    comparison_store_backend: str = "memory"  # "memory" | "supabase"

    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_key: str = ""

    # ==========================================================================
    # Celery
    # ==========================================================================
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # ==========================================================================
    # Model Warming
    # ==========================================================================
    model_warming_on_startup: bool = False
    model_warming_interval_minutes: int = 60   # Celery beat schedule (0 disables)
    model_warming_max_retries: int = 5

    @property
    def is_inference_configured(self) -> bool:
        """Check if the inference backend API key is present."""
        return bool(self.huggingface_api_key)

    @property
    def is_nli_endpoint_configured(self) -> bool:
        """Check if a dedicated NLI endpoint should be used."""
        return bool(self.nli_endpoint_url and self.nli_endpoint_api_key)

    @property
    def is_supabase_configured(self) -> bool:
        """Check if Supabase credentials are present."""
        return bool(self.supabase_url and (self.supabase_service_key or self.supabase_key))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
