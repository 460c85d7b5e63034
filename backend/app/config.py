"""pydantic-settings based application settings for the search service."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Search service settings.

    All values are loaded from environment variables.
    A .env file in the backend directory is also supported.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Database ---
    DATABASE_URL: str = "postgresql+asyncpg://notesearch:notesearch@db:5432/notesearch"

    # --- JWT (verification only, tokens are issued by the auth service) ---
    JWT_SECRET: str = "change-this-secret-key"
    JWT_ALGORITHM: str = "HS256"

    # --- Query embeddings ---
    OPENAI_API_KEY: str = ""
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSION: int = 1536
    EMBEDDING_SERVICE_URL: str = ""  # local HTTP embedding service, overrides OpenAI
    EMBEDDING_TIMEOUT_SECONDS: float = 10.0

    # --- Search ---
    SEARCH_CACHE_TTL_MINUTES: int = 60
    SEARCH_CACHE_TTL_DATED_MINUTES: int = 5  # date range reaching "now"
    SEARCH_TIMEOUT_SECONDS: float = 5.0
    SEARCH_TEXT_WEIGHT: float = 0.4
    SEARCH_VECTOR_WEIGHT: float = 0.6
    SEARCH_CANDIDATE_DEPTH: int = 100  # hybrid candidates taken from each ranker
    SEMANTIC_MIN_SIMILARITY: float = 0.5
    SUGGESTION_WINDOW_DAYS: int = 30
    SEARCH_CLEANUP_INTERVAL_MINUTES: int = 0  # 0 disables the sweeper

    # --- Logging ---
    LOG_LEVEL: str = "INFO"

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses the asyncpg driver."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()
