from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Climbing Notes sync settings.

    All values are loaded from environment variables.
    A .env file in the backend directory is also supported.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Remote sync store (server side) ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./climbnotes.db"

    # --- Local replica (device side) ---
    DATA_DIR: str = "./data/climbnotes"  # Primary location of local state
    FALLBACK_DATA_DIR: str = ""  # Degraded location used when DATA_DIR is unwritable

    # --- Sync client ---
    SYNC_API_URL: str = "http://localhost:8000"
    SYNC_USER_ID: str = ""
    SYNC_TIMEOUT_SECONDS: float = 30.0

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()
