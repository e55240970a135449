from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required
    DATABASE_URL: str
    DATABASE_SSL: bool = False

    # Connection pool
    DB_POOL_SIZE: int = 20
    DB_POOL_TIMEOUT: float = 5.0
    DB_POOL_RECYCLE: int = 30

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    # "development" echoes internal error details to clients
    ENVIRONMENT: str = "production"

    LOG_LEVEL: str = "INFO"

    # Comma separated list of allowed origins
    CORS_ORIGINS: str = "http://localhost:3000"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
