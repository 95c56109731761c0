"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str

    # Redis
    redis_url: str

    # App
    log_level: str = "INFO"
    environment: str = "development"

    # Caches
    rule_cache_ttl_seconds: int = 300
    factor_cache_ttl_seconds: int = 60

    # Calculation
    lookup_timeout_seconds: float = 10.0
    money_precision: int = 2

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()  # type: ignore[call-arg]
