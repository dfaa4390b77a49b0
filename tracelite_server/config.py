"""Server configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str | None = None

    # HTTP listener (4318 is the OTLP/HTTP default port)
    host: str = "0.0.0.0"
    port: int = 4318

    log_level: str = "INFO"
    cors_allow_origins: list[str] = ["*"]

    # Upper bound for limit on the read endpoints
    max_page_size: int = 1000

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    """Get the Settings instance (dependency injection for FastAPI)"""
    return settings
