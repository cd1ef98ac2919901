from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Resume Tailor Service"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Database
    DATABASE_URL: str = "sqlite:///./tailor.db"

    # API
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Text generation (Groq)
    GROQ_API_KEY: str | None = None
    DEFAULT_MODEL_KEY: str = "groq:openai/gpt-oss-120b"
    GENERATION_TEMPERATURE: float = 0.7
    GENERATION_MAX_TOKENS: int = 8000

    # Enrichment tools
    TOOLS_BASE_URL: str = "http://localhost:3000"
    TOOLS_TIMEOUT_SECONDS: float = 20.0
    TOOLS_MAX_ATTEMPTS: int = 2

    # Pipeline
    PIPELINE_TIMEOUT_SECONDS: float = 60.0

    # Telemetry (Umami-compatible collect endpoint)
    TELEMETRY_URL: str | None = None
    TELEMETRY_WEBSITE_ID: str | None = None
    TELEMETRY_API_KEY: str | None = None

    # Privacy-preserving caller fingerprints
    IP_HASH_SALT: str = "default-salt"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra environment variables


settings = Settings()
