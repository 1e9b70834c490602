from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )
    # Application
    app_name: str = "Project Desk"
    app_version: str = "1.0.0"
    app_url: str = "http://localhost:8000"
    debug: bool = False

    # Database
    database_url: str
    database_echo: bool = False

    # Authentication & Security
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    revoked_token_cleanup_interval: int = 100  # revocations between purges

    # AI & LLM Configuration
    enable_ai_predictions: bool = True
    llm_provider: str = "openai"  # openai or ollama

    # OpenAI-compatible configuration (OpenAI, Groq, Together...)
    openai_api_key: str = "not-needed"
    openai_api_base: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 0.2
    max_tokens: int = 1024

    # Ollama Configuration
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    llm_timeout: float = 30.0

    # Sprint defaults
    default_sprint_length_days: int = 14
    velocity_window: int = 3  # previous completed sprints averaged with the current one

    # CORS
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"]
    )

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


# Environment-specific configurations
class DevelopmentConfig(Settings):
    debug: bool = True
    database_echo: bool = False
    log_level: str = "DEBUG"


class ProductionConfig(Settings):
    debug: bool = False
    database_echo: bool = False
    log_level: str = "WARNING"


class TestingConfig(Settings):
    database_url: str = "sqlite+aiosqlite:///:memory:"
    secret_key: str = "test-secret-key"
    enable_ai_predictions: bool = False


def get_settings() -> Settings:
    """Factory function to get settings based on environment"""
    env = os.getenv("ENVIRONMENT", "development").lower()

    if env == "production":
        return ProductionConfig()
    elif env == "testing":
        return TestingConfig()
    else:
        return DevelopmentConfig()


# Global settings instance
settings = get_settings()
