"""Configuration management."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field


class Settings(BaseSettings):
    """Application settings."""

    # Database (PostgreSQL) - constructed from parts
    db_host: str = "localhost"
    db_port: str = "5432"
    db_name: str = "chatzo"
    db_user: str = "chatzo"
    db_password: str = ""

    @computed_field
    @property
    def database_url(self) -> str:
        """Construct database URL from parts."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Language model providers (OpenAI-compatible chat completion endpoints)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    groq_api_key: str = ""
    groq_base_url: str = "https://api.groq.com/openai/v1"
    mistral_api_key: str = ""
    mistral_base_url: str = "https://api.mistral.ai/v1"
    google_api_key: str = ""
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai"

    # Image generation provider
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"

    # Generation
    max_steps: int = 100  # Tool-calling step ceiling per response
    request_timeout: float = 300.0
    stream_buffer_size: int = 64  # Frames buffered between generation and HTTP response
    title_model: str = "haiku"  # Fixed lightweight model for thread titles

    # Web search tool
    search_provider: str = "serper"  # serper or firecrawl
    serper_api_key: str = ""
    firecrawl_api_key: str = ""

    # Media storage (Cloudinary)
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_generations_folder: str = "generations"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:8081",
        "http://localhost:19006",
    ]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


# Global settings instance
settings = Settings()
