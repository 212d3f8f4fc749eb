"""
Configuration settings for the knowledge chatbot API
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field, field_validator
import json


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API Configuration
    API_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=False)

    # CORS Settings
    CORS_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:5173",
        ]
    )

    @field_validator("CORS_ORIGINS", "RELAY_URL_TEMPLATES", mode="before")
    @classmethod
    def parse_string_list(cls, v):
        """Parse list settings from JSON string if needed"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not JSON, treat as comma-separated list
                return [item.strip() for item in v.split(",") if item.strip()]
        return v

    # Language model (OpenAI-compatible chat completions)
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    LLM_BASE_URL: str = Field(default="https://api.openai.com/v1")
    MODEL_NAME: str = Field(default="gpt-4o")
    LLM_TIMEOUT: float = Field(default=90.0)

    # Professional scraping backend (optional)
    ZYTE_API_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ZYTE_API_KEY", "ZITE_API_KEY"),
    )
    ZYTE_API_URL: str = Field(default="https://api.zyte.com/v1/extract")
    SCRAPER_TIMEOUT: float = Field(default=60.0)

    # Public passthrough relays, tried in order. "{url}" is replaced by the
    # URL-encoded target.
    RELAY_URL_TEMPLATES: List[str] = Field(
        default=[
            "https://api.allorigins.win/raw?url={url}",
            "https://corsproxy.io/?{url}",
            "https://api.codetabs.com/v1/proxy?quest={url}",
        ]
    )
    REQUEST_TIMEOUT: float = Field(default=30.0)
    MIN_MARKUP_LENGTH: int = Field(default=100)

    # Extraction thresholds
    MIN_NORMALIZED_LENGTH: int = Field(default=50)
    SEMANTIC_TRIGGER_RATIO: float = Field(default=0.05)
    SEMANTIC_MIN_LENGTH: int = Field(default=500)
    SEMANTIC_MARKUP_CAP: int = Field(default=100_000)
    PASTED_TEXT_MIN_LENGTH: int = Field(default=10)

    # Knowledge base condensation
    DIRECT_KB_MAX_LENGTH: int = Field(default=50_000)
    CONDENSE_LINK_CAP: int = Field(default=150_000)
    CONDENSE_DEFAULT_CAP: int = Field(default=100_000)
    RESPONDER_CONTEXT_CAP: int = Field(default=20_000)

    # Per call-site generation budgets
    EXTRACTION_MAX_TOKENS: int = Field(default=8000)
    EXTRACTION_TEMPERATURE: float = Field(default=0.3)
    CONDENSE_MAX_TOKENS: int = Field(default=8000)
    CONDENSE_TEMPERATURE: float = Field(default=0.3)
    CHAT_MAX_TOKENS: int = Field(default=1500)
    CHAT_TEMPERATURE: float = Field(default=0.7)

    # Chat session
    MAX_USER_TURNS: int = Field(default=3)
    CONVERSION_DELAY_SECONDS: float = Field(default=2.0)
    SESSION_TTL: int = Field(default=1800)  # 30 minutes idle
    MAX_UPLOAD_BYTES: int = Field(default=20 * 1024 * 1024)
    BOOKING_URL: str = Field(default="https://calendly.com/your-link")

    # Observability
    ENABLE_METRICS: bool = Field(default=True)
    OTEL_ENABLED: bool = Field(default=False)
    OTEL_ENDPOINT: str = Field(default="http://localhost:4317")
    OTEL_SERVICE_NAME: str = Field(default="kbchat-api")

    def zyte_enabled(self) -> bool:
        """Whether credentials for the scraping backend are present"""
        return bool(self.ZYTE_API_KEY and self.ZYTE_API_KEY.strip())
