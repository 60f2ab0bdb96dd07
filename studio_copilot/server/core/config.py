"""
Configuration Settings.

This module defines the application configuration using Pydantic's BaseSettings.
It automatically loads all configuration from environment variables and .env file
without explicit dotenv loading.
"""

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# =====================================================================
# LLM Provider Configuration Models
# =====================================================================


class OpenAIConfig(BaseModel):
    """OpenAI-compatible endpoint configuration."""

    api_key: Optional[str] = Field(
        default=None, alias="OPENAI_API_KEY", description="API key for the OpenAI-compatible endpoint"
    )
    model: Optional[str] = Field(default=None, alias="OPENAI_MODEL", description="Default model to use")
    base_url: Optional[str] = Field(
        default=None, alias="OPENAI_BASE_URL", description="Custom OpenAI-compatible base URL (optional)"
    )

    model_config = {"populate_by_name": True}


class OpenRouterConfig(BaseModel):
    """OpenRouter configuration."""

    api_key: Optional[str] = Field(default=None, alias="OPENROUTER_API_KEY", description="OpenRouter API key")
    model: Optional[str] = Field(default=None, alias="OPENROUTER_MODEL", description="Default OpenRouter model")
    base_url: Optional[str] = Field(default=None, alias="OPENROUTER_BASE_URL", description="OpenRouter base URL")

    model_config = {"populate_by_name": True}


class GeminiConfig(BaseModel):
    """Google Gemini configuration."""

    api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY", description="Gemini API key")
    model: Optional[str] = Field(default=None, alias="GEMINI_MODEL", description="Default Gemini model")
    base_url: Optional[str] = Field(default=None, alias="GEMINI_BASE_URL", description="Gemini API base URL")

    model_config = {"populate_by_name": True}


class BedrockConfig(BaseModel):
    """AWS Bedrock configuration."""

    api_key: Optional[str] = Field(
        default=None, alias="AWS_BEARER_TOKEN_BEDROCK", description="Bedrock API key (bearer token)"
    )
    region: Optional[str] = Field(default=None, alias="AWS_REGION", description="Bedrock region")
    model: Optional[str] = Field(default=None, alias="BEDROCK_MODEL", description="Default Bedrock model id")

    model_config = {"populate_by_name": True}


class NvidiaConfig(BaseModel):
    """NVIDIA hosted endpoint configuration."""

    api_key: Optional[str] = Field(default=None, alias="NVIDIA_API_KEY", description="NVIDIA API key")
    model: Optional[str] = Field(default=None, alias="NVIDIA_MODEL", description="Default NVIDIA model")
    base_url: Optional[str] = Field(default=None, alias="NVIDIA_BASE_URL", description="NVIDIA API base URL")

    model_config = {"populate_by_name": True}


class CORSConfig(BaseModel):
    """CORS configuration."""

    origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS", description="Allowed CORS origins (use * for all)")
    allow_credentials: bool = Field(
        default=True, alias="CORS_ALLOW_CREDENTIALS", description="Allow credentials in CORS requests"
    )
    allow_methods: list[str] = Field(
        default=["*"], alias="CORS_ALLOW_METHODS", description="Allowed HTTP methods (use * for all)"
    )
    allow_headers: list[str] = Field(
        default=["*"], alias="CORS_ALLOW_HEADERS", description="Allowed HTTP headers (use * for all)"
    )

    model_config = {"populate_by_name": True}


# =====================================================================
# Main Settings Class
# =====================================================================


class Settings(BaseSettings):
    """
    Application settings model.

    All properties are automatically bound from environment variables and .env file.
    Pydantic's BaseSettings handles dotenv loading automatically via model_config.
    """

    # =====================================================================
    # Pydantic Configuration
    # =====================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
        populate_by_name=True,
    )

    # =====================================================================
    # Server Configuration
    # =====================================================================
    server_host: str = Field(
        default="0.0.0.0",
        description="Studio Copilot server host address to bind to",
        alias="STUDIO_COPILOT_SERVER_HOST",
    )
    server_port: int = Field(
        default=8000,
        description="Studio Copilot server port number",
        alias="STUDIO_COPILOT_SERVER_PORT",
    )

    # =====================================================================
    # Logging Configuration
    # =====================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="STUDIO_COPILOT_LOG_LEVEL",
    )
    log_format: str = Field(default="detailed", description="simple, detailed or json", alias="LOG_FORMAT")
    log_file_dir: str = Field(default="logs", description="Directory for log files", alias="LOG_FILE_DIR")
    enable_file_logging: bool = Field(
        default=False, description="Also write logs to files under log_file_dir", alias="ENABLE_FILE_LOGGING"
    )

    # =====================================================================
    # Storage Configuration
    # =====================================================================
    data_dir: Optional[str] = Field(
        default=None,
        description="Directory for JSON key-value documents; in-memory storage when unset",
        alias="STUDIO_COPILOT_DATA_DIR",
    )
    workspace_root: Optional[str] = Field(
        default=None,
        description="Root of the managed workspace mirrored by checkpoints",
        alias="STUDIO_COPILOT_WORKSPACE_ROOT",
    )
    checkpoint_dir: str = Field(
        default="data/checkpoints",
        description="Directory holding checkpoint folders",
        alias="STUDIO_COPILOT_CHECKPOINT_DIR",
    )
    checkpoint_max_keep: int = Field(
        default=10, ge=1, description="Checkpoints retained per workflow", alias="CHECKPOINT_MAX_KEEP"
    )

    # =====================================================================
    # Orchestration Configuration
    # =====================================================================
    orchestrator_max_turns: int = Field(
        default=4, ge=1, le=16, description="Default provider calls per turn-sequence", alias="ORCHESTRATOR_MAX_TURNS"
    )
    provider_timeout_seconds: float = Field(
        default=60.0, gt=0, description="Per-call provider timeout", alias="PROVIDER_TIMEOUT_SECONDS"
    )
    provider_max_attempts: int = Field(
        default=3, ge=1, description="Provider attempts for retryable failures", alias="PROVIDER_MAX_ATTEMPTS"
    )
    provider_backoff_initial: float = Field(default=1.0, ge=0, alias="PROVIDER_BACKOFF_INITIAL")
    provider_backoff_factor: float = Field(default=2.0, ge=1, alias="PROVIDER_BACKOFF_FACTOR")
    provider_backoff_max: float = Field(default=10.0, ge=0, alias="PROVIDER_BACKOFF_MAX")

    # =====================================================================
    # Streaming Configuration
    # =====================================================================
    stream_max_per_key: int = Field(default=200, ge=1, alias="STREAM_MAX_PER_KEY")
    stream_max_idle_seconds: float = Field(default=3600.0, gt=0, alias="STREAM_MAX_IDLE_SECONDS")
    stream_poll_timeout_ms: int = Field(
        default=25000, ge=0, description="Upper bound for long-poll waits", alias="STREAM_POLL_TIMEOUT_MS"
    )
    sse_ping_seconds: int = Field(default=15, ge=1, description="SSE keep-alive interval", alias="SSE_PING_SECONDS")

    # =====================================================================
    # Provider Credentials (defaults when a request carries none)
    # =====================================================================
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: Optional[str] = Field(default=None, alias="OPENAI_MODEL")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    openrouter_api_key: Optional[str] = Field(default=None, alias="OPENROUTER_API_KEY")
    openrouter_model: Optional[str] = Field(default=None, alias="OPENROUTER_MODEL")
    openrouter_base_url: Optional[str] = Field(default=None, alias="OPENROUTER_BASE_URL")
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: Optional[str] = Field(default=None, alias="GEMINI_MODEL")
    gemini_base_url: Optional[str] = Field(default=None, alias="GEMINI_BASE_URL")
    bedrock_api_key: Optional[str] = Field(default=None, alias="AWS_BEARER_TOKEN_BEDROCK")
    bedrock_region: Optional[str] = Field(default=None, alias="AWS_REGION")
    bedrock_model: Optional[str] = Field(default=None, alias="BEDROCK_MODEL")
    nvidia_api_key: Optional[str] = Field(default=None, alias="NVIDIA_API_KEY")
    nvidia_model: Optional[str] = Field(default=None, alias="NVIDIA_MODEL")
    nvidia_base_url: Optional[str] = Field(default=None, alias="NVIDIA_BASE_URL")

    # =====================================================================
    # CORS Configuration
    # =====================================================================
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    # =====================================================================
    # Computed Properties (Grouped Configurations)
    # =====================================================================

    @property
    def openai(self) -> OpenAIConfig:
        """Get OpenAI-compatible configuration from environment variables."""
        return OpenAIConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def openrouter(self) -> OpenRouterConfig:
        """Get OpenRouter configuration from environment variables."""
        return OpenRouterConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def gemini(self) -> GeminiConfig:
        """Get Gemini configuration from environment variables."""
        return GeminiConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def bedrock(self) -> BedrockConfig:
        """Get Bedrock configuration from environment variables."""
        return BedrockConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def nvidia(self) -> NvidiaConfig:
        """Get NVIDIA configuration from environment variables."""
        return NvidiaConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def cors(self) -> CORSConfig:
        """Get CORS configuration from environment variables."""
        return CORSConfig.model_validate(self.model_dump(by_alias=True))


settings = Settings()
