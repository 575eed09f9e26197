"""Configuration management for Concept Graph."""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from concept_graph.errors import ConfigError


class Provider(str, Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OLLAMA = "ollama"

    @property
    def self_hosted(self) -> bool:
        return self is Provider.OLLAMA


DEFAULT_MODELS = {
    Provider.OPENAI: "gpt-4o",
    Provider.ANTHROPIC: "claude-sonnet-4-20250514",
    Provider.GOOGLE: "gemini-2.0-flash",
    Provider.OLLAMA: "mistral",
}

DEFAULT_BASE_URLS = {
    Provider.OPENAI: "https://api.openai.com/v1",
    Provider.ANTHROPIC: "https://api.anthropic.com",
    Provider.GOOGLE: "https://generativelanguage.googleapis.com",
    Provider.OLLAMA: "http://localhost:11434",
}

# Self-hosted models serve one request at a time on most hardware.
SELF_HOSTED_CONCURRENCY = 2
HOSTED_CONCURRENCY = 8


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CONCEPTGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider selection
    provider: Provider = Field(
        default=Provider.OPENAI,
        description="LLM provider: 'openai', 'anthropic', 'google', 'ollama'",
    )
    model: Optional[str] = Field(
        default=None,
        description="Model name; defaults to the provider's default model",
    )

    # Provider credentials and endpoints
    openai_api_key: str = Field(default="", description="API key for OpenAI-compatible APIs")
    openai_base_url: Optional[str] = Field(default=None, description="Base URL for OpenAI-compatible APIs")
    anthropic_api_key: str = Field(default="", description="API key for Anthropic")
    anthropic_base_url: Optional[str] = Field(default=None, description="Base URL for Anthropic")
    google_api_key: str = Field(default="", description="API key for Google Gemini")
    google_base_url: Optional[str] = Field(default=None, description="Base URL for Google Gemini")
    ollama_base_url: Optional[str] = Field(default=None, description="Base URL for the Ollama server")

    # Extraction settings
    concurrency: Optional[int] = Field(
        default=None,
        ge=1,
        description="Concurrent LLM calls; defaults depend on the provider",
    )
    request_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Per-call timeout in seconds",
    )
    transient_attempts: int = Field(
        default=2,
        ge=1,
        description="Attempts per chunk for retryable network failures",
    )
    reserved_tokens: int = Field(
        default=700,
        ge=0,
        description="Tokens reserved for the prompt and the response",
    )
    max_split_depth: int = Field(
        default=3,
        ge=0,
        description="Maximum midpoint splits per chunk on context overflow",
    )
    domain_context: Optional[str] = Field(
        default=None,
        description="Domain description added to the extraction prompt",
    )

    # Document selection
    selection_threshold: int = Field(
        default=100,
        description="Document count above which smart selection is applied",
    )
    max_docs_per_dir: int = Field(default=5, ge=1, description="Documents kept per directory")
    min_document_chars: int = Field(default=100, ge=0, description="Minimum document size")

    # Storage
    tenant: str = Field(default="default", description="Tenant label attached to stored nodes/edges")
    data_dir: Path = Field(
        default=Path("./data"),
        description="Root directory for data storage",
    )
    kuzu_db_path: Optional[Path] = Field(
        default=None,
        description="Path for Kuzu graph database",
    )
    graph_json_path: Optional[Path] = Field(
        default=None,
        description="Path of the JSON graph written by 'build --output json'",
    )
    checkpoint_name: str = Field(
        default=".conceptgraph_progress.jsonl",
        description="File name of the progress checkpoint inside data_dir",
    )

    def model_post_init(self, __context) -> None:
        """Set default paths based on data_dir if not explicitly set."""
        if self.kuzu_db_path is None:
            self.kuzu_db_path = self.data_dir / "kuzu_db"
        if self.graph_json_path is None:
            self.graph_json_path = self.data_dir / "graph.json"

    @property
    def checkpoint_path(self) -> Path:
        return self.data_dir / self.checkpoint_name

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.kuzu_db_path.parent.mkdir(parents=True, exist_ok=True)

    def model_for(self, provider: Optional[Provider] = None) -> str:
        provider = provider or self.provider
        if self.model and provider == self.provider:
            return self.model
        return DEFAULT_MODELS[provider]

    def api_key_for(self, provider: Provider) -> str:
        keys = {
            Provider.OPENAI: self.openai_api_key,
            Provider.ANTHROPIC: self.anthropic_api_key,
            Provider.GOOGLE: self.google_api_key,
            Provider.OLLAMA: "",
        }
        return keys[provider]

    def base_url_for(self, provider: Provider) -> str:
        urls = {
            Provider.OPENAI: self.openai_base_url,
            Provider.ANTHROPIC: self.anthropic_base_url,
            Provider.GOOGLE: self.google_base_url,
            Provider.OLLAMA: self.ollama_base_url,
        }
        return (urls[provider] or DEFAULT_BASE_URLS[provider]).rstrip("/")

    def resolve_concurrency(self, provider: Optional[Provider] = None) -> int:
        """Return the configured concurrency or the provider-class default."""
        if self.concurrency is not None:
            return self.concurrency
        provider = provider or self.provider
        return SELF_HOSTED_CONCURRENCY if provider.self_hosted else HOSTED_CONCURRENCY


def load_settings(**overrides) -> Settings:
    """Build a Settings instance, reporting invalid values as ConfigError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


# Global settings instance
settings = Settings()
