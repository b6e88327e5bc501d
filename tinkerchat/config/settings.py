"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Completion provider configuration."""

    provider: Literal["openai", "litellm", "debug"] = Field(
        default="openai",
        description="Which adapter streams completions: 'openai' speaks raw SSE to any "
                    "OpenAI-compatible endpoint (OpenRouter by default), 'litellm' routes "
                    "through LiteLLM, 'debug' forwards context to a local debug server.",
    )
    model: str = Field(
        default="meta-llama/llama-3.2-3b-instruct:free",
        description="Model identifier sent on the wire. For the litellm provider this is a "
                    "LiteLLM model string such as 'openai/gpt-4o'.",
    )
    base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL of the OpenAI-compatible API",
    )
    api_key: str = Field(default="", description="API key for the model's provider")
    max_tokens: int | None = Field(
        default=None,
        description="Maximum tokens in response. None uses the model's output limit.",
    )
    temperature: float | None = Field(default=None, description="Sampling temperature")
    site_url: str = Field(
        default="https://github.com/tinkerchat/tinkerchat",
        description="Sent as HTTP-Referer (OpenRouter app attribution)",
    )
    site_name: str = Field(default="tinkerchat", description="Sent as X-Title")
    tokenizer_encoding: str | None = Field(
        default=None,
        description="tiktoken encoding for token counts, e.g. 'cl100k_base'. "
                    "None falls back to the ~4 characters per token heuristic.",
    )
    debug_host: str = Field(default="localhost", description="Debug server host")
    debug_port: int = Field(default=7331, description="Debug server port")

    model_config = SettingsConfigDict(env_prefix="LLM_")


class ContextSettings(BaseSettings):
    """Context assembly configuration."""

    max_context_tokens: int | None = Field(
        default=None,
        description="Context window to budget against. None uses the provider's capability.",
    )
    response_reserve: int = Field(
        default=1024, ge=0, description="Tokens held back for the model's response"
    )
    system_prompt: str = Field(
        default="You are a helpful assistant.",
        description="Base system prompt; time and working directory are appended per turn",
    )
    working_directory: str | None = Field(
        default=None,
        description="Directory announced in the system prompt. None uses the process cwd.",
    )
    knowledge_k: int = Field(
        default=0,
        ge=0,
        description="Knowledge items retrieved per turn by embedding similarity. 0 disables retrieval.",
    )

    model_config = SettingsConfigDict(env_prefix="CONTEXT_")


class StorageSettings(BaseSettings):
    """Record persistence configuration."""

    backend: Literal["memory", "chromadb"] = Field(
        default="chromadb", description="Record repository implementation"
    )
    vector_db_path: str = Field(
        default="data/sessions", description="Path to ChromaDB storage"
    )
    collection_name: str = Field(
        default="tinkerchat", description="Prefix for the ChromaDB collections"
    )
    project_id: str = Field(default="default", description="Project that sessions belong to")

    model_config = SettingsConfigDict(env_prefix="STORAGE_")


class EmbeddingSettings(BaseSettings):
    """Local embeddings configuration (Sentence Transformers)."""

    model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Sentence Transformers model name (local, no API key needed)",
    )
    device: Literal["cpu", "cuda"] = Field(
        default="cpu", description="Device for embedding generation (cpu or cuda)"
    )
    batch_size: int = Field(default=32, description="Batch size for embedding generation")

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Sub-configurations
    llm: LLMSettings = Field(default_factory=LLMSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    A fresh instance is returned on every call; callers pass it down
    explicitly rather than reaching for a process-wide copy.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    if env_file:
        return Settings(_env_file=env_file)
    return Settings()
