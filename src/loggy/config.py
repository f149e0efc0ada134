"""Configuration models and environment-backed settings."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

EmbeddingProviderName = Literal["dashscope", "zhipu", "openai", "hashing"]

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"


class ChatConfig(BaseModel):
    """Configures the conversation controller."""

    model: str = "deepseek-chat"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    history_limit: int = Field(default=10, ge=1)
    max_message_chars: int = Field(default=10_000, ge=1)


class RagConfig(BaseModel):
    """Configures retrieval augmentation over the owner's notes."""

    enabled: bool = True
    limit: int = Field(default=5, ge=1)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    snippet_chars: int = Field(default=500, ge=20)


class EmbeddingConfig(BaseModel):
    """Selects and parameterizes the embedding provider."""

    provider: EmbeddingProviderName = "dashscope"
    dimensions: int = Field(default=1024, ge=1)
    max_input_chars: int = Field(default=5_000, ge=100)
    dashscope_model: str = "text-embedding-v3"
    zhipu_model: str = "embedding-3"
    openai_model: str = "text-embedding-3-small"
    dashscope_api_key: str | None = None
    zhipu_api_key: str | None = None
    openai_api_key: str | None = None

    @property
    def model_name(self) -> str:
        return {
            "dashscope": self.dashscope_model,
            "zhipu": self.zhipu_model,
            "openai": self.openai_model,
            "hashing": f"hashing-{self.dimensions}",
        }[self.provider]


class AgentConfig(BaseModel):
    """Configures the classify-then-act assistant round trips."""

    model: str = "deepseek-chat"
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=500, ge=1)


class Settings(BaseSettings):
    """Process settings loaded from the environment (and `.env`)."""

    model_config = SettingsConfigDict(
        env_prefix="LOGGY_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    deepseek_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LOGGY_DEEPSEEK_API_KEY", "DEEPSEEK_API_KEY"),
    )
    deepseek_base_url: str = Field(
        default="https://api.deepseek.com/v1",
        validation_alias=AliasChoices("LOGGY_DEEPSEEK_BASE_URL", "DEEPSEEK_BASE_URL"),
    )
    chat_model: str = "deepseek-chat"
    history_limit: int = Field(default=10, ge=1)

    rag_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("LOGGY_RAG_ENABLED", "RAG_ENABLED"),
    )
    rag_limit: int = Field(default=5, ge=1)
    rag_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    embedding_provider: EmbeddingProviderName = Field(
        default="dashscope",
        validation_alias=AliasChoices("LOGGY_EMBEDDING_PROVIDER", "EMBEDDING_PROVIDER"),
    )
    embedding_dimensions: int = Field(
        default=1024,
        ge=1,
        validation_alias=AliasChoices("LOGGY_EMBEDDING_DIMENSIONS", "EMBEDDING_DIMENSIONS"),
    )
    dashscope_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LOGGY_DASHSCOPE_API_KEY", "DASHSCOPE_API_KEY"),
    )
    zhipu_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LOGGY_ZHIPU_API_KEY", "ZHIPU_API_KEY"),
    )
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LOGGY_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )

    database_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LOGGY_DATABASE_PATH", "DATABASE_PATH"),
    )
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOGGY_LOG_LEVEL", "LOG_LEVEL"),
    )

    def chat_config(self) -> ChatConfig:
        return ChatConfig(model=self.chat_model, history_limit=self.history_limit)

    def rag_config(self) -> RagConfig:
        return RagConfig(
            enabled=self.rag_enabled,
            limit=self.rag_limit,
            threshold=self.rag_threshold,
        )

    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            provider=self.embedding_provider,
            dimensions=self.embedding_dimensions,
            dashscope_api_key=self.dashscope_api_key,
            zhipu_api_key=self.zhipu_api_key,
            openai_api_key=self.openai_api_key,
        )

    def agent_config(self) -> AgentConfig:
        return AgentConfig(model=self.chat_model)


def configure_logging(level: str | int = "INFO") -> None:
    """Install one stream handler on the `loggy` logger tree."""

    root = logging.getLogger("loggy")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)
    if any(getattr(handler, "_loggy", False) for handler in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler._loggy = True  # type: ignore[attr-defined]
    root.addHandler(handler)
