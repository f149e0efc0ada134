"""Loggy assistant core."""

from .config import AgentConfig, ChatConfig, EmbeddingConfig, RagConfig, Settings

__all__ = ["AgentConfig", "ChatConfig", "EmbeddingConfig", "RagConfig", "Settings"]
