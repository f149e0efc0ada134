"""Embedding providers and the note-embedding service."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

import httpx

from loggy.config import EmbeddingConfig
from loggy.errors import EmbeddingProviderError

logger = logging.getLogger(__name__)

DASHSCOPE_URL = (
    "https://dashscope.aliyuncs.com/api/v1/services/embeddings/text-embedding/text-embedding"
)
ZHIPU_URL = "https://open.bigmodel.cn/api/paas/v4/embeddings"


class EmbeddingProvider(ABC):
    """Turns one text into one vector."""

    name: str = "abstract"
    model_name: str = ""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text."""


class _HttpEmbeddingProvider(EmbeddingProvider):
    """Shared request/response handling for bearer-token JSON embedding APIs."""

    url: str = ""

    def __init__(
        self,
        api_key: str | None,
        *,
        model_name: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.model_name = model_name
        self._client = client

    async def embed(self, text: str) -> list[float]:
        if not self.api_key:
            raise EmbeddingProviderError(f"{self.name}: API key is not configured")

        headers = {"Authorization": f"Bearer {self.api_key}"}
        body = self._request_body(text)
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=None) as client:
                    response = await client.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise EmbeddingProviderError(f"{self.name}: request failed: {exc}") from exc

        if response.status_code >= 400:
            raise EmbeddingProviderError(
                f"{self.name}: HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return [float(value) for value in self._parse_vector(response.json())]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise EmbeddingProviderError(f"{self.name}: malformed response payload") from exc

    @abstractmethod
    def _request_body(self, text: str) -> dict[str, Any]:
        """Build the JSON request body."""

    @abstractmethod
    def _parse_vector(self, payload: Any) -> list[Any]:
        """Extract the vector from the JSON response."""


class DashScopeEmbeddingProvider(_HttpEmbeddingProvider):
    name = "dashscope"
    url = DASHSCOPE_URL

    def _request_body(self, text: str) -> dict[str, Any]:
        return {"model": self.model_name, "input": {"texts": [text]}}

    def _parse_vector(self, payload: Any) -> list[Any]:
        return payload["output"]["embeddings"][0]["embedding"]


class ZhipuEmbeddingProvider(_HttpEmbeddingProvider):
    name = "zhipu"
    url = ZHIPU_URL

    def _request_body(self, text: str) -> dict[str, Any]:
        return {"model": self.model_name, "input": text}

    def _parse_vector(self, payload: Any) -> list[Any]:
        return payload["data"][0]["embedding"]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings through `langchain_openai.OpenAIEmbeddings`."""

    name = "openai"

    def __init__(self, api_key: str | None, *, model_name: str, dimensions: int) -> None:
        if not api_key:
            raise EmbeddingProviderError("openai: API key is not configured")

        from langchain_openai import OpenAIEmbeddings

        self.model_name = model_name
        self._embeddings = OpenAIEmbeddings(
            model=model_name, api_key=api_key, dimensions=dimensions
        )

    async def embed(self, text: str) -> list[float]:
        try:
            return list(await self._embeddings.aembed_query(text))
        except Exception as exc:
            raise EmbeddingProviderError(f"openai: request failed: {exc}") from exc


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic signed-hash embedding without external model calls.

    Used for local development and tests; swap for a hosted provider in
    production.
    """

    name = "hashing"

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension
        self.model_name = f"hashing-{dimension}"

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def create_embedding_provider(
    config: EmbeddingConfig, *, client: httpx.AsyncClient | None = None
) -> EmbeddingProvider:
    """Pick the provider named by `config.provider`."""

    logger.info("Using embedding provider %s (%s)", config.provider, config.model_name)
    if config.provider == "dashscope":
        return DashScopeEmbeddingProvider(
            config.dashscope_api_key, model_name=config.dashscope_model, client=client
        )
    if config.provider == "zhipu":
        return ZhipuEmbeddingProvider(
            config.zhipu_api_key, model_name=config.zhipu_model, client=client
        )
    if config.provider == "openai":
        return OpenAIEmbeddingProvider(
            config.openai_api_key, model_name=config.openai_model, dimensions=config.dimensions
        )
    if config.provider == "hashing":
        return HashingEmbeddingProvider(config.dimensions)
    raise EmbeddingProviderError(f"Unknown embedding provider: {config.provider}")


def preprocess_note_text(title: str, content: str, *, max_chars: int = 5_000) -> str:
    """Combine title and body into one embedding input, prefix-truncated."""

    parts = [part.strip() for part in (title or "", content or "")]
    combined = "\n\n".join(part for part in parts if part)
    return combined[:max_chars]


class EmbeddingService:
    """Generates vectors through one provider and enforces the configured dimension."""

    def __init__(self, provider: EmbeddingProvider, config: EmbeddingConfig | None = None) -> None:
        self.provider = provider
        self.config = config or EmbeddingConfig(provider="hashing")

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    async def generate_embedding(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise EmbeddingProviderError("Cannot embed empty text")

        vector = await self.provider.embed(text)
        if len(vector) != self.config.dimensions:
            logger.warning(
                "Embedding dimension %d does not match configured %d",
                len(vector),
                self.config.dimensions,
            )
            raise EmbeddingProviderError(
                f"{self.provider.name} returned {len(vector)} dimensions, "
                f"expected {self.config.dimensions}"
            )
        return vector

    async def generate_note_embedding(self, title: str, content: str) -> list[float]:
        text = preprocess_note_text(title, content, max_chars=self.config.max_input_chars)
        if not text:
            raise EmbeddingProviderError("Note has no text to embed")
        return await self.generate_embedding(text)

    async def batch_generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Embed texts one by one; a failed text gets a zero-vector placeholder."""

        vectors: list[list[float]] = []
        for text in texts:
            try:
                vectors.append(await self.generate_embedding(text))
            except EmbeddingProviderError as exc:
                logger.error("Skipping text %r in batch: %s", text[:50], exc)
                vectors.append([0.0] * self.config.dimensions)
        return vectors

    async def check_service(self) -> bool:
        try:
            await self.generate_embedding("health check")
        except EmbeddingProviderError as exc:
            logger.error("Embedding service unavailable: %s", exc)
            return False
        return True

    def model_info(self) -> dict[str, Any]:
        return {
            "provider": self.provider.name,
            "modelName": self.provider.model_name,
            "dimensions": self.config.dimensions,
        }
