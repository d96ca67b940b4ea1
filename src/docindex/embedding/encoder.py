"""Embedding providers for page sections."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Literal

import numpy as np
import openai
from openai import OpenAI
from sentence_transformers import SentenceTransformer

from docindex.errors import EmbeddingProviderError
from docindex.utils.text import collapse_newlines, excerpt

DEFAULT_MODEL = "text-embedding-ada-002"
DEFAULT_LOCAL_MODEL = "sentence-transformers/all-mpnet-base-v2"

MODEL_DIMENSIONS = {
    "text-embedding-ada-002": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingResult:
    vector: np.ndarray
    token_count: int


@dataclass(slots=True)
class EmbeddingConfig:
    provider: Literal["openai", "local"] = "openai"
    model_name: str = DEFAULT_MODEL
    api_key: str | None = None
    dimension: int | None = None
    max_retries: int = 3
    backoff_seconds: float = 1.0
    timeout_seconds: float = 30.0
    device: str | None = None


class EmbeddingModel:
    """Base class for embedding providers.

    Subclasses implement ``_request`` for a single, already normalized input.
    This class takes care of newline normalization, retries with exponential
    backoff for retriable failures and the dimension check.
    """

    dimension: int

    def __init__(self, config: EmbeddingConfig) -> None:
        self.config = config

    def embed(self, text: str) -> EmbeddingResult:
        """Return the embedding vector and token usage for ``text``."""
        prepared = collapse_newlines(text)
        attempt = 0
        while True:
            try:
                result = self._request(prepared)
                break
            except EmbeddingProviderError as exc:
                if not exc.retriable or attempt >= self.config.max_retries:
                    raise
                delay = self.config.backoff_seconds * (2**attempt)
                attempt += 1
                logger.warning(
                    "Embedding request failed (%s), retrying in %.1fs (attempt %d/%d)",
                    exc,
                    delay,
                    attempt,
                    self.config.max_retries,
                )
                time.sleep(delay)

        if result.vector.shape != (self.dimension,):
            raise EmbeddingProviderError(
                f"Expected a {self.dimension}-dimensional embedding, got shape "
                f"{result.vector.shape} for '{excerpt(prepared)}'"
            )
        return result

    def _request(self, text: str) -> EmbeddingResult:
        raise NotImplementedError


class OpenAIEmbedder(EmbeddingModel):
    """Embeddings from the OpenAI API."""

    def __init__(self, config: EmbeddingConfig, client: Any = None) -> None:
        super().__init__(config)
        dimension = config.dimension or MODEL_DIMENSIONS.get(config.model_name)
        if dimension is None:
            raise ValueError(
                f"Unknown embedding dimension for model '{config.model_name}'"
            )
        self.dimension = int(dimension)
        # Retries are handled by EmbeddingModel.embed
        self._client = client or OpenAI(
            api_key=config.api_key,
            max_retries=0,
            timeout=config.timeout_seconds,
        )
        logger.info("Using OpenAI embedding model %s", config.model_name)

    def _request(self, text: str) -> EmbeddingResult:
        try:
            response = self._client.embeddings.create(
                model=self.config.model_name,
                input=text,
            )
        except (
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        ) as exc:
            raise EmbeddingProviderError(
                f"Transient embedding failure: {exc}", retriable=True
            ) from exc
        except openai.OpenAIError as exc:
            raise EmbeddingProviderError(f"Embedding request rejected: {exc}") from exc

        if not response.data:
            raise EmbeddingProviderError("Embedding response contained no data")
        vector = np.asarray(response.data[0].embedding, dtype="float32")
        token_count = response.usage.total_tokens if response.usage else 0
        return EmbeddingResult(vector=vector, token_count=int(token_count))


class SentenceTransformerEmbedder(EmbeddingModel):
    """Local embeddings through ``SentenceTransformer``, for offline indexing."""

    def __init__(self, config: EmbeddingConfig, model: Any = None) -> None:
        super().__init__(config)
        self._model = model or SentenceTransformer(config.model_name, device=config.device)
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info("Using local embedding model %s", config.model_name)

    def _request(self, text: str) -> EmbeddingResult:
        try:
            embeddings = self._model.encode(
                [text],
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=True,
            )
            token_ids = self._model.tokenizer(text)["input_ids"]
        except (RuntimeError, ValueError) as exc:
            raise EmbeddingProviderError(f"Local embedding failed: {exc}") from exc
        return EmbeddingResult(
            vector=np.asarray(embeddings[0], dtype="float32"),
            token_count=len(token_ids),
        )


def build_embedder(config: EmbeddingConfig) -> EmbeddingModel:
    if config.provider == "openai":
        return OpenAIEmbedder(config)
    if config.provider == "local":
        return SentenceTransformerEmbedder(config)
    raise ValueError(f"Unknown embedding provider '{config.provider}'")
