"""Tests for embedding providers."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import numpy as np
import openai
import pytest

from docindex.embedding.encoder import (
    DEFAULT_MODEL,
    EmbeddingConfig,
    OpenAIEmbedder,
    SentenceTransformerEmbedder,
    build_embedder,
)
from docindex.errors import EmbeddingProviderError

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def _response(vector, tokens: int = 7) -> SimpleNamespace:
    return SimpleNamespace(
        data=[SimpleNamespace(embedding=list(vector))],
        usage=SimpleNamespace(total_tokens=tokens),
    )


def _connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=_REQUEST)


def _bad_request() -> openai.BadRequestError:
    return openai.BadRequestError(
        "invalid input", response=httpx.Response(400, request=_REQUEST), body=None
    )


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.embeddings.create.return_value = _response([0.5] * 1536)
    return client


class TestOpenAIEmbedder:
    """Test the OpenAI embedding provider."""

    def test_embed_returns_vector_and_tokens(self, client: MagicMock) -> None:
        embedder = OpenAIEmbedder(EmbeddingConfig(), client=client)

        result = embedder.embed("first line\nsecond line")

        assert result.token_count == 7
        assert result.vector.dtype == np.float32
        assert result.vector.shape == (1536,)
        client.embeddings.create.assert_called_once_with(
            model=DEFAULT_MODEL, input="first line second line"
        )

    def test_dimension_from_config(self, client: MagicMock) -> None:
        client.embeddings.create.return_value = _response([0.1, 0.2, 0.3, 0.4])
        embedder = OpenAIEmbedder(
            EmbeddingConfig(model_name="custom-model", dimension=4), client=client
        )

        assert embedder.dimension == 4
        assert embedder.embed("text").vector.shape == (4,)

    def test_unknown_model_dimension(self, client: MagicMock) -> None:
        with pytest.raises(ValueError, match="custom-model"):
            OpenAIEmbedder(EmbeddingConfig(model_name="custom-model"), client=client)

    @patch("docindex.embedding.encoder.time.sleep")
    def test_retries_transient_errors(self, mock_sleep: MagicMock, client: MagicMock) -> None:
        """Connection errors are retried with exponential backoff."""
        client.embeddings.create.side_effect = [
            _connection_error(),
            _connection_error(),
            _response([0.5] * 1536),
        ]
        embedder = OpenAIEmbedder(EmbeddingConfig(backoff_seconds=0.5), client=client)

        result = embedder.embed("text")

        assert result.token_count == 7
        assert client.embeddings.create.call_count == 3
        assert [call.args[0] for call in mock_sleep.call_args_list] == [0.5, 1.0]

    @patch("docindex.embedding.encoder.time.sleep")
    def test_retries_are_bounded(self, mock_sleep: MagicMock, client: MagicMock) -> None:
        client.embeddings.create.side_effect = _connection_error()
        embedder = OpenAIEmbedder(EmbeddingConfig(max_retries=2), client=client)

        with pytest.raises(EmbeddingProviderError) as excinfo:
            embedder.embed("text")

        assert excinfo.value.retriable is True
        assert client.embeddings.create.call_count == 3

    @patch("docindex.embedding.encoder.time.sleep")
    def test_invalid_input_not_retried(self, mock_sleep: MagicMock, client: MagicMock) -> None:
        client.embeddings.create.side_effect = _bad_request()
        embedder = OpenAIEmbedder(EmbeddingConfig(), client=client)

        with pytest.raises(EmbeddingProviderError, match="rejected"):
            embedder.embed("text")

        assert client.embeddings.create.call_count == 1
        mock_sleep.assert_not_called()

    def test_wrong_dimension(self, client: MagicMock) -> None:
        client.embeddings.create.return_value = _response([0.1, 0.2])
        embedder = OpenAIEmbedder(EmbeddingConfig(), client=client)

        with pytest.raises(EmbeddingProviderError, match="1536"):
            embedder.embed("text")

    def test_empty_response(self, client: MagicMock) -> None:
        client.embeddings.create.return_value = SimpleNamespace(data=[], usage=None)
        embedder = OpenAIEmbedder(EmbeddingConfig(), client=client)

        with pytest.raises(EmbeddingProviderError):
            embedder.embed("text")


class TestSentenceTransformerEmbedder:
    """Test the local embedding provider."""

    @pytest.fixture
    def model(self) -> MagicMock:
        model = MagicMock()
        model.get_sentence_embedding_dimension.return_value = 3
        model.encode.return_value = np.array([[0.1, 0.2, 0.3]])
        model.tokenizer.return_value = {"input_ids": [101, 7, 8, 102]}
        return model

    def test_embed(self, model: MagicMock) -> None:
        embedder = SentenceTransformerEmbedder(
            EmbeddingConfig(provider="local", model_name="local-model"), model=model
        )

        result = embedder.embed("a\nb")

        assert embedder.dimension == 3
        assert result.token_count == 4
        assert result.vector.dtype == np.float32
        assert model.encode.call_args[0][0] == ["a b"]

    def test_model_failure(self, model: MagicMock) -> None:
        model.encode.side_effect = RuntimeError("out of memory")
        embedder = SentenceTransformerEmbedder(EmbeddingConfig(provider="local"), model=model)

        with pytest.raises(EmbeddingProviderError, match="out of memory"):
            embedder.embed("text")


class TestBuildEmbedder:
    """Test build_embedder factory."""

    @patch("docindex.embedding.encoder.OpenAI")
    def test_openai(self, mock_openai: MagicMock) -> None:
        embedder = build_embedder(EmbeddingConfig(api_key="sk-test"))

        assert isinstance(embedder, OpenAIEmbedder)
        assert mock_openai.call_args.kwargs["api_key"] == "sk-test"
        assert mock_openai.call_args.kwargs["max_retries"] == 0

    @patch("docindex.embedding.encoder.SentenceTransformer")
    def test_local(self, mock_model_class: MagicMock) -> None:
        mock_model_class.return_value.get_sentence_embedding_dimension.return_value = 768

        embedder = build_embedder(EmbeddingConfig(provider="local", model_name="m"))

        assert isinstance(embedder, SentenceTransformerEmbedder)
        assert embedder.dimension == 768

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError):
            build_embedder(EmbeddingConfig(provider="other"))  # type: ignore[arg-type]
