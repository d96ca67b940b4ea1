"""Shared fixtures."""

from __future__ import annotations

import hashlib
from typing import List, Optional

import numpy as np
import pytest

from docindex.embedding.encoder import EmbeddingConfig, EmbeddingModel, EmbeddingResult
from docindex.errors import EmbeddingProviderError
from docindex.index.storage import SQLitePageStore

DIMENSION = 8


class FakeEmbedder(EmbeddingModel):
    """Deterministic embedder: the vector is derived from a hash of the input."""

    def __init__(self, dimension: int = DIMENSION, fail_on: Optional[str] = None) -> None:
        super().__init__(EmbeddingConfig(provider="local", model_name="fake", max_retries=0))
        self.dimension = dimension
        self.fail_on = fail_on
        self.calls: List[str] = []

    def _request(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        if self.fail_on and self.fail_on in text:
            raise EmbeddingProviderError("provider returned status 500")
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "little")
        vector = np.random.default_rng(seed).random(self.dimension).astype("float32")
        return EmbeddingResult(vector=vector, token_count=len(text.split()))


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary page store for testing."""
    store = SQLitePageStore(tmp_path / "test.db", dimension=DIMENSION)
    yield store
    store.close()
