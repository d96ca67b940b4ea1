"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from docindex.embedding.encoder import (
    DEFAULT_LOCAL_MODEL,
    DEFAULT_MODEL,
    EmbeddingConfig,
)
from docindex.errors import ConfigurationError
from docindex.index.indexer import DEFAULT_PAGE_TYPE

ENV_DB = "DOCINDEX_DB"
ENV_PROVIDER = "DOCINDEX_PROVIDER"
ENV_MODEL = "DOCINDEX_MODEL"
ENV_PAGE_TYPE = "DOCINDEX_PAGE_TYPE"
ENV_WORKERS = "DOCINDEX_WORKERS"
ENV_OPENAI_KEY = "OPENAI_API_KEY"

PROVIDERS = ("openai", "local")


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    provider: str = "openai"
    model_name: str | None = None
    openai_api_key: str | None = None
    page_type: str = DEFAULT_PAGE_TYPE
    workers: int = 1
    max_retries: int = 3

    def __post_init__(self) -> None:
        if self.model_name is None:
            self.model_name = DEFAULT_LOCAL_MODEL if self.provider == "local" else DEFAULT_MODEL

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any
    ) -> "AppConfig":
        """Build a config from environment variables.

        Keyword overrides that are not ``None`` take precedence.
        """
        env = os.environ if environ is None else environ
        db = env.get(ENV_DB)
        raw_workers = env.get(ENV_WORKERS) if overrides.get("workers") is None else None
        try:
            workers = int(raw_workers) if raw_workers else 1
        except ValueError as exc:
            raise ConfigurationError(
                invalid={ENV_WORKERS: f"expected an integer, got {raw_workers!r}"}
            ) from exc
        values: Dict[str, Any] = {
            "db_path": Path(db) if db else None,
            "provider": env.get(ENV_PROVIDER) or "openai",
            "model_name": env.get(ENV_MODEL) or None,
            "openai_api_key": env.get(ENV_OPENAI_KEY) or None,
            "page_type": env.get(ENV_PAGE_TYPE) or DEFAULT_PAGE_TYPE,
            "workers": workers,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def missing_values(self) -> List[str]:
        missing = []
        if self.db_path is None:
            missing.append(ENV_DB)
        if self.provider == "openai" and not self.openai_api_key:
            missing.append(ENV_OPENAI_KEY)
        return missing

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if a required value is absent or malformed."""
        if self.provider not in PROVIDERS:
            raise ValueError(
                f"Unknown provider '{self.provider}', expected one of {', '.join(PROVIDERS)}"
            )
        missing = self.missing_values()
        invalid = {}
        if self.workers < 1:
            invalid[ENV_WORKERS] = f"expected a positive integer, got {self.workers}"
        if missing or invalid:
            raise ConfigurationError(missing, invalid=invalid)

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            raise ConfigurationError([ENV_DB])
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            provider=self.provider,  # type: ignore[arg-type]
            model_name=self.model_name or DEFAULT_MODEL,
            api_key=self.openai_api_key,
            max_retries=self.max_retries,
        )
