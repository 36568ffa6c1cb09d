"""Runtime settings resolved from environment variables.

Environment variables are read when :meth:`Settings.from_env` is called, not at
import time, so tests can monkeypatch them and late ``.env`` loading works.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / "Documents" / "MCP" / "docs-crawler-data"


@dataclass
class Settings:
    """Settings for crawling, chunking, embedding and storage."""

    data_dir: Path = DEFAULT_DATA_DIR
    openai_api_key: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 64
    embedding_concurrency: int = 4
    max_depth: int = 2
    max_pages: int = 500
    concurrency: int = 2
    chunk_words: int = 500
    chunk_overlap: int = 65
    page_timeout: float = 30.0

    @property
    def websites_dir(self) -> Path:
        return self.data_dir / "websites"

    @property
    def index_dir(self) -> Path:
        return self.data_dir / "index"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = cls()

        data_dir = env.get("DOCS_CRAWLER_DATA_DIR")
        api_key = env.get("OPENAI_API_KEY") or None
        if not api_key:
            LOGGER.warning("OPENAI_API_KEY is not set; embeddings will degrade")

        return cls(
            data_dir=Path(data_dir).expanduser() if data_dir else defaults.data_dir,
            openai_api_key=api_key,
            embedding_model=env.get(
                "DOCS_CRAWLER_EMBEDDING_MODEL", defaults.embedding_model
            ),
            embedding_dimensions=_int(
                env, "DOCS_CRAWLER_EMBEDDING_DIMENSIONS", defaults.embedding_dimensions
            ),
            embedding_batch_size=_int(
                env, "DOCS_CRAWLER_EMBEDDING_BATCH_SIZE", defaults.embedding_batch_size
            ),
            embedding_concurrency=_int(
                env,
                "DOCS_CRAWLER_EMBEDDING_CONCURRENCY",
                defaults.embedding_concurrency,
            ),
            max_depth=_int(env, "DOCS_CRAWLER_MAX_DEPTH", defaults.max_depth),
            max_pages=_int(env, "DOCS_CRAWLER_MAX_PAGES", defaults.max_pages),
            concurrency=_int(env, "DOCS_CRAWLER_CONCURRENCY", defaults.concurrency),
            chunk_words=_int(env, "DOCS_CRAWLER_CHUNK_WORDS", defaults.chunk_words),
            chunk_overlap=_int(
                env, "DOCS_CRAWLER_CHUNK_OVERLAP", defaults.chunk_overlap
            ),
            page_timeout=_float(
                env, "DOCS_CRAWLER_PAGE_TIMEOUT", defaults.page_timeout
            ),
        )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning("Invalid integer for %s=%r; using %d", name, raw, default)
        return default


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Invalid number for %s=%r; using %s", name, raw, default)
        return default
