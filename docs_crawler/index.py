"""Durable chunk index with brute-force cosine similarity search.

Each source URL owns one ``<sha256(url)>.index.json`` record holding all of
its chunks. Records are replaced with an atomic rename, so a reader sees
either the previous chunk set for a URL or the complete new one. Writers to
the same URL serialize on a per-URL lock; writers to different URLs proceed
independently.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence

import numpy as np

from .chunker import DEFAULT_OVERLAP, DEFAULT_WINDOW, chunk_text, validate_window
from .document import Chunk, ChunkHit, chunk_id
from .embedding import Embedder
from .errors import DocsCrawlerError, StorageError
from .storage import METADATA_FILE, load_page, write_json_atomic
from .urls import url_matches_prefix

LOGGER = logging.getLogger(__name__)

INDEX_SUFFIX = ".index.json"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero magnitude."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / (norm_a * norm_b), -1.0, 1.0))


def cosine_similarities(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Row-wise cosine similarity of ``matrix`` against ``query``."""
    q = np.asarray(query, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 0, dots / norms, 0.0)
    return np.clip(sims, -1.0, 1.0)


def document_key(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]


class ChunkIndex:
    """Persistent store of embedded chunks plus similarity retrieval."""

    def __init__(
        self,
        index_dir: Path,
        embedder: Embedder,
        *,
        window: int = DEFAULT_WINDOW,
        overlap: int = DEFAULT_OVERLAP,
    ):
        validate_window(window, overlap)
        self.index_dir = Path(index_dir)
        self.embedder = embedder
        self.window = window
        self.overlap = overlap
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def dimensions(self) -> int:
        return self.embedder.dimensions

    async def open(self) -> None:
        LOGGER.info("Initializing index database at %s", self.index_dir)
        await asyncio.to_thread(self.index_dir.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        self._locks.clear()
        self._lock_users.clear()

    @asynccontextmanager
    async def _document_lock(self, url: str) -> AsyncIterator[None]:
        """Hold the per-URL write lock; the entry is dropped once unused."""
        lock = self._locks.get(url)
        if lock is None:
            lock = self._locks[url] = asyncio.Lock()
        self._lock_users[url] = self._lock_users.get(url, 0) + 1
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users.get(url, 1) - 1
            if users > 0:
                self._lock_users[url] = users
            else:
                self._lock_users.pop(url, None)
                self._locks.pop(url, None)

    def document_path(self, url: str) -> Path:
        return self.index_dir / f"{document_key(url)}{INDEX_SUFFIX}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def index_document(self, url: str, title: str, text: str) -> int:
        """Chunk, embed and store one document, replacing its previous chunks.

        Returns the number of chunks written. Whitespace-only text is skipped.

        Raises:
            StorageError: If the record could not be written.
        """
        if not text or not text.strip():
            LOGGER.info("No content found for %s; skipping", url)
            return 0

        contents = chunk_text(text, self.window, self.overlap)
        batch = await self.embedder.embed_batch(contents)
        if batch.degraded:
            LOGGER.warning(
                "Indexed %s with %d/%d placeholder embedding(s)",
                url,
                batch.failed,
                len(contents),
            )

        title = title or "Untitled"
        chunks = [
            Chunk(
                id=chunk_id(url, ordinal),
                url=url,
                title=title,
                content=content,
                embedding=vector,
                chunk_index=ordinal,
            )
            for ordinal, (content, vector) in enumerate(zip(contents, batch.vectors))
        ]
        record = {
            "url": url,
            "title": title,
            "indexed_at": datetime.now(timezone.utc).isoformat(),
            "degraded": batch.degraded,
            "chunks": [chunk.to_dict() for chunk in chunks],
        }

        path = self.document_path(url)
        async with self._document_lock(url):
            try:
                await asyncio.to_thread(write_json_atomic, path, record)
            except OSError as exc:
                raise StorageError(f"Failed to write index for {url}: {exc}") from exc

        LOGGER.info("Indexed %d chunks for %s", len(chunks), url)
        return len(chunks)

    async def index_corpus(self, directory: Path) -> int:
        """Index every saved page in ``directory``; bad files are skipped."""
        source = Path(directory).expanduser()
        LOGGER.info("Indexing documents from %s", source)
        if not source.is_dir():
            LOGGER.error("Source directory %s does not exist", source)
            return 0

        files = sorted(
            path for path in source.glob("*.json") if path.name != METADATA_FILE
        )
        if not files:
            LOGGER.warning("No JSON files found in %s", source)
            return 0

        LOGGER.info("Found %d JSON files to process", len(files))
        total = 0
        for path in files:
            try:
                page = await asyncio.to_thread(load_page, path)
            except (OSError, ValueError) as exc:
                LOGGER.warning("Skipping malformed document %s: %s", path.name, exc)
                continue
            try:
                total += await self.index_document(page.url, page.title, page.content)
            except DocsCrawlerError as exc:
                LOGGER.warning("Error processing file %s: %s", path.name, exc)

        LOGGER.info("Indexing complete. Total chunks indexed: %d", total)
        return total

    async def delete_document(self, url: str) -> bool:
        path = self.document_path(url)
        async with self._document_lock(url):
            try:
                await asyncio.to_thread(path.unlink)
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise StorageError(f"Failed to delete index for {url}: {exc}") from exc
        return True

    async def remove_documents(self, urls: Iterable[str]) -> int:
        """Delete the chunk sets of ``urls``; failures are logged and skipped."""
        removed = 0
        for url in urls:
            try:
                removed += await self.delete_document(url)
            except StorageError as exc:
                LOGGER.warning("%s", exc.message)
        if removed:
            LOGGER.info("Removed %d stale document(s) from the index", removed)
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self, query: str, limit: int = 5, url_prefix: Optional[str] = None
    ) -> List[ChunkHit]:
        """Return the ``limit`` chunks most similar to ``query``."""
        LOGGER.info(
            'Searching for: "%s" with base URL: %s', query, url_prefix or "Not specified"
        )
        if limit <= 0:
            return []
        batch = await self.embedder.embed_batch([query])
        if batch.degraded:
            LOGGER.warning('Query embedding failed for "%s"; returning no results', query)
            return []
        hits = await self.search_by_vector(batch.vectors[0], limit, url_prefix)
        for hit in hits:
            hit.queries.append(query)
        return hits

    async def search_by_vector(
        self,
        vector: Sequence[float],
        limit: int = 5,
        url_prefix: Optional[str] = None,
    ) -> List[ChunkHit]:
        chunks = await asyncio.to_thread(self._load_chunks, url_prefix)
        if not chunks or limit <= 0:
            return []

        matrix = np.asarray([chunk.embedding for chunk in chunks], dtype=np.float64)
        similarities = cosine_similarities(vector, matrix)
        # Stable sort keeps input order among exact ties.
        order = np.argsort(-similarities, kind="stable")[:limit]

        hits = [
            ChunkHit(
                id=chunks[i].id,
                url=chunks[i].url,
                title=chunks[i].title,
                content=chunks[i].content,
                distance=1.0 - float(similarities[i]),
                chunk_index=chunks[i].chunk_index,
            )
            for i in order
        ]
        LOGGER.debug("Search returned %d results", len(hits))
        return hits

    async def document_urls(self, url_prefix: Optional[str] = None) -> List[str]:
        records = await asyncio.to_thread(self._load_records)
        return [
            record["url"]
            for record in records
            if url_matches_prefix(record["url"], url_prefix or "")
        ]

    async def has_documents(self, url_prefix: str) -> bool:
        return bool(await self.document_urls(url_prefix))

    async def get_chunks(self, url: str) -> List[Chunk]:
        record = await asyncio.to_thread(_read_record, self.document_path(url))
        if record is None:
            return []
        return [Chunk.from_dict(raw) for raw in record.get("chunks", [])]

    async def status(self) -> Dict[str, Any]:
        records = await asyncio.to_thread(self._load_records)
        return {
            "initialized": self.index_dir.is_dir(),
            "documents": len(records),
            "chunks": sum(len(r.get("chunks") or []) for r in records),
            "degraded_documents": sum(1 for r in records if r.get("degraded")),
            "dimensions": self.dimensions,
            "index_dir": str(self.index_dir),
        }

    def _load_records(self) -> List[Dict[str, Any]]:
        if not self.index_dir.is_dir():
            return []
        records = []
        for path in sorted(self.index_dir.glob(f"*{INDEX_SUFFIX}")):
            record = _read_record(path)
            if record is not None:
                records.append(record)
        return records

    def _load_chunks(self, url_prefix: Optional[str]) -> List[Chunk]:
        chunks: List[Chunk] = []
        for record in self._load_records():
            if url_prefix and not url_matches_prefix(record["url"], url_prefix):
                continue
            for raw in record.get("chunks") or []:
                chunk = self._valid_chunk(raw)
                if chunk is not None:
                    chunks.append(chunk)
        return chunks

    def _valid_chunk(self, raw: Any) -> Optional[Chunk]:
        if not isinstance(raw, dict) or not raw.get("url") or not raw.get("id"):
            return None
        embedding = raw.get("embedding")
        if not isinstance(embedding, list) or len(embedding) != self.dimensions:
            return None
        try:
            if not all(math.isfinite(float(v)) for v in embedding):
                return None
        except (TypeError, ValueError):
            return None
        return Chunk.from_dict(raw)


def _read_record(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            record = json.load(fh)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        LOGGER.warning("Error parsing index file %s: %s", path.name, exc)
        return None
    if not isinstance(record, dict) or not isinstance(record.get("url"), str):
        LOGGER.warning("Invalid record format in %s", path.name)
        return None
    if not isinstance(record.get("chunks"), list):
        LOGGER.warning("Invalid chunks format in %s, expected a list", path.name)
        return None
    return record
