"""
BM25 retrieval over a user's uploaded documents.

Chunks are read from ``<doc_dir>/<user>``, cached in the cache layer under
``rag_docs:<user>`` and scored with ``rank_bm25.BM25Okapi`` on every query.
"""
from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional

from rank_bm25 import BM25Okapi  # type: ignore[import-untyped]

from gopherai.cache.contracts import CacheQueue

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".md", ".txt"}
CHUNK_SIZE = 800


def sanitize_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", value or "unknown")


def user_doc_dir(base_dir: str, user_name: str) -> Path:
    return Path(base_dir) / sanitize_name(user_name)


def cache_key(user_name: str) -> str:
    return f"rag_docs:{user_name}"


def tokenize(text: str) -> List[str]:
    return re.findall(r"\b\w+\b", text.lower())


def chunk_text(text: str, size: int = CHUNK_SIZE) -> List[str]:
    """Pack blank-line separated paragraphs into chunks of at most ``size`` chars."""
    chunks: List[str] = []
    current = ""
    for para in re.split(r"\n\s*\n", text):
        para = para.strip()
        if not para:
            continue
        while len(para) > size:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(para[:size])
            para = para[size:]
        if current and len(current) + len(para) + 2 > size:
            chunks.append(current)
            current = para
        else:
            current = f"{current}\n\n{para}" if current else para
    if current:
        chunks.append(current)
    return chunks


def build_rag_prompt(question: str, documents: List[str]) -> str:
    if not documents:
        return question
    context = "".join(f"[Document {i}]: {doc}\n\n" for i, doc in enumerate(documents, start=1))
    return (
        "Answer the user's question based on the following reference documents. "
        "If the documents do not contain the relevant information, say that it could not be found.\n\n"
        f"Reference Documents:\n{context}"
        f"User Question: {question}\n\n"
        "Please provide an accurate and complete answer:"
    )


def _read_chunks(directory: Path) -> List[str]:
    if not directory.is_dir():
        return []
    chunks: List[str] = []
    for path in sorted(directory.iterdir()):
        if path.suffix.lower() not in ALLOWED_EXTENSIONS or not path.is_file():
            continue
        chunks.extend(chunk_text(path.read_text(encoding="utf-8", errors="replace")))
    return chunks


class DocumentIndex:
    def __init__(self, cache: CacheQueue, doc_dir: str, top_k: int = 3, cache_ttl: Optional[int] = 3600) -> None:
        self._cache = cache
        self._doc_dir = doc_dir
        self._top_k = top_k
        self._cache_ttl = cache_ttl

    @property
    def doc_dir(self) -> str:
        return self._doc_dir

    async def chunks_for(self, user_name: str) -> List[str]:
        key = cache_key(user_name)
        try:
            cached = await self._cache.get(key)
        except Exception as exc:
            logger.warning("Document cache read failed for %s: %s", user_name, exc)
            cached = None
        if cached is not None:
            return list(cached)
        chunks = await asyncio.to_thread(_read_chunks, user_doc_dir(self._doc_dir, user_name))
        try:
            await self._cache.set(key, chunks, ttl=self._cache_ttl)
        except Exception as exc:
            logger.warning("Document cache write failed for %s: %s", user_name, exc)
        return chunks

    async def search(self, user_name: str, query: str, top_k: Optional[int] = None) -> List[str]:
        chunks = [c for c in await self.chunks_for(user_name) if tokenize(c)]
        if not chunks:
            return []
        bm25 = BM25Okapi([tokenize(chunk) for chunk in chunks])
        scores = list(bm25.get_scores(tokenize(query)))
        limit = top_k or self._top_k
        ranked = sorted(range(len(scores)), key=lambda i: scores[i], reverse=True)[:limit]
        return [chunks[i] for i in ranked]

    async def invalidate(self, user_name: str) -> None:
        try:
            await self._cache.delete(cache_key(user_name))
        except Exception as exc:
            logger.warning("Document cache invalidation failed for %s: %s", user_name, exc)
