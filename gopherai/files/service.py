"""Per-user document upload for retrieval-augmented chat."""
from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path

from gopherai.ai.retrieval import ALLOWED_EXTENSIONS, DocumentIndex, user_doc_dir

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class InvalidFileType(ValueError):
    pass


class FileTooLarge(ValueError):
    pass


class FileService:
    """Each user keeps one document; a new upload replaces the old one."""

    def __init__(self, documents: DocumentIndex) -> None:
        self.documents = documents

    def _write(self, user_name: str, extension: str, data: bytes) -> str:
        directory = user_doc_dir(self.documents.doc_dir, user_name)
        directory.mkdir(parents=True, exist_ok=True)
        for old in directory.iterdir():
            if old.is_file():
                old.unlink()
        name = f"{uuid.uuid4()}{extension}"
        (directory / name).write_bytes(data)
        return name

    async def upload(self, user_name: str, filename: str, data: bytes) -> str:
        extension = Path(filename or "").suffix.lower()
        if extension not in ALLOWED_EXTENSIONS:
            raise InvalidFileType(extension or filename)
        if len(data) > MAX_UPLOAD_BYTES:
            raise FileTooLarge(filename)
        stored = await asyncio.to_thread(self._write, user_name, extension, data)
        await self.documents.invalidate(user_name)
        logger.info("Stored document %s for %s (%d bytes)", stored, user_name, len(data))
        return stored
