import asyncio
import dataclasses

import pytest
from fastapi.testclient import TestClient

from gopherai.ai.retrieval import DocumentIndex, user_doc_dir
from gopherai.cache.memory_backend import MemoryCacheQueue
from gopherai.config.runtime_config import get_settings
from gopherai.files.service import FileService, InvalidFileType
from gopherai.server import create_app


def test_upload_replaces_previous_document(tmp_path):
    async def run():
        index = DocumentIndex(MemoryCacheQueue(), str(tmp_path))
        service = FileService(index)
        first = await service.upload("u1", "notes.md", b"old notes")
        assert await index.chunks_for("u1") == ["old notes"]
        second = await service.upload("u1", "Plan.TXT", b"new plan")
        return first, second, await index.chunks_for("u1")

    first, second, chunks = asyncio.run(run())
    files = sorted(p.name for p in user_doc_dir(str(tmp_path), "u1").iterdir())
    assert files == [second]
    assert first.endswith(".md") and second.endswith(".txt")
    assert chunks == ["new plan"]


def test_upload_rejects_other_extensions(tmp_path):
    service = FileService(DocumentIndex(MemoryCacheQueue(), str(tmp_path)))
    with pytest.raises(InvalidFileType):
        asyncio.run(service.upload("u1", "slides.pdf", b"%PDF"))
    assert not user_doc_dir(str(tmp_path), "u1").exists()


def test_upload_route(tmp_path):
    settings = dataclasses.replace(
        get_settings(), storage_backend="memory", redis_enabled=False, rag_doc_dir=str(tmp_path / "docs")
    )
    with TestClient(create_app(settings)) as client:
        body = client.post("/api/v1/user/register", json={"email": "f@example.com", "password": "pass1234"}).json()
        headers = {"Authorization": f"Bearer {body['token']}"}

        resp = client.post("/api/v1/file/upload", files={"file": ("doc.md", b"# Gophers", "text/markdown")}, headers=headers)
        assert resp.status_code == 200
        stored = resp.json()["filename"]
        assert (user_doc_dir(str(tmp_path / "docs"), body["username"]) / stored).read_bytes() == b"# Gophers"

        bad = client.post("/api/v1/file/upload", files={"file": ("x.exe", b"MZ", "application/octet-stream")}, headers=headers)
        assert bad.status_code == 400
        assert bad.json()["error"]["code"] == "file.invalid_type"

        assert client.post("/api/v1/file/upload", files={"file": ("doc.md", b"x", "text/markdown")}).status_code == 401
