"""
test_storage.py - LocalObjectStorage refs, signed links and retention purge.
"""
from __future__ import annotations

import os
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import parse_qs, unquote, urlparse

import pytest

from conftest import PUBLIC_BASE_URL
from cvcoach.errors import StorageFailure
from cvcoach.integrations.storage import (
    REPORT_FOLDER,
    LocalObjectStorage,
    sanitize_filename,
    sanitize_segment,
)


def _local_file(tmp_path: Path, name: str = "my cv.pdf", content: bytes = b"%PDF-1.4 test") -> Path:
    path = tmp_path / name
    path.write_bytes(content)
    return path


def test_sanitizers() -> None:
    assert sanitize_segment("+44 7700/900") == "447700900"
    assert sanitize_filename("my cv (final).pdf") == "my_cv__final_.pdf"


@pytest.mark.asyncio
async def test_store_moves_file_and_builds_ref(storage: LocalObjectStorage, tmp_path: Path) -> None:
    source = _local_file(tmp_path)
    ref = await storage.store(source, "447700900123")

    folder, identity, name = ref.split("/")
    assert folder == "cv-uploads"
    assert identity == "447700900123"
    millis, _, filename = name.partition("-")
    assert millis.isdigit()
    assert filename == "my_cv.pdf"
    assert not source.exists()


@pytest.mark.asyncio
async def test_retrieve_returns_independent_copy(storage: LocalObjectStorage, tmp_path: Path) -> None:
    ref = await storage.store(_local_file(tmp_path), "447700900123", folder=REPORT_FOLDER)

    copy = await storage.retrieve(ref)
    try:
        assert copy.read_bytes() == b"%PDF-1.4 test"
        assert copy.suffix == ".pdf"
    finally:
        copy.unlink()
    # The stored object survives deletion of the copy
    assert storage.open_path(ref).is_file()


@pytest.mark.asyncio
async def test_retrieve_missing_object_raises(storage: LocalObjectStorage) -> None:
    with pytest.raises(StorageFailure):
        await storage.retrieve("cv-uploads/447700900123/1-gone.pdf")


@pytest.mark.asyncio
async def test_delete_then_retrieve_raises(storage: LocalObjectStorage, tmp_path: Path) -> None:
    ref = await storage.store(_local_file(tmp_path), "447700900123")
    await storage.delete(ref)
    with pytest.raises(StorageFailure):
        await storage.retrieve(ref)


def test_ref_escaping_root_is_rejected(storage: LocalObjectStorage) -> None:
    with pytest.raises(StorageFailure):
        storage.open_path("../../etc/passwd")


@pytest.mark.asyncio
async def test_signed_link_verifies_until_expiry(storage: LocalObjectStorage, tmp_path: Path) -> None:
    ref = await storage.store(_local_file(tmp_path), "447700900123")
    link = storage.get_retrievable_link(ref, ttl=60)

    parsed = urlparse(link)
    assert link.startswith(f"{PUBLIC_BASE_URL}/api/files/")
    assert unquote(parsed.path.removeprefix("/api/files/")) == ref
    query = parse_qs(parsed.query)
    expires = int(query["expires"][0])
    signature = query["signature"][0]

    assert storage.verify_link(ref, expires, signature)
    assert not storage.verify_link(ref, expires, "0" * len(signature))
    assert not storage.verify_link(ref + "x", expires, signature)
    assert not storage.verify_link(ref, expires, signature, now=time.time() + 120)


@pytest.mark.asyncio
async def test_purge_older_than_removes_only_old_objects(storage: LocalObjectStorage, tmp_path: Path) -> None:
    old_ref = await storage.store(_local_file(tmp_path, "old.pdf"), "447700900123")
    new_ref = await storage.store(_local_file(tmp_path, "new.pdf"), "447700900123")

    two_days_ago = time.time() - 2 * 86400
    os.utime(storage.open_path(old_ref), (two_days_ago, two_days_ago))

    deleted = await storage.purge_older_than(datetime.now(timezone.utc) - timedelta(hours=24))

    assert deleted == 1
    with pytest.raises(StorageFailure):
        storage.open_path(old_ref)
    assert storage.open_path(new_ref).is_file()
