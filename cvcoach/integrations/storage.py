"""
storage.py - Filesystem-backed object storage for CV uploads and reports.

Object refs look like:
    {folder}/{sanitized identity}/{epoch_ms}-{filename}
so lookups and the retention sweep can scope by user.

Retrievable links point at GET /api/files/{ref} and carry an expiry plus an
HMAC-SHA256 signature over "{ref}:{expires}". verify_link() is the check the
route performs.

All blocking file operations run in asyncio.to_thread.
"""
import asyncio
import hashlib
import hmac
import logging
import re
import shutil
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

from cvcoach.errors import StorageFailure

logger = logging.getLogger(__name__)

CV_FOLDER = "cv-uploads"
REPORT_FOLDER = "reports"

_UNSAFE_SEGMENT = re.compile(r"[^\w]")
_UNSAFE_FILENAME = re.compile(r"[^\w.\-]")


def sanitize_segment(value: str) -> str:
    return _UNSAFE_SEGMENT.sub("", value) or "anonymous"


def sanitize_filename(name: str) -> str:
    cleaned = _UNSAFE_FILENAME.sub("_", Path(name).name)
    return cleaned.lstrip(".") or "file"


def sign_ref(ref: str, expires: int, key: str) -> str:
    message = f"{ref}:{expires}".encode("utf-8")
    return hmac.new(key.encode("utf-8"), message, hashlib.sha256).hexdigest()


class LocalObjectStorage:
    """ObjectStorage implementation rooted at a local directory."""

    def __init__(self, root: str, public_base_url: str, signing_key: str):
        self._root = Path(root).resolve()
        self._public_base_url = public_base_url.rstrip("/")
        self._signing_key = signing_key

    # ------------------------------------------------------------------
    # Path helpers
    # ------------------------------------------------------------------

    def _path_for(self, ref: str) -> Path:
        path = (self._root / ref).resolve()
        if self._root not in path.parents:
            raise StorageFailure(f"Object ref escapes storage root: {ref!r}")
        return path

    # ------------------------------------------------------------------
    # ObjectStorage interface
    # ------------------------------------------------------------------

    async def store(self, local_file: Path, identity: str, folder: str = CV_FOLDER) -> str:
        """Move local_file into storage and return its ref."""
        local_file = Path(local_file)
        ref = f"{folder}/{sanitize_segment(identity)}/{int(time.time() * 1000)}-{sanitize_filename(local_file.name)}"
        target = self._path_for(ref)

        def _move() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(local_file), str(target))

        try:
            await asyncio.to_thread(_move)
        except OSError as exc:
            raise StorageFailure(f"Could not store object: {exc}") from exc
        logger.info("Stored object folder=%s bytes=%d", folder, target.stat().st_size)
        return ref

    async def retrieve(self, ref: str) -> Path:
        """Copy the object to a fresh temp file. The caller owns (and deletes) the copy."""
        source = self._path_for(ref)
        suffix = Path(ref).suffix

        def _copy() -> Path:
            fd, tmp_name = tempfile.mkstemp(suffix=suffix)
            tmp_path = Path(tmp_name)
            try:
                with open(fd, "wb") as out, open(source, "rb") as src:
                    shutil.copyfileobj(src, out)
            except OSError:
                tmp_path.unlink(missing_ok=True)
                raise
            return tmp_path

        try:
            return await asyncio.to_thread(_copy)
        except FileNotFoundError as exc:
            raise StorageFailure(f"Object no longer exists: {ref!r}") from exc
        except OSError as exc:
            raise StorageFailure(f"Could not read object: {exc}") from exc

    def get_retrievable_link(self, ref: str, ttl: int) -> str:
        expires = int(time.time()) + ttl
        query = urlencode({"expires": expires, "signature": sign_ref(ref, expires, self._signing_key)})
        return f"{self._public_base_url}/api/files/{quote(ref)}?{query}"

    async def delete(self, ref: str) -> None:
        path = self._path_for(ref)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            raise StorageFailure(f"Could not delete object: {exc}") from exc

    # ------------------------------------------------------------------
    # Link verification + retention
    # ------------------------------------------------------------------

    def verify_link(self, ref: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
        if (now if now is not None else time.time()) > expires:
            return False
        expected = sign_ref(ref, expires, self._signing_key)
        return hmac.compare_digest(expected, signature)

    def open_path(self, ref: str) -> Path:
        """Resolve a ref to its on-disk path for streaming. Raises StorageFailure if missing."""
        path = self._path_for(ref)
        if not path.is_file():
            raise StorageFailure(f"Object no longer exists: {ref!r}")
        return path

    async def purge_older_than(self, cutoff: datetime) -> int:
        """Delete every object last modified before cutoff. Returns the count."""
        cutoff_ts = cutoff.timestamp()

        def _purge() -> int:
            deleted = 0
            if not self._root.exists():
                return 0
            for path in self._root.rglob("*"):
                if path.is_file() and path.stat().st_mtime < cutoff_ts:
                    try:
                        path.unlink()
                        deleted += 1
                    except OSError as exc:
                        logger.warning("Retention: could not delete %s: %s", path.name, exc)
            return deleted

        return await asyncio.to_thread(_purge)
