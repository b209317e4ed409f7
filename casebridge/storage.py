"""
File Storage
============

Bucketed object storage on the local filesystem.

Buckets:
- case-documents: client intake documents, matter documents, update attachments
- court-reports:  court report attachments

Downloads go through short-lived signed URLs: a JWT of type "download"
bound to one bucket/path, checked by GET /storage/{bucket}/{path}.
"""

import re
import time
import hashlib
import logging
import mimetypes
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple
from urllib.parse import quote

from .config import get_settings
from .errors import NotFoundError, PayloadTooLargeError, ValidationFailedError

logger = logging.getLogger(__name__)

CASE_DOCUMENTS_BUCKET = "case-documents"
COURT_REPORTS_BUCKET = "court-reports"
BUCKETS = (CASE_DOCUMENTS_BUCKET, COURT_REPORTS_BUCKET)

DEFAULT_SIGNED_URL_SECONDS = 3600

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


@dataclass
class StorageMeta:
    bucket: str
    path: str
    size_bytes: int
    sha256: str
    mime_type: Optional[str]


def sanitize_filename(filename: str) -> str:
    """Replace everything except letters, digits, dot and dash with underscore."""
    name = Path(filename or "file").name
    cleaned = _UNSAFE_CHARS.sub("_", name)
    return cleaned or "file"


def file_extension(filename: str) -> str:
    suffix = Path(filename or "").suffix.lstrip(".").lower()
    return _UNSAFE_CHARS.sub("", suffix) or "bin"


def guess_mime_type(filename: str) -> str:
    return mimetypes.guess_type(filename or "")[0] or "application/octet-stream"


def unique_prefix() -> str:
    """{ms timestamp}-{random} prefix that keeps object names unique."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class LocalStorage:
    """Filesystem storage rooted at STORAGE_ROOT, one directory per bucket."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _resolve(self, bucket: str, path: str) -> Path:
        if bucket not in BUCKETS:
            raise NotFoundError("Bucket", bucket)
        bucket_root = (self.root / bucket).resolve()
        target = (bucket_root / path).resolve()
        if bucket_root != target and bucket_root not in target.parents:
            raise ValidationFailedError("Invalid storage path")
        return target

    def put(self, bucket: str, path: str, data: bytes, mime_type: Optional[str] = None) -> StorageMeta:
        max_bytes = get_settings().max_upload_bytes
        if len(data) > max_bytes:
            raise PayloadTooLargeError(f"File exceeds upload limit of {max_bytes} bytes")

        target = self._resolve(bucket, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info(f"Stored {len(data)} bytes at {bucket}/{path}")
        return StorageMeta(
            bucket=bucket,
            path=path,
            size_bytes=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
            mime_type=mime_type or guess_mime_type(path),
        )

    def get(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        if not target.is_file():
            raise NotFoundError("File", path)
        return target.read_bytes()

    def local_path(self, bucket: str, path: str) -> Path:
        target = self._resolve(bucket, path)
        if not target.is_file():
            raise NotFoundError("File", path)
        return target

    def exists(self, bucket: str, path: str) -> bool:
        return self._resolve(bucket, path).is_file()

    def delete(self, bucket: str, path: str) -> bool:
        target = self._resolve(bucket, path)
        if target.is_file():
            target.unlink()
            return True
        return False


_storage: Optional[LocalStorage] = None


def get_storage() -> LocalStorage:
    """Storage singleton; rebuilt when STORAGE_ROOT changes (tests)."""
    global _storage
    root = get_settings().storage_root
    if _storage is None or _storage.root != Path(root).resolve():
        _storage = LocalStorage(root)
    return _storage


# =============================================================================
# FILES BOUND TO DATABASE ROWS
# =============================================================================

@contextmanager
def staged_upload(db, bucket: str, path: str, data: bytes, mime_type: Optional[str] = None) -> Iterator[StorageMeta]:
    """
    Store an object for a row the block is about to commit.

    If the block raises, a failed commit included, the session is rolled
    back and the object removed again.
    """
    storage = get_storage()
    meta = storage.put(bucket, path, data, mime_type)
    try:
        yield meta
    except Exception:
        db.rollback()
        storage.delete(bucket, path)
        logger.warning(f"Removed {bucket}/{path}: its row was not committed")
        raise


def commit_and_delete(db, objects: Iterable[Tuple[str, str]]) -> None:
    """
    Commit `db`, then remove the (bucket, path) objects whose rows it deleted.

    Files are only touched once the commit has succeeded.
    """
    objects = list(objects)
    db.commit()
    storage = get_storage()
    for bucket, path in objects:
        try:
            storage.delete(bucket, path)
        except OSError as e:
            logger.error(f"Could not remove {bucket}/{path} after delete: {e}")


# =============================================================================
# OBJECT PATHS
# =============================================================================

def report_document_path(report_id: str, filename: str) -> str:
    return f"reports/{report_id}/{unique_prefix()}-{sanitize_filename(filename)}"


def matter_document_path(matter_id: str, filename: str) -> str:
    return f"matters/{matter_id}/documents/{unique_prefix()}-{sanitize_filename(filename)}"


def matter_update_path(matter_id: str, user_id: str, filename: str) -> str:
    return f"matters/{matter_id}/updates/{user_id}/{unique_prefix()}-{sanitize_filename(filename)}"


def court_report_path(report_id: str, filename: str) -> str:
    return f"{report_id}/{unique_prefix()}.{file_extension(filename)}"


# =============================================================================
# SIGNED URLS
# =============================================================================

def create_signed_url(bucket: str, path: str, expires_in: int = DEFAULT_SIGNED_URL_SECONDS) -> str:
    from .auth import create_scoped_token

    token = create_scoped_token({"bucket": bucket, "path": path}, "download", expires_in)
    return f"/storage/{bucket}/{quote(path)}?token={token}"


def verify_signed_token(token: str, bucket: str, path: str) -> bool:
    from .auth import decode_token

    payload = decode_token(token)
    if not payload or payload.get("type") != "download":
        return False
    return payload.get("bucket") == bucket and payload.get("path") == path
