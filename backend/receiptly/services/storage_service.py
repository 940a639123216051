"""Storage service abstraction.

Supports two backends selected via ``settings.STORAGE_BACKEND``:

1. **minio** (default): Uses the MinIO S3‑compatible object storage.
2. **filesystem**: Stores files under ``settings.STORAGE_DIRECTORY`` on disk,
   one directory per bucket.

Objects live at ``{status}/{user_id}/{filename}`` inside a bucket, where
status is ``pending`` (just uploaded) or ``processed`` (extraction stored).
Every operation is restricted to the buckets named in
``settings.STORAGE_BUCKETS``.

The service is built once by the application lifespan and shared by all
requests.  The MinIO SDK is synchronous, so calls are pushed to the
threadpool.
"""

from __future__ import annotations

import base64
import datetime as dt
import hashlib
import hmac
import logging
import mimetypes
import time
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import quote, urlencode

from fastapi.concurrency import run_in_threadpool
from minio import Minio
from minio.commonconfig import CopySource
from minio.error import S3Error
from urllib3.exceptions import HTTPError as TransportError

from receiptly.core.config import Settings
from receiptly.core.errors import StorageError
from receiptly.models.enums import StorageStatus

logger = logging.getLogger(__name__)

# API errors plus urllib3 connection failures
MINIO_ERRORS = (S3Error, TransportError)

_FILENAME_KEEPCHARS = {"-", "_", "."}


@dataclass(frozen=True)
class StoredObject:
    """Metadata of a stored object."""

    size: int
    content_type: Optional[str]


def normalise_filename(filename: str) -> str:
    """Remove potentially dangerous characters and ensure a safe filename."""
    cleaned = "".join(c for c in filename if c.isalnum() or c in _FILENAME_KEEPCHARS)
    cleaned = cleaned.lstrip(".")
    return cleaned or "receipt"


def build_object_path(status: StorageStatus | str, user_id: str, filename: str) -> str:
    """Return ``{status}/{user_id}/{filename}`` with a sanitised filename."""
    status_value = StorageStatus(status).value
    if not user_id or "/" in user_id:
        raise StorageError("Invalid storage path")
    return f"{status_value}/{user_id}/{normalise_filename(filename)}"


def split_object_path(path: str) -> Optional[tuple[StorageStatus, str, str]]:
    """Split a conventional object path into ``(status, user_id, filename)``."""
    parts = (path or "").split("/")
    if len(parts) != 3 or not all(parts):
        return None
    try:
        status = StorageStatus(parts[0])
    except ValueError:
        return None
    return status, parts[1], parts[2]


def owned_by(path: str, user_id: str) -> bool:
    """True when ``path`` follows the path convention and sits in ``user_id``'s folder."""
    parts = split_object_path(path)
    return parts is not None and bool(user_id) and parts[1] == user_id


def processed_path_for(path: str) -> Optional[str]:
    """Map ``pending/{user}/{file}`` to its ``processed/`` counterpart."""
    parts = split_object_path(path)
    if parts is None or parts[0] is not StorageStatus.PENDING:
        return None
    return build_object_path(StorageStatus.PROCESSED, parts[1], parts[2])


def sign_download_token(bucket: str, path: str, exp_ts: int, secret: str) -> str:
    msg = f"{bucket}:{path}:{exp_ts}".encode()
    digest = hmac.new(secret.encode(), msg, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


class StorageService:
    """Unified storage service (MinIO or filesystem)."""

    def __init__(
        self,
        backend: str,
        allowed_buckets: Iterable[str],
        default_bucket: str,
        secret_key: str,
        client: Optional[Minio] = None,
        base_dir: Optional[Path] = None,
    ) -> None:
        self.backend = (backend or "minio").lower()
        self.allowed_buckets = frozenset(allowed_buckets)
        self.default_bucket = default_bucket
        self._secret_key = secret_key
        self._client = client
        self.base_dir = base_dir
        if self.backend == "minio" and client is None:
            raise ValueError("MinIO backend requires a client")
        if self.backend == "filesystem" and base_dir is None:
            raise ValueError("Filesystem backend requires base_dir")
        if self.backend not in {"minio", "filesystem"}:
            raise ValueError(f"Unknown storage backend: {backend}")

    @classmethod
    def from_settings(cls, cfg: Settings) -> "StorageService":
        backend = (cfg.STORAGE_BACKEND or "minio").lower()
        common = dict(
            allowed_buckets=cfg.allowed_buckets,
            default_bucket=cfg.RECEIPTS_BUCKET,
            secret_key=cfg.SECRET_KEY,
        )
        if backend == "filesystem":
            base_path = Path(cfg.STORAGE_DIRECTORY)
            if not base_path.is_absolute():
                repo_root = Path(__file__).resolve().parents[3]
                base_path = (repo_root / base_path).resolve()
            base_path.mkdir(parents=True, exist_ok=True)
            logger.info("[storage] Filesystem base_dir: %s", base_path)
            return cls("filesystem", base_dir=base_path, **common)
        client = Minio(
            cfg.MINIO_ENDPOINT,
            access_key=cfg.MINIO_ACCESS_KEY,
            secret_key=cfg.MINIO_SECRET_KEY,
            secure=bool(cfg.MINIO_USE_SSL),
        )
        logger.info("[storage] MinIO endpoint: %s", cfg.MINIO_ENDPOINT)
        return cls("minio", client=client, **common)

    # ------------------------------------------------------------------
    # guards

    def _bucket(self, bucket: Optional[str]) -> str:
        name = bucket or self.default_bucket
        if name not in self.allowed_buckets:
            raise StorageError("Invalid storage bucket")
        return name

    @staticmethod
    def _check_path(path: str) -> str:
        if not path or path.startswith("/") or any(seg in ("", ".", "..") for seg in path.split("/")):
            raise StorageError("Invalid storage path")
        return path

    def local_path(self, bucket: str, path: str) -> Path:
        """Resolve an object to its file on disk (filesystem backend only)."""
        if self.base_dir is None:
            raise StorageError("Local paths are only available for filesystem storage")
        return self.base_dir / self._bucket(bucket) / self._check_path(path)

    async def ensure_buckets(self) -> None:
        """Create every allowed bucket if it does not exist yet (idempotent)."""
        for name in sorted(self.allowed_buckets):
            if self.backend == "filesystem":
                (self.base_dir / name).mkdir(parents=True, exist_ok=True)
                continue
            try:
                if not await run_in_threadpool(self._client.bucket_exists, name):
                    await run_in_threadpool(self._client.make_bucket, name)
            except MINIO_ERRORS as exc:  # pragma: no cover - startup path
                logger.warning("[storage] MinIO bucket ensure failed bucket=%s err=%s", name, exc)

    # ------------------------------------------------------------------
    # operations

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` at ``path`` and return the path."""
        bucket = self._bucket(bucket)
        self._check_path(path)
        if self.backend == "minio":
            try:
                await run_in_threadpool(
                    self._client.put_object,
                    bucket,
                    path,
                    BytesIO(data),
                    len(data),
                    content_type=content_type or "application/octet-stream",
                )
            except MINIO_ERRORS as exc:
                logger.error("[storage] MinIO upload failed key=%s err=%s", path, exc)
                raise StorageError("Failed to upload file") from exc
            logger.info("[storage] MinIO object put: %s size=%d", path, len(data))
            return path

        target = self.local_path(bucket, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await run_in_threadpool(target.write_bytes, data)
        except OSError as exc:
            logger.error("[storage] FS write failed path=%s err=%s", target, exc)
            raise StorageError("Failed to upload file") from exc
        logger.info("[storage] FS saved: %s bytes=%d", path, len(data))
        return path

    async def download(self, path: str, bucket: Optional[str] = None) -> bytes:
        bucket = self._bucket(bucket)
        self._check_path(path)
        if self.backend == "minio":
            def _get() -> bytes:
                resp = self._client.get_object(bucket, path)
                try:
                    return resp.read()
                finally:
                    resp.close()
                    resp.release_conn()

            try:
                data = await run_in_threadpool(_get)
            except MINIO_ERRORS as exc:
                raise StorageError(f"File not found: {path}") from exc
            logger.debug("[storage] MinIO get ok key=%s bytes=%d", path, len(data))
            return data

        try:
            return await run_in_threadpool(self.local_path(bucket, path).read_bytes)
        except FileNotFoundError as exc:
            raise StorageError(f"File not found: {path}") from exc
        except OSError as exc:
            raise StorageError("Failed to read file") from exc

    async def stat(self, path: str, bucket: Optional[str] = None) -> StoredObject:
        bucket = self._bucket(bucket)
        self._check_path(path)
        if self.backend == "minio":
            try:
                info = await run_in_threadpool(self._client.stat_object, bucket, path)
            except MINIO_ERRORS as exc:
                raise StorageError(f"File not found: {path}") from exc
            return StoredObject(size=int(info.size or 0), content_type=info.content_type)

        target = self.local_path(bucket, path)
        try:
            size = target.stat().st_size
        except FileNotFoundError as exc:
            raise StorageError(f"File not found: {path}") from exc
        content_type, _ = mimetypes.guess_type(target.name)
        return StoredObject(size=size, content_type=content_type)

    async def create_signed_url(self, path: str, ttl_seconds: int, bucket: Optional[str] = None) -> str:
        """Return a time-limited read URL for ``path``."""
        bucket = self._bucket(bucket)
        self._check_path(path)
        if self.backend == "minio":
            try:
                return await run_in_threadpool(
                    self._client.presigned_get_object,
                    bucket,
                    path,
                    expires=dt.timedelta(seconds=ttl_seconds),
                )
            except MINIO_ERRORS as exc:
                raise StorageError("Failed to create signed URL") from exc

        if not self.local_path(bucket, path).exists():
            raise StorageError(f"File not found: {path}")
        exp_ts = int(time.time()) + int(ttl_seconds)
        sig = sign_download_token(bucket, path, exp_ts, self._secret_key)
        q = urlencode({"exp": exp_ts, "sig": sig})
        return f"/storage/{quote(bucket)}/{quote(path)}?{q}"

    def verify_signed_url(self, bucket: str, path: str, exp_ts: int, sig: str) -> bool:
        """Check a filesystem download signature and its expiry."""
        if exp_ts < int(time.time()):
            return False
        expected = sign_download_token(bucket, path, exp_ts, self._secret_key)
        return hmac.compare_digest(expected.encode(), (sig or "").encode())

    async def move(self, bucket: str, src: str, dst: str) -> str:
        """Move an object within ``bucket``; returns the new path."""
        bucket = self._bucket(bucket)
        self._check_path(src)
        self._check_path(dst)
        if self.backend == "minio":
            try:
                await run_in_threadpool(self._client.copy_object, bucket, dst, CopySource(bucket, src))
                await run_in_threadpool(self._client.remove_object, bucket, src)
            except MINIO_ERRORS as exc:
                raise StorageError("Failed to move file") from exc
            return dst

        source = self.local_path(bucket, src)
        target = self.local_path(bucket, dst)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            source.replace(target)
        except OSError as exc:
            raise StorageError("Failed to move file") from exc
        return dst

    async def delete(self, bucket: str, path: str) -> None:
        bucket = self._bucket(bucket)
        self._check_path(path)
        if self.backend == "minio":
            try:
                await run_in_threadpool(self._client.remove_object, bucket, path)
            except MINIO_ERRORS as exc:
                raise StorageError("Failed to delete file") from exc
            return
        try:
            self.local_path(bucket, path).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError("Failed to delete file") from exc
