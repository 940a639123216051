from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
import pytest_asyncio
from urllib3.exceptions import MaxRetryError

# Add backend folder to sys.path so `import receiptly...` works in tests when running from backend root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from receiptly.core.config import Settings  # noqa: E402
from receiptly.core.database import build_engine, build_sessionmaker, init_db  # noqa: E402
from receiptly.services.storage_service import StorageService  # noqa: E402

GOOD_EXTRACTION: Dict[str, Any] = {
    "merchant": "Acme",
    "amount": 12.50,
    "date": "2024-01-01",
    "category": "other",
}


class FakeExtractor:
    """Stands in for ExtractionClient; returns a canned payload or raises."""

    model = "fake-vision"

    def __init__(self, payload: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None) -> None:
        self.payload = dict(GOOD_EXTRACTION if payload is None else payload)
        self.error = error
        self.calls: list[tuple[int, Optional[str]]] = []

    async def extract(self, image_bytes: bytes, content_type: Optional[str] = None) -> Dict[str, Any]:
        self.calls.append((len(image_bytes), content_type))
        if self.error is not None:
            raise self.error
        return dict(self.payload)


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        _env_file=None,
        ENVIRONMENT="test",
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        STORAGE_BACKEND="filesystem",
        STORAGE_DIRECTORY=str(tmp_path / "storage"),
        STORAGE_BUCKETS="receipts",
        RECEIPTS_BUCKET="receipts",
        SECRET_KEY="test-secret",
        OPENAI_API_KEY=None,
        REDIS_URL=None,
        SENTRY_DSN=None,
    )
    values.update(overrides)
    return Settings(**values)


def make_storage(base_dir: Path) -> StorageService:
    base_dir.mkdir(parents=True, exist_ok=True)
    return StorageService(
        "filesystem",
        allowed_buckets=["receipts"],
        default_bucket="receipts",
        secret_key="test-secret",
        base_dir=base_dir,
    )


class UnreachableMinio:
    """MinIO client whose server cannot be reached."""

    def _fail(self, *args, **kwargs):
        raise MaxRetryError(None, "/receipts", reason="connection refused")

    stat_object = get_object = put_object = _fail


def make_unreachable_minio_storage() -> StorageService:
    return StorageService(
        "minio",
        allowed_buckets=["receipts"],
        default_bucket="receipts",
        secret_key="test-secret",
        client=UnreachableMinio(),
    )


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def storage(tmp_path):
    return make_storage(tmp_path / "storage")


@pytest_asyncio.fixture
async def session_factory():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def receipt_payload():
    return dict(GOOD_EXTRACTION)


@pytest.fixture
def fake_extractor():
    return FakeExtractor()


def write_object(storage: StorageService, path: str, data: bytes = b"\x89PNG fake image bytes") -> Path:
    """Place an object directly on disk for the filesystem backend."""
    target = storage.local_path("receipts", path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return target


