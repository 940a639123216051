from __future__ import annotations

import asyncio
import datetime as dt
from decimal import Decimal

import pytest
import pytest_asyncio

from receiptly.core.database import build_engine, build_sessionmaker, init_db
from receiptly.core.errors import ConcurrencyConflictError, ReceiptNotFoundError
from receiptly.models.enums import ReceiptCategory
from receiptly.models.schemas import ReceiptUpdate
from receiptly.services.receipt_repository import ReceiptRepository, next_lock_token
from receiptly.services.receipt_validation import validate_receipt_payload


def _receipt(**overrides):
    payload = {"merchant": "Acme", "amount": 12.50, "date": "2024-01-01", "category": "other"}
    payload.update(overrides)
    return validate_receipt_payload(payload)


@pytest.fixture
def repo():
    return ReceiptRepository()


@pytest.mark.asyncio
async def test_create_then_get_round_trip(db, repo):
    created = await repo.create(db, "user_a", _receipt(items=[{"name": "Widget", "quantity": 1}]), "processed/user_a/1.png")
    assert created.id
    assert created.is_verified is False
    assert created.created_at == created.updated_at

    fetched = await repo.get_by_id(db, "user_a", created.id)
    assert fetched.merchant == "Acme"
    assert fetched.amount == Decimal("12.50")
    assert fetched.date == dt.date(2024, 1, 1)
    assert fetched.category == ReceiptCategory.OTHER
    assert fetched.items == [{"name": "Widget", "quantity": "1", "unit_price": None, "total_price": None}]
    assert fetched.original_file == "processed/user_a/1.png"


@pytest.mark.asyncio
async def test_other_users_receipt_is_not_found(db, repo):
    created = await repo.create(db, "user_b", _receipt(), "processed/user_b/1.png")
    with pytest.raises(ReceiptNotFoundError) as info:
        await repo.get_by_id(db, "user_a", created.id)
    assert info.value.message == "Receipt not found"
    with pytest.raises(ReceiptNotFoundError):
        await repo.get_by_id(db, "user_a", "no-such-id")


@pytest.mark.asyncio
async def test_list_by_user_orders_by_date_desc(db, repo):
    await repo.create(db, "user_a", _receipt(date="2023-05-01", merchant="Older"), "p/1")
    await repo.create(db, "user_a", _receipt(date="2024-02-01", merchant="Newest"), "p/2")
    await repo.create(db, "user_a", _receipt(date="2024-01-01", merchant="Middle"), "p/3")
    await repo.create(db, "user_b", _receipt(merchant="Foreign"), "p/4")

    receipts = await repo.list_by_user(db, "user_a")
    assert [r.merchant for r in receipts] == ["Newest", "Middle", "Older"]


@pytest.mark.asyncio
async def test_update_applies_changes_and_moves_token(db, repo):
    created = await repo.create(db, "user_a", _receipt(), "p/1")
    token = created.updated_at

    updated = await repo.update(
        db, "user_a", created.id,
        ReceiptUpdate(merchant="Acme Corp", amount="20", expected_updated_at=token),
    )
    assert updated.merchant == "Acme Corp"
    assert updated.amount == Decimal("20.00")
    assert updated.updated_at > token
    assert updated.is_verified is False


@pytest.mark.asyncio
async def test_stale_token_is_a_conflict(db, repo):
    created = await repo.create(db, "user_a", _receipt(), "p/1")
    receipt_id, token = created.id, created.updated_at

    await repo.update(db, "user_a", receipt_id, ReceiptUpdate(merchant="First", expected_updated_at=token))
    with pytest.raises(ConcurrencyConflictError) as info:
        await repo.update(db, "user_a", receipt_id, ReceiptUpdate(merchant="Second", expected_updated_at=token))
    assert info.value.message == "Failed to update receipt. It may have been modified by another process."

    current = await repo.get_by_id(db, "user_a", receipt_id)
    assert current.merchant == "First"


@pytest.mark.asyncio
async def test_update_of_foreign_receipt_is_not_found(db, repo):
    created = await repo.create(db, "user_b", _receipt(), "p/1")
    receipt_id, token = created.id, created.updated_at
    with pytest.raises(ReceiptNotFoundError):
        await repo.update(
            db, "user_a", receipt_id,
            ReceiptUpdate(merchant="Hijack", expected_updated_at=token),
        )
    assert (await repo.get_by_id(db, "user_b", receipt_id)).merchant == "Acme"


@pytest.mark.asyncio
async def test_delete_only_when_owned(db, repo):
    created = await repo.create(db, "user_b", _receipt(), "p/1")
    assert await repo.delete(db, "user_a", created.id) is False
    assert (await repo.get_by_id(db, "user_b", created.id)).id == created.id
    assert await repo.delete(db, "user_b", created.id) is True
    with pytest.raises(ReceiptNotFoundError):
        await repo.get_by_id(db, "user_b", created.id)


def test_next_lock_token_strictly_increases():
    future = dt.datetime(2999, 1, 1)
    assert next_lock_token(future) == future + dt.timedelta(microseconds=1)
    past = dt.datetime(2000, 1, 1)
    assert next_lock_token(past) > past


class RecordingCache:
    def __init__(self):
        self.invalidated = []

    async def invalidate(self, user_id):
        self.invalidated.append(user_id)


@pytest.mark.asyncio
async def test_mutations_invalidate_chart_cache(db):
    cache = RecordingCache()
    repo = ReceiptRepository(cache=cache)
    created = await repo.create(db, "user_a", _receipt(), "p/1")
    await repo.update(db, "user_a", created.id, ReceiptUpdate(is_verified=True, expected_updated_at=created.updated_at))
    await repo.delete(db, "user_a", created.id)
    await repo.delete(db, "user_a", created.id)
    assert cache.invalidated == ["user_a", "user_a", "user_a"]


# ---------------------------------------------------------------------------
# Two writers racing with the same token


@pytest_asyncio.fixture
async def file_sessions(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
    await init_db(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_updates_with_same_token_exactly_one_wins(file_sessions):
    repo = ReceiptRepository()
    async with file_sessions() as setup:
        created = await repo.create(setup, "user_a", _receipt(), "p/1")
        receipt_id, token = created.id, created.updated_at

    async def attempt(merchant):
        async with file_sessions() as session:
            try:
                await repo.update(session, "user_a", receipt_id, ReceiptUpdate(merchant=merchant, expected_updated_at=token))
                return merchant
            except ConcurrencyConflictError:
                return None

    results = await asyncio.gather(attempt("Writer One"), attempt("Writer Two"))
    winners = [r for r in results if r is not None]
    assert len(winners) == 1

    async with file_sessions() as check:
        final = await repo.get_by_id(check, "user_a", receipt_id)
    assert final.merchant == winners[0]
    assert final.updated_at > token
