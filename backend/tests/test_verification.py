from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from receiptly.core.errors import ConcurrencyConflictError, InputError, ReceiptValidationError
from receiptly.models.enums import ReceiptCategory
from receiptly.services.receipt_repository import ReceiptRepository
from receiptly.services.receipt_validation import validate_receipt_payload
from receiptly.services.verification import VerificationDraft
from receiptly.utils.helpers import utcnow


@pytest.fixture
def draft():
    current = {
        "merchant": "Acme",
        "amount": Decimal("12.50"),
        "date": dt.date(2024, 1, 1),
        "category": ReceiptCategory.OTHER,
    }
    return VerificationDraft("r-1", current, dt.datetime(2024, 1, 2, 9, 30))


def test_valid_edit_is_staged(draft):
    assert draft.stage("merchant", "  Acme Corp ") is None
    assert draft.is_dirty
    assert draft.changes() == {"merchant": "Acme Corp"}
    assert draft.value("merchant") == "Acme Corp"


def test_invalid_edit_is_refused_but_others_stay_editable(draft):
    assert draft.stage("merchant", "A") == "Merchant name must be at least 2 characters"
    assert draft.stage("amount", 0) == "Amount must be positive"
    assert draft.stage("date", (utcnow().date() + dt.timedelta(days=2)).isoformat()) == "Date cannot be in the future"
    assert draft.stage("category", "food") is None
    assert draft.value("merchant") == "Acme"
    assert draft.changes() == {"category": ReceiptCategory.FOOD}
    assert set(draft.errors) == {"merchant", "amount", "date"}


@pytest.mark.parametrize("value", [1e30, "1e30", "1E+100000"])
def test_huge_amount_is_refused(draft, value):
    assert draft.stage("amount", value) == "Amount cannot exceed 100,000"
    assert draft.value("amount") == Decimal("12.50")
    assert draft.errors == {"amount": "Amount cannot exceed 100,000"}


def test_fixing_a_field_clears_its_error(draft):
    draft.stage("amount", "abc")
    assert "amount" in draft.errors
    draft.stage("amount", "15")
    assert "amount" not in draft.errors
    assert draft.changes() == {"amount": Decimal("15.00")}


def test_restaging_server_value_is_not_a_change(draft):
    draft.stage("merchant", "Other")
    draft.stage("merchant", "Acme")
    assert not draft.is_dirty


def test_unknown_field_cannot_be_staged(draft):
    with pytest.raises(InputError):
        draft.stage("user_id", "someone_else")


def test_to_update_carries_token_and_verification(draft):
    draft.stage("amount", 20)
    update = draft.to_update()
    assert update.is_verified is True
    assert update.expected_updated_at == dt.datetime(2024, 1, 2, 9, 30)
    assert update.changed_values() == {"amount": Decimal("20.00"), "is_verified": True}


def test_to_update_blocked_by_outstanding_errors(draft):
    draft.stage("merchant", "")
    with pytest.raises(ReceiptValidationError) as info:
        draft.to_update()
    assert [e.field for e in info.value.errors] == ["merchant"]


@pytest.mark.asyncio
async def test_confirm_without_edits_verifies_and_refreshes_token(db):
    repo = ReceiptRepository()
    extracted = validate_receipt_payload({"merchant": "Acme", "amount": 12.50, "date": "2024-01-01", "category": "other"})
    created = await repo.create(db, "user_a", extracted, "processed/user_a/1.png")
    token = created.updated_at

    draft = VerificationDraft.from_receipt(created)
    assert not draft.is_dirty
    verified = await draft.submit(repo, db, "user_a")

    assert verified.is_verified is True
    assert verified.updated_at > token
    assert verified.merchant == "Acme"


@pytest.mark.asyncio
async def test_submit_against_stale_copy_conflicts(db):
    repo = ReceiptRepository()
    extracted = validate_receipt_payload({"merchant": "Acme", "amount": 5, "date": "2024-01-01", "category": "food"})
    created = await repo.create(db, "user_a", extracted, "processed/user_a/1.png")

    first = VerificationDraft.from_receipt(created)
    second = VerificationDraft.from_receipt(created)
    first.stage("merchant", "Acme Foods")
    await first.submit(repo, db, "user_a")

    second.stage("amount", 6)
    with pytest.raises(ConcurrencyConflictError):
        await second.submit(repo, db, "user_a")
