from __future__ import annotations

import datetime as dt
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from conftest import FakeExtractor, make_settings, make_storage, write_object
from receiptly.api.dependencies import Services
from receiptly.api.main import create_app
from receiptly.core.database import build_engine, build_sessionmaker
from receiptly.core.security import ClerkJWTVerifier, get_current_user_id
from receiptly.services.receipt_pipeline import ReceiptPipeline
from receiptly.services.receipt_repository import ReceiptRepository
from receiptly.utils.helpers import utcnow

PNG = b"\x89PNG\r\n\x1a\n" + b"0" * 1024


@pytest.fixture
def api(tmp_path):
    cfg = make_settings(tmp_path)
    engine = build_engine(cfg.DATABASE_URL)
    storage = make_storage(tmp_path / "storage")
    extractor = FakeExtractor()
    repository = ReceiptRepository()
    services = Services(
        settings=cfg,
        engine=engine,
        sessionmaker=build_sessionmaker(engine),
        storage=storage,
        extractor=extractor,
        repository=repository,
        pipeline=ReceiptPipeline(storage, extractor, repository, cfg),
        auth=ClerkJWTVerifier(None),
    )
    app = create_app(cfg, services=services)
    user = {"id": "user_a"}
    app.dependency_overrides[get_current_user_id] = lambda: user["id"]
    with TestClient(app) as client:
        yield SimpleNamespace(client=client, user=user, extractor=extractor, storage=storage)


def _upload(api, data=PNG, content_type="image/png"):
    return api.client.post("/receipts/upload", files={"file": ("receipt.png", data, content_type)})


def test_health(api):
    assert api.client.get("/health").json() == {"status": "healthy"}


def test_upload_runs_pipeline_and_returns_envelope(api):
    resp = _upload(api)
    assert resp.status_code == 200
    body = resp.json()
    assert body["isSuccess"] is True
    assert body["message"] == "Receipt processed and stored successfully"
    receipt = body["data"]
    assert receipt["userId"] == "user_a"
    assert receipt["merchant"] == "Acme"
    assert Decimal(receipt["amount"]) == Decimal("12.50")
    assert receipt["date"] == "2024-01-01"
    assert receipt["isVerified"] is False
    assert receipt["originalFile"].startswith("processed/user_a/")
    assert receipt["originalFile"].endswith(".png")


def test_upload_rejects_bad_files(api):
    resp = _upload(api, data=b"GIF89a", content_type="image/gif")
    assert resp.status_code == 400
    assert resp.json() == {"isSuccess": False, "message": "Only JPG and PNG files are supported"}

    resp = _upload(api, data=b"0" * (10 * 1024 * 1024 + 1))
    assert resp.status_code == 400
    assert resp.json()["message"] == "File size exceeds 10MB limit"
    assert api.extractor.calls == []


def test_upload_with_invalid_extraction_is_422(api):
    api.extractor.payload = {"merchant": "A", "amount": 0, "date": "2024-01-01", "category": "food"}
    resp = _upload(api)
    assert resp.status_code == 422
    body = resp.json()
    assert body["isSuccess"] is False
    assert {e["field"] for e in body["errors"]} == {"merchant", "amount"}


def test_process_receipt_endpoint(api):
    write_object(api.storage, "pending/user_a/42.png", PNG)
    resp = api.client.post("/api/process-receipt", json={"filePath": "pending/user_a/42.png", "userId": "user_a"})
    assert resp.status_code == 200
    assert resp.json()["data"]["originalFile"] == "processed/user_a/42.png"


def test_process_receipt_validation(api):
    resp = api.client.post("/api/process-receipt", json={"filePath": "pending/user_a/1.png"})
    assert resp.status_code == 400
    assert resp.json() == {"isSuccess": False, "message": "Missing required parameters"}

    resp = api.client.post("/api/process-receipt", json={"filePath": "pending/user_b/1.png", "userId": "user_b"})
    assert resp.status_code == 403

    resp = api.client.post("/api/process-receipt", json={"filePath": "pending/user_a/missing.png", "userId": "user_a"})
    assert resp.status_code == 502
    assert resp.json()["message"] == "Failed to download receipt image"


def test_list_get_and_ownership(api):
    receipt_id = _upload(api).json()["data"]["id"]

    listed = api.client.get("/receipts").json()
    assert [r["id"] for r in listed["data"]] == [receipt_id]
    assert api.client.get(f"/receipts/{receipt_id}").status_code == 200

    api.user["id"] = "user_b"
    resp = api.client.get(f"/receipts/{receipt_id}")
    assert resp.status_code == 404
    assert resp.json() == {"isSuccess": False, "message": "Receipt not found"}
    assert api.client.get("/receipts").json()["data"] == []
    # Deleting someone else's receipt is a silent no-op
    assert api.client.delete(f"/receipts/{receipt_id}").status_code == 200

    api.user["id"] = "user_a"
    assert api.client.get(f"/receipts/{receipt_id}").status_code == 200


def test_patch_uses_optimistic_lock(api):
    created = _upload(api).json()["data"]
    token = created["updatedAt"]

    first = api.client.patch(f"/receipts/{created['id']}", json={"merchant": "Acme Corp", "expectedUpdatedAt": token})
    assert first.status_code == 200
    assert first.json()["data"]["merchant"] == "Acme Corp"
    assert first.json()["data"]["updatedAt"] != token

    stale = api.client.patch(f"/receipts/{created['id']}", json={"merchant": "Late Writer", "expectedUpdatedAt": token})
    assert stale.status_code == 409
    assert stale.json()["message"] == "Failed to update receipt. It may have been modified by another process."
    assert api.client.get(f"/receipts/{created['id']}").json()["data"]["merchant"] == "Acme Corp"


def test_patch_validation_errors(api):
    created = _upload(api).json()["data"]
    future = (utcnow().date() + dt.timedelta(days=2)).isoformat()
    resp = api.client.patch(
        f"/receipts/{created['id']}",
        json={"amount": -1, "date": future, "expectedUpdatedAt": created["updatedAt"]},
    )
    assert resp.status_code == 422
    fields = {e["field"]: e["message"] for e in resp.json()["errors"]}
    assert fields == {"amount": "Amount must be positive", "date": "Date cannot be in the future"}

    resp = api.client.patch(f"/receipts/{created['id']}", json={"isVerified": False, "expectedUpdatedAt": created["updatedAt"]})
    assert resp.status_code == 422

    resp = api.client.patch(f"/receipts/{created['id']}", json={"merchant": "No token"})
    assert resp.status_code == 422
    assert [e["field"] for e in resp.json()["errors"]] == ["expectedUpdatedAt"]


def test_patch_unknown_receipt_is_404(api):
    resp = api.client.patch("/receipts/nope", json={"merchant": "Ghost", "expectedUpdatedAt": "2024-01-01T00:00:00"})
    assert resp.status_code == 404


def test_verify_then_chart(api):
    created = _upload(api).json()["data"]
    unverified_chart = api.client.get("/receipts/chart").json()
    assert unverified_chart["data"] == []

    resp = api.client.post(
        f"/receipts/{created['id']}/verify",
        json={"category": "food", "expectedUpdatedAt": created["updatedAt"]},
    )
    assert resp.status_code == 200
    verified = resp.json()["data"]
    assert verified["isVerified"] is True
    assert verified["category"] == "food"
    assert verified["updatedAt"] != created["updatedAt"]

    chart = api.client.get("/receipts/chart").json()
    assert chart["data"] == [{"name": "Food", "value": 12.5, "color": "#22c55e"}]

    again = api.client.post(f"/receipts/{created['id']}/verify", json={"expectedUpdatedAt": created["updatedAt"]})
    assert again.status_code == 409


def test_verify_with_invalid_field_is_422(api):
    created = _upload(api).json()["data"]
    resp = api.client.post(
        f"/receipts/{created['id']}/verify",
        json={"merchant": "A", "expectedUpdatedAt": created["updatedAt"]},
    )
    assert resp.status_code == 422
    assert resp.json()["errors"] == [{"field": "merchant", "message": "Merchant name must be at least 2 characters"}]


def test_image_url_and_signed_download(api):
    created = _upload(api).json()["data"]
    resp = api.client.get(f"/receipts/{created['id']}/image-url")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["expiresIn"] == 3600

    download = api.client.get(data["url"])
    assert download.status_code == 200
    assert download.content == PNG

    tampered = api.client.get(data["url"].replace("sig=", "sig=x"))
    assert tampered.status_code == 401


def test_delete(api):
    receipt_id = _upload(api).json()["data"]["id"]
    resp = api.client.delete(f"/receipts/{receipt_id}")
    assert resp.json() == {"isSuccess": True, "message": "Receipt deleted successfully"}
    assert api.client.get(f"/receipts/{receipt_id}").status_code == 404


def test_patch_with_huge_amount_is_422(api):
    created = _upload(api).json()["data"]
    resp = api.client.patch(
        f"/receipts/{created['id']}",
        json={"amount": "1E+100000", "expectedUpdatedAt": created["updatedAt"]},
    )
    assert resp.status_code == 422
    assert resp.json()["errors"] == [{"field": "amount", "message": "Amount cannot exceed 100,000"}]
