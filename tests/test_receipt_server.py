from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from larder.runtime.inventory_committer import JsonlInventoryCommitter
from larder.runtime.paths import ProjectPaths
from larder.runtime.receipt_server import create_app
from larder.runtime.receipt_store import ReceiptStore
from larder.runtime.settings import IngestSettings


class FakeQueue:
    def __init__(self) -> None:
        self.enqueued: list[str] = []

    async def enqueue(self, receipt_id: str, image: bytes, content_type: str) -> None:
        self.enqueued.append(receipt_id)


WORKER_ITEMS = [
    {
        "id": "i1",
        "name": "LACT 2% MILK",
        "confidence": 0.95,
        "totalPrice": 3.99,
        "candidates": [{"productRef": "p-milk", "productName": "Lactantia 2% Milk 2L", "confidence": 0.95}],
    },
    {
        "id": "i2",
        "name": "VILLAGGIO BREAD",
        "confidence": 0.9,
        "totalPrice": 2.49,
        "candidates": [{"productRef": "p-bread", "productName": "Villaggio White Bread", "confidence": 0.9}],
    },
    {
        "id": "i3",
        "name": "BANANAS",
        "confidence": 0.85,
        "totalPrice": 1.5,
        "candidates": [{"productRef": "p-banana", "productName": "Bananas", "confidence": 0.85}],
    },
    {
        "id": "i4",
        "name": "CHKN BREAST",
        "confidence": 0.8,
        "totalPrice": 12.0,
        "candidates": [{"productRef": "p-chicken", "productName": "Chicken Breast", "confidence": 0.8}],
    },
    {"id": "i5", "name": "XQZ 4421", "confidence": 0.3, "totalPrice": 4.0},
]


@pytest.fixture
def ledger(tmp_path: Path) -> Path:
    return tmp_path / "inventory" / "entries.jsonl"


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def client(tmp_path: Path, ledger: Path, queue: FakeQueue, rule_layers):
    app = create_app(
        store=ReceiptStore(ProjectPaths(root=tmp_path)),
        queue=queue,
        committer=JsonlInventoryCommitter(ledger),
        settings=IngestSettings(),
        rule_layers=rule_layers,
    )
    with TestClient(app) as test_client:
        yield test_client


def _upload(client: TestClient, png_bytes: bytes) -> str:
    response = client.post("/receipt/upload", files={"file": ("receipt.png", png_bytes, "image/png")})
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "PROCESSING"
    return body["receiptId"]


def _recognized(client: TestClient, png_bytes: bytes) -> str:
    receipt_id = _upload(client, png_bytes)
    response = client.post(
        f"/receipt/{receipt_id}/recognition",
        json={"status": "COMPLETED", "merchantName": "Metro", "totalAmount": "23.98", "items": WORKER_ITEMS},
    )
    assert response.status_code == 200
    assert response.json() == {"receiptId": receipt_id, "status": "COMPLETED"}
    return receipt_id


def test_receipt_goes_from_upload_to_inventory(
    client: TestClient, queue: FakeQueue, ledger: Path, png_bytes: bytes
) -> None:
    receipt_id = _upload(client, png_bytes)
    assert queue.enqueued == [receipt_id]

    processing = client.get(f"/receipt/{receipt_id}/status").json()
    assert processing["status"] == "PROCESSING"
    assert 0 <= processing["estimatedTimeRemaining"] <= 30

    client.post(f"/receipt/{receipt_id}/recognition", json={"status": "COMPLETED", "items": WORKER_ITEMS})
    completed = client.get(f"/receipt/{receipt_id}/status").json()
    assert completed["totalItems"] == 5
    assert completed["readyForInventory"] is False
    assert completed["estimatedTimeRemaining"] is None

    for item_id in ("i1", "i2", "i3", "i4"):
        response = client.put(f"/receipt/{receipt_id}/items/{item_id}", json={"resolution": "VALIDATED"})
        assert response.status_code == 200
        assert response.json()["resolution"] == "VALIDATED"
    client.put(f"/receipt/{receipt_id}/items/i5", json={"resolution": "SKIPPED"})

    ready = client.get(f"/receipt/{receipt_id}/status").json()
    assert ready["readyForInventory"] is True
    assert ready["validationProgress"] == 100

    response = client.post(f"/receipt/{receipt_id}/add-to-inventory", json={"purchaseDate": "2026-03-14"})
    assert response.status_code == 200
    summary = response.json()["summary"]
    assert summary["successfulItems"] == 4
    assert summary["failedItems"] == 0
    assert summary["totalAmountSpent"] == "19.98"

    entries = [json.loads(line) for line in ledger.read_text().splitlines()]
    assert [entry["itemId"] for entry in entries] == ["i1", "i2", "i3", "i4"]
    assert entries[0]["category"] == "dairy"
    assert entries[0]["storageLocation"] == "fridge"

    results = client.get(f"/receipt/{receipt_id}/results").json()
    assert results["receipt"]["status"] == "VALIDATED"
    assert results["receipt"]["purchaseDate"] == "2026-03-14"
    assert client.get(f"/receipt/{receipt_id}/status").json()["addedToInventory"] is True


def test_committed_receipt_is_immutable(client: TestClient, ledger: Path, png_bytes: bytes) -> None:
    receipt_id = _recognized(client, png_bytes)
    client.put(f"/receipt/{receipt_id}/items/i1", json={"resolution": "VALIDATED"})
    for item_id in ("i2", "i3", "i4"):
        client.put(f"/receipt/{receipt_id}/items/{item_id}", json={"resolution": "SKIPPED"})
    assert client.post(f"/receipt/{receipt_id}/add-to-inventory").status_code == 200

    again = client.post(f"/receipt/{receipt_id}/add-to-inventory")
    assert again.status_code == 409
    assert again.json()["kind"] == "RECEIPT_COMMITTED"
    assert client.delete(f"/receipt/{receipt_id}").status_code == 409
    assert client.put(f"/receipt/{receipt_id}/items/i5", json={"resolution": "SKIPPED"}).status_code == 409
    assert len(ledger.read_text().splitlines()) == 1


def test_commit_guards(client: TestClient, ledger: Path, png_bytes: bytes) -> None:
    receipt_id = _recognized(client, png_bytes)

    nothing = client.post(f"/receipt/{receipt_id}/add-to-inventory")
    assert nothing.status_code == 400
    assert nothing.json()["kind"] == "NOTHING_TO_COMMIT"

    client.put(f"/receipt/{receipt_id}/items/i5", json={"selectedDisplayName": "Farm Eggs"})
    incomplete = client.post(f"/receipt/{receipt_id}/add-to-inventory")
    assert incomplete.status_code == 409
    assert incomplete.json()["kind"] == "PHASE_INCOMPLETE"
    assert not ledger.exists()


def test_manual_item_without_auto_create_keeps_receipt_open(client: TestClient, png_bytes: bytes) -> None:
    receipt_id = _recognized(client, png_bytes)
    for item_id in ("i1", "i2", "i3", "i4"):
        client.put(f"/receipt/{receipt_id}/items/{item_id}", json={"resolution": "SKIPPED"})
    client.put(f"/receipt/{receipt_id}/items/i5", json={"selectedDisplayName": "Farm Eggs"})

    response = client.post(f"/receipt/{receipt_id}/add-to-inventory", json={"autoCreateProducts": False})

    assert response.status_code == 502
    assert response.json()["kind"] == "COMMIT_FAILED"
    assert client.get(f"/receipt/{receipt_id}/status").json()["status"] == "COMPLETED"


def test_worker_failure_is_reported_verbatim(client: TestClient, png_bytes: bytes) -> None:
    receipt_id = _upload(client, png_bytes)

    client.post(f"/receipt/{receipt_id}/recognition", json={"status": "FAILED", "errorMessage": "OCR timeout"})

    status = client.get(f"/receipt/{receipt_id}/status").json()
    assert status["status"] == "FAILED"
    assert status["errorMessage"] == "OCR timeout"


def test_items_cannot_be_reviewed_while_processing(client: TestClient, png_bytes: bytes) -> None:
    receipt_id = _upload(client, png_bytes)

    response = client.put(f"/receipt/{receipt_id}/items/i1", json={"resolution": "SKIPPED"})

    assert response.status_code == 409
    assert response.json()["kind"] == "INVALID_STATE"


@pytest.mark.parametrize(
    ("method", "path", "kwargs", "status_code", "kind"),
    [
        ("get", "/receipt/missing/status", {}, 404, "NOT_FOUND"),
        ("post", "/receipt/upload", {"files": {"file": ("r.gif", b"GIF89a", "image/gif")}}, 400, "VALIDATION_ERROR"),
        ("post", "/receipt/upload", {"data": {"note": "no file"}}, 400, "VALIDATION_ERROR"),
        ("get", "/receipt/history?limit=500", {}, 400, "VALIDATION_ERROR"),
        ("get", "/receipt/history?status=LOST", {}, 400, "VALIDATION_ERROR"),
    ],
)
def test_errors_use_the_common_payload(
    client: TestClient, method: str, path: str, kwargs: dict, status_code: int, kind: str
) -> None:
    response = getattr(client, method)(path, **kwargs)

    assert response.status_code == status_code
    body = response.json()
    assert body["status"] == "error"
    assert body["kind"] == kind
    assert body["message"]


def test_malformed_item_update_is_a_validation_error(client: TestClient, png_bytes: bytes) -> None:
    receipt_id = _recognized(client, png_bytes)

    for body in ({"quantity": "lots"}, {"unknownField": 1}, {"quantity": "0"}):
        response = client.put(f"/receipt/{receipt_id}/items/i1", json=body)
        assert response.status_code == 400
        assert response.json()["kind"] == "VALIDATION_ERROR"


def test_history_and_delete(client: TestClient, png_bytes: bytes) -> None:
    first = _upload(client, png_bytes)
    second = _recognized(client, png_bytes)

    history = client.get("/receipt/history").json()
    assert {record["id"] for record in history["receipts"]} == {first, second}
    completed = client.get("/receipt/history", params={"status": "COMPLETED"}).json()
    assert [record["id"] for record in completed["receipts"]] == [second]

    assert client.delete(f"/receipt/{first}").status_code == 204
    assert client.get(f"/receipt/{first}/status").status_code == 404


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_late_recognition_callback_for_failed_receipt_is_refused(client: TestClient, png_bytes: bytes) -> None:
    receipt_id = _upload(client, png_bytes)
    client.post(f"/receipt/{receipt_id}/recognition", json={"status": "FAILED", "errorMessage": "OCR timeout"})

    response = client.post(f"/receipt/{receipt_id}/recognition", json={"status": "COMPLETED", "items": WORKER_ITEMS})

    assert response.status_code == 409
    assert response.json()["kind"] == "INVALID_STATE"
    assert client.get(f"/receipt/{receipt_id}/status").json()["status"] == "FAILED"
