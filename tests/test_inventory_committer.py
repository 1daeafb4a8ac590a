from __future__ import annotations

import asyncio
import json
from datetime import date
from decimal import Decimal
from pathlib import Path

import httpx
import pytest

from larder.domain.errors import CommitError
from larder.domain.receipt import CommitLine, CommitOptions
from larder.runtime.inventory_committer import (
    HttpInventoryCommitter,
    JsonlInventoryCommitter,
    create_committer,
)
from larder.runtime.settings import IngestSettings


def _line(item_id: str, ref: str | None, name: str, total: str = "3.99") -> CommitLine:
    return CommitLine(
        item_id=item_id,
        product_ref=ref,
        display_name=name,
        quantity=Decimal("1"),
        resolved_category="dairy",
        total_price=Decimal(total),
        storage_location="fridge",
    )


def _ledger(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


def test_jsonl_committer_appends_one_entry_per_line(tmp_path: Path) -> None:
    ledger = tmp_path / "inventory" / "entries.jsonl"
    ids = iter(["e1", "e2"])
    committer = JsonlInventoryCommitter(ledger, id_factory=lambda: next(ids))
    lines = [_line("i1", "p-milk", "Milk"), _line("i2", None, "Farm Eggs (12)", "6.49")]

    summary = asyncio.run(committer.commit("r1", lines, CommitOptions(purchase_date=date(2026, 3, 14))))

    assert [entry.entry_id for entry in summary.added] == ["e1", "e2"]
    assert summary.total_amount_spent == Decimal("10.48")
    entries = _ledger(ledger)
    assert entries[0]["productRef"] == "p-milk"
    assert entries[0]["autoCreated"] is False
    assert entries[0]["purchaseDate"] == "2026-03-14"
    assert entries[1]["productRef"] == "local:farm-eggs-12"
    assert entries[1]["autoCreated"] is True


def test_manual_item_without_auto_create_fails_whole_batch(tmp_path: Path) -> None:
    ledger = tmp_path / "entries.jsonl"
    committer = JsonlInventoryCommitter(ledger)
    lines = [_line("i1", "p-milk", "Milk"), _line("i2", None, "Farm Eggs")]

    with pytest.raises(CommitError, match="Farm Eggs"):
        asyncio.run(committer.commit("r1", lines, CommitOptions(auto_create_products=False)))
    assert not ledger.exists()


def test_forced_add_keeps_what_it_can(tmp_path: Path) -> None:
    ledger = tmp_path / "entries.jsonl"
    committer = JsonlInventoryCommitter(ledger)
    lines = [_line("i1", "p-milk", "Milk"), _line("i2", None, "Farm Eggs")]

    summary = asyncio.run(
        committer.commit("r1", lines, CommitOptions(auto_create_products=False, forced_add=True))
    )

    assert [entry.item_id for entry in summary.added] == ["i1"]
    assert [entry.item_id for entry in summary.failed] == ["i2"]
    assert len(_ledger(ledger)) == 1


def test_unwritable_ledger_is_a_commit_error(tmp_path: Path) -> None:
    blocker = tmp_path / "inventory"
    blocker.write_text("not a directory")
    committer = JsonlInventoryCommitter(blocker / "entries.jsonl")

    with pytest.raises(CommitError):
        asyncio.run(committer.commit("r1", [_line("i1", "p-milk", "Milk")], CommitOptions()))


def test_http_committer_posts_batch() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/inventory/batch"
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(
            200,
            json={
                "addedItems": [
                    {"id": "e1", "itemId": "i1", "productName": "Milk", "quantity": "1", "totalPrice": "3.99"}
                ],
                "failedItems": [],
            },
        )

    committer = HttpInventoryCommitter("http://inventory.test/", transport=httpx.MockTransport(handler))

    summary = asyncio.run(committer.commit("r1", [_line("i1", "p-milk", "Milk")], CommitOptions()))

    assert summary.receipt_id == "r1"
    assert summary.added[0].entry_id == "e1"
    assert seen[0]["items"][0]["productName"] == "Milk"
    assert seen[0]["autoCreateProducts"] is True


def test_http_committer_maps_failures_to_commit_error() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "database offline"})

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    for handler, message in ((refuse, "database offline"), (unreachable, "unavailable")):
        committer = HttpInventoryCommitter("http://inventory.test", transport=httpx.MockTransport(handler))
        with pytest.raises(CommitError, match=message):
            asyncio.run(committer.commit("r1", [_line("i1", "p-milk", "Milk")], CommitOptions()))


@pytest.mark.parametrize(
    "reply",
    [
        {"text": "OK"},
        {"json": {"addedItems": [{"itemId": "i1"}]}},
        {"json": ["not", "a", "summary"]},
    ],
)
def test_http_committer_unreadable_summary_is_commit_error(reply: dict) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, **reply)

    committer = HttpInventoryCommitter("http://inventory.test", transport=httpx.MockTransport(handler))

    with pytest.raises(CommitError, match="unreadable summary"):
        asyncio.run(committer.commit("r1", [_line("i1", "p-milk", "Milk")], CommitOptions()))


def test_create_committer_prefers_configured_service(data_root: Path) -> None:
    assert isinstance(create_committer(IngestSettings()), JsonlInventoryCommitter)
    remote = create_committer(IngestSettings(inventory_url="http://inventory.test"))
    assert isinstance(remote, HttpInventoryCommitter)
