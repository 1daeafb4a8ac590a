"""Server-side review, status reporting and exactly-once commit."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from larder.application.receipts.commit import ReceiptCommitService
from larder.application.receipts.recognition import RecognitionResult, apply_recognition_result
from larder.application.receipts.review import ItemUpdateRequest, run_item_update
from larder.application.receipts.status import build_status_report
from larder.domain.errors import (
    CommitError,
    CommitInProgressError,
    CommitNotRecordedError,
    InvalidTransitionError,
    ReceiptCommittedError,
    ValidationError,
)
from larder.domain.receipt import (
    AddedEntry,
    CommitLine,
    CommitOptions,
    CommitSummary,
    DetectedLineItem,
    ItemPatch,
    ReceiptRecord,
)
from larder.runtime.paths import ProjectPaths
from larder.runtime.receipt_store import ReceiptStore


class GatedCommitter:
    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.calls = 0
        self.error: Exception | None = None

    async def commit(self, receipt_id: str, lines: Sequence[CommitLine], options: CommitOptions) -> CommitSummary:
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return CommitSummary(
            receipt_id=receipt_id,
            added=[
                AddedEntry(f"e-{line.item_id}", line.item_id, line.display_name, line.quantity, line.line_total)
                for line in lines
            ],
        )


class FlakyStore(ReceiptStore):
    def __init__(self, paths: ProjectPaths) -> None:
        super().__init__(paths)
        self.fail_next_save = False

    def save(self, record: ReceiptRecord, items: list[DetectedLineItem]) -> None:
        if self.fail_next_save:
            self.fail_next_save = False
            raise OSError("No space left on device")
        super().save(record, items)


@pytest.fixture
def store(tmp_path: Path) -> ReceiptStore:
    return ReceiptStore(ProjectPaths(root=tmp_path))


@pytest.fixture
def completed(store: ReceiptStore, five_items) -> str:
    record = ReceiptRecord(id="r1", owner_id="alice", image_ref="r1.jpg", status="COMPLETED")
    store.create(record)
    store.save(record, five_items)
    return "r1"


def _update(store: ReceiptStore, item_id: str, **kwargs) -> None:
    run_item_update(ItemUpdateRequest(receipt_id="r1", item_id=item_id, **kwargs), store)


def test_status_report_tracks_review_progress(store: ReceiptStore, completed: str) -> None:
    report = build_status_report(store.get(completed))
    assert (report.total_items, report.validated_items, report.validation_progress) == (5, 0, 0)
    assert report.ready_for_inventory is False
    assert report.message == "Review in progress (0/5 items resolved)"

    for item_id in ("i1", "i2", "i3"):
        _update(store, item_id, resolution="VALIDATED")
    report = build_status_report(store.get(completed))
    assert report.validation_progress == 60
    assert report.ready_for_inventory is False

    _update(store, "i4", resolution="SKIPPED")
    assert build_status_report(store.get(completed)).ready_for_inventory is True


def test_estimated_time_remaining_counts_down(store: ReceiptStore) -> None:
    record = ReceiptRecord(id="p1", owner_id="alice", image_ref="p1.jpg")
    store.create(record)
    analysis = store.get("p1")

    assert build_status_report(analysis, now=record.created_at + timedelta(seconds=12)).estimated_time_remaining == 18
    assert build_status_report(analysis, now=record.created_at + timedelta(seconds=90)).estimated_time_remaining == 0


def test_item_update_validates_top_candidate_and_rejects_bare_validate(store: ReceiptStore, completed: str) -> None:
    _update(store, "i1", resolution="VALIDATED")
    item = store.get(completed).items[0]
    assert item.selected_match is not None and item.selected_match.product_ref == "p-milk"

    with pytest.raises(ValidationError):
        _update(store, "i5", resolution="VALIDATED")

    _update(store, "i1", resolution="PENDING")
    assert store.get(completed).items[0].selected_match is None


def test_item_update_back_to_pending_clears_the_decision(store: ReceiptStore, completed: str) -> None:
    _update(store, "i5", selected_display_name="Farm Eggs")
    assert store.get(completed).items[4].resolution == "VALIDATED"

    _update(store, "i5", resolution="PENDING")

    item = store.get(completed).items[4]
    assert item.resolution == "PENDING"
    assert item.selected_match is None
    assert build_status_report(store.get(completed)).validated_items == 0


def test_item_update_edits_without_changing_resolution(store: ReceiptStore, completed: str) -> None:
    _update(store, "i1", resolution="SKIPPED")
    _update(store, "i1", patch=ItemPatch(quantity=Decimal("3")))

    item = store.get(completed).items[0]
    assert item.quantity == Decimal("3")
    assert item.resolution == "SKIPPED"

    with pytest.raises(ValidationError):
        run_item_update(
            ItemUpdateRequest("r1", "i1", patch=ItemPatch(expiry_date=date(2026, 3, 1))),
            store,
            today=date(2026, 3, 14),
        )


def test_second_commit_while_first_in_flight_is_refused(store: ReceiptStore, completed: str) -> None:
    for item_id in ("i1", "i2", "i3", "i4"):
        _update(store, item_id, resolution="VALIDATED")
    committer = GatedCommitter()
    service = ReceiptCommitService(store, committer)

    async def scenario() -> CommitSummary:
        first = asyncio.create_task(service.commit(completed))
        await asyncio.sleep(0)
        assert service.is_in_flight(completed)
        with pytest.raises(CommitInProgressError):
            await service.commit(completed)
        committer.gate.set()
        return await first

    summary = asyncio.run(scenario())

    assert len(summary.added) == 4
    assert committer.calls == 1
    assert store.get_record(completed).status == "VALIDATED"
    assert not service.is_in_flight(completed)
    with pytest.raises(ReceiptCommittedError):
        asyncio.run(service.commit(completed))


def test_failed_commit_leaves_receipt_reviewable(store: ReceiptStore, completed: str) -> None:
    for item_id in ("i1", "i2", "i3", "i4"):
        _update(store, item_id, resolution="VALIDATED")
    committer = GatedCommitter()
    committer.gate.set()
    committer.error = CommitError("inventory offline")
    service = ReceiptCommitService(store, committer)

    with pytest.raises(CommitError):
        asyncio.run(service.commit(completed))

    analysis = store.get(completed)
    assert analysis.receipt.status == "COMPLETED"
    assert sum(1 for item in analysis.items if item.resolution == "VALIDATED") == 4
    assert not service.is_in_flight(completed)


def test_repeated_recognition_callback_replaces_items(store: ReceiptStore) -> None:
    store.create(ReceiptRecord(id="r9", owner_id="alice", image_ref="r9.jpg"))
    first = RecognitionResult(status="COMPLETED", items=({"id": "a", "name": "MILK", "confidence": 0.9},))
    second = RecognitionResult(
        status="COMPLETED",
        merchant_name="Metro",
        items=({"id": "b", "name": "BREAD", "confidence": 0.9}, {"id": "c", "name": "EGGS", "confidence": 0.4}),
    )

    apply_recognition_result(store, "r9", first)
    apply_recognition_result(store, "r9", second)

    analysis = store.get("r9")
    assert analysis.receipt.merchant_name == "Metro"
    assert [item.id for item in analysis.items] == ["b", "c"]


def test_recognition_callback_after_commit_is_refused(store: ReceiptStore) -> None:
    store.create(ReceiptRecord(id="r9", owner_id="alice", image_ref="r9.jpg", status="VALIDATED"))

    with pytest.raises(ReceiptCommittedError):
        apply_recognition_result(store, "r9", RecognitionResult(status="FAILED"))


def test_commit_is_not_repeated_when_record_save_fails(tmp_path: Path, store: ReceiptStore, completed: str) -> None:
    for item_id in ("i1", "i2", "i3", "i4"):
        _update(store, item_id, resolution="VALIDATED")
    flaky = FlakyStore(ProjectPaths(root=tmp_path))
    flaky.fail_next_save = True
    committer = GatedCommitter()
    committer.gate.set()
    service = ReceiptCommitService(flaky, committer)

    with pytest.raises(CommitNotRecordedError, match="No space left"):
        asyncio.run(service.commit(completed))
    with pytest.raises(ReceiptCommittedError):
        asyncio.run(service.commit(completed))

    assert committer.calls == 1
    assert not service.is_in_flight(completed)


def test_recognition_callback_cannot_revive_failed_receipt(store: ReceiptStore) -> None:
    store.create(ReceiptRecord(id="r9", owner_id="alice", image_ref="r9.jpg"))
    apply_recognition_result(store, "r9", RecognitionResult(status="FAILED", error_message="OCR timeout"))

    late = RecognitionResult(status="COMPLETED", items=({"id": "a", "name": "MILK", "confidence": 0.9},))
    with pytest.raises(InvalidTransitionError):
        apply_recognition_result(store, "r9", late)

    analysis = store.get("r9")
    assert analysis.receipt.status == "FAILED"
    assert analysis.receipt.error_message == "OCR timeout"
    assert analysis.items == []


def test_recognition_callback_keeps_decisions_of_receipt_under_review(store: ReceiptStore, completed: str) -> None:
    _update(store, "i1", resolution="SKIPPED")
    late = RecognitionResult(status="COMPLETED", items=({"id": "z", "name": "BREAD", "confidence": 0.9},))

    with pytest.raises(InvalidTransitionError):
        apply_recognition_result(store, completed, late)

    items = store.get(completed).items
    assert [item.id for item in items] == ["i1", "i2", "i3", "i4", "i5"]
    assert items[0].resolution == "SKIPPED"
