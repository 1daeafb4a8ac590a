"""Exactly-once commit of a reviewed receipt into the inventory."""

from __future__ import annotations

from larder.domain.errors import (
    CommitInProgressError,
    CommitNotRecordedError,
    InvalidTransitionError,
    ReceiptCommittedError,
)
from larder.domain.receipt import CommitOptions, CommitSummary
from larder.receipt.item_categories import CategoryRuleLayers
from larder.receipt.phases import HIGH_CONFIDENCE
from larder.receipt.validation_engine import InventoryCommitter, ValidationEngine
from larder.runtime.logging import get_logger
from larder.runtime.receipt_store import ReceiptStore

logger = get_logger(__name__)


class ReceiptCommitService:
    """Re-derives the review session from stored items and commits it.

    At most one commit per receipt is in flight; the record only becomes
    VALIDATED once the committer has succeeded. Receipts the committer
    accepted but whose record could not be saved are refused for the
    lifetime of the service.
    """

    def __init__(
        self,
        store: ReceiptStore,
        committer: InventoryCommitter,
        threshold: float = HIGH_CONFIDENCE,
        rule_layers: CategoryRuleLayers | None = None,
    ) -> None:
        self.store = store
        self.committer = committer
        self.threshold = threshold
        self.rule_layers = rule_layers
        self._in_flight: set[str] = set()
        self._unrecorded: set[str] = set()

    def is_in_flight(self, receipt_id: str) -> bool:
        return receipt_id in self._in_flight

    async def commit(self, receipt_id: str, options: CommitOptions | None = None) -> CommitSummary:
        options = options or CommitOptions()
        if receipt_id in self._in_flight:
            raise CommitInProgressError(f"Receipt {receipt_id} is already being added to inventory")
        if receipt_id in self._unrecorded:
            raise ReceiptCommittedError(f"Receipt {receipt_id} is already in inventory")

        analysis = self.store.get(receipt_id)
        record = analysis.receipt
        if record.is_committed:
            raise ReceiptCommittedError(f"Receipt {receipt_id} is already in inventory")
        if record.status != "COMPLETED":
            raise InvalidTransitionError(f"Receipt {receipt_id} is {record.status}; nothing to review yet")

        self._in_flight.add(receipt_id)
        try:
            engine = ValidationEngine.resume(
                receipt_id, analysis.items, threshold=self.threshold, rule_layers=self.rule_layers
            )
            summary = await engine.commit(self.committer, options)

            record.status = "VALIDATED"
            if record.purchase_date is None and options.purchase_date is not None:
                record.purchase_date = options.purchase_date
            try:
                self.store.save(record, analysis.items)
            except OSError as exc:
                self._unrecorded.add(receipt_id)
                logger.error("Receipt %s is in inventory but its record was not saved: %s", receipt_id, exc)
                raise CommitNotRecordedError(
                    f"Receipt {receipt_id} was added to inventory but its record could not be saved: {exc}"
                ) from exc
        finally:
            self._in_flight.discard(receipt_id)

        logger.info(
            "Receipt %s added to inventory: %d items, %s spent",
            receipt_id,
            len(summary.added),
            summary.total_amount_spent,
        )
        return summary
