"""Apply recognition worker results to a stored receipt."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Literal

from larder.domain.errors import InvalidTransitionError, ReceiptCommittedError
from larder.domain.receipt import ReceiptRecord
from larder.receipt.serialization import parse_recognition_items
from larder.runtime.logging import get_logger
from larder.runtime.receipt_store import ReceiptStore

logger = get_logger(__name__)

RecognitionStatus = Literal["COMPLETED", "FAILED"]


@dataclass(frozen=True)
class RecognitionResult:
    """What the worker reported for one receipt."""

    status: RecognitionStatus
    merchant_name: str | None = None
    merchant_address: str | None = None
    total_amount: Decimal | None = None
    purchase_date: date | None = None
    error_message: str | None = None
    items: tuple[Mapping[str, Any], ...] = field(default_factory=tuple)


def apply_recognition_result(
    store: ReceiptStore,
    receipt_id: str,
    result: RecognitionResult,
    id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
) -> ReceiptRecord:
    """Move a receipt out of PROCESSING with the worker's outcome.

    A repeated callback replaces the previous outcome only while nothing has
    been reviewed. Failed receipts need a re-upload and committed receipts are
    immutable, so both refuse it.
    """
    analysis = store.get(receipt_id)
    record = analysis.receipt
    if record.is_committed:
        raise ReceiptCommittedError(f"Receipt {receipt_id} is already in inventory")
    if record.status == "FAILED":
        raise InvalidTransitionError(f"Receipt {receipt_id} failed ({record.error_message}); upload it again")
    if record.status == "COMPLETED":
        decided = sum(1 for item in analysis.items if item.is_resolved)
        if decided:
            raise InvalidTransitionError(
                f"Receipt {receipt_id} is under review with {decided} item(s) decided; recognition result refused"
            )
        logger.warning("Receipt %s already COMPLETED; replacing recognition result", receipt_id)

    if result.status == "FAILED":
        record.status = "FAILED"
        record.error_message = result.error_message or "Recognition failed"
        store.save(record, [])
        logger.warning("Recognition failed for receipt %s: %s", receipt_id, record.error_message)
        return record

    items = parse_recognition_items(receipt_id, list(result.items), id_factory=id_factory)
    record.status = "COMPLETED"
    record.error_message = None
    record.merchant_name = result.merchant_name
    record.merchant_address = result.merchant_address
    record.total_amount = result.total_amount
    record.purchase_date = result.purchase_date
    store.save(record, items)
    logger.info("Recognition completed for receipt %s: %d items", receipt_id, len(items))
    return record
