"""Server-side item review: corrections and resolution changes on stored items."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from larder.domain.errors import InvalidTransitionError, ReceiptCommittedError, ValidationError
from larder.domain.receipt import DetectedLineItem, ItemPatch, ResolutionStatus
from larder.receipt import resolution
from larder.runtime.logging import get_logger
from larder.runtime.receipt_store import ReceiptStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class ItemUpdateRequest:
    """Partial update of one detected line item.

    ``selected_product_ref``/``selected_display_name`` select a match;
    ``resolution`` may force SKIPPED, PENDING or VALIDATED (top candidate).
    """

    receipt_id: str
    item_id: str
    patch: ItemPatch = field(default_factory=ItemPatch)
    selected_product_ref: str | None = None
    selected_display_name: str | None = None
    resolution: ResolutionStatus | None = None


def _find_item(items: list[DetectedLineItem], item_id: str, receipt_id: str) -> DetectedLineItem:
    for item in items:
        if item.id == item_id:
            return item
    raise ValidationError(f"Unknown item {item_id!r} for receipt {receipt_id}")


def run_item_update(
    request: ItemUpdateRequest,
    store: ReceiptStore,
    today: date | None = None,
) -> DetectedLineItem:
    analysis = store.get(request.receipt_id)
    record = analysis.receipt
    if record.is_committed:
        raise ReceiptCommittedError(f"Receipt {record.id} is already in inventory")
    if record.status != "COMPLETED":
        raise InvalidTransitionError(
            f"Receipt {record.id} is {record.status}; items can only be reviewed once analyzed"
        )

    item = _find_item(analysis.items, request.item_id, request.receipt_id)
    resolution.apply_patch(item, request.patch, today=today)

    wants_selection = request.selected_product_ref is not None or request.selected_display_name is not None
    if request.resolution == "SKIPPED":
        resolution.skip_item(item)
    elif request.resolution == "PENDING":
        resolution.reset_item(item)
    elif wants_selection:
        resolution.select_match(item, request.selected_product_ref, request.selected_display_name)
    elif request.resolution == "VALIDATED" and item.selected_match is None:
        top = item.top_candidate
        if top is None:
            raise ValidationError(f"Item {item.id} has no candidate; choose a product to validate it")
        resolution.select_match(item, top.product_ref, top.display_name)

    store.save(record, analysis.items)
    logger.debug("Receipt %s item %s now %s", record.id, item.id, item.resolution)
    return item
