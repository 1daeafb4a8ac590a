"""Pure per-item resolution operations and progress metrics.

Both the client-held validation engine and the service's item-update endpoint
mutate items through these functions, so the rules live in one place:

- selecting a match always leaves the item VALIDATED with exactly one match
- skipping clears the match
- editing never changes the resolution
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from larder.domain.errors import ValidationError
from larder.domain.receipt import (
    CandidateMatch,
    CommitLine,
    DetectedLineItem,
    ItemPatch,
    ReceiptRecord,
)
from larder.receipt.item_categories import CategoryRuleLayers, default_storage_location, resolve_category

AVERAGE_PROCESSING_SECONDS = 30


def select_match(item: DetectedLineItem, product_ref: str | None, display_name: str | None = None) -> None:
    """Resolve the item with one of its candidates, or a manual match.

    A reference that is not among the candidates is only accepted together
    with a display name; ``product_ref=None`` with a name is a manual entry
    (e.g. unbarcoded produce).
    """
    candidate = item.find_candidate(product_ref) if product_ref is not None else None
    if candidate is None:
        if not display_name or not display_name.strip():
            raise ValidationError(f"Item {item.id} has no candidate {product_ref!r}; a display name is required")
        candidate = CandidateMatch(product_ref=product_ref, display_name=display_name.strip(), confidence=1.0)
    item.selected_match = candidate
    item.resolution = "VALIDATED"


def skip_item(item: DetectedLineItem) -> None:
    item.selected_match = None
    item.resolution = "SKIPPED"


def reset_item(item: DetectedLineItem) -> None:
    """Put an item back to PENDING (server-side correction only)."""
    item.selected_match = None
    item.resolution = "PENDING"


def validate_patch(patch: ItemPatch, today: date | None = None) -> None:
    """Reject corrections that could never be committed."""
    if patch.detected_name is not None and not patch.detected_name.strip():
        raise ValidationError("Product name cannot be empty")
    if patch.quantity is not None and patch.quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")
    for label, price in (("Unit price", patch.unit_price), ("Total price", patch.total_price)):
        if price is not None and price < 0:
            raise ValidationError(f"{label} cannot be negative")
    if patch.expiry_date is not None and patch.expiry_date < (today or date.today()):
        raise ValidationError("Expiry date cannot be in the past")


def apply_patch(item: DetectedLineItem, patch: ItemPatch, today: date | None = None) -> None:
    validate_patch(patch, today=today)
    if patch.detected_name is not None:
        item.detected_name = patch.detected_name.strip()
    if patch.quantity is not None:
        item.quantity = patch.quantity
    if patch.unit_price is not None:
        item.unit_price = patch.unit_price
    if patch.total_price is not None:
        item.total_price = patch.total_price
    if patch.expiry_date is not None:
        item.expiry_date = patch.expiry_date
    if patch.storage_location is not None:
        item.storage_location = patch.storage_location.strip() or None
    if patch.category is not None:
        item.category = patch.category.strip() or None


def build_commit_line(item: DetectedLineItem, rule_layers: CategoryRuleLayers | None = None) -> CommitLine:
    """Turn a VALIDATED item into the committer's input."""
    match = item.selected_match
    if item.resolution != "VALIDATED" or match is None:
        raise ValidationError(f"Item {item.id} is not validated")

    category = item.category or resolve_category([match.display_name, item.detected_name], rule_layers=rule_layers)
    storage = item.storage_location or default_storage_location(category, rule_layers=rule_layers)
    return CommitLine(
        item_id=item.id,
        product_ref=match.product_ref,
        display_name=match.display_name,
        quantity=item.quantity,
        resolved_category=category,
        unit_price=item.unit_price,
        total_price=item.total_price,
        expiry_date=item.expiry_date,
        storage_location=storage,
    )


@dataclass(frozen=True)
class ProgressMetrics:
    total_items: int
    validated_items: int
    skipped_items: int

    @property
    def resolved_items(self) -> int:
        return self.validated_items + self.skipped_items

    @property
    def validation_progress(self) -> int:
        """Resolved share of items as a 0-100 percentage."""
        if self.total_items == 0:
            return 0
        return round(self.resolved_items * 100 / self.total_items)


def progress_metrics(items: Sequence[DetectedLineItem]) -> ProgressMetrics:
    return ProgressMetrics(
        total_items=len(items),
        validated_items=sum(1 for item in items if item.resolution == "VALIDATED"),
        skipped_items=sum(1 for item in items if item.resolution == "SKIPPED"),
    )


def estimated_time_remaining(record: ReceiptRecord, now: datetime) -> int | None:
    """Seconds left in the average processing window, for PROCESSING receipts only."""
    if record.status != "PROCESSING":
        return None
    elapsed = int((now - record.created_at).total_seconds())
    return max(0, AVERAGE_PROCESSING_SECONDS - elapsed)


def status_message(record: ReceiptRecord, metrics: ProgressMetrics) -> str:
    if record.status == "PROCESSING":
        return "Receipt is being analyzed..."
    if record.status == "FAILED":
        return "Receipt analysis failed"
    if record.status == "VALIDATED":
        return "Receipt committed to inventory"
    if metrics.total_items == 0:
        return "Receipt analyzed, no items detected"
    return f"Review in progress ({metrics.resolved_items}/{metrics.total_items} items resolved)"


def parse_decimal(value: object, field_name: str) -> Decimal | None:
    """Parse a wire/disk number into a Decimal, rejecting garbage with ValidationError."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise ValidationError(f"Invalid number for {field_name}: {value!r}") from exc
