"""Data models for receipt ingestion."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Literal

ReceiptStatus = Literal["PROCESSING", "COMPLETED", "FAILED", "VALIDATED"]
ResolutionStatus = Literal["PENDING", "VALIDATED", "SKIPPED"]

RECEIPT_STATUSES: tuple[ReceiptStatus, ...] = ("PROCESSING", "COMPLETED", "FAILED", "VALIDATED")
RESOLUTION_STATUSES: tuple[ResolutionStatus, ...] = ("PENDING", "VALIDATED", "SKIPPED")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CandidateMatch:
    """A catalog product proposed for a detected line item."""

    product_ref: str | None
    display_name: str
    confidence: float = 0.0
    image_ref: str | None = None
    brand: str | None = None

    @property
    def is_manual(self) -> bool:
        # Manual matches carry no catalog reference and need product auto-creation.
        return self.product_ref is None


@dataclass
class DetectedLineItem:
    """One product line extracted from a receipt by the recognition worker."""

    id: str
    receipt_id: str
    detected_name: str
    confidence: float
    quantity: Decimal = Decimal("1")
    unit_price: Decimal | None = None
    total_price: Decimal | None = None
    candidate_matches: list[CandidateMatch] = field(default_factory=list)
    resolution: ResolutionStatus = "PENDING"
    selected_match: CandidateMatch | None = None
    expiry_date: date | None = None
    storage_location: str | None = None
    category: str | None = None  # e.g. "dairy"; set by manual edit

    @property
    def is_resolved(self) -> bool:
        return self.resolution != "PENDING"

    @property
    def top_candidate(self) -> CandidateMatch | None:
        return self.candidate_matches[0] if self.candidate_matches else None

    def find_candidate(self, product_ref: str) -> CandidateMatch | None:
        for candidate in self.candidate_matches:
            if candidate.product_ref == product_ref:
                return candidate
        return None


@dataclass
class ReceiptRecord:
    """Persistent receipt header, created on upload."""

    id: str
    owner_id: str
    image_ref: str
    status: ReceiptStatus = "PROCESSING"
    merchant_name: str | None = None
    merchant_address: str | None = None
    total_amount: Decimal | None = None
    purchase_date: date | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_committed(self) -> bool:
        return self.status == "VALIDATED"

    def touch(self) -> None:
        self.updated_at = utcnow()


@dataclass(frozen=True)
class ItemPatch:
    """Manual correction of a detected line item. ``None`` means unchanged."""

    detected_name: str | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    total_price: Decimal | None = None
    expiry_date: date | None = None
    storage_location: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class ReceiptAnalysis:
    """Full recognition results for one receipt."""

    receipt: ReceiptRecord
    items: list[DetectedLineItem]


@dataclass(frozen=True)
class UploadResult:
    receipt_id: str
    status: ReceiptStatus


@dataclass(frozen=True)
class ReceiptStatusReport:
    """Progress snapshot served to pollers."""

    receipt_id: str
    status: ReceiptStatus
    total_items: int
    validated_items: int
    validation_progress: int  # 0-100
    ready_for_inventory: bool
    added_to_inventory: bool
    message: str
    estimated_time_remaining: int | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class CommitLine:
    """One validated item handed to the inventory committer."""

    item_id: str
    product_ref: str | None
    display_name: str
    quantity: Decimal
    resolved_category: str
    unit_price: Decimal | None = None
    total_price: Decimal | None = None
    expiry_date: date | None = None
    storage_location: str | None = None

    @property
    def line_total(self) -> Decimal:
        if self.total_price is not None:
            return self.total_price
        if self.unit_price is not None:
            return self.unit_price * self.quantity
        return Decimal("0")


@dataclass(frozen=True)
class CommitOptions:
    purchase_date: date | None = None
    auto_create_products: bool = True
    forced_add: bool = False


@dataclass(frozen=True)
class AddedEntry:
    entry_id: str
    item_id: str
    product_name: str
    quantity: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class FailedEntry:
    item_id: str
    product_name: str
    error: str


@dataclass(frozen=True)
class CommitSummary:
    """What the inventory committer did with a commit request."""

    receipt_id: str
    added: list[AddedEntry] = field(default_factory=list)
    failed: list[FailedEntry] = field(default_factory=list)

    @property
    def total_amount_spent(self) -> Decimal:
        return sum((entry.total_price for entry in self.added), Decimal("0"))
