"""JSON codec for receipts, items and commit summaries.

The same camelCase documents are used on the wire and in the on-disk store.
Money and quantities are written as decimal strings; readers accept numbers
as well since recognition workers usually send floats.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from larder.domain.errors import ValidationError
from larder.domain.receipt import (
    RECEIPT_STATUSES,
    RESOLUTION_STATUSES,
    AddedEntry,
    CandidateMatch,
    CommitSummary,
    DetectedLineItem,
    FailedEntry,
    ReceiptRecord,
    ReceiptStatusReport,
)
from larder.receipt.resolution import parse_decimal


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _date(value: date | None) -> str | None:
    return None if value is None else value.isoformat()


def parse_date(value: object, field_name: str) -> date | None:
    if value is None or value == "":
        return None
    try:
        # Workers may send a full timestamp; only the calendar date matters.
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise ValidationError(f"Invalid date for {field_name}: {value!r}") from exc


def _confidence(value: object, field_name: str) -> float:
    try:
        score = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid confidence for {field_name}: {value!r}") from exc
    if not 0.0 <= score <= 1.0:
        raise ValidationError(f"Confidence for {field_name} must be within [0, 1], got {score}")
    return score


def candidate_to_dict(candidate: CandidateMatch) -> dict[str, Any]:
    return {
        "productRef": candidate.product_ref,
        "displayName": candidate.display_name,
        "confidence": candidate.confidence,
        "imageRef": candidate.image_ref,
        "brand": candidate.brand,
    }


def candidate_from_dict(data: Mapping[str, Any]) -> CandidateMatch:
    name = str(data.get("displayName") or data.get("productName") or "").strip()
    if not name:
        raise ValidationError("Candidate match is missing a display name")
    ref = data.get("productRef")
    return CandidateMatch(
        product_ref=None if ref is None else str(ref),
        display_name=name,
        confidence=_confidence(data.get("confidence", 0.0), f"candidate {name}"),
        image_ref=data.get("imageRef"),
        brand=data.get("brand"),
    )


def item_to_dict(item: DetectedLineItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "receiptId": item.receipt_id,
        "detectedName": item.detected_name,
        "quantity": _dec(item.quantity),
        "unitPrice": _dec(item.unit_price),
        "totalPrice": _dec(item.total_price),
        "confidence": item.confidence,
        "candidateMatches": [candidate_to_dict(c) for c in item.candidate_matches],
        "resolution": item.resolution,
        "selectedMatch": None if item.selected_match is None else candidate_to_dict(item.selected_match),
        "expiryDate": _date(item.expiry_date),
        "storageLocation": item.storage_location,
        "category": item.category,
    }


def item_from_dict(data: Mapping[str, Any]) -> DetectedLineItem:
    resolution = data.get("resolution", "PENDING")
    if resolution not in RESOLUTION_STATUSES:
        raise ValidationError(f"Unknown resolution status: {resolution!r}")
    selected = data.get("selectedMatch")
    return DetectedLineItem(
        id=str(data["id"]),
        receipt_id=str(data["receiptId"]),
        detected_name=str(data["detectedName"]),
        confidence=_confidence(data.get("confidence", 0.0), str(data["detectedName"])),
        quantity=parse_decimal(data.get("quantity"), "quantity") or Decimal("1"),
        unit_price=parse_decimal(data.get("unitPrice"), "unitPrice"),
        total_price=parse_decimal(data.get("totalPrice"), "totalPrice"),
        candidate_matches=[candidate_from_dict(c) for c in data.get("candidateMatches", [])],
        resolution=resolution,
        selected_match=None if selected is None else candidate_from_dict(selected),
        expiry_date=parse_date(data.get("expiryDate"), "expiryDate"),
        storage_location=data.get("storageLocation"),
        category=data.get("category"),
    )


def record_to_dict(record: ReceiptRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "ownerId": record.owner_id,
        "imageRef": record.image_ref,
        "status": record.status,
        "merchantName": record.merchant_name,
        "merchantAddress": record.merchant_address,
        "totalAmount": _dec(record.total_amount),
        "purchaseDate": _date(record.purchase_date),
        "errorMessage": record.error_message,
        "createdAt": record.created_at.isoformat(),
        "updatedAt": record.updated_at.isoformat(),
    }


def record_from_dict(data: Mapping[str, Any]) -> ReceiptRecord:
    status = data.get("status")
    if status not in RECEIPT_STATUSES:
        raise ValidationError(f"Unknown receipt status: {status!r}")
    return ReceiptRecord(
        id=str(data["id"]),
        owner_id=str(data["ownerId"]),
        image_ref=str(data["imageRef"]),
        status=status,
        merchant_name=data.get("merchantName"),
        merchant_address=data.get("merchantAddress"),
        total_amount=parse_decimal(data.get("totalAmount"), "totalAmount"),
        purchase_date=parse_date(data.get("purchaseDate"), "purchaseDate"),
        error_message=data.get("errorMessage"),
        created_at=datetime.fromisoformat(data["createdAt"]),
        updated_at=datetime.fromisoformat(data["updatedAt"]),
    )


def status_report_to_dict(report: ReceiptStatusReport) -> dict[str, Any]:
    return {
        "receiptId": report.receipt_id,
        "status": report.status,
        "totalItems": report.total_items,
        "validatedItems": report.validated_items,
        "validationProgress": report.validation_progress,
        "readyForInventory": report.ready_for_inventory,
        "addedToInventory": report.added_to_inventory,
        "estimatedTimeRemaining": report.estimated_time_remaining,
        "errorMessage": report.error_message,
        "message": report.message,
    }


def status_report_from_dict(data: Mapping[str, Any]) -> ReceiptStatusReport:
    """Lenient reader: pollers treat unknown statuses as still in progress."""
    return ReceiptStatusReport(
        receipt_id=str(data.get("receiptId", "")),
        status=data.get("status", "PROCESSING"),
        total_items=int(data.get("totalItems") or 0),
        validated_items=int(data.get("validatedItems") or 0),
        validation_progress=int(data.get("validationProgress") or 0),
        ready_for_inventory=bool(data.get("readyForInventory", False)),
        added_to_inventory=bool(data.get("addedToInventory", False)),
        message=str(data.get("message", "")),
        estimated_time_remaining=data.get("estimatedTimeRemaining"),
        error_message=data.get("errorMessage"),
    )


def commit_summary_to_dict(summary: CommitSummary) -> dict[str, Any]:
    return {
        "receiptId": summary.receipt_id,
        "addedItems": [
            {
                "id": entry.entry_id,
                "itemId": entry.item_id,
                "productName": entry.product_name,
                "quantity": str(entry.quantity),
                "totalPrice": str(entry.total_price),
            }
            for entry in summary.added
        ],
        "failedItems": [
            {"itemId": entry.item_id, "productName": entry.product_name, "error": entry.error}
            for entry in summary.failed
        ],
        "summary": {
            "totalItemsProcessed": len(summary.added) + len(summary.failed),
            "successfulItems": len(summary.added),
            "failedItems": len(summary.failed),
            "totalAmountSpent": str(summary.total_amount_spent),
        },
    }


def commit_summary_from_dict(data: Mapping[str, Any]) -> CommitSummary:
    return CommitSummary(
        receipt_id=str(data.get("receiptId", "")),
        added=[
            AddedEntry(
                entry_id=str(entry["id"]),
                item_id=str(entry.get("itemId", "")),
                product_name=str(entry.get("productName", "")),
                quantity=parse_decimal(entry.get("quantity"), "quantity") or Decimal("1"),
                total_price=parse_decimal(entry.get("totalPrice"), "totalPrice") or Decimal("0"),
            )
            for entry in data.get("addedItems", [])
        ],
        failed=[
            FailedEntry(
                item_id=str(entry.get("itemId", "")),
                product_name=str(entry.get("productName", "")),
                error=str(entry.get("error", "")),
            )
            for entry in data.get("failedItems", [])
        ],
    )


def parse_recognition_items(
    receipt_id: str,
    raw_items: list[Mapping[str, Any]],
    id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
) -> list[DetectedLineItem]:
    """Build fresh PENDING items from a recognition worker's line items.

    Accepts the worker contract (``name``/``detectedName``, ``candidates``/
    ``candidateMatches``); items without a name are rejected.
    """
    items: list[DetectedLineItem] = []
    for index, raw in enumerate(raw_items):
        name = str(raw.get("detectedName") or raw.get("name") or "").strip()
        if not name:
            raise ValidationError(f"Recognition item {index} has no name")
        quantity = parse_decimal(raw.get("quantity"), "quantity")
        raw_candidates = raw.get("candidateMatches", raw.get("candidates", []))
        items.append(
            DetectedLineItem(
                id=str(raw.get("id") or id_factory()),
                receipt_id=receipt_id,
                detected_name=name,
                confidence=_confidence(raw.get("confidence", 0.0), name),
                quantity=quantity if quantity is not None and quantity > 0 else Decimal("1"),
                unit_price=parse_decimal(raw.get("unitPrice"), "unitPrice"),
                total_price=parse_decimal(raw.get("totalPrice"), "totalPrice"),
                candidate_matches=[candidate_from_dict(c) for c in raw_candidates],
            )
        )
    return items
