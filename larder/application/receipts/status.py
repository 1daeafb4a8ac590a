"""Receipt status reports for pollers."""

from __future__ import annotations

from datetime import datetime

from larder.domain.receipt import ReceiptAnalysis, ReceiptStatusReport, utcnow
from larder.receipt.phases import HIGH_CONFIDENCE, separate
from larder.receipt.resolution import estimated_time_remaining, progress_metrics, status_message


def build_status_report(
    analysis: ReceiptAnalysis,
    threshold: float = HIGH_CONFIDENCE,
    now: datetime | None = None,
) -> ReceiptStatusReport:
    record = analysis.receipt
    metrics = progress_metrics(analysis.items)
    phase1 = separate(analysis.items, threshold).phase1
    ready = (
        record.status == "COMPLETED"
        and metrics.validated_items > 0
        and all(item.is_resolved for item in phase1)
    )
    return ReceiptStatusReport(
        receipt_id=record.id,
        status=record.status,
        total_items=metrics.total_items,
        validated_items=metrics.validated_items,
        validation_progress=metrics.validation_progress,
        ready_for_inventory=ready,
        added_to_inventory=record.is_committed,
        message=status_message(record, metrics),
        estimated_time_remaining=estimated_time_remaining(record, now or utcnow()),
        error_message=record.error_message,
    )
