"""Receipt workflows."""

from larder.application.receipts.commit import ReceiptCommitService
from larder.application.receipts.ingest import ReceiptIngestFlow, RemoteInventoryCommitter
from larder.application.receipts.polling import (
    PollerConfig,
    PollerRegistry,
    PollHandle,
    PollLifecycle,
    StatusPoller,
    classify_status,
)
from larder.application.receipts.recognition import RecognitionResult, apply_recognition_result
from larder.application.receipts.review import ItemUpdateRequest, run_item_update
from larder.application.receipts.status import build_status_report
from larder.application.receipts.upload import ReceiptUploadRequest, run_receipt_upload

__all__ = [
    "ReceiptUploadRequest",
    "run_receipt_upload",
    "RecognitionResult",
    "apply_recognition_result",
    "build_status_report",
    "ItemUpdateRequest",
    "run_item_update",
    "ReceiptCommitService",
    "StatusPoller",
    "PollerConfig",
    "PollerRegistry",
    "PollHandle",
    "PollLifecycle",
    "classify_status",
    "ReceiptIngestFlow",
    "RemoteInventoryCommitter",
]
