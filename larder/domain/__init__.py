"""Core domain models for larder.

- ReceiptRecord, DetectedLineItem, CandidateMatch: receipt ingestion models
- Error taxonomy shared by the service, the client and the CLI

Usage:
    from larder.domain import ReceiptRecord, DetectedLineItem
"""

from larder.domain.errors import (
    CommitError,
    CommitInProgressError,
    CommitNotRecordedError,
    IngestError,
    InvalidTransitionError,
    NetworkError,
    NothingToCommitError,
    PhaseIncompleteError,
    PollTimeoutError,
    ReceiptCommittedError,
    ReceiptNotFoundError,
    ValidationError,
    WorkerFailedError,
)
from larder.domain.receipt import (
    CandidateMatch,
    CommitLine,
    CommitOptions,
    CommitSummary,
    DetectedLineItem,
    ItemPatch,
    ReceiptAnalysis,
    ReceiptRecord,
    ReceiptStatusReport,
    UploadResult,
)

__all__ = [
    "CandidateMatch",
    "CommitLine",
    "CommitOptions",
    "CommitSummary",
    "DetectedLineItem",
    "ItemPatch",
    "ReceiptAnalysis",
    "ReceiptRecord",
    "ReceiptStatusReport",
    "UploadResult",
    "IngestError",
    "ValidationError",
    "NetworkError",
    "WorkerFailedError",
    "PollTimeoutError",
    "PhaseIncompleteError",
    "NothingToCommitError",
    "CommitInProgressError",
    "CommitNotRecordedError",
    "CommitError",
    "ReceiptNotFoundError",
    "ReceiptCommittedError",
    "InvalidTransitionError",
]
