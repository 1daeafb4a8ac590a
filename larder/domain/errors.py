"""Error taxonomy for receipt ingestion.

Every error carries a machine-readable ``kind`` (sent over the wire) and the
HTTP status the service answers with. ``error_from_kind`` reverses the
mapping on the client side.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for all receipt ingestion failures."""

    kind = "INGEST_ERROR"
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"status": "error", "kind": self.kind, "message": self.message}


class ValidationError(IngestError):
    """Bad input rejected before any side effect."""

    kind = "VALIDATION_ERROR"
    http_status = 400


class NetworkError(IngestError):
    """Transient transport failure; safe to retry the same request."""

    kind = "NETWORK_ERROR"
    http_status = 503


class WorkerFailedError(IngestError):
    """Recognition worker gave up on this receipt. Requires a re-upload."""

    kind = "WORKER_FAILED"
    http_status = 422


class PollTimeoutError(IngestError, TimeoutError):
    """Polling ceiling exceeded without a terminal status."""

    kind = "TIMEOUT"
    http_status = 504


class PhaseIncompleteError(IngestError):
    """Phase 1 still has pending items."""

    kind = "PHASE_INCOMPLETE"
    http_status = 409


class NothingToCommitError(IngestError):
    """No item has been validated."""

    kind = "NOTHING_TO_COMMIT"
    http_status = 400


class CommitInProgressError(IngestError):
    kind = "COMMIT_IN_PROGRESS"
    http_status = 409


class CommitError(IngestError):
    """Inventory committer failed; validation state is kept for a retry."""

    kind = "COMMIT_FAILED"
    http_status = 502


class CommitNotRecordedError(IngestError):
    """Inventory accepted the lines but the receipt record could not be updated."""

    kind = "COMMIT_NOT_RECORDED"
    http_status = 500


class ReceiptNotFoundError(IngestError):
    kind = "NOT_FOUND"
    http_status = 404


class ReceiptCommittedError(IngestError):
    """Committed receipts are immutable and cannot be deleted."""

    kind = "RECEIPT_COMMITTED"
    http_status = 409


class InvalidTransitionError(IngestError):
    """Operation not allowed in the current engine state."""

    kind = "INVALID_STATE"
    http_status = 409


_ERRORS_BY_KIND: dict[str, type[IngestError]] = {
    cls.kind: cls
    for cls in (
        ValidationError,
        NetworkError,
        WorkerFailedError,
        PollTimeoutError,
        PhaseIncompleteError,
        NothingToCommitError,
        CommitInProgressError,
        CommitError,
        CommitNotRecordedError,
        ReceiptNotFoundError,
        ReceiptCommittedError,
        InvalidTransitionError,
    )
}


def error_from_kind(kind: str | None, message: str) -> IngestError:
    """Rebuild the matching exception from a wire error payload."""
    cls = _ERRORS_BY_KIND.get(kind or "", IngestError)
    return cls(message)
