"""Receipt upload gateway."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from larder.domain.errors import IngestError
from larder.domain.receipt import ReceiptRecord, UploadResult
from larder.receipt.image_checks import validate_image_upload
from larder.runtime.logging import get_logger
from larder.runtime.receipt_store import ReceiptStore
from larder.runtime.settings import IngestSettings

logger = get_logger(__name__)


class RecognitionQueue(Protocol):
    async def enqueue(self, receipt_id: str, image: bytes, content_type: str) -> None: ...


@dataclass(frozen=True)
class ReceiptUploadRequest:
    """Inputs for accepting one receipt photo."""

    image: bytes
    content_type: str | None
    owner_id: str


async def run_receipt_upload(
    request: ReceiptUploadRequest,
    store: ReceiptStore,
    queue: RecognitionQueue,
    settings: IngestSettings,
    id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
) -> UploadResult:
    """Validate -> store image -> create PROCESSING record -> enqueue recognition.

    A record whose enqueue fails is marked FAILED right away so it never sits
    in PROCESSING with no worker behind it.
    """
    content_type = validate_image_upload(
        request.image,
        request.content_type,
        max_bytes=settings.max_upload_bytes,
        allowed_types=settings.allowed_image_types,
    )

    receipt_id = id_factory()
    image_ref = store.save_image(receipt_id, request.image, content_type)
    record = ReceiptRecord(id=receipt_id, owner_id=request.owner_id, image_ref=image_ref)
    store.create(record)

    try:
        await queue.enqueue(receipt_id, request.image, content_type)
    except Exception as exc:
        record.status = "FAILED"
        record.error_message = exc.message if isinstance(exc, IngestError) else str(exc)
        store.save(record, [])
        logger.error("Receipt %s could not be queued for recognition: %s", receipt_id, record.error_message)
        raise

    logger.info("Receipt %s uploaded (%d bytes), recognition queued", receipt_id, len(request.image))
    return UploadResult(receipt_id=receipt_id, status=record.status)
