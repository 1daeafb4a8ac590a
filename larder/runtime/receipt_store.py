"""File-backed persistence for receipt records, their items and images.

Directory structure:
    receipts/
    ├── records/   - <receipt id>.json: {"receipt": {...}, "items": [...]}
    └── images/    - uploaded photos, named <receipt id><ext>
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path

from larder.domain.errors import ReceiptCommittedError, ReceiptNotFoundError, ValidationError
from larder.domain.receipt import DetectedLineItem, ReceiptAnalysis, ReceiptRecord, ReceiptStatus
from larder.receipt.serialization import item_from_dict, item_to_dict, record_from_dict, record_to_dict
from larder.runtime.logging import get_logger
from larder.runtime.paths import ProjectPaths, get_paths

logger = get_logger(__name__)

_IMAGE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/heic": ".heic",
    "image/heif": ".heif",
}


class ReceiptStore:
    """Receipts as one JSON document each, written atomically."""

    def __init__(self, paths: ProjectPaths | None = None) -> None:
        self.paths = paths or get_paths()
        self._lock = threading.Lock()

    @property
    def records_dir(self) -> Path:
        return self.paths.receipt_records

    @property
    def images_dir(self) -> Path:
        return self.paths.receipt_images

    def _record_path(self, receipt_id: str) -> Path:
        # Ids are generated by us, but they also arrive in URLs.
        if not receipt_id or "/" in receipt_id or "\\" in receipt_id or receipt_id.startswith("."):
            raise ReceiptNotFoundError(f"Receipt {receipt_id!r} not found")
        return self.records_dir / f"{receipt_id}.json"

    # --- images ---

    def save_image(self, receipt_id: str, data: bytes, content_type: str) -> str:
        """Store the uploaded photo and return its image reference."""
        self.images_dir.mkdir(parents=True, exist_ok=True)
        image_ref = f"{receipt_id}{_IMAGE_EXTENSIONS.get(content_type, '.img')}"
        (self.images_dir / image_ref).write_bytes(data)
        logger.debug("Saved receipt image %s (%d bytes)", image_ref, len(data))
        return image_ref

    def read_image(self, image_ref: str) -> bytes:
        path = self.images_dir / Path(image_ref).name
        if not path.exists():
            raise ReceiptNotFoundError(f"Receipt image {image_ref!r} not found")
        return path.read_bytes()

    # --- records ---

    def _write(self, record: ReceiptRecord, items: list[DetectedLineItem]) -> None:
        self.records_dir.mkdir(parents=True, exist_ok=True)
        path = self._record_path(record.id)
        document = {"receipt": record_to_dict(record), "items": [item_to_dict(item) for item in items]}
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(document, indent=2))
        os.replace(tmp_path, path)

    def create(self, record: ReceiptRecord) -> None:
        with self._lock:
            if self._record_path(record.id).exists():
                raise ValidationError(f"Receipt {record.id} already exists")
            self._write(record, [])
        logger.info("Created receipt %s (%s)", record.id, record.status)

    def get(self, receipt_id: str) -> ReceiptAnalysis:
        path = self._record_path(receipt_id)
        if not path.exists():
            raise ReceiptNotFoundError(f"Receipt {receipt_id} not found")
        document = json.loads(path.read_text())
        return ReceiptAnalysis(
            receipt=record_from_dict(document["receipt"]),
            items=[item_from_dict(item) for item in document.get("items", [])],
        )

    def get_record(self, receipt_id: str) -> ReceiptRecord:
        return self.get(receipt_id).receipt

    def save(self, record: ReceiptRecord, items: list[DetectedLineItem]) -> None:
        """Persist a record and its full item set, bumping ``updated_at``."""
        record.touch()
        with self._lock:
            self._write(record, items)

    def list_records(
        self,
        owner_id: str | None = None,
        status: ReceiptStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ReceiptRecord]:
        """Receipt history, newest first."""
        if not self.records_dir.exists():
            return []
        records = []
        for path in self.records_dir.glob("*.json"):
            record = record_from_dict(json.loads(path.read_text())["receipt"])
            if owner_id is not None and record.owner_id != owner_id:
                continue
            if status is not None and record.status != status:
                continue
            records.append(record)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[offset : offset + limit]

    def delete(self, receipt_id: str) -> None:
        """Remove a receipt and its image. Committed receipts are kept."""
        with self._lock:
            record = self.get_record(receipt_id)
            if record.is_committed:
                raise ReceiptCommittedError(f"Receipt {receipt_id} was added to inventory and cannot be deleted")
            self._record_path(receipt_id).unlink()
            image_path = self.images_dir / Path(record.image_ref).name
            if image_path.exists():
                image_path.unlink()
        logger.info("Deleted receipt %s", receipt_id)
