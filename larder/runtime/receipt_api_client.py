"""Async HTTP client for the larder receipt service."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from types import TracebackType
from typing import Any

import httpx

from larder.domain.errors import IngestError, NetworkError, error_from_kind
from larder.domain.receipt import (
    CommitOptions,
    CommitSummary,
    DetectedLineItem,
    ItemPatch,
    ReceiptAnalysis,
    ReceiptRecord,
    ReceiptStatus,
    ReceiptStatusReport,
    ResolutionStatus,
    UploadResult,
)
from larder.receipt.image_checks import sniff_content_type, validate_image_upload
from larder.receipt.serialization import (
    commit_summary_from_dict,
    item_from_dict,
    record_from_dict,
    status_report_from_dict,
)
from larder.runtime.logging import get_logger
from larder.runtime.settings import ALLOWED_IMAGE_TYPES, MAX_UPLOAD_BYTES

logger = get_logger(__name__)


def item_patch_payload(patch: ItemPatch) -> dict[str, Any]:
    """Only the fields the patch actually sets."""
    fields = {
        "detectedName": patch.detected_name,
        "quantity": None if patch.quantity is None else str(patch.quantity),
        "unitPrice": None if patch.unit_price is None else str(patch.unit_price),
        "totalPrice": None if patch.total_price is None else str(patch.total_price),
        "expiryDate": None if patch.expiry_date is None else patch.expiry_date.isoformat(),
        "storageLocation": patch.storage_location,
        "category": patch.category,
    }
    return {key: value for key, value in fields.items() if value is not None}


class ReceiptApiClient:
    """Talks to ``larder serve``; error payloads come back as IngestError subclasses."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        allowed_image_types: tuple[str, ...] = ALLOWED_IMAGE_TYPES,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_upload_bytes = max_upload_bytes
        self.allowed_image_types = allowed_image_types
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> ReceiptApiClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            logger.debug("%s %s failed: %s", method, path, exc)
            raise NetworkError(f"Could not reach receipt service at {self.base_url}: {exc}") from exc

        if response.status_code >= 400:
            raise self._error_from_response(response)
        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_from_response(response: httpx.Response) -> IngestError:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("message"):
            return error_from_kind(payload.get("kind"), str(payload["message"]))
        if response.status_code >= 500:
            return NetworkError(f"Receipt service error: HTTP {response.status_code}")
        return IngestError(f"Receipt service rejected the request: HTTP {response.status_code}")

    # --- upload ---

    async def upload(self, image: bytes, content_type: str | None, filename: str = "receipt.jpg") -> UploadResult:
        """Upload a receipt photo; size and type are checked before any network call."""
        mime = validate_image_upload(
            image, content_type, max_bytes=self.max_upload_bytes, allowed_types=self.allowed_image_types
        )
        data = await self._request("POST", "/receipt/upload", files={"file": (filename, image, mime)})
        return UploadResult(receipt_id=data["receiptId"], status=data["status"])

    async def upload_file(self, path: Path) -> UploadResult:
        image = path.read_bytes()
        content_type = mimetypes.guess_type(path.name)[0] or sniff_content_type(image)
        return await self.upload(image, content_type, filename=path.name)

    # --- polling ---

    async def get_status(self, receipt_id: str) -> ReceiptStatusReport:
        return status_report_from_dict(await self._request("GET", f"/receipt/{receipt_id}/status"))

    async def get_results(self, receipt_id: str) -> ReceiptAnalysis:
        data = await self._request("GET", f"/receipt/{receipt_id}/results")
        return ReceiptAnalysis(
            receipt=record_from_dict(data["receipt"]),
            items=[item_from_dict(item) for item in data.get("items", [])],
        )

    # --- review & commit ---

    async def update_item(
        self,
        receipt_id: str,
        item_id: str,
        patch: ItemPatch | None = None,
        selected_product_ref: str | None = None,
        selected_display_name: str | None = None,
        resolution: ResolutionStatus | None = None,
    ) -> DetectedLineItem:
        body = item_patch_payload(patch) if patch is not None else {}
        if selected_product_ref is not None:
            body["selectedProductRef"] = selected_product_ref
        if selected_display_name is not None:
            body["selectedDisplayName"] = selected_display_name
        if resolution is not None:
            body["resolution"] = resolution
        data = await self._request("PUT", f"/receipt/{receipt_id}/items/{item_id}", json=body)
        return item_from_dict(data)

    async def add_to_inventory(self, receipt_id: str, options: CommitOptions | None = None) -> CommitSummary:
        options = options or CommitOptions()
        body = {
            "purchaseDate": None if options.purchase_date is None else options.purchase_date.isoformat(),
            "autoCreateProducts": options.auto_create_products,
            "forcedAdd": options.forced_add,
        }
        return commit_summary_from_dict(
            await self._request("POST", f"/receipt/{receipt_id}/add-to-inventory", json=body)
        )

    # --- housekeeping ---

    async def delete(self, receipt_id: str) -> None:
        await self._request("DELETE", f"/receipt/{receipt_id}")

    async def history(
        self, status: ReceiptStatus | None = None, limit: int = 20, offset: int = 0
    ) -> list[ReceiptRecord]:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status is not None:
            params["status"] = status
        data = await self._request("GET", "/receipt/history", params=params)
        return [record_from_dict(record) for record in data.get("receipts", [])]

    async def health(self) -> bool:
        data = await self._request("GET", "/health")
        return bool(data) and data.get("status") == "ok"
