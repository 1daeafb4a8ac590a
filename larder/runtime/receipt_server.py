"""FastAPI service for receipt upload, recognition callbacks, review and commit."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Literal

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from larder.application.receipts.commit import ReceiptCommitService
from larder.application.receipts.recognition import RecognitionResult, apply_recognition_result
from larder.application.receipts.review import ItemUpdateRequest, run_item_update
from larder.application.receipts.status import build_status_report
from larder.application.receipts.upload import RecognitionQueue, ReceiptUploadRequest, run_receipt_upload
from larder.domain.errors import CommitInProgressError, IngestError, ValidationError
from larder.domain.receipt import RECEIPT_STATUSES, CommitOptions, ItemPatch
from larder.receipt.item_categories import CategoryRuleLayers
from larder.receipt.serialization import (
    commit_summary_to_dict,
    item_to_dict,
    record_to_dict,
    status_report_to_dict,
)
from larder.receipt.validation_engine import InventoryCommitter
from larder.runtime.category_rules import load_category_rule_layers
from larder.runtime.inventory_committer import create_committer
from larder.runtime.logging import get_logger
from larder.runtime.receipt_store import ReceiptStore
from larder.runtime.recognition_client import HttpRecognitionQueue
from larder.runtime.settings import IngestSettings, get_settings

logger = get_logger(__name__)

MAX_HISTORY_PAGE = 100


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ItemUpdateBody(_CamelModel):
    detected_name: str | None = Field(None, alias="detectedName")
    quantity: Decimal | None = None
    unit_price: Decimal | None = Field(None, alias="unitPrice")
    total_price: Decimal | None = Field(None, alias="totalPrice")
    expiry_date: date | None = Field(None, alias="expiryDate")
    storage_location: str | None = Field(None, alias="storageLocation")
    category: str | None = None
    selected_product_ref: str | None = Field(None, alias="selectedProductRef")
    selected_display_name: str | None = Field(None, alias="selectedDisplayName")
    resolution: Literal["PENDING", "VALIDATED", "SKIPPED"] | None = None


class AddToInventoryBody(_CamelModel):
    purchase_date: date | None = Field(None, alias="purchaseDate")
    auto_create_products: bool = Field(True, alias="autoCreateProducts")
    forced_add: bool = Field(False, alias="forcedAdd")


class RecognitionCallbackBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["COMPLETED", "FAILED"]
    merchant_name: str | None = Field(None, alias="merchantName")
    merchant_address: str | None = Field(None, alias="merchantAddress")
    total_amount: Decimal | None = Field(None, alias="totalAmount")
    purchase_date: date | None = Field(None, alias="purchaseDate")
    error_message: str | None = Field(None, alias="errorMessage")
    items: list[dict[str, Any]] = Field(default_factory=list)


async def _read_upload(request: Request) -> tuple[bytes, str | None]:
    """Pull the image out of a multipart body; ``file`` first, else any file field."""
    form = await request.form()
    upload = form.get("file")
    if not hasattr(upload, "read"):
        upload = next((value for value in form.values() if hasattr(value, "read")), None)
    if upload is None:
        raise ValidationError("No file found in request")
    contents = await upload.read()  # type: ignore[union-attr]
    return contents, getattr(upload, "content_type", None)


def create_app(
    store: ReceiptStore | None = None,
    queue: RecognitionQueue | None = None,
    committer: InventoryCommitter | None = None,
    settings: IngestSettings | None = None,
    rule_layers: CategoryRuleLayers | None = None,
) -> FastAPI:
    """Build the receipt service. Collaborators default to the configured ones."""
    settings = settings or get_settings()
    store = store or ReceiptStore()
    queue = queue or HttpRecognitionQueue(settings.recognition_url, settings.public_base_url)
    commit_service = ReceiptCommitService(
        store,
        committer or create_committer(settings),
        threshold=settings.high_confidence_threshold,
        rule_layers=rule_layers or load_category_rule_layers(),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Create data directories on startup."""
        store.paths.ensure_directories()
        yield

    app = FastAPI(title="Larder Receipt Service", lifespan=lifespan)
    app.state.store = store
    app.state.commit_service = commit_service

    @app.exception_handler(IngestError)
    async def handle_ingest_error(request: Request, exc: IngestError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(exc.to_payload(), status_code=exc.http_status)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        if errors:
            location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
            message = f"{location}: {errors[0].get('msg', 'invalid value')}" if location else errors[0].get("msg")
        else:
            message = "Invalid request"
        return JSONResponse(ValidationError(str(message)).to_payload(), status_code=ValidationError.http_status)

    @app.post("/receipt/upload", status_code=201)
    async def upload_receipt(request: Request) -> dict[str, str]:
        contents, content_type = await _read_upload(request)
        result = await run_receipt_upload(
            ReceiptUploadRequest(image=contents, content_type=content_type, owner_id=settings.owner_id),
            store,
            queue,
            settings,
        )
        return {"receiptId": result.receipt_id, "status": result.status}

    @app.get("/receipt/history")
    async def receipt_history(status: str | None = None, limit: int = 20, offset: int = 0) -> dict[str, Any]:
        if status is not None and status not in RECEIPT_STATUSES:
            raise ValidationError(f"Unknown status filter {status!r}")
        if not 1 <= limit <= MAX_HISTORY_PAGE or offset < 0:
            raise ValidationError(f"limit must be within 1..{MAX_HISTORY_PAGE} and offset non-negative")
        records = store.list_records(
            owner_id=settings.owner_id, status=status, limit=limit, offset=offset  # type: ignore[arg-type]
        )
        return {"receipts": [record_to_dict(record) for record in records], "limit": limit, "offset": offset}

    @app.get("/receipt/{receipt_id}/status")
    async def receipt_status(receipt_id: str) -> dict[str, Any]:
        report = build_status_report(store.get(receipt_id), threshold=settings.high_confidence_threshold)
        return status_report_to_dict(report)

    @app.get("/receipt/{receipt_id}/results")
    async def receipt_results(receipt_id: str) -> dict[str, Any]:
        analysis = store.get(receipt_id)
        return {"receipt": record_to_dict(analysis.receipt), "items": [item_to_dict(i) for i in analysis.items]}

    @app.put("/receipt/{receipt_id}/items/{item_id}")
    async def update_item(receipt_id: str, item_id: str, body: ItemUpdateBody) -> dict[str, Any]:
        if commit_service.is_in_flight(receipt_id):
            raise CommitInProgressError(f"Receipt {receipt_id} is being added to inventory")
        patch = ItemPatch(
            detected_name=body.detected_name,
            quantity=body.quantity,
            unit_price=body.unit_price,
            total_price=body.total_price,
            expiry_date=body.expiry_date,
            storage_location=body.storage_location,
            category=body.category,
        )
        item = run_item_update(
            ItemUpdateRequest(
                receipt_id=receipt_id,
                item_id=item_id,
                patch=patch,
                selected_product_ref=body.selected_product_ref,
                selected_display_name=body.selected_display_name,
                resolution=body.resolution,
            ),
            store,
        )
        return item_to_dict(item)

    @app.post("/receipt/{receipt_id}/add-to-inventory")
    async def add_to_inventory(receipt_id: str, body: AddToInventoryBody | None = None) -> dict[str, Any]:
        body = body or AddToInventoryBody()
        options = CommitOptions(
            purchase_date=body.purchase_date,
            auto_create_products=body.auto_create_products,
            forced_add=body.forced_add,
        )
        summary = await commit_service.commit(receipt_id, options)
        return commit_summary_to_dict(summary)

    @app.delete("/receipt/{receipt_id}", status_code=204)
    async def delete_receipt(receipt_id: str) -> Response:
        if commit_service.is_in_flight(receipt_id):
            raise CommitInProgressError(f"Receipt {receipt_id} is being added to inventory")
        store.delete(receipt_id)
        return Response(status_code=204)

    @app.post("/receipt/{receipt_id}/recognition")
    async def recognition_callback(receipt_id: str, body: RecognitionCallbackBody) -> dict[str, Any]:
        record = apply_recognition_result(
            store,
            receipt_id,
            RecognitionResult(
                status=body.status,
                merchant_name=body.merchant_name,
                merchant_address=body.merchant_address,
                total_amount=body.total_amount,
                purchase_date=body.purchase_date,
                error_message=body.error_message,
                items=tuple(body.items),
            ),
        )
        return {"receiptId": record.id, "status": record.status}

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("larder.runtime.receipt_server:create_app", factory=True, host="0.0.0.0", port=8080)
