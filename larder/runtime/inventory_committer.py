"""Inventory committers: where validated receipt lines end up.

``JsonlInventoryCommitter`` appends entries to a local JSONL ledger and is the
default. ``HttpInventoryCommitter`` forwards the batch to an inventory service
when ``LARDER_INVENTORY_URL`` is configured.
"""

from __future__ import annotations

import json
import re
import uuid
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import httpx

from larder.domain.errors import CommitError, ValidationError
from larder.domain.receipt import AddedEntry, CommitLine, CommitOptions, CommitSummary, FailedEntry, utcnow
from larder.receipt.serialization import commit_summary_from_dict
from larder.runtime.logging import get_logger
from larder.runtime.paths import get_paths
from larder.runtime.settings import IngestSettings

logger = get_logger(__name__)


def _slug(name: str) -> str:
    return "-".join(filter(None, re.split(r"[^a-z0-9]+", name.lower()))) or "item"


def commit_line_payload(line: CommitLine) -> dict[str, Any]:
    return {
        "itemId": line.item_id,
        "productRef": line.product_ref,
        "productName": line.display_name,
        "quantity": str(line.quantity),
        "category": line.resolved_category,
        "unitPrice": None if line.unit_price is None else str(line.unit_price),
        "totalPrice": str(line.line_total),
        "expiryDate": None if line.expiry_date is None else line.expiry_date.isoformat(),
        "storageLocation": line.storage_location,
    }


class JsonlInventoryCommitter:
    """Append committed lines to ``inventory/entries.jsonl``."""

    def __init__(self, ledger_path: Path | None = None, id_factory: Callable[[], str] | None = None) -> None:
        self.ledger_path = ledger_path or get_paths().inventory_ledger
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

    async def commit(self, receipt_id: str, lines: Sequence[CommitLine], options: CommitOptions) -> CommitSummary:
        added: list[AddedEntry] = []
        failed: list[FailedEntry] = []
        entries: list[dict[str, Any]] = []
        created_at = utcnow().isoformat()

        for line in lines:
            product_ref = line.product_ref
            if product_ref is None:
                if not options.auto_create_products:
                    failed.append(
                        FailedEntry(line.item_id, line.display_name, "Product is not in the catalog")
                    )
                    continue
                product_ref = f"local:{_slug(line.display_name)}"

            entry = commit_line_payload(line)
            entry_id = self._id_factory()
            entry.update(
                {
                    "id": entry_id,
                    "receiptId": receipt_id,
                    "productRef": product_ref,
                    "autoCreated": line.product_ref is None,
                    "purchaseDate": None if options.purchase_date is None else options.purchase_date.isoformat(),
                    "createdAt": created_at,
                }
            )
            entries.append(entry)
            added.append(AddedEntry(entry_id, line.item_id, line.display_name, line.quantity, line.line_total))

        if failed and not options.forced_add:
            names = ", ".join(entry.product_name for entry in failed)
            raise CommitError(f"{len(failed)} item(s) could not be added: {names}")
        if not added:
            raise CommitError("No items could be added to inventory")

        try:
            self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.ledger_path, "a") as f:
                f.write("".join(json.dumps(entry) + "\n" for entry in entries))
        except OSError as exc:
            raise CommitError(f"Failed to write inventory ledger: {exc}") from exc

        logger.info("Added %d inventory entries from receipt %s", len(added), receipt_id)
        return CommitSummary(receipt_id=receipt_id, added=added, failed=failed)


class HttpInventoryCommitter:
    """Forward validated lines to an inventory service's batch endpoint."""

    def __init__(
        self, base_url: str, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def commit(self, receipt_id: str, lines: Sequence[CommitLine], options: CommitOptions) -> CommitSummary:
        payload = {
            "receiptId": receipt_id,
            "purchaseDate": None if options.purchase_date is None else options.purchase_date.isoformat(),
            "autoCreateProducts": options.auto_create_products,
            "forcedAdd": options.forced_add,
            "items": [commit_line_payload(line) for line in lines],
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/inventory/batch", json=payload)
        except httpx.RequestError as exc:
            logger.error("Failed to connect to inventory service: %s", exc)
            raise CommitError(f"Inventory service unavailable: {exc}") from exc

        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.reason_phrase
            except ValueError:
                message = response.reason_phrase
            logger.error("Inventory service rejected receipt %s: HTTP %s", receipt_id, response.status_code)
            raise CommitError(f"Inventory service error: {message}")

        try:
            summary = commit_summary_from_dict(response.json())
        except (ValueError, KeyError, TypeError, AttributeError, ValidationError) as exc:
            logger.error("Inventory service sent an unreadable summary for receipt %s: %s", receipt_id, exc)
            raise CommitError(f"Inventory service returned an unreadable summary: {exc}") from exc
        return CommitSummary(receipt_id=receipt_id, added=summary.added, failed=summary.failed)


def create_committer(settings: IngestSettings) -> JsonlInventoryCommitter | HttpInventoryCommitter:
    if settings.inventory_url:
        return HttpInventoryCommitter(settings.inventory_url)
    return JsonlInventoryCommitter()
