"""Client-side ingestion flow: upload, poll, two-phase review, commit.

The local ValidationEngine is the source of truth for what the user may do
next; every accepted item operation is mirrored to the service so the server
can re-derive the same session at commit time.
"""

from __future__ import annotations

import mimetypes
from collections.abc import Sequence
from pathlib import Path

from larder.application.receipts.polling import PollLifecycle, StatusPoller
from larder.domain.errors import CommitError, IngestError, NetworkError
from larder.domain.receipt import CommitLine, CommitOptions, CommitSummary, ItemPatch, ResolutionStatus
from larder.receipt.image_checks import sniff_content_type, validate_image_upload
from larder.receipt.validation_engine import ValidationEngine, ValidationSession
from larder.runtime.logging import get_logger
from larder.runtime.receipt_api_client import ReceiptApiClient

logger = get_logger(__name__)


class RemoteInventoryCommitter:
    """Commit through the service, which re-checks the guards on its side."""

    def __init__(self, client: ReceiptApiClient) -> None:
        self.client = client

    async def commit(self, receipt_id: str, lines: Sequence[CommitLine], options: CommitOptions) -> CommitSummary:
        logger.debug("Submitting %d validated items for receipt %s", len(lines), receipt_id)
        try:
            return await self.client.add_to_inventory(receipt_id, options)
        except NetworkError as exc:
            raise CommitError(exc.message) from exc


class ReceiptIngestFlow:
    def __init__(self, client: ReceiptApiClient, poller: StatusPoller, engine: ValidationEngine) -> None:
        self.client = client
        self.poller = poller
        self.engine = engine
        self.lifecycle: PollLifecycle | None = None

    @property
    def session(self) -> ValidationSession | None:
        return self.engine.session

    async def analyze(self, image: bytes, content_type: str | None, filename: str = "receipt.jpg") -> ValidationSession:
        """Upload the photo and wait for recognition results.

        Invalid images are refused before the engine leaves CAPTURING. Upload,
        worker and timeout failures put the engine in ERROR and are re-raised.
        """
        content_type = validate_image_upload(
            image,
            content_type,
            max_bytes=self.client.max_upload_bytes,
            allowed_types=self.client.allowed_image_types,
        )
        self.engine.start_upload()
        lifecycle = self.poller.new_lifecycle("")
        self.lifecycle = lifecycle
        lifecycle.update("uploading")

        try:
            uploaded = await self.client.upload(image, content_type, filename=filename)
        except IngestError as exc:
            lifecycle.update("error", exc)
            self.engine.fail(exc.message)
            raise

        receipt_id = uploaded.receipt_id
        lifecycle.receipt_id = receipt_id
        self.engine.mark_analyzing(receipt_id)
        try:
            analysis = await self.poller.poll(receipt_id, lifecycle)
        except IngestError as exc:
            self.engine.fail(exc.message)
            raise

        self.engine.load_results(receipt_id, analysis.items)
        assert self.engine.session is not None
        return self.engine.session

    async def analyze_file(self, path: Path) -> ValidationSession:
        image = path.read_bytes()
        content_type = mimetypes.guess_type(path.name)[0] or sniff_content_type(image)
        return await self.analyze(image, content_type, filename=path.name)

    async def _mirror(
        self,
        item_id: str,
        patch: ItemPatch | None = None,
        selected_product_ref: str | None = None,
        selected_display_name: str | None = None,
        resolution: ResolutionStatus | None = None,
    ) -> None:
        receipt_id = self.engine.receipt_id
        assert receipt_id is not None
        try:
            await self.client.update_item(
                receipt_id,
                item_id,
                patch=patch,
                selected_product_ref=selected_product_ref,
                selected_display_name=selected_display_name,
                resolution=resolution,
            )
        except IngestError as exc:
            self.engine.fail(exc.message)
            raise

    async def select_match(self, item_id: str, product_ref: str | None, display_name: str | None = None) -> None:
        self.engine.select_match(item_id, product_ref, display_name)
        await self._mirror(item_id, selected_product_ref=product_ref, selected_display_name=display_name)

    async def skip(self, item_id: str) -> None:
        self.engine.skip(item_id)
        await self._mirror(item_id, resolution="SKIPPED")

    async def edit(self, item_id: str, patch: ItemPatch) -> None:
        self.engine.edit(item_id, patch)
        await self._mirror(item_id, patch=patch)

    async def accept_all_confident(self) -> int:
        pending = list(self.session.pending_phase1) if self.session is not None else []
        accepted = self.engine.accept_all_confident()
        for item in pending:
            if item.selected_match is not None:
                await self._mirror(
                    item.id,
                    selected_product_ref=item.selected_match.product_ref,
                    selected_display_name=item.selected_match.display_name,
                )
        return accepted

    def advance_from_phase1(self) -> None:
        self.engine.advance_from_phase1()

    async def commit(self, options: CommitOptions | None = None) -> CommitSummary:
        return await self.engine.commit(RemoteInventoryCommitter(self.client), options)

    def retry(self) -> None:
        self.engine.retry()
        self.lifecycle = None
