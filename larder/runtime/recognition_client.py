"""HTTP adapter for the external recognition worker.

The worker contract is fire-and-forget: ``POST {base}/jobs`` with the image
and a callback URL, answered with 2xx as soon as the job is queued. Results
arrive later on ``POST /receipt/{id}/recognition``.
"""

from __future__ import annotations

import time

import httpx

from larder.domain.errors import NetworkError
from larder.receipt.image_checks import prepare_for_recognition
from larder.runtime.logging import get_logger

logger = get_logger(__name__)


class HttpRecognitionQueue:
    """Enqueue recognition jobs on a worker reachable over HTTP."""

    def __init__(
        self,
        base_url: str,
        callback_base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.callback_base_url = callback_base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def callback_url(self, receipt_id: str) -> str:
        return f"{self.callback_base_url}/receipt/{receipt_id}/recognition"

    async def enqueue(self, receipt_id: str, image: bytes, content_type: str) -> None:
        prepared, prepared_type = prepare_for_recognition(image)
        extension = ".jpg" if prepared_type == "image/jpeg" else ""
        logger.info("Sending receipt %s to recognition worker at %s...", receipt_id, self.base_url)

        start_time = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/jobs",
                    files={"file": (f"{receipt_id}{extension}", prepared, prepared_type or content_type)},
                    data={"receipt_id": receipt_id, "callback_url": self.callback_url(receipt_id)},
                )
        except httpx.RequestError as exc:
            logger.error("Failed to connect to recognition worker: %s", exc)
            raise NetworkError(f"Recognition service unavailable: {exc}") from exc

        if response.status_code >= 400:
            logger.error("Recognition worker rejected receipt %s: HTTP %s", receipt_id, response.status_code)
            raise NetworkError(f"Recognition service error: HTTP {response.status_code}")
        logger.debug("Recognition job for %s queued in %.2f seconds", receipt_id, time.monotonic() - start_time)
