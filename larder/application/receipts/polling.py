"""Status poller: turns repeated status requests into a finite lifecycle.

    idle -> uploading -> analyzing -> results | error

Each poll runs as one asyncio task behind a ``PollHandle``; cancelling the
handle stops the pending sleep at once and silences further transitions.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Generator
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from larder.domain.errors import IngestError, NetworkError, PollTimeoutError, WorkerFailedError
from larder.domain.receipt import ReceiptAnalysis, ReceiptStatusReport
from larder.runtime.logging import get_logger
from larder.runtime.settings import MAX_POLL_ATTEMPTS, POLL_INTERVAL_SECONDS, IngestSettings

logger = get_logger(__name__)

PollPhase = Literal["idle", "uploading", "analyzing", "results", "error"]
PollDecision = Literal["CONTINUE", "COMPLETED", "FAILED"]

TERMINAL_PHASES: frozenset[str] = frozenset({"results", "error"})
MAX_CONSECUTIVE_NETWORK_ERRORS = 3


class StatusSource(Protocol):
    async def get_status(self, receipt_id: str) -> ReceiptStatusReport: ...

    async def get_results(self, receipt_id: str) -> ReceiptAnalysis: ...


def classify_status(status: str) -> PollDecision:
    """Unknown statuses keep the poll going."""
    if status in ("COMPLETED", "VALIDATED"):
        return "COMPLETED"
    if status == "FAILED":
        return "FAILED"
    return "CONTINUE"


@dataclass(frozen=True)
class PollerConfig:
    interval_seconds: float = POLL_INTERVAL_SECONDS
    max_attempts: int = MAX_POLL_ATTEMPTS
    max_network_errors: int = MAX_CONSECUTIVE_NETWORK_ERRORS

    @classmethod
    def from_settings(cls, settings: IngestSettings) -> PollerConfig:
        return cls(interval_seconds=settings.poll_interval_seconds, max_attempts=settings.max_poll_attempts)


class PollLifecycle:
    """Lifecycle of one receipt's poll.

    Terminal phases are sticky: once ``results`` or ``error`` is reached,
    non-terminal updates are ignored, while a later terminal write replaces
    the earlier one. After ``close()`` nothing changes and nothing is emitted.
    """

    def __init__(self, receipt_id: str, on_change: Callable[[str, PollPhase], None] | None = None) -> None:
        self.receipt_id = receipt_id
        self.phase: PollPhase = "idle"
        self.error: IngestError | None = None
        self.closed = False
        self._on_change = on_change

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def update(self, phase: PollPhase, error: IngestError | None = None) -> bool:
        if self.closed:
            return False
        if self.is_terminal and phase not in TERMINAL_PHASES:
            logger.debug("Ignoring %s for receipt %s after %s", phase, self.receipt_id, self.phase)
            return False
        self.phase = phase
        self.error = error
        if self._on_change is not None:
            self._on_change(self.receipt_id, phase)
        return True

    def close(self) -> None:
        self.closed = True


class PollHandle:
    """A running poll. Await it for the results; ``cancel()`` to abandon it."""

    def __init__(self, receipt_id: str, task: asyncio.Task[ReceiptAnalysis], lifecycle: PollLifecycle) -> None:
        self.receipt_id = receipt_id
        self.lifecycle = lifecycle
        self._task = task

    def __await__(self) -> Generator[Any, None, ReceiptAnalysis]:
        return self._task.__await__()

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    def cancel(self) -> None:
        self.lifecycle.close()
        self._task.cancel()

    def add_done_callback(self, callback: Callable[[PollHandle], None]) -> None:
        self._task.add_done_callback(lambda _task: callback(self))


class StatusPoller:
    """Poll a status source at a fixed interval until a terminal status."""

    def __init__(
        self,
        source: StatusSource,
        config: PollerConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_transition: Callable[[str, PollPhase], None] | None = None,
    ) -> None:
        self.source = source
        self.config = config or PollerConfig()
        self._sleep = sleep
        self._on_transition = on_transition

    def new_lifecycle(self, receipt_id: str) -> PollLifecycle:
        return PollLifecycle(receipt_id, on_change=self._on_transition)

    async def poll(self, receipt_id: str, lifecycle: PollLifecycle | None = None) -> ReceiptAnalysis:
        """Poll until results are available.

        Raises:
            WorkerFailedError: the worker reported FAILED (message verbatim).
            PollTimeoutError: ``max_attempts`` status requests without a terminal status.
            NetworkError: too many consecutive transport failures.
        """
        lifecycle = lifecycle or self.new_lifecycle(receipt_id)
        lifecycle.update("analyzing")
        try:
            analysis = await self._poll_until_done(receipt_id)
        except IngestError as exc:
            lifecycle.update("error", exc)
            raise
        lifecycle.update("results")
        return analysis

    async def _poll_until_done(self, receipt_id: str) -> ReceiptAnalysis:
        config = self.config
        network_errors = 0
        for attempt in range(1, config.max_attempts + 1):
            try:
                report = await self.source.get_status(receipt_id)
            except NetworkError as exc:
                network_errors += 1
                logger.warning(
                    "Status request %d for receipt %s failed (%d in a row): %s",
                    attempt,
                    receipt_id,
                    network_errors,
                    exc.message,
                )
                if network_errors > config.max_network_errors:
                    raise
            else:
                network_errors = 0
                decision = classify_status(report.status)
                logger.debug("Receipt %s attempt %d: %s -> %s", receipt_id, attempt, report.status, decision)
                if decision == "COMPLETED":
                    return await self.source.get_results(receipt_id)
                if decision == "FAILED":
                    raise WorkerFailedError(report.error_message or "Receipt analysis failed")

            if attempt < config.max_attempts:
                await self._sleep(config.interval_seconds)

        raise PollTimeoutError(
            f"Receipt {receipt_id} was still processing after {config.max_attempts} status checks"
        )

    def start(self, receipt_id: str, lifecycle: PollLifecycle | None = None) -> PollHandle:
        """Run ``poll`` as a task on the current event loop."""
        lifecycle = lifecycle or self.new_lifecycle(receipt_id)
        task = asyncio.create_task(self.poll(receipt_id, lifecycle), name=f"poll-{receipt_id}")
        return PollHandle(receipt_id, task, lifecycle)


class PollerRegistry:
    """At most one live poll per receipt."""

    def __init__(self, poller: StatusPoller) -> None:
        self.poller = poller
        self._handles: dict[str, PollHandle] = {}

    def start(self, receipt_id: str, lifecycle: PollLifecycle | None = None) -> PollHandle:
        previous = self._handles.pop(receipt_id, None)
        if previous is not None and not previous.done:
            logger.debug("Replacing running poll for receipt %s", receipt_id)
            previous.cancel()
        handle = self.poller.start(receipt_id, lifecycle)
        self._handles[receipt_id] = handle
        handle.add_done_callback(self._forget)
        return handle

    def _forget(self, handle: PollHandle) -> None:
        if self._handles.get(handle.receipt_id) is handle:
            del self._handles[handle.receipt_id]

    def get(self, receipt_id: str) -> PollHandle | None:
        return self._handles.get(receipt_id)

    def active(self) -> list[str]:
        return sorted(self._handles)

    def cancel(self, receipt_id: str) -> None:
        handle = self._handles.pop(receipt_id, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for receipt_id in list(self._handles):
            self.cancel(receipt_id)
