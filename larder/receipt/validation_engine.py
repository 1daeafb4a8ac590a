"""Two-phase validation state machine for one receipt.

One engine instance drives one ingestion attempt:

    CAPTURING -> UPLOADING -> ANALYZING -> REVIEWING_PHASE1
        -> REVIEWING_PHASE2 (only when phase 2 has items) -> COMMITTING -> DONE

ERROR is reachable from every state except DONE; ``retry()`` leads back to
CAPTURING. Item counts are computed from the session on every read.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Literal, Protocol

from larder.domain.errors import (
    CommitInProgressError,
    InvalidTransitionError,
    NothingToCommitError,
    PhaseIncompleteError,
    ValidationError,
)
from larder.domain.receipt import CommitLine, CommitOptions, CommitSummary, DetectedLineItem, ItemPatch
from larder.receipt import resolution
from larder.receipt.item_categories import CategoryRuleLayers
from larder.receipt.phases import HIGH_CONFIDENCE, separate
from larder.runtime.logging import get_logger

logger = get_logger(__name__)

EngineState = Literal[
    "CAPTURING",
    "UPLOADING",
    "ANALYZING",
    "REVIEWING_PHASE1",
    "REVIEWING_PHASE2",
    "COMMITTING",
    "DONE",
    "ERROR",
]

REVIEW_STATES: frozenset[str] = frozenset({"REVIEWING_PHASE1", "REVIEWING_PHASE2"})
COMMITTABLE_STATES: frozenset[str] = REVIEW_STATES | {"COMMITTING"}


class InventoryCommitter(Protocol):
    """Anything that can turn validated lines into inventory entries."""

    async def commit(
        self, receipt_id: str, lines: Sequence[CommitLine], options: CommitOptions
    ) -> CommitSummary: ...


@dataclass
class ValidationSession:
    """Client-held review state derived from the recognized items."""

    receipt_id: str
    phase: Literal[1, 2]
    phase1_items: list[DetectedLineItem]
    phase2_items: list[DetectedLineItem]

    @property
    def items(self) -> list[DetectedLineItem]:
        return [*self.phase1_items, *self.phase2_items]

    @property
    def validated_count(self) -> int:
        return sum(1 for item in self.items if item.resolution == "VALIDATED")

    @property
    def skipped_count(self) -> int:
        return sum(1 for item in self.items if item.resolution == "SKIPPED")

    @property
    def pending_phase1(self) -> list[DetectedLineItem]:
        return [item for item in self.phase1_items if not item.is_resolved]

    @property
    def phase1_complete(self) -> bool:
        return not self.pending_phase1

    def find(self, item_id: str) -> DetectedLineItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise ValidationError(f"Unknown item {item_id!r} for receipt {self.receipt_id}")


class ValidationEngine:
    """Per-session finite state machine for receipt review and commit."""

    def __init__(
        self,
        threshold: float = HIGH_CONFIDENCE,
        rule_layers: CategoryRuleLayers | None = None,
        on_transition: Callable[[EngineState, EngineState], None] | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.threshold = threshold
        self.state: EngineState = "CAPTURING"
        self.receipt_id: str | None = None
        self.session: ValidationSession | None = None
        self.error_message: str | None = None
        self._rule_layers = rule_layers
        self._on_transition = on_transition
        self._today = today
        self._commit_in_flight = False

    @classmethod
    def resume(
        cls,
        receipt_id: str,
        items: Sequence[DetectedLineItem],
        threshold: float = HIGH_CONFIDENCE,
        rule_layers: CategoryRuleLayers | None = None,
    ) -> ValidationEngine:
        """Rebuild a reviewing engine from a persisted item set."""
        engine = cls(threshold=threshold, rule_layers=rule_layers)
        engine.receipt_id = receipt_id
        engine._open_session(items)
        session = engine.session
        assert session is not None
        if session.phase1_complete and session.phase2_items:
            session.phase = 2
            engine.state = "REVIEWING_PHASE2"
        return engine

    # --- lifecycle ---

    def _set_state(self, new_state: EngineState) -> None:
        old_state = self.state
        self.state = new_state
        logger.debug("Engine %s: %s -> %s", self.receipt_id or "-", old_state, new_state)
        if self._on_transition is not None and old_state != new_state:
            self._on_transition(old_state, new_state)

    def _require(self, *states: str) -> None:
        if self.state not in states:
            raise InvalidTransitionError(f"Cannot do that while {self.state}; expected one of {', '.join(states)}")

    def start_upload(self) -> None:
        self._require("CAPTURING")
        self._set_state("UPLOADING")

    def mark_analyzing(self, receipt_id: str) -> None:
        self._require("UPLOADING")
        self.receipt_id = receipt_id
        self._set_state("ANALYZING")

    def load_results(self, receipt_id: str, items: Sequence[DetectedLineItem]) -> None:
        """Recognition finished: split items into phases and start review."""
        self._require("ANALYZING")
        if receipt_id != self.receipt_id:
            raise InvalidTransitionError(f"Results for {receipt_id} do not belong to receipt {self.receipt_id}")
        self._open_session(items)

    def _open_session(self, items: Sequence[DetectedLineItem]) -> None:
        assert self.receipt_id is not None
        split = separate(items, self.threshold)
        self.session = ValidationSession(
            receipt_id=self.receipt_id,
            phase=1,
            phase1_items=list(split.phase1),
            phase2_items=list(split.phase2),
        )
        logger.info(
            "Receipt %s: %d confident, %d need review",
            self.receipt_id,
            len(split.phase1),
            len(split.phase2),
        )
        if not split.phase1 and split.phase2:
            self.session.phase = 2
            self._set_state("REVIEWING_PHASE2")
        else:
            self._set_state("REVIEWING_PHASE1")

    def fail(self, message: str) -> None:
        """Move to ERROR, keeping the message verbatim for display."""
        if self.state == "DONE":
            raise InvalidTransitionError("Session already committed")
        self.error_message = message
        logger.warning("Receipt %s failed: %s", self.receipt_id or "-", message)
        self._set_state("ERROR")

    def retry(self) -> None:
        self._require("ERROR")
        self.receipt_id = None
        self.session = None
        self.error_message = None
        self._set_state("CAPTURING")

    # --- per-item operations ---

    def _review_item(self, item_id: str) -> DetectedLineItem:
        self._require(*sorted(REVIEW_STATES))
        return self._require_session().find(item_id)

    def _require_session(self) -> ValidationSession:
        if self.session is None:
            raise InvalidTransitionError("No review session is open")
        return self.session

    def select_match(self, item_id: str, product_ref: str | None, display_name: str | None = None) -> None:
        resolution.select_match(self._review_item(item_id), product_ref, display_name)

    def skip(self, item_id: str) -> None:
        resolution.skip_item(self._review_item(item_id))

    def edit(self, item_id: str, patch: ItemPatch) -> None:
        resolution.apply_patch(self._review_item(item_id), patch, today=self._today())

    def accept_all_confident(self) -> int:
        """Select the top candidate of every pending phase-1 item. Returns how many."""
        self._require(*sorted(REVIEW_STATES))
        accepted = 0
        for item in self._require_session().pending_phase1:
            top = item.top_candidate
            if top is not None:
                resolution.select_match(item, top.product_ref, top.display_name)
                accepted += 1
        return accepted

    def advance_from_phase1(self) -> None:
        self._require("REVIEWING_PHASE1")
        session = self._require_session()
        pending = session.pending_phase1
        if pending:
            raise PhaseIncompleteError(f"{len(pending)} confident item(s) still need a decision")
        if session.phase2_items:
            session.phase = 2
            self._set_state("REVIEWING_PHASE2")
        else:
            self._set_state("COMMITTING")

    # --- commit ---

    def commit_lines(self) -> list[CommitLine]:
        """Check commit guards and build one line per VALIDATED item."""
        if self._commit_in_flight:
            raise CommitInProgressError(f"Receipt {self.receipt_id} is already being committed")
        self._require(*sorted(COMMITTABLE_STATES))
        session = self._require_session()

        validated = [item for item in session.items if item.resolution == "VALIDATED"]
        if not validated:
            raise NothingToCommitError("Validate at least one item before adding to inventory")
        if not session.phase1_complete:
            raise PhaseIncompleteError(f"{len(session.pending_phase1)} confident item(s) still need a decision")

        today = self._today()
        for item in validated:
            try:
                resolution.validate_patch(ItemPatch(quantity=item.quantity, expiry_date=item.expiry_date), today)
            except ValidationError as exc:
                raise ValidationError(f"{item.detected_name}: {exc.message}") from exc
        return [resolution.build_commit_line(item, self._rule_layers) for item in validated]

    async def commit(self, committer: InventoryCommitter, options: CommitOptions | None = None) -> CommitSummary:
        """Hand the validated lines to the committer; DONE on success.

        Any committer failure puts the engine back where it was so the user
        can retry without redoing the review.
        """
        lines = self.commit_lines()
        session = self._require_session()
        previous = self.state
        self._commit_in_flight = True
        self._set_state("COMMITTING")
        try:
            summary = await committer.commit(session.receipt_id, lines, options or CommitOptions())
        except BaseException as exc:
            logger.error("Commit of receipt %s failed: %s", session.receipt_id, exc)
            self._set_state(previous)
            raise
        finally:
            self._commit_in_flight = False

        logger.info(
            "Receipt %s committed: %d added, %d failed", session.receipt_id, len(summary.added), len(summary.failed)
        )
        self.session = None
        self._set_state("DONE")
        return summary
