"""Receipt command handlers used by the unified CLI."""

import argparse
import asyncio
import sys
from collections.abc import Callable
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import TYPE_CHECKING

from larder.domain.errors import (
    CommitError,
    IngestError,
    NothingToCommitError,
    PhaseIncompleteError,
    ValidationError,
)
from larder.domain.receipt import CommitOptions, DetectedLineItem, ItemPatch
from larder.receipt.phases import confidence_level, format_confidence
from larder.runtime import get_logger, get_settings
from larder.runtime.receipt_api_client import ReceiptApiClient

if TYPE_CHECKING:
    from larder.application.receipts.ingest import ReceiptIngestFlow

logger = get_logger(__name__)

Ask = Callable[[str], str]

# Re-prompted locally; everything else ends the session.
GUARD_ERRORS = (ValidationError, PhaseIncompleteError, NothingToCommitError, CommitError)


def _client(args: argparse.Namespace) -> ReceiptApiClient:
    settings = get_settings()
    return ReceiptApiClient(
        getattr(args, "api_url", None) or settings.api_url,
        max_upload_bytes=settings.max_upload_bytes,
        allowed_image_types=settings.allowed_image_types,
    )


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the FastAPI receipt service."""
    import uvicorn

    print(f"Starting receipt service on {args.host}:{args.port}")
    print(f"Upload endpoint: http://{args.host}:{args.port}/receipt/upload")
    print("Press Ctrl+C to stop")

    uvicorn.run("larder.runtime.receipt_server:create_app", factory=True, host=args.host, port=args.port)
    return 0


def _describe_item(index: int, item: DetectedLineItem) -> str:
    quantity = f" x{item.quantity}" if item.quantity != 1 else ""
    price = f" ${item.total_price:.2f}" if item.total_price is not None else ""
    if item.resolution == "SKIPPED":
        target = "(skipped)"
    elif item.selected_match is not None:
        target = f"-> {item.selected_match.display_name}"
    elif item.top_candidate is not None:
        target = f"?  {item.top_candidate.display_name}"
    else:
        target = "?  no match"
    level = confidence_level(item.confidence)
    return f"  {index}. {item.detected_name}{quantity}{price}  {target}  ({format_confidence(item.confidence)} {level})"


def _parse_patch(ask: Ask) -> ItemPatch | None:
    raw_quantity = ask("  Quantity (blank keeps): ").strip()
    raw_expiry = ask("  Expiry date YYYY-MM-DD (blank keeps): ").strip()
    try:
        quantity = Decimal(raw_quantity) if raw_quantity else None
        expiry = date.fromisoformat(raw_expiry) if raw_expiry else None
    except (InvalidOperation, ValueError):
        print("  Invalid value, nothing changed.")
        return None
    if quantity is None and expiry is None:
        return None
    return ItemPatch(quantity=quantity, expiry_date=expiry)


async def _review_item(flow: "ReceiptIngestFlow", item: DetectedLineItem, ask: Ask) -> None:
    """Resolve one item: pick a candidate, enter a product by name, edit, or skip."""
    print(f"\n{item.detected_name}  ({format_confidence(item.confidence)})")
    for number, candidate in enumerate(item.candidate_matches, 1):
        brand = f" [{candidate.brand}]" if candidate.brand else ""
        print(f"  {number}. {candidate.display_name}{brand}  ({format_confidence(candidate.confidence)})")
    print("  m. Enter product name   e. Edit quantity/expiry   s. Skip")

    while True:
        choice = ask("  Choice: ").strip().lower()
        try:
            if choice in {"", "s"}:
                await flow.skip(item.id)
                return
            if choice == "m":
                name = ask("  Product name: ").strip()
                await flow.select_match(item.id, None, name)
                return
            if choice == "e":
                patch = _parse_patch(ask)
                if patch is not None:
                    await flow.edit(item.id, patch)
                continue
            if choice.isdigit() and 1 <= int(choice) <= len(item.candidate_matches):
                candidate = item.candidate_matches[int(choice) - 1]
                await flow.select_match(item.id, candidate.product_ref, candidate.display_name)
                return
        except GUARD_ERRORS as exc:
            print(f"  {exc.message}")
            continue
        print("  Invalid choice.")


async def review_session(flow: "ReceiptIngestFlow", ask: Ask = input) -> bool:
    """Walk the user through both phases and commit. Returns True once committed."""
    engine = flow.engine

    while engine.state == "REVIEWING_PHASE1":
        session = flow.session
        print(f"\nPhase 1: confident matches ({len(session.phase1_items)})")
        for index, item in enumerate(session.phase1_items, 1):
            print(_describe_item(index, item))
        choice = ask("[a]ccept all, <N> review item, [n]ext, [q]uit: ").strip().lower()
        try:
            if choice == "a":
                accepted = await flow.accept_all_confident()
                print(f"Accepted {accepted} item(s).")
            elif choice == "n":
                flow.advance_from_phase1()
            elif choice == "q":
                return False
            elif choice.isdigit() and 1 <= int(choice) <= len(session.phase1_items):
                await _review_item(flow, session.phase1_items[int(choice) - 1], ask)
            else:
                print("Invalid choice.")
        except GUARD_ERRORS as exc:
            print(exc.message)

    if engine.state == "REVIEWING_PHASE2":
        session = flow.session
        pending = [item for item in session.phase2_items if not item.is_resolved]
        print(f"\nPhase 2: {len(pending)} item(s) need a decision")
        for item in pending:
            await _review_item(flow, item, ask)

    while engine.state in {"REVIEWING_PHASE2", "COMMITTING"}:
        session = flow.session
        answer = ask(f"Add {session.validated_count} item(s) to inventory? [Y/n] ").strip().lower()
        if answer == "n":
            return False
        try:
            summary = await flow.commit(CommitOptions())
        except GUARD_ERRORS as exc:
            print(exc.message)
            if isinstance(exc, NothingToCommitError):
                return False
            continue
        print(f"Added {len(summary.added)} item(s), ${summary.total_amount_spent:.2f} spent.")
        for failed in summary.failed:
            print(f"  Not added: {failed.product_name} ({failed.error})")
        return True
    return False


async def _scan(args: argparse.Namespace, ask: Ask) -> int:
    from larder.application.receipts.ingest import ReceiptIngestFlow
    from larder.application.receipts.polling import PollerConfig, StatusPoller
    from larder.receipt.validation_engine import ValidationEngine
    from larder.runtime import load_category_rule_layers

    settings = get_settings()
    receipt_path = Path(args.image)
    if not receipt_path.exists():
        print(f"Error: Receipt file not found: {receipt_path}")
        return 1

    async with _client(args) as client:
        flow = ReceiptIngestFlow(
            client,
            StatusPoller(
                client,
                PollerConfig.from_settings(settings),
                on_transition=lambda receipt_id, phase: print(f"[{phase}]"),
            ),
            ValidationEngine(
                threshold=settings.high_confidence_threshold,
                rule_layers=load_category_rule_layers(),
            ),
        )
        try:
            session = await flow.analyze_file(receipt_path)
        except ValidationError as exc:
            print(f"Error: {exc.message}")
            return 1
        except IngestError as exc:
            logger.error("Scan failed: %s", exc.message)
            print(f"Scan failed: {exc.message}")
            return 1

        print(f"\nReceipt {session.receipt_id}: {len(session.items)} item(s) detected")
        if args.no_review:
            print(f"Review later with the receipt id {session.receipt_id}.")
            return 0
        if not sys.stdin.isatty() and ask is input:
            print("Error: review requires an interactive TTY (use --no-review).")
            return 1

        try:
            committed = await review_session(flow, ask)
        except IngestError as exc:
            print(f"Review failed: {exc.message}")
            return 1
        if not committed:
            print("Receipt left for later review.")
        return 0


def cmd_scan(args: argparse.Namespace, ask: Ask = input) -> int:
    """Upload a receipt, wait for recognition, review both phases and commit."""
    return asyncio.run(_scan(args, ask))


def cmd_status(args: argparse.Namespace) -> int:
    async def run() -> int:
        async with _client(args) as client:
            report = await client.get_status(args.receipt_id)
        print(f"Receipt {report.receipt_id}: {report.status}")
        print(f"  {report.message}")
        print(f"  Items: {report.validated_items}/{report.total_items} validated ({report.validation_progress}%)")
        if report.estimated_time_remaining is not None:
            print(f"  About {report.estimated_time_remaining}s remaining")
        if report.error_message:
            print(f"  Error: {report.error_message}")
        if report.added_to_inventory:
            print("  Added to inventory")
        return 0

    try:
        return asyncio.run(run())
    except IngestError as exc:
        print(f"Error: {exc.message}")
        return 1


def cmd_history(args: argparse.Namespace) -> int:
    """List past receipts, newest first."""

    async def run() -> int:
        async with _client(args) as client:
            records = await client.history(status=args.status, limit=args.limit, offset=args.offset)
        if not records:
            print("No receipts found.")
            return 0
        print(f"\nReceipts ({len(records)}):")
        print("-" * 60)
        for record in records:
            merchant = record.merchant_name or "Unknown merchant"
            amount = f"${record.total_amount:>7.2f}" if record.total_amount is not None else " " * 8
            print(f"  {record.created_at:%Y-%m-%d}  {amount}  {merchant:<24}  {record.status:<10}  {record.id}")
        print("-" * 60)
        return 0

    try:
        return asyncio.run(run())
    except IngestError as exc:
        print(f"Error: {exc.message}")
        return 1


def cmd_delete(args: argparse.Namespace) -> int:
    async def run() -> int:
        async with _client(args) as client:
            await client.delete(args.receipt_id)
        print(f"Deleted receipt {args.receipt_id}")
        return 0

    try:
        return asyncio.run(run())
    except IngestError as exc:
        print(f"Error: {exc.message}")
        return 1
