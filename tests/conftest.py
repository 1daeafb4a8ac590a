"""Shared pytest fixtures for larder tests."""

from __future__ import annotations

import io
from collections.abc import Callable
from decimal import Decimal
from pathlib import Path

import pytest
from PIL import Image

from larder.domain.receipt import CandidateMatch, DetectedLineItem
from larder.receipt.item_categories import CategoryRuleLayers
from larder.runtime.category_rules import load_category_rule_layers
from larder.runtime.paths import ProjectPaths
from larder.runtime.settings import IngestSettings

ItemFactory = Callable[..., DetectedLineItem]


@pytest.fixture
def data_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the path and settings singletons at an empty temporary data root."""
    monkeypatch.setenv("LARDER_HOME", str(tmp_path))
    monkeypatch.setattr("larder.runtime.paths._paths", ProjectPaths(root=tmp_path))
    monkeypatch.setattr("larder.runtime.settings._settings", None)
    return tmp_path


@pytest.fixture
def settings() -> IngestSettings:
    return IngestSettings(poll_interval_seconds=0.0, max_poll_attempts=5)


@pytest.fixture
def make_item() -> ItemFactory:
    """Build a DetectedLineItem; ``candidates`` is a list of (ref, name, confidence)."""

    def factory(
        item_id: str,
        confidence: float,
        candidates: list[tuple[str | None, str, float]] | None = None,
        name: str | None = None,
        receipt_id: str = "r1",
        total_price: str | None = "3.99",
    ) -> DetectedLineItem:
        return DetectedLineItem(
            id=item_id,
            receipt_id=receipt_id,
            detected_name=name or f"ITEM {item_id}",
            confidence=confidence,
            total_price=None if total_price is None else Decimal(total_price),
            candidate_matches=[
                CandidateMatch(product_ref=ref, display_name=display, confidence=score)
                for ref, display, score in (candidates or [])
            ],
        )

    return factory


@pytest.fixture
def five_items(make_item: ItemFactory) -> list[DetectedLineItem]:
    """Four confident items with candidates and one unmatched low-confidence item."""
    return [
        make_item("i1", 0.95, [("p-milk", "Lactantia 2% Milk 2L", 0.95)], name="LACT 2% MILK"),
        make_item("i2", 0.90, [("p-bread", "Villaggio White Bread", 0.9)], name="VILLAGGIO BREAD"),
        make_item("i3", 0.85, [("p-banana", "Bananas", 0.85)], name="BANANAS"),
        make_item("i4", 0.80, [("p-chicken", "Chicken Breast", 0.8)], name="CHKN BREAST"),
        make_item("i5", 0.30, [], name="XQZ 4421"),
    ]


def image_bytes(fmt: str = "PNG", size: tuple[int, int] = (40, 60)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, "white").save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return image_bytes("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return image_bytes("JPEG")


@pytest.fixture
def rule_layers() -> CategoryRuleLayers:
    """Only the packaged category rules, independent of any project config."""
    return load_category_rule_layers(rule_paths=(str(ProjectPaths().default_category_rules),))
