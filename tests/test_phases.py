"""Tests for confidence-based phase separation."""

from __future__ import annotations

import pytest

from larder.receipt.phases import confidence_level, format_confidence, is_confident, separate


def test_five_item_receipt_splits_four_and_one(five_items) -> None:
    split = separate(five_items)

    assert [item.id for item in split.phase1] == ["i1", "i2", "i3", "i4"]
    assert [item.id for item in split.phase2] == ["i5"]


def test_split_is_total_and_disjoint(five_items) -> None:
    split = separate(five_items)

    phase1_ids = {item.id for item in split.phase1}
    phase2_ids = {item.id for item in split.phase2}
    assert phase1_ids | phase2_ids == {item.id for item in five_items}
    assert not phase1_ids & phase2_ids


@pytest.mark.parametrize(
    ("confidence", "has_candidate", "expected"),
    [
        (0.8, True, True),
        (0.79999, True, False),
        (1.0, False, False),
        (0.0, True, False),
    ],
)
def test_threshold_boundary_and_candidate_requirement(make_item, confidence, has_candidate, expected) -> None:
    candidates = [("p1", "Product", confidence)] if has_candidate else []
    item = make_item("x", confidence, candidates)

    assert is_confident(item) is expected


def test_custom_threshold(make_item) -> None:
    item = make_item("x", 0.6, [("p1", "Product", 0.6)])

    assert separate([item], threshold=0.5).phase1 == (item,)
    assert separate([item], threshold=0.7).phase2 == (item,)


def test_separate_preserves_detection_order(make_item) -> None:
    items = [
        make_item("a", 0.2),
        make_item("b", 0.9, [("p", "P", 0.9)]),
        make_item("c", 0.1),
        make_item("d", 0.99, [("q", "Q", 0.99)]),
    ]
    split = separate(items)

    assert [item.id for item in split.phase1] == ["b", "d"]
    assert [item.id for item in split.phase2] == ["a", "c"]


def test_separate_empty() -> None:
    split = separate([])

    assert split.phase1 == ()
    assert split.phase2 == ()


@pytest.mark.parametrize(
    ("confidence", "level"),
    [(0.95, "high"), (0.8, "high"), (0.79, "medium"), (0.5, "medium"), (0.49, "low"), (0.0, "low")],
)
def test_confidence_levels(confidence: float, level: str) -> None:
    assert confidence_level(confidence) == level


def test_format_confidence_rounds_to_whole_percent() -> None:
    assert format_confidence(0.856) == "86%"
    assert format_confidence(1.0) == "100%"
