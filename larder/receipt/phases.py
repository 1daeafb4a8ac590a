"""Confidence-based partitioning of detected line items.

Phase 1 holds matches good enough to rubber-stamp; phase 2 isolates the
minority that needs attention (low confidence or no candidate at all).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from larder.domain.receipt import DetectedLineItem

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5

ConfidenceLevel = Literal["high", "medium", "low"]


@dataclass(frozen=True)
class PhaseSplit:
    phase1: tuple[DetectedLineItem, ...]
    phase2: tuple[DetectedLineItem, ...]


def is_confident(item: DetectedLineItem, threshold: float = HIGH_CONFIDENCE) -> bool:
    """True when the item belongs in phase 1."""
    return item.confidence >= threshold and len(item.candidate_matches) > 0


def separate(items: Sequence[DetectedLineItem], threshold: float = HIGH_CONFIDENCE) -> PhaseSplit:
    """Partition items into (phase1, phase2), preserving detection order."""
    phase1: list[DetectedLineItem] = []
    phase2: list[DetectedLineItem] = []
    for item in items:
        if is_confident(item, threshold):
            phase1.append(item)
        else:
            phase2.append(item)
    return PhaseSplit(phase1=tuple(phase1), phase2=tuple(phase2))


def confidence_level(confidence: float) -> ConfidenceLevel:
    if confidence >= HIGH_CONFIDENCE:
        return "high"
    if confidence >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


def format_confidence(confidence: float) -> str:
    """Format a [0,1] score as a whole percentage, e.g. 0.856 -> '86%'."""
    return f"{round(confidence * 100)}%"
