"""Category resolution for validated receipt items.

Maps a product name (the selected catalog match or the raw detected name) to
an inventory category key such as ``dairy`` or ``frozen``. Matching is fuzzy
(bigram similarity) so OCR noise like ``M1LK`` or ``CHIC KEN`` still lands in
the right category. When several rules match, a weighted score picks one:
rule priority first, then exact over fuzzy, then longer keywords.

Rules come from TOML layers (see ``larder.runtime.category_rules``); with no
layers loaded only the built-in fallback applies.
"""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

DEFAULT_CATEGORY = "other"

FUZZY_THRESHOLD_MEDIUM = 0.80  # keywords of 4-6 chars
FUZZY_THRESHOLD_LONG = 0.70  # keywords >= 7 chars

EXACT_MATCH_BONUS = 1000
PRIORITY_SCORE_MULTIPLIER = 10000

# Where an item of each category is normally kept once it is in the inventory.
DEFAULT_STORAGE_LOCATIONS: dict[str, str] = {
    "dairy": "fridge",
    "meat": "fridge",
    "seafood": "fridge",
    "fruit": "pantry",
    "vegetable": "fridge",
    "frozen": "freezer",
    "bakery": "pantry",
    "pantry": "pantry",
    "snacks": "pantry",
    "beverage": "pantry",
    "household": "cupboard",
    "personal_care": "cupboard",
}

RuleEntry = tuple[tuple[str, ...], str, int]


@dataclass(frozen=True)
class CategoryRuleLayers:
    """Merged in-memory categorization rules."""

    rules: tuple[RuleEntry, ...]
    exact_only_keywords: frozenset[str]
    storage_locations: Mapping[str, str]


def _normalize_keywords(raw: Any) -> tuple[str, ...]:
    if isinstance(raw, str):
        value = raw.strip()
        return (value,) if value else tuple()
    if isinstance(raw, list):
        return tuple(str(v).strip() for v in raw if str(v).strip())
    return tuple()


def build_category_rule_layers(configs: Sequence[Mapping[str, Any]] | None = None) -> CategoryRuleLayers:
    """Merge classifier configs; later configs get a higher layer priority."""
    rules: list[RuleEntry] = []
    exact_only: set[str] = set()
    storage = dict(DEFAULT_STORAGE_LOCATIONS)

    for idx, config in enumerate(configs or (), start=1):
        layer_priority = idx * 100
        for raw_kw in config.get("exact_only_keywords", []):
            kw = str(raw_kw).strip().upper()
            if kw:
                exact_only.add(kw)

        for rule in config.get("rules", []):
            if not isinstance(rule, Mapping):
                continue
            keywords = _normalize_keywords(rule.get("keywords"))
            category = str(rule.get("category") or "").strip()
            if not keywords or not category:
                continue
            rules.append((keywords, category, int(rule.get("priority", 0)) + layer_priority))
            if bool(rule.get("exact_only", False)):
                exact_only.update(kw.upper() for kw in keywords)

        locations = config.get("storage", {})
        if isinstance(locations, Mapping):
            for category, location in locations.items():
                if str(location).strip():
                    storage[str(category).strip()] = str(location).strip()

    return CategoryRuleLayers(
        rules=tuple(rules),
        exact_only_keywords=frozenset(exact_only),
        storage_locations=storage,
    )


@lru_cache(maxsize=1)
def _get_default_rule_layers() -> CategoryRuleLayers:
    return build_category_rule_layers()


def _bigram_similarity(keyword: str, window: str) -> float:
    """Share of the keyword's bigrams that also occur in the window."""
    if len(keyword) < 2:
        return 1.0 if keyword in window else 0.0
    kw_bigrams = {keyword[i : i + 2] for i in range(len(keyword) - 1)}
    window_bigrams = {window[i : i + 2] for i in range(len(window) - 1)}
    return len(kw_bigrams & window_bigrams) / len(kw_bigrams)


def _fuzzy_contains(keyword: str, name: str, exact_only: bool = False) -> tuple[bool, bool]:
    """Return (matched, is_exact) for keyword inside name.

    Keywords of three characters or fewer only match as whole words, so TEA
    does not match STEAK.
    """
    name_upper = name.upper()
    kw_upper = keyword.upper().strip()

    if len(kw_upper.replace(" ", "")) <= 3:
        return (re.search(r"\b" + re.escape(kw_upper) + r"\b", name_upper) is not None, True)

    compact_name = name_upper.replace(" ", "")
    compact_kw = kw_upper.replace(" ", "")
    if compact_kw in compact_name:
        return True, True
    if exact_only:
        return False, False

    threshold = FUZZY_THRESHOLD_MEDIUM if len(compact_kw) <= 6 else FUZZY_THRESHOLD_LONG
    window_size = len(compact_kw) + 1
    best = 0.0
    for start in range(max(1, len(compact_name) - len(compact_kw) + 2)):
        best = max(best, _bigram_similarity(compact_kw, compact_name[start : start + window_size]))
    return best >= threshold, False


def _score_matches(name: str, layers: CategoryRuleLayers) -> list[tuple[int, str]]:
    scored: list[tuple[int, str]] = []
    for keywords, category, priority in layers.rules:
        for kw in keywords:
            matched, is_exact = _fuzzy_contains(kw, name, exact_only=kw.upper() in layers.exact_only_keywords)
            if matched:
                score = len(kw.replace(" ", "")) * 10 + priority * PRIORITY_SCORE_MULTIPLIER
                if is_exact:
                    score += EXACT_MATCH_BONUS
                scored.append((score, category))
                break  # one keyword per rule is enough
    return scored


def categorize_name(
    name: str,
    default: str | None = None,
    rule_layers: CategoryRuleLayers | None = None,
) -> str | None:
    """Return the best category key for a product name, or ``default``."""
    layers = rule_layers or _get_default_rule_layers()
    scored = _score_matches(name, layers)
    if not scored:
        return default
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return scored[0][1]


def resolve_category(
    names: Sequence[str | None],
    rule_layers: CategoryRuleLayers | None = None,
) -> str:
    """Category of the first name that classifies, else DEFAULT_CATEGORY."""
    for name in names:
        if not name:
            continue
        category = categorize_name(name, rule_layers=rule_layers)
        if category is not None:
            return category
    return DEFAULT_CATEGORY


def default_storage_location(category: str, rule_layers: CategoryRuleLayers | None = None) -> str | None:
    layers = rule_layers or _get_default_rule_layers()
    return layers.storage_locations.get(category)
