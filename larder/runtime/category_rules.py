"""Runtime loader for receipt item category rules."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from larder.receipt.item_categories import CategoryRuleLayers, build_category_rule_layers
from larder.runtime.paths import get_paths
from larder.runtime.settings import load_toml


@lru_cache(maxsize=8)
def load_category_rule_layers(rule_paths: tuple[str, ...] | None = None) -> CategoryRuleLayers:
    """Load category rules from the packaged defaults and the project config.

    Args:
        rule_paths: Optional explicit TOML files, lowest priority first. If None,
            uses the packaged default rules followed by <root>/config/categories.toml.
    """
    if rule_paths is None:
        p = get_paths()
        files = [p.default_category_rules, p.category_rules]
    else:
        files = [Path(path) for path in rule_paths]

    return build_category_rule_layers(tuple(load_toml(path) for path in files))
