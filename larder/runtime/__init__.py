"""Runtime infrastructure for larder.

This package provides process/runtime services including:
- Logging setup via get_logger()
- Path resolution via get_paths(), ProjectPaths
- Ingest settings via get_settings(), IngestSettings
- Category rule loading via load_category_rule_layers()

Usage:
    from larder.runtime import get_logger, get_paths, get_settings

    logger = get_logger(__name__)
    paths = get_paths()
    print(paths.root, paths.receipt_records)
"""

from larder.runtime.category_rules import load_category_rule_layers
from larder.runtime.logging import (
    DEFAULT_LOG_LEVEL,
    LOG_FORMAT,
    LOG_FORMAT_DEBUG,
    configure_logging,
    get_logger,
    set_log_level,
)
from larder.runtime.paths import ProjectPaths, get_paths, set_data_root
from larder.runtime.settings import IngestSettings, get_settings, load_settings, reset_settings

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "set_log_level",
    "DEFAULT_LOG_LEVEL",
    "LOG_FORMAT",
    "LOG_FORMAT_DEBUG",
    # Rules
    "load_category_rule_layers",
    # Paths
    "get_paths",
    "set_data_root",
    "ProjectPaths",
    # Settings
    "IngestSettings",
    "get_settings",
    "load_settings",
    "reset_settings",
]
