"""Centralized path management for larder.

All on-disk state lives under one data root so the server, the CLI and the
tests agree on where receipts, images and inventory entries are kept.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _get_data_root() -> Path:
    """Data root from LARDER_HOME, defaulting to ~/.larder."""
    env_root = os.environ.get("LARDER_HOME", "").strip()
    if env_root:
        return Path(env_root).expanduser()
    return Path("~/.larder").expanduser()


@dataclass
class ProjectPaths:
    """Container for all larder paths.

    Layout:
        <root>/
        ├── config/           - larder.toml, categories.toml
        ├── receipts/
        │   ├── records/      - one JSON document per receipt
        │   └── images/       - uploaded receipt photos
        └── inventory/        - committed inventory entries (JSONL)
    """

    root: Path = field(default_factory=_get_data_root)

    def __post_init__(self) -> None:
        self.root = self.root.resolve()

    # --- Configuration paths ---
    @property
    def config(self) -> Path:
        return self.root / "config"

    @property
    def settings_file(self) -> Path:
        """Optional ``[ingest]`` overrides."""
        return self.config / "larder.toml"

    @property
    def category_rules(self) -> Path:
        """Project-level category classifier rules."""
        return self.config / "categories.toml"

    @property
    def default_category_rules(self) -> Path:
        """Category rules shipped with the package."""
        return Path(__file__).resolve().parents[1] / "receipt" / "rules" / "default_categories.toml"

    # --- Receipt paths ---
    @property
    def receipts(self) -> Path:
        return self.root / "receipts"

    @property
    def receipt_records(self) -> Path:
        return self.receipts / "records"

    @property
    def receipt_images(self) -> Path:
        return self.receipts / "images"

    # --- Inventory paths ---
    @property
    def inventory(self) -> Path:
        return self.root / "inventory"

    @property
    def inventory_ledger(self) -> Path:
        """Append-only inventory entries written by the local committer."""
        return self.inventory / "entries.jsonl"

    def ensure_directories(self) -> None:
        """Create all data directories if they don't exist."""
        self.config.mkdir(parents=True, exist_ok=True)
        self.receipt_records.mkdir(parents=True, exist_ok=True)
        self.receipt_images.mkdir(parents=True, exist_ok=True)
        self.inventory.mkdir(parents=True, exist_ok=True)


_paths: ProjectPaths | None = None


def get_paths() -> ProjectPaths:
    """Get the singleton ProjectPaths instance."""
    global _paths
    if _paths is None:
        _paths = ProjectPaths()
    return _paths


def set_data_root(root: Path) -> ProjectPaths:
    """Point the singleton at a different data root (used by ``--home`` and tests)."""
    global _paths
    _paths = ProjectPaths(root=root)
    return _paths
