"""
Configuration for catalog parsing and scan validation.

Handles header aliases used to find the code and quantity columns of an
uploaded spreadsheet. Config is declarative JSON - edit the file, not the code.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_CONFIG_PATH = Path(__file__).parent / "column_config.json"


@dataclass
class ScanSettings:
    """Limits applied to scanned codes."""
    max_code_length: int = 512


@dataclass
class Config:
    """Full configuration for catalog column detection."""
    code_columns: list[str] = field(default_factory=list)
    quantity_columns: list[str] = field(default_factory=list)
    settings: ScanSettings = field(default_factory=ScanSettings)

    def find_code_column(self, headers: Iterable[str]) -> Optional[str]:
        """First header matching a code alias (alias order wins)."""
        return _find_column(headers, self.code_columns)

    def find_quantity_column(self, headers: Iterable[str]) -> Optional[str]:
        """First header matching a quantity alias, or None."""
        return _find_column(headers, self.quantity_columns)


def _find_column(headers: Iterable[str], aliases: list[str]) -> Optional[str]:
    by_lower = {}
    for header in headers:
        if isinstance(header, str):
            by_lower.setdefault(header.strip().lower(), header)
    for alias in aliases:
        match = by_lower.get(alias.lower())
        if match is not None:
            return match
    return None


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load configuration from JSON file.

    Args:
        config_path: Path to column_config.json (defaults to the packaged file)

    Returns:
        Config object with column aliases and scan settings
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    settings_data = data.get("settings", {})
    settings = ScanSettings(
        max_code_length=int(settings_data.get("max_code_length", 512)),
    )

    return Config(
        code_columns=data.get("code_columns", []),
        quantity_columns=data.get("quantity_columns", []),
        settings=settings,
    )
