"""
YAML loading for ledger settings.

Reads ``defaults.yaml`` beside this module and, when present, an override
file whose keys replace the defaults (nested mappings are merged key by
key, lists are replaced whole).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML mapping from ``path``.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def merge_settings(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` over ``base`` without mutating either."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_settings(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_raw_settings(override_path: Path | None = None) -> dict[str, Any]:
    data = load_yaml_file(DEFAULTS_PATH)
    if override_path is not None:
        data = merge_settings(data, load_yaml_file(override_path))
    return data
