"""
Configuration Loader (``fulfillment_config.loader``).

Responsibility
--------------
Loads YAML settings files and parses them into the frozen
``fulfillment_config.schema`` dataclasses.  The single public entry point
for runtime config is ``fulfillment_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown sections or keys are rejected, never silently ignored.
* Values must match the declared field type (``int`` fields do not accept
  ``bool``; ``float`` fields accept ``int``).
* Thresholds, windows and attempt counts must be positive.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key / wrong type / bad range  -> ``ValueError``.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any

import yaml

from fulfillment_config.schema import (
    AllocationSettings,
    DatabaseSettings,
    FulfillmentConfig,
    JobSettings,
    PickPathSettings,
    ShortPickSettings,
)

_SECTIONS: dict[str, type] = {
    "database": DatabaseSettings,
    "allocation": AllocationSettings,
    "short_pick": ShortPickSettings,
    "jobs": JobSettings,
    "pick_path": PickPathSettings,
}

_PYTHON_TYPES: dict[str, tuple[type, ...]] = {
    "str": (str,),
    "bool": (bool,),
    "int": (int,),
    "float": (int, float),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def merge_settings(
    base: dict[str, Any], override: dict[str, Any]
) -> dict[str, Any]:
    """Overlay *override* onto *base* one section deep."""
    merged = {key: dict(value or {}) for key, value in base.items()}
    for section, values in override.items():
        if not isinstance(values, dict):
            raise ValueError(f"Section '{section}' must be a mapping")
        merged.setdefault(section, {}).update(values)
    return merged


def _parse_section(name: str, cls: type, data: dict[str, Any]) -> Any:
    known = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        expected = _PYTHON_TYPES[str(known[key].type)]
        is_bool = isinstance(value, bool)
        if not isinstance(value, expected) or (is_bool and bool not in expected):
            raise ValueError(
                f"'{name}.{key}' must be {known[key].type}, got {value!r}"
            )
        kwargs[key] = value
    return cls(**kwargs)


def _validate(config: FulfillmentConfig) -> None:
    if config.short_pick.threshold < 1:
        raise ValueError("short_pick.threshold must be >= 1")
    if config.short_pick.window_days < 1:
        raise ValueError("short_pick.window_days must be >= 1")
    if config.jobs.max_attempts < 1:
        raise ValueError("jobs.max_attempts must be >= 1")
    if config.jobs.backoff_seconds < 0:
        raise ValueError("jobs.backoff_seconds must be >= 0")
    if not config.database.url:
        raise ValueError("database.url must not be empty")


def parse_config(
    data: dict[str, Any], source: str | None = None
) -> FulfillmentConfig:
    """
    Parse a settings dict into a ``FulfillmentConfig``.

    Missing sections and keys fall back to the schema defaults.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown config sections: {', '.join(unknown)}")

    sections = {
        name: _parse_section(name, cls, data.get(name) or {})
        for name, cls in _SECTIONS.items()
    }
    config = FulfillmentConfig(**sections, source=source)
    _validate(config)
    return config
