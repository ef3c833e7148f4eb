"""
fulfillment_config -- single public entrypoint for fulfillment settings.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned
    ``FulfillmentConfig`` by injection and never read files or environment
    variables themselves.

Architecture position:
    Configuration -- sits below ``fulfillment_kernel`` and
    ``fulfillment_jobs``.  MUST NOT import from either.

Failure modes:
    - ``FileNotFoundError`` -- an explicit or environment-named override
      file does not exist.
    - ``ValueError`` -- unknown keys, wrong types or out-of-range values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``FULFILLMENT_CONFIG_TRACE`` log entry naming the override source and
    the effective short-pick policy.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fulfillment_config.loader import load_yaml_file, merge_settings, parse_config
from fulfillment_config.schema import (
    AllocationSettings,
    DatabaseSettings,
    FulfillmentConfig,
    JobSettings,
    PickPathSettings,
    ShortPickSettings,
)

__all__ = [
    "AllocationSettings",
    "DatabaseSettings",
    "FulfillmentConfig",
    "JobSettings",
    "PickPathSettings",
    "ShortPickSettings",
    "get_active_config",
]

_logger = logging.getLogger("fulfillment_kernel.config")

CONFIG_ENV_VAR = "FULFILLMENT_CONFIG"

_DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> FulfillmentConfig:
    """The ONLY public configuration entrypoint.

    Loads the packaged defaults and overlays *path* (or the file named by
    ``FULFILLMENT_CONFIG`` when *path* is None).

    Raises:
        FileNotFoundError: If the override file does not exist.
        ValueError: If the merged settings fail validation.
    """
    data = load_yaml_file(_DEFAULTS_FILE)

    override = path if path is not None else os.environ.get(CONFIG_ENV_VAR)
    source = None
    if override:
        source = str(override)
        data = merge_settings(data, load_yaml_file(Path(override)))

    config = parse_config(data, source=source)

    _logger.info(
        "FULFILLMENT_CONFIG_TRACE",
        extra={
            "trace_type": "FULFILLMENT_CONFIG_TRACE",
            "config_source": source or "defaults",
            "allow_partial": config.allocation.allow_partial,
            "short_pick_threshold": config.short_pick.threshold,
            "short_pick_window_days": config.short_pick.window_days,
            "job_max_attempts": config.jobs.max_attempts,
        },
    )
    return config
