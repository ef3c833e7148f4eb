"""
FulfillmentConfig schema.

Typed, frozen view of the YAML settings consumed by the kernel and the job
dispatcher. The loader parses YAML fragments into these types; nothing else
reads configuration files.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings for the persistence handle."""

    url: str = "sqlite:///fulfillment.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 5
    busy_timeout_seconds: int = 30


@dataclass(frozen=True)
class AllocationSettings:
    """Allocation engine defaults."""

    allow_partial: bool = True


@dataclass(frozen=True)
class ShortPickSettings:
    """Cycle-count escalation policy for repeated short picks at a location."""

    threshold: int = 3
    window_days: int = 7
    cycle_count_priority: str = "HIGH"


@dataclass(frozen=True)
class JobSettings:
    """Retry policy applied by the job dispatcher."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05


@dataclass(frozen=True)
class PickPathSettings:
    """Pick path sequencing defaults."""

    # Locations without a pick sequence sort after every sequenced location
    default_sequence: int = 9999


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FulfillmentConfig:
    """Complete runtime settings. Every section has working defaults."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    allocation: AllocationSettings = field(default_factory=AllocationSettings)
    short_pick: ShortPickSettings = field(default_factory=ShortPickSettings)
    jobs: JobSettings = field(default_factory=JobSettings)
    pick_path: PickPathSettings = field(default_factory=PickPathSettings)
    source: str | None = None
