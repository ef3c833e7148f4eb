"""
Pick path sequencing (``fulfillment_kernel.domain.pick_path``).

Orders the stops of a picking task so the operator walks each zone once and
visits locations in their configured pick sequence.  The resulting sequence
number is the authoritative pick order shown to the operator.

Pure: no I/O, deterministic for equal input.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from uuid import UUID


@dataclass(frozen=True)
class PickStop:
    """One allocation to be picked, with the location attributes that order it."""

    allocation_id: UUID
    location_id: UUID
    location_name: str
    zone: str | None
    pick_sequence: int | None
    sku: str
    sequence: int = 0


def sequence_pick_path(
    stops: list[PickStop], default_sequence: int = 9999
) -> list[PickStop]:
    """
    Return *stops* sorted into walking order and numbered from 1.

    Sort key: zone, location pick sequence (unsequenced locations last),
    location name, SKU, allocation id.  Stops at the same location are
    therefore always contiguous.
    """

    def key(stop: PickStop) -> tuple:
        seq = stop.pick_sequence if stop.pick_sequence is not None else default_sequence
        return (stop.zone or "", seq, stop.location_name, stop.sku, str(stop.allocation_id))

    ordered = sorted(stops, key=key)
    return [replace(stop, sequence=i) for i, stop in enumerate(ordered, start=1)]
