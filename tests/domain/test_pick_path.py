"""Pick path sequencing tests (pure, no database)."""

from uuid import UUID, uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from fulfillment_kernel.domain.pick_path import PickStop, sequence_pick_path


def _stop(name, zone="A", seq=None, sku="SKU-1", allocation_id=None, location_id=None):
    return PickStop(
        allocation_id=allocation_id or uuid4(),
        location_id=location_id or uuid4(),
        location_name=name,
        zone=zone,
        pick_sequence=seq,
        sku=sku,
    )


class TestSequencePickPath:
    def test_orders_by_zone_then_pick_sequence(self):
        stops = [
            _stop("B-01", zone="B", seq=1),
            _stop("A-20", zone="A", seq=20),
            _stop("A-05", zone="A", seq=5),
        ]
        ordered = sequence_pick_path(stops)
        assert [s.location_name for s in ordered] == ["A-05", "A-20", "B-01"]

    def test_numbers_from_one(self):
        ordered = sequence_pick_path([_stop("A-02", seq=2), _stop("A-01", seq=1)])
        assert [s.sequence for s in ordered] == [1, 2]

    def test_unsequenced_locations_sort_last_in_zone(self):
        ordered = sequence_pick_path([_stop("A-00"), _stop("A-99", seq=99)])
        assert [s.location_name for s in ordered] == ["A-99", "A-00"]

    def test_default_sequence_is_configurable(self):
        ordered = sequence_pick_path(
            [_stop("A-00"), _stop("A-99", seq=99)], default_sequence=0
        )
        assert [s.location_name for s in ordered] == ["A-00", "A-99"]

    def test_ties_broken_by_location_name_then_sku(self):
        ordered = sequence_pick_path([
            _stop("A-02", seq=1, sku="SKU-A"),
            _stop("A-01", seq=1, sku="SKU-B"),
            _stop("A-01", seq=1, sku="SKU-A"),
        ])
        assert [(s.location_name, s.sku) for s in ordered] == [
            ("A-01", "SKU-A"),
            ("A-01", "SKU-B"),
            ("A-02", "SKU-A"),
        ]

    def test_missing_zone_sorts_first(self):
        ordered = sequence_pick_path([_stop("A-01", zone="A", seq=1), _stop("X", zone=None, seq=1)])
        assert ordered[0].location_name == "X"

    def test_empty_input(self):
        assert sequence_pick_path([]) == []

    def test_input_is_not_mutated(self):
        stops = [_stop("A-02", seq=2), _stop("A-01", seq=1)]
        sequence_pick_path(stops)
        assert [s.sequence for s in stops] == [0, 0]


_names = st.sampled_from(["A-01", "A-02", "B-01", "B-02", "C-10"])


@st.composite
def stop_lists(draw):
    size = draw(st.integers(min_value=0, max_value=15))
    stops = []
    for i in range(size):
        name = draw(_names)
        stops.append(
            PickStop(
                allocation_id=UUID(int=i + 1),
                location_id=UUID(int=1000 + i),
                location_name=name,
                zone=name[0],
                pick_sequence=draw(st.one_of(st.none(), st.integers(1, 5))),
                sku=draw(st.sampled_from(["SKU-1", "SKU-2"])),
            )
        )
    return stops


class TestPickPathProperties:
    @given(stop_lists())
    @settings(max_examples=150, deadline=None)
    def test_sequence_is_a_permutation_numbered_contiguously(self, stops):
        ordered = sequence_pick_path(stops)
        assert sorted(s.allocation_id for s in ordered) == sorted(
            s.allocation_id for s in stops
        )
        assert [s.sequence for s in ordered] == list(range(1, len(stops) + 1))

    @given(stop_lists())
    @settings(max_examples=150, deadline=None)
    def test_deterministic_regardless_of_input_order(self, stops):
        forward = sequence_pick_path(stops)
        backward = sequence_pick_path(list(reversed(stops)))
        assert [s.allocation_id for s in forward] == [s.allocation_id for s in backward]

    @given(stop_lists())
    @settings(max_examples=150, deadline=None)
    def test_zones_are_visited_once(self, stops):
        zones = [s.zone for s in sequence_pick_path(stops)]
        visited = [z for i, z in enumerate(zones) if i == 0 or zones[i - 1] != z]
        assert len(visited) == len(set(visited))
