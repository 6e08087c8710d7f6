"""Roster synthesis properties over a seeded random source."""

import random

import pytest

from sector_ops.config import SynthesisSettings
from sector_ops.ingestion import Leg
from sector_ops.synthesizer import build_roster_legs, generate_rosters, group_by_departure


def _pool():
    return [
        Leg("SO101", "VIDP", "VABB", "A320", 2.1),
        Leg("SO102", "VABB", "VIDP", "A320", 2.0),
        Leg("SO103", "VIDP", "VOBL", "A320", 2.7),
        Leg("SO104", "VOBL", "VIDP", "A320", 2.6),
        Leg("SO105", "VABB", "VOBL", "A320", 1.6),
        Leg("SO106", "VOBL", "VABB", "A320", 1.7),
        Leg("SO107", "VIDP", "EGLL", "B788", 9.5),
        Leg("SO108", "EGLL", "VIDP", "B788", 8.8),
        Leg("SO109", "VIJP", "VIDP", "ATR72", 1.0),
    ]


class TestBuildRosterLegs:
    """Single roster construction from one airport."""

    def test_dead_end_returns_none(self):
        pool = group_by_departure([Leg("SO1", "VIDP", "VABB", "A320", 2.0)])
        assert build_roster_legs(pool, "VIDP", 10.0, random.Random(1)) is None

    def test_ceiling_excludes_long_legs(self):
        pool = group_by_departure(_pool())
        for seed in range(50):
            legs = build_roster_legs(pool, "VIDP", 10.0, random.Random(seed))
            if legs is not None:
                assert sum(leg.flight_time for leg in legs) <= 10.0

    def test_no_repeated_flight_numbers(self):
        pool = group_by_departure(_pool())
        for seed in range(50):
            legs = build_roster_legs(pool, "VABB", 10.0, random.Random(seed), min_legs=2, max_legs=4)
            if legs is not None:
                numbers = [leg.flight_number for leg in legs]
                assert len(numbers) == len(set(numbers))


class TestGenerateRosters:
    """Whole-pool synthesis with a seeded random source."""

    @pytest.mark.parametrize("seed", range(20))
    def test_roster_properties(self, seed):
        drafts = generate_rosters(_pool(), 10.0, rng=random.Random(seed))

        assert drafts
        for draft in drafts:
            assert 2 <= len(draft.legs) <= 4
            assert draft.legs[0].departure == draft.hub
            for current, following in zip(draft.legs, draft.legs[1:]):
                assert current.arrival == following.departure
            assert draft.total_flight_time <= 10.0
            assert 1.10 <= draft.multiplier <= 1.50
            assert round(draft.multiplier, 2) == draft.multiplier

    def test_at_most_three_per_hub(self):
        drafts = generate_rosters(_pool(), 10.0, rng=random.Random(3))
        hubs = [draft.hub for draft in drafts]
        for hub in set(hubs):
            assert hubs.count(hub) <= 3

    def test_hub_without_connections_skipped(self):
        drafts = generate_rosters(_pool(), 10.0, rng=random.Random(3))
        # EGLL's only leg leaves no room under the ceiling for a second one
        assert all(draft.hub != "EGLL" for draft in drafts)

    def test_seed_reproducible(self):
        first = generate_rosters(_pool(), 10.0, rng=random.Random(42))
        second = generate_rosters(_pool(), 10.0, rng=random.Random(42))
        assert [(d.name, [l.flight_number for l in d.legs], d.multiplier) for d in first] == [
            (d.name, [l.flight_number for l in d.legs], d.multiplier) for d in second
        ]

    def test_names_number_attempts(self):
        drafts = generate_rosters(_pool(), 10.0, rng=random.Random(5))
        for draft in drafts:
            assert draft.name.startswith(f"{draft.hub} Sector Duty #")

    def test_custom_settings(self):
        settings = SynthesisSettings(candidates_per_airport=1, min_legs=2, max_legs=2)
        drafts = generate_rosters(_pool(), 10.0, rng=random.Random(9), settings=settings)
        assert all(len(draft.legs) == 2 for draft in drafts)
        assert len({draft.hub for draft in drafts}) == len(drafts)

    def test_empty_pool(self):
        assert generate_rosters([], 10.0, rng=random.Random(1)) == []
