"""Randomized construction of multi-leg duty rosters.

Pure functions over a leg pool: the random source is injected so callers
(and tests) control reproducibility. Persistence lives in rosters.py.
"""

import random
from collections import defaultdict
from dataclasses import dataclass, field

from .config import SynthesisSettings
from .ingestion import Leg


@dataclass
class RosterDraft:
    """A generated roster not yet persisted."""

    name: str
    hub: str
    legs: list[Leg] = field(default_factory=list)
    multiplier: float = 1.0

    @property
    def total_flight_time(self) -> float:
        return sum(leg.flight_time for leg in self.legs)


def group_by_departure(legs: list[Leg]) -> dict[str, list[Leg]]:
    grouped: dict[str, list[Leg]] = defaultdict(list)
    for leg in legs:
        grouped[leg.departure].append(leg)
    return dict(grouped)


def build_roster_legs(
    legs_by_departure: dict[str, list[Leg]],
    origin: str,
    max_flight_time: float,
    rng: random.Random,
    min_legs: int = 2,
    max_legs: int = 4,
) -> list[Leg] | None:
    """Chain legs from `origin`; None if fewer than `min_legs` could be chained.

    Each step picks uniformly among legs departing the current airport whose
    flight number is unused in this roster and that keep the cumulative
    flight time within `max_flight_time`.
    """
    target = rng.randint(min_legs, max_legs)
    chosen: list[Leg] = []
    used: set[str] = set()
    position = origin
    total = 0.0

    while len(chosen) < target:
        candidates = [
            leg
            for leg in legs_by_departure.get(position, ())
            if leg.flight_number not in used and total + leg.flight_time <= max_flight_time
        ]
        if not candidates:
            break
        leg = rng.choice(candidates)
        chosen.append(leg)
        used.add(leg.flight_number)
        total += leg.flight_time
        position = leg.arrival

    if len(chosen) < min_legs:
        return None
    return chosen


def generate_rosters(
    legs: list[Leg],
    max_flight_time: float,
    rng: random.Random | None = None,
    settings: SynthesisSettings | None = None,
) -> list[RosterDraft]:
    """Build up to `candidates_per_airport` rosters for every departure airport."""
    rng = rng or random.Random()
    settings = settings or SynthesisSettings()
    legs_by_departure = group_by_departure(legs)

    drafts = []
    for hub in sorted(legs_by_departure):
        for attempt in range(settings.candidates_per_airport):
            chosen = build_roster_legs(
                legs_by_departure,
                hub,
                max_flight_time,
                rng,
                min_legs=settings.min_legs,
                max_legs=settings.max_legs,
            )
            if chosen is None:
                continue
            drafts.append(
                RosterDraft(
                    name=f"{hub} Sector Duty #{attempt + 1}",
                    hub=hub,
                    legs=chosen,
                    multiplier=round(
                        rng.uniform(settings.multiplier_min, settings.multiplier_max), 2
                    ),
                )
            )
    return drafts
