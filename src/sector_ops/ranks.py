"""Rank ladder and eligibility rules.

Tiers form an explicit total order (`Rank` is an IntEnum). Anything that
does not resolve to a tier, including the "Unknown" tag produced for
unrecognised aircraft, fails every eligibility check.
"""

from dataclasses import dataclass
from enum import IntEnum


UNKNOWN_RANK = "Unknown"


class Rank(IntEnum):
    CADET = 0
    SECOND_OFFICER = 1
    FIRST_OFFICER = 2
    SENIOR_FIRST_OFFICER = 3
    CAPTAIN = 4
    SENIOR_CAPTAIN = 5

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value) -> "Rank | None":
        """Resolve a label ("Senior First Officer"), enum name or Rank. None if unknown."""
        if isinstance(value, Rank):
            return value
        if not isinstance(value, str):
            return None
        key = " ".join(value.split()).lower()
        if not key:
            return None
        return _BY_KEY.get(key)


_LABELS = {
    Rank.CADET: "Cadet",
    Rank.SECOND_OFFICER: "Second Officer",
    Rank.FIRST_OFFICER: "First Officer",
    Rank.SENIOR_FIRST_OFFICER: "Senior First Officer",
    Rank.CAPTAIN: "Captain",
    Rank.SENIOR_CAPTAIN: "Senior Captain",
}

_BY_KEY = {}
for _rank, _label in _LABELS.items():
    _BY_KEY[_label.lower()] = _rank
    _BY_KEY[_rank.name.lower()] = _rank
    _BY_KEY[_rank.name.lower().replace("_", " ")] = _rank


@dataclass(frozen=True)
class RankTier:
    rank: Rank
    min_hours: float
    perks: tuple[str, ...]

    @property
    def label(self) -> str:
        return self.rank.label


RANK_TIERS: tuple[RankTier, ...] = (
    RankTier(Rank.CADET, 0, ("Turboprop and light aircraft",)),
    RankTier(Rank.SECOND_OFFICER, 10, ("Regional jets",)),
    RankTier(Rank.FIRST_OFFICER, 50, ("Narrow-body jets", "Codeshare routes")),
    RankTier(Rank.SENIOR_FIRST_OFFICER, 150, ("Medium wide-body jets",)),
    RankTier(Rank.CAPTAIN, 400, ("Long-haul wide-body jets", "Roster priority")),
    RankTier(Rank.SENIOR_CAPTAIN, 1000, ("Very large aircraft", "All routes unlocked")),
)


# Aircraft family substrings, matched case-insensitively in this order.
# Longer tokens come before the shorter tokens they contain.
AIRCRAFT_RANKS: tuple[tuple[str, Rank], ...] = (
    ("A380", Rank.SENIOR_CAPTAIN),
    ("A388", Rank.SENIOR_CAPTAIN),
    ("B747", Rank.SENIOR_CAPTAIN),
    ("B748", Rank.SENIOR_CAPTAIN),
    ("B777", Rank.CAPTAIN),
    ("B77", Rank.CAPTAIN),
    ("B787", Rank.CAPTAIN),
    ("B78", Rank.CAPTAIN),
    ("A350", Rank.CAPTAIN),
    ("A35", Rank.CAPTAIN),
    ("A330", Rank.SENIOR_FIRST_OFFICER),
    ("A33", Rank.SENIOR_FIRST_OFFICER),
    ("A340", Rank.SENIOR_FIRST_OFFICER),
    ("B767", Rank.SENIOR_FIRST_OFFICER),
    ("B757", Rank.SENIOR_FIRST_OFFICER),
    ("A318", Rank.FIRST_OFFICER),
    ("A319", Rank.FIRST_OFFICER),
    ("A320", Rank.FIRST_OFFICER),
    ("A321", Rank.FIRST_OFFICER),
    ("A20N", Rank.FIRST_OFFICER),
    ("A21N", Rank.FIRST_OFFICER),
    ("B737", Rank.FIRST_OFFICER),
    ("B73", Rank.FIRST_OFFICER),
    ("B38M", Rank.FIRST_OFFICER),
    ("B39M", Rank.FIRST_OFFICER),
    ("CRJ", Rank.SECOND_OFFICER),
    ("E170", Rank.SECOND_OFFICER),
    ("E175", Rank.SECOND_OFFICER),
    ("E190", Rank.SECOND_OFFICER),
    ("E195", Rank.SECOND_OFFICER),
    ("ATR", Rank.SECOND_OFFICER),
    ("Q400", Rank.SECOND_OFFICER),
    ("DH8", Rank.SECOND_OFFICER),
    ("C172", Rank.CADET),
    ("C208", Rank.CADET),
    ("DHC6", Rank.CADET),
    ("TBM", Rank.CADET),
)


def rank_for_aircraft(aircraft: str | None) -> str:
    """Rank label required to fly an aircraft type, or UNKNOWN_RANK."""
    if not aircraft:
        return UNKNOWN_RANK
    text = aircraft.upper().replace(" ", "").replace("-", "")
    for token, rank in AIRCRAFT_RANKS:
        if token in text:
            return rank.label
    return UNKNOWN_RANK


def required_rank(aircraft: str | None, rank_tag: str | None = None) -> str:
    """Explicit rank tag when it names a tier, otherwise the aircraft-derived rank."""
    explicit = Rank.parse(rank_tag)
    if explicit is not None:
        return explicit.label
    return rank_for_aircraft(aircraft)


def can_fly(pilot_rank, needed_rank) -> bool:
    """True iff both resolve to tiers and the pilot's tier is at least the needed one."""
    pilot = Rank.parse(pilot_rank)
    needed = Rank.parse(needed_rank)
    if pilot is None or needed is None:
        return False
    return pilot >= needed


def rank_for_hours(hours: float) -> Rank:
    """Highest tier whose threshold is within the given hours."""
    for tier in reversed(RANK_TIERS):
        if hours >= tier.min_hours:
            return tier.rank
    return Rank.CADET


@dataclass(frozen=True)
class PromotionResult:
    promoted: bool
    rank: str


def promotion_check(current_rank, flight_hours: float) -> PromotionResult:
    """Compute the rank a pilot should hold after accumulating hours.

    Never demotes: a pilot whose current tier is above what the hours alone
    would give (manual override) keeps it.
    """
    current = Rank.parse(current_rank)
    earned = rank_for_hours(flight_hours)
    if current is not None and current >= earned:
        return PromotionResult(False, current.label)
    return PromotionResult(True, earned.label)


def first_ineligible_leg(pilot_rank, legs) -> dict | None:
    """First leg the pilot may not fly, with its required rank; None if all are flyable."""
    for leg in legs:
        needed = leg.get("required_rank") or required_rank(leg.get("aircraft"))
        if not can_fly(pilot_rank, needed):
            return {
                "flight_number": leg.get("flight_number"),
                "aircraft": leg.get("aircraft"),
                "required_rank": needed,
            }
    return None
