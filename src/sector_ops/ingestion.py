"""Route ingestion from human-maintained spreadsheets.

Each source is a CSV export whose header row may sit below title rows and
whose columns may appear in any order under several spellings. The header
row is discovered per source from a declarative alias table; data rows that
do not yield a complete leg are dropped without error.
"""

import asyncio
import csv
import io
import logging
import math
import re
from dataclasses import asdict, dataclass

import httpx
import pandas as pd

from .ranks import rank_for_aircraft, required_rank
from .sources import RouteSource

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

FLIGHT_NUMBER = "flight_number"
DEPARTURE = "departure"
ARRIVAL = "arrival"
AIRCRAFT = "aircraft"
DURATION = "duration"
OPERATOR = "operator"
RANK_UNLOCK = "rank_unlock"
DISTANCE = "distance"

# Canonical column -> accepted header labels (compared lower-cased, whitespace collapsed)
HEADER_ALIASES: dict[str, frozenset[str]] = {
    FLIGHT_NUMBER: frozenset({"callsign", "flight no.", "flight no", "flight number", "flight #", "flight"}),
    DEPARTURE: frozenset({"origin", "departure", "departure icao", "dep", "dep icao", "from"}),
    ARRIVAL: frozenset({"destination", "arrival", "arrival icao", "arr", "arr icao", "to"}),
    AIRCRAFT: frozenset({"aircraft", "aircraft(s)", "aircraft type", "equipment", "type"}),
    DURATION: frozenset({"flight time", "avg. flight time", "avg flight time", "block time", "duration"}),
    OPERATOR: frozenset({"operator", "airline", "carrier"}),
    RANK_UNLOCK: frozenset({"rank unlock", "rank", "required rank", "min rank"}),
    DISTANCE: frozenset({"route distance (nm)", "distance (nm)", "distance", "distance nm"}),
}

PRIMARY_COLUMNS = (FLIGHT_NUMBER, DEPARTURE, ARRIVAL, AIRCRAFT, DURATION)
PARTNER_COLUMNS = PRIMARY_COLUMNS + (OPERATOR, RANK_UNLOCK)
OPTIONAL_COLUMNS = (DISTANCE,)

_ICAO_RE = re.compile(r"^\s*([A-Z]{4})")
_CLOCK_RE = re.compile(r"^\s*(\d+):([0-5]?\d)(?::([0-5]?\d))?\s*$")
_HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*h", re.IGNORECASE)
_MINUTES_RE = re.compile(r"(\d+)\s*m", re.IGNORECASE)


@dataclass(frozen=True)
class Leg:
    """One scheduled flight segment."""

    flight_number: str
    departure: str
    arrival: str
    aircraft: str
    flight_time: float
    operator: str | None = None
    required_rank: str | None = None
    distance_nm: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _normalize_label(cell) -> str:
    if not isinstance(cell, str):
        return ""
    return " ".join(cell.split()).lower()


def find_header(rows: list[list[str]], required: tuple[str, ...]) -> tuple[int, dict[str, int]] | None:
    """Locate the first row whose cells cover every required canonical column.

    Returns (row_index, {canonical: column_index}) including any optional
    columns present on that row, or None if no row qualifies.
    """
    wanted = tuple(required) + tuple(c for c in OPTIONAL_COLUMNS if c not in required)
    for index, row in enumerate(rows):
        column_map: dict[str, int] = {}
        for col, cell in enumerate(row):
            label = _normalize_label(cell)
            if not label:
                continue
            for canonical in wanted:
                if canonical not in column_map and label in HEADER_ALIASES[canonical]:
                    column_map[canonical] = col
                    break
        if all(c in column_map for c in required):
            return index, column_map
    return None


def extract_icao(text) -> str | None:
    """4-letter uppercase code at the start of a cell ("VIDP - Delhi" -> "VIDP")."""
    if not isinstance(text, str):
        return None
    match = _ICAO_RE.match(text)
    return match.group(1) if match else None


def parse_duration(text) -> float:
    """Decimal hours from "H:MM", "H:MM:SS" or "XhYm"; NaN when unparseable."""
    if not isinstance(text, str) or not text.strip():
        return math.nan

    clock = _CLOCK_RE.match(text)
    if clock:
        hours, minutes, seconds = clock.groups()
        return int(hours) + int(minutes) / 60 + int(seconds or 0) / 3600

    hours = _HOURS_RE.search(text)
    minutes = _MINUTES_RE.search(text)
    if not hours and not minutes:
        return math.nan
    total = 0.0
    if hours:
        total += float(hours.group(1))
    if minutes:
        total += int(minutes.group(1)) / 60
    return total


def _parse_distance(text) -> float | None:
    if not isinstance(text, str):
        return None
    try:
        value = float(text.replace(",", "").strip())
    except ValueError:
        return None
    return value if math.isfinite(value) and value >= 0 else None


def _cell(row: list[str], column_map: dict[str, int], canonical: str) -> str:
    col = column_map.get(canonical)
    if col is None or col >= len(row):
        return ""
    value = row[col]
    return value.strip() if isinstance(value, str) else ""


def parse_rows(
    rows: list[list[str]],
    source: RouteSource,
    primary_operator: str = "Sector Ops",
) -> list[Leg]:
    """Normalize one source's grid into legs. Returns [] if no header row is found."""
    required = PARTNER_COLUMNS if source.is_partner else PRIMARY_COLUMNS
    header = find_header(rows, required)
    if header is None:
        logger.warning("No valid header row in source '%s'; skipping", source.name)
        return []

    header_index, column_map = header
    logger.debug("Header row found at index %d in source '%s'", header_index, source.name)

    default_operator = source.operator or primary_operator
    legs = []
    for row in rows[header_index + 1:]:
        flight_number = _cell(row, column_map, FLIGHT_NUMBER)
        aircraft = _cell(row, column_map, AIRCRAFT)
        departure = extract_icao(_cell(row, column_map, DEPARTURE))
        arrival = extract_icao(_cell(row, column_map, ARRIVAL))
        flight_time = parse_duration(_cell(row, column_map, DURATION))

        if not (flight_number and aircraft and departure and arrival):
            continue
        if not math.isfinite(flight_time) or flight_time <= 0:
            continue

        if source.is_partner:
            operator = _cell(row, column_map, OPERATOR) or default_operator
            rank = required_rank(aircraft, _cell(row, column_map, RANK_UNLOCK))
        else:
            operator = default_operator
            rank = rank_for_aircraft(aircraft)

        legs.append(
            Leg(
                flight_number=flight_number,
                departure=departure,
                arrival=arrival,
                aircraft=aircraft,
                flight_time=flight_time,
                operator=operator,
                required_rank=rank,
                distance_nm=_parse_distance(_cell(row, column_map, DISTANCE)),
            )
        )

    logger.info("Source '%s': %d valid legs", source.name, len(legs))
    return legs


def read_grid(text: str) -> list[list[str]]:
    """Parse CSV text into a grid of string cells, keeping every row.

    Title rows above the header are often narrower than the table, so the
    grid is sized to the widest row; short rows are padded with NaN.
    """
    width = max((len(row) for row in csv.reader(io.StringIO(text))), default=0)
    if width == 0:
        return []
    frame = pd.read_csv(
        io.StringIO(text),
        header=None,
        names=list(range(width)),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=False,
    )
    return frame.values.tolist()


async def fetch_source(client: httpx.AsyncClient, source: RouteSource) -> str | None:
    """Download one source. Returns None on any transport or HTTP failure."""
    try:
        response = await client.get(source.url, follow_redirects=True)
    except httpx.TimeoutException:
        logger.error("Timeout fetching route source '%s': %s", source.name, source.url)
        return None
    except httpx.RequestError as e:
        logger.error("Request error fetching route source '%s': %s", source.name, e)
        return None

    if response.status_code != 200:
        logger.warning(
            "Route source '%s' returned %d: %s",
            source.name,
            response.status_code,
            response.text[:200],
        )
        return None
    return response.text


async def _load_source(
    client: httpx.AsyncClient,
    source: RouteSource,
    primary_operator: str,
) -> list[Leg]:
    text = await fetch_source(client, source)
    if text is None:
        return []
    try:
        rows = read_grid(text)
    except (csv.Error, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.warning("Route source '%s' is not parseable CSV: %s", source.name, e)
        return []
    return parse_rows(rows, source, primary_operator)


async def ingest_sources(
    sources: list[RouteSource],
    timeout: float = DEFAULT_TIMEOUT,
    primary_operator: str = "Sector Ops",
) -> list[Leg]:
    """Fetch every source concurrently and return the combined legs.

    A failing source contributes nothing; the others are unaffected.
    """
    if not sources:
        return []

    async with httpx.AsyncClient(timeout=timeout) as client:
        results = await asyncio.gather(
            *(_load_source(client, source, primary_operator) for source in sources)
        )

    legs = [leg for source_legs in results for leg in source_legs]
    logger.info("Ingested %d legs from %d sources", len(legs), len(sources))
    return legs
