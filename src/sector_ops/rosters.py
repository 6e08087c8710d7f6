"""Roster persistence and queries.

Generated rosters are replaced as one batch inside a single transaction, so
readers see either the previous set or the new one. A generated roster that
an on-duty pilot is still flying is retired (made unavailable) instead of
deleted; the next regeneration removes it once nobody is bound to it.
"""

import json
import logging
import random

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .config import Settings
from .database.models import ON_DUTY, Pilot, Roster, RouteLeg
from .ingestion import Leg, extract_icao, ingest_sources
from .outcomes import DenialKind, Outcome, accept, deny, releases_on_denial
from .ranks import first_ineligible_leg, required_rank
from .sources import load_sources
from .synthesizer import RosterDraft, generate_rosters

logger = logging.getLogger(__name__)


def _bound_roster_ids(session: Session) -> set[int]:
    rows = session.execute(
        select(Pilot.current_roster_id).where(
            Pilot.duty_status == ON_DUTY, Pilot.current_roster_id.is_not(None)
        )
    ).scalars()
    return set(rows)


def replace_generated_rosters(session: Session, drafts: list[RosterDraft], legs: list[Leg]) -> int:
    """Swap the route pool and every generated roster for a new batch in one transaction."""
    try:
        bound = _bound_roster_ids(session)

        session.execute(delete(RouteLeg))
        session.add_all(RouteLeg(**leg.to_dict()) for leg in legs)

        stale = delete(Roster).where(Roster.is_generated.is_(True))
        if bound:
            stale = stale.where(Roster.id.not_in(list(bound)))
            session.execute(
                update(Roster)
                .where(Roster.is_generated.is_(True), Roster.id.in_(list(bound)))
                .values(is_available=False)
            )
        session.execute(stale)

        session.add_all(
            Roster(
                name=draft.name,
                hub=draft.hub,
                legs_json=json.dumps([leg.to_dict() for leg in draft.legs]),
                total_flight_time=draft.total_flight_time,
                multiplier=draft.multiplier,
                is_available=True,
                is_generated=True,
            )
            for draft in drafts
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    if bound:
        logger.info("Retired %d generated rosters still bound to on-duty pilots", len(bound))
    logger.info("Stored %d generated rosters and %d route legs", len(drafts), len(legs))
    return len(drafts)


async def ingest_and_generate_rosters(
    session: Session,
    settings: Settings,
    sources=None,
    rng: random.Random | None = None,
) -> dict:
    """Fetch every route source, synthesize rosters and replace the generated set.

    Returns {"created": int, "legs_found": int}. When no source yields a leg,
    or the legs do not chain into any roster, the stored rosters are left
    untouched. Manifest reads and database writes run in the threadpool so
    the event loop only waits on the concurrent fetches.
    """
    if sources is None:
        try:
            sources = await run_in_threadpool(
                load_sources, settings.route_sources_path, settings.routes_sheet_url
            )
        except (FileNotFoundError, ValueError) as e:
            logger.error("Roster generation skipped: %s", e)
            return {"created": 0, "legs_found": 0}

    legs = await ingest_sources(
        sources,
        timeout=settings.route_fetch_timeout,
        primary_operator=settings.primary_operator,
    )
    if not legs:
        logger.warning("No valid legs found in any route source; keeping existing rosters")
        return {"created": 0, "legs_found": 0}

    drafts = generate_rosters(
        legs,
        settings.ftpl.max_daily_flight_hours,
        rng=rng,
        settings=settings.synthesis,
    )
    if not drafts:
        logger.warning("%d legs ingested but no roster could be built; keeping existing rosters", len(legs))
        return {"created": 0, "legs_found": len(legs)}

    created = await run_in_threadpool(replace_generated_rosters, session, drafts, legs)
    return {"created": created, "legs_found": len(legs)}


def _normalize_leg(raw: dict) -> dict | None:
    try:
        flight_time = float(raw.get("flight_time"))
    except (TypeError, ValueError):
        return None
    flight_number = str(raw.get("flight_number") or "").strip()
    aircraft = str(raw.get("aircraft") or "").strip()
    departure = extract_icao(str(raw.get("departure") or "").strip().upper())
    arrival = extract_icao(str(raw.get("arrival") or "").strip().upper())
    if not (flight_number and aircraft and departure and arrival) or flight_time <= 0:
        return None
    return Leg(
        flight_number=flight_number,
        departure=departure,
        arrival=arrival,
        aircraft=aircraft,
        flight_time=flight_time,
        operator=raw.get("operator"),
        required_rank=required_rank(aircraft, raw.get("required_rank")),
    ).to_dict()


@releases_on_denial
def create_roster(
    session: Session,
    settings: Settings,
    creator_id: str,
    name: str,
    legs: list[dict],
    hub: str | None = None,
    multiplier: float = 1.0,
) -> Outcome:
    """Store a manually built roster after checking continuity and duty-time limits."""
    name = (name or "").strip()
    if not name:
        return deny(DenialKind.VALIDATION, "A roster name is required.")
    if not legs or len(legs) < 2:
        return deny(DenialKind.VALIDATION, "A roster needs at least two legs.")

    normalized = []
    for index, raw in enumerate(legs):
        leg = _normalize_leg(raw) if isinstance(raw, dict) else None
        if leg is None:
            return deny(DenialKind.VALIDATION, f"Leg {index + 1} is incomplete or invalid.", leg_index=index)
        normalized.append(leg)

    for index in range(len(normalized) - 1):
        if normalized[index]["arrival"] != normalized[index + 1]["departure"]:
            return deny(
                DenialKind.VALIDATION,
                f"Leg {index + 2} must depart from {normalized[index]['arrival']}.",
                leg_index=index + 1,
            )

    origin = normalized[0]["departure"]
    if hub and hub.strip().upper() != origin:
        return deny(DenialKind.VALIDATION, f"Hub must match the first departure ({origin}).")

    total = sum(leg["flight_time"] for leg in normalized)
    ceiling = settings.ftpl.max_daily_flight_hours
    if total > ceiling:
        return deny(
            DenialKind.VALIDATION,
            f"Total flight time {total:.2f}h exceeds the {ceiling:g}-hour daily limit.",
            total_flight_time=total,
        )
    if multiplier is None or multiplier < 1:
        return deny(DenialKind.VALIDATION, "Multiplier must be at least 1.")

    roster = Roster(
        name=name,
        hub=origin,
        legs_json=json.dumps(normalized),
        total_flight_time=total,
        multiplier=multiplier,
        is_available=True,
        is_generated=False,
        created_by=creator_id,
    )
    session.add(roster)
    session.commit()
    logger.info("Roster %d '%s' created by %s", roster.id, name, creator_id)
    return accept(roster=roster.to_dict())


@releases_on_denial
def delete_roster(session: Session, roster_id: int) -> Outcome:
    roster = session.get(Roster, roster_id)
    if roster is None:
        return deny(DenialKind.NOT_FOUND, "Roster not found.", roster_id=roster_id)
    if roster_id in _bound_roster_ids(session):
        return deny(
            DenialKind.CONFLICT,
            "This roster is being flown by a pilot on duty and cannot be deleted.",
            roster_id=roster_id,
        )
    session.delete(roster)
    session.commit()
    logger.info("Roster %d '%s' deleted", roster_id, roster.name)
    return accept(message="Roster deleted successfully.", roster_id=roster_id)


def list_rosters(session: Session) -> list[dict]:
    rosters = session.execute(
        select(Roster).where(Roster.is_available.is_(True)).order_by(Roster.created_at.desc(), Roster.id.desc())
    ).scalars()
    return [r.to_dict() for r in rosters]


def list_available_rosters(session: Session, pilot_id: str, default_hub: str) -> Outcome:
    """Rosters starting where the pilot is, restricted to legs within the pilot's rank."""
    pilot = session.get(Pilot, pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "Pilot not found.", pilot_id=pilot_id)

    locations = []
    for airport in (pilot.last_duty_airport, pilot.last_known_airport):
        if airport and airport not in locations:
            locations.append(airport)
    if not locations:
        locations.append(default_hub)

    candidates = session.execute(
        select(Roster)
        .where(Roster.is_available.is_(True), Roster.hub.in_(locations))
        .order_by(Roster.created_at.desc(), Roster.id.desc())
    ).scalars()

    rosters = [r.to_dict() for r in candidates if first_ineligible_leg(pilot.rank, r.legs) is None]
    return accept(
        rosters=rosters,
        search_criteria={
            "from_last_duty": pilot.last_duty_airport,
            "from_last_report": pilot.last_known_airport,
            "searched": locations,
        },
    )


def list_routes(session: Session, departure: str | None = None, operator: str | None = None) -> list[dict]:
    query = select(RouteLeg)
    if departure:
        query = query.where(RouteLeg.departure == departure.strip().upper())
    if operator:
        query = query.where(RouteLeg.operator.ilike(f"%{operator.strip()}%"))
    query = query.order_by(RouteLeg.operator, RouteLeg.flight_number)
    return [leg.to_dict() for leg in session.execute(query).scalars()]
