"""Duty lifecycle: start duty, file reports against roster legs, end duty.

Every transition reads and writes the pilot row under a row lock
(SELECT ... FOR UPDATE where the database supports it) and the pilot's
optimistic version column, so two concurrent requests for the same pilot
cannot both succeed. Rejections are returned as denials; nothing is written
unless the transition is accepted.
"""

import logging
import math
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .config import Settings
from .database.models import (
    APPROVED,
    ON_DUTY,
    PENDING,
    RESTING,
    FlightReport,
    Pilot,
    Roster,
    utcnow,
)
from .ingestion import extract_icao
from .outcomes import DenialKind, Outcome, accept, deny, releases_on_denial
from .ranks import can_fly, first_ineligible_leg, required_rank
from .storage import ATTACHMENT_PREFIX

logger = logging.getLogger(__name__)

# Float slack when comparing summed hours against a ceiling
_EPSILON = 1e-9

_REPORT_FIELDS = ("flight_number", "departure", "arrival", "aircraft", "flight_time")


def lock_pilot(session: Session, pilot_id: str) -> Pilot | None:
    return session.execute(
        select(Pilot).where(Pilot.id == pilot_id).with_for_update()
    ).scalar_one_or_none()


def _commit(session: Session, what: str, pilot_id: str) -> Outcome | None:
    """Commit; a lost race becomes a conflict denial."""
    try:
        session.commit()
    except (StaleDataError, IntegrityError) as e:
        session.rollback()
        logger.warning("Concurrent %s for pilot %s rejected: %s", what, pilot_id, e)
        return deny(
            DenialKind.CONFLICT,
            "Another request changed this record at the same time. Please retry.",
            pilot_id=pilot_id,
        )
    return None


def rest_remaining_minutes(last_duty_off: datetime | None, now: datetime, min_rest_hours: float) -> int:
    """Whole minutes of rest still required (0 when rested)."""
    if last_duty_off is None:
        return 0
    remaining = timedelta(hours=min_rest_hours) - (now - last_duty_off)
    if remaining <= timedelta(0):
        return 0
    return math.ceil(remaining.total_seconds() / 60)


def monthly_reset_due(last_hour_reset: datetime | None, now: datetime) -> bool:
    return last_hour_reset is None or last_hour_reset < now - relativedelta(months=1)


@releases_on_denial
def start_duty(
    session: Session,
    settings: Settings,
    pilot_id: str,
    roster_id: int,
    now: datetime | None = None,
) -> Outcome:
    """RESTING -> ON_DUTY for a roster, subject to rest, hour and rank limits."""
    now = now or utcnow()
    limits = settings.ftpl

    pilot = lock_pilot(session, pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "Pilot not found.", pilot_id=pilot_id)

    roster = session.get(Roster, roster_id)
    if roster is None:
        return deny(DenialKind.NOT_FOUND, "Selected roster not found.", roster_id=roster_id)
    if not roster.is_available:
        return deny(DenialKind.CONFLICT, "Selected roster is no longer available.", roster_id=roster_id)

    if pilot.on_duty:
        return deny(DenialKind.CONFLICT, "You are already on duty.", current_roster_id=pilot.current_roster_id)

    wait = rest_remaining_minutes(pilot.last_duty_off, now, limits.min_rest_hours)
    if wait > 0:
        return deny(
            DenialKind.POLICY,
            f"Crew rest required. You can go on duty in {wait} minutes.",
            limit="rest",
            remaining_minutes=wait,
        )

    reset = monthly_reset_due(pilot.last_hour_reset, now)
    monthly_hours = 0.0 if reset else pilot.monthly_flight_hours

    if monthly_hours + roster.total_flight_time > limits.max_monthly_flight_hours + _EPSILON:
        return deny(
            DenialKind.POLICY,
            f"This duty would exceed your {limits.max_monthly_flight_hours:g}-hour monthly limit.",
            limit="monthly",
            current_hours=round(monthly_hours, 2),
            roster_hours=round(roster.total_flight_time, 2),
        )

    if pilot.daily_flight_hours + roster.total_flight_time > limits.max_daily_flight_hours + _EPSILON:
        return deny(
            DenialKind.POLICY,
            f"This duty would exceed your {limits.max_daily_flight_hours:g}-hour daily flight limit.",
            limit="daily",
            current_hours=round(pilot.daily_flight_hours, 2),
            roster_hours=round(roster.total_flight_time, 2),
        )

    blocked = first_ineligible_leg(pilot.rank, roster.legs)
    if blocked is not None:
        return deny(
            DenialKind.POLICY,
            f"Leg {blocked['flight_number']} requires rank {blocked['required_rank']}.",
            limit="rank",
            leg=blocked["flight_number"],
            required_rank=blocked["required_rank"],
            pilot_rank=pilot.rank,
        )

    if reset:
        pilot.monthly_flight_hours = 0.0
        pilot.last_hour_reset = now
    pilot.duty_status = ON_DUTY
    pilot.current_roster_id = roster.id
    pilot.last_duty_start = now

    conflict = _commit(session, "duty start", pilot_id)
    if conflict is not None:
        return conflict

    logger.info("Pilot %s on duty for roster %d '%s'", pilot_id, roster.id, roster.name)
    return accept(
        message=f'You are now on duty for roster "{roster.name}".',
        roster=roster.to_dict(),
        duty_expires_at=(now + timedelta(hours=limits.max_duty_period_hours)).isoformat(),
    )


def _validate_report(pilot_id: str, details: dict) -> tuple[dict | None, Outcome | None]:
    missing = [name for name in _REPORT_FIELDS if not str(details.get(name) or "").strip()]
    if missing:
        return None, deny(
            DenialKind.VALIDATION, "Please fill out all required flight details.", missing=missing
        )

    try:
        flight_time = float(details["flight_time"])
    except (TypeError, ValueError):
        flight_time = math.nan
    if not math.isfinite(flight_time) or flight_time <= 0:
        return None, deny(DenialKind.VALIDATION, "Flight time must be a positive number of hours.")

    departure = extract_icao(str(details["departure"]).strip().upper())
    arrival = extract_icao(str(details["arrival"]).strip().upper())
    if departure is None or arrival is None:
        return None, deny(DenialKind.VALIDATION, "Departure and arrival must be 4-letter ICAO codes.")

    attachment_key = details.get("attachment_key") or None
    if attachment_key is not None and not str(attachment_key).startswith(f"{ATTACHMENT_PREFIX}{pilot_id}/"):
        return None, deny(DenialKind.VALIDATION, "Attachment does not belong to your uploads.")

    remarks = details.get("remarks")
    return {
        "flight_number": str(details["flight_number"]).strip(),
        "departure": departure,
        "arrival": arrival,
        "aircraft": str(details["aircraft"]).strip(),
        "flight_time": flight_time,
        "remarks": remarks.strip() if isinstance(remarks, str) else None,
        "attachment_key": attachment_key,
    }, None


def _match_leg(legs: list[dict], report: dict) -> int | None:
    for index, leg in enumerate(legs):
        if (
            leg["flight_number"].upper() == report["flight_number"].upper()
            and leg["departure"].upper() == report["departure"]
            and leg["arrival"].upper() == report["arrival"]
        ):
            return index
    return None


@releases_on_denial
def file_report(session: Session, pilot_id: str, details: dict) -> Outcome:
    """Create a PENDING report; on duty it must match an unreported leg of the roster."""
    data, invalid = _validate_report(pilot_id, details)
    if invalid is not None:
        return invalid

    pilot = lock_pilot(session, pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "Pilot not found.", pilot_id=pilot_id)

    report = FlightReport(pilot_id=pilot_id, status=PENDING, **data)

    if pilot.on_duty:
        roster = session.get(Roster, pilot.current_roster_id) if pilot.current_roster_id else None
        if roster is None:
            return deny(
                DenialKind.CONFLICT,
                "You are on duty but have no assigned roster. Please contact staff.",
            )

        legs = roster.legs
        index = _match_leg(legs, data)
        if index is None:
            return deny(
                DenialKind.VALIDATION,
                "This flight does not match any leg in your assigned roster.",
                roster_id=roster.id,
            )

        leg_number = legs[index]["flight_number"]
        existing = session.execute(
            select(FlightReport.id).where(
                FlightReport.pilot_id == pilot_id,
                FlightReport.roster_id == roster.id,
                FlightReport.roster_flight_number == leg_number,
            )
        ).scalar_one_or_none()
        if existing is not None:
            return deny(
                DenialKind.CONFLICT,
                "You have already filed a PIREP for this roster leg.",
                report_id=existing,
            )

        report.roster_id = roster.id
        report.roster_flight_number = leg_number
        report.is_multiplier_eligible = index == len(legs) - 1
    else:
        needed = required_rank(data["aircraft"])
        if not can_fly(pilot.rank, needed):
            return deny(
                DenialKind.POLICY,
                f"The {data['aircraft']} requires rank {needed}.",
                limit="rank",
                required_rank=needed,
                pilot_rank=pilot.rank,
            )

    session.add(report)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return deny(DenialKind.CONFLICT, "You have already filed a PIREP for this roster leg.")

    logger.info(
        "Report %d filed by %s for %s %s-%s%s",
        report.id,
        pilot_id,
        report.flight_number,
        report.departure,
        report.arrival,
        f" (roster {report.roster_id})" if report.roster_id else "",
    )
    return accept(
        message="Flight report submitted successfully and is pending review.",
        report=report.to_dict(),
    )


@releases_on_denial
def end_duty(session: Session, pilot_id: str, now: datetime | None = None) -> Outcome:
    """ON_DUTY -> RESTING once every roster leg has a pending or approved report."""
    now = now or utcnow()

    pilot = lock_pilot(session, pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "Pilot not found.", pilot_id=pilot_id)
    if not pilot.on_duty:
        return deny(DenialKind.CONFLICT, "You are not currently on duty.")

    roster = session.get(Roster, pilot.current_roster_id) if pilot.current_roster_id else None
    if roster is None:
        return deny(DenialKind.CONFLICT, "No roster assigned to end duty.")

    legs = roster.legs
    filed = session.execute(
        select(func.count(FlightReport.id)).where(
            FlightReport.pilot_id == pilot_id,
            FlightReport.roster_id == roster.id,
            FlightReport.status.in_((PENDING, APPROVED)),
        )
    ).scalar_one()

    if filed < len(legs):
        return deny(
            DenialKind.POLICY,
            f"You must file PIREPs for all roster legs. {filed}/{len(legs)} complete.",
            limit="incomplete",
            progress={"filed": filed, "required": len(legs)},
        )

    pilot.last_duty_airport = legs[-1]["arrival"]
    pilot.duty_status = RESTING
    pilot.current_roster_id = None
    pilot.last_duty_start = None
    pilot.last_duty_off = now
    pilot.daily_flight_hours = 0.0

    conflict = _commit(session, "duty end", pilot_id)
    if conflict is not None:
        return conflict

    logger.info("Pilot %s off duty at %s after roster %d", pilot_id, pilot.last_duty_airport, roster.id)
    return accept(
        message="Duty day completed successfully! You are now on crew rest.",
        pilot=pilot.to_dict(),
    )
