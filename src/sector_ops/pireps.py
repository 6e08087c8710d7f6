"""PIREP review: approval credits hours (with the roster bonus on final legs) and
evaluates promotion; rejection records a reason. A report is reviewed once."""

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .database.models import PENDING, APPROVED, REJECTED, FlightReport, Roster, utcnow
from .duty import lock_pilot
from .outcomes import DenialKind, Outcome, accept, deny, releases_on_denial
from .ranks import promotion_check

logger = logging.getLogger(__name__)


def _already_reviewed(report: FlightReport) -> Outcome:
    return deny(
        DenialKind.CONFLICT,
        f"This PIREP has already been {report.status.lower()}.",
        report_id=report.id,
        status=report.status,
    )


def _claim(session: Session, report_id: int, **values) -> bool:
    """Flip PENDING to a final status; False if another reviewer got there first."""
    result = session.execute(
        update(FlightReport)
        .where(FlightReport.id == report_id, FlightReport.status == PENDING)
        .values(**values)
    )
    return result.rowcount == 1


def awarded_hours(report: FlightReport, roster: Roster | None) -> tuple[float, float]:
    """(hours to credit, multiplier applied)."""
    multiplier = 1.0
    if report.is_multiplier_eligible and roster is not None:
        multiplier = roster.multiplier
    return report.flight_time * multiplier, multiplier


@releases_on_denial
def approve_report(
    session: Session,
    report_id: int,
    reviewer_id: str,
    now: datetime | None = None,
) -> Outcome:
    now = now or utcnow()

    report = session.get(FlightReport, report_id, with_for_update=True)
    if report is None:
        return deny(DenialKind.NOT_FOUND, "PIREP not found.", report_id=report_id)
    if report.status != PENDING:
        return _already_reviewed(report)

    pilot = lock_pilot(session, report.pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "Associated pilot profile not found.", pilot_id=report.pilot_id)

    roster = session.get(Roster, report.roster_id) if report.roster_id is not None else None
    hours, multiplier = awarded_hours(report, roster)

    pilot.flight_hours += hours
    pilot.monthly_flight_hours += hours
    pilot.daily_flight_hours += hours
    pilot.last_known_airport = report.arrival

    promotion = promotion_check(pilot.rank, pilot.flight_hours)
    if promotion.promoted:
        pilot.rank = promotion.rank

    # The claim autoflushes the pilot row, so a stale version surfaces here too
    try:
        claimed = _claim(
            session,
            report_id,
            status=APPROVED,
            reviewed_by=reviewer_id,
            reviewed_at=now,
            awarded_hours=hours,
        )
        if claimed:
            session.commit()
    except (StaleDataError, IntegrityError) as e:
        session.rollback()
        logger.warning("Approval of report %d lost a race: %s", report_id, e)
        return deny(DenialKind.CONFLICT, "The pilot record changed during approval. Please retry.")

    if not claimed:
        session.rollback()
        return deny(DenialKind.CONFLICT, "This PIREP was reviewed by someone else.", report_id=report_id)

    logger.info(
        "Report %d approved by %s: %.2fh (x%.2f) to %s",
        report_id,
        reviewer_id,
        hours,
        multiplier,
        pilot.id,
    )

    message = f"PIREP approved. {pilot.name} now has {pilot.flight_hours:.2f} hours."
    if promotion.promoted:
        message += f" Congratulations on the promotion to {promotion.rank}!"
        logger.info("Pilot %s promoted to %s", pilot.id, promotion.rank)

    return accept(
        message=message,
        report_id=report_id,
        pilot_id=pilot.id,
        awarded_hours=hours,
        multiplier=multiplier,
        promotion={"rank": promotion.rank} if promotion.promoted else None,
    )


@releases_on_denial
def reject_report(
    session: Session,
    report_id: int,
    reviewer_id: str,
    reason: str,
    now: datetime | None = None,
) -> Outcome:
    reason = (reason or "").strip()
    if not reason:
        return deny(DenialKind.VALIDATION, "A reason for rejection is required.")

    report = session.get(FlightReport, report_id)
    if report is None:
        return deny(DenialKind.NOT_FOUND, "PIREP not found.", report_id=report_id)
    if report.status != PENDING:
        return _already_reviewed(report)

    if not _claim(
        session,
        report_id,
        status=REJECTED,
        rejection_reason=reason,
        reviewed_by=reviewer_id,
        reviewed_at=now or utcnow(),
    ):
        session.rollback()
        return deny(DenialKind.CONFLICT, "This PIREP was reviewed by someone else.", report_id=report_id)

    session.commit()
    logger.info("Report %d rejected by %s: %s", report_id, reviewer_id, reason)
    return accept(message="PIREP has been successfully rejected.", report_id=report_id)


def list_pending_reports(session: Session) -> list[dict]:
    reports = session.execute(
        select(FlightReport).where(FlightReport.status == PENDING).order_by(FlightReport.created_at.asc(), FlightReport.id.asc())
    ).scalars()
    return [r.to_dict() for r in reports]


def list_reports_for_pilot(session: Session, pilot_id: str) -> list[dict]:
    reports = session.execute(
        select(FlightReport).where(FlightReport.pilot_id == pilot_id).order_by(FlightReport.created_at.desc(), FlightReport.id.desc())
    ).scalars()
    return [r.to_dict() for r in reports]
