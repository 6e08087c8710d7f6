"""Interleaved requests for the same pilot or report on a shared database file.

The second request is run to completion from inside the first one's flush,
after the first has read its rows but before it writes them.
"""

import json

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import sessionmaker

from sector_ops.database import Base, FlightReport, Pilot, Roster
from sector_ops.database.models import APPROVED, ON_DUTY, PENDING, REJECTED
from sector_ops.duty import file_report, start_duty
from sector_ops.outcomes import DenialKind
from sector_ops.pireps import approve_report, reject_report

from .conftest import NOW, leg

LEGS = [
    leg("SO101", "VIDP", "VABB", flight_time=2.0),
    leg("SO102", "VABB", "VIDP", flight_time=2.0),
]

SO101 = {"flight_number": "SO101", "departure": "VIDP", "arrival": "VABB", "aircraft": "A320", "flight_time": 2.0}


@pytest.fixture
def file_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'ops.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def seeded(file_factory):
    """One resting First Officer and one two-leg roster; returns the roster id."""
    with file_factory() as session:
        roster = Roster(
            name="Delhi Shuttle",
            hub="VIDP",
            legs_json=json.dumps(LEGS),
            total_flight_time=4.0,
            multiplier=1.2,
            is_available=True,
            is_generated=True,
        )
        session.add(roster)
        session.add(Pilot(id="p1", name="Asha Rao", callsign="SOP001", rank="First Officer", last_hour_reset=NOW))
        session.commit()
        return roster.id


def _interleave(session, operation):
    """Run `operation` (and commit it) just before `session` next flushes."""
    results = []

    def run_other(*_):
        results.append(operation())

    event.listen(session, "before_flush", run_other, once=True)
    return results


def _pilot(factory):
    with factory() as session:
        return session.get(Pilot, "p1")


class TestConcurrentDutyStart:
    """Two start-duty requests for one pilot: only one may bind a roster."""

    def test_second_writer_gets_conflict(self, file_factory, seeded, settings):
        first, second = file_factory(), file_factory()
        other = _interleave(first, lambda: start_duty(second, settings, "p1", seeded, now=NOW))

        outcome = start_duty(first, settings, "p1", seeded, now=NOW)

        assert len(other) == 1 and other[0].accepted
        assert outcome.denial.kind == DenialKind.CONFLICT
        assert "at the same time" in outcome.denial.reason
        pilot = _pilot(file_factory)
        assert pilot.duty_status == ON_DUTY
        assert pilot.current_roster_id == seeded
        assert pilot.version == 2
        first.close()
        second.close()


class TestConcurrentLegFiling:
    """Two filings of the same roster leg: the unique leg key admits one."""

    def test_duplicate_leg_rejected(self, file_factory, seeded):
        with file_factory() as session:
            pilot = session.get(Pilot, "p1")
            pilot.duty_status = ON_DUTY
            pilot.current_roster_id = seeded
            session.commit()

        first, second = file_factory(), file_factory()
        other = _interleave(first, lambda: file_report(second, "p1", dict(SO101)))

        outcome = file_report(first, "p1", dict(SO101))

        assert other[0].accepted
        assert outcome.denial.kind == DenialKind.CONFLICT
        with file_factory() as session:
            count = session.execute(
                select(func.count(FlightReport.id)).where(FlightReport.roster_id == seeded)
            ).scalar_one()
        assert count == 1
        first.close()
        second.close()


class TestConcurrentReview:
    """Two reviewers acting on one PENDING report: hours are credited at most once."""

    @pytest.fixture
    def report_id(self, file_factory, seeded):
        with file_factory() as session:
            report = FlightReport(pilot_id="p1", status=PENDING, **SO101)
            session.add(report)
            session.commit()
            return report.id

    def test_double_approval_credits_once(self, file_factory, report_id):
        first, second = file_factory(), file_factory()
        other = _interleave(first, lambda: approve_report(second, report_id, "reviewer-2", now=NOW))

        outcome = approve_report(first, report_id, "reviewer-1", now=NOW)

        assert other[0].accepted
        assert outcome.denial.kind == DenialKind.CONFLICT
        assert _pilot(file_factory).flight_hours == pytest.approx(2.0)
        with file_factory() as session:
            report = session.get(FlightReport, report_id)
            assert report.status == APPROVED
            assert report.reviewed_by == "reviewer-2"
        first.close()
        second.close()

    def test_rejection_wins_claim(self, file_factory, report_id):
        first, second = file_factory(), file_factory()
        other = _interleave(first, lambda: reject_report(second, report_id, "reviewer-2", "No evidence", now=NOW))

        outcome = approve_report(first, report_id, "reviewer-1", now=NOW)

        assert other[0].accepted
        assert outcome.denial.kind == DenialKind.CONFLICT
        assert "reviewed by someone else" in outcome.denial.reason
        assert _pilot(file_factory).flight_hours == 0
        with file_factory() as session:
            assert session.get(FlightReport, report_id).status == REJECTED
        first.close()
        second.close()
