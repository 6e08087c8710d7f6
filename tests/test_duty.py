"""Duty lifecycle: start duty limits, roster-bound filing, end duty."""

from datetime import timedelta

from dateutil.relativedelta import relativedelta

from sector_ops.database.models import ON_DUTY, RESTING, FlightReport
from sector_ops.duty import end_duty, file_report, rest_remaining_minutes, start_duty
from sector_ops.outcomes import DenialKind

from .conftest import NOW, leg


def _report(flight_number, departure, arrival, aircraft="A320", flight_time=2.0):
    return {
        "flight_number": flight_number,
        "departure": departure,
        "arrival": arrival,
        "aircraft": aircraft,
        "flight_time": flight_time,
    }


class TestRestRemaining:
    """Remaining crew rest, rounded up to the minute."""

    def test_never_off_duty(self):
        assert rest_remaining_minutes(None, NOW, 8) == 0

    def test_rounds_up_to_minute(self):
        off = NOW - timedelta(hours=7, minutes=59, seconds=30)
        assert rest_remaining_minutes(off, NOW, 8) == 1

    def test_exact_boundary(self):
        assert rest_remaining_minutes(NOW - timedelta(hours=8), NOW, 8) == 0


class TestStartDuty:
    """Rest, monthly, daily and rank gates on going on duty."""

    def test_start_binds_roster(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot()
        roster = make_roster()

        outcome = start_duty(session, settings, pilot.id, roster.id, now=NOW)

        assert outcome.accepted
        assert outcome.payload["roster"]["roster_id"] == roster.id
        assert outcome.payload["duty_expires_at"] == (NOW + timedelta(hours=14)).isoformat()
        session.refresh(pilot)
        assert pilot.duty_status == ON_DUTY
        assert pilot.current_roster_id == roster.id
        assert pilot.last_duty_start == NOW

    def test_rest_not_elapsed(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot(last_duty_off=NOW - timedelta(hours=7))
        roster = make_roster()

        outcome = start_duty(session, settings, pilot.id, roster.id, now=NOW)

        assert not outcome.accepted
        assert outcome.denial.kind == DenialKind.POLICY
        assert outcome.denial.details["remaining_minutes"] == 60
        session.refresh(pilot)
        assert pilot.duty_status == RESTING

    def test_rest_elapsed(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot(last_duty_off=NOW - timedelta(hours=9))
        roster = make_roster()
        assert start_duty(session, settings, pilot.id, roster.id, now=NOW).accepted

    def test_rest_exact_boundary_accepted(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot(last_duty_off=NOW - timedelta(hours=8))
        roster = make_roster()
        assert start_duty(session, settings, pilot.id, roster.id, now=NOW).accepted

    def test_monthly_exactly_at_ceiling(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot(monthly_flight_hours=96.5, last_hour_reset=NOW - timedelta(days=10))
        roster = make_roster()  # 3.5 hours

        assert start_duty(session, settings, pilot.id, roster.id, now=NOW).accepted

    def test_monthly_over_ceiling(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot(monthly_flight_hours=97.0, last_hour_reset=NOW - timedelta(days=10))
        roster = make_roster()

        outcome = start_duty(session, settings, pilot.id, roster.id, now=NOW)

        assert outcome.denial.kind == DenialKind.POLICY
        assert outcome.denial.details["limit"] == "monthly"

    def test_monthly_reset_after_a_month(self, session, settings, make_pilot, make_roster):
        stale = NOW - relativedelta(months=1, days=1)
        pilot = make_pilot(monthly_flight_hours=99.0, last_hour_reset=stale)
        roster = make_roster()

        assert start_duty(session, settings, pilot.id, roster.id, now=NOW).accepted
        session.refresh(pilot)
        assert pilot.monthly_flight_hours == 0.0
        assert pilot.last_hour_reset == NOW

    def test_monthly_reset_not_persisted_on_denial(self, session, settings, make_pilot, make_roster):
        stale = NOW - relativedelta(months=2)
        pilot = make_pilot(monthly_flight_hours=99.0, last_hour_reset=stale, daily_flight_hours=9.0)
        roster = make_roster()

        outcome = start_duty(session, settings, pilot.id, roster.id, now=NOW)

        assert outcome.denial.details["limit"] == "daily"
        session.refresh(pilot)
        assert pilot.monthly_flight_hours == 99.0
        assert pilot.last_hour_reset == stale

    def test_daily_exactly_at_ceiling(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot(daily_flight_hours=6.5)
        roster = make_roster()
        assert start_duty(session, settings, pilot.id, roster.id, now=NOW).accepted

    def test_daily_over_ceiling(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot(daily_flight_hours=7.0)
        roster = make_roster()

        outcome = start_duty(session, settings, pilot.id, roster.id, now=NOW)

        assert outcome.denial.details["limit"] == "daily"

    def test_rank_too_low(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot(rank="Cadet")
        roster = make_roster()

        outcome = start_duty(session, settings, pilot.id, roster.id, now=NOW)

        assert outcome.denial.kind == DenialKind.POLICY
        assert outcome.denial.details["leg"] == "SO101"
        assert outcome.denial.details["required_rank"] == "First Officer"

    def test_unknown_aircraft_blocks(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot(rank="Senior Captain")
        roster = make_roster(
            [
                leg("SO1", "VIDP", "VABB", aircraft="Zeppelin NT", required_rank=None),
                leg("SO2", "VABB", "VIDP"),
            ]
        )
        outcome = start_duty(session, settings, pilot.id, roster.id, now=NOW)
        assert outcome.denial.details["required_rank"] == "Unknown"

    def test_already_on_duty(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot()
        roster = make_roster()
        assert start_duty(session, settings, pilot.id, roster.id, now=NOW).accepted

        outcome = start_duty(session, settings, pilot.id, roster.id, now=NOW)

        assert outcome.denial.kind == DenialKind.CONFLICT

    def test_missing_roster(self, session, settings, make_pilot):
        pilot = make_pilot()
        outcome = start_duty(session, settings, pilot.id, 999, now=NOW)
        assert outcome.denial.kind == DenialKind.NOT_FOUND

    def test_retired_roster(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot()
        roster = make_roster(is_available=False)
        outcome = start_duty(session, settings, pilot.id, roster.id, now=NOW)
        assert outcome.denial.kind == DenialKind.CONFLICT

    def test_missing_pilot(self, session, settings, make_roster):
        roster = make_roster()
        outcome = start_duty(session, settings, "ghost", roster.id, now=NOW)
        assert outcome.denial.kind == DenialKind.NOT_FOUND


class TestFileReport:
    """Roster-bound and ad hoc report filing."""

    def _on_duty(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot()
        roster = make_roster()
        assert start_duty(session, settings, pilot.id, roster.id, now=NOW).accepted
        return pilot, roster

    def test_matching_leg_links_roster(self, session, settings, make_pilot, make_roster):
        pilot, roster = self._on_duty(session, settings, make_pilot, make_roster)

        outcome = file_report(session, pilot.id, _report("so101", "vidp", "vabb"))

        assert outcome.accepted
        report = outcome.payload["report"]
        assert report["status"] == "PENDING"
        assert report["roster_leg"] == {"roster_id": roster.id, "flight_number": "SO101"}
        assert report["is_multiplier_eligible"] is False

    def test_final_leg_is_multiplier_eligible(self, session, settings, make_pilot, make_roster):
        pilot, _ = self._on_duty(session, settings, make_pilot, make_roster)

        outcome = file_report(session, pilot.id, _report("SO102", "VABB", "VOBL", flight_time=1.5))

        assert outcome.payload["report"]["is_multiplier_eligible"] is True

    def test_leg_not_in_roster(self, session, settings, make_pilot, make_roster):
        pilot, _ = self._on_duty(session, settings, make_pilot, make_roster)

        outcome = file_report(session, pilot.id, _report("SO999", "VIDP", "VABB"))

        assert outcome.denial.kind == DenialKind.VALIDATION

    def test_duplicate_leg(self, session, settings, make_pilot, make_roster):
        pilot, _ = self._on_duty(session, settings, make_pilot, make_roster)
        first = file_report(session, pilot.id, _report("SO101", "VIDP", "VABB"))
        assert first.accepted

        outcome = file_report(session, pilot.id, _report("SO101", "VIDP", "VABB"))

        assert outcome.denial.kind == DenialKind.CONFLICT
        assert outcome.denial.details["report_id"] == first.payload["report"]["report_id"]

    def test_duplicate_leg_after_rejection(self, session, settings, make_pilot, make_roster):
        pilot, _ = self._on_duty(session, settings, make_pilot, make_roster)
        first = file_report(session, pilot.id, _report("SO101", "VIDP", "VABB"))
        stored = session.get(FlightReport, first.payload["report"]["report_id"])
        stored.status = "REJECTED"
        stored.rejection_reason = "No evidence"
        session.commit()

        outcome = file_report(session, pilot.id, _report("SO101", "VIDP", "VABB"))

        assert outcome.denial.kind == DenialKind.CONFLICT

    def test_missing_fields(self, session, make_pilot):
        pilot = make_pilot()
        outcome = file_report(session, pilot.id, {"flight_number": "SO1"})
        assert outcome.denial.kind == DenialKind.VALIDATION
        assert "departure" in outcome.denial.details["missing"]

    def test_non_positive_flight_time(self, session, make_pilot):
        pilot = make_pilot()
        outcome = file_report(session, pilot.id, _report("SO1", "VIDP", "VABB", flight_time=-1))
        assert outcome.denial.kind == DenialKind.VALIDATION

    def test_adhoc_report_while_resting(self, session, make_pilot):
        pilot = make_pilot()

        outcome = file_report(session, pilot.id, _report("XX1", "VIDP", "VABB", aircraft="B738"))

        assert outcome.accepted
        assert outcome.payload["report"]["roster_leg"] is None

    def test_own_attachment_kept(self, session, make_pilot):
        pilot = make_pilot()
        details = dict(_report("XX1", "VIDP", "VABB"), attachment_key=f"pireps/{pilot.id}/abc.png")

        outcome = file_report(session, pilot.id, details)

        assert outcome.payload["report"]["attachment_key"] == "pireps/p1/abc.png"

    def test_foreign_attachment_rejected(self, session, make_pilot):
        pilot = make_pilot()
        for key in ("pireps/p2/abc.png", "profiles/p1/me.png", "pireps/p1abc.png"):
            details = dict(_report("XX1", "VIDP", "VABB"), attachment_key=key)

            outcome = file_report(session, pilot.id, details)

            assert outcome.denial.kind == DenialKind.VALIDATION
        assert session.query(FlightReport).count() == 0

    def test_adhoc_rank_check(self, session, make_pilot):
        pilot = make_pilot(rank="Second Officer")

        outcome = file_report(session, pilot.id, _report("XX1", "VIDP", "EGLL", aircraft="B77W"))

        assert outcome.denial.kind == DenialKind.POLICY
        assert outcome.denial.details["required_rank"] == "Captain"


class TestEndDuty:
    """Ending duty requires a live report for every leg."""

    def test_incomplete_progress(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot()
        roster = make_roster()
        start_duty(session, settings, pilot.id, roster.id, now=NOW)
        file_report(session, pilot.id, _report("SO101", "VIDP", "VABB"))

        outcome = end_duty(session, pilot.id, now=NOW + timedelta(hours=5))

        assert outcome.denial.kind == DenialKind.POLICY
        assert outcome.denial.details["progress"] == {"filed": 1, "required": 2}
        session.refresh(pilot)
        assert pilot.duty_status == ON_DUTY

    def test_complete_duty(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot(daily_flight_hours=1.0)
        roster = make_roster()
        start_duty(session, settings, pilot.id, roster.id, now=NOW)
        file_report(session, pilot.id, _report("SO101", "VIDP", "VABB"))
        file_report(session, pilot.id, _report("SO102", "VABB", "VOBL", flight_time=1.5))
        off = NOW + timedelta(hours=5)

        outcome = end_duty(session, pilot.id, now=off)

        assert outcome.accepted
        session.refresh(pilot)
        assert pilot.duty_status == RESTING
        assert pilot.current_roster_id is None
        assert pilot.last_duty_start is None
        assert pilot.last_duty_off == off
        assert pilot.last_duty_airport == "VOBL"
        assert pilot.daily_flight_hours == 0.0

    def test_rejected_reports_do_not_count(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot()
        roster = make_roster()
        start_duty(session, settings, pilot.id, roster.id, now=NOW)
        file_report(session, pilot.id, _report("SO101", "VIDP", "VABB"))
        second = file_report(session, pilot.id, _report("SO102", "VABB", "VOBL", flight_time=1.5))
        stored = session.get(FlightReport, second.payload["report"]["report_id"])
        stored.status = "REJECTED"
        session.commit()

        outcome = end_duty(session, pilot.id, now=NOW + timedelta(hours=5))

        assert outcome.denial.details["progress"] == {"filed": 1, "required": 2}

    def test_not_on_duty(self, session, make_pilot):
        pilot = make_pilot()
        outcome = end_duty(session, pilot.id, now=NOW)
        assert outcome.denial.kind == DenialKind.CONFLICT

    def test_rest_applies_after_end(self, session, settings, make_pilot, make_roster):
        pilot = make_pilot()
        roster = make_roster()
        start_duty(session, settings, pilot.id, roster.id, now=NOW)
        file_report(session, pilot.id, _report("SO101", "VIDP", "VABB"))
        file_report(session, pilot.id, _report("SO102", "VABB", "VOBL", flight_time=1.5))
        off = NOW + timedelta(hours=5)
        end_duty(session, pilot.id, now=off)

        outcome = start_duty(session, settings, pilot.id, roster.id, now=off + timedelta(hours=2))

        assert outcome.denial.details["remaining_minutes"] == 360
