"""SQLAlchemy models for pilots, rosters, flight reports and the route pool."""

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp; all stored datetimes are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


RESTING = "RESTING"
ON_DUTY = "ON_DUTY"

PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


class Pilot(Base):
    """Pilot identity plus the duty and flight-hour ledger."""
    __tablename__ = "pilots"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    callsign: Mapped[Optional[str]] = mapped_column(String(15), unique=True, nullable=True)
    role: Mapped[str] = mapped_column(String(30), default="pilot")
    rank: Mapped[str] = mapped_column(String(30), default="Cadet")
    flight_hours: Mapped[float] = mapped_column(Float, default=0)
    daily_flight_hours: Mapped[float] = mapped_column(Float, default=0)  # zeroed at duty end
    monthly_flight_hours: Mapped[float] = mapped_column(Float, default=0)
    duty_status: Mapped[str] = mapped_column(String(10), default=RESTING)  # RESTING, ON_DUTY
    current_roster_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_duty_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_duty_off: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_hour_reset: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_known_airport: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    last_duty_airport: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    image_key: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def on_duty(self) -> bool:
        return self.duty_status == ON_DUTY

    def ledger_row(self) -> dict:
        """Snapshot pushed to the external ledger mirror."""
        return {
            "callsign": self.callsign,
            "name": self.name,
            "rank": self.rank,
            "flight_hours": round(self.flight_hours, 2),
        }

    def to_dict(self) -> dict:
        return {
            "pilot_id": self.id,
            "name": self.name,
            "callsign": self.callsign,
            "role": self.role,
            "rank": self.rank,
            "flight_hours": self.flight_hours,
            "daily_flight_hours": self.daily_flight_hours,
            "monthly_flight_hours": self.monthly_flight_hours,
            "duty_status": self.duty_status,
            "current_roster_id": self.current_roster_id,
            "last_duty_start": _iso(self.last_duty_start),
            "last_duty_off": _iso(self.last_duty_off),
            "last_known_airport": self.last_known_airport,
            "last_duty_airport": self.last_duty_airport,
        }


class Roster(Base):
    """Ordered duty sequence of connected legs. Legs are immutable once stored."""
    __tablename__ = "rosters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200))
    hub: Mapped[str] = mapped_column(String(4), index=True)  # departure of the first leg
    legs_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    total_flight_time: Mapped[float] = mapped_column(Float)
    multiplier: Mapped[float] = mapped_column(Float, default=1.0)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    is_generated: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def legs(self) -> list[dict]:
        return json.loads(self.legs_json) if self.legs_json else []

    def to_dict(self) -> dict:
        return {
            "roster_id": self.id,
            "name": self.name,
            "hub": self.hub,
            "legs": self.legs,
            "total_flight_time": round(self.total_flight_time, 2),
            "multiplier": self.multiplier,
            "is_available": self.is_available,
            "is_generated": self.is_generated,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }


class FlightReport(Base):
    """PIREP: a pilot's claim of having flown a leg."""
    __tablename__ = "flight_reports"
    __table_args__ = (
        # One report per roster leg per pilot; off-roster reports have NULL roster_id.
        UniqueConstraint("pilot_id", "roster_id", "roster_flight_number", name="uq_report_roster_leg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pilot_id: Mapped[str] = mapped_column(String(50), index=True)
    flight_number: Mapped[str] = mapped_column(String(20))
    departure: Mapped[str] = mapped_column(String(4))
    arrival: Mapped[str] = mapped_column(String(4))
    aircraft: Mapped[str] = mapped_column(String(50))
    flight_time: Mapped[float] = mapped_column(Float)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(10), default=PENDING, index=True)  # PENDING, APPROVED, REJECTED
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    roster_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    roster_flight_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_multiplier_eligible: Mapped[bool] = mapped_column(Boolean, default=False)
    awarded_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    attachment_key: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "report_id": self.id,
            "pilot_id": self.pilot_id,
            "flight_number": self.flight_number,
            "departure": self.departure,
            "arrival": self.arrival,
            "aircraft": self.aircraft,
            "flight_time": self.flight_time,
            "remarks": self.remarks,
            "status": self.status,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _iso(self.reviewed_at),
            "rejection_reason": self.rejection_reason,
            "roster_leg": (
                {"roster_id": self.roster_id, "flight_number": self.roster_flight_number}
                if self.roster_id is not None
                else None
            ),
            "is_multiplier_eligible": self.is_multiplier_eligible,
            "awarded_hours": self.awarded_hours,
            "attachment_key": self.attachment_key,
            "created_at": _iso(self.created_at),
        }


class RouteLeg(Base):
    """Normalized leg from the last successful ingestion."""
    __tablename__ = "route_legs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    flight_number: Mapped[str] = mapped_column(String(20))
    departure: Mapped[str] = mapped_column(String(4), index=True)
    arrival: Mapped[str] = mapped_column(String(4), index=True)
    aircraft: Mapped[str] = mapped_column(String(50))
    flight_time: Mapped[float] = mapped_column(Float)
    operator: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    required_rank: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    distance_nm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    def to_dict(self) -> dict:
        return {
            "flight_number": self.flight_number,
            "departure": self.departure,
            "arrival": self.arrival,
            "aircraft": self.aircraft,
            "flight_time": self.flight_time,
            "operator": self.operator,
            "required_rank": self.required_rank,
            "distance_nm": self.distance_nm,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
