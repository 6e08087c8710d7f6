"""Shared fixtures: in-memory database, settings and record builders."""

import json
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sector_ops.config import Settings
from sector_ops.database import Base, Pilot, Roster
from sector_ops.ingestion import Leg

NOW = datetime(2025, 3, 15, 12, 0, 0)


@pytest.fixture(scope="session")
def anyio_backend():
    """The service runs on asyncio (it calls asyncio.gather directly)."""
    return "asyncio"


@pytest.fixture
def engine():
    """One in-memory SQLite database shared across threads for the test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(factory):
    session = factory()
    yield session
    session.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-secret",
        route_sources_path=str(tmp_path / "routes.json"),
    )


def leg(flight_number, departure, arrival, aircraft="A320", flight_time=1.5, **extra) -> dict:
    return Leg(
        flight_number=flight_number,
        departure=departure,
        arrival=arrival,
        aircraft=aircraft,
        flight_time=flight_time,
        **extra,
    ).to_dict()


@pytest.fixture
def make_pilot(session):
    """Insert a resting pilot; keyword arguments override any column."""

    def _make(pilot_id="p1", **fields):
        values = {
            "name": "Test Pilot",
            "callsign": f"SOP{pilot_id.upper()}",
            "rank": "First Officer",
            "last_hour_reset": NOW,
        }
        values.update(fields)
        pilot = Pilot(id=pilot_id, **values)
        session.add(pilot)
        session.commit()
        return pilot

    return _make


@pytest.fixture
def make_roster(session):
    """Insert an available roster from leg dicts."""

    def _make(legs=None, multiplier=1.2, name="VIDP Sector Duty #1", **fields):
        legs = legs or [
            leg("SO101", "VIDP", "VABB", flight_time=2.0),
            leg("SO102", "VABB", "VOBL", flight_time=1.5),
        ]
        roster = Roster(
            name=name,
            hub=legs[0]["departure"],
            legs_json=json.dumps(legs),
            total_flight_time=sum(item["flight_time"] for item in legs),
            multiplier=multiplier,
            is_available=fields.pop("is_available", True),
            is_generated=fields.pop("is_generated", True),
            **fields,
        )
        session.add(roster)
        session.commit()
        return roster

    return _make
