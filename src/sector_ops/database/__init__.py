"""Persistence layer."""

from .models import Base, Pilot, Roster, FlightReport, RouteLeg
from .session import get_engine, get_session, init_db, session_factory

__all__ = [
    "Base",
    "Pilot",
    "Roster",
    "FlightReport",
    "RouteLeg",
    "get_engine",
    "get_session",
    "init_db",
    "session_factory",
]
