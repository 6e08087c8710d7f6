"""Pilot administration: registration, profile, role, callsign and rank changes, deletion.

External copies of a pilot (ledger row, stored images) are cleaned up by
`cleanup_external` after the database change has committed.
"""

import logging
import re
import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import PILOT, ROLES
from .database.models import FlightReport, Pilot, Roster
from .ledger import LedgerMirror
from .outcomes import DenialKind, Outcome, accept, deny, releases_on_denial
from .ranks import Rank
from .storage import PROFILE_PREFIX, ObjectStore

logger = logging.getLogger(__name__)

CALLSIGN_PATTERN = re.compile(r"^[A-Z0-9-]{2,15}$")


def _normalize_callsign(session: Session, callsign: str, pilot_id: str | None = None) -> tuple[str | None, Outcome | None]:
    """Uppercased callsign, or a denial when malformed or held by another pilot."""
    callsign = callsign.strip().upper()
    if not CALLSIGN_PATTERN.match(callsign):
        return None, deny(
            DenialKind.VALIDATION,
            "Invalid callsign format. Use 2-15 uppercase letters, numbers or hyphens.",
        )
    holder = session.execute(select(Pilot.id).where(Pilot.callsign == callsign)).scalar_one_or_none()
    if holder is not None and holder != pilot_id:
        return None, deny(DenialKind.CONFLICT, f"Callsign {callsign} is already taken.")
    return callsign, None


@releases_on_denial
def register_pilot(
    session: Session,
    name: str,
    callsign: str | None = None,
    email: str | None = None,
    role: str = PILOT,
    pilot_id: str | None = None,
) -> Outcome:
    name = (name or "").strip()
    if not name:
        return deny(DenialKind.VALIDATION, "Name is required.")
    if role not in ROLES:
        return deny(DenialKind.VALIDATION, f"Unknown role '{role}'.")

    if callsign:
        callsign, denied = _normalize_callsign(session, callsign)
        if denied is not None:
            return denied
    else:
        callsign = None

    pilot_id = pilot_id or uuid.uuid4().hex
    if session.get(Pilot, pilot_id) is not None:
        return deny(DenialKind.CONFLICT, "A pilot with this id already exists.", pilot_id=pilot_id)

    pilot = Pilot(
        id=pilot_id,
        name=name,
        email=(email or "").strip() or None,
        callsign=callsign,
        role=role,
        rank=Rank.CADET.label,
    )
    session.add(pilot)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return deny(DenialKind.CONFLICT, "Callsign or pilot id is already taken.")

    logger.info("Registered %s %s (%s)", role, pilot_id, callsign or "no callsign")
    return accept(message="User created successfully.", pilot=pilot.to_dict())


def list_pilots(session: Session) -> list[dict]:
    pilots = session.execute(select(Pilot).order_by(Pilot.created_at.asc(), Pilot.id.asc())).scalars()
    return [p.to_dict() for p in pilots]


def get_profile(session: Session, pilot_id: str) -> Outcome:
    """The pilot's own record with duty state, hour totals and bound roster."""
    pilot = session.get(Pilot, pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "User not found.", pilot_id=pilot_id)

    roster = session.get(Roster, pilot.current_roster_id) if pilot.current_roster_id else None
    profile = pilot.to_dict()
    profile["email"] = pilot.email
    profile["image_key"] = pilot.image_key
    return accept(pilot=profile, current_roster=roster.to_dict() if roster is not None else None)


@releases_on_denial
def update_profile(
    session: Session,
    pilot_id: str,
    name: str | None = None,
    image_key: str | None = None,
) -> Outcome:
    """Self-service name and profile picture change.

    `image_key` must come from the pilot's own profile upload. The payload
    carries the replaced key so the old picture can be removed.
    """
    pilot = session.get(Pilot, pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "User not found.", pilot_id=pilot_id)

    if name is not None:
        name = name.strip()
        if not name:
            return deny(DenialKind.VALIDATION, "Name cannot be empty.")
        pilot.name = name

    replaced_image_key = None
    if image_key is not None:
        if not image_key.startswith(f"{PROFILE_PREFIX}{pilot_id}/"):
            return deny(DenialKind.VALIDATION, "Profile picture does not belong to your uploads.")
        if pilot.image_key != image_key:
            replaced_image_key = pilot.image_key
            pilot.image_key = image_key

    session.commit()
    logger.info("Profile of %s updated", pilot_id)
    return accept(
        message="Profile updated successfully!",
        pilot=pilot.to_dict(),
        replaced_image_key=replaced_image_key,
    )


@releases_on_denial
def set_role(session: Session, pilot_id: str, role: str) -> Outcome:
    if role not in ROLES:
        return deny(DenialKind.VALIDATION, "Invalid role specified.", role=role)

    pilot = session.get(Pilot, pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "User not found.", pilot_id=pilot_id)

    previous = pilot.role
    pilot.role = role
    session.commit()
    logger.info("Role of %s changed from '%s' to '%s'", pilot_id, previous, role)
    return accept(message=f"User role successfully updated to {role}.", pilot=pilot.to_dict())


@releases_on_denial
def set_callsign(session: Session, pilot_id: str, callsign: str | None) -> Outcome:
    """Assign a callsign. The payload names the previous one for the ledger mirror."""
    if not callsign or not str(callsign).strip():
        return deny(DenialKind.VALIDATION, "A non-empty callsign must be provided.")

    pilot = session.get(Pilot, pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "User not found.", pilot_id=pilot_id)

    callsign, denied = _normalize_callsign(session, str(callsign), pilot_id=pilot_id)
    if denied is not None:
        return denied

    previous = pilot.callsign
    pilot.callsign = callsign
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        return deny(DenialKind.CONFLICT, "This callsign is already taken by another user.")

    logger.info("Callsign %s assigned to %s (was %s)", callsign, pilot_id, previous or "none")
    return accept(
        message=f"Callsign {callsign} assigned.",
        pilot=pilot.to_dict(),
        previous_callsign=previous if previous != callsign else None,
    )


@releases_on_denial
def set_rank(session: Session, pilot_id: str, rank: str) -> Outcome:
    """Manual rank override; skips the hour-based ladder in either direction."""
    parsed = Rank.parse(rank)
    if parsed is None:
        return deny(DenialKind.VALIDATION, f"Unknown rank '{rank}'.")

    pilot = session.get(Pilot, pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "Pilot not found.", pilot_id=pilot_id)

    previous = pilot.rank
    pilot.rank = parsed.label
    session.commit()
    logger.info("Rank of %s set to %s (was %s)", pilot_id, parsed.label, previous)
    return accept(message=f"Rank updated to {parsed.label}.", pilot=pilot.to_dict())


@releases_on_denial
def delete_pilot(session: Session, pilot_id: str, acting_id: str | None = None) -> Outcome:
    """Remove a resting pilot and their reports.

    Manual rosters they created are kept with `created_by` cleared. The
    payload carries the callsign and every stored object key (profile
    picture and report attachments) for external cleanup.
    """
    if acting_id is not None and acting_id == pilot_id:
        return deny(DenialKind.VALIDATION, "You cannot delete your own admin account.")

    pilot = session.get(Pilot, pilot_id)
    if pilot is None:
        return deny(DenialKind.NOT_FOUND, "Pilot not found.", pilot_id=pilot_id)
    if pilot.on_duty:
        return deny(
            DenialKind.CONFLICT,
            "Cannot delete a pilot who is on duty. End the duty first.",
            pilot_id=pilot_id,
        )

    callsign = pilot.callsign
    object_keys = [pilot.image_key] if pilot.image_key else []
    object_keys.extend(
        session.execute(
            select(FlightReport.attachment_key).where(
                FlightReport.pilot_id == pilot_id,
                FlightReport.attachment_key.is_not(None),
            )
        ).scalars()
    )

    reports = session.execute(delete(FlightReport).where(FlightReport.pilot_id == pilot_id))
    session.execute(update(Roster).where(Roster.created_by == pilot_id).values(created_by=None))
    session.delete(pilot)
    session.commit()

    logger.info("Deleted pilot %s with %d reports", pilot_id, reports.rowcount)
    return accept(
        message="User deleted successfully.",
        pilot_id=pilot_id,
        callsign=callsign,
        object_keys=object_keys,
    )


async def cleanup_external(
    store: ObjectStore | None,
    ledger: LedgerMirror | None,
    callsign: str | None,
    object_keys: list[str] | None = None,
) -> None:
    """Best effort: remove stored images and the ledger row."""
    if store is not None:
        for key in object_keys or ():
            store.delete_object(key)
    if ledger is not None and ledger.enabled and callsign:
        await ledger.delete(callsign)
