"""Sector Ops HTTP API.

Thin routing over the duty, roster and report operations. Every operation
returns an Outcome; denials are mapped to status codes here.

Endpoints:
  Public:
    GET  /health                      - Health check
    GET  /api/ranks                   - Rank ladder with hour thresholds

  Pilots (any authenticated role):
    GET  /api/rosters                 - All available rosters
    GET  /api/rosters/my-rosters      - Rosters from the pilot's location
    GET  /api/routes                  - Stored route pool
    POST /api/duty/start              - Go on duty for a roster
    POST /api/duty/end                - End duty (all legs reported)
    POST /api/pireps                  - File a flight report
    POST /api/pireps/attachments      - Presigned upload URL for an image
    GET  /api/me                      - Own profile, duty state and hour totals
    PUT  /api/me                      - Update own name or profile picture
    POST /api/me/image                - Presigned upload URL for a profile picture
    GET  /api/me/pireps               - Own reports, newest first

  Staff:
    POST   /api/rosters/generate      - Ingest routes and regenerate rosters
    POST   /api/rosters               - Create a manual roster
    DELETE /api/rosters/{id}          - Delete a roster
    GET    /api/pireps/pending        - Review queue, oldest first
    PUT    /api/pireps/{id}/approve   - Approve a report
    PUT    /api/pireps/{id}/reject    - Reject a report
    GET    /api/users                 - All pilots and staff
    POST   /api/users                 - Register a pilot
    PUT    /api/users/{id}/role       - Change a user's role
    PUT    /api/users/{id}/callsign   - Assign a callsign
    PUT    /api/users/{id}/rank       - Manual rank override
    DELETE /api/users/{id}            - Delete a pilot
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Iterator

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from . import __version__
from .auth import (
    ADMINS,
    PILOT,
    PIREP_REVIEWERS,
    RANK_MANAGERS,
    ROUTE_MANAGERS,
    AccessClaims,
    validate_access_token,
)
from .config import Settings
from .database import Pilot, get_session, init_db, session_factory
from .duty import end_duty, file_report, start_duty
from .ledger import LedgerMirror
from .outcomes import DenialKind, Outcome
from .pilots import (
    cleanup_external,
    delete_pilot,
    get_profile,
    list_pilots,
    register_pilot,
    set_callsign,
    set_rank,
    set_role,
    update_profile,
)
from .pireps import approve_report, list_pending_reports, list_reports_for_pilot, reject_report
from .ranks import RANK_TIERS
from .rosters import (
    create_roster,
    delete_roster,
    ingest_and_generate_rosters,
    list_available_rosters,
    list_rosters,
    list_routes,
)
from .storage import ObjectStore

logger = logging.getLogger(__name__)

DENIAL_STATUS = {
    DenialKind.VALIDATION: 400,
    DenialKind.POLICY: 403,
    DenialKind.NOT_FOUND: 404,
    DenialKind.CONFLICT: 409,
}


# =========================================================================
# Request Models
# =========================================================================

class StartDutyRequest(BaseModel):
    roster_id: int


class ReportRequest(BaseModel):
    flight_number: str | None = None
    departure: str | None = None
    arrival: str | None = None
    aircraft: str | None = None
    flight_time: float | None = None
    remarks: str | None = None
    attachment_key: str | None = None


class UploadRequest(BaseModel):
    filename: str


class RejectRequest(BaseModel):
    reason: str = ""


class RosterRequest(BaseModel):
    name: str = ""
    legs: list[dict] = []
    hub: str | None = None
    multiplier: float = 1.0


class UserRequest(BaseModel):
    name: str = ""
    callsign: str | None = None
    email: str | None = None
    role: str = PILOT
    pilot_id: str | None = None


class RankRequest(BaseModel):
    rank: str


class RoleRequest(BaseModel):
    role: str


class CallsignRequest(BaseModel):
    callsign: str | None = None


class ProfileRequest(BaseModel):
    name: str | None = None
    image_key: str | None = None


# =========================================================================
# Dependencies
# =========================================================================

def db_session(request: Request) -> Iterator[Session]:
    yield from get_session(request.app.state.session_factory)


def current_claims(request: Request, authorization: str | None = Header(None)) -> AccessClaims:
    """Validate the Bearer token; 401 when missing or invalid."""
    token = authorization[7:] if authorization and authorization.startswith("Bearer ") else ""
    if not token:
        raise HTTPException(status_code=401, detail="Missing authorization")

    claims = validate_access_token(token, request.app.state.settings.jwt_secret)
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return claims


def require_role(allowed: frozenset[str]):
    """Dependency factory: 403 unless the caller's role is in `allowed`."""

    def dependency(claims: AccessClaims = Depends(current_claims)) -> AccessClaims:
        if not claims.has_role(allowed):
            logger.warning("Role %s denied (subject=%s)", claims.role, claims.subject)
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return claims

    return dependency


def respond(outcome: Outcome, status_code: int = 200) -> JSONResponse:
    if not outcome.accepted:
        status_code = DENIAL_STATUS[outcome.denial.kind]
    return JSONResponse(status_code=status_code, content=outcome.to_dict())


def _queue_ledger_upsert(request: Request, background_tasks: BackgroundTasks, session: Session, pilot_id: str):
    ledger: LedgerMirror = request.app.state.ledger
    if not ledger.enabled:
        return
    pilot = session.get(Pilot, pilot_id)
    if pilot is not None and pilot.callsign:
        background_tasks.add_task(ledger.upsert, pilot.ledger_row())


# =========================================================================
# App factory
# =========================================================================

def create_app(
    settings: Settings | None = None,
    factory: sessionmaker | None = None,
    ledger: LedgerMirror | None = None,
    store: ObjectStore | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    factory = factory or session_factory(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create tables on startup."""
        init_db(factory.kw["bind"])
        yield

    app = FastAPI(
        title="Sector Ops",
        description="Virtual airline duty, roster and PIREP backend",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = factory
    app.state.ledger = ledger or LedgerMirror(settings.ledger_webhook_url, settings.ledger_token)
    app.state.store = store or ObjectStore(
        settings.storage_bucket,
        endpoint_url=settings.storage_endpoint_url,
        access_key=settings.storage_access_key,
        secret_key=settings.storage_secret_key,
    )

    authenticated = Depends(current_claims)

    # ---------------------------------------------------------------------
    # Public
    # ---------------------------------------------------------------------

    @app.get("/health")
    async def health():
        """Health check."""
        return {
            "status": "healthy",
            "service": "sector-ops",
            "version": __version__,
            "ledger_mirror": app.state.ledger.enabled,
        }

    @app.get("/api/ranks")
    async def ranks():
        return {
            "ranks": [
                {"rank": tier.label, "min_hours": tier.min_hours, "perks": list(tier.perks)}
                for tier in RANK_TIERS
            ]
        }

    # ---------------------------------------------------------------------
    # Rosters and routes
    # ---------------------------------------------------------------------

    @app.post("/api/rosters/generate")
    async def generate(
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(ROUTE_MANAGERS)),
    ):
        result = await ingest_and_generate_rosters(session, app.state.settings)
        logger.info("Roster generation requested by %s: %s", claims.subject, result)
        return {
            "accepted": True,
            "message": f"Successfully generated {result['created']} new rosters.",
            **result,
        }

    @app.get("/api/rosters")
    def all_rosters(session: Session = Depends(db_session), claims: AccessClaims = authenticated):
        return {"rosters": list_rosters(session)}

    @app.get("/api/rosters/my-rosters")
    def my_rosters(session: Session = Depends(db_session), claims: AccessClaims = authenticated):
        return respond(list_available_rosters(session, claims.subject, app.state.settings.default_hub))

    @app.post("/api/rosters")
    def new_roster(
        body: RosterRequest,
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(ROUTE_MANAGERS)),
    ):
        outcome = create_roster(
            session,
            app.state.settings,
            claims.subject,
            body.name,
            body.legs,
            hub=body.hub,
            multiplier=body.multiplier,
        )
        return respond(outcome, status_code=201)

    @app.delete("/api/rosters/{roster_id}")
    def remove_roster(
        roster_id: int,
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(ROUTE_MANAGERS)),
    ):
        return respond(delete_roster(session, roster_id))

    @app.get("/api/routes")
    def routes(
        departure: str | None = None,
        operator: str | None = None,
        session: Session = Depends(db_session),
        claims: AccessClaims = authenticated,
    ):
        return {"routes": list_routes(session, departure=departure, operator=operator)}

    # ---------------------------------------------------------------------
    # Duty lifecycle
    # ---------------------------------------------------------------------

    @app.post("/api/duty/start")
    def duty_start(body: StartDutyRequest, session: Session = Depends(db_session), claims: AccessClaims = authenticated):
        return respond(start_duty(session, app.state.settings, claims.subject, body.roster_id))

    @app.post("/api/duty/end")
    def duty_end(session: Session = Depends(db_session), claims: AccessClaims = authenticated):
        return respond(end_duty(session, claims.subject))

    # ---------------------------------------------------------------------
    # PIREPs
    # ---------------------------------------------------------------------

    @app.post("/api/pireps")
    def new_report(body: ReportRequest, session: Session = Depends(db_session), claims: AccessClaims = authenticated):
        return respond(file_report(session, claims.subject, body.model_dump()), status_code=201)

    @app.post("/api/pireps/attachments")
    def new_attachment(body: UploadRequest, claims: AccessClaims = authenticated):
        result = app.state.store.attachment_upload(claims.subject, body.filename)
        if not result["success"]:
            return JSONResponse(status_code=result.get("status_code", 502), content={"error": result["error"]})
        return result

    # ---------------------------------------------------------------------
    # Own profile
    # ---------------------------------------------------------------------

    @app.get("/api/me")
    def me(session: Session = Depends(db_session), claims: AccessClaims = authenticated):
        return respond(get_profile(session, claims.subject))

    @app.put("/api/me")
    def update_me(
        body: ProfileRequest,
        request: Request,
        background_tasks: BackgroundTasks,
        session: Session = Depends(db_session),
        claims: AccessClaims = authenticated,
    ):
        outcome = update_profile(session, claims.subject, name=body.name, image_key=body.image_key)
        if outcome.accepted:
            if outcome.payload["replaced_image_key"]:
                background_tasks.add_task(app.state.store.delete_object, outcome.payload["replaced_image_key"])
            _queue_ledger_upsert(request, background_tasks, session, claims.subject)
        return respond(outcome)

    @app.post("/api/me/image")
    def new_profile_image(body: UploadRequest, claims: AccessClaims = authenticated):
        result = app.state.store.profile_upload(claims.subject, body.filename)
        if not result["success"]:
            return JSONResponse(status_code=result.get("status_code", 502), content={"error": result["error"]})
        return result

    @app.get("/api/me/pireps")
    def my_reports(session: Session = Depends(db_session), claims: AccessClaims = authenticated):
        return {"pireps": list_reports_for_pilot(session, claims.subject)}

    @app.get("/api/pireps/pending")
    def pending_reports(
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(PIREP_REVIEWERS)),
    ):
        return {"pireps": list_pending_reports(session)}

    @app.put("/api/pireps/{report_id}/approve")
    def approve(
        report_id: int,
        request: Request,
        background_tasks: BackgroundTasks,
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(PIREP_REVIEWERS)),
    ):
        outcome = approve_report(session, report_id, claims.subject)
        if outcome.accepted:
            _queue_ledger_upsert(request, background_tasks, session, outcome.payload["pilot_id"])
        return respond(outcome)

    @app.put("/api/pireps/{report_id}/reject")
    def reject(
        report_id: int,
        body: RejectRequest,
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(PIREP_REVIEWERS)),
    ):
        return respond(reject_report(session, report_id, claims.subject, body.reason))

    # ---------------------------------------------------------------------
    # Pilot administration
    # ---------------------------------------------------------------------

    @app.post("/api/users")
    def new_user(
        body: UserRequest,
        request: Request,
        background_tasks: BackgroundTasks,
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(ADMINS)),
    ):
        outcome = register_pilot(
            session,
            body.name,
            callsign=body.callsign,
            email=body.email,
            role=body.role,
            pilot_id=body.pilot_id,
        )
        if outcome.accepted:
            _queue_ledger_upsert(request, background_tasks, session, outcome.payload["pilot"]["pilot_id"])
        return respond(outcome, status_code=201)

    @app.get("/api/users")
    def users(
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(ADMINS)),
    ):
        return {"users": list_pilots(session)}

    @app.put("/api/users/{pilot_id}/role")
    def update_role(
        pilot_id: str,
        body: RoleRequest,
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(ADMINS)),
    ):
        return respond(set_role(session, pilot_id, body.role))

    @app.put("/api/users/{pilot_id}/callsign")
    def update_callsign(
        pilot_id: str,
        body: CallsignRequest,
        request: Request,
        background_tasks: BackgroundTasks,
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(ADMINS)),
    ):
        outcome = set_callsign(session, pilot_id, body.callsign)
        if outcome.accepted:
            previous = outcome.payload["previous_callsign"]
            if previous and request.app.state.ledger.enabled:
                background_tasks.add_task(request.app.state.ledger.delete, previous)
            _queue_ledger_upsert(request, background_tasks, session, pilot_id)
        return respond(outcome)

    @app.put("/api/users/{pilot_id}/rank")
    def update_rank(
        pilot_id: str,
        body: RankRequest,
        request: Request,
        background_tasks: BackgroundTasks,
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(RANK_MANAGERS)),
    ):
        outcome = set_rank(session, pilot_id, body.rank)
        if outcome.accepted:
            _queue_ledger_upsert(request, background_tasks, session, pilot_id)
        return respond(outcome)

    @app.delete("/api/users/{pilot_id}")
    def remove_user(
        pilot_id: str,
        background_tasks: BackgroundTasks,
        session: Session = Depends(db_session),
        claims: AccessClaims = Depends(require_role(ADMINS)),
    ):
        outcome = delete_pilot(session, pilot_id, acting_id=claims.subject)
        if outcome.accepted:
            background_tasks.add_task(
                cleanup_external,
                app.state.store,
                app.state.ledger,
                outcome.payload["callsign"],
                outcome.payload["object_keys"],
            )
        return respond(outcome)

    return app


app = create_app()


# =========================================================================
# Server Entry Point
# =========================================================================

def _print_banner(host: str, port: int):
    """Print startup banner."""
    settings = app.state.settings
    print(f"\nStarting Sector Ops v{__version__} on {host}:{port}")
    print(f"  API:           http://{host}:{port}/api")
    print(f"  Health check:  GET  http://{host}:{port}/health")
    print(f"  Database:      {settings.database_url.split('@')[-1]}")
    print(f"  Ledger mirror: {'enabled' if app.state.ledger.enabled else 'disabled'}\n")


def main():
    """Run Sector Ops via gunicorn (production)."""
    import sys
    from pathlib import Path

    host = os.environ.get("SECTOR_OPS_HOST", "127.0.0.1")
    port = int(os.environ.get("SECTOR_OPS_PORT", "8000"))

    _print_banner(host, port)

    # Locate gunicorn config: check working directory, then package root
    config_path = Path("gunicorn_config.py")
    if not config_path.exists():
        config_path = Path(__file__).parent.parent.parent / "gunicorn_config.py"

    args = [
        "gunicorn",
        "--bind", f"{host}:{port}",
        "sector_ops.http_server:app",
    ]
    if config_path.exists():
        args.extend(["--config", str(config_path)])

    sys.argv = args

    from gunicorn.app.wsgiapp import WSGIApplication
    WSGIApplication("%(prog)s [OPTIONS] [APP_MODULE]").run()


def dev(host: str | None = None, port: int | None = None):
    """Run Sector Ops via uvicorn (development)."""
    import uvicorn

    host = host or os.environ.get("SECTOR_OPS_HOST", "0.0.0.0")
    port = port or int(os.environ.get("SECTOR_OPS_PORT", "8000"))

    _print_banner(host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    dev()
