"""Bearer token validation for pilots and staff.

Tokens are issued by the identity provider and signed with the shared
JWT_SECRET (HS256). Claims: sub (pilot/staff id), role.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt  # PyJWT

logger = logging.getLogger(__name__)

ISSUER = "sector-ops"

PILOT = "pilot"
ADMIN = "admin"
CEO = "ceo"
COO = "coo"
PIREP_MANAGER = "pirep_manager"
ROUTE_MANAGER = "route_manager"
PILOT_MANAGER = "pilot_manager"

ROLES = {PILOT, ADMIN, CEO, COO, PIREP_MANAGER, ROUTE_MANAGER, PILOT_MANAGER}

# Permission groups
PIREP_REVIEWERS = frozenset({ADMIN, CEO, COO, PIREP_MANAGER})
ROUTE_MANAGERS = frozenset({ADMIN, CEO, COO, ROUTE_MANAGER})
RANK_MANAGERS = frozenset({ADMIN, CEO, COO, PILOT_MANAGER})
ADMINS = frozenset({ADMIN})


@dataclass
class AccessClaims:
    """Validated claims from an access token."""

    subject: str
    role: str = PILOT
    jti: str = ""

    def has_role(self, allowed: frozenset[str]) -> bool:
        return self.role in allowed


def validate_access_token(token: str, secret: str) -> AccessClaims | None:
    """Validate an access token and extract claims.

    Returns AccessClaims on success, None on any failure (fail closed).
    """
    if not secret:
        logger.error("JWT_SECRET not configured; rejecting token")
        return None
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            issuer=ISSUER,
            options={"require": ["exp", "iss", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Access token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning("Access token validation failed: %s", e)
        return None

    role = payload.get("role", PILOT)
    if role not in ROLES:
        logger.warning("Access token has unknown role: %s", role)
        return None

    return AccessClaims(subject=payload["sub"], role=role, jti=payload.get("jti", ""))


def issue_access_token(subject: str, role: str, secret: str, expires_minutes: int = 60) -> str:
    """Mint a token (development tooling and tests; production tokens come from the identity provider)."""
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    now = datetime.now(timezone.utc)
    payload = {
        "iss": ISSUER,
        "sub": subject,
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, secret, algorithm="HS256")
