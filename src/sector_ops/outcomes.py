"""Result types for duty, roster and report operations.

Rejections in the core are ordinary outcomes, not exceptions. Every
operation returns an `Outcome` that is either accepted (with a payload) or
carries a `Denial` whose `kind` lets callers map it to a status code.
"""

import functools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DenialKind(str, Enum):
    VALIDATION = "validation"
    POLICY = "policy"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


@dataclass
class Denial:
    kind: DenialKind
    reason: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class Outcome:
    """Accepted payload or denial."""

    payload: dict[str, Any] = field(default_factory=dict)
    denial: Denial | None = None

    @property
    def accepted(self) -> bool:
        return self.denial is None

    def to_dict(self) -> dict[str, Any]:
        if self.denial is None:
            return {"accepted": True, **self.payload}
        return {
            "accepted": False,
            "denied": self.denial.kind.value,
            "reason": self.denial.reason,
            **self.denial.details,
        }


def accept(**payload: Any) -> Outcome:
    return Outcome(payload=payload)


def deny(kind: DenialKind, reason: str, **details: Any) -> Outcome:
    return Outcome(denial=Denial(kind=kind, reason=reason, details=details))


def releases_on_denial(func):
    """Roll back the session's open transaction (and row locks) when an operation is denied."""

    @functools.wraps(func)
    def wrapper(session, *args, **kwargs):
        outcome = func(session, *args, **kwargs)
        if not outcome.accepted:
            session.rollback()
        return outcome

    return wrapper
