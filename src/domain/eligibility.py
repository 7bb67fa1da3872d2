"""
Eligibility engine - Decides whether a registration may be mutated right now.

Rules, evaluated in order on every mutation attempt (no cached state):

1. Registration not found                        -> NOT_FOUND
2. Registration cancelled (terminal)             -> ALREADY_CANCELLED
3. now > event.start_date - blackout_days        -> MODIFICATION_WINDOW_CLOSED
4. ``updated`` history entries >= max_modifications -> MODIFICATION_LIMIT_REACHED
5. Otherwise allowed

Cancellation only treats rules 1-2 as hard blockers. Rule 3 applies to it
only when the policy disables ``allow_cancel_in_blackout``; rule 4 never does.

Ownership is deliberately not checked here: it is an authorization concern
and callers must keep it distinguishable (403) from eligibility (400).
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from .models import Event, HistoryAction, HistoryRecord, Registration, RegistrationStatus


class MutationMode(str, Enum):
    MODIFY = "modify"
    CANCEL = "cancel"


@dataclass(frozen=True)
class EligibilityPolicy:
    blackout_days: int = 3
    max_modifications: int = 5
    allow_cancel_in_blackout: bool = True


@dataclass(frozen=True)
class Eligibility:
    allowed: bool
    reason: str | None = None
    code: str | None = None
    in_blackout: bool = False

    @classmethod
    def deny(cls, code: str, reason: str, in_blackout: bool = False) -> "Eligibility":
        return cls(allowed=False, reason=reason, code=code, in_blackout=in_blackout)


def modification_count(history: Sequence[HistoryRecord]) -> int:
    """Number of accepted modifications recorded in the ledger."""
    return sum(1 for record in history if record.action == HistoryAction.UPDATED)


def remaining_modifications(history: Sequence[HistoryRecord], policy: EligibilityPolicy) -> int:
    return max(0, policy.max_modifications - modification_count(history))


def modification_deadline(event: Event | None, policy: EligibilityPolicy) -> datetime | None:
    """Last instant at which a modification is still accepted."""
    if event is None:
        return None
    return event.start_date - timedelta(days=policy.blackout_days)


def can_modify(
    registration: Registration | None,
    event: Event | None,
    history: Sequence[HistoryRecord],
    now: datetime,
    policy: EligibilityPolicy,
    mode: MutationMode = MutationMode.MODIFY,
) -> Eligibility:
    """
    Evaluate eligibility of a mutation.

    Args:
        registration: Current registration, or None if it does not exist
        event: Event the registration belongs to; rule 3 is skipped if unknown
        history: The registration's history ledger
        now: Current time from the injected clock
        policy: Blackout and modification-cap settings
        mode: MODIFY applies all rules; CANCEL relaxes rules 3 and 4

    Returns:
        Eligibility with ``allowed`` and, when denied, a user-facing reason
    """
    if registration is None:
        return Eligibility.deny("NOT_FOUND", "registration not found")

    if registration.status == RegistrationStatus.CANCELLED:
        return Eligibility.deny("ALREADY_CANCELLED", "registration already cancelled")

    deadline = modification_deadline(event, policy)
    in_blackout = deadline is not None and now > deadline

    if in_blackout and (mode == MutationMode.MODIFY or not policy.allow_cancel_in_blackout):
        return Eligibility.deny(
            "MODIFICATION_WINDOW_CLOSED",
            f"modifications are not allowed within {policy.blackout_days} days of the event start",
            in_blackout=True,
        )

    if mode == MutationMode.MODIFY and modification_count(history) >= policy.max_modifications:
        return Eligibility.deny(
            "MODIFICATION_LIMIT_REACHED",
            f"maximum modification limit reached ({policy.max_modifications})",
        )

    return Eligibility(allowed=True, in_blackout=in_blackout)
