"""
Domain models - Entities and value objects for the registration lifecycle.

Registration Lifecycle (forward-only)
=====================================

    CONFIRMED -> CANCELLED   (user cancellation)

CANCELLED is terminal: no field of a cancelled registration ever changes again.
PENDING exists for stores that persist a registration before the external
order is confirmed; the orchestrator in this package only writes CONFIRMED.

History records are append-only and are the single source of truth for
modification counting and timeline reconstruction.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class IdentityType(str, Enum):
    """Participant identity; drives which personal-info fields are mandatory."""

    CLERGY = "clergy"
    VOLUNTEER = "volunteer"


class RegistrationStatus(str, Enum):
    """Registration states. CANCELLED is terminal."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class HistoryAction(str, Enum):
    """Kind of state transition recorded in the history ledger."""

    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"


class RetryStatus(str, Enum):
    """
    Retry record states.

    PENDING -> RETRYING -> SUCCESS | FAILED
    PENDING -> SUCCESS | FAILED     (attempt #1 decided it)
    any non-terminal -> ABANDONED   (explicit abandon or expiry cleanup)
    """

    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (RetryStatus.SUCCESS, RetryStatus.FAILED, RetryStatus.ABANDONED)


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def new_id(prefix: str) -> str:
    """Generate a prefixed opaque identifier (e.g. ``reg_3f2a...``)."""
    return f"{prefix}_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class PersonalInfo:
    """Identity-specific personal information attached to a registration."""

    name: str
    phone: str
    email: str | None = None
    temple_name: str | None = None
    emergency_contact: str | None = None
    special_requirements: str | None = None


@dataclass(frozen=True)
class Transport:
    """Shuttle-bus request; ``location_id`` is required when ``required`` is set."""

    required: bool
    location_id: str | None = None
    pickup_time: datetime | None = None


@dataclass(frozen=True)
class Event:
    """Event instance a registration refers to."""

    id: str
    name: str
    start_date: datetime
    end_date: datetime | None = None


@dataclass(frozen=True)
class RegistrationRequest:
    """Creation payload, shared by direct creation and retry records."""

    user_id: str
    event_id: str
    identity_type: IdentityType
    personal_info: PersonalInfo
    transport: Transport | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Registration:
    """One participant's registration for one event instance."""

    id: str
    user_id: str
    event_id: str
    identity_type: IdentityType
    personal_info: PersonalInfo
    status: RegistrationStatus
    created_at: datetime
    updated_at: datetime
    transport: Transport | None = None
    external_order_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status != RegistrationStatus.CANCELLED


@dataclass(frozen=True)
class FieldChange:
    """One changed top-level field; values are plain JSON-compatible data."""

    field: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class HistoryRecord:
    """Immutable entry of the history ledger."""

    id: str
    registration_id: str
    user_id: str
    action: HistoryAction
    changes: tuple[FieldChange, ...]
    created_at: datetime
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayOrder:
    """Order as reported by the external order-management gateway."""

    code: str
    status: str
    email: str | None = None
    datetime: str | None = None
    total: str | None = None


@dataclass(frozen=True)
class GatewayResult:
    """Outcome of ``OrderGateway.create_order``."""

    success: bool
    order: GatewayOrder | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def ok(cls, order: GatewayOrder) -> "GatewayResult":
        return cls(success=True, order=order)

    @classmethod
    def failure(cls, error_code: str, error: str) -> "GatewayResult":
        return cls(success=False, error=error, error_code=error_code)


@dataclass(frozen=True)
class RetryAttempt:
    attempt_number: int
    timestamp: datetime
    outcome: AttemptOutcome
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class RetryRecord:
    """Tracks one creation attempt sequence; mutated only by RetryService."""

    id: str
    user_id: str
    registration_data: RegistrationRequest
    status: RetryStatus
    created_at: datetime
    updated_at: datetime
    attempts: tuple[RetryAttempt, ...] = ()
    final_order_id: str | None = None
    registration_id: str | None = None
