"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure. Adapters implement these protocols.
"""

from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from typing import Any, Protocol

from .models import (
    Event,
    GatewayOrder,
    GatewayResult,
    HistoryRecord,
    Registration,
    RegistrationRequest,
    RetryRecord,
)


class RegistrationStore(Protocol):
    """Port interface for registration persistence and the history ledger."""

    def create(self, registration: Registration) -> Registration:
        """
        Persist a new registration and append its ``created`` history entry.

        Implementations must make the uniqueness check and the insert atomic
        (lock or unique constraint).

        Raises:
            AlreadyRegistered: If an active registration exists for the same
                (user_id, event_id) pair
        """
        ...

    def get_by_id(self, registration_id: str) -> Registration | None: ...

    def get_by_user(self, user_id: str) -> list[Registration]:
        """Registrations of a user, in insertion order."""
        ...

    def get_by_event(self, event_id: str) -> list[Registration]:
        """Registrations for an event, in insertion order."""
        ...

    def find_active(self, user_id: str, event_id: str) -> Registration | None:
        """The non-cancelled registration for (user, event), if any."""
        ...

    def update(
        self,
        registration_id: str,
        partial: Mapping[str, Any],
        *,
        reason: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Registration | None:
        """
        Apply a partial update and record it in the history ledger.

        Computes a field-level diff against the stored entity. When at least
        one field changed, appends one history record holding every change
        (action ``cancelled`` when the update sets status to cancelled, else
        ``updated``) and bumps ``updated_at``. A no-op update writes nothing.

        Args:
            registration_id: Registration to update
            partial: Mapping of Registration attribute names to new values
            reason: Free-text reason stored on the history record
            metadata: Requester context stored on the history record

        Returns:
            The updated registration, or None if it does not exist
        """
        ...

    def get_history(self, registration_id: str) -> list[HistoryRecord]:
        """History of one registration, oldest first."""
        ...

    def clear_all(self) -> None:
        """Remove everything. Test-only."""
        ...


class EventCatalog(Protocol):
    """Port interface for event lookup."""

    def get(self, event_id: str) -> Event | None: ...

    def add(self, event: Event) -> Event: ...


class RetryRecordStore(Protocol):
    """Port interface for retry record persistence."""

    def create(self, record: RetryRecord) -> RetryRecord: ...

    def get(self, retry_id: str) -> RetryRecord | None: ...

    def save(self, record: RetryRecord) -> RetryRecord:
        """Replace the stored record with ``record`` (matched by id)."""
        ...

    def list_by_user(self, user_id: str) -> list[RetryRecord]: ...

    def list_all(self) -> list[RetryRecord]: ...


class OrderGateway(Protocol):
    """Port interface for the external order-management service."""

    async def create_order(self, request: RegistrationRequest) -> GatewayResult:
        """
        Create an external order for a registration request.

        Business failures (sold out, unknown item) and transport failures are
        reported through ``GatewayResult.failure`` with an error code.
        """
        ...

    async def cancel_order(self, event_ref: str, order_code: str) -> GatewayOrder:
        """Cancel an order. Raises GatewayError on failure."""
        ...

    async def get_order_status(self, event_ref: str, order_code: str) -> GatewayOrder:
        """Fetch an order. Raises GatewayError on failure."""
        ...


class Clock(Protocol):
    """Port interface for the current time (timezone-aware UTC)."""

    def now(self) -> datetime: ...


RetryJob = Callable[[], Awaitable[None]]


class RetryScheduler(Protocol):
    """Port interface for running a job later, outside the request cycle."""

    def schedule(self, delay_seconds: float, job: RetryJob) -> None: ...
