"""
In-memory repository adapters - Dict-backed implementations of the store ports.

Used by the default ``memory`` storage backend and throughout the test suite.
Every public method holds a single re-entrant lock, which makes the
duplicate check and insert in ``create`` atomic and keeps history appends
ordered.
"""

import threading
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from src.adapters.runtime import SystemClock
from src.domain.diff import compute_changes
from src.domain.exceptions import AlreadyRegistered
from src.domain.models import (
    Event,
    HistoryAction,
    HistoryRecord,
    Registration,
    RegistrationStatus,
    RetryRecord,
    new_id,
)
from src.domain.ports import Clock


class InMemoryRegistrationStore:
    """Implements RegistrationStore; insertion order is preserved."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._lock = threading.RLock()
        self._registrations: dict[str, Registration] = {}
        self._history: dict[str, list[HistoryRecord]] = {}

    def create(self, registration: Registration) -> Registration:
        with self._lock:
            if self.find_active(registration.user_id, registration.event_id) is not None:
                raise AlreadyRegistered(registration.user_id, registration.event_id)

            self._registrations[registration.id] = registration
            self._history[registration.id] = [
                HistoryRecord(
                    id=new_id("hist"),
                    registration_id=registration.id,
                    user_id=registration.user_id,
                    action=HistoryAction.CREATED,
                    changes=(),
                    created_at=registration.created_at,
                    reason="registration created",
                    metadata=dict(registration.metadata),
                )
            ]
            return registration

    def get_by_id(self, registration_id: str) -> Registration | None:
        with self._lock:
            return self._registrations.get(registration_id)

    def get_by_user(self, user_id: str) -> list[Registration]:
        with self._lock:
            return [r for r in self._registrations.values() if r.user_id == user_id]

    def get_by_event(self, event_id: str) -> list[Registration]:
        with self._lock:
            return [r for r in self._registrations.values() if r.event_id == event_id]

    def find_active(self, user_id: str, event_id: str) -> Registration | None:
        with self._lock:
            for registration in self._registrations.values():
                if registration.user_id == user_id and registration.event_id == event_id and registration.is_active:
                    return registration
            return None

    def update(
        self,
        registration_id: str,
        partial: Mapping[str, Any],
        *,
        reason: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Registration | None:
        with self._lock:
            current = self._registrations.get(registration_id)
            if current is None:
                return None

            changes = compute_changes(current, partial)
            if not changes:
                return current

            now = self._clock.now()
            updated = replace(current, **dict(partial), updated_at=now)
            self._registrations[registration_id] = updated

            cancelled = partial.get("status") == RegistrationStatus.CANCELLED
            self._history[registration_id].append(
                HistoryRecord(
                    id=new_id("hist"),
                    registration_id=registration_id,
                    user_id=current.user_id,
                    action=HistoryAction.CANCELLED if cancelled else HistoryAction.UPDATED,
                    changes=tuple(changes),
                    created_at=now,
                    reason=reason,
                    metadata=dict(metadata or {}),
                )
            )
            return updated

    def get_history(self, registration_id: str) -> list[HistoryRecord]:
        with self._lock:
            return list(self._history.get(registration_id, []))

    def clear_all(self) -> None:
        with self._lock:
            self._registrations.clear()
            self._history.clear()


class InMemoryEventCatalog:
    """Implements EventCatalog."""

    def __init__(self, events: list[Event] | None = None) -> None:
        self._events = {event.id: event for event in events or []}

    def get(self, event_id: str) -> Event | None:
        return self._events.get(event_id)

    def add(self, event: Event) -> Event:
        self._events[event.id] = event
        return event


class InMemoryRetryRecordStore:
    """Implements RetryRecordStore."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, RetryRecord] = {}

    def create(self, record: RetryRecord) -> RetryRecord:
        with self._lock:
            self._records[record.id] = record
            return record

    def get(self, retry_id: str) -> RetryRecord | None:
        with self._lock:
            return self._records.get(retry_id)

    def save(self, record: RetryRecord) -> RetryRecord:
        with self._lock:
            self._records[record.id] = record
            return record

    def list_by_user(self, user_id: str) -> list[RetryRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.user_id == user_id]

    def list_all(self) -> list[RetryRecord]:
        with self._lock:
            return list(self._records.values())
