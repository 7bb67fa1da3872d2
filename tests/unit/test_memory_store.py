"""
Unit tests for the in-memory store adapters.

Tests verify:
- Active uniqueness per (user, event)
- Atomic history append on create and update
- No-op updates write nothing
- Insertion-ordered queries
"""

from dataclasses import replace

import pytest

from src.adapters.repository.memory import (
    InMemoryEventCatalog,
    InMemoryRegistrationStore,
    InMemoryRetryRecordStore,
)
from src.domain.exceptions import AlreadyRegistered
from src.domain.models import (
    Event,
    HistoryAction,
    IdentityType,
    Registration,
    RegistrationStatus,
    RetryRecord,
    RetryStatus,
    Transport,
)
from tests.factories import EVENT_ID, NOW, FixedClock, make_request, volunteer_info


def _registration(registration_id: str = "reg_1", user_id: str = "user-1", event_id: str = EVENT_ID) -> Registration:
    return Registration(
        id=registration_id,
        user_id=user_id,
        event_id=event_id,
        identity_type=IdentityType.VOLUNTEER,
        personal_info=volunteer_info(),
        status=RegistrationStatus.CONFIRMED,
        created_at=NOW,
        updated_at=NOW,
        external_order_id="ORD00001",
        metadata={"ip": "10.0.0.1"},
    )


class TestCreate:
    """Tests for InMemoryRegistrationStore.create."""

    def test_create_appends_created_history(self, store: InMemoryRegistrationStore) -> None:
        store.create(_registration())

        history = store.get_history("reg_1")
        assert len(history) == 1
        assert history[0].action == HistoryAction.CREATED
        assert history[0].changes == ()
        assert history[0].metadata == {"ip": "10.0.0.1"}

    def test_duplicate_active_registration_rejected(self, store: InMemoryRegistrationStore) -> None:
        store.create(_registration("reg_1"))

        with pytest.raises(AlreadyRegistered):
            store.create(_registration("reg_2"))
        assert store.get_by_id("reg_2") is None

    def test_cancelled_registration_does_not_block(self, store: InMemoryRegistrationStore) -> None:
        store.create(_registration("reg_1"))
        store.update("reg_1", {"status": RegistrationStatus.CANCELLED})

        store.create(_registration("reg_2"))
        assert store.find_active("user-1", EVENT_ID).id == "reg_2"


class TestUpdate:
    """Tests for InMemoryRegistrationStore.update."""

    def test_update_records_changes(self, store: InMemoryRegistrationStore, clock: FixedClock) -> None:
        store.create(_registration())
        clock.advance(hours=2)

        updated = store.update(
            "reg_1",
            {"transport": Transport(required=True, location_id="north-gate")},
            reason="need a ride",
            metadata={"ip": "10.0.0.2"},
        )

        assert updated.transport.location_id == "north-gate"
        assert updated.updated_at == clock.now()
        record = store.get_history("reg_1")[-1]
        assert record.action == HistoryAction.UPDATED
        assert record.changes[0].field == "transport"
        assert record.changes[0].old_value is None
        assert record.reason == "need a ride"
        assert record.metadata == {"ip": "10.0.0.2"}

    def test_status_cancel_is_recorded_as_cancelled(self, store: InMemoryRegistrationStore) -> None:
        store.create(_registration())

        store.update("reg_1", {"status": RegistrationStatus.CANCELLED}, reason="ill")

        assert store.get_history("reg_1")[-1].action == HistoryAction.CANCELLED

    def test_noop_update_writes_nothing(self, store: InMemoryRegistrationStore, clock: FixedClock) -> None:
        """Setting a field to its current value neither bumps updated_at nor appends history."""
        store.create(_registration())
        clock.advance(hours=1)

        result = store.update("reg_1", {"status": RegistrationStatus.CONFIRMED})

        assert result.updated_at == NOW
        assert len(store.get_history("reg_1")) == 1

    def test_update_missing_returns_none(self, store: InMemoryRegistrationStore) -> None:
        assert store.update("reg_missing", {"status": RegistrationStatus.CANCELLED}) is None


class TestQueries:
    """Tests for lookup methods."""

    def test_queries_preserve_insertion_order(self, store: InMemoryRegistrationStore) -> None:
        store.create(_registration("reg_1", event_id="event-a"))
        store.create(_registration("reg_2", event_id="event-b"))
        store.create(_registration("reg_3", user_id="user-2", event_id="event-a"))

        assert [r.id for r in store.get_by_user("user-1")] == ["reg_1", "reg_2"]
        assert [r.id for r in store.get_by_event("event-a")] == ["reg_1", "reg_3"]

    def test_history_of_unknown_registration_is_empty(self, store: InMemoryRegistrationStore) -> None:
        assert store.get_history("reg_missing") == []

    def test_clear_all(self, store: InMemoryRegistrationStore) -> None:
        store.create(_registration())
        store.clear_all()

        assert store.get_by_id("reg_1") is None
        assert store.get_history("reg_1") == []


class TestEventCatalog:
    def test_add_and_get(self) -> None:
        catalog = InMemoryEventCatalog()
        event = catalog.add(Event(id="autumn-retreat", name="Autumn Retreat", start_date=NOW))

        assert catalog.get("autumn-retreat") == event
        assert catalog.get("unknown") is None


class TestRetryRecordStore:
    def test_save_replaces_and_lists_by_user(self) -> None:
        records = InMemoryRetryRecordStore()
        record = RetryRecord(
            id="retry_1",
            user_id="user-1",
            registration_data=make_request(),
            status=RetryStatus.PENDING,
            created_at=NOW,
            updated_at=NOW,
        )
        records.create(record)

        records.save(replace(record, status=RetryStatus.FAILED))

        assert records.get("retry_1").status == RetryStatus.FAILED
        assert [r.id for r in records.list_by_user("user-1")] == ["retry_1"]
        assert records.list_by_user("user-2") == []
