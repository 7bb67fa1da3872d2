"""
Unit tests for RegistrationService domain logic.

Tests run the orchestrator against in-memory adapters and a fixed clock to verify:
- Exactly-once creation and duplicate rejection
- Nothing is persisted when the gateway fails
- Modification window and cap enforcement
- Best-effort external cancellation
- History, statistics and timeline
"""

from unittest.mock import Mock

import pytest

from src.adapters.gateway.memory import InMemoryOrderGateway
from src.adapters.repository.memory import InMemoryEventCatalog, InMemoryRegistrationStore
from src.domain.exceptions import (
    AlreadyCancelled,
    AlreadyRegistered,
    Forbidden,
    GatewayError,
    ImmutableField,
    ModificationNotAllowed,
    NothingToModify,
    RegistrationNotFound,
    RegistrationValidationError,
    StorageInconsistency,
)
from src.domain.models import FieldChange, HistoryAction, IdentityType, RegistrationStatus, Transport
from src.domain.registration import RegistrationService, describe_change
from tests.factories import EVENT_ID, FixedClock, clergy_info, make_request


class TestCreateRegistration:
    """Tests for exactly-once creation."""

    @pytest.mark.asyncio
    async def test_creates_confirmed_registration(
        self, service: RegistrationService, gateway: InMemoryOrderGateway
    ) -> None:
        """Successful creation stores a confirmed registration holding the order code."""
        result = await service.create_registration(make_request())

        assert result.registration.status == RegistrationStatus.CONFIRMED
        assert result.registration.external_order_id == result.order.code == "ORD00001"
        assert result.registration.id.startswith("reg_")
        assert gateway.create_calls == 1

    @pytest.mark.asyncio
    async def test_writes_created_history_entry(
        self, service: RegistrationService, store: InMemoryRegistrationStore
    ) -> None:
        result = await service.create_registration(make_request())

        history = store.get_history(result.registration.id)
        assert [r.action for r in history] == [HistoryAction.CREATED]

    @pytest.mark.asyncio
    async def test_duplicate_is_rejected_without_gateway_call(
        self, service: RegistrationService, gateway: InMemoryOrderGateway
    ) -> None:
        """A second create for the same (user, event) never reaches the gateway."""
        await service.create_registration(make_request())

        with pytest.raises(AlreadyRegistered):
            await service.create_registration(make_request())
        assert gateway.create_calls == 1

    @pytest.mark.asyncio
    async def test_other_user_same_event_is_allowed(self, service: RegistrationService) -> None:
        await service.create_registration(make_request(user_id="user-1"))
        result = await service.create_registration(make_request(user_id="user-2"))
        assert result.registration.user_id == "user-2"

    @pytest.mark.asyncio
    async def test_reregister_after_cancel(self, service: RegistrationService) -> None:
        """Cancelled registrations do not count as duplicates."""
        first = await service.create_registration(make_request())
        await service.cancel_registration(first.registration.id, "user-1")

        second = await service.create_registration(make_request())
        assert second.registration.id != first.registration.id

    @pytest.mark.asyncio
    async def test_validation_failure_skips_gateway(
        self, service: RegistrationService, gateway: InMemoryOrderGateway
    ) -> None:
        request = make_request(identity_type=IdentityType.CLERGY, personal_info=clergy_info(temple_name=""))

        with pytest.raises(RegistrationValidationError):
            await service.create_registration(request)
        assert gateway.create_calls == 0

    @pytest.mark.asyncio
    async def test_gateway_failure_persists_nothing(
        self, service: RegistrationService, gateway: InMemoryOrderGateway, store: InMemoryRegistrationStore
    ) -> None:
        """A failed order leaves no registration and no history behind."""
        gateway.fail_next("ITEM_NOT_AVAILABLE", "sold out")

        with pytest.raises(GatewayError) as exc_info:
            await service.create_registration(make_request())

        assert exc_info.value.code == "ITEM_NOT_AVAILABLE"
        assert store.get_by_user("user-1") == []

    @pytest.mark.asyncio
    async def test_gateway_timeout_is_network_error(
        self, store: InMemoryRegistrationStore, events: InMemoryEventCatalog, clock: FixedClock
    ) -> None:
        slow = InMemoryOrderGateway(delay_seconds=0.5)
        service = RegistrationService(
            store=store, events=events, gateway=slow, clock=clock, gateway_timeout_seconds=0.05
        )

        with pytest.raises(GatewayError) as exc_info:
            await service.create_registration(make_request())

        assert exc_info.value.code == "NETWORK_ERROR"
        assert store.get_by_user("user-1") == []

    @pytest.mark.asyncio
    async def test_storage_failure_after_order_is_inconsistency(
        self, service: RegistrationService, store: InMemoryRegistrationStore
    ) -> None:
        """Persistence failure after a successful order reports the order code."""
        store.create = Mock(side_effect=RuntimeError("disk full"))

        with pytest.raises(StorageInconsistency) as exc_info:
            await service.create_registration(make_request())

        assert exc_info.value.external_order_id == "ORD00001"
        assert exc_info.value.code == "DATABASE_STORAGE_ERROR"


class TestModifyRegistration:
    """Tests for modification rules."""

    @pytest.mark.asyncio
    async def test_modify_personal_info_merges_fields(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())

        result = await service.modify_registration(
            created.registration.id, "user-1", {"personal_info": {"phone": "0911000111"}}
        )

        assert result.registration.personal_info.phone == "0911000111"
        assert result.registration.personal_info.name == "Lin Mei"
        assert result.info.total_modifications == 1
        assert result.info.remaining_modifications == 4
        assert result.info.can_modify is True

    @pytest.mark.asyncio
    async def test_modify_records_single_history_entry(
        self, service: RegistrationService, store: InMemoryRegistrationStore
    ) -> None:
        """One history record holds every changed field of one modification."""
        created = await service.create_registration(make_request())

        await service.modify_registration(
            created.registration.id,
            "user-1",
            {
                "personal_info": {"phone": "0911000111"},
                "transport": Transport(required=True, location_id="north-gate"),
            },
            reason="moved house",
        )

        history = store.get_history(created.registration.id)
        assert [r.action for r in history] == [HistoryAction.CREATED, HistoryAction.UPDATED]
        assert {c.field for c in history[1].changes} == {"personal_info", "transport"}
        assert history[1].reason == "moved house"

    @pytest.mark.asyncio
    async def test_sixth_modification_is_rejected(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())
        registration_id = created.registration.id

        for i in range(5):
            result = await service.modify_registration(
                registration_id, "user-1", {"personal_info": {"phone": f"091100011{i}"}}
            )
        assert result.info.remaining_modifications == 0
        assert result.info.can_modify is False

        with pytest.raises(ModificationNotAllowed) as exc_info:
            await service.modify_registration(registration_id, "user-1", {"personal_info": {"phone": "0911000119"}})
        assert exc_info.value.code == "MODIFICATION_LIMIT_REACHED"

    @pytest.mark.asyncio
    async def test_modify_in_blackout_is_rejected(self, service: RegistrationService, clock: FixedClock) -> None:
        created = await service.create_registration(make_request())
        clock.advance(days=28)

        with pytest.raises(ModificationNotAllowed) as exc_info:
            await service.modify_registration(
                created.registration.id, "user-1", {"personal_info": {"phone": "0911000111"}}
            )
        assert exc_info.value.code == "MODIFICATION_WINDOW_CLOSED"

    @pytest.mark.asyncio
    async def test_protected_field_is_rejected(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())

        with pytest.raises(ImmutableField) as exc_info:
            await service.modify_registration(created.registration.id, "user-1", {"event_id": "other"})
        assert exc_info.value.field == "event_id"

    @pytest.mark.asyncio
    async def test_unknown_field_is_rejected(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())

        with pytest.raises(RegistrationValidationError):
            await service.modify_registration(created.registration.id, "user-1", {"nickname": "x"})

    @pytest.mark.asyncio
    async def test_unchanged_values_are_nothing_to_modify(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())

        with pytest.raises(NothingToModify):
            await service.modify_registration(
                created.registration.id, "user-1", {"personal_info": {"name": "Lin Mei"}}
            )

    @pytest.mark.asyncio
    async def test_merged_info_is_validated(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())

        with pytest.raises(RegistrationValidationError):
            await service.modify_registration(
                created.registration.id, "user-1", {"personal_info": {"emergency_contact": ""}}
            )

    @pytest.mark.asyncio
    async def test_other_user_is_forbidden(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())

        with pytest.raises(Forbidden):
            await service.modify_registration(
                created.registration.id, "intruder", {"personal_info": {"phone": "0911000111"}}
            )

    @pytest.mark.asyncio
    async def test_missing_registration(self, service: RegistrationService) -> None:
        with pytest.raises(RegistrationNotFound):
            await service.modify_registration("reg_missing", "user-1", {"personal_info": {"phone": "0911000111"}})

    @pytest.mark.asyncio
    async def test_cancelled_registration_cannot_be_modified(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())
        await service.cancel_registration(created.registration.id, "user-1")

        with pytest.raises(AlreadyCancelled):
            await service.modify_registration(
                created.registration.id, "user-1", {"personal_info": {"phone": "0911000111"}}
            )


class TestCancelRegistration:
    """Tests for cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_marks_cancelled_and_cancels_order(
        self, service: RegistrationService, gateway: InMemoryOrderGateway
    ) -> None:
        created = await service.create_registration(make_request())

        result = await service.cancel_registration(created.registration.id, "user-1", reason="schedule conflict")

        assert result.registration.status == RegistrationStatus.CANCELLED
        assert result.external_cancelled is True
        assert result.reason == "schedule conflict"
        assert gateway.orders["ORD00001"].status == "c"

    @pytest.mark.asyncio
    async def test_cancel_twice(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())
        await service.cancel_registration(created.registration.id, "user-1")

        with pytest.raises(AlreadyCancelled):
            await service.cancel_registration(created.registration.id, "user-1")

    @pytest.mark.asyncio
    async def test_gateway_cancel_failure_still_cancels_locally(
        self, service: RegistrationService, gateway: InMemoryOrderGateway
    ) -> None:
        """External cancellation is best-effort."""
        created = await service.create_registration(make_request())
        gateway.fail_next_cancel("SERVER_ERROR")

        result = await service.cancel_registration(created.registration.id, "user-1")

        assert result.registration.status == RegistrationStatus.CANCELLED
        assert result.external_cancelled is False
        assert gateway.cancel_calls == 1

    @pytest.mark.asyncio
    async def test_cancel_allowed_in_blackout(self, service: RegistrationService, clock: FixedClock) -> None:
        created = await service.create_registration(make_request())
        clock.advance(days=29)

        result = await service.cancel_registration(created.registration.id, "user-1")
        assert result.registration.status == RegistrationStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_forbidden_for_other_user(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())

        with pytest.raises(Forbidden):
            await service.cancel_registration(created.registration.id, "intruder")


class TestQueries:
    """Tests for reads, history and timeline."""

    @pytest.mark.asyncio
    async def test_get_registration_includes_live_order(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())

        view = await service.get_registration(created.registration.id, "user-1")

        assert view.registration.id == created.registration.id
        assert view.order is not None
        assert view.order.code == "ORD00001"

    @pytest.mark.asyncio
    async def test_get_registration_tolerates_missing_order(
        self, service: RegistrationService, gateway: InMemoryOrderGateway
    ) -> None:
        created = await service.create_registration(make_request())
        gateway.orders.clear()

        view = await service.get_registration(created.registration.id, "user-1")
        assert view.order is None

    @pytest.mark.asyncio
    async def test_list_user_registrations_newest_first(self, service: RegistrationService, clock: FixedClock) -> None:
        await service.create_registration(make_request(event_id=EVENT_ID))
        clock.advance(minutes=5)
        await service.create_registration(make_request(event_id="autumn-retreat-2026"))

        registrations = service.list_user_registrations("user-1")
        assert [r.event_id for r in registrations] == ["autumn-retreat-2026", EVENT_ID]

    @pytest.mark.asyncio
    async def test_history_view(self, service: RegistrationService, clock: FixedClock) -> None:
        """History is newest first and statistics reflect the ledger."""
        created = await service.create_registration(make_request())
        registration_id = created.registration.id
        clock.advance(hours=1)
        await service.modify_registration(
            registration_id, "user-1", {"transport": Transport(required=True, location_id="north-gate")}
        )
        clock.advance(hours=1)
        await service.cancel_registration(registration_id, "user-1")

        view = service.get_history(registration_id, "user-1")

        assert [r.action for r in view.history] == [
            HistoryAction.CANCELLED,
            HistoryAction.UPDATED,
            HistoryAction.CREATED,
        ]
        assert [t.type for t in view.timeline] == ["cancelled", "updated", "created"]
        assert view.timeline[1].description == "transport requested"
        assert view.statistics.total_changes == 3
        assert view.statistics.modification_count == 1
        assert view.statistics.is_cancelled is True
        assert view.statistics.cancelled_at == view.history[0].created_at
        assert view.modification_info.can_modify is False

    @pytest.mark.asyncio
    async def test_history_forbidden_for_other_user(self, service: RegistrationService) -> None:
        created = await service.create_registration(make_request())

        with pytest.raises(Forbidden):
            service.get_history(created.registration.id, "intruder")


class TestDescribeChange:
    """Tests for timeline change descriptions."""

    @pytest.mark.parametrize(
        ("old", "new", "expected"),
        [
            ({"required": False}, {"required": True, "location_id": "a"}, "transport requested"),
            ({"required": True, "location_id": "a"}, {"required": False}, "transport request withdrawn"),
            ({"required": True, "location_id": "a"}, {"required": True, "location_id": "b"}, "pickup location changed"),
            (None, {"required": True, "location_id": "a"}, "transport requested"),
        ],
    )
    def test_transport_descriptions(self, old: dict | None, new: dict, expected: str) -> None:
        assert describe_change(FieldChange("transport", old, new)) == expected

    def test_personal_info_description(self) -> None:
        assert describe_change(FieldChange("personal_info", {}, {})) == "personal information updated"
