"""
Registration domain service - Lifecycle orchestrator.

Creates, modifies and cancels registrations, keeps the history ledger
current, and talks to the external order gateway.

Creation
========

    duplicate check -> validation -> gateway.create_order -> store.create

The whole sequence runs under a per-(user, event) lock so two requests
arriving close together cannot both pass the duplicate check. Nothing is
persisted when the gateway fails. If the gateway succeeds and persistence
fails, StorageInconsistency is raised with the external order id and no
compensation is attempted.

Mutation
========

Modify and cancel both check existence (404) and ownership (403) before
consulting the eligibility engine (400). Modify is blocked inside the
blackout window; cancel is not, unless the policy says otherwise. External
cancellation is best-effort: local state always becomes cancelled. Cancellations
of one registration run one at a time, so a double submit reports
ALREADY_CANCELLED instead of cancelling twice.
"""

import asyncio
import logging
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, TypeVar

from .eligibility import (
    Eligibility,
    EligibilityPolicy,
    MutationMode,
    can_modify,
    modification_count,
    modification_deadline,
    remaining_modifications,
)
from .exceptions import (
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
from .locks import KeyedLocks
from .models import (
    Event,
    FieldChange,
    GatewayOrder,
    HistoryAction,
    HistoryRecord,
    IdentityType,
    PersonalInfo,
    Registration,
    RegistrationRequest,
    RegistrationStatus,
    new_id,
)
from .ports import Clock, EventCatalog, OrderGateway, RegistrationStore
from .validation import validate_personal_info, validate_registration_request, validate_transport

logger = logging.getLogger(__name__)

T = TypeVar("T")

MUTABLE_FIELDS = frozenset({"personal_info", "transport"})
PROTECTED_FIELDS = frozenset(
    {"id", "user_id", "event_id", "identity_type", "status", "external_order_id", "created_at", "updated_at"}
)

DEFAULT_MODIFY_REASON = "modified by user"
DEFAULT_CANCEL_REASON = "cancelled by user"


@dataclass(frozen=True)
class CreationResult:
    registration: Registration
    order: GatewayOrder


@dataclass(frozen=True)
class ModificationInfo:
    can_modify: bool
    total_modifications: int
    remaining_modifications: int
    deadline: datetime | None
    reason: str | None = None


@dataclass(frozen=True)
class ModificationResult:
    registration: Registration
    info: ModificationInfo


@dataclass(frozen=True)
class CancellationResult:
    registration: Registration
    external_cancelled: bool
    reason: str


@dataclass(frozen=True)
class RegistrationView:
    registration: Registration
    order: GatewayOrder | None


@dataclass(frozen=True)
class TimelineEntry:
    type: str
    title: str
    description: str
    timestamp: datetime
    reason: str | None = None


@dataclass(frozen=True)
class HistoryStatistics:
    total_changes: int
    modification_count: int
    is_cancelled: bool
    created_at: datetime
    last_modified: datetime
    cancelled_at: datetime | None = None


@dataclass(frozen=True)
class HistoryView:
    registration: Registration
    history: list[HistoryRecord]
    statistics: HistoryStatistics
    timeline: list[TimelineEntry]
    modification_info: ModificationInfo


def describe_change(change: FieldChange) -> str:
    """Human-readable description of one history change."""
    if change.field == "personal_info":
        return "personal information updated"
    if change.field == "transport":
        old = change.old_value or {}
        new = change.new_value or {}
        if not old.get("required") and new.get("required"):
            return "transport requested"
        if old.get("required") and not new.get("required"):
            return "transport request withdrawn"
        if old.get("location_id") != new.get("location_id"):
            return "pickup location changed"
        return "transport details updated"
    if change.field == "status":
        if change.new_value == RegistrationStatus.CANCELLED.value:
            return "registration cancelled"
        if change.new_value == RegistrationStatus.CONFIRMED.value:
            return "registration confirmed"
        return f"status changed to {change.new_value}"
    return f"{change.field} updated"


def build_timeline(registration: Registration, history: list[HistoryRecord]) -> list[TimelineEntry]:
    """Timeline of a registration, newest first."""
    identity = "clergy" if registration.identity_type == IdentityType.CLERGY else "volunteer"
    timeline = []
    for record in reversed(history):
        if record.action == HistoryAction.CREATED:
            entry = TimelineEntry(
                type=record.action.value,
                title="registration created",
                description=f"{identity} registration created",
                timestamp=record.created_at,
                reason=record.reason,
            )
        elif record.action == HistoryAction.UPDATED:
            entry = TimelineEntry(
                type=record.action.value,
                title="registration modified",
                description=", ".join(describe_change(c) for c in record.changes),
                timestamp=record.created_at,
                reason=record.reason,
            )
        else:
            entry = TimelineEntry(
                type=record.action.value,
                title="registration cancelled",
                description=record.reason or DEFAULT_CANCEL_REASON,
                timestamp=record.created_at,
                reason=record.reason,
            )
        timeline.append(entry)
    return timeline


@dataclass
class RegistrationService:
    """
    Domain service for the registration lifecycle.

    All collaborators are injected; the clock makes the time-based
    eligibility rules deterministic under test.
    """

    store: RegistrationStore
    events: EventCatalog
    gateway: OrderGateway
    clock: Clock
    policy: EligibilityPolicy = field(default_factory=EligibilityPolicy)
    gateway_timeout_seconds: float = 10.0
    _locks: KeyedLocks = field(default_factory=KeyedLocks, init=False, repr=False)
    _cancel_locks: KeyedLocks = field(default_factory=KeyedLocks, init=False, repr=False)

    async def create_registration(self, request: RegistrationRequest) -> CreationResult:
        """
        Create a registration exactly once against the order gateway.

        Args:
            request: Creation payload

        Returns:
            CreationResult with the confirmed registration and gateway order

        Raises:
            AlreadyRegistered: An active registration exists for (user, event)
            RegistrationValidationError: Payload violates identity rules
            GatewayError: Gateway failed or timed out; nothing was persisted
            StorageInconsistency: Gateway succeeded but persistence failed
        """
        key = (request.user_id, request.event_id)
        async with self._locks.hold(key):
            existing = self.store.find_active(request.user_id, request.event_id)
            if existing is not None:
                logger.warning(
                    "Duplicate registration attempt user=%s event=%s existing=%s",
                    request.user_id,
                    request.event_id,
                    existing.id,
                )
                raise AlreadyRegistered(request.user_id, request.event_id)

            validate_registration_request(request)

            logger.info("Creating order user=%s event=%s", request.user_id, request.event_id)
            result = await self._call_gateway(self.gateway.create_order(request))
            if not result.success or result.order is None:
                logger.error(
                    "Order creation failed user=%s event=%s code=%s",
                    request.user_id,
                    request.event_id,
                    result.error_code,
                )
                raise GatewayError(result.error_code or "UNKNOWN_ERROR", result.error or "order creation failed")

            order = result.order
            now = self.clock.now()
            registration = Registration(
                id=new_id("reg"),
                user_id=request.user_id,
                event_id=request.event_id,
                identity_type=request.identity_type,
                personal_info=request.personal_info,
                transport=request.transport,
                status=RegistrationStatus.CONFIRMED,
                external_order_id=order.code,
                metadata=dict(request.metadata),
                created_at=now,
                updated_at=now,
            )
            try:
                created = self.store.create(registration)
            except Exception as e:
                logger.error(
                    "Registration storage failed after order creation user=%s event=%s order=%s - %s",
                    request.user_id,
                    request.event_id,
                    order.code,
                    e,
                )
                raise StorageInconsistency(order.code) from e

        logger.info("Registration created id=%s order=%s", created.id, order.code)
        return CreationResult(registration=created, order=order)

    async def modify_registration(
        self,
        registration_id: str,
        requester_id: str,
        changes: Mapping[str, Any],
        reason: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> ModificationResult:
        """
        Modify personal info and/or transport of a registration.

        Args:
            registration_id: Registration to modify
            requester_id: Authenticated requester; must own the registration
            changes: ``personal_info`` (mapping of PersonalInfo fields to merge)
                and/or ``transport`` (Transport or None)
            reason: Optional user-supplied reason for the history ledger
            metadata: Requester context for the history ledger

        Raises:
            RegistrationNotFound, Forbidden, ImmutableField,
            RegistrationValidationError, AlreadyCancelled,
            ModificationNotAllowed, NothingToModify
        """
        registration = self._get_owned(registration_id, requester_id)

        for name in changes:
            if name in PROTECTED_FIELDS:
                raise ImmutableField(name)
            if name not in MUTABLE_FIELDS:
                raise RegistrationValidationError(f"unknown field: {name}")

        event = self.events.get(registration.event_id)
        history = self.store.get_history(registration_id)
        eligibility = can_modify(registration, event, history, self.clock.now(), self.policy)
        self._raise_if_denied(eligibility)

        updates: dict[str, Any] = {}
        if "personal_info" in changes:
            merged = self._merge_personal_info(registration.personal_info, changes["personal_info"] or {})
            validate_personal_info(registration.identity_type, merged)
            if merged != registration.personal_info:
                updates["personal_info"] = merged
        if "transport" in changes:
            transport = changes["transport"]
            validate_transport(transport)
            if transport != registration.transport:
                updates["transport"] = transport

        if not updates:
            raise NothingToModify()

        updated = self.store.update(
            registration_id,
            updates,
            reason=reason or DEFAULT_MODIFY_REASON,
            metadata=metadata,
        )
        if updated is None:
            raise RegistrationNotFound(registration_id)

        history = self.store.get_history(registration_id)
        logger.info(
            "Registration modified id=%s fields=%s total_modifications=%s",
            registration_id,
            sorted(updates),
            modification_count(history),
        )
        return ModificationResult(registration=updated, info=self._modification_info(updated, event, history))

    async def cancel_registration(
        self,
        registration_id: str,
        requester_id: str,
        reason: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CancellationResult:
        """
        Cancel a registration.

        The external order is cancelled best-effort; a gateway failure is
        logged and local cancellation proceeds regardless.

        Raises:
            RegistrationNotFound, Forbidden, AlreadyCancelled, ModificationNotAllowed
        """
        async with self._cancel_locks.hold(registration_id):
            registration = self._get_owned(registration_id, requester_id)

            event = self.events.get(registration.event_id)
            history = self.store.get_history(registration_id)
            eligibility = can_modify(
                registration, event, history, self.clock.now(), self.policy, mode=MutationMode.CANCEL
            )
            self._raise_if_denied(eligibility)
            if eligibility.in_blackout:
                logger.warning("Cancelling inside the modification blackout window id=%s", registration_id)

            external_cancelled = False
            if registration.external_order_id:
                try:
                    await self._call_gateway(
                        self.gateway.cancel_order(registration.event_id, registration.external_order_id)
                    )
                    external_cancelled = True
                except Exception as e:
                    logger.warning(
                        "External order cancel failed, cancelling locally id=%s order=%s - %s",
                        registration_id,
                        registration.external_order_id,
                        e,
                    )

            reason_text = reason or DEFAULT_CANCEL_REASON
            updated = self.store.update(
                registration_id,
                {"status": RegistrationStatus.CANCELLED},
                reason=reason_text,
                metadata=metadata,
            )
            if updated is None:
                raise RegistrationNotFound(registration_id)

            logger.info("Registration cancelled id=%s external_cancelled=%s", registration_id, external_cancelled)
            return CancellationResult(registration=updated, external_cancelled=external_cancelled, reason=reason_text)

    async def get_registration(self, registration_id: str, requester_id: str) -> RegistrationView:
        """Ownership-checked read with a best-effort live order lookup."""
        registration = self._get_owned(registration_id, requester_id)

        order = None
        if registration.external_order_id:
            try:
                order = await self._call_gateway(
                    self.gateway.get_order_status(registration.event_id, registration.external_order_id)
                )
            except GatewayError as e:
                logger.warning(
                    "Order status lookup failed id=%s order=%s - %s",
                    registration_id,
                    registration.external_order_id,
                    e,
                )
        return RegistrationView(registration=registration, order=order)

    def list_user_registrations(self, user_id: str) -> list[Registration]:
        """Registrations of a user, newest first."""
        return list(reversed(self.store.get_by_user(user_id)))

    def get_history(self, registration_id: str, requester_id: str) -> HistoryView:
        """History, statistics, timeline and current modification rights."""
        registration = self._get_owned(registration_id, requester_id)
        history = self.store.get_history(registration_id)
        event = self.events.get(registration.event_id)

        cancelled_at = next(
            (r.created_at for r in history if r.action == HistoryAction.CANCELLED),
            None,
        )
        statistics = HistoryStatistics(
            total_changes=len(history),
            modification_count=modification_count(history),
            is_cancelled=registration.status == RegistrationStatus.CANCELLED,
            created_at=registration.created_at,
            last_modified=registration.updated_at,
            cancelled_at=cancelled_at,
        )
        return HistoryView(
            registration=registration,
            history=list(reversed(history)),
            statistics=statistics,
            timeline=build_timeline(registration, history),
            modification_info=self._modification_info(registration, event, history),
        )

    def _get_owned(self, registration_id: str, requester_id: str) -> Registration:
        registration = self.store.get_by_id(registration_id)
        if registration is None:
            raise RegistrationNotFound(registration_id)
        if registration.user_id != requester_id:
            logger.warning("Forbidden access id=%s requester=%s", registration_id, requester_id)
            raise Forbidden("you do not have permission to access this registration")
        return registration

    def _modification_info(
        self,
        registration: Registration,
        event: Event | None,
        history: list[HistoryRecord],
    ) -> ModificationInfo:
        eligibility = can_modify(registration, event, history, self.clock.now(), self.policy)
        return ModificationInfo(
            can_modify=eligibility.allowed,
            reason=eligibility.reason,
            total_modifications=modification_count(history),
            remaining_modifications=remaining_modifications(history, self.policy),
            deadline=modification_deadline(event, self.policy),
        )

    async def _call_gateway(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.gateway_timeout_seconds)
        except asyncio.TimeoutError:
            raise GatewayError("NETWORK_ERROR", "order gateway timed out") from None

    @staticmethod
    def _raise_if_denied(eligibility: Eligibility) -> None:
        if eligibility.allowed:
            return
        if eligibility.code == "ALREADY_CANCELLED":
            raise AlreadyCancelled()
        raise ModificationNotAllowed(eligibility.reason or "modification not allowed", code=eligibility.code)

    @staticmethod
    def _merge_personal_info(current: PersonalInfo, partial: Mapping[str, Any]) -> PersonalInfo:
        try:
            return replace(current, **dict(partial))
        except TypeError:
            raise RegistrationValidationError("unknown personal information field") from None

