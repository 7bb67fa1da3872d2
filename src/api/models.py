"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
JSON field names are camelCase; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from src.domain.models import (
    GatewayOrder,
    HistoryRecord,
    IdentityType,
    PersonalInfo,
    Registration,
    RetryRecord,
    Transport,
)
from src.domain.registration import HistoryStatistics, ModificationInfo, TimelineEntry


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PersonalInfoIn(ApiModel):
    """Identity-specific personal information."""

    name: str = Field(..., min_length=1, max_length=50)
    phone: str = Field(..., min_length=1, max_length=30)
    email: EmailStr | None = None
    temple_name: str | None = Field(default=None, max_length=100, description="Required for clergy")
    emergency_contact: str | None = Field(default=None, max_length=50, description="Required for volunteers")
    special_requirements: str | None = Field(default=None, max_length=500)

    def to_domain(self) -> PersonalInfo:
        return PersonalInfo(**self.model_dump())


class PersonalInfoPatch(ApiModel):
    """Partial personal information; only fields sent are merged."""

    name: str | None = Field(default=None, min_length=1, max_length=50)
    phone: str | None = Field(default=None, min_length=1, max_length=30)
    email: EmailStr | None = None
    temple_name: str | None = Field(default=None, max_length=100)
    emergency_contact: str | None = Field(default=None, max_length=50)
    special_requirements: str | None = Field(default=None, max_length=500)


class TransportIn(ApiModel):
    required: bool
    location_id: str | None = Field(default=None, max_length=50)
    pickup_time: datetime | None = None

    def to_domain(self) -> Transport:
        return Transport(required=self.required, location_id=self.location_id, pickup_time=self.pickup_time)


class CreateRegistrationRequest(ApiModel):
    """Request model for registration creation (direct or retryable)."""

    event_id: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9\-_]+$")
    identity_type: IdentityType
    personal_info: PersonalInfoIn
    transport: TransportIn | None = None


class ModifyRegistrationRequest(ApiModel):
    """
    Request model for registration modification.

    Unknown keys are kept (not rejected) so an attempt to change a protected
    field such as ``eventId`` or ``status`` is reported as IMMUTABLE_FIELD.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    personal_info: PersonalInfoPatch | None = None
    transport: TransportIn | None = None
    reason: str | None = Field(default=None, max_length=200)


class CancelRegistrationRequest(ApiModel):
    reason: str | None = Field(default=None, max_length=200)


class PersonalInfoOut(ApiModel):
    name: str
    phone: str
    email: str | None = None
    temple_name: str | None = None
    emergency_contact: str | None = None
    special_requirements: str | None = None


class TransportOut(ApiModel):
    required: bool
    location_id: str | None = None
    pickup_time: datetime | None = None


class RegistrationOut(ApiModel):
    id: str
    user_id: str
    event_id: str
    identity_type: IdentityType
    personal_info: PersonalInfoOut
    transport: TransportOut | None = None
    status: str
    external_order_id: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, registration: Registration, **extra: Any) -> "RegistrationOut":
        transport = registration.transport
        return cls(
            id=registration.id,
            user_id=registration.user_id,
            event_id=registration.event_id,
            identity_type=registration.identity_type,
            personal_info=PersonalInfoOut(**vars(registration.personal_info)),
            transport=TransportOut(**vars(transport)) if transport else None,
            status=registration.status.value,
            external_order_id=registration.external_order_id,
            created_at=registration.created_at,
            updated_at=registration.updated_at,
            **extra,
        )


class OrderOut(ApiModel):
    code: str
    status: str
    email: str | None = None
    datetime: str | None = None
    total: str | None = None

    @classmethod
    def from_domain(cls, order: GatewayOrder) -> "OrderOut":
        return cls(**vars(order))


class ModificationInfoOut(ApiModel):
    can_modify: bool
    total_modifications: int
    remaining_modifications: int
    can_modify_until: datetime | None = None
    reason: str | None = None

    @classmethod
    def from_domain(cls, info: ModificationInfo) -> "ModificationInfoOut":
        return cls(
            can_modify=info.can_modify,
            total_modifications=info.total_modifications,
            remaining_modifications=info.remaining_modifications,
            can_modify_until=info.deadline,
            reason=info.reason,
        )


class CancellationInfoOut(ApiModel):
    reason: str
    cancelled_at: datetime
    external_cancelled: bool


class RegistrationCreated(RegistrationOut):
    confirmation_message: str
    next_steps: list[str]


class RegistrationDetail(RegistrationOut):
    order: OrderOut | None = None


class RegistrationModified(RegistrationOut):
    modification_info: ModificationInfoOut


class RegistrationCancelled(RegistrationOut):
    cancellation_info: CancellationInfoOut


class FieldChangeOut(ApiModel):
    field: str
    old_value: Any = None
    new_value: Any = None


class HistoryEntryOut(ApiModel):
    id: str
    action: str
    changes: list[FieldChangeOut]
    reason: str | None = None
    metadata: dict[str, Any] = {}
    created_at: datetime

    @classmethod
    def from_domain(cls, record: HistoryRecord) -> "HistoryEntryOut":
        return cls(
            id=record.id,
            action=record.action.value,
            changes=[FieldChangeOut(**vars(c)) for c in record.changes],
            reason=record.reason,
            metadata=record.metadata,
            created_at=record.created_at,
        )


class HistoryStatisticsOut(ApiModel):
    total_changes: int
    modification_count: int
    is_cancelled: bool
    created_at: datetime
    last_modified: datetime
    cancelled_at: datetime | None = None

    @classmethod
    def from_domain(cls, statistics: HistoryStatistics) -> "HistoryStatisticsOut":
        return cls(**vars(statistics))


class TimelineEntryOut(ApiModel):
    type: str
    title: str
    description: str
    timestamp: datetime
    reason: str | None = None

    @classmethod
    def from_domain(cls, entry: TimelineEntry) -> "TimelineEntryOut":
        return cls(**vars(entry))


class RegistrationHistory(ApiModel):
    registration_id: str
    current_status: str
    history: list[HistoryEntryOut]
    statistics: HistoryStatisticsOut
    timeline: list[TimelineEntryOut]
    modification_info: ModificationInfoOut


class RetryAttemptOut(ApiModel):
    attempt_number: int
    timestamp: datetime
    outcome: str
    error_code: str | None = None
    error_message: str | None = None


class RetryRecordOut(ApiModel):
    retry_id: str
    user_id: str
    event_id: str
    status: str
    attempts: list[RetryAttemptOut]
    max_attempts: int
    final_order_id: str | None = None
    registration_id: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, record: RetryRecord, max_attempts: int) -> "RetryRecordOut":
        return cls(
            retry_id=record.id,
            user_id=record.user_id,
            event_id=record.registration_data.event_id,
            status=record.status.value,
            attempts=[
                RetryAttemptOut(
                    attempt_number=a.attempt_number,
                    timestamp=a.timestamp,
                    outcome=a.outcome.value,
                    error_code=a.error_code,
                    error_message=a.error_message,
                )
                for a in record.attempts
            ],
            max_attempts=max_attempts,
            final_order_id=record.final_order_id,
            registration_id=record.registration_id,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class RetryAccepted(ApiModel):
    retry_id: str
    status: str
    next_attempt_in_ms: int | None = None
    last_error: str | None = None
    registration: RegistrationCreated | None = None


class SuccessResponse(ApiModel):
    success: Literal[True] = True
    message: str | None = None


class RegistrationCreatedResponse(SuccessResponse):
    data: RegistrationCreated


class RegistrationDetailResponse(SuccessResponse):
    data: RegistrationDetail


class RegistrationListResponse(SuccessResponse):
    data: list[RegistrationOut]


class RegistrationModifiedResponse(SuccessResponse):
    data: RegistrationModified


class RegistrationCancelledResponse(SuccessResponse):
    data: RegistrationCancelled


class RegistrationHistoryResponse(SuccessResponse):
    data: RegistrationHistory


class RetryAcceptedResponse(SuccessResponse):
    data: RetryAccepted


class RetryRecordResponse(SuccessResponse):
    data: RetryRecordOut


class RetryRecordListResponse(SuccessResponse):
    data: list[RetryRecordOut]


class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorResponse(ApiModel):
    """Standard error response model."""

    success: Literal[False] = False
    error: ErrorBody
    retryable: bool | None = None
    retry_after: int | None = None
    retry_endpoint: str | None = None
    suggestions: list[str] | None = None
    troubleshooting: list[str] | None = None
    external_order_id: str | None = None
    retry_id: str | None = None
