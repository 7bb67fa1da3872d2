"""
API v1 routes.

Defines REST endpoints for the registration lifecycle and retry engine.
Retry routes are declared before ``/registrations/{registration_id}`` so
``retry`` is never captured as a registration id.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic.alias_generators import to_snake

from src.api.dependencies import get_app_settings, get_registration_service, get_requester_id, get_retry_service
from src.api.errors import error_response
from src.api.models import (
    CancellationInfoOut,
    CancelRegistrationRequest,
    CreateRegistrationRequest,
    ErrorResponse,
    HistoryEntryOut,
    HistoryStatisticsOut,
    ModificationInfoOut,
    ModifyRegistrationRequest,
    OrderOut,
    RegistrationCancelled,
    RegistrationCancelledResponse,
    RegistrationCreated,
    RegistrationCreatedResponse,
    RegistrationDetail,
    RegistrationDetailResponse,
    RegistrationHistory,
    RegistrationHistoryResponse,
    RegistrationListResponse,
    RegistrationModified,
    RegistrationModifiedResponse,
    RegistrationOut,
    RetryAccepted,
    RetryAcceptedResponse,
    RetryRecordListResponse,
    RetryRecordOut,
    RetryRecordResponse,
    TimelineEntryOut,
)
from src.config.settings import Settings
from src.domain.exceptions import RegistrationError
from src.domain.models import Registration, RegistrationRequest, RetryStatus
from src.domain.registration import RegistrationService
from src.domain.retry import RetryService

router = APIRouter(tags=["v1"])

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Validation or eligibility failure"},
    401: {"model": ErrorResponse, "description": "Missing X-User-Id header"},
    403: {"model": ErrorResponse, "description": "Requester does not own the resource"},
    404: {"model": ErrorResponse, "description": "Resource not found"},
}


def _request_context(request: Request) -> dict[str, Any]:
    """Requester context stored with registrations and history records."""
    return {
        "userAgent": request.headers.get("user-agent"),
        "ip": request.client.host if request.client else None,
    }


def _to_domain_request(requester_id: str, body: CreateRegistrationRequest, request: Request) -> RegistrationRequest:
    return RegistrationRequest(
        user_id=requester_id,
        event_id=body.event_id,
        identity_type=body.identity_type,
        personal_info=body.personal_info.to_domain(),
        transport=body.transport.to_domain() if body.transport else None,
        metadata=_request_context(request),
    )


def _next_steps(settings: Settings) -> list[str]:
    return [
        "Keep the order code for future reference",
        "A reminder will be sent before the event",
        f"Changes must be made at least {settings.modification_blackout_days} days before the event",
        "Check the registration status at any time from the registration query",
    ]


def _created(registration: Registration, order_code: str, settings: Settings) -> RegistrationCreated:
    return RegistrationCreated.from_domain(
        registration,
        confirmation_message=f"Your registration has been submitted. Order code: {order_code}",
        next_steps=_next_steps(settings),
    )


@router.post(
    "/registrations",
    response_model=RegistrationCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        **_ERRORS,
        409: {"model": ErrorResponse, "description": "Already registered or item unavailable"},
        500: {"model": ErrorResponse, "description": "Order created but registration not stored"},
        502: {"model": ErrorResponse, "description": "Ticketing service error (retryable)"},
        503: {"model": ErrorResponse, "description": "Ticketing service unreachable (retryable)"},
    },
    summary="Create a registration",
    description="Create a registration exactly once against the ticketing service. "
    "Retryable failures include a Retry-After header and the retry endpoint.",
)
async def create_registration(
    body: CreateRegistrationRequest,
    request: Request,
    requester_id: str = Depends(get_requester_id),
    service: RegistrationService = Depends(get_registration_service),
    settings: Settings = Depends(get_app_settings),
) -> RegistrationCreatedResponse:
    result = await service.create_registration(_to_domain_request(requester_id, body, request))
    return RegistrationCreatedResponse(
        message="registration created",
        data=_created(result.registration, result.order.code, settings),
    )


@router.get(
    "/registrations",
    response_model=RegistrationListResponse,
    responses={401: _ERRORS[401]},
    summary="List the requester's registrations",
)
async def list_registrations(
    requester_id: str = Depends(get_requester_id),
    service: RegistrationService = Depends(get_registration_service),
) -> RegistrationListResponse:
    registrations = service.list_user_registrations(requester_id)
    return RegistrationListResponse(data=[RegistrationOut.from_domain(r) for r in registrations])


@router.post(
    "/registrations/retry",
    response_model=RetryAcceptedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        **_ERRORS,
        202: {"model": RetryAcceptedResponse, "description": "First attempt failed; retries scheduled"},
        409: {"model": ErrorResponse, "description": "Already registered or item unavailable"},
    },
    summary="Create a registration with automatic retry",
    description="Runs the first attempt immediately. On a retryable failure, further attempts "
    "are scheduled with exponential backoff and 202 is returned with the retry id.",
)
async def create_registration_with_retry(
    body: CreateRegistrationRequest,
    request: Request,
    response: Response,
    requester_id: str = Depends(get_requester_id),
    retry_service: RetryService = Depends(get_retry_service),
    settings: Settings = Depends(get_app_settings),
) -> RetryAcceptedResponse | JSONResponse:
    outcome = await retry_service.create_retryable(
        requester_id, _to_domain_request(requester_id, body, request)
    )
    record = outcome.record

    if outcome.done and outcome.result is not None:
        return RetryAcceptedResponse(
            message="registration created",
            data=RetryAccepted(
                retry_id=record.id,
                status=record.status.value,
                registration=_created(outcome.result.registration, outcome.result.order.code, settings),
            ),
        )

    if record.status == RetryStatus.RETRYING:
        response.status_code = status.HTTP_202_ACCEPTED
        return RetryAcceptedResponse(
            message="registration failed, automatic retry scheduled",
            data=RetryAccepted(
                retry_id=record.id,
                status=record.status.value,
                next_attempt_in_ms=retry_service.backoff.delay_ms(len(record.attempts)),
                last_error=record.attempts[-1].error_code if record.attempts else None,
            ),
        )

    error = outcome.error or RegistrationError("registration failed")
    return error_response(error, retryId=record.id)


@router.get(
    "/registrations/retry",
    response_model=RetryRecordListResponse,
    responses={401: _ERRORS[401]},
    summary="List the requester's retry records",
)
async def list_retry_records(
    requester_id: str = Depends(get_requester_id),
    retry_service: RetryService = Depends(get_retry_service),
) -> RetryRecordListResponse:
    max_attempts = retry_service.backoff.max_attempts
    records = reversed(retry_service.get_user_retry_records(requester_id))
    return RetryRecordListResponse(data=[RetryRecordOut.from_domain(r, max_attempts) for r in records])


@router.get(
    "/registrations/retry/{retry_id}",
    response_model=RetryRecordResponse,
    responses=_ERRORS,
    summary="Get a retry record",
)
async def get_retry_record(
    retry_id: str,
    requester_id: str = Depends(get_requester_id),
    retry_service: RetryService = Depends(get_retry_service),
) -> RetryRecordResponse:
    record = retry_service.get_owned_retry_record(retry_id, requester_id)
    return RetryRecordResponse(data=RetryRecordOut.from_domain(record, retry_service.backoff.max_attempts))


@router.delete(
    "/registrations/retry/{retry_id}",
    response_model=RetryRecordResponse,
    responses=_ERRORS,
    summary="Abandon a retry record",
    description="Stops further attempts. Terminal records are returned unchanged.",
)
async def abandon_retry_record(
    retry_id: str,
    requester_id: str = Depends(get_requester_id),
    retry_service: RetryService = Depends(get_retry_service),
) -> RetryRecordResponse:
    retry_service.get_owned_retry_record(retry_id, requester_id)
    record = retry_service.abandon_retry(retry_id)
    return RetryRecordResponse(
        message="retry abandoned",
        data=RetryRecordOut.from_domain(record, retry_service.backoff.max_attempts),
    )


@router.get(
    "/registrations/{registration_id}",
    response_model=RegistrationDetailResponse,
    responses=_ERRORS,
    summary="Get a registration",
)
async def get_registration(
    registration_id: str,
    requester_id: str = Depends(get_requester_id),
    service: RegistrationService = Depends(get_registration_service),
) -> RegistrationDetailResponse:
    view = await service.get_registration(registration_id, requester_id)
    return RegistrationDetailResponse(
        data=RegistrationDetail.from_domain(
            view.registration,
            order=OrderOut.from_domain(view.order) if view.order else None,
        )
    )


@router.put(
    "/registrations/{registration_id}",
    response_model=RegistrationModifiedResponse,
    responses=_ERRORS,
    summary="Modify a registration",
    description="Modify personal information and/or transport. Rejected inside the blackout "
    "window before the event and after the maximum number of modifications.",
)
async def modify_registration(
    registration_id: str,
    body: ModifyRegistrationRequest,
    request: Request,
    requester_id: str = Depends(get_requester_id),
    service: RegistrationService = Depends(get_registration_service),
) -> RegistrationModifiedResponse:
    changes: dict[str, Any] = {}
    if body.personal_info is not None:
        changes["personal_info"] = body.personal_info.model_dump(exclude_unset=True)
    if "transport" in body.model_fields_set:
        changes["transport"] = body.transport.to_domain() if body.transport else None
    for key, value in (body.model_extra or {}).items():
        changes[to_snake(key)] = value

    result = await service.modify_registration(
        registration_id,
        requester_id,
        changes,
        reason=body.reason,
        metadata=_request_context(request),
    )
    return RegistrationModifiedResponse(
        message="registration modified",
        data=RegistrationModified.from_domain(
            result.registration,
            modification_info=ModificationInfoOut.from_domain(result.info),
        ),
    )


@router.delete(
    "/registrations/{registration_id}",
    response_model=RegistrationCancelledResponse,
    responses=_ERRORS,
    summary="Cancel a registration",
    description="Cancels locally; the ticketing order is cancelled best-effort.",
)
async def cancel_registration(
    registration_id: str,
    request: Request,
    body: CancelRegistrationRequest | None = None,
    requester_id: str = Depends(get_requester_id),
    service: RegistrationService = Depends(get_registration_service),
) -> RegistrationCancelledResponse:
    result = await service.cancel_registration(
        registration_id,
        requester_id,
        reason=body.reason if body else None,
        metadata=_request_context(request),
    )
    return RegistrationCancelledResponse(
        message="registration cancelled",
        data=RegistrationCancelled.from_domain(
            result.registration,
            cancellation_info=CancellationInfoOut(
                reason=result.reason,
                cancelled_at=result.registration.updated_at,
                external_cancelled=result.external_cancelled,
            ),
        ),
    )


@router.get(
    "/registrations/{registration_id}/history",
    response_model=RegistrationHistoryResponse,
    responses=_ERRORS,
    summary="Get the history of a registration",
    description="History newest first, statistics, a timeline and current modification rights.",
)
async def get_registration_history(
    registration_id: str,
    requester_id: str = Depends(get_requester_id),
    service: RegistrationService = Depends(get_registration_service),
) -> RegistrationHistoryResponse:
    view = service.get_history(registration_id, requester_id)
    return RegistrationHistoryResponse(
        data=RegistrationHistory(
            registration_id=view.registration.id,
            current_status=view.registration.status.value,
            history=[HistoryEntryOut.from_domain(r) for r in view.history],
            statistics=HistoryStatisticsOut.from_domain(view.statistics),
            timeline=[TimelineEntryOut.from_domain(e) for e in view.timeline],
            modification_info=ModificationInfoOut.from_domain(view.modification_info),
        )
    )
