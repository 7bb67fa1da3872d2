"""
Payload validation - Identity-specific required fields and transport rules.

Shape validation (types, lengths of free text) happens at the API boundary;
these checks encode the business rules that hold no matter where a request
comes from, including retry records replayed later.
"""

import re

from .exceptions import RegistrationValidationError
from .models import IdentityType, PersonalInfo, RegistrationRequest, Transport

_PHONE_PATTERN = re.compile(r"^(09\d{8}|\d{2,3}-\d{6,8}|\+886-?9\d{8}|\+886-?\d{1,2}-?\d{6,8})$")
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_EVENT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9\-_]+$")


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def validate_personal_info(identity_type: IdentityType, info: PersonalInfo) -> None:
    if _is_blank(info.name):
        raise RegistrationValidationError("name is required")
    if len(info.name.strip()) > 50:
        raise RegistrationValidationError("name must be at most 50 characters")

    if _is_blank(info.phone):
        raise RegistrationValidationError("phone is required")
    cleaned = re.sub(r"[\s\-]", "", info.phone)
    if not (_PHONE_PATTERN.match(info.phone) or re.match(r"^09\d{8}$", cleaned)):
        raise RegistrationValidationError("phone number format is invalid")

    if identity_type == IdentityType.CLERGY:
        if _is_blank(info.temple_name):
            raise RegistrationValidationError("clergy registrations require templeName")
        if len(info.temple_name.strip()) > 100:
            raise RegistrationValidationError("templeName must be at most 100 characters")
    elif identity_type == IdentityType.VOLUNTEER:
        if _is_blank(info.emergency_contact):
            raise RegistrationValidationError("volunteer registrations require emergencyContact")
        if len(info.emergency_contact.strip()) > 50:
            raise RegistrationValidationError("emergencyContact must be at most 50 characters")

    if info.email and not _EMAIL_PATTERN.match(info.email):
        raise RegistrationValidationError("email format is invalid")

    if info.special_requirements and len(info.special_requirements) > 500:
        raise RegistrationValidationError("specialRequirements must be at most 500 characters")


def validate_transport(transport: Transport | None) -> None:
    if transport is None or not transport.required:
        return
    if _is_blank(transport.location_id):
        raise RegistrationValidationError("a pickup location is required when transport is requested")
    if len(transport.location_id) > 50:
        raise RegistrationValidationError("pickup location id is invalid")


def validate_registration_request(request: RegistrationRequest) -> None:
    """
    Validate a creation payload.

    Raises:
        RegistrationValidationError: On the first violated rule
    """
    if _is_blank(request.event_id) or len(request.event_id) > 100:
        raise RegistrationValidationError("eventId is required")
    if not _EVENT_ID_PATTERN.match(request.event_id):
        raise RegistrationValidationError("eventId format is invalid")
    if _is_blank(request.user_id):
        raise RegistrationValidationError("userId is required")

    validate_personal_info(request.identity_type, request.personal_info)
    validate_transport(request.transport)
