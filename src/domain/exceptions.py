"""
Domain exceptions - Semantic error types for the registration lifecycle.

Every exception carries a stable ``code`` so the API layer can map it to an
HTTP response without inspecting messages. Messages are user-facing.
"""


class RegistrationError(Exception):
    """Base class for registration domain errors."""

    code = "REGISTRATION_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class RegistrationValidationError(RegistrationError):
    """Malformed payload or missing identity-specific field."""

    code = "VALIDATION_ERROR"


class RegistrationNotFound(RegistrationError):
    code = "NOT_FOUND"

    def __init__(self, registration_id: str) -> None:
        super().__init__(f"registration not found: {registration_id}")
        self.registration_id = registration_id


class Forbidden(RegistrationError):
    """Requester does not own the registration (authorization, not eligibility)."""

    code = "FORBIDDEN"


class AlreadyRegistered(RegistrationError):
    """An active registration already exists for the (user, event) pair."""

    code = "ALREADY_REGISTERED"

    def __init__(self, user_id: str, event_id: str) -> None:
        super().__init__("an active registration already exists for this event")
        self.user_id = user_id
        self.event_id = event_id


class AlreadyCancelled(RegistrationError):
    code = "ALREADY_CANCELLED"

    def __init__(self, message: str = "registration already cancelled") -> None:
        super().__init__(message)


class ModificationNotAllowed(RegistrationError):
    """Eligibility denied: blackout window or modification cap."""

    code = "MODIFICATION_NOT_ALLOWED"


class ImmutableField(RegistrationError):
    code = "IMMUTABLE_FIELD"

    def __init__(self, field: str) -> None:
        super().__init__(f"field cannot be modified: {field}")
        self.field = field


class NothingToModify(RegistrationError):
    code = "NO_UPDATE_DATA"

    def __init__(self) -> None:
        super().__init__("nothing to modify")


class GatewayError(RegistrationError):
    """Failure reported by (or while talking to) the external order gateway."""

    code = "UNKNOWN_ERROR"

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message, code=code)


class StorageInconsistency(RegistrationError):
    """
    The external order was created but the local registration was not stored.

    Not retryable: retrying would create a second external order. Carries the
    external order id so an operator can reconcile manually.
    """

    code = "DATABASE_STORAGE_ERROR"

    def __init__(self, external_order_id: str) -> None:
        super().__init__(
            "order was created but the registration could not be stored; "
            f"contact support with order code {external_order_id}"
        )
        self.external_order_id = external_order_id


class RetryRecordNotFound(RegistrationError):
    code = "RETRY_RECORD_NOT_FOUND"

    def __init__(self, retry_id: str) -> None:
        super().__init__(f"retry record not found: {retry_id}")
        self.retry_id = retry_id
