"""
Error classifier - Maps gateway/provider error codes to response decisions.

Pure lookup. Unknown codes fall back to a retryable 500 with a long backoff:
unknown failures are assumed transient but are not retried aggressively.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ErrorClassification:
    http_status: int
    retryable: bool
    retry_after_seconds: int | None = None
    suggestions: tuple[str, ...] = ()
    troubleshooting: tuple[str, ...] = ()


_UNAVAILABLE = ErrorClassification(
    http_status=409,
    retryable=False,
    suggestions=("Please select another option", "Or wait for a new event to open for registration"),
    troubleshooting=("Check whether registration has opened", "Check the registration deadline"),
)

_NETWORK = ErrorClassification(
    http_status=503,
    retryable=True,
    retry_after_seconds=30,
    suggestions=("Please check your network connection", "Try again later or use automatic retry"),
    troubleshooting=("Make sure the connection is stable", "Reload the page", "Switch networks"),
)

_VALIDATION = ErrorClassification(
    http_status=400,
    retryable=False,
    suggestions=("Please check the submitted data", "Make sure all required fields are filled in"),
    troubleshooting=("Check name and phone format", "Check identity-specific fields", "Check transport options"),
)

_TABLE: dict[str, ErrorClassification] = {
    "EVENT_NOT_AVAILABLE": _UNAVAILABLE,
    "ITEM_NOT_AVAILABLE": _UNAVAILABLE,
    "ITEM_NOT_FOUND": ErrorClassification(
        http_status=400,
        retryable=False,
        suggestions=("Please check the selected identity type", "Or contact support to confirm the event setup"),
        troubleshooting=("Confirm the identity type (clergy/volunteer)", "Check the event supports that identity"),
    ),
    "VALIDATION_ERROR": _VALIDATION,
    "BAD_REQUEST": _VALIDATION,
    "ALREADY_REGISTERED": ErrorClassification(
        http_status=409,
        retryable=False,
        suggestions=("You are already registered for this event", "Use the registration query to view it"),
    ),
    "NETWORK_ERROR": _NETWORK,
    "TIMEOUT_ERROR": _NETWORK,
    "SERVER_ERROR": ErrorClassification(
        http_status=502,
        retryable=True,
        retry_after_seconds=60,
        suggestions=("The system is busy, please try again later", "Or use automatic retry"),
        troubleshooting=("Wait for the service to recover", "Avoid peak hours"),
    ),
    "RATE_LIMITED": ErrorClassification(
        http_status=503,
        retryable=True,
        retry_after_seconds=60,
        suggestions=("Too many requests, please try again later",),
    ),
    "DATABASE_STORAGE_ERROR": ErrorClassification(
        http_status=500,
        retryable=False,
        suggestions=("Your order was created; please contact support with the order code",),
        troubleshooting=("Do not submit the registration again",),
    ),
}

UNKNOWN = ErrorClassification(
    http_status=500,
    retryable=True,
    retry_after_seconds=120,
    suggestions=("Please try again later", "Or contact support"),
    troubleshooting=("Reload the page", "Clear the browser cache", "Try another browser"),
)


def classify(error_code: str | None) -> ErrorClassification:
    """Classify a gateway error code; unknown or missing codes get ``UNKNOWN``."""
    if error_code is None:
        return UNKNOWN
    return _TABLE.get(error_code, UNKNOWN)


def is_retryable(error_code: str | None) -> bool:
    return classify(error_code).retryable
