"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting domain services into
routes. Services are built once during app lifespan and stored in app.state.
Dependency order per request is: requester identity, validated body, handler.
"""

from fastapi import Header, HTTPException, Request, status

from src.config.settings import Settings
from src.domain.registration import RegistrationService
from src.domain.retry import RetryService


def get_registration_service(request: Request) -> RegistrationService:
    """Get the registration service built during app startup."""
    return request.app.state.registration_service


def get_retry_service(request: Request) -> RetryService:
    """Get the retry service built during app startup."""
    return request.app.state.retry_service


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_requester_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    """
    Extract the authenticated requester from the ``X-User-Id`` header.

    Authentication itself happens upstream; this service trusts the header.

    Raises:
        HTTPException: 401 when the header is missing or blank
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing X-User-Id header",
        )
    return x_user_id.strip()
