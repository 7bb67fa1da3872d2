"""
Test doubles and payload factories shared across test packages.
"""

from datetime import datetime, timedelta, timezone

from src.domain.models import (
    IdentityType,
    PersonalInfo,
    RegistrationRequest,
    Transport,
)
from src.domain.ports import RetryJob

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
EVENT_ID = "spring-dharma-2026"


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class ManualScheduler:
    """RetryScheduler that records jobs; tests run them explicitly."""

    def __init__(self, clock: FixedClock | None = None) -> None:
        self.clock = clock
        self.jobs: list[tuple[float, RetryJob]] = []
        self.delays: list[float] = []

    def schedule(self, delay_seconds: float, job: RetryJob) -> None:
        self.jobs.append((delay_seconds, job))
        self.delays.append(delay_seconds)

    async def run_next(self) -> None:
        delay_seconds, job = self.jobs.pop(0)
        if self.clock is not None:
            self.clock.advance(seconds=delay_seconds)
        await job()

    async def run_all(self) -> None:
        while self.jobs:
            await self.run_next()


def clergy_info(**overrides: str) -> PersonalInfo:
    values = {"name": "Shi Jing", "phone": "0912345678", "temple_name": "Lingshan Temple"}
    values.update(overrides)
    return PersonalInfo(**values)


def volunteer_info(**overrides: str) -> PersonalInfo:
    values = {
        "name": "Lin Mei",
        "phone": "0987654321",
        "email": "mei@example.com",
        "emergency_contact": "Lin Hao 0911222333",
    }
    values.update(overrides)
    return PersonalInfo(**values)


def make_request(
    user_id: str = "user-1",
    event_id: str = EVENT_ID,
    identity_type: IdentityType = IdentityType.VOLUNTEER,
    personal_info: PersonalInfo | None = None,
    transport: Transport | None = None,
) -> RegistrationRequest:
    if personal_info is None:
        personal_info = clergy_info() if identity_type == IdentityType.CLERGY else volunteer_info()
    return RegistrationRequest(
        user_id=user_id,
        event_id=event_id,
        identity_type=identity_type,
        personal_info=personal_info,
        transport=transport,
    )


def creation_payload(event_id: str = EVENT_ID, **overrides: object) -> dict:
    """JSON body for POST /v1/registrations."""
    payload = {
        "eventId": event_id,
        "identityType": "volunteer",
        "personalInfo": {
            "name": "Lin Mei",
            "phone": "0987654321",
            "email": "mei@example.com",
            "emergencyContact": "Lin Hao 0911222333",
        },
        "transport": {"required": True, "locationId": "changhua-station"},
    }
    payload.update(overrides)
    return payload
