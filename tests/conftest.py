"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A controllable clock and a manual retry scheduler
- In-memory stores, event catalog and order gateway
- Wired RegistrationService / RetryService instances
"""

from datetime import timedelta

import pytest

from src.adapters.gateway.memory import InMemoryOrderGateway
from src.adapters.repository.memory import (
    InMemoryEventCatalog,
    InMemoryRegistrationStore,
    InMemoryRetryRecordStore,
)
from src.domain.eligibility import EligibilityPolicy
from src.domain.models import Event
from src.domain.registration import RegistrationService
from src.domain.retry import BackoffPolicy, RetryService
from tests.factories import EVENT_ID, NOW, FixedClock, ManualScheduler


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def scheduler(clock: FixedClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def store(clock: FixedClock) -> InMemoryRegistrationStore:
    return InMemoryRegistrationStore(clock=clock)


@pytest.fixture
def events() -> InMemoryEventCatalog:
    return InMemoryEventCatalog(
        [Event(id=EVENT_ID, name="Spring Dharma Assembly", start_date=NOW + timedelta(days=30))]
    )


@pytest.fixture
def gateway() -> InMemoryOrderGateway:
    return InMemoryOrderGateway()


@pytest.fixture
def retry_records() -> InMemoryRetryRecordStore:
    return InMemoryRetryRecordStore()


@pytest.fixture
def service(
    store: InMemoryRegistrationStore,
    events: InMemoryEventCatalog,
    gateway: InMemoryOrderGateway,
    clock: FixedClock,
) -> RegistrationService:
    return RegistrationService(
        store=store,
        events=events,
        gateway=gateway,
        clock=clock,
        policy=EligibilityPolicy(),
        gateway_timeout_seconds=1.0,
    )


@pytest.fixture
def retry_service(
    retry_records: InMemoryRetryRecordStore,
    service: RegistrationService,
    store: InMemoryRegistrationStore,
    scheduler: ManualScheduler,
    clock: FixedClock,
) -> RetryService:
    return RetryService(
        records=retry_records,
        attempt=service.create_registration,
        registrations=store,
        scheduler=scheduler,
        clock=clock,
        backoff=BackoffPolicy(),
    )
