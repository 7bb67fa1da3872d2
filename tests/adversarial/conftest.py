"""
Shared fixtures for adversarial tests.

Provides a slow in-memory gateway so concurrent requests genuinely overlap
while an order call is in flight.
"""

import pytest

from src.adapters.gateway.memory import InMemoryOrderGateway

# Module-level marker for all adversarial tests
pytestmark = pytest.mark.adversarial


@pytest.fixture
def gateway() -> InMemoryOrderGateway:
    """Gateway that holds every order call for 20ms."""
    return InMemoryOrderGateway(delay_seconds=0.02)
