"""Order gateway adapters - External ticketing system implementations."""

from .memory import InMemoryOrderGateway
from .pretix import PretixOrderGateway

__all__ = ["InMemoryOrderGateway", "PretixOrderGateway"]
