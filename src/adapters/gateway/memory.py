"""
In-memory order gateway - Deterministic stand-in for the external ticketing system.

Backs the ``memory`` gateway backend for local development and the test
suite. Failures can be queued with ``fail_next`` to exercise the retry path.
"""

import asyncio
import logging
from datetime import datetime, timezone

from src.domain.exceptions import GatewayError
from src.domain.models import GatewayOrder, GatewayResult, RegistrationRequest

logger = logging.getLogger(__name__)


class InMemoryOrderGateway:
    """Implements OrderGateway; order codes are sequential (ORD00001, ...)."""

    def __init__(self, delay_seconds: float = 0.0) -> None:
        self.delay_seconds = delay_seconds
        self.orders: dict[str, GatewayOrder] = {}
        self.create_calls = 0
        self.cancel_calls = 0
        self._failures: list[tuple[str, str]] = []
        self._cancel_failures: list[tuple[str, str]] = []
        self._sequence = 0

    def fail_next(self, error_code: str, message: str = "simulated gateway failure", times: int = 1) -> None:
        """Queue ``times`` failures for upcoming ``create_order`` calls."""
        self._failures.extend([(error_code, message)] * times)

    def fail_next_cancel(self, error_code: str, message: str = "simulated gateway failure") -> None:
        self._cancel_failures.append((error_code, message))

    async def create_order(self, request: RegistrationRequest) -> GatewayResult:
        self.create_calls += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if self._failures:
            error_code, message = self._failures.pop(0)
            logger.info("Simulated order failure code=%s user=%s", error_code, request.user_id)
            return GatewayResult.failure(error_code, message)

        self._sequence += 1
        order = GatewayOrder(
            code=f"ORD{self._sequence:05d}",
            status="n",
            email=request.personal_info.email,
            datetime=datetime.now(timezone.utc).isoformat(),
            total="0.00",
        )
        self.orders[order.code] = order
        return GatewayResult.ok(order)

    async def cancel_order(self, event_ref: str, order_code: str) -> GatewayOrder:
        self.cancel_calls += 1
        if self._cancel_failures:
            error_code, message = self._cancel_failures.pop(0)
            raise GatewayError(error_code, message)

        order = self.orders.get(order_code)
        if order is None:
            raise GatewayError("NOT_FOUND", f"order not found: {order_code}")
        cancelled = GatewayOrder(
            code=order.code, status="c", email=order.email, datetime=order.datetime, total=order.total
        )
        self.orders[order_code] = cancelled
        return cancelled

    async def get_order_status(self, event_ref: str, order_code: str) -> GatewayOrder:
        order = self.orders.get(order_code)
        if order is None:
            raise GatewayError("NOT_FOUND", f"order not found: {order_code}")
        return order
