"""
Pretix order gateway - Implements OrderGateway against the pretix REST API.

Order creation
==============

    GET event -> presale window check
    GET items + quotas -> pick the item matching the identity type
    POST order

Business refusals (presale closed, sold out, no matching item) are returned
as ``GatewayResult.failure`` with EVENT_NOT_AVAILABLE, ITEM_NOT_FOUND or
ITEM_NOT_AVAILABLE. HTTP failures are mapped to the taxonomy the error
classifier understands:

    400 -> BAD_REQUEST      401 -> UNAUTHORIZED    403 -> FORBIDDEN
    404 -> NOT_FOUND        429 -> RATE_LIMITED    5xx -> SERVER_ERROR
    other status -> HTTP_ERROR
    timeout -> TIMEOUT_ERROR    no response -> NETWORK_ERROR
    2xx body that is not the expected JSON -> SERVER_ERROR

The gateway never retries on its own; retries belong to the retry
orchestrator so attempts stay observable in retry records.
"""

import logging
from datetime import datetime
from typing import Any

import httpx

from src.adapters.runtime import SystemClock
from src.domain.exceptions import GatewayError
from src.domain.models import GatewayOrder, GatewayResult, IdentityType, RegistrationRequest
from src.domain.ports import Clock

logger = logging.getLogger(__name__)

IDENTITY_KEYWORDS: dict[IdentityType, tuple[str, ...]] = {
    IdentityType.CLERGY: ("法師", "monk", "師父", "出家", "clergy"),
    IdentityType.VOLUNTEER: ("志工", "volunteer", "義工", "在家"),
}

_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    429: "RATE_LIMITED",
}


def _localized(value: Any, locale: str = "zh-tw") -> str:
    if isinstance(value, dict):
        return value.get(locale) or value.get("en") or next(iter(value.values()), "")
    return value or ""


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def map_http_error(response: httpx.Response) -> GatewayError:
    """Translate a non-2xx pretix response into a GatewayError."""
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None

    if status >= 500:
        return GatewayError("SERVER_ERROR", "ticketing service temporarily unavailable")
    code = _STATUS_CODES.get(status, "HTTP_ERROR")
    return GatewayError(code, detail or f"ticketing service returned HTTP {status}")


def find_item_by_identity(items: list[dict[str, Any]], identity_type: IdentityType) -> dict[str, Any] | None:
    """First active item whose name or internal name mentions the identity."""
    keywords = [k.lower() for k in IDENTITY_KEYWORDS[identity_type]]
    for item in items:
        if not item.get("active", True):
            continue
        name = _localized(item.get("name")).lower()
        internal_name = (item.get("internal_name") or "").lower()
        if any(k in name or k in internal_name for k in keywords):
            return item
    return None


def item_available(item: dict[str, Any], quotas: list[dict[str, Any]]) -> bool:
    """An item without quotas is unlimited; otherwise any open quota suffices."""
    item_quotas = [q for q in quotas if item["id"] in q.get("items", [])]
    return not item_quotas or any(q.get("available") for q in item_quotas)


def build_order_payload(request: RegistrationRequest, item: dict[str, Any]) -> dict[str, Any]:
    info = request.personal_info
    transport = request.transport
    position_meta = {
        "user_id": request.user_id,
        "identity": request.identity_type.value,
        "temple_name": info.temple_name,
        "emergency_contact": info.emergency_contact,
        "special_requirements": info.special_requirements,
        "transport_required": transport.required if transport else False,
        "transport_location_id": transport.location_id if transport else None,
        "transport_pickup_time": transport.pickup_time.isoformat() if transport and transport.pickup_time else None,
        **request.metadata,
    }
    return {
        "email": info.email,
        "phone": info.phone,
        "locale": "zh-tw",
        "sales_channel": "web",
        "positions": [
            {
                "item": item["id"],
                "attendee_name": info.name,
                "attendee_email": info.email,
                "answers": [],
                "meta_data": position_meta,
            }
        ],
        "meta_data": {"user_id": request.user_id, "registration_source": "templereg"},
        "comment": build_order_comment(request),
    }


def build_order_comment(request: RegistrationRequest) -> str:
    info = request.personal_info
    lines = [
        f"identity: {request.identity_type.value}",
        f"name: {info.name}",
        f"phone: {info.phone}",
    ]
    if info.temple_name:
        lines.append(f"temple: {info.temple_name}")
    if info.emergency_contact:
        lines.append(f"emergency contact: {info.emergency_contact}")
    if request.transport and request.transport.required:
        lines.append("transport: yes")
        if request.transport.location_id:
            lines.append(f"pickup location: {request.transport.location_id}")
    else:
        lines.append("transport: no")
    if info.special_requirements:
        lines.append(f"special requirements: {info.special_requirements}")
    return "\n".join(lines)


def _results(data: dict[str, Any]) -> list[dict[str, Any]]:
    results = data.get("results")
    if not isinstance(results, list):
        raise GatewayError("SERVER_ERROR", "ticketing service returned an unexpected listing")
    return results


def _to_order(data: dict[str, Any]) -> GatewayOrder:
    if not data.get("code"):
        raise GatewayError("SERVER_ERROR", "ticketing service returned an order without a code")
    return GatewayOrder(
        code=data["code"],
        status=data.get("status", "n"),
        email=data.get("email"),
        datetime=data.get("datetime"),
        total=data.get("total"),
    )


class PretixOrderGateway:
    """
    Implements OrderGateway via httpx.AsyncClient.

    Args:
        base_url: pretix API root, e.g. ``https://pretix.eu/api/v1``
        api_token: pretix team API token
        organizer_slug: Organizer owning the events
        timeout_seconds: Per-request timeout
        transport: Optional httpx transport (``httpx.MockTransport`` in tests)
        clock: Time source for the presale window check
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        organizer_slug: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._organizer = organizer_slug
        self._clock = clock or SystemClock()
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Token {api_token}", "Content-Type": "application/json"},
            timeout=timeout_seconds,
            transport=transport,
        )

    async def create_order(self, request: RegistrationRequest) -> GatewayResult:
        event_slug = request.event_id
        try:
            event = await self._request("GET", self._event_path(event_slug))
            refusal = self._presale_refusal(event)
            if refusal is not None:
                return GatewayResult.failure("EVENT_NOT_AVAILABLE", refusal)

            items = _results(await self._request("GET", self._event_path(event_slug, "items")))
            quotas = _results(
                await self._request(
                    "GET", self._event_path(event_slug, "quotas"), params={"with_availability": "true"}
                )
            )

            item = find_item_by_identity(items, request.identity_type)
            if item is None:
                return GatewayResult.failure("ITEM_NOT_FOUND", "no registration item matches the identity type")
            if not item_available(item, quotas):
                return GatewayResult.failure("ITEM_NOT_AVAILABLE", "the registration item is fully booked")

            data = await self._request(
                "POST", self._event_path(event_slug, "orders"), json=build_order_payload(request, item)
            )
            order = _to_order(data)
        except GatewayError as e:
            logger.warning("pretix order creation failed event=%s code=%s - %s", event_slug, e.code, e.message)
            return GatewayResult.failure(e.code, e.message)

        logger.info("pretix order created event=%s order=%s", event_slug, order.code)
        return GatewayResult.ok(order)

    async def cancel_order(self, event_ref: str, order_code: str) -> GatewayOrder:
        data = await self._request("POST", self._event_path(event_ref, f"orders/{order_code}/mark_canceled"))
        return _to_order(data)

    async def get_order_status(self, event_ref: str, order_code: str) -> GatewayOrder:
        data = await self._request("GET", self._event_path(event_ref, f"orders/{order_code}"))
        return _to_order(data)

    async def health_check(self) -> bool:
        try:
            await self._request("GET", f"/organizers/{self._organizer}/")
        except GatewayError:
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()

    def _event_path(self, event_slug: str, suffix: str | None = None) -> str:
        path = f"/organizers/{self._organizer}/events/{event_slug}/"
        return f"{path}{suffix}/" if suffix else path

    def _presale_refusal(self, event: dict[str, Any]) -> str | None:
        now = self._clock.now()
        presale_start = _parse_datetime(event.get("presale_start"))
        presale_end = _parse_datetime(event.get("presale_end"))
        if presale_start and now < presale_start:
            return "registration has not opened yet"
        if presale_end and now > presale_end:
            return "registration has closed"
        return None

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            raise GatewayError("TIMEOUT_ERROR", "ticketing service timed out") from e
        except httpx.RequestError as e:
            raise GatewayError("NETWORK_ERROR", "could not reach the ticketing service") from e

        if response.is_error:
            raise map_http_error(response)
        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError("SERVER_ERROR", "ticketing service returned an unreadable response") from e
        if not isinstance(data, dict):
            raise GatewayError("SERVER_ERROR", "ticketing service returned an unexpected response")
        return data
