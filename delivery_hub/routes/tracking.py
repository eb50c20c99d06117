"""
Tracking Routes for Delivery Hub
================================

Live location of the delivery agent and the order's delivery progress.

Endpoints:
----------
- GET /tracking/{order_id}: Tracking snapshot (any party to the order)
- GET /tracking/{order_id}/status: Order status with tracking and ETA
- GET /tracking/{order_id}/eta: Minutes until the agent reaches the customer
- PUT /tracking/{order_id}/location: Agent position report (assigned agent)
- GET /tracking/{order_id}/stream: Live updates as Server-Sent Events

Rate Limiting:
--------------
Location reports are limited per requester (RATE_LIMIT_LOCATION, default
"120 per minute"); agents normally report every few seconds.

Live Stream:
------------
The stream starts with a ``tracking.snapshot`` event, then forwards every
status change and location update of the order as ``data: {json}`` lines.
When no event arrives within SUBSCRIBER_POLL_SECONDS a keep-alive comment is
written. The stream ends after the order is delivered or cancelled (right
after the snapshot if it already was), or when the subscriber falls too far
behind and is evicted.
"""

import json
import logging
import uuid

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..auth import Requester, get_requester, require_role
from ..config import RATE_LIMIT_ENABLED, SUBSCRIBER_POLL_SECONDS, get_rate_limit_location
from ..dependencies import get_coordinator
from ..schemas.tracking import (
    ArrivalEstimateOut,
    ArrivalEstimateResponse,
    DeliveryStatusOut,
    DeliveryStatusResponse,
    LocationUpdateRequest,
    TrackingOut,
    TrackingResponse,
)
from ..services.coordinator import LifecycleCoordinator
from ..services.notifications import ORDER_STATUS_CHANGED
from ..state_machine import TERMINAL_STATUSES, ActorRole, TrackingPhase


logger = logging.getLogger(__name__)

# Router definition
tracking_router = APIRouter(prefix="/tracking", tags=["Tracking"])

TRACKING_SNAPSHOT = "tracking.snapshot"
_TERMINAL_VALUES = {status.value for status in TERMINAL_STATUSES}
_FINISHED_PHASES = {TrackingPhase.DELIVERED, TrackingPhase.CANCELLED}


# =============================================================================
# Rate Limiting Setup
# =============================================================================

def get_user_id_or_ip(request: Request) -> str:
    """Rate limit key: the gateway's user id, or the client IP without one."""
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_user_id_or_ip, enabled=RATE_LIMIT_ENABLED)


# =============================================================================
# Snapshots and Estimates
# =============================================================================

@tracking_router.get("/{order_id}", response_model=TrackingResponse)
def get_tracking(
    order_id: int,
    requester: Requester = Depends(get_requester),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> TrackingResponse:
    record = coordinator.get_tracking(order_id, requester.user_id)
    return TrackingResponse(tracking=TrackingOut.model_validate(record))


@tracking_router.get("/{order_id}/status", response_model=DeliveryStatusResponse)
def get_delivery_status(
    order_id: int,
    requester: Requester = Depends(get_requester),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> DeliveryStatusResponse:
    """Order status, assigned agent, latest ETA and tracking in one call."""
    result = coordinator.get_delivery_status(order_id, requester.user_id)
    order = result.order
    return DeliveryStatusResponse(
        delivery=DeliveryStatusOut(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            delivery_agent_id=order.delivery_agent_id,
            estimated_delivery_time=order.estimated_delivery_time,
            tracking=TrackingOut.model_validate(result.tracking) if result.tracking else None,
        )
    )


@tracking_router.get("/{order_id}/eta", response_model=ArrivalEstimateResponse)
def get_arrival_estimate(
    order_id: int,
    requester: Requester = Depends(get_requester),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> ArrivalEstimateResponse:
    """
    Minutes until the agent reaches the customer, from the agent's last
    reported position. Answers 400 location_unavailable before the first report.
    """
    estimate = coordinator.estimate_arrival(order_id, requester.user_id)
    return ArrivalEstimateResponse(
        eta=ArrivalEstimateOut(
            order_id=estimate.order_id,
            distance_km=round(estimate.distance_km, 2),
            estimated_minutes=estimate.estimated_minutes,
            estimated_arrival=estimate.estimated_arrival,
        )
    )


# =============================================================================
# Agent Location
# =============================================================================

@tracking_router.put("/{order_id}/location", response_model=TrackingResponse)
@limiter.limit(get_rate_limit_location)
def update_location(
    request: Request,
    order_id: int,
    payload: LocationUpdateRequest,
    requester: Requester = Depends(require_role(ActorRole.DELIVERY_AGENT)),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
) -> TrackingResponse:
    """Store the assigned agent's position and push it to live subscribers."""
    record = coordinator.update_agent_location(
        order_id, requester.user_id, payload.latitude, payload.longitude
    )
    return TrackingResponse(tracking=TrackingOut.model_validate(record))


# =============================================================================
# Live Stream
# =============================================================================

def _sse(event: dict) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


def event_stream(channel, order_id: int, subscriber_id: str, subscription, first: str):
    """
    Yield the snapshot, then the subscription's events as SSE lines.

    The subscription is removed when the stream ends, whether by a terminal
    status, eviction, or the client going away (the generator is closed).
    """
    try:
        yield first
        while not subscription.closed:
            event = subscription.get(timeout=SUBSCRIBER_POLL_SECONDS)
            if event is None:
                yield ": keep-alive\n\n"
                continue
            yield _sse(event)
            if event.get("type") == ORDER_STATUS_CHANGED and event.get("status") in _TERMINAL_VALUES:
                break
    finally:
        channel.unsubscribe(order_id, subscriber_id, subscription)
        logger.info("Live tracking closed for order %s by %s", order_id, subscriber_id)


@tracking_router.get("/{order_id}/stream")
def stream_tracking(
    request: Request,
    order_id: int,
    requester: Requester = Depends(get_requester),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    """
    Subscribe to the order's live updates.

    Authorization happens before the stream opens, so an outsider gets a
    plain 403 response rather than an empty stream.
    """
    channel = request.app.state.tracking_channel
    subscriber_id = f"{requester.user_id}:{uuid.uuid4().hex[:8]}"

    # Subscribe before reading the snapshot: a change committed in between is queued
    subscription = channel.subscribe(order_id, subscriber_id)
    try:
        record = coordinator.get_tracking(order_id, requester.user_id)
    except Exception:
        channel.unsubscribe(order_id, subscriber_id, subscription)
        raise

    snapshot = TrackingOut.model_validate(record).model_dump(mode="json")
    first = _sse({"type": TRACKING_SNAPSHOT, "order_id": order_id, "tracking": snapshot})

    if record.phase in _FINISHED_PHASES:
        channel.unsubscribe(order_id, subscriber_id, subscription)
        return StreamingResponse(iter([first]), media_type="text/event-stream")

    logger.info("Live tracking opened for order %s by %s", order_id, requester.user_id)
    return StreamingResponse(
        event_stream(channel, order_id, subscriber_id, subscription, first),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
