"""
Tracking Schemas for Delivery Hub
=================================

Request and response models for the /tracking endpoints. Coordinates are
WGS84 degrees; distances are kilometres.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..state_machine import OrderStatus, TrackingPhase


class LocationUpdateRequest(BaseModel):
    """Body of PUT /tracking/{order_id}/location, sent by the assigned agent."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class TrackingOut(BaseModel):
    """Snapshot of an order's tracking record."""

    model_config = ConfigDict(from_attributes=True)

    order_id: int
    phase: TrackingPhase
    restaurant_latitude: float
    restaurant_longitude: float
    customer_latitude: float
    customer_longitude: float
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    distance_remaining: Optional[float] = None
    updated_at: Optional[datetime] = None


class TrackingResponse(BaseModel):
    success: bool = True
    tracking: TrackingOut


class DeliveryStatusOut(BaseModel):
    order_id: int
    order_number: str
    status: OrderStatus
    delivery_agent_id: Optional[str] = None
    estimated_delivery_time: Optional[datetime] = None
    tracking: Optional[TrackingOut] = None


class DeliveryStatusResponse(BaseModel):
    success: bool = True
    delivery: DeliveryStatusOut


class ArrivalEstimateOut(BaseModel):
    order_id: int
    distance_km: float
    estimated_minutes: int
    estimated_arrival: datetime


class ArrivalEstimateResponse(BaseModel):
    success: bool = True
    eta: ArrivalEstimateOut
