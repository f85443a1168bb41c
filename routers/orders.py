from fastapi import APIRouter, Depends
from pydantic import BaseModel, validator, Field
from typing import List, Optional
from datetime import datetime
from config import settings
from models import Actor, OrderStatus, ProofType, VehicleType
from services.assignment_engine import AssignmentEngine
from services.fare_calculator import quote_price
from services.order_lifecycle import OrderLifecycle
from utils.auth_dependency import get_current_actor, get_current_admin, get_current_admin_or_customer
from utils.dependencies import get_assignment_engine, get_lifecycle
from utils.distance import estimate_trip_distance
import re

router = APIRouter(prefix="/api/orders", tags=["Orders"])

UNSAFE_TEXT = re.compile(r'<\s*script|<\s*iframe|javascript:', re.IGNORECASE)

def _clean_text(v: Optional[str], field: str) -> Optional[str]:
    if v is None:
        return v
    v = ' '.join(v.split())
    if UNSAFE_TEXT.search(v):
        raise ValueError(f'Invalid characters in {field}')
    return v

class QuoteRequest(BaseModel):
    vehicle_type: VehicleType
    distance_km: Optional[float] = Field(None, ge=0, le=5000)
    from_lat: Optional[float] = Field(None, ge=-90, le=90)
    from_lng: Optional[float] = Field(None, ge=-180, le=180)
    to_lat: Optional[float] = Field(None, ge=-90, le=90)
    to_lng: Optional[float] = Field(None, ge=-180, le=180)

class QuoteResponse(BaseModel):
    vehicle_type: VehicleType
    distance_km: float
    base: int
    per_km: int
    total: float

class OrderCreate(BaseModel):
    vehicle_type: VehicleType
    from_address: Optional[str] = Field(None, max_length=500)
    from_lat: Optional[float] = Field(None, ge=-90, le=90)
    from_lng: Optional[float] = Field(None, ge=-180, le=180)
    to_address: Optional[str] = Field(None, max_length=500)
    to_lat: Optional[float] = Field(None, ge=-90, le=90)
    to_lng: Optional[float] = Field(None, ge=-180, le=180)
    distance_km: Optional[float] = Field(None, ge=0, le=5000)
    price: Optional[float] = Field(None, ge=0)
    weight_kg: Optional[float] = Field(None, gt=0)
    contact_number: Optional[str] = Field(None, max_length=20)
    customer_id: Optional[int] = Field(None, description="Required when an admin books on behalf of a customer")

    @validator('from_address', 'to_address')
    def validate_address(cls, v):
        return _clean_text(v, 'address')

class StatusUpdate(BaseModel):
    status: OrderStatus
    actual_distance_km: Optional[float] = None
    note: Optional[str] = Field(None, max_length=500)
    driver_id: Optional[int] = None

    @validator('note')
    def validate_note(cls, v):
        return _clean_text(v, 'note')

class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

    @validator('reason')
    def validate_reason(cls, v):
        return _clean_text(v, 'reason')

class AssignRequest(BaseModel):
    driver_id: int

class ActualsUpdate(BaseModel):
    actual_distance_km: float

class ProofCreate(BaseModel):
    url: str = Field(..., min_length=1, max_length=500)
    type: ProofType = ProofType.OTHER
    note: Optional[str] = Field(None, max_length=500)

class RatingCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=1000)

    @validator('review')
    def validate_review(cls, v):
        return _clean_text(v, 'review')

class StatusHistoryResponse(BaseModel):
    status: OrderStatus
    actor_id: str
    actor_role: str
    note: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True

class ProofResponse(BaseModel):
    id: int
    url: str
    proof_type: ProofType
    submitted_by: str
    note: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True

class OrderResponse(BaseModel):
    id: int
    customer_id: int
    driver_id: Optional[int]
    vehicle_type: VehicleType
    status: OrderStatus
    from_address: Optional[str]
    from_latitude: Optional[float]
    from_longitude: Optional[float]
    to_address: Optional[str]
    to_latitude: Optional[float]
    to_longitude: Optional[float]
    distance_km: float
    price: float
    weight_kg: Optional[float]
    contact_number: Optional[str] = None
    actual_distance_km: Optional[float] = None
    adjusted_price: Optional[float] = None
    fare_breakdown: Optional[dict] = None
    rating: Optional[int] = None
    review: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime
    status_history: List[StatusHistoryResponse] = []
    proofs: List[ProofResponse] = []

    class Config:
        from_attributes = True

@router.post("/quote", response_model=QuoteResponse)
def quote_order(
    data: QuoteRequest,
    current_actor: Actor = Depends(get_current_actor)
):
    """
    Price a trip before booking.
    Uses distance_km when given, otherwise the distance between the two points.
    """
    distance_km = data.distance_km
    if distance_km is None:
        if None in (data.from_lat, data.from_lng, data.to_lat, data.to_lng):
            distance_km = 0.0
        else:
            distance_km, _ = estimate_trip_distance(
                data.from_lat, data.from_lng, data.to_lat, data.to_lng,
                use_road_distance=settings.use_road_distance,
                base_url=settings.osrm_base_url,
                timeout=settings.road_distance_timeout_seconds,
            )
    quote = quote_price(data.vehicle_type, distance_km)
    return QuoteResponse(
        vehicle_type=quote.vehicle_type,
        distance_km=quote.distance_km,
        base=quote.base,
        per_km=quote.per_km,
        total=quote.total,
    )

@router.post("/", response_model=OrderResponse, status_code=201)
def create_order(
    data: OrderCreate,
    current_actor: Actor = Depends(get_current_admin_or_customer),
    lifecycle: OrderLifecycle = Depends(get_lifecycle)
):
    return lifecycle.create_order(
        current_actor,
        vehicle_type=data.vehicle_type,
        from_address=data.from_address,
        from_latitude=data.from_lat,
        from_longitude=data.from_lng,
        to_address=data.to_address,
        to_latitude=data.to_lat,
        to_longitude=data.to_lng,
        distance_km=data.distance_km,
        price=data.price,
        weight_kg=data.weight_kg,
        contact_number=data.contact_number,
        customer_id=data.customer_id,
    )

@router.get("/", response_model=List[OrderResponse])
def list_orders(
    status: Optional[OrderStatus] = None,
    limit: int = 200,
    current_actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle)
):
    """
    List orders scoped by role:
    - Admin: all orders
    - Driver: orders assigned to them
    - Customer: their own orders
    """
    return lifecycle.list_orders(current_actor, status=status, limit=min(max(limit, 1), 500))

@router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: int,
    current_actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle)
):
    return lifecycle.get_order(order_id, current_actor)

@router.patch("/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: int,
    data: StatusUpdate,
    current_actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle)
):
    """
    Move an order along its lifecycle.
    Drivers may attach actual_distance_km when starting transit or delivering.
    """
    return lifecycle.transition(
        order_id,
        data.status,
        current_actor,
        actual_distance_km=data.actual_distance_km,
        note=data.note,
        driver_id=data.driver_id,
    )

@router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: int,
    data: Optional[CancelRequest] = None,
    current_actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle)
):
    return lifecycle.cancel(order_id, current_actor, reason=data.reason if data else None)

@router.post("/{order_id}/assign", response_model=OrderResponse)
def assign_driver(
    order_id: int,
    data: AssignRequest,
    current_actor: Actor = Depends(get_current_admin),
    engine: AssignmentEngine = Depends(get_assignment_engine)
):
    return engine.assign_manually(order_id, data.driver_id, current_actor)

@router.post("/{order_id}/auto-assign", response_model=OrderResponse)
def auto_assign_driver(
    order_id: int,
    current_actor: Actor = Depends(get_current_admin),
    engine: AssignmentEngine = Depends(get_assignment_engine)
):
    """Assign the nearest online, active driver with the right vehicle"""
    return engine.assign_automatically(order_id, current_actor)

@router.patch("/{order_id}/actuals", response_model=OrderResponse)
def set_actuals(
    order_id: int,
    data: ActualsUpdate,
    current_actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle)
):
    return lifecycle.set_actual_distance(order_id, data.actual_distance_km, current_actor)

@router.get("/{order_id}/fare")
def get_fare(
    order_id: int,
    current_actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle)
):
    return lifecycle.get_fare_breakdown(order_id, current_actor)

@router.post("/{order_id}/proofs", response_model=ProofResponse, status_code=201)
def add_proof(
    order_id: int,
    data: ProofCreate,
    current_actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle)
):
    """Attach a stored upload (pickup or delivery photo, signature) to the order"""
    return lifecycle.add_proof(order_id, current_actor, url=data.url, proof_type=data.type, note=data.note)

@router.post("/{order_id}/rate", response_model=OrderResponse)
def rate_order(
    order_id: int,
    data: RatingCreate,
    current_actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle)
):
    return lifecycle.rate_order(order_id, current_actor, data.rating, data.review)

@router.get("/{order_id}/tracking")
def get_tracking(
    order_id: int,
    current_actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle)
):
    return lifecycle.tracking(order_id, current_actor)
