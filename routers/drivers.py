from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, validator, Field
from typing import List, Optional
from datetime import datetime
from config import settings
from models import Actor, VehicleType
from services.driver_service import DriverService
from utils.auth_dependency import get_current_admin, get_current_driver
from utils.dependencies import get_driver_service
import re

router = APIRouter(prefix="/api/drivers", tags=["Drivers"])

class DriverProfileUpdate(BaseModel):
    vehicle_type: Optional[VehicleType] = None
    capacity_kg: Optional[float] = Field(None, gt=0, le=100000)
    full_name: Optional[str] = Field(None, min_length=2, max_length=100)
    vehicle_number: Optional[str] = Field(None, min_length=3, max_length=50)

    @validator('vehicle_number')
    def validate_vehicle_number(cls, v):
        if v is not None:
            v = ' '.join(v.split())
            if re.search(r'<\s*script|<\s*iframe|javascript:', v, re.IGNORECASE):
                raise ValueError('Invalid characters in vehicle number')
        return v

class LocationUpdate(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = Field(None, ge=0, le=360)
    speed: Optional[float] = Field(None, ge=0)
    order_id: Optional[int] = None

class OnlineUpdate(BaseModel):
    is_online: bool

class ActiveUpdate(BaseModel):
    is_active: bool

class DriverResponse(BaseModel):
    id: int
    user_id: int
    is_online: bool
    is_active: bool
    latitude: Optional[float]
    longitude: Optional[float]
    last_seen_at: Optional[datetime]
    vehicle_type: Optional[VehicleType]
    capacity_kg: float
    full_name: Optional[str]
    vehicle_number: Optional[str]

    class Config:
        from_attributes = True

class NearbyDriverResponse(BaseModel):
    driver_id: int
    distance_meters: float
    latitude: float
    longitude: float
    vehicle_type: Optional[VehicleType]
    capacity_kg: Optional[float]

    class Config:
        from_attributes = True

@router.get("/me", response_model=DriverResponse)
def get_my_profile(
    current_actor: Actor = Depends(get_current_driver),
    service: DriverService = Depends(get_driver_service)
):
    return service.get_profile(current_actor.user_id)

@router.put("/me", response_model=DriverResponse)
def update_my_profile(
    data: DriverProfileUpdate,
    current_actor: Actor = Depends(get_current_driver),
    service: DriverService = Depends(get_driver_service)
):
    return service.upsert_profile(
        current_actor.user_id,
        vehicle_type=data.vehicle_type,
        capacity_kg=data.capacity_kg,
        full_name=data.full_name,
        vehicle_number=data.vehicle_number,
    )

@router.patch("/me/location", response_model=DriverResponse)
def update_my_location(
    data: LocationUpdate,
    current_actor: Actor = Depends(get_current_driver),
    service: DriverService = Depends(get_driver_service)
):
    """
    Position push from the driver app. Doubles as the presence heartbeat.
    Customers tracking an active order of this driver receive driver-location.
    """
    return service.update_location(
        current_actor.user_id,
        data.lat,
        data.lng,
        heading=data.heading,
        speed=data.speed,
        order_id=data.order_id,
    )

@router.patch("/me/online", response_model=DriverResponse)
def set_my_online(
    data: OnlineUpdate,
    current_actor: Actor = Depends(get_current_driver),
    service: DriverService = Depends(get_driver_service)
):
    return service.set_online(current_actor.user_id, data.is_online)

@router.get("/", response_model=List[DriverResponse])
def list_drivers(
    online: Optional[bool] = None,
    active: Optional[bool] = None,
    vehicle_type: Optional[VehicleType] = None,
    current_actor: Actor = Depends(get_current_admin),
    service: DriverService = Depends(get_driver_service)
):
    return service.list_drivers(online=online, active=active, vehicle_type=vehicle_type)

@router.get("/nearby", response_model=List[NearbyDriverResponse])
def nearby_drivers(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    vehicle_type: Optional[VehicleType] = None,
    radius_meters: Optional[float] = Query(None, gt=0, le=100000),
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_actor: Actor = Depends(get_current_admin),
    service: DriverService = Depends(get_driver_service)
):
    """Eligible drivers nearest first, as auto-assignment would see them"""
    return service.find_nearby(
        lat,
        lng,
        vehicle_type=vehicle_type,
        max_distance_meters=radius_meters or settings.auto_assign_radius_meters,
        limit=limit or settings.nearby_search_limit,
    )

@router.patch("/{driver_id}/state", response_model=DriverResponse)
def set_driver_state(
    driver_id: int,
    data: ActiveUpdate,
    current_actor: Actor = Depends(get_current_admin),
    service: DriverService = Depends(get_driver_service)
):
    """Approve or suspend a driver for dispatch"""
    return service.set_active(driver_id, data.is_active)
