"""
Request-scoped wiring of the dispatch services.

The GeoIndex and RealtimeHub are process-wide and live on app.state; the
services around them are built per request on the request's session.
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session
from config import settings
from database import get_db
from services.assignment_engine import AssignmentEngine
from services.chat_service import ChatService
from services.driver_service import DriverService
from services.geo_index import GeoIndex
from services.notification_service import OrderNotifier
from services.order_lifecycle import OrderLifecycle
from services.realtime_hub import RealtimeHub

def get_geo_index(request: Request) -> GeoIndex:
    return request.app.state.geo_index

def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub

def get_lifecycle(db: Session = Depends(get_db), hub: RealtimeHub = Depends(get_hub)) -> OrderLifecycle:
    return OrderLifecycle(db, hub, OrderNotifier(db))

def get_assignment_engine(
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    geo_index: GeoIndex = Depends(get_geo_index)
) -> AssignmentEngine:
    return AssignmentEngine(lifecycle, geo_index, settings.auto_assign_radius_meters)

def get_driver_service(
    db: Session = Depends(get_db),
    geo_index: GeoIndex = Depends(get_geo_index),
    hub: RealtimeHub = Depends(get_hub)
) -> DriverService:
    return DriverService(db, geo_index, hub)

def get_chat_service(db: Session = Depends(get_db), hub: RealtimeHub = Depends(get_hub)) -> ChatService:
    return ChatService(db, hub)
