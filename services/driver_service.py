from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import List, Optional, Union
from datetime import datetime
import logging

from models import Driver, Order, VehicleType
from models.order import ACTIVE_STATUSES
from models.log import LogCategory
from services.exceptions import ForbiddenError, NotFoundError, ValidationError
from services.geo_index import DriverPosition, GeoIndex, NearbyDriver
from services.realtime_hub import RealtimeHub, order_topic
from utils.distance import is_valid_coordinate
from utils.logger import DatabaseLogger, log_info

logger = logging.getLogger(__name__)

def position_from_driver(driver: Driver) -> DriverPosition:
    return DriverPosition(
        driver_id=driver.id,
        latitude=driver.latitude,
        longitude=driver.longitude,
        last_seen_at=driver.last_seen_at,
        is_online=bool(driver.is_online),
        is_active=bool(driver.is_active),
        vehicle_type=driver.vehicle_type,
        capacity_kg=driver.capacity_kg,
    )

def _vehicle(value: Union[VehicleType, str, None]) -> Optional[VehicleType]:
    if value is None:
        return None
    try:
        return VehicleType(value)
    except ValueError:
        raise ValidationError(f"Unknown vehicle type: {value}")

class DriverService:
    """
    Driver state changes. The drivers row is written and committed first,
    then mirrored into the GeoIndex.
    """

    def __init__(self, db: Session, geo_index: GeoIndex, hub: Optional[RealtimeHub] = None):
        self.db = db
        self.geo_index = geo_index
        self.hub = hub

    def _by_user(self, user_id: int) -> Optional[Driver]:
        return self.db.query(Driver).filter(Driver.user_id == user_id).first()

    def _mirror(self, driver: Driver):
        self.geo_index.set_vehicle(driver.id, driver.vehicle_type, driver.capacity_kg)
        self.geo_index.set_availability(driver.id, is_online=driver.is_online, is_active=driver.is_active)
        if driver.has_location:
            self.geo_index.upsert_location(driver.id, driver.latitude, driver.longitude, driver.last_seen_at)
        elif driver.last_seen_at is not None:
            self.geo_index.touch(driver.id, driver.last_seen_at)

    def get_profile(self, user_id: int) -> Driver:
        driver = self._by_user(user_id)
        if not driver:
            raise NotFoundError("Driver profile not found")
        return driver

    def get_driver(self, driver_id: int) -> Driver:
        driver = self.db.query(Driver).filter(Driver.id == driver_id).first()
        if not driver:
            raise NotFoundError("Driver not found")
        return driver

    def upsert_profile(
        self,
        user_id: int,
        vehicle_type: Union[VehicleType, str, None] = None,
        capacity_kg: Optional[float] = None,
        full_name: Optional[str] = None,
        vehicle_number: Optional[str] = None
    ) -> Driver:
        vehicle = _vehicle(vehicle_type)
        if capacity_kg is not None and capacity_kg <= 0:
            raise ValidationError("capacity_kg must be positive")

        driver = self._by_user(user_id)
        if not driver:
            driver = Driver(user_id=user_id, is_online=False, is_active=False)
            self.db.add(driver)

        if vehicle is not None:
            driver.vehicle_type = vehicle
        if capacity_kg is not None:
            driver.capacity_kg = capacity_kg
        if full_name is not None:
            driver.full_name = full_name.strip()
        if vehicle_number is not None:
            driver.vehicle_number = vehicle_number.strip().upper()

        self.db.commit()
        self.db.refresh(driver)
        self._mirror(driver)
        return driver

    def update_location(
        self,
        user_id: int,
        latitude: float,
        longitude: float,
        heading: Optional[float] = None,
        speed: Optional[float] = None,
        order_id: Optional[int] = None
    ) -> Driver:
        """
        Record a position push. Creates an offline profile on first push.
        Refreshes position and last_seen_at only; going online is explicit.
        """
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError("Invalid latitude or longitude")

        driver = self._by_user(user_id)
        active_ids = []
        if driver:
            orders_query = self.db.query(Order.id).filter(Order.driver_id == driver.id, Order.status.in_(ACTIVE_STATUSES))
            if order_id is not None:
                orders_query = orders_query.filter(Order.id == order_id)
            active_ids = [row.id for row in orders_query.all()]
        else:
            driver = Driver(user_id=user_id, is_online=False, is_active=False)
            self.db.add(driver)
        if order_id is not None and not active_ids:
            raise ForbiddenError("Order is not an active order of this driver")

        now = datetime.utcnow()
        driver.latitude = latitude
        driver.longitude = longitude
        driver.last_seen_at = now

        self.db.commit()
        self.db.refresh(driver)
        self._mirror(driver)

        payload = {
            "driverId": driver.id,
            "lat": latitude,
            "lng": longitude,
            "heading": heading,
            "speed": speed,
            "ts": now.isoformat(),
        }
        if self.hub is not None:
            for active_id in active_ids:
                self.hub.publish(order_topic(active_id), "driver-location", {"orderId": active_id, **payload})

        DatabaseLogger.log_user_activity(
            user_id=user_id,
            action="location_update",
            description=f"Location {latitude:.5f},{longitude:.5f}",
            entity_type="driver",
            entity_id=driver.id,
            db=self.db,
        )
        return driver

    def set_online(self, user_id: int, is_online: bool) -> Driver:
        driver = self._by_user(user_id)
        if not driver:
            driver = Driver(user_id=user_id, is_online=False, is_active=False)
            self.db.add(driver)

        driver.is_online = bool(is_online)
        if driver.is_online:
            driver.last_seen_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(driver)
        self._mirror(driver)

        logger.info(f"Driver {driver.id} is now {'online' if driver.is_online else 'offline'}")
        log_info(
            f"Driver {driver.id} went {'online' if driver.is_online else 'offline'}",
            category=LogCategory.PRESENCE,
            user_id=user_id,
            db=self.db,
        )
        return driver

    def set_active(self, driver_id: int, is_active: bool) -> Driver:
        driver = self.get_driver(driver_id)
        driver.is_active = bool(is_active)
        self.db.commit()
        self.db.refresh(driver)
        self.geo_index.set_availability(driver.id, is_active=driver.is_active)
        return driver

    def list_drivers(
        self,
        online: Optional[bool] = None,
        active: Optional[bool] = None,
        vehicle_type: Union[VehicleType, str, None] = None,
        limit: int = 200
    ) -> List[Driver]:
        query = self.db.query(Driver)
        if online is not None:
            query = query.filter(Driver.is_online == online)
        if active is not None:
            query = query.filter(Driver.is_active == active)
        vehicle = _vehicle(vehicle_type)
        if vehicle is not None:
            query = query.filter(Driver.vehicle_type == vehicle)
        return query.order_by(Driver.id).limit(limit).all()

    def find_nearby(
        self,
        latitude: float,
        longitude: float,
        vehicle_type: Union[VehicleType, str, None] = None,
        max_distance_meters: float = 15000,
        limit: int = 50
    ) -> List[NearbyDriver]:
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError("Invalid latitude or longitude")
        return self.geo_index.find_nearest(
            latitude,
            longitude,
            vehicle_type=_vehicle(vehicle_type),
            max_distance_meters=max_distance_meters,
            limit=limit,
        )

    def mark_stale_offline(self, cutoff: datetime) -> List[int]:
        """Flip online drivers with no heartbeat since cutoff to offline; returns their ids"""
        stale = or_(Driver.last_seen_at.is_(None), Driver.last_seen_at < cutoff)
        ids = [row.id for row in self.db.query(Driver.id).filter(Driver.is_online == True, stale).all()]
        if not ids:
            return []

        # Re-check staleness in the UPDATE so a heartbeat landing in between wins
        self.db.query(Driver).filter(Driver.id.in_(ids), Driver.is_online == True, stale).update(
            {Driver.is_online: False}, synchronize_session=False
        )
        self.db.commit()

        flipped = [row.id for row in self.db.query(Driver.id).filter(Driver.id.in_(ids), Driver.is_online == False).all()]
        for driver_id in flipped:
            self.geo_index.set_availability(driver_id, is_online=False)
        return sorted(flipped)

    def load_index(self) -> int:
        """Rebuild the GeoIndex from the drivers table"""
        return self.geo_index.load(position_from_driver(d) for d in self.db.query(Driver).all())
