"""
In-process index of driver positions used for nearest-driver queries.

The drivers table stays the system of record; DriverService writes the row
first and then mirrors the change here. Readers may briefly see a position
that lags the database, which dispatch tolerates.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union
import threading
import logging

from models.order import VehicleType
from utils.distance import haversine_distance

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class DriverPosition:
    driver_id: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    last_seen_at: Optional[datetime] = None
    is_online: bool = False
    is_active: bool = False
    vehicle_type: Optional[VehicleType] = None
    capacity_kg: Optional[float] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

@dataclass(frozen=True)
class NearbyDriver:
    driver_id: int
    distance_meters: float
    latitude: float
    longitude: float
    vehicle_type: Optional[VehicleType]
    capacity_kg: Optional[float]

def _vehicle(value: Union[VehicleType, str, None]) -> Optional[VehicleType]:
    if value is None or isinstance(value, VehicleType):
        return value
    return VehicleType(value)

class GeoIndex:
    def __init__(self):
        self._positions: Dict[int, DriverPosition] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._positions)

    def _current(self, driver_id: int) -> DriverPosition:
        return self._positions.get(driver_id) or DriverPosition(driver_id=driver_id)

    def upsert_location(self, driver_id: int, latitude: float, longitude: float, timestamp: Optional[datetime] = None):
        """Record a driver's position and heartbeat time"""
        with self._lock:
            current = self._current(driver_id)
            self._positions[driver_id] = replace(
                current,
                latitude=latitude,
                longitude=longitude,
                last_seen_at=timestamp or datetime.utcnow(),
            )

    def touch(self, driver_id: int, timestamp: Optional[datetime] = None):
        """Refresh the heartbeat without moving the driver"""
        with self._lock:
            current = self._current(driver_id)
            self._positions[driver_id] = replace(current, last_seen_at=timestamp or datetime.utcnow())

    def set_availability(self, driver_id: int, is_online: Optional[bool] = None, is_active: Optional[bool] = None):
        """Update eligibility flags; None leaves a flag unchanged"""
        with self._lock:
            current = self._current(driver_id)
            changes = {}
            if is_online is not None:
                changes["is_online"] = bool(is_online)
            if is_active is not None:
                changes["is_active"] = bool(is_active)
            self._positions[driver_id] = replace(current, **changes)

    def set_vehicle(self, driver_id: int, vehicle_type: Union[VehicleType, str, None], capacity_kg: Optional[float] = None):
        with self._lock:
            current = self._current(driver_id)
            self._positions[driver_id] = replace(
                current,
                vehicle_type=_vehicle(vehicle_type),
                capacity_kg=capacity_kg if capacity_kg is not None else current.capacity_kg,
            )

    def get(self, driver_id: int) -> Optional[DriverPosition]:
        with self._lock:
            return self._positions.get(driver_id)

    def remove(self, driver_id: int):
        with self._lock:
            self._positions.pop(driver_id, None)

    def load(self, positions: Iterable[DriverPosition]) -> int:
        """Replace the working set, e.g. from the drivers table at startup"""
        with self._lock:
            self._positions = {p.driver_id: p for p in positions}
            count = len(self._positions)
        logger.info(f"GeoIndex loaded with {count} drivers")
        return count

    def stale_online_drivers(self, cutoff: datetime) -> List[int]:
        """Online drivers whose last heartbeat is older than cutoff (or missing)"""
        with self._lock:
            return sorted(
                p.driver_id for p in self._positions.values()
                if p.is_online and (p.last_seen_at is None or p.last_seen_at < cutoff)
            )

    def find_nearest(
        self,
        latitude: float,
        longitude: float,
        vehicle_type: Union[VehicleType, str, None] = None,
        max_distance_meters: float = 15000,
        limit: int = 1,
        min_capacity_kg: Optional[float] = None
    ) -> List[NearbyDriver]:
        """
        Eligible drivers ordered by great-circle distance from the origin.

        Eligible means online, active, positioned, matching vehicle_type when
        given and carrying at least min_capacity_kg when given. Equidistant
        drivers come back in ascending driver_id order. Returns an empty list
        when nobody qualifies.
        """
        if limit <= 0:
            return []
        wanted = _vehicle(vehicle_type)

        with self._lock:
            candidates = list(self._positions.values())

        matches = []
        for position in candidates:
            if not (position.is_online and position.is_active and position.has_location):
                continue
            if wanted is not None and position.vehicle_type != wanted:
                continue
            if min_capacity_kg is not None and (position.capacity_kg is None or position.capacity_kg < min_capacity_kg):
                continue
            distance_m = haversine_distance(latitude, longitude, position.latitude, position.longitude) * 1000
            if distance_m > max_distance_meters:
                continue
            matches.append(NearbyDriver(
                driver_id=position.driver_id,
                distance_meters=distance_m,
                latitude=position.latitude,
                longitude=position.longitude,
                vehicle_type=position.vehicle_type,
                capacity_kg=position.capacity_kg,
            ))

        matches.sort(key=lambda m: (m.distance_meters, m.driver_id))
        return matches[:limit]
