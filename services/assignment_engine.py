from typing import Optional
import logging

from models import Actor, ActorRole, LogCategory, Order, OrderStatus
from services.exceptions import ForbiddenError, NoEligibleDriverError, ValidationError
from services.geo_index import GeoIndex
from services.order_lifecycle import OrderLifecycle
from utils.distance import is_valid_coordinate
from utils.logger import log_warning

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_RADIUS_METERS = 15000

class AssignmentEngine:
    """Picks the driver for an order, by admin choice or by nearest eligible match"""

    def __init__(self, lifecycle: OrderLifecycle, geo_index: GeoIndex, search_radius_meters: float = DEFAULT_SEARCH_RADIUS_METERS):
        self.lifecycle = lifecycle
        self.geo_index = geo_index
        self.search_radius_meters = search_radius_meters

    def assign_manually(self, order_id: int, driver_id: int, actor: Actor) -> Order:
        """
        Admin override: the driver must exist but is not checked for
        eligibility (online, active, vehicle type).
        """
        if actor.role != ActorRole.ADMIN:
            raise ForbiddenError("Only admins can assign drivers manually")
        return self.lifecycle.assign_driver(order_id, driver_id, actor)

    def assign_automatically(self, order_id: int, actor: Actor, note: Optional[str] = "auto") -> Order:
        """
        Assign the nearest online, active driver with a matching vehicle
        within the search radius. Raises NoEligibleDriverError and leaves the
        order in 'created' when nobody qualifies; retrying is up to the caller.
        """
        if actor.role not in (ActorRole.ADMIN, ActorRole.SYSTEM):
            raise ForbiddenError("Only admins or the dispatcher can auto-assign orders")

        order = self.lifecycle.get_order(order_id, actor)
        self.lifecycle.check_transition(order, OrderStatus.ASSIGNED, actor)

        if not is_valid_coordinate(order.from_latitude, order.from_longitude):
            raise ValidationError("Order has no pickup coordinates to search from")

        matches = self.geo_index.find_nearest(
            order.from_latitude,
            order.from_longitude,
            vehicle_type=order.vehicle_type,
            max_distance_meters=self.search_radius_meters,
            limit=1,
            min_capacity_kg=order.weight_kg,
        )
        if not matches:
            log_warning(
                f"Order {order_id}: no eligible {order.vehicle_type.value} driver within {self.search_radius_meters} m",
                category=LogCategory.ASSIGNMENT,
                details={"order_id": order_id, "radius_meters": self.search_radius_meters, "weight_kg": order.weight_kg},
                user_id=actor.user_id,
                db=self.lifecycle.db,
            )
            raise NoEligibleDriverError("No eligible driver available nearby")

        chosen = matches[0]
        logger.info(f"Order {order_id}: nearest driver {chosen.driver_id} at {chosen.distance_meters:.0f} m")
        return self.lifecycle.assign_driver(order_id, chosen.driver_id, actor, note=note)
