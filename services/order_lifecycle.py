"""
Order state machine.

Every status change goes through transition(): the status, any dependent
fields and exactly one history row are committed together. Orders carry a
version column, so two requests racing from the same prior state cannot
both win; the loser gets ConflictError and the order is left as the winner
wrote it. Real-time events and notifications are sent only after the commit
and can never undo it.
"""
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from typing import Dict, FrozenSet, List, Optional, Tuple, Union
from datetime import datetime
import math
import logging

from models import Actor, ActorRole, Driver, Order, OrderProof, OrderStatus, OrderStatusHistory, ProofType, VehicleType
from models.order import ACTIVE_STATUSES
from models.log import LogCategory
from config import settings
from services.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from services.fare_calculator import FareBreakdown, compute_adjusted_fare, quote_price
from services.realtime_hub import RealtimeHub, driver_topic, order_topic
from utils.distance import estimate_trip_distance, is_valid_coordinate
from utils.logger import DatabaseLogger, log_info

logger = logging.getLogger(__name__)

# Parties that may request a transition
ADMIN = "admin"
SYSTEM = "system"
OWNER = "owner"
ASSIGNED_DRIVER = "assigned_driver"

TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], FrozenSet[str]] = {
    (OrderStatus.CREATED, OrderStatus.ASSIGNED): frozenset({ADMIN, SYSTEM}),
    (OrderStatus.CREATED, OrderStatus.CANCELLED): frozenset({OWNER, ADMIN}),
    (OrderStatus.ASSIGNED, OrderStatus.CANCELLED): frozenset({OWNER, ADMIN}),
    (OrderStatus.ASSIGNED, OrderStatus.ACCEPTED): frozenset({ASSIGNED_DRIVER}),
    (OrderStatus.ACCEPTED, OrderStatus.PICKED_UP): frozenset({ASSIGNED_DRIVER}),
    (OrderStatus.ACCEPTED, OrderStatus.CANCELLED): frozenset({ADMIN}),
    (OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT): frozenset({ASSIGNED_DRIVER}),
    (OrderStatus.PICKED_UP, OrderStatus.CANCELLED): frozenset({ADMIN}),
    (OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED): frozenset({ASSIGNED_DRIVER}),
    (OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED): frozenset({ADMIN}),
}

# Targets that may carry the actually travelled distance
FARE_STATUSES = frozenset({OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED})

def allowed_targets(status: OrderStatus) -> List[OrderStatus]:
    return [to for (frm, to) in TRANSITIONS if frm == status]

def parse_status(value: Union[OrderStatus, str]) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown status: {value}")

def parse_vehicle_type(value: Union[VehicleType, str]) -> VehicleType:
    try:
        return VehicleType(value)
    except ValueError:
        raise ValidationError(f"Unknown vehicle type: {value}")

def _non_negative(value: Optional[float], name: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number")
    if value < 0:
        raise ValidationError(f"{name} cannot be negative")
    return float(value)

def _endpoint(label: str, address: Optional[str], latitude: Optional[float], longitude: Optional[float]):
    """Normalise one trip endpoint: an address, a point, or both"""
    address = " ".join(address.split()) if address else None
    if address is not None and len(address) < 3:
        raise ValidationError(f"'{label}' address is too short")
    has_point = latitude is not None or longitude is not None
    if has_point and not is_valid_coordinate(latitude, longitude):
        raise ValidationError(f"'{label}' location needs a valid latitude and longitude")
    if not address and not has_point:
        raise ValidationError(f"'{label}' needs an address or a location")
    return address, latitude, longitude

def order_event_payload(order: Order) -> dict:
    return {
        "orderId": order.id,
        "status": order.status.value,
        "driverId": order.driver_id,
        "adjustedPrice": order.adjusted_price,
        "at": datetime.utcnow().isoformat(),
    }

def assignment_payload(order: Order) -> dict:
    return {
        "orderId": order.id,
        "status": order.status.value,
        "vehicleType": order.vehicle_type.value,
        "price": order.price,
        "distanceKm": order.distance_km,
        "from": {"address": order.from_address, "lat": order.from_latitude, "lng": order.from_longitude},
        "to": {"address": order.to_address, "lat": order.to_latitude, "lng": order.to_longitude},
        "at": datetime.utcnow().isoformat(),
    }

class OrderLifecycle:
    def __init__(self, db: Session, hub: Optional[RealtimeHub] = None, notifier=None):
        self.db = db
        self.hub = hub
        self.notifier = notifier

    # Lookups and authorization

    def _get(self, order_id: int) -> Order:
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFoundError("Order not found")
        return order

    def driver_for(self, actor: Actor) -> Optional[Driver]:
        if actor.role != ActorRole.DRIVER or actor.user_id is None:
            return None
        return self.db.query(Driver).filter(Driver.user_id == actor.user_id).first()

    def _parties(self, order: Order, actor: Actor) -> FrozenSet[str]:
        parties = set()
        if actor.role == ActorRole.ADMIN:
            parties.add(ADMIN)
        elif actor.role == ActorRole.SYSTEM:
            parties.add(SYSTEM)
        elif actor.role == ActorRole.CUSTOMER and actor.user_id == order.customer_id:
            parties.add(OWNER)
        elif actor.role == ActorRole.DRIVER and order.driver_id is not None:
            driver = self.driver_for(actor)
            if driver is not None and driver.id == order.driver_id:
                parties.add(ASSIGNED_DRIVER)
        return frozenset(parties)

    def can_view(self, order: Order, actor: Actor) -> bool:
        return bool(self._parties(order, actor))

    def check_transition(self, order: Order, target: OrderStatus, actor: Actor):
        """Raise unless actor may move order to target from its current status"""
        rule = TRANSITIONS.get((order.status, target))
        if rule is None:
            raise InvalidTransitionError(order.status, target)
        if not rule & self._parties(order, actor):
            raise ForbiddenError(f"Not allowed to move this order to '{target.value}'")

    # Queries

    def get_order(self, order_id: int, actor: Actor) -> Order:
        order = self._get(order_id)
        if not self.can_view(order, actor):
            raise ForbiddenError("Not allowed to view this order")
        return order

    def list_orders(self, actor: Actor, status: Optional[Union[OrderStatus, str]] = None, limit: int = 200) -> List[Order]:
        query = self.db.query(Order)

        if actor.role == ActorRole.CUSTOMER:
            query = query.filter(Order.customer_id == actor.user_id)
        elif actor.role == ActorRole.DRIVER:
            driver = self.driver_for(actor)
            if driver is None:
                return []
            query = query.filter(Order.driver_id == driver.id)

        if status is not None:
            query = query.filter(Order.status == parse_status(status))

        return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()

    # Creation

    def create_order(
        self,
        actor: Actor,
        vehicle_type: Union[VehicleType, str],
        from_address: Optional[str] = None,
        from_latitude: Optional[float] = None,
        from_longitude: Optional[float] = None,
        to_address: Optional[str] = None,
        to_latitude: Optional[float] = None,
        to_longitude: Optional[float] = None,
        distance_km: Optional[float] = None,
        price: Optional[float] = None,
        weight_kg: Optional[float] = None,
        contact_number: Optional[str] = None,
        customer_id: Optional[int] = None
    ) -> Order:
        if actor.role == ActorRole.CUSTOMER:
            customer_id = actor.user_id
        elif actor.role == ActorRole.ADMIN:
            if customer_id is None:
                raise ValidationError("customer_id is required when an admin creates an order")
        else:
            raise ForbiddenError("Only customers and admins can create orders")

        vehicle = parse_vehicle_type(vehicle_type)
        from_address, from_latitude, from_longitude = _endpoint("from", from_address, from_latitude, from_longitude)
        to_address, to_latitude, to_longitude = _endpoint("to", to_address, to_latitude, to_longitude)
        distance_km = _non_negative(distance_km, "distance_km")
        price = _non_negative(price, "price")
        weight_kg = _non_negative(weight_kg, "weight_kg")

        if distance_km is None:
            if from_latitude is not None and to_latitude is not None:
                distance_km, _ = estimate_trip_distance(
                    from_latitude, from_longitude, to_latitude, to_longitude,
                    use_road_distance=settings.use_road_distance,
                    base_url=settings.osrm_base_url,
                    timeout=settings.road_distance_timeout_seconds,
                )
            else:
                distance_km = 0.0
        if price is None:
            price = quote_price(vehicle, distance_km).total

        order = Order(
            customer_id=customer_id,
            vehicle_type=vehicle,
            from_address=from_address,
            from_latitude=from_latitude,
            from_longitude=from_longitude,
            to_address=to_address,
            to_latitude=to_latitude,
            to_longitude=to_longitude,
            distance_km=distance_km,
            price=price,
            weight_kg=weight_kg,
            contact_number=contact_number,
            status=OrderStatus.CREATED,
        )
        order.status_history.append(self._history_row(OrderStatus.CREATED, actor))
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)

        logger.info(f"Order {order.id} created by {actor.role.value} {actor.label}")
        self._log_activity(actor, "order_created", f"Order created ({vehicle.value}, {distance_km} km, {price})", order.id)
        return order

    # Transitions

    def transition(
        self,
        order_id: int,
        target: Union[OrderStatus, str],
        actor: Actor,
        actual_distance_km: Optional[float] = None,
        note: Optional[str] = None,
        driver_id: Optional[int] = None
    ) -> Order:
        target = parse_status(target)
        order = self._get(order_id)
        self.check_transition(order, target, actor)

        if target == OrderStatus.ASSIGNED:
            if driver_id is None:
                raise ValidationError("A driver is required to assign an order")
            if self.db.query(Driver.id).filter(Driver.id == driver_id).first() is None:
                raise NotFoundError("Driver not found")
        elif driver_id is not None:
            raise ValidationError("driver_id is only accepted when assigning an order")

        fare = None
        if actual_distance_km is not None:
            if target not in FARE_STATUSES:
                raise ValidationError("actual_distance_km is only accepted with in_transit or delivered")
            fare = compute_adjusted_fare(order.distance_km, order.price, actual_distance_km)

        previous = order.status
        order.status = target
        if target == OrderStatus.ASSIGNED:
            order.driver_id = driver_id
        if fare is not None:
            self._apply_fare(order, fare)
        order.status_history.append(self._history_row(target, actor, note))
        self._commit(order)

        logger.info(f"Order {order.id}: {previous.value} -> {target.value} by {actor.role.value} {actor.label}")
        self._after_transition(order, previous, actor)
        return order

    def assign_driver(self, order_id: int, driver_id: int, actor: Actor, note: Optional[str] = None) -> Order:
        return self.transition(order_id, OrderStatus.ASSIGNED, actor, note=note, driver_id=driver_id)

    def cancel(self, order_id: int, actor: Actor, reason: Optional[str] = None) -> Order:
        return self.transition(order_id, OrderStatus.CANCELLED, actor, note=reason)

    # Fare

    def set_actual_distance(self, order_id: int, actual_distance_km: float, actor: Actor) -> Order:
        """Record the travelled distance and the adjusted fare without changing status"""
        order = self._get(order_id)
        if not self._parties(order, actor) & {ADMIN, ASSIGNED_DRIVER}:
            raise ForbiddenError("Only an admin or the assigned driver can set actual distance")
        if order.status == OrderStatus.CANCELLED:
            raise ValidationError("Cannot set actual distance on a cancelled order")

        fare = compute_adjusted_fare(order.distance_km, order.price, actual_distance_km)
        self._apply_fare(order, fare)
        self._commit(order)

        self._publish(order_topic(order.id), "order-fare", {"orderId": order.id, **fare.to_dict()})
        self._log_activity(actor, "fare_adjusted", f"Actual distance {fare.actual_distance_km} km, adjusted price {fare.adjusted_price}", order.id)
        return order

    def get_fare_breakdown(self, order_id: int, actor: Actor) -> dict:
        order = self.get_order(order_id, actor)
        if order.fare_breakdown:
            breakdown = dict(order.fare_breakdown)
        else:
            actual = order.actual_distance_km if order.actual_distance_km is not None else order.distance_km
            breakdown = compute_adjusted_fare(order.distance_km, order.price, actual).to_dict()
        if order.adjusted_price is not None:
            breakdown["adjusted_price"] = order.adjusted_price
        breakdown["order_id"] = order.id
        return breakdown

    # Evidence and feedback

    def add_proof(
        self,
        order_id: int,
        actor: Actor,
        url: str,
        proof_type: Union[ProofType, str] = ProofType.OTHER,
        note: Optional[str] = None
    ) -> OrderProof:
        order = self._get(order_id)
        if not self._parties(order, actor) & {ADMIN, ASSIGNED_DRIVER}:
            raise ForbiddenError("Only an admin or the assigned driver can add proofs")
        if not url or not url.strip():
            raise ValidationError("Proof url is required")
        try:
            kind = ProofType(proof_type)
        except ValueError:
            kind = ProofType.OTHER

        proof = OrderProof(url=url.strip(), proof_type=kind, submitted_by=actor.label, note=note)
        order.proofs.append(proof)
        self.db.commit()
        self.db.refresh(proof)

        self._log_activity(actor, "proof_added", f"{kind.value} proof {proof.url}", order.id)
        return proof

    def rate_order(self, order_id: int, actor: Actor, rating: int, review: Optional[str] = None) -> Order:
        order = self._get(order_id)
        if OWNER not in self._parties(order, actor):
            raise ForbiddenError("Only the customer who placed the order can rate it")
        if order.status != OrderStatus.DELIVERED:
            raise ValidationError("Only delivered orders can be rated")
        if order.rating is not None:
            raise ValidationError("Order has already been rated")
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5")

        order.rating = rating
        order.review = review
        self._commit(order)
        return order

    def tracking(self, order_id: int, actor: Actor) -> dict:
        order = self.get_order(order_id, actor)
        driver = order.driver
        driver_location = None
        driver_basic = None
        if driver is not None:
            if driver.has_location:
                driver_location = {
                    "lat": driver.latitude,
                    "lng": driver.longitude,
                    "last_seen_at": driver.last_seen_at.isoformat() if driver.last_seen_at else None,
                }
            driver_basic = {
                "id": driver.id,
                "name": driver.full_name,
                "vehicle_type": driver.vehicle_type.value if driver.vehicle_type else None,
                "vehicle_number": driver.vehicle_number,
                "is_online": driver.is_online,
            }
        return {
            "order_id": order.id,
            "status": order.status.value,
            "is_active": order.status in ACTIVE_STATUSES,
            "timeline": [
                {"status": h.status.value, "by": h.actor_id, "note": h.note, "at": h.created_at.isoformat()}
                for h in order.status_history
            ],
            "driver_location": driver_location,
            "driver": driver_basic,
        }

    # Internals

    def _history_row(self, status: OrderStatus, actor: Actor, note: Optional[str] = None) -> OrderStatusHistory:
        return OrderStatusHistory(
            status=status,
            actor_id=actor.label,
            actor_role=actor.role.value,
            note=note,
            created_at=datetime.utcnow(),
        )

    def _apply_fare(self, order: Order, fare: FareBreakdown):
        order.actual_distance_km = fare.actual_distance_km
        order.adjusted_price = fare.adjusted_price
        order.fare_breakdown = fare.to_dict()

    def _commit(self, order: Order):
        order_id = order.id
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"Order {order_id}: concurrent update lost the race")
            raise ConflictError(f"Order {order_id} was changed by another request; reload and retry")
        self.db.refresh(order)

    def _after_transition(self, order: Order, previous: OrderStatus, actor: Actor):
        target = order.status
        self._log_activity(actor, f"order_{target.value}", f"Status changed from {previous.value} to {target.value}", order.id)

        self._publish(order_topic(order.id), "order-status", order_event_payload(order))

        if target == OrderStatus.ASSIGNED:
            self._publish(driver_topic(order.driver_id), "order-assigned", assignment_payload(order))
            log_info(
                f"Order {order.id} assigned to driver {order.driver_id}",
                category=LogCategory.ASSIGNMENT,
                details={"order_id": order.id, "driver_id": order.driver_id, "by": actor.label},
                user_id=actor.user_id,
                db=self.db,
            )
            self._notify("order_assigned", order)
        elif target == OrderStatus.DELIVERED:
            self._notify("order_delivered", order)
        elif target == OrderStatus.CANCELLED:
            if order.driver_id is not None:
                self._publish(driver_topic(order.driver_id), "order-cancelled", order_event_payload(order))
            self._notify("order_cancelled", order)

    def _publish(self, topic: str, event: str, data: dict):
        if self.hub is None:
            return
        try:
            self.hub.publish(topic, event, data)
        except Exception as e:
            logger.error(f"Failed to publish {event} on {topic}: {e}")

    def _notify(self, hook: str, order: Order):
        if self.notifier is None:
            return
        try:
            getattr(self.notifier, hook)(order)
        except Exception as e:
            logger.warning(f"Notifier {hook} failed for order {order.id}: {e}")
            self.db.rollback()

    def _log_activity(self, actor: Actor, action: str, description: str, order_id: int):
        DatabaseLogger.log_user_activity(
            user_id=actor.user_id,
            action=action,
            description=description,
            entity_type="order",
            entity_id=order_id,
            db=self.db,
        )
