import pytest

from models import Actor, ActorRole, Order, OrderStatus, OrderStatusHistory, SYSTEM_ACTOR, UserActivityLog
from services.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from services.order_lifecycle import OrderLifecycle, TRANSITIONS, allowed_targets

from conftest import FakeConnection, RecordingNotifier

def _history(order):
    return [h.status for h in order.status_history]

def _deliver(lifecycle, order, driver_actor, admin, driver_id, actual=None):
    lifecycle.assign_driver(order.id, driver_id, admin)
    lifecycle.transition(order.id, "accepted", driver_actor)
    lifecycle.transition(order.id, "picked_up", driver_actor)
    lifecycle.transition(order.id, "in_transit", driver_actor, actual_distance_km=actual)
    return lifecycle.transition(order.id, "delivered", driver_actor)

DRIVER_PATH = [OrderStatus.ASSIGNED, OrderStatus.ACCEPTED, OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT]
OPEN_STATUSES = [OrderStatus.CREATED] + DRIVER_PATH
PAIRS_OUTSIDE_TABLE = [
    (current, target)
    for current in OPEN_STATUSES
    for target in OrderStatus
    if (current, target) not in TRANSITIONS
]

def _advance(lifecycle, order, status, driver_actor, admin, driver_id):
    """Walk a fresh order along the delivery path until it reaches status"""
    if status == OrderStatus.CREATED:
        return
    lifecycle.assign_driver(order.id, driver_id, admin)
    for step in DRIVER_PATH[1:DRIVER_PATH.index(status) + 1]:
        lifecycle.transition(order.id, step, driver_actor)

class TestCreate:
    def test_customer_creates_order_with_history(self, make_order, customer):
        order = make_order()
        assert order.status == OrderStatus.CREATED
        assert order.customer_id == customer.user_id
        assert order.driver_id is None
        assert order.version == 1
        assert _history(order) == [OrderStatus.CREATED]
        assert order.status_history[0].actor_id == "10"
        assert order.status_history[0].actor_role == "customer"

    def test_price_and_distance_are_filled_in(self, make_order):
        order = make_order(distance_km=None, price=None)
        # about 3.1 km between the two points; two-wheeler quote
        assert 3.0 < order.distance_km < 3.3
        assert order.price == pytest.approx(150 + 10 * (order.distance_km - 2), abs=0.01)

    def test_address_only_endpoints_are_accepted(self, make_order):
        order = make_order(from_latitude=None, from_longitude=None, to_latitude=None, to_longitude=None, distance_km=None, price=None)
        assert order.distance_km == 0
        assert order.price == 150

    def test_admin_must_name_the_customer(self, make_order, admin):
        with pytest.raises(ValidationError):
            make_order(actor=admin)
        order = make_order(actor=admin, customer_id=42)
        assert order.customer_id == 42

    def test_drivers_cannot_create_orders(self, make_order, driver_actor):
        with pytest.raises(ForbiddenError):
            make_order(actor=driver_actor)

    @pytest.mark.parametrize("overrides", [
        {"vehicle_type": "bicycle"},
        {"from_address": None, "from_latitude": None, "from_longitude": None},
        {"from_latitude": 95.0},
        {"to_longitude": None},
        {"distance_km": -1},
        {"price": -5},
        {"weight_kg": -2},
    ])
    def test_invalid_input_is_rejected(self, make_order, db, overrides):
        with pytest.raises(ValidationError):
            make_order(**overrides)
        assert db.query(Order).count() == 0

class TestTransitions:
    def test_table_has_no_exit_from_terminal_states(self):
        assert allowed_targets(OrderStatus.DELIVERED) == []
        assert allowed_targets(OrderStatus.CANCELLED) == []
        assert all(frm not in (OrderStatus.DELIVERED, OrderStatus.CANCELLED) for frm, _ in TRANSITIONS)

    def test_happy_path(self, lifecycle, make_order, make_driver, driver_actor, admin, hub, notifier):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        watcher = FakeConnection()
        driver_room = FakeConnection()
        hub.subscribe(watcher, f"order:{order.id}")
        hub.subscribe(driver_room, f"driver:{driver.id}")

        order = _deliver(lifecycle, order, driver_actor, admin, driver.id)

        assert order.status == OrderStatus.DELIVERED
        assert order.driver_id == driver.id
        assert _history(order) == [
            OrderStatus.CREATED,
            OrderStatus.ASSIGNED,
            OrderStatus.ACCEPTED,
            OrderStatus.PICKED_UP,
            OrderStatus.IN_TRANSIT,
            OrderStatus.DELIVERED,
        ]
        assert order.version == 6
        assert [m["data"]["status"] for m in watcher.events("order-status")] == [
            "assigned", "accepted", "picked_up", "in_transit", "delivered",
        ]
        assert [m["data"]["orderId"] for m in driver_room.events("order-assigned")] == [order.id]
        assert notifier.calls == [("order_assigned", order.id), ("order_delivered", order.id)]

    def test_unknown_order(self, lifecycle, admin):
        with pytest.raises(NotFoundError):
            lifecycle.transition(999, "cancelled", admin)

    def test_pair_not_in_table_leaves_order_untouched(self, lifecycle, make_order, driver_actor, db):
        order = make_order()
        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.transition(order.id, "picked_up", driver_actor)
        assert "created" in exc.value.detail and "picked_up" in exc.value.detail
        db.refresh(order)
        assert order.status == OrderStatus.CREATED
        assert len(order.status_history) == 1

    def test_terminal_states_are_absorbing(self, lifecycle, make_order, make_driver, driver_actor, admin, customer):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        delivered = _deliver(lifecycle, make_order(), driver_actor, admin, driver.id)
        cancelled = lifecycle.cancel(make_order().id, customer)

        for order in (delivered, cancelled):
            for target in OrderStatus:
                with pytest.raises(InvalidTransitionError):
                    lifecycle.transition(order.id, target, admin)

    @pytest.mark.parametrize("actor_fixture", ["admin", "driver_actor"])
    @pytest.mark.parametrize(
        "current,target",
        PAIRS_OUTSIDE_TABLE,
        ids=[f"{current.value}->{target.value}" for current, target in PAIRS_OUTSIDE_TABLE],
    )
    def test_every_pair_outside_the_table_is_rejected(
        self, request, lifecycle, make_order, make_driver, driver_actor, admin, db, current, target, actor_fixture
    ):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        _advance(lifecycle, order, current, driver_actor, admin, driver.id)
        db.expire_all()
        order = db.get(Order, order.id)
        assert order.status == current
        history_length = len(order.status_history)
        version = order.version

        with pytest.raises(InvalidTransitionError):
            lifecycle.transition(order.id, target, request.getfixturevalue(actor_fixture), actual_distance_km=6, driver_id=driver.id)

        db.expire_all()
        order = db.get(Order, order.id)
        assert order.status == current
        assert len(order.status_history) == history_length
        assert order.version == version
        assert order.actual_distance_km is None

    def test_unknown_status_is_a_validation_error(self, lifecycle, make_order, admin):
        with pytest.raises(ValidationError):
            lifecycle.transition(make_order().id, "teleported", admin)

    def test_only_admin_or_system_assigns(self, lifecycle, make_order, make_driver, driver_actor, customer):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        with pytest.raises(ForbiddenError):
            lifecycle.assign_driver(order.id, driver.id, customer)
        with pytest.raises(ForbiddenError):
            lifecycle.assign_driver(order.id, driver.id, driver_actor)
        order = lifecycle.assign_driver(order.id, driver.id, SYSTEM_ACTOR)
        assert order.status_history[-1].actor_id == "system"

    def test_assign_requires_existing_driver(self, lifecycle, make_order, admin):
        order = make_order()
        with pytest.raises(ValidationError):
            lifecycle.transition(order.id, "assigned", admin)
        with pytest.raises(NotFoundError):
            lifecycle.assign_driver(order.id, 12345, admin)

    def test_only_the_assigned_driver_progresses(self, lifecycle, make_order, make_driver, driver_actor, other_driver_actor, admin):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        make_driver(other_driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        lifecycle.assign_driver(order.id, driver.id, admin)

        with pytest.raises(ForbiddenError):
            lifecycle.transition(order.id, "accepted", other_driver_actor)
        with pytest.raises(ForbiddenError):
            lifecycle.transition(order.id, "accepted", admin)
        assert lifecycle.transition(order.id, "accepted", driver_actor).status == OrderStatus.ACCEPTED

    def test_customer_cancels_only_before_acceptance(self, lifecycle, make_order, make_driver, driver_actor, admin, customer, other_customer, notifier):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)

        order = make_order()
        with pytest.raises(ForbiddenError):
            lifecycle.cancel(order.id, other_customer)
        lifecycle.assign_driver(order.id, driver.id, admin)
        cancelled = lifecycle.cancel(order.id, customer, reason="changed my mind")
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.status_history[-1].note == "changed my mind"
        assert ("order_cancelled", order.id) in notifier.calls

        order = make_order()
        lifecycle.assign_driver(order.id, driver.id, admin)
        lifecycle.transition(order.id, "accepted", driver_actor)
        with pytest.raises(ForbiddenError):
            lifecycle.cancel(order.id, customer)
        assert lifecycle.cancel(order.id, admin).status == OrderStatus.CANCELLED

    def test_actual_distance_only_on_fare_statuses(self, lifecycle, make_order, make_driver, driver_actor, admin):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        lifecycle.assign_driver(order.id, driver.id, admin)
        with pytest.raises(ValidationError):
            lifecycle.transition(order.id, "accepted", driver_actor, actual_distance_km=7)

    def test_negative_actual_distance_changes_nothing(self, lifecycle, make_order, make_driver, driver_actor, admin, db):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        lifecycle.assign_driver(order.id, driver.id, admin)
        lifecycle.transition(order.id, "accepted", driver_actor)
        lifecycle.transition(order.id, "picked_up", driver_actor)
        with pytest.raises(ValidationError):
            lifecycle.transition(order.id, "in_transit", driver_actor, actual_distance_km=-3)
        db.refresh(order)
        assert order.status == OrderStatus.PICKED_UP
        assert order.adjusted_price is None
        assert len(order.status_history) == 4

    def test_side_effect_failures_do_not_undo_the_transition(self, db, hub, make_order, admin, make_driver, driver_actor):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        broken = FakeConnection(fail=True)
        hub.subscribe(broken, f"order:{order.id}")

        lifecycle = OrderLifecycle(db, hub, RecordingNotifier(fail=True))
        assigned = lifecycle.assign_driver(order.id, driver.id, admin)
        assert assigned.status == OrderStatus.ASSIGNED
        assert hub.subscriber_count(f"order:{order.id}") == 0

        db.expire_all()
        assert db.get(Order, order.id).status == OrderStatus.ASSIGNED

    def test_activity_is_logged(self, lifecycle, make_order, customer, db):
        order = make_order()
        lifecycle.cancel(order.id, customer)
        actions = [row.action for row in db.query(UserActivityLog).filter(UserActivityLog.entity_type == "order", UserActivityLog.entity_id == order.id).order_by(UserActivityLog.id)]
        assert actions == ["order_created", "order_cancelled"]

class TestConcurrency:
    def test_racing_transitions_from_same_state(self, session_factory, hub, make_order, make_driver, driver_actor, admin):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order_id = make_order().id

        first = session_factory()
        second = session_factory()
        try:
            winner = OrderLifecycle(first, hub)
            loser = OrderLifecycle(second, hub)

            # Both requests read the order while it is still 'created'
            winner.get_order(order_id, admin)
            loser.get_order(order_id, admin)

            winner.assign_driver(order_id, driver.id, admin)
            with pytest.raises((ConflictError, InvalidTransitionError)):
                loser.cancel(order_id, admin)
        finally:
            first.close()
            second.close()

        check = session_factory()
        try:
            order = check.get(Order, order_id)
            assert order.status == OrderStatus.ASSIGNED
            assert check.query(OrderStatusHistory).filter(OrderStatusHistory.order_id == order_id).count() == 2
        finally:
            check.close()

class TestFare:
    def test_end_to_end_adjusted_price(self, lifecycle, make_order, make_driver, driver_actor, admin):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = _deliver(lifecycle, make_order(), driver_actor, admin, driver.id, actual=7)
        assert order.actual_distance_km == 7
        assert order.adjusted_price == 280
        assert order.fare_breakdown["extra_charge"] == 80

    def test_set_actual_distance_without_status_change(self, lifecycle, make_order, make_driver, driver_actor, admin, customer, hub):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        lifecycle.assign_driver(order.id, driver.id, admin)
        watcher = FakeConnection()
        hub.subscribe(watcher, f"order:{order.id}")

        with pytest.raises(ForbiddenError):
            lifecycle.set_actual_distance(order.id, 8, customer)
        updated = lifecycle.set_actual_distance(order.id, 8, driver_actor)

        assert updated.status == OrderStatus.ASSIGNED
        assert updated.adjusted_price == 320
        assert len(updated.status_history) == 2
        assert watcher.events("order-fare")[0]["data"]["adjusted_price"] == 320

    def test_cannot_set_actuals_on_cancelled_order(self, lifecycle, make_order, customer, admin):
        order = lifecycle.cancel(make_order().id, customer)
        with pytest.raises(ValidationError):
            lifecycle.set_actual_distance(order.id, 8, admin)

    def test_fare_breakdown_before_actuals(self, lifecycle, make_order, customer, other_customer):
        order = make_order()
        breakdown = lifecycle.get_fare_breakdown(order.id, customer)
        assert breakdown["adjusted_price"] == 200
        assert breakdown["extra_charge"] == 0
        with pytest.raises(ForbiddenError):
            lifecycle.get_fare_breakdown(order.id, other_customer)

class TestVisibilityAndExtras:
    def test_list_orders_is_scoped_by_role(self, lifecycle, make_order, make_driver, driver_actor, other_driver_actor, admin, customer, other_customer):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        mine = make_order()
        theirs = make_order(actor=other_customer)
        lifecycle.assign_driver(theirs.id, driver.id, admin)

        assert {o.id for o in lifecycle.list_orders(admin)} == {mine.id, theirs.id}
        assert [o.id for o in lifecycle.list_orders(customer)] == [mine.id]
        assert [o.id for o in lifecycle.list_orders(driver_actor)] == [theirs.id]
        assert lifecycle.list_orders(other_driver_actor) == []
        assert [o.id for o in lifecycle.list_orders(admin, status="assigned")] == [theirs.id]

    def test_get_order_visibility(self, lifecycle, make_order, other_customer, driver_actor, admin):
        order = make_order()
        assert lifecycle.get_order(order.id, admin).id == order.id
        with pytest.raises(ForbiddenError):
            lifecycle.get_order(order.id, other_customer)
        with pytest.raises(ForbiddenError):
            lifecycle.get_order(order.id, driver_actor)

    def test_proofs_do_not_touch_history(self, lifecycle, make_order, make_driver, driver_actor, admin, customer):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        lifecycle.assign_driver(order.id, driver.id, admin)

        proof = lifecycle.add_proof(order.id, driver_actor, url="https://cdn.example.com/p/1.jpg", proof_type="pickup")
        assert proof.proof_type.value == "pickup"
        assert proof.submitted_by == "20"
        with pytest.raises(ForbiddenError):
            lifecycle.add_proof(order.id, customer, url="https://cdn.example.com/p/2.jpg")
        with pytest.raises(ValidationError):
            lifecycle.add_proof(order.id, driver_actor, url="   ")

        order = lifecycle.get_order(order.id, admin)
        assert len(order.proofs) == 1
        assert len(order.status_history) == 2

    def test_rating_after_delivery(self, lifecycle, make_order, make_driver, driver_actor, admin, customer):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        with pytest.raises(ValidationError):
            lifecycle.rate_order(order.id, customer, 5)

        _deliver(lifecycle, order, driver_actor, admin, driver.id)
        with pytest.raises(ForbiddenError):
            lifecycle.rate_order(order.id, admin, 5)
        with pytest.raises(ValidationError):
            lifecycle.rate_order(order.id, customer, 6)
        rated = lifecycle.rate_order(order.id, customer, 4, "quick")
        assert (rated.rating, rated.review) == (4, "quick")
        with pytest.raises(ValidationError):
            lifecycle.rate_order(order.id, customer, 5)

    def test_tracking_shows_driver_position(self, lifecycle, make_order, make_driver, driver_actor, admin, customer):
        driver = make_driver(driver_actor.user_id, 13.07, 80.21)
        order = make_order()
        assert lifecycle.tracking(order.id, customer)["driver_location"] is None

        lifecycle.assign_driver(order.id, driver.id, admin)
        tracking = lifecycle.tracking(order.id, customer)
        assert tracking["status"] == "assigned"
        assert tracking["is_active"] is True
        assert tracking["driver_location"]["lat"] == 13.07
        assert [t["status"] for t in tracking["timeline"]] == ["created", "assigned"]

def test_system_actor_has_no_user():
    assert SYSTEM_ACTOR.user_id is None
    assert Actor(role=ActorRole.ADMIN, user_id=3).label == "3"
