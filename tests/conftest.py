import pytest
from sqlalchemy.orm import sessionmaker

from database import Base, build_engine
import models  # noqa: F401
from models import Actor, ActorRole, VehicleType
from services.driver_service import DriverService
from services.geo_index import GeoIndex
from services.order_lifecycle import OrderLifecycle
from services.realtime_hub import RealtimeHub

# Pickup point used by most scenarios (Chennai)
PICKUP = (13.06, 80.21)
DROPOFF = (13.04, 80.23)
# Roughly 1 km of latitude
KM_LAT = 1 / 111.195

class FakeConnection:
    """Hub connection that records what it is sent"""

    def __init__(self, fail: bool = False):
        self.messages = []
        self.fail = fail

    def send(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.messages.append(message)

    def events(self, event=None):
        return [m for m in self.messages if event is None or m["event"] == event]

class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def _record(self, hook, order):
        if self.fail:
            raise RuntimeError("notification backend down")
        self.calls.append((hook, order.id))

    def order_assigned(self, order):
        self._record("order_assigned", order)

    def order_delivered(self, order):
        self._record("order_delivered", order)

    def order_cancelled(self, order):
        self._record("order_cancelled", order)

@pytest.fixture
def engine(tmp_path):
    # A file database so separate sessions really are separate connections
    engine = build_engine(f"sqlite:///{tmp_path / 'dispatch.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()

@pytest.fixture
def hub():
    return RealtimeHub()

@pytest.fixture
def geo_index():
    return GeoIndex()

@pytest.fixture
def notifier():
    return RecordingNotifier()

@pytest.fixture
def lifecycle(db, hub, notifier):
    return OrderLifecycle(db, hub, notifier)

@pytest.fixture
def admin():
    return Actor(role=ActorRole.ADMIN, user_id=1)

@pytest.fixture
def customer():
    return Actor(role=ActorRole.CUSTOMER, user_id=10)

@pytest.fixture
def other_customer():
    return Actor(role=ActorRole.CUSTOMER, user_id=11)

@pytest.fixture
def driver_actor():
    return Actor(role=ActorRole.DRIVER, user_id=20)

@pytest.fixture
def other_driver_actor():
    return Actor(role=ActorRole.DRIVER, user_id=21)

@pytest.fixture
def make_driver(db, geo_index):
    """Create a driver profile, optionally positioned, online and approved"""
    def _make(user_id, lat=None, lng=None, vehicle_type=VehicleType.TWO_WHEELER, online=True, active=True, capacity_kg=50):
        service = DriverService(db, geo_index)
        driver = service.upsert_profile(user_id, vehicle_type=vehicle_type, capacity_kg=capacity_kg)
        if lat is not None:
            service.update_location(user_id, lat, lng)
        if online:
            service.set_online(user_id, True)
        if active:
            service.set_active(driver.id, True)
        db.refresh(driver)
        return driver
    return _make

@pytest.fixture
def make_order(lifecycle, customer):
    def _make(actor=None, **overrides):
        params = dict(
            vehicle_type=VehicleType.TWO_WHEELER,
            from_address="12 Anna Salai, Chennai",
            from_latitude=PICKUP[0],
            from_longitude=PICKUP[1],
            to_address="45 Usman Road, T Nagar",
            to_latitude=DROPOFF[0],
            to_longitude=DROPOFF[1],
            distance_km=5,
            price=200,
        )
        params.update(overrides)
        return lifecycle.create_order(actor or customer, **params)
    return _make
