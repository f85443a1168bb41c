from datetime import datetime, timedelta

from models import VehicleType
from services.geo_index import DriverPosition, GeoIndex
from utils.distance import haversine_distance

from conftest import KM_LAT, PICKUP

def _eligible(index, driver_id, lat, lng, vehicle_type=VehicleType.TWO_WHEELER, capacity_kg=50):
    index.set_vehicle(driver_id, vehicle_type, capacity_kg)
    index.set_availability(driver_id, is_online=True, is_active=True)
    index.upsert_location(driver_id, lat, lng)

def test_haversine_matches_known_distance():
    # Chennai Central to Chennai airport, about 14.6 km
    assert abs(haversine_distance(13.0827, 80.2707, 12.9941, 80.1709) - 14.6) < 0.3
    assert haversine_distance(*PICKUP, *PICKUP) == 0

def test_nearest_first_and_ties_by_driver_id():
    index = GeoIndex()
    lat, lng = PICKUP
    _eligible(index, 7, lat + 3 * KM_LAT, lng)
    _eligible(index, 5, lat + 1 * KM_LAT, lng)
    _eligible(index, 3, lat + 1 * KM_LAT, lng)
    _eligible(index, 9, lat + 2 * KM_LAT, lng)

    result = index.find_nearest(lat, lng, limit=10)
    assert [r.driver_id for r in result] == [3, 5, 9, 7]
    assert abs(result[0].distance_meters - 1000) < 5

def test_filters_offline_inactive_and_wrong_vehicle():
    index = GeoIndex()
    lat, lng = PICKUP
    _eligible(index, 1, lat + KM_LAT, lng)
    _eligible(index, 2, lat + KM_LAT, lng, vehicle_type=VehicleType.HEAVY_TRUCK)
    _eligible(index, 3, lat + KM_LAT, lng)
    index.set_availability(3, is_online=False)
    _eligible(index, 4, lat + KM_LAT, lng)
    index.set_availability(4, is_active=False)

    result = index.find_nearest(lat, lng, vehicle_type="two-wheeler", limit=10)
    assert [r.driver_id for r in result] == [1]

    result = index.find_nearest(lat, lng, limit=10)
    assert [r.driver_id for r in result] == [1, 2]

def test_radius_limit_and_capacity():
    index = GeoIndex()
    lat, lng = PICKUP
    _eligible(index, 1, lat + 2 * KM_LAT, lng, capacity_kg=20)
    _eligible(index, 2, lat + 5 * KM_LAT, lng, capacity_kg=200)
    _eligible(index, 3, lat + 20 * KM_LAT, lng, capacity_kg=200)

    assert [r.driver_id for r in index.find_nearest(lat, lng, limit=10)] == [1, 2]
    assert [r.driver_id for r in index.find_nearest(lat, lng, max_distance_meters=3000, limit=10)] == [1]
    assert [r.driver_id for r in index.find_nearest(lat, lng, limit=10, min_capacity_kg=100)] == [2]
    assert [r.driver_id for r in index.find_nearest(lat, lng, limit=1)] == [1]
    assert index.find_nearest(lat, lng, limit=0) == []

def test_unpositioned_driver_is_never_returned():
    index = GeoIndex()
    index.set_vehicle(1, VehicleType.TWO_WHEELER)
    index.set_availability(1, is_online=True, is_active=True)
    assert index.find_nearest(*PICKUP) == []

def test_empty_index_returns_empty_list():
    assert GeoIndex().find_nearest(*PICKUP) == []

def test_location_update_keeps_flags():
    index = GeoIndex()
    _eligible(index, 1, *PICKUP)
    index.upsert_location(1, 13.1, 80.3)
    position = index.get(1)
    assert (position.latitude, position.longitude) == (13.1, 80.3)
    assert position.is_online and position.is_active
    assert position.vehicle_type == VehicleType.TWO_WHEELER

def test_stale_online_drivers():
    index = GeoIndex()
    now = datetime(2024, 1, 1, 12, 0, 0)
    index.load([
        DriverPosition(driver_id=1, is_online=True, last_seen_at=now - timedelta(seconds=90)),
        DriverPosition(driver_id=2, is_online=True, last_seen_at=now - timedelta(seconds=10)),
        DriverPosition(driver_id=3, is_online=False, last_seen_at=now - timedelta(seconds=900)),
        DriverPosition(driver_id=4, is_online=True),
    ])
    assert index.stale_online_drivers(now - timedelta(seconds=60)) == [1, 4]

def test_load_replaces_working_set():
    index = GeoIndex()
    _eligible(index, 1, *PICKUP)
    assert index.load([DriverPosition(driver_id=2)]) == 1
    assert index.get(1) is None
    assert len(index) == 1

def test_removed_driver_is_not_matched():
    index = GeoIndex()
    _eligible(index, 1, *PICKUP)
    index.remove(1)
    index.remove(1)
    assert index.get(1) is None
    assert index.find_nearest(*PICKUP, vehicle_type=VehicleType.TWO_WHEELER) == []
