"""
Distance utilities using the Haversine formula and OSRM routing
"""
import math
import httpx
from typing import Optional, Tuple
import logging

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371

# OSRM tends to underestimate road distance on local roads
DISTANCE_CORRECTION_FACTOR = 1.10

def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth
    using the Haversine formula (straight-line distance)

    Args:
        lat1, lon1: First point coordinates (in degrees)
        lat2, lon2: Second point coordinates (in degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lon1_rad = math.radians(lon1)
    lat2_rad = math.radians(lat2)
    lon2_rad = math.radians(lon2)

    dlat = lat2_rad - lat1_rad
    dlon = lon2_rad - lon1_rad

    a = math.sin(dlat / 2)**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2)**2
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    return c * EARTH_RADIUS_KM

def is_valid_coordinate(latitude: Optional[float], longitude: Optional[float]) -> bool:
    """True when both values are present and inside WGS84 bounds"""
    if latitude is None or longitude is None:
        return False
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    return -90 <= latitude <= 90 and -180 <= longitude <= 180

def get_road_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    base_url: str,
    timeout: float = 5.0
) -> Optional[float]:
    """
    Get road distance using the OSRM routing API.

    Returns:
        Distance in kilometers, or None on any failure
    """
    try:
        url = f"{base_url}/route/v1/driving/{lon1},{lat1};{lon2},{lat2}"
        params = {
            "overview": "false",
            "annotations": "false"
        }

        with httpx.Client(timeout=timeout) as client:
            response = client.get(url, params=params)

            if response.status_code == 200:
                data = response.json()

                if data.get("code") == "Ok" and data.get("routes"):
                    distance_meters = data["routes"][0].get("distance", 0)
                    distance_km = (distance_meters / 1000) * DISTANCE_CORRECTION_FACTOR
                    logger.debug(f"OSRM route (corrected): {distance_km:.2f} km")
                    return distance_km
                logger.warning(f"OSRM returned no routes: {data.get('code')}")
                return None
            logger.warning(f"OSRM request failed with status {response.status_code}")
            return None

    except httpx.TimeoutException:
        logger.warning("OSRM request timed out")
        return None
    except httpx.HTTPError as e:
        logger.error(f"OSRM request error: {str(e)}")
        return None

def estimate_trip_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    use_road_distance: bool = False,
    base_url: str = "https://router.project-osrm.org",
    timeout: float = 5.0
) -> Tuple[float, bool]:
    """
    Estimate the planned distance of a trip.
    Uses OSRM when enabled, falls back to Haversine.

    Returns:
        Tuple of (distance_km rounded to 3 places, is_road_distance)
    """
    if use_road_distance:
        road_distance = get_road_distance(lat1, lon1, lat2, lon2, base_url=base_url, timeout=timeout)
        if road_distance is not None:
            return round(road_distance, 3), True

    return round(haversine_distance(lat1, lon1, lat2, lon2), 3), False

def format_distance(distance_km: float) -> str:
    """Format distance for display"""
    if distance_km < 1:
        return f"{int(distance_km * 1000)} m"
    return f"{distance_km:.2f} km"
