"""
OpenStreetMap lookup service for naming hotspots.
Uses the Overpass API to find the nearest named road around a grid cell.
"""

import logging
from typing import Dict, Optional

import httpx
from sqlalchemy.orm import Session

from config import settings
from database import transaction
from exceptions import NotFoundError
from models import AggregatedLocation

logger = logging.getLogger(__name__)

UNKNOWN_ROAD = "Unknown"

# Overpass requests are slow; keep the timeout generous but bounded
OVERPASS_TIMEOUT_S = 15.0


def _build_query(latitude: float, longitude: float, radius_m: int) -> str:
    return f"""
    [out:json][timeout:10];
    (
      way["highway"](around:{radius_m},{latitude},{longitude});
    );
    out tags;
    """


def _parse_road_name(data: Dict) -> str:
    """
    Pick a road name from an Overpass response.

    Named ways win over unnamed ones; an unnamed highway gives "Unnamed Road".
    """
    unnamed = False
    for element in data.get("elements", []):
        if element.get("type") != "way":
            continue
        tags = element.get("tags") or {}
        if "highway" not in tags:
            continue
        if tags.get("name"):
            return tags["name"]
        unnamed = True
    return "Unnamed Road" if unnamed else UNKNOWN_ROAD


async def get_road_name(
    latitude: float, longitude: float, client: Optional[httpx.AsyncClient] = None
) -> str:
    """
    Fetch the name of the road nearest to a coordinate.

    Args:
        latitude: Latitude coordinate
        longitude: Longitude coordinate
        client: Optional shared HTTP client; one is created per call otherwise

    Returns:
        Road name, "Unnamed Road", or "Unknown" when the lookup fails
    """
    query = _build_query(latitude, longitude, settings.road_lookup_radius_m)
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=OVERPASS_TIMEOUT_S) as own_client:
                response = await own_client.post(settings.overpass_api_url, data={"data": query})
        else:
            response = await client.post(settings.overpass_api_url, data={"data": query})
        response.raise_for_status()
        return _parse_road_name(response.json())
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Road lookup failed for (%s, %s): %s", latitude, longitude, exc)
        return UNKNOWN_ROAD


async def refresh_location_road_name(
    db: Session, location_id: int, client: Optional[httpx.AsyncClient] = None
) -> AggregatedLocation:
    """
    Look up and store the road name of a hotspot.

    Raises:
        NotFoundError: If the location does not exist
    """
    location = db.query(AggregatedLocation).filter(AggregatedLocation.id == location_id).first()
    if location is None:
        raise NotFoundError(f"Location {location_id} not found", message="Location not found")
    latitude, longitude = location.latitude, location.longitude
    # Release the read transaction before waiting on the network
    db.rollback()

    road_name = await get_road_name(latitude, longitude, client=client)

    with transaction(db, "refresh_road_name", location_id=location_id):
        location = db.query(AggregatedLocation).filter(AggregatedLocation.id == location_id).first()
        if location is None:
            raise NotFoundError(f"Location {location_id} not found", message="Location not found")
        location.road_name = road_name

    db.refresh(location)
    logger.info("Location %s road name set to %s", location_id, road_name)
    return location
