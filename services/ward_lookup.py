"""
Ward lookup for tagging hotspots with the municipal ward they fall in.
Uses shapely to perform point-in-polygon checks against ward boundaries
loaded from a GeoJSON file (WARDS_GEOJSON_PATH).
"""

import json
import logging
from functools import lru_cache
from typing import Dict, List, Optional

from shapely.geometry import Point, shape

from config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def load_wards(path: str) -> List[Dict]:
    """
    Load and cache ward polygons from a GeoJSON file.

    A missing or unreadable file gives an empty list, so hotspots are simply
    left without a ward.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            geojson_data = json.load(f)
    except FileNotFoundError:
        logger.warning("Ward GeoJSON file not found at %s; wards will not be tagged", path)
        return []
    except (OSError, ValueError) as exc:
        logger.warning("Could not read ward GeoJSON %s: %s", path, exc)
        return []

    wards = []
    for feature in geojson_data.get("features", []):
        geometry = feature.get("geometry")
        if not geometry:
            continue
        wards.append({"properties": feature.get("properties") or {}, "geometry": shape(geometry)})
    logger.info("Loaded %d ward boundaries from %s", len(wards), path)
    return wards


def get_ward_name(latitude: float, longitude: float, path: Optional[str] = None) -> Optional[str]:
    """
    Name of the ward containing a point.

    Args:
        latitude: Location latitude
        longitude: Location longitude
        path: GeoJSON file to use instead of the configured one

    Returns:
        The ward's "ward_name" (or "name") property, None outside every ward
    """
    point = Point(longitude, latitude)  # shapely uses (lon, lat) order
    for ward in load_wards(path or settings.wards_geojson_path):
        if ward["geometry"].contains(point):
            props = ward["properties"]
            return props.get("ward_name") or props.get("name")
    return None
