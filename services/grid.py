"""
Spatial grid keys for hotspot aggregation.

Coordinates are rounded to 4 decimal places (roughly 11 meters at the
equator) and joined into a string key. Every detection whose rounded
coordinates match lands in the same aggregated location.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Tuple

from exceptions import ValidationError

GRID_PRECISION = Decimal("0.0001")
GRID_SEPARATOR = "_"


def round_coordinate(value: Any, name: str = "coordinate") -> Decimal:
    """
    Round a coordinate to grid precision, half away from zero.

    The value is read through its decimal text, so 12.34565 and "12.34565"
    give the same result. Negative zero is folded into zero.

    Raises:
        ValidationError: If the value is missing, not numeric or not finite
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{name} is required and must be numeric")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{name} must be numeric, got {value!r}") from None
    if not number.is_finite():
        raise ValidationError(f"{name} must be a finite number, got {value!r}")

    rounded = number.quantize(GRID_PRECISION, rounding=ROUND_HALF_UP)
    if rounded.is_zero():
        rounded = rounded.copy_abs()
    return rounded


def grid_key(latitude: Any, longitude: Any) -> str:
    """
    Build the grid identifier for a location.

    Args:
        latitude: Latitude as float, int, Decimal or numeric string
        longitude: Longitude as float, int, Decimal or numeric string

    Returns:
        Key such as "13.0827_80.2707"
    """
    lat = round_coordinate(latitude, "latitude")
    lng = round_coordinate(longitude, "longitude")
    return f"{lat}{GRID_SEPARATOR}{lng}"


def grid_center(latitude: Any, longitude: Any) -> Tuple[float, float]:
    """Representative point of the grid cell a location falls in."""
    return (
        float(round_coordinate(latitude, "latitude")),
        float(round_coordinate(longitude, "longitude")),
    )
