"""
Aggregation of detections into the hotspot grid.

Every detection is merged into the aggregated location for its grid cell:
the first detection in a cell creates the row, later ones bump its counters
and raise its highest severity. Functions here never commit; they run inside
the caller's transaction.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from exceptions import ValidationError
from models import AggregatedLocation, Contractor, WorkAssignment, utcnow
from schemas import AssignmentStatus, DetectionKind, LocationStatus
from services.grid import grid_center, grid_key
from services.severity import Severity, max_severity, normalize_severity
from services.ward_lookup import get_ward_name

logger = logging.getLogger(__name__)

# Assignment statuses that no longer count as open work
CLOSED_ASSIGNMENT_STATUSES = (AssignmentStatus.completed.value, AssignmentStatus.verified.value)

MAX_LOCATIONS = 500

BoundingBox = Tuple[float, float, float, float]  # min_lat, max_lat, min_lng, max_lng


def find_location_by_grid_key(db: Session, key: str) -> Optional[AggregatedLocation]:
    """Look up a grid cell, locking the row for the rest of the transaction where supported."""
    return (
        db.query(AggregatedLocation)
        .filter(AggregatedLocation.grid_id == key)
        .with_for_update()
        .first()
    )


def _new_location(
    key: str, latitude: float, longitude: float, kind: DetectionKind, severity: Severity, now: datetime
) -> AggregatedLocation:
    return AggregatedLocation(
        grid_id=key,
        latitude=latitude,
        longitude=longitude,
        ward=get_ward_name(latitude, longitude),
        total_potholes=1 if kind == DetectionKind.pothole else 0,
        total_patchy=1 if kind == DetectionKind.patchy else 0,
        highest_severity=severity.value,
        report_count=1,
        first_reported_at=now,
        last_reported_at=now,
        status=LocationStatus.pending.value,
    )


def _merge_into(location: AggregatedLocation, kind: DetectionKind, severity: Severity, now: datetime) -> None:
    if kind == DetectionKind.pothole:
        location.total_potholes = (location.total_potholes or 0) + 1
    else:
        location.total_patchy = (location.total_patchy or 0) + 1
    location.highest_severity = max_severity(location.highest_severity, severity).value
    location.report_count = (location.report_count or 0) + 1
    location.last_reported_at = now


def merge_detection(
    db: Session,
    kind: DetectionKind,
    latitude: Any,
    longitude: Any,
    severity: Any = None,
) -> AggregatedLocation:
    """
    Merge one detection into the aggregated location of its grid cell.

    The merge is additive: calling it twice for the same detection counts it
    twice. Status is never changed here.

    When two transactions create the same cell concurrently, the loser's
    insert violates the unique grid_id constraint; its savepoint is rolled
    back and the detection is merged into the winner's row instead.

    Args:
        db: Session of the enclosing transaction
        kind: pothole or patchy
        latitude: Detection latitude (representative start point for anomalies)
        longitude: Detection longitude
        severity: Raw severity; missing or unknown values count as Medium

    Returns:
        The created or updated aggregated location (flushed, not committed)

    Raises:
        ValidationError: If the coordinates are missing or not numeric
    """
    key = grid_key(latitude, longitude)
    severity = normalize_severity(severity)
    now = utcnow()

    location = find_location_by_grid_key(db, key)
    if location is None:
        center_lat, center_lng = grid_center(latitude, longitude)
        location = _new_location(key, center_lat, center_lng, kind, severity, now)
        try:
            with db.begin_nested():
                db.add(location)
                db.flush()
            logger.debug("Created grid cell %s (%s, %s)", key, kind.value, severity.value)
            return location
        except IntegrityError:
            logger.info("Grid cell %s was created concurrently; merging as update", key)
            location = find_location_by_grid_key(db, key)
            if location is None:
                raise

    _merge_into(location, kind, severity, now)
    db.flush()
    logger.debug("Merged %s into grid cell %s (report_count=%s)", kind.value, key, location.report_count)
    return location


def _location_row(location: AggregatedLocation, assignment: Optional[WorkAssignment]) -> Dict[str, Any]:
    contractor: Optional[Contractor] = assignment.contractor if assignment else None
    return {
        "id": location.id,
        "grid_id": location.grid_id,
        "latitude": location.latitude,
        "longitude": location.longitude,
        "road_name": location.road_name,
        "ward": location.ward,
        "total_potholes": location.total_potholes,
        "total_patchy": location.total_patchy,
        "highest_severity": location.highest_severity,
        "report_count": location.report_count,
        "first_reported_at": location.first_reported_at,
        "last_reported_at": location.last_reported_at,
        "status": location.status,
        "verified_at": location.verified_at,
        "assignment_id": assignment.id if assignment else None,
        "contractor_id": assignment.contractor_id if assignment else None,
        "assignment_status": assignment.status if assignment else None,
        "due_date": assignment.due_date if assignment else None,
        "assigned_at": assignment.assigned_at if assignment else None,
        "contractor_name": contractor.company_name if contractor else None,
        "contractor_email": contractor.contact_email if contractor else None,
    }


def list_locations(
    db: Session,
    status: Optional[LocationStatus] = None,
    severity: Optional[Severity] = None,
    bbox: Optional[BoundingBox] = None,
    limit: int = MAX_LOCATIONS,
) -> List[Dict[str, Any]]:
    """
    Hotspots for map display, busiest first, each with its open assignment.

    Args:
        db: SQLAlchemy database session
        status: Only locations in this status
        severity: Only locations whose highest severity is this value
        bbox: (min_lat, max_lat, min_lng, max_lng)
        limit: Maximum number of rows

    Returns:
        List of location dictionaries
    """
    query = db.query(AggregatedLocation)
    if status is not None:
        query = query.filter(AggregatedLocation.status == status.value)
    if severity is not None:
        query = query.filter(AggregatedLocation.highest_severity == normalize_severity(severity).value)
    if bbox is not None:
        min_lat, max_lat, min_lng, max_lng = bbox
        if min_lat > max_lat or min_lng > max_lng:
            raise ValidationError("Bounding box minimums must not exceed maximums")
        query = query.filter(
            AggregatedLocation.latitude.between(min_lat, max_lat),
            AggregatedLocation.longitude.between(min_lng, max_lng),
        )
    locations = (
        query.order_by(AggregatedLocation.report_count.desc(), AggregatedLocation.id)
        .limit(limit)
        .all()
    )
    if not locations:
        return []

    open_assignments = (
        db.query(WorkAssignment)
        .options(joinedload(WorkAssignment.contractor))
        .filter(
            WorkAssignment.aggregated_location_id.in_([loc.id for loc in locations]),
            WorkAssignment.status.notin_(CLOSED_ASSIGNMENT_STATUSES),
        )
        .all()
    )
    by_location = {a.aggregated_location_id: a for a in open_assignments}
    return [_location_row(loc, by_location.get(loc.id)) for loc in locations]
