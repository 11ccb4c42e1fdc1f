"""
Report ingestion.

A submission from the mobile app is stored as one report header, one row per
detection, and one aggregation merge per detection, all inside a single
transaction: either everything lands or nothing does.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from auth import Principal
from database import transaction
from exceptions import ConflictError, NotFoundError
from models import PotholeDetection, Report, RoadAnomaly, User, utcnow
from schemas import (
    DetectionKind,
    PotholeEntry,
    ReportStatus,
    ReportSubmission,
    RoadAnomalyEntry,
    SubmissionResult,
)
from services import aggregation

logger = logging.getLogger(__name__)

# Health score penalty model
MAX_HEALTH_SCORE = 100
POTHOLE_PENALTY = 15
ANOMALY_PENALTY = 5


def compute_health_score(pothole_count: int, anomaly_count: int) -> int:
    """
    Road health for a report: 100 minus 15 per pothole and 5 per patchy stretch,
    never below zero.
    """
    penalty = POTHOLE_PENALTY * pothole_count + ANOMALY_PENALTY * anomaly_count
    return max(0, MAX_HEALTH_SCORE - penalty)


def partition_detections(
    submission: ReportSubmission,
) -> Tuple[List[PotholeEntry], List[RoadAnomalyEntry]]:
    """Split a submission's detections into potholes and road anomalies."""
    potholes = [d for d in submission.anomalies if isinstance(d, PotholeEntry)]
    anomalies = [d for d in submission.anomalies if isinstance(d, RoadAnomalyEntry)]
    return potholes, anomalies


def resolve_owner(db: Session, principal: Optional[Principal], device_id: str) -> Optional[int]:
    """
    Owning user of a report: the authenticated caller if their user still
    exists, otherwise the user registered with this device. Anonymous reports
    have no owner.
    """
    if principal is not None:
        if db.query(User.id).filter(User.id == principal.id).first() is not None:
            return principal.id
        logger.warning("Token user %s no longer exists; resolving owner by device", principal.id)
    user = db.query(User).filter(User.device_id == device_id).first()
    return user.id if user else None


def _report_exists(db: Session, report_id: str) -> bool:
    return db.query(Report.id).filter(Report.report_id == report_id).first() is not None


def submit_report(
    db: Session, submission: ReportSubmission, principal: Optional[Principal] = None
) -> SubmissionResult:
    """
    Persist a report batch and merge its detections into the hotspot grid.

    Args:
        db: SQLAlchemy database session
        submission: Validated submission payload
        principal: Authenticated caller, None for anonymous device reports

    Returns:
        Identifiers, counts, health score and status of the stored report

    Raises:
        ConflictError: If the report_id was already submitted
        ValidationError: If a detection has unusable coordinates
        StorageError: If any write fails; nothing from this submission is kept
    """
    potholes, anomalies = partition_detections(submission)
    health_score = compute_health_score(len(potholes), len(anomalies))

    with transaction(db, "submit_report", report_id=submission.report_id):
        if _report_exists(db, submission.report_id):
            raise ConflictError("Duplicate report_id")

        report = Report(
            report_id=submission.report_id,
            user_id=resolve_owner(db, principal, submission.device_id),
            device_id=submission.device_id,
            reported_at=submission.reported_at or utcnow(),
            total_potholes=len(potholes),
            total_patchy_roads=len(anomalies),
            health_score=health_score,
            status=ReportStatus.pending.value,
        )
        try:
            with db.begin_nested():
                db.add(report)
                db.flush()
        except IntegrityError as exc:
            # Lost a race with an identical submission; any other violation is a storage failure
            if _report_exists(db, submission.report_id):
                raise ConflictError("Duplicate report_id") from exc
            raise

        for pothole in potholes:
            db.add(PotholeDetection(
                report_id=report.id,
                location_id=pothole.location_id,
                latitude=pothole.latitude,
                longitude=pothole.longitude,
                severity=pothole.severity.value,
                z_axis_acceleration=pothole.z_axis_acceleration,
                speed_kmh=pothole.speed_kmh,
                road_type=pothole.road_type,
                timestamp=pothole.timestamp or utcnow(),
                synced=True,
            ))
            aggregation.merge_detection(
                db, DetectionKind.pothole, pothole.latitude, pothole.longitude, pothole.severity
            )

        for anomaly in anomalies:
            db.add(RoadAnomaly(
                report_id=report.id,
                location_id=anomaly.location_id,
                start_latitude=anomaly.start_latitude,
                start_longitude=anomaly.start_longitude,
                end_latitude=anomaly.end_latitude,
                end_longitude=anomaly.end_longitude,
                severity=anomaly.severity.value,
                start_timestamp=anomaly.start_timestamp or utcnow(),
                end_timestamp=anomaly.end_timestamp,
                duration_seconds=anomaly.duration_seconds,
            ))
            # Linear anomalies are placed on the grid by their start point only
            aggregation.merge_detection(
                db, DetectionKind.patchy, anomaly.start_latitude, anomaly.start_longitude, anomaly.severity
            )

        db.flush()
        db_id = report.id

    logger.info(
        "Stored report %s (id=%s): %d potholes, %d anomalies, health %d",
        submission.report_id, db_id, len(potholes), len(anomalies), health_score,
    )
    return SubmissionResult(
        report_id=submission.report_id,
        db_id=db_id,
        total_potholes=len(potholes),
        total_patchy=len(anomalies),
        health_score=health_score,
        status=ReportStatus.pending,
    )


def get_report(db: Session, report_id: str) -> Report:
    """
    Fetch a report by its external identifier together with its detections.

    Raises:
        NotFoundError: If no such report exists
    """
    report = (
        db.query(Report)
        .options(selectinload(Report.potholes), selectinload(Report.road_anomalies))
        .filter(Report.report_id == report_id)
        .first()
    )
    if report is None:
        raise NotFoundError(f"Report {report_id} not found", message="Report not found")
    return report


def update_report_status(db: Session, report_id: str, status: ReportStatus) -> ReportStatus:
    """
    Set a report's status. Any member of ReportStatus is accepted regardless
    of the current value.

    Raises:
        NotFoundError: If no such report exists
    """
    with transaction(db, "update_report_status", report_id=report_id):
        report = db.query(Report).filter(Report.report_id == report_id).first()
        if report is None:
            raise NotFoundError(f"Report {report_id} not found", message="Report not found")
        report.status = status.value

    logger.info("Report %s status set to %s", report_id, status.value)
    return status
