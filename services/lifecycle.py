"""
Work lifecycle coordination.

Keeps a hotspot's status and the status of its work assignment consistent
through assignment, progress updates, verification and rejection. Every
operation runs as one transaction; batch operations are all-or-nothing.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, FrozenSet, List, Optional, Sequence

from sqlalchemy.orm import Session

from database import transaction
from exceptions import InvalidTransitionError, NotFoundError, ValidationError
from models import AggregatedLocation, Contractor, WorkAssignment, utcnow
from schemas import AssignmentStatus, AssignmentUpdate, LocationStatus
from services.aggregation import CLOSED_ASSIGNMENT_STATUSES

logger = logging.getLogger(__name__)

DEFAULT_VERIFY_NOTE = "Verified from dashboard"
DEFAULT_BATCH_VERIFY_NOTE = "Batch verified from dashboard"

# Assignment statuses a verification closes
VERIFIABLE_ASSIGNMENT_STATUSES = (
    AssignmentStatus.pending_verification.value,
    AssignmentStatus.in_progress.value,
    AssignmentStatus.assigned.value,
)

# Statuses a contractor may set on their own job
CONTRACTOR_JOB_STATUSES = frozenset({AssignmentStatus.in_progress, AssignmentStatus.completed})

_ALL_LOCATION_STATES: FrozenSet[LocationStatus] = frozenset(LocationStatus)
_ALL_ASSIGNMENT_STATES: FrozenSet[AssignmentStatus] = frozenset(AssignmentStatus)

# Open states may move anywhere: admin updates jump between open assignment states
# and the location mirrors them. Only the closed states restrict moves.
LOCATION_TRANSITIONS: Dict[LocationStatus, FrozenSet[LocationStatus]] = {
    LocationStatus.pending: _ALL_LOCATION_STATES,
    LocationStatus.assigned: _ALL_LOCATION_STATES,
    LocationStatus.in_progress: _ALL_LOCATION_STATES,
    LocationStatus.pending_verification: _ALL_LOCATION_STATES,
    LocationStatus.fixed: _ALL_LOCATION_STATES,
    # Reassigning a verified hotspot reopens it for new damage
    LocationStatus.verified: frozenset({LocationStatus.verified, LocationStatus.assigned}),
}

ASSIGNMENT_TRANSITIONS: Dict[AssignmentStatus, FrozenSet[AssignmentStatus]] = {
    AssignmentStatus.assigned: _ALL_ASSIGNMENT_STATES,
    AssignmentStatus.in_progress: _ALL_ASSIGNMENT_STATES,
    AssignmentStatus.pending_verification: _ALL_ASSIGNMENT_STATES,
    AssignmentStatus.completed: frozenset({AssignmentStatus.completed, AssignmentStatus.verified}),
    AssignmentStatus.verified: frozenset({AssignmentStatus.verified}),
}


@dataclass(frozen=True)
class AssignmentOutcome:
    assignment_id: int
    created: bool


@dataclass(frozen=True)
class VerificationOutcome:
    """
    Result of verifying one location. The assignment update is optional:
    a location with no open assignment still verifies, with zero assignments updated.
    """
    location_updated: bool
    assignments_updated: int

    @property
    def assignment_updated(self) -> bool:
        return self.assignments_updated > 0


@dataclass(frozen=True)
class BatchVerificationOutcome:
    locations_updated: int
    assignments_updated: int


@dataclass(frozen=True)
class RejectionOutcome:
    assignment_updated: bool


# ============== Transition checks ==============

def check_location_transition(current: str, target: LocationStatus) -> None:
    """Raise InvalidTransitionError unless a location may move from current to target."""
    allowed = LOCATION_TRANSITIONS.get(LocationStatus(current), frozenset())
    if target not in allowed:
        raise InvalidTransitionError("location", current, target.value)


def check_assignment_transition(current: str, target: AssignmentStatus) -> None:
    """Raise InvalidTransitionError unless an assignment may move from current to target."""
    allowed = ASSIGNMENT_TRANSITIONS.get(AssignmentStatus(current), frozenset())
    if target not in allowed:
        raise InvalidTransitionError("assignment", current, target.value)


def location_status_for(status: AssignmentStatus) -> LocationStatus:
    """Location status implied by an admin-side assignment status change."""
    if status == AssignmentStatus.completed:
        return LocationStatus.pending_verification
    if status == AssignmentStatus.verified:
        return LocationStatus.verified
    return LocationStatus(status.value)


def _set_location_status(location: AggregatedLocation, target: LocationStatus) -> None:
    check_location_transition(location.status, target)
    reopened = location.status == LocationStatus.verified.value and target != LocationStatus.verified
    location.status = target.value
    if target == LocationStatus.verified:
        location.verified_at = utcnow()
    elif reopened:
        location.verified_at = None


def _set_assignment_status(assignment: WorkAssignment, target: AssignmentStatus) -> None:
    check_assignment_transition(assignment.status, target)
    assignment.status = target.value
    if target in (AssignmentStatus.completed, AssignmentStatus.verified):
        assignment.completed_at = utcnow()


# ============== Lookups ==============

def _get_location(db: Session, location_id: int) -> AggregatedLocation:
    location = (
        db.query(AggregatedLocation)
        .filter(AggregatedLocation.id == location_id)
        .with_for_update()
        .first()
    )
    if location is None:
        raise NotFoundError(f"Location {location_id} not found", message="Location not found")
    return location


def _get_active_contractor(db: Session, contractor_id: int) -> Contractor:
    contractor = (
        db.query(Contractor)
        .filter(Contractor.id == contractor_id, Contractor.is_active.is_(True))
        .first()
    )
    if contractor is None:
        raise NotFoundError(
            f"Contractor {contractor_id} not found or inactive", message="Contractor not found or inactive"
        )
    return contractor


def find_open_assignment(db: Session, location_id: int) -> Optional[WorkAssignment]:
    """The single assignment on a location that is neither completed nor verified."""
    return (
        db.query(WorkAssignment)
        .filter(
            WorkAssignment.aggregated_location_id == location_id,
            WorkAssignment.status.notin_(CLOSED_ASSIGNMENT_STATUSES),
        )
        .order_by(WorkAssignment.id.desc())
        .first()
    )


# ============== Assignment ==============

def _assign(
    db: Session,
    location: AggregatedLocation,
    contractor: Contractor,
    due_date: Optional[date],
    notes: Optional[str],
    assigned_by: Optional[int],
) -> AssignmentOutcome:
    _set_location_status(location, LocationStatus.assigned)

    existing = find_open_assignment(db, location.id)
    if existing is not None:
        check_assignment_transition(existing.status, AssignmentStatus.assigned)
        existing.contractor_id = contractor.id
        existing.due_date = due_date
        existing.notes = notes
        existing.status = AssignmentStatus.assigned.value
        db.flush()
        return AssignmentOutcome(assignment_id=existing.id, created=False)

    assignment = WorkAssignment(
        aggregated_location_id=location.id,
        contractor_id=contractor.id,
        assigned_by=assigned_by,
        due_date=due_date,
        notes=notes,
        status=AssignmentStatus.assigned.value,
    )
    db.add(assignment)
    db.flush()
    return AssignmentOutcome(assignment_id=assignment.id, created=True)


def assign_location(
    db: Session,
    location_id: int,
    contractor_id: int,
    due_date: Optional[date] = None,
    notes: Optional[str] = None,
    assigned_by: Optional[int] = None,
) -> AssignmentOutcome:
    """
    Assign a location to a contractor.

    If the location already has an open assignment it is reassigned in
    place (new contractor, due date and notes, status back to "assigned");
    otherwise a new assignment is created. The location becomes "assigned";
    a verified location is reopened and loses its verified_at stamp.

    Raises:
        NotFoundError: If the location does not exist or the contractor is missing or inactive
    """
    with transaction(db, "create_assignment", location_id=location_id, contractor_id=contractor_id):
        location = _get_location(db, location_id)
        contractor = _get_active_contractor(db, contractor_id)
        outcome = _assign(db, location, contractor, due_date, notes, assigned_by)

    logger.info(
        "%s assignment %s: location %s -> contractor %s",
        "Created" if outcome.created else "Updated", outcome.assignment_id, location_id, contractor_id,
    )
    return outcome


def batch_assign(
    db: Session,
    location_ids: Sequence[int],
    contractor_id: int,
    due_date: Optional[date] = None,
    notes: Optional[str] = None,
    assigned_by: Optional[int] = None,
) -> List[int]:
    """
    Assign several locations to one contractor. Any failure leaves every
    location and assignment as it was.

    Returns:
        Assignment ids, in the order of location_ids
    """
    if not location_ids:
        raise ValidationError("locationIds and contractorId are required")

    with transaction(db, "batch_assign", location_ids=list(location_ids), contractor_id=contractor_id):
        contractor = _get_active_contractor(db, contractor_id)
        assignment_ids = [
            _assign(db, _get_location(db, location_id), contractor, due_date, notes, assigned_by).assignment_id
            for location_id in location_ids
        ]

    logger.info("Batch assigned %d locations to contractor %s", len(location_ids), contractor_id)
    return assignment_ids


def update_assignment(db: Session, assignment_id: int, changes: AssignmentUpdate) -> WorkAssignment:
    """
    Apply an admin-side status and/or notes change to an assignment.

    A status change also moves the location: "completed" puts it in
    "pending_verification", "verified" verifies it, anything else is mirrored.
    Only fields present in the request are applied, so notes can be cleared
    with an explicit null.

    Raises:
        ValidationError: If neither status nor notes was supplied
        NotFoundError: If the assignment does not exist
        InvalidTransitionError: If the status change is not allowed
    """
    fields = changes.model_fields_set
    status_given = "status" in fields and changes.status is not None
    if not status_given and "notes" not in fields:
        raise ValidationError("No updates provided")

    with transaction(db, "update_assignment", assignment_id=assignment_id):
        assignment = db.query(WorkAssignment).filter(WorkAssignment.id == assignment_id).first()
        if assignment is None:
            raise NotFoundError(f"Assignment {assignment_id} not found", message="Assignment not found")

        if status_given:
            _set_assignment_status(assignment, changes.status)
            location = _get_location(db, assignment.aggregated_location_id)
            _set_location_status(location, location_status_for(changes.status))
        if "notes" in fields:
            assignment.notes = changes.notes
        db.flush()

    logger.info("Assignment %s updated (status=%s)", assignment_id, assignment.status)
    return assignment


def update_job_status(
    db: Session, user_id: int, assignment_id: int, status: AssignmentStatus, notes: Optional[str] = None
) -> WorkAssignment:
    """
    Contractor-side progress update on one of their own jobs.

    "completed" stamps completed_at and marks the location "fixed"; the admin
    still has to verify it. Notes are appended to the job's existing notes.

    Raises:
        ValidationError: If the status is not one a contractor may set
        NotFoundError: If the user has no contractor profile or the job is not theirs
    """
    if status not in CONTRACTOR_JOB_STATUSES:
        raise ValidationError(f"Invalid status '{status.value}'", message="Invalid status")

    with transaction(db, "update_job_status", assignment_id=assignment_id, user_id=user_id):
        contractor = db.query(Contractor).filter(Contractor.user_id == user_id).first()
        if contractor is None:
            raise NotFoundError(f"No contractor profile for user {user_id}", message="Contractor profile not found")
        job = (
            db.query(WorkAssignment)
            .filter(WorkAssignment.id == assignment_id, WorkAssignment.contractor_id == contractor.id)
            .first()
        )
        if job is None:
            raise NotFoundError(f"Job {assignment_id} not found", message="Job not found")

        _set_assignment_status(job, status)
        location = _get_location(db, job.aggregated_location_id)
        if status == AssignmentStatus.completed:
            _set_location_status(location, LocationStatus.fixed)
        else:
            _set_location_status(location, LocationStatus.in_progress)
        if notes:
            job.notes = f"{job.notes}\n{notes}" if job.notes else notes
        db.flush()

    logger.info("Contractor %s set job %s to %s", contractor.id, assignment_id, status.value)
    return job


# ============== Verification ==============

def _verify(db: Session, location_id: int, note: str) -> VerificationOutcome:
    location = _get_location(db, location_id)
    _set_location_status(location, LocationStatus.verified)
    assignments_updated = (
        db.query(WorkAssignment)
        .filter(
            WorkAssignment.aggregated_location_id == location_id,
            WorkAssignment.status.in_(VERIFIABLE_ASSIGNMENT_STATUSES),
        )
        .update(
            {
                WorkAssignment.status: AssignmentStatus.verified.value,
                WorkAssignment.completed_at: utcnow(),
                WorkAssignment.admin_notes: note,
            },
            synchronize_session=False,
        )
    )
    db.flush()
    return VerificationOutcome(location_updated=True, assignments_updated=assignments_updated)


def verify_location(db: Session, location_id: int, notes: Optional[str] = None) -> VerificationOutcome:
    """
    Verify the repair of a location.

    The location is verified unconditionally. Any assignment on it that is
    assigned, in progress or awaiting verification is closed as verified;
    having none is not an error and shows up as zero assignments updated.

    Raises:
        NotFoundError: If the location does not exist
    """
    with transaction(db, "verify_location", location_id=location_id):
        outcome = _verify(db, location_id, notes or DEFAULT_VERIFY_NOTE)

    logger.info(
        "Verified location %s: location updated=%s, assignments updated=%d",
        location_id, outcome.location_updated, outcome.assignments_updated,
    )
    return outcome


def batch_verify(db: Session, location_ids: Sequence[int], notes: Optional[str] = None) -> BatchVerificationOutcome:
    """
    Verify several locations at once. An unknown id or any storage failure
    rolls back the whole batch.

    Raises:
        ValidationError: If no location ids were given
        NotFoundError: If any location does not exist
    """
    if not location_ids:
        raise ValidationError("locationIds are required")

    note = notes or DEFAULT_BATCH_VERIFY_NOTE
    locations_updated = 0
    assignments_updated = 0
    with transaction(db, "batch_verify", location_ids=list(location_ids)):
        for location_id in location_ids:
            outcome = _verify(db, location_id, note)
            locations_updated += int(outcome.location_updated)
            assignments_updated += outcome.assignments_updated

    logger.info(
        "Batch verified %d locations: locations updated=%d, assignments updated=%d",
        len(location_ids), locations_updated, assignments_updated,
    )
    return BatchVerificationOutcome(locations_updated=locations_updated, assignments_updated=assignments_updated)


def reject_verification(db: Session, location_id: int, reason: Optional[str] = None) -> RejectionOutcome:
    """
    Send work awaiting verification back to the contractor.

    The assignment returns to "in_progress" with the reason as admin note and
    the location returns to "assigned". Nothing changes when the location has
    no assignment awaiting verification.

    Raises:
        NotFoundError: If the location does not exist
    """
    with transaction(db, "reject_verification", location_id=location_id):
        location = _get_location(db, location_id)
        assignment = (
            db.query(WorkAssignment)
            .filter(
                WorkAssignment.aggregated_location_id == location_id,
                WorkAssignment.status == AssignmentStatus.pending_verification.value,
            )
            .first()
        )
        if assignment is None:
            logger.info("No assignment awaiting verification on location %s; nothing to reject", location_id)
            return RejectionOutcome(assignment_updated=False)

        _set_assignment_status(assignment, AssignmentStatus.in_progress)
        assignment.admin_notes = reason
        _set_location_status(location, LocationStatus.assigned)
        db.flush()

    logger.info("Rejected verification of location %s (assignment %s)", location_id, assignment.id)
    return RejectionOutcome(assignment_updated=True)
