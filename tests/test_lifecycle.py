"""Tests for assignment, progress, verification and rejection of hotspot work."""

from datetime import date

import pytest

from exceptions import InvalidTransitionError, NotFoundError, ValidationError
from models import AggregatedLocation, WorkAssignment
from schemas import AssignmentStatus, AssignmentUpdate, DetectionKind, LocationStatus
from services import aggregation, lifecycle


def _status(db, location_id):
    db.expire_all()
    return db.query(AggregatedLocation).filter(AggregatedLocation.id == location_id).one().status


def _assignment(db, assignment_id):
    db.expire_all()
    return db.query(WorkAssignment).filter(WorkAssignment.id == assignment_id).one()


class TestTransitions:
    def test_verified_location_only_reopens_through_assignment(self):
        lifecycle.check_location_transition("verified", LocationStatus.verified)
        lifecycle.check_location_transition("verified", LocationStatus.assigned)
        for target in (LocationStatus.pending, LocationStatus.in_progress, LocationStatus.fixed):
            with pytest.raises(InvalidTransitionError):
                lifecycle.check_location_transition("verified", target)

    def test_completed_assignment_can_only_be_verified(self):
        lifecycle.check_assignment_transition("completed", AssignmentStatus.verified)
        with pytest.raises(InvalidTransitionError):
            lifecycle.check_assignment_transition("completed", AssignmentStatus.in_progress)

    def test_open_states_move_freely(self):
        lifecycle.check_location_transition("fixed", LocationStatus.assigned)
        lifecycle.check_location_transition("pending", LocationStatus.pending_verification)
        lifecycle.check_assignment_transition("assigned", AssignmentStatus.completed)
        lifecycle.check_assignment_transition("pending_verification", AssignmentStatus.in_progress)

    def test_location_status_for_assignment_status(self):
        assert lifecycle.location_status_for(AssignmentStatus.completed) == LocationStatus.pending_verification
        assert lifecycle.location_status_for(AssignmentStatus.verified) == LocationStatus.verified
        assert lifecycle.location_status_for(AssignmentStatus.in_progress) == LocationStatus.in_progress


class TestAssignLocation:
    def test_creates_assignment(self, db, make_location, make_contractor):
        location = make_location(db)
        contractor = make_contractor(db)

        outcome = lifecycle.assign_location(db, location.id, contractor.id, due_date=date(2026, 11, 1), notes="Deep")

        assert outcome.created
        assignment = _assignment(db, outcome.assignment_id)
        assert assignment.status == "assigned"
        assert assignment.due_date == date(2026, 11, 1)
        assert _status(db, location.id) == "assigned"

    def test_reassignment_updates_open_assignment_in_place(self, db, make_location, make_contractor):
        location = make_location(db)
        first = make_contractor(db, company="First Co")
        second = make_contractor(db, company="Second Co")

        original = lifecycle.assign_location(db, location.id, first.id)
        lifecycle.update_assignment(db, original.assignment_id, AssignmentUpdate(status=AssignmentStatus.in_progress))
        again = lifecycle.assign_location(db, location.id, second.id, notes="Reassigned")

        assert not again.created
        assert again.assignment_id == original.assignment_id
        assert db.query(WorkAssignment).count() == 1
        assignment = _assignment(db, again.assignment_id)
        assert assignment.contractor_id == second.id
        assert assignment.status == "assigned"
        assert assignment.notes == "Reassigned"

    def test_missing_location_or_inactive_contractor(self, db, make_location, make_contractor):
        location = make_location(db)
        inactive = make_contractor(db, is_active=False)

        with pytest.raises(NotFoundError):
            lifecycle.assign_location(db, 999, inactive.id)
        with pytest.raises(NotFoundError):
            lifecycle.assign_location(db, location.id, inactive.id)
        assert db.query(WorkAssignment).count() == 0
        assert _status(db, location.id) == "pending"

    def test_new_damage_on_verified_location_can_be_assigned(self, db, make_contractor):
        contractor = make_contractor(db)
        location_id = aggregation.merge_detection(db, DetectionKind.pothole, 10.0, 20.0, "Low").id
        db.commit()
        lifecycle.verify_location(db, location_id)

        aggregation.merge_detection(db, DetectionKind.pothole, 10.0, 20.0, "High")
        db.commit()
        assert _status(db, location_id) == "verified"

        outcome = lifecycle.assign_location(db, location_id, contractor.id, notes="Damage is back")

        assert outcome.created
        db.expire_all()
        location = db.query(AggregatedLocation).filter(AggregatedLocation.id == location_id).one()
        assert location.status == "assigned"
        assert location.verified_at is None
        assert location.report_count == 2
        assert _assignment(db, outcome.assignment_id).status == "assigned"
        assert db.query(WorkAssignment).count() == 1

    def test_batch_assign_is_all_or_nothing(self, db, make_location, make_contractor):
        a = make_location(db, "10.0000_20.0000")
        contractor = make_contractor(db)

        with pytest.raises(NotFoundError):
            lifecycle.batch_assign(db, [a.id, 999], contractor.id)

        assert db.query(WorkAssignment).count() == 0
        assert _status(db, a.id) == "pending"

    def test_batch_assign(self, db, make_location, make_contractor):
        a = make_location(db, "10.0000_20.0000")
        b = make_location(db, "11.0000_21.0000")
        contractor = make_contractor(db)

        ids = lifecycle.batch_assign(db, [a.id, b.id], contractor.id, notes="Ward 4")

        assert len(ids) == 2
        assert {_status(db, a.id), _status(db, b.id)} == {"assigned"}

    def test_batch_assign_requires_locations(self, db):
        with pytest.raises(ValidationError):
            lifecycle.batch_assign(db, [], 1)


class TestUpdateAssignment:
    @pytest.fixture
    def assigned(self, db, make_location, make_contractor):
        location = make_location(db)
        contractor = make_contractor(db)
        outcome = lifecycle.assign_location(db, location.id, contractor.id, notes="Initial")
        return location.id, outcome.assignment_id

    def test_completed_moves_location_to_pending_verification(self, db, assigned):
        location_id, assignment_id = assigned

        lifecycle.update_assignment(db, assignment_id, AssignmentUpdate(status=AssignmentStatus.completed))

        assert _assignment(db, assignment_id).completed_at is not None
        assert _status(db, location_id) == "pending_verification"

    def test_notes_only_update_keeps_status(self, db, assigned):
        location_id, assignment_id = assigned

        lifecycle.update_assignment(db, assignment_id, AssignmentUpdate(notes="Bring cones"))

        assignment = _assignment(db, assignment_id)
        assert assignment.notes == "Bring cones"
        assert assignment.status == "assigned"

    def test_explicit_null_clears_notes(self, db, assigned):
        _, assignment_id = assigned

        lifecycle.update_assignment(db, assignment_id, AssignmentUpdate.model_validate({"notes": None}))

        assert _assignment(db, assignment_id).notes is None

    def test_empty_update_is_rejected(self, db, assigned):
        _, assignment_id = assigned
        with pytest.raises(ValidationError):
            lifecycle.update_assignment(db, assignment_id, AssignmentUpdate())

    def test_missing_assignment(self, db):
        with pytest.raises(NotFoundError):
            lifecycle.update_assignment(db, 42, AssignmentUpdate(notes="x"))

    def test_verified_assignment_cannot_reopen(self, db, assigned):
        _, assignment_id = assigned
        lifecycle.update_assignment(db, assignment_id, AssignmentUpdate(status=AssignmentStatus.verified))

        with pytest.raises(InvalidTransitionError):
            lifecycle.update_assignment(db, assignment_id, AssignmentUpdate(status=AssignmentStatus.in_progress))


class TestJobStatus:
    def test_contractor_completes_job(self, db, make_location, make_contractor):
        location = make_location(db)
        contractor = make_contractor(db)
        outcome = lifecycle.assign_location(db, location.id, contractor.id, notes="Initial")

        lifecycle.update_job_status(db, contractor.user_id, outcome.assignment_id, AssignmentStatus.in_progress)
        assert _status(db, location.id) == "in_progress"

        lifecycle.update_job_status(
            db, contractor.user_id, outcome.assignment_id, AssignmentStatus.completed, notes="Patched"
        )
        job = _assignment(db, outcome.assignment_id)
        assert job.status == "completed"
        assert job.completed_at is not None
        assert job.notes == "Initial\nPatched"
        assert _status(db, location.id) == "fixed"

    def test_other_contractors_job_is_not_found(self, db, make_location, make_contractor):
        location = make_location(db)
        owner = make_contractor(db, company="Owner Co")
        other = make_contractor(db, company="Other Co")
        outcome = lifecycle.assign_location(db, location.id, owner.id)

        with pytest.raises(NotFoundError):
            lifecycle.update_job_status(db, other.user_id, outcome.assignment_id, AssignmentStatus.completed)

    def test_contractor_cannot_verify(self, db):
        with pytest.raises(ValidationError):
            lifecycle.update_job_status(db, 1, 1, AssignmentStatus.verified)


class TestVerification:
    def test_verify_closes_open_assignment(self, db, make_location, make_contractor):
        location = make_location(db)
        contractor = make_contractor(db)
        outcome = lifecycle.assign_location(db, location.id, contractor.id)

        result = lifecycle.verify_location(db, location.id)

        assert result.location_updated
        assert result.assignment_updated
        assert result.assignments_updated == 1
        assignment = _assignment(db, outcome.assignment_id)
        assert assignment.status == "verified"
        assert assignment.admin_notes == lifecycle.DEFAULT_VERIFY_NOTE
        location = db.query(AggregatedLocation).one()
        assert location.status == "verified"
        assert location.verified_at is not None

    def test_verify_without_assignment(self, db, make_location):
        location = make_location(db)

        result = lifecycle.verify_location(db, location.id, notes="Checked on site")

        assert result.location_updated
        assert not result.assignment_updated
        assert result.assignments_updated == 0
        assert _status(db, location.id) == "verified"

    def test_verify_missing_location(self, db):
        with pytest.raises(NotFoundError):
            lifecycle.verify_location(db, 7)

    def test_batch_verify(self, db, make_location, make_contractor):
        a = make_location(db, "10.0000_20.0000")
        b = make_location(db, "11.0000_21.0000")
        contractor = make_contractor(db)
        lifecycle.assign_location(db, a.id, contractor.id)

        result = lifecycle.batch_verify(db, [a.id, b.id])

        assert result.locations_updated == 2
        assert result.assignments_updated == 1
        assert db.query(WorkAssignment).one().admin_notes == lifecycle.DEFAULT_BATCH_VERIFY_NOTE

    def test_batch_verify_with_unknown_id_changes_nothing(self, db, make_location):
        a = make_location(db, "10.0000_20.0000")

        with pytest.raises(NotFoundError):
            lifecycle.batch_verify(db, [a.id, 999])

        assert _status(db, a.id) == "pending"

    def test_reject_sends_work_back(self, db, make_location, make_contractor):
        location = make_location(db)
        contractor = make_contractor(db)
        outcome = lifecycle.assign_location(db, location.id, contractor.id)
        lifecycle.update_assignment(
            db, outcome.assignment_id, AssignmentUpdate(status=AssignmentStatus.pending_verification)
        )

        result = lifecycle.reject_verification(db, location.id, reason="Still cracked")

        assert result.assignment_updated
        assignment = _assignment(db, outcome.assignment_id)
        assert assignment.status == "in_progress"
        assert assignment.admin_notes == "Still cracked"
        assert _status(db, location.id) == "assigned"

    def test_reject_without_pending_work_is_a_no_op(self, db, make_location):
        location = make_location(db, status="fixed")

        result = lifecycle.reject_verification(db, location.id)

        assert not result.assignment_updated
        assert _status(db, location.id) == "fixed"
