"""Tests for merging detections into the hotspot grid."""

import pytest

from exceptions import ValidationError
from models import AggregatedLocation, WorkAssignment
from schemas import DetectionKind, LocationStatus
from services import aggregation
from services.severity import Severity


def _merge(db, kind, lat, lng, severity=None):
    location = aggregation.merge_detection(db, kind, lat, lng, severity)
    db.commit()
    return location


class TestMergeDetection:
    def test_first_detection_creates_cell(self, db):
        location = _merge(db, DetectionKind.pothole, 13.08271, 80.27069, "High")

        assert location.grid_id == "13.0827_80.2707"
        assert (location.latitude, location.longitude) == (13.0827, 80.2707)
        assert location.total_potholes == 1
        assert location.total_patchy == 0
        assert location.report_count == 1
        assert location.highest_severity == "High"
        assert location.status == LocationStatus.pending.value
        assert location.first_reported_at is not None

    def test_same_cell_merges_into_one_row(self, db):
        _merge(db, DetectionKind.pothole, 13.08271, 80.27069, "Low")
        _merge(db, DetectionKind.patchy, 13.08268, 80.27072, "Medium")
        _merge(db, DetectionKind.pothole, 13.0827, 80.2707, None)

        rows = db.query(AggregatedLocation).all()
        assert len(rows) == 1
        assert rows[0].total_potholes == 2
        assert rows[0].total_patchy == 1
        assert rows[0].report_count == 3
        assert rows[0].highest_severity == "Medium"

    @pytest.mark.parametrize("order", [["Low", "High", "Medium"], ["High", "Low", "Low"], ["Medium", "Low", "High"]])
    def test_highest_severity_is_order_independent(self, db, order):
        for severity in order:
            _merge(db, DetectionKind.pothole, 10.0, 20.0, severity)

        location = db.query(AggregatedLocation).one()
        assert location.highest_severity == Severity.high.value

    def test_merge_does_not_touch_status(self, db):
        location = _merge(db, DetectionKind.pothole, 10.0, 20.0)
        location.status = LocationStatus.verified.value
        db.commit()

        _merge(db, DetectionKind.pothole, 10.0, 20.0)

        assert db.query(AggregatedLocation).one().status == LocationStatus.verified.value

    def test_invalid_coordinates_raise_before_writing(self, db):
        with pytest.raises(ValidationError):
            aggregation.merge_detection(db, DetectionKind.pothole, None, 20.0)
        assert db.query(AggregatedLocation).count() == 0

    def test_concurrent_insert_is_retried_as_update(self, db, monkeypatch):
        _merge(db, DetectionKind.pothole, 10.0, 20.0, "Low")

        real_find = aggregation.find_location_by_grid_key
        calls = []

        def stale_find(session, key):
            # First lookup misses, as if the row was created by another transaction after our read
            calls.append(key)
            return None if len(calls) == 1 else real_find(session, key)

        monkeypatch.setattr(aggregation, "find_location_by_grid_key", stale_find)
        location = _merge(db, DetectionKind.patchy, 10.0, 20.0, "High")

        assert len(calls) == 2
        rows = db.query(AggregatedLocation).all()
        assert len(rows) == 1
        assert location.id == rows[0].id
        assert rows[0].report_count == 2
        assert rows[0].total_patchy == 1
        assert rows[0].highest_severity == "High"


class TestListLocations:
    def test_orders_by_report_count_and_filters(self, db, make_location):
        make_location(db, "10.0000_20.0000", report_count=2, highest_severity="Low")
        make_location(db, "11.0000_21.0000", report_count=5, highest_severity="High")
        make_location(db, "12.0000_22.0000", status="verified", report_count=9, highest_severity="High")

        rows = aggregation.list_locations(db)
        assert [r["grid_id"] for r in rows] == ["12.0000_22.0000", "11.0000_21.0000", "10.0000_20.0000"]

        pending_high = aggregation.list_locations(db, status=LocationStatus.pending, severity=Severity.high)
        assert [r["grid_id"] for r in pending_high] == ["11.0000_21.0000"]

        boxed = aggregation.list_locations(db, bbox=(9.5, 10.5, 19.5, 20.5))
        assert [r["grid_id"] for r in boxed] == ["10.0000_20.0000"]

    def test_inverted_bounding_box_is_rejected(self, db):
        with pytest.raises(ValidationError):
            aggregation.list_locations(db, bbox=(11.0, 10.0, 20.0, 21.0))

    def test_includes_open_assignment_only(self, db, make_location, make_contractor):
        location = make_location(db, "10.0000_20.0000", status="assigned")
        contractor = make_contractor(db)
        db.add(WorkAssignment(aggregated_location_id=location.id, contractor_id=contractor.id, status="verified"))
        db.add(WorkAssignment(aggregated_location_id=location.id, contractor_id=contractor.id, status="in_progress"))
        db.commit()

        row = aggregation.list_locations(db)[0]
        assert row["assignment_status"] == "in_progress"
        assert row["contractor_id"] == contractor.id
        assert row["contractor_name"] == "City Roadworks Ltd"
