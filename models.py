"""
SQLAlchemy ORM models for the Road Defect Reporting backend.
Defines reports and their detections, the aggregated-location grid,
contractors and the work assignments that link the two.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    """Timezone-aware current time used for every stored timestamp."""
    return datetime.now(timezone.utc)


class User(Base):
    """
    A registered app user. Only the fields needed to attribute reports
    (device id) and to find a contractor's profile (role) live here.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(String(20), default="user")  # user, admin, contractor
    device_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, role={self.role})>"


class Report(Base):
    """
    One ingestion batch submitted by a mobile device.
    Immutable after creation except for its status.
    """
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(String(50), unique=True, nullable=False, index=True)  # client supplied
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    device_id = Column(String(100), nullable=False)
    reported_at = Column(DateTime(timezone=True), nullable=False)
    total_potholes = Column(Integer, default=0)
    total_patchy_roads = Column(Integer, default=0)
    health_score = Column(Integer, nullable=False)  # 0-100
    status = Column(String(20), default="pending", index=True)  # pending, reviewed, assigned, in_progress, resolved
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    potholes = relationship(
        "PotholeDetection", back_populates="report", cascade="all, delete-orphan", passive_deletes=True
    )
    road_anomalies = relationship(
        "RoadAnomaly", back_populates="report", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self):
        return f"<Report(id={self.id}, report_id={self.report_id}, status={self.status})>"


class PotholeDetection(Base):
    """A single point detection of a pothole."""
    __tablename__ = "pothole_detections"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    location_id = Column(String(50), nullable=True)  # client-side identifier
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    severity = Column(String(10), nullable=False)  # Low, Medium, High
    z_axis_acceleration = Column(Float, nullable=True)
    speed_kmh = Column(Float, nullable=True)
    road_type = Column(String(50), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    synced = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    report = relationship("Report", back_populates="potholes")


class RoadAnomaly(Base):
    """A linear stretch of patchy road, from a start point to an optional end point."""
    __tablename__ = "road_anomalies"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    location_id = Column(String(50), nullable=True)
    start_latitude = Column(Float, nullable=False)
    start_longitude = Column(Float, nullable=False)
    end_latitude = Column(Float, nullable=True)
    end_longitude = Column(Float, nullable=True)
    severity = Column(String(10), default="Medium")
    start_timestamp = Column(DateTime(timezone=True), nullable=False)
    end_timestamp = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    report = relationship("Report", back_populates="road_anomalies")


class AggregatedLocation(Base):
    """
    A hotspot: one cell of the ~11m spatial grid.
    The grid_id is the identity of the cell; the unique constraint on it is
    what makes concurrent first-detections in the same cell merge safely.
    """
    __tablename__ = "aggregated_locations"

    id = Column(Integer, primary_key=True, index=True)
    grid_id = Column(String(50), unique=True, nullable=False, index=True)
    latitude = Column(Float, nullable=False)  # rounded to 4 decimals
    longitude = Column(Float, nullable=False)
    road_name = Column(String(255), nullable=True)
    ward = Column(String(100), nullable=True)
    total_potholes = Column(Integer, default=0)
    total_patchy = Column(Integer, default=0)
    highest_severity = Column(String(10), default="Low", index=True)
    report_count = Column(Integer, default=1)
    first_reported_at = Column(DateTime(timezone=True), nullable=True)
    last_reported_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(30), default="pending", index=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    assignments = relationship("WorkAssignment", back_populates="location")

    def __repr__(self):
        return f"<AggregatedLocation(id={self.id}, grid={self.grid_id}, status={self.status})>"


class Contractor(Base):
    """A company that can be assigned repair work."""
    __tablename__ = "contractors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    company_name = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    service_area_lat = Column(Float, nullable=True)
    service_area_lng = Column(Float, nullable=True)
    service_radius_km = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    assignments = relationship("WorkAssignment", back_populates="contractor")

    def __repr__(self):
        return f"<Contractor(id={self.id}, company={self.company_name})>"


class WorkAssignment(Base):
    """
    Links a hotspot to the contractor repairing it.
    At most one assignment per location is open (not completed/verified) at a time.
    """
    __tablename__ = "work_assignments"

    id = Column(Integer, primary_key=True, index=True)
    aggregated_location_id = Column(
        Integer, ForeignKey("aggregated_locations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    contractor_id = Column(Integer, ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow)
    due_date = Column(Date, nullable=True)
    status = Column(String(30), default="assigned", index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    admin_notes = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    location = relationship("AggregatedLocation", back_populates="assignments")
    contractor = relationship("Contractor", back_populates="assignments")

    def __repr__(self):
        return f"<WorkAssignment(id={self.id}, location={self.aggregated_location_id}, status={self.status})>"
