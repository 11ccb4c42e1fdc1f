"""
Pydantic schemas for request/response validation and serialization.
Submissions are parsed into fully typed records here, before any
persistence logic runs.
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from services.severity import Severity, normalize_severity


class ReportStatus(str, Enum):
    """Lifecycle of a submitted report."""
    pending = "pending"
    reviewed = "reviewed"
    assigned = "assigned"
    in_progress = "in_progress"
    resolved = "resolved"


class LocationStatus(str, Enum):
    """Lifecycle of an aggregated location (hotspot)."""
    pending = "pending"
    assigned = "assigned"
    in_progress = "in_progress"
    pending_verification = "pending_verification"
    verified = "verified"
    fixed = "fixed"


class AssignmentStatus(str, Enum):
    """Lifecycle of a work assignment."""
    assigned = "assigned"
    in_progress = "in_progress"
    pending_verification = "pending_verification"
    completed = "completed"
    verified = "verified"


class DetectionKind(str, Enum):
    """Which counter a detection increments on its grid cell."""
    pothole = "pothole"
    patchy = "patchy"


class CamelModel(BaseModel):
    """Base for payloads exchanged with the dashboard in camelCase."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


# ============== Submission Schemas ==============

class PotholeEntry(BaseModel):
    """A point pothole detection inside a submission."""
    type: Literal["pothole"]
    location_id: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    severity: Severity = Severity.medium
    timestamp: Optional[datetime] = None
    z_axis_acceleration: Optional[float] = None
    speed_kmh: Optional[float] = Field(None, ge=0)
    road_type: Optional[str] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value):
        return normalize_severity(value)

    @field_validator("location_id", mode="before")
    @classmethod
    def _stringify_location_id(cls, value):
        return None if value is None else str(value)


class RoadAnomalyEntry(BaseModel):
    """
    A linear patchy-road detection. Older app versions send a single
    latitude/longitude instead of a start point; it is used as the start.
    """
    type: Literal["road_anomaly"]
    location_id: Optional[str] = None
    start_latitude: Optional[float] = Field(None, ge=-90, le=90)
    start_longitude: Optional[float] = Field(None, ge=-180, le=180)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    end_latitude: Optional[float] = Field(None, ge=-90, le=90)
    end_longitude: Optional[float] = Field(None, ge=-180, le=180)
    severity: Severity = Severity.medium
    start_timestamp: Optional[datetime] = None
    end_timestamp: Optional[datetime] = None
    duration_seconds: Optional[int] = Field(None, ge=0)

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value):
        return normalize_severity(value)

    @field_validator("location_id", mode="before")
    @classmethod
    def _stringify_location_id(cls, value):
        return None if value is None else str(value)

    @model_validator(mode="after")
    def _resolve_start_point(self):
        if self.start_latitude is None:
            self.start_latitude = self.latitude
        if self.start_longitude is None:
            self.start_longitude = self.longitude
        if self.start_latitude is None or self.start_longitude is None:
            raise ValueError("road_anomaly requires start_latitude/start_longitude or latitude/longitude")
        return self


DetectionEntry = Annotated[Union[PotholeEntry, RoadAnomalyEntry], Field(discriminator="type")]


class ReportSubmission(BaseModel):
    """Schema for a report batch posted by the mobile app."""
    report_id: str = Field(..., min_length=1, max_length=50)
    device_id: str = Field(..., min_length=1, max_length=100)
    reported_at: Optional[datetime] = None
    anomalies: List[DetectionEntry]

    class Config:
        json_schema_extra = {
            "example": {
                "report_id": "RPT-20261018-0001",
                "device_id": "android-5f2c9a",
                "reported_at": "2026-10-18T08:15:00Z",
                "anomalies": [
                    {"type": "pothole", "latitude": 13.08271, "longitude": 80.27069, "severity": "High",
                     "timestamp": "2026-10-18T08:10:02Z"},
                    {"type": "road_anomaly", "start_latitude": 13.0827, "start_longitude": 80.2707,
                     "end_latitude": 13.0831, "end_longitude": 80.2712, "severity": "Low",
                     "start_timestamp": "2026-10-18T08:11:00Z", "end_timestamp": "2026-10-18T08:11:20Z",
                     "duration_seconds": 20}
                ]
            }
        }


class SubmissionResult(CamelModel):
    """Outcome of a successful submission."""
    report_id: str
    db_id: int
    total_potholes: int
    total_patchy: int
    health_score: int
    status: ReportStatus


class SubmissionResponse(BaseModel):
    success: bool = True
    message: str
    data: SubmissionResult


# ============== Report Schemas ==============

class PotholeDetectionResponse(BaseModel):
    id: int
    location_id: Optional[str]
    latitude: float
    longitude: float
    severity: str
    z_axis_acceleration: Optional[float] = None
    speed_kmh: Optional[float] = None
    road_type: Optional[str] = None
    timestamp: datetime
    synced: bool

    class Config:
        from_attributes = True


class RoadAnomalyResponse(BaseModel):
    id: int
    location_id: Optional[str]
    start_latitude: float
    start_longitude: float
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    severity: str
    start_timestamp: datetime
    end_timestamp: Optional[datetime] = None
    duration_seconds: Optional[int] = None

    class Config:
        from_attributes = True


class ReportDetailResponse(BaseModel):
    """A report header with every detection it carried."""
    id: int
    report_id: str
    user_id: Optional[int]
    device_id: str
    reported_at: datetime
    total_potholes: int
    total_patchy_roads: int
    health_score: int
    status: str
    potholes: List[PotholeDetectionResponse] = []
    road_anomalies: List[RoadAnomalyResponse] = []

    class Config:
        from_attributes = True


class ReportStatusUpdate(BaseModel):
    """Schema for updating report status."""
    status: ReportStatus = Field(..., description="New status for the report")


class ReportStatusResponse(BaseModel):
    message: str
    status: ReportStatus


# ============== Location Schemas ==============

class LocationResponse(BaseModel):
    """A hotspot, with its open assignment (if any) flattened in."""
    id: int
    grid_id: str
    latitude: float
    longitude: float
    road_name: Optional[str] = None
    ward: Optional[str] = None
    total_potholes: int
    total_patchy: int
    highest_severity: str
    report_count: int
    first_reported_at: Optional[datetime] = None
    last_reported_at: Optional[datetime] = None
    status: str
    verified_at: Optional[datetime] = None
    assignment_id: Optional[int] = None
    contractor_id: Optional[int] = None
    assignment_status: Optional[str] = None
    due_date: Optional[date] = None
    assigned_at: Optional[datetime] = None
    contractor_name: Optional[str] = None
    contractor_email: Optional[str] = None

    class Config:
        from_attributes = True


class LocationListResponse(BaseModel):
    locations: List[LocationResponse]
    count: int


# ============== Contractor Schemas ==============

class ContractorOption(BaseModel):
    """Schema for a contractor in the assignment dropdown."""
    id: int
    name: str
    company: str


class ContractorListResponse(BaseModel):
    contractors: List[ContractorOption]


# ============== Assignment Schemas ==============

class AssignmentCreate(CamelModel):
    """Schema for assigning a location to a contractor."""
    location_id: int
    contractor_id: int
    due_date: Optional[date] = None
    notes: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {"locationId": 12, "contractorId": 3, "dueDate": "2026-10-25", "notes": "Two deep potholes"}
        }


class BatchAssignmentCreate(CamelModel):
    location_ids: List[int] = Field(..., min_length=1)
    contractor_id: int
    due_date: Optional[date] = None
    notes: Optional[str] = None


class AssignmentUpdate(CamelModel):
    """Partial update of an assignment; at least one field must be sent."""
    status: Optional[AssignmentStatus] = None
    notes: Optional[str] = None


class JobStatusUpdate(CamelModel):
    status: AssignmentStatus
    notes: Optional[str] = None


class AssignmentResponse(CamelModel):
    message: str
    assignment_id: int


class BatchAssignmentResponse(CamelModel):
    message: str
    assignment_ids: List[int]


# ============== Verification Schemas ==============

class VerifyRequest(CamelModel):
    notes: Optional[str] = None


class BatchVerifyRequest(CamelModel):
    location_ids: List[int] = Field(..., min_length=1)
    notes: Optional[str] = None


class RejectRequest(CamelModel):
    reason: Optional[str] = None


class VerificationResponse(CamelModel):
    message: str
    location_updated: bool
    assignment_updated: bool
    assignments_updated: int


class BatchVerificationResponse(CamelModel):
    message: str
    locations_updated: int
    assignments_updated: int


class RejectionResponse(CamelModel):
    message: str
    assignment_updated: bool


# ============== Response Wrappers ==============

class MessageResponse(BaseModel):
    """Generic message response schema."""
    message: str
    data: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Body of every error response."""
    message: str
    error: str
