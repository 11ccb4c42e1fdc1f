"""
Main FastAPI application for the Road Defect Reporting backend.
Provides REST API endpoints for report submission, the hotspot map,
contractor work assignment and repair verification.
"""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import Principal, get_optional_principal, require_principal
from config import settings
from database import Base, engine, get_db
from exceptions import RoadDefectError, StorageError, ValidationError
from models import Contractor
from schemas import (
    AssignmentCreate,
    AssignmentResponse,
    AssignmentUpdate,
    BatchAssignmentCreate,
    BatchAssignmentResponse,
    BatchVerificationResponse,
    BatchVerifyRequest,
    ContractorListResponse,
    ContractorOption,
    JobStatusUpdate,
    LocationListResponse,
    LocationResponse,
    LocationStatus,
    MessageResponse,
    RejectionResponse,
    RejectRequest,
    ReportDetailResponse,
    ReportStatusResponse,
    ReportStatusUpdate,
    ReportSubmission,
    SubmissionResponse,
    VerificationResponse,
    VerifyRequest,
)
from services import aggregation, ingestion, lifecycle
from services.osm_lookup import refresh_location_road_name
from services.severity import Severity

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

# Initialize FastAPI application
app = FastAPI(
    title="Road Defect Reporting System",
    description="API for ingesting pothole and road anomaly reports, aggregating them into hotspots "
                "and managing contractor repairs",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response


# ============== Error Handlers ==============

def _error_response(status_code: int, message: str, error: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "error": error}, headers=headers)


@app.exception_handler(RoadDefectError)
async def handle_domain_error(request: Request, exc: RoadDefectError):
    if isinstance(exc, StorageError):
        error = exc.detail if settings.expose_error_detail else "Internal storage error"
        return _error_response(exc.status_code, exc.message, error)
    logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.detail)
    return _error_response(exc.status_code, exc.message, exc.detail)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg", ""))
    logger.warning("%s %s rejected: %s", request.method, request.url.path, problems)
    return _error_response(status.HTTP_400_BAD_REQUEST, ValidationError.message, "; ".join(problems))


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    detail = str(exc.detail)
    return _error_response(exc.status_code, detail, detail, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = str(exc) if settings.expose_error_detail else "Internal server error"
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", error)


# ============== Health Check ==============

@app.get("/", tags=["Health"])
def health_check():
    """Health check endpoint to verify API is running."""
    return {"status": "healthy", "service": "Road Defect Reporting System"}


# ============== Report Endpoints ==============

@app.post(
    "/reports/submit",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Reports"]
)
def submit_report(
    submission: ReportSubmission,
    db: Session = Depends(get_db),
    principal: Optional[Principal] = Depends(get_optional_principal),
):
    """
    Submit a road audit report from the mobile app.

    Stores the report, every pothole and road anomaly it contains, and merges
    each detection into the hotspot grid, all in one transaction. Anonymous
    submissions are attributed to the user registered with the device, if any.
    """
    result = ingestion.submit_report(db, submission, principal)
    return SubmissionResponse(message="Report submitted successfully", data=result)


@app.get(
    "/reports/{report_id}",
    response_model=ReportDetailResponse,
    tags=["Reports"]
)
def get_report(report_id: str, db: Session = Depends(get_db)):
    """Retrieve a report by its external identifier, with its detections."""
    return ingestion.get_report(db, report_id)


@app.patch(
    "/reports/{report_id}/status",
    response_model=ReportStatusResponse,
    tags=["Reports"]
)
def update_report_status(report_id: str, status_update: ReportStatusUpdate, db: Session = Depends(get_db)):
    """
    Update the status of a report.

    Valid statuses: pending, reviewed, assigned, in_progress, resolved
    """
    new_status = ingestion.update_report_status(db, report_id, status_update.status)
    return ReportStatusResponse(message="Status updated successfully", status=new_status)


# ============== Location Endpoints ==============

@app.get(
    "/locations",
    response_model=LocationListResponse,
    tags=["Locations"]
)
def get_locations(
    status: Optional[LocationStatus] = None,
    severity: Optional[Severity] = None,
    min_lat: Optional[float] = Query(None, ge=-90, le=90),
    max_lat: Optional[float] = Query(None, ge=-90, le=90),
    min_lng: Optional[float] = Query(None, ge=-180, le=180),
    max_lng: Optional[float] = Query(None, ge=-180, le=180),
    limit: int = Query(aggregation.MAX_LOCATIONS, ge=1, le=aggregation.MAX_LOCATIONS),
    db: Session = Depends(get_db),
):
    """
    Aggregated locations for map display, busiest first.

    Filters: status, highest severity and an optional bounding box, which
    must be given with all four bounds.
    """
    bounds = (min_lat, max_lat, min_lng, max_lng)
    if any(b is not None for b in bounds) and not all(b is not None for b in bounds):
        raise ValidationError("Bounding box needs min_lat, max_lat, min_lng and max_lng")
    bbox = bounds if bounds[0] is not None else None

    rows = aggregation.list_locations(db, status=status, severity=severity, bbox=bbox, limit=limit)
    return LocationListResponse(locations=[LocationResponse(**row) for row in rows], count=len(rows))


@app.post(
    "/locations/{location_id}/refresh-road",
    response_model=LocationResponse,
    tags=["Locations"]
)
async def refresh_location_road(location_id: int, db: Session = Depends(get_db)):
    """Look up the nearest road on OpenStreetMap and store its name on the location."""
    location = await refresh_location_road_name(db, location_id)
    return location


# ============== Contractor Endpoints ==============

@app.get(
    "/contractors",
    response_model=ContractorListResponse,
    tags=["Contractors"]
)
def get_contractors(db: Session = Depends(get_db)):
    """Active contractors, for the assignment dropdown."""
    contractors = (
        db.query(Contractor)
        .filter(Contractor.is_active.is_(True))
        .order_by(Contractor.company_name)
        .all()
    )
    return ContractorListResponse(contractors=[
        ContractorOption(
            id=c.id,
            name=c.company_name or c.contact_email or f"Contractor {c.id}",
            company=c.company_name or "Contractor",
        )
        for c in contractors
    ])


@app.patch(
    "/contractor/jobs/{assignment_id}/status",
    response_model=MessageResponse,
    tags=["Contractors"]
)
def update_job_status(
    assignment_id: int,
    update: JobStatusUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_principal),
):
    """Contractor reports progress on one of their jobs (in_progress or completed)."""
    if principal.role != "contractor":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Contractor role required")
    lifecycle.update_job_status(db, principal.id, assignment_id, update.status, update.notes)
    return MessageResponse(message="Job status updated successfully")


# ============== Assignment Endpoints ==============

@app.post(
    "/assignments",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Assignments"]
)
def create_assignment(
    request: AssignmentCreate,
    response: Response,
    db: Session = Depends(get_db),
    principal: Optional[Principal] = Depends(get_optional_principal),
):
    """
    Assign a location to a contractor.

    Reassigns the location's open assignment in place when one exists
    (200), otherwise creates a new assignment (201).
    """
    outcome = lifecycle.assign_location(
        db,
        request.location_id,
        request.contractor_id,
        due_date=request.due_date,
        notes=request.notes,
        assigned_by=principal.id if principal else None,
    )
    if not outcome.created:
        response.status_code = status.HTTP_200_OK
        return AssignmentResponse(message="Assignment updated successfully", assignment_id=outcome.assignment_id)
    return AssignmentResponse(message="Assignment created successfully", assignment_id=outcome.assignment_id)


@app.post(
    "/assignments/batch",
    response_model=BatchAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Assignments"]
)
def batch_create_assignments(
    request: BatchAssignmentCreate,
    db: Session = Depends(get_db),
    principal: Optional[Principal] = Depends(get_optional_principal),
):
    """Assign several locations to one contractor; all or nothing."""
    assignment_ids = lifecycle.batch_assign(
        db,
        request.location_ids,
        request.contractor_id,
        due_date=request.due_date,
        notes=request.notes,
        assigned_by=principal.id if principal else None,
    )
    return BatchAssignmentResponse(
        message=f"{len(request.location_ids)} locations assigned successfully",
        assignment_ids=assignment_ids,
    )


@app.patch(
    "/assignments/{assignment_id}",
    response_model=MessageResponse,
    tags=["Assignments"]
)
def update_assignment(assignment_id: int, changes: AssignmentUpdate, db: Session = Depends(get_db)):
    """
    Update an assignment's status and/or notes.

    Valid statuses: assigned, in_progress, pending_verification, completed, verified
    """
    lifecycle.update_assignment(db, assignment_id, changes)
    return MessageResponse(message="Assignment updated successfully")


# ============== Verification Endpoints ==============

@app.post(
    "/verify/batch",
    response_model=BatchVerificationResponse,
    tags=["Verification"]
)
def batch_verify(request: BatchVerifyRequest, db: Session = Depends(get_db)):
    """Verify several locations at once; all or nothing."""
    outcome = lifecycle.batch_verify(db, request.location_ids, request.notes)
    return BatchVerificationResponse(
        message=f"{len(request.location_ids)} locations verified successfully",
        locations_updated=outcome.locations_updated,
        assignments_updated=outcome.assignments_updated,
    )


@app.post(
    "/verify/{location_id}",
    response_model=VerificationResponse,
    tags=["Verification"]
)
def verify_location(location_id: int, request: Optional[VerifyRequest] = None, db: Session = Depends(get_db)):
    """
    Verify completed work on a location.

    The location is always verified; assignmentUpdated tells whether an
    open assignment was closed along with it.
    """
    outcome = lifecycle.verify_location(db, location_id, request.notes if request else None)
    return VerificationResponse(
        message="Work verified successfully",
        location_updated=outcome.location_updated,
        assignment_updated=outcome.assignment_updated,
        assignments_updated=outcome.assignments_updated,
    )


@app.post(
    "/verify/{location_id}/reject",
    response_model=RejectionResponse,
    tags=["Verification"]
)
def reject_verification(location_id: int, request: Optional[RejectRequest] = None, db: Session = Depends(get_db)):
    """Send work awaiting verification back to the contractor."""
    outcome = lifecycle.reject_verification(db, location_id, request.reason if request else None)
    message = (
        "Verification rejected, sent back to contractor"
        if outcome.assignment_updated
        else "No work awaiting verification"
    )
    return RejectionResponse(message=message, assignment_updated=outcome.assignment_updated)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
