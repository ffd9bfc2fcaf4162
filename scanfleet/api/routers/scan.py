"""
Scan API router: job submission, status and result export.

Endpoints:
  POST /api/scan                     - submit items for a distributed scan
  GET  /api/scan/{job_id}/status     - full ScanState snapshot
  GET  /api/scan/{job_id}/results    - findings as JSON, or CSV
  GET  /api/scan/{job_id}/tasks      - provisioning task handles
  DELETE /api/scan/{job_id}          - tear the job's fleet down now

Handlers are plain ``def``: reads copy the job state under its lock, which
belongs on the threadpool rather than the event loop.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from pydantic import AliasChoices, BaseModel, Field

from scanfleet.export import (
    CSV_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    csv_filename,
    filter_results,
    results_to_csv,
    results_to_json,
)
from scanfleet.fleet_manager import FleetManager
from scanfleet.logconfig import get_module_logger
from scanfleet.models import Severity
from ..dependencies import get_manager

router = APIRouter()
log = get_module_logger("api.scan")


class ScanRequest(BaseModel):
    items: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("items", "domains"),
    )
    node_count: int = Field(
        1,
        validation_alias=AliasChoices("nodeCount", "node_count", "droplets"),
    )


class ScanAccepted(BaseModel):
    job_id: str
    message: str
    items_count: int


@router.post("/scan", response_model=ScanAccepted, tags=["scan"])
def start_scan(body: ScanRequest,
               manager: FleetManager = Depends(get_manager)):
    """Submit a job. Provisioning continues in the background."""
    job_id = manager.submit_items(body.items, body.node_count)
    items_count = sum(manager.plan(job_id).chunk_sizes)
    return ScanAccepted(
        job_id=job_id,
        message="Scan started successfully",
        items_count=items_count,
    )


@router.get("/scan/{job_id}/status", tags=["scan"])
def get_scan_status(job_id: str,
                    manager: FleetManager = Depends(get_manager)):
    return manager.get_status(job_id).to_dict()


def _wants_csv(request: Request, fmt: str | None) -> bool:
    if fmt:
        return fmt.lower() == "csv"
    return CSV_CONTENT_TYPE in request.headers.get("accept", "")


@router.get("/scan/{job_id}/results", tags=["scan"])
def get_scan_results(
    job_id: str,
    request: Request,
    fmt: str | None = Query(None, alias="format", description="json | csv"),
    min_severity: str | None = Query(None, description="Lowest severity to include"),
    manager: FleetManager = Depends(get_manager),
):
    """Return a job's findings; CSV via ``Accept: text/csv`` or ``?format=csv``."""
    records = manager.get_results(job_id)
    if min_severity:
        records = filter_results(records, Severity.parse(min_severity))

    if _wants_csv(request, fmt):
        return Response(
            content=results_to_csv(records),
            media_type=CSV_CONTENT_TYPE,
            headers={
                "Content-Disposition":
                    f"attachment; filename={csv_filename(job_id)}",
            },
        )

    return Response(
        content=results_to_json(records, job_id=job_id),
        media_type=JSON_CONTENT_TYPE,
    )


@router.get("/scan/{job_id}/tasks", tags=["scan"])
def get_scan_tasks(job_id: str,
                   manager: FleetManager = Depends(get_manager)):
    """Provisioning state of every chunk, including ones that never registered."""
    return {"job_id": job_id,
            "tasks": [t.to_dict() for t in manager.tasks(job_id)]}


@router.delete("/scan/{job_id}", tags=["scan"])
def teardown_scan(job_id: str,
                  manager: FleetManager = Depends(get_manager)):
    """Destroy the job's nodes and forget its state."""
    log.info("Teardown requested for job %s", job_id)
    # get_status raises NotFoundError (404) for unknown jobs
    manager.get_status(job_id)
    manager.teardown(job_id)
    return {"job_id": job_id, "torn_down": True}
