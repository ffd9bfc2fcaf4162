"""
Node callback router.

Worker nodes report back through three endpoints addressed by job ID and
node ID:

  POST /api/heartbeat/{job_id}/{node_id}  {progress, current_item, message}
  POST /api/results/{job_id}/{node_id}    one finding (raw nuclei JSON accepted)
  POST /api/complete/{job_id}/{node_id}   no body

Handlers are plain ``def`` so the per-job lock is taken on the threadpool,
not on the event loop.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field, model_validator

from scanfleet.fleet_manager import FleetManager
from scanfleet.logconfig import get_module_logger
from scanfleet.models import ResultRecord, Severity, utcnow
from ..dependencies import get_manager

router = APIRouter(tags=["worker"])
log = get_module_logger("api.worker")


class HeartbeatRequest(BaseModel):
    progress: float = 0.0
    current_item: str = Field(
        "",
        validation_alias=AliasChoices("current_item", "current_domain"),
    )
    message: str = ""


class ResultRequest(BaseModel):
    """One finding. Nuclei's ``-jsonl`` field names are accepted as-is."""
    target: str = Field(
        "", validation_alias=AliasChoices("target", "host"))
    rule: str = Field(
        "", validation_alias=AliasChoices("rule", "template", "template-id",
                                          "template_id"))
    severity: str = "info"
    match: str = Field(
        "", validation_alias=AliasChoices("match", "matched-at", "matched_at"))

    @model_validator(mode="before")
    @classmethod
    def _lift_nuclei_info(cls, data: Any) -> Any:
        # nuclei nests severity under "info"
        if isinstance(data, dict) and "severity" not in data:
            info = data.get("info")
            if isinstance(info, dict) and info.get("severity"):
                data = dict(data, severity=info["severity"])
        return data

    def to_record(self, node_id: str) -> ResultRecord:
        return ResultRecord(
            target=self.target,
            rule=self.rule,
            severity=Severity.parse(self.severity),
            match=self.match,
            timestamp=utcnow(),
            source_node=node_id,
        )


@router.post("/heartbeat/{job_id}/{node_id}")
def worker_heartbeat(job_id: str, node_id: str, body: HeartbeatRequest,
                     manager: FleetManager = Depends(get_manager)):
    manager.update_progress(job_id, node_id, body.progress,
                            current_item=body.current_item,
                            message=body.message)
    return {"status": "updated"}


@router.post("/results/{job_id}/{node_id}")
def worker_result(job_id: str, node_id: str, body: ResultRequest,
                  manager: FleetManager = Depends(get_manager)):
    """Ingest one finding; the server stamps timestamp and source node."""
    record = manager.ingest_result(job_id, body.to_record(node_id))
    log.info("Received result from %s: %s - %s", node_id, record.target,
             record.rule)
    return {"status": "received"}


@router.post("/complete/{job_id}/{node_id}")
def worker_complete(job_id: str, node_id: str,
                    manager: FleetManager = Depends(get_manager)):
    job_done = manager.complete_node(job_id, node_id)
    return {"status": "completed", "job_complete": job_done}
