"""
Data model for distributed scan jobs.

Provides:
  - ScanJob: an immutable submission (items + requested node count)
  - WorkerNode: one provisioned compute node and its progress
  - ResultRecord: one finding streamed back by a node
  - ScanState: the aggregate root holding nodes, results and counters
  - FeedEvent: the ``{type, payload}`` message pushed to live subscribers

All types follow the same convention: plain dataclasses with a
``to_dict()`` producing JSON-serializable output.
"""
from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeStatus(str, Enum):
    PROVISIONING = "provisioning"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Severity(str, Enum):
    """Finding severity, ordered critical > high > medium > low > info."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Map a raw severity string onto the enum.

        Unknown or missing values (nuclei emits ``unknown`` for some
        templates) are treated as ``info``.
        """
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.INFO


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class FeedEventType(str, Enum):
    STATUS_UPDATE = "status_update"
    NEW_RESULT = "new_result"
    JOB_COMPLETE = "job_complete"


@dataclass(frozen=True)
class ScanJob:
    """A scan submission. Immutable once created."""
    items: tuple[str, ...] = ()
    node_count: int = 1
    job_id: str = ""

    def __post_init__(self):
        # Accept any sequence from callers but store a tuple
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))

    def with_id(self) -> "ScanJob":
        """Return this job, or a copy carrying a fresh UUID if it has none."""
        if self.job_id:
            return self
        return replace(self, job_id=str(uuid.uuid4()))


@dataclass
class WorkerNode:
    """A compute node registered against a scan once it became ready."""
    node_id: str
    address: str = ""
    progress: float = 0.0
    current_item: str = ""
    items_scanned: int = 0
    total_items: int = 0
    created_at: datetime = field(default_factory=utcnow)
    status: NodeStatus = NodeStatus.PROVISIONING
    handle: str = ""  # provider-side identifier, used for teardown
    last_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.node_id,
            "address": self.address,
            "progress": self.progress,
            "current_item": self.current_item,
            "items_scanned": self.items_scanned,
            "total_items": self.total_items,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "message": self.last_message,
        }


@dataclass(frozen=True)
class ResultRecord:
    """A single finding reported by a node."""
    target: str
    rule: str
    severity: Severity = Severity.INFO
    match: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    source_node: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "rule": self.rule,
            "severity": self.severity.value,
            "match": self.match,
            "timestamp": self.timestamp.isoformat(),
            "source_node": self.source_node,
        }


@dataclass
class ScanState:
    """Aggregate status of one active job.

    ``nodes`` is append-only and ordered by readiness, not by chunk.
    ``results`` is append-only. ``progress`` is derived from the nodes and
    is only ever written by :meth:`recompute_progress`.
    """
    job_id: str
    total_items: int = 0
    scanned_items: int = 0
    progress: float = 0.0
    status: JobStatus = JobStatus.STARTING
    nodes: list[WorkerNode] = field(default_factory=list)
    results: list[ResultRecord] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def find_node(self, node_id: str) -> WorkerNode | None:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        return None

    def register_node(self, node: WorkerNode) -> None:
        self.nodes.append(node)
        if self.status == JobStatus.STARTING:
            self.status = JobStatus.RUNNING
        self.recompute_progress()

    def add_result(self, record: ResultRecord) -> None:
        self.results.append(record)
        self.scanned_items += 1

    def recompute_progress(self) -> float:
        """Unweighted mean of registered node progress; 0 with no nodes."""
        if self.nodes:
            self.progress = sum(n.progress for n in self.nodes) / len(self.nodes)
        else:
            self.progress = 0.0
        return self.progress

    @property
    def all_nodes_complete(self) -> bool:
        return bool(self.nodes) and all(n.progress >= 100.0 for n in self.nodes)

    def severity_counts(self) -> dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for r in self.results:
            counts[r.severity.value] += 1
        return counts

    def snapshot(self) -> "ScanState":
        """Detached deep copy, safe to read without the job lock."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.job_id,
            "progress": round(self.progress, 2),
            "status": self.status.value,
            "total_items": self.total_items,
            "scanned_items": self.scanned_items,
            "nodes": [n.to_dict() for n in self.nodes],
            "results": [r.to_dict() for r in self.results],
            "severity_counts": self.severity_counts(),
            "created_at": self.created_at.isoformat(),
        }

    def summary_dict(self) -> dict[str, Any]:
        """``to_dict`` without the result list; cost does not grow with results."""
        return {
            "id": self.job_id,
            "progress": round(self.progress, 2),
            "status": self.status.value,
            "total_items": self.total_items,
            "scanned_items": self.scanned_items,
            "result_count": len(self.results),
            "nodes": [n.to_dict() for n in self.nodes],
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class FeedEvent:
    """Message delivered on a job's live feed."""
    type: FeedEventType
    payload: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload}
