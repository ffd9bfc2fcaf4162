#!/usr/bin/env python3
# -------------------------------------------------------------------------------
# Name:         fleet_manager
# Purpose:      Orchestrate a transient fleet of scan nodes for one job:
#               plan chunks, provision nodes, aggregate progress and results,
#               and tear the fleet down when the job is done.
#
# Licence:      MIT
# -------------------------------------------------------------------------------

"""
Fleet Manager

Drives a scan job from submission to teardown::

    manager = FleetManager(provider, store=StatusStore(), fanout=EventFanout())
    job_id = manager.submit(ScanJob(items=domains, node_count=3))

    # node callbacks
    manager.update_progress(job_id, node_id, 42.0, "example.com")
    manager.ingest_result(job_id, ResultRecord(...))
    manager.complete_node(job_id, node_id)

    manager.teardown(job_id)      # idempotent

Job states: ``starting -> running -> completed``.  Node states:
``provisioning -> running -> completed``.

Each chunk gets its own provisioning thread (a :class:`ProvisioningTask`)
that creates a node, polls the provider until the node is active with an
address, and then registers it.  Transient provider errors are retried
forever at ``error_retry_interval`` unless ``max_poll_attempts`` is set.  A
chunk whose node never becomes ready is logged and otherwise invisible: it
never appears in the job's node list and never marks the job failed.

All waits go through :class:`Interval`, which returns early when the job is
torn down, so teardown stops in-flight provisioning.  A task cancelled after
its node was created destroys that node itself.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from scanfleet.bootstrap import BootstrapPayload
from scanfleet.errors import NotFoundError, ProviderError, ValidationError
from scanfleet.fanout import EventFanout
from scanfleet.models import (
    FeedEvent,
    FeedEventType,
    JobStatus,
    NodeStatus,
    ResultRecord,
    ScanJob,
    ScanState,
    WorkerNode,
)
from scanfleet.planner import DistributionPlan, PlannerBounds, plan_distribution
from scanfleet.provider.base import FleetProvider, NodeHandle
from scanfleet.status_store import StatusStore

log = logging.getLogger("scanfleet.fleet_manager")


@dataclass
class FleetManagerConfig:
    """Tunables for provisioning and teardown.

    Attributes:
        poll_interval: Seconds between status polls while a node boots
        error_retry_interval: Seconds before retrying after a transient error
        max_poll_attempts: Give up on a node after this many polls
            (None = poll until ready or cancelled)
        teardown_delay: Seconds between job completion and teardown
        callback_address: host[:port] nodes use to reach the API
        worker_tag: Tag applied to every node in addition to the job ID
        bounds: Planner limits
    """
    poll_interval: float = 10.0
    error_retry_interval: float = 5.0
    max_poll_attempts: int | None = None
    teardown_delay: float = 30.0
    callback_address: str = "localhost:8080"
    worker_tag: str = "nuclei-worker"
    bounds: PlannerBounds = field(default_factory=PlannerBounds)

    @classmethod
    def from_app_config(cls, cfg: Any) -> "FleetManagerConfig":
        """Build from an :class:`scanfleet.app_config.AppConfig`."""
        fleet = cfg.fleet
        return cls(
            poll_interval=fleet.poll_interval,
            error_retry_interval=fleet.error_retry_interval,
            max_poll_attempts=fleet.max_poll_attempts or None,
            teardown_delay=fleet.teardown_delay,
            callback_address=f"{fleet.callback_address}:{cfg.callback_port}",
            worker_tag=fleet.worker_tag,
            bounds=PlannerBounds(
                min_nodes=fleet.min_nodes,
                max_nodes=fleet.max_nodes,
                min_items_per_node=fleet.min_items_per_node,
                max_items_per_node=fleet.max_items_per_node,
            ),
        )


class TaskState(str, Enum):
    PROVISIONING = "provisioning"
    REGISTERED = "registered"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Interval:
    """Sleep that wakes early when its cancel event is set."""

    def __init__(self, cancel: threading.Event) -> None:
        self._cancel = cancel

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def wait(self, seconds: float) -> bool:
        """Wait up to ``seconds``. Returns True if cancelled."""
        return self._cancel.wait(seconds)


@dataclass
class ProvisioningTask:
    """Handle for one chunk's provisioning thread."""
    chunk_index: int
    node_id: str
    item_count: int
    state: TaskState = TaskState.PROVISIONING
    handle: NodeHandle | None = None
    polls: int = 0
    error: str = ""
    thread: threading.Thread | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_index": self.chunk_index,
            "node_id": self.node_id,
            "item_count": self.item_count,
            "state": self.state.value,
            "handle": self.handle.handle_id if self.handle else None,
            "polls": self.polls,
            "error": self.error,
        }


@dataclass
class _JobRuntime:
    job: ScanJob
    plan: DistributionPlan
    cancel: threading.Event = field(default_factory=threading.Event)
    tasks: list[ProvisioningTask] = field(default_factory=list)
    teardown_timer: threading.Timer | None = None


def node_name(job_id: str, chunk_index: int) -> str:
    return f"{job_id[:8]}-worker-{chunk_index}"


class FleetManager:
    """Owns the fleet for every active job.

    Args:
        provider: Fleet provider capability used to create/poll/delete nodes.
        store: Status store holding each job's ScanState.
        fanout: Optional live-feed hub; change events are published to it.
        config: Provisioning and teardown tunables.
    """

    def __init__(self, provider: FleetProvider,
                 store: StatusStore | None = None,
                 fanout: EventFanout | None = None,
                 config: FleetManagerConfig | None = None) -> None:
        self.provider = provider
        self.store = store if store is not None else StatusStore()
        self.fanout = fanout
        self.config = config or FleetManagerConfig()
        self._lock = threading.Lock()
        self._runtimes: dict[str, _JobRuntime] = {}
        self._tearing_down: set[str] = set()

        if self.fanout is not None:
            self.fanout.set_snapshot_provider(self.snapshot_payload)

    # ── Submission ────────────────────────────────────────────────────

    def submit_items(self, items: Sequence[str], node_count: int,
                     job_id: str = "") -> str:
        """Clean a raw item list and submit it as a job.

        Whitespace is trimmed and blank entries dropped before planning.
        """
        cleaned = [i.strip() for i in items if i and i.strip()]
        if not cleaned:
            raise ValidationError("No valid items provided")
        return self.submit(ScanJob(items=cleaned, node_count=node_count,
                                   job_id=job_id))

    def submit(self, job: ScanJob) -> str:
        """Register a job and start provisioning one node per chunk.

        Returns the job ID immediately. Provisioning failures never surface
        here.
        """
        if not job.items:
            raise ValidationError("No items provided")

        job = job.with_id()
        plan = plan_distribution(job.items, job.node_count, self.config.bounds)
        self.store.create(job.job_id, total_items=len(job.items))

        runtime = _JobRuntime(job=job, plan=plan)
        with self._lock:
            self._runtimes[job.job_id] = runtime

        log.info("Starting job %s: %d items across %d node(s) (requested %d)",
                 job.job_id, len(job.items), plan.node_count, job.node_count)

        for index, chunk in enumerate(plan.chunks):
            task = ProvisioningTask(
                chunk_index=index,
                node_id=node_name(job.job_id, index),
                item_count=len(chunk),
            )
            task.thread = threading.Thread(
                target=self._run_task,
                args=(job.job_id, task, chunk, runtime.cancel),
                name=f"provision-{task.node_id}",
                daemon=True,
            )
            runtime.tasks.append(task)

        for task in runtime.tasks:
            task.thread.start()

        return job.job_id

    def _run_task(self, job_id: str, task: ProvisioningTask,
                  domains: list[str], cancel: threading.Event) -> None:
        try:
            self.provision_node(job_id, task.chunk_index, domains,
                                cancel=cancel, task=task)
        except Exception as e:
            task.state = TaskState.FAILED
            task.error = str(e)
            log.exception("Provisioning task %s crashed", task.node_id)

    # ── Provisioning ──────────────────────────────────────────────────

    def provision_node(self, job_id: str, chunk_index: int,
                       domains: Sequence[str],
                       cancel: threading.Event | None = None,
                       task: ProvisioningTask | None = None
                       ) -> WorkerNode | None:
        """Create one node, wait until it is ready, then register it.

        Blocks the calling thread. Returns the registered node, or None if
        the chunk was abandoned (create failed, permanent poll error, poll
        budget exhausted, job torn down).
        """
        cancel = cancel or threading.Event()
        interval = Interval(cancel)
        node_id = node_name(job_id, chunk_index)
        if task is None:
            task = ProvisioningTask(chunk_index=chunk_index, node_id=node_id,
                                    item_count=len(domains))

        payload = BootstrapPayload(
            job_id=job_id,
            node_id=node_id,
            callback_address=self.config.callback_address,
            items=tuple(domains),
        )

        log.info("Creating node %s with %d items", node_id, len(domains))
        try:
            handle = self.provider.create(
                node_id, [self.config.worker_tag, job_id], payload)
        except ProviderError as e:
            task.state = TaskState.FAILED
            task.error = str(e)
            log.error("Failed to create node %s: %s", node_id, e)
            return None
        task.handle = handle

        while True:
            if interval.cancelled:
                self._abandon(task, handle, "job torn down")
                return None

            task.polls += 1
            try:
                status = self.provider.get_status(handle)
            except ProviderError as e:
                if interval.cancelled:
                    self._abandon(task, handle, "job torn down")
                    return None
                if not e.transient:
                    log.error("Giving up on node %s: %s", node_id, e)
                    self._abandon(task, handle, str(e), state=TaskState.FAILED)
                    return None
                log.warning("Error polling node %s: %s", node_id, e)
                interval.wait(self.config.error_retry_interval)
                continue

            if status.is_ready:
                break

            limit = self.config.max_poll_attempts
            if limit is not None and task.polls >= limit:
                self._abandon(task, handle,
                              f"not ready after {task.polls} polls",
                              state=TaskState.FAILED)
                return None

            interval.wait(self.config.poll_interval)

        node = WorkerNode(
            node_id=node_id,
            address=status.address,
            total_items=len(domains),
            status=NodeStatus.RUNNING,
            handle=handle.handle_id,
        )
        try:
            with self.store.locked(job_id) as state:
                state.register_node(node)
                snapshot = state.to_dict()
        except NotFoundError:
            self._abandon(task, handle, "job no longer active")
            return None

        task.state = TaskState.REGISTERED
        log.info("Node %s is ready at %s", node_id, status.address)
        self._publish(job_id, FeedEventType.STATUS_UPDATE, snapshot)
        return node

    def _abandon(self, task: ProvisioningTask, handle: NodeHandle,
                 reason: str, state: TaskState = TaskState.CANCELLED) -> None:
        task.state = state
        task.error = reason
        log.warning("Abandoning node %s: %s", task.node_id, reason)
        try:
            self.provider.delete(handle)
        except ProviderError as e:
            log.error("Failed to destroy abandoned node %s: %s",
                      task.node_id, e)

    # ── Node callbacks ────────────────────────────────────────────────

    def update_progress(self, job_id: str, node_id: str, progress: float,
                        current_item: str = "", message: str = ""
                        ) -> dict[str, Any]:
        """Apply a node heartbeat and recompute overall progress."""
        progress = max(0.0, min(100.0, float(progress)))
        with self.store.locked(job_id) as state:
            node = state.find_node(node_id)
            if node is not None:
                node.progress = progress
                node.current_item = current_item
                node.items_scanned = int(node.total_items * progress / 100)
                if message:
                    node.last_message = message
            else:
                log.debug("Heartbeat for unregistered node %s of job %s",
                          node_id, job_id)
            state.recompute_progress()
            snapshot = state.to_dict()

        self._publish(job_id, FeedEventType.STATUS_UPDATE, snapshot)
        return snapshot

    def ingest_result(self, job_id: str, record: ResultRecord) -> ResultRecord:
        """Append a result and bump the scanned counter."""
        with self.store.locked(job_id) as state:
            state.add_result(record)

        log.debug("Result from %s: %s - %s", record.source_node,
                  record.target, record.rule)
        self._publish(job_id, FeedEventType.NEW_RESULT, record.to_dict())
        return record

    def complete_node(self, job_id: str, node_id: str) -> bool:
        """Mark a node finished. Returns True if this completed the job.

        Completion is judged over registered nodes only. When the last one
        finishes, ``job_complete`` is published and teardown is scheduled.
        """
        with self.store.locked(job_id) as state:
            node = state.find_node(node_id)
            if node is not None:
                node.progress = 100.0
                node.current_item = "completed"
                node.items_scanned = node.total_items
                node.status = NodeStatus.COMPLETED
            else:
                log.warning("Completion from unregistered node %s of job %s",
                            node_id, job_id)
            state.recompute_progress()
            job_done = (state.all_nodes_complete
                        and state.status != JobStatus.COMPLETED)
            if job_done:
                state.status = JobStatus.COMPLETED
            snapshot = state.to_dict()

        log.info("Node %s completed for job %s", node_id, job_id)
        self._publish(job_id, FeedEventType.STATUS_UPDATE, snapshot)

        if job_done:
            log.info("All nodes completed for job %s", job_id)
            self._publish(job_id, FeedEventType.JOB_COMPLETE, snapshot)
            self.schedule_teardown(job_id)
        return job_done

    # ── Queries ───────────────────────────────────────────────────────

    def get_status(self, job_id: str) -> ScanState:
        """Snapshot of a job's state. Raises NotFoundError."""
        return self.store.get(job_id)

    def get_results(self, job_id: str) -> list[ResultRecord]:
        return list(self.store.get(job_id).results)

    def snapshot_payload(self, job_id: str) -> dict[str, Any] | None:
        try:
            return self.store.get(job_id).to_dict()
        except NotFoundError:
            return None

    def list_jobs(self) -> list[str]:
        return self.store.job_ids()

    def tasks(self, job_id: str) -> list[ProvisioningTask]:
        with self._lock:
            runtime = self._runtimes.get(job_id)
        if runtime is None:
            raise NotFoundError(job_id)
        return list(runtime.tasks)

    def plan(self, job_id: str) -> DistributionPlan:
        with self._lock:
            runtime = self._runtimes.get(job_id)
        if runtime is None:
            raise NotFoundError(job_id)
        return runtime.plan

    def wait_for_provisioning(self, job_id: str,
                              timeout: float | None = None) -> bool:
        """Join a job's provisioning threads. True if all have finished."""
        with self._lock:
            runtime = self._runtimes.get(job_id)
        if runtime is None:
            return True
        for task in runtime.tasks:
            if task.thread is not None:
                task.thread.join(timeout)
        return all(t.thread is None or not t.thread.is_alive()
                   for t in runtime.tasks)

    # ── Teardown ──────────────────────────────────────────────────────

    def schedule_teardown(self, job_id: str,
                          delay: float | None = None) -> None:
        """Tear the job down after ``delay`` seconds (default from config)."""
        delay = self.config.teardown_delay if delay is None else delay
        with self._lock:
            runtime = self._runtimes.get(job_id)
            if runtime is not None and runtime.teardown_timer is not None:
                return
            timer = threading.Timer(delay, self._scheduled_teardown,
                                    args=(job_id,))
            timer.daemon = True
            if runtime is not None:
                runtime.teardown_timer = timer
        log.info("Teardown of job %s scheduled in %.0fs", job_id, delay)
        timer.start()

    def _scheduled_teardown(self, job_id: str) -> None:
        try:
            self.teardown(job_id)
        except Exception:
            log.exception("Scheduled teardown of job %s failed", job_id)

    def teardown(self, job_id: str) -> bool:
        """Destroy the job's nodes and drop its state.

        Idempotent: returns False and does nothing if the job is absent or
        already being torn down.
        """
        with self._lock:
            if job_id in self._tearing_down:
                return False
            runtime = self._runtimes.pop(job_id, None)
            if runtime is None and not self.store.exists(job_id):
                return False
            self._tearing_down.add(job_id)

        try:
            if runtime is not None:
                runtime.cancel.set()
                timer = runtime.teardown_timer
                if timer is not None and timer is not threading.current_thread():
                    timer.cancel()

            handles: list[NodeHandle] = []
            try:
                state = self.store.get(job_id)
                handles = [NodeHandle(handle_id=n.handle, name=n.node_id)
                           for n in state.nodes if n.handle]
            except NotFoundError:
                pass

            for handle in handles:
                try:
                    self.provider.delete(handle)
                except ProviderError as e:
                    log.error("Failed to destroy node %s of job %s: %s",
                              handle.name, job_id, e)

            try:
                self.provider.delete_by_tag(job_id)
            except ProviderError as e:
                log.error("Tag sweep for job %s failed: %s", job_id, e)

            self.store.remove(job_id)
            log.info("Job %s torn down (%d node(s) destroyed)",
                     job_id, len(handles))
            return True
        finally:
            with self._lock:
                self._tearing_down.discard(job_id)

    def shutdown(self) -> None:
        """Stop provisioning and pending teardown timers for every job.

        Registered nodes are left running.
        """
        with self._lock:
            runtimes = list(self._runtimes.values())
        for runtime in runtimes:
            runtime.cancel.set()
            if runtime.teardown_timer is not None:
                runtime.teardown_timer.cancel()

    # ── Helpers ───────────────────────────────────────────────────────

    def _publish(self, job_id: str, event_type: FeedEventType,
                 payload: Any) -> None:
        if self.fanout is None:
            return
        self.fanout.publish(job_id, FeedEvent(event_type, payload))
