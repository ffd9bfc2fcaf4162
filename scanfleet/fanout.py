#!/usr/bin/env python3
# -------------------------------------------------------------------------------
# Name:         fanout
# Purpose:      Per-job broadcast of live scan events to subscribed
#               connections, with a bounded queue and one dispatcher per job.
#
# Licence:      MIT
# -------------------------------------------------------------------------------

"""
Event Fanout

Delivers ``{type, payload}`` feed events to every connection watching a job::

    EventFanout.publish()  ─put_nowait─>  bounded queue (per job)
                                                │
                                         dispatcher thread
                                                │
                                  connection.send(message) for each member

    fanout = EventFanout(snapshot_provider=manager.snapshot_payload)
    fanout.subscribe(job_id, conn)         # conn receives a snapshot first
    fanout.publish(job_id, FeedEvent(...))
    fanout.unsubscribe(job_id, conn)       # last one out stops the dispatcher

Delivery policy is at-most-once: when a job's queue is full the message is
dropped, a warning is logged and the drop counter increases.  Ordering is
FIFO within a job and unspecified across jobs.  A connection whose ``send``
raises is unsubscribed by the dispatcher.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Protocol

from scanfleet.models import FeedEvent, FeedEventType

log = logging.getLogger("scanfleet.fanout")

DEFAULT_QUEUE_SIZE = 100

_CLOSE = object()


class Connection(Protocol):
    """Anything that can receive a feed message."""

    def send(self, message: dict[str, Any]) -> None:
        ...


SnapshotProvider = Callable[[str], Any]


class _Member:
    """A subscribed connection.

    Until ``ready`` is set the dispatcher parks messages in ``backlog``;
    ``lock`` orders the snapshot write before any queued message.
    """

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self.lock = threading.Lock()
        self.ready = False
        self.backlog: list[dict[str, Any]] = []


class _Channel:
    """Queue, members and dispatcher thread for one job."""

    def __init__(self, job_id: str, maxsize: int) -> None:
        self.job_id = job_id
        self.queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self.members: list[_Member] = []
        self.closed = False
        self.thread: threading.Thread | None = None
        self.dropped = 0

    def index_of(self, connection: Connection) -> int:
        for i, member in enumerate(self.members):
            if member.connection is connection:
                return i
        return -1

    def close(self) -> None:
        self.closed = True
        try:
            self.queue.put_nowait(_CLOSE)
        except queue.Full:
            # Dispatcher sees the closed flag on its next wake-up
            pass


class EventFanout:
    """Per-job publish/subscribe hub.

    Args:
        snapshot_provider: ``job_id -> payload`` used to build the snapshot
            sent to each new subscriber. Returning None skips the snapshot.
        queue_size: Capacity of each job's message queue.
    """

    def __init__(self, snapshot_provider: SnapshotProvider | None = None,
                 queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._lock = threading.Lock()
        self._channels: dict[str, _Channel] = {}
        self._snapshot_provider = snapshot_provider
        self._queue_size = queue_size
        self._stats = {
            "published": 0,
            "delivered": 0,
            "dropped": 0,
            "send_failures": 0,
        }

    def set_snapshot_provider(self, provider: SnapshotProvider | None) -> None:
        self._snapshot_provider = provider

    # -- Subscriptions -----------------------------------------------------

    def subscribe(self, job_id: str, connection: Connection) -> bool:
        """Register ``connection`` and send it the current snapshot.

        Messages published while the snapshot is being taken or written are
        held for this connection and delivered right after it.  Returns
        False if the snapshot could not be written, in which case the
        connection is unregistered again.
        """
        member = _Member(connection)
        with self._lock:
            channel = self._channels.get(job_id)
            if channel is None:
                channel = _Channel(job_id, self._queue_size)
                self._channels[job_id] = channel
                channel.thread = threading.Thread(
                    target=self._dispatch, args=(channel,),
                    name=f"fanout-{job_id[:8]}", daemon=True,
                )
                channel.thread.start()
            channel.members.append(member)
            count = len(channel.members)

        with member.lock:
            try:
                if self._snapshot_provider is not None:
                    payload = self._snapshot_provider(job_id)
                    if payload is not None:
                        snapshot = FeedEvent(FeedEventType.STATUS_UPDATE, payload)
                        connection.send(snapshot.to_dict())
                for message in member.backlog:
                    connection.send(message)
            except Exception as e:
                log.warning("Snapshot delivery failed for job %s: %s",
                            job_id, e)
                self.unsubscribe(job_id, connection)
                return False
            delivered = len(member.backlog)
            member.backlog.clear()
            member.ready = True

        if delivered:
            with self._lock:
                self._stats["delivered"] += delivered
        log.info("Subscriber added to job %s (subscribers=%d)", job_id, count)
        return True

    def unsubscribe(self, job_id: str, connection: Connection) -> bool:
        """Remove a connection. The last one out closes the job's queue."""
        with self._lock:
            channel = self._channels.get(job_id)
            if channel is None:
                return False
            idx = channel.index_of(connection)
            if idx < 0:
                return False
            del channel.members[idx]
            emptied = not channel.members
            if emptied:
                del self._channels[job_id]
                channel.close()

        log.info("Subscriber removed from job %s%s", job_id,
                 " (channel closed)" if emptied else "")
        return True

    # -- Publishing --------------------------------------------------------

    def publish(self, job_id: str, message: FeedEvent | dict[str, Any]) -> bool:
        """Enqueue a message without blocking.

        Returns True if queued, False if there are no subscribers or the
        queue is full (message dropped).
        """
        with self._lock:
            channel = self._channels.get(job_id)
        if channel is None:
            return False

        if isinstance(message, FeedEvent):
            message = message.to_dict()

        try:
            channel.queue.put_nowait(message)
        except queue.Full:
            with self._lock:
                channel.dropped += 1
                self._stats["dropped"] += 1
            log.warning("Fanout queue full for job %s, dropped %s message",
                        job_id, message.get("type"))
            return False

        with self._lock:
            self._stats["published"] += 1
        return True

    def _dispatch(self, channel: _Channel) -> None:
        """Drain one job's queue until the channel is closed."""
        log.debug("Dispatcher started for job %s", channel.job_id)
        while True:
            message = channel.queue.get()
            if message is _CLOSE or channel.closed:
                break

            with self._lock:
                members = list(channel.members)

            for member in members:
                if channel.closed:
                    break
                try:
                    with member.lock:
                        if not member.ready:
                            member.backlog.append(message)
                            continue
                        member.connection.send(message)
                except Exception as e:
                    log.warning("Write to subscriber of job %s failed: %s",
                                channel.job_id, e)
                    with self._lock:
                        self._stats["send_failures"] += 1
                    self.unsubscribe(channel.job_id, member.connection)
                    _close_quietly(member.connection)
                    continue
                with self._lock:
                    self._stats["delivered"] += 1

        log.debug("Dispatcher stopped for job %s", channel.job_id)

    # -- Shutdown / introspection ------------------------------------------

    def shutdown(self) -> None:
        """Close every channel and stop all dispatchers."""
        with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            channel.members.clear()
            channel.close()
        for channel in channels:
            if channel.thread and channel.thread is not threading.current_thread():
                channel.thread.join(timeout=2.0)

    def has_subscribers(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._channels

    def subscriber_count(self, job_id: str | None = None) -> int:
        with self._lock:
            if job_id is not None:
                channel = self._channels.get(job_id)
                return len(channel.members) if channel else 0
            return sum(len(c.members) for c in self._channels.values())

    def active_jobs(self) -> list[str]:
        with self._lock:
            return list(self._channels)

    def dispatcher_thread(self, job_id: str) -> threading.Thread | None:
        with self._lock:
            channel = self._channels.get(job_id)
            return channel.thread if channel else None

    @property
    def stats(self) -> dict[str, Any]:
        with self._lock:
            s = dict(self._stats)
            s["active_jobs"] = len(self._channels)
            s["subscribers"] = sum(len(c.members) for c in self._channels.values())
        return s


def _close_quietly(connection: Any) -> None:
    close = getattr(connection, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception as e:
        log.debug("Error closing subscriber connection: %s", e)
