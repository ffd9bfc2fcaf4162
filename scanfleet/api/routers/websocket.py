"""
Live feed over WebSocket.

``WS /ws/{job_id}`` streams ``{type, payload}`` events for one job:
``status_update``, ``new_result`` and ``job_complete``.  A client message
``{"type": "ping"}`` is answered with ``{"type": "pong"}``.

The fanout dispatcher runs on its own thread, so each socket is wrapped in
an adapter that hands sends back to the event loop and waits for them.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from scanfleet.logconfig import get_module_logger
from ..dependencies import get_ws_fanout

router = APIRouter()
log = get_module_logger("api.websocket")

SEND_TIMEOUT = 10.0


class WebSocketConnection:
    """Thread-safe ``send`` for a socket owned by an event loop."""

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop,
                 timeout: float = SEND_TIMEOUT) -> None:
        self.websocket = websocket
        self.loop = loop
        self.timeout = timeout
        self.closed = False

    def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionError("WebSocket already closed")
        future = asyncio.run_coroutine_threadsafe(
            self.websocket.send_json(message), self.loop)
        future.result(self.timeout)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            asyncio.run_coroutine_threadsafe(self.websocket.close(), self.loop)
        except RuntimeError as e:
            # Loop already stopped
            log.debug("Could not schedule WebSocket close: %s", e)


@router.websocket("/{job_id}")
async def job_feed(websocket: WebSocket, job_id: str):
    await websocket.accept()
    fanout = get_ws_fanout(websocket)
    conn = WebSocketConnection(websocket, asyncio.get_running_loop())

    # subscribe() writes the snapshot synchronously through the adapter,
    # which needs this loop free
    if not await run_in_threadpool(fanout.subscribe, job_id, conn):
        conn.closed = True
        await websocket.close(code=1011)
        return

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except ValueError:
                log.debug("Ignoring non-JSON frame on job %s", job_id)
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        log.debug("WebSocket for job %s disconnected", job_id)
    except RuntimeError as e:
        # Socket closed from the dispatcher side after a failed write
        log.debug("WebSocket for job %s closed: %s", job_id, e)
    finally:
        conn.closed = True
        fanout.unsubscribe(job_id, conn)
