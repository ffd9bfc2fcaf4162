"""
Dependencies for the scanfleet API.

Everything lives on ``app.state`` so each app built by ``create_app()``
carries its own manager and fanout.
"""
from fastapi import Request, WebSocket

from scanfleet.fanout import EventFanout
from scanfleet.fleet_manager import FleetManager


def get_manager(request: Request) -> FleetManager:
    return request.app.state.manager


def get_fanout(request: Request) -> EventFanout:
    return request.app.state.fanout


def get_ws_fanout(websocket: WebSocket) -> EventFanout:
    return websocket.app.state.fanout
