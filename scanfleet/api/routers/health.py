"""Liveness endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from scanfleet import __version__
from scanfleet.fanout import EventFanout
from scanfleet.fleet_manager import FleetManager
from ..dependencies import get_fanout, get_manager

router = APIRouter(tags=["health"])


@router.get("/health")
def health(manager: FleetManager = Depends(get_manager),
           fanout: EventFanout = Depends(get_fanout)):
    return {
        "status": "healthy",
        "active_jobs": len(manager.list_jobs()),
        "subscribers": fanout.subscriber_count(),
        "version": __version__,
    }
