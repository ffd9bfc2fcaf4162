"""scanfleet - distributed nuclei scanning over a transient droplet fleet.

This package contains:
- Distribution planning of target lists across nodes
- Fleet lifecycle management (provision, track, tear down)
- Concurrent per-job status aggregation
- Per-job live event fanout
- The FastAPI surface used by clients and scan nodes
"""

from .__version__ import __version__

__author__ = "scanfleet developers"
__license__ = "MIT"

from .errors import NotFoundError, ProviderError, ScanFleetError, ValidationError
from .fanout import EventFanout
from .fleet_manager import FleetManager
from .models import ResultRecord, ScanJob, ScanState, Severity, WorkerNode
from .planner import DistributionPlan, PlannerBounds, plan_distribution
from .status_store import StatusStore

__all__ = [
    '__version__',
    'DistributionPlan',
    'EventFanout',
    'FleetManager',
    'NotFoundError',
    'PlannerBounds',
    'ProviderError',
    'ResultRecord',
    'ScanFleetError',
    'ScanJob',
    'ScanState',
    'Severity',
    'StatusStore',
    'ValidationError',
    'WorkerNode',
    'plan_distribution',
]
