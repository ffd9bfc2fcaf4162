"""Fleet providers: the create/poll/delete capability and its implementations."""

from .base import FleetProvider, NodeHandle, ProviderNodeState, ProviderNodeStatus
from .digitalocean import DigitalOceanConfig, DigitalOceanProvider

__all__ = [
    "DigitalOceanConfig",
    "DigitalOceanProvider",
    "FleetProvider",
    "NodeHandle",
    "ProviderNodeState",
    "ProviderNodeStatus",
]
