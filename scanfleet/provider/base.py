"""
Fleet provider capability.

A provider creates, polls and destroys compute nodes.  The orchestration
core only depends on this interface; concrete providers (DigitalOcean, the
in-memory fake used by tests) implement it.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from scanfleet.bootstrap import BootstrapPayload


class ProviderNodeState(str, Enum):
    NEW = "new"
    ACTIVE = "active"
    OFF = "off"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class NodeHandle:
    """Provider-side reference to a created node."""
    handle_id: str
    name: str = ""


@dataclass(frozen=True)
class ProviderNodeStatus:
    state: str
    address: str = ""

    @property
    def is_ready(self) -> bool:
        """A node is usable once it is active and has a public address."""
        return self.state == ProviderNodeState.ACTIVE.value and bool(self.address)


class FleetProvider(ABC):
    """Create / poll / delete capability consumed by the FleetManager.

    Implementations raise :class:`scanfleet.errors.ProviderError` on
    failure, flagging retryable conditions with ``transient=True``.
    """

    @abstractmethod
    def create(self, name: str, tags: list[str],
               payload: BootstrapPayload) -> NodeHandle:
        """Start creating a node and return its handle immediately."""

    @abstractmethod
    def get_status(self, handle: NodeHandle) -> ProviderNodeStatus:
        """Return the node's current provider state and address."""

    @abstractmethod
    def delete(self, handle: NodeHandle) -> None:
        """Destroy a single node."""

    @abstractmethod
    def delete_by_tag(self, tag: str) -> int:
        """Destroy every node carrying ``tag``. Returns how many were removed."""
