"""
Distribution planner: split a target list across a bounded number of nodes.

The plan honours four bounds (node count and items-per-node, each with a
minimum and maximum) and always partitions the input exactly: chunks are
contiguous, in input order, and their concatenation is the input.

Usage::

    from scanfleet.planner import plan_distribution, PlannerBounds

    plan = plan_distribution(domains, requested_nodes=3)
    for index, chunk in enumerate(plan.chunks):
        ...
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from scanfleet.errors import ValidationError

log = logging.getLogger("scanfleet.planner")


@dataclass(frozen=True)
class PlannerBounds:
    """Limits applied when choosing the effective node count."""
    min_nodes: int = 1
    max_nodes: int = 5
    min_items_per_node: int = 50
    max_items_per_node: int = 500

    def __post_init__(self):
        if self.min_nodes < 1:
            raise ValidationError("min_nodes must be at least 1")
        if self.max_nodes < self.min_nodes:
            raise ValidationError("max_nodes must be >= min_nodes")
        if self.min_items_per_node < 1:
            raise ValidationError("min_items_per_node must be at least 1")
        if self.max_items_per_node < self.min_items_per_node:
            raise ValidationError(
                "max_items_per_node must be >= min_items_per_node")

    def clamp(self, nodes: int) -> int:
        return max(self.min_nodes, min(nodes, self.max_nodes))


@dataclass(frozen=True)
class DistributionPlan:
    node_count: int
    chunks: list[list[str]] = field(default_factory=list)

    @property
    def chunk_sizes(self) -> list[int]:
        return [len(c) for c in self.chunks]


def optimal_node_count(total: int, requested: int,
                       bounds: PlannerBounds) -> int:
    """Choose how many nodes to use for ``total`` items."""
    nodes = bounds.clamp(requested)

    if total > nodes * bounds.max_items_per_node:
        # Too many items per node: add nodes
        nodes = bounds.clamp(-(-total // bounds.max_items_per_node))
    elif total < nodes * bounds.min_items_per_node:
        # Too few items per node: consolidate
        nodes = bounds.clamp(total // bounds.min_items_per_node)

    return nodes


def create_chunks(items: Sequence[str], nodes: int) -> list[list[str]]:
    """Split ``items`` into ``nodes`` contiguous slices.

    The first ``len(items) % nodes`` chunks carry one extra item.
    """
    base, extra = divmod(len(items), nodes)
    chunks: list[list[str]] = []
    start = 0
    for i in range(nodes):
        size = base + 1 if i < extra else base
        chunks.append(list(items[start:start + size]))
        start += size
    return chunks


def plan_distribution(items: Sequence[str], requested_nodes: int,
                      bounds: PlannerBounds | None = None
                      ) -> DistributionPlan:
    """Compute the effective node count and the ordered chunk list."""
    if not items:
        return DistributionPlan(node_count=0, chunks=[])

    bounds = bounds or PlannerBounds()
    nodes = optimal_node_count(len(items), requested_nodes, bounds)
    if nodes != requested_nodes:
        log.debug("Adjusted node count %d -> %d for %d items",
                  requested_nodes, nodes, len(items))
    return DistributionPlan(node_count=nodes,
                            chunks=create_chunks(items, nodes))


class ScanOptimizer:
    """Planner bound to a fixed set of limits."""

    def __init__(self, bounds: PlannerBounds | None = None) -> None:
        self.bounds = bounds or PlannerBounds()

    def optimize(self, items: Sequence[str],
                 requested_nodes: int) -> DistributionPlan:
        return plan_distribution(items, requested_nodes, self.bounds)
