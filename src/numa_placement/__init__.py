"""
NUMA Placement - NUMA-topology-aware VM placement planner.

This package chooses which physical CPUs of a multi-socket host a VM's
vCPUs are bound to, keeping memory accesses local where capacity allows,
and scores placements with a memory latency and bandwidth contention model.
"""

__version__ = "0.1.0"

from .cpuset import CPUSet
from .topology import Node, NumaTopology
from .resources import VMResourceRequest, NodeResource, NodeMemoryLedger
from .planner import plan, plan_with_nodes, candidate_node_sets, NodeSetCandidate
from .costs import AccessCost, reduce_costs
from .evaluator import Placement, evaluate, evaluate_fleet, baseline_placement
from .fleet import simulate_fleet, FleetReport, VMPlacementRecord
from .presets import (
    TOPOLOGY_PRESETS,
    create_topology,
    list_presets,
    make_symmetric_topology,
    make_asymmetric_topology,
)
from .config import PlacementSettings, get_settings, configure_logging
from .errors import (
    NumaPlacementError,
    ConfigurationError,
    InvalidTopologyError,
    InvalidRequestError,
    PlacementInvariantError,
    LedgerError,
    PlacementFailedError,
)

# Define public API
__all__ = [
    # Data model
    "CPUSet",
    "Node",
    "NumaTopology",
    "VMResourceRequest",
    "NodeResource",
    "NodeMemoryLedger",

    # Planning and evaluation
    "plan",
    "plan_with_nodes",
    "candidate_node_sets",
    "NodeSetCandidate",
    "AccessCost",
    "reduce_costs",
    "Placement",
    "evaluate",
    "evaluate_fleet",
    "baseline_placement",
    "simulate_fleet",
    "FleetReport",
    "VMPlacementRecord",

    # Presets
    "TOPOLOGY_PRESETS",
    "create_topology",
    "list_presets",
    "make_symmetric_topology",
    "make_asymmetric_topology",

    # Configuration
    "PlacementSettings",
    "get_settings",
    "configure_logging",

    # Errors
    "NumaPlacementError",
    "ConfigurationError",
    "InvalidTopologyError",
    "InvalidRequestError",
    "PlacementInvariantError",
    "LedgerError",
    "PlacementFailedError",
]
