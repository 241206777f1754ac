"""
Access-cost evaluator - score a placement against concurrently running VMs.

The model assumes every VM runs its vCPUs flat out within its CPU set and
stripes its memory evenly across the nodes it is confined to:

- distance terms look at the node of each physical CPU and the VM's nodes
- CPU time on a physical CPU is shared by every VM whose set contains it
- local memory bandwidth of a node is shared by all busy CPUs on that node
- a single interconnect carries every remote access, at a fraction of local
  throughput (``interconnect_bandwidth_ratio``, 0.5 by default)
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .config import get_settings
from .costs import AccessCost, reduce_costs
from .cpuset import CPUSet
from .errors import InvalidTopologyError, PlacementInvariantError
from .topology import Node, NumaTopology

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Placement:
    """A VM confined to ``nodes`` and running on the CPUs of ``cpuset``."""
    vcpus: int
    nodes: Tuple[Node, ...]
    cpuset: CPUSet

    def __post_init__(self):
        object.__setattr__(self, "nodes", tuple(
            n if isinstance(n, Node) else Node(n) for n in self.nodes
        ))
        if not isinstance(self.cpuset, CPUSet):
            object.__setattr__(self, "cpuset", CPUSet(self.cpuset))

    @classmethod
    def from_plan(cls, topology: NumaTopology, vcpus: int, cpuset: CPUSet) -> "Placement":
        """Placement of a planned CPU set; nodes are those owning its CPUs."""
        return cls(vcpus=vcpus, nodes=tuple(topology.nodes_of_cpuset(cpuset)), cpuset=cpuset)

    @property
    def cpu_slice(self) -> float:
        """Demand this VM puts on each CPU of its set."""
        return self.vcpus / len(self.cpuset)

    @property
    def interconnect_load(self) -> float:
        """Share of the interconnect this VM uses; remote accesses are (N-1)/N of all."""
        n = len(self.nodes)
        return (n - 1) / n * len(self.cpuset)

    def validate(self, topology: Optional[NumaTopology] = None):
        """Check the placement, and its nodes and CPUs against ``topology`` when given."""
        if self.vcpus < 1:
            raise PlacementInvariantError(f"Placement must have at least one vCPU, got {self.vcpus}")
        if self.cpuset.is_empty():
            raise PlacementInvariantError("Placement has an empty CPU set")
        if not self.nodes:
            raise PlacementInvariantError("Placement is not confined to any node")
        if topology is None:
            return
        try:
            for node in self.nodes:
                topology.node(node)
            for cpu in self.cpuset:
                topology.node_of_cpu(cpu)
        except InvalidTopologyError as e:
            raise PlacementInvariantError(f"Placement does not fit the topology: {e}") from e


def baseline_placement(topology: NumaTopology, vcpus: int) -> Placement:
    """NUMA-unaware placement: spread over every node and every host CPU."""
    return Placement(vcpus=vcpus, nodes=tuple(topology.nodes()), cpuset=topology.all_cpus())


def evaluate(topology: NumaTopology,
             other_placements: Iterable[Placement],
             this_placement: Placement,
             interconnect_ratio: Optional[float] = None) -> AccessCost:
    """
    Compute the access cost of ``this_placement``.

    Args:
        topology: Host topology
        other_placements: Every other active placement. ``this_placement`` is
            added internally and must not be part of this collection.
        this_placement: Placement to score
        interconnect_ratio: Interconnect throughput relative to local memory
            (default from settings)

    Returns:
        AccessCost whose ``average`` is the mean distance per CPU and whose
        ``bandwidth`` is scaled by the VM's own CPU demand.

    Raises:
        PlacementInvariantError: empty CPU set or node list, no vCPUs, nodes
            or CPUs unknown to ``topology``, or contention figures that cannot
            come from a consistent ledger.
    """
    if interconnect_ratio is None:
        interconnect_ratio = get_settings().interconnect_bandwidth_ratio

    this_placement.validate(topology)
    placements = [this_placement]
    for other in other_placements:
        other.validate(topology)
        placements.append(other)

    logger.debug(
        f"Evaluating vcpus={this_placement.vcpus} nodes={[str(n) for n in this_placement.nodes]} "
        f"cpus={this_placement.cpuset} against {len(placements) - 1} placements"
    )

    node_indices = [n.index for n in this_placement.nodes]
    n_nodes = len(node_indices)
    want_slice = this_placement.cpu_slice
    total_interconnect = sum(p.interconnect_load for p in placements)
    busy = CPUSet()
    for p in placements:
        busy = busy | p.cpuset

    costs: List[AccessCost] = []
    for cpu in this_placement.cpuset:
        node = topology.node_of_cpu(cpu)
        distances = topology.distances[node.index, node_indices]

        # CPU time this vCPU gets when every VM runs its vCPUs at 100%
        all_slices = sum(p.cpu_slice for p in placements if cpu in p.cpuset)
        if want_slice > all_slices:
            raise PlacementInvariantError(
                f"CPU {cpu}: slice {want_slice} exceeds the total demand {all_slices}"
            )
        cpu_slice = want_slice / all_slices

        # Local bandwidth shared by the busy CPUs of this node; the VM reaches
        # any given node for only 1/N of its accesses
        busy_on_node = len(topology.cpuset_of_node(node) & busy)
        local_share = 1.0 / busy_on_node / n_nodes

        remote_share = 0.0
        my_load = (n_nodes - 1) / n_nodes
        if my_load:
            if total_interconnect <= 0:
                raise PlacementInvariantError("Interconnect load total is zero")
            remote_share = my_load / total_interconnect

        bandwidth = cpu_slice * (local_share + remote_share * interconnect_ratio)
        costs.append(AccessCost(
            worst=int(distances.max()),
            average=float(np.mean(distances)),
            bandwidth=bandwidth,
            best=int(distances.min()),
        ))

    total = reduce_costs(costs)
    cost = AccessCost(
        worst=total.worst,
        average=total.average / len(this_placement.cpuset),
        bandwidth=total.bandwidth * want_slice,
        best=total.best,
    )
    logger.debug(f"Access cost: {cost}")
    return cost


def evaluate_fleet(topology: NumaTopology,
                   placements: Sequence[Placement],
                   interconnect_ratio: Optional[float] = None) -> List[AccessCost]:
    """Evaluate each placement against all the others."""
    return [
        evaluate(topology, list(placements[:i]) + list(placements[i + 1:]), placement,
                 interconnect_ratio=interconnect_ratio)
        for i, placement in enumerate(placements)
    ]
