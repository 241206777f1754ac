"""
Fleet simulation - start VMs one after another on a single host.

Each VM is planned against a shared memory ledger, the memory is debited
from the node set it was planned on, and its placement is scored twice against
the VMs already running: once as planned and once as the NUMA-unaware
baseline that spreads it over the whole host.

Example usage:
    >>> from numa_placement import simulate_fleet, create_topology
    >>>
    >>> report = simulate_fleet(create_topology('amd_opteron_6272'), vm_count=10)
    >>> print(report.summary())
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .costs import AccessCost, reduce_costs
from .cpuset import CPUSet
from .errors import PlacementFailedError
from .evaluator import Placement, baseline_placement, evaluate
from .planner import plan_with_nodes
from .resources import NodeMemoryLedger, VMResourceRequest
from .topology import Node, NumaTopology

logger = logging.getLogger(__name__)

GiB = 1 << 30


@dataclass
class VMPlacementRecord:
    """Outcome of starting one VM of the fleet."""
    index: int
    request: VMResourceRequest
    placement: Placement
    memory_debited: Dict[Node, int]
    aware_cost: AccessCost
    baseline_cost: AccessCost

    @property
    def cpuset(self) -> CPUSet:
        return self.placement.cpuset

    @property
    def nodes(self) -> List[Node]:
        return list(self.placement.nodes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'index': self.index,
            'vcpus': self.request.vcpus,
            'memory': self.request.memory,
            'cpus': self.cpuset.format(),
            'nodes': [n.index for n in self.nodes],
            'memory_debited': {n.index: m for n, m in self.memory_debited.items()},
            'aware_cost': self.aware_cost.to_dict(),
            'baseline_cost': self.baseline_cost.to_dict(),
        }


@dataclass
class FleetReport:
    """Per-VM results of a fleet simulation and their aggregates."""
    topology: NumaTopology
    records: List[VMPlacementRecord] = field(default_factory=list)

    @property
    def placements(self) -> List[Placement]:
        return [r.placement for r in self.records]

    @property
    def aware_total(self) -> AccessCost:
        return reduce_costs(r.aware_cost for r in self.records)

    @property
    def baseline_total(self) -> AccessCost:
        return reduce_costs(r.baseline_cost for r in self.records)

    def bandwidth_not_worse(self, tolerance: float = 1e-3) -> bool:
        """True when the planned fleet gets at least the baseline total bandwidth."""
        return self.aware_total.bandwidth >= self.baseline_total.bandwidth - tolerance

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'topology': self.topology.to_dict(),
            'vms': [r.to_dict() for r in self.records],
            'aware_total': self.aware_total.to_dict(),
            'baseline_total': self.baseline_total.to_dict(),
        }

    def summary(self) -> str:
        """Human-readable summary."""
        aware = self.aware_total
        baseline = self.baseline_total
        lines = [
            "=" * 60,
            "FLEET PLACEMENT",
            "=" * 60,
            "",
            f"Host: {self.topology.num_nodes} nodes, {self.topology.num_cpus} CPUs",
            f"VMs placed: {len(self.records)}",
            "",
        ]
        for r in self.records:
            lines.append(
                f"  VM {r.index:>3}: cpus {r.cpuset.format():<12} "
                f"nodes {','.join(str(n.index) for n in r.nodes):<8} "
                f"avg {r.aware_cost.average:6.2f} (baseline {r.baseline_cost.average:6.2f})"
            )
        lines.extend([
            "",
            f"NUMA-aware: {aware}",
            f"Baseline:   {baseline}",
            f"Bandwidth not worse: {self.bandwidth_not_worse()}",
            "=" * 60,
        ])
        return "\n".join(lines)


def simulate_fleet(topology: NumaTopology,
                   vm_count: int,
                   memory_per_vm: int = GiB,
                   node_memory: int = 16 * GiB,
                   vcpus: Optional[int] = None,
                   ledger: Optional[NodeMemoryLedger] = None) -> FleetReport:
    """
    Start ``vm_count`` identical VMs on ``topology``.

    Args:
        topology: Host topology
        vm_count: Number of VMs to start
        memory_per_vm: Memory of each VM in bytes
        node_memory: Initial free memory of every node, ignored when
            ``ledger`` is given
        vcpus: vCPUs per VM; default ``max(2, cpus // vm_count)``
        ledger: Memory ledger to plan against; updated in place

    Returns:
        FleetReport with one record per VM

    Raises:
        PlacementFailedError: a VM could not be placed
    """
    if vm_count < 1:
        raise ValueError(f"vm_count must be >= 1, got {vm_count}")
    if vcpus is None:
        vcpus = max(2, topology.num_cpus // vm_count)
    if ledger is None:
        ledger = NodeMemoryLedger(topology, node_memory)

    report = FleetReport(topology=topology)
    for index in range(1, vm_count + 1):
        request = VMResourceRequest(vcpus=vcpus, memory=memory_per_vm, affinity=topology.all_cpus())
        result = plan_with_nodes(topology, ledger.snapshot(), request)
        if result is None:
            raise PlacementFailedError(index, f"No NUMA plan for VM {index} ({vcpus} vCPUs, {memory_per_vm} bytes)")

        cpuset, nodes = result
        placement = Placement(vcpus=vcpus, nodes=nodes, cpuset=cpuset)
        debited = ledger.debit(placement.nodes, memory_per_vm)

        running = report.placements
        aware_cost = evaluate(topology, running, placement)
        baseline_cost = evaluate(topology, running, baseline_placement(topology, vcpus))
        logger.debug(f"VM {index}: cpus {cpuset}, aware {aware_cost}, baseline {baseline_cost}")

        report.records.append(VMPlacementRecord(
            index=index,
            request=request,
            placement=placement,
            memory_debited=debited,
            aware_cost=aware_cost,
            baseline_cost=baseline_cost,
        ))

    return report
