"""
NUMA-aware planner - choose physical CPUs for a starting VM.

The planner looks for the smallest set of NUMA nodes that can hold the VM:
enough memory on those nodes and enough CPUs from the VM's affinity mask.
Among node sets of the same size it prefers the one whose nodes are closest
to each other, which bounds worst-case and then average memory latency.

Main entry points:
- plan(): pick the CPUs for a VM, or None when nothing fits
- plan_with_nodes(): same choice, also returning the node set holding its memory
- candidate_node_sets(): node sets ranked by distance, as plan() walks them

Example usage:
    >>> from numa_placement import plan, make_symmetric_topology, VMResourceRequest, CPUSet
    >>>
    >>> host = make_symmetric_topology(numa=2, cores=4)
    >>> nodes = [host.resource(n, memory=16 << 30) for n in host.nodes()]
    >>> vm = VMResourceRequest(vcpus=2, memory=1 << 30, affinity=host.all_cpus())
    >>> plan(host, nodes, vm)
    CPUSet('0-1')
"""

import logging
from collections import deque
from dataclasses import dataclass
from itertools import combinations
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .config import get_settings
from .cpuset import CPUSet
from .errors import InvalidRequestError, InvalidTopologyError
from .resources import NodeResource, VMResourceRequest
from .topology import Node, NumaTopology

logger = logging.getLogger(__name__)

# Slack allowed on the mean distance compared with the NUMA-unaware placement
AVERAGE_TOLERANCE = 1e-3


@dataclass(frozen=True)
class NodeSetCandidate:
    """A set of nodes with its pairwise distance bounds."""
    nodes: Tuple[Node, ...]
    max_distance: int  # bounds worst-case access time
    sum_distance: int  # bounds average access time

    @property
    def indices(self) -> Tuple[int, ...]:
        return tuple(n.index for n in self.nodes)


def _candidates_of_size(topology: NumaTopology, size: int) -> List[NodeSetCandidate]:
    nodes = topology.nodes()
    distances = topology.distances
    candidates = []
    for combo in combinations(range(topology.num_nodes), size):
        block = distances[np.ix_(combo, combo)]
        candidates.append(NodeSetCandidate(
            nodes=tuple(nodes[i] for i in combo),
            max_distance=int(block.max()),
            sum_distance=int(block.sum()),
        ))
    candidates.sort(key=lambda c: (c.max_distance, c.sum_distance, c.indices))
    return candidates


def candidate_node_sets(topology: NumaTopology,
                        max_nodes: Optional[int] = None) -> Iterator[NodeSetCandidate]:
    """Yield node sets by increasing size, closest sets first within a size.

    Distances are taken over every ordered pair of the set, so asymmetric
    matrices count both directions. Ties are broken by node indices.
    """
    limit = topology.num_nodes if max_nodes is None else min(max_nodes, topology.num_nodes)
    for size in range(1, limit + 1):
        yield from _candidates_of_size(topology, size)


def _memory_by_node(topology: NumaTopology,
                    node_resources: Sequence[NodeResource]) -> Dict[int, int]:
    memory = {}
    for resource in node_resources:
        if not isinstance(resource, NodeResource):
            raise InvalidRequestError(f"Expected NodeResource, got {resource!r}")
        try:
            node = topology.node(resource.node)
        except InvalidTopologyError as e:
            raise InvalidRequestError(str(e)) from e
        if node.index in memory:
            raise InvalidRequestError(f"{node} is listed more than once in the node resources")
        memory[node.index] = resource.memory_available
    return memory


def _stripe(topology: NumaTopology, nodes: Sequence[Node],
            eligible: Sequence[CPUSet], vcpus: int) -> CPUSet:
    """Pick ``vcpus`` CPUs round-robin across ``nodes``, most central node first.

    Nodes are visited by ascending mean distance to the whole set, ties by
    index; within a node the lowest eligible CPU ids come first.
    """
    indices = [n.index for n in nodes]
    block = topology.distances[np.ix_(indices, indices)]
    order = sorted(range(len(indices)), key=lambda k: (float(block[k].mean()), indices[k]))
    queues = [deque(eligible[indices[k]].elements()) for k in order]
    chosen: List[int] = []
    while len(chosen) < vcpus:
        for queue in queues:
            if queue and len(chosen) < vcpus:
                chosen.append(queue.popleft())
    return CPUSet(chosen)


def _mean_distance(topology: NumaTopology, cpuset: CPUSet, node_indices: Sequence[int]) -> float:
    """Mean distance from the CPUs of ``cpuset`` to memory striped over ``node_indices``."""
    rows = [topology.node_of_cpu(cpu).index for cpu in cpuset]
    return float(topology.distances[np.ix_(rows, list(node_indices))].mean())


def plan(topology: NumaTopology,
         node_resources: Sequence[NodeResource],
         request: VMResourceRequest,
         max_nodes: Optional[int] = None) -> Optional[CPUSet]:
    """
    Choose the physical CPUs a VM's vCPUs should be bound to.

    See plan_with_nodes() for the ranking. Returns the CPU set only, or None
    when no node set can satisfy the request.
    """
    result = plan_with_nodes(topology, node_resources, request, max_nodes=max_nodes)
    return None if result is None else result[0]


def plan_with_nodes(topology: NumaTopology,
                    node_resources: Sequence[NodeResource],
                    request: VMResourceRequest,
                    max_nodes: Optional[int] = None) -> Optional[Tuple[CPUSet, Tuple[Node, ...]]]:
    """
    Choose the CPUs of a VM together with the nodes its memory is confined to.

    A node set is feasible when its nodes hold at least ``request.memory``
    bytes in total and offer at least ``request.vcpus`` CPUs from
    ``request.affinity``. Node sets are tried by increasing size. Within a
    size the feasible sets are ranked by:

    1. every node can host at least one vCPU, so all of the set's memory is
       local to some vCPU
    2. smallest maximum pairwise distance
    3. smallest sum of pairwise distances
    4. most free memory, which spreads successive VMs over equivalent nodes
       as the caller debits its ledger
    5. lowest node indices

    CPUs are then taken round-robin across the chosen nodes, most central
    node first. With fewer vCPUs than nodes some chosen nodes hold memory but
    no CPU of the plan.

    A plan whose mean memory distance exceeds that of the NUMA-unaware
    placement (every host CPU, memory on every node) by more than
    ``AVERAGE_TOLERANCE`` is skipped in favour of the next ranked set, then
    the next size. When no set avoids that, the first ranked feasible set is
    used and a warning is logged.

    Args:
        topology: Host topology
        node_resources: Memory currently available per node. Nodes not
            listed have no memory available.
        request: VM resource request
        max_nodes: Largest node set to try (default from settings, else all)

    Returns:
        ``(cpuset, nodes)``: exactly ``request.vcpus`` CPUs from the affinity
        mask and the chosen node set, or None when no node set can satisfy
        the request.

    Raises:
        InvalidRequestError: duplicate or unknown nodes in ``node_resources``
    """
    if not isinstance(request, VMResourceRequest):
        raise InvalidRequestError(f"Expected VMResourceRequest, got {request!r}")
    if max_nodes is None:
        max_nodes = get_settings().max_plan_nodes

    memory = _memory_by_node(topology, node_resources)
    eligible = [request.affinity & topology.cpuset_of_node(n) for n in topology.nodes()]
    logger.debug(
        f"Planning vcpus={request.vcpus} memory={request.memory} "
        f"affinity={request.affinity} against {len(memory)} node resources"
    )

    # Feasibility only grows with the node set, so checking all nodes bounds the search
    if (sum(memory.values()) < request.memory
            or sum(len(cpus) for cpus in eligible) < request.vcpus):
        logger.info(f"No NUMA plan: host cannot satisfy vcpus={request.vcpus} memory={request.memory}")
        return None

    baseline = _mean_distance(topology, topology.all_cpus(), range(topology.num_nodes))
    fallback = None
    limit = topology.num_nodes if max_nodes is None else min(max_nodes, topology.num_nodes)
    for size in range(1, limit + 1):
        feasible = []
        for candidate in _candidates_of_size(topology, size):
            indices = candidate.indices
            free = sum(memory.get(i, 0) for i in indices)
            if free < request.memory:
                continue
            if sum(len(eligible[i]) for i in indices) < request.vcpus:
                continue
            covered = request.vcpus >= size and all(eligible[i] for i in indices)
            feasible.append((not covered, candidate.max_distance, candidate.sum_distance,
                             -free, indices, candidate))

        for entry in sorted(feasible, key=lambda f: f[:5]):
            chosen = entry[5]
            cpuset = _stripe(topology, chosen.nodes, eligible, request.vcpus)
            average = _mean_distance(topology, cpuset, chosen.indices)
            if average <= baseline + AVERAGE_TOLERANCE:
                logger.debug(
                    f"Planned {[str(n) for n in chosen.nodes]} (max distance {chosen.max_distance}, "
                    f"sum {chosen.sum_distance}, mean {average:.3f}): cpus {cpuset}"
                )
                return cpuset, chosen.nodes
            logger.debug(
                f"Skipping {[str(n) for n in chosen.nodes]}: mean distance {average:.3f} "
                f"above unaware placement {baseline:.3f}"
            )
            if fallback is None:
                fallback = (cpuset, chosen.nodes)

    if fallback is not None:
        logger.warning(
            f"No node set keeps the mean distance within {baseline:.3f} for vcpus={request.vcpus} "
            f"memory={request.memory}; using {[str(n) for n in fallback[1]]}"
        )
        return fallback

    logger.info(f"No NUMA plan within {limit} nodes for vcpus={request.vcpus} memory={request.memory}")
    return None
