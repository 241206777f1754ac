import numpy as np
from typing import Dict, List

from .config import LOCAL_DISTANCE
from .errors import InvalidTopologyError
from .topology import NumaTopology


# AMD Opteron 6272: 8 nodes over a partially connected HyperTransport mesh,
# so some node pairs are two hops apart and the matrix is not symmetric
OPTERON_6272_DISTANCES = np.array([
    [10, 16, 16, 22, 16, 22, 16, 22],
    [16, 10, 22, 16, 16, 22, 22, 17],
    [16, 22, 10, 16, 16, 16, 16, 16],
    [22, 16, 16, 10, 16, 16, 22, 22],
    [16, 16, 16, 16, 10, 16, 16, 22],
    [22, 22, 16, 16, 16, 10, 22, 16],
    [16, 22, 16, 22, 16, 22, 10, 16],
    [22, 16, 16, 22, 22, 16, 16, 10],
])


TOPOLOGY_PRESETS = {
    'intel_xeon_8380': {
        'description': 'Intel Xeon Platinum 8380, 2 sockets x 40 cores',
        'cores_per_numa': 40,
        'distances': np.array([[10, 21], [21, 10]]),
    },
    'intel_xeon_6747p': {
        'description': 'Intel Xeon 6747P, 2 SNC nodes x 24 cores',
        'cores_per_numa': 24,
        'distances': np.array([[10, 16], [16, 10]]),
    },
    'intel_xeon_6430': {
        'description': 'Intel Xeon Gold 6430, single node',
        'cores_per_numa': 32,
        'distances': np.array([[10]]),
    },
    'amd_epyc_7763': {
        'description': 'AMD EPYC 7763, 8 CCD nodes x 16 cores',
        'cores_per_numa': 16,
        'distances': np.array([
            [10, 16, 16, 16, 32, 32, 32, 32],
            [16, 10, 16, 16, 32, 32, 32, 32],
            [16, 16, 10, 16, 32, 32, 32, 32],
            [16, 16, 16, 10, 32, 32, 32, 32],
            [32, 32, 32, 32, 10, 16, 16, 16],
            [32, 32, 32, 32, 16, 10, 16, 16],
            [32, 32, 32, 32, 16, 16, 10, 16],
            [32, 32, 32, 32, 16, 16, 16, 10],
        ]),
    },
    'amd_opteron_6272': {
        'description': 'AMD Opteron 6272, 8 nodes x 4 cores, asymmetric',
        'cores_per_numa': 4,
        'distances': OPTERON_6272_DISTANCES,
    },
    'aws_graviton3': {
        'description': 'AWS Graviton3, single node',
        'cores_per_numa': 64,
        'distances': np.array([[10]]),
    },
}


def _blocked_cpu_map(num_nodes: int, cores_per_numa: int) -> List[int]:
    """Consecutive CPU ids per node: node 0 owns 0..k-1, node 1 owns k..2k-1, ..."""
    return [cpu // cores_per_numa for cpu in range(num_nodes * cores_per_numa)]


def make_symmetric_topology(numa: int, cores: int) -> NumaTopology:
    """
    Linear chain of ``numa`` nodes sharing ``cores`` CPUs evenly.

    Distance grows by 11 per hop: 10 locally, 21 to a neighbour, 32 two
    hops away, and so on.
    """
    if numa < 1 or cores < numa:
        raise InvalidTopologyError(f"Need at least one core per node, got numa={numa} cores={cores}")
    distances = [
        [LOCAL_DISTANCE if i == j else LOCAL_DISTANCE + 11 * abs(j - i) for j in range(numa)]
        for i in range(numa)
    ]
    cores_per_numa = cores // numa
    return NumaTopology(distances=distances, cpu_to_node=_blocked_cpu_map(numa, cores_per_numa))


def make_asymmetric_topology(cores_per_numa: int) -> NumaTopology:
    """8-node AMD Opteron 6272 host with ``cores_per_numa`` CPUs per node."""
    if cores_per_numa < 1:
        raise InvalidTopologyError(f"cores_per_numa must be >= 1, got {cores_per_numa}")
    return NumaTopology(
        distances=OPTERON_6272_DISTANCES,
        cpu_to_node=_blocked_cpu_map(len(OPTERON_6272_DISTANCES), cores_per_numa),
    )


def list_presets() -> List[str]:
    return sorted(TOPOLOGY_PRESETS.keys())


def create_topology(name: str = 'intel_xeon_8380', **kwargs) -> NumaTopology:
    """
    Create a host topology from a named preset

    Args:
        name: One of list_presets(), case-insensitive
        **kwargs: 'cores_per_numa' or 'distances' to override the preset

    Returns:
        NumaTopology: Topology with consecutive CPU ids per node
    """
    name_lower = name.lower()
    matching_key = None
    for key in TOPOLOGY_PRESETS.keys():
        if key.lower() == name_lower:
            matching_key = key
            break

    if matching_key is None:
        raise ValueError(f"Unknown topology preset: {name}. Available: {list_presets()}")

    preset: Dict = dict(TOPOLOGY_PRESETS[matching_key])
    for key, value in kwargs.items():
        if key not in ('cores_per_numa', 'distances'):
            raise ValueError(f"Unknown preset override: {key}")
        preset[key] = value

    distances = np.asarray(preset['distances'])
    return NumaTopology(
        distances=distances,
        cpu_to_node=_blocked_cpu_map(len(distances), preset['cores_per_numa']),
    )
